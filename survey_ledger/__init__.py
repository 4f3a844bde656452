"""
Survey Reward Ledger

This module provides:
- Survey records with an active/inactive lifecycle
- One-time participation per (survey, user) pair
- Fixed token rewards paid from ledger custody, rolled back on transfer failure
- Administrator-gated configuration through an injected access check
- Audit events for every mutation
"""

from .models import (
    EventType,
    SurveyStatus,
    Survey,
    LedgerEvent,
    ClaimReceipt,
    WithdrawalReceipt,
)
from .service import LedgerService, InMemoryStorage
from .tokens import TokenAccount, TokenBank, TokenProvider
from .access import AccessControl, StaticAccessControl
from .config import Settings, get_settings

__all__ = [
    "EventType",
    "SurveyStatus",
    "Survey",
    "LedgerEvent",
    "ClaimReceipt",
    "WithdrawalReceipt",
    "LedgerService",
    "InMemoryStorage",
    "TokenAccount",
    "TokenBank",
    "TokenProvider",
    "AccessControl",
    "StaticAccessControl",
    "Settings",
    "get_settings",
]
