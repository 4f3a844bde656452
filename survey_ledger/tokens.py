"""
Token Account collaborator.

The ledger never moves value itself: it asks a TokenAccount for its custody
balance and to transfer rewards out of custody. TokenBank is an in-memory
implementation used for local runs and tests; production deployments inject
an account backed by the real asset.
"""

import threading
from typing import Protocol, runtime_checkable

from .log import get_logger

log = get_logger("tokens")


@runtime_checkable
class TokenAccount(Protocol):
    token_id: str
    custodian: str

    def balance_of(self, account: str) -> int:
        ...

    def transfer(self, to: str, amount: int) -> bool:
        ...


@runtime_checkable
class TokenProvider(Protocol):
    """Resolves the reward token id to an account held by one custodian."""

    custodian: str

    def account(self, token_id: str) -> TokenAccount:
        ...


class TokenBank:
    def __init__(self, custodian: str = "survey-ledger"):
        self.custodian = custodian
        self._books: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def account(self, token_id: str) -> "BankTokenAccount":
        return BankTokenAccount(self, token_id, self.custodian)

    def mint(self, token_id: str, holder: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError("Mint amount must be positive")
        with self._lock:
            book = self._books.setdefault(token_id, {})
            book[holder] = book.get(holder, 0) + amount
        log.debug(f"Minted {amount} {token_id} to {holder}")

    def balance_of(self, token_id: str, holder: str) -> int:
        with self._lock:
            return self._books.get(token_id, {}).get(holder, 0)

    def move(self, token_id: str, sender: str, to: str, amount: int) -> bool:
        if amount <= 0 or not to:
            return False
        with self._lock:
            book = self._books.setdefault(token_id, {})
            if book.get(sender, 0) < amount:
                return False
            book[sender] -= amount
            book[to] = book.get(to, 0) + amount
        return True


class BankTokenAccount:
    """TokenAccount view over a TokenBank, transferring out of one custody account."""

    def __init__(self, bank: TokenBank, token_id: str, custodian: str):
        self.bank = bank
        self.token_id = token_id
        self.custodian = custodian

    def balance_of(self, account: str) -> int:
        return self.bank.balance_of(self.token_id, account)

    def transfer(self, to: str, amount: int) -> bool:
        return self.bank.move(self.token_id, self.custodian, to, amount)
