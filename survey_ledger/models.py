from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict


class SurveyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class EventType(str, Enum):
    SURVEY_CREATED = "SURVEY_CREATED"
    SURVEY_STATUS_CHANGED = "SURVEY_STATUS_CHANGED"
    REWARD_CLAIMED = "REWARD_CLAIMED"
    REWARD_TOKEN_SET = "REWARD_TOKEN_SET"
    REWARDS_WITHDRAWN = "REWARDS_WITHDRAWN"


class SetRewardTokenRequest(BaseModel):
    token_id: Optional[str] = Field(None, description="Identifier of the reward asset")

    model_config = ConfigDict(json_schema_extra={"example": {"token_id": "TKN"}})


class CreateSurveyRequest(BaseModel):
    reward_amount: int = Field(..., description="Tokens paid per completed response")

    model_config = ConfigDict(json_schema_extra={"example": {"reward_amount": 100}})


class ToggleSurveyStatusRequest(BaseModel):
    active: bool


class ClaimRewardRequest(BaseModel):
    user_id: str = Field(..., description="Participant receiving the reward")
    response_proof: str = Field(..., description="Hash or receipt of the submitted response")

    model_config = ConfigDict(json_schema_extra={
        "example": {"user_id": "alice", "response_proof": "hash1"}
    })


class WithdrawRequest(BaseModel):
    amount: int


class Survey(BaseModel):
    id: int
    reward_amount: int
    is_active: bool
    participant_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def status(self) -> SurveyStatus:
        return SurveyStatus.ACTIVE if self.is_active else SurveyStatus.INACTIVE


class LedgerEvent(BaseModel):
    sequence: int
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClaimReceipt(BaseModel):
    survey_id: int
    user_id: str
    amount: int
    token_id: str


class WithdrawalReceipt(BaseModel):
    to: str
    amount: int
    token_id: str


class LedgerConfiguration(BaseModel):
    reward_token_id: Optional[str] = None
    ledger_account: str
    survey_count: int


class RewardTokenResponse(BaseModel):
    token_id: str


class CreateSurveyResponse(BaseModel):
    survey_id: int


class ParticipationResponse(BaseModel):
    survey_id: int
    user_id: str
    has_participated: bool


class CustodyBalanceResponse(BaseModel):
    token_id: str
    account: str
    balance: int


class EventHistoryResponse(BaseModel):
    events: list[LedgerEvent]
    total_count: int
