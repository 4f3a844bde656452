import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


def _csv(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "")
    items = [x.strip() for x in raw.split(",") if x.strip()]
    return items if items else list(default)


class Settings(BaseModel):
    admins: list[str] = Field(default_factory=lambda: ["admin"])
    ledger_account: str = "survey-ledger"
    reward_token_id: Optional[str] = None
    transfer_timeout: float = Field(default=5.0, gt=0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("ledger_account")
    @classmethod
    def _account_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("ledger_account must not be blank")
        return v.strip()

    @field_validator("reward_token_id")
    @classmethod
    def _blank_token_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            admins=_csv("SURVEY_LEDGER_ADMINS", ["admin"]),
            ledger_account=os.getenv("SURVEY_LEDGER_ACCOUNT", "survey-ledger"),
            reward_token_id=os.getenv("SURVEY_LEDGER_REWARD_TOKEN"),
            transfer_timeout=float(os.getenv("SURVEY_LEDGER_TRANSFER_TIMEOUT", "5.0")),
            log_level=os.getenv("SURVEY_LEDGER_LOG_LEVEL", "INFO").upper(),
            cors_origins=_csv("SURVEY_LEDGER_CORS_ORIGINS", ["*"]),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
