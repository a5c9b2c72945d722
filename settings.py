"""
Application Settings

Environment-driven configuration for the Bistro API. Values are read once
from the process environment (and a local .env file, if present) when the
application is created.
"""

import os
from typing import Optional
from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    access_token_secret: str = "change-me"
    token_ttl_seconds: int = 3600
    payment_secret_key: Optional[str] = None
    payment_currency: str = "usd"
    mongo_transactions: bool = False
    settlement_delete_retries: int = Field(1, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            access_token_secret=os.getenv("ACCESS_TOKEN_SECRET", "change-me"),
            token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", 3600)),
            payment_secret_key=os.getenv("PAYMENT_SECRET_KEY"),
            payment_currency=os.getenv("PAYMENT_CURRENCY", "usd"),
            mongo_transactions=_flag(os.getenv("MONGO_TRANSACTIONS")),
            settlement_delete_retries=max(0, int(os.getenv("SETTLEMENT_DELETE_RETRIES", 1))),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
