"""
Runtime configuration

Everything is read from the environment (a local .env file is honoured).
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    database_name: Optional[str]
    port: int = 8000
    client_origin: str = "*"
    session_ttl_days: int = 7
    resend_api_key: Optional[str] = None
    mail_from: str = "E-Commerce Shop <orders@example.com>"
    restock_on_cancel: bool = False
    low_stock_threshold: int = 5
    environment: str = "development"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME"),
        port=_env_int("PORT", 8000),
        client_origin=(os.getenv("CLIENT_ORIGIN") or "*").strip(),
        session_ttl_days=max(1, _env_int("SESSION_TTL_DAYS", 7)),
        resend_api_key=(os.getenv("RESEND_API_KEY") or "").strip() or None,
        mail_from=(os.getenv("MAIL_FROM") or "E-Commerce Shop <orders@example.com>").strip(),
        restock_on_cancel=_env_bool("RESTOCK_ON_CANCEL", False),
        low_stock_threshold=max(0, _env_int("LOW_STOCK_THRESHOLD", 5)),
        environment=(os.getenv("ENVIRONMENT") or "development").lower(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
