from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from expense_tracker.currency_conversion import DEFAULT_API_BASE_URL, normalize_currency

DEFAULT_BASE_CURRENCY = "SGD"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    base_currency: str
    exchange_rate_api_key: str
    exchange_rate_api_base_url: str
    exchange_rate_timeout_seconds: float
    database_url: str
    frontend_origin: str
    log_level: str


def get_base_currency() -> str:
    raw = os.getenv("BASE_CURRENCY", DEFAULT_BASE_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return DEFAULT_BASE_CURRENCY


def get_timeout_seconds() -> float:
    raw = os.getenv("EXCHANGE_RATE_TIMEOUT_SECONDS", "8")
    try:
        value = float(raw)
    except ValueError:
        return 8.0
    return value if value > 0 else 8.0


def load_settings() -> Settings:
    return Settings(
        base_currency=get_base_currency(),
        exchange_rate_api_key=os.getenv("EXCHANGE_RATE_API_KEY", "").strip(),
        exchange_rate_api_base_url=os.getenv("EXCHANGE_RATE_API_BASE_URL", DEFAULT_API_BASE_URL),
        exchange_rate_timeout_seconds=get_timeout_seconds(),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./expense_tracker.db"),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:5173"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
