import os
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str | None, default: List[str]) -> List[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_amounts(value: str | None, default: Dict[str, Decimal]) -> Dict[str, Decimal]:
    # "BTC:0.01,ETH:0.1"
    if value is None:
        return default
    amounts: Dict[str, Decimal] = {}
    for item in _parse_list(value, []):
        currency, _, amount = item.partition(":")
        amounts[currency.strip().upper()] = Decimal(amount.strip() or "0")
    return amounts


class Settings:
    def __init__(self) -> None:
        self.cors_allowed_origins: List[str] = _parse_list(
            os.getenv("CORS_ALLOWED_ORIGINS"),
            ["http://localhost:3000"],
        )
        self.nonce_ttl_seconds: int = int(os.getenv("NONCE_TTL_SECONDS", "300"))
        self.auth_rate_limit_window_seconds: int = int(
            os.getenv("AUTH_RATE_LIMIT_WINDOW_SECONDS", "60")
        )
        self.auth_rate_limit_max_requests: int = int(
            os.getenv("AUTH_RATE_LIMIT_MAX_REQUESTS", "10")
        )
        self.supported_currencies: List[str] = [
            c.upper()
            for c in _parse_list(
                os.getenv("SUPPORTED_CURRENCIES"),
                ["BTC", "ETH", "SOL", "USDT", "LTC"],
            )
        ]
        self.signup_balances: Dict[str, Decimal] = _parse_amounts(
            os.getenv("SIGNUP_BALANCES"),
            {"BTC": Decimal("0.01"), "ETH": Decimal("0.1")},
        )
        self.min_stake: Decimal = Decimal(os.getenv("MIN_STAKE", "0.00000001"))
        self.max_stake: Decimal = Decimal(os.getenv("MAX_STAKE", "100"))
        self.settlement_sweep_enabled: bool = _parse_bool(
            os.getenv("SETTLEMENT_SWEEP_ENABLED"), default=True
        )
        self.settlement_interval_seconds: float = float(
            os.getenv("SETTLEMENT_INTERVAL_SECONDS", "15.0")
        )
        self.settlement_retry_backoff_seconds: float = float(
            os.getenv("SETTLEMENT_RETRY_BACKOFF_SECONDS", "2.0")
        )
        self.settlement_max_backoff_seconds: float = float(
            os.getenv("SETTLEMENT_MAX_BACKOFF_SECONDS", "120.0")
        )
        self.seed_sports_matches: bool = _parse_bool(
            os.getenv("SEED_SPORTS_MATCHES"), default=True
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
