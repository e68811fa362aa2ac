"""
Loyalty configuration.

Every setting can be overridden through the environment:

    LOYALTY_WELCOME_BONUS=100 LOYALTY_APPLY_RETRIES=5 uvicorn loyalty.api:app
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LoyaltySettings:
    # Points granted once when a member joins through a business join code
    welcome_bonus_points: int = 50

    join_code_length: int = 6
    join_code_attempts: int = 10

    # Retries of the balance step after an appeal has been approved
    apply_retry_attempts: int = 3
    apply_retry_delay: float = 0.05

    log_level: str = "INFO"
    seed_demo_data: bool = False

    groq_api_key: Optional[str] = field(default=None, repr=False)
    groq_model: str = "llama-3.3-70b-versatile"

    @classmethod
    def from_env(cls) -> "LoyaltySettings":
        return cls(
            welcome_bonus_points=_env_int("LOYALTY_WELCOME_BONUS", 50),
            join_code_length=_env_int("LOYALTY_JOIN_CODE_LENGTH", 6),
            join_code_attempts=_env_int("LOYALTY_JOIN_CODE_ATTEMPTS", 10),
            apply_retry_attempts=_env_int("LOYALTY_APPLY_RETRIES", 3),
            apply_retry_delay=_env_float("LOYALTY_APPLY_RETRY_DELAY", 0.05),
            log_level=os.getenv("LOYALTY_LOG_LEVEL", "INFO").upper(),
            seed_demo_data=_env_bool("LOYALTY_SEED_DEMO", False),
            groq_api_key=os.getenv("GROQ_API_KEY"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
        )


def get_settings() -> LoyaltySettings:
    return LoyaltySettings.from_env()
