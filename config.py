"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass, field
from typing import List


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    token_ttl_hours: int = 24
    allow_admin_signup: bool = False
    payment_success_rate: float = 0.8
    payment_min_delay: float = 1.0
    payment_max_delay: float = 3.0
    payment_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            port=int(os.getenv("PORT", cls.port)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            token_ttl_hours=int(os.getenv("TOKEN_TTL_HOURS", cls.token_ttl_hours)),
            allow_admin_signup=_env_bool("ALLOW_ADMIN_SIGNUP"),
            payment_success_rate=float(os.getenv("PAYMENT_SUCCESS_RATE", cls.payment_success_rate)),
            payment_min_delay=float(os.getenv("PAYMENT_MIN_DELAY", cls.payment_min_delay)),
            payment_max_delay=float(os.getenv("PAYMENT_MAX_DELAY", cls.payment_max_delay)),
            payment_timeout=float(os.getenv("PAYMENT_TIMEOUT", cls.payment_timeout)),
        )
