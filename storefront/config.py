from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


@dataclass(frozen=True)
class Settings:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    database_url: str = "sqlite:///./storefront.db"
    log_level: str = "INFO"
    log_json: bool = False

    def validate(self) -> "Settings":
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET is not set")
        if self.jwt_algorithm not in HMAC_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported JWT_ALGORITHM {self.jwt_algorithm!r}; expected one of {', '.join(HMAC_ALGORITHMS)}"
            )
        if self.access_token_expire_minutes <= 0:
            raise ConfigurationError("ACCESS_TOKEN_EXPIRE_MINUTES must be > 0")
        if self.refresh_token_expire_days * 24 * 60 <= self.access_token_expire_minutes:
            raise ConfigurationError("Refresh tokens must outlive access tokens")
        return self


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def load_settings() -> Settings:
    """Read settings from the environment (and a .env file, if present)."""
    return Settings(
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 15),
        refresh_token_expire_days=_env_int("REFRESH_TOKEN_EXPIRE_DAYS", 7),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./storefront.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
