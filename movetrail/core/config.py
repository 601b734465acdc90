import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Identity (HS256 bearer tokens; X-User-Id header accepted when unset)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_AUDIENCE: Optional[str] = None

    # Streak defaults
    DEFAULT_TIMEZONE: str = "America/New_York"
    INITIAL_SHIELDS: int = 1
    STREAK_CAS_MAX_ATTEMPTS: int = 3

    # Shield caps per subscription tier
    SHIELD_CAP_STARTER: int = 2
    SHIELD_CAP_MOVER: int = 3
    SHIELD_CAP_CRUSHER: int = 5
    DEFAULT_SUBSCRIPTION_TIER: str = "starter"

    # Qualification thresholds
    STREAK_MIN_STEPS: float = 1000
    STREAK_MIN_WORKOUT_MINUTES: float = 10
    STREAK_MIN_ACTIVE_MINUTES: float = 15
    STREAK_MIN_RINGS_CLOSED: float = 1

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("movetrail")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []

    if (cfg.ENV or "").lower() == "production":
        missing = [key for key in ("DATABASE_URL", "AUTH_JWT_SECRET") if not getattr(cfg, key, None)]
        if missing:
            problems.append(f"Missing required configuration: {', '.join(missing)}")

    try:
        ZoneInfo(cfg.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        problems.append(f"DEFAULT_TIMEZONE is not a known IANA zone: {cfg.DEFAULT_TIMEZONE}")

    caps = (cfg.SHIELD_CAP_STARTER, cfg.SHIELD_CAP_MOVER, cfg.SHIELD_CAP_CRUSHER)
    if any(cap < 0 for cap in caps):
        problems.append("Shield caps must be non-negative")
    if cfg.STREAK_CAS_MAX_ATTEMPTS < 1:
        problems.append("STREAK_CAS_MAX_ATTEMPTS must be at least 1")

    for message in problems:
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
