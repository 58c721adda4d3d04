"""
Centralized configuration with environment variable overrides.

Calendar defaults, hold lifetimes, and resolver limits are configurable
here. Nothing is hardcoded in the availability or resolver logic.
"""

import logging
import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from crewcal.logging_context import LOG_FORMAT, install_context_filter

load_dotenv()

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class CalendarDefaults:
    """Org calendar settings used when a tenant has no settings row."""

    timezone: str = os.getenv("CALENDAR_DEFAULT_TIMEZONE", "America/Los_Angeles")
    slot_minutes: int = _safe_int("DEFAULT_SLOT_MINUTES", "30")
    untimed_start_hour: int = _safe_int("DEFAULT_UNTIMED_START_HOUR", "9")
    week_starts_on: int = _safe_int("DEFAULT_WEEK_STARTS_ON", "0")
    allow_overlaps: bool = _safe_bool("DEFAULT_ALLOW_OVERLAPS", "false")


@dataclass(frozen=True)
class HoldConfig:
    """Lifetime bounds for unconfirmed calendar holds."""

    default_expiry_minutes: int = _safe_int("HOLD_DEFAULT_EXPIRY_MINUTES", "10")
    max_expiry_minutes: int = _safe_int("HOLD_MAX_EXPIRY_MINUTES", "120")


@dataclass(frozen=True)
class ResolverConfig:
    """Limits for next-open-slot searches and round-robin assignment."""

    default_lookahead_days: int = _safe_int("LOOKAHEAD_DEFAULT_DAYS", "7")
    max_lookahead_days: int = _safe_int("LOOKAHEAD_MAX_DAYS", "21")
    max_duration_minutes: int = _safe_int("MAX_DURATION_MINUTES", "720")
    round_robin_max_retries: int = _safe_int("ROUND_ROBIN_MAX_RETRIES", "3")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    calendar: CalendarDefaults = field(default_factory=CalendarDefaults)
    holds: HoldConfig = field(default_factory=HoldConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    try:
        ZoneInfo(config.calendar.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"CALENDAR_DEFAULT_TIMEZONE must be an IANA zone, got {config.calendar.timezone!r}"
        ) from None
    if config.calendar.slot_minutes not in (15, 30, 60, 90):
        raise ValueError(
            f"DEFAULT_SLOT_MINUTES must be one of 15, 30, 60, 90, got {config.calendar.slot_minutes}"
        )
    if not 0 <= config.calendar.untimed_start_hour <= 23:
        raise ValueError(
            "DEFAULT_UNTIMED_START_HOUR must be between 0 and 23, "
            f"got {config.calendar.untimed_start_hour}"
        )
    if config.calendar.week_starts_on not in (0, 1):
        raise ValueError(
            f"DEFAULT_WEEK_STARTS_ON must be 0 or 1, got {config.calendar.week_starts_on}"
        )
    if config.holds.default_expiry_minutes < 1:
        raise ValueError(
            f"HOLD_DEFAULT_EXPIRY_MINUTES must be >= 1, got {config.holds.default_expiry_minutes}"
        )
    if config.holds.max_expiry_minutes < config.holds.default_expiry_minutes:
        raise ValueError(
            "HOLD_MAX_EXPIRY_MINUTES must be >= HOLD_DEFAULT_EXPIRY_MINUTES, "
            f"got {config.holds.max_expiry_minutes}"
        )
    if config.resolver.max_lookahead_days < 1:
        raise ValueError(
            f"LOOKAHEAD_MAX_DAYS must be >= 1, got {config.resolver.max_lookahead_days}"
        )
    if not 1 <= config.resolver.default_lookahead_days <= config.resolver.max_lookahead_days:
        raise ValueError(
            "LOOKAHEAD_DEFAULT_DAYS must be between 1 and LOOKAHEAD_MAX_DAYS, "
            f"got {config.resolver.default_lookahead_days}"
        )
    if config.resolver.max_duration_minutes < 15:
        raise ValueError(
            f"MAX_DURATION_MINUTES must be >= 15, got {config.resolver.max_duration_minutes}"
        )
    if config.resolver.round_robin_max_retries < 1:
        raise ValueError(
            "ROUND_ROBIN_MAX_RETRIES must be >= 1, "
            f"got {config.resolver.round_robin_max_retries}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_context_filter(logging.getLogger().handlers)
    logger.info("Configuration loaded (default timezone '%s')", config.calendar.timezone)
    return config


# Singleton instance
settings = load_config()
