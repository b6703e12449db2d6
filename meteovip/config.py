"""
Configuration management for MeteoVip.
Runtime config (timezone, tick settings, etc.) is loaded from TOML stored in the DB.
BOT_TOKEN and JOBS_SECRET remain in .env. Other params: TOML in DB, fallback from .env when seeding.
"""

import os
import logging
from pathlib import Path
from typing import List, Any
from dotenv import load_dotenv
import pytz

load_dotenv()

DEFAULT_DATABASE_PATH = "database/meteovip.db"

MISSING_VALUE_POLICIES = ("zero", "fail")


def _admin_ids_from_value(v: Any) -> List[int]:
    if isinstance(v, list):
        return [int(x) for x in v if str(x).strip().isdigit()]
    if isinstance(v, str) and v:
        return [int(uid.strip()) for uid in v.split(",") if uid.strip().isdigit()]
    return []


def _bool_from_value(v: Any) -> bool:
    return v if isinstance(v, bool) else str(v).lower() in ("true", "1", "yes")


class Config:
    """
    Application configuration.
    Most keys are loaded from TOML in DB at startup (set_runtime_config).
    BOT_TOKEN and JOBS_SECRET from .env only.
    """

    BOT_TOKEN: str = os.getenv("BOT_TOKEN", "")
    JOBS_SECRET: str = os.getenv("JOBS_SECRET", "")
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")
    TICK_INTERVAL_MINUTES: int = int(os.getenv("TICK_INTERVAL_MINUTES", "15"))
    TICK_CONCURRENCY: int = int(os.getenv("TICK_CONCURRENCY", "4"))
    USER_FETCH_TIMEOUT_SECONDS: float = float(os.getenv("USER_FETCH_TIMEOUT_SECONDS", "20"))
    TICK_TIMEOUT_SECONDS: float = float(os.getenv("TICK_TIMEOUT_SECONDS", "300"))
    FORECAST_DAYS: int = int(os.getenv("FORECAST_DAYS", "2"))
    MISSING_VALUE_POLICY: str = (os.getenv("MISSING_VALUE_POLICY", "zero") or "zero").lower()
    ALERT_RETENTION_DAYS: int = int(os.getenv("ALERT_RETENTION_DAYS", "30"))
    HTTP_HOST: str = os.getenv("HTTP_HOST", "0.0.0.0")
    HTTP_PORT: int = int(os.getenv("PORT", "3000"))
    LOG_LEVEL: str = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    DEBUG_MODE: bool = _bool_from_value(os.getenv("DEBUG_MODE", "false"))
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)
    ADMIN_USER_IDS: List[int] = _admin_ids_from_value(os.getenv("ADMIN_USER_IDS", ""))

    @classmethod
    def default_runtime_config(cls) -> dict:
        """Build the first-run TOML config from environment variables."""
        return {
            "timezone": os.getenv("TIMEZONE", "UTC"),
            "tick_interval_minutes": int(os.getenv("TICK_INTERVAL_MINUTES", "15") or "15"),
            "tick_concurrency": int(os.getenv("TICK_CONCURRENCY", "4") or "4"),
            "user_fetch_timeout_seconds": float(os.getenv("USER_FETCH_TIMEOUT_SECONDS", "20") or "20"),
            "tick_timeout_seconds": float(os.getenv("TICK_TIMEOUT_SECONDS", "300") or "300"),
            "forecast_days": int(os.getenv("FORECAST_DAYS", "2") or "2"),
            "missing_value_policy": os.getenv("MISSING_VALUE_POLICY", "zero") or "zero",
            "alert_retention_days": int(os.getenv("ALERT_RETENTION_DAYS", "30") or "30"),
            "http_host": os.getenv("HTTP_HOST", "0.0.0.0") or "0.0.0.0",
            "http_port": int(os.getenv("PORT", "3000") or "3000"),
            "log_level": os.getenv("LOG_LEVEL", "INFO") or "INFO",
            "database_path": os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH) or DEFAULT_DATABASE_PATH,
            "admin_user_ids": _admin_ids_from_value(os.getenv("ADMIN_USER_IDS", "")),
            "debug_mode": _bool_from_value(os.getenv("DEBUG_MODE", "false") or "false"),
        }

    @classmethod
    def set_runtime_config(cls, config: dict) -> None:
        """Overwrite config from DB TOML. Called at startup after loading TOML."""
        if "timezone" in config:
            cls.TIMEZONE = str(config["timezone"] or "UTC")
        if "tick_interval_minutes" in config:
            cls.TICK_INTERVAL_MINUTES = int(config["tick_interval_minutes"] or 15)
        if "tick_concurrency" in config:
            cls.TICK_CONCURRENCY = int(config["tick_concurrency"] or 4)
        if "user_fetch_timeout_seconds" in config:
            cls.USER_FETCH_TIMEOUT_SECONDS = float(config["user_fetch_timeout_seconds"] or 20)
        if "tick_timeout_seconds" in config:
            cls.TICK_TIMEOUT_SECONDS = float(config["tick_timeout_seconds"] or 300)
        if "forecast_days" in config:
            cls.FORECAST_DAYS = int(config["forecast_days"] or 2)
        if "missing_value_policy" in config:
            cls.MISSING_VALUE_POLICY = str(config["missing_value_policy"] or "zero").lower()
        if "alert_retention_days" in config:
            cls.ALERT_RETENTION_DAYS = int(config["alert_retention_days"] or 30)
        if "http_host" in config:
            cls.HTTP_HOST = str(config["http_host"] or "0.0.0.0")
        if "http_port" in config:
            cls.HTTP_PORT = int(config["http_port"] or 3000)
        if "log_level" in config:
            cls.LOG_LEVEL = (str(config["log_level"] or "INFO")).upper()
        if "debug_mode" in config:
            cls.DEBUG_MODE = _bool_from_value(config["debug_mode"])
        if "database_path" in config:
            cls.DATABASE_PATH = str(config["database_path"] or DEFAULT_DATABASE_PATH)
        if "admin_user_ids" in config:
            cls.ADMIN_USER_IDS = _admin_ids_from_value(config["admin_user_ids"])

    @classmethod
    def get_timezone(cls) -> pytz.timezone:
        """Get the configured timezone object."""
        try:
            return pytz.timezone(cls.TIMEZONE)
        except pytz.exceptions.UnknownTimeZoneError:
            logging.warning(f"Unknown timezone '{cls.TIMEZONE}', using UTC")
            return pytz.UTC

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate configuration and return list of errors.
        Returns empty list if configuration is valid.
        """
        errors = []

        if not cls.BOT_TOKEN:
            errors.append("BOT_TOKEN is required")

        if cls.TICK_INTERVAL_MINUTES < 1:
            errors.append("TICK_INTERVAL_MINUTES must be at least 1")

        if cls.TICK_CONCURRENCY < 1:
            errors.append("TICK_CONCURRENCY must be at least 1")

        if cls.USER_FETCH_TIMEOUT_SECONDS <= 0 or cls.TICK_TIMEOUT_SECONDS <= 0:
            errors.append("Tick timeouts must be positive")

        if cls.FORECAST_DAYS < 2:
            errors.append("FORECAST_DAYS must be at least 2 (48-hour horizon)")

        if cls.MISSING_VALUE_POLICY not in MISSING_VALUE_POLICIES:
            errors.append(
                f"MISSING_VALUE_POLICY must be one of {', '.join(MISSING_VALUE_POLICIES)}"
            )

        return errors

    @classmethod
    def setup_logging(cls) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, cls.LOG_LEVEL, logging.INFO)

        logging.basicConfig(
            level=log_level,
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=[logging.StreamHandler()]
        )

        # Reduce noise from external libraries
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("telegram").setLevel(logging.WARNING)
        logging.getLogger("apscheduler").setLevel(logging.WARNING)
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    @classmethod
    def ensure_data_dir(cls) -> None:
        """Ensure the data directory exists."""
        db_path = Path(cls.DATABASE_PATH)
        db_path.parent.mkdir(parents=True, exist_ok=True)


class DefaultHazardThresholds:
    """Thresholds used by the hazard detector. All wind values in m/s."""

    # Wind gusts
    GUST_WARNING_MS: float = 17.0
    GUST_CRITICAL_MS: float = 22.0

    # Precipitation rate in mm/h
    RAIN_WARNING_MMH: float = 5.0
    RAIN_CRITICAL_MMH: float = 10.0

    # Temperature in Celsius (inclusive bounds)
    TEMP_EXTREME_LOW_C: float = -20.0
    TEMP_EXTREME_HIGH_C: float = 35.0

    # WMO weather codes for thunderstorm
    THUNDERSTORM_CODES = frozenset({95, 96, 99})
