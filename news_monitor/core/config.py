"""
Configuration loading.

Settings come from environment variables, optionally read from a ``.env``
file, and are validated into pydantic models. Missing required settings are
reported all at once so the operator can fix them in a single pass.
"""

import logging
import os
import re
from enum import Enum
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from .exceptions import ConfigError
from .fetch_news import TARGET_URL
from .store_news import DEFAULT_DATA_FILE

logger = logging.getLogger(__name__)

REQUIRED_ENV = ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASSWORD", "TO_EMAIL")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BATCH_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


class PushMode(str, Enum):
    REAL_TIME = "real-time"
    BATCH = "batch"


class EmailSettings(BaseModel):
    """SMTP transport settings."""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: Optional[str] = None
    to_email: str = ""
    timeout: float = 30.0

    def missing_fields(self) -> list[str]:
        """Names of required transport settings that are empty."""
        required = {
            "smtp_host": self.smtp_host,
            "smtp_port": self.smtp_port,
            "smtp_user": self.smtp_user,
            "smtp_password": self.smtp_password,
            "to_email": self.to_email,
        }
        return [name for name, value in required.items() if not value]

    @property
    def sender(self) -> str:
        return self.from_email or self.smtp_user


class MonitorConfig(BaseModel):
    """Complete runtime configuration of the news monitor."""
    email: EmailSettings
    check_interval: str = "15"
    push_mode: PushMode = PushMode.REAL_TIME
    batch_time: str = "18:00"
    news_url: str = TARGET_URL
    data_file: str = DEFAULT_DATA_FILE
    timezone: str = "Asia/Shanghai"
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ConfigLoader:
    """Build a MonitorConfig from the environment."""

    def __init__(self, dotenv_path: Optional[str] = None) -> None:
        self.dotenv_path = dotenv_path

    def load(self, environ: Optional[Mapping[str, str]] = None) -> MonitorConfig:
        """Load and validate the configuration.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ`` after
                loading the ``.env`` file.

        Returns:
            The validated configuration.

        Raises:
            ConfigError: If required settings are missing or invalid.
        """
        if environ is None:
            load_dotenv(self.dotenv_path)
            environ = os.environ

        missing = [key for key in REQUIRED_ENV if not environ.get(key)]
        if missing:
            raise ConfigError("Missing required settings", missing=missing)

        port = self._parse_port(environ["SMTP_PORT"])
        push_mode = environ.get("PUSH_MODE") or PushMode.REAL_TIME.value
        if push_mode not in {mode.value for mode in PushMode}:
            raise ConfigError(
                f"PUSH_MODE must be 'real-time' or 'batch', got {push_mode!r}"
            )
        timezone = environ.get("TIMEZONE") or "Asia/Shanghai"
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown TIMEZONE {timezone!r}") from e

        try:
            return MonitorConfig(
                email=EmailSettings(
                    smtp_host=environ["SMTP_HOST"],
                    smtp_port=port,
                    smtp_user=environ["SMTP_USER"],
                    smtp_password=environ["SMTP_PASSWORD"],
                    from_email=environ.get("FROM_EMAIL") or None,
                    to_email=environ["TO_EMAIL"],
                    timeout=float(environ.get("SMTP_TIMEOUT") or 30),
                ),
                check_interval=environ.get("CHECK_INTERVAL") or "15",
                push_mode=PushMode(push_mode),
                batch_time=environ.get("BATCH_TIME") or "18:00",
                news_url=environ.get("NEWS_URL") or TARGET_URL,
                data_file=environ.get("DATA_FILE") or DEFAULT_DATA_FILE,
                timezone=timezone,
                log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
                log_file=environ.get("LOG_FILE") or None,
            )
        except (ValidationError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @staticmethod
    def _parse_port(value: str) -> int:
        try:
            port = int(value)
        except ValueError as e:
            raise ConfigError(f"SMTP_PORT must be a number, got {value!r}") from e
        if not 1 <= port <= 65535:
            raise ConfigError(f"SMTP_PORT must be between 1 and 65535, got {port}")
        return port

    def load_local_settings(self) -> tuple[str, str]:
        """Return NEWS_URL and DATA_FILE without requiring the SMTP settings."""
        load_dotenv(self.dotenv_path)
        news_url = os.getenv("NEWS_URL") or TARGET_URL
        data_file = os.getenv("DATA_FILE") or DEFAULT_DATA_FILE
        return news_url, data_file

    @staticmethod
    def warnings(config: MonitorConfig) -> list[str]:
        """Non-fatal problems worth reporting before start-up."""
        found = []
        addresses = {
            "SMTP_USER": config.email.smtp_user,
            "TO_EMAIL": config.email.to_email,
            "FROM_EMAIL": config.email.from_email,
        }
        for key, value in addresses.items():
            if value and not EMAIL_PATTERN.match(value):
                found.append(f"{key} does not look like an email address: {value}")
        if config.push_mode is PushMode.BATCH and not BATCH_TIME_PATTERN.match(config.batch_time):
            found.append(
                f"BATCH_TIME should be HH:mm, got {config.batch_time!r}; 18:00 will be used"
            )
        return found
