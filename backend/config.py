"""
Configuration
Process-level settings and logging setup.

Settings are read from the environment (prefix OPS_MONITOR_) or a .env
file at startup. Nothing here is reloaded at runtime; alert rule overrides
go through AlertManager.update_alert_config instead.

Usage:
    from config import get_settings, configure_logging

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitorSettings(BaseSettings):
    """Ops monitor configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OPS_MONITOR_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8000

    # Scheduling
    scheduler_enabled: bool = True
    evaluation_interval_seconds: float = Field(default=60.0, gt=0)
    reset_interval_seconds: float = Field(default=24 * 60 * 60, gt=0)

    # Collector
    latency_buffer_size: int = Field(default=10000, gt=0)
    revenue_window_minutes: float = Field(default=120.0, gt=0)
    integration_initial_success_rate: float = Field(default=100.0, ge=0, le=100)
    integration_success_step: float = Field(default=0.1, ge=0)
    integration_failure_step: float = Field(default=0.5, ge=0)
    integration_latency_weight: float = Field(default=0.5, gt=0, le=1)

    # Alerting
    alert_history_size: int = Field(default=1000, gt=0)
    channel_timeout_seconds: float = Field(default=5.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Slack
    slack_webhook_url: Optional[str] = None

    # Generic webhook
    alert_webhook_url: Optional[str] = None
    alert_webhook_headers: Dict[str, str] = Field(default_factory=dict)

    # Email
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    alert_email_from: Optional[str] = None
    alert_email_to: List[str] = Field(default_factory=list)

    # SMS gateway
    sms_gateway_url: Optional[str] = None
    sms_api_key: Optional[str] = None
    sms_recipients: List[str] = Field(default_factory=list)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v):
        return v.upper() if isinstance(v, str) else v


@lru_cache
def get_settings() -> MonitorSettings:
    """Settings for the process entry point. Tests build their own."""
    return MonitorSettings()


# =============================================================================
# Logging
# =============================================================================

class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Install a single stream handler on the root logger.

    Safe to call more than once; the previous handler installed here is
    replaced rather than duplicated.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_ops_monitor", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    handler._ops_monitor = True
    root.addHandler(handler)
    root.setLevel(level.upper())
