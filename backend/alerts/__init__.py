"""
Alert System
Rule-based alerts evaluated against metrics snapshots.

Structure:
    alerts/
    ├── models.py    → AlertRule, AlertState, AlertInstance, DeliveryAttempt
    ├── rules.py     → built-in rule catalogue (reading, direction, wording)
    ├── channels.py  → console, Slack, webhook, email, SMS adapters
    └── engine.py    → AlertManager (evaluation, cooldown, dispatch, history)

Usage:
    from alerts import AlertManager, build_channels

    manager = AlertManager(collector, channels=build_channels(settings))

    # Tighten a rule at runtime
    manager.update_alert_config("high_error_rate", {"threshold": 3, "cooldown_minutes": 30})

    # Evaluate (called by the scheduler every tick)
    fired = await manager.evaluate()

    # Get history
    history = manager.get_alert_history(hours=24)
"""

from .models import (
    AlertType,
    AlertSeverity,
    ChannelType,
    Comparison,
    AlertRule,
    AlertState,
    AlertInstance,
    DeliveryAttempt,
    InvalidAlertConfigError,
    UnknownAlertTypeError,
    parse_alert_type,
)

from .rules import RULE_DEFINITIONS, RuleDefinition, Reading, default_rules

from .channels import (
    AlertChannel,
    ChannelDeliveryError,
    ConsoleChannel,
    SlackChannel,
    WebhookChannel,
    SmsChannel,
    EmailChannel,
    build_channels,
)

from .engine import AlertManager

__all__ = [
    # Models
    "AlertType",
    "AlertSeverity",
    "ChannelType",
    "Comparison",
    "AlertRule",
    "AlertState",
    "AlertInstance",
    "DeliveryAttempt",
    "InvalidAlertConfigError",
    "UnknownAlertTypeError",
    "parse_alert_type",
    # Rules
    "RULE_DEFINITIONS",
    "RuleDefinition",
    "Reading",
    "default_rules",
    # Channels
    "AlertChannel",
    "ChannelDeliveryError",
    "ConsoleChannel",
    "SlackChannel",
    "WebhookChannel",
    "SmsChannel",
    "EmailChannel",
    "build_channels",
    # Engine
    "AlertManager",
]
