"""
Alert Models
Data structures for alert rules, cooldown state, alerts and delivery attempts.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union


class AlertType(str, Enum):
    """Built-in rule types, in evaluation order"""
    HIGH_ERROR_RATE = "high_error_rate"
    SLOW_RESPONSE_TIME = "slow_response_time"
    HIGH_MEMORY_USAGE = "high_memory_usage"
    PAYMENT_FAILURES = "payment_failures"
    WEBHOOK_FAILURES = "webhook_failures"
    HIGH_CHURN_RATE = "high_churn_rate"
    REVENUE_DROP = "revenue_drop"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    MULTIPLE_AUTH_FAILURES = "multiple_auth_failures"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    DATABASE_CONNECTION_ISSUES = "database_connection_issues"
    THIRD_PARTY_SERVICE_DOWN = "third_party_service_down"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChannelType(str, Enum):
    """Notification sinks a rule can route to"""
    CONSOLE = "console"
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
    SMS = "sms"


class Comparison(str, Enum):
    """Direction in which a rule's value breaches its threshold"""
    ABOVE = ">"
    BELOW = "<"
    AT_LEAST = ">="

    def breached(self, value: float, threshold: float) -> bool:
        if self == Comparison.ABOVE:
            return value > threshold
        if self == Comparison.BELOW:
            return value < threshold
        return value >= threshold


# Structured alert details stay loggable: primitives or lists of strings
DetailValue = Union[str, int, float, bool, None, List[str]]
Details = Dict[str, DetailValue]


# =============================================================================
# Errors
# =============================================================================

class InvalidAlertConfigError(ValueError):
    """A rule update was rejected; the previous rule is unchanged."""


class UnknownAlertTypeError(KeyError):
    """No rule is registered for the requested type."""

    def __str__(self) -> str:
        return f"Unknown alert type: {self.args[0]!r}" if self.args else "Unknown alert type"


def parse_alert_type(value: Any) -> AlertType:
    if isinstance(value, AlertType):
        return value
    try:
        return AlertType(str(value).strip().lower().replace("-", "_"))
    except ValueError:
        raise UnknownAlertTypeError(value) from None


# =============================================================================
# AlertRule
# =============================================================================

UPDATABLE_FIELDS = ("severity", "threshold", "window_minutes", "cooldown_minutes", "enabled", "channels")


def _finite_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidAlertConfigError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidAlertConfigError(f"{name} must be finite")
    return float(value)


def _channel_tuple(value: Any) -> Tuple[ChannelType, ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise InvalidAlertConfigError("channels must be a list of channel names")
    channels: List[ChannelType] = []
    for item in value:
        try:
            channel = ChannelType(item)
        except ValueError:
            raise InvalidAlertConfigError(f"Unknown channel: {item!r}") from None
        if channel not in channels:
            channels.append(channel)
    return tuple(channels)


@dataclass(frozen=True)
class AlertRule:
    """
    Configuration of one built-in rule.

    Frozen: runtime overrides produce a new rule through apply(), which is
    swapped in whole by the alert manager.
    """
    type: AlertType
    severity: AlertSeverity
    threshold: float
    window_minutes: float
    cooldown_minutes: float
    enabled: bool = True
    channels: Tuple[ChannelType, ...] = (ChannelType.CONSOLE,)

    def apply(self, patch: Mapping[str, Any]) -> "AlertRule":
        """Validated copy with patch applied. Raises InvalidAlertConfigError."""
        unknown = set(patch) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidAlertConfigError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}

        if "severity" in patch:
            try:
                changes["severity"] = AlertSeverity(patch["severity"])
            except ValueError:
                raise InvalidAlertConfigError(f"Unknown severity: {patch['severity']!r}") from None

        if "threshold" in patch:
            threshold = _finite_number("threshold", patch["threshold"])
            if threshold < 0:
                raise InvalidAlertConfigError("threshold must not be negative")
            changes["threshold"] = threshold

        if "window_minutes" in patch:
            window = _finite_number("window_minutes", patch["window_minutes"])
            if window <= 0:
                raise InvalidAlertConfigError("window_minutes must be positive")
            changes["window_minutes"] = window

        if "cooldown_minutes" in patch:
            cooldown = _finite_number("cooldown_minutes", patch["cooldown_minutes"])
            if cooldown < 0:
                raise InvalidAlertConfigError("cooldown_minutes must not be negative")
            changes["cooldown_minutes"] = cooldown

        if "enabled" in patch:
            if not isinstance(patch["enabled"], bool):
                raise InvalidAlertConfigError("enabled must be true or false")
            changes["enabled"] = patch["enabled"]

        if "channels" in patch:
            changes["channels"] = _channel_tuple(patch["channels"])

        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "threshold": self.threshold,
            "window_minutes": self.window_minutes,
            "cooldown_minutes": self.cooldown_minutes,
            "enabled": self.enabled,
            "channels": [c.value for c in self.channels],
        }


# =============================================================================
# AlertState
# =============================================================================

@dataclass
class AlertState:
    """
    Cooldown clock for one rule type.

    Every breach of the type shares this clock, whatever caused it.
    """
    alert_type: AlertType
    last_triggered_at: Optional[datetime] = None
    trigger_count: int = 0

    def in_cooldown(self, cooldown_minutes: float, now: datetime) -> bool:
        if self.last_triggered_at is None:
            return False
        return now - self.last_triggered_at < timedelta(minutes=cooldown_minutes)

    def record_trigger(self, now: datetime) -> None:
        self.last_triggered_at = now
        self.trigger_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_triggered": self.last_triggered_at.isoformat() if self.last_triggered_at else None,
            "trigger_count": self.trigger_count,
        }


# =============================================================================
# AlertInstance
# =============================================================================

@dataclass(frozen=True)
class AlertInstance:
    """
    A fired alert.

    This is what channels deliver and what the history keeps.
    """
    id: str
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime
    threshold: float
    current_value: float
    details: Details = field(default_factory=dict)
    affected_entities: Tuple[str, ...] = ()
    suggested_actions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "threshold": self.threshold,
            "current_value": round(self.current_value, 4),
            "details": dict(self.details),
            "affected_entities": list(self.affected_entities),
            "suggested_actions": list(self.suggested_actions),
        }

    @classmethod
    def from_rule(
        cls,
        rule: AlertRule,
        current_value: float,
        message: str,
        timestamp: datetime,
        details: Optional[Details] = None,
        affected_entities: Iterable[str] = (),
        suggested_actions: Iterable[str] = (),
    ) -> "AlertInstance":
        return cls(
            id=f"alert_{uuid.uuid4().hex[:12]}",
            type=rule.type,
            severity=rule.severity,
            message=message,
            timestamp=timestamp,
            threshold=rule.threshold,
            current_value=float(current_value),
            details=dict(details or {}),
            affected_entities=tuple(affected_entities),
            suggested_actions=tuple(suggested_actions),
        )


# =============================================================================
# DeliveryAttempt
# =============================================================================

@dataclass(frozen=True)
class DeliveryAttempt:
    """One channel send for one alert"""
    alert_id: str
    alert_type: AlertType
    channel: ChannelType
    success: bool
    started_at: datetime
    duration_ms: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "alert_type": self.alert_type.value,
            "channel": self.channel.value,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }
