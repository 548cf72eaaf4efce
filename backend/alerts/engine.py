"""
Alert Manager
Evaluates the rule table against metrics snapshots and dispatches fired
alerts to their channels.

- One cooldown clock per rule type, checked and set under one lock
- Bounded alert history and delivery log
- Channel sends run concurrently, each with its own timeout

Usage:
    manager = AlertManager(collector, channels=build_channels(settings))
    fired = await manager.evaluate()
    manager.update_alert_config("payment_failures", {"threshold": 10})
"""

import asyncio
import logging
import threading
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from metrics import MetricsCollector, MetricSnapshot

from .channels import AlertChannel, ConsoleChannel
from .models import (
    AlertInstance,
    AlertRule,
    AlertState,
    AlertType,
    ChannelType,
    DeliveryAttempt,
    Details,
    parse_alert_type,
)
from .rules import DEFINITIONS_BY_TYPE, RULE_DEFINITIONS, RuleDefinition, default_rules

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertManager:
    """
    Evaluates the rule table against collector snapshots.

    Rules are evaluated in catalogue order and one failing rule never stops
    the rest. Each fired alert is dispatched as its own task.
    """

    def __init__(
        self,
        collector: MetricsCollector,
        channels: Optional[Mapping[ChannelType, AlertChannel]] = None,
        rules: Optional[Iterable[AlertRule]] = None,
        history_size: int = 1000,
        channel_timeout: float = 5.0,
        delivery_log_size: int = 1000,
    ):
        self._collector = collector
        self._channels: Dict[ChannelType, AlertChannel] = dict(
            channels if channels is not None else {ChannelType.CONSOLE: ConsoleChannel()}
        )
        self._channel_timeout = channel_timeout

        self._lock = threading.Lock()
        self._rules: Dict[AlertType, AlertRule] = default_rules()
        for rule in rules or ():
            self._rules[rule.type] = rule
        self._states: Dict[AlertType, AlertState] = {t: AlertState(alert_type=t) for t in self._rules}
        self._history: Deque[AlertInstance] = deque(maxlen=history_size)
        self._deliveries: Deque[DeliveryAttempt] = deque(maxlen=delivery_log_size)
        self._pending: Set[asyncio.Task] = set()
        self._stats: Dict[str, Any] = {
            "evaluations": 0,
            "evaluation_failures": 0,
            "rule_errors": 0,
            "triggers": 0,
            "suppressed": 0,
            "last_evaluation_at": None,
            "last_success_at": None,
        }

    @classmethod
    def from_settings(
        cls,
        collector: MetricsCollector,
        settings,
        channels: Optional[Mapping[ChannelType, AlertChannel]] = None,
    ) -> "AlertManager":
        return cls(
            collector,
            channels=channels,
            history_size=settings.alert_history_size,
            channel_timeout=settings.channel_timeout_seconds,
        )

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def evaluate(
        self,
        snapshot: Optional[MetricSnapshot] = None,
        now: Optional[datetime] = None
    ) -> List[AlertInstance]:
        """
        One evaluation pass.

        If no snapshot is given one is taken from the collector; if that
        fails the pass is skipped (no alerts from partial data) and the next
        tick tries again.

        Returns the alerts fired in this pass. Their dispatch is scheduled
        but not awaited; use drain() to wait for it.
        """
        now = now or utcnow()
        with self._lock:
            self._stats["evaluations"] += 1
            self._stats["last_evaluation_at"] = now

        if snapshot is None:
            try:
                snapshot = self._collector.get_snapshot()
            except Exception:
                logger.exception("Skipping alert evaluation: could not read metrics snapshot")
                with self._lock:
                    self._stats["evaluation_failures"] += 1
                return []

        fired = []
        for rule in self.get_all_alert_configs():
            if not rule.enabled:
                continue
            try:
                alert = self._evaluate_rule(rule, DEFINITIONS_BY_TYPE[rule.type], snapshot, now)
            except Exception:
                logger.exception("Error evaluating alert rule %s", rule.type.value)
                with self._lock:
                    self._stats["rule_errors"] += 1
                continue

            if alert:
                fired.append(alert)
                self._schedule_dispatch(alert, rule.channels)

        with self._lock:
            self._stats["last_success_at"] = now
        return fired

    def _evaluate_rule(
        self,
        rule: AlertRule,
        definition: RuleDefinition,
        snapshot: MetricSnapshot,
        now: datetime
    ) -> Optional[AlertInstance]:
        reading = definition.read(snapshot)
        if not definition.comparison.breached(reading.value, rule.threshold):
            return None

        return self._trigger(
            rule.type,
            current_value=reading.value,
            message=definition.format_message(reading.value, rule.threshold),
            details={**reading.details, "threshold": rule.threshold},
            affected=reading.affected,
            suggested_actions=definition.suggested_actions,
            now=now,
        )

    def _trigger(
        self,
        alert_type: AlertType,
        current_value: float,
        message: str,
        details: Details,
        affected: Sequence[str],
        suggested_actions: Sequence[str],
        now: datetime,
    ) -> Optional[AlertInstance]:
        """Check-and-set the cooldown and record the alert, atomically"""
        with self._lock:
            rule = self._rules[alert_type]
            if not rule.enabled:
                return None

            state = self._states[alert_type]
            if state.in_cooldown(rule.cooldown_minutes, now):
                self._stats["suppressed"] += 1
                return None

            alert = AlertInstance.from_rule(
                rule,
                current_value=current_value,
                message=message,
                timestamp=now,
                details=details,
                affected_entities=affected,
                suggested_actions=suggested_actions,
            )
            state.record_trigger(now)
            self._history.append(alert)
            self._stats["triggers"] += 1

        logger.warning(
            "Alert fired: %s [%s] %s", alert.type.value, alert.severity.value, alert.message
        )
        return alert

    async def trigger_manual_alert(
        self,
        alert_type,
        message: str,
        details: Optional[Details] = None,
        now: Optional[datetime] = None,
    ) -> Optional[AlertInstance]:
        """
        Operator-raised alert for a rule type.

        Skips the threshold check but still honours the enabled flag and
        the cooldown. Returns None when suppressed.
        """
        rule = self.get_alert_config(alert_type)
        alert = self._trigger(
            rule.type,
            current_value=1.0,
            message=message,
            details=dict(details or {}),
            affected=(),
            suggested_actions=(),
            now=now or utcnow(),
        )
        if alert:
            self._schedule_dispatch(alert, self.get_alert_config(rule.type).channels)
        return alert

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _schedule_dispatch(self, alert: AlertInstance, channels: Sequence[ChannelType]) -> None:
        if not channels:
            return
        task = asyncio.get_running_loop().create_task(self.dispatch(alert, channels))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def dispatch(self, alert: AlertInstance, channels: Sequence[ChannelType]) -> List[DeliveryAttempt]:
        """Attempt every channel concurrently; settle all, raise nothing"""
        results = await asyncio.gather(
            *(self._deliver(alert, channel) for channel in channels),
            return_exceptions=True,
        )
        attempts = [r for r in results if isinstance(r, DeliveryAttempt)]
        delivered = sum(1 for a in attempts if a.success)
        logger.info("Alert %s (%s) sent via %d/%d channels", alert.id, alert.type.value, delivered, len(channels))
        return attempts

    async def _deliver(self, alert: AlertInstance, channel_type: ChannelType) -> DeliveryAttempt:
        started_at = utcnow()
        start = time.perf_counter()
        error = None

        channel = self._channels.get(channel_type)
        if channel is None:
            error = "channel not configured"
            logger.warning("No %s channel configured for %s alert", channel_type.value, alert.type.value)
        else:
            try:
                await asyncio.wait_for(channel.send(alert), timeout=self._channel_timeout)
            except asyncio.TimeoutError:
                error = f"timed out after {self._channel_timeout:g}s"
                logger.warning("Timed out sending %s alert via %s", alert.type.value, channel_type.value)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.warning(
                    "Failed to send %s alert via %s: %s", alert.type.value, channel_type.value, error,
                    exc_info=True,
                )

        attempt = DeliveryAttempt(
            alert_id=alert.id,
            alert_type=alert.type,
            channel=channel_type,
            success=error is None,
            started_at=started_at,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=error,
        )
        with self._lock:
            self._deliveries.append(attempt)
        return attempt

    async def drain(self) -> None:
        """Wait for in-flight dispatches started on the current loop"""
        loop = asyncio.get_running_loop()
        pending = [t for t in list(self._pending) if t.get_loop() is loop]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_alert_history(self, hours: float = 24, now: Optional[datetime] = None) -> List[AlertInstance]:
        """Alerts newer than the trailing window, oldest first"""
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        with self._lock:
            return [a for a in self._history if a.timestamp > cutoff]

    def get_alert_stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        with self._lock:
            history = list(self._history)
        for alert in history:
            by_type[alert.type.value] = by_type.get(alert.type.value, 0) + 1
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1
        return {
            "total_alerts": len(history),
            "by_type": by_type,
            "by_severity": by_severity,
        }

    def get_delivery_attempts(self, limit: int = 50) -> List[DeliveryAttempt]:
        """Most recent first"""
        with self._lock:
            attempts = list(self._deliveries)
        attempts.reverse()
        return attempts[:limit]

    def get_rule_state(self, alert_type) -> AlertState:
        key = parse_alert_type(alert_type)
        with self._lock:
            state = self._states[key]
            return AlertState(state.alert_type, state.last_triggered_at, state.trigger_count)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            enabled = sum(1 for r in self._rules.values() if r.enabled)
            history_size = len(self._history)
        for key in ("last_evaluation_at", "last_success_at"):
            stats[key] = stats[key].isoformat() if stats[key] else None
        return {
            **stats,
            "rules_count": len(self._rules),
            "enabled_rules": enabled,
            "history_size": history_size,
            "in_flight_dispatches": len(self._pending),
            "channels": [c.value for c in self._channels],
        }

    @property
    def last_success_at(self) -> Optional[datetime]:
        with self._lock:
            return self._stats["last_success_at"]

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_alert_config(self, alert_type) -> AlertRule:
        key = parse_alert_type(alert_type)
        with self._lock:
            return self._rules[key]

    def get_all_alert_configs(self) -> List[AlertRule]:
        """Rules in evaluation order"""
        with self._lock:
            return [self._rules[d.type] for d in RULE_DEFINITIONS if d.type in self._rules]

    def update_alert_config(self, alert_type, patch: Mapping[str, Any]) -> AlertRule:
        """
        Replace a rule with a patched copy.

        Raises:
            UnknownAlertTypeError: no such rule
            InvalidAlertConfigError: patch rejected, rule unchanged
        """
        key = parse_alert_type(alert_type)
        with self._lock:
            updated = self._rules[key].apply(patch)
            self._rules[key] = updated
        logger.info("Alert rule %s updated: %s", key.value, dict(patch))
        return updated

    def enable_rule(self, alert_type) -> AlertRule:
        return self.update_alert_config(alert_type, {"enabled": True})

    def disable_rule(self, alert_type) -> AlertRule:
        return self.update_alert_config(alert_type, {"enabled": False})

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def reset_states(self) -> None:
        """Forget all cooldowns"""
        with self._lock:
            for alert_type in self._states:
                self._states[alert_type] = AlertState(alert_type=alert_type)
