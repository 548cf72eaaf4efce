"""
Metrics Collector
Thread-safe accumulator for request, business, security and integration events.

Recording is on the hot path of every instrumented operation, so:
- record_* methods hold the lock only for O(1) counter/deque updates
- record_* methods never raise; bad input is clamped, bad kinds are ignored
- percentiles are computed on read, outside the lock, and cached until
  the next write

Usage:
    collector = MetricsCollector(buffer_size=10000)
    collector.record_api_request("/api/matches", "GET", 84.0, 200)
    collector.record_business_event("payment_failed")
    snapshot = collector.get_snapshot()
"""

import functools
import logging
import math
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

import psutil

from .buffer import LatencyBuffer, LatencySummary, RevenueLog, summarize
from .models import (
    BusinessEventKind,
    BusinessMetrics,
    HealthReport,
    HealthState,
    IntegrationMetrics,
    MetricSnapshot,
    PerformanceMetrics,
    SecurityEventKind,
    SecurityMetrics,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
MemoryProbe = Callable[[], float]
E = TypeVar("E", bound=Enum)

# Older event names still sent by some callers
_BUSINESS_ALIASES = {
    "payment_success": BusinessEventKind.PAYMENT_SUCCEEDED,
    "upgrade": BusinessEventKind.PLAN_UPGRADED,
}
_SECURITY_ALIASES = {
    "rate_limit": SecurityEventKind.RATE_LIMIT_HIT,
    "suspicious": SecurityEventKind.SUSPICIOUS_REQUEST,
    "validation": SecurityEventKind.VALIDATION_FAILURE,
    "webhook_sig": SecurityEventKind.SIGNATURE_FAILURE,
    "auth": SecurityEventKind.AUTH_FAILURE,
}
_SECURITY_FIELDS = {
    SecurityEventKind.RATE_LIMIT_HIT: "rate_limit_hits",
    SecurityEventKind.SUSPICIOUS_REQUEST: "suspicious_requests",
    SecurityEventKind.VALIDATION_FAILURE: "validation_failures",
    SecurityEventKind.SIGNATURE_FAILURE: "signature_failures",
    SecurityEventKind.AUTH_FAILURE: "authentication_failures",
}


def process_memory_mb() -> float:
    """Resident set size of this process in MB"""
    return psutil.Process().memory_info().rss / 1024 / 1024


def clean_number(value: Any, default: float = 0.0) -> float:
    """Finite, non-negative float or the default"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number < 0:
        return default
    return number


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


def coerce_kind(kind: Any, enum_cls: Type[E], aliases: Dict[str, E]) -> Optional[E]:
    """Accept enum members, values, aliases and hyphenated spellings"""
    if isinstance(kind, enum_cls):
        return kind
    if not isinstance(kind, str):
        return None
    key = kind.strip().lower().replace("-", "_")
    if key in aliases:
        return aliases[key]
    try:
        return enum_cls(key)
    except ValueError:
        return None


def parse_business_kind(kind: Any) -> Optional[BusinessEventKind]:
    return coerce_kind(kind, BusinessEventKind, _BUSINESS_ALIASES)


def parse_security_kind(kind: Any) -> Optional[SecurityEventKind]:
    return coerce_kind(kind, SecurityEventKind, _SECURITY_ALIASES)


def _never_raises(method):
    """Recording must not fail the operation it instruments."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            method(self, *args, **kwargs)
        except Exception:
            logger.exception("Metric recording failed in %s", method.__name__)

    return wrapper


# =============================================================================
# Health Check
# =============================================================================

def assess_health(snapshot: MetricSnapshot) -> HealthReport:
    """
    Composite 0-100 score from fixed penalties.

    >= 90 healthy, >= 70 warning, otherwise critical.
    """
    perf = snapshot.performance
    biz = snapshot.business
    sec = snapshot.security
    integ = snapshot.integration

    issues = []
    score = 100

    if perf.error_rate > 5:
        issues.append(f"High error rate: {perf.error_rate:.2f}%")
        score -= 20

    if perf.p95_response_time > 2000:
        issues.append(f"Slow response times: P95 {perf.p95_response_time:.0f}ms")
        score -= 15

    if biz.payment_failure_rate > 10:
        issues.append(f"High payment failure rate: {biz.payment_failure_rate:.2f}%")
        score -= 25

    if integ.callback_success_rate < 95:
        issues.append(f"Low webhook success rate: {integ.callback_success_rate:.2f}%")
        score -= 20

    if perf.memory_usage > 500:
        issues.append(f"High memory usage: {perf.memory_usage:.2f}MB")
        score -= 10

    if sec.suspicious_requests > 10:
        issues.append(f"Suspicious activity detected: {sec.suspicious_requests} requests")
        score -= 15

    score = max(0, score)
    if score >= 90:
        status = HealthState.HEALTHY
    elif score >= 70:
        status = HealthState.WARNING
    else:
        status = HealthState.CRITICAL

    return HealthReport(status=status.value, score=score, issues=issues)


# =============================================================================
# Collector
# =============================================================================

class MetricsCollector:
    def __init__(
        self,
        buffer_size: int = 10000,
        revenue_window_minutes: float = 120.0,
        initial_success_rate: float = 100.0,
        success_step: float = 0.1,
        failure_step: float = 0.5,
        latency_weight: float = 0.5,
        clock: Clock = time.time,
        memory_probe: MemoryProbe = process_memory_mb,
    ):
        self._lock = threading.Lock()
        self._clock = clock
        self._memory_probe = memory_probe

        self._success_step = success_step
        self._failure_step = failure_step
        self._latency_weight = latency_weight

        # Performance
        self._latencies = LatencyBuffer(maxlen=buffer_size)
        self._request_counts: Dict[str, int] = {}
        self._error_counts: Dict[str, int] = {}
        self._last_reset = clock()
        self._version = 0
        self._summary_cache: Tuple[int, LatencySummary] = (0, LatencySummary())

        # Business
        self._business = {
            "total_subscriptions": 0,
            "active_subscriptions": 0,
            "canceled_subscriptions": 0,
            "upgrades": 0,
            "successful_payments": 0,
            "failed_payments": 0,
            "total_revenue": 0.0,
        }
        self._plan_users: Dict[str, int] = {}
        self._revenue = RevenueLog(window_seconds=revenue_window_minutes * 60)

        # Security
        self._security = {name: 0 for name in _SECURITY_FIELDS.values()}

        # Integration
        self._success_rate = clamp_percent(initial_success_rate)
        self._callback_latency = 0.0
        self._callbacks_processed = 0
        self._callbacks_failed = 0
        self._callbacks_by_kind: Dict[str, int] = {}
        self._dependency_failures: Dict[str, int] = {}
        self._third_party_failures: Dict[str, int] = {}

        self._started_at = clock()

    @classmethod
    def from_settings(cls, settings, **overrides) -> "MetricsCollector":
        options = dict(
            buffer_size=settings.latency_buffer_size,
            revenue_window_minutes=settings.revenue_window_minutes,
            initial_success_rate=settings.integration_initial_success_rate,
            success_step=settings.integration_success_step,
            failure_step=settings.integration_failure_step,
            latency_weight=settings.integration_latency_weight,
        )
        options.update(overrides)
        return cls(**options)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    @_never_raises
    def record_api_request(
        self,
        endpoint: str,
        method: str,
        duration_ms: float,
        status_code: int
    ) -> None:
        key = f"{str(method).upper()}:{endpoint}"
        duration = clean_number(duration_ms)
        try:
            status = int(status_code)
        except (TypeError, ValueError):
            status = 0

        with self._lock:
            self._latencies.append(duration)
            self._request_counts[key] = self._request_counts.get(key, 0) + 1
            if status >= 400:
                self._error_counts[key] = self._error_counts.get(key, 0) + 1
            self._version += 1

    @_never_raises
    def record_business_event(
        self,
        kind,
        plan_id: Optional[str] = None,
        amount: Optional[float] = None
    ) -> None:
        event = parse_business_kind(kind)
        if event is None:
            logger.warning("Ignoring unknown business event kind: %r", kind)
            return

        plan = plan_id.strip().lower() if isinstance(plan_id, str) and plan_id.strip() else None
        value = clean_number(amount)
        biz = self._business

        with self._lock:
            if event == BusinessEventKind.SUBSCRIPTION_CREATED:
                biz["total_subscriptions"] += 1
                biz["active_subscriptions"] += 1
                if plan:
                    self._plan_users[plan] = self._plan_users.get(plan, 0) + 1

            elif event == BusinessEventKind.SUBSCRIPTION_CANCELED:
                biz["active_subscriptions"] = max(0, biz["active_subscriptions"] - 1)
                biz["canceled_subscriptions"] += 1
                if plan:
                    self._plan_users[plan] = max(0, self._plan_users.get(plan, 0) - 1)

            elif event == BusinessEventKind.PAYMENT_SUCCEEDED:
                biz["successful_payments"] += 1
                if value:
                    biz["total_revenue"] += value
                    self._revenue.append(self._clock(), value)

            elif event == BusinessEventKind.PAYMENT_FAILED:
                biz["failed_payments"] += 1

            elif event == BusinessEventKind.PLAN_UPGRADED:
                biz["upgrades"] += 1

    @_never_raises
    def record_security_event(self, kind) -> None:
        event = parse_security_kind(kind)
        if event is None:
            logger.warning("Ignoring unknown security event kind: %r", kind)
            return

        field = _SECURITY_FIELDS[event]
        with self._lock:
            self._security[field] += 1

    @_never_raises
    def record_integration_callback(
        self,
        kind: str,
        processing_time_ms: float,
        succeeded: bool
    ) -> None:
        """
        Nudge the rolling success rate and latency.

        Failures move the rate down faster than successes move it up, so a
        burst of failures is visible long before it is forgiven.
        """
        latency = clean_number(processing_time_ms)
        name = str(kind) if kind else "unknown"

        with self._lock:
            if self._callbacks_processed == 0:
                self._callback_latency = latency
            else:
                w = self._latency_weight
                self._callback_latency = (1 - w) * self._callback_latency + w * latency

            if succeeded:
                self._success_rate = min(100.0, self._success_rate + self._success_step)
            else:
                self._success_rate = max(0.0, self._success_rate - self._failure_step)
                self._callbacks_failed += 1

            self._callbacks_processed += 1
            self._callbacks_by_kind[name] = self._callbacks_by_kind.get(name, 0) + 1

    record_webhook_processed = record_integration_callback

    @_never_raises
    def record_dependency_check(
        self,
        name: str,
        healthy: bool,
        third_party: bool = False
    ) -> None:
        """Track consecutive failed checks per dependency; success resets to 0"""
        key = str(name).strip() or "unknown"
        with self._lock:
            failures = self._third_party_failures if third_party else self._dependency_failures
            failures[key] = 0 if healthy else failures.get(key, 0) + 1

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def get_snapshot(self) -> MetricSnapshot:
        """
        Consistent, immutable copy of all state.

        Raw state is copied under the lock; sorting for percentiles and the
        memory probe happen after it is released.
        """
        with self._lock:
            now = self._clock()
            version = self._version
            cached_version, cached_summary = self._summary_cache
            samples = None if cached_version == version and version else self._latencies.copy()
            total_requests = sum(self._request_counts.values())
            total_errors = sum(self._error_counts.values())
            elapsed_minutes = (now - self._last_reset) / 60
            business = dict(self._business)
            plan_users = dict(self._plan_users)
            revenue_drop = self._revenue.drop_rate(now)
            security = dict(self._security)
            integration = IntegrationMetrics(
                callback_success_rate=self._success_rate,
                callback_latency=self._callback_latency,
                callbacks_processed=self._callbacks_processed,
                callbacks_failed=self._callbacks_failed,
                callbacks_by_kind=dict(self._callbacks_by_kind),
                dependency_failures=dict(self._dependency_failures),
                third_party_failures=dict(self._third_party_failures),
            )

        if samples is None:
            summary = cached_summary
        else:
            summary = summarize(samples)
            with self._lock:
                if self._summary_cache[0] < version:
                    self._summary_cache = (version, summary)

        performance = PerformanceMetrics(
            average_response_time=summary.average,
            p95_response_time=summary.p95,
            p99_response_time=summary.p99,
            requests_per_minute=total_requests / elapsed_minutes if elapsed_minutes > 0 else 0.0,
            error_rate=clamp_percent(total_errors / total_requests * 100) if total_requests else 0.0,
            memory_usage=self._sample_memory(),
            total_requests=total_requests,
            total_errors=total_errors,
            sample_count=summary.count,
        )

        return MetricSnapshot(
            performance=performance,
            business=self._business_metrics(business, plan_users, revenue_drop),
            security=SecurityMetrics(**security),
            integration=integration,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
        )

    def _business_metrics(
        self,
        counts: Dict[str, Any],
        plan_users: Dict[str, int],
        revenue_drop: float
    ) -> BusinessMetrics:
        total_payments = counts["successful_payments"] + counts["failed_payments"]
        active = counts["active_subscriptions"]
        total = counts["total_subscriptions"]

        return BusinessMetrics(
            **counts,
            plan_users=plan_users,
            payment_failure_rate=clamp_percent(counts["failed_payments"] / total_payments * 100) if total_payments else 0.0,
            average_revenue_per_user=counts["total_revenue"] / active if active else 0.0,
            churn_rate=clamp_percent(counts["canceled_subscriptions"] / total * 100) if total else 0.0,
            upgrade_rate=clamp_percent(counts["upgrades"] / active * 100) if active else 0.0,
            revenue_drop_rate=revenue_drop,
        )

    def _sample_memory(self) -> float:
        try:
            return clean_number(self._memory_probe())
        except Exception:
            logger.warning("Memory probe failed", exc_info=True)
            return 0.0

    def get_all_metrics(self) -> Dict[str, Any]:
        return self.get_snapshot().to_dict()

    def get_health_status(self, snapshot: Optional[MetricSnapshot] = None) -> HealthReport:
        return assess_health(snapshot or self.get_snapshot())

    def route_stats(self) -> Dict[str, Dict[str, int]]:
        """Per METHOD:endpoint request and error counts since the last reset"""
        with self._lock:
            return {
                route: {"requests": count, "errors": self._error_counts.get(route, 0)}
                for route, count in self._request_counts.items()
            }

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def reset_daily_counters(self) -> None:
        """
        Zero day-scoped counters.

        Latency samples are kept; they age out of the ring on their own.
        """
        with self._lock:
            self._security = {name: 0 for name in _SECURITY_FIELDS.values()}
            self._request_counts.clear()
            self._error_counts.clear()
            self._last_reset = self._clock()
            self._version += 1

        logger.info("Daily metrics reset completed")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": round(self._clock() - self._started_at, 2),
                "latency_buffer": self._latencies.stats(),
                "routes": len(self._request_counts),
                "revenue_buckets": len(self._revenue),
                "last_reset": datetime.fromtimestamp(self._last_reset, tz=timezone.utc).isoformat(),
            }
