"""
Rule Catalogue
Built-in alert rules: what each one reads from a snapshot, which way it
breaches, how it words the alert, and what it tells the operator to do.

Thresholds, cooldowns, severities and channels are defaults only; the
alert manager lets operators override them at runtime. The reading,
comparison and wording of a type cannot be changed.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Tuple

from metrics import MetricSnapshot

from .models import (
    AlertRule,
    AlertSeverity,
    AlertType,
    ChannelType,
    Comparison,
    Details,
)

CONSOLE = ChannelType.CONSOLE
EMAIL = ChannelType.EMAIL
SLACK = ChannelType.SLACK


@dataclass(frozen=True)
class Reading:
    """Scalar a rule compares, plus context for the alert"""
    value: float
    details: Details = field(default_factory=dict)
    affected: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleDefinition:
    type: AlertType
    comparison: Comparison
    read: Callable[[MetricSnapshot], Reading]
    message: str
    suggested_actions: Tuple[str, ...]
    default: AlertRule

    def format_message(self, value: float, threshold: float) -> str:
        return self.message.format(value=value, threshold=threshold)


# =============================================================================
# Readers
# =============================================================================

def _error_rate(s: MetricSnapshot) -> Reading:
    p = s.performance
    return Reading(p.error_rate, {
        "error_rate": p.error_rate,
        "total_requests": p.total_requests,
        "total_errors": p.total_errors,
    })


def _response_time(s: MetricSnapshot) -> Reading:
    p = s.performance
    return Reading(p.p95_response_time, {
        "p95_response_time": p.p95_response_time,
        "p99_response_time": p.p99_response_time,
        "average_response_time": p.average_response_time,
    })


def _memory(s: MetricSnapshot) -> Reading:
    return Reading(s.performance.memory_usage, {"memory_usage_mb": s.performance.memory_usage})


def _payment_failures(s: MetricSnapshot) -> Reading:
    b = s.business
    return Reading(b.payment_failure_rate, {
        "failure_rate": b.payment_failure_rate,
        "failed_payments": b.failed_payments,
        "successful_payments": b.successful_payments,
    })


def _webhook_success(s: MetricSnapshot) -> Reading:
    i = s.integration
    return Reading(i.callback_success_rate, {
        "success_rate": i.callback_success_rate,
        "callbacks_processed": i.callbacks_processed,
        "callbacks_failed": i.callbacks_failed,
        "latency_ms": i.callback_latency,
    })


def _churn(s: MetricSnapshot) -> Reading:
    b = s.business
    return Reading(b.churn_rate, {
        "churn_rate": b.churn_rate,
        "canceled_subscriptions": b.canceled_subscriptions,
        "total_subscriptions": b.total_subscriptions,
    })


def _revenue_drop(s: MetricSnapshot) -> Reading:
    return Reading(s.business.revenue_drop_rate, {
        "revenue_drop_rate": s.business.revenue_drop_rate,
        "total_revenue": s.business.total_revenue,
    })


def _counter(section: str, name: str) -> Callable[[MetricSnapshot], Reading]:
    def read(s: MetricSnapshot) -> Reading:
        value = getattr(getattr(s, section), name)
        return Reading(float(value), {name: value})
    return read


def _consecutive_failures(attr: str) -> Callable[[MetricSnapshot], Reading]:
    def read(s: MetricSnapshot) -> Reading:
        failures: Mapping[str, int] = getattr(s.integration, attr)
        failing = tuple(sorted(name for name, count in failures.items() if count > 0))
        worst = max(failures.values(), default=0)
        return Reading(float(worst), {"consecutive_failures": worst, "failing": list(failing)}, failing)
    return read


# =============================================================================
# Catalogue
# =============================================================================

def _rule(type_, severity, threshold, window, cooldown, channels) -> AlertRule:
    return AlertRule(
        type=type_,
        severity=severity,
        threshold=float(threshold),
        window_minutes=float(window),
        cooldown_minutes=float(cooldown),
        enabled=True,
        channels=tuple(channels),
    )


RULE_DEFINITIONS: Tuple[RuleDefinition, ...] = (
    RuleDefinition(
        type=AlertType.HIGH_ERROR_RATE,
        comparison=Comparison.ABOVE,
        read=_error_rate,
        message="Error rate is {value:.2f}%, exceeding threshold of {threshold:g}%",
        suggested_actions=(
            "Check application logs for recurring errors",
            "Verify database connectivity",
            "Check third-party service status",
        ),
        default=_rule(AlertType.HIGH_ERROR_RATE, AlertSeverity.HIGH, 5, 5, 15, [CONSOLE, SLACK]),
    ),
    RuleDefinition(
        type=AlertType.SLOW_RESPONSE_TIME,
        comparison=Comparison.ABOVE,
        read=_response_time,
        message="P95 response time is {value:.0f}ms, exceeding threshold of {threshold:g}ms",
        suggested_actions=(
            "Check database query performance",
            "Verify API endpoint optimization",
            "Check server resource usage",
        ),
        default=_rule(AlertType.SLOW_RESPONSE_TIME, AlertSeverity.MEDIUM, 2000, 5, 10, [CONSOLE]),
    ),
    RuleDefinition(
        type=AlertType.HIGH_MEMORY_USAGE,
        comparison=Comparison.ABOVE,
        read=_memory,
        message="Memory usage is {value:.2f}MB, exceeding threshold of {threshold:g}MB",
        suggested_actions=(
            "Check for memory leaks in application",
            "Review caching strategies",
            "Consider scaling server resources",
        ),
        default=_rule(AlertType.HIGH_MEMORY_USAGE, AlertSeverity.MEDIUM, 500, 10, 20, [CONSOLE]),
    ),
    RuleDefinition(
        type=AlertType.PAYMENT_FAILURES,
        comparison=Comparison.ABOVE,
        read=_payment_failures,
        message="Payment failure rate is {value:.2f}%, exceeding threshold of {threshold:g}%",
        suggested_actions=(
            "Check the payment provider dashboard for payment issues",
            "Verify payment method configurations",
            "Review declined payment reasons",
        ),
        default=_rule(AlertType.PAYMENT_FAILURES, AlertSeverity.CRITICAL, 15, 15, 30, [CONSOLE, SLACK, EMAIL]),
    ),
    RuleDefinition(
        type=AlertType.WEBHOOK_FAILURES,
        comparison=Comparison.BELOW,
        read=_webhook_success,
        message="Webhook success rate is {value:.2f}%, below threshold of {threshold:g}%",
        suggested_actions=(
            "Check webhook endpoint health",
            "Verify webhook signature validation",
            "Review the provider's webhook delivery logs",
        ),
        default=_rule(AlertType.WEBHOOK_FAILURES, AlertSeverity.HIGH, 90, 10, 20, [CONSOLE, SLACK]),
    ),
    RuleDefinition(
        type=AlertType.HIGH_CHURN_RATE,
        comparison=Comparison.ABOVE,
        read=_churn,
        message="Churn rate is {value:.2f}%, exceeding threshold of {threshold:g}%",
        suggested_actions=(
            "Review recent cancellation reasons",
            "Check for billing or onboarding regressions",
            "Reach out to recently canceled subscribers",
        ),
        default=_rule(AlertType.HIGH_CHURN_RATE, AlertSeverity.HIGH, 10, 60, 240, [CONSOLE, EMAIL]),
    ),
    RuleDefinition(
        type=AlertType.REVENUE_DROP,
        comparison=Comparison.ABOVE,
        read=_revenue_drop,
        message="Revenue dropped {value:.2f}% against the previous window, exceeding threshold of {threshold:g}%",
        suggested_actions=(
            "Check checkout and payment flows end to end",
            "Compare payment volume with the provider dashboard",
            "Look for pricing or plan configuration changes",
        ),
        default=_rule(AlertType.REVENUE_DROP, AlertSeverity.CRITICAL, 20, 120, 480, [CONSOLE, EMAIL, SLACK]),
    ),
    RuleDefinition(
        type=AlertType.SUSPICIOUS_ACTIVITY,
        comparison=Comparison.ABOVE,
        read=_counter("security", "suspicious_requests"),
        message="Detected {value:.0f} suspicious requests, exceeding threshold of {threshold:g}",
        suggested_actions=(
            "Review security logs for patterns",
            "Check IP addresses for blocking",
            "Verify rate limiting configuration",
        ),
        default=_rule(AlertType.SUSPICIOUS_ACTIVITY, AlertSeverity.HIGH, 10, 5, 15, [CONSOLE, SLACK]),
    ),
    RuleDefinition(
        type=AlertType.MULTIPLE_AUTH_FAILURES,
        comparison=Comparison.ABOVE,
        read=_counter("security", "authentication_failures"),
        message="Detected {value:.0f} authentication failures, exceeding threshold of {threshold:g}",
        suggested_actions=(
            "Check for brute force attacks",
            "Review authentication logs",
            "Consider implementing account lockouts",
        ),
        default=_rule(AlertType.MULTIPLE_AUTH_FAILURES, AlertSeverity.MEDIUM, 20, 10, 30, [CONSOLE]),
    ),
    RuleDefinition(
        type=AlertType.RATE_LIMIT_EXCEEDED,
        comparison=Comparison.ABOVE,
        read=_counter("security", "rate_limit_hits"),
        message="Rate limit exceeded {value:.0f} times, exceeding threshold of {threshold:g}",
        suggested_actions=(
            "Review rate limiting thresholds",
            "Check for legitimate high-usage patterns",
            "Consider adjusting rate limits",
        ),
        default=_rule(AlertType.RATE_LIMIT_EXCEEDED, AlertSeverity.MEDIUM, 50, 5, 15, [CONSOLE]),
    ),
    RuleDefinition(
        type=AlertType.DATABASE_CONNECTION_ISSUES,
        comparison=Comparison.AT_LEAST,
        read=_consecutive_failures("dependency_failures"),
        message="Dependency checks failed {value:.0f} times in a row (threshold {threshold:g})",
        suggested_actions=(
            "Check database and cache connectivity",
            "Verify connection pool limits",
            "Review recent infrastructure changes",
        ),
        default=_rule(AlertType.DATABASE_CONNECTION_ISSUES, AlertSeverity.CRITICAL, 1, 1, 5, [CONSOLE, SLACK, EMAIL]),
    ),
    RuleDefinition(
        type=AlertType.THIRD_PARTY_SERVICE_DOWN,
        comparison=Comparison.AT_LEAST,
        read=_consecutive_failures("third_party_failures"),
        message="Third-party service checks failed {value:.0f} times in a row (threshold {threshold:g})",
        suggested_actions=(
            "Check the provider's status page",
            "Verify API credentials and quotas",
            "Enable fallbacks or degrade the affected feature",
        ),
        default=_rule(AlertType.THIRD_PARTY_SERVICE_DOWN, AlertSeverity.HIGH, 3, 5, 20, [CONSOLE, SLACK]),
    ),
)

DEFINITIONS_BY_TYPE: Dict[AlertType, RuleDefinition] = {d.type: d for d in RULE_DEFINITIONS}


def default_rules() -> Dict[AlertType, AlertRule]:
    """Fresh rule table in declaration order"""
    return {d.type: d.default for d in RULE_DEFINITIONS}
