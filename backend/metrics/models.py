"""
Metric Models
The read-side contract between the collector and everything that consumes it.

A MetricSnapshot is frozen: the alert manager, the health check and the API
all see the same immutable copy of collector state.
"""

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer
from typing import Annotated, Dict, List, Literal, Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType


# =============================================================================
# Event Kinds
# =============================================================================

class BusinessEventKind(str, Enum):
    """Business occurrences reported by checkout and billing code"""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PLAN_UPGRADED = "plan_upgraded"


class SecurityEventKind(str, Enum):
    """Security occurrences, counted per day"""
    RATE_LIMIT_HIT = "rate_limit_hit"
    SUSPICIOUS_REQUEST = "suspicious_request"
    VALIDATION_FAILURE = "validation_failure"
    SIGNATURE_FAILURE = "signature_failure"
    AUTH_FAILURE = "auth_failure"


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


# =============================================================================
# Snapshot Sections
# =============================================================================

# Read-only view of a name -> count table; serialized as a plain dict
Counts = Annotated[
    Mapping[str, int],
    AfterValidator(lambda v: MappingProxyType(dict(v))),
    PlainSerializer(dict, return_type=Dict[str, int]),
]


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)


class PerformanceMetrics(_Section):
    """Request latency and throughput. Durations in ms, memory in MB."""
    average_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    requests_per_minute: float = 0.0
    error_rate: float = Field(default=0.0, ge=0, le=100)
    memory_usage: float = 0.0
    total_requests: int = 0
    total_errors: int = 0
    sample_count: int = 0


class BusinessMetrics(_Section):
    total_subscriptions: int = 0
    active_subscriptions: int = 0
    canceled_subscriptions: int = 0
    churn_rate: float = Field(default=0.0, ge=0, le=100)
    upgrades: int = 0
    upgrade_rate: float = Field(default=0.0, ge=0, le=100)
    successful_payments: int = 0
    failed_payments: int = 0
    payment_failure_rate: float = Field(default=0.0, ge=0, le=100)
    plan_users: Counts = Field(default_factory=dict)
    total_revenue: float = 0.0
    average_revenue_per_user: float = 0.0
    revenue_drop_rate: float = Field(default=0.0, ge=0, le=100)


class SecurityMetrics(_Section):
    """Daily counters, zeroed by the reset timer"""
    rate_limit_hits: int = 0
    suspicious_requests: int = 0
    validation_failures: int = 0
    signature_failures: int = 0
    authentication_failures: int = 0


class IntegrationMetrics(_Section):
    """
    Async callbacks from the billing provider and dependency checks.

    dependency_failures / third_party_failures map a dependency name to
    its count of consecutive failed checks (0 once it recovers).
    """
    callback_success_rate: float = Field(default=100.0, ge=0, le=100)
    callback_latency: float = 0.0
    callbacks_processed: int = 0
    callbacks_failed: int = 0
    callbacks_by_kind: Counts = Field(default_factory=dict)
    dependency_failures: Counts = Field(default_factory=dict)
    third_party_failures: Counts = Field(default_factory=dict)


# =============================================================================
# MetricSnapshot
# =============================================================================

class MetricSnapshot(_Section):
    """
    Point-in-time read of all collector state.

    Built by MetricsCollector.get_snapshot(); never shares containers with
    the live collector.
    """
    performance: PerformanceMetrics
    business: BusinessMetrics
    security: SecurityMetrics
    integration: IntegrationMetrics
    timestamp: datetime

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["timestamp"] = self.timestamp.isoformat()
        return data


class HealthReport(_Section):
    status: Literal["healthy", "warning", "critical"]
    score: int = Field(..., ge=0, le=100)
    issues: List[str] = Field(default_factory=list)

    def to_dict(self) -> dict:
        return self.model_dump()
