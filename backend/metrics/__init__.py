"""
Metrics Module
Runtime metrics collection for the instrumented application.

Exports:
    Models: MetricSnapshot, PerformanceMetrics, BusinessMetrics,
            SecurityMetrics, IntegrationMetrics, HealthReport
    Kinds: BusinessEventKind, SecurityEventKind, HealthState
    Collector: MetricsCollector, assess_health
    Buffer: LatencyBuffer, RevenueLog, discrete_percentile
"""

from .models import (
    BusinessEventKind,
    SecurityEventKind,
    HealthState,
    PerformanceMetrics,
    BusinessMetrics,
    SecurityMetrics,
    IntegrationMetrics,
    MetricSnapshot,
    HealthReport,
)

from .collector import (
    MetricsCollector,
    assess_health,
    parse_business_kind,
    parse_security_kind,
    process_memory_mb,
)
from .buffer import LatencyBuffer, LatencySummary, RevenueLog, discrete_percentile, summarize
from .middleware import UNMATCHED_ROUTE, install_request_metrics, route_template

__all__ = [
    # Models
    "BusinessEventKind",
    "SecurityEventKind",
    "HealthState",
    "PerformanceMetrics",
    "BusinessMetrics",
    "SecurityMetrics",
    "IntegrationMetrics",
    "MetricSnapshot",
    "HealthReport",
    # Collector
    "MetricsCollector",
    "assess_health",
    "parse_business_kind",
    "parse_security_kind",
    "process_memory_mb",
    # Buffer
    "LatencyBuffer",
    "LatencySummary",
    "RevenueLog",
    "discrete_percentile",
    "summarize",
    # Middleware
    "UNMATCHED_ROUTE",
    "install_request_metrics",
    "route_template",
]
