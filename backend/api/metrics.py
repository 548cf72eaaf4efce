"""
Metrics API
Read the collector and feed it events from services that are not
instrumented in-process.

Endpoints:
    GET    /api/metrics                         → Full metrics snapshot
    GET    /api/metrics/health                  → Health score and issues
    GET    /api/metrics/routes                  → Per-route request/error counts
    POST   /api/metrics/events/business         → Record a business event
    POST   /api/metrics/events/security         → Record a security event
    POST   /api/metrics/events/integration      → Record an integration callback
    POST   /api/metrics/events/dependency       → Record a dependency check
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional

from metrics import (
    BusinessEventKind,
    MetricsCollector,
    SecurityEventKind,
    parse_business_kind,
    parse_security_kind,
)

from .deps import get_collector

router = APIRouter(prefix="/metrics", tags=["Metrics"])


# =============================================================================
# Request Models
# =============================================================================

class BusinessEventRequest(BaseModel):
    """Request body for a business event"""
    kind: str  # subscription_created, subscription_canceled, payment_succeeded, payment_failed, plan_upgraded
    plan_id: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0)

    model_config = {
        "json_schema_extra": {
            "example": {"kind": "payment_succeeded", "plan_id": "pro", "amount": 49.0}
        }
    }


class SecurityEventRequest(BaseModel):
    kind: str  # rate_limit_hit, suspicious_request, validation_failure, signature_failure, auth_failure


class IntegrationCallbackRequest(BaseModel):
    """Request body for a processed inbound callback"""
    kind: str
    processing_time_ms: float = Field(ge=0)
    succeeded: bool


class DependencyCheckRequest(BaseModel):
    name: str = Field(min_length=1)
    healthy: bool
    third_party: bool = False


# =============================================================================
# Reads
# =============================================================================

@router.get("")
async def get_metrics(collector: MetricsCollector = Depends(get_collector)):
    """Current snapshot of performance, business, security and integration metrics"""
    return collector.get_all_metrics()


@router.get("/health")
async def get_health(collector: MetricsCollector = Depends(get_collector)):
    """
    Composite health score.

    Returns:
        status (healthy / warning / critical), score 0-100, issues
    """
    return collector.get_health_status().to_dict()


@router.get("/routes")
async def get_route_stats(collector: MetricsCollector = Depends(get_collector)):
    return {"routes": collector.route_stats()}


# =============================================================================
# Events
# =============================================================================

@router.post("/events/business")
async def record_business_event(
    request: BusinessEventRequest,
    collector: MetricsCollector = Depends(get_collector),
):
    kind = parse_business_kind(request.kind)
    if kind is None:
        valid = ", ".join(k.value for k in BusinessEventKind)
        raise HTTPException(400, f"Invalid business event: {request.kind}. Use: {valid}")

    collector.record_business_event(kind, plan_id=request.plan_id, amount=request.amount)
    return {"message": "Business event recorded", "kind": kind.value}


@router.post("/events/security")
async def record_security_event(
    request: SecurityEventRequest,
    collector: MetricsCollector = Depends(get_collector),
):
    kind = parse_security_kind(request.kind)
    if kind is None:
        valid = ", ".join(k.value for k in SecurityEventKind)
        raise HTTPException(400, f"Invalid security event: {request.kind}. Use: {valid}")

    collector.record_security_event(kind)
    return {"message": "Security event recorded", "kind": kind.value}


@router.post("/events/integration")
async def record_integration_callback(
    request: IntegrationCallbackRequest,
    collector: MetricsCollector = Depends(get_collector),
):
    collector.record_integration_callback(request.kind, request.processing_time_ms, request.succeeded)
    return {"message": "Integration callback recorded", "kind": request.kind}


@router.post("/events/dependency")
async def record_dependency_check(
    request: DependencyCheckRequest,
    collector: MetricsCollector = Depends(get_collector),
):
    collector.record_dependency_check(request.name, request.healthy, third_party=request.third_party)
    return {"message": "Dependency check recorded", "name": request.name}
