"""
Alerts API
Endpoints for inspecting and tuning the built-in alert rules.

Endpoints:
    GET    /api/alerts/history              → Alerts fired in the last N hours
    GET    /api/alerts/stats                → Counts by type and severity
    GET    /api/alerts/rules                → List all rules
    GET    /api/alerts/rules/{type}         → Get one rule and its cooldown state
    PATCH  /api/alerts/rules/{type}         → Update threshold, cooldown, channels...
    POST   /api/alerts/rules/{type}/enable  → Enable rule
    POST   /api/alerts/rules/{type}/disable → Disable rule
    POST   /api/alerts/evaluate             → Run one evaluation now
    POST   /api/alerts/trigger              → Raise an alert by hand
    GET    /api/alerts/deliveries           → Recent channel delivery attempts
    GET    /api/alerts/status               → Manager counters
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from alerts import (
    AlertManager,
    InvalidAlertConfigError,
    UnknownAlertTypeError,
)

from .deps import get_alert_manager

router = APIRouter(prefix="/alerts", tags=["Alerts"])


# =============================================================================
# Request Models
# =============================================================================

class UpdateRuleRequest(BaseModel):
    """Partial rule update; omitted fields keep their current value"""
    severity: Optional[str] = None  # low, medium, high, critical
    threshold: Optional[float] = None
    window_minutes: Optional[float] = None
    cooldown_minutes: Optional[float] = None
    enabled: Optional[bool] = None
    channels: Optional[List[str]] = None  # console, email, slack, webhook, sms

    model_config = {
        "json_schema_extra": {
            "example": {"threshold": 3, "cooldown_minutes": 30, "channels": ["console", "slack"]}
        }
    }


class TriggerAlertRequest(BaseModel):
    type: str
    message: str = Field(min_length=1)
    details: Dict[str, Any] = {}


def _rule_or_404(manager: AlertManager, alert_type: str):
    try:
        return manager.get_alert_config(alert_type)
    except UnknownAlertTypeError as e:
        raise HTTPException(404, str(e))


def _update(manager: AlertManager, alert_type: str, patch: Dict[str, Any]):
    try:
        return manager.update_alert_config(alert_type, patch)
    except UnknownAlertTypeError as e:
        raise HTTPException(404, str(e))
    except InvalidAlertConfigError as e:
        raise HTTPException(400, str(e))


# =============================================================================
# History
# =============================================================================

@router.get("/history")
async def get_history(
    hours: float = Query(24, gt=0, le=24 * 30),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Alerts fired within the trailing window, oldest first"""
    alerts = manager.get_alert_history(hours=hours)
    return {
        "alerts": [a.to_dict() for a in alerts],
        "count": len(alerts),
        "hours": hours,
    }


@router.get("/stats")
async def get_stats(manager: AlertManager = Depends(get_alert_manager)):
    return manager.get_alert_stats()


# =============================================================================
# Rule Management
# =============================================================================

@router.get("/rules")
async def list_rules(manager: AlertManager = Depends(get_alert_manager)):
    """Get all alert rules in evaluation order"""
    rules = manager.get_all_alert_configs()
    return {
        "rules": [r.to_dict() for r in rules],
        "count": len(rules),
    }


@router.get("/rules/{alert_type}")
async def get_rule(alert_type: str, manager: AlertManager = Depends(get_alert_manager)):
    rule = _rule_or_404(manager, alert_type)
    return {
        "rule": rule.to_dict(),
        "state": manager.get_rule_state(rule.type).to_dict(),
    }


@router.patch("/rules/{alert_type}")
async def update_rule(
    alert_type: str,
    request: UpdateRuleRequest,
    manager: AlertManager = Depends(get_alert_manager),
):
    """
    Update a rule.

    The whole patch is validated before anything changes; a rejected
    patch leaves the rule as it was.
    """
    patch = request.model_dump(exclude_none=True)
    if not patch:
        raise HTTPException(400, "No fields to update")

    rule = _update(manager, alert_type, patch)
    return {"message": "Alert rule updated", "rule": rule.to_dict()}


@router.post("/rules/{alert_type}/enable")
async def enable_rule(alert_type: str, manager: AlertManager = Depends(get_alert_manager)):
    rule = _update(manager, alert_type, {"enabled": True})
    return {"message": "Rule enabled", "rule": rule.to_dict()}


@router.post("/rules/{alert_type}/disable")
async def disable_rule(alert_type: str, manager: AlertManager = Depends(get_alert_manager)):
    rule = _update(manager, alert_type, {"enabled": False})
    return {"message": "Rule disabled", "rule": rule.to_dict()}


# =============================================================================
# Operations
# =============================================================================

@router.post("/evaluate")
async def evaluate_now(manager: AlertManager = Depends(get_alert_manager)):
    """
    Run one evaluation pass against the current metrics.

    Waits for channel delivery so the response reflects what was sent.
    Cooldowns apply exactly as for scheduled ticks.
    """
    fired = await manager.evaluate()
    await manager.drain()
    return {
        "fired": [a.to_dict() for a in fired],
        "count": len(fired),
    }


@router.post("/trigger")
async def trigger_alert(request: TriggerAlertRequest, manager: AlertManager = Depends(get_alert_manager)):
    """Raise an alert for a rule type without a threshold check"""
    try:
        alert = await manager.trigger_manual_alert(request.type, request.message, request.details)
    except UnknownAlertTypeError as e:
        raise HTTPException(404, str(e))

    if alert is None:
        return {"triggered": False, "message": "Rule is disabled or in cooldown"}

    await manager.drain()
    return {"triggered": True, "alert": alert.to_dict()}


@router.get("/deliveries")
async def get_deliveries(
    limit: int = Query(50, ge=1, le=1000),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Most recent delivery attempts first"""
    attempts = manager.get_delivery_attempts(limit)
    return {
        "deliveries": [a.to_dict() for a in attempts],
        "count": len(attempts),
    }


@router.get("/status")
async def get_status(manager: AlertManager = Depends(get_alert_manager)):
    return manager.status()
