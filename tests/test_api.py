import pytest
from fastapi.testclient import TestClient

from config import MonitorSettings
from main import create_app
from metrics import UNMATCHED_ROUTE


@pytest.fixture
def app():
    return create_app(MonitorSettings(_env_file=None, scheduler_enabled=False))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["name"] == "Ops Monitor API"


def test_health(client):
    data = client.get("/health").json()

    assert data["status"] == "healthy"
    assert data["score"] == 100
    assert data["evaluation"] == {"last_success_at": None, "stale": False}
    assert data["scheduler"]["is_running"] is False


def test_components_live_on_app_state(app):
    assert app.state.alert_manager is not None
    assert app.state.collector is not None
    assert not app.state.scheduler.is_running


# =============================================================================
# Metrics
# =============================================================================

def test_requests_are_recorded_by_route_template(client, app):
    client.get("/api/alerts/rules/high_error_rate")
    client.get("/api/alerts/rules/nope")

    routes = app.state.collector.route_stats()
    assert routes["GET:/api/alerts/rules/{alert_type}"] == {"requests": 2, "errors": 1}


def test_unmatched_paths_share_one_counter(client, app):
    for i in range(200):
        assert client.get(f"/scan/{i}/wp-login.php").status_code == 404

    routes = app.state.collector.route_stats()
    unmatched = [key for key in routes if key.endswith(UNMATCHED_ROUTE)]
    assert unmatched == [f"GET:{UNMATCHED_ROUTE}"]
    assert routes[f"GET:{UNMATCHED_ROUTE}"] == {"requests": 200, "errors": 200}
    assert len(routes) < 5


def test_wrong_method_is_recorded_under_route_template(client, app):
    assert client.delete("/api/alerts/rules/high_error_rate").status_code == 405

    routes = app.state.collector.route_stats()
    assert routes["DELETE:/api/alerts/rules/{alert_type}"] == {"requests": 1, "errors": 1}


def test_business_event_roundtrip(client):
    response = client.post("/api/metrics/events/business", json={"kind": "payment-failed"})
    assert response.status_code == 200
    assert response.json()["kind"] == "payment_failed"

    business = client.get("/api/metrics").json()["business"]
    assert business["failed_payments"] == 1
    assert business["payment_failure_rate"] == 100.0


def test_unknown_event_kind_is_rejected(client):
    response = client.post("/api/metrics/events/business", json={"kind": "refund"})
    assert response.status_code == 400
    assert "subscription_created" in response.json()["detail"]

    response = client.post("/api/metrics/events/security", json={"kind": "alien"})
    assert response.status_code == 400


def test_negative_amount_fails_validation(client):
    response = client.post("/api/metrics/events/business", json={"kind": "payment_succeeded", "amount": -1})

    assert response.status_code == 422


def test_security_integration_and_dependency_events(client):
    client.post("/api/metrics/events/security", json={"kind": "auth_failure"})
    client.post(
        "/api/metrics/events/integration",
        json={"kind": "invoice.paid", "processing_time_ms": 120, "succeeded": False},
    )
    client.post("/api/metrics/events/dependency", json={"name": "postgres", "healthy": False})

    data = client.get("/api/metrics").json()
    assert data["security"]["authentication_failures"] == 1
    assert data["integration"]["callback_success_rate"] == pytest.approx(99.5)
    assert data["integration"]["dependency_failures"] == {"postgres": 1}
    assert "timestamp" in data


def test_metrics_health_endpoint(client):
    for _ in range(20):
        client.post("/api/metrics/events/security", json={"kind": "suspicious_request"})

    data = client.get("/api/metrics/health").json()
    assert data["score"] == 85
    assert data["status"] == "warning"
    assert data["issues"] == ["Suspicious activity detected: 20 requests"]


# =============================================================================
# Alerts
# =============================================================================

def test_list_and_get_rules(client):
    data = client.get("/api/alerts/rules").json()
    assert data["count"] == 12

    data = client.get("/api/alerts/rules/webhook_failures").json()
    assert data["rule"]["threshold"] == 90.0
    assert data["state"] == {"last_triggered": None, "trigger_count": 0}


def test_unknown_rule_is_404(client):
    assert client.get("/api/alerts/rules/cpu_on_fire").status_code == 404
    assert client.patch("/api/alerts/rules/cpu_on_fire", json={"threshold": 1}).status_code == 404
    assert client.post("/api/alerts/rules/cpu_on_fire/enable").status_code == 404


def test_patch_rule(client):
    response = client.patch("/api/alerts/rules/high_error_rate", json={"threshold": 2.5, "channels": ["console"]})

    assert response.status_code == 200
    rule = response.json()["rule"]
    assert rule["threshold"] == 2.5
    assert rule["channels"] == ["console"]


def test_invalid_patch_is_400_and_keeps_rule(client):
    response = client.patch("/api/alerts/rules/high_error_rate", json={"threshold": -3})
    assert response.status_code == 400

    response = client.patch("/api/alerts/rules/high_error_rate", json={})
    assert response.status_code == 400

    rule = client.get("/api/alerts/rules/high_error_rate").json()["rule"]
    assert rule["threshold"] == 5.0


def test_enable_disable(client):
    assert client.post("/api/alerts/rules/revenue_drop/disable").json()["rule"]["enabled"] is False
    assert client.post("/api/alerts/rules/revenue_drop/enable").json()["rule"]["enabled"] is True


def test_evaluate_fires_and_delivers(client):
    for _ in range(20):
        client.post("/api/metrics/events/business", json={"kind": "payment_failed"})

    data = client.post("/api/alerts/evaluate").json()
    assert data["count"] == 1
    assert data["fired"][0]["type"] == "payment_failures"

    deliveries = client.get("/api/alerts/deliveries").json()["deliveries"]
    by_channel = {d["channel"]: d for d in deliveries}
    assert by_channel["console"]["success"] is True
    assert by_channel["slack"]["error"] == "channel not configured"
    assert by_channel["email"]["success"] is False

    assert client.post("/api/alerts/evaluate").json()["count"] == 0

    status = client.get("/api/alerts/status").json()
    assert status["evaluations"] == 2
    assert status["triggers"] == 1
    assert status["channels"] == ["console"]

    health = client.get("/health").json()
    assert health["evaluation"]["last_success_at"] is not None


def test_manual_trigger_and_history(client):
    payload = {"type": "suspicious_activity", "message": "Credential stuffing from 10.0.0.0/8"}

    first = client.post("/api/alerts/trigger", json=payload).json()
    second = client.post("/api/alerts/trigger", json=payload).json()

    assert first["triggered"] is True
    assert first["alert"]["message"] == payload["message"]
    assert second["triggered"] is False

    history = client.get("/api/alerts/history", params={"hours": 1}).json()
    assert history["count"] == 1

    stats = client.get("/api/alerts/stats").json()
    assert stats == {"total_alerts": 1, "by_type": {"suspicious_activity": 1}, "by_severity": {"high": 1}}


def test_trigger_unknown_type_is_404(client):
    response = client.post("/api/alerts/trigger", json={"type": "cpu_on_fire", "message": "x"})

    assert response.status_code == 404


def test_history_rejects_bad_window(client):
    assert client.get("/api/alerts/history", params={"hours": 0}).status_code == 422
