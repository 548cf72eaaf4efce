import dataclasses
from datetime import timedelta

import pytest

from alerts import (
    AlertManager,
    AlertSeverity,
    AlertType,
    ChannelType,
    InvalidAlertConfigError,
    UnknownAlertTypeError,
)
from alerts.rules import DEFINITIONS_BY_TYPE

from conftest import T0, FailingChannel, RecordingChannel, SlowChannel


def breach_error_rate(collector, errors=6, total=100):
    for i in range(total):
        collector.record_api_request("/api/orders", "GET", 50.0, 500 if i < errors else 200)


# =============================================================================
# End to end
# =============================================================================

@pytest.mark.asyncio
async def test_high_error_rate_fires_once(collector, manager, channels):
    breach_error_rate(collector)
    assert collector.get_snapshot().performance.error_rate == pytest.approx(6.0)

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    history = manager.get_alert_history(now=T0)
    assert [a.type for a in fired] == [AlertType.HIGH_ERROR_RATE]
    assert len(history) == 1
    alert = history[0]
    assert alert.type == AlertType.HIGH_ERROR_RATE
    assert alert.current_value == pytest.approx(6.0)
    assert alert.threshold == 5
    assert alert.severity == AlertSeverity.HIGH
    assert alert.message == "Error rate is 6.00%, exceeding threshold of 5%"
    assert alert.suggested_actions
    assert alert.details["total_errors"] == 6
    assert [a.id for a in channels[ChannelType.CONSOLE].sent] == [alert.id]
    assert [a.id for a in channels[ChannelType.SLACK].sent] == [alert.id]
    assert channels[ChannelType.EMAIL].sent == []


@pytest.mark.asyncio
async def test_payment_failures_fire_at_custom_threshold(collector, manager):
    manager.update_alert_config("payment_failures", {"threshold": 10})
    for _ in range(12):
        collector.record_business_event("payment_failed")
    for _ in range(88):
        collector.record_business_event("payment_succeeded", amount=20)

    assert collector.get_snapshot().business.payment_failure_rate == pytest.approx(12.0)

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    assert [a.type for a in fired] == [AlertType.PAYMENT_FAILURES]
    assert fired[0].current_value == pytest.approx(12.0)
    assert fired[0].severity == AlertSeverity.CRITICAL


@pytest.mark.asyncio
async def test_quiet_collector_fires_nothing(manager):
    assert await manager.evaluate(now=T0) == []
    assert manager.last_success_at == T0


# =============================================================================
# Cooldown
# =============================================================================

@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat(collector, manager):
    breach_error_rate(collector)

    await manager.evaluate(now=T0)
    await manager.evaluate(now=T0 + timedelta(minutes=10))
    await manager.drain()

    assert len(manager.get_alert_history(now=T0 + timedelta(minutes=10))) == 1
    assert manager.status()["suppressed"] == 1


@pytest.mark.asyncio
async def test_fires_again_after_cooldown(collector, manager):
    breach_error_rate(collector)

    await manager.evaluate(now=T0)
    await manager.evaluate(now=T0 + timedelta(minutes=16))
    await manager.drain()

    assert len(manager.get_alert_history(now=T0 + timedelta(minutes=16))) == 2
    assert manager.get_rule_state("high_error_rate").trigger_count == 2


@pytest.mark.asyncio
async def test_cooldown_boundary_is_inclusive(collector, manager):
    breach_error_rate(collector)

    await manager.evaluate(now=T0)
    await manager.evaluate(now=T0 + timedelta(minutes=15))
    await manager.drain()

    assert len(manager.get_alert_history(now=T0 + timedelta(minutes=15))) == 2


@pytest.mark.asyncio
async def test_reset_states_clears_cooldowns(collector, manager):
    breach_error_rate(collector)
    await manager.evaluate(now=T0)

    manager.reset_states()
    await manager.evaluate(now=T0 + timedelta(minutes=1))
    await manager.drain()

    assert len(manager.get_alert_history(now=T0 + timedelta(minutes=1))) == 2


# =============================================================================
# Rule behaviour
# =============================================================================

@pytest.mark.asyncio
async def test_disabled_rule_does_not_fire(collector, manager):
    manager.disable_rule(AlertType.HIGH_ERROR_RATE)
    breach_error_rate(collector)

    assert await manager.evaluate(now=T0) == []

    manager.enable_rule("high-error-rate")
    fired = await manager.evaluate(now=T0)
    await manager.drain()
    assert len(fired) == 1


@pytest.mark.asyncio
async def test_low_success_rate_fires_below_threshold(collector, manager):
    for _ in range(30):
        collector.record_integration_callback("invoice.paid", 40, False)

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    assert [a.type for a in fired] == [AlertType.WEBHOOK_FAILURES]
    assert fired[0].current_value == pytest.approx(85.0)
    assert "below threshold of 90%" in fired[0].message


@pytest.mark.asyncio
async def test_dependency_failure_names_affected_entities(collector, manager):
    collector.record_dependency_check("postgres", False)
    collector.record_dependency_check("redis", True)

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    assert [a.type for a in fired] == [AlertType.DATABASE_CONNECTION_ISSUES]
    assert fired[0].affected_entities == ("postgres",)


@pytest.mark.asyncio
async def test_rules_fire_in_catalogue_order(collector, manager):
    for _ in range(20):
        collector.record_business_event("payment_failed")
    breach_error_rate(collector)
    for _ in range(15):
        collector.record_security_event("suspicious_request")

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    assert [a.type for a in fired] == [
        AlertType.HIGH_ERROR_RATE,
        AlertType.PAYMENT_FAILURES,
        AlertType.SUSPICIOUS_ACTIVITY,
    ]


@pytest.mark.asyncio
async def test_failing_rule_does_not_stop_others(collector, manager, monkeypatch):
    def broken(snapshot):
        raise ZeroDivisionError("bad reader")

    definition = DEFINITIONS_BY_TYPE[AlertType.HIGH_ERROR_RATE]
    monkeypatch.setitem(DEFINITIONS_BY_TYPE, AlertType.HIGH_ERROR_RATE, dataclasses.replace(definition, read=broken))
    breach_error_rate(collector)
    for _ in range(20):
        collector.record_business_event("payment_failed")

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    assert [a.type for a in fired] == [AlertType.PAYMENT_FAILURES]
    assert manager.status()["rule_errors"] == 1
    assert manager.last_success_at == T0


@pytest.mark.asyncio
async def test_snapshot_failure_skips_tick(collector, manager, monkeypatch):
    def broken():
        raise RuntimeError("collector unavailable")

    monkeypatch.setattr(collector, "get_snapshot", broken)

    assert await manager.evaluate(now=T0) == []
    status = manager.status()
    assert status["evaluation_failures"] == 1
    assert status["last_success_at"] is None


# =============================================================================
# Dispatch
# =============================================================================

@pytest.mark.asyncio
async def test_failing_channel_does_not_block_others(collector):
    console = RecordingChannel(ChannelType.CONSOLE)
    slack = FailingChannel(ChannelType.SLACK)
    email = RecordingChannel(ChannelType.EMAIL)
    manager = AlertManager(
        collector,
        channels={ChannelType.CONSOLE: console, ChannelType.SLACK: slack, ChannelType.EMAIL: email},
    )
    manager.update_alert_config("high_error_rate", {"channels": ["console", "slack", "email"]})
    breach_error_rate(collector)
    for _ in range(20):
        collector.record_business_event("payment_failed")

    fired = await manager.evaluate(now=T0)
    await manager.drain()

    assert len(fired) == 2
    assert slack.calls == 2
    assert [a.type for a in console.sent] == [AlertType.HIGH_ERROR_RATE, AlertType.PAYMENT_FAILURES]
    assert [a.type for a in email.sent] == [AlertType.HIGH_ERROR_RATE, AlertType.PAYMENT_FAILURES]

    attempts = manager.get_delivery_attempts(limit=10)
    assert len(attempts) == 6
    failed = [a for a in attempts if not a.success]
    assert {a.channel for a in failed} == {ChannelType.SLACK}
    assert all(a.error == "sink unavailable" for a in failed)


@pytest.mark.asyncio
async def test_slow_channel_times_out(collector):
    console = RecordingChannel(ChannelType.CONSOLE)
    manager = AlertManager(
        collector,
        channels={ChannelType.CONSOLE: console, ChannelType.SLACK: SlowChannel(ChannelType.SLACK)},
        channel_timeout=0.05,
    )
    breach_error_rate(collector)

    await manager.evaluate(now=T0)
    await manager.drain()

    by_channel = {a.channel: a for a in manager.get_delivery_attempts()}
    assert by_channel[ChannelType.CONSOLE].success
    assert not by_channel[ChannelType.SLACK].success
    assert "timed out" in by_channel[ChannelType.SLACK].error


@pytest.mark.asyncio
async def test_unregistered_channel_is_a_failed_attempt(collector, manager):
    manager.update_alert_config("high_error_rate", {"channels": ["console", "sms"]})
    breach_error_rate(collector)

    await manager.evaluate(now=T0)
    await manager.drain()

    by_channel = {a.channel: a for a in manager.get_delivery_attempts()}
    assert by_channel[ChannelType.CONSOLE].success
    assert by_channel[ChannelType.SMS].error == "channel not configured"


# =============================================================================
# History and stats
# =============================================================================

@pytest.mark.asyncio
async def test_history_is_bounded(collector):
    manager = AlertManager(collector, channels={})
    manager.update_alert_config("suspicious_activity", {"cooldown_minutes": 0, "channels": []})

    for i in range(1005):
        await manager.trigger_manual_alert("suspicious_activity", f"probe {i}", now=T0)

    history = manager.get_alert_history(now=T0)
    assert len(history) == 1000
    assert history[0].message == "probe 5"
    assert history[-1].message == "probe 1004"


@pytest.mark.asyncio
async def test_history_window(manager):
    manager.update_alert_config("rate_limit_exceeded", {"cooldown_minutes": 0, "channels": []})
    await manager.trigger_manual_alert("rate_limit_exceeded", "old", now=T0 - timedelta(hours=30))
    await manager.trigger_manual_alert("rate_limit_exceeded", "recent", now=T0 - timedelta(hours=1))

    assert [a.message for a in manager.get_alert_history(hours=24, now=T0)] == ["recent"]
    assert len(manager.get_alert_history(hours=48, now=T0)) == 2


@pytest.mark.asyncio
async def test_alert_stats(collector, manager):
    breach_error_rate(collector)
    for _ in range(20):
        collector.record_business_event("payment_failed")
    await manager.evaluate(now=T0)
    await manager.drain()

    assert manager.get_alert_stats() == {
        "total_alerts": 2,
        "by_type": {"high_error_rate": 1, "payment_failures": 1},
        "by_severity": {"high": 1, "critical": 1},
    }

    manager.clear_history()
    assert manager.get_alert_stats()["total_alerts"] == 0


@pytest.mark.asyncio
async def test_manual_trigger_honours_cooldown_and_enabled(manager, channels):
    first = await manager.trigger_manual_alert("high_error_rate", "drill", {"source": "runbook"}, now=T0)
    second = await manager.trigger_manual_alert("high_error_rate", "drill again", now=T0)
    await manager.drain()

    assert first is not None
    assert first.details == {"source": "runbook"}
    assert second is None
    assert [a.message for a in channels[ChannelType.CONSOLE].sent] == ["drill"]

    manager.disable_rule("slow_response_time")
    assert await manager.trigger_manual_alert("slow_response_time", "x", now=T0) is None


@pytest.mark.asyncio
async def test_manual_trigger_unknown_type(manager):
    with pytest.raises(UnknownAlertTypeError):
        await manager.trigger_manual_alert("cpu_on_fire", "x")


# =============================================================================
# Configuration
# =============================================================================

def test_twelve_rules_in_order(manager):
    rules = manager.get_all_alert_configs()

    assert [r.type for r in rules] == list(AlertType)
    assert all(r.enabled for r in rules)


def test_update_replaces_rule(manager):
    updated = manager.update_alert_config(
        "high_error_rate",
        {"threshold": 3, "cooldown_minutes": 30, "severity": "critical", "channels": ["console", "console", "email"]},
    )

    assert manager.get_alert_config("high_error_rate") == updated
    assert updated.threshold == 3.0
    assert updated.cooldown_minutes == 30.0
    assert updated.severity == AlertSeverity.CRITICAL
    assert updated.channels == (ChannelType.CONSOLE, ChannelType.EMAIL)


@pytest.mark.parametrize("patch", [
    {"threshold": -1},
    {"threshold": "high"},
    {"threshold": float("inf")},
    {"cooldown_minutes": -5},
    {"window_minutes": 0},
    {"enabled": "yes"},
    {"severity": "urgent"},
    {"channels": ["pager"]},
    {"channels": "console"},
    {"name": "renamed"},
    {"threshold": 1, "severity": "urgent"},
])
def test_invalid_update_keeps_previous_rule(manager, patch):
    before = manager.get_alert_config("high_error_rate")

    with pytest.raises(InvalidAlertConfigError):
        manager.update_alert_config("high_error_rate", patch)

    assert manager.get_alert_config("high_error_rate") == before


def test_unknown_type(manager):
    with pytest.raises(UnknownAlertTypeError) as excinfo:
        manager.update_alert_config("cpu_on_fire", {"threshold": 1})

    assert isinstance(excinfo.value, KeyError)
    assert "cpu_on_fire" in str(excinfo.value)


def test_rule_to_dict(manager):
    assert manager.get_alert_config("revenue_drop").to_dict() == {
        "type": "revenue_drop",
        "severity": "critical",
        "threshold": 20.0,
        "window_minutes": 120.0,
        "cooldown_minutes": 480.0,
        "enabled": True,
        "channels": ["console", "email", "slack"],
    }


def test_engine_module_documents_usage():
    import alerts.engine

    doc = alerts.engine.__doc__
    assert doc.strip().startswith("Alert Manager")
    assert "Usage:" in doc
