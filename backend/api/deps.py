"""
Request Dependencies
Components are created by the app factory and stored on app.state.
"""

from fastapi import Request

from alerts import AlertManager
from metrics import MetricsCollector
from services import MonitoringScheduler


def get_collector(request: Request) -> MetricsCollector:
    return request.app.state.collector


def get_alert_manager(request: Request) -> AlertManager:
    return request.app.state.alert_manager


def get_scheduler(request: Request) -> MonitoringScheduler:
    return request.app.state.scheduler
