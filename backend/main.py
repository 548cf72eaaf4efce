"""
Ops Monitor API
Application factory: wires the collector, alert manager, channels and
scheduler onto app.state and mounts the routers.

Usage:
    uvicorn main:app --port 8000
    # or, with explicit settings
    app = create_app(MonitorSettings(scheduler_enabled=False))
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from alerts import AlertManager, build_channels
from api import alerts_router, metrics_router
from config import MonitorSettings, configure_logging, get_settings
from metrics import MetricsCollector, install_request_metrics
from services import MonitoringScheduler

logger = logging.getLogger(__name__)

APP_NAME = "Ops Monitor API"
APP_VERSION = "1.0.0"

# Evaluation counts as stale after this many missed intervals
STALE_AFTER_INTERVALS = 3


def create_app(settings: Optional[MonitorSettings] = None) -> FastAPI:
    settings = settings or get_settings()

    collector = MetricsCollector.from_settings(settings)
    manager = AlertManager.from_settings(collector, settings, channels=build_channels(settings))
    scheduler = MonitoringScheduler.from_settings(manager, collector, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        if settings.scheduler_enabled:
            scheduler.start()
        else:
            logger.info("Scheduler disabled; alerts are evaluated only on demand")
        yield
        if scheduler.is_running:
            scheduler.stop()

    app = FastAPI(
        title=APP_NAME,
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
    )
    app.state.settings = settings
    app.state.collector = collector
    app.state.alert_manager = manager
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_request_metrics(app, lambda: app.state.collector)

    app.include_router(metrics_router, prefix="/api")
    app.include_router(alerts_router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "name": APP_NAME,
            "version": APP_VERSION,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health(request: Request):
        state = request.app.state
        report = state.collector.get_health_status()
        last_success = state.alert_manager.last_success_at
        max_age = timedelta(seconds=state.settings.evaluation_interval_seconds * STALE_AFTER_INTERVALS)

        # Only meaningful while something is evaluating on a schedule
        stale = bool(
            state.scheduler.is_running
            and (last_success is None or datetime.now(timezone.utc) - last_success > max_age)
            and state.scheduler.stats.started_at is not None
            and datetime.now(timezone.utc) - state.scheduler.stats.started_at > max_age
        )

        return {
            **report.to_dict(),
            "evaluation": {
                "last_success_at": last_success.isoformat() if last_success else None,
                "stale": stale,
            },
            "scheduler": state.scheduler.stats.to_dict(),
            "collector": state.collector.stats(),
        }

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    uvicorn.run("main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
