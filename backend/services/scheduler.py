"""
Monitoring Scheduler
Drives alert evaluation and the daily counter reset on fixed intervals.

Both timers run on a private asyncio loop in a daemon thread, so slow
channel dispatches never share a loop with request handling.

Usage:
    scheduler = MonitoringScheduler(manager, collector, evaluation_interval=60)
    scheduler.start()
    ...
    scheduler.stop()
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from alerts import AlertManager
from metrics import MetricsCollector

logger = logging.getLogger(__name__)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


@dataclass
class SchedulerStats:
    """Scheduler statistics"""
    is_running: bool = False
    evaluation_ticks: int = 0
    alerts_fired: int = 0
    resets: int = 0
    errors: int = 0
    started_at: Optional[datetime] = None
    last_tick_at: Optional[datetime] = None
    last_reset_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "evaluation_ticks": self.evaluation_ticks,
            "alerts_fired": self.alerts_fired,
            "resets": self.resets,
            "errors": self.errors,
            "started_at": _iso(self.started_at),
            "last_tick_at": _iso(self.last_tick_at),
            "last_reset_at": _iso(self.last_reset_at),
            "uptime_seconds": (datetime.now(timezone.utc) - self.started_at).total_seconds() if self.started_at else 0,
        }


class MonitoringScheduler:
    """
    Periodic evaluation and reset timers.

    Each timer waits on the stop event with its interval as timeout, so
    stop() ends both loops without waiting out a full interval. In-flight
    alert dispatches are abandoned at shutdown.
    """

    def __init__(
        self,
        manager: AlertManager,
        collector: MetricsCollector,
        evaluation_interval: float = 60.0,
        reset_interval: float = 24 * 60 * 60,
    ):
        self._manager = manager
        self._collector = collector
        self.evaluation_interval = evaluation_interval
        self.reset_interval = reset_interval

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stats = SchedulerStats()

    @classmethod
    def from_settings(cls, manager: AlertManager, collector: MetricsCollector, settings) -> "MonitoringScheduler":
        return cls(
            manager,
            collector,
            evaluation_interval=settings.evaluation_interval_seconds,
            reset_interval=settings.reset_interval_seconds,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    def start(self) -> Dict[str, Any]:
        if self._running:
            return {"status": "already_running"}

        self._stats = SchedulerStats(is_running=True, started_at=datetime.now(timezone.utc))
        self._running = True
        self._thread = threading.Thread(target=self._run_async_loop, name="monitoring-scheduler", daemon=True)
        self._thread.start()

        logger.info(
            "Monitoring scheduler started (evaluation every %gs, reset every %gs)",
            self.evaluation_interval, self.reset_interval,
        )
        return {"status": "started"}

    def stop(self, timeout: float = 5.0) -> Dict[str, Any]:
        if not self._running:
            return {"status": "not_running"}

        self._running = False
        self._stats.is_running = False
        if self._loop and self._stop_event:
            try:
                self._loop.call_soon_threadsafe(self._stop_event.set)
            except RuntimeError:
                # loop already closed
                pass
        if self._thread:
            self._thread.join(timeout)

        logger.info("Monitoring scheduler stopped")
        return {"status": "stopped", "evaluation_ticks": self._stats.evaluation_ticks}

    def _run_async_loop(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_timers())
        except Exception:
            self._stats.errors += 1
            logger.exception("Monitoring scheduler loop crashed")
        finally:
            self._loop.close()
            self._running = False
            self._stats.is_running = False

    async def _run_timers(self) -> None:
        self._stop_event = asyncio.Event()
        if not self._running:
            return
        await asyncio.gather(
            self._every(self.evaluation_interval, self.run_evaluation_tick),
            self._every(self.reset_interval, self.run_daily_reset),
        )

    async def _every(self, interval: float, job: Callable[[], Awaitable[None]]) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            await job()

    async def run_evaluation_tick(self) -> None:
        """One alert evaluation; errors are logged and counted, never raised"""
        try:
            fired = await self._manager.evaluate()
        except Exception:
            self._stats.errors += 1
            logger.exception("Alert evaluation tick failed")
            return
        self._stats.evaluation_ticks += 1
        self._stats.alerts_fired += len(fired)
        self._stats.last_tick_at = datetime.now(timezone.utc)

    async def run_daily_reset(self) -> None:
        try:
            self._collector.reset_daily_counters()
        except Exception:
            self._stats.errors += 1
            logger.exception("Daily metrics reset failed")
            return
        self._stats.resets += 1
        self._stats.last_reset_at = datetime.now(timezone.utc)
