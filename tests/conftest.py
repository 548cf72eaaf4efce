import asyncio
from datetime import datetime, timezone
from typing import List

import pytest

from alerts import AlertChannel, AlertInstance, AlertManager, ChannelDeliveryError, ChannelType
from metrics import MetricsCollector

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: float = T0.timestamp()):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingChannel(AlertChannel):
    def __init__(self, channel_type: ChannelType):
        self.channel_type = channel_type
        self.sent: List[AlertInstance] = []

    async def send(self, alert: AlertInstance) -> None:
        self.sent.append(alert)


class FailingChannel(AlertChannel):
    def __init__(self, channel_type: ChannelType):
        self.channel_type = channel_type
        self.calls = 0

    async def send(self, alert: AlertInstance) -> None:
        self.calls += 1
        raise ChannelDeliveryError("sink unavailable")


class SlowChannel(AlertChannel):
    def __init__(self, channel_type: ChannelType, delay: float = 5.0):
        self.channel_type = channel_type
        self.delay = delay

    async def send(self, alert: AlertInstance) -> None:
        await asyncio.sleep(self.delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collector(clock):
    return MetricsCollector(clock=clock, memory_probe=lambda: 100.0)


@pytest.fixture
def channels():
    return {
        ChannelType.CONSOLE: RecordingChannel(ChannelType.CONSOLE),
        ChannelType.SLACK: RecordingChannel(ChannelType.SLACK),
        ChannelType.EMAIL: RecordingChannel(ChannelType.EMAIL),
    }


@pytest.fixture
def manager(collector, channels):
    return AlertManager(collector, channels=channels, channel_timeout=0.5)
