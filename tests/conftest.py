"""Shared fixtures for tailexport tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from tailexport.background import BackgroundTasks
from tailexport.channel import METRICS_CHANNEL_NAME, DiagnosticsChannelEvent
from tailexport.trace import TraceItem

EVENT_TIMESTAMP = 1_700_000_000_000


class RecordingSink:
    """Sink that keeps every payload it receives."""

    def __init__(self, name: str = "recording"):
        self.name = name
        self.batches: list[list[Any]] = []

    async def send_metrics(self, metrics: list[Any]) -> None:
        self.batches.append(list(metrics))

    async def send_logs(self, trace_items: list[Any]) -> None:
        self.batches.append(list(trace_items))

    @property
    def received(self) -> list[Any]:
        return [item for batch in self.batches for item in batch]


class FailingSink:
    """Sink whose sends always raise."""

    def __init__(self, name: str = "failing", message: str = "connection refused"):
        self.name = name
        self.message = message
        self.calls = 0

    async def send_metrics(self, metrics: list[Any]) -> None:
        self.calls += 1
        raise ConnectionError(self.message)

    async def send_logs(self, trace_items: list[Any]) -> None:
        self.calls += 1
        raise ConnectionError(self.message)


class ManualSleep:
    """Replacement for asyncio.sleep that only returns when released."""

    def __init__(self) -> None:
        self.waiters: list[tuple[float, asyncio.Future[None]]] = []

    async def __call__(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.waiters.append((seconds, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self.waiters if not future.done())

    def release_all(self) -> None:
        for _, future in self.waiters:
            if not future.done():
                future.set_result(None)


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run without waiting for timers."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def metric_event(
    name: str,
    value: Any = 1,
    metric_type: str = "COUNT",
    tags: dict[str, Any] | None = None,
    timestamp: float = EVENT_TIMESTAMP,
) -> DiagnosticsChannelEvent:
    """Create a metrics channel event."""
    return DiagnosticsChannelEvent(
        channel=METRICS_CHANNEL_NAME,
        message={"type": metric_type, "name": name, "value": value, "tags": tags or {}},
        timestamp=timestamp,
    )


def make_trace_item(
    events: list[DiagnosticsChannelEvent] | None = None,
    script_name: str = "test-worker",
    outcome: str = "ok",
    cpu_time: float = 150,
    wall_time: float = 200,
    event_timestamp: float | None = EVENT_TIMESTAMP,
    **kwargs: Any,
) -> TraceItem:
    """Create a test trace item."""
    return TraceItem(
        script_name=script_name,
        execution_model="stateless",
        outcome=outcome,
        cpu_time=cpu_time,
        wall_time=wall_time,
        event_timestamp=event_timestamp,
        event=kwargs.pop("event", {"request": {"url": "https://example.com/"}}),
        script_version=kwargs.pop("script_version", {"id": "v1"}),
        diagnostics_channel_events=events or [],
        **kwargs,
    )


@pytest.fixture
def ctx() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()
