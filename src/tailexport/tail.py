"""Buffered tails for the metrics and logs streams.

Each tail buffers incoming trace items (logs) or the metrics extracted from
them (metrics) and decides per batch whether to flush now or later:

- buffer at or over ``max_buffer_size``: flush immediately;
- otherwise, if no flush timer is armed: arm one for ``max_buffer_duration``;
- otherwise: coalesce into the armed timer.

A flush id guards against double flushing. Arming a timer and every
immediate flush advance it; a timer only flushes if the id it captured is
still current when it wakes.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from tailexport.background import BackgroundTasks
from tailexport.dispatch import Dispatcher, SinkResult
from tailexport.metrics.extractors import extract_all
from tailexport.metrics.store import MetricsStore, to_export_form
from tailexport.trace import TraceItem, TraceItemBuffer

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_SIZE = 25
DEFAULT_MAX_BUFFER_DURATION = 5.0
MAX_BUFFER_DURATION_CEILING = 30.0

Sleep = Callable[[float], Awaitable[Any]]


def clamp_duration(duration: float | None) -> float:
    """Apply the default and the safety ceiling to a buffer duration."""
    if not duration or duration <= 0:
        duration = DEFAULT_MAX_BUFFER_DURATION
    return min(float(duration), MAX_BUFFER_DURATION_CEILING)


def as_trace_items(items: Sequence[TraceItem | dict[str, Any]]) -> list[TraceItem]:
    return [i if isinstance(i, TraceItem) else TraceItem.from_dict(i) for i in items]


class BufferedTail(ABC):
    """Buffering scheduler shared by the metrics and logs tails."""

    stream: str = ""

    def __init__(
        self,
        sinks: Sequence[Any],
        max_buffer_size: int | None = None,
        max_buffer_duration: float | None = None,
        sleep: Sleep | None = None,
    ):
        """Initialize the tail.

        Args:
            sinks: Sinks receiving every flush.
            max_buffer_size: Buffered count that triggers an immediate flush.
            max_buffer_duration: Seconds before a timed flush; clamped to
                MAX_BUFFER_DURATION_CEILING.
            sleep: Coroutine function used to wait for the timer.
        """
        self.dispatcher = Dispatcher(self.stream, sinks)
        self.max_buffer_size = max_buffer_size or DEFAULT_MAX_BUFFER_SIZE
        self.max_buffer_duration = clamp_duration(max_buffer_duration)
        self._sleep = sleep or asyncio.sleep
        self._flush_id = 0
        self._flush_scheduled = False

    @property
    def flush_id(self) -> int:
        return self._flush_id

    @property
    def flush_scheduled(self) -> bool:
        return self._flush_scheduled

    @abstractmethod
    def _ingest(self, items: list[TraceItem]) -> None:
        """Add a batch to the buffer."""

    @abstractmethod
    def buffered_count(self) -> int:
        """Count compared against ``max_buffer_size``."""

    @abstractmethod
    def _take(self) -> list[Any]:
        """Snapshot the buffer into a sink payload and clear it."""

    def process_trace_items(
        self,
        items: Sequence[TraceItem | dict[str, Any]],
        ctx: BackgroundTasks,
    ) -> None:
        """Buffer a batch and schedule or trigger a flush.

        Never raises because of flush work: flushing runs in ``ctx``.
        """
        self._ingest(as_trace_items(items))

        if self.buffered_count() >= self.max_buffer_size:
            # Any armed timer now holds a stale id and will no-op
            self._flush_id += 1
            ctx.wait_until(self._send(self._take_snapshot()))
            return

        if self._flush_scheduled:
            return

        if self.buffered_count() > 0:
            self._flush_scheduled = True
            self._flush_id += 1
            ctx.wait_until(self._scheduled_flush(self._flush_id))

    async def _scheduled_flush(self, flush_id: int) -> None:
        try:
            await self._sleep(self.max_buffer_duration)
            if flush_id == self._flush_id:
                await self.flush()
        except Exception as e:
            if flush_id == self._flush_id:
                # Treat as a missed flush so the next batch arms a new timer
                self._flush_scheduled = False
            logger.debug("Scheduled %s flush %d failed: %s", self.stream, flush_id, e)

    def _take_snapshot(self) -> list[Any]:
        # Disarm and snapshot in one synchronous step, before any await
        self._flush_scheduled = False
        return self._take()

    async def _send(self, payload: list[Any]) -> list[SinkResult]:
        if not payload:
            return []
        return await self.dispatcher.dispatch(payload)

    async def flush(self) -> list[SinkResult]:
        """Snapshot the buffer and send it to every sink.

        Returns:
            Per-sink results; empty when there was nothing to send.
        """
        return await self._send(self._take_snapshot())


class MetricsTail(BufferedTail):
    """Aggregates metrics from trace items and flushes them to metric sinks."""

    stream = "metrics"

    def __init__(self, sinks: Sequence[Any], **kwargs: Any):
        super().__init__(sinks, **kwargs)
        self.store = MetricsStore()

    def _ingest(self, items: list[TraceItem]) -> None:
        self.store.merge_all(extract_all(items))

    def buffered_count(self) -> int:
        return self.store.count()

    def _take(self) -> list[Any]:
        return to_export_form(self.store.snapshot_and_clear())


class LogsTail(BufferedTail):
    """Buffers trace items and flushes them unchanged to log sinks."""

    stream = "logs"

    def __init__(self, sinks: Sequence[Any], **kwargs: Any):
        super().__init__(sinks, **kwargs)
        self.buffer = TraceItemBuffer()

    def _ingest(self, items: list[TraceItem]) -> None:
        self.buffer.store(items)

    def buffered_count(self) -> int:
        return self.buffer.count()

    def _take(self) -> list[Any]:
        return self.buffer.snapshot_and_clear()


class TailExporter:
    """Entry point receiving trace item batches from the host runtime."""

    def __init__(
        self,
        metrics: MetricsTail | None = None,
        logs: LogsTail | None = None,
    ):
        self.metrics = metrics if metrics and metrics.dispatcher.sinks else None
        self.logs = logs if logs and logs.dispatcher.sinks else None

    def tail(
        self,
        items: Sequence[TraceItem | dict[str, Any]],
        ctx: BackgroundTasks,
    ) -> None:
        """Feed one batch to every enabled stream."""
        trace_items = as_trace_items(items)
        if self.metrics is not None:
            self.metrics.process_trace_items(trace_items, ctx)
        if self.logs is not None:
            self.logs.process_trace_items(trace_items, ctx)
