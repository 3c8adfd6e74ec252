"""Fan-out delivery of flushed data to sinks.

Every sink receives the same payload concurrently. Each sink's outcome is
recorded on its own; failures are logged together and never raised, since
flushes run detached from the call that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

STREAM_METHODS = {
    "metrics": "send_metrics",
    "logs": "send_logs",
}


@dataclass
class SinkResult:
    """Result of delivering one flush to one sink."""

    sink_name: str
    success: bool
    error: str | None = None
    duration_ms: int | None = None


def sink_name(sink: Any) -> str:
    return getattr(sink, "name", None) or type(sink).__name__


class Dispatcher:
    """Sends flushed payloads to every sink of one stream."""

    def __init__(self, stream: str, sinks: Sequence[Any]):
        """Initialize the dispatcher.

        Args:
            stream: "metrics" or "logs"; selects the sink send method.
            sinks: The sinks to deliver to.

        Raises:
            ValueError: If the stream is unknown or a sink cannot receive it.
        """
        if stream not in STREAM_METHODS:
            raise ValueError(
                f"Unknown stream '{stream}'. Valid streams are: "
                f"{', '.join(sorted(STREAM_METHODS))}"
            )
        method = STREAM_METHODS[stream]
        for sink in sinks:
            if not callable(getattr(sink, method, None)):
                raise ValueError(f"Sink '{sink_name(sink)}' has no {method}() method")

        self.stream = stream
        self.sinks = list(sinks)
        self._method = method

    async def dispatch(self, payload: list[Any]) -> list[SinkResult]:
        """Deliver a payload to all sinks concurrently.

        Args:
            payload: Exported metrics or trace items. Sinks must not mutate it.

        Returns:
            One result per sink, in sink order.
        """
        try:
            results = await asyncio.gather(
                *(self._deliver(sink, payload) for sink in self.sinks)
            )
        except Exception as e:
            logger.error("Error flushing %s batch: %s", self.stream, e, exc_info=True)
            return []

        self._log_results(len(payload), results)
        return results

    async def _deliver(self, sink: Any, payload: list[Any]) -> SinkResult:
        """Send to a single sink and record the outcome."""
        name = sink_name(sink)
        start = time.monotonic()
        try:
            await getattr(sink, self._method)(payload)
        except Exception as e:
            return SinkResult(
                sink_name=name,
                success=False,
                error=str(e) or type(e).__name__,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        return SinkResult(
            sink_name=name,
            success=True,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def _log_results(self, size: int, results: list[SinkResult]) -> None:
        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success]

        if succeeded:
            logger.debug(
                "Flushed %d %s to %d sink(s) successfully.",
                size,
                self.stream,
                len(succeeded),
            )
        if failed:
            errors = ", ".join(f"{r.sink_name}: {r.error}" for r in failed)
            logger.error(
                "Failed to flush %d %s to %d sink(s): %s",
                size,
                self.stream,
                len(failed),
                errors,
            )
