"""Named in-process publish/subscribe channels.

Application code publishes metric emissions on a named channel without
knowing who (if anyone) is listening. Subscribers are called synchronously,
in subscription order, at publish time.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

METRICS_CHANNEL_NAME = "workers-observability-metrics"

Subscriber = Callable[[Any, str], None]


@dataclass
class DiagnosticsChannelEvent:
    """A message published on a channel during an invocation.

    Attributes:
        channel: Name of the channel the message was published on.
        message: The published message (usually a mapping).
        timestamp: Publish time in epoch milliseconds.
    """

    channel: str
    message: Any
    timestamp: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiagnosticsChannelEvent:
        return cls(
            channel=data.get("channel", ""),
            message=data.get("message"),
            timestamp=data.get("timestamp", 0),
        )


class Channel:
    """A named broadcast channel."""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        """Register a callable receiving ``(message, channel_name)``."""
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """Remove a subscriber.

        Returns:
            True if the subscriber was registered, False otherwise.
        """
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                return False
            return True

    @property
    def has_subscribers(self) -> bool:
        return bool(self._subscribers)

    def publish(self, message: Any) -> None:
        """Deliver a message to every current subscriber.

        A failing subscriber is logged and does not prevent delivery to the
        others.
        """
        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(message, self.name)
            except Exception:
                logger.exception("Subscriber failed on channel '%s'", self.name)


_channels: dict[str, Channel] = {}
_registry_lock = threading.Lock()


def channel(name: str) -> Channel:
    """Return the process-wide channel registered under ``name``."""
    with _registry_lock:
        existing = _channels.get(name)
        if existing is None:
            existing = _channels[name] = Channel(name)
        return existing


@contextmanager
def capture_events(
    *names: str,
    clock: Callable[[], float] | None = None,
) -> Iterator[list[DiagnosticsChannelEvent]]:
    """Record every message published on the given channels.

    Used by hosts to attach an invocation's publications to its trace item::

        with capture_events(METRICS_CHANNEL_NAME) as events:
            handle_request()
        item = TraceItem(..., diagnostics_channel_events=events)

    Args:
        names: Channel names to record. Defaults to the metrics channel.
        clock: Returns the current time in epoch milliseconds.
    """
    if not names:
        names = (METRICS_CHANNEL_NAME,)
    if clock is None:
        clock = lambda: time.time() * 1000  # noqa: E731

    events: list[DiagnosticsChannelEvent] = []

    def record(message: Any, channel_name: str) -> None:
        events.append(
            DiagnosticsChannelEvent(
                channel=channel_name, message=message, timestamp=clock()
            )
        )

    channels = [channel(name) for name in names]
    for ch in channels:
        ch.subscribe(record)
    try:
        yield events
    finally:
        for ch in channels:
            ch.unsubscribe(record)
