"""Trace item model and the log stream's buffer.

A trace item describes one invocation of the monitored function: its
outcome, timings, console logs, uncaught exceptions and the messages it
published on diagnostics channels. The host runtime delivers them as JSON
with camelCase keys; ``TraceItem.from_dict`` also accepts snake_case.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from tailexport.channel import DiagnosticsChannelEvent

# Event payload key -> trigger name
TRIGGER_KEYS: tuple[tuple[str, str], ...] = (
    ("request", "http"),
    ("scheduled", "timer"),
    ("queue", "pubsub"),
    ("websocket", "websocket"),
    ("cron", "cron"),
    ("rpcMethod", "jsrpc"),
    ("mailFrom", "email"),
)


def _get(data: dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


@dataclass
class TraceLog:
    """A console log line captured during an invocation."""

    level: str
    message: list[Any]
    timestamp: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceLog:
        message = data.get("message", [])
        if not isinstance(message, list):
            message = [message]
        return cls(
            level=data.get("level", "info"),
            message=message,
            timestamp=data.get("timestamp", 0),
        )


@dataclass
class TraceException:
    """An uncaught exception captured during an invocation."""

    name: str
    message: str
    timestamp: float
    stack: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceException:
        return cls(
            name=data.get("name", "Error"),
            message=data.get("message", ""),
            timestamp=data.get("timestamp", 0),
            stack=data.get("stack"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {"name": self.name, "message": self.message, "timestamp": self.timestamp}
        if self.stack is not None:
            data["stack"] = self.stack
        return data


@dataclass
class TraceItem:
    """One invocation record.

    Attributes:
        script_name: Name of the invoked script.
        execution_model: "stateless" or "durableObject".
        outcome: Invocation outcome ("ok", "exception", ...).
        cpu_time: CPU time in milliseconds.
        wall_time: Wall time in milliseconds.
        event_timestamp: Invocation start in epoch milliseconds.
        event: Trigger-specific event information.
        entrypoint: Named entrypoint, if any.
        script_version: Version metadata; ``id`` is used for tagging.
        diagnostics_channel_events: Messages published during the invocation.
        logs: Console logs.
        exceptions: Uncaught exceptions.
        truncated: Whether the runtime truncated the record.
    """

    script_name: str | None = None
    execution_model: str | None = None
    outcome: str = "unknown"
    cpu_time: float = 0
    wall_time: float = 0
    event_timestamp: float | None = None
    event: dict[str, Any] | None = None
    entrypoint: str | None = None
    script_version: dict[str, Any] | None = None
    diagnostics_channel_events: list[DiagnosticsChannelEvent] = field(
        default_factory=list
    )
    logs: list[TraceLog] = field(default_factory=list)
    exceptions: list[TraceException] = field(default_factory=list)
    truncated: bool = False

    @property
    def version_id(self) -> str | None:
        if not self.script_version:
            return None
        return self.script_version.get("id")

    @property
    def trigger(self) -> str:
        """Trigger type derived from the shape of ``event``."""
        if not self.event:
            return "other"
        for key, trigger in TRIGGER_KEYS:
            if key in self.event:
                return trigger
        return "other"

    @property
    def request_headers(self) -> dict[str, Any]:
        request = (self.event or {}).get("request")
        if isinstance(request, dict) and isinstance(request.get("headers"), dict):
            return request["headers"]
        return {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceItem:
        """Create a TraceItem from the runtime's JSON form.

        Args:
            data: Dictionary with camelCase or snake_case keys.

        Returns:
            A TraceItem instance.
        """
        events = _get(data, "diagnosticsChannelEvents", "diagnostics_channel_events") or []
        return cls(
            script_name=_get(data, "scriptName", "script_name"),
            execution_model=_get(data, "executionModel", "execution_model"),
            outcome=data.get("outcome") or "unknown",
            cpu_time=_get(data, "cpuTime", "cpu_time") or 0,
            wall_time=_get(data, "wallTime", "wall_time") or 0,
            event_timestamp=_get(data, "eventTimestamp", "event_timestamp"),
            event=data.get("event"),
            entrypoint=data.get("entrypoint"),
            script_version=_get(data, "scriptVersion", "script_version"),
            diagnostics_channel_events=[
                DiagnosticsChannelEvent.from_dict(event) for event in events
            ],
            logs=[TraceLog.from_dict(log) for log in data.get("logs") or []],
            exceptions=[
                TraceException.from_dict(exc) for exc in data.get("exceptions") or []
            ],
            truncated=bool(data.get("truncated", False)),
        )


class TraceItemBuffer:
    """Ordered buffer of trace items awaiting a log flush."""

    def __init__(self) -> None:
        self._items: list[TraceItem] = []
        self._lock = threading.Lock()

    def store(self, items: Iterable[TraceItem]) -> None:
        with self._lock:
            self._items.extend(items)

    def snapshot_and_clear(self) -> list[TraceItem]:
        """Return buffered items and start a fresh buffer."""
        with self._lock:
            items, self._items = self._items, []
        return items

    def count(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return self.count()
