"""OTLP/HTTP JSON log sink.

Every trace item becomes one ``resourceLogs`` entry holding an invocation
record, one record per console log line and one per uncaught exception.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from typing import Any

import httpx

from tailexport import __version__
from tailexport.metrics.histogram import ms_to_nanos
from tailexport.sinks.base import DEFAULT_TIMEOUT, HttpSink, SinkError, format_attributes
from tailexport.sinks.otel_metrics import DEFAULT_SCOPE_NAME
from tailexport.trace import TraceItem

SEVERITY_NUMBERS = {
    "trace": 1,
    "debug": 5,
    "info": 9,
    "log": 9,
    "warn": 13,
    "warning": 13,
    "error": 17,
    "fatal": 21,
}
SEVERITY_INFO = 9
SEVERITY_FATAL = 21


def flatten(data: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings and lists into dotted keys."""
    result: dict[str, Any] = {}
    if isinstance(data, Mapping):
        items = [(str(k), v) for k, v in data.items()]
    elif isinstance(data, (list, tuple)):
        items = [(str(i), v) for i, v in enumerate(data)]
    else:
        return {prefix: data} if prefix else {}

    for key, value in items:
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, (Mapping, list, tuple)) and value:
            result.update(flatten(value, full_key))
        else:
            result[full_key] = value
    return result


def split_message(parts: list[Any]) -> tuple[str, dict[str, Any]]:
    """Split console arguments into a message and structured attributes.

    Strings and numbers are joined with spaces; mappings are merged into the
    attributes.
    """
    words: list[str] = []
    attributes: dict[str, Any] = {}
    for part in parts:
        if isinstance(part, (str, int, float)) and not isinstance(part, bool):
            words.append(str(part))
        elif isinstance(part, Mapping):
            attributes.update(part)
    return " ".join(words), attributes


def severity_number(level: str | None) -> int:
    if not level:
        return SEVERITY_INFO
    return SEVERITY_NUMBERS.get(level.lower(), SEVERITY_INFO)


class OtelLogSink(HttpSink):
    """Sends trace items to an OpenTelemetry collector as OTLP logs."""

    name = "otel-logs"

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        scope_name: str = DEFAULT_SCOPE_NAME,
        scope_version: str = __version__,
        invocation_log: bool = True,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the sink.

        Args:
            url: Collector base URL; "/v1/logs" is appended if missing.
            headers: Extra request headers.
            scope_name: Instrumentation scope name.
            scope_version: Instrumentation scope version.
            invocation_log: Emit one INFO record per invocation.
            client: Optional shared HTTP client.
            timeout: Request timeout in seconds.
        """
        super().__init__(client=client, timeout=timeout)
        self.url = url if url.endswith("/v1/logs") else f"{url.rstrip('/')}/v1/logs"
        self.headers = dict(headers or {})
        self.scope_name = scope_name
        self.scope_version = scope_version
        self.invocation_log = invocation_log

    async def send_logs(self, trace_items: list[TraceItem]) -> None:
        if not trace_items:
            return

        payload = self.build_payload(trace_items)
        try:
            await self.post_json(self.url, payload, headers=self.headers)
        except SinkError as e:
            raise SinkError(
                f"Failed to send logs to OTEL collector: {e}", e.status_code
            ) from e

    def build_payload(self, trace_items: list[TraceItem]) -> dict[str, Any]:
        """Build an ``ExportLogsServiceRequest``."""
        return {"resourceLogs": [self._resource_logs(item) for item in trace_items]}

    def _resource_logs(self, item: TraceItem) -> dict[str, Any]:
        request_id = item.request_headers.get("cf-ray") or uuid.uuid4().hex
        common = {
            "cpuTimeMs": item.cpu_time or 0,
            "wallTimeMs": item.wall_time or 0,
            "scriptVersion": item.version_id or "unknown",
            "scriptName": item.script_name or "unknown",
            "executionModel": item.execution_model or "unknown",
            "outcome": item.outcome,
            "entrypoint": item.entrypoint or "default",
            "request_id": request_id,
        }

        records: list[dict[str, Any]] = []
        if self.invocation_log:
            timestamp = item.event_timestamp
            if timestamp is None:
                # Host record without an invocation timestamp
                timestamp = time.time() * 1000
            records.append(
                {
                    "timeUnixNano": str(ms_to_nanos(timestamp)),
                    "severityNumber": SEVERITY_INFO,
                    "severityText": "INFO",
                    "body": {"stringValue": self.invocation_message(item)},
                    "attributes": format_attributes(
                        {
                            **flatten({"event": item.event or {}}),
                            **common,
                            "log_type": "invocation",
                        }
                    ),
                }
            )

        for log in item.logs:
            message, attributes = split_message(log.message)
            records.append(
                {
                    "timeUnixNano": str(ms_to_nanos(log.timestamp)),
                    "severityNumber": severity_number(log.level),
                    "severityText": (log.level or "info").upper(),
                    "body": {"stringValue": message},
                    "attributes": format_attributes({**flatten(attributes), **common}),
                }
            )

        for exc in item.exceptions:
            records.append(
                {
                    "timeUnixNano": str(ms_to_nanos(exc.timestamp)),
                    "severityNumber": SEVERITY_FATAL,
                    "severityText": "FATAL",
                    "body": {"stringValue": exc.message},
                    "attributes": format_attributes({**flatten(exc.to_dict()), **common}),
                }
            )

        return {
            "resource": {
                "attributes": format_attributes(
                    {
                        "cloud.provider": "Cloudflare",
                        "cloud.service": (
                            "Workers"
                            if item.execution_model == "stateless"
                            else "Durable Objects"
                        ),
                        "cloud.region": "earth",
                        "faas.name": item.script_name,
                        "service.name": item.script_name,
                        "faas.trigger": item.trigger,
                        "faas.version": item.version_id or "unknown",
                    }
                )
            },
            "scopeLogs": [
                {
                    "scope": {"name": self.scope_name, "version": self.scope_version},
                    "logRecords": records,
                }
            ],
        }

    @staticmethod
    def invocation_message(item: TraceItem) -> str:
        return (
            f"Invoked worker {item.script_name or 'unknown'} via {item.trigger} "
            f"with outcome {item.outcome or 'unknown'}"
        )
