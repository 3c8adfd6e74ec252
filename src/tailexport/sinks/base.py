"""Sink contracts and the shared HTTP delivery helper."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx

from tailexport.metrics.types import ExportedMetric
from tailexport.trace import TraceItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class SinkError(Exception):
    """Delivery to a sink failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnsupportedMetricError(ValueError):
    """A sink cannot encode a metric of this kind."""


@runtime_checkable
class MetricSink(Protocol):
    async def send_metrics(self, metrics: list[ExportedMetric]) -> None: ...


@runtime_checkable
class LogSink(Protocol):
    async def send_logs(self, trace_items: list[TraceItem]) -> None: ...


def format_attributes(tags: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    """Convert tags to OTLP ``KeyValue`` attributes, dropping None values."""
    return [
        {"key": key, "value": {"stringValue": str(value)}}
        for key, value in (tags or {}).items()
        if value is not None
    ]


class HttpSink:
    """Base class for sinks delivering JSON over HTTP.

    A client passed in is reused and never closed by the sink; without one,
    a short-lived client is created per request.
    """

    name = "http"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._client = client
        self.timeout = timeout

    async def post_json(
        self,
        url: str,
        payload: Any,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """POST a JSON payload.

        Raises:
            SinkError: On transport errors and non-2xx responses.
        """
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=request_headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        url, json=payload, headers=request_headers
                    )
        except httpx.HTTPError as e:
            raise SinkError(f"{self.name}: request to {url} failed: {e}") from e

        if not response.is_success:
            raise SinkError(
                f"{self.name}: HTTP {response.status_code} "
                f"{response.reason_phrase}: {response.text}",
                status_code=response.status_code,
            )
        return response
