"""OTLP/HTTP JSON metric sink."""

from __future__ import annotations

import logging
import random
import secrets
from collections.abc import Mapping
from typing import Any

import httpx

from tailexport import __version__
from tailexport.metrics.histogram import (
    NANOS_PER_MILLI,
    exponential_histogram_point,
    ms_to_nanos,
)
from tailexport.metrics.types import ExportedMetric, MetricType
from tailexport.sinks.base import (
    DEFAULT_TIMEOUT,
    HttpSink,
    SinkError,
    UnsupportedMetricError,
    format_attributes,
)

logger = logging.getLogger(__name__)

DEFAULT_SCOPE_NAME = "tailexport"
AGGREGATION_TEMPORALITY_DELTA = 1

# Context tags are reported as resource attributes, not metric attributes
CONTEXT_TAGS = frozenset({"script_name", "execution_model", "version_id", "trigger"})


def resource_attributes(
    tags: Mapping[str, Any], instance_id: str | None = None
) -> list[dict[str, Any]]:
    """OTLP resource attributes describing the invoked script."""
    script_name = tags.get("script_name")
    attributes: dict[str, Any] = {
        "cloud.provider": "Cloudflare",
        "cloud.service": (
            "Workers" if tags.get("execution_model") == "stateless" else "Durable Objects"
        ),
        "cloud.region": "earth",
        "faas.name": script_name,
        "service.name": script_name,
        "faas.trigger": tags.get("trigger"),
        "faas.version": tags.get("version_id"),
    }
    if instance_id:
        attributes["faas.instance"] = instance_id
    return format_attributes(attributes)


def number_value(value: float) -> dict[str, Any]:
    """``asInt`` for integral values, ``asDouble`` otherwise."""
    if float(value).is_integer():
        return {"asInt": str(int(value))}
    return {"asDouble": float(value)}


class OtelMetricSink(HttpSink):
    """Sends metrics to an OpenTelemetry collector as OTLP JSON."""

    name = "otel-metrics"

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        scope_name: str = DEFAULT_SCOPE_NAME,
        scope_version: str = __version__,
        enable_timestamp_jitter: bool = False,
        enable_instance_id: bool = False,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the sink.

        Args:
            url: Collector base URL; "/v1/metrics" is appended if missing.
            headers: Extra request headers (API keys, dataset names).
            scope_name: Instrumentation scope name.
            scope_version: Instrumentation scope version.
            enable_timestamp_jitter: Add sub-millisecond jitter to timestamps
                so points from the same millisecond do not collide.
            enable_instance_id: Report a per-process ``faas.instance``
                attribute. Each process then creates its own series, which
                multiplies cardinality.
            client: Optional shared HTTP client.
            timeout: Request timeout in seconds.
        """
        super().__init__(client=client, timeout=timeout)
        self.url = url if url.endswith("/v1/metrics") else f"{url.rstrip('/')}/v1/metrics"
        self.headers = dict(headers or {})
        self.scope_name = scope_name
        self.scope_version = scope_version
        self.enable_timestamp_jitter = enable_timestamp_jitter
        self.instance_id = secrets.token_hex(6) if enable_instance_id else None

    async def send_metrics(self, metrics: list[ExportedMetric]) -> None:
        if not metrics:
            return

        payload = self.build_payload(metrics)
        try:
            await self.post_json(self.url, payload, headers=self.headers)
        except SinkError as e:
            raise SinkError(
                f"Failed to send metrics to OTEL collector: {e}", e.status_code
            ) from e

    def build_payload(self, metrics: list[ExportedMetric]) -> dict[str, Any]:
        """Build an ``ExportMetricsServiceRequest``, one resource per metric."""
        resource_metrics: list[dict[str, Any]] = []
        for metric in metrics:
            custom_tags = {k: v for k, v in metric.tags.items() if k not in CONTEXT_TAGS}
            try:
                otlp_metric = self.to_otlp_metric(metric, format_attributes(custom_tags))
            except UnsupportedMetricError as e:
                logger.warning("Skipping metric '%s': %s", metric.name, e)
                continue

            resource_metrics.append(
                {
                    "resource": {
                        "attributes": resource_attributes(metric.tags, self.instance_id)
                    },
                    "scopeMetrics": [
                        {
                            "scope": {
                                "name": self.scope_name,
                                "version": self.scope_version,
                            },
                            "metrics": [otlp_metric],
                        }
                    ],
                }
            )
        return {"resourceMetrics": resource_metrics}

    def to_otlp_metric(
        self, metric: ExportedMetric, attributes: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """Encode one metric.

        Raises:
            UnsupportedMetricError: For metric types without an OTLP mapping.
        """
        if metric.type is MetricType.COUNT:
            return {
                "name": metric.name,
                "sum": {
                    "dataPoints": [
                        {
                            **number_value(metric.value),  # type: ignore[arg-type]
                            "attributes": attributes,
                            "timeUnixNano": self.timestamp_to_nanos(metric.timestamp),
                        }
                    ],
                    "aggregationTemporality": AGGREGATION_TEMPORALITY_DELTA,
                    "isMonotonic": True,
                },
            }
        if metric.type is MetricType.GAUGE:
            return {
                "name": metric.name,
                "gauge": {
                    "dataPoints": [
                        {
                            "asDouble": float(metric.value),  # type: ignore[arg-type]
                            "attributes": attributes,
                            "timeUnixNano": self.timestamp_to_nanos(metric.timestamp),
                        }
                    ]
                },
            }
        if metric.type is MetricType.HISTOGRAM:
            point = exponential_histogram_point(metric.samples)
            return {
                "name": metric.name,
                "exponentialHistogram": {
                    "dataPoints": [point.to_otlp(attributes)],
                    "aggregationTemporality": AGGREGATION_TEMPORALITY_DELTA,
                },
            }
        raise UnsupportedMetricError(f"Unsupported metric type: {metric.type}")

    def timestamp_to_nanos(self, timestamp_ms: float | None) -> str:
        nanos = ms_to_nanos(timestamp_ms or 0)
        if self.enable_timestamp_jitter:
            # Stays within the same millisecond
            nanos += random.randrange(NANOS_PER_MILLI // 2)
        return str(nanos)
