"""Datadog metric sink.

Gauges go to the series endpoint. Counts and histograms are sent as
distributions, which Datadog aggregates server side.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from typing import Any

import httpx

from tailexport.metrics.extractors import STANDARD_METRIC_PREFIX
from tailexport.metrics.types import ExportedMetric, MetricType
from tailexport.sinks.base import (
    DEFAULT_TIMEOUT,
    HttpSink,
    SinkError,
    UnsupportedMetricError,
)

logger = logging.getLogger(__name__)

DEFAULT_SITE = "datadoghq.com"
DISTRIBUTION_POINTS_PATH = "api/v1/distribution_points"
SERIES_PATH = "api/v1/series"

# Context tag -> Datadog tag name
CONTEXT_TAG_NAMES = {
    "script_name": "worker_script",
    "execution_model": "execution_model",
    "version_id": "version",
    "trigger": "trigger",
}


def format_tags(tags: Mapping[str, Any]) -> list[str]:
    """Format tags as ``key:value`` strings.

    Custom tags come first, then the renamed context tags and ``region:earth``.
    """
    formatted = [
        f"{key}:{value}"
        for key, value in tags.items()
        if key not in CONTEXT_TAG_NAMES and value is not None
    ]
    for key, dd_name in CONTEXT_TAG_NAMES.items():
        if tags.get(key) is not None:
            formatted.append(f"{dd_name}:{tags[key]}")
    formatted.append("region:earth")
    return formatted


def to_seconds(timestamp_ms: float) -> int:
    return math.floor(timestamp_ms / 1000)


def transform_metric(metric: ExportedMetric) -> dict[str, Any]:
    """Transform an exported metric into a Datadog series entry.

    Raises:
        UnsupportedMetricError: For metric types Datadog cannot receive.
    """
    tags = format_tags(metric.tags)

    if metric.type is MetricType.GAUGE:
        points: list[list[Any]] = [[to_seconds(metric.timestamp or 0), metric.value]]
        metric_type = "gauge"
    elif metric.type is MetricType.COUNT:
        points = [[to_seconds(metric.timestamp or 0), [metric.value]]]
        metric_type = "distribution"
    elif metric.type is MetricType.HISTOGRAM:
        points = [[to_seconds(s.time), [s.value]] for s in metric.samples]
        metric_type = "distribution"
    else:
        raise UnsupportedMetricError(f"Unsupported metric type: {metric.type}")

    return {"metric": metric.name, "type": metric_type, "points": points, "tags": tags}


class DatadogMetricSink(HttpSink):
    """Sends metrics to the Datadog API."""

    name = "datadog"

    def __init__(
        self,
        api_key: str | None = None,
        site: str | None = None,
        distribution_points_endpoint: str | None = None,
        series_endpoint: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the sink.

        Args:
            api_key: Datadog API key. Defaults to DD_API_KEY or DATADOG_API_KEY.
            site: Datadog site. Defaults to DD_SITE or datadoghq.com.
            distribution_points_endpoint: URL override (tests, proxies).
            series_endpoint: URL override (tests, proxies).
            client: Optional shared HTTP client.
            timeout: Request timeout in seconds.
        """
        super().__init__(client=client, timeout=timeout)
        self.api_key = (
            api_key or os.environ.get("DD_API_KEY") or os.environ.get("DATADOG_API_KEY")
        )
        if not self.api_key:
            logger.error(
                "Datadog API key was not found. Provide api_key or set DD_API_KEY. "
                "Metrics will not be sent to Datadog."
            )
        self.site = site or os.environ.get("DD_SITE") or DEFAULT_SITE
        self.distribution_points_endpoint = (
            distribution_points_endpoint
            or f"https://api.{self.site}/{DISTRIBUTION_POINTS_PATH}"
        )
        self.series_endpoint = series_endpoint or f"https://api.{self.site}/{SERIES_PATH}"

    async def send_metrics(self, metrics: list[ExportedMetric]) -> None:
        """Send custom metrics; ``worker.*`` standard metrics are skipped."""
        if not metrics:
            return

        series: list[dict[str, Any]] = []
        for metric in metrics:
            if metric.name.startswith(STANDARD_METRIC_PREFIX):
                continue
            try:
                series.append(transform_metric(metric))
            except UnsupportedMetricError as e:
                logger.warning("Skipping metric '%s': %s", metric.name, e)

        if not series:
            return

        if not self.api_key:
            logger.warning("Datadog API key was not found. Dropping %d metrics.", len(series))
            return

        distributions = [s for s in series if s["type"] == "distribution"]
        gauges = [s for s in series if s["type"] == "gauge"]

        if distributions:
            try:
                await self._post(self.distribution_points_endpoint, distributions)
            except SinkError as e:
                raise SinkError(
                    f"Distribution metrics failed to send: {e}", e.status_code
                ) from e
        if gauges:
            try:
                await self._post(self.series_endpoint, gauges)
            except SinkError as e:
                raise SinkError(f"Gauge metrics failed to send: {e}", e.status_code) from e

    async def _post(self, endpoint: str, series: list[dict[str, Any]]) -> None:
        await self.post_json(
            endpoint, {"series": series}, headers={"DD-API-KEY": self.api_key or ""}
        )
