"""Metric emission API for application code.

Emissions are published on the metrics channel and never touch the
aggregation store directly::

    from tailexport import metrics

    metrics.count("orders.created", 1, {"plan": "pro"})
    metrics.gauge("queue.depth", 42)
    metrics.histogram("render.ms", 12.5)
"""

from __future__ import annotations

from tailexport.channel import METRICS_CHANNEL_NAME, channel
from tailexport.metrics.types import MetricType, Tags


def _publish(metric_type: MetricType, name: str, value: float, tags: Tags | None) -> None:
    channel(METRICS_CHANNEL_NAME).publish(
        {
            "type": metric_type.value,
            "name": name,
            "value": value,
            "tags": dict(tags or {}),
        }
    )


def count(name: str, value: float = 1, tags: Tags | None = None) -> None:
    """Record a count; values with the same identity are summed."""
    _publish(MetricType.COUNT, name, value, tags)


def gauge(name: str, value: float, tags: Tags | None = None) -> None:
    """Record a gauge; the latest value wins."""
    _publish(MetricType.GAUGE, name, value, tags)


def histogram(name: str, value: float, tags: Tags | None = None) -> None:
    """Record a histogram sample."""
    _publish(MetricType.HISTOGRAM, name, value, tags)
