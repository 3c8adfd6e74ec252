"""Metric extraction from trace items.

Each trace item yields the user metrics its invocation published on the
metrics channel plus a fixed set of ``worker.*`` metrics describing the
invocation itself. Malformed user emissions are dropped without affecting
the standard metrics.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from tailexport.channel import METRICS_CHANNEL_NAME, DiagnosticsChannelEvent
from tailexport.metrics.types import MetricPayload, MetricType, Tags
from tailexport.trace import TraceItem

logger = logging.getLogger(__name__)

STANDARD_METRIC_PREFIX = "worker."


def context_tags(item: TraceItem) -> Tags:
    """Tags describing the invocation a metric came from.

    Args:
        item: The trace item.

    Returns:
        Dict with script_name, execution_model, outcome, version_id, trigger
        and entrypoint. Unknown values are left out.
    """
    tags: dict[str, Any] = {
        "script_name": item.script_name,
        "execution_model": item.execution_model,
        "outcome": item.outcome,
        "version_id": item.version_id,
        "trigger": item.trigger,
        "entrypoint": item.entrypoint,
    }
    return {key: value for key, value in tags.items() if value is not None}


def coerce_value(value: Any) -> float | None:
    """Coerce an emitted value to a finite float.

    Returns:
        The float, or None for booleans, non-numeric values, NaN and inf.
    """
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_tags(tags: Any) -> Tags | None:
    """Validate user tags.

    ``None`` values are dropped and non-scalar values stringified.

    Returns:
        The cleaned tags, or None if ``tags`` is not a mapping.
    """
    if tags is None:
        return {}
    if not isinstance(tags, Mapping):
        return None

    result: Tags = {}
    for key, value in tags.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            result[str(key)] = value
        else:
            result[str(key)] = str(value)
    return result


def parse_emission(
    event: DiagnosticsChannelEvent,
    base_tags: Tags,
    fallback_timestamp: float,
) -> MetricPayload | None:
    """Parse one metrics-channel message.

    Args:
        event: The diagnostics channel event.
        base_tags: Contextual tags; these win over user tags on collision.
        fallback_timestamp: Used when the event carries no timestamp.

    Returns:
        MetricPayload, or None if the message is malformed.
    """
    message = event.message
    if not isinstance(message, Mapping):
        return None

    raw_type = message.get("type", message.get("kind"))
    try:
        metric_type = MetricType(raw_type)
    except ValueError:
        return None

    name = message.get("name")
    if not isinstance(name, str) or not name:
        return None

    value = coerce_value(message.get("value"))
    if value is None:
        return None

    tags = normalize_tags(message.get("tags"))
    if tags is None:
        return None

    return MetricPayload(
        type=metric_type,
        name=name,
        value=value,
        tags={**tags, **base_tags},
        timestamp=event.timestamp or fallback_timestamp,
    )


# Standard metric name -> (type, value extractor)
STANDARD_METRICS: dict[str, tuple[MetricType, Callable[[TraceItem], float]]] = {
    "worker.cpu_time": (MetricType.GAUGE, lambda item: item.cpu_time or 0),
    "worker.wall_time": (MetricType.GAUGE, lambda item: item.wall_time or 0),
    "worker.requests": (MetricType.COUNT, lambda item: 1),
    "worker.outcome": (MetricType.COUNT, lambda item: 1),
}


def standard_metrics(item: TraceItem, tags: Tags, timestamp: float) -> list[MetricPayload]:
    """Build the per-invocation ``worker.*`` metrics."""
    return [
        MetricPayload(
            type=metric_type,
            name=name,
            value=float(extract(item)),
            tags=dict(tags),
            timestamp=timestamp,
        )
        for name, (metric_type, extract) in STANDARD_METRICS.items()
    ]


def extract_metrics(item: TraceItem) -> list[MetricPayload]:
    """Extract every metric emission from a trace item.

    User emissions come first, in publish order, followed by the standard
    metrics.

    Args:
        item: The trace item.

    Returns:
        List of metric emissions.
    """
    tags = context_tags(item)
    timestamp = item.event_timestamp
    if timestamp is None:
        # Only host records without an invocation timestamp get here
        timestamp = time.time() * 1000

    metrics: list[MetricPayload] = []
    for event in item.diagnostics_channel_events:
        if event.channel != METRICS_CHANNEL_NAME:
            continue
        metric = parse_emission(event, tags, timestamp)
        if metric is None:
            logger.debug(
                "Dropping malformed metric from %s: %r", item.script_name, event.message
            )
            continue
        metrics.append(metric)

    metrics.extend(standard_metrics(item, tags, timestamp))
    return metrics


def extract_all(items: Iterable[TraceItem]) -> list[MetricPayload]:
    """Extract metrics from several trace items, preserving item order."""
    metrics: list[MetricPayload] = []
    for item in items:
        metrics.extend(extract_metrics(item))
    return metrics
