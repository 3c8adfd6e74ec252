"""In-memory aggregation store for metric emissions.

Emissions are merged by identity ``(name, type, tags)``:

    COUNT      values are summed
    GAUGE      the latest emission wins, regardless of its timestamp
    HISTOGRAM  samples are appended in arrival order

The store only grows between flushes. ``snapshot_and_clear`` hands the
current contents to the caller and leaves an empty store behind.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping

from tailexport.metrics.types import (
    ExportedMetric,
    HistogramSample,
    MetricPayload,
    MetricType,
    StoredMetric,
)


def serialize_tags(tags: Mapping[str, object]) -> str:
    """Serialize tags with keys in lexicographic order."""
    return ",".join(f"{key}:{tags[key]}" for key in sorted(tags))


def metric_key(metric: MetricPayload | StoredMetric) -> str:
    """Canonical identity key of a metric."""
    return f"{metric.name}:{metric.type.value}:{serialize_tags(metric.tags)}"


def to_export_form(metrics: Iterable[StoredMetric]) -> list[ExportedMetric]:
    """Map stored metrics to the shape sinks consume."""
    exported: list[ExportedMetric] = []
    for metric in metrics:
        if metric.type is MetricType.HISTOGRAM:
            exported.append(
                ExportedMetric(
                    type=metric.type,
                    name=metric.name,
                    tags=metric.tags,
                    value=list(metric.value),  # type: ignore[arg-type]
                )
            )
        else:
            exported.append(
                ExportedMetric(
                    type=metric.type,
                    name=metric.name,
                    tags=metric.tags,
                    value=metric.value,
                    timestamp=metric.last_updated,
                )
            )
    return exported


class MetricsStore:
    """Keyed store merging metric emissions into one entry per identity."""

    def __init__(self) -> None:
        self._metrics: dict[str, StoredMetric] = {}
        self._lock = threading.Lock()

    def merge(self, metric: MetricPayload) -> None:
        """Merge a single emission into the store."""
        key = metric_key(metric)
        value = float(metric.value)

        with self._lock:
            existing = self._metrics.get(key)

            if existing is None:
                if metric.type is MetricType.HISTOGRAM:
                    initial: float | list[HistogramSample] = [
                        HistogramSample(value=value, time=metric.timestamp)
                    ]
                else:
                    initial = value
                self._metrics[key] = StoredMetric(
                    type=metric.type,
                    name=metric.name,
                    tags=dict(metric.tags),
                    value=initial,
                    last_updated=metric.timestamp,
                )
                return

            if metric.type is MetricType.COUNT:
                existing.value = existing.value + value  # type: ignore[operator]
            elif metric.type is MetricType.GAUGE:
                existing.value = value
            elif metric.type is MetricType.HISTOGRAM:
                existing.value.append(  # type: ignore[union-attr]
                    HistogramSample(value=value, time=metric.timestamp)
                )
            existing.last_updated = metric.timestamp

    def merge_all(self, metrics: Iterable[MetricPayload]) -> None:
        """Merge emissions in iteration order."""
        for metric in metrics:
            self.merge(metric)

    def snapshot_and_clear(self) -> list[StoredMetric]:
        """Return every stored metric and reset the store to empty."""
        with self._lock:
            snapshot, self._metrics = self._metrics, {}
        return list(snapshot.values())

    def all_metrics(self) -> list[StoredMetric]:
        """Current entries, without clearing."""
        with self._lock:
            return list(self._metrics.values())

    def count(self) -> int:
        """Number of distinct identities currently stored."""
        return len(self._metrics)

    def __len__(self) -> int:
        return self.count()

    def to_export_form(self) -> list[ExportedMetric]:
        """Export current entries without clearing them."""
        return to_export_form(self.all_metrics())
