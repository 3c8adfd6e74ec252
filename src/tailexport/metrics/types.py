"""Metric kinds and the payload shapes passed between components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

TagValue = Union[str, int, float, bool]
Tags = dict[str, TagValue]


class MetricType(Enum):
    """Metric kinds understood by the aggregation store."""

    COUNT = "COUNT"
    GAUGE = "GAUGE"
    HISTOGRAM = "HISTOGRAM"


@dataclass
class MetricPayload:
    """A single metric emission.

    Attributes:
        type: The metric kind.
        name: The metric name.
        value: The emitted value.
        tags: Tag mapping; insertion order is irrelevant to identity.
        timestamp: When the value was emitted, in epoch milliseconds.
    """

    type: MetricType
    name: str
    value: float
    tags: Tags = field(default_factory=dict)
    timestamp: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "value": self.value,
            "tags": dict(self.tags),
            "timestamp": self.timestamp,
        }


@dataclass
class HistogramSample:
    """One recorded histogram value and its emission time (epoch ms)."""

    value: float
    time: float

    def to_dict(self) -> dict[str, float]:
        return {"value": self.value, "time": self.time}


@dataclass
class StoredMetric:
    """An aggregation store entry.

    ``value`` is a running sum for COUNT, the last written value for GAUGE
    and the ordered list of samples for HISTOGRAM.
    """

    type: MetricType
    name: str
    tags: Tags
    value: float | list[HistogramSample]
    last_updated: float


@dataclass
class ExportedMetric:
    """Sink-facing form of a stored metric.

    COUNT and GAUGE carry a scalar ``value`` and a ``timestamp``. HISTOGRAM
    carries the full sample list and no timestamp.
    """

    type: MetricType
    name: str
    tags: Tags
    value: float | list[HistogramSample]
    timestamp: float | None = None

    @property
    def samples(self) -> list[HistogramSample]:
        if self.type is not MetricType.HISTOGRAM:
            raise TypeError(f"{self.type.value} metric '{self.name}' has no samples")
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "type": self.type.value,
            "name": self.name,
            "tags": dict(self.tags),
        }
        if self.type is MetricType.HISTOGRAM:
            data["value"] = [sample.to_dict() for sample in self.samples]
        else:
            data["value"] = self.value
            data["timestamp"] = self.timestamp
        return data
