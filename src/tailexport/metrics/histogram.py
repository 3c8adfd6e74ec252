"""Base-2 exponential histogram bucketing.

Samples are bucketed at scale 0, where bucket ``i`` covers ``[2**i, 2**(i+1))``.
Positive and negative samples get separate bucket sets (negative samples are
bucketed by magnitude); exact zeros are only counted.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from tailexport.metrics.types import HistogramSample

NANOS_PER_MILLI = 1_000_000


def ms_to_nanos(timestamp_ms: float) -> int:
    """Convert epoch milliseconds to epoch nanoseconds."""
    return int(round(timestamp_ms)) * NANOS_PER_MILLI


def bucket_index(value: float) -> int:
    """Scale-0 bucket index of a strictly positive value, ``floor(log2(value))``."""
    # frexp gives value == m * 2**e with 0.5 <= m < 1, so floor(log2) == e - 1
    return math.frexp(value)[1] - 1


@dataclass
class Buckets:
    """A contiguous run of bucket counts starting at ``offset``."""

    offset: int = 0
    bucket_counts: list[int] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.bucket_counts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "offset": self.offset,
            "bucketCounts": [str(count) for count in self.bucket_counts],
        }


def bucket_counts(values: Iterable[float]) -> Buckets:
    """Bucket strictly positive magnitudes.

    Every index between the lowest and highest observed one gets an entry,
    zero when nothing landed in it.
    """
    counts = Counter(bucket_index(value) for value in values)
    if not counts:
        return Buckets()

    low, high = min(counts), max(counts)
    return Buckets(
        offset=low,
        bucket_counts=[counts.get(index, 0) for index in range(low, high + 1)],
    )


@dataclass
class ExponentialHistogramPoint:
    """Summary of one histogram's samples for a single export."""

    count: int
    sum: float
    zero_count: int
    start_time_unix_nano: int
    time_unix_nano: int
    positive: Buckets = field(default_factory=Buckets)
    negative: Buckets = field(default_factory=Buckets)
    scale: int = 0

    def to_otlp(self, attributes: list[dict[str, Any]]) -> dict[str, Any]:
        """OTLP/JSON ``ExponentialHistogramDataPoint``."""
        point: dict[str, Any] = {
            "attributes": attributes,
            "startTimeUnixNano": str(self.start_time_unix_nano),
            "timeUnixNano": str(self.time_unix_nano),
            "count": str(self.count),
            "sum": self.sum,
            "scale": self.scale,
            "zeroCount": str(self.zero_count),
        }
        if self.positive:
            point["positive"] = self.positive.to_dict()
        if self.negative:
            point["negative"] = self.negative.to_dict()
        return point


def exponential_histogram_point(
    samples: Sequence[HistogramSample],
) -> ExponentialHistogramPoint:
    """Summarize samples into an exponential histogram data point.

    Start and end times come from the first and last samples in arrival
    order. An empty sequence yields a zero-count point with empty buckets.
    """
    positive = [s.value for s in samples if s.value > 0]
    negative = [-s.value for s in samples if s.value < 0]
    zero_count = sum(1 for s in samples if s.value == 0)

    if samples:
        start, end = ms_to_nanos(samples[0].time), ms_to_nanos(samples[-1].time)
    else:
        start = end = 0

    return ExponentialHistogramPoint(
        count=len(samples),
        sum=math.fsum(s.value for s in samples),
        zero_count=zero_count,
        start_time_unix_nano=start,
        time_unix_nano=end,
        positive=bucket_counts(positive),
        negative=bucket_counts(negative),
    )
