"""Tests for exponential histogram bucketing."""

from __future__ import annotations

import pytest

from tailexport.metrics.histogram import (
    Buckets,
    bucket_counts,
    bucket_index,
    exponential_histogram_point,
    ms_to_nanos,
)
from tailexport.metrics.types import HistogramSample


def samples(*values: float, start: int = 1000) -> list[HistogramSample]:
    return [HistogramSample(value=v, time=start + i) for i, v in enumerate(values)]


class TestBucketIndex:
    """Tests for scale-0 bucket indexes."""

    @pytest.mark.parametrize(
        "value,index",
        [(1, 0), (1.5, 0), (2, 1), (3, 1), (4, 2), (1023, 9), (1024, 10), (0.5, -1), (0.3, -2)],
    )
    def test_index_is_floor_log2(self, value, index):
        """Test bucket i covers [2**i, 2**(i+1))."""
        assert bucket_index(value) == index

    def test_exact_powers_of_two(self):
        """Test powers of two land at the start of their own bucket."""
        for exponent in range(-20, 60):
            assert bucket_index(2.0**exponent) == exponent


class TestBucketCounts:
    """Tests for bucket_counts."""

    def test_empty(self):
        """Test no values gives offset 0 and no counts."""
        buckets = bucket_counts([])
        assert buckets == Buckets(offset=0, bucket_counts=[])
        assert not buckets

    def test_consecutive_buckets(self):
        """Test one value per bucket."""
        assert bucket_counts([1, 2, 4, 8]) == Buckets(offset=0, bucket_counts=[1, 1, 1, 1])

    def test_gaps_are_zero_filled(self):
        """Test empty buckets between the extremes are counted as zero."""
        assert bucket_counts([1, 8]) == Buckets(offset=0, bucket_counts=[1, 0, 0, 1])

    def test_offset_is_lowest_index(self):
        """Test the offset follows the smallest value."""
        assert bucket_counts([100, 120, 300]) == Buckets(offset=6, bucket_counts=[2, 0, 1])

    def test_sub_unit_values(self):
        """Test fractional values get negative indexes."""
        assert bucket_counts([0.25, 0.75]) == Buckets(offset=-2, bucket_counts=[1, 1])

    def test_to_dict_uses_string_counts(self):
        """Test bucket counts serialize as strings."""
        assert Buckets(offset=3, bucket_counts=[2, 0]).to_dict() == {
            "offset": 3,
            "bucketCounts": ["2", "0"],
        }


class TestExponentialHistogramPoint:
    """Tests for exponential_histogram_point."""

    def test_summary(self):
        """Test count, sum and bucket layout."""
        point = exponential_histogram_point(samples(100, 200))

        assert point.count == 2
        assert point.sum == 300
        assert point.zero_count == 0
        assert point.scale == 0
        assert point.positive == Buckets(offset=6, bucket_counts=[1, 1])
        assert not point.negative

    def test_times_from_first_and_last_sample(self):
        """Test start/end come from arrival order, not min/max."""
        point = exponential_histogram_point(
            [HistogramSample(value=1, time=5000), HistogramSample(value=2, time=1000)]
        )
        assert point.start_time_unix_nano == 5_000_000_000
        assert point.time_unix_nano == 1_000_000_000

    def test_negative_and_zero_values(self):
        """Test negatives are bucketed by magnitude and zeros only counted."""
        point = exponential_histogram_point(samples(-1, -3, 0, 0, 2))

        assert point.count == 5
        assert point.sum == -2
        assert point.zero_count == 2
        assert point.negative == Buckets(offset=0, bucket_counts=[1, 1])
        assert point.positive == Buckets(offset=1, bucket_counts=[1])

    def test_empty(self):
        """Test an empty sample list gives an empty point."""
        point = exponential_histogram_point([])

        assert point.count == 0
        assert point.sum == 0
        assert point.start_time_unix_nano == 0
        assert point.positive == Buckets()

    def test_to_otlp(self):
        """Test the OTLP data point shape."""
        point = exponential_histogram_point(samples(100, 200))
        attributes = [{"key": "env", "value": {"stringValue": "prod"}}]

        data = point.to_otlp(attributes)

        assert data == {
            "attributes": attributes,
            "startTimeUnixNano": "1000000000",
            "timeUnixNano": "1001000000",
            "count": "2",
            "sum": 300,
            "scale": 0,
            "zeroCount": "0",
            "positive": {"offset": 6, "bucketCounts": ["1", "1"]},
        }

    def test_to_otlp_omits_empty_bucket_sets(self):
        """Test positive/negative are left out when empty."""
        data = exponential_histogram_point(samples(0)).to_otlp([])
        assert "positive" not in data
        assert "negative" not in data
        assert data["zeroCount"] == "1"


class TestMsToNanos:
    """Tests for timestamp conversion."""

    def test_exact_integer_arithmetic(self):
        """Test large epoch timestamps convert without float error."""
        assert ms_to_nanos(1_700_000_000_123) == 1_700_000_000_123_000_000

    def test_rounds_fractional_millis(self):
        """Test fractional milliseconds round to the nearest millisecond."""
        assert ms_to_nanos(1000.6) == 1_001_000_000
