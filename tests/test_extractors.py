"""Tests for metric extraction from trace items."""

from __future__ import annotations

import pytest
from conftest import EVENT_TIMESTAMP, make_trace_item, metric_event

from tailexport.channel import DiagnosticsChannelEvent
from tailexport.metrics.extractors import (
    STANDARD_METRICS,
    coerce_value,
    context_tags,
    extract_all,
    extract_metrics,
    normalize_tags,
)
from tailexport.metrics.types import MetricType


def user_metrics(item):
    return [m for m in extract_metrics(item) if not m.name.startswith("worker.")]


class TestCoerceValue:
    """Tests for value coercion."""

    @pytest.mark.parametrize(
        "raw,expected",
        [(1, 1.0), (2.5, 2.5), ("3", 3.0), (" 4.5 ", 4.5), (-7, -7.0), (0, 0.0)],
    )
    def test_accepts_numbers(self, raw, expected):
        """Test numeric values and numeric strings are accepted."""
        assert coerce_value(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        [
            "not-a-number",
            None,
            True,
            float("nan"),
            float("inf"),
            10**400,
            "1e400",
            [1],
            {"v": 1},
        ],
    )
    def test_rejects_non_numbers(self, raw):
        """Test non-numeric and non-finite values are rejected."""
        assert coerce_value(raw) is None


class TestNormalizeTags:
    """Tests for user tag validation."""

    def test_missing_tags(self):
        """Test absent tags become an empty mapping."""
        assert normalize_tags(None) == {}

    def test_drops_none_values(self):
        """Test None-valued tags are dropped."""
        assert normalize_tags({"a": "x", "b": None}) == {"a": "x"}

    def test_stringifies_non_scalars(self):
        """Test nested values are stringified."""
        assert normalize_tags({"a": [1, 2]}) == {"a": "[1, 2]"}

    def test_rejects_non_mapping(self):
        """Test a non-mapping tags value is invalid."""
        assert normalize_tags(["a", "b"]) is None


class TestContextTags:
    """Tests for invocation context tags."""

    def test_context_tags(self):
        """Test context tags come from the trace item."""
        item = make_trace_item(entrypoint="MyEntrypoint")
        assert context_tags(item) == {
            "script_name": "test-worker",
            "execution_model": "stateless",
            "outcome": "ok",
            "version_id": "v1",
            "trigger": "http",
            "entrypoint": "MyEntrypoint",
        }

    def test_unknown_values_left_out(self):
        """Test missing version and entrypoint are omitted."""
        item = make_trace_item(script_version=None)
        tags = context_tags(item)
        assert "version_id" not in tags
        assert "entrypoint" not in tags


class TestExtractMetrics:
    """Tests for extract_metrics."""

    def test_user_metric_enriched_with_context(self):
        """Test a user metric carries its own and the context tags."""
        item = make_trace_item([metric_event("test.counter", tags={"environment": "test"})])

        [metric] = user_metrics(item)

        assert metric.type is MetricType.COUNT
        assert metric.name == "test.counter"
        assert metric.value == 1
        assert metric.tags["environment"] == "test"
        assert metric.tags["script_name"] == "test-worker"
        assert metric.tags["outcome"] == "ok"
        assert metric.tags["version_id"] == "v1"

    def test_context_tags_win_on_collision(self):
        """Test a user tag cannot override a context tag."""
        item = make_trace_item([metric_event("m", tags={"outcome": "spoofed"})])
        [metric] = user_metrics(item)
        assert metric.tags["outcome"] == "ok"

    def test_standard_metrics_always_present(self):
        """Test worker.* metrics are emitted without user metrics."""
        item = make_trace_item()
        metrics = extract_metrics(item)

        assert [m.name for m in metrics] == list(STANDARD_METRICS)
        by_name = {m.name: m for m in metrics}
        assert by_name["worker.cpu_time"].type is MetricType.GAUGE
        assert by_name["worker.cpu_time"].value == 150
        assert by_name["worker.wall_time"].value == 200
        assert by_name["worker.requests"].type is MetricType.COUNT
        assert by_name["worker.requests"].value == 1
        assert by_name["worker.outcome"].tags["outcome"] == "ok"

    def test_standard_metrics_use_context_tags_only(self):
        """Test standard metrics do not pick up user tags."""
        item = make_trace_item([metric_event("m", tags={"environment": "test"})])
        for metric in extract_metrics(item):
            if metric.name.startswith("worker."):
                assert metric.tags == context_tags(item)

    def test_user_metrics_precede_standard_metrics(self):
        """Test user metrics keep publish order and come first."""
        item = make_trace_item([metric_event("first"), metric_event("second")])
        names = [m.name for m in extract_metrics(item)]
        assert names[:2] == ["first", "second"]

    def test_malformed_emission_dropped(self):
        """Test an invalid type and value drop the user metric only."""
        item = make_trace_item(
            [metric_event("invalid.metric", value="not-a-number", metric_type="INVALID_TYPE")]
        )

        metrics = extract_metrics(item)

        assert not [m for m in metrics if m.name == "invalid.metric"]
        assert len(metrics) == len(STANDARD_METRICS)

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "COUNT", "name": "", "value": 1},
            {"type": "COUNT", "value": 1},
            {"type": "GAUGE", "name": "g", "value": None},
            {"type": "HISTOGRAM", "name": "h", "value": "abc"},
            {"type": "COUNT", "name": "c", "value": 1, "tags": "env=prod"},
            "not a mapping",
        ],
    )
    def test_malformed_shapes_dropped(self, message):
        """Test messages with a bad shape are dropped."""
        event = DiagnosticsChannelEvent(
            channel="workers-observability-metrics", message=message, timestamp=1
        )
        assert user_metrics(make_trace_item([event])) == []

    def test_other_channels_ignored(self):
        """Test events on other channels are not treated as metrics."""
        event = DiagnosticsChannelEvent(
            channel="something-else",
            message={"type": "COUNT", "name": "c", "value": 1},
            timestamp=1,
        )
        assert user_metrics(make_trace_item([event])) == []

    def test_kind_key_accepted(self):
        """Test 'kind' is accepted in place of 'type'."""
        event = DiagnosticsChannelEvent(
            channel="workers-observability-metrics",
            message={"kind": "GAUGE", "name": "g", "value": "12"},
            timestamp=5,
        )
        [metric] = user_metrics(make_trace_item([event]))
        assert metric.type is MetricType.GAUGE
        assert metric.value == 12.0

    def test_timestamp_from_event(self):
        """Test the emission timestamp is the event's own timestamp."""
        item = make_trace_item([metric_event("m", timestamp=42)])
        [metric] = user_metrics(item)
        assert metric.timestamp == 42

    def test_timestamp_falls_back_to_trace_item(self):
        """Test events without a timestamp use the trace item's."""
        item = make_trace_item([metric_event("m", timestamp=0)])
        [metric] = user_metrics(item)
        assert metric.timestamp == EVENT_TIMESTAMP

    def test_standard_metrics_use_event_timestamp(self):
        """Test standard metrics are stamped with the invocation time."""
        for metric in extract_metrics(make_trace_item()):
            assert metric.timestamp == EVENT_TIMESTAMP

    def test_extract_all_keeps_item_order(self):
        """Test extract_all processes items in order."""
        first = make_trace_item([metric_event("a")])
        second = make_trace_item([metric_event("b")])

        names = [m.name for m in extract_all([first, second])]

        assert names.index("a") < names.index("b")
        assert len(names) == 2 + 2 * len(STANDARD_METRICS)
