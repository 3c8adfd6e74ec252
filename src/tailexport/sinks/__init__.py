"""Telemetry backends receiving flushed metrics and logs."""

from tailexport.sinks.base import (
    HttpSink,
    LogSink,
    MetricSink,
    SinkError,
    UnsupportedMetricError,
)
from tailexport.sinks.datadog import DatadogMetricSink
from tailexport.sinks.otel_logs import OtelLogSink
from tailexport.sinks.otel_metrics import OtelMetricSink

__all__ = [
    "HttpSink",
    "LogSink",
    "MetricSink",
    "SinkError",
    "UnsupportedMetricError",
    "DatadogMetricSink",
    "OtelLogSink",
    "OtelMetricSink",
]
