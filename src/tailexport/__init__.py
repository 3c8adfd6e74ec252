"""Tailexport - metrics and log export for short-lived function invocations.

Tailexport receives batches of invocation trace items, aggregates the
metrics they carry in memory and periodically flushes metrics and logs to
telemetry backends such as Datadog and OpenTelemetry collectors.
"""

__version__ = "0.3.4"

from tailexport.background import BackgroundTasks
from tailexport.channel import METRICS_CHANNEL_NAME, Channel, capture_events, channel
from tailexport.config import Config, SinkConfig, StreamConfig
from tailexport.dispatch import Dispatcher, SinkResult
from tailexport.tail import LogsTail, MetricsTail, TailExporter
from tailexport.trace import TraceItem

__all__ = [
    "BackgroundTasks",
    "METRICS_CHANNEL_NAME",
    "Channel",
    "capture_events",
    "channel",
    "Config",
    "SinkConfig",
    "StreamConfig",
    "Dispatcher",
    "SinkResult",
    "LogsTail",
    "MetricsTail",
    "TailExporter",
    "TraceItem",
]
