"""Metric emission, extraction and aggregation for tailexport.

Architecture:
    application code
            | count() / gauge() / histogram()
            v
    metrics channel (captured into the trace item)
            |
            v
    extractors.extract_metrics  (+ worker.* standard metrics)
            |
            v
    MetricsStore  (merge by name/type/tags)
            |
            v (flush)
    to_export_form -> metric sinks
"""

from tailexport.metrics.extractors import (
    STANDARD_METRIC_PREFIX,
    extract_all,
    extract_metrics,
)
from tailexport.metrics.histogram import (
    Buckets,
    ExponentialHistogramPoint,
    bucket_counts,
    exponential_histogram_point,
    ms_to_nanos,
)
from tailexport.metrics.store import MetricsStore, metric_key, to_export_form
from tailexport.metrics.types import (
    ExportedMetric,
    HistogramSample,
    MetricPayload,
    MetricType,
    StoredMetric,
)

# Imported after the submodules so the ``histogram`` submodule does not
# shadow the ``histogram`` emission function on the package.
from tailexport.metrics.emit import count, gauge, histogram

__all__ = [
    # Emission
    "count",
    "gauge",
    "histogram",
    # Extraction
    "STANDARD_METRIC_PREFIX",
    "extract_all",
    "extract_metrics",
    # Aggregation
    "MetricsStore",
    "metric_key",
    "to_export_form",
    # Histograms
    "Buckets",
    "ExponentialHistogramPoint",
    "bucket_counts",
    "exponential_histogram_point",
    "ms_to_nanos",
    # Types
    "ExportedMetric",
    "HistogramSample",
    "MetricPayload",
    "MetricType",
    "StoredMetric",
]
