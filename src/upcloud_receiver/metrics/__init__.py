"""
Metric models and descriptor registry.
"""

from upcloud_receiver.metrics.descriptors import (
    MetricDescriptor,
    descriptor_for_metric,
    sanitize_metric_path,
)
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    GaugeMetric,
    GaugePoint,
    MetricBatch,
    MetricsColumn,
    MetricsData,
    MetricsHints,
    MetricsItem,
    MetricsResponse,
    ResourceMetrics,
)

__all__ = [
    "RESOURCE_TYPE_MANAGED_DATABASE",
    "RESOURCE_TYPE_MANAGED_LOAD_BALANCER",
    "MetricDescriptor",
    "descriptor_for_metric",
    "sanitize_metric_path",
    "MetricsColumn",
    "MetricsData",
    "MetricsHints",
    "MetricsItem",
    "MetricsResponse",
    "GaugePoint",
    "GaugeMetric",
    "ResourceMetrics",
    "MetricBatch",
]
