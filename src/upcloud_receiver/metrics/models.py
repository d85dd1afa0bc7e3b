"""
Data models for UpCloud metrics payloads and emitted gauge batches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

RESOURCE_TYPE_MANAGED_DATABASE = "managed_database"
RESOURCE_TYPE_MANAGED_LOAD_BALANCER = "managed_load_balancer"

CLOUD_PROVIDER = "upcloud"

# Resource attributes
ATTR_CLOUD_PROVIDER = "cloud.provider"
ATTR_RESOURCE_TYPE = "upcloud.resource.type"
ATTR_RESOURCE_UUID = "upcloud.resource.uuid"

# Data point attributes
ATTR_METRIC_NAME = "upcloud.metric.name"
ATTR_SERIES = "upcloud.series"
ATTR_VALUE_NORMALIZATION = "upcloud.value.normalization"
NORMALIZATION_PERCENT_TO_RATIO = "percent_to_ratio"


@dataclass(frozen=True)
class MetricsColumn:
    """Describes one column of a metric table."""

    label: str = ""
    type: str = ""


@dataclass(frozen=True)
class MetricsData:
    """Columns and rows for one metric. The first column holds timestamps."""

    cols: list[MetricsColumn] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)


@dataclass(frozen=True)
class MetricsHints:
    """Optional display metadata from the API."""

    title: str = ""


@dataclass(frozen=True)
class MetricsItem:
    """One metric entry from a metrics response."""

    data: MetricsData = field(default_factory=MetricsData)
    hints: MetricsHints = field(default_factory=MetricsHints)

    @property
    def is_emittable(self) -> bool:
        return len(self.data.cols) >= 2 and len(self.data.rows) > 0

    @property
    def latest_row(self) -> list[Any]:
        return self.data.rows[-1]


MetricsResponse = dict[str, MetricsItem]


@dataclass(frozen=True)
class GaugePoint:
    """A single normalized gauge sample."""

    timestamp: datetime
    value: float
    series: str
    metric_key: str
    percent_to_ratio: bool = False

    @property
    def attributes(self) -> dict[str, str]:
        attrs = {
            ATTR_METRIC_NAME: self.metric_key,
            ATTR_SERIES: self.series,
        }
        if self.percent_to_ratio:
            attrs[ATTR_VALUE_NORMALIZATION] = NORMALIZATION_PERCENT_TO_RATIO
        return attrs


@dataclass
class GaugeMetric:
    """A gauge metric and its data points."""

    name: str
    unit: str
    description: str = ""
    points: list[GaugePoint] = field(default_factory=list)


@dataclass
class ResourceMetrics:
    """Metrics scraped from one UpCloud resource."""

    resource_type: str
    resource_uuid: str
    metrics: list[GaugeMetric] = field(default_factory=list)

    @property
    def attributes(self) -> dict[str, str]:
        return {
            ATTR_CLOUD_PROVIDER: CLOUD_PROVIDER,
            ATTR_RESOURCE_TYPE: self.resource_type,
            ATTR_RESOURCE_UUID: self.resource_uuid,
        }


@dataclass
class MetricBatch:
    """The output of one scrape cycle."""

    resource_metrics: list[ResourceMetrics] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.resource_metrics)

    def extend(self, other: MetricBatch) -> None:
        self.resource_metrics.extend(other.resource_metrics)

    @property
    def data_point_count(self) -> int:
        return sum(
            len(metric.points)
            for resource in self.resource_metrics
            for metric in resource.metrics
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_metrics": [
                {
                    "resource": resource.attributes,
                    "metrics": [
                        {
                            "name": metric.name,
                            "description": metric.description,
                            "unit": metric.unit,
                            "points": [
                                {
                                    "timestamp": point.timestamp.isoformat(),
                                    "value": point.value,
                                    "attributes": point.attributes,
                                }
                                for point in metric.points
                            ],
                        }
                        for metric in resource.metrics
                    ],
                }
                for resource in self.resource_metrics
            ]
        }
