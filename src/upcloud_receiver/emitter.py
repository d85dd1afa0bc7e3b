from __future__ import annotations

from typing import Iterable

import structlog

from upcloud_receiver.metrics.descriptors import descriptor_for_metric
from upcloud_receiver.metrics.models import (
    GaugeMetric,
    GaugePoint,
    MetricBatch,
    MetricsItem,
    MetricsResponse,
    ResourceMetrics,
)
from upcloud_receiver.normalizer import parse_rfc3339, to_float, utc_now

logger = structlog.get_logger()


def to_allowlist(values: Iterable[str]) -> frozenset[str]:
    return frozenset(v.strip() for v in values if v.strip())


def build_metric(metric_key: str, item: MetricsItem, resource_type: str) -> GaugeMetric | None:
    """Build a gauge from the latest row of a metric table."""
    if not item.is_emittable:
        logger.debug("skipping_empty_metric", metric=metric_key)
        return None

    row = item.latest_row
    if len(row) < 2:
        return None

    timestamp = parse_rfc3339(row[0]) or utc_now()
    descriptor = descriptor_for_metric(resource_type, metric_key)
    metric = GaugeMetric(
        name=descriptor.name,
        unit=descriptor.unit,
        description=item.hints.title,
    )

    cols = item.data.cols
    for idx in range(1, min(len(cols), len(row))):
        value = to_float(row[idx])
        if value is None:
            logger.debug("skipping_non_numeric_value", metric=metric_key, column=idx)
            continue
        metric.points.append(
            GaugePoint(
                timestamp=timestamp,
                value=descriptor.normalize_value(value),
                series=cols[idx].label,
                metric_key=metric_key,
                percent_to_ratio=descriptor.percent_to_ratio,
            )
        )
    return metric


def append_metrics_payload(
    batch: MetricBatch,
    payload: MetricsResponse,
    resource_type: str,
    resource_uuid: str,
    allowlist: Iterable[str] = (),
) -> ResourceMetrics:
    """Append one resource's metrics to the batch and return the new entry."""
    allowed = to_allowlist(allowlist)
    resource = ResourceMetrics(resource_type=resource_type, resource_uuid=resource_uuid)

    for metric_key, item in payload.items():
        if allowed and metric_key not in allowed:
            continue
        metric = build_metric(metric_key, item, resource_type)
        if metric is not None:
            resource.metrics.append(metric)

    batch.resource_metrics.append(resource)
    return resource
