"""
Downstream consumers for scraped metric batches.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog
from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.semconv.attributes.service_attributes import SERVICE_NAME as ATTR_SERVICE_NAME

from upcloud_receiver.metrics.models import MetricBatch

logger = structlog.get_logger()

INSTRUMENTATION_SCOPE = "upcloud_receiver"
SERVICE_NAME = "upcloud-metrics-receiver"


class MetricsConsumer(Protocol):
    """Receives the batch produced by each scrape cycle."""

    async def consume_metrics(self, batch: MetricBatch) -> None:
        ...


class LoggingConsumer:
    """Writes every data point to the structured log."""

    def __init__(self, event: str = "metric_point") -> None:
        self._event = event

    async def consume_metrics(self, batch: MetricBatch) -> None:
        for resource in batch.resource_metrics:
            for metric in resource.metrics:
                for point in metric.points:
                    logger.info(
                        self._event,
                        metric=metric.name,
                        unit=metric.unit,
                        value=point.value,
                        timestamp=point.timestamp.isoformat(),
                        resource=resource.attributes,
                        attributes=point.attributes,
                    )


class CollectingConsumer:
    """Keeps every batch in memory."""

    def __init__(self) -> None:
        self.batches: list[MetricBatch] = []

    async def consume_metrics(self, batch: MetricBatch) -> None:
        self.batches.append(batch)


class OpenTelemetryConsumer:
    """Records data points on OpenTelemetry synchronous gauges.

    Synchronous gauges carry no timestamp of their own: the SDK stamps each
    value at collection time, so the sample time from the API row is not
    exported. It is still available on each ``GaugePoint`` for other consumers.
    """

    def __init__(self, meter_provider: metrics.MeterProvider | None = None) -> None:
        provider = meter_provider or metrics.get_meter_provider()
        self._meter = provider.get_meter(INSTRUMENTATION_SCOPE)
        self._gauges: dict[tuple[str, str], Any] = {}

    def _gauge(self, name: str, unit: str, description: str) -> Any:
        key = (name, unit)
        gauge = self._gauges.get(key)
        if gauge is None:
            gauge = self._meter.create_gauge(name, unit=unit, description=description)
            self._gauges[key] = gauge
        return gauge

    async def consume_metrics(self, batch: MetricBatch) -> None:
        recorded = 0
        for resource in batch.resource_metrics:
            for metric in resource.metrics:
                gauge = self._gauge(metric.name, metric.unit, metric.description)
                for point in metric.points:
                    gauge.set(point.value, attributes={**resource.attributes, **point.attributes})
                    recorded += 1
        logger.debug("otel_points_recorded", count=recorded)


def create_meter_provider(
    otlp_endpoint: str | None = None,
    *,
    export_interval_seconds: float = 60.0,
) -> MeterProvider:
    """Build a MeterProvider exporting over OTLP/HTTP, or to stdout without an endpoint."""
    exporter: MetricExporter
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter

        exporter = OTLPMetricExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleMetricExporter()

    reader = PeriodicExportingMetricReader(
        exporter, export_interval_millis=export_interval_seconds * 1000
    )
    resource = Resource.create({ATTR_SERVICE_NAME: SERVICE_NAME})
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    logger.info("otel_meter_provider_configured", endpoint=otlp_endpoint or "console")
    return provider
