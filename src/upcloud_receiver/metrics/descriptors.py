"""
Metric descriptor registry.

Maps a raw UpCloud metric key to a canonical metric name, unit and value
normalization rule. Known keys come from a static table; unknown keys get a
name derived from the sanitized key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
)

_INVALID_METRIC_CHARS = re.compile(r"[^a-z0-9]+")

UTILIZATION_SUFFIXES = ("_usage", "_utilization")
UNKNOWN_METRIC_PATH = "unknown"

UNIT_RATIO = "1"
UNIT_OPERATIONS_PER_SECOND = "{operation}/s"
UNIT_BYTES_PER_SECOND = "By/s"


@dataclass(frozen=True)
class MetricDescriptor:
    """Canonical name, unit and normalization for a raw metric key."""

    name: str
    unit: str
    percent_to_ratio: bool = False

    def normalize_value(self, value: float) -> float:
        if self.percent_to_ratio:
            return value / 100.0
        return value


_MANAGED_DATABASE_DESCRIPTORS: Mapping[str, MetricDescriptor] = MappingProxyType(
    {
        "cpu_usage": MetricDescriptor(
            "upcloud.managed_database.cpu.utilization", UNIT_RATIO, percent_to_ratio=True
        ),
        "mem_usage": MetricDescriptor(
            "upcloud.managed_database.memory.utilization", UNIT_RATIO, percent_to_ratio=True
        ),
        "disk_usage": MetricDescriptor(
            "upcloud.managed_database.disk.utilization", UNIT_RATIO, percent_to_ratio=True
        ),
        "load_average": MetricDescriptor(
            "upcloud.managed_database.system.load_average", UNIT_RATIO
        ),
        "diskio_reads": MetricDescriptor(
            "upcloud.managed_database.disk.io.read_operations", UNIT_OPERATIONS_PER_SECOND
        ),
        "diskio_writes": MetricDescriptor(
            "upcloud.managed_database.disk.io.write_operations", UNIT_OPERATIONS_PER_SECOND
        ),
        "net_receive": MetricDescriptor(
            "upcloud.managed_database.network.receive", UNIT_BYTES_PER_SECOND
        ),
        "net_send": MetricDescriptor(
            "upcloud.managed_database.network.transmit", UNIT_BYTES_PER_SECOND
        ),
    }
)

_MANAGED_LOAD_BALANCER_DESCRIPTORS: Mapping[str, MetricDescriptor] = MappingProxyType(
    {
        "cpu_usage": MetricDescriptor(
            "upcloud.managed_load_balancer.cpu.utilization", UNIT_RATIO, percent_to_ratio=True
        ),
        "mem_usage": MetricDescriptor(
            "upcloud.managed_load_balancer.memory.utilization", UNIT_RATIO, percent_to_ratio=True
        ),
    }
)

METRIC_DESCRIPTORS: Mapping[str, Mapping[str, MetricDescriptor]] = MappingProxyType(
    {
        RESOURCE_TYPE_MANAGED_DATABASE: _MANAGED_DATABASE_DESCRIPTORS,
        RESOURCE_TYPE_MANAGED_LOAD_BALANCER: _MANAGED_LOAD_BALANCER_DESCRIPTORS,
    }
)


def sanitize_metric_path(metric_key: str) -> str:
    """Turn a raw key into a dotted lower-case metric path segment."""
    normalized = _INVALID_METRIC_CHARS.sub(".", metric_key.lower())
    normalized = normalized.strip(".")
    normalized = normalized.replace("..", ".")
    return normalized or UNKNOWN_METRIC_PATH


def descriptor_for_metric(resource_type: str, metric_key: str) -> MetricDescriptor:
    """
    Return the descriptor for a raw metric key of a resource type.

    Never raises: unknown keys get a synthesized descriptor.
    """
    metric_key = metric_key.strip()
    known = METRIC_DESCRIPTORS.get(resource_type, {}).get(metric_key)
    if known is not None:
        return known

    for suffix in UTILIZATION_SUFFIXES:
        if metric_key.endswith(suffix):
            base = metric_key[: -len(suffix)]
            return MetricDescriptor(
                name=f"upcloud.{resource_type}.{sanitize_metric_path(base)}.utilization",
                unit=UNIT_RATIO,
                percent_to_ratio=True,
            )

    return MetricDescriptor(
        name=f"upcloud.{resource_type}.{sanitize_metric_path(metric_key)}",
        unit=UNIT_RATIO,
    )
