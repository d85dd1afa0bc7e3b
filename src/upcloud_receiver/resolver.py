"""
Scrape target resolution.

Merges configured UUIDs with auto-discovered ones, removes exclusions and
returns a deduplicated, sorted target list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import structlog

from upcloud_receiver.client import UpCloudClient, dedupe
from upcloud_receiver.config.settings import ManagedDatabaseConfig, ManagedLoadBalancerConfig
from upcloud_receiver.core.errors import APIError
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
)

logger = structlog.get_logger()

ResourceBlock = ManagedDatabaseConfig | ManagedLoadBalancerConfig

_DISCOVERY_LABELS = {
    RESOURCE_TYPE_MANAGED_DATABASE: "managed databases",
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER: "managed load balancers",
}


@dataclass(frozen=True, order=True)
class Target:
    """One resource to scrape in a cycle."""

    resource_type: str
    uuid: str


@dataclass(frozen=True)
class ResolvedTargets:
    """Targets for one resource type plus any discovery failure."""

    resource_type: str
    uuids: list[str]
    error: Exception | None = None

    @property
    def targets(self) -> list[Target]:
        return [Target(self.resource_type, uuid) for uuid in self.uuids]


def apply_exclusions(targets: Iterable[str], exclude: Iterable[str]) -> list[str]:
    """Deduplicate targets, drop excluded UUIDs and sort the rest."""
    unique = dedupe(list(targets))
    if not unique:
        return []

    excluded = {uuid.strip() for uuid in exclude if uuid.strip()}
    return sorted(uuid for uuid in unique if uuid not in excluded)


async def _discover(client: UpCloudClient, resource_type: str, block: ResourceBlock) -> list[str]:
    if resource_type == RESOURCE_TYPE_MANAGED_DATABASE:
        return await client.list_managed_database_uuids(
            block.discovery_path, block.discovery_limit  # type: ignore[union-attr]
        )
    return await client.list_managed_load_balancer_uuids(block.discovery_path)


async def resolve_targets(
    client: UpCloudClient,
    resource_type: str,
    block: ResourceBlock,
) -> ResolvedTargets:
    """
    Resolve the UUIDs to scrape for one resource type.

    A discovery failure does not abort resolution: the explicit UUIDs are
    still returned and the failure is carried in ``ResolvedTargets.error``.
    """
    targets = list(block.uuids)
    if block.auto_discover:
        try:
            discovered = await _discover(client, resource_type, block)
        except APIError as exc:
            label = _DISCOVERY_LABELS.get(resource_type, resource_type)
            error = APIError(f"discover {label}: {exc}")
            error.__cause__ = exc
            logger.warning("discovery_failed", resource_type=resource_type, error=str(exc))
            return ResolvedTargets(
                resource_type, apply_exclusions(targets, block.exclude_uuids), error
            )
        targets.extend(discovered)

    return ResolvedTargets(resource_type, apply_exclusions(targets, block.exclude_uuids))
