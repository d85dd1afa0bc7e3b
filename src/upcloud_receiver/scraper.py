"""
One scrape cycle across all enabled resource types.

Per target: fetch -> normalize -> describe -> emit. Targets run under a
fixed concurrency cap; results are assembled in target order and failures
are collected without aborting the cycle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from upcloud_receiver.client import UpCloudClient
from upcloud_receiver.config.settings import ReceiverConfig
from upcloud_receiver.core.errors import APIError, ReceiverError, ScrapeError
from upcloud_receiver.emitter import append_metrics_payload
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    MetricBatch,
)
from upcloud_receiver.resolver import ResourceBlock, Target, resolve_targets

logger = structlog.get_logger()

_TARGET_LABELS = {
    RESOURCE_TYPE_MANAGED_DATABASE: "managed database",
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER: "managed load balancer",
}


@dataclass
class ScrapeResult:
    """Batch and errors produced by one scrape cycle."""

    batch: MetricBatch = field(default_factory=MetricBatch)
    errors: list[Exception] = field(default_factory=list)

    @property
    def error(self) -> ScrapeError | None:
        if not self.errors:
            return None
        return ScrapeError(self.errors)


def enabled_blocks(config: ReceiverConfig) -> list[tuple[str, ResourceBlock]]:
    blocks: list[tuple[str, ResourceBlock]] = []
    if config.managed_databases.enabled:
        blocks.append((RESOURCE_TYPE_MANAGED_DATABASE, config.managed_databases))
    if config.managed_load_balancers.enabled:
        blocks.append((RESOURCE_TYPE_MANAGED_LOAD_BALANCER, config.managed_load_balancers))
    return blocks


async def _scrape_target(
    client: UpCloudClient,
    target: Target,
    block: ResourceBlock,
    semaphore: asyncio.Semaphore,
) -> MetricBatch | Exception:
    async with semaphore:
        try:
            payload = await client.get_metrics(target.resource_type, target.uuid, block.period)
            batch = MetricBatch()
            append_metrics_payload(
                batch, payload, target.resource_type, target.uuid, block.metrics
            )
        except Exception as exc:
            label = _TARGET_LABELS.get(target.resource_type, target.resource_type)
            details = exc.details if isinstance(exc, ReceiverError) else None
            error = APIError(f"{label} {target.uuid}: {exc}", details=details)
            error.__cause__ = exc
            logger.warning(
                "target_scrape_failed",
                resource_type=target.resource_type,
                uuid=target.uuid,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return error
    return batch


async def scrape_metrics(client: UpCloudClient, config: ReceiverConfig) -> ScrapeResult:
    """Run one scrape cycle and return everything it produced."""
    result = ScrapeResult()
    semaphore = asyncio.Semaphore(config.scrape_concurrency)

    for resource_type, block in enabled_blocks(config):
        resolved = await resolve_targets(client, resource_type, block)
        if resolved.error is not None:
            result.errors.append(resolved.error)

        targets = resolved.targets
        if not targets:
            logger.debug("no_targets_resolved", resource_type=resource_type)
            continue

        outcomes = await asyncio.gather(
            *(_scrape_target(client, target, block, semaphore) for target in targets)
        )
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                result.errors.append(outcome)
            else:
                result.batch.extend(outcome)

    logger.debug(
        "scrape_cycle_complete",
        resources=len(result.batch),
        data_points=result.batch.data_point_count,
        errors=len(result.errors),
    )
    return result
