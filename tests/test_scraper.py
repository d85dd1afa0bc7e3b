"""Tests for a single scrape cycle."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from upcloud_receiver.client import UpCloudClient
from upcloud_receiver.core.errors import APIError, ScrapeError
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    MetricsColumn,
    MetricsData,
    MetricsHints,
    MetricsItem,
)
from upcloud_receiver.scraper import enabled_blocks, scrape_metrics

CPU_RESPONSE = {
    "cpu_usage": MetricsItem(
        data=MetricsData(
            cols=[
                MetricsColumn("time", "date"),
                MetricsColumn("primary", "number"),
                MetricsColumn("replica", "number"),
            ],
            rows=[["2026-02-21T08:00:00Z", 2.2, 2.5]],
        ),
        hints=MetricsHints(title="CPU usage %"),
    )
}


def _client(get_metrics=None, databases=None) -> Mock:
    client = Mock(spec=UpCloudClient)
    client.get_metrics = get_metrics or AsyncMock(return_value=CPU_RESPONSE)
    client.list_managed_database_uuids = AsyncMock(return_value=databases or [])
    client.list_managed_load_balancer_uuids = AsyncMock(return_value=[])
    return client


@pytest.mark.asyncio
async def test_scrape_managed_database(config):
    client = _client()

    result = await scrape_metrics(client, config)

    assert result.errors == []
    assert result.error is None
    assert len(result.batch) == 1
    resource = result.batch.resource_metrics[0]
    assert resource.resource_uuid == "db-uuid"
    metric = resource.metrics[0]
    assert metric.name == "upcloud.managed_database.cpu.utilization"
    assert len(metric.points) == 2
    assert metric.points[0].value == pytest.approx(0.022)
    client.get_metrics.assert_awaited_once_with(RESOURCE_TYPE_MANAGED_DATABASE, "db-uuid", "5m")


@pytest.mark.asyncio
async def test_partial_failure_keeps_successful_resources(config_factory):
    config = config_factory(managed_databases={"uuids": ["db-1", "db-2"]})

    async def get_metrics(resource_type, uuid, period):
        if uuid == "db-2":
            raise APIError("unexpected status code 500 for /1.3/database/db-2/metrics")
        return CPU_RESPONSE

    client = _client(get_metrics=AsyncMock(side_effect=get_metrics))

    result = await scrape_metrics(client, config)

    assert [r.resource_uuid for r in result.batch.resource_metrics] == ["db-1"]
    assert len(result.errors) == 1
    error = result.error
    assert isinstance(error, ScrapeError)
    assert "managed database db-2" in str(error)
    assert "500" in str(error)


@pytest.mark.asyncio
async def test_errors_are_joined(config_factory):
    config = config_factory(managed_databases={"uuids": ["db-1", "db-2"]})
    client = _client(get_metrics=AsyncMock(side_effect=APIError("boom")))

    result = await scrape_metrics(client, config)

    assert len(result.batch) == 0
    assert str(result.error) == "managed database db-1: boom; managed database db-2: boom"


@pytest.mark.asyncio
async def test_no_targets_produces_empty_batch(config_factory):
    config = config_factory(managed_databases={"uuids": [], "auto_discover": True})
    client = _client(databases=[])

    result = await scrape_metrics(client, config)

    assert len(result.batch) == 0
    assert result.errors == []
    client.get_metrics.assert_not_called()


@pytest.mark.asyncio
async def test_discovery_failure_is_reported_and_explicit_targets_scraped(config_factory):
    config = config_factory(managed_databases={"uuids": ["db-1"], "auto_discover": True})
    client = _client()
    client.list_managed_database_uuids.side_effect = APIError("timeout")

    result = await scrape_metrics(client, config)

    assert [r.resource_uuid for r in result.batch.resource_metrics] == ["db-1"]
    assert str(result.error) == "discover managed databases: timeout"


@pytest.mark.asyncio
async def test_results_keep_target_order(config_factory):
    config = config_factory(managed_databases={"uuids": ["db-c", "db-a", "db-b"]})
    delays = {"db-a": 0.03, "db-b": 0.02, "db-c": 0.0}

    async def get_metrics(resource_type, uuid, period):
        await asyncio.sleep(delays[uuid])
        return CPU_RESPONSE

    client = _client(get_metrics=AsyncMock(side_effect=get_metrics))

    result = await scrape_metrics(client, config)

    assert [r.resource_uuid for r in result.batch.resource_metrics] == ["db-a", "db-b", "db-c"]


@pytest.mark.asyncio
async def test_concurrency_is_bounded(config_factory):
    config = config_factory(
        scrape_concurrency=2,
        managed_databases={"uuids": [f"db-{i}" for i in range(6)]},
    )
    in_flight = 0
    peak = 0

    async def get_metrics(resource_type, uuid, period):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return CPU_RESPONSE

    client = _client(get_metrics=AsyncMock(side_effect=get_metrics))

    result = await scrape_metrics(client, config)

    assert len(result.batch) == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_resource_types_run_in_order(config_factory):
    config = config_factory(managed_load_balancers={"enabled": True, "uuids": ["lb-1"]})
    client = _client()

    result = await scrape_metrics(client, config)

    assert [r.resource_type for r in result.batch.resource_metrics] == [
        RESOURCE_TYPE_MANAGED_DATABASE,
        RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    ]
    lb_metric = result.batch.resource_metrics[1].metrics[0]
    assert lb_metric.name == "upcloud.managed_load_balancer.cpu.utilization"


@pytest.mark.asyncio
async def test_allowlist_is_applied(config_factory):
    config = config_factory(managed_databases={"metrics": ["mem_usage"]})
    client = _client()

    result = await scrape_metrics(client, config)

    assert result.batch.resource_metrics[0].metrics == []


def test_enabled_blocks(config_factory):
    config = config_factory(
        managed_databases={"enabled": False},
        managed_load_balancers={"enabled": True, "uuids": ["lb-1"]},
    )
    assert [rt for rt, _ in enabled_blocks(config)] == [RESOURCE_TYPE_MANAGED_LOAD_BALANCER]


@pytest.mark.asyncio
async def test_out_of_range_integer_is_skipped_per_point(config_factory):
    config = config_factory(managed_databases={"uuids": ["db-a", "db-b"]})
    huge = {
        "cpu_usage": MetricsItem(
            data=MetricsData(
                cols=[
                    MetricsColumn("time", "date"),
                    MetricsColumn("primary", "number"),
                    MetricsColumn("replica", "number"),
                ],
                rows=[["2026-02-21T08:00:00Z", 10**400, 2.5]],
            ),
        )
    }

    async def get_metrics(resource_type, uuid, period):
        return huge if uuid == "db-b" else CPU_RESPONSE

    client = _client(get_metrics=AsyncMock(side_effect=get_metrics))

    result = await scrape_metrics(client, config)

    assert result.errors == []
    db_a, db_b = result.batch.resource_metrics
    assert db_a.resource_uuid == "db-a"
    assert len(db_a.metrics[0].points) == 2
    assert [p.series for p in db_b.metrics[0].points] == ["replica"]
    assert db_b.metrics[0].points[0].value == pytest.approx(0.025)


@pytest.mark.asyncio
async def test_unexpected_target_error_does_not_abort_cycle(config_factory):
    config = config_factory(managed_databases={"uuids": ["db-a", "db-b"]})

    async def get_metrics(resource_type, uuid, period):
        if uuid == "db-b":
            raise RuntimeError("connection pool exhausted")
        return CPU_RESPONSE

    client = _client(get_metrics=AsyncMock(side_effect=get_metrics))

    result = await scrape_metrics(client, config)

    assert [r.resource_uuid for r in result.batch.resource_metrics] == ["db-a"]
    assert str(result.error) == "managed database db-b: connection pool exhausted"
    assert isinstance(result.errors[0], APIError)
    assert isinstance(result.errors[0].__cause__, RuntimeError)
