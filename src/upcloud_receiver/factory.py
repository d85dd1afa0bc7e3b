"""
Receiver construction.

All configuration problems (invalid settings, unreadable secret files,
missing credentials) surface here, before anything starts.
"""

from __future__ import annotations

import httpx
import structlog

from upcloud_receiver.client import UpCloudClient
from upcloud_receiver.config.settings import ReceiverConfig
from upcloud_receiver.consumers import MetricsConsumer
from upcloud_receiver.core.errors import ConfigurationError
from upcloud_receiver.receiver import MetricsReceiver

logger = structlog.get_logger()


def create_client(
    config: ReceiverConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> UpCloudClient:
    """Build the API client for a validated config."""
    return UpCloudClient(
        config.api,
        config.managed_load_balancers.metrics_path_template,
        transport=transport,
    )


def create_receiver(
    config: ReceiverConfig,
    consumer: MetricsConsumer,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MetricsReceiver:
    """
    Build a receiver that owns its API client.

    Args:
        config: Validated receiver settings
        consumer: Destination for every non-empty batch
        transport: Optional httpx transport (used by tests)

    Raises:
        ConfigurationError: If credentials cannot be resolved
    """
    if consumer is None:
        raise ConfigurationError("a metrics consumer is required")

    client = create_client(config, transport=transport)
    logger.debug(
        "receiver_created",
        endpoint=client.base_url,
        bearer_auth=client.auth.is_bearer,
        managed_databases=config.managed_databases.enabled,
        managed_load_balancers=config.managed_load_balancers.enabled,
    )
    return MetricsReceiver(config, client, consumer, close_client=True)
