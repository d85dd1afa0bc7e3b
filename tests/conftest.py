"""Root test configuration."""

import logging

import pytest
import structlog

from upcloud_receiver.config import build_config


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


API_ENDPOINT = "https://api.upcloud.test"


def make_config(**overrides):
    """Build a valid config with bearer auth and one explicit database."""
    data = {
        "collection_interval": 60,
        "initial_delay": 0,
        "api": {"endpoint": API_ENDPOINT, "token": "test-token", "timeout": 5},
        "managed_databases": {
            "enabled": True,
            "uuids": ["db-uuid"],
            "auto_discover": False,
        },
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return build_config(data)


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def config():
    return make_config()
