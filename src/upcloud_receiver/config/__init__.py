"""
Receiver configuration system.

Provides:
- Pydantic-based settings (YAML file plus UPCLOUD_RECEIVER_* environment overrides)
- Inline or file-based credential resolution
"""

from upcloud_receiver.config.loader import build_config, get_config_path, load_config
from upcloud_receiver.config.secrets import resolve_secret
from upcloud_receiver.config.settings import (
    APIConfig,
    ManagedDatabaseConfig,
    ManagedLoadBalancerConfig,
    ReceiverConfig,
    parse_duration,
)

__all__ = [
    # Settings
    "APIConfig",
    "ManagedDatabaseConfig",
    "ManagedLoadBalancerConfig",
    "ReceiverConfig",
    "parse_duration",
    # Secrets
    "resolve_secret",
    # Loader
    "build_config",
    "get_config_path",
    "load_config",
]
