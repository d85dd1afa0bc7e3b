"""
Receiver settings using Pydantic.

Values come from the YAML config file and can be overridden by environment
variables with the UPCLOUD_RECEIVER_ prefix (nested keys joined with "__",
e.g. UPCLOUD_RECEIVER_API__TOKEN).
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Annotated, Any
from urllib.parse import urlparse

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_ENDPOINT = "https://api.upcloud.com"
DEFAULT_COLLECTION_INTERVAL = 60.0
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_API_TIMEOUT = 10.0
DEFAULT_SCRAPE_CONCURRENCY = 4
DEFAULT_MANAGED_DATABASE_PERIOD = "5m"
DEFAULT_MANAGED_LOAD_BALANCER_PERIOD = "5m"
DEFAULT_MANAGED_DATABASE_DISCOVERY = "/1.3/database"
DEFAULT_MANAGED_LOAD_BALANCER_DISCOVERY = "/1.3/load-balancer"
DEFAULT_DISCOVERY_LIMIT = 100
DEFAULT_LOAD_BALANCER_METRICS_TEMPLATE = "/1.3/load-balancer/{uuid}/metrics"

UUID_PLACEHOLDER = "{uuid}"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds), timedeltas, numeric strings and
    Go-style duration strings such as "30s", "5m", "1m30s" or "250ms".
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, timedelta):
        return value.total_seconds()
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("duration must not be empty")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    try:
        return sign * float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


Duration = Annotated[float, BeforeValidator(parse_duration)]


def _has_text(value: str | SecretStr | None) -> bool:
    if value is None:
        return False
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    return value.strip() != ""


class APIConfig(BaseModel):
    """UpCloud API endpoint and authentication settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: str = DEFAULT_API_ENDPOINT
    token: SecretStr = SecretStr("")
    token_file: str = ""
    username: str = ""
    password: SecretStr = SecretStr("")
    password_file: str = ""
    timeout: Duration = DEFAULT_API_TIMEOUT

    def validate_auth(self) -> None:
        """Check that exactly one authentication method is configured."""
        has_token = _has_text(self.token)
        has_token_file = _has_text(self.token_file)
        has_bearer = has_token or has_token_file

        has_username = _has_text(self.username)
        has_password = _has_text(self.password)
        has_password_file = _has_text(self.password_file)
        has_basic = has_username or has_password or has_password_file

        if has_token and has_token_file:
            raise ValueError("api.token and api.token_file are mutually exclusive")
        if has_password and has_password_file:
            raise ValueError("api.password and api.password_file are mutually exclusive")
        if has_bearer and has_basic:
            raise ValueError(
                "bearer auth (token/token_file) and basic auth (username/password) "
                "are mutually exclusive"
            )
        if not has_bearer and not has_basic:
            raise ValueError(
                "api authentication is required: set token/token_file or username+password"
            )
        if has_basic:
            if not has_username:
                raise ValueError("api.username is required when using basic auth")
            if not has_password and not has_password_file:
                raise ValueError(
                    "api.password or api.password_file is required when using basic auth"
                )


class ManagedDatabaseConfig(BaseModel):
    """Managed database scraping settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    uuids: tuple[str, ...] = ()
    exclude_uuids: tuple[str, ...] = ()
    period: str = DEFAULT_MANAGED_DATABASE_PERIOD
    metrics: tuple[str, ...] = ()
    auto_discover: bool = True
    discovery_path: str = DEFAULT_MANAGED_DATABASE_DISCOVERY
    discovery_limit: int = DEFAULT_DISCOVERY_LIMIT


class ManagedLoadBalancerConfig(BaseModel):
    """Managed load balancer scraping settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = False
    uuids: tuple[str, ...] = ()
    exclude_uuids: tuple[str, ...] = ()
    period: str = DEFAULT_MANAGED_LOAD_BALANCER_PERIOD
    metrics: tuple[str, ...] = ()
    auto_discover: bool = False
    discovery_path: str = DEFAULT_MANAGED_LOAD_BALANCER_DISCOVERY
    metrics_path_template: str = DEFAULT_LOAD_BALANCER_METRICS_TEMPLATE


class ReceiverConfig(BaseSettings):
    """Receiver settings."""

    model_config = SettingsConfigDict(
        env_prefix="UPCLOUD_RECEIVER_",
        env_nested_delimiter="__",
        frozen=True,
        extra="forbid",
    )

    collection_interval: Duration = DEFAULT_COLLECTION_INTERVAL
    initial_delay: Duration = DEFAULT_INITIAL_DELAY
    scrape_concurrency: int = DEFAULT_SCRAPE_CONCURRENCY
    api: APIConfig = Field(default_factory=APIConfig)
    managed_databases: ManagedDatabaseConfig = Field(default_factory=ManagedDatabaseConfig)
    managed_load_balancers: ManagedLoadBalancerConfig = Field(
        default_factory=ManagedLoadBalancerConfig
    )

    @model_validator(mode="after")
    def _validate(self) -> "ReceiverConfig":
        if self.collection_interval <= 0:
            raise ValueError("collection_interval must be > 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.scrape_concurrency <= 0:
            raise ValueError("scrape_concurrency must be > 0")

        endpoint = self.api.endpoint.strip()
        if not endpoint:
            raise ValueError("api.endpoint is required")
        parsed = urlparse(endpoint)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"api.endpoint is invalid: {endpoint!r} is not an absolute URL")
        self.api.validate_auth()
        if self.api.timeout <= 0:
            raise ValueError("api.timeout must be > 0")

        dbs = self.managed_databases
        lbs = self.managed_load_balancers
        if not dbs.enabled and not lbs.enabled:
            raise ValueError("at least one managed service block must be enabled")

        if dbs.enabled:
            if not dbs.auto_discover and not dbs.uuids:
                raise ValueError(
                    "managed_databases.uuids must be set when managed_databases.enabled=true "
                    "and auto_discover=false"
                )
            if dbs.auto_discover:
                if not dbs.discovery_path.strip():
                    raise ValueError(
                        "managed_databases.discovery_path is required when auto_discover=true"
                    )
                if dbs.discovery_limit <= 0:
                    raise ValueError(
                        "managed_databases.discovery_limit must be > 0 when auto_discover=true"
                    )

        if lbs.enabled:
            if not lbs.auto_discover and not lbs.uuids:
                raise ValueError(
                    "managed_load_balancers.uuids must be set when "
                    "managed_load_balancers.enabled=true and auto_discover=false"
                )
            if lbs.auto_discover and not lbs.discovery_path.strip():
                raise ValueError(
                    "managed_load_balancers.discovery_path is required when auto_discover=true"
                )
            if UUID_PLACEHOLDER not in lbs.metrics_path_template:
                raise ValueError(
                    f"managed_load_balancers.metrics_path_template must contain {UUID_PLACEHOLDER}"
                )
        return self
