"""
UpCloud API client.

Fetches managed database and managed load balancer metrics and lists
resource UUIDs for auto-discovery.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Generator
from urllib.parse import quote

import httpx
import structlog

from upcloud_receiver.config.secrets import resolve_secret
from upcloud_receiver.config.settings import (
    DEFAULT_DISCOVERY_LIMIT,
    DEFAULT_LOAD_BALANCER_METRICS_TEMPLATE,
    UUID_PLACEHOLDER,
    APIConfig,
)
from upcloud_receiver.core.errors import APIError, ConfigurationError
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    MetricsResponse,
)
from upcloud_receiver.normalizer import normalize_payload, utc_now

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "upcloud-metrics-receiver/0.1.0"
MANAGED_DATABASE_METRICS_PATH = "/1.3/database/{uuid}/metrics"


class BearerAuth(httpx.Auth):
    """Attach a bearer token to every request."""

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


@dataclass(frozen=True)
class RequestAuth:
    """Resolved credentials: a bearer token or a username/password pair."""

    bearer_token: str = field(default="", repr=False)
    username: str = ""
    password: str = field(default="", repr=False)

    @property
    def is_bearer(self) -> bool:
        return bool(self.bearer_token.strip())

    def to_httpx(self) -> httpx.Auth:
        if self.is_bearer:
            return BearerAuth(self.bearer_token)
        return httpx.BasicAuth(self.username, self.password)


def resolve_request_auth(api: APIConfig) -> RequestAuth:
    """
    Resolve API credentials once, reading secret files if configured.

    Bearer auth takes precedence over basic auth.

    Raises:
        SecretResolutionError: If a secret file is unreadable or empty
        ConfigurationError: If no usable credentials are configured
    """
    token = resolve_secret(
        api.token.get_secret_value(), api.token_file, "api.token", "api.token_file"
    )
    if token:
        return RequestAuth(bearer_token=token)

    password = resolve_secret(
        api.password.get_secret_value(), api.password_file, "api.password", "api.password_file"
    )
    if not api.username.strip() or not password:
        raise ConfigurationError(
            "api authentication is required: set token/token_file or username+password"
        )
    return RequestAuth(username=api.username, password=password)


def _extract_uuids_from_array(items: list[Any]) -> list[str]:
    ids = []
    for item in items:
        if not isinstance(item, dict):
            continue
        raw = item.get("uuid")
        if not isinstance(raw, str):
            continue
        uuid = raw.strip()
        if uuid:
            ids.append(uuid)
    return dedupe(ids)


def extract_uuids(payload: Any) -> list[str]:
    """
    Extract resource UUIDs from a listing response.

    Accepts a bare array of objects, or an object whose own ``uuid`` and
    whose array values (one level down) carry ``uuid`` fields.
    """
    if isinstance(payload, list):
        return _extract_uuids_from_array(payload)
    if isinstance(payload, dict):
        ids = []
        own = payload.get("uuid")
        if isinstance(own, str) and own.strip():
            ids.append(own.strip())
        for value in payload.values():
            if isinstance(value, list):
                ids.extend(_extract_uuids_from_array(value))
        return dedupe(ids)
    return []


def dedupe(values: list[str]) -> list[str]:
    """Drop duplicates, keeping the first occurrence order."""
    return list(dict.fromkeys(values))


class UpCloudClient:
    """Async client for the UpCloud managed services API."""

    def __init__(
        self,
        api: APIConfig,
        load_balancer_path_template: str = DEFAULT_LOAD_BALANCER_METRICS_TEMPLATE,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = api.endpoint.strip().rstrip("/")
        self._auth = resolve_request_auth(api)
        self._timeout = api.timeout
        self._user_agent = user_agent
        self._load_balancer_path_template = load_balancer_path_template
        self._client = httpx.AsyncClient(
            auth=self._auth.to_httpx(),
            timeout=api.timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def auth(self) -> RequestAuth:
        return self._auth

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "UpCloudClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_managed_database_metrics(self, uuid: str, period: str) -> MetricsResponse:
        """Fetch the metrics of one managed database."""
        path = MANAGED_DATABASE_METRICS_PATH.replace(UUID_PLACEHOLDER, quote(uuid, safe=""))
        return await self._get_metrics(path, period, RESOURCE_TYPE_MANAGED_DATABASE)

    async def get_managed_load_balancer_metrics(self, uuid: str, period: str) -> MetricsResponse:
        """Fetch the metrics of one managed load balancer."""
        path = self._load_balancer_path_template.replace(UUID_PLACEHOLDER, quote(uuid, safe=""))
        return await self._get_metrics(path, period, RESOURCE_TYPE_MANAGED_LOAD_BALANCER)

    async def get_metrics(self, resource_type: str, uuid: str, period: str) -> MetricsResponse:
        if resource_type == RESOURCE_TYPE_MANAGED_DATABASE:
            return await self.get_managed_database_metrics(uuid, period)
        if resource_type == RESOURCE_TYPE_MANAGED_LOAD_BALANCER:
            return await self.get_managed_load_balancer_metrics(uuid, period)
        raise ValueError(f"unknown resource type: {resource_type}")

    async def list_managed_database_uuids(self, discovery_path: str, limit: int) -> list[str]:
        """
        List managed database UUIDs, following limit/offset pagination.

        Pagination stops on a short page or on a page with no unseen UUIDs,
        whichever comes first.
        """
        if limit <= 0:
            limit = DEFAULT_DISCOVERY_LIMIT

        seen: set[str] = set()
        discovered: list[str] = []
        offset = 0
        while True:
            payload = await self._get_json(
                discovery_path, {"limit": str(limit), "offset": str(offset)}
            )
            page = extract_uuids(payload)
            new_items = 0
            for uuid in page:
                if uuid in seen:
                    continue
                seen.add(uuid)
                discovered.append(uuid)
                new_items += 1

            if len(page) < limit or new_items == 0:
                break
            offset += limit

        logger.debug("discovered_managed_databases", count=len(discovered))
        return sorted(discovered)

    async def list_managed_load_balancer_uuids(self, discovery_path: str) -> list[str]:
        """List managed load balancer UUIDs from a single listing page."""
        payload = await self._get_json(discovery_path, None)
        ids = sorted(set(extract_uuids(payload)))
        logger.debug("discovered_managed_load_balancers", count=len(ids))
        return ids

    async def _get_metrics(self, path: str, period: str, resource_type: str) -> MetricsResponse:
        params = {}
        if period.strip():
            params["period"] = period

        fetched_at = utc_now()
        payload = await self._get_json(path, params)
        return normalize_payload(payload, resource_type, fetched_at)

    async def _get_json(self, path: str, params: dict[str, str] | None) -> Any:
        """Execute a GET request and decode the JSON body without float rounding."""
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{self._base_url}{path}"
        headers = {"Accept": "application/json", "User-Agent": self._user_agent}

        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise APIError(f"request {path}: {exc}") from exc

        if not response.is_success:
            raise APIError(
                f"unexpected status code {response.status_code} for {path}",
                details={"status": response.status_code, "path": path},
            )

        try:
            return json.loads(response.content, parse_float=Decimal)
        except ValueError as exc:
            raise APIError(f"decode response from {path}: {exc}") from exc
