"""
Payload normalization for UpCloud metrics responses.

The metrics endpoints return one of two shapes:

- tabular: ``{"<key>": {"data": {"cols": [...], "rows": [[...]]}, "hints": {...}}}``
- snapshot (load balancers only): ``{"frontends": [...], "backends": [...]}``
  where each entry carries ``name``, ``updated_at`` and numeric fields.

A raw payload is first classified into a ``TabularPayload`` or a
``SnapshotPayload``; ``normalize()`` turns either into a ``MetricsResponse``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Union

import structlog

from upcloud_receiver.core.errors import PayloadDecodeError, SnapshotConversionError
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    MetricsColumn,
    MetricsData,
    MetricsHints,
    MetricsItem,
    MetricsResponse,
)

logger = structlog.get_logger()

SNAPSHOT_COLLECTIONS = ("frontends", "backends")

_RFC3339 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_rfc3339(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp, with or without fractional seconds."""
    if not isinstance(value, str):
        return None
    match = _RFC3339.match(value.strip())
    if match is None:
        return None

    offset = match.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    fraction = (match.group("fraction") or "")[:6]
    text = f"{match.group('date')}T{match.group('time')}"
    if fraction:
        text += "." + fraction.ljust(6, "0")
    try:
        parsed = datetime.fromisoformat(text + offset)
    except ValueError:
        return None
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_float(value: Any) -> float | None:
    """Coerce a JSON value to float, or return None when it is not numeric.

    Values outside the float range (huge integers, ``Decimal("1e400")``) are
    treated as non-numeric.
    """
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float, Decimal)):
            result = float(value)
        elif isinstance(value, str):
            result = float(Decimal(value.strip()))
        else:
            return None
    except (InvalidOperation, ValueError, OverflowError):
        return None
    if math.isinf(result):
        return None
    return result


# ---------------------------------------------------------------------------
# Tabular decoding
# ---------------------------------------------------------------------------


def _expect(value: Any, expected: type | tuple[type, ...], where: str) -> Any:
    if value is not None and not isinstance(value, expected):
        raise PayloadDecodeError(
            f"unmarshal metrics response: {where} has unexpected type {type(value).__name__}"
        )
    return value


def _decode_column(raw: Any, where: str) -> MetricsColumn:
    _expect(raw, dict, where)
    if raw is None:
        return MetricsColumn()
    label = _expect(raw.get("label"), str, f"{where}.label")
    col_type = _expect(raw.get("type"), str, f"{where}.type")
    return MetricsColumn(label=label or "", type=col_type or "")


def _decode_item(key: str, raw: Any) -> MetricsItem:
    _expect(raw, dict, key)
    if raw is None:
        return MetricsItem()

    data = _expect(raw.get("data"), dict, f"{key}.data") or {}
    cols = _expect(data.get("cols"), list, f"{key}.data.cols") or []
    rows = _expect(data.get("rows"), list, f"{key}.data.rows") or []
    hints = _expect(raw.get("hints"), dict, f"{key}.hints") or {}
    title = _expect(hints.get("title"), str, f"{key}.hints.title") or ""

    decoded_rows = []
    for idx, row in enumerate(rows):
        _expect(row, list, f"{key}.data.rows[{idx}]")
        decoded_rows.append(list(row or []))

    return MetricsItem(
        data=MetricsData(
            cols=[_decode_column(col, f"{key}.data.cols[{idx}]") for idx, col in enumerate(cols)],
            rows=decoded_rows,
        ),
        hints=MetricsHints(title=title),
    )


def decode_metrics_response(payload: Any) -> MetricsResponse:
    """
    Decode a tabular metrics payload.

    Raises:
        PayloadDecodeError: If the payload does not have the tabular shape
    """
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise PayloadDecodeError(
            f"unmarshal metrics response: expected an object, got {type(payload).__name__}"
        )
    return {str(key): _decode_item(str(key), raw) for key, raw in payload.items()}


# ---------------------------------------------------------------------------
# Snapshot conversion
# ---------------------------------------------------------------------------


@dataclass
class _SeriesBucket:
    timestamp: datetime
    values: dict[str, float] = field(default_factory=dict)


def _entity_name(obj: dict[str, Any], fallback: str) -> str:
    name = obj.get("name")
    if not isinstance(name, str) or not name.strip():
        return fallback
    return name


def convert_load_balancer_snapshot(
    payload: Any,
    fetched_at: datetime | None = None,
) -> MetricsResponse:
    """
    Convert a load balancer snapshot into a tabular metrics response.

    Every numeric field of a frontend, backend or backend member becomes a
    metric keyed ``frontend.<field>``, ``backend.<field>`` or
    ``backend.member.<field>`` with one column per series.

    Raises:
        SnapshotConversionError: If the payload holds no numeric fields
    """
    if not isinstance(payload, dict):
        raise SnapshotConversionError("snapshot payload is not an object")

    fallback_ts = fetched_at or utc_now()
    buckets: dict[str, _SeriesBucket] = {}

    def add_metric(metric_key: str, series: str, value: float, ts: datetime) -> None:
        bucket = buckets.get(metric_key)
        if bucket is None:
            bucket = _SeriesBucket(timestamp=ts)
            buckets[metric_key] = bucket
        if ts > bucket.timestamp:
            bucket.timestamp = ts
        bucket.values[series] = value

    def process_object(prefix: str, series: str, obj: dict[str, Any]) -> None:
        ts = parse_rfc3339(obj.get("updated_at")) or fallback_ts
        for key, raw in obj.items():
            value = to_float(raw)
            if value is None:
                continue
            add_metric(f"{prefix}.{key}", series, value, ts)

    frontends = payload.get("frontends")
    for idx, item in enumerate(frontends if isinstance(frontends, list) else []):
        if not isinstance(item, dict):
            continue
        name = _entity_name(item, f"frontend-{idx}")
        process_object("frontend", f"frontend:{name}", item)

    backends = payload.get("backends")
    for idx, item in enumerate(backends if isinstance(backends, list) else []):
        if not isinstance(item, dict):
            continue
        name = _entity_name(item, f"backend-{idx}")
        series = f"backend:{name}"
        process_object("backend", series, item)

        members = item.get("members")
        for m_idx, member in enumerate(members if isinstance(members, list) else []):
            if not isinstance(member, dict):
                continue
            member_name = _entity_name(member, f"member-{m_idx}")
            process_object("backend.member", f"{series}/member:{member_name}", member)

    if not buckets:
        raise SnapshotConversionError("no numeric load balancer metrics discovered")

    response: MetricsResponse = {}
    for metric_key, bucket in buckets.items():
        series_names = sorted(bucket.values)
        cols = [MetricsColumn(label="time", type="date")]
        row: list[Any] = [format_rfc3339(bucket.timestamp)]
        for series in series_names:
            cols.append(MetricsColumn(label=series, type="number"))
            row.append(bucket.values[series])

        response[metric_key] = MetricsItem(
            data=MetricsData(cols=cols, rows=[row]),
            hints=MetricsHints(title=metric_key.replace("_", " ")),
        )

    logger.debug("converted_load_balancer_snapshot", metric_count=len(response))
    return response


# ---------------------------------------------------------------------------
# Tagged payload variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TabularPayload:
    """A payload already in the canonical columns/rows shape."""

    response: MetricsResponse


@dataclass(frozen=True)
class SnapshotPayload:
    """A nested point-in-time load balancer snapshot."""

    root: dict[str, Any]


RawPayload = Union[TabularPayload, SnapshotPayload]


def is_snapshot_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and any(
        isinstance(payload.get(name), list) for name in SNAPSHOT_COLLECTIONS
    )


def decode_payload(payload: Any, resource_type: str) -> RawPayload:
    """
    Classify a decoded JSON body for the given resource type.

    Only managed load balancers produce snapshots.

    Raises:
        PayloadDecodeError: If a tabular payload has an unexpected structure
    """
    if resource_type == RESOURCE_TYPE_MANAGED_LOAD_BALANCER and is_snapshot_payload(payload):
        return SnapshotPayload(root=payload)
    return TabularPayload(response=decode_metrics_response(payload))


def normalize(raw: RawPayload, fetched_at: datetime | None = None) -> MetricsResponse:
    """Turn a classified payload into a tabular metrics response."""
    if isinstance(raw, SnapshotPayload):
        return convert_load_balancer_snapshot(raw.root, fetched_at)
    return raw.response


def normalize_payload(
    payload: Any,
    resource_type: str,
    fetched_at: datetime | None = None,
) -> MetricsResponse:
    """Classify and normalize a decoded JSON body in one step."""
    return normalize(decode_payload(payload, resource_type), fetched_at)
