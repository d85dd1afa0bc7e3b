"""Tests for payload classification and normalization."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from upcloud_receiver.core.errors import PayloadDecodeError, SnapshotConversionError
from upcloud_receiver.metrics.models import (
    RESOURCE_TYPE_MANAGED_DATABASE,
    RESOURCE_TYPE_MANAGED_LOAD_BALANCER,
    MetricsColumn,
)
from upcloud_receiver.normalizer import (
    SnapshotPayload,
    TabularPayload,
    convert_load_balancer_snapshot,
    decode_metrics_response,
    decode_payload,
    normalize,
    normalize_payload,
    parse_rfc3339,
    to_float,
)

FETCHED_AT = datetime(2026, 2, 21, 7, 0, 0, tzinfo=timezone.utc)

TABULAR_PAYLOAD = {
    "cpu_usage": {
        "data": {
            "cols": [
                {"label": "time", "type": "date"},
                {"label": "primary", "type": "number"},
                {"label": "replica", "type": "number"},
            ],
            "rows": [
                ["2026-02-21T07:59:00Z", 1.5, 1.7],
                ["2026-02-21T08:00:00Z", 2.2, 2.5],
            ],
        },
        "hints": {"title": "CPU usage %"},
    }
}

SNAPSHOT_PAYLOAD = {
    "frontends": [
        {
            "name": "web",
            "updated_at": "2026-02-21T08:00:00Z",
            "current_sessions": 5,
            "total_sessions": "12",
            "state": "up",
        }
    ],
    "backends": [
        {
            "name": "pool",
            "updated_at": "2026-02-21T08:00:05.123Z",
            "current_sessions": 3,
            "members": [
                {"name": "m1", "updated_at": "2026-02-21T08:00:10Z", "current_sessions": 1},
                {"updated_at": "not-a-time", "current_sessions": 2},
            ],
        }
    ],
}


class TestTabularPayload:
    def test_decode_keeps_columns_rows_and_title(self):
        response = decode_metrics_response(TABULAR_PAYLOAD)

        item = response["cpu_usage"]
        assert item.hints.title == "CPU usage %"
        assert item.data.cols[1] == MetricsColumn(label="primary", type="number")
        assert item.latest_row == ["2026-02-21T08:00:00Z", 2.2, 2.5]
        assert item.is_emittable

    def test_none_payload_is_empty(self):
        assert decode_metrics_response(None) == {}

    def test_items_without_data_are_kept_but_not_emittable(self):
        response = decode_metrics_response({"empty": {"hints": {"title": "Empty"}}})
        assert "empty" in response
        assert not response["empty"].is_emittable

    def test_single_column_item_is_not_emittable(self):
        payload = {"m": {"data": {"cols": [{"label": "time"}], "rows": [["2026-02-21T08:00:00Z"]]}}}
        assert not decode_metrics_response(payload)["m"].is_emittable

    def test_top_level_array_is_rejected(self):
        with pytest.raises(PayloadDecodeError):
            decode_metrics_response([{"uuid": "x"}])

    def test_structural_mismatch_is_rejected(self):
        with pytest.raises(PayloadDecodeError, match="cpu_usage.data.cols"):
            decode_metrics_response({"cpu_usage": {"data": {"cols": "time", "rows": []}}})

    def test_database_payload_is_always_tabular(self):
        raw = decode_payload(TABULAR_PAYLOAD, RESOURCE_TYPE_MANAGED_DATABASE)
        assert isinstance(raw, TabularPayload)
        assert normalize(raw) is raw.response

    def test_load_balancer_tabular_payload_passes_through(self):
        raw = decode_payload(TABULAR_PAYLOAD, RESOURCE_TYPE_MANAGED_LOAD_BALANCER)
        assert isinstance(raw, TabularPayload)

    def test_snapshot_shape_is_not_accepted_for_databases(self):
        with pytest.raises(PayloadDecodeError):
            normalize_payload(SNAPSHOT_PAYLOAD, RESOURCE_TYPE_MANAGED_DATABASE)


class TestSnapshotConversion:
    def test_classified_as_snapshot_for_load_balancers(self):
        raw = decode_payload(SNAPSHOT_PAYLOAD, RESOURCE_TYPE_MANAGED_LOAD_BALANCER)
        assert isinstance(raw, SnapshotPayload)

    def test_frontend_and_backend_metrics(self):
        response = normalize_payload(
            SNAPSHOT_PAYLOAD, RESOURCE_TYPE_MANAGED_LOAD_BALANCER, FETCHED_AT
        )

        assert set(response) == {
            "frontend.current_sessions",
            "frontend.total_sessions",
            "backend.current_sessions",
            "backend.member.current_sessions",
        }

        frontend = response["frontend.current_sessions"]
        assert [c.label for c in frontend.data.cols] == ["time", "frontend:web"]
        assert frontend.data.rows == [["2026-02-21T08:00:00Z", 5.0]]
        assert frontend.hints.title == "frontend.current sessions"

        assert response["frontend.total_sessions"].data.rows[0][1] == 12.0

    def test_fractional_timestamp_is_parsed(self):
        response = convert_load_balancer_snapshot(SNAPSHOT_PAYLOAD, FETCHED_AT)
        assert response["backend.current_sessions"].data.rows == [["2026-02-21T08:00:05Z", 3.0]]

    def test_members_use_fallback_names_and_latest_timestamp(self):
        response = convert_load_balancer_snapshot(SNAPSHOT_PAYLOAD, FETCHED_AT)

        members = response["backend.member.current_sessions"]
        assert [c.label for c in members.data.cols] == [
            "time",
            "backend:pool/member:m1",
            "backend:pool/member:member-1",
        ]
        assert members.data.rows == [["2026-02-21T08:00:10Z", 1.0, 2.0]]

    def test_unparseable_timestamp_falls_back_to_fetch_time(self):
        payload = {"frontends": [{"updated_at": "later", "rate": 7}]}
        response = convert_load_balancer_snapshot(payload, FETCHED_AT)

        item = response["frontend.rate"]
        assert [c.label for c in item.data.cols] == ["time", "frontend:frontend-0"]
        assert item.data.rows == [["2026-02-21T07:00:00Z", 7.0]]

    def test_series_missing_a_metric_are_absent(self):
        payload = {
            "frontends": [
                {"name": "a", "rate": 1},
                {"name": "b", "errors": 2},
            ]
        }
        response = convert_load_balancer_snapshot(payload, FETCHED_AT)

        assert [c.label for c in response["frontend.rate"].data.cols] == ["time", "frontend:a"]
        assert [c.label for c in response["frontend.errors"].data.cols] == ["time", "frontend:b"]

    def test_no_numeric_fields_is_an_error(self):
        payload = {"frontends": [{"name": "web", "state": "up"}], "backends": []}
        with pytest.raises(SnapshotConversionError, match="no numeric load balancer metrics"):
            normalize_payload(payload, RESOURCE_TYPE_MANAGED_LOAD_BALANCER, FETCHED_AT)


class TestParseRFC3339:
    def test_without_fraction(self):
        assert parse_rfc3339("2026-02-21T08:00:00Z") == datetime(
            2026, 2, 21, 8, 0, 0, tzinfo=timezone.utc
        )

    def test_nanosecond_fraction_is_truncated(self):
        parsed = parse_rfc3339("2026-02-21T08:00:00.123456789Z")
        assert parsed is not None
        assert parsed.microsecond == 123456

    def test_offset_is_converted_to_utc(self):
        assert parse_rfc3339("2026-02-21T10:00:00+02:00") == datetime(
            2026, 2, 21, 8, 0, 0, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("value", [None, 1700000000, "", "2026-02-21", "yesterday"])
    def test_invalid_values(self, value):
        assert parse_rfc3339(value) is None


class TestToFloat:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (1, 1.0),
            (2.5, 2.5),
            (Decimal("0.022"), 0.022),
            ("42", 42.0),
            (" 3.5 ", 3.5),
        ],
    )
    def test_numeric(self, value, expected):
        assert to_float(value) == expected

    @pytest.mark.parametrize(
        "value", [True, False, None, "n/a", [], {}, 10**400, Decimal("1e400"), "-1e400"]
    )
    def test_non_numeric(self, value):
        assert to_float(value) is None
