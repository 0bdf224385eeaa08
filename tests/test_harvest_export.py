import csv
import io
import json

import pytest

from api_spec_drift.coverage.base import (
    CoverageState,
    DriftReport,
    OperationCoverage,
    OperationRef,
    ShadowEndpoint,
    UndocumentedMethod,
)
from api_spec_drift.coverage.export import (
    render_report,
    report_to_csv,
    report_to_json,
    sanitize_csv_field,
    write_report,
)
from api_spec_drift.coverage.harvest import ParameterStore
from api_spec_drift.matcher.base import ObservedRequest


def _request(**kwargs) -> ObservedRequest:
    defaults = {"method": "GET", "path": "https://api.example.com/pets?limit=10&limit=20"}
    defaults.update(kwargs)
    return ObservedRequest(**defaults)


class TestParameterStore:
    def test_harvests_query_header_cookie_and_path(self):
        store = ParameterStore()
        changed = store.harvest(
            _request(headers={"Authorization": "Bearer real", "Cookie": "Session=abc"}),
            bindings={"petId": "7"},
        )
        assert changed == 4
        assert store.values() == {
            ("query", "limit"): "20",
            ("header", "authorization"): "Bearer real",
            ("cookie", "session"): "abc",
            ("path", "petId"): "7",
        }

    def test_latest_value_wins(self):
        store = ParameterStore()
        store.harvest(_request(headers={"X-Token": "old"}))
        store.harvest(_request(headers={"x-token": "new"}))
        assert store.get("header", "X-TOKEN") == "new"

    def test_empty_values_ignored(self):
        store = ParameterStore()
        store.harvest(_request(path="/pets?q=", headers={"X-Empty": ""}))
        assert len(store) == 0

    def test_synthesized_traffic_ignored(self):
        store = ParameterStore()
        assert store.harvest(_request(strategy="malformed", headers={"X-Token": "' OR 1=1"})) == 0
        assert store.get("header", "x-token") is None

    def test_host_filter(self):
        store = ParameterStore(host="API.example.com")
        store.harvest(_request(path="https://other.example.com/pets?limit=1"))
        assert len(store) == 0
        store.harvest(_request())
        assert store.get("query", "limit") == "20"

    def test_pinned_value_not_overwritten(self):
        store = ParameterStore()
        store.pin("header", "Authorization", "Bearer mine")
        store.harvest(_request(headers={"Authorization": "Bearer theirs"}))
        assert store.get("header", "authorization") == "Bearer mine"
        store.unpin("header", "Authorization")
        assert store.get("header", "authorization") is None

    def test_clear(self):
        store = ParameterStore()
        store.harvest(_request())
        store.clear()
        assert store.entries() == []


def _report() -> DriftReport:
    return DriftReport(
        shadow_endpoints=[ShadowEndpoint(method="GET", path="/=HYPERLINK(\"x\")", hits=2, statuses=[404])],
        undocumented_methods=[UndocumentedMethod(method="DELETE", template="/users/{id}", concrete_path="/users/4")],
        uncovered_operations=[OperationRef(key="POST /orders", method="POST", path="/orders",
                                           operation_id="createOrder")],
        stale_operations=[OperationRef(key="POST /orders", method="POST", path="/orders")],
        coverage={"GET /users/{id}": CoverageState.OBSERVED, "POST /orders": CoverageState.UNDISCOVERED},
    )


def _details() -> list[OperationCoverage]:
    return [
        OperationCoverage(operation=OperationRef(key="GET /users/{id}", method="GET", path="/users/{id}"),
                          state=CoverageState.OBSERVED, passive_hits=3, statuses=[200]),
        OperationCoverage(operation=OperationRef(key="POST /orders", method="POST", path="/orders")),
    ]


class TestExport:
    @pytest.mark.parametrize("value,expected", [
        ("=1+1", "'=1+1"),
        ("+cmd", "'+cmd"),
        ("-2", "'-2"),
        ("@SUM(A1)", "'@SUM(A1)"),
        ("/users", "/users"),
        (None, ""),
        (3, "3"),
    ])
    def test_sanitize(self, value, expected):
        assert sanitize_csv_field(value) == expected

    def test_json(self):
        data = json.loads(report_to_json(_report(), _details()))
        assert data["coverage"]["POST /orders"] == "undiscovered"
        assert data["summary"]["shadow_endpoints"] == 1
        assert data["operations"][0]["passive_hits"] == 3

    def test_csv_rows(self):
        rows = list(csv.DictReader(io.StringIO(report_to_csv(_report(), _details()))))
        kinds = [r["kind"] for r in rows]
        assert kinds == ["operation", "operation", "shadow", "undocumented_method"]
        assert rows[1]["detail"] == "stale"
        assert rows[2]["path"] == "/=HYPERLINK(\"x\")"

    def test_csv_neutralizes_formula_cells(self):
        report = DriftReport(shadow_endpoints=[ShadowEndpoint(method="=CMD", path="/x")])
        rows = list(csv.DictReader(io.StringIO(report_to_csv(report))))
        assert rows[0]["method"] == "'=CMD"

    def test_csv_without_details_lists_uncovered(self):
        rows = list(csv.DictReader(io.StringIO(report_to_csv(_report()))))
        assert rows[0]["kind"] == "uncovered"
        assert rows[0]["detail"] == "createOrder"

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            render_report(_report(), "xml")

    def test_write_report_uses_suffix(self, tmp_path):
        path = write_report(_report(), tmp_path / "out" / "drift.csv")
        assert path.read_text(encoding="utf-8").startswith("kind,method,path")
