"""Export drift reports and coverage details as JSON or CSV."""

import csv
import io
import json
from pathlib import Path

from api_spec_drift.coverage.base import DriftReport, OperationCoverage

CSV_COLUMNS = ["kind", "method", "path", "state", "hits", "statuses", "detail"]
EXPORT_FORMATS = ("json", "csv")

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def sanitize_csv_field(value) -> str:
    """Neutralize spreadsheet formula injection by quoting a leading formula char."""
    text = "" if value is None else str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "'" + text
    return text


def report_to_dict(report: DriftReport, details: list[OperationCoverage] | None = None) -> dict:
    data = report.model_dump(mode="json")
    data["summary"] = report.summary()
    if details is not None:
        data["operations"] = [d.model_dump(mode="json") for d in details]
    return data


def report_to_json(report: DriftReport, details: list[OperationCoverage] | None = None) -> str:
    return json.dumps(report_to_dict(report, details), indent=2, ensure_ascii=False)


def report_rows(report: DriftReport, details: list[OperationCoverage] | None = None) -> list[dict]:
    rows = []
    if details is not None:
        stale = {ref.key for ref in report.stale_operations}
        for d in details:
            rows.append({
                "kind": "operation",
                "method": d.operation.method,
                "path": d.operation.path,
                "state": d.state.value,
                "hits": d.passive_hits + d.tested_hits,
                "statuses": " ".join(str(s) for s in d.statuses),
                "detail": "stale" if d.operation.key in stale else "",
            })
    else:
        for ref in report.uncovered_operations:
            rows.append({"kind": "uncovered", "method": ref.method, "path": ref.path,
                         "state": "undiscovered", "hits": 0, "statuses": "", "detail": ref.operation_id or ""})
    for s in report.shadow_endpoints:
        rows.append({"kind": "shadow", "method": s.method, "path": s.path, "state": "",
                     "hits": s.hits, "statuses": " ".join(str(x) for x in s.statuses), "detail": ""})
    for u in report.undocumented_methods:
        rows.append({"kind": "undocumented_method", "method": u.method, "path": u.template, "state": "",
                     "hits": u.hits, "statuses": "", "detail": u.concrete_path})
    return rows


def report_to_csv(report: DriftReport, details: list[OperationCoverage] | None = None) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in report_rows(report, details):
        writer.writerow({k: sanitize_csv_field(v) for k, v in row.items()})
    return buf.getvalue()


def render_report(report: DriftReport, fmt: str = "json",
                  details: list[OperationCoverage] | None = None) -> str:
    if fmt == "json":
        return report_to_json(report, details)
    if fmt == "csv":
        return report_to_csv(report, details)
    raise ValueError(f"unknown export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")


def write_report(report: DriftReport, path: Path, fmt: str | None = None,
                 details: list[OperationCoverage] | None = None) -> Path:
    """Write the report to ``path``; the format defaults to the file suffix."""
    fmt = fmt or path.suffix.lstrip(".").lower() or "json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(report, fmt, details), encoding="utf-8")
    return path
