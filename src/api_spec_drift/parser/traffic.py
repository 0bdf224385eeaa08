"""Captured traffic loaders: HAR archives and JSON-lines dumps.

Parses capture files into ObservedRequest records for replay through a
session.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from api_spec_drift.errors import MalformedTraffic
from api_spec_drift.matcher.base import ObservedRequest, ObservedResponse

logger = logging.getLogger(__name__)

TRAFFIC_FORMATS = ("auto", "har", "jsonl")


def detect_traffic_format(file_path: Path) -> str:
    if file_path.suffix.lower() == ".har":
        return "har"
    if file_path.suffix.lower() in (".jsonl", ".ndjson"):
        return "jsonl"
    text = file_path.read_text(encoding="utf-8-sig").lstrip()
    if text.startswith("{") and '"log"' in text[:200]:
        return "har"
    return "jsonl"


def load_traffic(file_path: Path, fmt: str = "auto") -> list[ObservedRequest]:
    """Load every request in a capture file."""
    if fmt == "auto":
        fmt = detect_traffic_format(file_path)
    if fmt == "har":
        return parse_har(file_path)
    if fmt == "jsonl":
        return parse_jsonl(file_path)
    raise MalformedTraffic(f"unknown traffic format {fmt!r}")


def parse_har(file_path: Path) -> list[ObservedRequest]:
    """Parse a HAR 1.2 archive into ObservedRequests, in capture order."""
    try:
        har = json.loads(file_path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as e:
        raise MalformedTraffic(f"{file_path} is not valid JSON: {e}") from e
    entries = (har.get("log") or {}).get("entries") if isinstance(har, dict) else None
    if not isinstance(entries, list):
        raise MalformedTraffic(f"{file_path} has no log.entries list")

    requests = []
    for index, entry in enumerate(entries):
        try:
            requests.append(_parse_entry(entry, index))
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Skipping HAR entry %d: %s", index, e)
    logger.info("Loaded %d request(s) from %s", len(requests), file_path)
    return requests


def _parse_entry(entry: dict, index: int) -> ObservedRequest:
    req = entry["request"]
    headers = _header_map(req.get("headers", []))
    query: dict[str, list[str]] = {}
    for q in req.get("queryString", []):
        query.setdefault(q["name"], []).append(q.get("value", ""))

    post = req.get("postData") or {}
    body = _decode_body(post.get("text"), post.get("mimeType", ""))

    response = None
    res = entry.get("response")
    if isinstance(res, dict) and res.get("status"):
        content = res.get("content") or {}
        response = ObservedResponse(
            status=int(res["status"]),
            headers=_header_map(res.get("headers", [])),
            body=content.get("text"),
        )

    request = ObservedRequest(
        method=req["method"],
        path=req["url"],
        headers=headers,
        body=body,
        response=response,
        request_id=str(index),
    )
    # queryString duplicates the URL's query; prefer the structured form when present
    if query:
        request.query = query
    return request


def _header_map(headers: list[dict]) -> dict[str, str]:
    out: dict[str, str] = {}
    for h in headers:
        name, value = h["name"], h.get("value", "")
        if name.startswith(":"):
            continue  # HTTP/2 pseudo-headers
        existing = next((k for k in out if k.lower() == name.lower()), None)
        if existing is None:
            out[name] = value
        else:
            sep = "; " if name.lower() == "cookie" else ", "
            out[existing] = out[existing] + sep + value
    return out


def _decode_body(text: str | None, mime_type: str) -> Any:
    if text is None or text == "":
        return None
    if "json" in mime_type.lower():
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


def parse_jsonl(file_path: Path) -> list[ObservedRequest]:
    """Parse one ObservedRequest JSON object per line. Blank lines are ignored."""
    requests = []
    for lineno, line in enumerate(file_path.read_text(encoding="utf-8-sig").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            requests.append(ObservedRequest.model_validate_json(line))
        except ValidationError as e:
            raise MalformedTraffic(f"{file_path}:{lineno}: {e}") from e
    logger.info("Loaded %d request(s) from %s", len(requests), file_path)
    return requests
