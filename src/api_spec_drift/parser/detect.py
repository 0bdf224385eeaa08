"""Auto-detect specification serialization and version."""

import json
import logging

import yaml

from api_spec_drift.errors import MalformedSpec, UnsupportedVersion

logger = logging.getLogger(__name__)


def sniff_format(text: str) -> str:
    """Guess the serialization of a document.

    Returns: 'json' or 'yaml'.
    """
    stripped = text.lstrip()
    if stripped.startswith(("{", "[")):
        return "json"
    return "yaml"


def parse_document(data: bytes | str, format_hint: str | None = None) -> dict:
    """Decode raw document bytes into a mapping.

    ``format_hint`` is 'json', 'yaml' or None to sniff.
    """
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedSpec(f"document is not UTF-8: {e}") from e
    else:
        text = data

    if not text.strip():
        raise MalformedSpec("empty document")

    fmt = (format_hint or sniff_format(text)).lower()
    if fmt not in ("json", "yaml", "yml"):
        raise MalformedSpec(f"unknown format hint {format_hint!r}")

    try:
        if fmt == "json":
            doc = json.loads(text)
        else:
            # YAML is a superset of JSON, so sniffed JSON also lands here safely
            doc = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise MalformedSpec(f"cannot parse document as {fmt}: {e}") from e

    if not isinstance(doc, dict):
        raise MalformedSpec(f"document root must be a mapping, got {type(doc).__name__}")
    return doc


def detect_version(doc: dict) -> str:
    """Return the declared version string, '2.0' or '3.x.y'.

    Raises UnsupportedVersion for anything else.
    """
    if "openapi" in doc:
        version = str(doc["openapi"])
        if version.startswith("3."):
            return version
        raise UnsupportedVersion(f"OpenAPI version {version} is not supported")
    if "swagger" in doc:
        version = str(doc["swagger"])
        if version.startswith("2"):
            return "2.0"
        raise UnsupportedVersion(f"Swagger version {version} is not supported")
    raise UnsupportedVersion("document declares neither 'openapi' nor 'swagger'")
