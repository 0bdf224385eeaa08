"""Concrete value generation for primitive schemas.

Everything here is deterministic: the same schema and field name always
produce the same value, so synthesized batches are reproducible.
"""

import hashlib
import logging
import math
import re
import uuid
from functools import lru_cache
from typing import Any

from hypothesis import HealthCheck, find, settings
from hypothesis import strategies as st
from hypothesis.errors import HypothesisException

from api_spec_drift.errors import UnsupportedSchemaShape
from api_spec_drift.parser.base import PrimitiveSchema

logger = logging.getLogger(__name__)

FORMAT_VALUES = {
    "date": "2024-01-01",
    "date-time": "2024-01-01T00:00:00Z",
    "time": "00:00:00Z",
    "email": "user@example.com",
    "idn-email": "user@example.com",
    "uri": "https://example.com/",
    "url": "https://example.com/",
    "uri-reference": "/example",
    "hostname": "example.com",
    "ipv4": "192.0.2.1",
    "ipv6": "2001:db8::1",
    "byte": "AA==",
    "binary": "x",
    "password": "Passw0rd!",
    "int32": "1",
    "int64": "1",
}

INJECTION_PROBES = (
    ("' OR '1'='1", "SQL injection probe"),
    ("\"; DROP TABLE users; --", "SQL statement injection probe"),
    ("<script>alert(1)</script>", "XSS probe"),
    ("../../../../etc/passwd", "path traversal probe"),
    ("{{7*7}}${7*7}", "template injection probe"),
    ("${jndi:ldap://127.0.0.1/a}", "JNDI lookup probe"),
    ("$(id);`id`", "command injection probe"),
    ("%00\x00", "null byte probe"),
)

OVERSIZED_STRING_LENGTH = 4096

_REGEX_SETTINGS = settings(
    database=None,
    derandomize=True,
    max_examples=300,
    suppress_health_check=list(HealthCheck),
)


def stable_seed(key: str) -> int:
    """Derive a 64-bit seed from a string key via SHA-256."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


# -- numbers ------------------------------------------------------------------


def is_integer(schema: PrimitiveSchema) -> bool:
    return schema.type == "integer"


def step_of(schema: PrimitiveSchema):
    return schema.multiple_of or 1


def numeric_bounds(schema: PrimitiveSchema) -> tuple[Any, Any]:
    """Inclusive (low, high) a valid value must fall in; None where open."""
    step = step_of(schema)
    low = schema.minimum
    high = schema.maximum
    if schema.exclusive_minimum is not None:
        inner = schema.exclusive_minimum + step
        if high is not None and inner > high:
            inner = (schema.exclusive_minimum + high) / 2
        low = inner if low is None else max(low, inner)
    if schema.exclusive_maximum is not None:
        inner = schema.exclusive_maximum - step
        if low is not None and inner < low:
            inner = (schema.exclusive_maximum + low) / 2
        high = inner if high is None else min(high, inner)
    if is_integer(schema):
        low = math.ceil(low) if low is not None else None
        high = math.floor(high) if high is not None else None
    return _align_up(low, schema), _align_down(high, schema)


def _align_up(value, schema: PrimitiveSchema):
    m = schema.multiple_of
    if value is None or not m:
        return value
    aligned = math.ceil(value / m) * m
    return int(aligned) if is_integer(schema) else aligned


def _align_down(value, schema: PrimitiveSchema):
    m = schema.multiple_of
    if value is None or not m:
        return value
    aligned = math.floor(value / m) * m
    return int(aligned) if is_integer(schema) else aligned


def valid_number(schema: PrimitiveSchema, name: str = "") -> Any:
    low, high = numeric_bounds(schema)
    if low is not None:
        value = low
    else:
        value = 1 if looks_like_id(name) else 0
        value = _align_up(value, schema)
        if high is not None and value > high:
            value = high
    return int(value) if is_integer(schema) else value


def numeric_boundaries(schema: PrimitiveSchema) -> list[tuple[Any, str]]:
    """At-limit and one-past-limit values for each declared numeric bound."""
    step = step_of(schema)
    low, high = numeric_bounds(schema)
    out: list[tuple[Any, str]] = []
    if schema.minimum is not None or schema.exclusive_minimum is not None:
        past = schema.exclusive_minimum if schema.exclusive_minimum is not None else low - step
        out.append((_cast(schema, low), "at minimum"))
        out.append((_cast(schema, past), "below minimum"))
    if schema.maximum is not None or schema.exclusive_maximum is not None:
        past = schema.exclusive_maximum if schema.exclusive_maximum is not None else high + step
        out.append((_cast(schema, high), "at maximum"))
        out.append((_cast(schema, past), "above maximum"))
    return out


def _cast(schema: PrimitiveSchema, value):
    if is_integer(schema) and float(value).is_integer():
        return int(value)
    return value


# -- strings ------------------------------------------------------------------


@lru_cache(maxsize=512)
def regex_string(pattern: str, min_len: int = 0, max_len: int | None = None) -> str:
    """Smallest string fully matching ``pattern`` within the length bounds."""
    try:
        re.compile(pattern)
        return find(
            st.from_regex(pattern, fullmatch=True),
            lambda s: len(s) >= min_len and (max_len is None or len(s) <= max_len),
            settings=_REGEX_SETTINGS,
        )
    except (HypothesisException, re.error) as e:
        raise UnsupportedSchemaShape(f"cannot generate a string for pattern {pattern!r}: {e}") from e


def string_of_length(schema: PrimitiveSchema, length: int) -> str:
    """A string of exactly ``length`` characters, honoring the pattern when possible."""
    length = max(length, 0)
    if schema.pattern:
        try:
            return regex_string(schema.pattern, length, length)
        except UnsupportedSchemaShape:
            logger.debug("Pattern %r has no match of length %d", schema.pattern, length)
    return "x" * length


def valid_string(schema: PrimitiveSchema, name: str = "", location: str = "body") -> str:
    min_len = schema.min_length or 0
    if location == "path":
        min_len = max(min_len, 1)
    max_len = schema.max_length

    if schema.pattern:
        return regex_string(schema.pattern, min_len, max_len)

    candidate = FORMAT_VALUES.get(schema.format or "") or name_hint(name)
    if candidate is not None and len(candidate) >= min_len and (max_len is None or len(candidate) <= max_len):
        return candidate
    return "x" * min_len


def looks_like_id(name: str) -> bool:
    if not name:
        return False
    n = name.lower()
    return n == "id" or n.endswith(("_id", "-id")) or name.endswith("Id") or "identifier" in n


def name_hint(name: str) -> str | None:
    """Realistic value for well-known field names, keyed on a stable seed."""
    if not name:
        return None
    n = name.lower()
    seed = stable_seed(name)
    if "email" in n:
        return f"user{seed % 10000}@example.com"
    if "uuid" in n or "guid" in n:
        return str(uuid.UUID(int=seed << 64 | seed, version=4))
    if n.endswith("url") or n.endswith("uri"):
        return f"https://example.com/api/{seed % 1000}"
    if n in ("ip", "ip_address", "ipaddress", "client_ip"):
        return "192.0.2.1"
    if "phone" in n or "mobile" in n:
        return f"+1555{seed % 10000000:07d}"
    if looks_like_id(name):
        return str(1 + seed % 9999)
    return None


# -- dispatch -----------------------------------------------------------------


def valid_primitive(schema: PrimitiveSchema, name: str = "", location: str = "body") -> Any:
    """One representative valid value: example, default, enum, then generated."""
    if schema.example is not None:
        return schema.example
    if schema.default is not None:
        return schema.default
    if schema.enum:
        return schema.enum[0]
    if schema.type in ("integer", "number"):
        return valid_number(schema, name)
    if schema.type == "boolean":
        return True
    if schema.type == "null":
        return None
    return valid_string(schema, name, location)


def non_member(enum: tuple) -> Any:
    """A value outside a declared enum, of the same flavour as its members."""
    if all(isinstance(v, str) for v in enum):
        candidate = "not_a_member"
        while candidate in enum:
            candidate += "_"
        return candidate
    numbers = [v for v in enum if isinstance(v, (int, float)) and not isinstance(v, bool)]
    if numbers:
        return int(max(numbers)) + 1
    return "not_a_member"


def type_mismatches(schema: PrimitiveSchema) -> list[tuple[Any, str]]:
    """Values of the wrong JSON type for a primitive schema."""
    if schema.type == "integer":
        return [("not-a-number", "string instead of integer"), (1.5, "fraction instead of integer"),
                (2 ** 63, "integer overflow")]
    if schema.type == "number":
        return [("not-a-number", "string instead of number"), (True, "boolean instead of number")]
    if schema.type == "boolean":
        return [("not-a-boolean", "string instead of boolean"), (2, "integer instead of boolean")]
    if schema.type == "null":
        return [("not-null", "string instead of null")]
    return [(12345, "integer instead of string"), (["x"], "array instead of string")]


def string_probes(schema: PrimitiveSchema) -> list[tuple[Any, str]]:
    """Injection probes plus an oversized string for string fields."""
    probes = list(INJECTION_PROBES)
    size = max(OVERSIZED_STRING_LENGTH, (schema.max_length or 0) * 4)
    probes.append(("A" * size, "oversized string"))
    return probes
