"""Parameter values harvested from live traffic.

Real tokens, ids and cookies seen in passive traffic make synthesized
requests land where a made-up value would be rejected early. The store
keeps the latest non-empty value per (location, name). Values pinned by
the analyst are never overwritten by traffic.
"""

import logging
import threading

from pydantic import BaseModel

from api_spec_drift.matcher.base import ObservedRequest

logger = logging.getLogger(__name__)


class HarvestedValue(BaseModel):
    location: str
    name: str
    value: str
    source: str = "traffic"  # traffic / pinned
    host: str | None = None


def value_key(location: str, name: str) -> tuple[str, str]:
    """Store key; header and cookie names are case-insensitive."""
    location = location.lower()
    return location, name.lower() if location in ("header", "cookie") else name


class ParameterStore:
    def __init__(self, host: str | None = None):
        self.host = host.lower() if host else None
        self._values: dict[tuple[str, str], HarvestedValue] = {}
        self._lock = threading.Lock()

    def harvest(self, request: ObservedRequest, bindings: dict[str, str] | None = None) -> int:
        """Record parameter values from one passive request. Returns how many changed."""
        if request.is_synthesized:
            return 0
        if self.host and (request.host or "").lower() != self.host:
            return 0

        found: list[tuple[str, str, str]] = []
        for name, values in request.query.items():
            if values and values[-1]:
                found.append(("query", name, values[-1]))
        for name, value in request.headers.items():
            if value and name.lower() != "cookie":
                found.append(("header", name, value))
        for name, value in request.cookies.items():
            if value:
                found.append(("cookie", name, value))
        for name, value in (bindings or {}).items():
            if value:
                found.append(("path", name, value))

        changed = 0
        with self._lock:
            for location, name, value in found:
                key = value_key(location, name)
                current = self._values.get(key)
                if current is not None and (current.source == "pinned" or current.value == value):
                    continue
                self._values[key] = HarvestedValue(location=location, name=name, value=value, host=request.host)
                changed += 1
        if changed:
            logger.debug("Harvested %d parameter value(s) from %s %s", changed, request.method, request.path)
        return changed

    def pin(self, location: str, name: str, value: str) -> None:
        """Set a value by hand; traffic will not replace it."""
        with self._lock:
            self._values[value_key(location, name)] = HarvestedValue(
                location=location.lower(), name=name, value=value, source="pinned"
            )

    def unpin(self, location: str, name: str) -> None:
        with self._lock:
            current = self._values.get(value_key(location, name))
            if current is not None and current.source == "pinned":
                del self._values[value_key(location, name)]

    def get(self, location: str, name: str) -> str | None:
        with self._lock:
            entry = self._values.get(value_key(location, name))
        return entry.value if entry else None

    def values(self) -> dict[tuple[str, str], str]:
        """Snapshot suitable as synthesis ``known_values``."""
        with self._lock:
            return {key: entry.value for key, entry in self._values.items()}

    def entries(self) -> list[HarvestedValue]:
        with self._lock:
            return [entry.model_copy() for entry in self._values.values()]

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
