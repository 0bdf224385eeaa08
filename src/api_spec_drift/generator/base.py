"""Synthesized request descriptors handed to the host for execution."""

from enum import Enum
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel

from api_spec_drift.matcher.base import ObservedRequest, ObservedResponse


class Strategy(str, Enum):
    VALID = "valid"
    BOUNDARY = "boundary"
    MALFORMED = "malformed"


class SynthesizedRequest(BaseModel):
    """A request that has not been sent, tagged with how it was generated."""

    operation_key: str
    operation_id: str | None = None
    strategy: Strategy
    method: str
    path: str  # concrete, placeholders substituted and encoded
    url: str
    query: dict[str, Any] = {}
    headers: dict[str, str] = {}
    cookies: dict[str, str] = {}
    body: Any = None
    content_type: str | None = None
    target: str | None = None  # "body.quantity", "query.limit", ... the field varied
    description: str = ""

    def query_string(self) -> str:
        return urlencode(self.query, doseq=True)

    def to_observed(self, response: ObservedResponse | None = None) -> ObservedRequest:
        """Build the ObservedRequest the host feeds back after executing this request."""
        headers = dict(self.headers)
        if self.cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in self.cookies.items())
        if self.content_type and self.body is not None:
            headers.setdefault("Content-Type", self.content_type)
        return ObservedRequest(
            method=self.method,
            path=self.path,
            query={k: [str(x) for x in v] if isinstance(v, list) else [str(v)] for k, v in self.query.items()},
            headers=headers,
            body=self.body,
            response=response,
            strategy=self.strategy.value,
        )


class SynthesisFailure(BaseModel):
    operation_key: str
    reason: str
    error_kind: str


class SynthesisBatch(BaseModel):
    """Per-operation results: what synthesized, and what failed with why."""

    requests: list[SynthesizedRequest] = []
    failures: list[SynthesisFailure] = []

    @property
    def ok(self) -> bool:
        return not self.failures
