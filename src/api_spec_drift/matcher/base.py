"""Traffic records and match results exchanged with the host."""

from typing import Any
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, field_validator, model_validator

from api_spec_drift.parser.base import OperationEntry


class ObservedResponse(BaseModel):
    status: int
    headers: dict[str, str] = {}
    body: str | None = None


class ObservedRequest(BaseModel):
    """A concrete request captured from traffic or produced by synthesis."""

    method: str
    path: str
    query: dict[str, list[str]] = {}
    headers: dict[str, str] = {}
    body: Any = None
    host: str | None = None
    response: ObservedResponse | None = None
    strategy: str | None = None  # synthesis tag; None for passive traffic
    request_id: str | None = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("query", mode="before")
    @classmethod
    def _listify_query(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: val if isinstance(val, list) else [val] for k, val in v.items()}
        return v

    @model_validator(mode="after")
    def _split_url(self) -> "ObservedRequest":
        # accept a full URL or a path carrying its own query string
        if "://" in self.path or "?" in self.path:
            parts = urlsplit(self.path)
            if parts.netloc and self.host is None:
                self.host = parts.hostname
            query = {k: list(v) for k, v in parse_qs(parts.query, keep_blank_values=True).items()}
            for k, v in self.query.items():
                query.setdefault(k, []).extend(v)
            self.query = query
            self.path = parts.path or "/"
        return self

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lowered:
                return v
        return None

    @property
    def cookies(self) -> dict[str, str]:
        raw = self.header("Cookie")
        out: dict[str, str] = {}
        if not raw:
            return out
        for pair in raw.split(";"):
            if "=" in pair:
                k, v = pair.split("=", 1)
                out[k.strip().lower()] = v.strip()
        return out

    @property
    def is_synthesized(self) -> bool:
        return self.strategy is not None


class ParamIssue(BaseModel):
    location: str
    name: str
    problem: str  # missing / type
    value: str | None = None


class MatchResult(BaseModel):
    """Binding of one observed request to at most one operation."""

    method: str
    concrete_path: str
    template: str | None = None  # best path template, even when the method is undeclared
    operation: OperationEntry | None = None
    path_params: dict[str, str] = {}
    issues: list[ParamIssue] = []
    strategy: str | None = None
    status: int | None = None

    @property
    def matched(self) -> bool:
        return self.operation is not None

    @property
    def is_shadow(self) -> bool:
        """No declared path template fits the concrete path at all."""
        return self.template is None

    @property
    def is_undocumented_method(self) -> bool:
        return self.template is not None and self.operation is None
