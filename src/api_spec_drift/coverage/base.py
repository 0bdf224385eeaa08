"""Coverage states and drift report models."""

from enum import Enum

from pydantic import BaseModel


class CoverageState(str, Enum):
    UNDISCOVERED = "undiscovered"
    OBSERVED = "observed"
    TESTED = "tested"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def advance(self, target: "CoverageState") -> "CoverageState":
        """The later of the two states. States never move backwards."""
        return target if target.rank > self.rank else self


_RANK = {
    CoverageState.UNDISCOVERED: 0,
    CoverageState.OBSERVED: 1,
    CoverageState.TESTED: 2,
}


class OperationRef(BaseModel):
    """Lightweight pointer to a declared operation, safe to serialize."""

    key: str
    method: str
    path: str
    operation_id: str | None = None


class OperationCoverage(BaseModel):
    operation: OperationRef
    state: CoverageState = CoverageState.UNDISCOVERED
    passive_hits: int = 0
    tested_hits: int = 0
    statuses: list[int] = []


class ShadowEndpoint(BaseModel):
    """A concrete path no declared template fits."""

    method: str
    path: str
    hits: int = 1
    statuses: list[int] = []


class UndocumentedMethod(BaseModel):
    """A declared path template seen with a method it does not declare."""

    method: str
    template: str
    concrete_path: str
    hits: int = 1


class DriftReport(BaseModel):
    shadow_endpoints: list[ShadowEndpoint] = []
    undocumented_methods: list[UndocumentedMethod] = []
    uncovered_operations: list[OperationRef] = []
    stale_operations: list[OperationRef] = []
    coverage: dict[str, CoverageState] = {}

    @property
    def has_drift(self) -> bool:
        return bool(self.shadow_endpoints or self.undocumented_methods or self.uncovered_operations)

    def summary(self) -> dict[str, int]:
        counts = {state.value: 0 for state in CoverageState}
        for state in self.coverage.values():
            counts[state.value] += 1
        counts.update(
            shadow_endpoints=len(self.shadow_endpoints),
            undocumented_methods=len(self.undocumented_methods),
            stale_operations=len(self.stale_operations),
        )
        return counts
