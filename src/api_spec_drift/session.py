"""One assessment session: a loaded specification plus its coverage state.

Sessions are independent; several can be open at once over different
documents. Matching and synthesis read only immutable data. The tracker
and parameter store carry their own locks.
"""

import logging
from pathlib import Path
from typing import Iterator

from api_spec_drift.config import DriftConfig
from api_spec_drift.coverage.base import CoverageState, DriftReport, OperationCoverage
from api_spec_drift.coverage.drift import DriftReporter
from api_spec_drift.coverage.harvest import ParameterStore
from api_spec_drift.coverage.tracker import CoverageTracker
from api_spec_drift.errors import SessionClosed
from api_spec_drift.generator.base import Strategy, SynthesisBatch, SynthesizedRequest
from api_spec_drift.generator.synth import binding_status, synthesize, synthesize_all
from api_spec_drift.matcher.base import MatchResult, ObservedRequest
from api_spec_drift.matcher.path import PathMatcher
from api_spec_drift.parser.base import OperationEntry, Specification
from api_spec_drift.parser.openapi import load, load_file

logger = logging.getLogger(__name__)


class AssessmentSession:
    def __init__(self, spec: Specification, config: DriftConfig | None = None, host: str | None = None):
        self.config = config or DriftConfig()
        self._spec: Specification | None = spec
        self._matcher = PathMatcher.for_spec(spec)
        self._tracker = CoverageTracker(spec)
        self._reporter = DriftReporter(self._tracker)
        self._store = ParameterStore(host=host)
        logger.info("Session opened for %s %s (%d operations)", spec.title, spec.version, len(spec.operations))

    @classmethod
    def from_document(cls, data: bytes | str, format_hint: str | None = None,
                      config: DriftConfig | None = None, host: str | None = None) -> "AssessmentSession":
        """Load a document and open a session on it. SpecError propagates."""
        config = config or DriftConfig()
        return cls(load(data, format_hint, cycle_depth=config.cycle_depth), config, host)

    @classmethod
    def from_file(cls, file_path: Path, config: DriftConfig | None = None,
                  host: str | None = None) -> "AssessmentSession":
        config = config or DriftConfig()
        return cls(load_file(file_path, cycle_depth=config.cycle_depth), config, host)

    @property
    def spec(self) -> Specification:
        self._ensure_open()
        return self._spec

    @property
    def closed(self) -> bool:
        return self._spec is None

    @property
    def parameters(self) -> ParameterStore:
        self._ensure_open()
        return self._store

    def observe(self, request: ObservedRequest) -> MatchResult:
        """Match one request, record coverage and harvest its parameter values."""
        self._ensure_open()
        result = self._matcher.match(request)
        self._tracker.record(result)
        if result.matched and not request.is_synthesized:
            self._store.harvest(request, result.path_params)
        return result

    def observe_all(self, requests: list[ObservedRequest]) -> list[MatchResult]:
        return [self.observe(r) for r in requests]

    def synthesize(self, operation: OperationEntry | str, strategy: Strategy | str) -> Iterator[SynthesizedRequest]:
        op = self._operation(operation)
        return synthesize(self.spec, op, strategy, self.config, self._store.values())

    def synthesize_all(self, strategy: Strategy | str,
                       operations: list[OperationEntry | str] | None = None) -> SynthesisBatch:
        ops = [self._operation(o) for o in operations] if operations is not None else None
        return synthesize_all(self.spec, strategy, self.config, self._store.values(), ops)

    def readiness(self) -> dict[str, str]:
        known = self._store.values()
        return {op.key: binding_status(self.spec, op, known) for op in self.spec.operations}

    def snapshot(self) -> dict[str, CoverageState]:
        self._ensure_open()
        return self._tracker.snapshot()

    def details(self) -> list[OperationCoverage]:
        self._ensure_open()
        return self._tracker.details()

    def report(self) -> DriftReport:
        self._ensure_open()
        return self._reporter.report()

    def reset(self) -> None:
        """Return every operation to Undiscovered and forget harvested values."""
        self._ensure_open()
        self._tracker.reset()
        self._store.clear()
        logger.info("Session reset")

    def close(self) -> None:
        if self._spec is None:
            return
        self._spec = None
        self._store.clear()
        logger.info("Session closed")

    def _ensure_open(self) -> None:
        if self._spec is None:
            raise SessionClosed("session is closed")

    def _operation(self, operation: OperationEntry | str) -> OperationEntry:
        if isinstance(operation, OperationEntry):
            return operation
        op = self.spec.operation(operation)
        if op is None:
            raise KeyError(f"unknown operation {operation!r}")
        return op

    def __enter__(self) -> "AssessmentSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
