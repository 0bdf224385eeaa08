"""Per-operation coverage state machine.

Undiscovered -> Observed on passive traffic, -> Tested on traffic that
carries a synthesis strategy tag. The new state is always the later of
the current and target states, so replays are idempotent and nothing
regresses. Each operation has its own lock; updates to different
operations do not contend. Reads that span operations hold every lock,
always taken in key order.
"""

import logging
import threading
from contextlib import contextmanager

from api_spec_drift.coverage.base import (
    CoverageState,
    OperationCoverage,
    OperationRef,
    ShadowEndpoint,
    UndocumentedMethod,
)
from api_spec_drift.matcher.base import MatchResult
from api_spec_drift.parser.base import OperationEntry, Specification

logger = logging.getLogger(__name__)


def operation_ref(op: OperationEntry) -> OperationRef:
    return OperationRef(key=op.key, method=op.method, path=op.path, operation_id=op.operation_id)


class CoverageTracker:
    def __init__(self, spec: Specification):
        self.spec = spec
        self._refs = {op.key: operation_ref(op) for op in spec.operations}
        self._locks = {key: threading.Lock() for key in self._refs}
        self._entries: dict[str, OperationCoverage] = {}
        self._unmatched_lock = threading.Lock()
        self._shadows: dict[tuple[str, str], ShadowEndpoint] = {}
        self._undocumented: dict[tuple[str, str], UndocumentedMethod] = {}
        self.reset()

    def record(self, result: MatchResult) -> CoverageState | None:
        """Apply one match result. Returns the operation's state, or None when unmatched."""
        if result.operation is None:
            self._record_unmatched(result)
            return None

        key = result.operation.key
        lock = self._locks.get(key)
        if lock is None:
            raise ValueError(f"operation {key} is not part of this specification")

        target = CoverageState.TESTED if result.strategy else CoverageState.OBSERVED
        with lock:
            entry = self._entries[key]
            before = entry.state
            entry.state = before.advance(target)
            if result.strategy:
                entry.tested_hits += 1
            else:
                entry.passive_hits += 1
            if result.status is not None and result.status not in entry.statuses:
                entry.statuses.append(result.status)
            state = entry.state
        if state is not before:
            logger.debug("%s: %s -> %s", key, before.value, state.value)
        return state

    def _record_unmatched(self, result: MatchResult) -> None:
        with self._unmatched_lock:
            if result.is_shadow:
                slot = (result.method, result.concrete_path)
                shadow = self._shadows.get(slot)
                if shadow is None:
                    self._shadows[slot] = ShadowEndpoint(
                        method=result.method,
                        path=result.concrete_path,
                        statuses=[result.status] if result.status is not None else [],
                    )
                else:
                    shadow.hits += 1
                    if result.status is not None and result.status not in shadow.statuses:
                        shadow.statuses.append(result.status)
            else:
                slot = (result.method, result.template)
                undocumented = self._undocumented.get(slot)
                if undocumented is None:
                    self._undocumented[slot] = UndocumentedMethod(
                        method=result.method,
                        template=result.template,
                        concrete_path=result.concrete_path,
                    )
                else:
                    undocumented.hits += 1

    def state(self, key: str) -> CoverageState:
        with self._locks[key]:
            return self._entries[key].state

    @contextmanager
    def _frozen(self):
        """Hold every entry lock, in key order, and then the unmatched lock."""
        keys = sorted(self._locks)
        for key in keys:
            self._locks[key].acquire()
        try:
            with self._unmatched_lock:
                yield
        finally:
            for key in reversed(keys):
                self._locks[key].release()

    def snapshot(self) -> dict[str, CoverageState]:
        """Point-in-time states keyed by operation key."""
        with self._frozen():
            return {key: self._entries[key].state for key in self._refs}

    def details(self) -> list[OperationCoverage]:
        with self._frozen():
            return [self._entries[key].model_copy(deep=True) for key in self._refs]

    def capture(self) -> tuple[list[OperationCoverage], list[ShadowEndpoint], list[UndocumentedMethod]]:
        """Details, shadow endpoints and undocumented methods as of one instant."""
        with self._frozen():
            return (
                [self._entries[key].model_copy(deep=True) for key in self._refs],
                [s.model_copy(deep=True) for s in self._shadows.values()],
                [u.model_copy(deep=True) for u in self._undocumented.values()],
            )

    def shadow_endpoints(self) -> list[ShadowEndpoint]:
        with self._unmatched_lock:
            return [s.model_copy(deep=True) for s in self._shadows.values()]

    def undocumented_methods(self) -> list[UndocumentedMethod]:
        with self._unmatched_lock:
            return [u.model_copy(deep=True) for u in self._undocumented.values()]

    def operations(self) -> list[OperationRef]:
        return list(self._refs.values())

    def reset(self) -> None:
        """Forget everything recorded; every operation returns to Undiscovered."""
        with self._frozen():
            for key, ref in self._refs.items():
                self._entries[key] = OperationCoverage(operation=ref)
            self._shadows.clear()
            self._undocumented.clear()
