"""Drift between the declared API and what traffic actually showed."""

import logging

from api_spec_drift.coverage.base import CoverageState, DriftReport
from api_spec_drift.coverage.tracker import CoverageTracker

logger = logging.getLogger(__name__)


class DriftReporter:
    """Read-only view over a CoverageTracker."""

    def __init__(self, tracker: CoverageTracker):
        self.tracker = tracker

    def report(self) -> DriftReport:
        details, shadows, undocumented = self.tracker.capture()
        uncovered = [d.operation for d in details if d.state is CoverageState.UNDISCOVERED]
        # never seen in passive traffic, even if exercised by synthesized requests
        stale = [d.operation for d in details if d.passive_hits == 0]
        report = DriftReport(
            shadow_endpoints=sorted(shadows, key=lambda s: (s.path, s.method)),
            undocumented_methods=sorted(undocumented, key=lambda u: (u.template, u.method)),
            uncovered_operations=uncovered,
            stale_operations=stale,
            coverage={d.operation.key: d.state for d in details},
        )
        logger.info(
            "Drift report: %d shadow endpoint(s), %d undocumented method(s), %d uncovered of %d operation(s)",
            len(report.shadow_endpoints), len(report.undocumented_methods), len(uncovered), len(details),
        )
        return report
