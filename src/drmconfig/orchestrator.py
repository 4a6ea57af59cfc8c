"""
Run both scheme reconcilers and aggregate one pass/fail report.

The restriction is built once and passed to each scheme. CENC and CBCS run
sequentially but independently: a failure in one scheme is recorded and the
other still runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import ConfigurationMissing, DrmConfigError
from .models import CBCS, CENC
from .reconciler import Change, reconcile_cbcs, reconcile_cenc
from .restriction import build_restriction
from .service import MediaKeyService
from .state import DesiredState


LOGGER = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class SchemeOutcome:
    scheme: str
    status: str
    changes: Tuple[Change, ...] = ()
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status in (SUCCEEDED, SKIPPED)


@dataclass(frozen=True)
class RunReport:
    outcomes: Tuple[SchemeOutcome, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    def outcome(self, scheme: str) -> Optional[SchemeOutcome]:
        for outcome in self.outcomes:
            if outcome.scheme == scheme:
                return outcome
        return None

    def summary(self) -> List[str]:
        """Human-readable lines, one block per scheme."""
        lines = []
        for outcome in self.outcomes:
            if outcome.status == FAILED:
                lines.append(f"[{outcome.scheme}] FAILED: {outcome.error}")
            elif outcome.status == SKIPPED:
                lines.append(f"[{outcome.scheme}] skipped (disabled by configuration)")
            elif outcome.changes:
                lines.append(f"[{outcome.scheme}] applied {len(outcome.changes)} change(s)")
            else:
                lines.append(f"[{outcome.scheme}] up to date")
            lines.extend(f"  - {change}" for change in outcome.changes)
        return lines


def _run_scheme(scheme: str, func, *args) -> SchemeOutcome:
    try:
        result = func(*args)
    except DrmConfigError as e:
        LOGGER.error("[%s] reconciliation failed: %s", scheme, e)
        return SchemeOutcome(scheme, FAILED, error=e)
    return SchemeOutcome(scheme, SUCCEEDED, changes=result.changes)


def run(service: MediaKeyService, desired: DesiredState) -> RunReport:
    """Reconcile CENC then CBCS against ``service``.

    Returns:
        RunReport: ``ok`` is true only if every scheme succeeded or was skipped.
    """
    try:
        restriction = build_restriction(desired.jwt_verification_key, desired.jwt_audience, desired.jwt_issuer)
    except DrmConfigError as e:
        LOGGER.error("Cannot build JWT restriction: %s", e)
        return RunReport((SchemeOutcome(CENC, FAILED, error=e), SchemeOutcome(CBCS, FAILED, error=e)))

    outcomes = [_run_scheme(CENC, reconcile_cenc, service, restriction, desired.cenc)]

    if not desired.fairplay_enabled:
        LOGGER.info("Skipping CBCS (FairPlay) policies: disabled by configuration")
        outcomes.append(SchemeOutcome(CBCS, SKIPPED))
    elif desired.cbcs is None:
        error = ConfigurationMissing("fairplay.*", "FairPlay is enabled but not configured")
        outcomes.append(SchemeOutcome(CBCS, FAILED, error=error))
    else:
        outcomes.append(_run_scheme(CBCS, reconcile_cbcs, service, restriction, desired.cbcs))

    return RunReport(tuple(outcomes))
