from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from prove.core.paths import split_test_and_other
from prove.mode import FUNCTIONAL
from prove.tdd.classifier import GREEN, RED, REFACTOR, UNKNOWN, PhaseClassification, has_refactor_keyword
from prove.tdd.evidence import TestRunSummary


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyVerdict:
    ok: bool
    reason: str | None = None
    violations: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)
    applied: bool = True


@dataclass(frozen=True)
class CoverageAdvisory:
    percentage: float
    threshold: float


def enforce_phase_policy(
    classification: PhaseClassification,
    *,
    mode: str,
    changed_files: Sequence[str],
    commit_message: str,
    test_summary: TestRunSummary | None,
    test_globs: Iterable[str],
    refactor_keywords: Iterable[str],
    coverage: CoverageAdvisory | None = None,
) -> PolicyVerdict:
    """Apply the rules of the classified phase.

    red:      at least one test file changed, and the test run reports failures.
    green:    no failing tests; test and non-test files both changed.
    refactor: refactor indicator in the commit message; non-test files changed; no failing tests.

    Only functional work with a known phase is subject to these rules. Coverage is reported
    against the phase threshold but never decides the verdict.
    """

    phase = classification.phase
    if mode != FUNCTIONAL:
        return PolicyVerdict(ok=True, reason=f"not applicable (mode={mode})", applied=False)
    if phase == UNKNOWN:
        return PolicyVerdict(ok=True, reason="skipped: TDD phase could not be determined", applied=False)

    tests, others = split_test_and_other(changed_files, test_globs=test_globs)
    details: dict[str, Any] = {
        "phase": phase,
        "confidence": classification.confidence,
        "sources": list(classification.sources),
        "changed_test_files": tests,
        "changed_non_test_files": others,
        "test_results": test_summary.to_dict() if test_summary is not None else None,
    }
    violations: list[str] = []

    def require_summary() -> TestRunSummary | None:
        if test_summary is None:
            violations.append("no test-run result available for this change")
        return test_summary

    if phase == RED:
        if not tests:
            violations.append("Tests must be written first in Red phase (no test files changed)")
        summary = require_summary()
        if summary is not None and summary.failed == 0:
            violations.append("tests must fail initially")
    elif phase == GREEN:
        summary = require_summary()
        if summary is not None and summary.failed > 0:
            violations.append(f"all tests must pass in Green phase ({summary.failed} failing)")
        if not tests or not others:
            violations.append("Green phase must change both tests and implementation")
    elif phase == REFACTOR:
        if not has_refactor_keyword(commit_message, refactor_keywords):
            violations.append("Refactor phase commit message must indicate refactoring")
        if not others:
            violations.append("Refactor phase must change non-test files")
        summary = require_summary()
        if summary is not None and summary.failed > 0:
            violations.append(f"all tests must keep passing during refactor ({summary.failed} failing)")

    if coverage is not None:
        below = coverage.percentage < coverage.threshold
        details["coverage_advisory"] = {
            "diff_coverage": round(coverage.percentage, 2),
            "threshold": coverage.threshold,
            "below_threshold": below,
        }
        if below:
            logger.warning(
                "advisory: diff coverage %.2f%% is below the %s phase threshold of %g%%",
                coverage.percentage,
                phase,
                coverage.threshold,
            )

    if violations:
        return PolicyVerdict(
            ok=False,
            reason=f"{phase} phase policy violated: " + "; ".join(violations),
            violations=tuple(violations),
            details=details,
        )
    return PolicyVerdict(ok=True, details=details)
