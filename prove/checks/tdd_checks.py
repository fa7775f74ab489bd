from __future__ import annotations

from prove.checks.base import CheckResult, PriorResults, failed, passed
from prove.context import Context
from prove.core.paths import is_source_path, is_test_path
from prove.tdd.classifier import REFACTOR
from prove.tdd.evidence import TestRunSummary, latest_evidence, parse_summary
from prove.tdd.policy import CoverageAdvisory, enforce_phase_policy


async def check_changed_has_tests(ctx: Context, prior: PriorResults) -> CheckResult:
    paths = ctx.config.paths
    sources = [f for f in ctx.vcs.changed_files if is_source_path(f, paths.src_globs, paths.test_globs)]
    tests = [f for f in ctx.vcs.changed_files if is_test_path(f, paths.test_globs)]
    if sources and not tests:
        return failed(
            "tdd-changed-has-tests",
            "source files changed without accompanying test changes",
            source_files=sources,
            remediation="Do add or update tests covering the change, then re-run prove.",
        )
    return passed("tdd-changed-has-tests", source_files=sources, test_files=tests)


def current_test_summary(ctx: Context, prior: PriorResults) -> TestRunSummary | None:
    """This run's test result when the tests check produced one, else the latest recorded evidence."""

    tests = prior.get("tests")
    if tests is not None and tests.details and isinstance(tests.details.get("summary"), dict):
        return parse_summary(tests.details["summary"])
    latest = latest_evidence(ctx.test_evidence)
    return latest.results if latest is not None else None


def _coverage_advisory(ctx: Context, prior: PriorResults) -> CoverageAdvisory | None:
    cov = prior.get("diff-coverage")
    if cov is None or not cov.details:
        return None
    pct = cov.details.get("actual_coverage")
    required = cov.details.get("required_coverage")
    if not isinstance(pct, (int, float)) or not isinstance(required, (int, float)):
        return None
    return CoverageAdvisory(percentage=float(pct), threshold=float(required))


async def check_phase_policy(ctx: Context, prior: PriorResults) -> CheckResult:
    verdict = enforce_phase_policy(
        ctx.phase,
        mode=ctx.mode,
        changed_files=ctx.vcs.changed_files,
        commit_message=ctx.vcs.commit_message,
        test_summary=current_test_summary(ctx, prior),
        test_globs=ctx.config.paths.test_globs,
        refactor_keywords=ctx.config.refactor_keywords,
        coverage=_coverage_advisory(ctx, prior),
    )
    return CheckResult(id="tdd-phase", ok=verdict.ok, reason=verdict.reason, details=verdict.details or None)


def diff_coverage_threshold(ctx: Context) -> float:
    th = ctx.config.thresholds
    return th.diff_coverage_refactor if ctx.phase.phase == REFACTOR else th.diff_coverage_functional
