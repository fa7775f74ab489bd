from __future__ import annotations

from prove.checks.base import CheckResult, PriorResults, failed, passed
from prove.checks.tdd_checks import diff_coverage_threshold
from prove.context import Context
from prove.core.diff_parse import parse_changed_lines
from prove.core.paths import is_source_path
from prove.coverage.analyzer import compute_diff_coverage, evaluate_threshold
from prove.coverage.store import summarize


async def check_diff_coverage(ctx: Context, prior: PriorResults) -> CheckResult:
    paths = ctx.config.paths
    required = diff_coverage_threshold(ctx)
    changed = [
        c for c in parse_changed_lines(ctx.vcs.unified_diff) if is_source_path(c.file, paths.src_globs, paths.test_globs)
    ]
    if not changed:
        return passed(
            "diff-coverage",
            "no coverage-relevant lines changed",
            changed_lines=0,
            covered_lines=0,
            actual_coverage=100.0,
            required_coverage=required,
        )

    result = compute_diff_coverage(changed, ctx.coverage.load(), root=ctx.working_directory)
    verdict = evaluate_threshold(result, required)
    details = {
        "changed_lines": result.total_lines,
        "covered_lines": result.covered_lines,
        "actual_coverage": verdict.actual,
        "required_coverage": required,
        "shortfall": verdict.shortfall,
        "uncovered_lines": result.uncovered_pairs(),
        "unmatched_files": list(result.unmatched_files),
        "ambiguous_files": result.ambiguous_files,
    }
    if verdict.ok:
        return passed("diff-coverage", **details)
    return failed("diff-coverage", verdict.reason or "diff coverage below threshold", **details)


async def check_global_coverage(ctx: Context, prior: PriorResults) -> CheckResult:
    totals = summarize(ctx.coverage.load())
    average = round(sum(totals.values()) / len(totals), 2)
    required = ctx.config.thresholds.global_coverage
    if average >= required:
        return passed("coverage", average=average, required=required, **totals)
    return failed(
        "coverage",
        f"global coverage {average:.2f}% is below required threshold of {required:g}%",
        average=average,
        required=required,
        **totals,
    )
