from __future__ import annotations

import re

from prove.checks.base import CheckResult, PriorResults, failed, passed
from prove.context import Context
from prove.core.diff_parse import loc_delta
from prove.core.errors import ToolInvocationError
from prove.core.exec import run_command
from prove.vcs import EMPTY_TREE_SHA


def commit_subject(message: str) -> str:
    lines = (message or "").strip().splitlines()
    return lines[0].strip() if lines else ""


async def check_trunk(ctx: Context, prior: PriorResults) -> CheckResult:
    git = ctx.config.git
    branch = ctx.vcs.current_branch
    if not git.require_main_branch:
        return passed("trunk", "main-branch requirement disabled", branch=branch)
    if branch == git.main_branch:
        return passed("trunk", branch=branch)
    return failed(
        "trunk",
        f"must run on {git.main_branch} (current branch: {branch})",
        branch=branch,
        required_branch=git.main_branch,
        remediation=f"Do rebase the change onto {git.main_branch} and run from there, then re-run prove.",
    )


async def check_commit_message(ctx: Context, prior: PriorResults) -> CheckResult:
    subject = commit_subject(ctx.vcs.commit_message)
    if not subject:
        return failed("commit-msg-convention", "commit message is empty")
    if re.match(ctx.config.commit_pattern, subject):
        return passed("commit-msg-convention", subject=subject)
    return failed(
        "commit-msg-convention",
        "commit subject does not follow the commit convention",
        subject=subject,
        pattern=ctx.config.commit_pattern,
        remediation="Do amend the commit subject to match the configured pattern, then re-run prove.",
    )


async def check_pre_conflict(ctx: Context, prior: PriorResults) -> CheckResult:
    base = ctx.vcs.base_ref
    if base in (EMPTY_TREE_SHA, "HEAD~1"):
        return passed("pre-conflict", "no upstream base ref to merge against", base_ref=base)

    # merge-tree computes the merge in memory; the working tree and index are untouched.
    outcome = await run_command(
        ["git", "merge-tree", "--write-tree", "--name-only", "--no-messages", ctx.vcs.head_ref, base],
        cwd=ctx.working_directory,
    )
    if outcome.exit_code == 0:
        return passed("pre-conflict", base_ref=base)
    if outcome.exit_code == 1:
        # First line is the resulting tree id; conflicted paths follow.
        lines = [ln for ln in outcome.stdout.splitlines() if ln.strip()]
        conflicts = sorted(set(lines[1:]))
        return failed(
            "pre-conflict",
            f"merging {base} would conflict in {len(conflicts)} file(s)",
            base_ref=base,
            conflicts=conflicts,
            remediation=f"Do rebase onto {base} and resolve conflicts, then re-run prove.",
        )
    raise ToolInvocationError(
        f"git merge-tree exited with code {outcome.exit_code}",
        details={"exit_code": outcome.exit_code, **outcome.tail()},
    )


async def check_commit_size(ctx: Context, prior: PriorResults) -> CheckResult:
    added, removed = loc_delta(ctx.vcs.unified_diff)
    total = added + removed
    limit = ctx.config.thresholds.max_commit_size
    if total <= limit:
        return passed("commit-size", added=added, removed=removed, total=total, max=limit)
    return failed(
        "commit-size",
        f"change touches {total} lines, more than the maximum of {limit}",
        added=added,
        removed=removed,
        total=total,
        max=limit,
        remediation="Do split the change into smaller commits, then re-run prove.",
    )
