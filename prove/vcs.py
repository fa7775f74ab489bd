from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from prove.core.errors import ToolInvocationError
from prove.core.exec import tool_env


logger = logging.getLogger(__name__)

# Git's well-known empty tree object; diff base for a repository with a single commit.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "GITLAB_CI", "JENKINS_URL", "BUILDKITE", "CIRCLECI")


@dataclass(frozen=True)
class VcsSnapshot:
    current_branch: str
    base_ref: str
    head_ref: str
    commit_message: str
    changed_files: tuple[str, ...]
    unified_diff: str
    is_ci: bool
    has_uncommitted_changes: bool
    head_commit: str | None = None


class GitAdapter:
    """Read-only queries against a git working tree."""

    def __init__(self, repo_root: Path, *, timeout_s: float = 60.0) -> None:
        self.repo_root = repo_root
        self.timeout_s = timeout_s

    def _run_git(self, args: list[str]) -> subprocess.CompletedProcess[bytes]:
        try:
            return subprocess.run(
                ["git", *args],
                cwd=str(self.repo_root),
                env=tool_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
                timeout=self.timeout_s,
            )
        except FileNotFoundError as e:
            raise ToolInvocationError("git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise ToolInvocationError(f"git {args[0]} timed out after {self.timeout_s}s") from e

    def _git_text(self, args: list[str], what: str) -> str:
        cp = self._run_git(args)
        if cp.returncode != 0:
            raise ToolInvocationError(
                f"git {what} failed",
                details={"argv": ["git", *args], "exit_code": cp.returncode, "stderr_tail": cp.stderr.decode("utf-8", errors="replace")[-2000:]},
            )
        return cp.stdout.decode("utf-8", errors="replace")

    def rev_exists(self, rev: str) -> bool:
        cp = self._run_git(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        return cp.returncode == 0

    def head_commit(self) -> str:
        return self._git_text(["rev-parse", "HEAD"], "rev-parse HEAD").strip()

    def current_branch(self) -> str:
        # Detached HEAD reports the literal "HEAD".
        return self._git_text(["rev-parse", "--abbrev-ref", "HEAD"], "rev-parse --abbrev-ref").strip()

    def resolve_base_ref(self, candidates: Iterable[str]) -> str:
        """Return the first existing candidate, else HEAD~1, else the empty tree."""

        for rev in candidates:
            if rev and self.rev_exists(rev):
                return rev
        if self.rev_exists("HEAD~1"):
            logger.info("no configured base ref found; falling back to HEAD~1")
            return "HEAD~1"
        logger.info("repository has a single commit; diffing against the empty tree")
        return EMPTY_TREE_SHA

    def changed_files(self, base: str, head: str = "HEAD") -> list[str]:
        # Use NUL-delimited output to avoid platform quoting differences.
        cp = self._run_git(["-c", "core.quotePath=false", "diff", "--name-only", "--no-renames", "-z", base, head])
        if cp.returncode != 0:
            raise ToolInvocationError("git diff --name-only failed", details={"base": base, "head": head})
        parts = [p for p in cp.stdout.split(b"\x00") if p]
        # Deterministic ordering.
        return sorted(p.decode("utf-8", errors="surrogateescape") for p in parts)

    def unified_diff(self, base: str, head: str = "HEAD") -> str:
        """Zero-context diff: hunk headers describe exactly the changed lines."""

        return self._git_text(
            ["-c", "core.quotePath=false", "diff", "--unified=0", "--no-renames", "--no-color", "--no-ext-diff", base, head],
            "diff --unified=0",
        )

    def last_commit_message(self) -> str:
        cp = self._run_git(["log", "-1", "--pretty=%B"])
        if cp.returncode != 0:
            # No commits yet.
            return ""
        return cp.stdout.decode("utf-8", errors="replace").strip()

    def has_uncommitted_changes(self) -> bool:
        return bool(self._git_text(["status", "--porcelain"], "status").strip())


def detect_ci(env: Mapping[str, str]) -> bool:
    return any(env.get(name) for name in CI_ENV_VARS)


def load_snapshot(
    adapter: GitAdapter,
    *,
    base_candidates: Iterable[str],
    env: Mapping[str, str],
    head: str = "HEAD",
) -> VcsSnapshot:
    """Query the repository once; checks only ever read the returned snapshot."""

    base_ref = adapter.resolve_base_ref(base_candidates)
    changed = adapter.changed_files(base_ref, head)
    snapshot = VcsSnapshot(
        current_branch=adapter.current_branch(),
        base_ref=base_ref,
        head_ref=head,
        commit_message=adapter.last_commit_message(),
        changed_files=tuple(changed),
        unified_diff=adapter.unified_diff(base_ref, head),
        is_ci=detect_ci(env),
        has_uncommitted_changes=adapter.has_uncommitted_changes(),
        head_commit=adapter.head_commit(),
    )
    logger.debug("vcs snapshot: base=%s branch=%s changed=%d", base_ref, snapshot.current_branch, len(changed))
    return snapshot
