from __future__ import annotations

from prove.mode import FUNCTIONAL

from .base import CRITICAL, MODE_SPECIFIC, OPTIONAL, PARALLEL, CheckDefinition, CheckRegistry
from .coverage_checks import check_diff_coverage, check_global_coverage
from .git_policy import check_commit_message, check_commit_size, check_pre_conflict, check_trunk
from .killswitch import check_killswitch
from .tdd_checks import check_changed_has_tests, check_phase_policy
from .tools import check_env, check_tests, command_check


FUNCTIONAL_ONLY = frozenset({FUNCTIONAL})


def get_checks() -> list[CheckDefinition]:
    # Fixed order for deterministic output.
    return [
        # 1. Critical: serial, first failure stops the run.
        CheckDefinition("trunk", "Trunk branch", CRITICAL, check_trunk, quick_mode=True,
                        description="Run only from the main branch"),
        CheckDefinition("commit-msg-convention", "Commit message convention", CRITICAL, check_commit_message, quick_mode=True,
                        description="Commit subject matches the configured convention"),
        CheckDefinition("killswitch-required", "Kill-switch required", CRITICAL, check_killswitch, quick_mode=True,
                        description="feat commits guard new production behavior behind a flag"),
        CheckDefinition("pre-conflict", "Pre-merge conflict", CRITICAL, check_pre_conflict,
                        description="Change merges cleanly onto the base ref"),

        # 2. Parallel: launched together, no fail-fast.
        CheckDefinition("env-check", "Environment", PARALLEL, check_env, quick_mode=True,
                        description="Required environment variables are set"),
        CheckDefinition("lint", "Lint", PARALLEL, command_check("lint", "lint"), quick_mode=True),
        CheckDefinition("typecheck", "Type check", PARALLEL, command_check("typecheck", "typecheck"), quick_mode=True),
        CheckDefinition("tests", "Tests", PARALLEL, check_tests, quick_mode=True,
                        description="Test suite passes; pass/fail counts are recorded as evidence"),

        # 3. Mode-specific: functional work only.
        CheckDefinition("tdd-changed-has-tests", "Changed code has tests", MODE_SPECIFIC, check_changed_has_tests,
                        quick_mode=True, modes=FUNCTIONAL_ONLY),
        CheckDefinition("diff-coverage", "Diff coverage", MODE_SPECIFIC, check_diff_coverage,
                        quick_mode=True, modes=FUNCTIONAL_ONLY,
                        description="Changed lines are covered by tests"),
        CheckDefinition("tdd-phase", "TDD phase policy", MODE_SPECIFIC, check_phase_policy,
                        quick_mode=True, modes=FUNCTIONAL_ONLY,
                        description="Change satisfies the rules of its red/green/refactor phase"),

        # 4. Optional: toggle-gated.
        CheckDefinition("coverage", "Global coverage", OPTIONAL, check_global_coverage, toggle="coverage"),
        CheckDefinition("commit-size", "Commit size", OPTIONAL, check_commit_size, toggle="commit_size"),
        CheckDefinition("security", "Dependency audit", OPTIONAL, command_check("security", "security"), toggle="security"),
        CheckDefinition("contracts", "API contracts", OPTIONAL, command_check("contracts", "contracts"), toggle="contracts"),
        CheckDefinition("db-migrations", "Database migrations", OPTIONAL, command_check("db-migrations", "db_migrations"),
                        toggle="db_migrations"),
        CheckDefinition("build", "Build", OPTIONAL, command_check("build", "build"), toggle="build"),
        CheckDefinition("size-budget", "Size budget", OPTIONAL, command_check("size-budget", "size_budget"),
                        toggle="size_budget"),
    ]


def build_registry() -> CheckRegistry:
    registry = CheckRegistry()
    for definition in get_checks():
        registry.register(definition)
    return registry
