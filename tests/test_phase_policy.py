from __future__ import annotations

import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from prove.config import DEFAULT_REFACTOR_KEYWORDS, default_config
from prove.tdd.classifier import PhaseClassification
from prove.tdd.evidence import TestRunSummary
from prove.tdd.policy import CoverageAdvisory, PolicyVerdict, enforce_phase_policy


TEST_GLOBS = default_config().paths.test_globs


def _phase(name: str) -> PhaseClassification:
    return PhaseClassification(phase=name, confidence="high", sources=("commit_tag",))


def _summary(passed: int, failed: int) -> TestRunSummary:
    return TestRunSummary(passed=passed, failed=failed, total=passed + failed)


def _enforce(
    phase: str,
    files: list[str],
    summary: TestRunSummary | None,
    *,
    mode: str = "functional",
    message: str = "",
    coverage: CoverageAdvisory | None = None,
) -> PolicyVerdict:
    return enforce_phase_policy(
        _phase(phase),
        mode=mode,
        changed_files=files,
        commit_message=message,
        test_summary=summary,
        test_globs=TEST_GLOBS,
        refactor_keywords=DEFAULT_REFACTOR_KEYWORDS,
        coverage=coverage,
    )


class TestApplicability:
    def test_non_functional_mode_skips(self) -> None:
        v = _enforce("red", [], None, mode="non-functional")
        assert v.ok and not v.applied

    def test_unknown_phase_skips(self) -> None:
        v = _enforce("unknown", ["pkg/a.py"], _summary(0, 3))
        assert v.ok and not v.applied
        assert "skipped" in (v.reason or "")


class TestRed:
    def test_passing_tests_violate_red(self) -> None:
        v = _enforce("red", ["tests/test_a.py"], _summary(5, 0))
        assert not v.ok
        assert "tests must fail initially" in (v.reason or "")

    def test_failing_new_test_satisfies_red(self) -> None:
        assert _enforce("red", ["tests/test_a.py"], _summary(5, 1)).ok

    def test_red_requires_test_change(self) -> None:
        v = _enforce("red", ["pkg/a.py"], _summary(0, 1))
        assert not v.ok


class TestGreen:
    def test_green_passes(self) -> None:
        assert _enforce("green", ["tests/test_a.py", "pkg/a.py"], _summary(6, 0)).ok

    def test_green_with_failures(self) -> None:
        v = _enforce("green", ["tests/test_a.py", "pkg/a.py"], _summary(5, 1))
        assert not v.ok
        assert any("failing" in x for x in v.violations)

    def test_green_needs_both_kinds_of_file(self) -> None:
        assert not _enforce("green", ["pkg/a.py"], _summary(6, 0)).ok

    def test_missing_test_result_fails(self) -> None:
        v = _enforce("green", ["tests/test_a.py", "pkg/a.py"], None)
        assert not v.ok
        assert any("no test-run result" in x for x in v.violations)


class TestRefactor:
    def test_refactor_passes(self) -> None:
        assert _enforce("refactor", ["pkg/a.py"], _summary(6, 0), message="refactor: extract helper").ok

    def test_refactor_needs_indicator(self) -> None:
        assert not _enforce("refactor", ["pkg/a.py"], _summary(6, 0), message="feat: new helper").ok

    def test_refactor_needs_code_change(self) -> None:
        assert not _enforce("refactor", ["tests/test_a.py"], _summary(6, 0), message="refactor tests").ok

    def test_coverage_is_advisory(self) -> None:
        v = _enforce(
            "refactor",
            ["pkg/a.py"],
            _summary(6, 0),
            message="refactor: extract helper",
            coverage=CoverageAdvisory(percentage=10.0, threshold=60.0),
        )
        assert v.ok
        assert v.details["coverage_advisory"]["below_threshold"] is True
