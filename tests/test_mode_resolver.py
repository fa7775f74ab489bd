from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from prove.core.errors import ConfigurationError
from prove.mode import (
    TaskDescriptor,
    check_problem_analysis_text,
    labels_from_env,
    load_task_descriptor,
    resolve,
    resolve_delivery_mode,
    resolve_with_source,
)


def _descriptor(mode: str) -> TaskDescriptor:
    return TaskDescriptor(mode=mode, updated_at="2024-01-01T00:00:00Z", source="test", note="")


def _write_task(repo: Path, obj: object) -> None:
    p = repo / "tasks" / "TASK.json"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(obj), encoding="utf-8")


GOOD_ANALYSIS = """# Problem analysis

## Analyze
The nightly export job times out when the upstream API throttles requests and retries pile up.

## Identify Root Cause
Retries use a fixed delay so throttled calls are retried in lockstep and keep hitting the limit.

## Fix Directly
Switch the retry loop to exponential backoff with jitter and cap total retry time per batch.

## Validate
Replay the throttling fixture and confirm the export finishes inside the scheduled window.
"""


class TestPriorityChain:
    def test_default_is_functional(self) -> None:
        assert resolve({}) == "functional"
        assert resolve_with_source({}).source == "default"

    def test_env_beats_everything(self) -> None:
        res = resolve_with_source(
            {"PROVE_MODE": "Functional"},
            _descriptor("non-functional"),
            ["mode:non-functional"],
            "[MODE:NF] speed up export",
        )
        assert res.mode == "functional"
        assert res.source == "env"

    def test_unrecognized_env_value_is_ignored(self) -> None:
        assert resolve({"PROVE_MODE": "fast"}, _descriptor("non-functional")) == "non-functional"

    def test_descriptor_beats_label(self) -> None:
        res = resolve_with_source({}, _descriptor("functional"), ["mode:non-functional"])
        assert res.mode == "functional"
        assert res.source == "task_descriptor"

    def test_label_beats_title(self) -> None:
        res = resolve_with_source({}, None, ["bug", "mode:non-functional"], "[MODE:F] feature")
        assert res.mode == "non-functional"
        assert res.source == "pr_label"

    @pytest.mark.parametrize(
        "title, expected",
        [
            ("[MODE:F] add export", "functional"),
            ("[MODE:NF] tune export", "non-functional"),
            ("tune export [MODE:non-functional]", "non-functional"),
            ("[MODE:functional] add export", "functional"),
        ],
    )
    def test_title_tags(self, title: str, expected: str) -> None:
        assert resolve({}, None, [], title) == expected

    def test_labels_from_env(self) -> None:
        assert labels_from_env({"GITHUB_PR_LABELS": "bug, mode:functional ,"}) == ["bug", "mode:functional"]


class TestTaskDescriptor:
    def test_missing_file_is_none(self, tmp_path: Path) -> None:
        assert load_task_descriptor(tmp_path / "tasks" / "TASK.json") is None

    def test_valid_descriptor(self, tmp_path: Path) -> None:
        _write_task(tmp_path, {"mode": "non-functional", "updatedAt": "", "source": "cli", "note": "perf"})
        td = load_task_descriptor(tmp_path / "tasks" / "TASK.json")
        assert td is not None and td.mode == "non-functional"

    @pytest.mark.parametrize(
        "obj",
        [
            {"mode": "bogus", "updatedAt": "", "source": "", "note": ""},
            {"updatedAt": "", "source": "", "note": ""},
            {"mode": "functional", "updatedAt": 1, "source": "", "note": ""},
            {"mode": "functional", "updatedAt": "", "source": ""},
            ["functional"],
        ],
    )
    def test_malformed_descriptor_raises(self, tmp_path: Path, obj: object) -> None:
        _write_task(tmp_path, obj)
        with pytest.raises(ConfigurationError):
            load_task_descriptor(tmp_path / "tasks" / "TASK.json")

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        p = tmp_path / "tasks" / "TASK.json"
        p.parent.mkdir(parents=True)
        p.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to load TASK.json"):
            load_task_descriptor(p)


class TestProblemAnalysis:
    def test_complete_document_passes(self) -> None:
        assert check_problem_analysis_text(GOOD_ANALYSIS).ok

    def test_missing_section_is_named(self) -> None:
        text = GOOD_ANALYSIS.replace("## Validate", "## Verify")
        result = check_problem_analysis_text(text)
        assert not result.ok
        assert result.missing_sections == ("## Validate",)
        assert "## Validate" in (result.reason or "")

    def test_too_short(self) -> None:
        text = "## Analyze\nx\n## Identify Root Cause\ny\n## Fix Directly\nz\n## Validate\nw\n"
        result = check_problem_analysis_text(text)
        assert not result.ok
        assert "too short" in (result.reason or "")

    def test_placeholders_rejected(self) -> None:
        result = check_problem_analysis_text(GOOD_ANALYSIS + "\n[REPLACE: owner]\n")
        assert not result.ok

    def test_non_functional_requires_document(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            resolve_delivery_mode(
                tmp_path,
                env={"PROVE_MODE": "non-functional"},
                task_descriptor_path=Path("tasks/TASK.json"),
                problem_analysis_path=Path("tasks/PROBLEM_ANALYSIS.md"),
            )

    def test_non_functional_with_incomplete_document(self, tmp_path: Path) -> None:
        p = tmp_path / "tasks" / "PROBLEM_ANALYSIS.md"
        p.parent.mkdir(parents=True)
        p.write_text(GOOD_ANALYSIS.replace("## Validate", "## Check"), encoding="utf-8")
        with pytest.raises(ConfigurationError, match="## Validate") as exc:
            resolve_delivery_mode(
                tmp_path,
                env={},
                task_descriptor_path=Path("tasks/TASK.json"),
                problem_analysis_path=Path("tasks/PROBLEM_ANALYSIS.md"),
                pr_labels=["mode:non-functional"],
            )
        assert exc.value.details["missing_sections"] == ["## Validate"]

    def test_functional_ignores_document(self, tmp_path: Path) -> None:
        res = resolve_delivery_mode(
            tmp_path,
            env={},
            task_descriptor_path=Path("tasks/TASK.json"),
            problem_analysis_path=Path("tasks/PROBLEM_ANALYSIS.md"),
            pr_labels=[],
            pr_title="",
        )
        assert res.mode == "functional"
