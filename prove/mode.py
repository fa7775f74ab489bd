"""Delivery mode resolution.

The mode is decided by a priority chain of resolvers; the first one that yields a
mode wins and later ones are never consulted:

1. environment override (PROVE_MODE)
2. task descriptor document (tasks/TASK.json)
3. PR label (mode:functional / mode:non-functional)
4. PR title tag ([MODE:F], [MODE:NF], [MODE:functional], [MODE:non-functional])
5. default: functional

Non-functional work must carry a problem-analysis document; `resolve_delivery_mode`
verifies it and raises ConfigurationError when it is missing or incomplete.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from prove.core.errors import ConfigurationError


logger = logging.getLogger(__name__)

FUNCTIONAL = "functional"
NON_FUNCTIONAL = "non-functional"
MODES = (FUNCTIONAL, NON_FUNCTIONAL)

MODE_ENV_VAR = "PROVE_MODE"

LABEL_FUNCTIONAL = "mode:functional"
LABEL_NON_FUNCTIONAL = "mode:non-functional"

TITLE_TAGS = (
    ("[MODE:F]", FUNCTIONAL),
    ("[MODE:functional]", FUNCTIONAL),
    ("[MODE:NF]", NON_FUNCTIONAL),
    ("[MODE:non-functional]", NON_FUNCTIONAL),
)

PROBLEM_ANALYSIS_SECTIONS = ("## Analyze", "## Identify Root Cause", "## Fix Directly", "## Validate")
PROBLEM_ANALYSIS_MIN_CHARS = 200
PLACEHOLDER_MARKERS = ("[REPLACE:",)


@dataclass(frozen=True)
class TaskDescriptor:
    mode: str
    updated_at: str
    source: str
    note: str


@dataclass(frozen=True)
class ModeInputs:
    env: Mapping[str, str]
    task_descriptor: TaskDescriptor | None = None
    pr_labels: Sequence[str] = ()
    pr_title: str | None = None


@dataclass(frozen=True)
class ModeResolution:
    mode: str
    source: str


def _from_env(inputs: ModeInputs) -> str | None:
    raw = inputs.env.get(MODE_ENV_VAR)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in MODES:
        return value
    if value:
        logger.warning("ignoring %s=%r (expected functional or non-functional)", MODE_ENV_VAR, raw)
    return None


def _from_task_descriptor(inputs: ModeInputs) -> str | None:
    return inputs.task_descriptor.mode if inputs.task_descriptor is not None else None


def _from_pr_labels(inputs: ModeInputs) -> str | None:
    labels = {label.strip() for label in inputs.pr_labels}
    if LABEL_FUNCTIONAL in labels:
        return FUNCTIONAL
    if LABEL_NON_FUNCTIONAL in labels:
        return NON_FUNCTIONAL
    return None


def _from_pr_title(inputs: ModeInputs) -> str | None:
    title = inputs.pr_title or ""
    for tag, mode in TITLE_TAGS:
        if tag in title:
            return mode
    return None


Resolver = Callable[[ModeInputs], "str | None"]

# Priority order, highest first.
RESOLVERS: tuple[tuple[str, Resolver], ...] = (
    ("env", _from_env),
    ("task_descriptor", _from_task_descriptor),
    ("pr_label", _from_pr_labels),
    ("pr_title", _from_pr_title),
)


def resolve_with_source(
    env: Mapping[str, str],
    task_descriptor: TaskDescriptor | None = None,
    pr_labels: Sequence[str] | None = None,
    pr_title: str | None = None,
) -> ModeResolution:
    inputs = ModeInputs(env=env, task_descriptor=task_descriptor, pr_labels=tuple(pr_labels or ()), pr_title=pr_title)
    for source, resolver in RESOLVERS:
        mode = resolver(inputs)
        if mode is not None:
            return ModeResolution(mode=mode, source=source)
    return ModeResolution(mode=FUNCTIONAL, source="default")


def resolve(
    env: Mapping[str, str],
    task_descriptor: TaskDescriptor | None = None,
    pr_labels: Sequence[str] | None = None,
    pr_title: str | None = None,
) -> str:
    return resolve_with_source(env, task_descriptor, pr_labels, pr_title).mode


def parse_task_descriptor(obj: object) -> TaskDescriptor:
    if not isinstance(obj, dict):
        raise ConfigurationError("task descriptor must be a JSON object")
    mode = obj.get("mode")
    if not isinstance(mode, str) or mode not in MODES:
        raise ConfigurationError(f"task descriptor mode missing/invalid: {mode!r} (expected one of {', '.join(MODES)})")
    fields: dict[str, str] = {}
    for key in ("updatedAt", "source", "note"):
        v = obj.get(key)
        if not isinstance(v, str):
            raise ConfigurationError(f"task descriptor {key} missing/invalid (string required)")
        fields[key] = v
    return TaskDescriptor(mode=mode, updated_at=fields["updatedAt"], source=fields["source"], note=fields["note"])


def load_task_descriptor(path: Path) -> TaskDescriptor | None:
    """Return None when the document is absent; a present but malformed document is an error."""

    if not path.exists():
        return None
    try:
        obj = json.loads(path.read_text(encoding="utf-8", errors="strict"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load {path.name}: {e}", details={"path": str(path)}) from e
    try:
        return parse_task_descriptor(obj)
    except ConfigurationError as e:
        raise ConfigurationError(f"Failed to load {path.name}: {e}", details={"path": str(path)}) from e


def labels_from_env(env: Mapping[str, str]) -> list[str]:
    raw = env.get("GITHUB_PR_LABELS", "")
    return [p.strip() for p in raw.split(",") if p.strip()]


def title_from_env(env: Mapping[str, str]) -> str | None:
    return env.get("GITHUB_PR_TITLE") or env.get("PR_TITLE") or None


@dataclass(frozen=True)
class ProblemAnalysisCheck:
    ok: bool
    missing_sections: tuple[str, ...] = ()
    content_chars: int = 0
    reason: str | None = None


def check_problem_analysis_text(text: str) -> ProblemAnalysisCheck:
    present = {line.strip() for line in text.splitlines()}
    missing = tuple(s for s in PROBLEM_ANALYSIS_SECTIONS if s not in present)
    chars = len(re.sub(r"\s+", "", text))

    problems: list[str] = []
    if missing:
        problems.append(f"Missing required sections: {', '.join(missing)}")
    if chars < PROBLEM_ANALYSIS_MIN_CHARS:
        problems.append(f"content too short: {chars} non-whitespace characters, at least {PROBLEM_ANALYSIS_MIN_CHARS} required")
    if any(marker in text for marker in PLACEHOLDER_MARKERS):
        problems.append("template placeholders ([REPLACE: ...]) have not been filled in")

    if problems:
        return ProblemAnalysisCheck(ok=False, missing_sections=missing, content_chars=chars, reason="; ".join(problems))
    return ProblemAnalysisCheck(ok=True, content_chars=chars)


def verify_problem_analysis(path: Path) -> ProblemAnalysisCheck:
    if not path.exists():
        raise ConfigurationError(
            f"non-functional mode requires a problem analysis at {path.name}",
            details={"path": str(path), "required_sections": list(PROBLEM_ANALYSIS_SECTIONS)},
        )
    result = check_problem_analysis_text(path.read_text(encoding="utf-8", errors="replace"))
    if not result.ok:
        raise ConfigurationError(
            f"problem analysis {path.name} is incomplete: {result.reason}",
            details={
                "path": str(path),
                "missing_sections": list(result.missing_sections),
                "content_chars": result.content_chars,
            },
        )
    return result


def resolve_delivery_mode(
    repo_root: Path,
    *,
    env: Mapping[str, str],
    task_descriptor_path: Path,
    problem_analysis_path: Path,
    pr_labels: Sequence[str] | None = None,
    pr_title: str | None = None,
) -> ModeResolution:
    """Resolve the mode for a run; PR inputs default to the CI environment when not given."""

    descriptor = load_task_descriptor(repo_root / task_descriptor_path)
    labels = list(pr_labels) if pr_labels is not None else labels_from_env(env)
    title = pr_title if pr_title is not None else title_from_env(env)
    resolution = resolve_with_source(env, descriptor, labels, title)
    logger.info("delivery mode: %s (from %s)", resolution.mode, resolution.source)

    if resolution.mode == NON_FUNCTIONAL:
        verify_problem_analysis(repo_root / problem_analysis_path)
    return resolution
