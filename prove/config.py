from __future__ import annotations

import copy
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from prove.core.errors import ConfigurationError


logger = logging.getLogger(__name__)

CONFIG_FILENAME = "prove.config.json"

TOGGLE_NAMES = ("coverage", "commit_size", "security", "contracts", "db_migrations", "build", "size_budget")

DEFAULT_COMMIT_PATTERN = r"^(feat|fix|chore|refactor|revert):\s+(.+?)\s+\[T-(\d{4}-\d{2}-\d{2}-\d+)\]\s+\[MODE:(F|NF)\]$"

DEFAULT_REFACTOR_KEYWORDS = (
    "refactor",
    "improve",
    "optimize",
    "clean",
    "simplify",
    "extract",
    "consolidate",
    "reorganize",
    "restructure",
    "deduplicate",
)

DEFAULTS: dict[str, Any] = {
    "thresholds": {
        "diff_coverage_functional": 85,
        "diff_coverage_refactor": 60,
        "global_coverage": 25,
        "max_commit_size": 300,
    },
    "paths": {
        "coverage_file": "coverage/coverage-final.json",
        "report_file": "prove-report.json",
        "task_descriptor": "tasks/TASK.json",
        "problem_analysis": "tasks/PROBLEM_ANALYSIS.md",
        "evidence_log": ".prove/evidence.json",
        "flag_registry": "flags.json",
        "src_globs": ["*.py"],
        "test_globs": ["tests/*", "*/tests/*", "test_*.py", "*/test_*.py", "*_test.py", "conftest.py", "*/conftest.py"],
    },
    "git": {
        "main_branch": "main",
        "base_ref_candidates": ["origin/main"],
        "require_main_branch": True,
    },
    "runner": {
        "timeout_s": 300,
        "check_timeouts": {"typecheck": 60, "lint": 30, "tests": 120, "build": 180, "coverage": 60},
    },
    "toggles": {
        "coverage": True,
        "commit_size": False,
        "security": False,
        "contracts": False,
        "db_migrations": False,
        "build": False,
        "size_budget": False,
    },
    "commands": {
        "lint": ["ruff", "check", "."],
        "typecheck": ["mypy", "."],
        "tests": ["pytest", "-q"],
        "security": ["pip-audit"],
        "contracts": [],
        "db_migrations": [],
        "build": ["python", "-m", "build"],
        "size_budget": [],
    },
    "commit_message": {"pattern": DEFAULT_COMMIT_PATTERN},
    "env_check": {"required": []},
    "tdd": {"refactor_keywords": list(DEFAULT_REFACTOR_KEYWORDS)},
    "flags": {"cache_ttl_s": 300},
}

# Sections whose keys are user-defined (not validated against DEFAULTS).
_OPEN_MAPS = {("runner", "check_timeouts"), ("commands",)}


@dataclass(frozen=True)
class Thresholds:
    diff_coverage_functional: float
    diff_coverage_refactor: float
    global_coverage: float
    max_commit_size: int


@dataclass(frozen=True)
class PathSettings:
    coverage_file: str
    report_file: str
    task_descriptor: str
    problem_analysis: str
    evidence_log: str
    flag_registry: str
    src_globs: tuple[str, ...]
    test_globs: tuple[str, ...]


@dataclass(frozen=True)
class GitSettings:
    main_branch: str
    base_ref_candidates: tuple[str, ...]
    require_main_branch: bool


@dataclass(frozen=True)
class GateConfig:
    thresholds: Thresholds
    paths: PathSettings
    git: GitSettings
    default_timeout_s: float
    check_timeouts: Mapping[str, float]
    toggles: Mapping[str, bool]
    commands: Mapping[str, tuple[str, ...]]
    commit_pattern: str
    required_env: tuple[str, ...]
    refactor_keywords: tuple[str, ...]
    flag_cache_ttl_s: float

    def timeout_for(self, check_id: str) -> float:
        return self.check_timeouts.get(check_id, self.default_timeout_s)

    def toggle_enabled(self, name: str) -> bool:
        return bool(self.toggles.get(name, False))


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _merge(base: dict[str, Any], override: Any, where: tuple[str, ...]) -> dict[str, Any]:
    if not isinstance(override, dict):
        raise ConfigurationError(f"{'.'.join(where) or 'config'} must be a JSON object")
    out = copy.deepcopy(base)
    for key, value in override.items():
        if where in _OPEN_MAPS:
            out[key] = value
            continue
        if key not in base:
            raise ConfigurationError(f"unknown config key: {'.'.join((*where, key))}")
        if isinstance(base[key], dict):
            out[key] = _merge(base[key], value, (*where, key))
        else:
            out[key] = value
    return out


def _req_number(obj: dict[str, Any], key: str, where: str, *, minimum: float = 0, maximum: float | None = None) -> float:
    v = obj.get(key)
    if not _is_number(v) or v < minimum or (maximum is not None and v > maximum):
        bound = f"[{minimum}, {maximum}]" if maximum is not None else f">= {minimum}"
        raise ConfigurationError(f"{where}.{key} missing/invalid (number {bound} required)")
    return float(v)


def _req_int(obj: dict[str, Any], key: str, where: str) -> int:
    v = obj.get(key)
    if not isinstance(v, int) or isinstance(v, bool) or v < 0:
        raise ConfigurationError(f"{where}.{key} missing/invalid (non-negative integer required)")
    return v


def _req_str(obj: dict[str, Any], key: str, where: str) -> str:
    v = obj.get(key)
    if not isinstance(v, str) or not v.strip():
        raise ConfigurationError(f"{where}.{key} missing/invalid (non-empty string required)")
    return v


def _req_str_list(obj: dict[str, Any], key: str, where: str, *, allow_empty: bool = True) -> tuple[str, ...]:
    v = obj.get(key)
    if not isinstance(v, list) or not all(isinstance(x, str) and x for x in v) or (not allow_empty and not v):
        raise ConfigurationError(f"{where}.{key} missing/invalid (list of non-empty strings required)")
    return tuple(v)


def parse_config(raw: dict[str, Any]) -> GateConfig:
    """Validate a fully merged config object (defaults + file + env)."""

    th = raw["thresholds"]
    thresholds = Thresholds(
        diff_coverage_functional=_req_number(th, "diff_coverage_functional", "thresholds", maximum=100),
        diff_coverage_refactor=_req_number(th, "diff_coverage_refactor", "thresholds", maximum=100),
        global_coverage=_req_number(th, "global_coverage", "thresholds", maximum=100),
        max_commit_size=_req_int(th, "max_commit_size", "thresholds"),
    )

    p = raw["paths"]
    paths = PathSettings(
        coverage_file=_req_str(p, "coverage_file", "paths"),
        report_file=_req_str(p, "report_file", "paths"),
        task_descriptor=_req_str(p, "task_descriptor", "paths"),
        problem_analysis=_req_str(p, "problem_analysis", "paths"),
        evidence_log=_req_str(p, "evidence_log", "paths"),
        flag_registry=_req_str(p, "flag_registry", "paths"),
        src_globs=_req_str_list(p, "src_globs", "paths", allow_empty=False),
        test_globs=_req_str_list(p, "test_globs", "paths", allow_empty=False),
    )

    g = raw["git"]
    require_main = g.get("require_main_branch")
    if not isinstance(require_main, bool):
        raise ConfigurationError("git.require_main_branch missing/invalid (boolean required)")
    git = GitSettings(
        main_branch=_req_str(g, "main_branch", "git"),
        base_ref_candidates=_req_str_list(g, "base_ref_candidates", "git"),
        require_main_branch=require_main,
    )

    r = raw["runner"]
    default_timeout_s = _req_number(r, "timeout_s", "runner", minimum=0.001)
    check_timeouts: dict[str, float] = {}
    ct = r.get("check_timeouts")
    if not isinstance(ct, dict):
        raise ConfigurationError("runner.check_timeouts missing/invalid (object required)")
    for check_id in sorted(ct):
        check_timeouts[check_id] = _req_number(ct, check_id, "runner.check_timeouts", minimum=0.001)

    toggles: dict[str, bool] = {}
    for name in TOGGLE_NAMES:
        v = raw["toggles"].get(name)
        if not isinstance(v, bool):
            raise ConfigurationError(f"toggles.{name} missing/invalid (boolean required)")
        toggles[name] = v

    commands: dict[str, tuple[str, ...]] = {}
    for name in sorted(raw["commands"]):
        commands[name] = _req_str_list(raw["commands"], name, "commands")

    pattern = _req_str(raw["commit_message"], "pattern", "commit_message")
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(f"commit_message.pattern is not a valid regular expression: {e}") from e

    return GateConfig(
        thresholds=thresholds,
        paths=paths,
        git=git,
        default_timeout_s=default_timeout_s,
        check_timeouts=MappingProxyType(check_timeouts),
        toggles=MappingProxyType(toggles),
        commands=MappingProxyType(commands),
        commit_pattern=pattern,
        required_env=_req_str_list(raw["env_check"], "required", "env_check"),
        refactor_keywords=tuple(k.lower() for k in _req_str_list(raw["tdd"], "refactor_keywords", "tdd")),
        flag_cache_ttl_s=_req_number(raw["flags"], "cache_ttl_s", "flags", minimum=0.001),
    )


def _env_number(env: Mapping[str, str], name: str) -> float | int | None:
    v = env.get(name)
    if v is None or not v.strip():
        return None
    try:
        f = float(v)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {v!r}") from e
    return int(f) if f.is_integer() else f


def apply_env_overrides(raw: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    out = copy.deepcopy(raw)
    numeric = (
        ("PROVE_DIFF_COVERAGE_FUNCTIONAL", "thresholds", "diff_coverage_functional"),
        ("PROVE_DIFF_COVERAGE_REFACTOR", "thresholds", "diff_coverage_refactor"),
        ("PROVE_GLOBAL_COVERAGE", "thresholds", "global_coverage"),
        ("PROVE_MAX_COMMIT_SIZE", "thresholds", "max_commit_size"),
        ("PROVE_TIMEOUT", "runner", "timeout_s"),
    )
    for name, section, key in numeric:
        v = _env_number(env, name)
        if v is not None:
            logger.debug("config override from %s: %s.%s=%s", name, section, key, v)
            out[section][key] = v

    for toggle in TOGGLE_NAMES:
        name = f"PROVE_ENABLE_{toggle.upper()}"
        v = env.get(name)
        if v is None:
            continue
        if v.strip().lower() not in ("true", "false", "1", "0"):
            raise ConfigurationError(f"{name} must be true/false, got {v!r}")
        out["toggles"][toggle] = v.strip().lower() in ("true", "1")
    return out


def load_config(repo_root: Path, *, config_path: Path | None = None, env: Mapping[str, str] | None = None) -> GateConfig:
    """Load defaults, then prove.config.json (or config_path), then environment overrides.

    An explicitly given config_path must exist; the implicit repo-root file is optional.
    """

    env = os.environ if env is None else env
    raw = copy.deepcopy(DEFAULTS)

    path = config_path if config_path is not None else repo_root / CONFIG_FILENAME
    if path.exists():
        try:
            override = json.loads(path.read_text(encoding="utf-8", errors="strict"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"{path.name} is not valid JSON: {e}") from e
        raw = _merge(raw, override, ())
        logger.debug("loaded config file %s", path)
    elif config_path is not None:
        raise ConfigurationError(f"config file not found: {config_path}")

    return parse_config(apply_env_overrides(raw, env))


def default_config() -> GateConfig:
    return parse_config(copy.deepcopy(DEFAULTS))
