from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from prove.config import CONFIG_FILENAME, load_config
from prove.core.errors import ConfigurationError


def _write(repo: Path, obj: object) -> None:
    (repo / CONFIG_FILENAME).write_text(json.dumps(obj), encoding="utf-8")


class TestDefaults:
    def test_defaults_without_file(self, tmp_path: Path) -> None:
        cfg = load_config(tmp_path, env={})
        assert cfg.thresholds.diff_coverage_functional == 85
        assert cfg.thresholds.diff_coverage_refactor == 60
        assert cfg.paths.coverage_file == "coverage/coverage-final.json"
        assert cfg.toggle_enabled("coverage") is True
        assert cfg.toggle_enabled("security") is False
        assert cfg.timeout_for("tests") == 120
        assert cfg.timeout_for("trunk") == 300


class TestFileOverrides:
    def test_partial_override_merges(self, tmp_path: Path) -> None:
        _write(tmp_path, {"thresholds": {"diff_coverage_functional": 90}, "runner": {"check_timeouts": {"pre-conflict": 5}}})
        cfg = load_config(tmp_path, env={})
        assert cfg.thresholds.diff_coverage_functional == 90
        assert cfg.thresholds.global_coverage == 25
        assert cfg.timeout_for("pre-conflict") == 5
        # Timeout entries merge into the defaults.
        assert cfg.timeout_for("tests") == 120

    def test_unknown_key_rejected(self, tmp_path: Path) -> None:
        _write(tmp_path, {"thresholds": {"diff_coverage": 90}})
        with pytest.raises(ConfigurationError, match="unknown config key: thresholds.diff_coverage"):
            load_config(tmp_path, env={})

    @pytest.mark.parametrize(
        "obj",
        [
            {"thresholds": {"diff_coverage_functional": 150}},
            {"thresholds": {"max_commit_size": -1}},
            {"toggles": {"coverage": "yes"}},
            {"paths": {"src_globs": []}},
            {"commands": {"lint": "ruff check ."}},
            {"commit_message": {"pattern": "(unclosed"}},
            {"git": "main"},
        ],
    )
    def test_invalid_values_rejected(self, tmp_path: Path, obj: object) -> None:
        _write(tmp_path, obj)
        with pytest.raises(ConfigurationError):
            load_config(tmp_path, env={})

    def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("{", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(tmp_path, env={})

    def test_explicit_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path, config_path=tmp_path / "missing.json", env={})


class TestEnvOverrides:
    def test_numeric_and_toggle_overrides(self, tmp_path: Path) -> None:
        cfg = load_config(
            tmp_path,
            env={"PROVE_DIFF_COVERAGE_FUNCTIONAL": "70", "PROVE_ENABLE_SECURITY": "true", "PROVE_ENABLE_COVERAGE": "0"},
        )
        assert cfg.thresholds.diff_coverage_functional == 70
        assert cfg.toggle_enabled("security") is True
        assert cfg.toggle_enabled("coverage") is False

    def test_env_beats_file(self, tmp_path: Path) -> None:
        _write(tmp_path, {"thresholds": {"global_coverage": 50}})
        cfg = load_config(tmp_path, env={"PROVE_GLOBAL_COVERAGE": "40"})
        assert cfg.thresholds.global_coverage == 40

    @pytest.mark.parametrize("env", [{"PROVE_TIMEOUT": "soon"}, {"PROVE_ENABLE_BUILD": "maybe"}])
    def test_bad_env_values(self, tmp_path: Path, env: dict[str, str]) -> None:
        with pytest.raises(ConfigurationError):
            load_config(tmp_path, env=env)
