from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Sequence

from prove.config import GateConfig
from prove.core.cache import TTLCache
from prove.core.errors import DataFormatError
from prove.coverage.store import CoverageStore
from prove.flags import FlagRegistry
from prove.mode import resolve_delivery_mode
from prove.tdd.classifier import PhaseClassification, classify_change
from prove.tdd.evidence import TestEvidence, load_test_evidence
from prove.vcs import GitAdapter, VcsSnapshot, load_snapshot


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Context:
    working_directory: Path
    config: GateConfig
    mode: str
    mode_source: str
    phase: PhaseClassification
    vcs: VcsSnapshot
    test_evidence: tuple[TestEvidence, ...]
    coverage: CoverageStore
    flags: FlagRegistry
    env: Mapping[str, str]

    def path(self, rel: str) -> Path:
        return self.working_directory / rel


def _load_evidence_or_empty(path: Path) -> tuple[TestEvidence, ...]:
    # A corrupt evidence log only removes one phase signal; it must not abort the run.
    try:
        return load_test_evidence(path)
    except DataFormatError as e:
        logger.warning("ignoring test evidence log %s: %s", path, e)
        return ()


def build_context(
    working_directory: Path,
    *,
    config: GateConfig,
    env: Mapping[str, str],
    pr_labels: Sequence[str] | None = None,
    pr_title: str | None = None,
    base_ref: str | None = None,
    adapter: GitAdapter | None = None,
) -> Context:
    """Resolve everything a run needs, once. Raises ConfigurationError before any check runs."""

    resolution = resolve_delivery_mode(
        working_directory,
        env=env,
        task_descriptor_path=Path(config.paths.task_descriptor),
        problem_analysis_path=Path(config.paths.problem_analysis),
        pr_labels=pr_labels,
        pr_title=pr_title,
    )

    adapter = adapter or GitAdapter(working_directory)
    candidates = (base_ref,) if base_ref else config.git.base_ref_candidates
    snapshot = load_snapshot(adapter, base_candidates=candidates, env=env)

    evidence = _load_evidence_or_empty(working_directory / config.paths.evidence_log)
    phase = classify_change(
        snapshot.commit_message,
        evidence,
        snapshot.changed_files,
        test_globs=config.paths.test_globs,
        refactor_keywords=config.refactor_keywords,
    )
    logger.info("TDD phase: %s (confidence=%s)", phase.phase, phase.confidence)

    return Context(
        working_directory=working_directory,
        config=config,
        mode=resolution.mode,
        mode_source=resolution.source,
        phase=phase,
        vcs=snapshot,
        test_evidence=evidence,
        coverage=CoverageStore(working_directory / config.paths.coverage_file),
        flags=FlagRegistry(
            working_directory / config.paths.flag_registry,
            cache=TTLCache(capacity=8, ttl_s=config.flag_cache_ttl_s),
        ),
        env=MappingProxyType(dict(env)),
    )
