"""TDD phase classification from commit, test-run and file-shape signals.

Pure functions only: callers gather the inputs, nothing here touches git or disk.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from prove.core.errors import AmbiguousPhaseError
from prove.core.paths import split_test_and_other
from prove.tdd.evidence import TestEvidence, latest_evidence


logger = logging.getLogger(__name__)

RED = "red"
GREEN = "green"
REFACTOR = "refactor"
UNKNOWN = "unknown"

COMMIT_TAG_RE = re.compile(r"\[TDD:(red|green|refactor)\]", re.IGNORECASE)

WEIGHT_COMMIT_TAG = 1.0
WEIGHT_TEST_EVIDENCE = 0.6
WEIGHT_FILE_SHAPE = 0.4
WEIGHT_REFACTOR_SHAPE = 0.3


@dataclass(frozen=True)
class PhaseEvidence:
    source: str  # "commit_tag" | "test_evidence" | "file_shape"
    phase: str
    confidence_weight: float


@dataclass(frozen=True)
class PhaseClassification:
    phase: str
    confidence: str  # "high" | "medium" | "low" | "none"
    sources: tuple[str, ...] = ()
    evidence: tuple[PhaseEvidence, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "phase": self.phase,
            "confidence": self.confidence,
            "sources": list(self.sources),
            "evidence": [
                {"source": e.source, "phase": e.phase, "confidence_weight": e.confidence_weight} for e in self.evidence
            ],
        }


UNKNOWN_CLASSIFICATION = PhaseClassification(phase=UNKNOWN, confidence="none")


def commit_tag_phase(commit_message: str) -> str | None:
    m = COMMIT_TAG_RE.search(commit_message or "")
    return m.group(1).lower() if m else None


def has_refactor_keyword(commit_message: str, keywords: Iterable[str]) -> bool:
    text = (commit_message or "").lower()
    return any(re.search(rf"\b{re.escape(k)}", text) for k in keywords)


def _evidence_phase(entry: TestEvidence) -> str | None:
    if entry.phase != UNKNOWN:
        return entry.phase
    if entry.results.failed > 0:
        return RED
    if entry.results.passed > 0:
        return GREEN
    return None


def collect_evidence(
    commit_message: str,
    test_evidence: Sequence[TestEvidence],
    changed_files: Sequence[str],
    *,
    test_globs: Iterable[str],
    refactor_keywords: Iterable[str],
) -> list[PhaseEvidence]:
    out: list[PhaseEvidence] = []

    tagged = commit_tag_phase(commit_message)
    if tagged is not None:
        out.append(PhaseEvidence(source="commit_tag", phase=tagged, confidence_weight=WEIGHT_COMMIT_TAG))

    latest = latest_evidence(test_evidence)
    if latest is not None:
        phase = _evidence_phase(latest)
        if phase is not None:
            out.append(PhaseEvidence(source="test_evidence", phase=phase, confidence_weight=WEIGHT_TEST_EVIDENCE))

    tests, others = split_test_and_other(changed_files, test_globs=test_globs)
    if tests and not others:
        out.append(PhaseEvidence(source="file_shape", phase=RED, confidence_weight=WEIGHT_FILE_SHAPE))
    elif tests and others:
        out.append(PhaseEvidence(source="file_shape", phase=GREEN, confidence_weight=WEIGHT_FILE_SHAPE))
    elif others and has_refactor_keyword(commit_message, refactor_keywords):
        out.append(PhaseEvidence(source="file_shape", phase=REFACTOR, confidence_weight=WEIGHT_REFACTOR_SHAPE))

    return out


def _confidence(weight: float) -> str:
    if weight >= 0.9:
        return "high"
    if weight >= 0.5:
        return "medium"
    return "low"


def _decide(evidence: Sequence[PhaseEvidence]) -> PhaseClassification:
    if not evidence:
        return UNKNOWN_CLASSIFICATION

    tag = next((e for e in evidence if e.source == "commit_tag"), None)
    if tag is not None:
        return PhaseClassification(phase=tag.phase, confidence="high", sources=(tag.source,), evidence=tuple(evidence))

    totals: dict[str, float] = {}
    for e in evidence:
        totals[e.phase] = totals.get(e.phase, 0.0) + e.confidence_weight
    best = max(totals.values())
    winners = sorted(p for p, w in totals.items() if w == best)
    if len(winners) > 1:
        raise AmbiguousPhaseError(
            f"conflicting phase signals: {', '.join(winners)}",
            details={"totals": totals},
        )

    phase = winners[0]
    supporting = [e for e in evidence if e.phase == phase]
    return PhaseClassification(
        phase=phase,
        confidence=_confidence(max(e.confidence_weight for e in supporting)),
        sources=tuple(e.source for e in supporting),
        evidence=tuple(evidence),
    )


def classify(evidence: Sequence[PhaseEvidence]) -> PhaseClassification:
    """Collapse signals to one phase.

    An explicit commit tag wins outright. Otherwise weights are summed per phase and the
    heaviest phase wins; a tie is reported as unknown rather than guessed.
    """

    try:
        return _decide(evidence)
    except AmbiguousPhaseError as e:
        logger.warning("TDD phase is ambiguous (%s); treating as unknown", e)
        return PhaseClassification(phase=UNKNOWN, confidence="none", sources=(), evidence=tuple(evidence))


def classify_change(
    commit_message: str,
    test_evidence: Sequence[TestEvidence],
    changed_files: Sequence[str],
    *,
    test_globs: Iterable[str],
    refactor_keywords: Iterable[str],
) -> PhaseClassification:
    evidence = collect_evidence(
        commit_message,
        test_evidence,
        changed_files,
        test_globs=test_globs,
        refactor_keywords=refactor_keywords,
    )
    return classify(evidence)
