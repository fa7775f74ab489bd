from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from prove.core.diff_parse import ChangedLine
from prove.coverage.store import CoverageMap, FileCoverage


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PathMatch:
    key: str
    strategy: str
    candidates: tuple[str, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


MatchStrategy = Callable[[str, Path, CoverageMap], "PathMatch | None"]


def _match_absolute(path: str, root: Path, cmap: CoverageMap) -> PathMatch | None:
    abs_path = os.path.normpath(os.path.join(str(root), path))
    if abs_path in cmap:
        return PathMatch(key=abs_path, strategy="absolute")
    return None


def _match_exact(path: str, root: Path, cmap: CoverageMap) -> PathMatch | None:
    if path in cmap:
        return PathMatch(key=path, strategy="exact")
    return None


def _match_suffix(path: str, root: Path, cmap: CoverageMap) -> PathMatch | None:
    needle = "/" + path.lstrip("/")
    hits = tuple(k for k in sorted(cmap) if k.replace("\\", "/").endswith(needle))
    if not hits:
        return None
    return PathMatch(key=hits[0], strategy="suffix", candidates=hits)


# Order matters: first strategy that yields a match wins.
MATCH_STRATEGIES: tuple[MatchStrategy, ...] = (_match_absolute, _match_exact, _match_suffix)


def resolve_coverage_key(path: str, root: Path, cmap: CoverageMap) -> PathMatch | None:
    for strategy in MATCH_STRATEGIES:
        m = strategy(path, root, cmap)
        if m is not None:
            return m
    return None


def is_line_covered(line: int, fc: FileCoverage) -> bool:
    """Statement ranges decide first, then function ranges, then branches at the exact line.

    The first kind that has any range applying to the line decides; later kinds are not consulted.
    """

    enclosing = [s for s in fc.statements if s.start_line <= line <= s.end_line]
    if enclosing:
        return any(s.hits > 0 for s in enclosing)

    functions = [f for f in fc.functions if f.start_line <= line <= f.end_line]
    if functions:
        return any(f.hits > 0 for f in functions)

    branches = [b for b in fc.branches if b.line == line]
    if branches:
        return any(h > 0 for b in branches for h in b.arm_hits)

    return False


@dataclass(frozen=True)
class DiffCoverageResult:
    total_lines: int
    covered_lines: int
    percentage: float
    uncovered: tuple[ChangedLine, ...]
    unmatched_files: tuple[str, ...] = ()
    ambiguous_files: dict[str, list[str]] = field(default_factory=dict)

    def uncovered_pairs(self) -> list[dict[str, object]]:
        return [{"file": c.file, "line": c.line_number} for c in self.uncovered]


def compute_diff_coverage(changed: Iterable[ChangedLine], cmap: CoverageMap, *, root: Path) -> DiffCoverageResult:
    """Coverage of the changed lines against a coverage map.

    A file with no coverage entry contributes all of its changed lines as uncovered.
    Zero changed lines is 100% by definition.
    """

    lines = list(changed)
    matches: dict[str, PathMatch | None] = {}
    covered = 0
    uncovered: list[ChangedLine] = []

    for c in lines:
        if c.file not in matches:
            m = resolve_coverage_key(c.file, root, cmap)
            matches[c.file] = m
            if m is None:
                logger.warning("no coverage data for changed file %s; its changed lines count as uncovered", c.file)
            elif m.ambiguous:
                logger.warning("coverage key for %s is ambiguous (%s); using %s", c.file, ", ".join(m.candidates), m.key)
        m = matches[c.file]
        if m is not None and is_line_covered(c.line_number, cmap[m.key]):
            covered += 1
        else:
            uncovered.append(c)

    total = len(lines)
    percentage = 100.0 if total == 0 else covered / total * 100
    return DiffCoverageResult(
        total_lines=total,
        covered_lines=covered,
        percentage=percentage,
        uncovered=tuple(uncovered),
        unmatched_files=tuple(sorted(f for f, m in matches.items() if m is None)),
        ambiguous_files={f: list(m.candidates) for f, m in sorted(matches.items()) if m is not None and m.ambiguous},
    )


@dataclass(frozen=True)
class ThresholdVerdict:
    ok: bool
    required: float
    actual: float
    shortfall: float
    reason: str | None


def evaluate_threshold(result: DiffCoverageResult, required: float) -> ThresholdVerdict:
    actual = round(result.percentage, 2)
    if result.percentage >= required:
        return ThresholdVerdict(ok=True, required=required, actual=actual, shortfall=0.0, reason=None)
    shortfall = round(required - result.percentage, 2)
    return ThresholdVerdict(
        ok=False,
        required=required,
        actual=actual,
        shortfall=shortfall,
        reason=f"Diff coverage {actual:.2f}% is below required threshold of {required:g}% (shortfall {shortfall:.2f})",
    )
