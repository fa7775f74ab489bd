from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from prove.core.errors import DataFormatError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatementRange:
    id: str
    start_line: int
    end_line: int
    hits: int


@dataclass(frozen=True)
class FunctionRange:
    id: str
    start_line: int
    end_line: int
    hits: int


@dataclass(frozen=True)
class BranchRange:
    id: str
    line: int
    arm_hits: tuple[int, ...]


@dataclass(frozen=True)
class FileCoverage:
    statements: tuple[StatementRange, ...] = ()
    functions: tuple[FunctionRange, ...] = ()
    branches: tuple[BranchRange, ...] = ()


CoverageMap = Mapping[str, FileCoverage]


def _int(v: Any, where: str) -> int:
    if not isinstance(v, int) or isinstance(v, bool) or v < 0:
        raise DataFormatError(f"{where} missing/invalid (non-negative integer required)")
    return v


def _loc_line(loc: Any, edge: str, where: str) -> int:
    if not isinstance(loc, dict) or not isinstance(loc.get(edge), dict):
        raise DataFormatError(f"{where}.{edge} missing/invalid")
    return _int(loc[edge].get("line"), f"{where}.{edge}.line")


def _parse_istanbul_file(path: str, obj: dict[str, Any]) -> FileCoverage:
    statement_map = obj.get("statementMap", {})
    s_hits = obj.get("s", {})
    fn_map = obj.get("fnMap", {})
    f_hits = obj.get("f", {})
    branch_map = obj.get("branchMap", {})
    b_hits = obj.get("b", {})
    for name, value in (("statementMap", statement_map), ("s", s_hits), ("fnMap", fn_map), ("f", f_hits), ("branchMap", branch_map), ("b", b_hits)):
        if not isinstance(value, dict):
            raise DataFormatError(f"{path}: {name} missing/invalid")

    statements: list[StatementRange] = []
    for sid in sorted(statement_map, key=str):
        where = f"{path}: statementMap[{sid}]"
        loc = statement_map[sid]
        statements.append(
            StatementRange(
                id=str(sid),
                start_line=_loc_line(loc, "start", where),
                end_line=_loc_line(loc, "end", where),
                hits=_int(s_hits.get(sid, 0), f"{path}: s[{sid}]"),
            )
        )

    functions: list[FunctionRange] = []
    for fid in sorted(fn_map, key=str):
        where = f"{path}: fnMap[{fid}]"
        entry = fn_map[fid]
        loc = entry.get("loc") if isinstance(entry, dict) else None
        functions.append(
            FunctionRange(
                id=str(fid),
                start_line=_loc_line(loc, "start", f"{where}.loc"),
                end_line=_loc_line(loc, "end", f"{where}.loc"),
                hits=_int(f_hits.get(fid, 0), f"{path}: f[{fid}]"),
            )
        )

    branches: list[BranchRange] = []
    for bid in sorted(branch_map, key=str):
        where = f"{path}: branchMap[{bid}]"
        entry = branch_map[bid]
        if not isinstance(entry, dict):
            raise DataFormatError(f"{where} missing/invalid")
        line = entry.get("line")
        if line is None:
            line = _loc_line(entry.get("loc"), "start", f"{where}.loc")
        arms = b_hits.get(bid, [])
        if not isinstance(arms, list):
            raise DataFormatError(f"{path}: b[{bid}] missing/invalid (list required)")
        branches.append(
            BranchRange(
                id=str(bid),
                line=_int(line, f"{where}.line"),
                arm_hits=tuple(_int(a, f"{path}: b[{bid}]") for a in arms),
            )
        )

    return FileCoverage(statements=tuple(statements), functions=tuple(functions), branches=tuple(branches))


def _parse_coveragepy_file(path: str, obj: dict[str, Any]) -> FileCoverage:
    """coverage.py JSON report: every executable line becomes a one-line statement range."""

    executed = obj.get("executed_lines", [])
    missing = obj.get("missing_lines", [])
    if not isinstance(executed, list) or not isinstance(missing, list):
        raise DataFormatError(f"{path}: executed_lines/missing_lines missing/invalid")

    statements: list[StatementRange] = []
    for line in executed:
        n = _int(line, f"{path}: executed_lines")
        statements.append(StatementRange(id=f"L{n}", start_line=n, end_line=n, hits=1))
    for line in missing:
        n = _int(line, f"{path}: missing_lines")
        statements.append(StatementRange(id=f"L{n}", start_line=n, end_line=n, hits=0))
    statements.sort(key=lambda s: s.start_line)

    # Branch arcs are [from_line, to_line]; group arms by source line.
    arms: dict[int, list[int]] = {}
    for key, hit in (("executed_branches", 1), ("missing_branches", 0)):
        arcs = obj.get(key, [])
        if not isinstance(arcs, list):
            raise DataFormatError(f"{path}: {key} missing/invalid")
        for arc in arcs:
            if not isinstance(arc, list) or len(arc) != 2:
                raise DataFormatError(f"{path}: {key} entry missing/invalid")
            arms.setdefault(_int(arc[0], f"{path}: {key}"), []).append(hit)
    branches = tuple(BranchRange(id=f"B{line}", line=line, arm_hits=tuple(hits)) for line, hits in sorted(arms.items()))

    return FileCoverage(statements=tuple(statements), branches=branches)


def parse_coverage_map(obj: Any) -> dict[str, FileCoverage]:
    """Parse an Istanbul `coverage-final.json` object or a coverage.py JSON report."""

    if not isinstance(obj, dict):
        raise DataFormatError("coverage map must be a JSON object")

    # coverage.py: {"meta": {...}, "files": {path: {...}}}
    if isinstance(obj.get("meta"), dict) and isinstance(obj.get("files"), dict):
        out: dict[str, FileCoverage] = {}
        for path, entry in obj["files"].items():
            if not isinstance(entry, dict):
                raise DataFormatError(f"{path}: coverage entry missing/invalid")
            out[path] = _parse_coveragepy_file(path, entry)
        return out

    out = {}
    for path, entry in obj.items():
        # Istanbul keys are file paths; each value carries its own "path" as well.
        if not isinstance(entry, dict):
            raise DataFormatError(f"{path}: coverage entry missing/invalid")
        out[path] = _parse_istanbul_file(path, entry)
    return out


def load_coverage_map(path: Path) -> dict[str, FileCoverage]:
    if not path.exists():
        raise DataFormatError(f"coverage file not found: {path}", details={"coverage_file": str(path)})
    try:
        obj = json.loads(path.read_text(encoding="utf-8", errors="strict"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DataFormatError(f"coverage file is not valid JSON: {e}", details={"coverage_file": str(path)}) from e
    cmap = parse_coverage_map(obj)
    logger.debug("loaded coverage for %d files from %s", len(cmap), path)
    return cmap


class CoverageStore:
    """Coverage map for one gate run, read from disk at most once.

    Loading is deferred to the first read so that coverage written by the test stage
    of the same run is what later stages see.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._map: dict[str, FileCoverage] | None = None

    def load(self) -> CoverageMap:
        if self._map is None:
            self._map = load_coverage_map(self.path)
        return self._map


def summarize(cmap: CoverageMap) -> dict[str, float]:
    """Global percentages for statements/branches/functions/lines (100 when nothing is instrumented)."""

    totals = {"statements": [0, 0], "branches": [0, 0], "functions": [0, 0], "lines": [0, 0]}
    for fc in cmap.values():
        for s in fc.statements:
            totals["statements"][1] += 1
            totals["statements"][0] += 1 if s.hits > 0 else 0
        for b in fc.branches:
            for hits in b.arm_hits:
                totals["branches"][1] += 1
                totals["branches"][0] += 1 if hits > 0 else 0
        for f in fc.functions:
            totals["functions"][1] += 1
            totals["functions"][0] += 1 if f.hits > 0 else 0
        line_hits: dict[int, bool] = {}
        for s in fc.statements:
            line_hits[s.start_line] = line_hits.get(s.start_line, False) or s.hits > 0
        totals["lines"][1] += len(line_hits)
        totals["lines"][0] += sum(1 for v in line_hits.values() if v)

    out: dict[str, float] = {}
    for key, (covered, total) in totals.items():
        out[key] = round(covered / total * 100, 2) if total else 100.0
    return out
