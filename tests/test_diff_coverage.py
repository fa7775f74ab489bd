from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from prove.core.diff_parse import ChangedLine
from prove.core.errors import DataFormatError
from prove.coverage.analyzer import compute_diff_coverage, evaluate_threshold, is_line_covered, resolve_coverage_key
from prove.coverage.store import (
    BranchRange,
    CoverageStore,
    FileCoverage,
    FunctionRange,
    StatementRange,
    parse_coverage_map,
    summarize,
)


def _stmt(start: int, end: int, hits: int, sid: str = "0") -> StatementRange:
    return StatementRange(id=sid, start_line=start, end_line=end, hits=hits)


def _lines(file: str, *numbers: int) -> list[ChangedLine]:
    return [ChangedLine(file, n, "added") for n in numbers]


ISTANBUL = {
    "/repo/src/app.js": {
        "path": "/repo/src/app.js",
        "statementMap": {
            "0": {"start": {"line": 1, "column": 0}, "end": {"line": 1, "column": 10}},
            "1": {"start": {"line": 2, "column": 0}, "end": {"line": 4, "column": 1}},
        },
        "s": {"0": 3, "1": 0},
        "fnMap": {
            "0": {"name": "f", "decl": {}, "loc": {"start": {"line": 6, "column": 0}, "end": {"line": 9, "column": 1}}},
        },
        "f": {"0": 1},
        "branchMap": {
            "0": {"line": 12, "type": "if", "locations": []},
            "1": {"loc": {"start": {"line": 14, "column": 0}, "end": {"line": 14, "column": 5}}, "type": "if"},
        },
        "b": {"0": [0, 2], "1": [0, 0]},
    }
}


# ---------------------------------------------------------------------------
# Line decision
# ---------------------------------------------------------------------------


class TestIsLineCovered:
    def test_statement_hit_zero_marks_uncovered(self) -> None:
        fc = FileCoverage(statements=(_stmt(5, 5, 0),))
        assert is_line_covered(5, fc) is False

    def test_statement_decides_before_function(self) -> None:
        # Line 5 sits inside a hit function but its own statement never ran.
        fc = FileCoverage(
            statements=(_stmt(5, 5, 0),),
            functions=(FunctionRange(id="f", start_line=1, end_line=10, hits=4),),
        )
        assert is_line_covered(5, fc) is False

    def test_function_used_when_no_statement_encloses(self) -> None:
        fc = FileCoverage(functions=(FunctionRange(id="f", start_line=1, end_line=10, hits=1),))
        assert is_line_covered(7, fc) is True

    def test_branch_at_exact_line(self) -> None:
        fc = FileCoverage(branches=(BranchRange(id="b", line=3, arm_hits=(0, 1)),))
        assert is_line_covered(3, fc) is True
        assert is_line_covered(4, fc) is False

    def test_any_hit_enclosing_statement_covers(self) -> None:
        # Outer statement never ran as a whole; the nested one on line 5 did.
        fc = FileCoverage(statements=(_stmt(1, 10, 0, "0"), _stmt(5, 5, 2, "1")))
        assert is_line_covered(5, fc) is True
        assert is_line_covered(6, fc) is False

    def test_no_range_is_uncovered(self) -> None:
        assert is_line_covered(1, FileCoverage()) is False


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class TestComputeDiffCoverage:
    def test_zero_changed_lines_is_one_hundred(self) -> None:
        result = compute_diff_coverage([], {}, root=Path("/repo"))
        assert result.percentage == 100.0
        assert result.total_lines == 0

    def test_unmatched_file_counts_as_uncovered(self) -> None:
        cmap = {"src/a.py": FileCoverage(statements=(_stmt(1, 3, 1),))}
        result = compute_diff_coverage(_lines("src/a.py", 1, 2) + _lines("src/b.py", 1), cmap, root=Path("/repo"))
        assert result.total_lines == 3
        assert result.covered_lines == 2
        assert result.unmatched_files == ("src/b.py",)
        assert [(c.file, c.line_number) for c in result.uncovered] == [("src/b.py", 1)]

    def test_two_of_three_below_default_threshold(self) -> None:
        cmap = {"src/a.py": FileCoverage(statements=(_stmt(1, 2, 1), _stmt(3, 3, 0, "1")))}
        result = compute_diff_coverage(_lines("src/a.py", 1, 2, 3), cmap, root=Path("/repo"))
        verdict = evaluate_threshold(result, 85)
        assert verdict.ok is False
        assert verdict.actual == 66.67
        assert verdict.shortfall == 18.33
        assert result.uncovered_pairs() == [{"file": "src/a.py", "line": 3}]
        assert "66.67%" in (verdict.reason or "")

    def test_threshold_met(self) -> None:
        cmap = {"src/a.py": FileCoverage(statements=(_stmt(1, 10, 1),))}
        result = compute_diff_coverage(_lines("src/a.py", 1, 2), cmap, root=Path("/repo"))
        verdict = evaluate_threshold(result, 85)
        assert verdict.ok is True
        assert verdict.shortfall == 0.0

    def test_covering_more_lines_never_lowers_percentage(self) -> None:
        changed = _lines("src/a.py", 1, 2, 3, 4, 5, 6)
        hits = {n: 0 for n in range(1, 6)}

        def pct() -> float:
            stmts = tuple(_stmt(n, n, h, str(n)) for n, h in sorted(hits.items()))
            return compute_diff_coverage(changed, {"src/a.py": FileCoverage(statements=stmts)}, root=Path("/repo")).percentage

        seen = [pct()]
        for n in (3, 1, 5, 2, 4):
            hits[n] = 1
            seen.append(pct())
        assert seen == sorted(seen)
        assert seen[0] == 0.0
        # Line 6 has no statement, so it stays uncovered.
        assert seen[-1] == pytest.approx(5 / 6 * 100)


class TestPathResolution:
    def test_absolute_path_preferred(self) -> None:
        cmap = {"/repo/src/a.py": FileCoverage(), "src/a.py": FileCoverage()}
        m = resolve_coverage_key("src/a.py", Path("/repo"), cmap)
        assert m is not None and m.key == "/repo/src/a.py" and m.strategy == "absolute"

    def test_exact_before_suffix(self) -> None:
        cmap = {"src/a.py": FileCoverage(), "/elsewhere/src/a.py": FileCoverage()}
        m = resolve_coverage_key("src/a.py", Path("/repo"), cmap)
        assert m is not None and m.strategy == "exact"

    def test_suffix_match_flags_ambiguity(self) -> None:
        cmap = {"/ci/b/src/a.py": FileCoverage(), "/ci/a/src/a.py": FileCoverage()}
        m = resolve_coverage_key("src/a.py", Path("/repo"), cmap)
        assert m is not None and m.strategy == "suffix"
        assert m.key == "/ci/a/src/a.py"
        assert m.ambiguous

    def test_suffix_requires_path_boundary(self) -> None:
        cmap = {"/ci/mysrc/a.py": FileCoverage()}
        assert resolve_coverage_key("src/a.py", Path("/repo"), cmap) is None


# ---------------------------------------------------------------------------
# Coverage map formats
# ---------------------------------------------------------------------------


class TestCoverageStore:
    def test_istanbul_ranges(self) -> None:
        cmap = parse_coverage_map(ISTANBUL)
        fc = cmap["/repo/src/app.js"]
        assert [(s.start_line, s.end_line, s.hits) for s in fc.statements] == [(1, 1, 3), (2, 4, 0)]
        assert [(f.start_line, f.end_line, f.hits) for f in fc.functions] == [(6, 9, 1)]
        assert [(b.line, b.arm_hits) for b in fc.branches] == [(12, (0, 2)), (14, (0, 0))]

        lines = _lines("src/app.js", 1, 3, 7, 12, 14)
        result = compute_diff_coverage(lines, cmap, root=Path("/repo"))
        assert [c.line_number for c in result.uncovered] == [3, 14]

    def test_coveragepy_report(self) -> None:
        cmap = parse_coverage_map(
            {
                "meta": {"version": "7.4.0"},
                "files": {
                    "src/mod.py": {
                        "executed_lines": [1, 2, 4],
                        "missing_lines": [5],
                        "executed_branches": [[4, 5]],
                        "missing_branches": [[4, 6]],
                    }
                },
            }
        )
        fc = cmap["src/mod.py"]
        assert is_line_covered(2, fc) is True
        assert is_line_covered(5, fc) is False
        assert [(b.line, b.arm_hits) for b in fc.branches] == [(4, (1, 0))]

    def test_invalid_map_raises(self) -> None:
        with pytest.raises(DataFormatError):
            parse_coverage_map({"/x.js": {"statementMap": {"0": {"start": {}}}, "s": {}}})
        with pytest.raises(DataFormatError):
            parse_coverage_map([])

    def test_store_loads_once(self, tmp_path: Path) -> None:
        p = tmp_path / "coverage-final.json"
        p.write_text(json.dumps(ISTANBUL), encoding="utf-8")
        store = CoverageStore(p)
        first = store.load()
        p.write_text("{}", encoding="utf-8")
        assert store.load() is first

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DataFormatError):
            CoverageStore(tmp_path / "nope.json").load()

    def test_summarize(self) -> None:
        totals = summarize(parse_coverage_map(ISTANBUL))
        assert totals["statements"] == 50.0
        assert totals["functions"] == 100.0
        assert totals["branches"] == 25.0
        assert summarize({}) == {"statements": 100.0, "branches": 100.0, "functions": 100.0, "lines": 100.0}
