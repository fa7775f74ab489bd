from __future__ import annotations

import json
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from prove.core.errors import DataFormatError


logger = logging.getLogger(__name__)

PHASES = ("red", "green", "refactor", "unknown")

# Oldest entries are dropped beyond this many.
MAX_ENTRIES = 100


@dataclass(frozen=True)
class TestRunSummary:
    passed: int
    failed: int
    total: int

    __test__ = False  # not a pytest class

    def to_dict(self) -> dict[str, int]:
        return {"passed": self.passed, "failed": self.failed, "total": self.total}


@dataclass(frozen=True)
class TestEvidence:
    id: str
    phase: str
    timestamp: str
    results: TestRunSummary
    changed_files: tuple[str, ...] = ()
    commit_hash: str | None = None

    __test__ = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "phase": self.phase,
            "timestamp": self.timestamp,
            "testResults": self.results.to_dict(),
            "changedFiles": list(self.changed_files),
        }
        if self.commit_hash is not None:
            out["commitHash"] = self.commit_hash
        return out


def _count(obj: dict[str, Any], key: str, where: str) -> int:
    v = obj.get(key)
    if not isinstance(v, int) or isinstance(v, bool) or v < 0:
        raise DataFormatError(f"{where}.{key} missing/invalid (non-negative integer required)")
    return v


def parse_summary(obj: Any, where: str = "testResults") -> TestRunSummary:
    if not isinstance(obj, dict):
        raise DataFormatError(f"{where} missing/invalid")
    passed = _count(obj, "passed", where)
    failed = _count(obj, "failed", where)
    total = _count(obj, "total", where)
    if passed + failed != total:
        raise DataFormatError(f"{where}: passed + failed must equal total ({passed} + {failed} != {total})")
    return TestRunSummary(passed=passed, failed=failed, total=total)


def parse_evidence_entry(obj: Any, index: int) -> TestEvidence:
    where = f"evidence[{index}]"
    if not isinstance(obj, dict):
        raise DataFormatError(f"{where} must be an object")
    for key in ("id", "phase", "timestamp"):
        if not isinstance(obj.get(key), str) or not obj[key]:
            raise DataFormatError(f"{where}.{key} missing/invalid")
    if obj["phase"] not in PHASES:
        raise DataFormatError(f"{where}.phase must be one of {', '.join(PHASES)}")
    changed = obj.get("changedFiles", [])
    if not isinstance(changed, list) or not all(isinstance(x, str) for x in changed):
        raise DataFormatError(f"{where}.changedFiles missing/invalid")
    commit_hash = obj.get("commitHash")
    if commit_hash is not None and not isinstance(commit_hash, str):
        raise DataFormatError(f"{where}.commitHash invalid")
    return TestEvidence(
        id=obj["id"],
        phase=obj["phase"],
        timestamp=obj["timestamp"],
        results=parse_summary(obj.get("testResults"), f"{where}.testResults"),
        changed_files=tuple(changed),
        commit_hash=commit_hash,
    )


def load_test_evidence(path: Path) -> tuple[TestEvidence, ...]:
    if not path.exists():
        return ()
    try:
        obj = json.loads(path.read_text(encoding="utf-8", errors="strict"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DataFormatError(f"evidence log is not valid JSON: {e}", details={"path": str(path)}) from e
    if not isinstance(obj, list):
        raise DataFormatError("evidence log must be a JSON list", details={"path": str(path)})
    return tuple(parse_evidence_entry(entry, i) for i, entry in enumerate(obj))


def latest_evidence(entries: Iterable[TestEvidence]) -> TestEvidence | None:
    """Most recent entry by ISO timestamp; on equal timestamps the later-recorded one wins."""

    latest: TestEvidence | None = None
    for e in entries:
        if latest is None or e.timestamp >= latest.timestamp:
            latest = e
    return latest


def _now_iso_z() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def record_test_evidence(
    path: Path,
    *,
    summary: TestRunSummary,
    phase: str = "unknown",
    changed_files: Iterable[str] = (),
    commit_hash: str | None = None,
    timestamp: str | None = None,
) -> TestEvidence:
    """Append one entry to the evidence log (keeping the newest MAX_ENTRIES) and return it."""

    if phase not in PHASES:
        raise ValueError(f"phase must be one of {', '.join(PHASES)}")
    parse_summary(summary.to_dict())

    existing = list(load_test_evidence(path))
    ts = timestamp or _now_iso_z()
    entry = TestEvidence(
        id=f"evidence_{ts.replace(':', '').replace('-', '').replace('.', '')}_{secrets.token_hex(4)}",
        phase=phase,
        timestamp=ts,
        results=summary,
        changed_files=tuple(changed_files),
        commit_hash=commit_hash,
    )
    existing.append(entry)
    existing = existing[-MAX_ENTRIES:]

    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps([e.to_dict() for e in existing], indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8", errors="strict", newline="\n")
    os.replace(tmp, path)
    logger.debug("recorded test evidence %s (%s)", entry.id, summary.to_dict())
    return entry
