from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from prove.core.errors import DataFormatError


HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

ChangeType = str  # "added" | "modified" | "deleted"


@dataclass(frozen=True)
class ChangedLine:
    file: str
    line_number: int
    change_type: ChangeType


@dataclass(frozen=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int


def _clean_path(p: str) -> str | None:
    p = (p or "").strip()
    if not p or p in ("/dev/null", "a/dev/null", "b/dev/null"):
        return None
    if p.startswith("a/") or p.startswith("b/"):
        p = p[2:]
    return p or None


def parse_hunk_header(line: str) -> Hunk:
    m = HUNK_HEADER_RE.match(line)
    if m is None:
        raise DataFormatError(f"malformed hunk header: {line[:120]!r}", details={"header": line[:120]})
    return Hunk(
        old_start=int(m.group(1)),
        old_count=int(m.group(2)) if m.group(2) is not None else 1,
        new_start=int(m.group(3)),
        new_count=int(m.group(4)) if m.group(4) is not None else 1,
    )


def _walk(diff_text: str) -> Iterator[tuple[str | None, str, str | Hunk]]:
    """Yield (path, kind, payload) with kind "@@" (payload Hunk), "+" or "-" (payload line text).

    Hunk bodies are consumed by the counts in their header, so body lines that look
    like `+++ x` or `--- x` are content, never file headers.
    """

    current: str | None = None
    old_left = 0
    new_left = 0

    for line in diff_text.splitlines():
        if old_left > 0 or new_left > 0:
            if line.startswith("+"):
                new_left -= 1
                yield current, "+", line[1:]
                continue
            if line.startswith("-"):
                old_left -= 1
                yield current, "-", line[1:]
                continue
            if line.startswith(" ") or line == "":
                old_left -= 1
                new_left -= 1
                continue
            if line.startswith("\\"):
                # "\ No newline at end of file"
                continue
            # Truncated hunk; treat the line as a header.
            old_left = new_left = 0

        if line.startswith("diff --git "):
            parts = line.split()
            current = _clean_path(parts[3]) if len(parts) >= 4 else None
        elif line.startswith("+++ "):
            # Authoritative new-side path; /dev/null means the file was deleted.
            current = _clean_path(line[4:].split("\t", 1)[0])
        elif line.startswith("@@"):
            hunk = parse_hunk_header(line)
            old_left = hunk.old_count
            new_left = hunk.new_count
            yield current, "@@", hunk


def parse_changed_lines(diff_text: str) -> list[ChangedLine]:
    """Return the changed lines of the new side of a zero-context unified diff.

    For `@@ -a,b +c,d @@` every line in [c, c+d) is changed: "added" when b == 0,
    "modified" otherwise. Omitted counts default to 1; d == 0 (pure deletion) yields
    nothing. Output is deduplicated and sorted by (file, line).
    """

    seen: set[tuple[str, int]] = set()
    out: list[ChangedLine] = []

    for path, kind, payload in _walk(diff_text):
        if kind != "@@" or path is None or not isinstance(payload, Hunk):
            continue
        change_type = "added" if payload.old_count == 0 else "modified"
        for n in range(payload.new_start, payload.new_start + payload.new_count):
            key = (path, n)
            if key in seen:
                continue
            seen.add(key)
            out.append(ChangedLine(file=path, line_number=n, change_type=change_type))

    out.sort(key=lambda c: (c.file, c.line_number))
    return out


def added_lines_by_file(diff_text: str) -> dict[str, list[str]]:
    """Map each new-side path to the text of its '+' lines (without the marker)."""

    out: dict[str, list[str]] = {}
    for path, kind, payload in _walk(diff_text):
        if kind == "+" and path is not None:
            out.setdefault(path, []).append(str(payload))
    return out


def loc_delta(diff_text: str) -> tuple[int, int]:
    """Return (added, removed) body lines of a unified diff; file headers never count."""

    added = 0
    removed = 0
    for _path, kind, _payload in _walk(diff_text):
        if kind == "+":
            added += 1
        elif kind == "-":
            removed += 1
    return added, removed
