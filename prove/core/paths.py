from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable


def to_posix(path: str) -> str:
    p = (path or "").strip().replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return p


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Glob match on the repo-relative posix path.

    fnmatch semantics: `*` also crosses `/`, so `*.py` matches at any depth and
    `tests/*` matches everything below tests/.
    """

    p = to_posix(path)
    return any(fnmatchcase(p, pat) for pat in patterns)


def is_test_path(path: str, test_globs: Iterable[str]) -> bool:
    return matches_any(path, test_globs)


def is_source_path(path: str, src_globs: Iterable[str], test_globs: Iterable[str]) -> bool:
    test_globs = tuple(test_globs)
    return matches_any(path, src_globs) and not matches_any(path, test_globs)


def split_test_and_other(paths: Iterable[str], *, test_globs: Iterable[str]) -> tuple[list[str], list[str]]:
    """Return (test_files, non_test_files) in input order."""

    test_globs = tuple(test_globs)
    tests: list[str] = []
    others: list[str] = []
    for p in paths:
        (tests if is_test_path(p, test_globs) else others).append(p)
    return tests, others
