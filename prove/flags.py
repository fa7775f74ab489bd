from __future__ import annotations

import json
import logging
from pathlib import Path

from prove.core.cache import TTLCache
from prove.core.errors import DataFormatError


logger = logging.getLogger(__name__)


def parse_flag_registry(obj: object) -> frozenset[str]:
    """Accept `["name", ...]`, `{"flags": ["name", ...]}` or `{"flags": {"name": {...}}}`."""

    flags = obj.get("flags") if isinstance(obj, dict) else obj
    if isinstance(flags, dict):
        names = list(flags)
    elif isinstance(flags, list):
        names = flags
    else:
        raise DataFormatError("flag registry must be a list of names or an object with a flags map/list")
    if not all(isinstance(n, str) and n for n in names):
        raise DataFormatError("flag registry names must be non-empty strings")
    return frozenset(names)


class FlagRegistry:
    """Yes/no oracle over the registered feature flags.

    Reads go through the supplied cache keyed by (path, mtime), so an edited registry
    file is picked up without holding stale state in the module.
    """

    def __init__(self, path: Path, *, cache: TTLCache[frozenset[str]]) -> None:
        self.path = path
        self._cache = cache

    def _load(self) -> frozenset[str]:
        try:
            obj = json.loads(self.path.read_text(encoding="utf-8", errors="strict"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DataFormatError(f"flag registry is not valid JSON: {e}", details={"path": str(self.path)}) from e
        names = parse_flag_registry(obj)
        logger.debug("loaded %d registered flags from %s", len(names), self.path)
        return names

    @property
    def available(self) -> bool:
        return self.path.exists()

    def names(self) -> frozenset[str]:
        if not self.path.exists():
            return frozenset()
        key = (str(self.path), self.path.stat().st_mtime_ns)
        return self._cache.get_or_load(key, self._load)

    def is_registered(self, name: str) -> bool:
        return name in self.names()
