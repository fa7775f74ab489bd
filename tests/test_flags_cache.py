from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from prove.core.cache import TTLCache
from prove.core.errors import DataFormatError
from prove.flags import FlagRegistry, parse_flag_registry


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_expiry(self) -> None:
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(capacity=4, ttl_s=10, clock=clock)
        cache.put("a", "1")
        clock.now = 9.9
        assert cache.get("a") == "1"
        clock.now = 10.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_capacity_evicts_oldest(self) -> None:
        cache: TTLCache[int] = TTLCache(capacity=2, ttl_s=60, clock=FakeClock())
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_get_or_load_calls_loader_once(self) -> None:
        calls: list[int] = []
        cache: TTLCache[int] = TTLCache(clock=FakeClock())

        def loader() -> int:
            calls.append(1)
            return 42

        assert cache.get_or_load("k", loader) == 42
        assert cache.get_or_load("k", loader) == 42
        assert len(calls) == 1

    def test_invalid_construction(self) -> None:
        with pytest.raises(ValueError):
            TTLCache(capacity=0)
        with pytest.raises(ValueError):
            TTLCache(ttl_s=0)


class TestFlagRegistry:
    @pytest.mark.parametrize(
        "obj",
        [["a", "b"], {"flags": ["a", "b"]}, {"flags": {"a": {"owner": "x"}, "b": {}}}],
    )
    def test_accepted_shapes(self, obj: object) -> None:
        assert parse_flag_registry(obj) == frozenset({"a", "b"})

    def test_rejected_shape(self) -> None:
        with pytest.raises(DataFormatError):
            parse_flag_registry({"flags": "a"})

    def test_missing_registry_is_empty(self, tmp_path: Path) -> None:
        reg = FlagRegistry(tmp_path / "flags.json", cache=TTLCache())
        assert reg.available is False
        assert reg.is_registered("a") is False

    def test_edited_registry_is_reloaded(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.json"
        path.write_text(json.dumps(["a"]), encoding="utf-8")
        reg = FlagRegistry(path, cache=TTLCache())
        assert reg.is_registered("a")
        assert not reg.is_registered("b")

        path.write_text(json.dumps(["a", "b"]), encoding="utf-8")
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
        assert reg.is_registered("b")

    def test_instances_do_not_share_state(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.json"
        path.write_text(json.dumps(["a"]), encoding="utf-8")
        cache_one: TTLCache[frozenset[str]] = TTLCache()
        FlagRegistry(path, cache=cache_one).names()
        cache_two: TTLCache[frozenset[str]] = TTLCache()
        assert len(cache_two) == 0
        assert len(cache_one) == 1
