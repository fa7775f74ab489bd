from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Return canonical JSON bytes (UTF-8, sorted keys, compact separators, trailing LF).

    These are the bytes a report signature covers, independent of how the report file is indented.
    """

    text = json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":")) + "\n"
    return text.encode("utf-8", errors="strict")


def pretty_json_bytes(obj: Any) -> bytes:
    text = json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    return text.encode("utf-8", errors="strict")


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
