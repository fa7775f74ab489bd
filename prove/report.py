from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from prove.checks.base import CheckResult
from prove.core.digest import canonical_json_bytes, pretty_json_bytes, sha256_bytes


logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
SIGNATURE_ALG = "ed25519"
FIXED_TIMESTAMP_UTC_Z = "1970-01-01T00:00:00Z"


@dataclass(frozen=True)
class Report:
    results: tuple[CheckResult, ...]
    overall_ok: bool
    total_duration_ms: int
    mode: str
    phase: str
    quick: bool = False
    error: str | None = None

    def summary(self) -> dict[str, int]:
        failed = sum(1 for r in self.results if not r.ok)
        return {"total": len(self.results), "passed": len(self.results) - failed, "failed": failed}


def aborted_report(error: str, *, mode: str = "unknown", phase: str = "unknown", quick: bool = False) -> Report:
    """Report for a run that never reached its first check."""

    return Report(results=(), overall_ok=False, total_duration_ms=0, mode=mode, phase=phase, quick=quick, error=error)


def utc_timestamp_iso_z(*, deterministic: bool) -> str:
    if deterministic:
        return FIXED_TIMESTAMP_UTC_Z
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def report_to_dict(report: Report, *, generated_at: str) -> dict[str, Any]:
    out: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "generated_at": generated_at,
        "mode": report.mode,
        "phase": report.phase,
        "quick": report.quick,
        "overall_ok": report.overall_ok,
        "total_duration_ms": report.total_duration_ms,
        "summary": report.summary(),
        # Registration order; json sort_keys never reorders list items.
        "results": [r.to_dict() for r in report.results],
    }
    if report.error is not None:
        out["error"] = report.error
    return out


def _write_bytes_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


def write_report(path: Path, report: Report, *, deterministic: bool = False) -> dict[str, Any]:
    """Write the report as deterministic JSON (sorted keys, indent 2, LF) and return the written object."""

    obj = report_to_dict(report, generated_at=utc_timestamp_iso_z(deterministic=deterministic))
    _write_bytes_atomic(path, pretty_json_bytes(obj))
    logger.info("wrote report %s (overall_ok=%s)", path, report.overall_ok)
    return obj


def _load_ed25519_private_key(blob: bytes) -> Any:
    try:
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
    except ImportError as e:  # pragma: no cover
        raise ValueError("Missing crypto dependency for Ed25519 signing (install 'cryptography').") from e

    trimmed = blob.strip()
    hex_s = trimmed.decode("ascii", errors="replace").strip()
    if len(hex_s) == 64 and all(c in "0123456789abcdefABCDEF" for c in hex_s):
        return Ed25519PrivateKey.from_private_bytes(bytes.fromhex(hex_s))

    key = serialization.load_pem_private_key(trimmed, password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError("Private key is not Ed25519")
    return key


def _load_ed25519_public_key(blob: bytes) -> Any:
    try:
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
    except ImportError as e:  # pragma: no cover
        raise ValueError("Missing crypto dependency for Ed25519 verification (install 'cryptography').") from e

    trimmed = blob.strip()
    hex_s = trimmed.decode("ascii", errors="replace").strip()
    if len(hex_s) == 64 and all(c in "0123456789abcdefABCDEF" for c in hex_s):
        return Ed25519PublicKey.from_public_bytes(bytes.fromhex(hex_s))

    key = serialization.load_pem_public_key(trimmed)
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("Public key is not Ed25519")
    return key


def signature_path_for(report_path: Path) -> Path:
    return report_path.with_name(report_path.name + ".sig.json")


def sign_report(report_obj: dict[str, Any], private_key_blob: bytes) -> dict[str, str]:
    """Detached signature over the canonical JSON bytes of the report object."""

    payload = canonical_json_bytes(report_obj)
    key = _load_ed25519_private_key(private_key_blob)
    return {
        "signature_alg": SIGNATURE_ALG,
        "payload_sha256": sha256_bytes(payload),
        "signature": key.sign(payload).hex(),
    }


def write_signature(report_path: Path, report_obj: dict[str, Any], private_key_blob: bytes) -> Path:
    sig = sign_report(report_obj, private_key_blob)
    out = signature_path_for(report_path)
    _write_bytes_atomic(out, pretty_json_bytes(sig))
    logger.info("wrote report signature %s", out)
    return out


def verify_report_signature(report_obj: dict[str, Any], signature_doc: Any, public_key_blob: bytes) -> None:
    """Raise ValueError unless signature_doc is a valid Ed25519 signature of report_obj."""

    from cryptography.exceptions import InvalidSignature

    if not isinstance(signature_doc, dict):
        raise ValueError("signature document must be a JSON object")
    if signature_doc.get("signature_alg") != SIGNATURE_ALG:
        raise ValueError(f"signature_alg missing/invalid (expected {SIGNATURE_ALG})")
    sig_hex = signature_doc.get("signature")
    if not isinstance(sig_hex, str) or len(sig_hex) != 128:
        raise ValueError("signature missing/invalid")

    payload = canonical_json_bytes(report_obj)
    if signature_doc.get("payload_sha256") != sha256_bytes(payload):
        raise ValueError("report digest does not match the signed digest")

    pub = _load_ed25519_public_key(public_key_blob)
    try:
        pub.verify(bytes.fromhex(sig_hex), payload)
    except (InvalidSignature, ValueError):
        # InvalidSignature has an empty string repr.
        raise ValueError("Invalid Ed25519 signature") from None


def load_json_file(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8", errors="strict"))
