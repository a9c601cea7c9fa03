"""Canonical hashing helpers for revisions, fingerprints and the ledger."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_revision(body: bytes, length: int = 12) -> str:
    """Revision identifier for a single template body."""
    return sha256_hex(body)[:length]


def compute_tree_revision(root: str | Path, length: int = 12) -> str:
    """Revision identifier derived from the state of a source tree.

    Hashes every file's relative path and content in sorted order, so the
    same tree always yields the same revision regardless of mtime.
    """
    base = Path(root)
    if base.is_file():
        return compute_revision(base.read_bytes(), length)

    digest = hashlib.sha256()
    for path in sorted(p for p in base.rglob("*") if p.is_file()):
        rel = path.relative_to(base).as_posix()
        if any(part.startswith(".") for part in Path(rel).parts):
            continue
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()[:length]


def compute_input_hash(stack_name: str, inputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stack_name + sorted resolved inputs)."""
    return sha256_hex(canonical_json_bytes({"stack": stack_name, "inputs": inputs}))


def compute_state_fingerprint(live_state: dict[str, Any]) -> str:
    """Fingerprint of a stack's live state, used to detect stale changesets."""
    return sha256_hex(canonical_json_bytes(live_state))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself)."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
