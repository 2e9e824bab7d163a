"""Deterministic evidence hashing.

The same evidence payload always yields the same 32-byte hash, so a retried
verification submits an identical ``verify`` call to the ledger.
"""

from __future__ import annotations

import hashlib
import json


def canonical_json(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def evidence_hash(evidence: dict) -> str:
    """Return ``0x``-prefixed SHA-256 of the canonical JSON form of ``evidence``."""
    digest = hashlib.sha256(canonical_json(evidence).encode("utf-8")).hexdigest()
    return f"0x{digest}"
