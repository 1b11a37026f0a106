"""Content hashing helpers used for stable ids across runs."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def hash_string(value: str, length: int = 16) -> str:
    """Return the first ``length`` hex chars of the sha256 of ``value``."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def hash_object(obj: Any, length: int = 16) -> str:
    """Hash a JSON-serializable object (keys sorted so dict order is irrelevant)."""
    payload = json.dumps(obj, sort_keys=True, default=str, separators=(",", ":"))
    return hash_string(payload, length)


def stable_id(prefix: str, *parts: Any) -> str:
    """Build ``prefix-<hash>`` from the given key parts."""
    return f"{prefix}-{hash_string('-'.join(str(p) for p in parts), 12)}"
