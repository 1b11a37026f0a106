"""State signatures: identify a page state independent of key order."""

from __future__ import annotations

from typing import Any, Mapping

from qamap.utils.hashing import hash_string


def create_state_signature(route: str, dom_hash: str, state: Mapping[str, Any] | None = None) -> str:
    """Hash of route, DOM hash and the state entries sorted by key."""
    entries = "|".join(f"{k}:{v}" for k, v in sorted((state or {}).items()))
    return hash_string(f"{route}::{dom_hash}::{entries}")
