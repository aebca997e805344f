"""Identifiers for endpoints, memories, and pending confirmations."""

from __future__ import annotations

import secrets

from hearth.utils.time import now_ms


def new_id(prefix: str) -> str:
    """`<prefix>_<ms>_<random>`; ids from one process sort by creation time."""
    return f"{prefix}_{now_ms()}_{secrets.token_hex(5)[:9]}"


__all__ = ["new_id"]
