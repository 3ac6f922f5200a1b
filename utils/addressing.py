"""Mint address helpers."""

from __future__ import annotations


def normalize_mint(value: str | None) -> str:
    """Trim a mint for use as a map/dedup key. Base58 is case-sensitive, so no lowercasing."""
    return str(value or "").strip()
