"""Momentum ranking of freshly listed pairs into a bounded shortlist."""

from __future__ import annotations

from typing import Any, Iterable

import config
from trading.models import Candidate
from utils.addressing import normalize_mint


def _change(pair: dict[str, Any], window: str) -> float | None:
    changes = pair.get("priceChange")
    if not isinstance(changes, dict):
        return None
    raw = changes.get(window)
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def to_candidate(pair: Any) -> Candidate | None:
    """Structural check of one raw pair; None when address or short-term change is missing."""
    if not isinstance(pair, dict):
        return None
    base = pair.get("baseToken")
    if not isinstance(base, dict):
        return None
    mint = normalize_mint(base.get("address"))
    if not mint:
        return None
    m5 = _change(pair, "m5")
    if m5 is None:
        return None
    h1 = _change(pair, "h1")
    return Candidate(
        token_mint=mint,
        symbol=str(base.get("symbol") or "N/A"),
        short_term_change_pct=m5,
        medium_term_change_pct=h1 if h1 is not None else 0.0,
    )


def select(
    raw_pairs: Iterable[Any],
    limit: int | None = None,
    *,
    exclude_mints: Iterable[str] = (),
) -> list[Candidate]:
    limit = int(config.CANDIDATE_LIMIT if limit is None else limit)
    if limit <= 0:
        return []
    excluded = {normalize_mint(m) for m in exclude_mints}
    valid = [c for c in (to_candidate(p) for p in raw_pairs or []) if c is not None and c.token_mint not in excluded]
    # sorted() is stable, so equal momentum keeps input order.
    ranked = sorted(valid, key=lambda c: -c.momentum)
    out: list[Candidate] = []
    seen: set[str] = set()
    for candidate in ranked:
        if candidate.token_mint in seen:
            continue
        seen.add(candidate.token_mint)
        out.append(candidate)
        if len(out) >= limit:
            break
    return out
