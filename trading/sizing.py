"""Risk-mode position sizing with a hard wallet-fraction ceiling."""

from __future__ import annotations

import math

import config


def wallet_cap(wallet_valuation: float) -> float:
    try:
        valuation = float(wallet_valuation)
    except (TypeError, ValueError):
        valuation = 0.0
    if not math.isfinite(valuation):
        return 0.0
    return max(0.0, valuation) * float(config.WALLET_FRACTION_CAP)


def preset_band(mode: str) -> tuple[float, float]:
    bands = config.RISK_PRESET_BANDS
    key = str(mode or "").strip().lower()
    if key in bands:
        return bands[key]
    return bands.get("safe", (0.10, 1.0))


def size(mode: str, custom_amount: float, wallet_valuation: float) -> float:
    """Fiat trade size for one entry.

    Same inputs always give the same size, and the result never exceeds
    `wallet_valuation * WALLET_FRACTION_CAP`.
    """
    cap = wallet_cap(wallet_valuation)
    if cap <= 0:
        return 0.0

    if str(mode or "").strip().lower() == "custom":
        try:
            amount = float(custom_amount)
        except (TypeError, ValueError):
            amount = 0.0
        if not math.isfinite(amount) or amount <= 0:
            return 0.0
        return min(max(amount, float(config.CUSTOM_MIN_FIAT_AMOUNT)), cap)

    band_min, band_max = preset_band(mode)
    if band_min > cap:
        return cap
    effective_max = min(band_max, cap)
    return (band_min + effective_max) / 2.0
