#!/usr/bin/env python3
"""
Pool Math Primitives
====================

Statistics helpers and Uniswap V3 tick math shared by every calculator.
All functions are pure: same inputs, same outputs, no I/O.

FORMULA SOURCES:
──────────────────────────────────────────────
1. Abramowitz & Stegun, Handbook of Mathematical Functions, eq. 7.1.26
   erf(x) ≈ 1 − (a1·t + a2·t² + a3·t³ + a4·t⁴ + a5·t⁵)·e^(−x²),
   t = 1 / (1 + p·x),  |error| ≤ 1.5e-7

2. Uniswap V3 Core Whitepaper §6.1 (ticks)
   https://uniswap.org/whitepaper-v3.pdf
   p(i) = 1.0001^i  ↔  i = floor(log(p) / log(1.0001))

3. Impermanent Loss (Pintail, 2019)
   https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2
   IL = 2·√(r) / (1 + r) − 1,  where r = P_end / P_start
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence

# ── Named Constants ──────────────────────────────────────────────────────

TICK_BASE = 1.0001
MIN_TICK = -887272
MAX_TICK = 887272

# Abramowitz–Stegun 7.1.26 coefficients
_AS_A1 = 0.254829592
_AS_A2 = -0.284496736
_AS_A3 = 1.421413741
_AS_A4 = -1.453152027
_AS_A5 = 1.061405429
_AS_P = 0.3275911


# ── Statistics ───────────────────────────────────────────────────────────


def clamp(value: float, lower: float, upper: float) -> float:
    """Bound ``value`` to ``[lower, upper]``."""
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Nearest integer with .5 rounded towards +inf (not banker's rounding)."""
    return math.floor(value + 0.5)


def is_positive(value: Optional[float]) -> bool:
    """True for a finite number strictly above zero (None-safe)."""
    return value is not None and math.isfinite(value) and value > 0


def require_finite(name: str, value: float) -> float:
    """Raise ValueError when a required numeric argument is NaN or ±inf."""
    if value is None or not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return value


def normal_cdf(z: float) -> float:
    """
    Standard normal CDF Φ(z) via the Abramowitz–Stegun erf approximation.

    Φ(z) = ½·(1 + erf(z/√2)), accurate to ~1e-7 over the whole real line.
    """
    sign = -1.0 if z < 0 else 1.0
    x = abs(z) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _AS_P * x)
    poly = ((((_AS_A5 * t + _AS_A4) * t + _AS_A3) * t + _AS_A2) * t + _AS_A1) * t
    y = 1.0 - poly * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


def sample_stdev(values: Sequence[float]) -> float:
    """Sample standard deviation (n − 1 denominator). Fewer than 2 values → 0."""
    n = len(values)
    if n < 2:
        return 0.0
    mean = sum(values) / n
    variance = sum((v - mean) ** 2 for v in values) / (n - 1)
    return math.sqrt(variance)


def log_returns(prices: Iterable[float]) -> List[float]:
    """
    ln(p[i] / p[i-1]) for consecutive prices.

    A pair is skipped unless both sides are positive, so a bad sample never
    produces an infinite or undefined return.
    """
    returns: List[float] = []
    prev: Optional[float] = None
    for price in prices:
        if prev is not None and prev > 0 and price > 0:
            returns.append(math.log(price / prev))
        prev = price
    return returns


# ── Tick Math ────────────────────────────────────────────────────────────


class UniswapV3Math:
    """
    Tick ↔ price conversions for concentrated-liquidity pools.
    Valid tick range is [-887272, +887272] (Whitepaper §6.1).
    """

    @staticmethod
    def price_to_tick(price: float) -> int:
        """
        Largest tick whose price does not exceed ``price``.

        Formula (Whitepaper §6.1): i = floor(log(p) / log(1.0001))
        """
        if price <= 0:
            raise ValueError("Price must be positive")
        raw_tick = math.log(price) / math.log(TICK_BASE)
        return math.floor(clamp(raw_tick, MIN_TICK, MAX_TICK))

    @staticmethod
    def price_to_tick_ceil(price: float) -> int:
        """Smallest tick whose price is not below ``price``."""
        if price <= 0:
            raise ValueError("Price must be positive")
        raw_tick = math.log(price) / math.log(TICK_BASE)
        return math.ceil(clamp(raw_tick, MIN_TICK, MAX_TICK))

    @staticmethod
    def tick_to_price(tick: int) -> float:
        """p(i) = 1.0001^i, with ``tick`` clamped to the protocol bounds."""
        tick = max(MIN_TICK, min(MAX_TICK, tick))
        return TICK_BASE**tick

    @staticmethod
    def floor_to_spacing(tick: int, spacing: int) -> int:
        """Round a tick down to a multiple of ``spacing``."""
        return math.floor(tick / spacing) * spacing

    @staticmethod
    def ceil_to_spacing(tick: int, spacing: int) -> int:
        """Round a tick up to a multiple of ``spacing``."""
        return math.ceil(tick / spacing) * spacing


# ── Impermanent Loss ─────────────────────────────────────────────────────


class RiskAnalyzer:
    """Impermanent-loss arithmetic. NOT financial advice."""

    @staticmethod
    def impermanent_loss(price_initial: float, price_current: float) -> float:
        """
        V2 (full-range) impermanent loss in percent, negative = loss vs HODL.

        Formula (Pintail, 2019): IL = 2·√(r) / (1 + r) − 1
        """
        if price_initial <= 0 or price_current <= 0:
            return 0.0
        r = price_current / price_initial
        il = 2 * math.sqrt(r) / (1 + r) - 1
        return round(il * 100, 4)

    @staticmethod
    def impermanent_loss_at_bounds(
        price: float, lower: float, upper: float
    ) -> Dict[str, float]:
        """
        V2 impermanent loss if price ends exactly at either range edge.

        Returns ``il_at_lower_pct`` / ``il_at_upper_pct`` (0 when the
        range is degenerate).
        """
        if price <= 0 or lower <= 0 or upper <= lower:
            return {"il_at_lower_pct": 0.0, "il_at_upper_pct": 0.0}
        return {
            "il_at_lower_pct": RiskAnalyzer.impermanent_loss(price, lower),
            "il_at_upper_pct": RiskAnalyzer.impermanent_loss(price, upper),
        }
