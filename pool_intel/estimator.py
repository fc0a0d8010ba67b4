"""
Yield / Volatility Estimator
============================

Fee APR from whichever fee window a provider reports, and annualized
volatility from a price series or a single current/1h-ago pair.

Every function here is total: missing or non-positive inputs produce a
documented "no data" result instead of an exception.

Formulas:
  Fee APR       = fees24h_equivalent / TVL × 365 × 100
                  fees24h_equivalent: fees24h → fees1h × 24 → fees5m × 288
  Volatility    = σ(log-returns) × √(periods per year)
                  hourly: 24·365 = 8760, 5-minute: 12·24·365 = 105120
  Proxy         = |ln(P_now / P_1h)| × √8760
"""

import logging
import math
from typing import Iterable, Optional, Sequence, Tuple, Union

from pool_math import clamp, is_positive, log_returns, sample_stdev
from pool_intel.models import (
    AprResult,
    AprSource,
    PricePoint,
    VolatilityEstimate,
    VolatilityMethod,
)

logger = logging.getLogger(__name__)

# ── Named Constants ──────────────────────────────────────────────────────

DAYS_PER_YEAR = 365
HOURS_PER_YEAR = 24 * DAYS_PER_YEAR
FIVE_MIN_PER_YEAR = 12 * HOURS_PER_YEAR

PERIODS_PER_YEAR = {
    "hourly": HOURS_PER_YEAR,
    "5m": FIVE_MIN_PER_YEAR,
}

VOL_MIN, VOL_MAX = 0.01, 10.0
PROXY_MIN, PROXY_MAX = 0.05, 3.0

_NO_VOLATILITY = VolatilityEstimate(0.0, VolatilityMethod.PROXY, 0)


# ── Fee APR ──────────────────────────────────────────────────────────────


def calc_apr_fee(
    tvl: Optional[float],
    fees_24h: Optional[float] = None,
    fees_1h: Optional[float] = None,
    fees_5m: Optional[float] = None,
) -> AprResult:
    """
    Annualized fee APR (percent) with a 24h → 1h → 5m fallback chain.

    The 24h-equivalent fee figure is returned alongside the APR so
    fee-share estimates reuse exactly the same number.
    """
    if not is_positive(tvl):
        return AprResult(None, AprSource.ESTIMATED, None)

    if is_positive(fees_24h):
        fees_day, source = fees_24h, AprSource.FEES_24H
    elif is_positive(fees_1h):
        fees_day, source = fees_1h * 24, AprSource.FEES_1H
    elif is_positive(fees_5m):
        fees_day, source = fees_5m * 288, AprSource.FEES_5M
    else:
        return AprResult(None, AprSource.ESTIMATED, None)

    if source is not AprSource.FEES_24H:
        logger.debug("Fee APR extrapolated from %s window", source.value)

    apr = (fees_day / tvl) * DAYS_PER_YEAR * 100
    return AprResult(apr, source, fees_day)


def calc_apr_adjusted(apr_total: Optional[float], penalty_total: float) -> Optional[float]:
    """Headline APR discounted by the health penalty factor."""
    if apr_total is None:
        return None
    return apr_total * penalty_total


def estimate_apr_from_fee_tier(
    tvl: Optional[float],
    volume_24h: Optional[float],
    fee_tier: Optional[float],
) -> float:
    """
    APR implied by volume × fee tier when no fee figures exist.

    Returns 0 unless the fee tier is actually known; a 0.30% tier is never
    assumed. Rounded to one decimal.
    """
    if not is_positive(tvl) or not is_positive(fee_tier) or not is_positive(volume_24h):
        return 0.0
    daily_fees = volume_24h * fee_tier
    return round(daily_fees * DAYS_PER_YEAR / tvl * 100, 1)


# ── Volatility ───────────────────────────────────────────────────────────


PointLike = Union[PricePoint, Tuple[float, float]]


def _valid_points(points: Iterable[PointLike]) -> Sequence[Tuple[float, float]]:
    valid = []
    for ts, price in points:
        if price is None or not math.isfinite(price) or price <= 0:
            continue
        valid.append((ts, price))
    valid.sort(key=lambda p: p[0])
    return valid


def calc_volatility_ann(
    points: Iterable[PointLike], interval: str = "hourly"
) -> VolatilityEstimate:
    """
    Annualized volatility from a (timestamp, price) series.

    Needs at least 3 valid points and 2 log-returns; otherwise returns
    0 with method ``proxy`` (not measured). Result clamped to [0.01, 10].
    """
    if interval not in PERIODS_PER_YEAR:
        raise ValueError(
            f"interval must be one of {sorted(PERIODS_PER_YEAR)}, got {interval!r}"
        )

    series = _valid_points(points or ())
    if len(series) < 3:
        return VolatilityEstimate(0.0, VolatilityMethod.PROXY, len(series))

    returns = log_returns(price for _, price in series)
    if len(returns) < 2:
        return VolatilityEstimate(0.0, VolatilityMethod.PROXY, len(series))

    sigma = sample_stdev(returns)
    vol_ann = clamp(sigma * math.sqrt(PERIODS_PER_YEAR[interval]), VOL_MIN, VOL_MAX)
    return VolatilityEstimate(vol_ann, VolatilityMethod.LOG_RETURNS, len(series))


def calc_volatility_proxy(
    price_now: Optional[float], price_1h_ago: Optional[float]
) -> VolatilityEstimate:
    """
    Single-sample volatility proxy from one hourly move.

    |ln(now / 1h_ago)| × √8760, clamped to [0.05, 3.0].
    """
    if not is_positive(price_now) or not is_positive(price_1h_ago):
        return _NO_VOLATILITY
    move = abs(math.log(price_now / price_1h_ago))
    vol_ann = clamp(move * math.sqrt(HOURS_PER_YEAR), PROXY_MIN, PROXY_MAX)
    return VolatilityEstimate(vol_ann, VolatilityMethod.PROXY, 2)
