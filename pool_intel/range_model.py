"""
Range & Impermanent-Loss Model
==============================

Log-normal range sizing for concentrated-liquidity positions.

  T          = horizon_days / 365
  width_pct  = clamp(z(mode) · σ · √T, 0.003, 0.45)      STABLE: ≤ 0.03
  bounds     = price · (1 ∓ width_pct)
  d          = ln(upper / price) / (σ · √T)
  P(out)     = clamp(2 · (1 − Φ(d)), 0, 1)

The tail is measured against the UPPER bound only and doubled; this is
exact only for ranges symmetric in log-price. Tick snapping widens the
range outward, so after snapping the two sides are no longer symmetric.
The probability is still computed from the requested (unsnapped) upper
bound.

Fee share:
  expected_fees_24h = fees24h_equivalent · (capital / TVL) · active_fraction(mode)
  7d / 30d are linear multiples (no compounding, no fee decay).
"""

import math
from typing import Optional, Tuple, Union

from pool_math import (
    MAX_TICK,
    MIN_TICK,
    RiskAnalyzer,
    UniswapV3Math,
    clamp,
    normal_cdf,
    require_finite,
)
from pool_intel.central_config import EngineSettings, get_settings
from pool_intel.estimator import calc_apr_fee
from pool_intel.models import (
    FeeEstimate,
    ILRiskResult,
    PoolType,
    RangeResult,
    RiskMode,
)

DAYS_PER_YEAR = 365


# ── Validation ───────────────────────────────────────────────────────────


def _check_price(price: float) -> float:
    require_finite("price", price)
    if price <= 0:
        raise ValueError(f"price must be positive, got {price!r}")
    return price


def _check_horizon(horizon_days: float) -> float:
    require_finite("horizon_days", horizon_days)
    if horizon_days < 0:
        raise ValueError(f"horizon_days must be >= 0, got {horizon_days!r}")
    return horizon_days


def _check_volatility(vol_ann: Optional[float]) -> float:
    if vol_ann is None:
        return 0.0
    require_finite("vol_ann", vol_ann)
    if vol_ann < 0:
        raise ValueError(f"vol_ann must be >= 0, got {vol_ann!r}")
    return vol_ann


# ── Probability ──────────────────────────────────────────────────────────


def out_of_range_probability(
    price: float, upper: float, vol_ann: float, horizon_days: float
) -> float:
    """
    Two-sided breach probability approximated from the upper-bound tail.

    Zero when volatility or horizon is zero, or the upper bound is not
    above the current price.
    """
    sqrt_t = math.sqrt(horizon_days / DAYS_PER_YEAR)
    if vol_ann <= 0 or sqrt_t <= 0 or upper <= price:
        return 0.0
    d = math.log(upper / price) / (vol_ann * sqrt_t)
    return clamp(2 * (1 - normal_cdf(d)), 0.0, 1.0)


# ── Tick Snapping ────────────────────────────────────────────────────────


def snap_range_to_ticks(lower: float, upper: float, tick_spacing: int) -> Tuple[int, int]:
    """
    Outward-snap a price range to valid ticks.

    Guarantees tick_to_price(lower_tick) ≤ lower and
    tick_to_price(upper_tick) ≥ upper, so snapping only ever widens.
    """
    if tick_spacing <= 0:
        raise ValueError(f"tick_spacing must be positive, got {tick_spacing!r}")

    v3 = UniswapV3Math
    lower_tick = v3.floor_to_spacing(v3.price_to_tick(lower), tick_spacing)
    upper_tick = v3.ceil_to_spacing(v3.price_to_tick_ceil(upper), tick_spacing)

    # float rounding in log() can land one step inside the range
    while lower_tick - tick_spacing >= MIN_TICK and v3.tick_to_price(lower_tick) > lower:
        lower_tick -= tick_spacing
    while upper_tick + tick_spacing <= MAX_TICK and v3.tick_to_price(upper_tick) < upper:
        upper_tick += tick_spacing

    return lower_tick, upper_tick


# ── Range Recommendation ─────────────────────────────────────────────────


def calc_range_recommendation(
    price: float,
    vol_ann: Optional[float],
    horizon_days: float = 7,
    risk_mode: Union[RiskMode, str] = RiskMode.NORMAL,
    tick_spacing: Optional[int] = None,
    pool_type: Union[PoolType, str] = PoolType.CL,
    settings: Optional[EngineSettings] = None,
) -> RangeResult:
    """
    Suggested LP range for a risk mode and holding horizon.

    Raises:
        ValueError: non-finite/non-positive price, negative horizon,
            negative volatility or negative tick spacing.
    """
    settings = settings or get_settings()
    price = _check_price(price)
    horizon_days = _check_horizon(horizon_days)
    vol_ann = _check_volatility(vol_ann)
    mode = RiskMode(risk_mode)
    pool_type = PoolType(pool_type)
    table = settings.range

    sqrt_t = math.sqrt(horizon_days / DAYS_PER_YEAR)
    width_pct = clamp(
        table.z_scores[mode] * vol_ann * sqrt_t, table.min_width_pct, table.max_width_pct
    )
    if pool_type == PoolType.STABLE:
        width_pct = min(width_pct, table.stable_width_cap)

    lower = price * (1 - width_pct)
    upper = price * (1 + width_pct)
    prob_out = out_of_range_probability(price, upper, vol_ann, horizon_days)

    lower_tick = upper_tick = None
    if tick_spacing is not None:
        if tick_spacing < 0:
            raise ValueError(f"tick_spacing must be positive, got {tick_spacing!r}")
        if tick_spacing > 0:
            lower_tick, upper_tick = snap_range_to_ticks(lower, upper, tick_spacing)

    return RangeResult(
        lower=lower,
        upper=upper,
        width_pct=width_pct,
        lower_tick=lower_tick,
        upper_tick=upper_tick,
        prob_out_of_range=prob_out,
        mode=mode,
        horizon_days=horizon_days,
    )


# ── Fee Share ────────────────────────────────────────────────────────────


def calc_user_fees(
    tvl: Optional[float],
    user_capital: float,
    risk_mode: Union[RiskMode, str] = RiskMode.NORMAL,
    fees_24h: Optional[float] = None,
    fees_1h: Optional[float] = None,
    fees_5m: Optional[float] = None,
    settings: Optional[EngineSettings] = None,
) -> FeeEstimate:
    """Expected fee income for ``user_capital`` deposited in the pool."""
    settings = settings or get_settings()
    require_finite("user_capital", user_capital)
    if user_capital < 0:
        raise ValueError(f"user_capital must be >= 0, got {user_capital!r}")
    mode = RiskMode(risk_mode)

    share = user_capital / tvl if tvl is not None and tvl > 0 else 0.0
    apr = calc_apr_fee(tvl, fees_24h, fees_1h, fees_5m)
    fees_day = apr.fees_24h_usd or 0.0
    k_active = settings.range.active_fraction[mode]

    expected_24h = fees_day * share * k_active
    return FeeEstimate(
        expected_fees_24h=expected_24h,
        expected_fees_7d=expected_24h * 7,
        expected_fees_30d=expected_24h * 30,
        user_liquidity_share=share,
        active_fraction=k_active,
        fees_24h_usd=apr.fees_24h_usd,
        mode=mode,
    )


# ── IL Risk ──────────────────────────────────────────────────────────────


def calc_il_risk(
    price: float,
    upper: float,
    vol_ann: Optional[float],
    horizon_days: float = 7,
    lower: Optional[float] = None,
) -> ILRiskResult:
    """
    Out-of-range risk for an existing range, plus V2 IL at its edges.

    Uses the same upper-bound-only tail as the range recommendation.
    """
    price = _check_price(price)
    horizon_days = _check_horizon(horizon_days)
    vol_ann = _check_volatility(vol_ann)
    require_finite("upper", upper)

    prob = out_of_range_probability(price, upper, vol_ann, horizon_days)
    edges = (
        RiskAnalyzer.impermanent_loss_at_bounds(price, lower, upper)
        if lower is not None
        else {"il_at_lower_pct": 0.0, "il_at_upper_pct": RiskAnalyzer.impermanent_loss(price, upper)}
    )
    return ILRiskResult(
        prob_out_of_range=prob,
        il_risk_score=prob,
        horizon_days=horizon_days,
        il_at_lower_pct=edges["il_at_lower_pct"],
        il_at_upper_pct=edges["il_at_upper_pct"],
    )
