"""
Execution-Cost Estimator — AMM price impact without a live quote
=================================================================

Impact (percent) for a trade of size Δ against a pool of depth TVL:

  STABLE   Δ / (10 · TVL) · 100              stableswap curve, very deep
  CL       Δ / (TVL · c) · 100               c = clamp(vol24h / TVL · 20, 1, 10)
  V2       Δ / (2 · TVL) · 100               constant product, half TVL per side
  other    same as V2

TVL ≤ 0 → 100% (no liquidity). Penalty from the $1,000 impact:
  <0.1% → 0, <0.5% → 2, <1% → 4, <3% → 6, <5% → 8, else 10
"""

import logging
from typing import Optional, Union

from pool_math import clamp
from pool_intel.models import ExecutionCostResult, PoolType

logger = logging.getLogger(__name__)

SMALL_TRADE_USD = 100
STANDARD_TRADE_USD = 1_000

# Turnover assumed when a CL pool reports no volume
_DEFAULT_CL_TURNOVER = 0.01

_PENALTY_LADDER = (
    (0.1, 0),
    (0.5, 2),
    (1.0, 4),
    (3.0, 6),
    (5.0, 8),
)
MAX_EXECUTION_PENALTY = 10


def _pool_family(pool_type: Union[PoolType, str, None]) -> PoolType:
    if isinstance(pool_type, PoolType):
        return pool_type
    if not pool_type:
        return PoolType.V2
    try:
        return PoolType(pool_type.upper())
    except ValueError:
        logger.debug("Unknown pool type %r priced as constant product", pool_type)
        return PoolType.V2


def estimate_price_impact(
    trade_size_usd: float,
    tvl: Optional[float],
    volume_24h: Optional[float],
    pool_type: Union[PoolType, str, None],
) -> float:
    """Estimated price impact in percent for a single swap."""
    if tvl is None or tvl <= 0:
        return 100.0
    if trade_size_usd <= 0:
        return 0.0

    if pool_type == PoolType.STABLE:
        return trade_size_usd / (10 * tvl) * 100

    if pool_type == PoolType.CL:
        turnover = volume_24h / tvl if volume_24h is not None and volume_24h > 0 else _DEFAULT_CL_TURNOVER
        concentration = clamp(turnover * 20, 1, 10)
        return trade_size_usd / (tvl * concentration) * 100

    return trade_size_usd / (2 * tvl) * 100


def impact_to_penalty(impact_pct: float) -> int:
    for limit, penalty in _PENALTY_LADDER:
        if impact_pct < limit:
            return penalty
    return MAX_EXECUTION_PENALTY


def calculate_execution_cost(
    tvl: Optional[float],
    volume_24h: Optional[float],
    pool_type: Union[PoolType, str, None] = PoolType.V2,
) -> ExecutionCostResult:
    """Impact at $100 and $1,000 plus the resulting execution penalty (0-10)."""
    kind = _pool_family(pool_type)
    impact_100 = estimate_price_impact(SMALL_TRADE_USD, tvl, volume_24h, kind)
    impact_1000 = estimate_price_impact(STANDARD_TRADE_USD, tvl, volume_24h, kind)
    penalty = impact_to_penalty(impact_1000)

    if penalty == 0:
        reason = f"Deep liquidity: $1K impact {impact_1000:.3f}%"
    elif penalty <= 4:
        reason = f"Moderate depth: $1K impact {impact_1000:.3f}%"
    else:
        reason = f"Thin liquidity: $1K impact {impact_1000:.2f}%"

    if penalty >= 6:
        logger.info("Execution-cost penalty %d (%s pool, TVL %s)", penalty, kind.value, tvl)

    return ExecutionCostResult(
        impact_100=round(impact_100, 4),
        impact_1000=round(impact_1000, 4),
        execution_cost_penalty=penalty,
        pool_type=kind,
        reason=reason,
    )
