"""
Score Composer — one bounded 0-100 score per pool
==================================================

  health  = W_health · (0.4·liquidity_stability + 0.2·age + 0.4·volume_consistency) / 100
  returns = W_return · (0.3·volume_tvl_ratio + 0.3·fee_efficiency + 0.4·min(APR, 100)) / 100
  risk    = min(volatility + liquidity_drop + inconsistency + execution_cost, W_risk)
  total   = clamp(health + returns − risk, 0, 100)

Default weights 40 / 35 / 25 (``EngineSettings.weights``).

Recommended mode:
  volatility unknown → NORMAL if total ≥ 75, else DEFENSIVE
  total ≥ 70 and σ% ≤ 30 → AGGRESSIVE
  total ≥ 50 and σ% ≤ 15 → NORMAL
  otherwise              → DEFENSIVE
  STABLE pools are never recommended AGGRESSIVE.

Suspect flags accumulate (no early exit); suspect pools are still scored.
Any unexpected failure yields a zero, DEFENSIVE, suspect score.
"""

import logging
import math
from typing import List, Optional

from pool_math import clamp
from pool_intel.central_config import EngineSettings, get_settings
from pool_intel.estimator import estimate_apr_from_fee_tier
from pool_intel.execution_cost import calculate_execution_cost
from pool_intel.models import (
    ConsensusResult,
    ExecutionCostResult,
    HealthComponents,
    PoolSnapshot,
    PoolType,
    ReturnComponents,
    RiskComponents,
    RiskMode,
    Score,
    ScoreBreakdown,
    TvlDropResult,
)
from pool_intel.tokens import infer_pool_type, is_bluechip

logger = logging.getLogger(__name__)

CALCULATION_ERROR = "Calculation error"
UNKNOWN_VOLATILITY_PENALTY = 10.0


# ── Tiered Sub-Scores (0-100) ────────────────────────────────────────────


def _tier(value: float, ladder, default: float) -> float:
    for floor, points in ladder:
        if value >= floor:
            return points
    return default


def liquidity_stability(tvl: float) -> float:
    return _tier(
        tvl,
        ((10_000_000, 100), (5_000_000, 90), (1_000_000, 75), (500_000, 60), (100_000, 40)),
        20,
    )


def volume_consistency(tvl: float, volume_24h: float) -> float:
    if tvl <= 0:
        return 0.0
    return _tier(volume_24h / tvl, ((0.1, 100), (0.05, 80), (0.01, 60), (0.005, 40)), 20)


def volume_tvl_ratio_score(tvl: float, volume_24h: float) -> float:
    if tvl <= 0:
        return 0.0
    return _tier(volume_24h / tvl * 100, ((20, 100), (10, 80), (5, 60), (1, 40)), 20)


def age_score(tvl: float, volume_24h: float, bluechip: bool) -> float:
    """Maturity proxy: established pools have depth, steady turnover and majors."""
    score = 30.0
    score += _tier(tvl, ((10_000_000, 30), (1_000_000, 20), (100_000, 10)), 0)
    if tvl > 0 and volume_24h > 0:
        score += _tier(volume_24h / tvl, ((0.01, 20), (0.005, 10)), 0)
    if bluechip:
        score += 20
    return min(100.0, score)


def fee_efficiency(
    tvl: float,
    volume_24h: float,
    fees_24h: Optional[float],
    fee_tier: Optional[float],
    apr: Optional[float],
) -> float:
    if fees_24h and tvl > 0:
        annualized = fees_24h / tvl * 365 * 100
        return _tier(annualized, ((50, 100), (30, 80), (15, 60), (5, 40)), 20)
    if fee_tier and volume_24h > 0 and tvl > 0:
        return min(100.0, volume_24h * fee_tier * 365 / tvl * 100)
    if apr and apr > 0:
        return min(100.0, apr)
    return 20.0


def volatility_penalty(vol_pct: Optional[float]) -> float:
    """Points from annualized volatility in percent; unknown → moderate 10."""
    if vol_pct is None or vol_pct <= 0:
        return UNKNOWN_VOLATILITY_PENALTY
    return _tier(vol_pct, ((30, 25), (20, 20), (10, 12), (5, 5)), 0)


# ── Composer ─────────────────────────────────────────────────────────────


class ScoreComposer:
    """Combines health, return and risk terms into a ``Score``."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or get_settings()

    def calculate_score(
        self,
        pool: PoolSnapshot,
        volatility_ann: Optional[float] = None,
        apr: Optional[float] = None,
        tvl_drop: Optional[TvlDropResult] = None,
        consensus: Optional[ConsensusResult] = None,
        execution_cost: Optional[ExecutionCostResult] = None,
        pool_type: Optional[PoolType] = None,
        bluechip: Optional[bool] = None,
    ) -> Score:
        """
        Score one pool. Never raises.

        ``volatility_ann`` is a decimal (0.25 = 25%); None or ≤ 0 means
        unknown. Missing tracker/consensus inputs contribute no penalty;
        a missing execution-cost result is computed from the snapshot.
        """
        try:
            return self._compose(
                pool, volatility_ann, apr, tvl_drop, consensus, execution_cost, pool_type, bluechip
            )
        except Exception:
            logger.exception("Failed to calculate score for %s", getattr(pool, "pool_id", pool))
            return self.failed_score()

    @staticmethod
    def failed_score() -> Score:
        return Score(
            total=0.0,
            health=0.0,
            returns=0.0,
            risk=0.0,
            breakdown=ScoreBreakdown(),
            recommended_mode=RiskMode.DEFENSIVE,
            is_suspect=True,
            suspect_reasons=(CALCULATION_ERROR,),
        )

    def _compose(
        self,
        pool: PoolSnapshot,
        volatility_ann: Optional[float],
        apr: Optional[float],
        tvl_drop: Optional[TvlDropResult],
        consensus: Optional[ConsensusResult],
        execution_cost: Optional[ExecutionCostResult],
        pool_type: Optional[PoolType],
        bluechip: Optional[bool],
    ) -> Score:
        weights = self.settings.weights
        tvl = pool.tvl
        if tvl is None or not math.isfinite(tvl):
            raise ValueError(f"pool {pool.pool_id} has no usable TVL: {tvl!r}")
        volume = pool.volume_24h or 0.0

        if pool_type is None:
            pool_type = pool.pool_type or infer_pool_type(
                pool.token0.symbol, pool.token1.symbol, pool.protocol, pool.fee_tier
            )
        if bluechip is None:
            bluechip = (
                pool.bluechip
                if pool.bluechip is not None
                else is_bluechip(pool.token0.symbol, pool.token1.symbol)
            )
        if apr is None:
            apr = pool.apr
        if volatility_ann is None:
            volatility_ann = pool.volatility_ann
        vol_pct = volatility_ann * 100 if volatility_ann and volatility_ann > 0 else None
        if execution_cost is None:
            execution_cost = calculate_execution_cost(tvl, pool.volume_24h, pool_type)

        breakdown = ScoreBreakdown(
            health=HealthComponents(
                liquidity_stability=liquidity_stability(tvl),
                age_score=age_score(tvl, volume, bluechip),
                volume_consistency=volume_consistency(tvl, volume),
            ),
            returns=ReturnComponents(
                volume_tvl_ratio=volume_tvl_ratio_score(tvl, volume),
                fee_efficiency=fee_efficiency(tvl, volume, pool.fees_24h, pool.fee_tier, apr),
                apr_estimate=apr if apr else estimate_apr_from_fee_tier(tvl, volume, pool.fee_tier),
            ),
            risk=RiskComponents(
                volatility_penalty=volatility_penalty(vol_pct),
                liquidity_drop_penalty=tvl_drop.liquidity_drop_penalty if tvl_drop else 0,
                inconsistency_penalty=consensus.inconsistency_penalty if consensus else 0,
                execution_cost_penalty=execution_cost.execution_cost_penalty,
            ),
        )

        h = breakdown.health
        health = weights.health * (
            0.4 * h.liquidity_stability + 0.2 * h.age_score + 0.4 * h.volume_consistency
        ) / 100

        r = breakdown.returns
        returns = weights.returns * (
            0.3 * r.volume_tvl_ratio
            + 0.3 * r.fee_efficiency
            + 0.4 * clamp(r.apr_estimate, 0, 100)
        ) / 100

        k = breakdown.risk
        risk = min(
            k.volatility_penalty
            + k.liquidity_drop_penalty
            + k.inconsistency_penalty
            + k.execution_cost_penalty,
            weights.risk,
        )

        total = clamp(health + returns - risk, 0, 100)
        mode = self.recommend_mode(total, vol_pct, pool_type)
        reasons = self.suspect_reasons(tvl, volume, apr, k.inconsistency_penalty)
        if reasons:
            logger.info("Pool %s flagged suspect: %s", pool.pool_id, "; ".join(reasons))

        return Score(
            total=round(total, 1),
            health=round(health, 1),
            returns=round(returns, 1),
            risk=round(risk, 1),
            breakdown=breakdown,
            recommended_mode=mode,
            is_suspect=bool(reasons),
            suspect_reasons=tuple(reasons),
        )

    def recommend_mode(
        self, total: float, vol_pct: Optional[float], pool_type: Optional[PoolType] = None
    ) -> RiskMode:
        gates = self.settings.modes
        if vol_pct is None:
            return (
                RiskMode.NORMAL
                if total >= gates.unknown_volatility_min_score
                else RiskMode.DEFENSIVE
            )
        if total >= gates.aggressive_min_score and vol_pct <= gates.aggressive_max_volatility:
            mode = RiskMode.AGGRESSIVE
        elif total >= gates.normal_min_score and vol_pct <= gates.normal_max_volatility:
            mode = RiskMode.NORMAL
        else:
            mode = RiskMode.DEFENSIVE

        if mode is RiskMode.AGGRESSIVE and pool_type == PoolType.STABLE:
            return RiskMode.NORMAL
        return mode

    def suspect_reasons(
        self,
        tvl: float,
        volume_24h: float,
        apr: Optional[float],
        inconsistency_penalty: float,
    ) -> List[str]:
        limits = self.settings.thresholds
        reasons = []
        if tvl < limits.min_liquidity:
            reasons.append("TVL below minimum threshold")
        if volume_24h < limits.min_volume_24h:
            reasons.append("Volume below minimum threshold")
        if apr and apr > limits.max_apr:
            reasons.append("Unusually high APR")
        if volume_24h > tvl * limits.max_volume_tvl_ratio:
            reasons.append("Volume/TVL ratio too high")
        if inconsistency_penalty > limits.max_inconsistency_penalty:
            reasons.append("High data inconsistency between sources")
        return reasons
