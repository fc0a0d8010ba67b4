"""
Position Recommendations — ranked entry plans for scored pools
==============================================================

Suspect pools are excluded; the rest are ranked by ``Score.total`` and
each is planned in its own recommended mode:

  probability = min(85, round(total · 0.7 · m))        m: DEF 1.2 / NOR 1.0 / AGG 0.8
  weekly gain = APR / 52 · g · total / 100             g: DEF 0.7 / NOR 1.0 / AGG 1.3
  gain (USD)  = capital · weekly gain / 100

APR comes from the score breakdown, else the provider APR, else the
fee-tier estimate. Plans are valid for 24 hours.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from pool_math import round_half_up
from pool_intel.central_config import EngineSettings, get_settings
from pool_intel.estimator import estimate_apr_from_fee_tier
from pool_intel.models import PositionRecommendation, RiskMode, Score, ScoredPool

logger = logging.getLogger(__name__)

MAX_PROBABILITY = 85
VALIDITY = timedelta(hours=24)
WEEKS_PER_YEAR = 52

PROBABILITY_MULTIPLIER = {
    RiskMode.DEFENSIVE: 1.2,
    RiskMode.NORMAL: 1.0,
    RiskMode.AGGRESSIVE: 0.8,
}
GAIN_MULTIPLIER = {
    RiskMode.DEFENSIVE: 0.7,
    RiskMode.NORMAL: 1.0,
    RiskMode.AGGRESSIVE: 1.3,
}
STOP_LOSS_PCT = {
    RiskMode.DEFENSIVE: 5,
    RiskMode.NORMAL: 10,
    RiskMode.AGGRESSIVE: 15,
}

GENERIC_RISK = "General DeFi market risk (smart contract, exploit, depeg)"


def compact_usd(amount: float) -> str:
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.1f}K"
    return f"{amount:.0f}"


# ── Estimates ────────────────────────────────────────────────────────────


def success_probability(score: Score, mode: RiskMode) -> int:
    """Chance of a favourable outcome in percent; never above 85."""
    return min(MAX_PROBABILITY, round_half_up(score.total * 0.7 * PROBABILITY_MULTIPLIER[mode]))


def base_apr(scored: ScoredPool) -> float:
    estimate = scored.score.breakdown.returns.apr_estimate
    if estimate:
        return estimate
    snap = scored.intelligence.snapshot
    if snap.apr:
        return snap.apr
    return estimate_apr_from_fee_tier(snap.tvl, snap.volume_24h, snap.fee_tier)


def estimate_gains(scored: ScoredPool, capital: float, mode: RiskMode) -> Tuple[float, float]:
    """Expected 7-day return as (percent, USD), discounted by the score."""
    weekly = base_apr(scored) / WEEKS_PER_YEAR * GAIN_MULTIPLIER[mode]
    expected = weekly * scored.score.total / 100
    gain_pct = round_half_up(expected * 100) / 100
    gain_usd = round_half_up(capital * expected) / 100
    return gain_pct, gain_usd


# ── Conditions / Risks ───────────────────────────────────────────────────


def entry_conditions(scored: ScoredPool, mode: RiskMode) -> Tuple[str, ...]:
    snap = scored.intelligence.snapshot
    volume = snap.volume_24h or 0.0
    min_volume = volume * (0.8 if mode is RiskMode.DEFENSIVE else 0.5)
    conditions = [
        "Price close to its 24h average",
        f"24h volume above ${compact_usd(min_volume)}",
        f"TVL holding above ${compact_usd(snap.tvl * 0.9)}",
    ]
    if mode is RiskMode.AGGRESSIVE:
        conditions.append("Positive momentum confirmed (price rising)")
    elif mode is RiskMode.DEFENSIVE:
        conditions.append("Low volatility over the last 24h")
    return tuple(conditions)


def exit_conditions(mode: RiskMode, settings: EngineSettings) -> Tuple[str, ...]:
    conditions = [
        f"Position value down {STOP_LOSS_PCT[mode]}%",
        "Pool TVL down 30% or more",
        f"Daily volume below ${compact_usd(settings.thresholds.min_volume_24h)}",
    ]
    if mode is RiskMode.AGGRESSIVE:
        conditions.append("Gain of 20%+ reached (take partial profit)")
    conditions.append("Re-evaluate after 7 days")
    return tuple(conditions)


def identify_main_risks(scored: ScoredPool) -> Tuple[str, ...]:
    """Risks read off the score breakdown; a generic market risk when none stand out."""
    snap = scored.intelligence.snapshot
    breakdown = scored.score.breakdown
    risks = []
    if breakdown.risk.volatility_penalty > 10:
        risks.append("High volatility, elevated impermanent-loss risk")
    if snap.tvl < 500_000:
        risks.append("Moderate liquidity, slippage may be significant")
    if (snap.volume_24h or 0.0) < snap.tvl * 0.01:
        risks.append("Low relative volume, possible lack of interest")
    if breakdown.health.age_score < 30:
        risks.append("Relatively new pool, limited history")
    return tuple(risks) or (GENERIC_RISK,)


def build_commentary(
    scored: ScoredPool,
    mode: RiskMode,
    probability: int,
    gain_pct: float,
    risks: Tuple[str, ...],
) -> str:
    snap, score = scored.intelligence.snapshot, scored.score
    stance = {
        RiskMode.DEFENSIVE: "defensive",
        RiskMode.NORMAL: "balanced",
        RiskMode.AGGRESSIVE: "aggressive",
    }[mode]

    parts = [
        f"Pool {snap.name} on {snap.protocol or 'unknown protocol'} ({snap.chain}).",
        f"Score {score.total:.1f}/100.",
    ]
    if score.health >= 25:
        parts.append("Strong pool health and stability.")
    if score.returns >= 20:
        parts.append("Attractive return potential from volume and fees.")
    parts.append(f"Suggested stance: {stance}.")
    parts.append(f"Probability of a favourable outcome: {probability}%.")
    parts.append(f"Estimated 7-day return: {gain_pct:.2f}%.")
    if risks:
        parts.append(f"Watch out: {risks[0]}.")
    parts.append("Based on historical data; not a guarantee of future results.")
    return " ".join(parts)


# ── Builder ──────────────────────────────────────────────────────────────


def build_position_recommendations(
    scored: Iterable[ScoredPool],
    capital: float,
    limit: int = 3,
    now: Optional[datetime] = None,
    settings: Optional[EngineSettings] = None,
) -> List[PositionRecommendation]:
    """Top ``limit`` non-suspect pools by total score, each in its recommended mode."""
    if capital < 0:
        raise ValueError(f"capital must be non-negative, got {capital!r}")
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)

    pool_list = list(scored)
    eligible = [sp for sp in pool_list if not sp.score.is_suspect]
    if len(eligible) < len(pool_list):
        logger.debug("Skipped %d suspect pools", len(pool_list) - len(eligible))
    ranked = sorted(eligible, key=lambda sp: sp.score.total, reverse=True)[:limit]

    plans = []
    for rank, sp in enumerate(ranked, 1):
        mode = sp.score.recommended_mode
        probability = success_probability(sp.score, mode)
        gain_pct, gain_usd = estimate_gains(sp, capital, mode)
        risks = identify_main_risks(sp)
        plans.append(
            PositionRecommendation(
                rank=rank,
                scored=sp,
                mode=mode,
                probability=probability,
                estimated_gain_pct=gain_pct,
                estimated_gain_usd=gain_usd,
                capital=capital,
                entry_conditions=entry_conditions(sp, mode),
                exit_conditions=exit_conditions(mode, settings),
                main_risks=risks,
                commentary=build_commentary(sp, mode, probability, gain_pct, risks),
                data_timestamp=now,
                valid_until=now + VALIDITY,
            )
        )
    return plans
