"""
Health Scorer — institutional 0-100 pool health
================================================

Base score (weighted signals, each in [0, 1]):
  tvl        = clamp((log10(max(TVL, 1)) − 4) / 4)           $10K → $100M
  volume     = clamp((log10(max(vol1h, 1) + 1) − 3) / 4)      ~$1K/h → $10M/h
  fee yield  = clamp(fees1h / TVL × 1000)
  stability  = clamp(1 − σ / threshold)                        0.35 STABLE, 1.20 else
  freshness  = exp(−age_minutes / 10)

  base = 0.35·tvl + 0.30·volume + 0.20·fee_yield + 0.10·stability + 0.05·freshness

Multiplicative gates:
  p1 liquidity  = clamp(0.70·tvl + 0.30, 0.30, 1)
  p2 activity   = clamp(0.70·volume + 0.30, 0.30, 1)
  p3 risk flags = 0.35 severe keyword / 0.60 moderate keyword / 1 (worst wins)
  p4 spike trap = 0.55 if APR > 300% and vol1h < $50K

  penalty = clamp(p1·p2·p3·p4, 0.15, 1)
  score   = round(100 · base · penalty), clamped to [0, 100]
"""

import logging
import math
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from pool_math import clamp, round_half_up
from pool_intel.central_config import EngineSettings, get_settings
from pool_intel.models import HealthBreakdown, HealthScoreResult, PoolType

logger = logging.getLogger(__name__)

# ── Named Constants ──────────────────────────────────────────────────────

W_TVL, W_VOLUME, W_FEE_YIELD, W_STABILITY, W_FRESHNESS = 0.35, 0.30, 0.20, 0.10, 0.05

STABLE_VOL_THRESHOLD = 0.35
DEFAULT_VOL_THRESHOLD = 1.20
# Used for the stability signal when no volatility could be measured
DEFAULT_VOLATILITY = 0.20

FRESHNESS_DECAY_MINUTES = 10.0

GATE_FLOOR = 0.30
SEVERE_FLAG_FACTOR = 0.35
MODERATE_FLAG_FACTOR = 0.60
SPIKE_TRAP_FACTOR = 0.55
SPIKE_TRAP_APR = 300.0
SPIKE_TRAP_MAX_VOLUME_1H = 50_000.0
PENALTY_FLOOR = 0.15


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def freshness_score(updated_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """exp(−age/10min). Unknown timestamp → 0; future timestamps count as fresh."""
    if updated_at is None:
        return 0.0
    now = _as_utc(now or datetime.now(timezone.utc))
    age_minutes = max(0.0, (now - _as_utc(updated_at)).total_seconds() / 60)
    return math.exp(-age_minutes / FRESHNESS_DECAY_MINUTES)


def risk_flag_factor(
    warnings: Iterable[str],
    severe_keywords: Sequence[str],
    moderate_keywords: Sequence[str],
) -> float:
    """
    Worst-case gate over all warnings (minimum, not product).

    Each warning is checked against the severe set first.
    """
    factor = 1.0
    for warning in warnings:
        text = (warning or "").lower()
        if any(k in text for k in severe_keywords):
            factor = min(factor, SEVERE_FLAG_FACTOR)
        elif any(k in text for k in moderate_keywords):
            factor = min(factor, MODERATE_FLAG_FACTOR)
    return factor


def calc_health_score(
    tvl: Optional[float],
    volume_1h: Optional[float] = None,
    fees_1h: Optional[float] = None,
    vol_ann: Optional[float] = None,
    pool_type: PoolType = PoolType.CL,
    updated_at: Optional[datetime] = None,
    apr_total: Optional[float] = None,
    warnings: Sequence[str] = (),
    now: Optional[datetime] = None,
    settings: Optional[EngineSettings] = None,
) -> HealthScoreResult:
    """
    Composite health score gated by multiplicative penalties.

    Pass ``now`` to make the freshness signal deterministic.
    """
    settings = settings or get_settings()
    tvl = tvl if tvl is not None and math.isfinite(tvl) else 0.0
    vol1h = volume_1h if volume_1h is not None and math.isfinite(volume_1h) else 0.0
    fee1h = fees_1h if fees_1h is not None and math.isfinite(fees_1h) else 0.0

    if vol_ann is None or not math.isfinite(vol_ann) or vol_ann <= 0:
        vol_ann = DEFAULT_VOLATILITY

    tvl_score = clamp((math.log10(max(tvl, 1)) - 4) / 4, 0, 1)
    vol_score = clamp((math.log10(max(vol1h, 1) + 1) - 3) / 4, 0, 1)
    fee_yield_score = clamp((fee1h / max(tvl, 1)) * 1000, 0, 1)
    threshold = STABLE_VOL_THRESHOLD if pool_type == PoolType.STABLE else DEFAULT_VOL_THRESHOLD
    stability_score = clamp(1 - vol_ann / threshold, 0, 1)
    fresh = freshness_score(updated_at, now)

    base = (
        W_TVL * tvl_score
        + W_VOLUME * vol_score
        + W_FEE_YIELD * fee_yield_score
        + W_STABILITY * stability_score
        + W_FRESHNESS * fresh
    )

    p1 = clamp(0.70 * tvl_score + 0.30, GATE_FLOOR, 1.0)
    p2 = clamp(0.70 * vol_score + 0.30, GATE_FLOOR, 1.0)
    p3 = risk_flag_factor(
        warnings, settings.health.severe_keywords, settings.health.moderate_keywords
    )
    spike = apr_total is not None and apr_total > SPIKE_TRAP_APR and vol1h < SPIKE_TRAP_MAX_VOLUME_1H
    p4 = SPIKE_TRAP_FACTOR if spike else 1.0
    if spike:
        logger.info("Spike-trap gate applied: APR %.1f%% on $%.0f/h volume", apr_total, vol1h)

    penalty_total = clamp(p1 * p2 * p3 * p4, PENALTY_FLOOR, 1.0)
    score = int(clamp(round_half_up(100 * base * penalty_total), 0, 100))

    return HealthScoreResult(
        score=score,
        penalty_total=penalty_total,
        breakdown=HealthBreakdown(
            tvl_score=tvl_score,
            vol_score=vol_score,
            fee_yield_score=fee_yield_score,
            stability_score=stability_score,
            freshness_score=fresh,
            p1_liquidity=p1,
            p2_activity=p2,
            p3_risk_flags=p3,
            p4_spike_trap=p4,
            base=base,
        ),
        warnings=tuple(warnings),
    )
