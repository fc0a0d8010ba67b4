"""
Pool Intelligence — enrichment, scoring pipeline, filters and top picks
=======================================================================

Wires the calculators together for the collector's snapshots:

  snapshot ─┬─ tracker.record_tvl ── tracker.get_tvl_drop ─────────┐
            ├─ enrich_pool (APR, volatility, health) ──────────────┤
            ├─ calculate_execution_cost ───────────────────────────┼─ ScoreComposer → Score
            └─ consensus (supplied by caller / batch) ─────────────┘

Volatility fallback chain:
  price history (log-returns) → provider-measured value → 1h proxy
  (above its floor only) → unknown
When unknown the health stability signal uses a 0.20 default and the
composer receives None.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pool_math import clamp
from pool_intel.central_config import EngineSettings, get_settings
from pool_intel.consensus import run_batch_consensus
from pool_intel.estimator import (
    PROXY_MIN,
    VOL_MAX,
    VOL_MIN,
    PointLike,
    calc_apr_adjusted,
    calc_apr_fee,
    calc_volatility_ann,
    calc_volatility_proxy,
)
from pool_intel.execution_cost import calculate_execution_cost
from pool_intel.health import DEFAULT_VOLATILITY, calc_health_score
from pool_intel.models import (
    ConsensusResult,
    PoolIntelligence,
    PoolSnapshot,
    PoolType,
    Recommendation,
    RiskMode,
    ScoredPool,
    SourceMetrics,
    VolatilityEstimate,
    VolatilityMethod,
)
from pool_intel.score import ScoreComposer
from pool_intel.tokens import infer_pool_type, is_bluechip
from pool_intel.tvl_tracker import TvlTracker

logger = logging.getLogger(__name__)


# ── Enrichment ───────────────────────────────────────────────────────────


def resolve_volatility(
    snapshot: PoolSnapshot,
    price_history: Optional[Iterable[PointLike]] = None,
    price_1h_ago: Optional[float] = None,
    interval: str = "hourly",
) -> VolatilityEstimate:
    """
    Best available volatility measurement; vol_ann 0 when none exists.

    A 1h proxy pinned to its floor carries no signal and counts as unknown.
    """
    if price_history is not None:
        measured = calc_volatility_ann(price_history, interval)
        if measured.is_measured:
            return measured

    provided = snapshot.volatility_ann
    if provided is not None and provided > 0:
        return VolatilityEstimate(
            clamp(provided, VOL_MIN, VOL_MAX), VolatilityMethod.LOG_RETURNS, 0
        )

    proxy = calc_volatility_proxy(snapshot.price, price_1h_ago)
    if proxy.vol_ann > PROXY_MIN:
        logger.debug("Volatility for %s from 1h proxy", snapshot.pool_id)
        return proxy
    return VolatilityEstimate(0.0, VolatilityMethod.PROXY, 0)


def enrich_pool(
    snapshot: PoolSnapshot,
    warnings: Sequence[str] = (),
    price_history: Optional[Iterable[PointLike]] = None,
    price_1h_ago: Optional[float] = None,
    interval: str = "hourly",
    now: Optional[datetime] = None,
    settings: Optional[EngineSettings] = None,
) -> PoolIntelligence:
    """Derive pool type, APRs, volatility and health for one snapshot."""
    settings = settings or get_settings()
    t0, t1 = snapshot.token0.symbol, snapshot.token1.symbol
    pool_type = snapshot.pool_type or infer_pool_type(
        t0, t1, snapshot.protocol, snapshot.fee_tier
    )
    bluechip = snapshot.bluechip if snapshot.bluechip is not None else is_bluechip(t0, t1)

    apr = calc_apr_fee(snapshot.tvl, snapshot.fees_24h, snapshot.fees_1h, snapshot.fees_5m)
    apr_total = apr.fee_apr if apr.fee_apr is not None else snapshot.apr

    volatility = resolve_volatility(snapshot, price_history, price_1h_ago, interval)
    if volatility.is_measured:
        health_vol = volatility.vol_ann
    else:
        health_vol = DEFAULT_VOLATILITY
        logger.debug("Default volatility %.2f used for %s", health_vol, snapshot.pool_id)

    health = calc_health_score(
        tvl=snapshot.tvl,
        volume_1h=snapshot.volume_1h,
        fees_1h=snapshot.fees_1h,
        vol_ann=health_vol,
        pool_type=pool_type,
        updated_at=snapshot.updated_at,
        apr_total=apr_total,
        warnings=warnings,
        now=now,
        settings=settings,
    )

    ratio = (
        snapshot.volume_1h / snapshot.tvl
        if snapshot.tvl and snapshot.tvl > 0 and snapshot.volume_1h is not None
        else 0.0
    )

    return PoolIntelligence(
        snapshot=snapshot,
        pool_type=pool_type,
        bluechip=bluechip,
        apr=apr,
        apr_total=apr_total,
        apr_adjusted=calc_apr_adjusted(apr_total, health.penalty_total),
        volatility=volatility,
        volatility_ann=health_vol,
        health=health,
        ratio=ratio,
        warnings=tuple(warnings),
    )


# ── Scoring Pipeline ─────────────────────────────────────────────────────


def score_pool(
    snapshot: PoolSnapshot,
    tracker: TvlTracker,
    composer: Optional[ScoreComposer] = None,
    consensus: Optional[ConsensusResult] = None,
    warnings: Sequence[str] = (),
    price_history: Optional[Iterable[PointLike]] = None,
    price_1h_ago: Optional[float] = None,
    now: Optional[datetime] = None,
    record: bool = True,
    settings: Optional[EngineSettings] = None,
) -> ScoredPool:
    """
    Snapshot-then-score for one pool.

    The snapshot's TVL is recorded in ``tracker`` before the drop lookup
    unless ``record`` is False (the caller already recorded it).
    """
    settings = settings or get_settings()
    composer = composer or ScoreComposer(settings)

    if record:
        tracker.record_tvl(snapshot.pool_id, snapshot.tvl)
    tvl_drop = tracker.get_tvl_drop(snapshot.pool_id, snapshot.tvl)

    intel = enrich_pool(
        snapshot,
        warnings=warnings,
        price_history=price_history,
        price_1h_ago=price_1h_ago,
        now=now,
        settings=settings,
    )
    execution_cost = calculate_execution_cost(snapshot.tvl, snapshot.volume_24h, intel.pool_type)

    score = composer.calculate_score(
        snapshot,
        volatility_ann=intel.volatility.vol_ann if intel.volatility.is_measured else None,
        apr=intel.apr_total,
        tvl_drop=tvl_drop,
        consensus=consensus,
        execution_cost=execution_cost,
        pool_type=intel.pool_type,
        bluechip=intel.bluechip,
    )
    return ScoredPool(
        intelligence=intel,
        score=score,
        tvl_drop=tvl_drop,
        execution_cost=execution_cost,
        consensus=consensus,
    )


def score_pools(
    snapshots: Sequence[PoolSnapshot],
    tracker: TvlTracker,
    secondary: Optional[Mapping[str, SourceMetrics]] = None,
    warnings_by_pool: Optional[Mapping[str, Sequence[str]]] = None,
    now: Optional[datetime] = None,
    settings: Optional[EngineSettings] = None,
) -> List[ScoredPool]:
    """
    Batch pipeline: record all TVLs, run batch consensus when secondary
    figures are supplied, then score each pool.
    """
    settings = settings or get_settings()
    composer = ScoreComposer(settings)
    warnings_by_pool = warnings_by_pool or {}

    tracker.record_batch_tvl((s.pool_id, s.tvl) for s in snapshots)
    consensus = run_batch_consensus(snapshots, secondary) if secondary is not None else {}

    return [
        score_pool(
            snapshot,
            tracker,
            composer=composer,
            consensus=consensus.get(snapshot.pool_id),
            warnings=warnings_by_pool.get(snapshot.pool_id, ()),
            now=now,
            record=False,
            settings=settings,
        )
        for snapshot in snapshots
    ]


# ── Filters / Sorting / Top Picks ────────────────────────────────────────


def apply_pool_filters(
    pools: Iterable[PoolIntelligence],
    chain: Optional[str] = None,
    protocol: Optional[str] = None,
    token: Optional[str] = None,
    bluechip: Optional[bool] = None,
    min_tvl: Optional[float] = None,
    min_health: Optional[float] = None,
    pool_type: Optional[str] = None,
) -> List[PoolIntelligence]:
    result = list(pools)
    if chain:
        result = [p for p in result if p.snapshot.chain == chain]
    if protocol:
        proto = protocol.lower()
        result = [p for p in result if proto in p.snapshot.protocol.lower()]
    if token:
        tok = token.upper()
        result = [
            p
            for p in result
            if tok in p.snapshot.token0.symbol.upper() or tok in p.snapshot.token1.symbol.upper()
        ]
    if bluechip is True:
        result = [p for p in result if p.bluechip]
    if min_tvl is not None:
        result = [p for p in result if p.snapshot.tvl >= min_tvl]
    if min_health is not None:
        result = [p for p in result if p.health_score >= min_health]
    if pool_type:
        wanted = PoolType(pool_type.upper())
        result = [p for p in result if p.pool_type == wanted]
    return result


SORT_KEYS: Dict[str, Callable[[PoolIntelligence], float]] = {
    "tvl": lambda p: p.snapshot.tvl,
    "apr": lambda p: p.apr_total or 0,
    "apr_fee": lambda p: p.apr.fee_apr or 0,
    "apr_adjusted": lambda p: p.apr_adjusted or 0,
    "volume_1h": lambda p: p.snapshot.volume_1h or 0,
    "volume_5m": lambda p: p.snapshot.volume_5m or 0,
    "fees_1h": lambda p: p.snapshot.fees_1h or 0,
    "fees_5m": lambda p: p.snapshot.fees_5m or 0,
    "health_score": lambda p: p.health_score,
    "volatility_ann": lambda p: p.volatility_ann,
    "ratio": lambda p: p.ratio,
}


def sort_pools(
    pools: Iterable[PoolIntelligence], sort_by: str = "tvl", descending: bool = True
) -> List[PoolIntelligence]:
    """Stable sort; unknown keys fall back to TVL."""
    key = SORT_KEYS.get(sort_by, SORT_KEYS["tvl"])
    return sorted(pools, key=key, reverse=descending)


def build_top_recommendations(
    pools: Iterable[PoolIntelligence], limit: int = 3
) -> List[Recommendation]:
    """Healthiest pools first, excluding anything flagged as a honeypot."""
    eligible = [
        p for p in pools if not any("honeypot" in w.lower() for w in p.warnings)
    ]
    ranked = sorted(eligible, key=lambda p: p.health_score, reverse=True)[:limit]

    picks = []
    for rank, pool in enumerate(ranked, 1):
        score = pool.health_score
        if score >= 75:
            mode = RiskMode.AGGRESSIVE
            fee_apr = f"{pool.apr.fee_apr:.1f}%" if pool.apr.fee_apr is not None else "N/A"
            reason = (
                f"High health (score {score}/100) with TVL "
                f"${pool.snapshot.tvl / 1e6:.2f}M. Estimated fee APR {fee_apr}."
            )
        elif score >= 55:
            mode = RiskMode.NORMAL
            depth = "bluechip tokens" if pool.bluechip else "adequate liquidity"
            reason = f"Score {score}/100. Balanced risk/return with {depth}."
        else:
            mode = RiskMode.DEFENSIVE
            reason = f"Score {score}/100. Conservative positioning; monitor TVL and volume."
        picks.append(Recommendation(rank=rank, pool=pool, mode=mode, reason=reason))
    return picks
