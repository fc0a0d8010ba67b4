"""
Consensus Detector — cross-provider divergence → inconsistency penalty
=======================================================================

Compares TVL and 24h volume for the same pool across data providers.

  divergence(a, b) = (max − min) / max × 100      both > 0
                   = 100                           exactly one side ≤ 0
                   = 0                             both ≤ 0

  penalty ladder:  ≤10% → 0, ≤20% → 3, ≤30% → 7, ≤50% → 10, else 15

A pool's penalty is driven by the larger of its TVL and volume
divergences. Fewer than two sources never penalizes.

The engine does no I/O here: the collector layer fetches the secondary
figures (see ``pool_scout.collect_consensus_sources``) and hands them in.
"""

import logging
from itertools import combinations
from typing import Dict, Iterable, Mapping, Optional

from pool_intel.models import ConsensusResult, PoolSnapshot, SourceMetrics

logger = logging.getLogger(__name__)

PRIMARY_SOURCE = "defillama"
SECONDARY_SOURCE = "geckoterminal"

AGREEMENT_THRESHOLD = 10.0

# (max divergence %, penalty points), checked in order
_PENALTY_LADDER = (
    (10.0, 0),
    (20.0, 3),
    (30.0, 7),
    (50.0, 10),
)
MAX_INCONSISTENCY_PENALTY = 15


def calc_divergence(a: Optional[float], b: Optional[float]) -> float:
    """Percentage disagreement between two reports of the same metric."""
    a = a or 0.0
    b = b or 0.0
    if a <= 0 and b <= 0:
        return 0.0
    if a <= 0 or b <= 0:
        return 100.0
    high, low = max(a, b), min(a, b)
    return (high - low) / high * 100


def divergence_to_penalty(divergence: float) -> int:
    for limit, penalty in _PENALTY_LADDER:
        if divergence <= limit:
            return penalty
    return MAX_INCONSISTENCY_PENALTY


def _is_comparable(address: str) -> bool:
    return (address or "").lower().startswith("0x")


def _single_source(
    pool_address: str,
    chain: str,
    tvl_by_source: Dict[str, float],
    volume_by_source: Dict[str, float],
    reason: str,
) -> ConsensusResult:
    return ConsensusResult(
        pool_address=pool_address,
        chain=chain,
        tvl_by_source=tvl_by_source,
        volume_by_source=volume_by_source,
        max_divergence=0.0,
        tvl_divergence=0.0,
        volume_divergence=0.0,
        sources=tuple(tvl_by_source),
        inconsistency_penalty=0,
        reason=reason,
    )


def _fmt_k(value: float) -> str:
    return f"${(value or 0) / 1e3:.0f}K"


# ── Batch ────────────────────────────────────────────────────────────────


def run_batch_consensus(
    pools: Iterable[PoolSnapshot],
    secondary: Mapping[str, SourceMetrics],
    primary_source: str = PRIMARY_SOURCE,
    secondary_source: str = SECONDARY_SOURCE,
) -> Dict[str, ConsensusResult]:
    """
    Compare each primary-source pool against one secondary source.

    Args:
        pools: snapshots from the primary source; only 0x addresses take part.
        secondary: secondary figures keyed by lower-cased pool address.

    Returns:
        ``{pool_id: ConsensusResult}``
    """
    results: Dict[str, ConsensusResult] = {}
    for pool in pools:
        if not _is_comparable(pool.pool_address):
            continue

        tvl_by_source = {primary_source: pool.tvl}
        volume_by_source = {primary_source: pool.volume_24h or 0.0}
        other = secondary.get(pool.pool_address.lower())
        if other is None:
            results[pool.pool_id] = _single_source(
                pool.pool_address,
                pool.chain,
                tvl_by_source,
                volume_by_source,
                "single source: no comparison possible",
            )
            continue

        tvl_by_source[secondary_source] = other.tvl
        volume_by_source[secondary_source] = other.volume_24h

        tvl_div = calc_divergence(pool.tvl, other.tvl)
        vol_div = calc_divergence(pool.volume_24h, other.volume_24h)
        max_div = max(tvl_div, vol_div)
        penalty = divergence_to_penalty(max_div)

        if max_div <= AGREEMENT_THRESHOLD:
            reason = f"sources agree ({max_div:.1f}% divergence)"
        else:
            parts = []
            if tvl_div > AGREEMENT_THRESHOLD:
                parts.append(
                    f"TVL diverges {tvl_div:.1f}% ({_fmt_k(pool.tvl)} vs {_fmt_k(other.tvl)})"
                )
            if vol_div > AGREEMENT_THRESHOLD:
                parts.append(
                    f"Vol diverges {vol_div:.1f}% "
                    f"({_fmt_k(pool.volume_24h)} vs {_fmt_k(other.volume_24h)})"
                )
            reason = "; ".join(parts)

        if penalty > 0:
            logger.warning(
                "Consensus divergence for %s on %s: tvl=%.1f%% vol=%.1f%% penalty=%d",
                pool.name,
                pool.chain,
                tvl_div,
                vol_div,
                penalty,
            )

        results[pool.pool_id] = ConsensusResult(
            pool_address=pool.pool_address,
            chain=pool.chain,
            tvl_by_source=tvl_by_source,
            volume_by_source=volume_by_source,
            max_divergence=max_div,
            tvl_divergence=tvl_div,
            volume_divergence=vol_div,
            sources=tuple(tvl_by_source),
            inconsistency_penalty=penalty,
            reason=reason,
        )

    penalized = sum(1 for r in results.values() if r.inconsistency_penalty > 0)
    logger.info("Consensus: %d pools compared, %d with divergence penalty", len(results), penalized)
    return results


# ── Single Pool ──────────────────────────────────────────────────────────


def _max_pairwise(values: Iterable[float]) -> float:
    reported = [v for v in values if v is not None and v > 0]
    return max((calc_divergence(a, b) for a, b in combinations(reported, 2)), default=0.0)


def run_single_pool_consensus(
    pool: PoolSnapshot,
    sources: Mapping[str, SourceMetrics],
    primary_source: str = "primary",
) -> ConsensusResult:
    """
    Max pairwise divergence across the primary snapshot and every other source.

    Only positive reports enter the pairwise comparison, so a provider that
    returns zero for a metric neither corroborates nor contradicts it.
    """
    tvl_by_source = {primary_source: pool.tvl}
    volume_by_source = {primary_source: pool.volume_24h or 0.0}

    if not _is_comparable(pool.pool_address):
        return _single_source(
            pool.pool_address,
            pool.chain,
            tvl_by_source,
            volume_by_source,
            "non-0x address: consensus not applicable",
        )

    for name, metrics in sources.items():
        if name == primary_source:
            continue
        tvl_by_source[name] = metrics.tvl
        volume_by_source[name] = metrics.volume_24h

    names = tuple(tvl_by_source)
    if len(names) < 2:
        return _single_source(
            pool.pool_address,
            pool.chain,
            tvl_by_source,
            volume_by_source,
            "single source: no comparison possible",
        )

    tvl_div = _max_pairwise(tvl_by_source.values())
    vol_div = _max_pairwise(volume_by_source.values())
    max_div = max(tvl_div, vol_div)
    penalty = divergence_to_penalty(max_div)

    if max_div <= AGREEMENT_THRESHOLD:
        reason = f"{len(names)} sources agree ({max_div:.1f}% max divergence)"
    else:
        reason = f"divergence {max_div:.1f}% across {', '.join(names)}"

    if penalty > 0:
        logger.warning(
            "Single-pool consensus %s on %s: tvl=%.1f%% vol=%.1f%% penalty=%d",
            pool.pool_address,
            pool.chain,
            tvl_div,
            vol_div,
            penalty,
        )

    return ConsensusResult(
        pool_address=pool.pool_address,
        chain=pool.chain,
        tvl_by_source=tvl_by_source,
        volume_by_source=volume_by_source,
        max_divergence=max_div,
        tvl_divergence=tvl_div,
        volume_divergence=vol_div,
        sources=names,
        inconsistency_penalty=penalty,
        reason=reason,
    )
