"""
Pool Intel — Command Implementations
====================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher.  Each public function corresponds to a
subcommand (info, score, scout, range).

Handlers print for the user and return True on success; library
modules underneath only log.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from pool_intel.central_config import (
    PROJECT_NAME,
    PROJECT_VERSION,
    EngineSettings,
    get_settings,
    known_chains,
)
from pool_intel.consensus import run_single_pool_consensus
from pool_intel.dexscreener_client import DexScreenerClient
from pool_intel.intelligence import score_pool, score_pools
from pool_intel.models import PoolType, RiskMode
from pool_intel.range_model import calc_il_risk, calc_range_recommendation, calc_user_fees
from pool_intel.recommendation import build_position_recommendations
from pool_intel.tvl_tracker import TvlTracker

logger = logging.getLogger(__name__)

DISCLAIMER = "⚠️  Educational tool — NOT financial advice. Verify on-chain before acting."


# ── Output Helpers ───────────────────────────────────────────────────────


def _print_range(price: float, vol_ann: float, horizon: float, mode: RiskMode,
                 tick_spacing: int | None, pool_type: PoolType,
                 settings: EngineSettings) -> None:
    rng = calc_range_recommendation(
        price, vol_ann, horizon, mode, tick_spacing, pool_type, settings=settings
    )
    il = calc_il_risk(price, rng.upper, vol_ann, horizon, lower=rng.lower)
    print(f"\n📐 Range — {mode.value} ({horizon:g}d horizon, σ {vol_ann * 100:.1f}%)")
    print(f"  🔻 Lower     : {rng.lower:,.6f}")
    print(f"  🔺 Upper     : {rng.upper:,.6f}")
    print(f"  ↔️  Width     : ±{rng.width_pct * 100:.2f}%")
    if rng.lower_tick is not None:
        print(f"  🎯 Ticks     : [{rng.lower_tick}, {rng.upper_tick}] (spacing {tick_spacing})")
    print(f"  📊 P(out)    : {rng.prob_out_of_range * 100:.1f}%")
    print(f"  📉 IL @ lower: {il.il_at_lower_pct:.2f}%")
    print(f"  📉 IL @ upper: {il.il_at_upper_pct:.2f}%")


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info(settings: EngineSettings | None = None) -> bool:
    """Display system and engine information."""
    settings = settings or get_settings()
    w = settings.weights
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Pools      : Uniswap V3 forks (CL), constant-product (V2), stableswap")
    print(f"🌐 Chains     : {', '.join(known_chains())}")
    print("📡 Sources    : DefiLlama Yields, GeckoTerminal, DEXScreener (free, no key)")
    print()
    print("🧮 Engine:")
    print("   Fee APR       — 24h → 1h×24 → 5m×288 fallback")
    print("   Volatility    — log-returns σ·√periods, 1h proxy fallback")
    print("   Health        — weighted signals × multiplicative gates")
    print("   Range / IL    — log-normal width, tick-aligned, P(out of range)")
    print("   Consensus     — cross-source TVL/volume divergence → 0-15 pts")
    print("   Execution     — AMM price impact at $100 / $1K → 0-10 pts")
    print("   TVL tracker   — 24h peak drop → 0-20 pts")
    print(f"   Score weights — health {w.health:g} / returns {w.returns:g} / risk {w.risk:g}")
    print()
    print("🔗 Quick Start:")
    print("   pool-intel score 0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640 --network ethereum")
    print("   pool-intel scout WETH/USDC --network arbitrum")
    print("   pool-intel range 3000 --volatility 0.6 --mode NORMAL --tick-spacing 60")
    print()
    print("📚 References:")
    print("   Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf")
    print("   DefiLlama Yields API  : https://defillama.com/docs/api")
    print("   GeckoTerminal API     : https://www.geckoterminal.com/dex-api")
    print("   DEXScreener API       : https://docs.dexscreener.com/api/reference")
    return True


async def cmd_score(
    address: str,
    network: str = "ethereum",
    capital: float = 10_000,
    mode: str | None = None,
    horizon: float = 7,
    consensus: bool = True,
    settings: EngineSettings | None = None,
) -> bool:
    """Fetch one pool from DEXScreener, score it and print range/fee/IL."""
    from pool_scout import collect_consensus_sources

    settings = settings or get_settings()
    result = await DexScreenerClient().fetch_pool_snapshot(network, address)
    if result["status"] != "success":
        print(f"\n❌ {result['message']}")
        return False

    snapshot = result["snapshot"]
    agreement = None
    if consensus:
        sources = await collect_consensus_sources(snapshot, settings.collector.timeout_seconds)
        agreement = run_single_pool_consensus(snapshot, sources, primary_source=snapshot.source)

    scored = score_pool(
        snapshot,
        TvlTracker(settings.tracker),
        consensus=agreement,
        price_1h_ago=result["price_1h_ago"],
        settings=settings,
    )
    intel, score = scored.intelligence, scored.score

    print(f"\n📊 Pool Score — {snapshot.name} ({snapshot.chain.upper()})")
    print("=" * 55)
    print(f"  🏪 Protocol : {snapshot.protocol or 'unknown'} [{intel.pool_type.value}]")
    print(f"  💰 TVL      : ${snapshot.tvl:,.2f}")
    print(f"  📈 Vol 24h  : ${snapshot.volume_24h or 0:,.2f}")
    if intel.apr_total is not None:
        print(f"  🔥 APR      : {intel.apr_total:.1f}% ({intel.apr.source.value})")
    else:
        print("  🔥 APR      : N/A (no fee data)")
    print(f"  ❤️  Health   : {intel.health_score}/100")
    print(f"  🏆 Score    : {score.total:.1f}/100 "
          f"(health {score.health:.1f} + returns {score.returns:.1f} − risk {score.risk:.1f})")
    print(f"  🎚️  Mode     : {score.recommended_mode.value}")
    print(f"  ⚡ Execution: {scored.execution_cost.reason}")
    if agreement is not None:
        print(f"  🔁 Sources  : {agreement.reason}")
    if score.is_suspect:
        print(f"  ⚠️  Suspect  : {score.suspect_reason}")

    chosen = RiskMode(mode.upper()) if mode else score.recommended_mode
    if snapshot.price > 0:
        _print_range(snapshot.price, intel.volatility_ann, horizon, chosen,
                     snapshot.tick_spacing, intel.pool_type, settings)
        fees = calc_user_fees(snapshot.tvl, capital, chosen, snapshot.fees_24h,
                              snapshot.fees_1h, snapshot.fees_5m, settings=settings)
        print(f"\n💵 Fees on ${capital:,.0f}: "
              f"${fees.expected_fees_24h:,.2f}/day · ${fees.expected_fees_30d:,.2f}/30d")

    print(f"\n{DISCLAIMER}")
    return True


async def cmd_scout(
    pair: str,
    network: str | None = None,
    dex: str | None = None,
    sort: str = "tvl",
    limit: int = 15,
    min_tvl: float = 100_000,
    consensus: bool = True,
    capital: float = 10_000,
    settings: EngineSettings | None = None,
) -> bool:
    """Search pools via DefiLlama, cross-check with GeckoTerminal, rank by score."""
    from pool_scout import (
        PoolScout,
        fetch_gecko_batch,
        format_position_plans,
        format_scored_results,
    )

    settings = settings or get_settings()
    if capital < 0:
        print(f"\n❌ capital must be non-negative, got {capital:g}")
        return False
    print(
        f"\n🔭 Searching for {pair} pools"
        + (f" on {network.title()}" if network else "")
        + (f" ({dex})" if dex else "")
        + "..."
    )

    result = await PoolScout().search_pools(
        token_pair=pair, network=network, dex=dex, min_tvl=min_tvl, sort_by=sort, limit=limit
    )
    if result["status"] != "success":
        print(f"❌ {result.get('message', 'Unknown error')}")
        return False

    snapshots = result["snapshots"]
    secondary = None
    if consensus and snapshots:
        by_chain = defaultdict(list)
        for snap in snapshots:
            by_chain[snap.chain].append(snap.pool_address)
        secondary = {}
        for chain, addresses in by_chain.items():
            secondary.update(
                await fetch_gecko_batch(chain, addresses, settings.collector.timeout_seconds)
            )

    scored = score_pools(snapshots, TvlTracker(settings.tracker), secondary=secondary,
                         settings=settings)
    scored.sort(key=lambda sp: sp.score.total, reverse=True)
    print(format_scored_results(scored, title=f"Pool Scout — {pair}"))
    print()
    print(format_position_plans(build_position_recommendations(scored, capital, settings=settings)))
    return True


def cmd_range(
    price: float,
    volatility: float,
    horizon: float = 7,
    mode: str = "NORMAL",
    tick_spacing: int | None = None,
    pool_type: str = "CL",
    settings: EngineSettings | None = None,
) -> bool:
    """Offline range / IL calculator."""
    settings = settings or get_settings()
    try:
        _print_range(price, volatility, horizon, RiskMode(mode.upper()), tick_spacing,
                     PoolType(pool_type.upper()), settings)
    except ValueError as e:
        print(f"\n❌ {e}")
        return False
    return True
