#!/usr/bin/env python3
"""
Pool Scout — Cross-DEX Pool Collection via DefiLlama + GeckoTerminal
====================================================================

Collector layer for the scoring engine: turns provider payloads into
``PoolSnapshot`` records and gathers second-source figures for the
consensus check.

Data Sources:
  DefiLlama Yields API : https://yields.llama.fi/pools (primary, ~30 req/min, no key)
  GeckoTerminal API    : /networks/{net}/pools/multi/{addrs} (secondary, ≤30 per call)
  DEXScreener API      : /latest/dex/pairs/{chain}/{pair} (per-pool source)

DefiLlama pool ids are either UUIDs or ``<project>-<chain>-0x…`` slugs;
only 0x addresses take part in cross-source consensus.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from pool_intel.central_config import config
from pool_intel.dexscreener_client import DexScreenerClient
from pool_intel.intelligence import build_top_recommendations
from pool_intel.models import (
    PoolSnapshot,
    PositionRecommendation,
    ScoredPool,
    SourceMetrics,
    TokenInfo,
)
from pool_intel.tokens import is_stablecoin_pair, parse_fee_tier, tick_spacing_for_fee_tier

logger = logging.getLogger(__name__)


# ── Payload Mapping ───────────────────────────────────────────────────────


def _pool_address(entry: Dict[str, Any]) -> str:
    pool_id = str(entry.get("pool") or "")
    last = pool_id.split("-")[-1]
    if last.startswith("0x") and len(last) >= 42:
        return last
    return pool_id


def _chain_key(llama_chain: str) -> str:
    for key, name in config.defillama.CHAIN_NAMES.items():
        if name.lower() == (llama_chain or "").lower():
            return key
    return (llama_chain or "unknown").lower()


def snapshot_from_llama(entry: Dict[str, Any]) -> PoolSnapshot:
    """Map one DefiLlama yields entry onto a ``PoolSnapshot``."""
    symbols = str(entry.get("symbol") or "").replace("/", "-").split("-")
    symbol0 = symbols[0] if symbols and symbols[0] else "UNKNOWN"
    symbol1 = symbols[1] if len(symbols) > 1 and symbols[1] else "UNKNOWN"
    underlying = entry.get("underlyingTokens") or []

    fee_tier = parse_fee_tier(entry.get("poolMeta")) if "%" in str(entry.get("poolMeta") or "") else None
    volume_24h = entry.get("volumeUsd1d")
    fees_24h = volume_24h * fee_tier if volume_24h and fee_tier else None
    apr = entry.get("apyBase")
    if apr is None:
        apr = entry.get("apy")

    return PoolSnapshot(
        chain=_chain_key(entry.get("chain", "")),
        pool_address=_pool_address(entry),
        token0=TokenInfo(symbol=symbol0, address=underlying[0] if underlying else ""),
        token1=TokenInfo(symbol=symbol1, address=underlying[1] if len(underlying) > 1 else ""),
        price=1.0 if is_stablecoin_pair(symbol0, symbol1) else 0.0,
        tvl=float(entry.get("tvlUsd") or 0),
        fee_tier=fee_tier,
        volume_24h=volume_24h,
        fees_24h=fees_24h,
        protocol=entry.get("project", ""),
        tick_spacing=tick_spacing_for_fee_tier(fee_tier),
        apr=apr,
        source="defillama",
    )


def metrics_from_gecko(pool: Dict[str, Any]) -> Optional[SourceMetrics]:
    attrs = pool.get("attributes") or {}
    try:
        tvl = float(attrs.get("reserve_in_usd") or 0)
        volume = float((attrs.get("volume_usd") or {}).get("h24") or 0)
    except (TypeError, ValueError):
        return None
    return SourceMetrics(tvl=tvl, volume_24h=volume)


# ── GeckoTerminal Batch ───────────────────────────────────────────────────


async def fetch_gecko_batch(
    chain: str, addresses: Iterable[str], timeout: Optional[float] = None
) -> Dict[str, SourceMetrics]:
    """
    Second-source TVL/volume keyed by lowercase address.

    Unsupported chains and failed batches yield no entries; the engine
    treats those pools as single-source.
    """
    network = config.geckoterminal.network_id(chain)
    wanted = sorted({a.lower() for a in addresses if a and a.lower().startswith("0x")})
    if network is None or not wanted:
        return {}

    size = config.geckoterminal.MULTI_BATCH_SIZE
    result: Dict[str, SourceMetrics] = {}
    async with httpx.AsyncClient(
        timeout=timeout or config.geckoterminal.TIMEOUT_SECONDS, verify=True
    ) as client:
        for start in range(0, len(wanted), size):
            batch = wanted[start : start + size]
            url = config.geckoterminal.get_multi_pools_url(network, batch)
            try:
                resp = await client.get(url)
                resp.raise_for_status()
                payload = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("GeckoTerminal batch failed (%s, %d pools): %s", chain, len(batch), e)
                continue
            for pool in payload.get("data") or []:
                address = str((pool.get("attributes") or {}).get("address") or "").lower()
                metrics = metrics_from_gecko(pool)
                if address and metrics is not None:
                    result[address] = metrics

    logger.info("GeckoTerminal: %d/%d pools matched on %s", len(result), len(wanted), chain)
    return result


async def collect_consensus_sources(
    snapshot: PoolSnapshot, timeout: Optional[float] = None
) -> Dict[str, SourceMetrics]:
    """
    Per-source figures for one pool: the snapshot's own source plus
    DEXScreener and GeckoTerminal, fetched concurrently under one deadline.
    Failing providers are logged and left out.
    """
    sources: Dict[str, SourceMetrics] = {
        snapshot.source or "primary": SourceMetrics(snapshot.tvl, snapshot.volume_24h or 0.0)
    }
    if not snapshot.pool_address.startswith("0x"):
        return sources

    async def dexscreener() -> Optional[SourceMetrics]:
        return await DexScreenerClient().fetch_source_metrics(snapshot.chain, snapshot.pool_address)

    async def geckoterminal() -> Optional[SourceMetrics]:
        found = await fetch_gecko_batch(snapshot.chain, [snapshot.pool_address], timeout)
        return found.get(snapshot.pool_address.lower())

    names = [n for n in ("dexscreener", "geckoterminal") if n not in sources]
    calls = {"dexscreener": dexscreener, "geckoterminal": geckoterminal}
    try:
        results = await asyncio.wait_for(
            asyncio.gather(*(calls[n]() for n in names), return_exceptions=True),
            timeout=timeout or config.geckoterminal.TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("Consensus sources timed out for %s", snapshot.pool_id)
        return sources

    for name, outcome in zip(names, results):
        if isinstance(outcome, Exception):
            logger.warning("Source %s failed for %s: %s", name, snapshot.pool_id, outcome)
        elif outcome is not None:
            sources[name] = outcome
    return sources


# ── Pool Scout ────────────────────────────────────────────────────────────


class PoolScout:
    """
    Cross-DEX pool discovery powered by the DefiLlama Yields API.

    One HTTP call returns every pool across every DEX and chain; the
    payload is cached for ``CACHE_TTL_SECONDS``.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._cache: Optional[List[Dict]] = None
        self._cache_time: Optional[datetime] = None
        self._cache_ttl_seconds = config.defillama.CACHE_TTL_SECONDS
        self._timeout = timeout or config.defillama.TIMEOUT_SECONDS

    async def _fetch_pools(self) -> List[Dict]:
        """Fetch all pools from DefiLlama yields API (cached)."""
        now = datetime.now()
        if (
            self._cache is not None
            and self._cache_time is not None
            and (now - self._cache_time).total_seconds() < self._cache_ttl_seconds
        ):
            return self._cache

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.get(config.defillama.YIELDS_URL)
            resp.raise_for_status()
            data = resp.json()

        if data.get("status") != "success":
            raise RuntimeError(f"DefiLlama API error: {data.get('status')}")

        self._cache = data.get("data", [])
        self._cache_time = now
        logger.debug("DefiLlama: %d pools cached", len(self._cache))
        return self._cache

    async def search_pools(
        self,
        token_pair: Optional[str] = None,
        network: Optional[str] = None,
        dex: Optional[str] = None,
        min_tvl: float = 100_000,
        sort_by: str = "tvl",
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        Collect snapshots matching the filters.

        Args:
            token_pair: e.g., "WETH/USDC"; both symbols must appear
            network: e.g., "arbitrum"
            dex: DefiLlama project slug, e.g., "uniswap-v3"
            min_tvl: Minimum TVL in USD
            sort_by: "tvl", "apy", "volume" or "efficiency" (vol/tvl)
            limit: Max snapshots to return

        Returns:
            Dict with status, snapshots, metadata
        """
        try:
            entries = await self._fetch_pools()
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.error("DefiLlama fetch failed: %s", e)
            return {"status": "error", "message": f"DefiLlama API error: {e}", "snapshots": []}

        pools = [p for p in entries if (p.get("tvlUsd") or 0) >= min_tvl]

        if token_pair:
            tokens = [
                t.strip().upper()
                for t in token_pair.replace("/", "-").replace(" ", "-").split("-")
                if t.strip()
            ]
            pools = [p for p in pools if all(t in str(p.get("symbol", "")).upper() for t in tokens)]

        if network:
            chain_name = config.defillama.CHAIN_NAMES.get(network.lower(), network)
            pools = [p for p in pools if str(p.get("chain", "")).lower() == chain_name.lower()]

        if dex:
            pools = [p for p in pools if p.get("project") == dex]

        sort_keys = {
            "apy": lambda p: p.get("apy") or 0,
            "tvl": lambda p: p.get("tvlUsd") or 0,
            "volume": lambda p: p.get("volumeUsd1d") or 0,
            "efficiency": lambda p: (p.get("volumeUsd1d") or 0) / max(p.get("tvlUsd") or 1, 1),
        }
        pools.sort(key=sort_keys.get(sort_by, sort_keys["tvl"]), reverse=True)

        snapshots = [snapshot_from_llama(p) for p in pools[:limit]]
        return {
            "status": "success",
            "snapshots": snapshots,
            "total_found": len(snapshots),
            "filters": {
                "token_pair": token_pair,
                "network": network,
                "dex": dex,
                "min_tvl": min_tvl,
                "sort_by": sort_by,
            },
            "source": "DefiLlama Yields API",
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        }


# ── Formatting ────────────────────────────────────────────────────────────


def format_scored_results(scored: Sequence[ScoredPool], title: str = "Pool Scout") -> str:
    """Format scored pools for CLI display."""
    if not scored:
        return "No pools matched.\n💡 Try broadening your search (lower min_tvl or remove network filter)."

    lines = [f"{'=' * 100}", f"  🔭 {title} — {len(scored)} pools scored", f"{'=' * 100}", ""]
    hdr = (
        f"  {'#':>2} {'Pool':16s} {'Chain':10s} {'Type':6s} {'Score':>6s} {'Health':>6s} "
        f"{'APR%':>8s} {'TVL':>14s} {'Risk':>5s} {'Mode':11s} Flags"
    )
    lines.append(hdr)
    lines.append(f"  {'-' * (len(hdr) - 2)}")

    for i, sp in enumerate(scored, 1):
        intel, score = sp.intelligence, sp.score
        apr = f"{intel.apr_total:8.1f}" if intel.apr_total is not None else "     N/A"
        flag = "⚠️ " + score.suspect_reason if score.is_suspect else ""
        lines.append(
            f"  {i:>2} {intel.snapshot.name[:16]:16s} {intel.snapshot.chain[:10]:10s} "
            f"{intel.pool_type.value:6s} {score.total:6.1f} {intel.health_score:6d} {apr:>8s} "
            f"${intel.snapshot.tvl:>13,.0f} {score.risk:5.1f} {score.recommended_mode.value:11s} {flag}"
        )

    picks = build_top_recommendations([sp.intelligence for sp in scored])
    if picks:
        lines.append("")
        lines.append("  🏆 Top picks")
        for pick in picks:
            lines.append(f"  {pick.rank}. {pick.pool.snapshot.name} [{pick.mode.value}] {pick.reason}")

    lines.append(f"\n{'=' * 100}")
    lines.append("  ⚠️  NOT financial advice — always verify before providing liquidity")
    lines.append(f"{'=' * 100}")
    return "\n".join(lines)


def format_position_plans(plans: Sequence[PositionRecommendation]) -> str:
    """Format capital-aware entry plans for CLI display."""
    if not plans:
        return "  No eligible pools for a position plan (all suspect or none scored)."

    lines = [f"  💼 Position plans — ${plans[0].capital:,.0f} capital", ""]
    for plan in plans:
        lines.append(
            f"  {plan.rank}. {plan.scored.intelligence.snapshot.name} [{plan.mode.value}] "
            f"P(favourable) {plan.probability}% · 7d {plan.estimated_gain_pct:.2f}% "
            f"(${plan.estimated_gain_usd:,.2f})"
        )
        lines.append(f"     ▶ Enter : {'; '.join(plan.entry_conditions)}")
        lines.append(f"     ■ Exit  : {'; '.join(plan.exit_conditions)}")
        lines.append(f"     ⚠️  Risks : {'; '.join(plan.main_risks)}")
        lines.append(f"     Valid until {plan.valid_until:%Y-%m-%d %H:%M} UTC")
    return "\n".join(lines)
