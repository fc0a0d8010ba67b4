#!/usr/bin/env python3
"""
Pool Intel — DEXScreener Collector
==================================
Based on the official documentation: https://docs.dexscreener.com/api/reference

Turns one DEXScreener pair into a ``PoolSnapshot`` and serves as a
consensus source (TVL + 24h volume).

Endpoint: /latest/dex/pairs/{chainId}/{pairId}
Rate limit: 300 requests/minute (no key)

DEXScreener reports no fee figures; when the pair's labels carry a fee
tier, fee windows are derived as volume × fee tier, otherwise they stay
unknown and the engine falls back to its estimated APR path.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from pool_intel.central_config import config
from pool_intel.models import PoolSnapshot, SourceMetrics, TokenInfo
from pool_intel.tokens import parse_fee_tier, tick_spacing_for_fee_tier

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


def _float(value: Any) -> Optional[float]:
    """Provider numbers arrive as str, int, float or null."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _fee_tier_from_labels(labels) -> Optional[float]:
    for label in labels or ():
        tier = parse_fee_tier(label) if "%" in str(label) else None
        if tier is not None:
            return tier
    return None


def snapshot_from_pair(pair: Dict[str, Any], chain: Optional[str] = None) -> PoolSnapshot:
    """Map a DEXScreener pair object onto a ``PoolSnapshot``."""
    base = pair.get("baseToken") or {}
    quote = pair.get("quoteToken") or {}
    liquidity = pair.get("liquidity") or {}
    volume = pair.get("volume") or {}

    fee_tier = _fee_tier_from_labels(pair.get("labels"))
    volume_24h = _float(volume.get("h24"))
    volume_1h = _float(volume.get("h1"))
    volume_5m = _float(volume.get("m5"))

    def fees(window_volume: Optional[float]) -> Optional[float]:
        if fee_tier is None or window_volume is None:
            return None
        return window_volume * fee_tier

    dex_id = pair.get("dexId") or ""
    labels = [str(label).lower() for label in pair.get("labels") or ()]
    protocol = f"{dex_id}-{labels[0]}" if labels and labels[0] in ("v2", "v3", "v4") else dex_id

    return PoolSnapshot(
        chain=chain or pair.get("chainId", "unknown"),
        pool_address=pair.get("pairAddress", ""),
        token0=TokenInfo(symbol=base.get("symbol", "UNK"), address=base.get("address", "")),
        token1=TokenInfo(symbol=quote.get("symbol", "UNK"), address=quote.get("address", "")),
        price=_float(pair.get("priceUsd")) or 0.0,
        tvl=_float(liquidity.get("usd")) or 0.0,
        fee_tier=fee_tier,
        volume_24h=volume_24h,
        volume_1h=volume_1h,
        volume_5m=volume_5m,
        fees_24h=fees(volume_24h),
        fees_1h=fees(volume_1h),
        fees_5m=fees(volume_5m),
        updated_at=datetime.now(timezone.utc),
        protocol=protocol,
        tick_spacing=tick_spacing_for_fee_tier(fee_tier),
        source="dexscreener",
    )


def price_1h_ago_from_pair(pair: Dict[str, Any]) -> Optional[float]:
    """Back out the price one hour ago from ``priceChange.h1`` (percent)."""
    price = _float(pair.get("priceUsd"))
    change = _float((pair.get("priceChange") or {}).get("h1"))
    if not price or change is None or change <= -100:
        return None
    return price / (1 + change / 100)


class DexScreenerClient:
    """Official DEXScreener API client."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or config.dexscreener.TIMEOUT_SECONDS

    async def get_pair(self, chain: str, address: str) -> Optional[Dict[str, Any]]:
        """
        Raw pair object for ``address`` on ``chain``, None when not listed.

        Raises ``ValueError`` for an unsupported chain and lets
        ``httpx.HTTPError`` propagate to the caller.
        """
        chain_id = config.dexscreener.SUPPORTED_CHAINS.get(chain.lower())
        if chain_id is None:
            raise ValueError(
                f"Network {chain} not supported. "
                f"Available: {sorted(set(config.dexscreener.SUPPORTED_CHAINS.values()))}"
            )

        url = config.dexscreener.get_pair_url(chain_id, address)
        logger.debug("DEXScreener GET %s", url)
        async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            data = response.json()

        pairs = data.get("pairs") or []
        if not pairs:
            logger.info("Pair %s not listed on %s", address[:12], chain)
            return None
        return pairs[0]

    async def fetch_source_metrics(self, chain: str, address: str) -> Optional[SourceMetrics]:
        """TVL and 24h volume for consensus, None when the pair is unknown."""
        pair = await self.get_pair(chain, address)
        if pair is None:
            return None
        snapshot = snapshot_from_pair(pair, chain)
        return SourceMetrics(tvl=snapshot.tvl, volume_24h=snapshot.volume_24h or 0.0)

    async def fetch_pool_snapshot(self, chain: str, address: str) -> Dict[str, Any]:
        """
        Collect one pool as a status dict.

        success → {"status", "snapshot", "price_1h_ago", "timestamp"}
        error   → {"status", "message", "timestamp"}
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        if not ADDRESS_RE.fullmatch(address or ""):
            return {
                "status": "error",
                "message": f"Invalid address: {address}. Must be 0x followed by 40 hex characters.",
                "timestamp": timestamp,
            }

        try:
            pair = await self.get_pair(chain, address)
        except ValueError as e:
            return {"status": "error", "message": str(e), "timestamp": timestamp}
        except httpx.TimeoutException:
            logger.warning("DEXScreener timeout for %s on %s", address[:12], chain)
            return {"status": "error", "message": "Timeout fetching pool data", "timestamp": timestamp}
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            logger.warning("DEXScreener HTTP %d for %s", code, address[:12])
            message = "Rate limit reached. Please wait and try again." if code == 429 else f"HTTP Error {code}"
            return {"status": "error", "message": message, "timestamp": timestamp}
        except httpx.HTTPError as e:
            logger.warning("DEXScreener request failed: %s", e)
            return {"status": "error", "message": "Network request failed. Please try again.", "timestamp": timestamp}

        if pair is None:
            return {
                "status": "error",
                "message": f"Pool {address[:12]}... not found on {chain}",
                "timestamp": timestamp,
            }

        return {
            "status": "success",
            "snapshot": snapshot_from_pair(pair, config.dexscreener.SUPPORTED_CHAINS[chain.lower()]),
            "price_1h_ago": price_1h_ago_from_pair(pair),
            "timestamp": timestamp,
        }
