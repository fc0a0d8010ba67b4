"""
Token Classification — stablecoins, bluechips, pool type
=========================================================

Symbol-level heuristics the engine needs before it can score a pool:
  - Pool type inference (STABLE / V2 / CL) from the pair and protocol
  - Bluechip flag (both tokens established majors)
  - Fee tier → tick spacing for concentrated-liquidity range snapping

Known symbols are matched after upper-casing and stripping whitespace.

Reference:
  Uniswap V3 Fee Tiers: https://docs.uniswap.org/concepts/protocol/fees
  - 0.01% (100)   → tick spacing 1
  - 0.05% (500)   → tick spacing 10
  - 0.30% (3000)  → tick spacing 60
  - 1.00% (10000) → tick spacing 200
"""

from typing import Optional

from pool_intel.models import PoolType

# ── Known Stablecoin Symbols ────────────────────────────────────────────
# Includes bridged variants (.e, axl, bc). Sources: CoinGecko stablecoin
# category, DeFiLlama stablecoin tracker.

STABLECOIN_SYMBOLS: frozenset = frozenset({
    # USD-pegged, major
    "USDC", "USDT", "DAI", "BUSD", "TUSD", "FRAX", "LUSD",
    "USDP", "GUSD", "SUSD", "USDD", "PYUSD", "GHO",
    "FDUSD", "CRVUSD", "MKUSD", "USDS", "USDE",

    # USD-pegged, bridged variants
    "USDC.E", "USDT.E", "DAI.E", "USDBC", "USDCE", "AXLUSDC",

    # Algorithmic / CDP stables
    "MIM", "DOLA", "ALUSD",
})

# ── Bluechip Symbols ────────────────────────────────────────────────────
# Majors with deep multi-venue liquidity; a pool is bluechip only when
# BOTH sides are in this set.

BLUECHIP_SYMBOLS: frozenset = frozenset({
    "ETH", "WETH", "BTC", "WBTC",
    "USDC", "USDT", "DAI",
    "LINK", "UNI", "ARB", "OP", "MATIC", "WMATIC",
    "SOL", "AVAX", "BNB",
    "AAVE", "CRV", "LDO", "MKR", "COMP", "SNX",
})

# Protocol slugs that name a constant-product AMM
_V2_PROTOCOL_MARKERS = ("v2", "sushiswap", "quickswap", "camelot")

# Fee tier (decimal) → tick spacing, Uniswap V3 factory defaults
FEE_TIER_TICK_SPACING = {
    0.0001: 1,
    0.0005: 10,
    0.003: 60,
    0.01: 200,
}


def _norm(symbol: str) -> str:
    return (symbol or "").strip().upper()


def is_stablecoin(symbol: str) -> bool:
    """
    Check if a token symbol is a known USD stablecoin.

    Examples:
        >>> is_stablecoin("usdc.e")
        True
        >>> is_stablecoin("WETH")
        False
    """
    return _norm(symbol) in STABLECOIN_SYMBOLS


def is_stablecoin_pair(symbol0: str, symbol1: str) -> bool:
    """True if BOTH tokens are stablecoins."""
    return is_stablecoin(symbol0) and is_stablecoin(symbol1)


def is_bluechip(symbol0: str, symbol1: str) -> bool:
    """
    True if both tokens are established majors.

    Examples:
        >>> is_bluechip("WETH", "USDC")
        True
        >>> is_bluechip("WETH", "PEPE")
        False
    """
    return _norm(symbol0) in BLUECHIP_SYMBOLS and _norm(symbol1) in BLUECHIP_SYMBOLS


def infer_pool_type(
    symbol0: str,
    symbol1: str,
    protocol: str = "",
    fee_tier: Optional[float] = None,
) -> PoolType:
    """
    Best-effort AMM family for a pool the provider did not tag.

    Order: stable-stable pair → STABLE; protocol slug naming a V2 AMM
    (unless it also says v3) → V2; any known fee tier → CL; else V2.

    Examples:
        >>> infer_pool_type("USDC", "USDT", "uniswap-v3", 0.0001)
        <PoolType.STABLE: 'STABLE'>
        >>> infer_pool_type("WETH", "USDC", "uniswap-v2")
        <PoolType.V2: 'V2'>
        >>> infer_pool_type("WETH", "USDC", "uniswap-v3", 0.0005)
        <PoolType.CL: 'CL'>
    """
    if is_stablecoin_pair(symbol0, symbol1):
        return PoolType.STABLE

    proto = (protocol or "").lower()
    if "v3" not in proto and any(marker in proto for marker in _V2_PROTOCOL_MARKERS):
        return PoolType.V2

    if fee_tier is not None:
        return PoolType.CL

    return PoolType.V2


def tick_spacing_for_fee_tier(fee_tier: Optional[float]) -> Optional[int]:
    """
    Default tick spacing for a Uniswap V3 fee tier, None if non-standard.

    Examples:
        >>> tick_spacing_for_fee_tier(0.003)
        60
        >>> tick_spacing_for_fee_tier(0.0025) is None
        True
    """
    if fee_tier is None:
        return None
    return FEE_TIER_TICK_SPACING.get(round(fee_tier, 6))


def parse_fee_tier(value) -> Optional[float]:
    """
    Normalize provider fee-tier formats to a decimal fraction.

    Accepts decimals (0.003), percent strings ("0.3%"), and Uniswap
    hundredths-of-a-bip integers (3000).

    Examples:
        >>> parse_fee_tier("0.05%")
        0.0005
        >>> parse_fee_tier(3000)
        0.003
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.endswith("%"):
                return round(float(text[:-1]) / 100, 6)
            value = float(text)
        except ValueError:
            return None
    value = float(value)
    if value <= 0:
        return None
    if value >= 1:
        return round(value / 1_000_000, 6)
    return round(value, 6)
