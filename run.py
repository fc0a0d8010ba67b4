#!/usr/bin/env python3
"""
Pool Intel -- Liquidity Pool Quality & Risk Scoring
===================================================

Scores liquidity pools from live provider data and recommends
concentrated-liquidity ranges.

Usage:
  python run.py score  <0x…> --network <net>                    Score one pool (DEXScreener)
  python run.py score  <0x…> --mode DEFENSIVE --capital 5000     Range/fees for a chosen mode
  python run.py scout  WETH/USDC                                 Rank pools for a pair (DefiLlama)
  python run.py scout  WETH/USDC --network arbitrum              Filter by network
  python run.py scout  WETH/USDC --capital 25000                 Position plans for $25K
  python run.py range  3000 --volatility 0.6                     Offline range / IL calculator
  python run.py info                                             Engine overview

Global options:
  --config <file.yaml>   Engine settings (weights, thresholds, windows)
  --log-level <LEVEL>    DEBUG, INFO, WARNING (default), ERROR

Sources:
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  DEXScreener API       : https://docs.dexscreener.com/api/reference
  GeckoTerminal API     : https://www.geckoterminal.com/dex-api
  DefiLlama Yields API  : https://defillama.com/docs/api
"""

import sys
import asyncio
import argparse
import logging

from pool_intel.central_config import PROJECT_VERSION, load_settings
from pool_intel.commands import cmd_info, cmd_range, cmd_score, cmd_scout
from pool_intel.models import RiskMode


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pool-intel",
        description=f"Pool Intel v{PROJECT_VERSION} — Liquidity Pool Scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pool-intel score 0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640 --network ethereum
  pool-intel score 0xC6962004f452bE9203591991D15f6b388e09E8D0 --network arbitrum --mode AGGRESSIVE
  pool-intel scout WETH/USDC --network arbitrum --limit 10
  pool-intel scout USDC/USDT --min-tvl 1000000 --no-consensus
  pool-intel range 3000 --volatility 0.6 --horizon 14 --tick-spacing 60
  POOL_INTEL_WEIGHTS__HEALTH=45 pool-intel scout WETH/USDC

Risk modes (range z-score, assumed time in range):
  DEFENSIVE   z 0.8, 55%
  NORMAL      z 1.2, 75%
  AGGRESSIVE  z 1.8, 95%
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"Pool Intel v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "--config", type=str, default=None, help="YAML settings file (optional)"
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("info", help="Engine overview")

    score_p = sub.add_parser("score", help="Score one pool (DEXScreener + consensus)")
    score_p.add_argument("address", help="Pool contract address (0x…)")
    score_p.add_argument(
        "--network",
        type=str,
        default="ethereum",
        help="Network: ethereum, arbitrum, base, polygon, optimism, bsc (default: ethereum)",
    )
    score_p.add_argument(
        "--capital", type=float, default=10_000, help="Capital in USD for fee estimate (default: 10000)"
    )
    score_p.add_argument(
        "--mode",
        type=str.upper,
        default=None,
        choices=[m.value for m in RiskMode],
        help="Risk mode for the range (default: recommended mode)",
    )
    score_p.add_argument(
        "--horizon", type=float, default=7, help="Holding horizon in days (default: 7)"
    )
    score_p.add_argument(
        "--no-consensus", action="store_true", help="Skip the cross-source check"
    )

    scout_p = sub.add_parser("scout", help="Rank pools for a token pair (DefiLlama)")
    scout_p.add_argument("pair", help="Token pair, e.g. WETH/USDC")
    scout_p.add_argument("--network", type=str, default=None, help="Filter by network")
    scout_p.add_argument(
        "--dex", type=str, default=None, help="DefiLlama project slug, e.g. uniswap-v3"
    )
    scout_p.add_argument(
        "--sort",
        type=str,
        default="tvl",
        help="Pre-selection order: tvl, apy, volume, efficiency (default: tvl)",
    )
    scout_p.add_argument("--limit", type=int, default=15, help="Max results (default: 15)")
    scout_p.add_argument(
        "--min-tvl", type=float, default=100_000, help="Minimum TVL in USD (default: 100000)"
    )
    scout_p.add_argument(
        "--no-consensus", action="store_true", help="Skip the GeckoTerminal cross-check"
    )
    scout_p.add_argument(
        "--capital", type=float, default=10_000, help="Capital in USD for position plans (default: 10000)"
    )

    range_p = sub.add_parser("range", help="Offline range / IL calculator")
    range_p.add_argument("price", type=float, help="Current price")
    range_p.add_argument(
        "--volatility", type=float, required=True, help="Annualized volatility (0.6 = 60%%)"
    )
    range_p.add_argument("--horizon", type=float, default=7, help="Horizon in days (default: 7)")
    range_p.add_argument(
        "--mode",
        type=str.upper,
        default="NORMAL",
        choices=[m.value for m in RiskMode],
        help="Risk mode (default: NORMAL)",
    )
    range_p.add_argument(
        "--tick-spacing", type=int, default=None, help="Align to ticks (1, 10, 60, 200)"
    )
    range_p.add_argument(
        "--pool-type",
        type=str.upper,
        default="CL",
        choices=["CL", "V2", "STABLE"],
        help="Pool type (STABLE caps the width at ±3%%)",
    )

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        print(f"❌ Invalid config: {e}")
        return 1

    if args.command == "info":
        return 0 if cmd_info(settings=settings) else 1

    if args.command == "score":
        ok = asyncio.run(
            cmd_score(
                address=args.address,
                network=args.network,
                capital=args.capital,
                mode=args.mode,
                horizon=args.horizon,
                consensus=not args.no_consensus,
                settings=settings,
            )
        )
        return 0 if ok else 1

    if args.command == "scout":
        ok = asyncio.run(
            cmd_scout(
                pair=args.pair,
                network=args.network,
                dex=args.dex,
                sort=args.sort,
                limit=args.limit,
                min_tvl=args.min_tvl,
                consensus=not args.no_consensus,
                capital=args.capital,
                settings=settings,
            )
        )
        return 0 if ok else 1

    if args.command == "range":
        ok = cmd_range(
            price=args.price,
            volatility=args.volatility,
            horizon=args.horizon,
            mode=args.mode,
            tick_spacing=args.tick_spacing,
            pool_type=args.pool_type,
            settings=settings,
        )
        return 0 if ok else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
