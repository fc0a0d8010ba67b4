"""
Scoring Engine Tests
====================

Covers the penalty producers and the composer:
  - consensus.py       (divergence, penalty ladder, batch + single pool)
  - execution_cost.py  (price impact per pool type, penalty ladder)
  - tvl_tracker.py     (debounce, 24h window, eviction, drop penalty)
  - score.py           (sub-score tiers, totals, modes, suspect flags, fail-closed)
  - intelligence.py    (enrichment, pipeline, filters, top picks)
  - recommendation.py  (capital-aware position plans)

The tracker takes an injected clock, so no test sleeps.
All tests are offline.
"""

from datetime import datetime, timezone

import pytest

from pool_intel.central_config import EngineSettings, TrackerSettings
from pool_intel.consensus import (
    calc_divergence,
    divergence_to_penalty,
    run_batch_consensus,
    run_single_pool_consensus,
)
from pool_intel.execution_cost import (
    calculate_execution_cost,
    estimate_price_impact,
    impact_to_penalty,
)
from pool_intel.intelligence import (
    apply_pool_filters,
    build_top_recommendations,
    enrich_pool,
    score_pool,
    score_pools,
    sort_pools,
)
from pool_intel.models import (
    AprSource,
    ConsensusResult,
    PoolSnapshot,
    PoolType,
    PricePoint,
    RiskMode,
    SourceMetrics,
    TokenInfo,
    TvlDropResult,
    VolatilityMethod,
)
from pool_intel.range_model import calc_range_recommendation
from pool_intel.score import (
    ScoreComposer,
    age_score,
    fee_efficiency,
    liquidity_stability,
    volatility_penalty,
    volume_consistency,
    volume_tvl_ratio_score,
)
from pool_intel.tvl_tracker import TvlTracker, liquidity_drop_penalty


# ── Helpers ──────────────────────────────────────────────────────────────

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ADDR_A = "0x" + "a" * 40
ADDR_B = "0x" + "b" * 40
ADDR_C = "0x" + "c" * 40


def make_snapshot(**overrides) -> PoolSnapshot:
    fields = dict(
        chain="ethereum",
        pool_address=ADDR_A,
        token0=TokenInfo("WETH"),
        token1=TokenInfo("USDC", decimals=6),
        price=3000.0,
        tvl=20_000_000.0,
        fee_tier=0.003,
        volume_24h=5_000_000.0,
        volume_1h=200_000.0,
        fees_24h=12_000.0,
        fees_1h=500.0,
        updated_at=NOW,
        protocol="uniswap-v3",
    )
    fields.update(overrides)
    return PoolSnapshot(**fields)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


HOUR = 3600


# ═══════════════════════════════════════════════════════════════════════════
# 1. Consensus
# ═══════════════════════════════════════════════════════════════════════════


class TestDivergence:
    @pytest.mark.parametrize("a,b,expected", [
        (100, 100, 0.0),
        (100, 50, 50.0),
        (50, 100, 50.0),
        (100, 0, 100.0),
        (None, 100, 100.0),
        (0, 0, 0.0),
        (None, None, 0.0),
    ])
    def test_values(self, a, b, expected):
        assert calc_divergence(a, b) == pytest.approx(expected)

    @pytest.mark.parametrize("divergence,penalty", [
        (0, 0), (10, 0), (10.5, 3), (20, 3), (25, 7), (30, 7),
        (45, 10), (50, 10), (50.5, 15), (100, 15),
    ])
    def test_penalty_ladder(self, divergence, penalty):
        assert divergence_to_penalty(divergence) == penalty

    def test_penalty_non_decreasing(self):
        penalties = [divergence_to_penalty(d / 2) for d in range(0, 201)]
        assert penalties == sorted(penalties)
        assert max(penalties) == 15


class TestBatchConsensus:
    def test_batch(self):
        pools = [
            make_snapshot(pool_address=ADDR_A.upper().replace("0X", "0x"), tvl=1_000_000, volume_24h=100_000),
            make_snapshot(pool_address=ADDR_B, tvl=1_000_000, volume_24h=200_000),
            make_snapshot(pool_address=ADDR_C, tvl=1_000_000, volume_24h=50_000),
            make_snapshot(pool_address="a1b2c3d4-uuid", tvl=1_000_000),
        ]
        secondary = {
            ADDR_A: SourceMetrics(tvl=950_000, volume_24h=100_000),
            ADDR_B: SourceMetrics(tvl=750_000, volume_24h=200_000),
        }
        results = run_batch_consensus(pools, secondary)

        assert set(results) == {p.pool_id for p in pools[:3]}

        agree = results[pools[0].pool_id]
        assert agree.inconsistency_penalty == 0
        assert agree.reason == "sources agree (5.0% divergence)"
        assert agree.sources == ("defillama", "geckoterminal")

        diverge = results[pools[1].pool_id]
        assert diverge.tvl_divergence == pytest.approx(25.0)
        assert diverge.volume_divergence == 0.0
        assert diverge.inconsistency_penalty == 7
        assert diverge.reason == "TVL diverges 25.0% ($1000K vs $750K)"

        alone = results[pools[2].pool_id]
        assert alone.inconsistency_penalty == 0
        assert alone.reason == "single source: no comparison possible"

    def test_penalty_is_max_not_sum(self):
        pool = make_snapshot(tvl=1_000_000, volume_24h=100_000)
        secondary = {ADDR_A: SourceMetrics(tvl=750_000, volume_24h=40_000)}
        result = run_batch_consensus([pool], secondary)[pool.pool_id]
        assert result.max_divergence == pytest.approx(60.0)
        assert result.inconsistency_penalty == 15
        assert "TVL diverges 25.0%" in result.reason
        assert "Vol diverges 60.0%" in result.reason

    def test_one_sided_zero_is_full_divergence(self):
        pool = make_snapshot(tvl=1_000_000, volume_24h=100_000)
        secondary = {ADDR_A: SourceMetrics(tvl=1_000_000, volume_24h=0)}
        result = run_batch_consensus([pool], secondary)[pool.pool_id]
        assert result.volume_divergence == 100.0
        assert result.inconsistency_penalty == 15


class TestSinglePoolConsensus:
    def test_max_pairwise(self):
        pool = make_snapshot(tvl=1_000_000, volume_24h=100_000)
        sources = {
            "dexscreener": SourceMetrics(1_000_000, 100_000),
            "geckoterminal": SourceMetrics(750_000, 100_000),
        }
        result = run_single_pool_consensus(pool, sources)
        assert result.max_divergence == pytest.approx(25.0)
        assert result.inconsistency_penalty == 7
        assert result.sources == ("primary", "dexscreener", "geckoterminal")
        assert result.reason == "divergence 25.0% across primary, dexscreener, geckoterminal"

    def test_zero_report_is_ignored(self):
        pool = make_snapshot(tvl=1_000_000, volume_24h=100_000)
        sources = {
            "dexscreener": SourceMetrics(1_000_000, 100_000),
            "geckoterminal": SourceMetrics(0, 0),
        }
        result = run_single_pool_consensus(pool, sources)
        assert result.inconsistency_penalty == 0
        assert result.reason == "3 sources agree (0.0% max divergence)"

    def test_only_primary(self):
        pool = make_snapshot()
        result = run_single_pool_consensus(pool, {"dexscreener": SourceMetrics(1, 1)}, "dexscreener")
        assert result.inconsistency_penalty == 0
        assert result.reason == "single source: no comparison possible"

    def test_non_hex_address(self):
        pool = make_snapshot(pool_address="747c1d2a-c668-4682-b9f9-296708a3dd90")
        result = run_single_pool_consensus(pool, {"dexscreener": SourceMetrics(1, 1)})
        assert result.inconsistency_penalty == 0
        assert result.reason == "non-0x address: consensus not applicable"


# ═══════════════════════════════════════════════════════════════════════════
# 2. Execution cost
# ═══════════════════════════════════════════════════════════════════════════


class TestExecutionCost:
    def test_v2_impact(self):
        assert estimate_price_impact(1000, 1_000_000, None, PoolType.V2) == pytest.approx(0.05)

    def test_stable_impact(self):
        assert estimate_price_impact(1000, 1_000_000, None, PoolType.STABLE) == pytest.approx(0.01)

    def test_cl_concentration_capped(self):
        assert estimate_price_impact(1000, 1_000_000, 1_000_000, PoolType.CL) == pytest.approx(0.01)

    def test_cl_without_volume(self):
        assert estimate_price_impact(1000, 500_000, None, PoolType.CL) == pytest.approx(0.2)

    @pytest.mark.parametrize("tvl", [0, -10, None])
    def test_no_liquidity_is_max_penalty(self, tvl):
        cost = calculate_execution_cost(tvl, 1_000, PoolType.CL)
        assert cost.impact_1000 == 100.0
        assert cost.execution_cost_penalty == 10

    @pytest.mark.parametrize("impact,penalty", [
        (0.05, 0), (0.3, 2), (0.7, 4), (2.0, 6), (4.0, 8), (6.0, 10),
    ])
    def test_penalty_ladder(self, impact, penalty):
        assert impact_to_penalty(impact) == penalty

    @pytest.mark.parametrize("pool_type", list(PoolType))
    @pytest.mark.parametrize("tvl,volume", [(10_000, 0), (250_000, 10_000), (5e7, 1e8)])
    def test_bigger_trade_costs_more(self, pool_type, tvl, volume):
        cost = calculate_execution_cost(tvl, volume, pool_type)
        assert cost.impact_1000 >= cost.impact_100
        assert 0 <= cost.execution_cost_penalty <= 10

    def test_reasons(self):
        assert calculate_execution_cost(1_000_000, None, "V2").reason.startswith("Deep liquidity")
        assert calculate_execution_cost(500_000, None, "CL").reason.startswith("Moderate depth")
        assert calculate_execution_cost(20_000, None, "V2").reason.startswith("Thin liquidity")

    def test_string_pool_type(self):
        assert calculate_execution_cost(1e6, 0, "STABLE").pool_type is PoolType.STABLE
        assert calculate_execution_cost(1e6, 0, "cl").pool_type is PoolType.CL

    @pytest.mark.parametrize("tag", ["WEIGHTED", "balancer-v2", ""])
    def test_unknown_pool_type_priced_as_constant_product(self, tag):
        cost = calculate_execution_cost(1e6, 1e5, tag)
        reference = calculate_execution_cost(1e6, 1e5, PoolType.V2)
        assert cost.pool_type is PoolType.V2
        assert cost.impact_1000 == reference.impact_1000
        assert cost.execution_cost_penalty == reference.execution_cost_penalty


# ═══════════════════════════════════════════════════════════════════════════
# 3. TVL tracker
# ═══════════════════════════════════════════════════════════════════════════


class TestLiquidityDropPenalty:
    @pytest.mark.parametrize("drop,penalty", [
        (0, 0), (9.9, 0), (10, 5), (19.9, 5), (20, 10), (30, 15), (49.9, 15), (50, 20), (90, 20),
    ])
    def test_ladder(self, drop, penalty):
        assert liquidity_drop_penalty(drop) == penalty


class TestTvlTracker:
    def setup_method(self):
        self.clock = FakeClock()
        self.tracker = TvlTracker(TrackerSettings(), clock=self.clock)

    def test_drop_from_peak(self):
        self.tracker.record_tvl("eth_pool", 10_000_000)
        self.clock.advance(2 * HOUR)
        self.tracker.record_tvl("eth_pool", 8_000_000)
        drop = self.tracker.get_tvl_drop("eth_pool")
        assert drop.tvl_peak_24h == 10_000_000
        assert drop.tvl_now == 8_000_000
        assert drop.drop_percent == 20.0
        assert drop.liquidity_drop_penalty == 10
        assert drop.data_points == 2

    def test_current_tvl_overrides_last_snapshot(self):
        self.tracker.record_tvl("eth_pool", 10_000_000)
        drop = self.tracker.get_tvl_drop("eth_pool", current_tvl=6_500_000)
        assert drop.drop_percent == 35.0
        assert drop.liquidity_drop_penalty == 15

    def test_rise_is_no_drop(self):
        self.tracker.record_tvl("eth_pool", 5_000_000)
        self.clock.advance(HOUR)
        self.tracker.record_tvl("eth_pool", 6_000_000)
        drop = self.tracker.get_tvl_drop("eth_pool")
        assert drop.drop_percent == 0.0
        assert drop.liquidity_drop_penalty == 0

    def test_debounce_overwrites(self):
        self.tracker.record_tvl("eth_pool", 10_000_000)
        self.clock.advance(30)
        self.tracker.record_tvl("eth_pool", 9_000_000)
        assert self.tracker.get_stats()["total_snapshots"] == 1
        assert self.tracker.get_tvl_drop("eth_pool").tvl_peak_24h == 9_000_000

    def test_peak_outside_window_ignored(self):
        self.tracker.record_tvl("eth_pool", 10_000_000)
        self.clock.advance(24 * HOUR + 1)
        self.tracker.record_tvl("eth_pool", 8_000_000)
        drop = self.tracker.get_tvl_drop("eth_pool")
        assert drop.tvl_peak_24h == 8_000_000
        assert drop.liquidity_drop_penalty == 0
        assert drop.data_points == 1

    @pytest.mark.parametrize("current_tvl", [None, 0.0])
    def test_stale_window_reports_last_known_tvl(self, current_tvl):
        self.tracker.record_tvl("eth_pool", 10_000_000)
        self.clock.advance(24 * HOUR + 60)
        drop = self.tracker.get_tvl_drop("eth_pool", current_tvl=current_tvl)
        assert drop.tvl_now == drop.tvl_peak_24h == 10_000_000
        assert drop.data_points == 0
        assert drop.liquidity_drop_penalty == 0

    @pytest.mark.parametrize("tvl", [0, -5, None])
    def test_non_positive_ignored(self, tvl):
        self.tracker.record_tvl("eth_pool", tvl)
        assert len(self.tracker) == 0

    def test_unknown_pool(self):
        assert self.tracker.get_tvl_drop("nope") == TvlDropResult("nope", 0.0, 0.0, 0.0, 0, 0)
        drop = self.tracker.get_tvl_drop("nope", current_tvl=5_000_000)
        assert drop.tvl_now == drop.tvl_peak_24h == 5_000_000
        assert drop.liquidity_drop_penalty == 0

    def test_retention_eviction(self):
        self.tracker.record_tvl("old", 1_000_000)
        self.clock.advance(26 * HOUR)
        assert self.tracker.evict_stale() == 1
        assert len(self.tracker) == 0

    def test_pool_cap_drops_least_recent(self):
        tracker = TvlTracker(TrackerSettings(max_pools=2), clock=self.clock)
        for pool_id in ("a", "b", "c"):
            tracker.record_tvl(pool_id, 1_000_000)
            self.clock.advance(61)
        assert tracker.evict_stale() == 1
        assert len(tracker) == 2
        assert tracker.get_tvl_drop("a").data_points == 0
        assert tracker.get_tvl_drop("c").data_points == 1

    def test_batch(self):
        self.tracker.record_batch_tvl({"a": 1_000_000, "b": 2_000_000})
        self.clock.advance(HOUR)
        self.tracker.record_batch_tvl([("a", 500_000), ("b", 2_000_000)])
        drops = self.tracker.get_batch_tvl_drop({"a": 500_000, "b": 2_000_000})
        assert drops["a"].liquidity_drop_penalty == 20
        assert drops["b"].liquidity_drop_penalty == 0

    def test_stats_and_clear(self):
        self.tracker.record_tvl("a", 1_000_000)
        self.clock.advance(90 * 60)
        stats = self.tracker.get_stats()
        assert stats == {"tracked_pools": 1, "total_snapshots": 1, "oldest_snapshot_age": 90}
        self.tracker.clear()
        assert len(self.tracker) == 0

    def test_reads_do_not_mutate(self):
        self.tracker.record_tvl("a", 1_000_000)
        first = self.tracker.get_tvl_drop("a")
        assert self.tracker.get_tvl_drop("a") == first


# ═══════════════════════════════════════════════════════════════════════════
# 4. Score composer
# ═══════════════════════════════════════════════════════════════════════════


class TestSubScores:
    @pytest.mark.parametrize("tvl,expected", [
        (20e6, 100), (5e6, 90), (1e6, 75), (5e5, 60), (1e5, 40), (5e4, 20),
    ])
    def test_liquidity_stability(self, tvl, expected):
        assert liquidity_stability(tvl) == expected

    @pytest.mark.parametrize("volume,expected", [
        (200_000, 100), (60_000, 80), (20_000, 60), (6_000, 40), (1_000, 20),
    ])
    def test_volume_consistency(self, volume, expected):
        assert volume_consistency(1_000_000, volume) == expected

    def test_zero_tvl(self):
        assert volume_consistency(0, 1000) == 0.0
        assert volume_tvl_ratio_score(0, 1000) == 0.0

    @pytest.mark.parametrize("volume,expected", [
        (250_000, 100), (150_000, 80), (70_000, 60), (20_000, 40), (5_000, 20),
    ])
    def test_volume_tvl_ratio(self, volume, expected):
        assert volume_tvl_ratio_score(1_000_000, volume) == expected

    def test_age_score(self):
        assert age_score(20e6, 1e6, True) == 100
        assert age_score(2e6, 12e3, False) == 60
        assert age_score(5e4, 0, False) == 30

    def test_fee_efficiency_chain(self):
        assert fee_efficiency(1e6, 0, 2_000, None, None) == 100
        assert fee_efficiency(1e6, 100_000, None, 0.003, None) == pytest.approx(10.95)
        assert fee_efficiency(1e6, 0, None, None, 250) == 100
        assert fee_efficiency(1e6, 0, None, None, None) == 20

    @pytest.mark.parametrize("vol_pct,expected", [
        (None, 10), (0, 10), (3, 0), (5, 5), (12, 12), (25, 20), (45, 25),
    ])
    def test_volatility_penalty(self, vol_pct, expected):
        assert volatility_penalty(vol_pct) == expected


class TestScoreComposer:
    def setup_method(self):
        self.composer = ScoreComposer(EngineSettings())

    def test_totals(self):
        score = self.composer.calculate_score(make_snapshot(), volatility_ann=0.25, apr=20.0)
        assert score.health == pytest.approx(40.0)
        assert score.returns == pytest.approx(19.6)
        assert score.risk == pytest.approx(20.0)
        assert score.total == pytest.approx(39.6)
        assert score.recommended_mode is RiskMode.DEFENSIVE
        assert score.is_suspect is False
        assert score.suspect_reason is None

        b = score.breakdown
        assert b.health.liquidity_stability == 100
        assert b.health.age_score == 100
        assert b.returns.fee_efficiency == 60
        assert b.returns.apr_estimate == 20.0
        assert b.risk.volatility_penalty == 20
        assert b.risk.execution_cost_penalty == 0

    def test_aggressive(self):
        pool = make_snapshot(fees_24h=40_000)
        score = self.composer.calculate_score(pool, volatility_ann=0.03, apr=80.0)
        assert score.total == pytest.approx(72.2)
        assert score.recommended_mode is RiskMode.AGGRESSIVE

    def test_stable_never_aggressive(self):
        pool = make_snapshot(fees_24h=40_000)
        score = self.composer.calculate_score(
            pool, volatility_ann=0.03, apr=80.0, pool_type=PoolType.STABLE
        )
        assert score.total == pytest.approx(72.2)
        assert score.recommended_mode is RiskMode.NORMAL

    def test_unknown_volatility(self):
        pool = make_snapshot(fees_24h=40_000)
        score = self.composer.calculate_score(pool, apr=80.0)
        assert score.breakdown.risk.volatility_penalty == 10
        assert score.total == pytest.approx(62.2)
        assert score.recommended_mode is RiskMode.DEFENSIVE

    def test_risk_capped_at_weight(self):
        drop = TvlDropResult(ADDR_A, 6.5e6, 1e7, 35.0, 15, 2)
        consensus = ConsensusResult(
            ADDR_A, "ethereum", {}, {}, 25.0, 25.0, 0.0, ("a", "b"), 7, "divergence"
        )
        score = self.composer.calculate_score(
            make_snapshot(), volatility_ann=0.5, apr=20.0, tvl_drop=drop, consensus=consensus
        )
        assert score.breakdown.risk.liquidity_drop_penalty == 15
        assert score.breakdown.risk.inconsistency_penalty == 7
        assert score.risk == 25.0

    def test_suspect_flags_accumulate(self):
        pool = make_snapshot(tvl=50_000, volume_24h=1_000, fees_24h=None)
        score = self.composer.calculate_score(pool, apr=600.0)
        assert score.is_suspect is True
        assert score.suspect_reasons == (
            "TVL below minimum threshold",
            "Volume below minimum threshold",
            "Unusually high APR",
        )
        assert 0 <= score.total <= 100

    def test_wash_trading_flag(self):
        pool = make_snapshot(tvl=200_000, volume_24h=3_000_000)
        score = self.composer.calculate_score(pool, volatility_ann=0.1)
        assert "Volume/TVL ratio too high" in score.suspect_reasons

    def test_fail_closed(self):
        score = self.composer.calculate_score(make_snapshot(tvl=float("nan")))
        assert score.total == 0.0
        assert score.health == score.returns == score.risk == 0.0
        assert score.recommended_mode is RiskMode.DEFENSIVE
        assert score.is_suspect is True
        assert score.suspect_reason == "Calculation error"

    def test_custom_weights(self):
        composer = ScoreComposer(EngineSettings(weights={"health": 50, "returns": 35, "risk": 25}))
        score = composer.calculate_score(make_snapshot(), volatility_ann=0.25, apr=20.0)
        assert score.health == pytest.approx(50.0)

    def test_falls_back_to_snapshot_fields(self):
        pool = make_snapshot(apr=20.0, volatility_ann=0.25)
        assert self.composer.calculate_score(pool).total == pytest.approx(39.6)

    def test_idempotent(self):
        pool = make_snapshot()
        assert self.composer.calculate_score(pool, 0.25) == self.composer.calculate_score(pool, 0.25)

    @pytest.mark.parametrize("tvl,volume,vol,apr", [
        (1e3, 1e7, 9.0, 5000.0),
        (1e9, 1e9, 0.01, 0.0),
        (0.0, 0.0, None, None),
        (3e5, 0.0, 2.5, -10.0),
    ])
    def test_bounded(self, tvl, volume, vol, apr):
        score = self.composer.calculate_score(
            make_snapshot(tvl=tvl, volume_24h=volume), volatility_ann=vol, apr=apr
        )
        assert 0 <= score.total <= 100
        assert 0 <= score.risk <= 25


# ═══════════════════════════════════════════════════════════════════════════
# 5. Enrichment & pipeline
# ═══════════════════════════════════════════════════════════════════════════


class TestEnrichPool:
    def test_history_volatility(self):
        history = [PricePoint(HOUR * i, p) for i, p in enumerate([3000, 3030, 2990, 3010])]
        intel = enrich_pool(make_snapshot(), price_history=history, now=NOW)
        assert intel.volatility.method is VolatilityMethod.LOG_RETURNS
        assert intel.volatility.data_points == 4
        assert intel.volatility_ann == intel.volatility.vol_ann

    def test_proxy_volatility(self):
        intel = enrich_pool(make_snapshot(price=101.0), price_1h_ago=100.0, now=NOW)
        assert intel.volatility.method is VolatilityMethod.PROXY
        assert intel.volatility_ann == intel.volatility.vol_ann > 0.05

    def test_proxy_floor_counts_as_unknown(self):
        intel = enrich_pool(make_snapshot(price=100.0), price_1h_ago=100.0, now=NOW)
        assert intel.volatility.is_measured is False
        assert intel.volatility_ann == 0.20

    def test_provider_volatility(self):
        intel = enrich_pool(make_snapshot(volatility_ann=0.4), now=NOW)
        assert intel.volatility.vol_ann == 0.4
        assert intel.volatility_ann == 0.4

    @pytest.mark.parametrize("price_1h_ago", [2999.9, 2700.0])
    def test_provider_volatility_beats_proxy(self, price_1h_ago):
        intel = enrich_pool(
            make_snapshot(volatility_ann=0.6), price_1h_ago=price_1h_ago, now=NOW
        )
        assert intel.volatility.method is VolatilityMethod.LOG_RETURNS
        assert intel.volatility.vol_ann == 0.6
        assert intel.volatility_ann == 0.6

    def test_no_volatility(self):
        intel = enrich_pool(make_snapshot(), now=NOW)
        assert intel.volatility.is_measured is False
        assert intel.volatility_ann == 0.20

    def test_apr_and_ratio(self):
        intel = enrich_pool(make_snapshot(), now=NOW)
        assert intel.apr.source is AprSource.FEES_24H
        assert intel.apr_total == pytest.approx(21.9)
        assert intel.apr_adjusted == pytest.approx(21.9 * intel.health.penalty_total)
        assert intel.ratio == pytest.approx(0.01)
        assert intel.pool_type is PoolType.CL
        assert intel.bluechip is True

    def test_provider_apr_fallback(self):
        intel = enrich_pool(
            make_snapshot(fees_24h=None, fees_1h=None, fees_5m=None, apr=12.5), now=NOW
        )
        assert intel.apr.fee_apr is None
        assert intel.apr_total == 12.5


class TestScorePipeline:
    def setup_method(self):
        self.clock = FakeClock()
        self.tracker = TvlTracker(TrackerSettings(), clock=self.clock)

    def test_records_before_scoring(self):
        scored = score_pool(make_snapshot(), self.tracker, now=NOW)
        assert len(self.tracker) == 1
        assert scored.tvl_drop.data_points == 1
        assert scored.pool_id == f"ethereum_{ADDR_A}"

    def test_liquidity_flight(self):
        score_pool(make_snapshot(tvl=10_000_000), self.tracker, now=NOW)
        self.clock.advance(2 * HOUR)
        scored = score_pool(make_snapshot(tvl=6_500_000), self.tracker, now=NOW)
        assert scored.tvl_drop.drop_percent == 35.0
        assert scored.score.breakdown.risk.liquidity_drop_penalty == 15

    def test_unmeasured_volatility_reaches_composer_as_unknown(self):
        scored = score_pool(make_snapshot(), self.tracker, now=NOW)
        assert scored.score.breakdown.risk.volatility_penalty == 10

    def test_floored_proxy_reaches_composer_as_unknown(self):
        scored = score_pool(
            make_snapshot(price=100.0), self.tracker, price_1h_ago=100.0, now=NOW
        )
        assert scored.score.breakdown.risk.volatility_penalty == 10

    def test_flat_hour_does_not_mask_provider_volatility(self):
        volatile = make_snapshot(volatility_ann=0.6)
        with_proxy = score_pool(volatile, self.tracker, price_1h_ago=2999.9, now=NOW)
        without_proxy = score_pool(volatile, self.tracker, now=NOW)
        assert with_proxy.score.breakdown.risk.volatility_penalty == 25
        assert with_proxy.score.total == without_proxy.score.total
        assert with_proxy.score.recommended_mode is without_proxy.score.recommended_mode

    def test_batch_with_consensus(self):
        snapshots = [
            make_snapshot(pool_address=ADDR_A, tvl=1_000_000, volume_24h=100_000),
            make_snapshot(pool_address=ADDR_B, tvl=1_000_000, volume_24h=100_000),
        ]
        secondary = {
            ADDR_A: SourceMetrics(1_000_000, 100_000),
            ADDR_B: SourceMetrics(400_000, 100_000),
        }
        scored = score_pools(snapshots, self.tracker, secondary=secondary, now=NOW)
        assert [s.pool_id for s in scored] == [s.pool_id for s in snapshots]
        assert scored[0].consensus.inconsistency_penalty == 0
        assert scored[1].consensus.inconsistency_penalty == 15
        assert scored[1].score.breakdown.risk.inconsistency_penalty == 15
        assert len(self.tracker) == 2

    def test_batch_without_secondary(self):
        scored = score_pools([make_snapshot()], self.tracker, now=NOW)
        assert scored[0].consensus is None


class TestStablePoolScenario:
    """$50M stable pool, $10K daily fees, 5% volatility, no warnings."""

    def setup_method(self):
        self.snapshot = make_snapshot(
            token0=TokenInfo("USDC", decimals=6),
            token1=TokenInfo("USDT", decimals=6),
            price=1.0,
            tvl=50_000_000.0,
            fee_tier=0.0001,
            volume_24h=20_000_000.0,
            volume_1h=10_000_000.0,
            fees_24h=10_000.0,
            fees_1h=400.0,
            volatility_ann=0.05,
        )
        self.scored = score_pool(
            self.snapshot, TvlTracker(TrackerSettings(), clock=FakeClock()), now=NOW
        )

    def test_health_near_top(self):
        health = self.scored.intelligence.health
        assert self.scored.intelligence.pool_type is PoolType.STABLE
        assert health.breakdown.tvl_score > 0.9
        assert health.breakdown.stability_score == pytest.approx(1 - 0.05 / 0.35)
        assert health.score >= 70

    def test_apr(self):
        assert self.scored.intelligence.apr_total == pytest.approx(7.3)

    def test_mode_never_aggressive(self):
        score = self.scored.score
        assert score.recommended_mode in (RiskMode.DEFENSIVE, RiskMode.NORMAL)
        assert score.total == pytest.approx(50.7)
        assert score.recommended_mode is RiskMode.NORMAL

    def test_range_capped(self):
        rng = calc_range_recommendation(
            1.0, 0.05, 365, RiskMode.AGGRESSIVE, pool_type=self.scored.intelligence.pool_type
        )
        assert rng.width_pct == 0.03


# ═══════════════════════════════════════════════════════════════════════════
# 6. Filters, sorting, top picks
# ═══════════════════════════════════════════════════════════════════════════


class TestPoolSelection:
    def setup_method(self):
        self.pools = [
            enrich_pool(make_snapshot(pool_address=ADDR_A, tvl=50_000_000), now=NOW),
            enrich_pool(
                make_snapshot(
                    pool_address=ADDR_B,
                    chain="arbitrum",
                    token0=TokenInfo("PEPE"),
                    tvl=300_000,
                    volume_1h=1_000,
                    protocol="sushiswap",
                    fee_tier=None,
                ),
                now=NOW,
            ),
            enrich_pool(
                make_snapshot(
                    pool_address=ADDR_C,
                    token0=TokenInfo("USDC"),
                    token1=TokenInfo("DAI"),
                    tvl=5_000_000,
                ),
                warnings=["Honeypot suspected"],
                now=NOW,
            ),
        ]

    def test_filters(self):
        assert [p.snapshot.chain for p in apply_pool_filters(self.pools, chain="arbitrum")] == ["arbitrum"]
        assert len(apply_pool_filters(self.pools, token="usdc")) == 3
        assert len(apply_pool_filters(self.pools, token="pepe")) == 1
        assert len(apply_pool_filters(self.pools, protocol="UNISWAP")) == 2
        assert len(apply_pool_filters(self.pools, min_tvl=1_000_000)) == 2
        assert len(apply_pool_filters(self.pools, bluechip=True)) == 2
        assert [p.pool_type for p in apply_pool_filters(self.pools, pool_type="stable")] == [PoolType.STABLE]
        assert [p.pool_type for p in apply_pool_filters(self.pools, pool_type="v2")] == [PoolType.V2]

    def test_min_health(self):
        floor = self.pools[0].health_score
        kept = apply_pool_filters(self.pools, min_health=floor)
        assert all(p.health_score >= floor for p in kept)
        assert self.pools[0] in kept

    def test_sort(self):
        by_tvl = sort_pools(self.pools, "tvl")
        assert [p.snapshot.tvl for p in by_tvl] == [50_000_000, 5_000_000, 300_000]
        ascending = sort_pools(self.pools, "tvl", descending=False)
        assert ascending == list(reversed(by_tvl))
        assert sort_pools(self.pools, "no_such_key") == by_tvl

    def test_sort_by_health(self):
        ranked = sort_pools(self.pools, "health_score")
        scores = [p.health_score for p in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_top_picks_exclude_honeypot(self):
        picks = build_top_recommendations(self.pools)
        assert [p.rank for p in picks] == [1, 2]
        assert all(p.pool.snapshot.pool_address != ADDR_C for p in picks)
        for pick in picks:
            score = pick.pool.health_score
            expected = (
                RiskMode.AGGRESSIVE if score >= 75
                else RiskMode.NORMAL if score >= 55
                else RiskMode.DEFENSIVE
            )
            assert pick.mode is expected
            assert f"{score}/100" in pick.reason

    def test_top_picks_limit(self):
        assert len(build_top_recommendations(self.pools, limit=1)) == 1


# ═══════════════════════════════════════════════════════════════════════════
# 7. Position recommendations
# ═══════════════════════════════════════════════════════════════════════════

from datetime import timedelta

from pool_intel.estimator import estimate_apr_from_fee_tier
from pool_intel.models import (
    HealthComponents,
    ReturnComponents,
    RiskComponents,
    Score,
    ScoreBreakdown,
    ScoredPool,
)
from pool_intel.recommendation import (
    GENERIC_RISK,
    base_apr,
    build_position_recommendations,
    compact_usd,
    entry_conditions,
    estimate_gains,
    exit_conditions,
    identify_main_risks,
    success_probability,
)


def make_scored(
    total=80.0,
    mode=RiskMode.NORMAL,
    suspect=False,
    apr_estimate=52.0,
    volatility_penalty=0.0,
    age=60.0,
    health=30.0,
    returns=25.0,
    **snapshot_overrides,
) -> ScoredPool:
    intel = enrich_pool(make_snapshot(**snapshot_overrides), now=NOW)
    breakdown = ScoreBreakdown(
        health=HealthComponents(age_score=age),
        returns=ReturnComponents(apr_estimate=apr_estimate),
        risk=RiskComponents(volatility_penalty=volatility_penalty),
    )
    score = Score(
        total=total,
        health=health,
        returns=returns,
        risk=volatility_penalty,
        breakdown=breakdown,
        recommended_mode=mode,
        is_suspect=suspect,
        suspect_reasons=("TVL below minimum threshold",) if suspect else (),
    )
    snap = intel.snapshot
    return ScoredPool(
        intelligence=intel,
        score=score,
        tvl_drop=TvlDropResult(intel.pool_id, snap.tvl, snap.tvl, 0.0, 0, 1),
        execution_cost=calculate_execution_cost(snap.tvl, snap.volume_24h, intel.pool_type),
    )


class TestRecommendationEstimates:
    @pytest.mark.parametrize("mode,expected", [
        (RiskMode.DEFENSIVE, 67),
        (RiskMode.NORMAL, 56),
        (RiskMode.AGGRESSIVE, 45),
    ])
    def test_probability_by_mode(self, mode, expected):
        assert success_probability(make_scored(total=80.0).score, mode) == expected

    def test_probability_never_above_cap(self):
        assert success_probability(make_scored(total=100.0).score, RiskMode.DEFENSIVE) <= 85

    def test_gains_normal(self):
        gain_pct, gain_usd = estimate_gains(make_scored(total=50.0), 10_000, RiskMode.NORMAL)
        assert gain_pct == pytest.approx(0.5)
        assert gain_usd == pytest.approx(50.0)

    def test_gains_scale_with_mode(self):
        sp = make_scored(total=50.0)
        defensive = estimate_gains(sp, 10_000, RiskMode.DEFENSIVE)
        aggressive = estimate_gains(sp, 10_000, RiskMode.AGGRESSIVE)
        assert defensive == (pytest.approx(0.35), pytest.approx(35.0))
        assert aggressive == (pytest.approx(0.65), pytest.approx(65.0))

    def test_zero_capital(self):
        assert estimate_gains(make_scored(), 0, RiskMode.NORMAL)[1] == 0

    def test_apr_prefers_breakdown_then_provider_then_fee_tier(self):
        assert base_apr(make_scored(apr_estimate=52.0, apr=26.0)) == 52.0
        assert base_apr(make_scored(apr_estimate=0.0, apr=26.0)) == 26.0
        assert base_apr(make_scored(apr_estimate=0.0)) == estimate_apr_from_fee_tier(
            20_000_000.0, 5_000_000.0, 0.003
        )
        assert base_apr(make_scored(apr_estimate=0.0, fee_tier=None)) == 0.0

    @pytest.mark.parametrize("amount,text", [
        (18_000_000, "18.0M"), (2_500, "2.5K"), (999, "999"),
    ])
    def test_compact_usd(self, amount, text):
        assert compact_usd(amount) == text


class TestRecommendationConditions:
    def test_entry_normal(self):
        conditions = entry_conditions(make_scored(), RiskMode.NORMAL)
        assert conditions == (
            "Price close to its 24h average",
            "24h volume above $2.5M",
            "TVL holding above $18.0M",
        )

    def test_entry_mode_specific(self):
        defensive = entry_conditions(make_scored(), RiskMode.DEFENSIVE)
        assert "24h volume above $4.0M" in defensive
        assert defensive[-1] == "Low volatility over the last 24h"
        assert entry_conditions(make_scored(), RiskMode.AGGRESSIVE)[-1].startswith("Positive momentum")

    @pytest.mark.parametrize("mode,stop", [
        (RiskMode.DEFENSIVE, 5), (RiskMode.NORMAL, 10), (RiskMode.AGGRESSIVE, 15),
    ])
    def test_exit_stop_loss(self, mode, stop):
        conditions = exit_conditions(mode, EngineSettings())
        assert conditions[0] == f"Position value down {stop}%"
        assert "Daily volume below $10.0K" in conditions
        assert conditions[-1] == "Re-evaluate after 7 days"
        assert any("take partial profit" in c for c in conditions) is (mode is RiskMode.AGGRESSIVE)

    def test_generic_risk_when_nothing_stands_out(self):
        assert identify_main_risks(make_scored()) == (GENERIC_RISK,)

    def test_risks_from_breakdown(self):
        risks = identify_main_risks(
            make_scored(volatility_penalty=20, age=20, tvl=300_000, volume_24h=1_000)
        )
        assert len(risks) == 4
        assert risks[0].startswith("High volatility")
        assert any("slippage" in r for r in risks)
        assert any("Low relative volume" in r for r in risks)
        assert risks[-1].startswith("Relatively new pool")


class TestBuildPositionRecommendations:
    def setup_method(self):
        self.pools = [
            make_scored(total=60.0, pool_address=ADDR_A),
            make_scored(total=90.0, mode=RiskMode.AGGRESSIVE, pool_address=ADDR_B),
            make_scored(total=95.0, suspect=True, pool_address=ADDR_C),
        ]

    def test_excludes_suspect_and_ranks_by_total(self):
        plans = build_position_recommendations(self.pools, 10_000, now=NOW)
        assert [p.rank for p in plans] == [1, 2]
        assert [p.scored.score.total for p in plans] == [90.0, 60.0]
        assert all(not p.scored.score.is_suspect for p in plans)

    def test_each_plan_uses_its_recommended_mode(self):
        plans = build_position_recommendations(self.pools, 10_000, now=NOW)
        assert [p.mode for p in plans] == [RiskMode.AGGRESSIVE, RiskMode.NORMAL]
        assert plans[0].probability == success_probability(plans[0].scored.score, RiskMode.AGGRESSIVE)

    def test_capital_and_validity(self):
        plan = build_position_recommendations(self.pools, 25_000, limit=1, now=NOW)[0]
        assert plan.capital == 25_000
        assert plan.data_timestamp == NOW
        assert plan.valid_until == NOW + timedelta(hours=24)
        assert plan.pool_id == f"ethereum_{ADDR_B}"
        assert (plan.estimated_gain_pct, plan.estimated_gain_usd) == estimate_gains(
            plan.scored, 25_000, RiskMode.AGGRESSIVE
        )

    def test_commentary(self):
        plan = build_position_recommendations(self.pools, 10_000, now=NOW)[1]
        text = plan.commentary
        assert text.startswith("Pool WETH/USDC on uniswap-v3 (ethereum).")
        assert "Score 60.0/100." in text
        assert "Strong pool health" in text
        assert "Attractive return potential" in text
        assert "Suggested stance: balanced." in text
        assert f"favourable outcome: {plan.probability}%" in text
        assert f"Watch out: {GENERIC_RISK}." in text
        assert text.endswith("not a guarantee of future results.")

    def test_limit_and_empty(self):
        assert len(build_position_recommendations(self.pools, 10_000, limit=1, now=NOW)) == 1
        assert build_position_recommendations([self.pools[2]], 10_000, now=NOW) == []

    def test_negative_capital_rejected(self):
        with pytest.raises(ValueError, match="capital"):
            build_position_recommendations(self.pools, -1)

    def test_from_pipeline(self):
        tracker = TvlTracker(TrackerSettings(), clock=FakeClock())
        scored = score_pools(
            [
                make_snapshot(pool_address=ADDR_A),
                make_snapshot(pool_address=ADDR_B, tvl=50_000, volume_24h=5_000),
            ],
            tracker,
            now=NOW,
        )
        plans = build_position_recommendations(scored, 10_000, now=NOW)
        assert [p.scored.pool_id for p in plans] == [f"ethereum_{ADDR_A}"]
        assert plans[0].mode is scored[0].score.recommended_mode
