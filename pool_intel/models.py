"""
Engine Records — snapshots in, immutable results out
=====================================================

Every record here is a frozen dataclass: created once, never mutated,
safe to log, serialize (``dataclasses.asdict``) or persist verbatim.
A new observation is a new ``PoolSnapshot``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple


# ── Enums ────────────────────────────────────────────────────────────────


class PoolType(str, Enum):
    """AMM family: concentrated liquidity, constant product, or stableswap."""

    CL = "CL"
    V2 = "V2"
    STABLE = "STABLE"


class RiskMode(str, Enum):
    DEFENSIVE = "DEFENSIVE"
    NORMAL = "NORMAL"
    AGGRESSIVE = "AGGRESSIVE"


class AprSource(str, Enum):
    """Which fee window produced the 24h-equivalent fee figure."""

    FEES_24H = "fees24h"
    FEES_1H = "fees1h"
    FEES_5M = "fees5m"
    ESTIMATED = "estimated"


class VolatilityMethod(str, Enum):
    LOG_RETURNS = "log_returns"
    PROXY = "proxy"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Input Records ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    decimals: int = 18
    address: str = ""


@dataclass(frozen=True)
class PoolSnapshot:
    """
    One observation of a pool, as produced by the collector layer.

    Optional metrics stay ``None`` when a provider does not report them;
    calculators degrade to their documented fallbacks instead of treating
    a missing value as zero.
    """

    chain: str
    pool_address: str
    token0: TokenInfo
    token1: TokenInfo
    price: float
    tvl: float
    fee_tier: Optional[float] = None  # decimal fraction, 0.003 = 0.30%
    volume_24h: Optional[float] = None
    volume_1h: Optional[float] = None
    volume_5m: Optional[float] = None
    fees_24h: Optional[float] = None
    fees_1h: Optional[float] = None
    fees_5m: Optional[float] = None
    pool_type: Optional[PoolType] = None  # None → inferred from tokens/protocol
    bluechip: Optional[bool] = None
    updated_at: datetime = field(default_factory=utc_now)
    protocol: str = ""
    tick_spacing: Optional[int] = None
    apr: Optional[float] = None  # provider-reported APR, percent
    volatility_ann: Optional[float] = None  # provider-measured, decimal
    source: str = ""

    @property
    def pool_id(self) -> str:
        return f"{self.chain}_{self.pool_address}"

    @property
    def name(self) -> str:
        return f"{self.token0.symbol}/{self.token1.symbol}"


class PricePoint(NamedTuple):
    """A (timestamp, price) sample; plain ``(ts, price)`` tuples work too."""

    timestamp: float
    price: float


@dataclass(frozen=True)
class SourceMetrics:
    """TVL and 24h volume as reported by one provider."""

    tvl: float
    volume_24h: float


# ── Estimator Results ────────────────────────────────────────────────────


@dataclass(frozen=True)
class AprResult:
    fee_apr: Optional[float]
    source: AprSource
    fees_24h_usd: Optional[float]


@dataclass(frozen=True)
class VolatilityEstimate:
    """Annualized volatility; 0 means "not measured", not "measured zero"."""

    vol_ann: float
    method: VolatilityMethod
    data_points: int

    @property
    def is_measured(self) -> bool:
        return self.vol_ann > 0


# ── Health ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HealthBreakdown:
    tvl_score: float
    vol_score: float
    fee_yield_score: float
    stability_score: float
    freshness_score: float
    p1_liquidity: float
    p2_activity: float
    p3_risk_flags: float
    p4_spike_trap: float
    base: float


@dataclass(frozen=True)
class HealthScoreResult:
    score: int
    penalty_total: float
    breakdown: HealthBreakdown
    warnings: Tuple[str, ...] = ()


# ── Range / Fees / IL ────────────────────────────────────────────────────


@dataclass(frozen=True)
class RangeResult:
    lower: float
    upper: float
    width_pct: float
    lower_tick: Optional[int]
    upper_tick: Optional[int]
    prob_out_of_range: float
    mode: RiskMode
    horizon_days: float


@dataclass(frozen=True)
class FeeEstimate:
    expected_fees_24h: float
    expected_fees_7d: float
    expected_fees_30d: float
    user_liquidity_share: float
    active_fraction: float
    fees_24h_usd: Optional[float]
    mode: RiskMode


@dataclass(frozen=True)
class ILRiskResult:
    prob_out_of_range: float
    il_risk_score: float
    horizon_days: float
    il_at_lower_pct: float = 0.0
    il_at_upper_pct: float = 0.0


# ── Consensus / Execution / Tracker ──────────────────────────────────────


@dataclass(frozen=True)
class ConsensusResult:
    pool_address: str
    chain: str
    tvl_by_source: Dict[str, float]
    volume_by_source: Dict[str, float]
    max_divergence: float
    tvl_divergence: float
    volume_divergence: float
    sources: Tuple[str, ...]
    inconsistency_penalty: int
    reason: str


@dataclass(frozen=True)
class ExecutionCostResult:
    impact_100: float  # percent
    impact_1000: float  # percent
    execution_cost_penalty: int
    pool_type: PoolType
    reason: str


@dataclass(frozen=True)
class TvlDropResult:
    pool_id: str
    tvl_now: float
    tvl_peak_24h: float
    drop_percent: float
    liquidity_drop_penalty: int
    data_points: int


# ── Score ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HealthComponents:
    liquidity_stability: float = 0.0
    age_score: float = 0.0
    volume_consistency: float = 0.0


@dataclass(frozen=True)
class ReturnComponents:
    volume_tvl_ratio: float = 0.0
    fee_efficiency: float = 0.0
    apr_estimate: float = 0.0


@dataclass(frozen=True)
class RiskComponents:
    volatility_penalty: float = 0.0
    liquidity_drop_penalty: float = 0.0
    inconsistency_penalty: float = 0.0
    execution_cost_penalty: float = 0.0


@dataclass(frozen=True)
class ScoreBreakdown:
    health: HealthComponents = field(default_factory=HealthComponents)
    returns: ReturnComponents = field(default_factory=ReturnComponents)
    risk: RiskComponents = field(default_factory=RiskComponents)


@dataclass(frozen=True)
class Score:
    total: float
    health: float
    returns: float
    risk: float
    breakdown: ScoreBreakdown
    recommended_mode: RiskMode
    is_suspect: bool
    suspect_reasons: Tuple[str, ...] = ()

    @property
    def suspect_reason(self) -> Optional[str]:
        return "; ".join(self.suspect_reasons) if self.suspect_reasons else None


# ── Pipeline Records ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PoolIntelligence:
    """A snapshot enriched with pool type, APRs, volatility and health."""

    snapshot: PoolSnapshot
    pool_type: PoolType
    bluechip: bool
    apr: AprResult
    apr_total: Optional[float]
    apr_adjusted: Optional[float]
    volatility: VolatilityEstimate  # measured (vol_ann 0 = not measured)
    volatility_ann: float  # value fed to the health stability signal
    health: HealthScoreResult
    ratio: float  # volume_1h / TVL
    warnings: Tuple[str, ...] = ()

    @property
    def pool_id(self) -> str:
        return self.snapshot.pool_id

    @property
    def health_score(self) -> int:
        return self.health.score


@dataclass(frozen=True)
class ScoredPool:
    intelligence: PoolIntelligence
    score: Score
    tvl_drop: TvlDropResult
    execution_cost: ExecutionCostResult
    consensus: Optional[ConsensusResult] = None

    @property
    def pool_id(self) -> str:
        return self.intelligence.pool_id


@dataclass(frozen=True)
class Recommendation:
    rank: int
    pool: PoolIntelligence
    mode: RiskMode
    reason: str


@dataclass(frozen=True)
class PositionRecommendation:
    """A ranked, capital-aware entry plan for one scored pool."""

    rank: int
    scored: ScoredPool
    mode: RiskMode
    probability: int  # percent, capped at 85
    estimated_gain_pct: float  # 7-day
    estimated_gain_usd: float
    capital: float
    entry_conditions: Tuple[str, ...]
    exit_conditions: Tuple[str, ...]
    main_risks: Tuple[str, ...]
    commentary: str
    data_timestamp: datetime
    valid_until: datetime

    @property
    def pool_id(self) -> str:
        return self.scored.pool_id
