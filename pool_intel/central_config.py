"""
Project Configuration — provider endpoints, version, engine settings
=====================================================================

Two layers:
  - Provider endpoints: frozen dataclasses with immutable lookup tables.
  - Engine tunables (score weights, suspect thresholds, z-score and
    active-fraction tables, tracker windows): pydantic models under a
    ``BaseSettings`` root, overridable without code changes through
    ``POOL_INTEL_*`` environment variables or a YAML file.

Env examples:
  POOL_INTEL_WEIGHTS__HEALTH=45
  POOL_INTEL_THRESHOLDS__MIN_LIQUIDITY=250000
  POOL_INTEL_RANGE__Z_SCORES='{"DEFENSIVE": 0.9, "NORMAL": 1.3, "AGGRESSIVE": 2.0}'

Sources:
  DEXScreener API   : https://docs.dexscreener.com/api/reference
  GeckoTerminal API : https://www.geckoterminal.com/dex-api
  DefiLlama Yields  : https://defillama.com/docs/api
"""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pool_intel.models import RiskMode

logger = logging.getLogger(__name__)

# Version: single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("pool-intel")
except PackageNotFoundError:
    # Dev / CI: package not installed, read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "Pool Intel"


# ── Provider Endpoints ───────────────────────────────────────────────────


@dataclass(frozen=True)
class DexScreenerAPI:
    """DEXScreener pair endpoint (300 req/min, no key)."""

    BASE_URL: str = "https://api.dexscreener.com"
    PAIRS_ENDPOINT: str = "/latest/dex/pairs"
    TIMEOUT_SECONDS: int = 10

    SUPPORTED_CHAINS = MappingProxyType(
        {
            "ethereum": "ethereum",
            "arbitrum": "arbitrum",
            "optimism": "optimism",
            "base": "base",
            "polygon": "polygon",
            "bsc": "bsc",
            "avalanche": "avalanche",
            # aliases
            "eth": "ethereum",
            "arb": "arbitrum",
            "matic": "polygon",
            "avax": "avalanche",
            "bnb": "bsc",
        }
    )

    @classmethod
    def get_pair_url(cls, chain_id: str, pair_address: str) -> str:
        return f"{cls.BASE_URL}{cls.PAIRS_ENDPOINT}/{chain_id}/{pair_address}"


@dataclass(frozen=True)
class GeckoTerminalAPI:
    """GeckoTerminal public API; ``pools/multi`` takes up to 30 addresses."""

    BASE_URL: str = "https://api.geckoterminal.com/api/v2"
    TIMEOUT_SECONDS: int = 15
    MULTI_BATCH_SIZE: int = 30

    # Only chains whose GeckoTerminal id differs from ours are listed
    NETWORK_IDS = MappingProxyType(
        {
            "ethereum": "eth",
            "polygon": "polygon_pos",
        }
    )
    SUPPORTED_CHAINS = frozenset(
        {"ethereum", "arbitrum", "base", "polygon", "optimism", "bsc"}
    )

    @classmethod
    def network_id(cls, chain: str) -> Optional[str]:
        if chain not in cls.SUPPORTED_CHAINS:
            return None
        return cls.NETWORK_IDS.get(chain, chain)

    @classmethod
    def get_multi_pools_url(cls, network_id: str, addresses: Iterable[str]) -> str:
        return f"{cls.BASE_URL}/networks/{network_id}/pools/multi/{','.join(addresses)}"


@dataclass(frozen=True)
class DefiLlamaAPI:
    """DefiLlama Yields API (~30 req/min, no key)."""

    YIELDS_URL: str = "https://yields.llama.fi/pools"
    TIMEOUT_SECONDS: int = 20
    CACHE_TTL_SECONDS: int = 120

    # Internal chain names → DefiLlama "chain" field
    CHAIN_NAMES = MappingProxyType(
        {
            "ethereum": "Ethereum",
            "arbitrum": "Arbitrum",
            "polygon": "Polygon",
            "base": "Base",
            "optimism": "Optimism",
            "bsc": "BSC",
            "avalanche": "Avalanche",
        }
    )


class ProviderConfig:
    """All provider endpoints in one place."""

    dexscreener = DexScreenerAPI()
    geckoterminal = GeckoTerminalAPI()
    defillama = DefiLlamaAPI()


# Global instance
config = ProviderConfig()


# ── Engine Settings ──────────────────────────────────────────────────────


class ScoreWeights(BaseModel):
    """Maximum points per score component."""

    health: float = Field(default=40.0, gt=0)
    returns: float = Field(default=35.0, gt=0)
    risk: float = Field(default=25.0, gt=0)


class SuspectThresholds(BaseModel):
    """Limits beyond which a scored pool is flagged low-confidence."""

    min_liquidity: float = Field(default=100_000.0, ge=0)
    min_volume_24h: float = Field(default=10_000.0, ge=0)
    max_apr: float = Field(default=500.0, gt=0)
    max_volume_tvl_ratio: float = Field(default=10.0, gt=0)
    max_inconsistency_penalty: float = Field(default=15.0, ge=0)


class ModeThresholds(BaseModel):
    """Score / volatility(%) gates for the recommended risk mode."""

    aggressive_min_score: float = 70.0
    aggressive_max_volatility: float = 30.0
    normal_min_score: float = 50.0
    normal_max_volatility: float = 15.0
    unknown_volatility_min_score: float = 75.0


class RangeSettings(BaseModel):
    """Range-width and fee-share tables keyed by risk mode."""

    z_scores: Dict[RiskMode, float] = Field(
        default_factory=lambda: {
            RiskMode.DEFENSIVE: 0.8,
            RiskMode.NORMAL: 1.2,
            RiskMode.AGGRESSIVE: 1.8,
        }
    )
    active_fraction: Dict[RiskMode, float] = Field(
        default_factory=lambda: {
            RiskMode.DEFENSIVE: 0.55,
            RiskMode.NORMAL: 0.75,
            RiskMode.AGGRESSIVE: 0.95,
        }
    )
    min_width_pct: float = Field(default=0.003, gt=0)
    max_width_pct: float = Field(default=0.45, gt=0, lt=1)
    stable_width_cap: float = Field(default=0.03, gt=0)

    @field_validator("z_scores", "active_fraction")
    @classmethod
    def check_every_mode(cls, table: Dict[RiskMode, float]) -> Dict[RiskMode, float]:
        missing = [m.value for m in RiskMode if m not in table]
        if missing:
            raise ValueError(f"table must define every risk mode, missing: {missing}")
        return table


class HealthSettings(BaseModel):
    """Keyword sets scanned (case-insensitive) in free-text risk warnings."""

    severe_keywords: Tuple[str, ...] = ("honeypot", "not verified", "rug")
    moderate_keywords: Tuple[str, ...] = (
        "liquidity low",
        "unverified",
        "new pool",
        "suspect",
    )


class TrackerSettings(BaseModel):
    window_hours: float = Field(default=24.0, gt=0)
    retention_hours: float = Field(default=25.0, gt=0)
    debounce_seconds: float = Field(default=60.0, ge=0)
    eviction_interval_minutes: float = Field(default=30.0, ge=0)
    max_pools: int = Field(default=600, gt=0)


class CollectorSettings(BaseModel):
    """Bounded wait for the concurrent secondary-source fetches."""

    timeout_seconds: float = Field(default=12.0, gt=0)


class EngineSettings(BaseSettings):
    """
    Root settings container.

    Built-in defaults, overridden by ``POOL_INTEL_*`` env vars; values
    passed explicitly (including those loaded from YAML) win over both.
    """

    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    thresholds: SuspectThresholds = Field(default_factory=SuspectThresholds)
    modes: ModeThresholds = Field(default_factory=ModeThresholds)
    range: RangeSettings = Field(default_factory=RangeSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    collector: CollectorSettings = Field(default_factory=CollectorSettings)

    model_config = SettingsConfigDict(
        env_prefix="POOL_INTEL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EngineSettings":
        """Load settings from a YAML file (missing file → defaults + env)."""
        yaml_file = Path(path)
        data: dict = {}
        if yaml_file.exists():
            with open(yaml_file, encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ValueError(f"{yaml_file}: invalid YAML ({e})") from e
            if not isinstance(data, dict):
                raise ValueError(f"{yaml_file}: top level must be a mapping")
            unknown = sorted(set(data) - set(cls.model_fields))
            if unknown:
                logger.warning("Ignoring unknown config keys in %s: %s", yaml_file, unknown)
        else:
            logger.info("Config file %s not found, using defaults", yaml_file)
        return cls(**data)


def load_settings(path: Optional[Union[str, Path]] = None) -> EngineSettings:
    """Fresh settings from env, optionally layered with a YAML file."""
    if path is None:
        return EngineSettings()
    return EngineSettings.from_yaml(path)


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Process-wide default settings (env read once)."""
    return EngineSettings()


def known_chains() -> List[str]:
    """Canonical chain names supported by at least one provider."""
    names = set(config.dexscreener.SUPPORTED_CHAINS.values())
    names.update(config.defillama.CHAIN_NAMES)
    return sorted(names)
