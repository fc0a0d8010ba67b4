"""
TVL Peak Tracker — rolling 24h TVL history → liquidity-drop penalty
====================================================================

In-memory store of (timestamp, TVL) snapshots per pool.

  - Debounce: a write within 60s of the last snapshot overwrites its TVL
    instead of appending.
  - Peak lookup over the trailing 24h window; snapshots older than 25h
    are evicted opportunistically (at most every 30 min of activity).
  - Pool cap: beyond ``max_pools`` the pools with the oldest last write
    are dropped first.

  drop%   = (peak − current) / peak × 100    (0 when current ≥ peak)
  penalty = ≥50% → 20, ≥30% → 15, ≥20% → 10, ≥10% → 5, else 0

One tracker is constructed at startup and passed to every call site.
A scheduled collection pass is the single writer per pool; reads copy
the series under the lock, so they never iterate a list being mutated.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pool_intel.central_config import TrackerSettings, get_settings
from pool_intel.models import TvlDropResult

logger = logging.getLogger(__name__)

_DROP_LADDER = (
    (50.0, 20),
    (30.0, 15),
    (20.0, 10),
    (10.0, 5),
)

Entries = Union[Mapping[str, float], Iterable[Tuple[str, float]]]


def liquidity_drop_penalty(drop_percent: float) -> int:
    """Penalty points (0-20) for a TVL drop from its 24h peak."""
    for floor, penalty in _DROP_LADDER:
        if drop_percent >= floor:
            return penalty
    return 0


def _iter_entries(entries: Entries) -> Iterable[Tuple[str, float]]:
    if isinstance(entries, Mapping):
        return entries.items()
    return entries


class TvlTracker:
    """
    Per-pool TVL snapshot series.

    ``clock`` returns seconds since the epoch; tests inject a fake one.
    """

    def __init__(
        self,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings or get_settings().tracker
        self._clock = clock
        self._lock = threading.Lock()
        self._series: Dict[str, List[List[float]]] = {}  # pool_id → [[ts, tvl], ...]
        self._last_eviction = clock()

    # ── Writes ───────────────────────────────────────────────────────────

    def record_tvl(self, pool_id: str, tvl: Optional[float]) -> None:
        """Append (or debounce-overwrite) a TVL observation. Non-positive TVL is ignored."""
        if tvl is None or tvl <= 0:
            return
        now = self._clock()
        with self._lock:
            series = self._series.setdefault(pool_id, [])
            if series and now - series[-1][0] < self._settings.debounce_seconds:
                series[-1][1] = tvl
            else:
                series.append([now, tvl])
            due = now - self._last_eviction > self._settings.eviction_interval_minutes * 60
        if due:
            self.evict_stale()

    def record_batch_tvl(self, entries: Entries) -> None:
        """Record many pools at once: ``{pool_id: tvl}`` or ``[(pool_id, tvl), ...]``."""
        for pool_id, tvl in _iter_entries(entries):
            self.record_tvl(pool_id, tvl)

    def evict_stale(self) -> int:
        """
        Drop snapshots past retention, then enforce the pool cap.

        Returns the number of snapshots plus pools removed.
        """
        now = self._clock()
        cutoff = now - self._settings.retention_hours * 3600
        evicted = 0
        with self._lock:
            for pool_id in list(self._series):
                series = self._series[pool_id]
                fresh = [s for s in series if s[0] >= cutoff]
                if not fresh:
                    del self._series[pool_id]
                    evicted += 1
                elif len(fresh) < len(series):
                    self._series[pool_id] = fresh
                    evicted += len(series) - len(fresh)

            overflow = len(self._series) - self._settings.max_pools
            if overflow > 0:
                by_last_write = sorted(
                    self._series, key=lambda pid: self._series[pid][-1][0]
                )
                for pool_id in by_last_write[:overflow]:
                    del self._series[pool_id]
                    evicted += 1

            self._last_eviction = now

        if evicted:
            logger.debug("TVL tracker evicted %d entries", evicted)
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._series.clear()

    # ── Reads ────────────────────────────────────────────────────────────

    def _snapshot(self, pool_id: str) -> List[Tuple[float, float]]:
        with self._lock:
            return [(ts, tvl) for ts, tvl in self._series.get(pool_id, ())]

    def get_tvl_drop(self, pool_id: str, current_tvl: Optional[float] = None) -> TvlDropResult:
        """Peak-to-current TVL drop over the trailing window."""
        series = self._snapshot(pool_id)
        cutoff = self._clock() - self._settings.window_hours * 3600
        window = [tvl for ts, tvl in series if ts >= cutoff]

        if not window:
            # A zero reading says nothing new; report the last known TVL
            tvl = current_tvl or (series[-1][1] if series else 0.0)
            return TvlDropResult(pool_id, tvl, tvl, 0.0, 0, 0)

        tvl_now = current_tvl if current_tvl is not None else window[-1]
        peak = max(window)
        drop = (peak - tvl_now) / peak * 100 if peak > 0 and tvl_now < peak else 0.0
        penalty = liquidity_drop_penalty(drop)
        if penalty:
            logger.info(
                "TVL drop %.1f%% from 24h peak for %s (penalty %d)", drop, pool_id, penalty
            )

        return TvlDropResult(
            pool_id=pool_id,
            tvl_now=tvl_now,
            tvl_peak_24h=float(round(peak)),
            drop_percent=round(drop, 1),
            liquidity_drop_penalty=penalty,
            data_points=len(window),
        )

    def get_batch_tvl_drop(self, entries: Entries) -> Dict[str, TvlDropResult]:
        return {
            pool_id: self.get_tvl_drop(pool_id, tvl)
            for pool_id, tvl in _iter_entries(entries)
        }

    def get_stats(self) -> Dict[str, int]:
        """Monitoring counters; oldest snapshot age is in minutes."""
        now = self._clock()
        with self._lock:
            total = sum(len(s) for s in self._series.values())
            oldest = min((s[0][0] for s in self._series.values() if s), default=now)
            tracked = len(self._series)
        return {
            "tracked_pools": tracked,
            "total_snapshots": total,
            "oldest_snapshot_age": round((now - oldest) / 60),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._series)
