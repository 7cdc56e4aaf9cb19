"""
feeds.py - Raw market data sources consumed by the oracles

Classes:
- PriceFeed: Round-based price reports (answer, updated_at) with history
- SequencerFeed: Up/down liveness signal with the time of the last transition
- ObservationPool: Pool tick with a bounded ring buffer of cumulative-tick
  observations, the input of time-weighted average prices

These are read-only from the protocol's point of view. Tests and simulations
push data into them; oracles only read.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional, Tuple
from bisect import bisect_right

from .core import InsufficientHistory, InvalidParameter


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end (negative if end is earlier)."""
    return int((end - start).total_seconds())


# ============================================================================
# PRICE FEED
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceReport:
    round_id: int
    answer: int
    updated_at: datetime


class PriceFeed:
    """
    Round-based price feed.

    Each report is an integer answer scaled by 10**decimals. Reports must be
    added in chronological order; lookups at a past time return the most
    recent report at or before that time.

    Example:
        feed = PriceFeed("ETH / USD", decimals=8)
        feed.add_report(3_000 * 10**8, datetime(2025, 1, 1))
        feed.report_at(datetime(2025, 1, 2)).answer  # 300000000000
    """

    def __init__(self, description: str, decimals: int):
        if decimals < 0:
            raise InvalidParameter(f"decimals must be non-negative, got {decimals}")
        self.description = description
        self.decimals = decimals
        self.reports: List[PriceReport] = []
        self._timestamps: List[datetime] = []

    def add_report(self, answer: int, updated_at: datetime) -> PriceReport:
        """
        Append a new round.

        Raises:
            ValueError: If updated_at is earlier than the latest report
        """
        if self.reports and updated_at < self.reports[-1].updated_at:
            raise ValueError(
                f"Reports must be chronological: {updated_at} < {self.reports[-1].updated_at}"
            )
        report = PriceReport(round_id=len(self.reports) + 1, answer=answer, updated_at=updated_at)
        self.reports.append(report)
        self._timestamps.append(updated_at)
        return report

    def latest_report(self) -> Optional[PriceReport]:
        return self.reports[-1] if self.reports else None

    def report_at(self, timestamp: datetime) -> Optional[PriceReport]:
        """
        Most recent report at or before timestamp, or None.

        Binary search over the timestamps kept alongside the reports.
        """
        idx = bisect_right(self._timestamps, timestamp)
        if idx == 0:
            return None
        return self.reports[idx - 1]

    def __repr__(self):
        return f"PriceFeed({self.description!r}, decimals={self.decimals}, {len(self.reports)} rounds)"


# ============================================================================
# SEQUENCER UPTIME FEED
# ============================================================================

class SequencerFeed:
    """
    Liveness signal of an L2 sequencer.

    Only status changes are recorded, so started_at is the time of the last
    transition, the same as an uptime feed's startedAt.
    """

    def __init__(self, is_up: bool, started_at: datetime):
        self.transitions: List[Tuple[datetime, bool]] = [(started_at, is_up)]

    def set_status(self, is_up: bool, at: datetime) -> None:
        started_at, current = self.transitions[-1]
        if at < started_at:
            raise ValueError(f"Status updates must be chronological: {at} < {started_at}")
        if is_up != current:
            self.transitions.append((at, is_up))

    def latest(self) -> Tuple[bool, datetime]:
        """Return (is_up, started_at) of the current status."""
        started_at, is_up = self.transitions[-1]
        return is_up, started_at

    def live_for(self, seconds: int, now: datetime) -> bool:
        """True if the sequencer has been up for at least `seconds` before now."""
        is_up, started_at = self.latest()
        return is_up and seconds_between(started_at, now) >= seconds

    def __repr__(self):
        is_up, started_at = self.latest()
        return f"SequencerFeed({'up' if is_up else 'down'} since {started_at})"


# ============================================================================
# OBSERVATION POOL
# ============================================================================

MIN_TICK = -887272
MAX_TICK = 887272


@dataclass(frozen=True, slots=True)
class Observation:
    timestamp: datetime
    tick_cumulative: int


class ObservationPool:
    """
    Pool state needed for a TWAP: the current tick and a ring buffer of
    cumulative-tick observations.

    tick_cumulative accumulates tick * seconds. At most one observation is
    written per timestamp, and only `cardinality` observations are retained,
    so history older than the oldest retained observation is unavailable.
    """

    def __init__(self, token0: str, token1: str, cardinality: int = 1):
        if token0 == token1:
            raise InvalidParameter("Pool tokens must differ")
        if cardinality < 1:
            raise InvalidParameter(f"cardinality must be at least 1, got {cardinality}")
        self.token0 = token0
        self.token1 = token1
        self.tick = 0
        self.observations: Deque[Observation] = deque(maxlen=cardinality)

    @property
    def cardinality(self) -> int:
        return self.observations.maxlen

    def initialize(self, tick: int, at: datetime) -> None:
        _check_tick(tick)
        self.tick = tick
        self.observations.clear()
        self.observations.append(Observation(at, 0))

    def increase_cardinality(self, cardinality: int) -> None:
        if cardinality <= self.cardinality:
            return
        self.observations = deque(self.observations, maxlen=cardinality)

    def set_tick(self, tick: int, at: datetime) -> None:
        """
        Move the pool to a new tick at time `at`, writing an observation that
        closes the period spent at the previous tick.
        """
        _check_tick(tick)
        if not self.observations:
            raise InvalidParameter("Pool not initialized")
        last = self.observations[-1]
        elapsed = seconds_between(last.timestamp, at)
        if elapsed < 0:
            raise ValueError(f"Observations must be chronological: {at} < {last.timestamp}")
        if elapsed > 0:
            self.observations.append(
                Observation(at, last.tick_cumulative + self.tick * elapsed)
            )
        self.tick = tick

    def observe(self, seconds_agos: List[int], now: datetime) -> List[int]:
        """
        Tick cumulatives at now - s for each s in seconds_agos.

        Targets after the last observation are extrapolated at the current
        tick; targets between observations are interpolated.

        Raises:
            InsufficientHistory: If a target is older than the oldest retained
                observation.
        """
        if not self.observations:
            raise InsufficientHistory("Pool not initialized")
        return [self._observe_single(now, seconds_ago) for seconds_ago in seconds_agos]

    def _observe_single(self, now: datetime, seconds_ago: int) -> int:
        last = self.observations[-1]
        target_offset = seconds_between(last.timestamp, now) - seconds_ago
        if target_offset >= 0:
            return last.tick_cumulative + self.tick * target_offset

        oldest = self.observations[0]
        elapsed_from_oldest = seconds_between(oldest.timestamp, now) - seconds_ago
        if elapsed_from_oldest < 0:
            raise InsufficientHistory(
                f"Observation {seconds_ago}s before {now} is older than {oldest.timestamp}"
            )

        offsets = [seconds_between(oldest.timestamp, o.timestamp) for o in self.observations]
        idx = bisect_right(offsets, elapsed_from_oldest)
        before = self.observations[idx - 1]
        if offsets[idx - 1] == elapsed_from_oldest:
            return before.tick_cumulative
        after = self.observations[idx]
        span = offsets[idx] - offsets[idx - 1]
        into = elapsed_from_oldest - offsets[idx - 1]
        return before.tick_cumulative + (after.tick_cumulative - before.tick_cumulative) * into // span

    def __repr__(self):
        return (f"ObservationPool({self.token0}/{self.token1}, tick={self.tick}, "
                f"{len(self.observations)}/{self.cardinality} observations)")


def _check_tick(tick: int) -> None:
    if not MIN_TICK <= tick <= MAX_TICK:
        raise InvalidParameter(f"tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")
