"""
oracles.py - Price oracles for the collar protocol

Every oracle answers the same question: how many raw units of the quote token
one whole base token is worth, scaled to 10**quote_decimals. Three strategies
implement the PriceOracle protocol:

- FeedOracle: a single round-based feed, with staleness and sequencer checks
- CombinedOracle: two FeedOracle legs through a common pivot asset
- TwapOracle: time-weighted average tick of an ObservationPool

Pick one with create_oracle(OracleKind.X, ...). Consumers only depend on the
protocol.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, localcontext
from enum import Enum
from typing import Optional, Protocol, Tuple, runtime_checkable

from .config import MIN_TWAP_WINDOW
from .core import (
    InsufficientHistory, InvalidOracle, InvalidParameter, InvalidPrice,
    NotConfigured, SequencerDown, StaleFeed,
)
from .feeds import ObservationPool, PriceFeed, SequencerFeed, seconds_between


DEFAULT_SEQUENCER_GRACE_PERIOD = 3600
TICK_BASE = Decimal("1.0001")


@runtime_checkable
class PriceOracle(Protocol):
    """Capability shared by every oracle strategy."""

    base_token: str
    quote_token: str
    base_decimals: int
    quote_decimals: int
    description: str

    def current_price(self, now: datetime) -> int:
        ...

    def inverse_price(self, now: datetime) -> int:
        ...

    def past_price(self, timestamp: datetime, now: datetime) -> int:
        ...

    def past_price_with_fallback(self, timestamp: datetime, now: datetime) -> Tuple[int, bool]:
        ...

    def sequencer_live_for(self, seconds: int, now: datetime) -> bool:
        ...


class OracleKind(str, Enum):
    FEED = "feed"
    COMBINED = "combined"
    TWAP = "twap"


# ============================================================================
# SHARED HELPERS
# ============================================================================

def invert_price(price: int, base_decimals: int, quote_decimals: int) -> int:
    """Base raw units per one whole quote token, given a base/quote price."""
    if price <= 0:
        raise InvalidPrice(f"Cannot invert non-positive price {price}")
    return 10 ** (base_decimals + quote_decimals) // price


def convert_to_base_amount(quote_amount: int, price: int, base_decimals: int) -> int:
    """Base raw amount worth quote_amount at price (rounds down)."""
    if price <= 0:
        raise InvalidPrice(f"Non-positive price {price}")
    return quote_amount * 10 ** base_decimals // price


def convert_to_quote_amount(base_amount: int, price: int, base_decimals: int) -> int:
    """Quote raw amount worth base_amount at price (rounds down)."""
    return base_amount * price // 10 ** base_decimals


def _with_fallback(oracle: PriceOracle, timestamp: datetime, now: datetime) -> Tuple[int, bool]:
    try:
        return oracle.past_price(timestamp, now), True
    except InsufficientHistory:
        return oracle.current_price(now), False


def _check_sequencer(
    sequencer: Optional[SequencerFeed], seconds: int, now: datetime, error=SequencerDown
) -> None:
    if sequencer is not None and not sequencer.live_for(seconds, now):
        raise error(f"Sequencer not live for {seconds}s at {now}")


def _check_past(timestamp: datetime, now: datetime) -> None:
    if timestamp > now:
        raise InvalidParameter(f"Past price requested for future time {timestamp}")


# ============================================================================
# DIRECT FEED
# ============================================================================

class FeedOracle:
    """
    Oracle reading a single round-based feed.

    A report older than max_staleness seconds is rejected. With a sequencer
    feed configured, prices are only served once the sequencer has been up
    for sequencer_grace_period seconds.
    """

    def __init__(
        self,
        base_token: str,
        quote_token: str,
        base_decimals: int,
        quote_decimals: int,
        feed: PriceFeed,
        max_staleness: int,
        sequencer: Optional[SequencerFeed] = None,
        sequencer_grace_period: int = DEFAULT_SEQUENCER_GRACE_PERIOD,
    ):
        if base_token == quote_token:
            raise InvalidOracle("Base and quote must differ")
        if max_staleness <= 0:
            raise InvalidParameter(f"max_staleness must be positive, got {max_staleness}")
        self.base_token = base_token
        self.quote_token = quote_token
        self.base_decimals = base_decimals
        self.quote_decimals = quote_decimals
        self.feed = feed
        self.max_staleness = max_staleness
        self.sequencer = sequencer
        self.sequencer_grace_period = sequencer_grace_period
        self.description = feed.description

    def sequencer_live_for(self, seconds: int, now: datetime) -> bool:
        if self.sequencer is None:
            raise NotConfigured(f"No sequencer feed for {self.description}")
        return self.sequencer.live_for(seconds, now)

    def latest_answer(self, now: datetime) -> Tuple[int, int]:
        """
        Checked raw (answer, feed_decimals) of the latest round.

        Raises:
            SequencerDown: If the sequencer is down or inside its grace period
            StaleFeed: If there is no round, or the latest one is too old
            InvalidPrice: If the answer is not positive
        """
        _check_sequencer(self.sequencer, self.sequencer_grace_period, now)
        report = self.feed.latest_report()
        if report is None:
            raise StaleFeed(f"{self.description}: no rounds")
        if report.answer <= 0:
            raise InvalidPrice(f"{self.description}: answer {report.answer}")
        if seconds_between(report.updated_at, now) > self.max_staleness:
            raise StaleFeed(
                f"{self.description}: updated {report.updated_at}, stale at {now}"
            )
        return report.answer, self.feed.decimals

    def past_answer(self, timestamp: datetime, now: datetime) -> Tuple[int, int]:
        """
        Raw (answer, feed_decimals) of the round in effect at timestamp.

        Raises:
            InsufficientHistory: If no round was fresh at timestamp, or the
                sequencer was not up for the whole time since timestamp
        """
        _check_past(timestamp, now)
        _check_sequencer(self.sequencer, seconds_between(timestamp, now), now, InsufficientHistory)
        report = self.feed.report_at(timestamp)
        if report is None:
            raise InsufficientHistory(f"{self.description}: no round at {timestamp}")
        if seconds_between(report.updated_at, timestamp) > self.max_staleness:
            raise InsufficientHistory(f"{self.description}: round at {timestamp} was stale")
        if report.answer <= 0:
            raise InvalidPrice(f"{self.description}: answer {report.answer}")
        return report.answer, self.feed.decimals

    def _scale(self, answer: int, feed_decimals: int) -> int:
        return answer * 10 ** self.quote_decimals // 10 ** feed_decimals

    def current_price(self, now: datetime) -> int:
        return self._scale(*self.latest_answer(now))

    def inverse_price(self, now: datetime) -> int:
        return invert_price(self.current_price(now), self.base_decimals, self.quote_decimals)

    def past_price(self, timestamp: datetime, now: datetime) -> int:
        return self._scale(*self.past_answer(timestamp, now))

    def past_price_with_fallback(self, timestamp: datetime, now: datetime) -> Tuple[int, bool]:
        return _with_fallback(self, timestamp, now)

    def __repr__(self):
        return f"FeedOracle({self.base_token}/{self.quote_token}, {self.description!r})"


# ============================================================================
# COMBINED FEEDS
# ============================================================================

class CombinedOracle:
    """
    Price of A in B through a pivot P: (A/P) / (B/P).

    Leg 1 prices A in P and leg 2 prices B in P; a leg whose feed quotes the
    other way round (P/A or P/B) is marked inverted. Both legs are combined
    from their raw feed answers with exact integer arithmetic and truncated
    once, to 10**quote_decimals. Truncating each leg separately first would
    drift by up to one unit; that drift is not reproduced here.
    """

    def __init__(
        self,
        base_token: str,
        quote_token: str,
        base_decimals: int,
        quote_decimals: int,
        leg_1: FeedOracle,
        invert_1: bool,
        leg_2: FeedOracle,
        invert_2: bool,
    ):
        asset_1, pivot_1 = _leg_assets(leg_1, invert_1)
        asset_2, pivot_2 = _leg_assets(leg_2, invert_2)
        if asset_1 != base_token or asset_2 != quote_token:
            raise InvalidOracle(
                f"Legs price {asset_1} and {asset_2}, expected {base_token} and {quote_token}"
            )
        if pivot_1 != pivot_2:
            raise InvalidOracle(f"Legs do not share a pivot: {pivot_1} vs {pivot_2}")
        self.base_token = base_token
        self.quote_token = quote_token
        self.base_decimals = base_decimals
        self.quote_decimals = quote_decimals
        self.legs = ((leg_1, invert_1), (leg_2, invert_2))
        self.pivot = pivot_1
        self.description = (
            f"{leg_1.description}{' (inverted)' if invert_1 else ''} / "
            f"{leg_2.description}{' (inverted)' if invert_2 else ''}"
        )

    def _combine(self, answers) -> int:
        (a1, d1), (a2, d2) = answers
        (_, invert_1), (_, invert_2) = self.legs
        # Each leg as numerator/denominator of "asset per pivot".
        n1, m1 = (10 ** d1, a1) if invert_1 else (a1, 10 ** d1)
        n2, m2 = (10 ** d2, a2) if invert_2 else (a2, 10 ** d2)
        price = n1 * m2 * 10 ** self.quote_decimals // (m1 * n2)
        if price <= 0:
            raise InvalidPrice(f"{self.description}: combined price truncates to zero")
        return price

    def current_price(self, now: datetime) -> int:
        return self._combine([leg.latest_answer(now) for leg, _ in self.legs])

    def inverse_price(self, now: datetime) -> int:
        return invert_price(self.current_price(now), self.base_decimals, self.quote_decimals)

    def past_price(self, timestamp: datetime, now: datetime) -> int:
        return self._combine([leg.past_answer(timestamp, now) for leg, _ in self.legs])

    def past_price_with_fallback(self, timestamp: datetime, now: datetime) -> Tuple[int, bool]:
        return _with_fallback(self, timestamp, now)

    def sequencer_live_for(self, seconds: int, now: datetime) -> bool:
        configured = [leg for leg, _ in self.legs if leg.sequencer is not None]
        if not configured:
            raise NotConfigured(f"No sequencer feed for {self.description}")
        return all(leg.sequencer_live_for(seconds, now) for leg in configured)

    def __repr__(self):
        return f"CombinedOracle({self.base_token}/{self.quote_token} via {self.pivot})"


def _leg_assets(leg: FeedOracle, inverted: bool) -> Tuple[str, str]:
    """(asset, pivot) priced by a leg."""
    if inverted:
        return leg.quote_token, leg.base_token
    return leg.base_token, leg.quote_token


# ============================================================================
# TWAP
# ============================================================================

class TwapOracle:
    """
    Time-weighted average price over twap_window seconds.

    The average tick is floored (toward negative infinity) and the price at
    that tick is computed with Decimal arithmetic and truncated.
    """

    def __init__(
        self,
        base_token: str,
        quote_token: str,
        base_decimals: int,
        quote_decimals: int,
        pool: ObservationPool,
        twap_window: int,
        sequencer: Optional[SequencerFeed] = None,
        sequencer_grace_period: int = DEFAULT_SEQUENCER_GRACE_PERIOD,
    ):
        if twap_window < MIN_TWAP_WINDOW:
            raise InvalidParameter(f"TWAP window {twap_window} below minimum {MIN_TWAP_WINDOW}")
        if {base_token, quote_token} != {pool.token0, pool.token1}:
            raise InvalidOracle(
                f"Pool {pool.token0}/{pool.token1} does not trade {base_token}/{quote_token}"
            )
        self.base_token = base_token
        self.quote_token = quote_token
        self.base_decimals = base_decimals
        self.quote_decimals = quote_decimals
        self.pool = pool
        self.twap_window = twap_window
        self.sequencer = sequencer
        self.sequencer_grace_period = sequencer_grace_period
        self.description = f"TWAP {base_token}/{quote_token} {twap_window}s"

    def mean_tick(self, end: datetime, now: datetime) -> int:
        ago = seconds_between(end, now)
        start_cumulative, end_cumulative = self.pool.observe([ago + self.twap_window, ago], now)
        return (end_cumulative - start_cumulative) // self.twap_window

    def price_at_tick(self, tick: int) -> int:
        """Quote raw units for one whole base token at tick."""
        with localcontext() as ctx:
            ctx.prec = 80
            ratio = TICK_BASE ** tick
            base_amount = Decimal(10) ** self.base_decimals
            if self.base_token == self.pool.token0:
                quote_amount = base_amount * ratio
            else:
                quote_amount = base_amount / ratio
            return int(quote_amount.to_integral_value(rounding=ROUND_DOWN))

    def _price(self, end: datetime, now: datetime) -> int:
        price = self.price_at_tick(self.mean_tick(end, now))
        if price <= 0:
            raise InvalidPrice(f"{self.description}: price truncates to zero")
        return price

    def current_price(self, now: datetime) -> int:
        _check_sequencer(self.sequencer, self.sequencer_grace_period, now)
        return self._price(now, now)

    def inverse_price(self, now: datetime) -> int:
        return invert_price(self.current_price(now), self.base_decimals, self.quote_decimals)

    def past_price(self, timestamp: datetime, now: datetime) -> int:
        """
        TWAP over the window ending at timestamp.

        Raises:
            InsufficientHistory: If the pool no longer holds observations that
                old, or the sequencer went down since the window began
        """
        _check_past(timestamp, now)
        _check_sequencer(
            self.sequencer, seconds_between(timestamp, now) + self.twap_window, now,
            InsufficientHistory,
        )
        return self._price(timestamp, now)

    def past_price_with_fallback(self, timestamp: datetime, now: datetime) -> Tuple[int, bool]:
        return _with_fallback(self, timestamp, now)

    def sequencer_live_for(self, seconds: int, now: datetime) -> bool:
        if self.sequencer is None:
            raise NotConfigured(f"No sequencer feed for {self.description}")
        return self.sequencer.live_for(seconds, now)

    def __repr__(self):
        return f"TwapOracle({self.base_token}/{self.quote_token}, window={self.twap_window}s)"


# ============================================================================
# FACTORY
# ============================================================================

_ORACLE_CLASSES = {
    OracleKind.FEED: FeedOracle,
    OracleKind.COMBINED: CombinedOracle,
    OracleKind.TWAP: TwapOracle,
}


def create_oracle(kind: OracleKind, **params) -> PriceOracle:
    """
    Construct the oracle strategy for kind.

    Example:
        oracle = create_oracle(
            OracleKind.FEED, base_token="WETH", quote_token="USDC",
            base_decimals=18, quote_decimals=6, feed=feed, max_staleness=3600,
        )
    """
    try:
        cls = _ORACLE_CLASSES[OracleKind(kind)]
    except ValueError:
        raise InvalidOracle(f"Unknown oracle kind {kind!r}")
    return cls(**params)
