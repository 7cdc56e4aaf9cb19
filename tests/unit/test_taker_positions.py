"""
test_taker_positions.py - Unit tests for the taker position state machine

Tests:
- Strike price computation
- Settlement split: the reference scenario, clamping
- Opening paired positions
- Settlement at expiry, historical price and fallback
- Withdrawal, ownership transfer and cancellation
"""

import pytest
from datetime import timedelta

from collar import (
    calculate_strike_prices, calculate_settlement, preview_settlement,
    open_position, settle_position, withdraw_taker_position, cancel_paired_position,
    get_position, get_provider_position, transfer_ownership, owner_of,
    FeedOracle, PriceFeed, TAKER_CONTRACT, PROVIDER_CONTRACT,
    InvalidStrikes, InvalidOracle, InvalidParameter, NotExpired, AlreadySettled,
    NothingToWithdraw, NotPositionOwner,
)

from tests.protocol_setup import (
    START, DAY, DURATION, USDC, INITIAL_PRICE,
    advance, balance, submit_position,
)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

class TestStrikePrices:
    """Tests for calculate_strike_prices."""

    def test_strikes(self):
        assert calculate_strike_prices(1000, 9_000, 11_000) == (900, 1100)

    def test_strikes_round_down(self):
        assert calculate_strike_prices(1001, 9_000, 11_000) == (900, 1101)

    def test_collapsed_strike(self):
        with pytest.raises(InvalidStrikes):
            calculate_strike_prices(1, 9_000, 11_000)


class TestSettlementSplit:
    """Tests for calculate_settlement on the reference position.

    put 90%, call 110%, initial price 1000, taker locked 10, provider locked 10.
    """

    @pytest.mark.parametrize("price, taker, provider", [
        (900, 0, 20),
        (1100, 20, 0),
        (1050, 15, 5),
        (1000, 10, 10),
        (950, 5, 15),
        (800, 0, 20),
        (1500, 20, 0),
    ])
    def test_reference_scenario(self, price, taker, provider):
        taker_withdrawable, delta = calculate_settlement(10, 10, 1000, 900, 1100, price)
        assert taker_withdrawable == taker
        assert 10 + delta == provider

    def test_payouts_sum_to_locked_total(self):
        taker_withdrawable, delta = calculate_settlement(7, 11, 1000, 900, 1100, 1033)
        assert taker_withdrawable + 11 + delta == 18


# =============================================================================
# OPEN
# =============================================================================

class TestOpenPosition:
    """Tests for open_position."""

    def test_open_position(self, offer_protocol):
        before = balance(offer_protocol, "alice", "USDC")
        position_id = submit_position(offer_protocol, "OFFER_1")
        position = get_position(offer_protocol.ledger, position_id)

        assert position_id == "TAKER_1"
        assert position.provider_position == "PROVIDER_1"
        assert position.taker_locked == 300 * USDC
        assert position.provider_locked == 300 * USDC
        assert position.initial_price == INITIAL_PRICE
        assert position.put_strike_price == 2_700 * USDC
        assert position.call_strike_price == 3_300 * USDC
        assert position.expiration == START + timedelta(seconds=DURATION)
        assert not position.settled
        assert owner_of(offer_protocol.ledger, "TAKER_1") == "alice"
        assert balance(offer_protocol, "alice", "USDC") == before - 300 * USDC
        assert balance(offer_protocol, TAKER_CONTRACT, "USDC") == 300 * USDC
        assert len(offer_protocol.ledger.events("PairedPositionOpened")) == 1

    def test_oracle_for_other_pair(self, offer_protocol):
        feed = PriceFeed("BTC / USD", 8)
        feed.add_report(60_000 * 10 ** 8, START)
        oracle = FeedOracle("WBTC", "USDC", 8, 6, feed, max_staleness=DAY)
        with pytest.raises(InvalidOracle):
            open_position(offer_protocol.ledger, offer_protocol.config, oracle, "alice",
                          "OFFER_1", 3_000 * USDC, 2_700 * USDC)

    def test_loan_amount_must_be_below_notional(self, offer_protocol):
        with pytest.raises(InvalidParameter):
            open_position(offer_protocol.ledger, offer_protocol.config, offer_protocol.oracle,
                          "alice", "OFFER_1", 3_000 * USDC, 3_000 * USDC)


# =============================================================================
# SETTLE / WITHDRAW
# =============================================================================

class TestSettlement:
    """Tests for settle_position and withdrawals."""

    def test_not_expired(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION - 1, price=INITIAL_PRICE)
        with pytest.raises(NotExpired):
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")

    def test_settle_at_expiration_price(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION, price=3_150 * USDC)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        position = get_position(offer_protocol.ledger, "TAKER_1")
        assert position.settled
        assert position.settlement_price == 3_150 * USDC
        assert position.historical_price is True
        assert position.withdrawable == 450 * USDC
        assert get_provider_position(offer_protocol.ledger, "PROVIDER_1").withdrawable == 150 * USDC
        assert balance(offer_protocol, TAKER_CONTRACT, "USDC") == 450 * USDC

    def test_settle_later_uses_expiration_price(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION, price=2_850 * USDC)
        advance(offer_protocol, DAY // 2, price=3_300 * USDC)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        position = get_position(offer_protocol.ledger, "TAKER_1")
        assert position.settlement_price == 2_850 * USDC
        assert position.withdrawable == 150 * USDC

    def test_settle_falls_back_to_current_price(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        # no report within the staleness window around expiration
        advance(offer_protocol, DURATION + 2 * DAY, price=3_300 * USDC)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        position = get_position(offer_protocol.ledger, "TAKER_1")
        assert position.historical_price is False
        assert position.settlement_price == 3_300 * USDC
        assert position.withdrawable == 600 * USDC

    def test_settle_twice(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION, price=INITIAL_PRICE)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        with pytest.raises(AlreadySettled):
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")

    def test_preview_matches_settlement(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        preview = preview_settlement(offer_protocol.ledger, "TAKER_1", 2_850 * USDC)
        assert preview.taker_withdrawable == 150 * USDC
        assert preview.provider_withdrawable == 450 * USDC
        assert preview.provider_delta == 150 * USDC

    def test_withdraw(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION, price=3_150 * USDC)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        before = balance(offer_protocol, "alice", "USDC")
        offer_protocol.ledger.submit(
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "alice")
        )
        assert balance(offer_protocol, "alice", "USDC") == before + 450 * USDC
        assert owner_of(offer_protocol.ledger, "TAKER_1") is None
        assert get_position(offer_protocol.ledger, "TAKER_1").burned

    def test_withdraw_unsettled(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(NothingToWithdraw):
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "alice")

    def test_withdraw_nothing_left(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION, price=2_000 * USDC)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        with pytest.raises(NothingToWithdraw):
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "alice")


# =============================================================================
# OWNERSHIP / CANCEL
# =============================================================================

class TestOwnershipAndCancel:
    """Tests for transfers and cancelling both sides."""

    def test_transferred_position_pays_new_owner(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        offer_protocol.ledger.submit(
            transfer_ownership(offer_protocol.ledger, "TAKER_1", "alice", "bob")
        )
        advance(offer_protocol, DURATION, price=INITIAL_PRICE)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        with pytest.raises(NotPositionOwner):
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "alice")
        before = balance(offer_protocol, "bob", "USDC")
        offer_protocol.ledger.submit(
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "bob")
        )
        assert balance(offer_protocol, "bob", "USDC") == before + 300 * USDC

    def test_cancel_requires_both_sides(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(NotPositionOwner):
            cancel_paired_position(offer_protocol.ledger, "TAKER_1", "alice")

    def test_cancel_returns_both_locks(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        offer_protocol.ledger.submit(
            transfer_ownership(offer_protocol.ledger, "PROVIDER_1", "provider", "alice")
        )
        before = balance(offer_protocol, "alice", "USDC")
        offer_protocol.ledger.submit(
            cancel_paired_position(offer_protocol.ledger, "TAKER_1", "alice")
        )
        assert balance(offer_protocol, "alice", "USDC") == before + 600 * USDC
        assert owner_of(offer_protocol.ledger, "TAKER_1") is None
        assert owner_of(offer_protocol.ledger, "PROVIDER_1") is None
        assert balance(offer_protocol, TAKER_CONTRACT, "USDC") == 0
        # offer funds stay deposited
        assert balance(offer_protocol, PROVIDER_CONTRACT, "USDC") == 9_700 * USDC

    def test_transfer_to_self(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(InvalidParameter):
            transfer_ownership(offer_protocol.ledger, "TAKER_1", "alice", "alice")

    def test_offer_is_not_transferable(self, offer_protocol):
        with pytest.raises(InvalidParameter):
            transfer_ownership(offer_protocol.ledger, "OFFER_1", "provider", "bob")
