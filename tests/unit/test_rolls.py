"""
test_rolls.py - Unit tests for roll offers

Tests:
- Roll fee adjustment and truncation
- Roll amounts and the cash identity
- Offer creation, custody of the provider unit, cancellation
- Acceptance: flows, new positions, check ordering, slippage
"""

import pytest
from datetime import timedelta

from collar import (
    calculate_roll_fee, preview_roll, create_roll_offer, cancel_roll_offer, accept_roll,
    get_roll_offer, get_position, get_offer, owner_of,
    TAKER_CONTRACT, PROVIDER_CONTRACT, ROLLS_CONTRACT,
    InvalidParameter, NotPositionOwner, PositionExpired, PriceOutOfRollBounds,
    RollOfferExpired, RollOfferInactive, SlippageExceeded,
)

from tests.protocol_setup import (
    DAY, DURATION, USDC, INITIAL_PRICE,
    advance, balance, submit_offer, submit_position, submit_roll_offer, token_supplies,
)


ROLL_PRICE = 3_150 * USDC


@pytest.fixture
def roll_protocol(offer_protocol):
    """Open TAKER_1 for alice and offer ROLL_1 on it."""
    submit_position(offer_protocol, "OFFER_1")
    submit_roll_offer(offer_protocol, "TAKER_1")
    return offer_protocol


def accept(protocol, price=ROLL_PRICE, taker="alice", min_to_taker=-10 ** 12, roll_id="ROLL_1"):
    return accept_roll(
        protocol.ledger, protocol.config, protocol.oracle, roll_id, taker, price, min_to_taker
    )


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

class TestRollFee:
    """Tests for calculate_roll_fee."""

    @pytest.mark.parametrize("fee, factor, reference, price, expected", [
        (5, 5_000, 1000, 1100, 55),
        (5, 0, 1000, 1100, 5),
        (0, 10_000, 1000, 997, -3),
        (0, 3, 1000, 997, 0),          # -0.0009 truncates toward zero
        (-10, 5_000, 1000, 1000, -10),
        (10 * USDC, 5_000, INITIAL_PRICE, ROLL_PRICE, 85 * USDC),
    ])
    def test_fee(self, fee, factor, reference, price, expected):
        assert calculate_roll_fee(fee, factor, reference, price) == expected


class TestPreview:
    """Tests for preview_roll."""

    def test_amounts(self, roll_protocol):
        preview = preview_roll(roll_protocol.ledger, roll_protocol.config, "ROLL_1", ROLL_PRICE)
        assert preview.taker_settled == 450 * USDC
        assert preview.provider_settled == 150 * USDC
        assert preview.new_notional == 3_150 * USDC
        assert preview.new_taker_locked == 315 * USDC
        assert preview.new_provider_locked == 315 * USDC
        assert preview.to_taker == 135 * USDC
        assert preview.to_provider == -165 * USDC
        assert preview.protocol_fee == 0

    def test_roll_fee_moves_between_sides(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        submit_roll_offer(offer_protocol, "TAKER_1", fee_amount=10 * USDC, fee_delta_factor=5_000)
        preview = preview_roll(offer_protocol.ledger, offer_protocol.config, "ROLL_1", ROLL_PRICE)
        assert preview.roll_fee == 85 * USDC
        assert preview.to_taker == 50 * USDC
        assert preview.to_provider == -80 * USDC

    @pytest.mark.parametrize("price", [2_500 * USDC, 2_900 * USDC, INITIAL_PRICE, 3_400 * USDC])
    def test_cash_identity(self, roll_protocol, price):
        position = get_position(roll_protocol.ledger, "TAKER_1")
        p = preview_roll(roll_protocol.ledger, roll_protocol.config, "ROLL_1", price)
        total = p.to_taker + p.to_provider + p.protocol_fee + p.new_taker_locked + p.new_provider_locked
        assert total == position.taker_locked + position.provider_locked


# =============================================================================
# OFFERS
# =============================================================================

class TestRollOffers:
    """Tests for creating and cancelling roll offers."""

    def test_create_takes_custody(self, roll_protocol):
        roll = get_roll_offer(roll_protocol.ledger, "ROLL_1")
        assert roll.active
        assert roll.provider_position == "PROVIDER_1"
        assert roll.fee_reference_price == INITIAL_PRICE
        assert owner_of(roll_protocol.ledger, "PROVIDER_1") == ROLLS_CONTRACT

    def test_create_requires_provider_unit(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(NotPositionOwner):
            submit_roll_offer(offer_protocol, "TAKER_1", provider="bob")

    def test_create_after_expiry(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        advance(offer_protocol, DURATION, price=INITIAL_PRICE)
        with pytest.raises(PositionExpired):
            submit_roll_offer(offer_protocol, "TAKER_1")

    def test_deadline_in_past(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(InvalidParameter):
            submit_roll_offer(
                offer_protocol, "TAKER_1",
                deadline=offer_protocol.ledger.current_time - timedelta(seconds=1),
            )

    @pytest.mark.parametrize("min_price, max_price, factor", [
        (0, 10 ** 12, 0),
        (3_100 * USDC, 3_000 * USDC, 0),
        (1, 10 ** 12, 10_001),
    ])
    def test_invalid_terms(self, offer_protocol, min_price, max_price, factor):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(InvalidParameter):
            create_roll_offer(
                offer_protocol.ledger, offer_protocol.config, "provider", "TAKER_1",
                0, factor, min_price, max_price, 0,
                offer_protocol.ledger.current_time + timedelta(seconds=DAY),
            )

    def test_cancel_returns_unit(self, roll_protocol):
        roll_protocol.ledger.submit(cancel_roll_offer(roll_protocol.ledger, "ROLL_1", "provider"))
        assert owner_of(roll_protocol.ledger, "PROVIDER_1") == "provider"
        assert not get_roll_offer(roll_protocol.ledger, "ROLL_1").active

    def test_cancel_by_other(self, roll_protocol):
        with pytest.raises(InvalidParameter):
            cancel_roll_offer(roll_protocol.ledger, "ROLL_1", "bob")

    def test_cancel_twice(self, roll_protocol):
        roll_protocol.ledger.submit(cancel_roll_offer(roll_protocol.ledger, "ROLL_1", "provider"))
        with pytest.raises(RollOfferInactive):
            cancel_roll_offer(roll_protocol.ledger, "ROLL_1", "provider")


# =============================================================================
# EXECUTION
# =============================================================================

class TestAcceptRoll:
    """Tests for accept_roll."""

    def test_accept_moves_cash(self, roll_protocol):
        alice = balance(roll_protocol, "alice", "USDC")
        provider = balance(roll_protocol, "provider", "USDC")
        supplies = token_supplies(roll_protocol.ledger)

        roll_protocol.ledger.submit(accept(roll_protocol))

        assert balance(roll_protocol, "alice", "USDC") == alice + 135 * USDC
        assert balance(roll_protocol, "provider", "USDC") == provider - 165 * USDC
        assert balance(roll_protocol, TAKER_CONTRACT, "USDC") == 315 * USDC
        offer = get_offer(roll_protocol.ledger, "OFFER_1")
        assert balance(roll_protocol, PROVIDER_CONTRACT, "USDC") == offer.funds + 315 * USDC
        assert token_supplies(roll_protocol.ledger) == supplies

    def test_accept_replaces_positions(self, roll_protocol):
        roll_protocol.ledger.submit(accept(roll_protocol))

        old = get_position(roll_protocol.ledger, "TAKER_1")
        assert old.burned and old.settled
        assert old.rolled_into == "TAKER_2"
        assert owner_of(roll_protocol.ledger, "TAKER_1") is None
        assert owner_of(roll_protocol.ledger, "PROVIDER_1") is None

        new = get_position(roll_protocol.ledger, "TAKER_2")
        assert new.provider_position == "PROVIDER_2"
        assert new.initial_price == ROLL_PRICE
        assert new.taker_locked == 315 * USDC
        assert owner_of(roll_protocol.ledger, "TAKER_2") == "alice"
        assert owner_of(roll_protocol.ledger, "PROVIDER_2") == "provider"

        roll = get_roll_offer(roll_protocol.ledger, "ROLL_1")
        assert not roll.active
        assert roll.new_taker_position == "TAKER_2"
        # the roll draws on capacity but not on deposited funds
        offer = get_offer(roll_protocol.ledger, "OFFER_1")
        assert offer.available == 97_000 * USDC - 3_150 * USDC
        assert offer.funds == 9_700 * USDC

    def test_accept_twice(self, roll_protocol):
        roll_protocol.ledger.submit(accept(roll_protocol))
        with pytest.raises(RollOfferInactive):
            accept(roll_protocol)

    def test_after_deadline(self, roll_protocol):
        advance(roll_protocol, DAY + 1, price=ROLL_PRICE)
        with pytest.raises(RollOfferExpired):
            accept(roll_protocol)

    def test_price_out_of_bounds(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        submit_roll_offer(offer_protocol, "TAKER_1", min_price=3_100 * USDC)
        with pytest.raises(PriceOutOfRollBounds):
            accept(offer_protocol, price=INITIAL_PRICE)

    def test_bounds_checked_before_ownership(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        submit_roll_offer(offer_protocol, "TAKER_1", max_price=3_100 * USDC)
        with pytest.raises(PriceOutOfRollBounds):
            accept(offer_protocol, taker="bob")

    def test_not_taker(self, roll_protocol):
        with pytest.raises(NotPositionOwner):
            accept(roll_protocol, taker="bob")

    def test_position_expired(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        submit_roll_offer(
            offer_protocol, "TAKER_1",
            deadline=offer_protocol.ledger.current_time + timedelta(seconds=2 * DURATION),
        )
        advance(offer_protocol, DURATION, price=ROLL_PRICE)
        with pytest.raises(PositionExpired):
            accept(offer_protocol)

    def test_provider_minimum(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        submit_roll_offer(offer_protocol, "TAKER_1", min_to_provider=0)
        with pytest.raises(SlippageExceeded):
            accept(offer_protocol)

    def test_taker_minimum(self, roll_protocol):
        with pytest.raises(SlippageExceeded):
            accept(roll_protocol, min_to_taker=200 * USDC)

    def test_protocol_fee_on_new_lock(self, fee_protocol):
        submit_offer(fee_protocol)
        submit_position(fee_protocol, "OFFER_1")
        submit_roll_offer(fee_protocol, "TAKER_1")
        fees = balance(fee_protocol, "fees", "USDC")
        preview = preview_roll(fee_protocol.ledger, fee_protocol.config, "ROLL_1", ROLL_PRICE)
        assert preview.protocol_fee > 0

        fee_protocol.ledger.submit(accept(fee_protocol))
        assert balance(fee_protocol, "fees", "USDC") == fees + preview.protocol_fee
