"""
rolls.py - Roll Offers: replacing an open position before expiry

=== ROLL MODEL ===

A provider offers to roll an open position: settle it early at the price of
acceptance P, and open a new position around P against the same offer's
capacity. The provider's unit is held by the roll contract while the offer
is live.

    roll_fee       = fee_amount + fee_delta_factor * (P - reference) / 10000
    new_notional   = notional     * P / P0
    new_taker_lock = taker_locked * P / P0
    new_prov_lock  = new_notional * (call% - 100%)

Cash transfers (positive: paid to the party, negative: paid by it):

    to_taker    = taker_settled    - new_taker_lock - roll_fee
    to_provider = provider_settled - new_prov_lock  + roll_fee - protocol_fee

so that

    to_taker + to_provider + protocol_fee + new locks == old locks

The taker accepts with price bounds and a minimum to_taker; the provider's
minimum to_provider is fixed in the offer.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from ..config import BIPS_BASE, ConfigHub
from ..contracts import (
    PROVIDER_CONTRACT, ROLLS_CONTRACT, TAKER_CONTRACT,
    allocate_symbol, burn_move, require_owner,
)
from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType, UnitStateChange,
    UNIT_TYPE_ROLL_OFFER, UNIT_TYPE_TAKER_POSITION,
    AlreadySettled, InvalidParameter, PositionExpired, PriceOutOfRollBounds,
    RollOfferExpired, RollOfferInactive, SlippageExceeded,
    build_transaction, created_symbol, merge_transactions, mul_div, record_unit,
    signed_div, token_move,
)
from ..oracles import PriceOracle
from .provider import calculate_provider_locked, settle_provider_position
from .taker import TakerPosition, calculate_settlement, get_position, open_paired_position


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True, slots=True)
class RollOffer:
    roll_id: str
    taker_position: str
    provider_position: str
    provider: str
    fee_amount: int
    fee_delta_factor: int
    fee_reference_price: int
    min_price: int
    max_price: int
    min_to_provider: int
    deadline: datetime
    active: bool
    new_taker_position: Optional[str]


@dataclass(frozen=True, slots=True)
class RollPreview:
    price: int
    roll_fee: int
    taker_settled: int
    provider_settled: int
    new_notional: int
    new_taker_locked: int
    new_provider_locked: int
    protocol_fee: int
    to_taker: int
    to_provider: int


def get_roll_offer(view: LedgerView, roll_id: str) -> RollOffer:
    if view.get_unit(roll_id).unit_type != UNIT_TYPE_ROLL_OFFER:
        raise InvalidParameter(f"{roll_id} is not a roll offer")
    return RollOffer(**view.get_unit_state(roll_id))


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_roll_fee(fee_amount: int, fee_delta_factor: int, reference_price: int, price: int) -> int:
    """
    Roll fee adjusted by the price move since the position opened, truncated
    toward zero.

    Example:
        >>> calculate_roll_fee(5, 5_000, 1000, 1100)
        55
    """
    return fee_amount + signed_div(fee_delta_factor * (price - reference_price), BIPS_BASE)


def calculate_roll(
    config: ConfigHub,
    position: TakerPosition,
    roll: RollOffer,
    price: int,
) -> RollPreview:
    """
    Roll amounts for position at price. Shared by preview_roll and
    accept_roll so both report identical numbers.
    """
    if price <= 0:
        raise InvalidParameter(f"Non-positive roll price {price}")
    roll_fee = calculate_roll_fee(
        roll.fee_amount, roll.fee_delta_factor, roll.fee_reference_price, price
    )
    taker_settled, provider_delta = calculate_settlement(
        position.taker_locked, position.provider_locked, position.initial_price,
        position.put_strike_price, position.call_strike_price, price,
    )
    provider_settled = position.provider_locked + provider_delta

    new_notional = mul_div(position.notional, price, position.initial_price)
    new_taker_locked = mul_div(position.taker_locked, price, position.initial_price)
    new_provider_locked = calculate_provider_locked(new_notional, position.call_strike_percent)
    protocol_fee, _ = config.protocol_fee(new_provider_locked, position.duration)

    return RollPreview(
        price=price,
        roll_fee=roll_fee,
        taker_settled=taker_settled,
        provider_settled=provider_settled,
        new_notional=new_notional,
        new_taker_locked=new_taker_locked,
        new_provider_locked=new_provider_locked,
        protocol_fee=protocol_fee,
        to_taker=taker_settled - new_taker_locked - roll_fee,
        to_provider=provider_settled - new_provider_locked + roll_fee - protocol_fee,
    )


def preview_roll(view: LedgerView, config: ConfigHub, roll_id: str, price: int) -> RollPreview:
    """Amounts accept_roll would transfer at price. Does not check bounds or deadline."""
    roll = get_roll_offer(view, roll_id)
    return calculate_roll(config, get_position(view, roll.taker_position), roll, price)


# =============================================================================
# OFFERS
# =============================================================================

def create_roll_offer(
    view: LedgerView,
    config: ConfigHub,
    provider: str,
    taker_position: str,
    fee_amount: int,
    fee_delta_factor: int,
    min_price: int,
    max_price: int,
    min_to_provider: int,
    deadline: datetime,
) -> PendingTransaction:
    """
    Offer to roll an open position. Provider side only.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        provider: Holder of the position's provider unit
        taker_position: Position to roll
        fee_amount: Base roll fee paid by the taker (negative: paid to the taker)
        fee_delta_factor: Fee sensitivity to the price move, in bips
        min_price: Lowest acceptable roll price
        max_price: Highest acceptable roll price
        min_to_provider: Lowest acceptable to_provider (may be negative)
        deadline: Last moment the offer can be accepted

    Returns:
        PendingTransaction creating ROLL_<n> and escrowing the provider unit
    """
    position = get_position(view, taker_position)
    config.require_can_open_pair(position.collateral, position.cash, ROLLS_CONTRACT)
    require_owner(view, position.provider_position, provider)
    _require_open(view, position)
    if not 0 < min_price <= max_price:
        raise InvalidParameter(f"Invalid roll price bounds [{min_price}, {max_price}]")
    if abs(fee_delta_factor) > BIPS_BASE:
        raise InvalidParameter(f"Fee delta factor {fee_delta_factor} exceeds {BIPS_BASE}")
    if deadline < view.current_time:
        raise InvalidParameter(f"Deadline {deadline} already passed")

    roll_id, counter_change = allocate_symbol(view, ROLLS_CONTRACT, 'next_roll_id', 'ROLL')
    roll = record_unit(roll_id, f"Roll offer {roll_id}", UNIT_TYPE_ROLL_OFFER, {
        'roll_id': roll_id,
        'taker_position': taker_position,
        'provider_position': position.provider_position,
        'provider': provider,
        'fee_amount': fee_amount,
        'fee_delta_factor': fee_delta_factor,
        'fee_reference_price': position.initial_price,
        'min_price': min_price,
        'max_price': max_price,
        'min_to_provider': min_to_provider,
        'deadline': deadline,
        'active': True,
        'new_taker_position': None,
    })
    custody = Move(Decimal(1), position.provider_position, provider, ROLLS_CONTRACT, roll_id)

    return build_transaction(
        view, [custody], [counter_change],
        origin=TransactionOrigin(OriginType.USER_ACTION, provider, roll_id, "RollOfferCreated"),
        units_to_create=(roll,),
    )


def cancel_roll_offer(view: LedgerView, roll_id: str, provider: str) -> PendingTransaction:
    """Withdraw a live roll offer and return the provider unit."""
    roll = get_roll_offer(view, roll_id)
    if roll.provider != provider:
        raise InvalidParameter(f"{provider} did not create {roll_id}")
    if not roll.active:
        raise RollOfferInactive(f"{roll_id} is not active")

    old_state = view.get_unit_state(roll_id)
    new_state = {**old_state, 'active': False}
    release = Move(Decimal(1), roll.provider_position, ROLLS_CONTRACT, provider, roll_id)
    return build_transaction(
        view, [release], [UnitStateChange(roll_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, provider, roll_id, "RollOfferCancelled"),
    )


# =============================================================================
# EXECUTION
# =============================================================================

def _require_open(view: LedgerView, position: TakerPosition) -> None:
    if position.settled:
        raise AlreadySettled(f"{position.position_id} already settled")
    if view.current_time >= position.expiration:
        raise PositionExpired(f"{position.position_id} expired at {position.expiration}")


def roll_parts(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    roll_id: str,
    taker: str,
    price: int,
) -> Tuple[PendingTransaction, RollPreview, str]:
    """
    Everything accept_roll does except the taker's slippage check.

    Returns:
        (PendingTransaction part, RollPreview, new taker position symbol)
    """
    roll = get_roll_offer(view, roll_id)
    if not roll.active:
        raise RollOfferInactive(f"{roll_id} is not active")
    if view.current_time > roll.deadline:
        raise RollOfferExpired(f"{roll_id} expired at {roll.deadline}")
    if not roll.min_price <= price <= roll.max_price:
        raise PriceOutOfRollBounds(
            f"Price {price} outside [{roll.min_price}, {roll.max_price}]"
        )
    position = get_position(view, roll.taker_position)
    require_owner(view, position.position_id, taker)
    _require_open(view, position)

    preview = calculate_roll(config, position, roll, price)
    if preview.to_provider < roll.min_to_provider:
        raise SlippageExceeded(
            f"to_provider {preview.to_provider} below provider minimum {roll.min_to_provider}"
        )

    new_position = open_paired_position(
        view, config, oracle, position.offer_id, preview.new_notional,
        preview.new_taker_locked, price, taker,
        fund_from_offer=False, provider_recipient=roll.provider,
    )
    new_taker_position = created_symbol(new_position, UNIT_TYPE_TAKER_POSITION)

    cash = position.cash
    _, fee_recipient = config.protocol_fee(preview.new_provider_locked, position.duration)
    provider_delta = preview.provider_settled - position.provider_locked
    moves: List[Move] = []
    moves.extend(token_move(provider_delta + preview.roll_fee, cash, TAKER_CONTRACT, PROVIDER_CONTRACT, roll_id))
    moves.extend(token_move(preview.to_taker, cash, TAKER_CONTRACT, taker, roll_id))
    moves.extend(token_move(preview.to_provider, cash, PROVIDER_CONTRACT, roll.provider, roll_id))
    if preview.protocol_fee > 0:
        moves.extend(token_move(preview.protocol_fee, cash, PROVIDER_CONTRACT, fee_recipient, roll_id))
    moves.append(burn_move(position.position_id, taker))

    old_taker = view.get_unit_state(position.position_id)
    new_taker = {
        **old_taker,
        'settled': True,
        'withdrawable': 0,
        'settlement_price': price,
        'historical_price': False,
        'burned': True,
        'rolled_into': new_taker_position,
    }
    old_roll = view.get_unit_state(roll_id)
    new_roll = {**old_roll, 'active': False, 'new_taker_position': new_taker_position}
    flows = build_transaction(view, moves, [
        UnitStateChange(position.position_id, old_taker, new_taker),
        UnitStateChange(roll_id, old_roll, new_roll),
    ])
    old_provider = settle_provider_position(
        view, position.provider_position, provider_delta, caller=ROLLS_CONTRACT,
        burn_from=ROLLS_CONTRACT,
    )

    pending = merge_transactions(
        view, [flows, old_provider, new_position],
        TransactionOrigin(OriginType.CONTRACT, ROLLS_CONTRACT, roll_id, "RollExecuted"),
    )
    return pending, preview, new_taker_position


def accept_roll(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    roll_id: str,
    taker: str,
    price: int,
    min_to_taker: int,
) -> PendingTransaction:
    """
    Execute a roll offer at price.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        oracle: Oracle for the position's pair (validates the new position)
        roll_id: Roll offer to accept
        taker: Holder of the taker position
        price: Roll price, normally oracle.current_price(now)
        min_to_taker: Lowest acceptable to_taker (may be negative)

    Returns:
        PendingTransaction settling the old position and opening the new one

    Raises:
        RollOfferInactive: If the offer was cancelled or executed
        RollOfferExpired: After the deadline
        PriceOutOfRollBounds: If price is outside the offer's bounds
        SlippageExceeded: If either side would receive less than its minimum
    """
    pending, preview, _ = roll_parts(view, config, oracle, roll_id, taker, price)
    if preview.to_taker < min_to_taker:
        raise SlippageExceeded(f"to_taker {preview.to_taker} below minimum {min_to_taker}")
    return pending
