"""
taker.py - Taker Positions: opening, settlement and withdrawal

=== PAIRED POSITION ===

A taker position is always opened together with a provider position minted
from an offer. At open, with initial price P0 read from the oracle:

    taker_locked    = notional - loan_amount
    provider_locked = notional * (call% - 100%)
    put_strike      = P0 * put%
    call_strike     = P0 * call%       (put_strike < P0 < call_strike)

=== SETTLEMENT ===

At or after expiration, with end price P clamped to [put_strike, call_strike]:

    P < P0:   provider_delta =  taker_locked    * (P0 - P) / (P0 - put_strike)
    P >= P0:  provider_delta = -provider_locked * (P - P0) / (call_strike - P0)

    taker gets     taker_locked    - provider_delta
    provider gets  provider_locked + provider_delta

The split is continuous at both strikes and at P0, monotone in P, and the
two payouts always sum to taker_locked + provider_locked.

=== STATES ===

    Open -> Settled -> Withdrawn (unit burned)
    Open -> Cancelled (owner held both sides)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..config import BIPS_BASE, ConfigHub
from ..contracts import (
    PROVIDER_CONTRACT, TAKER_CONTRACT,
    allocate_symbol, burn_move, mint_move, require_owner,
)
from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType, UnitStateChange,
    UNIT_TYPE_PROVIDER_POSITION, UNIT_TYPE_TAKER_POSITION,
    AlreadySettled, InvalidOracle, InvalidParameter, InvalidPrice, InvalidStrikes,
    NotExpired, NothingToWithdraw,
    build_transaction, created_symbol, merge_transactions, mul_div, ownership_unit, token_move,
)
from ..oracles import PriceOracle
from .provider import (
    calculate_provider_locked, get_offer, mint_from_offer, settle_provider_position,
)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True, slots=True)
class TakerPosition:
    position_id: str
    provider_position: str
    offer_id: str
    collateral: str
    cash: str
    notional: int
    taker_locked: int
    provider_locked: int
    initial_price: int
    put_strike_price: int
    call_strike_price: int
    put_strike_percent: int
    call_strike_percent: int
    duration: int
    opened_at: datetime
    expiration: datetime
    settled: bool
    withdrawable: int
    settlement_price: Optional[int]
    historical_price: Optional[bool]
    burned: bool
    rolled_into: Optional[str]
    nonce: int = 0


@dataclass(frozen=True, slots=True)
class SettlementPreview:
    taker_withdrawable: int
    provider_withdrawable: int
    provider_delta: int


def get_position(view: LedgerView, position_id: str) -> TakerPosition:
    if view.get_unit(position_id).unit_type != UNIT_TYPE_TAKER_POSITION:
        raise InvalidParameter(f"{position_id} is not a taker position")
    return TakerPosition(**view.get_unit_state(position_id))


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_strike_prices(
    price: int, put_strike_percent: int, call_strike_percent: int
) -> Tuple[int, int]:
    """
    Put and call strike prices around price, rounded down.

    Raises:
        InvalidStrikes: If rounding collapses either strike onto the price
    """
    put_price = mul_div(price, put_strike_percent, BIPS_BASE)
    call_price = mul_div(price, call_strike_percent, BIPS_BASE)
    if not put_price < price < call_price:
        raise InvalidStrikes(f"Strikes {put_price}/{call_price} do not bracket price {price}")
    return put_price, call_price


def calculate_settlement(
    taker_locked: int,
    provider_locked: int,
    initial_price: int,
    put_strike_price: int,
    call_strike_price: int,
    end_price: int,
) -> Tuple[int, int]:
    """
    Split the locked funds at end_price.

    Returns:
        (taker_withdrawable, provider_delta). The provider's withdrawable
        amount is provider_locked + provider_delta.

    Example:
        >>> calculate_settlement(10, 10, 1000, 900, 1100, 1050)
        (15, -5)
    """
    price = min(max(end_price, put_strike_price), call_strike_price)
    if price < initial_price:
        provider_delta = mul_div(taker_locked, initial_price - price, initial_price - put_strike_price)
    else:
        provider_delta = -mul_div(provider_locked, price - initial_price, call_strike_price - initial_price)
    return taker_locked - provider_delta, provider_delta


def preview_settlement(view: LedgerView, position_id: str, price: int) -> SettlementPreview:
    """What each side would withdraw if the position settled at price."""
    position = get_position(view, position_id)
    taker_withdrawable, delta = calculate_settlement(
        position.taker_locked, position.provider_locked, position.initial_price,
        position.put_strike_price, position.call_strike_price, price,
    )
    return SettlementPreview(
        taker_withdrawable=taker_withdrawable,
        provider_withdrawable=position.provider_locked + delta,
        provider_delta=delta,
    )


# =============================================================================
# OPEN
# =============================================================================

def open_paired_position(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    offer_id: str,
    notional: int,
    taker_locked: int,
    price: int,
    owner: str,
    fund_from_offer: bool = True,
    provider_recipient: Optional[str] = None,
) -> PendingTransaction:
    """
    Create a taker position and its provider position, without moving the
    taker's deposit. open_position and roll acceptance fund it differently.

    Returns:
        PendingTransaction part creating TAKER_<n> and PROVIDER_<m>
    """
    offer = get_offer(view, offer_id)
    config.require_can_open_pair(offer.collateral, offer.cash, TAKER_CONTRACT)
    if oracle.base_token != offer.collateral or oracle.quote_token != offer.cash:
        raise InvalidOracle(
            f"Oracle prices {oracle.base_token}/{oracle.quote_token}, "
            f"offer is {offer.collateral}/{offer.cash}"
        )
    if price <= 0:
        raise InvalidPrice(f"Non-positive price {price}")
    if not 0 < taker_locked <= notional:
        raise InvalidParameter(f"Taker locked {taker_locked} must be in (0, {notional}]")
    put_price, call_price = calculate_strike_prices(
        price, offer.put_strike_percent, offer.call_strike_percent
    )

    position_id, counter_change = allocate_symbol(view, TAKER_CONTRACT, 'next_position_id', 'TAKER')
    mint = mint_from_offer(
        view, config, offer_id, notional, position_id, caller=TAKER_CONTRACT,
        fund_from_offer=fund_from_offer, recipient=provider_recipient,
    )
    provider_position = created_symbol(mint, UNIT_TYPE_PROVIDER_POSITION)
    expiration = _created_expiration(mint, provider_position)

    position = ownership_unit(position_id, f"Taker position {position_id}", UNIT_TYPE_TAKER_POSITION, {
        'position_id': position_id,
        'provider_position': provider_position,
        'offer_id': offer_id,
        'collateral': offer.collateral,
        'cash': offer.cash,
        'notional': notional,
        'taker_locked': taker_locked,
        'provider_locked': calculate_provider_locked(notional, offer.call_strike_percent),
        'initial_price': price,
        'put_strike_price': put_price,
        'call_strike_price': call_price,
        'put_strike_percent': offer.put_strike_percent,
        'call_strike_percent': offer.call_strike_percent,
        'duration': offer.duration,
        'opened_at': view.current_time,
        'expiration': expiration,
        'settled': False,
        'withdrawable': 0,
        'settlement_price': None,
        'historical_price': None,
        'burned': False,
        'rolled_into': None,
    })
    own = build_transaction(
        view, [mint_move(position_id, owner)], [counter_change],
        units_to_create=(position,),
    )
    return merge_transactions(
        view, [own, mint],
        TransactionOrigin(OriginType.CONTRACT, TAKER_CONTRACT, position_id, "PairedPositionOpened"),
    )


def _created_expiration(mint: PendingTransaction, provider_position: str) -> datetime:
    unit = next(u for u in mint.units_to_create if u.symbol == provider_position)
    return unit.state['expiration']


def open_position(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    taker: str,
    offer_id: str,
    notional: int,
    loan_amount: int,
) -> PendingTransaction:
    """
    Open a paired position at the oracle's current price.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        oracle: Price oracle for the offer's collateral/cash pair
        taker: Wallet depositing taker_locked and receiving TAKER_<n>
        offer_id: Provider offer to mint from
        notional: Position notional in raw cash units
        loan_amount: Part of notional not locked by the taker

    Returns:
        PendingTransaction creating the taker and provider positions

    Raises:
        InvalidParameter: If loan_amount is not in [0, notional)
        InvalidOracle: If the oracle does not price the offer's pair
        InsufficientOfferLiquidity: If the offer cannot back notional
    """
    if not 0 <= loan_amount < notional:
        raise InvalidParameter(f"Loan amount {loan_amount} must be in [0, {notional})")
    price = oracle.current_price(view.current_time)
    taker_locked = notional - loan_amount
    paired = open_paired_position(view, config, oracle, offer_id, notional, taker_locked, price, taker)
    position_id = created_symbol(paired, UNIT_TYPE_TAKER_POSITION)
    offer = get_offer(view, offer_id)
    deposit = build_transaction(
        view, token_move(taker_locked, offer.cash, taker, TAKER_CONTRACT, position_id)
    )
    return merge_transactions(
        view, [paired, deposit],
        TransactionOrigin(OriginType.CONTRACT, TAKER_CONTRACT, position_id, "PairedPositionOpened"),
    )


# =============================================================================
# SETTLE / WITHDRAW
# =============================================================================

def settlement_parts(
    view: LedgerView,
    oracle: PriceOracle,
    position_id: str,
    withdraw_to: Optional[str] = None,
) -> Tuple[PendingTransaction, int]:
    """
    Settle a position at its expiration price, optionally withdrawing the
    taker side to withdraw_to in the same state change.

    Returns:
        (PendingTransaction part, taker_withdrawable)
    """
    position = get_position(view, position_id)
    if position.settled:
        raise AlreadySettled(f"{position_id} already settled")
    now = view.current_time
    if now < position.expiration:
        raise NotExpired(f"{position_id} expires at {position.expiration}")

    price, historical = oracle.past_price_with_fallback(position.expiration, now)
    taker_withdrawable, delta = calculate_settlement(
        position.taker_locked, position.provider_locked, position.initial_price,
        position.put_strike_price, position.call_strike_price, price,
    )

    moves: List[Move] = token_move(delta, position.cash, TAKER_CONTRACT, PROVIDER_CONTRACT, position_id)
    old_state = view.get_unit_state(position_id)
    new_state = {
        **old_state,
        'settled': True,
        'withdrawable': taker_withdrawable,
        'settlement_price': price,
        'historical_price': historical,
    }
    if withdraw_to is not None:
        require_owner(view, position_id, withdraw_to)
        moves.extend(_withdrawal_moves(position, taker_withdrawable, withdraw_to))
        new_state.update({'withdrawable': 0, 'burned': True})

    taker_part = build_transaction(view, moves, [UnitStateChange(position_id, old_state, new_state)])
    provider_part = settle_provider_position(
        view, position.provider_position, delta, caller=TAKER_CONTRACT
    )
    merged = merge_transactions(
        view, [taker_part, provider_part],
        TransactionOrigin(OriginType.LIFECYCLE, TAKER_CONTRACT, position_id, "PairedPositionSettled"),
    )
    return merged, taker_withdrawable


def settle_position(view: LedgerView, oracle: PriceOracle, position_id: str) -> PendingTransaction:
    """
    Settle an expired position. Anyone may call.

    The price is the oracle's price at expiration when available, otherwise
    its current price; historical_price records which one was used.

    Raises:
        NotExpired: Before expiration
        AlreadySettled: On the second call
    """
    pending, _ = settlement_parts(view, oracle, position_id)
    return pending


def _withdrawal_moves(position: TakerPosition, amount: int, owner: str) -> List[Move]:
    moves = token_move(amount, position.cash, TAKER_CONTRACT, owner, position.position_id)
    moves.append(burn_move(position.position_id, owner))
    return moves


def withdrawal_part(view: LedgerView, position_id: str, owner: str) -> Tuple[PendingTransaction, int]:
    """
    Withdraw a settled position to its owner and burn it, even when nothing
    is left to pay.

    Returns:
        (PendingTransaction part, amount withdrawn)
    """
    position = get_position(view, position_id)
    require_owner(view, position_id, owner)
    if not position.settled:
        raise NothingToWithdraw(f"{position_id} not settled")
    old_state = view.get_unit_state(position_id)
    new_state = {**old_state, 'withdrawable': 0, 'burned': True}
    pending = build_transaction(
        view,
        _withdrawal_moves(position, position.withdrawable, owner),
        [UnitStateChange(position_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, owner, position_id, "WithdrawalFromSettled"),
    )
    return pending, position.withdrawable


def withdraw_from_settled(view: LedgerView, position_id: str, owner: str) -> PendingTransaction:
    """
    Pay a settled taker position out to its current owner and burn it.

    Raises:
        NotPositionOwner: If owner does not hold the position
        NothingToWithdraw: If unsettled, or nothing is withdrawable
    """
    position = get_position(view, position_id)
    if not position.settled or position.withdrawable == 0:
        raise NothingToWithdraw(f"{position_id}: nothing to withdraw")
    pending, _ = withdrawal_part(view, position_id, owner)
    return pending


# =============================================================================
# CANCEL
# =============================================================================

def cancel_paired_position(view: LedgerView, position_id: str, owner: str) -> PendingTransaction:
    """
    Unwind an open position whose both sides are held by owner.

    Both locked amounts go back to owner and both units are burned.

    Raises:
        NotPositionOwner: If owner does not hold both units
        AlreadySettled: If the position was settled
    """
    position = get_position(view, position_id)
    require_owner(view, position_id, owner)
    require_owner(view, position.provider_position, owner)
    if position.settled:
        raise AlreadySettled(f"{position_id} already settled")

    old_state = view.get_unit_state(position_id)
    new_state = {**old_state, 'settled': True, 'withdrawable': 0, 'burned': True}
    taker_part = build_transaction(
        view,
        _withdrawal_moves(position, position.taker_locked, owner),
        [UnitStateChange(position_id, old_state, new_state)],
    )
    provider_part = settle_provider_position(
        view, position.provider_position, 0, caller=TAKER_CONTRACT,
        burn_from=owner, pay_out=True,
    )
    return merge_transactions(
        view, [taker_part, provider_part],
        TransactionOrigin(OriginType.USER_ACTION, owner, position_id, "PairedPositionCanceled"),
    )
