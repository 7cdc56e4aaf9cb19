"""
provider.py - Provider Offers and Provider Positions

=== OFFER MODEL ===

A provider publishes an offer to back collars on one collateral/cash pair at
fixed strike percents and duration:

    available  notional capacity still open to takers (cash units)
    funds      cash deposited with the provider contract to back it

The deposit for an amount of capacity is its backing: the liability the
provider can owe on that much notional, plus the protocol fee on it.

    liability(notional) = notional * (call% - 100%)

=== MINTING ===

Opening a taker position mints the matching provider position from an offer.
Capacity check and decrement happen in the same transaction:

    available >= notional            else InsufficientOfferLiquidity
    provider_locked = floor(notional * (call% - 100%))
    funds -= provider_locked + protocol_fee

The provider position is an ownership unit held by the provider. It is
settled by the taker contract and paid out on withdrawal.

=== PURE FUNCTIONS ===

    calculate_provider_locked(notional, call_strike_percent) -> int
    offer_backing(config, amount, call_strike_percent, duration) -> int
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from ..config import BIPS_BASE, MIN_CALL_STRIKE_PERCENT, ConfigHub
from ..contracts import (
    PROVIDER_CONTRACT, ROLLS_CONTRACT, TAKER_CONTRACT,
    allocate_symbol, burn_move, mint_move, require_caller, require_owner,
)
from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType, UnitStateChange,
    UNIT_TYPE_PROVIDER_OFFER, UNIT_TYPE_PROVIDER_POSITION,
    AlreadySettled, InsufficientOfferLiquidity, InvalidDuration, InvalidParameter,
    InvalidStrikes, NotOfferOwner, NothingToWithdraw,
    build_transaction, mul_div, ownership_unit, record_unit, token_move,
)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True, slots=True)
class ProviderOffer:
    offer_id: str
    provider: str
    collateral: str
    cash: str
    call_strike_percent: int
    put_strike_percent: int
    duration: int
    available: int
    funds: int
    # bumped on every amount update so repeated updates hash differently
    nonce: int = 0


@dataclass(frozen=True, slots=True)
class ProviderPosition:
    position_id: str
    offer_id: str
    taker_position: str
    collateral: str
    cash: str
    provider_locked: int
    put_strike_percent: int
    call_strike_percent: int
    duration: int
    expiration: datetime
    settled: bool
    withdrawable: int
    burned: bool
    nonce: int = 0


def get_offer(view: LedgerView, offer_id: str) -> ProviderOffer:
    if view.get_unit(offer_id).unit_type != UNIT_TYPE_PROVIDER_OFFER:
        raise InvalidParameter(f"{offer_id} is not a provider offer")
    return ProviderOffer(**view.get_unit_state(offer_id))


def get_provider_position(view: LedgerView, position_id: str) -> ProviderPosition:
    if view.get_unit(position_id).unit_type != UNIT_TYPE_PROVIDER_POSITION:
        raise InvalidParameter(f"{position_id} is not a provider position")
    return ProviderPosition(**view.get_unit_state(position_id))


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_provider_locked(notional: int, call_strike_percent: int) -> int:
    """Cash the provider locks against notional: notional * (call% - 100%), rounded down."""
    return mul_div(notional, call_strike_percent - BIPS_BASE, BIPS_BASE)


def offer_backing(config: ConfigHub, amount: int, call_strike_percent: int, duration: int) -> int:
    """
    Cash deposit required for `amount` of notional capacity.

    Liability and protocol fee both round up, so the deposit always covers
    any sequence of mints that consumes the capacity at the current fee rate.
    """
    liability = mul_div(amount, call_strike_percent - BIPS_BASE, BIPS_BASE, round_up=True)
    fee, _ = config.protocol_fee(liability, duration)
    return liability + fee


def validate_offer_terms(
    config: ConfigHub, call_strike_percent: int, put_strike_percent: int, duration: int
) -> None:
    """
    Raises:
        InvalidStrikes: If the put is outside the LTV range, or the call is
            not above 100% and within the configured maximum
        InvalidDuration: If duration is outside the configured range
    """
    if not config.is_valid_ltv(put_strike_percent):
        raise InvalidStrikes(
            f"Put strike {put_strike_percent} outside [{config.min_ltv}, {config.max_ltv}]"
        )
    if not MIN_CALL_STRIKE_PERCENT <= call_strike_percent <= config.max_call_strike_percent:
        raise InvalidStrikes(
            f"Call strike {call_strike_percent} outside "
            f"[{MIN_CALL_STRIKE_PERCENT}, {config.max_call_strike_percent}]"
        )
    if not config.is_valid_duration(duration):
        raise InvalidDuration(
            f"Duration {duration} outside [{config.min_duration}, {config.max_duration}]"
        )


# =============================================================================
# OFFERS
# =============================================================================

def create_offer(
    view: LedgerView,
    config: ConfigHub,
    provider: str,
    collateral: str,
    cash: str,
    call_strike_percent: int,
    put_strike_percent: int,
    amount: int,
    duration: int,
) -> PendingTransaction:
    """
    Publish an offer and deposit its backing.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        provider: Wallet publishing the offer
        collateral: Collateral token symbol
        cash: Cash token symbol
        call_strike_percent: Call strike in bips (above 10000)
        put_strike_percent: Put strike in bips (the loan LTV)
        amount: Notional capacity in raw cash units
        duration: Position duration in seconds

    Returns:
        PendingTransaction creating OFFER_<n>
    """
    config.require_can_open_pair(collateral, cash, PROVIDER_CONTRACT)
    validate_offer_terms(config, call_strike_percent, put_strike_percent, duration)
    if amount <= 0:
        raise InvalidParameter(f"Offer amount must be positive, got {amount}")

    offer_id, counter_change = allocate_symbol(view, PROVIDER_CONTRACT, 'next_offer_id', 'OFFER')
    funds = offer_backing(config, amount, call_strike_percent, duration)
    offer = record_unit(offer_id, f"Provider offer {offer_id}", UNIT_TYPE_PROVIDER_OFFER, {
        'offer_id': offer_id,
        'provider': provider,
        'collateral': collateral,
        'cash': cash,
        'call_strike_percent': call_strike_percent,
        'put_strike_percent': put_strike_percent,
        'duration': duration,
        'available': amount,
        'funds': funds,
    })

    return build_transaction(
        view,
        token_move(funds, cash, provider, PROVIDER_CONTRACT, offer_id),
        [counter_change],
        origin=TransactionOrigin(OriginType.USER_ACTION, provider, offer_id, "OfferCreated"),
        units_to_create=(offer,),
    )


def update_offer_amount(
    view: LedgerView,
    config: ConfigHub,
    provider: str,
    offer_id: str,
    new_amount: int,
) -> PendingTransaction:
    """
    Re-target an offer's remaining capacity; the deposit follows.

    Raising the amount pulls more backing from the provider, lowering it
    refunds the difference. Zero withdraws the offer entirely.
    """
    offer = get_offer(view, offer_id)
    if offer.provider != provider:
        raise NotOfferOwner(f"{provider} does not own {offer_id}")
    if new_amount < 0:
        raise InvalidParameter(f"Offer amount must be non-negative, got {new_amount}")

    new_funds = offer_backing(config, new_amount, offer.call_strike_percent, offer.duration)
    old_state = view.get_unit_state(offer_id)
    new_state = {**old_state, 'available': new_amount, 'funds': new_funds, 'nonce': offer.nonce + 1}

    return build_transaction(
        view,
        token_move(new_funds - offer.funds, offer.cash, provider, PROVIDER_CONTRACT, offer_id),
        [UnitStateChange(offer_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, provider, offer_id, "OfferUpdated"),
    )


# =============================================================================
# POSITIONS
# =============================================================================

def mint_from_offer(
    view: LedgerView,
    config: ConfigHub,
    offer_id: str,
    notional: int,
    taker_position: str,
    caller: str,
    fund_from_offer: bool = True,
    recipient: Optional[str] = None,
) -> PendingTransaction:
    """
    Mint the provider side of a paired position. Taker contract only.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        offer_id: Offer whose capacity is consumed
        notional: Position notional in raw cash units
        taker_position: Symbol of the taker position being opened
        caller: Must be the taker contract
        fund_from_offer: Lock provider_locked and pay the protocol fee out of
            the offer's funds. Rolls fund the new lock from their own flows.
        recipient: Owner of the new position (default: the offer's provider)

    Returns:
        PendingTransaction part creating PROVIDER_<n>

    Raises:
        UnauthorizedCaller: If caller is not the taker contract
        InsufficientOfferLiquidity: If capacity or funds do not cover notional
    """
    require_caller(caller, TAKER_CONTRACT)
    offer = get_offer(view, offer_id)
    config.require_can_open_pair(offer.collateral, offer.cash, PROVIDER_CONTRACT)
    if not config.is_valid_duration(offer.duration):
        raise InvalidDuration(f"Offer duration {offer.duration} no longer allowed")
    if notional <= 0:
        raise InvalidParameter(f"Notional must be positive, got {notional}")
    if offer.available < notional:
        raise InsufficientOfferLiquidity(
            f"{offer_id}: available {offer.available} < notional {notional}"
        )

    provider_locked = calculate_provider_locked(notional, offer.call_strike_percent)
    moves: List[Move] = []
    new_funds = offer.funds
    if fund_from_offer:
        fee, fee_recipient = config.protocol_fee(provider_locked, offer.duration)
        if offer.funds < provider_locked + fee:
            raise InsufficientOfferLiquidity(
                f"{offer_id}: funds {offer.funds} < locked {provider_locked} + fee {fee}"
            )
        new_funds -= provider_locked + fee
        # Locked funds already sit with the provider contract; only the fee leaves.
        if fee > 0:
            moves.extend(token_move(fee, offer.cash, PROVIDER_CONTRACT, fee_recipient, offer_id))

    position_id, counter_change = allocate_symbol(
        view, PROVIDER_CONTRACT, 'next_position_id', 'PROVIDER'
    )
    owner = recipient or offer.provider
    expiration = view.current_time + timedelta(seconds=offer.duration)
    position = ownership_unit(position_id, f"Provider position {position_id}", UNIT_TYPE_PROVIDER_POSITION, {
        'position_id': position_id,
        'offer_id': offer_id,
        'taker_position': taker_position,
        'collateral': offer.collateral,
        'cash': offer.cash,
        'provider_locked': provider_locked,
        'put_strike_percent': offer.put_strike_percent,
        'call_strike_percent': offer.call_strike_percent,
        'duration': offer.duration,
        'expiration': expiration,
        'settled': False,
        'withdrawable': 0,
        'burned': False,
    })
    moves.append(mint_move(position_id, owner))

    old_offer = view.get_unit_state(offer_id)
    new_offer = {**old_offer, 'available': offer.available - notional, 'funds': new_funds}

    return build_transaction(
        view,
        moves,
        [counter_change, UnitStateChange(offer_id, old_offer, new_offer)],
        origin=TransactionOrigin(OriginType.CONTRACT, TAKER_CONTRACT, position_id, "ProviderPositionMinted"),
        units_to_create=(position,),
    )


def settle_provider_position(
    view: LedgerView,
    position_id: str,
    provider_delta: int,
    caller: str,
    burn_from: Optional[str] = None,
    pay_out: bool = False,
) -> PendingTransaction:
    """
    Record the settlement of a provider position. Taker and roll contracts only.

    withdrawable becomes provider_locked + provider_delta. The cash delta
    itself is moved by the caller.

    With burn_from set, the position is closed in the same step: its unit
    is burned from that wallet and, with pay_out, the withdrawable amount is
    paid to it. Without pay_out the caller routes the amount itself.
    """
    require_caller(caller, TAKER_CONTRACT, ROLLS_CONTRACT)
    position = get_provider_position(view, position_id)
    if position.settled:
        raise AlreadySettled(f"{position_id} already settled")
    withdrawable = position.provider_locked + provider_delta
    if withdrawable < 0:
        raise InvalidParameter(
            f"{position_id}: delta {provider_delta} exceeds locked {position.provider_locked}"
        )

    old_state = view.get_unit_state(position_id)
    new_state = {**old_state, 'settled': True, 'withdrawable': withdrawable}
    moves: List[Move] = []
    if burn_from is not None:
        require_owner(view, position_id, burn_from)
        if pay_out:
            moves.extend(token_move(withdrawable, position.cash, PROVIDER_CONTRACT, burn_from, position_id))
        moves.append(burn_move(position_id, burn_from))
        new_state.update({'withdrawable': 0, 'burned': True})

    return build_transaction(
        view,
        moves,
        [UnitStateChange(position_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.LIFECYCLE, caller, position_id, "ProviderPositionSettled"),
    )


def withdraw_from_settled(view: LedgerView, position_id: str, owner: str) -> PendingTransaction:
    """
    Pay a settled provider position out to its owner and burn it.

    Raises:
        NotPositionOwner: If owner does not hold the position
        NothingToWithdraw: If unsettled, or already withdrawn
    """
    position = get_provider_position(view, position_id)
    require_owner(view, position_id, owner)
    if not position.settled or position.withdrawable == 0:
        raise NothingToWithdraw(f"{position_id}: nothing to withdraw")

    old_state = view.get_unit_state(position_id)
    new_state = {**old_state, 'withdrawable': 0, 'burned': True}
    moves = token_move(position.withdrawable, position.cash, PROVIDER_CONTRACT, owner, position_id)
    moves.append(burn_move(position_id, owner))

    return build_transaction(
        view,
        moves,
        [UnitStateChange(position_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, owner, position_id, "WithdrawalFromSettled"),
    )
