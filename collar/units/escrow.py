"""
escrow.py - Escrow Offers and Escrows: supplier-funded loan collateral

=== MODEL ===

A supplier deposits an asset into an escrow offer. When a loan opens against
the offer, the supplier's funds go to the loans contract to be swapped, and
the borrower's own collateral of the same amount plus up-front fees is held
by the escrow contract instead:

    escrowed     borrower collateral held, equal to the supplier funds used
    fees_held    interest fee + late fee reserve (paid up front)

=== FEES ===

All fees round up:

    interest_fee = amount * interest_apr * duration / (10000 * YEAR)
    late_fee     = escrowed * late_fee_apr * min(overdue, max_grace) / (10000 * YEAR)

The late fee is zero before expiration, linear inside the grace period and
capped at its end.

=== RELEASE ===

At release the loans contract returns `from_loans` of the asset:

    target     = escrowed + interest_held + late_fee
    available  = escrowed + fees_held + from_loans
    withdrawal = min(available, target)      (kept for the supplier)
    to_loans   = available - withdrawal      (refunded to the borrower)

=== STATES ===

    Active -> Released -> Withdrawn (unit burned)
    Active -> Seized (after expiration + grace, unit burned)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Tuple

from ..config import (
    BIPS_BASE, YEAR, MAX_INTEREST_APR, MAX_LATE_FEE_APR, MIN_GRACE_PERIOD, MAX_GRACE_PERIOD,
    ConfigHub,
)
from ..contracts import (
    ESCROW_CONTRACT, LOANS_CONTRACT,
    allocate_symbol, burn_move, mint_move, require_caller, require_owner,
)
from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType, UnitStateChange,
    UNIT_TYPE_ESCROW, UNIT_TYPE_ESCROW_OFFER,
    AlreadyReleased, GracePeriodNotOver, InsufficientEscrowFees, InsufficientOfferLiquidity,
    InvalidDuration, InvalidParameter, NotOfferOwner, NotYetReleased, NothingToWithdraw,
    Unit, build_transaction, mul_div, ownership_unit, record_unit, token_move,
)
from ..feeds import seconds_between


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True, slots=True)
class EscrowOffer:
    offer_id: str
    supplier: str
    asset: str
    available: int
    duration: int
    interest_apr: int
    max_grace_period: int
    late_fee_apr: int
    min_escrow: int
    nonce: int = 0


@dataclass(frozen=True, slots=True)
class Escrow:
    escrow_id: str
    offer_id: str
    loan_id: str
    supplier: str
    borrower: str
    asset: str
    escrowed: int
    fees_held: int
    interest_held: int
    late_fee_apr: int
    max_grace_period: int
    duration: int
    expiration: datetime
    released: bool
    withdrawable: int
    seized: bool
    burned: bool
    nonce: int = 0


@dataclass(frozen=True, slots=True)
class ReleasePreview:
    withdrawal: int
    to_loans: int


def get_escrow_offer(view: LedgerView, offer_id: str) -> EscrowOffer:
    if view.get_unit(offer_id).unit_type != UNIT_TYPE_ESCROW_OFFER:
        raise InvalidParameter(f"{offer_id} is not an escrow offer")
    return EscrowOffer(**view.get_unit_state(offer_id))


def get_escrow(view: LedgerView, escrow_id: str) -> Escrow:
    if view.get_unit(escrow_id).unit_type != UNIT_TYPE_ESCROW:
        raise InvalidParameter(f"{escrow_id} is not an escrow")
    return Escrow(**view.get_unit_state(escrow_id))


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_interest_fee(amount: int, interest_apr: int, duration: int) -> int:
    return mul_div(amount * interest_apr, duration, BIPS_BASE * YEAR, round_up=True)


def max_late_fee(amount: int, late_fee_apr: int, grace_period: int) -> int:
    """Late fee owed once the whole grace period has elapsed."""
    return mul_div(amount * late_fee_apr, grace_period, BIPS_BASE * YEAR, round_up=True)


def calculate_late_fee(escrow: Escrow, now: datetime) -> int:
    overdue = max(seconds_between(escrow.expiration, now), 0)
    return max_late_fee(escrow.escrowed, escrow.late_fee_apr, min(overdue, escrow.max_grace_period))


def calculate_release(escrow: Escrow, late_fee: int, from_loans: int) -> ReleasePreview:
    if from_loans < 0:
        raise InvalidParameter(f"Negative repayment {from_loans}")
    available = escrow.escrowed + escrow.fees_held + from_loans
    withdrawal = min(available, escrow.escrowed + escrow.interest_held + late_fee)
    return ReleasePreview(withdrawal=withdrawal, to_loans=available - withdrawal)


# =============================================================================
# READS
# =============================================================================

def interest_fee(view: LedgerView, offer_id: str, amount: int) -> int:
    """Interest the borrower pays up front for escrowing amount from offer_id."""
    offer = get_escrow_offer(view, offer_id)
    return calculate_interest_fee(amount, offer.interest_apr, offer.duration)


def escrow_fees(view: LedgerView, offer_id: str, amount: int) -> Tuple[int, int]:
    """
    Up-front fees for escrowing amount from offer_id.

    Returns:
        (interest_fee, late_fee_reserve); a loan must pay at least their sum.
    """
    offer = get_escrow_offer(view, offer_id)
    return (
        calculate_interest_fee(amount, offer.interest_apr, offer.duration),
        max_late_fee(amount, offer.late_fee_apr, offer.max_grace_period),
    )


def current_owed(view: LedgerView, escrow_id: str) -> Tuple[int, int]:
    """
    What the escrow is owed right now.

    Returns:
        (principal_owed, late_fee); (0, 0) once released.
    """
    escrow = get_escrow(view, escrow_id)
    if escrow.released:
        return 0, 0
    return escrow.escrowed, calculate_late_fee(escrow, view.current_time)


def preview_release(view: LedgerView, escrow_id: str, from_loans: int) -> ReleasePreview:
    """
    Split of a release with from_loans repaid, at the current time.

    Raises:
        AlreadyReleased: If the escrow was already released or seized
    """
    escrow = get_escrow(view, escrow_id)
    if escrow.released:
        raise AlreadyReleased(f"{escrow_id} already released")
    return calculate_release(escrow, calculate_late_fee(escrow, view.current_time), from_loans)


def preview_rotation(view: LedgerView, escrow_id: str, new_offer_id: str) -> ReleasePreview:
    """
    Release split when new_offer_id takes over the escrow: the new supplier's
    funds repay the old escrow in full.

    Returns:
        ReleasePreview(withdrawal for the old supplier, amount returned to loans)
    """
    escrow = get_escrow(view, escrow_id)
    offer = get_escrow_offer(view, new_offer_id)
    if offer.asset != escrow.asset:
        raise InvalidParameter(f"{new_offer_id} escrows {offer.asset}, not {escrow.asset}")
    return preview_release(view, escrow_id, escrow.escrowed)


# =============================================================================
# OFFERS
# =============================================================================

def create_escrow_offer(
    view: LedgerView,
    config: ConfigHub,
    supplier: str,
    asset: str,
    amount: int,
    duration: int,
    interest_apr: int,
    max_grace_period: int,
    late_fee_apr: int,
    min_escrow: int,
) -> PendingTransaction:
    """
    Publish an escrow offer and deposit amount of asset.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        supplier: Wallet funding the offer
        asset: Token escrowed (a loan's collateral)
        amount: Deposit in raw units
        duration: Escrow duration in seconds; must match the loan's position
        interest_apr: Interest in bips per year
        max_grace_period: Seconds after expiration before the escrow can be seized
        late_fee_apr: Late fee in bips per year
        min_escrow: Smallest amount a single loan may escrow

    Returns:
        PendingTransaction creating ESCROW_OFFER_<n>
    """
    config.require_can_open_single(asset, ESCROW_CONTRACT)
    if not config.is_valid_duration(duration):
        raise InvalidDuration(f"Duration {duration} outside [{config.min_duration}, {config.max_duration}]")
    if not 0 <= interest_apr <= MAX_INTEREST_APR:
        raise InvalidParameter(f"Interest APR {interest_apr} above {MAX_INTEREST_APR}")
    if not 0 <= late_fee_apr <= MAX_LATE_FEE_APR:
        raise InvalidParameter(f"Late fee APR {late_fee_apr} above {MAX_LATE_FEE_APR}")
    if not MIN_GRACE_PERIOD <= max_grace_period <= MAX_GRACE_PERIOD:
        raise InvalidParameter(
            f"Grace period {max_grace_period} outside [{MIN_GRACE_PERIOD}, {MAX_GRACE_PERIOD}]"
        )
    if amount <= 0 or min_escrow < 0:
        raise InvalidParameter(f"Invalid amount {amount} or minimum {min_escrow}")

    offer_id, counter_change = allocate_symbol(view, ESCROW_CONTRACT, 'next_offer_id', 'ESCROW_OFFER')
    offer = record_unit(offer_id, f"Escrow offer {offer_id}", UNIT_TYPE_ESCROW_OFFER, {
        'offer_id': offer_id,
        'supplier': supplier,
        'asset': asset,
        'available': amount,
        'duration': duration,
        'interest_apr': interest_apr,
        'max_grace_period': max_grace_period,
        'late_fee_apr': late_fee_apr,
        'min_escrow': min_escrow,
    })
    return build_transaction(
        view,
        token_move(amount, asset, supplier, ESCROW_CONTRACT, offer_id),
        [counter_change],
        origin=TransactionOrigin(OriginType.USER_ACTION, supplier, offer_id, "EscrowOfferCreated"),
        units_to_create=(offer,),
    )


def update_escrow_offer_amount(
    view: LedgerView, supplier: str, offer_id: str, new_amount: int
) -> PendingTransaction:
    """Deposit into or withdraw from an offer so that available == new_amount."""
    offer = get_escrow_offer(view, offer_id)
    if offer.supplier != supplier:
        raise NotOfferOwner(f"{supplier} does not own {offer_id}")
    if new_amount < 0:
        raise InvalidParameter(f"Offer amount must be non-negative, got {new_amount}")

    old_state = view.get_unit_state(offer_id)
    new_state = {**old_state, 'available': new_amount, 'nonce': offer.nonce + 1}
    return build_transaction(
        view,
        token_move(new_amount - offer.available, offer.asset, supplier, ESCROW_CONTRACT, offer_id),
        [UnitStateChange(offer_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, supplier, offer_id, "EscrowOfferUpdated"),
    )


# =============================================================================
# ESCROWS (loans contract only)
# =============================================================================

def _new_escrow(
    view: LedgerView,
    config: ConfigHub,
    offer_id: str,
    escrowed: int,
    fees: int,
    loan_id: str,
    borrower: str,
) -> Tuple[Unit, List[UnitStateChange], List[Move]]:
    """Escrow unit, offer/counter changes and the supplier's mint for a new escrow."""
    offer = get_escrow_offer(view, offer_id)
    config.require_can_open_single(offer.asset, ESCROW_CONTRACT)
    if not config.is_valid_duration(offer.duration):
        raise InvalidDuration(f"Offer duration {offer.duration} no longer allowed")
    if escrowed <= 0 or escrowed < offer.min_escrow:
        raise InvalidParameter(f"Escrow {escrowed} below minimum {offer.min_escrow}")
    if escrowed > offer.available:
        raise InsufficientOfferLiquidity(f"{offer_id}: available {offer.available} < {escrowed}")
    interest, reserve = escrow_fees(view, offer_id, escrowed)
    if fees < interest + reserve:
        raise InsufficientEscrowFees(f"Fees {fees} below interest {interest} + late reserve {reserve}")

    escrow_id, counter_change = allocate_symbol(view, ESCROW_CONTRACT, 'next_escrow_id', 'ESCROW')
    unit = ownership_unit(escrow_id, f"Escrow {escrow_id}", UNIT_TYPE_ESCROW, {
        'escrow_id': escrow_id,
        'offer_id': offer_id,
        'loan_id': loan_id,
        'supplier': offer.supplier,
        'borrower': borrower,
        'asset': offer.asset,
        'escrowed': escrowed,
        'fees_held': fees,
        'interest_held': interest,
        'late_fee_apr': offer.late_fee_apr,
        'max_grace_period': offer.max_grace_period,
        'duration': offer.duration,
        'expiration': view.current_time + timedelta(seconds=offer.duration),
        'released': False,
        'withdrawable': 0,
        'seized': False,
        'burned': False,
    })
    old_offer = view.get_unit_state(offer_id)
    new_offer = {**old_offer, 'available': offer.available - escrowed}
    changes = [counter_change, UnitStateChange(offer_id, old_offer, new_offer)]
    return unit, changes, [mint_move(escrow_id, offer.supplier)]


def start_escrow(
    view: LedgerView,
    config: ConfigHub,
    offer_id: str,
    escrowed: int,
    fees: int,
    loan_id: str,
    borrower: str,
    caller: str,
) -> PendingTransaction:
    """
    Start an escrow for a loan being opened.

    The borrower's escrowed collateral and fees are held; the same amount of
    the supplier's funds goes to the loans contract.

    Returns:
        PendingTransaction part creating ESCROW_<n>

    Raises:
        UnauthorizedCaller: If caller is not the loans contract
        InvalidParameter: If escrowed is below the offer's minimum
        InsufficientOfferLiquidity: If the offer has less than escrowed
        InsufficientEscrowFees: If fees do not cover interest and late fee reserve
    """
    require_caller(caller, LOANS_CONTRACT)
    unit, changes, moves = _new_escrow(view, config, offer_id, escrowed, fees, loan_id, borrower)
    asset = unit.state['asset']
    moves.extend(token_move(escrowed + fees, asset, borrower, ESCROW_CONTRACT, unit.symbol))
    moves.extend(token_move(escrowed, asset, ESCROW_CONTRACT, LOANS_CONTRACT, unit.symbol))
    return build_transaction(
        view, moves, changes,
        origin=TransactionOrigin(OriginType.CONTRACT, caller, unit.symbol, "EscrowStarted"),
        units_to_create=(unit,),
    )


def _release_change(view: LedgerView, escrow_id: str, withdrawal: int) -> UnitStateChange:
    old_state = view.get_unit_state(escrow_id)
    new_state = {**old_state, 'released': True, 'withdrawable': withdrawal}
    return UnitStateChange(escrow_id, old_state, new_state)


def end_escrow(
    view: LedgerView,
    escrow_id: str,
    from_loans: int,
    recipient: str,
    caller: str,
) -> Tuple[PendingTransaction, ReleasePreview]:
    """
    Release an escrow with from_loans repaid by the loans contract.

    The supplier's share stays withdrawable in the escrow contract; the
    remainder goes to recipient.

    Returns:
        (PendingTransaction part, ReleasePreview)
    """
    require_caller(caller, LOANS_CONTRACT)
    escrow = get_escrow(view, escrow_id)
    preview = preview_release(view, escrow_id, from_loans)
    moves = token_move(from_loans, escrow.asset, LOANS_CONTRACT, ESCROW_CONTRACT, escrow_id)
    moves.extend(token_move(preview.to_loans, escrow.asset, ESCROW_CONTRACT, recipient, escrow_id))
    pending = build_transaction(
        view, moves, [_release_change(view, escrow_id, preview.withdrawal)],
        origin=TransactionOrigin(OriginType.CONTRACT, caller, escrow_id, "EscrowReleased"),
    )
    return pending, preview


def switch_escrow(
    view: LedgerView,
    config: ConfigHub,
    escrow_id: str,
    new_offer_id: str,
    new_fees: int,
    new_loan_id: str,
    borrower: str,
    caller: str,
) -> Tuple[PendingTransaction, int]:
    """
    Move a loan's escrow to a new offer.

    The new supplier's funds repay the old escrow, whose supplier is released.
    The borrower's held collateral carries over to the new escrow; the borrower
    pays new_fees and is refunded the old escrow's unused fees.

    Returns:
        (PendingTransaction part creating the new ESCROW_<n>, fee refund)
    """
    require_caller(caller, LOANS_CONTRACT)
    escrow = get_escrow(view, escrow_id)
    preview = preview_rotation(view, escrow_id, new_offer_id)
    # to_loans includes the held collateral, which stays for the new escrow
    refund = preview.to_loans - escrow.escrowed

    unit, changes, moves = _new_escrow(
        view, config, new_offer_id, escrow.escrowed, new_fees, new_loan_id, borrower
    )
    moves.extend(token_move(new_fees, escrow.asset, borrower, ESCROW_CONTRACT, unit.symbol))
    moves.extend(token_move(refund, escrow.asset, ESCROW_CONTRACT, borrower, escrow_id))
    changes.append(_release_change(view, escrow_id, preview.withdrawal))
    pending = build_transaction(
        view, moves, changes,
        origin=TransactionOrigin(OriginType.CONTRACT, caller, unit.symbol, "EscrowSwitched"),
        units_to_create=(unit,),
    )
    return pending, refund


# =============================================================================
# SUPPLIER ACTIONS
# =============================================================================

def withdraw_released(view: LedgerView, escrow_id: str, supplier: str) -> PendingTransaction:
    """
    Pay a released escrow out to its holder and burn it.

    Raises:
        NotPositionOwner: If supplier does not hold the escrow unit
        NotYetReleased: Before the loan is closed, cancelled or rolled away
        NothingToWithdraw: If nothing is withdrawable
    """
    escrow = get_escrow(view, escrow_id)
    require_owner(view, escrow_id, supplier)
    if not escrow.released:
        raise NotYetReleased(f"{escrow_id} not released")
    if escrow.withdrawable == 0:
        raise NothingToWithdraw(f"{escrow_id}: nothing to withdraw")

    old_state = view.get_unit_state(escrow_id)
    new_state = {**old_state, 'withdrawable': 0, 'burned': True}
    moves = token_move(escrow.withdrawable, escrow.asset, ESCROW_CONTRACT, supplier, escrow_id)
    moves.append(burn_move(escrow_id, supplier))
    return build_transaction(
        view, moves, [UnitStateChange(escrow_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, supplier, escrow_id, "EscrowWithdrawal"),
    )


def seize_escrow(view: LedgerView, escrow_id: str, supplier: str) -> PendingTransaction:
    """
    Take everything held for an escrow whose loan was not repaid within the
    grace period.

    Raises:
        AlreadyReleased: If the escrow was released
        GracePeriodNotOver: Before expiration + max_grace_period
    """
    escrow = get_escrow(view, escrow_id)
    require_owner(view, escrow_id, supplier)
    if escrow.released:
        raise AlreadyReleased(f"{escrow_id} already released")
    deadline = grace_deadline(escrow)
    if view.current_time < deadline:
        raise GracePeriodNotOver(f"{escrow_id} can be seized after {deadline}")

    seized = escrow.escrowed + escrow.fees_held
    old_state = view.get_unit_state(escrow_id)
    new_state = {
        **old_state, 'released': True, 'seized': True, 'withdrawable': 0, 'burned': True,
    }
    moves = token_move(seized, escrow.asset, ESCROW_CONTRACT, supplier, escrow_id)
    moves.append(burn_move(escrow_id, supplier))
    return build_transaction(
        view, moves, [UnitStateChange(escrow_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, supplier, escrow_id, "EscrowSeized"),
    )


def grace_deadline(escrow: Escrow) -> datetime:
    """Last moment a loan backed by escrow can still be closed."""
    return escrow.expiration + timedelta(seconds=escrow.max_grace_period)
