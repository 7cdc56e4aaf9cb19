"""
loans.py - Protected loans: collateral swapped to cash against a collar

=== OPEN ===

    1. Collateral comes from the borrower, or from an escrow offer while the
       borrower's own collateral is held in escrow
    2. Collateral is swapped to cash (slippage floor and oracle deviation check)
    3. loan_amount = swap_output * ltv / 10000      (ltv == put strike percent)
    4. The remainder opens a taker position held by the loans contract
    5. loan_amount is paid to the borrower, who receives LOAN_<n>

n is the taker position's number, so LOAN_7 is backed by TAKER_7.

=== CLOSE ===

The borrower repays loan_amount after expiry. The taker side is settled (if
needed) and withdrawn to the loans contract, all cash is swapped back to
collateral, and the collateral goes to the borrower or repays the escrow.

=== ROLL ===

A provider's roll offer is accepted at the oracle's current price with the
loans contract as taker. The loan amount is unchanged; the borrower pays or
receives the taker's cash difference and gets LOAN_<new>.

Every entry point returns one merged PendingTransaction: either all of it
applies or none of it does.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from ..config import BIPS_BASE, MAX_SWAP_PRICE_DEVIATION, ConfigHub
from ..contracts import (
    LOANS_CONTRACT, TAKER_CONTRACT,
    burn_move, entity_number, mint_move, peek_symbol, require_owner,
)
from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType, UnitStateChange,
    UNIT_TYPE_ESCROW, UNIT_TYPE_LOAN, UNIT_TYPE_TAKER_POSITION,
    InvalidDuration, InvalidLTV, InvalidOracle, InvalidParameter, LoanClosed,
    PositionExpired, SlippageExceeded, SwapPriceDeviation,
    build_transaction, created_symbol, merge_transactions, mul_div, ownership_unit, token_move,
)
from ..oracles import PriceOracle, convert_to_base_amount, convert_to_quote_amount
from ..swappers import Swapper, swap_parts
from .escrow import end_escrow, get_escrow, get_escrow_offer, grace_deadline, start_escrow, switch_escrow
from .provider import get_offer
from .rolls import get_roll_offer, roll_parts
from .taker import get_position, open_position, settlement_parts, withdrawal_part


class LoanStatus(str, Enum):
    """Status of a loan."""
    OPEN = "open"
    CLOSED = "closed"
    ROLLED = "rolled"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Loan:
    loan_id: str
    taker_position: str
    borrower: str
    collateral: str
    cash: str
    collateral_amount: int
    loan_amount: int
    uses_escrow: bool
    escrow_id: Optional[str]
    opened_at: datetime
    status: str
    rolled_into: Optional[str]
    nonce: int = 0


def get_loan(view: LedgerView, loan_id: str) -> Loan:
    if view.get_unit(loan_id).unit_type != UNIT_TYPE_LOAN:
        raise InvalidParameter(f"{loan_id} is not a loan")
    return Loan(**view.get_unit_state(loan_id))


def loan_symbol(taker_position: str) -> str:
    """Loan symbol paired with a taker position, e.g. LOAN_7 for TAKER_7."""
    return f"LOAN_{entity_number(taker_position)}"


def check_swap_price(
    oracle: PriceOracle,
    now: datetime,
    asset_in: str,
    amount_in: int,
    amount_out: int,
) -> None:
    """
    Raises:
        SwapPriceDeviation: If the swap output is further than
            MAX_SWAP_PRICE_DEVIATION from the oracle's valuation of amount_in
    """
    price = oracle.current_price(now)
    if asset_in == oracle.base_token:
        expected = convert_to_quote_amount(amount_in, price, oracle.base_decimals)
    else:
        expected = convert_to_base_amount(amount_in, price, oracle.base_decimals)
    if abs(amount_out - expected) * BIPS_BASE > expected * MAX_SWAP_PRICE_DEVIATION:
        raise SwapPriceDeviation(
            f"Swap returned {amount_out}, oracle expects {expected} "
            f"(max deviation {MAX_SWAP_PRICE_DEVIATION} bips)"
        )


def _loan_unit(
    loan_id: str,
    taker_position: str,
    borrower: str,
    collateral: str,
    cash: str,
    collateral_amount: int,
    loan_amount: int,
    escrow_id: Optional[str],
    opened_at: datetime,
):
    return ownership_unit(loan_id, f"Loan {loan_id}", UNIT_TYPE_LOAN, {
        'loan_id': loan_id,
        'taker_position': taker_position,
        'borrower': borrower,
        'collateral': collateral,
        'cash': cash,
        'collateral_amount': collateral_amount,
        'loan_amount': loan_amount,
        'uses_escrow': escrow_id is not None,
        'escrow_id': escrow_id,
        'opened_at': opened_at,
        'status': LoanStatus.OPEN.value,
        'rolled_into': None,
    })


def _require_open_loan(view: LedgerView, loan_id: str, borrower: str) -> Loan:
    loan = get_loan(view, loan_id)
    if loan.status != LoanStatus.OPEN.value:
        raise LoanClosed(f"{loan_id} is {loan.status}")
    require_owner(view, loan_id, borrower)
    return loan


# =============================================================================
# OPEN
# =============================================================================

def open_loan(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    swapper: Swapper,
    borrower: str,
    collateral_amount: int,
    min_swap_cash: int,
    ltv: int,
    offer_id: str,
    escrow_offer_id: Optional[str] = None,
    escrow_fees: int = 0,
) -> PendingTransaction:
    """
    Open a loan against a provider offer.

    Args:
        view: Read-only ledger access
        config: Protocol configuration
        oracle: Oracle for the offer's collateral/cash pair
        swapper: Swap adapter for collateral -> cash
        borrower: Wallet providing collateral and receiving the loan
        collateral_amount: Collateral swapped for the position, in raw units
        min_swap_cash: Slippage floor for the swap
        ltv: Loan-to-value in bips; must equal the offer's put strike percent
        offer_id: Provider offer backing the position
        escrow_offer_id: Escrow offer supplying the swapped collateral, if any
        escrow_fees: Fees paid up front to the escrow (see escrow_fees())

    Returns:
        PendingTransaction creating TAKER_<n>, PROVIDER_<m>, LOAN_<n> and,
        with escrow, ESCROW_<k>

    Raises:
        InvalidLTV: If ltv is outside the config range or differs from the put strike
        InvalidDuration: If the escrow offer's duration differs from the offer's
        SlippageExceeded: If the swap returns less than min_swap_cash
        SwapPriceDeviation: If the swap price is too far from the oracle
    """
    offer = get_offer(view, offer_id)
    collateral, cash = offer.collateral, offer.cash
    config.require_can_open_pair(collateral, cash, LOANS_CONTRACT)
    if not config.is_valid_ltv(ltv) or ltv != offer.put_strike_percent:
        raise InvalidLTV(f"LTV {ltv} must be valid and equal put strike {offer.put_strike_percent}")
    if oracle.base_token != collateral or oracle.quote_token != cash:
        raise InvalidOracle(f"Oracle prices {oracle.base_token}/{oracle.quote_token}")
    if collateral_amount <= 0:
        raise InvalidParameter(f"Collateral amount must be positive, got {collateral_amount}")

    loan_id = loan_symbol(peek_symbol(view, TAKER_CONTRACT, 'next_position_id', 'TAKER'))
    parts: List[PendingTransaction] = []
    escrow_id = None
    if escrow_offer_id is None:
        parts.append(build_transaction(
            view, token_move(collateral_amount, collateral, borrower, LOANS_CONTRACT, loan_id)
        ))
    else:
        escrow_offer = get_escrow_offer(view, escrow_offer_id)
        if escrow_offer.asset != collateral:
            raise InvalidParameter(f"{escrow_offer_id} escrows {escrow_offer.asset}, not {collateral}")
        if escrow_offer.duration != offer.duration:
            raise InvalidDuration(
                f"Escrow duration {escrow_offer.duration} != position duration {offer.duration}"
            )
        escrow = start_escrow(
            view, config, escrow_offer_id, collateral_amount, escrow_fees, loan_id, borrower,
            caller=LOANS_CONTRACT,
        )
        escrow_id = created_symbol(escrow, UNIT_TYPE_ESCROW)
        parts.append(escrow)

    cash_out, swap_moves = swap_parts(
        view, swapper, LOANS_CONTRACT, collateral, cash, collateral_amount, min_swap_cash
    )
    check_swap_price(oracle, view.current_time, collateral, collateral_amount, cash_out)
    parts.append(build_transaction(view, swap_moves))

    loan_amount = mul_div(cash_out, ltv, BIPS_BASE)
    position = open_position(view, config, oracle, LOANS_CONTRACT, offer_id, cash_out, loan_amount)
    taker_position = created_symbol(position, UNIT_TYPE_TAKER_POSITION)
    parts.append(position)

    loan = _loan_unit(
        loan_id, taker_position, borrower, collateral, cash, collateral_amount,
        loan_amount, escrow_id, view.current_time,
    )
    payout = token_move(loan_amount, cash, LOANS_CONTRACT, borrower, loan_id)
    payout.append(mint_move(loan_id, borrower))
    parts.append(build_transaction(view, payout, units_to_create=(loan,)))

    return merge_transactions(
        view, parts,
        TransactionOrigin(OriginType.USER_ACTION, borrower, loan_id, "LoanOpened"),
    )


# =============================================================================
# CLOSE
# =============================================================================

def close_loan(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    swapper: Swapper,
    loan_id: str,
    borrower: str,
    min_collateral_out: int,
) -> PendingTransaction:
    """
    Repay a loan after expiry and take the collateral back.

    Settles the position if no one has yet.

    Raises:
        LoanClosed: If the loan was closed, rolled or cancelled
        NotPositionOwner: If borrower does not hold the loan
        NotExpired: Before the position's expiration
        PositionExpired: With escrow, after the escrow's grace period
        SlippageExceeded: If the swap returns less than min_collateral_out
    """
    loan = _require_open_loan(view, loan_id, borrower)
    now = view.current_time
    if loan.uses_escrow:
        escrow = get_escrow(view, loan.escrow_id)
        if escrow.released or now > grace_deadline(escrow):
            raise PositionExpired(f"{loan_id}: escrow {loan.escrow_id} grace period is over")

    position = get_position(view, loan.taker_position)
    if position.settled:
        withdrawal, withdrawn = withdrawal_part(view, loan.taker_position, LOANS_CONTRACT)
    else:
        withdrawal, withdrawn = settlement_parts(view, oracle, loan.taker_position, withdraw_to=LOANS_CONTRACT)
    parts: List[PendingTransaction] = [withdrawal]

    repayment = token_move(loan.loan_amount, loan.cash, borrower, LOANS_CONTRACT, loan_id)
    cash_in = withdrawn + loan.loan_amount
    collateral_out, swap_moves = swap_parts(
        view, swapper, LOANS_CONTRACT, loan.cash, loan.collateral, cash_in, min_collateral_out
    )
    if cash_in > 0:
        check_swap_price(oracle, now, loan.cash, cash_in, collateral_out)
    parts.append(build_transaction(view, repayment + swap_moves))

    if loan.uses_escrow:
        release, _ = end_escrow(view, loan.escrow_id, collateral_out, borrower, caller=LOANS_CONTRACT)
        parts.append(release)
        payout: List[Move] = []
    else:
        payout = token_move(collateral_out, loan.collateral, LOANS_CONTRACT, borrower, loan_id)
    payout.append(burn_move(loan_id, borrower))

    old_state = view.get_unit_state(loan_id)
    new_state = {**old_state, 'status': LoanStatus.CLOSED.value}
    parts.append(build_transaction(view, payout, [UnitStateChange(loan_id, old_state, new_state)]))

    return merge_transactions(
        view, parts,
        TransactionOrigin(OriginType.USER_ACTION, borrower, loan_id, "LoanClosed"),
    )


# =============================================================================
# ROLL
# =============================================================================

def roll_loan(
    view: LedgerView,
    config: ConfigHub,
    oracle: PriceOracle,
    roll_id: str,
    loan_id: str,
    borrower: str,
    min_to_user: int,
    new_escrow_offer_id: Optional[str] = None,
    new_escrow_fees: int = 0,
) -> PendingTransaction:
    """
    Roll a loan's position through a provider's roll offer.

    The roll executes at the oracle's current price. to_user is the taker's
    cash difference (negative: the borrower pays it in). Escrow-backed loans
    move to new_escrow_offer_id; the borrower pays new_escrow_fees and is
    refunded the old escrow's unused fees, both in collateral.

    Raises:
        LoanClosed: If the loan is not open
        InvalidParameter: If the roll offer is for another position, or an
            escrow loan has no new escrow offer
        SlippageExceeded: If to_user is below min_to_user
    """
    loan = _require_open_loan(view, loan_id, borrower)
    roll = get_roll_offer(view, roll_id)
    if roll.taker_position != loan.taker_position:
        raise InvalidParameter(f"{roll_id} rolls {roll.taker_position}, not {loan.taker_position}")
    if loan.uses_escrow != (new_escrow_offer_id is not None):
        raise InvalidParameter("A new escrow offer is required exactly when the loan uses escrow")

    now = view.current_time
    price = oracle.current_price(now)
    rolled, preview, new_taker_position = roll_parts(view, config, oracle, roll_id, LOANS_CONTRACT, price)
    if preview.to_taker < min_to_user:
        raise SlippageExceeded(f"to_user {preview.to_taker} below minimum {min_to_user}")
    new_loan_id = loan_symbol(new_taker_position)
    parts: List[PendingTransaction] = [rolled]

    new_escrow_id = None
    if loan.uses_escrow:
        escrow_offer = get_escrow_offer(view, new_escrow_offer_id)
        duration = get_position(view, loan.taker_position).duration
        if escrow_offer.duration != duration:
            raise InvalidDuration(
                f"Escrow duration {escrow_offer.duration} != position duration {duration}"
            )
        switched, _ = switch_escrow(
            view, config, loan.escrow_id, new_escrow_offer_id, new_escrow_fees,
            new_loan_id, borrower, caller=LOANS_CONTRACT,
        )
        new_escrow_id = created_symbol(switched, UNIT_TYPE_ESCROW)
        parts.append(switched)

    moves = token_move(preview.to_taker, loan.cash, LOANS_CONTRACT, borrower, new_loan_id)
    moves.append(burn_move(loan_id, borrower))
    moves.append(mint_move(new_loan_id, borrower))
    new_loan = _loan_unit(
        new_loan_id, new_taker_position, borrower, loan.collateral, loan.cash,
        loan.collateral_amount, loan.loan_amount, new_escrow_id, now,
    )
    old_state = view.get_unit_state(loan_id)
    new_state = {**old_state, 'status': LoanStatus.ROLLED.value, 'rolled_into': new_loan_id}
    parts.append(build_transaction(
        view, moves, [UnitStateChange(loan_id, old_state, new_state)], units_to_create=(new_loan,),
    ))

    return merge_transactions(
        view, parts,
        TransactionOrigin(OriginType.USER_ACTION, borrower, new_loan_id, "LoanRolled"),
    )


# =============================================================================
# CANCEL
# =============================================================================

def unwrap_and_cancel_loan(view: LedgerView, loan_id: str, borrower: str) -> PendingTransaction:
    """
    Cancel a loan and hand its taker position to the borrower.

    The borrower keeps the loan; an escrow still held is released with no
    repayment, so its supplier is paid from the held collateral.
    """
    loan = _require_open_loan(view, loan_id, borrower)
    parts: List[PendingTransaction] = []
    if loan.uses_escrow and not get_escrow(view, loan.escrow_id).released:
        release, _ = end_escrow(view, loan.escrow_id, 0, borrower, caller=LOANS_CONTRACT)
        parts.append(release)

    moves = [
        Move(Decimal(1), loan.taker_position, LOANS_CONTRACT, borrower, loan_id),
        burn_move(loan_id, borrower),
    ]
    old_state = view.get_unit_state(loan_id)
    new_state = {**old_state, 'status': LoanStatus.CANCELLED.value}
    parts.append(build_transaction(view, moves, [UnitStateChange(loan_id, old_state, new_state)]))

    return merge_transactions(
        view, parts,
        TransactionOrigin(OriginType.USER_ACTION, borrower, loan_id, "LoanCancelled"),
    )
