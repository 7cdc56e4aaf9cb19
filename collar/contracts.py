"""
contracts.py - Contract wallets, identifiers and ownership units

Each protocol component is a wallet that holds the funds it is responsible
for, plus a state unit holding its id counters. Positions, escrows and loans
are ownership units: whoever holds the single unit owns the entity.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional, Tuple, Type

from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType, UnitStateChange,
    SYSTEM_WALLET, UNIT_TYPE_CONTRACT, UNIT_TYPE_TAKER_POSITION, UNIT_TYPE_PROVIDER_POSITION,
    UNIT_TYPE_ESCROW, UNIT_TYPE_LOAN,
    AuthorizationError, InvalidParameter, NotPositionOwner, UnauthorizedCaller,
    build_transaction, record_unit,
)


TAKER_CONTRACT = "collar.taker"
PROVIDER_CONTRACT = "collar.provider"
ESCROW_CONTRACT = "collar.escrow"
ROLLS_CONTRACT = "collar.rolls"
LOANS_CONTRACT = "collar.loans"

CONTRACT_WALLETS = (
    TAKER_CONTRACT,
    PROVIDER_CONTRACT,
    ESCROW_CONTRACT,
    ROLLS_CONTRACT,
    LOANS_CONTRACT,
)

OWNERSHIP_UNIT_TYPES = frozenset({
    UNIT_TYPE_TAKER_POSITION,
    UNIT_TYPE_PROVIDER_POSITION,
    UNIT_TYPE_ESCROW,
    UNIT_TYPE_LOAN,
})


def contract_state_symbol(contract: str) -> str:
    """Symbol of the state unit of a contract, e.g. COLLAR_TAKER."""
    return contract.upper().replace(".", "_")


def install_contracts(ledger) -> None:
    """Register every contract wallet and its counter unit on a ledger."""
    for contract in CONTRACT_WALLETS:
        if not ledger.is_registered(contract):
            ledger.register_wallet(contract)
        symbol = contract_state_symbol(contract)
        if symbol not in ledger.units:
            ledger.register_unit(
                record_unit(symbol, f"{contract} state", UNIT_TYPE_CONTRACT, {'contract': contract})
            )


def peek_symbol(view: LedgerView, contract: str, counter: str, prefix: str) -> str:
    """The symbol allocate_symbol would return next, without allocating."""
    state = view.get_unit_state(contract_state_symbol(contract))
    return f"{prefix}_{state.get(counter, 1)}"


def allocate_symbol(
    view: LedgerView, contract: str, counter: str, prefix: str
) -> Tuple[str, UnitStateChange]:
    """
    Allocate the next entity symbol of a contract.

    Returns the symbol and the counter state change that must be part of the
    same transaction. Two transactions allocating from the same snapshot
    conflict, so ids are never issued twice.
    """
    unit_symbol = contract_state_symbol(contract)
    state = view.get_unit_state(unit_symbol)
    next_id = state.get(counter, 1)
    new_state = {**state, counter: next_id + 1}
    return f"{prefix}_{next_id}", UnitStateChange(unit_symbol, state, new_state)


def require_caller(caller: str, *allowed: str) -> None:
    if caller not in allowed:
        raise UnauthorizedCaller(f"{caller} may not call this entry point")


# ============================================================================
# OWNERSHIP
# ============================================================================

def owner_of(view: LedgerView, symbol: str) -> Optional[str]:
    """Wallet holding the ownership unit, or None once burned."""
    holders = [
        wallet for wallet, qty in view.get_positions(symbol).items()
        if wallet != SYSTEM_WALLET and qty > 0
    ]
    return holders[0] if holders else None


def require_owner(
    view: LedgerView,
    symbol: str,
    wallet: str,
    error: Type[AuthorizationError] = NotPositionOwner,
) -> None:
    owner = owner_of(view, symbol)
    if owner != wallet:
        raise error(f"{wallet} does not own {symbol} (owner: {owner})")


def mint_move(symbol: str, owner: str) -> Move:
    return Move(Decimal(1), symbol, SYSTEM_WALLET, owner, symbol)


def burn_move(symbol: str, owner: str) -> Move:
    return Move(Decimal(1), symbol, owner, SYSTEM_WALLET, symbol)


def transfer_ownership(
    view: LedgerView, symbol: str, owner: str, new_owner: str
) -> PendingTransaction:
    """
    Transfer an ownership unit (taker/provider position, escrow, loan).

    Raises:
        InvalidParameter: If symbol is not an ownership unit or new_owner is owner
        NotPositionOwner: If owner does not hold the unit
    """
    unit = view.get_unit(symbol)
    if unit.unit_type not in OWNERSHIP_UNIT_TYPES:
        raise InvalidParameter(f"{symbol} is not transferable ({unit.unit_type})")
    if new_owner == owner:
        raise InvalidParameter("Cannot transfer to the current owner")
    require_owner(view, symbol, owner)
    move = Move(Decimal(1), symbol, owner, new_owner, symbol)
    # each transfer changes state so a resale back to a prior owner is a new intent
    old_state = view.get_unit_state(symbol)
    new_state = {**old_state, 'nonce': old_state.get('nonce', 0) + 1}
    return build_transaction(
        view, [move], [UnitStateChange(symbol, old_state, new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, owner, symbol, "OwnershipTransferred"),
    )


# ============================================================================
# TOKENS
# ============================================================================

def token_decimals(view: LedgerView, token_symbol: str) -> int:
    return view.get_unit_state(token_symbol)['decimals']


def balance_of(view: LedgerView, wallet: str, token_symbol: str) -> int:
    """Raw integer balance of a token."""
    return int(view.get_balance(wallet, token_symbol))


def entity_number(symbol: str) -> int:
    """Numeric id of an entity symbol, e.g. 7 for TAKER_7."""
    return int(symbol.rsplit("_", 1)[1])


__all__ = [
    'TAKER_CONTRACT', 'PROVIDER_CONTRACT', 'ESCROW_CONTRACT', 'ROLLS_CONTRACT',
    'LOANS_CONTRACT', 'CONTRACT_WALLETS', 'OWNERSHIP_UNIT_TYPES',
    'contract_state_symbol', 'install_contracts', 'peek_symbol', 'allocate_symbol',
    'require_caller', 'owner_of', 'require_owner', 'mint_move', 'burn_move',
    'transfer_ownership', 'token_decimals', 'balance_of', 'entity_number',
]
