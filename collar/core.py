"""
Core types and pure functions for the collar ledger.

This module provides the foundational data structures shared by every
protocol component:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the protocol error taxonomy
4. Integer arithmetic helpers for raw token amounts
5. Unit factories: tokens and ownership units
6. Transaction composition: build_transaction, merge_transactions

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, Iterable, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances are stored as Decimal. Token amounts are always integral, so the
# context only matters for intermediate values (oracle tick math uses a local
# context of its own).
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for minting and burning.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_CONTRACT = "CONTRACT"
UNIT_TYPE_PROVIDER_OFFER = "PROVIDER_OFFER"
UNIT_TYPE_PROVIDER_POSITION = "PROVIDER_POSITION"
UNIT_TYPE_TAKER_POSITION = "TAKER_POSITION"
UNIT_TYPE_ROLL_OFFER = "ROLL_OFFER"
UNIT_TYPE_ESCROW_OFFER = "ESCROW_OFFER"
UNIT_TYPE_ESCROW = "ESCROW"
UNIT_TYPE_LOAN = "LOAN"

# Epsilon for Decimal comparisons.
QUANTITY_EPSILON = Decimal("1e-12")

DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: offer terms, position records, counters.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Every compute function in the protocol takes a LedgerView and returns a
    PendingTransaction. The Ledger class implements this protocol but also
    provides mutation methods; functions accepting a LedgerView declare their
    read-only intent.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a specific unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit, excluding the system wallet."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was successfully validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation due to insufficient funds, balance
              constraints, transfer rule violations or a stale state snapshot.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Offer management, withdrawals, transfers
    CONTRACT = "contract"                 # Position opening, rolls, loans
    LIFECYCLE = "lifecycle"               # Settlement, escrow seizure
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class TransactionRejected(LedgerError):
    """Raised by Ledger.submit() when a pending transaction is not applied."""

    def __init__(self, reason: str, intent_id: str = ""):
        super().__init__(reason)
        self.reason = reason
        self.intent_id = intent_id


# --- Validation ---

class ValidationError(LedgerError):
    """Malformed or out-of-range parameters."""
    pass


class InvalidParameter(ValidationError):
    pass


class InvalidStrikes(ValidationError):
    """Strike percents out of bounds, or strike prices not bracketing the initial price."""
    pass


class InvalidOracle(ValidationError):
    """Oracle assets do not match the offer, or oracle construction is inconsistent."""
    pass


class InvalidLTV(ValidationError):
    pass


class InvalidDuration(ValidationError):
    pass


# --- Authorization ---

class AuthorizationError(LedgerError):
    """Caller lacks ownership or the operation is not permitted."""
    pass


class NotOfferOwner(AuthorizationError):
    pass


class NotPositionOwner(AuthorizationError):
    pass


class UnauthorizedCaller(AuthorizationError):
    """A contract-only entry point was called by someone else."""
    pass


class UnauthorizedPair(AuthorizationError):
    """The asset pair (or single asset) is not enabled for the calling contract."""
    pass


class ProtocolPaused(AuthorizationError):
    pass


# --- Liquidity ---

class LiquidityError(LedgerError):
    """Not enough funds or capacity."""
    pass


class InsufficientOfferLiquidity(LiquidityError):
    pass


class InsufficientEscrowFees(LiquidityError):
    pass


# --- Temporal ---

class TemporalError(LedgerError):
    """Operation attempted at the wrong point of an entity's lifecycle."""
    pass


class NotExpired(TemporalError):
    pass


class PositionExpired(TemporalError):
    pass


class AlreadySettled(TemporalError):
    pass


class NothingToWithdraw(TemporalError):
    pass


class RollOfferExpired(TemporalError):
    pass


class RollOfferInactive(TemporalError):
    pass


class NotYetReleased(TemporalError):
    pass


class AlreadyReleased(TemporalError):
    pass


class GracePeriodNotOver(TemporalError):
    pass


class LoanClosed(TemporalError):
    pass


# --- Market data ---

class MarketDataError(LedgerError):
    """Price data is stale, unavailable, or invalid."""
    pass


class StaleFeed(MarketDataError):
    pass


class SequencerDown(MarketDataError):
    pass


class NotConfigured(MarketDataError):
    pass


class InsufficientHistory(MarketDataError):
    pass


class InvalidPrice(MarketDataError):
    pass


# --- Slippage ---

class SlippageError(LedgerError):
    """Realized amounts or prices are outside the caller's bounds."""
    pass


class SlippageExceeded(SlippageError):
    pass


class PriceOutOfRollBounds(SlippageError):
    pass


class SwapPriceDeviation(SlippageError):
    pass


# ============================================================================
# INTEGER ARITHMETIC
# ============================================================================

def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
    """
    Compute a * b / denominator on non-negative integers.

    Rounds toward zero unless round_up is set. Locked amounts and payouts
    round down; fees round up.
    """
    if denominator <= 0:
        raise ValueError(f"denominator must be positive, got {denominator}")
    if a < 0 or b < 0:
        raise ValueError(f"mul_div operands must be non-negative, got {a}, {b}")
    if round_up:
        return -((-a * b) // denominator)
    return (a * b) // denominator


def signed_div(numerator: int, denominator: int) -> int:
    """Integer division truncating toward zero for either sign."""
    if denominator == 0:
        raise ValueError("division by zero")
    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient


def amount(value: int) -> Decimal:
    """Convert a raw integer token amount into a Move quantity."""
    return Decimal(int(value))


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Contract wallet or user that initiated the transaction
        unit_symbol: Primary entity affected (position, offer, loan)
        event_type: Protocol event name (e.g., "PairedPositionSettled")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of a unit's state.

    The ledger rejects the whole transaction if old_state no longer matches
    the unit's current state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The token or ownership unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def token_move(
    quantity: int,
    token_symbol: str,
    source: str,
    dest: str,
    contract_id: str,
) -> List[Move]:
    """
    Moves for a raw integer amount, with the sign picking the direction.

    Returns an empty list for zero so callers can always extend their moves.
    A negative quantity flows from dest to source.
    """
    if quantity == 0:
        return []
    if quantity < 0:
        return [Move(amount(-quantity), token_symbol, dest, source, contract_id)]
    return [Move(amount(quantity), token_symbol, source, dest, contract_id)]


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1") agree."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Same moves, state changes, origin and created units always produce the
    same intent_id. Used to detect duplicate submissions.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(
            f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}"
        )

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by the protocol's compute functions and submitted to the ledger
    for execution. intent_id is auto-computed from content.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        units_to_create: Tuple of Unit objects to register before executing moves
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        intent_id: Content-addressable hash of the transaction intent
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves, no state deltas, and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    This is the standard way to create transactions. State snapshots are
    deep-copied so later mutation of the caller's dicts cannot leak in.

    Example:
        def compute_settlement(view, symbol, price):
            old_state = view.get_unit_state(symbol)
            new_state = {**old_state, "settled": True, "settlement_price": price}
            changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
            return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=tuple(units_to_create or ()),
    )


def merge_transactions(
    view: LedgerView,
    parts: Iterable[PendingTransaction],
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Combine several pending transactions into one atomic transaction.

    Composite operations (loan open, roll acceptance) build each component's
    part against the same view and execute the merge once, so a rejection
    anywhere applies nothing.

    Raises:
        LedgerError: If two parts change the state of the same unit, or create
            the same unit twice.
    """
    moves: List[Move] = []
    changes: List[UnitStateChange] = []
    units: List[Unit] = []
    changed: Set[str] = set()
    created: Set[str] = set()

    for part in parts:
        moves.extend(part.moves)
        for sc in part.state_changes:
            if sc.unit in changed:
                raise LedgerError(f"Conflicting state changes for {sc.unit} in one transaction")
            changed.add(sc.unit)
            changes.append(sc)
        for unit in part.units_to_create:
            if unit.symbol in created:
                raise LedgerError(f"Unit {unit.symbol} created twice in one transaction")
            created.add(unit.symbol)
            units.append(unit)

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=tuple(changes),
        origin=origin,
        timestamp=view.current_time,
        units_to_create=tuple(units),
    )


def created_symbol(pending: PendingTransaction, unit_type: str) -> str:
    """
    Return the symbol of the single unit of unit_type that pending creates.

    Raises:
        LedgerError: If pending creates no unit, or several units, of that type.
    """
    symbols = [u.symbol for u in pending.units_to_create if u.unit_type == unit_type]
    if len(symbols) != 1:
        raise LedgerError(f"Expected one {unit_type} unit, found {symbols}")
    return symbols[0]


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Created by the ledger when executing a PendingTransaction. The ledger's
    transaction log of these records is the protocol's audit trail.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime           # When PendingTransaction was created
    intent_id: str               # Content hash (from PendingTransaction)
    exec_id: str                 # Unique execution instance ID
    ledger_name: str
    execution_time: datetime     # When executed
    sequence_number: int         # Monotonic within ledger
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    @property
    def event_type(self) -> Optional[str]:
        return self.origin.event_type

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: a token, an ownership unit, or a
    state-only record such as an offer.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "TAKER_1").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (TOKEN, TAKER_POSITION, ESCROW, ...).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Get the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision (unchanged if decimal_places is None)."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def whole_unit_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Ownership units move as a single whole unit.

    Raises:
        TransferRuleViolation: If the move quantity is not exactly one.
    """
    if move.quantity != Decimal("1"):
        raise TransferRuleViolation(
            f"Ownership unit {move.unit_symbol} must move as one whole unit, got {move.quantity}"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimals: int) -> Unit:
    """
    Create a fungible token unit.

    Balances are held in raw integer units (10**decimals per whole token),
    so the ledger never rounds a token amount. Balances can never go negative.

    Args:
        symbol: Token symbol (e.g., "WETH", "USDC").
        name: Full name of the token.
        decimals: Number of decimals of one whole token.
    """
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({'decimals': decimals}),
    )


def ownership_unit(symbol: str, name: str, unit_type: str, state: UnitState) -> Unit:
    """
    Create a unit whose single holder owns the entity described by state.

    At most one unit exists in any wallet; it is minted from and burned to
    SYSTEM_WALLET.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        transfer_rule=whole_unit_transfer_rule,
        _frozen_state=_freeze_state(state),
    )


def record_unit(symbol: str, name: str, unit_type: str, state: UnitState) -> Unit:
    """Create a state-only unit (offers, roll offers); it is never held."""
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(state),
    )
