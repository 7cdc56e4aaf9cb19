"""
test_core_types.py - Unit tests for core data structures and arithmetic

Tests:
- Move validation
- token_move direction and zero handling
- mul_div / signed_div rounding
- PendingTransaction intent ids
- merge_transactions conflict detection
- created_symbol lookup
- Unit factories
"""

import pytest
from decimal import Decimal

from collar import (
    Move, UnitStateChange, build_transaction, merge_transactions, created_symbol,
    token_move, mul_div, signed_div, token, ownership_unit, record_unit,
    TransactionOrigin, OriginType, LedgerError,
    UNIT_TYPE_TOKEN, UNIT_TYPE_LOAN,
)


class TestMove:
    """Tests for Move validation."""

    def test_valid_move(self):
        move = Move(Decimal(5), "USDC", "alice", "bob", "pay")
        assert move.quantity == Decimal(5)

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValueError):
            Move(Decimal(0), "USDC", "alice", "bob", "pay")

    def test_same_wallet_rejected(self):
        with pytest.raises(ValueError):
            Move(Decimal(1), "USDC", "alice", "alice", "pay")

    def test_quantity_must_be_decimal(self):
        with pytest.raises(ValueError):
            Move(5, "USDC", "alice", "bob", "pay")

    def test_empty_contract_id_rejected(self):
        with pytest.raises(ValueError):
            Move(Decimal(1), "USDC", "alice", "bob", " ")


class TestTokenMove:
    """Tests for signed token moves."""

    def test_positive(self):
        (move,) = token_move(7, "USDC", "alice", "bob", "x")
        assert (move.source, move.dest, move.quantity) == ("alice", "bob", Decimal(7))

    def test_negative_flips_direction(self):
        (move,) = token_move(-7, "USDC", "alice", "bob", "x")
        assert (move.source, move.dest, move.quantity) == ("bob", "alice", Decimal(7))

    def test_zero_is_empty(self):
        assert token_move(0, "USDC", "alice", "bob", "x") == []


class TestArithmetic:
    """Tests for integer rounding helpers."""

    def test_mul_div_rounds_down(self):
        assert mul_div(10, 3, 4) == 7

    def test_mul_div_round_up(self):
        assert mul_div(10, 3, 4, round_up=True) == 8
        assert mul_div(10, 4, 4, round_up=True) == 10

    def test_mul_div_rejects_negative(self):
        with pytest.raises(ValueError):
            mul_div(-1, 3, 4)

    def test_mul_div_rejects_zero_denominator(self):
        with pytest.raises(ValueError):
            mul_div(1, 3, 0)

    @pytest.mark.parametrize("numerator, denominator, expected", [
        (7, 2, 3),
        (-7, 2, -3),
        (7, -2, -3),
        (-7, -2, 3),
        (0, 5, 0),
    ])
    def test_signed_div_truncates_toward_zero(self, numerator, denominator, expected):
        assert signed_div(numerator, denominator) == expected


class TestPendingTransaction:
    """Tests for building and merging pending transactions."""

    def test_intent_id_is_content_hash(self, funded_ledger):
        a = build_transaction(funded_ledger, [Move(Decimal(1), "USDC", "alice", "bob", "x")])
        b = build_transaction(funded_ledger, [Move(Decimal(1), "USDC", "alice", "bob", "x")])
        c = build_transaction(funded_ledger, [Move(Decimal(2), "USDC", "alice", "bob", "x")])
        assert a.intent_id == b.intent_id
        assert a.intent_id != c.intent_id

    def test_state_snapshots_are_copied(self, funded_ledger):
        new_state = {'n': 2}
        tx = build_transaction(funded_ledger, [], [UnitStateChange("X", {'n': 1}, new_state)])
        new_state['n'] = 3
        assert tx.state_changes[0].new_state == {'n': 2}

    def test_changed_fields(self):
        change = UnitStateChange("X", {'a': 1, 'b': 2}, {'a': 1, 'b': 3})
        assert change.changed_fields() == {'b': (2, 3)}

    def test_merge_combines_parts(self, funded_ledger):
        origin = TransactionOrigin(OriginType.CONTRACT, "c", None, "Merged")
        first = build_transaction(funded_ledger, [Move(Decimal(1), "USDC", "alice", "bob", "x")])
        second = build_transaction(funded_ledger, [Move(Decimal(2), "USDC", "alice", "bob", "y")])
        merged = merge_transactions(funded_ledger, [first, second], origin)
        assert len(merged.moves) == 2
        assert merged.origin.event_type == "Merged"

    def test_merge_rejects_conflicting_state_changes(self, funded_ledger):
        origin = TransactionOrigin(OriginType.CONTRACT, "c")
        first = build_transaction(funded_ledger, [], [UnitStateChange("X", {'n': 1}, {'n': 2})])
        second = build_transaction(funded_ledger, [], [UnitStateChange("X", {'n': 1}, {'n': 3})])
        with pytest.raises(LedgerError):
            merge_transactions(funded_ledger, [first, second], origin)

    def test_merge_rejects_duplicate_units(self, funded_ledger):
        origin = TransactionOrigin(OriginType.CONTRACT, "c")
        unit = record_unit("R", "R", "ROLL_OFFER", {})
        first = build_transaction(funded_ledger, [], units_to_create=(unit,))
        second = build_transaction(funded_ledger, [], units_to_create=(unit,))
        with pytest.raises(LedgerError):
            merge_transactions(funded_ledger, [first, second], origin)

    def test_created_symbol(self, funded_ledger):
        unit = ownership_unit("LOAN_1", "Loan", UNIT_TYPE_LOAN, {})
        tx = build_transaction(funded_ledger, [], units_to_create=(unit,))
        assert created_symbol(tx, UNIT_TYPE_LOAN) == "LOAN_1"
        with pytest.raises(LedgerError):
            created_symbol(tx, UNIT_TYPE_TOKEN)


class TestUnitFactories:
    """Tests for token, ownership and record units."""

    def test_token_state_holds_decimals(self):
        unit = token("WETH", "Wrapped Ether", 18)
        assert unit.unit_type == UNIT_TYPE_TOKEN
        assert unit.state == {'decimals': 18}
        assert unit.min_balance == Decimal(0)

    def test_token_rejects_negative_decimals(self):
        with pytest.raises(ValueError):
            token("BAD", "Bad", -1)

    def test_ownership_unit_limits(self):
        unit = ownership_unit("LOAN_1", "Loan", UNIT_TYPE_LOAN, {'status': 'open'})
        assert unit.max_balance == Decimal(1)
        assert unit.transfer_rule is not None

    def test_record_unit_is_never_held(self):
        assert record_unit("R", "R", "ROLL_OFFER", {}).max_balance == Decimal(0)
