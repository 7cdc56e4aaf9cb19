"""
test_config_contracts.py - Unit tests for ConfigHub and contract ownership

Tests:
- ConfigHub parameter ranges, authorization and protocol fee
- Contract id allocation
- Ownership units: owner_of, transfers, resale cycles, burns
"""

import pytest
from dataclasses import replace

from collar import (
    ConfigHub, install_contracts, owner_of, transfer_ownership, settle_position,
    withdraw_taker_position, get_position,
    PROVIDER_CONTRACT, TAKER_CONTRACT, ESCROW_CONTRACT,
    ExecuteResult, InvalidParameter, NotPositionOwner, ProtocolPaused, UnauthorizedCaller,
    UnauthorizedPair,
)
from collar.contracts import (
    allocate_symbol, peek_symbol, require_caller, contract_state_symbol, entity_number,
)

from tests.protocol_setup import (
    DURATION, USDC, INITIAL_PRICE,
    advance, balance, default_config, submit_position,
)


# =============================================================================
# CONFIG
# =============================================================================

class TestConfigHub:
    """Tests for ConfigHub."""

    def test_defaults(self):
        config = ConfigHub()
        assert config.is_valid_ltv(9_000)
        assert not config.is_valid_ltv(10_000)
        assert config.is_valid_duration(DURATION)
        assert not config.is_valid_duration(299)
        assert config.protocol_fee(300 * USDC, DURATION) == (0, None)

    @pytest.mark.parametrize("kwargs", [
        {'min_ltv': 0},
        {'min_ltv': 9_000, 'max_ltv': 8_000},
        {'max_ltv': 10_000},
        {'min_duration': 0},
        {'max_call_strike_percent': 10_000},
        {'protocol_fee_apr': 101},
    ])
    def test_invalid_ranges(self, kwargs):
        with pytest.raises(InvalidParameter):
            ConfigHub(**kwargs)

    def test_replace_validates(self):
        with pytest.raises(InvalidParameter):
            replace(ConfigHub(), protocol_fee_apr=-1)

    def test_pair_authorization(self):
        config = default_config()
        assert config.can_open_pair("WETH", "USDC", TAKER_CONTRACT)
        assert not config.can_open_pair("USDC", "WETH", TAKER_CONTRACT)
        config.require_can_open_pair("WETH", "USDC", PROVIDER_CONTRACT)
        with pytest.raises(UnauthorizedPair):
            config.require_can_open_pair("WBTC", "USDC", PROVIDER_CONTRACT)

    def test_single_authorization(self):
        config = default_config()
        assert config.can_open_single("WETH", ESCROW_CONTRACT)
        with pytest.raises(UnauthorizedPair):
            config.require_can_open_single("USDC", ESCROW_CONTRACT)

    def test_paused(self):
        config = default_config().with_paused()
        assert not config.can_open_pair("WETH", "USDC", TAKER_CONTRACT)
        assert not config.can_open_single("WETH", ESCROW_CONTRACT)
        with pytest.raises(ProtocolPaused):
            config.require_can_open_pair("WETH", "USDC", TAKER_CONTRACT)
        with pytest.raises(ProtocolPaused):
            config.require_can_open_single("WETH", ESCROW_CONTRACT)
        assert config.with_paused(False).can_open_pair("WETH", "USDC", TAKER_CONTRACT)

    def test_protocol_fee_rounds_up(self):
        config = ConfigHub(protocol_fee_apr=100, fee_recipient="fees")
        # 300e6 * 1% * 7/365 = 57534.2...
        assert config.protocol_fee(300 * USDC, DURATION) == (57_535, "fees")
        assert config.protocol_fee(0, DURATION) == (0, "fees")

    def test_fee_needs_recipient(self):
        assert ConfigHub(protocol_fee_apr=100).protocol_fee(300 * USDC, DURATION) == (0, None)


# =============================================================================
# CONTRACTS
# =============================================================================

class TestContracts:
    """Tests for contract wallets and id allocation."""

    def test_install_is_idempotent(self, protocol):
        units = set(protocol.ledger.units)
        install_contracts(protocol.ledger)
        assert set(protocol.ledger.units) == units
        assert contract_state_symbol(TAKER_CONTRACT) in units

    def test_allocate_symbol(self, protocol):
        assert peek_symbol(protocol.ledger, PROVIDER_CONTRACT, 'next_offer_id', 'OFFER') == "OFFER_1"
        symbol, change = allocate_symbol(protocol.ledger, PROVIDER_CONTRACT, 'next_offer_id', 'OFFER')
        assert symbol == "OFFER_1"
        assert change.new_state['next_offer_id'] == 2
        # allocating does not apply anything
        assert peek_symbol(protocol.ledger, PROVIDER_CONTRACT, 'next_offer_id', 'OFFER') == "OFFER_1"

    def test_counters_advance(self, offer_protocol):
        assert peek_symbol(offer_protocol.ledger, PROVIDER_CONTRACT, 'next_offer_id', 'OFFER') == "OFFER_2"

    def test_require_caller(self):
        require_caller(TAKER_CONTRACT, TAKER_CONTRACT, PROVIDER_CONTRACT)
        with pytest.raises(UnauthorizedCaller):
            require_caller("alice", TAKER_CONTRACT)

    def test_entity_number(self):
        assert entity_number("TAKER_7") == 7
        assert entity_number("ESCROW_OFFER_12") == 12


# =============================================================================
# OWNERSHIP
# =============================================================================

class TestOwnership:
    """Tests for ownership units."""

    def test_transfer_moves_withdrawal_rights(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        offer_protocol.ledger.submit(
            transfer_ownership(offer_protocol.ledger, "TAKER_1", "alice", "bob")
        )
        assert owner_of(offer_protocol.ledger, "TAKER_1") == "bob"

        advance(offer_protocol, DURATION, price=INITIAL_PRICE)
        offer_protocol.ledger.submit(
            settle_position(offer_protocol.ledger, offer_protocol.oracle, "TAKER_1")
        )
        with pytest.raises(NotPositionOwner):
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "alice")
        bob = balance(offer_protocol, "bob", "USDC")
        offer_protocol.ledger.submit(
            withdraw_taker_position(offer_protocol.ledger, "TAKER_1", "bob")
        )
        assert balance(offer_protocol, "bob", "USDC") == bob + 300 * USDC
        assert owner_of(offer_protocol.ledger, "TAKER_1") is None
        assert get_position(offer_protocol.ledger, "TAKER_1").burned

    def test_transfer_not_owner(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(NotPositionOwner):
            transfer_ownership(offer_protocol.ledger, "TAKER_1", "bob", "alice")

    def test_transfer_to_self(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        with pytest.raises(InvalidParameter):
            transfer_ownership(offer_protocol.ledger, "TAKER_1", "alice", "alice")

    def test_offers_and_tokens_are_not_ownership_units(self, offer_protocol):
        with pytest.raises(InvalidParameter):
            transfer_ownership(offer_protocol.ledger, "OFFER_1", "provider", "bob")
        with pytest.raises(InvalidParameter):
            transfer_ownership(offer_protocol.ledger, "USDC", "alice", "bob")

    def test_resale_cycle_applies_every_transfer(self, offer_protocol):
        submit_position(offer_protocol, "OFFER_1")
        hops = [("alice", "bob"), ("bob", "alice"), ("alice", "bob")]
        intent_ids = set()
        for owner, new_owner in hops:
            pending = transfer_ownership(offer_protocol.ledger, "TAKER_1", owner, new_owner)
            intent_ids.add(pending.intent_id)
            assert offer_protocol.ledger.execute(pending) == ExecuteResult.APPLIED
            assert owner_of(offer_protocol.ledger, "TAKER_1") == new_owner
        assert len(intent_ids) == len(hops)
        assert offer_protocol.ledger.get_unit_state("TAKER_1")['nonce'] == len(hops)
