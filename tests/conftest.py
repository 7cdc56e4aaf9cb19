"""
conftest.py - Shared pytest fixtures for collar tests

Provides common fixtures used across unit, conformance and functional tests:
- Basic ledgers (empty, funded with USDC)
- Protocol setups (no fee, with protocol fee)
- Setups with an open offer and an open loan

Helper functions live in tests/protocol_setup.py.
"""

import pytest
from decimal import Decimal

from collar import Ledger, token

from tests.protocol_setup import (
    START, USDC,
    build_setup, default_config, submit_offer, submit_loan,
)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def basic_ledger():
    """Ledger with USDC and two wallets."""
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_unit(token("USDC", "USD Coin", 6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Basic ledger with alice holding 10,000 USDC."""
    basic_ledger.set_balance("alice", "USDC", Decimal(10_000 * USDC))
    return basic_ledger


# =============================================================================
# PROTOCOL FIXTURES
# =============================================================================

@pytest.fixture
def protocol():
    """Funded protocol at START, WETH at 3,000 USDC, no protocol fee."""
    return build_setup()


@pytest.fixture
def fee_protocol():
    """Protocol with a 1% protocol fee paid to the fees wallet."""
    return build_setup(default_config(protocol_fee_apr=100, fee_recipient="fees"))


@pytest.fixture
def offer_protocol(protocol):
    """Setup with OFFER_1: put 90%, call 110%, 7 days, 100,000 USDC capacity."""
    submit_offer(protocol)
    return protocol


@pytest.fixture
def loan_protocol(offer_protocol):
    """Setup with LOAN_1 opened on 1 WETH at 3,000 USDC."""
    submit_loan(offer_protocol, "OFFER_1")
    return offer_protocol
