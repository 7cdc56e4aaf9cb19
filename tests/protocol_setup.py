"""
protocol_setup.py - Test helpers for building a funded collar protocol

Provides a fresh ledger with WETH/USDC, the contract wallets, a config, a
price feed and oracle, and a swap pool, plus helpers for prices, time,
offers and loans. Fixtures in conftest.py build on these.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from collar import (
    # Core
    Ledger, token, created_symbol,
    UNIT_TYPE_PROVIDER_OFFER, UNIT_TYPE_TAKER_POSITION, UNIT_TYPE_ESCROW_OFFER,
    UNIT_TYPE_ROLL_OFFER, UNIT_TYPE_LOAN,

    # Config and contracts
    ConfigHub, install_contracts,
    PROVIDER_CONTRACT, TAKER_CONTRACT, LOANS_CONTRACT, ROLLS_CONTRACT, ESCROW_CONTRACT,

    # Market data
    PriceFeed, FeedOracle, OracleSwapper,

    # Operations
    create_offer, create_escrow_offer, create_roll_offer, open_loan, open_position,
)


# =============================================================================
# CONSTANTS
# =============================================================================

START = datetime(2025, 1, 1)
DAY = 24 * 60 * 60
DURATION = 7 * DAY

ETH = 10 ** 18
USDC = 10 ** 6
FEED_DECIMALS = 8

# Raw USDC per whole WETH
INITIAL_PRICE = 3_000 * USDC

PAIR_CONTRACTS = (PROVIDER_CONTRACT, TAKER_CONTRACT, LOANS_CONTRACT, ROLLS_CONTRACT)
TOKENS = ("WETH", "USDC")

WALLETS = ("provider", "borrower", "alice", "bob", "supplier", "pool", "fees")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

@dataclass
class CollarSetup:
    """Everything a test needs to drive the protocol."""
    ledger: Ledger
    config: ConfigHub
    feed: PriceFeed
    oracle: FeedOracle
    swapper: OracleSwapper


def default_config(**overrides) -> ConfigHub:
    """Config authorizing WETH/USDC for every pair contract and WETH for escrow."""
    return (
        ConfigHub(**overrides)
        .with_pair("WETH", "USDC", *PAIR_CONTRACTS)
        .with_single("WETH", ESCROW_CONTRACT)
    )


def build_setup(config: Optional[ConfigHub] = None, price: int = INITIAL_PRICE) -> CollarSetup:
    """Fresh funded ledger at START with a WETH/USDC feed reporting price."""
    ledger = Ledger("collar-test", START, verbose=False, test_mode=True)
    ledger.register_unit(token("WETH", "Wrapped Ether", 18))
    ledger.register_unit(token("USDC", "USD Coin", 6))
    install_contracts(ledger)
    for wallet in WALLETS:
        ledger.register_wallet(wallet)

    ledger.set_balance("provider", "USDC", Decimal(1_000_000 * USDC))
    ledger.set_balance("borrower", "WETH", Decimal(10 * ETH))
    ledger.set_balance("borrower", "USDC", Decimal(10_000 * USDC))
    ledger.set_balance("alice", "USDC", Decimal(100_000 * USDC))
    ledger.set_balance("bob", "USDC", Decimal(100_000 * USDC))
    ledger.set_balance("supplier", "WETH", Decimal(100 * ETH))
    ledger.set_balance("pool", "WETH", Decimal(1_000 * ETH))
    ledger.set_balance("pool", "USDC", Decimal(10_000_000 * USDC))

    feed = PriceFeed("ETH / USD", FEED_DECIMALS)
    oracle = FeedOracle("WETH", "USDC", 18, 6, feed, max_staleness=DAY)
    setup = CollarSetup(
        ledger=ledger,
        config=config or default_config(),
        feed=feed,
        oracle=oracle,
        swapper=OracleSwapper("pool", oracle),
    )
    push_price(setup, price)
    return setup


def push_price(setup: CollarSetup, price: int) -> None:
    """Report price (raw USDC per WETH) at the ledger's current time."""
    setup.feed.add_report(price * 10 ** FEED_DECIMALS // USDC, setup.ledger.current_time)


def advance(setup: CollarSetup, seconds: int, price: Optional[int] = None) -> None:
    """Move the clock forward, reporting price at the new time if given."""
    setup.ledger.advance_time(setup.ledger.current_time + timedelta(seconds=seconds))
    if price is not None:
        push_price(setup, price)


def balance(setup: CollarSetup, wallet: str, token_symbol: str) -> int:
    return int(setup.ledger.get_balance(wallet, token_symbol))


def token_supplies(ledger: Ledger) -> Dict[str, Decimal]:
    return {symbol: ledger.total_supply(symbol) for symbol in TOKENS}


def submit_offer(
    setup: CollarSetup,
    amount: int = 100_000 * USDC,
    call_strike_percent: int = 11_000,
    put_strike_percent: int = 9_000,
    duration: int = DURATION,
    provider: str = "provider",
) -> str:
    """Create a provider offer and return its symbol."""
    pending = create_offer(
        setup.ledger, setup.config, provider, "WETH", "USDC",
        call_strike_percent=call_strike_percent, put_strike_percent=put_strike_percent,
        amount=amount, duration=duration,
    )
    setup.ledger.submit(pending)
    return created_symbol(pending, UNIT_TYPE_PROVIDER_OFFER)


def submit_position(
    setup: CollarSetup,
    offer_id: str,
    notional: int = 3_000 * USDC,
    loan_amount: int = 2_700 * USDC,
    taker: str = "alice",
) -> str:
    """Open a paired position directly and return the taker position symbol."""
    pending = open_position(
        setup.ledger, setup.config, setup.oracle, taker, offer_id, notional, loan_amount
    )
    setup.ledger.submit(pending)
    return created_symbol(pending, UNIT_TYPE_TAKER_POSITION)


def submit_loan(
    setup: CollarSetup,
    offer_id: str,
    collateral_amount: int = ETH,
    ltv: int = 9_000,
    borrower: str = "borrower",
    escrow_offer_id: Optional[str] = None,
    escrow_fees: int = 0,
) -> str:
    """Open a loan and return the loan symbol."""
    pending = open_loan(
        setup.ledger, setup.config, setup.oracle, setup.swapper, borrower,
        collateral_amount=collateral_amount, min_swap_cash=0, ltv=ltv, offer_id=offer_id,
        escrow_offer_id=escrow_offer_id, escrow_fees=escrow_fees,
    )
    setup.ledger.submit(pending)
    return created_symbol(pending, UNIT_TYPE_LOAN)


def submit_escrow_offer(
    setup: CollarSetup,
    amount: int = 10 * ETH,
    duration: int = DURATION,
    interest_apr: int = 500,
    max_grace_period: int = 2 * DAY,
    late_fee_apr: int = 10_000,
    min_escrow: int = 0,
    supplier: str = "supplier",
) -> str:
    pending = create_escrow_offer(
        setup.ledger, setup.config, supplier, "WETH", amount, duration,
        interest_apr, max_grace_period, late_fee_apr, min_escrow,
    )
    setup.ledger.submit(pending)
    return created_symbol(pending, UNIT_TYPE_ESCROW_OFFER)


def submit_roll_offer(
    setup: CollarSetup,
    taker_position: str,
    fee_amount: int = 0,
    fee_delta_factor: int = 0,
    min_price: int = 1,
    max_price: int = 10 ** 12,
    min_to_provider: int = -10 ** 12,
    deadline: Optional[datetime] = None,
    provider: str = "provider",
) -> str:
    pending = create_roll_offer(
        setup.ledger, setup.config, provider, taker_position,
        fee_amount, fee_delta_factor, min_price, max_price, min_to_provider,
        deadline or setup.ledger.current_time + timedelta(seconds=DAY),
    )
    setup.ledger.submit(pending)
    return created_symbol(pending, UNIT_TYPE_ROLL_OFFER)


