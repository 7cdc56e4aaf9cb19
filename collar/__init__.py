"""
collar - Protected loans on a double-entry ledger

A borrower's collateral is swapped to cash; part of the cash is lent to the
borrower and the rest is locked in a taker position whose payoff between a
put and a call strike is backed by a liquidity provider.

Usage:
    from collar import (
        Ledger, ConfigHub, token, install_contracts, create_offer, open_loan,
        PROVIDER_CONTRACT, TAKER_CONTRACT, LOANS_CONTRACT, ROLLS_CONTRACT,
    )

    ledger = Ledger("collar")
    ledger.register_unit(token("WETH", "Wrapped Ether", 18))
    ledger.register_unit(token("USDC", "USD Coin", 6))
    install_contracts(ledger)
    for wallet in ("provider", "borrower", "pool"):
        ledger.register_wallet(wallet)

    config = ConfigHub().with_pair(
        "WETH", "USDC", PROVIDER_CONTRACT, TAKER_CONTRACT, LOANS_CONTRACT, ROLLS_CONTRACT,
    )
    ledger.submit(create_offer(
        ledger, config, "provider", "WETH", "USDC",
        call_strike_percent=11_000, put_strike_percent=9_000,
        amount=100_000 * 10**6, duration=86_400,
    ))
    ledger.submit(open_loan(
        ledger, config, oracle, swapper, "borrower",
        collateral_amount=10**18, min_swap_cash=0, ltv=9_000, offer_id="OFFER_1",
    ))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    merge_transactions,
    created_symbol,
    token_move,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    ownership_unit,
    record_unit,
    mul_div,
    signed_div,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_CONTRACT,
    UNIT_TYPE_PROVIDER_OFFER,
    UNIT_TYPE_PROVIDER_POSITION,
    UNIT_TYPE_TAKER_POSITION,
    UNIT_TYPE_ROLL_OFFER,
    UNIT_TYPE_ESCROW_OFFER,
    UNIT_TYPE_ESCROW,
    UNIT_TYPE_LOAN,
)

# Errors
from .core import (
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    ValidationError,
    InvalidParameter,
    InvalidStrikes,
    InvalidOracle,
    InvalidLTV,
    InvalidDuration,
    AuthorizationError,
    NotOfferOwner,
    NotPositionOwner,
    UnauthorizedCaller,
    UnauthorizedPair,
    ProtocolPaused,
    LiquidityError,
    InsufficientOfferLiquidity,
    InsufficientEscrowFees,
    TemporalError,
    NotExpired,
    PositionExpired,
    AlreadySettled,
    NothingToWithdraw,
    RollOfferExpired,
    RollOfferInactive,
    NotYetReleased,
    AlreadyReleased,
    GracePeriodNotOver,
    LoanClosed,
    MarketDataError,
    StaleFeed,
    SequencerDown,
    NotConfigured,
    InsufficientHistory,
    InvalidPrice,
    SlippageError,
    SlippageExceeded,
    PriceOutOfRollBounds,
    SwapPriceDeviation,
)

# Ledger
from .ledger import Ledger

# Configuration
from .config import (
    ConfigHub,
    BIPS_BASE,
    YEAR,
    MIN_CALL_STRIKE_PERCENT,
    MAX_CALL_STRIKE_PERCENT,
    MAX_PROTOCOL_FEE_APR,
    MIN_TWAP_WINDOW,
    MAX_SWAP_PRICE_DEVIATION,
    MAX_INTEREST_APR,
    MAX_LATE_FEE_APR,
    MIN_GRACE_PERIOD,
    MAX_GRACE_PERIOD,
)

# Contracts and ownership
from .contracts import (
    TAKER_CONTRACT,
    PROVIDER_CONTRACT,
    ESCROW_CONTRACT,
    ROLLS_CONTRACT,
    LOANS_CONTRACT,
    CONTRACT_WALLETS,
    install_contracts,
    owner_of,
    transfer_ownership,
    balance_of,
)

# Market data
from .feeds import (
    PriceReport,
    PriceFeed,
    SequencerFeed,
    Observation,
    ObservationPool,
)
from .oracles import (
    PriceOracle,
    OracleKind,
    FeedOracle,
    CombinedOracle,
    TwapOracle,
    create_oracle,
    invert_price,
    convert_to_base_amount,
    convert_to_quote_amount,
)

# Swaps
from .swappers import (
    Swapper,
    ConstantProductSwapper,
    OracleSwapper,
    swap_parts,
)

# Scenario analysis
from .analytics import settlement_payoffs, gbm_paths, payoff_summary

# Protocol operations
from .units import *  # noqa: F401,F403
from .units import __all__ as _units_all

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'merge_transactions', 'created_symbol', 'token_move',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'token', 'ownership_unit', 'record_unit', 'mul_div', 'signed_div',
    'SYSTEM_WALLET',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_CONTRACT', 'UNIT_TYPE_PROVIDER_OFFER',
    'UNIT_TYPE_PROVIDER_POSITION', 'UNIT_TYPE_TAKER_POSITION', 'UNIT_TYPE_ROLL_OFFER',
    'UNIT_TYPE_ESCROW_OFFER', 'UNIT_TYPE_ESCROW', 'UNIT_TYPE_LOAN',
    # Errors
    'LedgerError', 'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'TransactionRejected',
    'ValidationError', 'InvalidParameter', 'InvalidStrikes', 'InvalidOracle', 'InvalidLTV',
    'InvalidDuration',
    'AuthorizationError', 'NotOfferOwner', 'NotPositionOwner', 'UnauthorizedCaller',
    'UnauthorizedPair', 'ProtocolPaused',
    'LiquidityError', 'InsufficientOfferLiquidity', 'InsufficientEscrowFees',
    'TemporalError', 'NotExpired', 'PositionExpired', 'AlreadySettled', 'NothingToWithdraw',
    'RollOfferExpired', 'RollOfferInactive', 'NotYetReleased', 'AlreadyReleased',
    'GracePeriodNotOver', 'LoanClosed',
    'MarketDataError', 'StaleFeed', 'SequencerDown', 'NotConfigured', 'InsufficientHistory',
    'InvalidPrice',
    'SlippageError', 'SlippageExceeded', 'PriceOutOfRollBounds', 'SwapPriceDeviation',
    # Ledger
    'Ledger',
    # Config
    'ConfigHub', 'BIPS_BASE', 'YEAR', 'MIN_CALL_STRIKE_PERCENT', 'MAX_CALL_STRIKE_PERCENT',
    'MAX_PROTOCOL_FEE_APR', 'MIN_TWAP_WINDOW', 'MAX_SWAP_PRICE_DEVIATION',
    'MAX_INTEREST_APR', 'MAX_LATE_FEE_APR', 'MIN_GRACE_PERIOD', 'MAX_GRACE_PERIOD',
    # Contracts
    'TAKER_CONTRACT', 'PROVIDER_CONTRACT', 'ESCROW_CONTRACT', 'ROLLS_CONTRACT',
    'LOANS_CONTRACT', 'CONTRACT_WALLETS', 'install_contracts', 'owner_of',
    'transfer_ownership', 'balance_of',
    # Market data
    'PriceReport', 'PriceFeed', 'SequencerFeed', 'Observation', 'ObservationPool',
    'PriceOracle', 'OracleKind', 'FeedOracle', 'CombinedOracle', 'TwapOracle',
    'create_oracle', 'invert_price', 'convert_to_base_amount', 'convert_to_quote_amount',
    # Swaps
    'Swapper', 'ConstantProductSwapper', 'OracleSwapper', 'swap_parts',
    # Analysis
    'settlement_payoffs', 'gbm_paths', 'payoff_summary',
] + list(_units_all)

__version__ = '1.0.0'
