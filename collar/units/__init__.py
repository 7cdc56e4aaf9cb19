"""
Units module - Protocol entities and the operations on them.

- Provider offers and provider positions
- Taker positions (paired with provider positions)
- Roll offers
- Escrow offers and escrows
- Loans

All operations are pure functions of a LedgerView returning a
PendingTransaction; they are re-exported here for convenience.
"""

# Provider offers and positions
from .provider import (
    ProviderOffer,
    ProviderPosition,
    get_offer,
    get_provider_position,
    calculate_provider_locked,
    offer_backing,
    validate_offer_terms,
    create_offer,
    update_offer_amount,
    mint_from_offer,
    settle_provider_position,
    withdraw_from_settled as withdraw_provider_position,
)

# Taker positions
from .taker import (
    TakerPosition,
    SettlementPreview,
    get_position,
    calculate_strike_prices,
    calculate_settlement,
    preview_settlement,
    open_paired_position,
    open_position,
    settlement_parts,
    settle_position,
    withdrawal_part,
    withdraw_from_settled as withdraw_taker_position,
    cancel_paired_position,
)

# Rolls
from .rolls import (
    RollOffer,
    RollPreview,
    get_roll_offer,
    calculate_roll_fee,
    calculate_roll,
    preview_roll,
    create_roll_offer,
    cancel_roll_offer,
    roll_parts,
    accept_roll,
)

# Escrow
from .escrow import (
    EscrowOffer,
    Escrow,
    ReleasePreview,
    get_escrow_offer,
    get_escrow,
    calculate_interest_fee,
    max_late_fee,
    calculate_late_fee,
    calculate_release,
    interest_fee,
    escrow_fees,
    current_owed,
    preview_release,
    preview_rotation,
    create_escrow_offer,
    update_escrow_offer_amount,
    start_escrow,
    end_escrow,
    switch_escrow,
    withdraw_released,
    seize_escrow,
    grace_deadline,
)

# Loans
from .loans import (
    LoanStatus,
    Loan,
    get_loan,
    loan_symbol,
    check_swap_price,
    open_loan,
    close_loan,
    roll_loan,
    unwrap_and_cancel_loan,
)

__all__ = [
    # Provider
    'ProviderOffer',
    'ProviderPosition',
    'get_offer',
    'get_provider_position',
    'calculate_provider_locked',
    'offer_backing',
    'validate_offer_terms',
    'create_offer',
    'update_offer_amount',
    'mint_from_offer',
    'settle_provider_position',
    'withdraw_provider_position',
    # Taker
    'TakerPosition',
    'SettlementPreview',
    'get_position',
    'calculate_strike_prices',
    'calculate_settlement',
    'preview_settlement',
    'open_paired_position',
    'open_position',
    'settlement_parts',
    'settle_position',
    'withdrawal_part',
    'withdraw_taker_position',
    'cancel_paired_position',
    # Rolls
    'RollOffer',
    'RollPreview',
    'get_roll_offer',
    'calculate_roll_fee',
    'calculate_roll',
    'preview_roll',
    'create_roll_offer',
    'cancel_roll_offer',
    'roll_parts',
    'accept_roll',
    # Escrow
    'EscrowOffer',
    'Escrow',
    'ReleasePreview',
    'get_escrow_offer',
    'get_escrow',
    'calculate_interest_fee',
    'max_late_fee',
    'calculate_late_fee',
    'calculate_release',
    'interest_fee',
    'escrow_fees',
    'current_owed',
    'preview_release',
    'preview_rotation',
    'create_escrow_offer',
    'update_escrow_offer_amount',
    'start_escrow',
    'end_escrow',
    'switch_escrow',
    'withdraw_released',
    'seize_escrow',
    'grace_deadline',
    # Loans
    'LoanStatus',
    'Loan',
    'get_loan',
    'loan_symbol',
    'check_swap_price',
    'open_loan',
    'close_loan',
    'roll_loan',
    'unwrap_and_cancel_loan',
]
