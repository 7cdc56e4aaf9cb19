"""
config.py - Protocol-wide parameters and authorization registry.

ConfigHub is an immutable capability handle passed explicitly into every
entry point that needs it. Governance changes produce a new ConfigHub
(dataclasses.replace or the with_* helpers); nothing reads a global.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Optional, Tuple

from .core import ProtocolPaused, UnauthorizedPair, InvalidParameter, mul_div


# ============================================================================
# CONSTANTS
# ============================================================================

BIPS_BASE = 10_000
YEAR = 365 * 24 * 60 * 60

MIN_CALL_STRIKE_PERCENT = BIPS_BASE + 1
MAX_CALL_STRIKE_PERCENT = 100_000
MAX_PROTOCOL_FEE_APR = 100

MIN_TWAP_WINDOW = 300
MAX_SWAP_PRICE_DEVIATION = 1_000

# Escrow limits
MAX_INTEREST_APR = BIPS_BASE
MAX_LATE_FEE_APR = BIPS_BASE * 12
MIN_GRACE_PERIOD = 24 * 60 * 60
MAX_GRACE_PERIOD = 30 * 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class ConfigHub:
    """
    Global parameters and the authorization registry.

    Attributes:
        min_ltv: Lowest accepted put strike percent (bips); LTV == put percent.
        max_ltv: Highest accepted put strike percent (bips).
        min_duration: Shortest position/escrow duration in seconds.
        max_duration: Longest position/escrow duration in seconds.
        max_call_strike_percent: Highest accepted call strike percent (bips).
        protocol_fee_apr: Annual fee on provider locked amounts (bips).
        fee_recipient: Wallet receiving protocol fees, or None for no fee.
        paused: When set, nothing new can be opened.
        allowed_pairs: (collateral, cash, contract) triples that may open positions.
        allowed_singles: (asset, contract) pairs for single-asset contracts (escrow).
    """
    min_ltv: int = 1_000
    max_ltv: int = 9_999
    min_duration: int = 300
    max_duration: int = 5 * YEAR
    max_call_strike_percent: int = MAX_CALL_STRIKE_PERCENT
    protocol_fee_apr: int = 0
    fee_recipient: Optional[str] = None
    paused: bool = False
    allowed_pairs: FrozenSet[Tuple[str, str, str]] = field(default_factory=frozenset)
    allowed_singles: FrozenSet[Tuple[str, str]] = field(default_factory=frozenset)

    def __post_init__(self):
        if not 0 < self.min_ltv <= self.max_ltv < BIPS_BASE:
            raise InvalidParameter(f"Invalid LTV range [{self.min_ltv}, {self.max_ltv}]")
        if not 0 < self.min_duration <= self.max_duration:
            raise InvalidParameter(
                f"Invalid duration range [{self.min_duration}, {self.max_duration}]"
            )
        if not MIN_CALL_STRIKE_PERCENT <= self.max_call_strike_percent <= MAX_CALL_STRIKE_PERCENT:
            raise InvalidParameter(f"Invalid max call strike {self.max_call_strike_percent}")
        if not 0 <= self.protocol_fee_apr <= MAX_PROTOCOL_FEE_APR:
            raise InvalidParameter(f"Protocol fee APR {self.protocol_fee_apr} out of range")

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def can_open_pair(self, collateral: str, cash: str, contract: str) -> bool:
        return not self.paused and (collateral, cash, contract) in self.allowed_pairs

    def can_open_single(self, asset: str, contract: str) -> bool:
        return not self.paused and (asset, contract) in self.allowed_singles

    def require_can_open_pair(self, collateral: str, cash: str, contract: str) -> None:
        if self.paused:
            raise ProtocolPaused("Protocol is paused")
        if (collateral, cash, contract) not in self.allowed_pairs:
            raise UnauthorizedPair(f"{contract} may not open {collateral}/{cash}")

    def require_can_open_single(self, asset: str, contract: str) -> None:
        if self.paused:
            raise ProtocolPaused("Protocol is paused")
        if (asset, contract) not in self.allowed_singles:
            raise UnauthorizedPair(f"{contract} may not open {asset}")

    # ------------------------------------------------------------------
    # Parameter checks
    # ------------------------------------------------------------------

    def is_valid_ltv(self, ltv: int) -> bool:
        return self.min_ltv <= ltv <= self.max_ltv

    def is_valid_duration(self, duration: int) -> bool:
        return self.min_duration <= duration <= self.max_duration

    def protocol_fee(self, provider_locked: int, duration: int) -> Tuple[int, Optional[str]]:
        """
        Fee charged to the provider for locking provider_locked for duration.

        Rounds up. Zero when no recipient is configured.
        """
        if self.fee_recipient is None or self.protocol_fee_apr == 0:
            return 0, self.fee_recipient
        fee = mul_div(provider_locked * self.protocol_fee_apr, duration, BIPS_BASE * YEAR, round_up=True)
        return fee, self.fee_recipient

    # ------------------------------------------------------------------
    # Governance helpers
    # ------------------------------------------------------------------

    def with_pair(self, collateral: str, cash: str, *contracts: str) -> ConfigHub:
        """Return a copy authorizing collateral/cash for each contract."""
        added = frozenset((collateral, cash, c) for c in contracts)
        return replace(self, allowed_pairs=self.allowed_pairs | added)

    def with_single(self, asset: str, *contracts: str) -> ConfigHub:
        added = frozenset((asset, c) for c in contracts)
        return replace(self, allowed_singles=self.allowed_singles | added)

    def with_paused(self, paused: bool = True) -> ConfigHub:
        return replace(self, paused=paused)
