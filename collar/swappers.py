"""
swappers.py - Swap adapters used by loans

A swapper is a wallet that trades one token for another at a quoted amount.
The loans contract asks for a quote, enforces its slippage floor and moves
both legs in the same transaction as the rest of the loan operation.

    ConstantProductSwapper   x * y = k pool over the wallet's ledger balances
    OracleSwapper            fills at an oracle price less a spread
"""

from __future__ import annotations
from typing import List, Protocol, Tuple, runtime_checkable

from .config import BIPS_BASE
from .contracts import balance_of
from .core import (
    LedgerView, Move, InvalidParameter, LiquidityError, SlippageExceeded, mul_div, token_move,
)
from .oracles import PriceOracle, convert_to_base_amount, convert_to_quote_amount


@runtime_checkable
class Swapper(Protocol):
    wallet: str

    def quote(self, view: LedgerView, asset_in: str, asset_out: str, amount_in: int) -> int:
        ...


def swap_parts(
    view: LedgerView,
    swapper: Swapper,
    payer: str,
    asset_in: str,
    asset_out: str,
    amount_in: int,
    min_amount_out: int,
) -> Tuple[int, List[Move]]:
    """
    Quote a swap and build its two legs.

    Returns:
        (amount_out, moves)

    Raises:
        SlippageExceeded: If the quote is below min_amount_out
    """
    if amount_in < 0:
        raise InvalidParameter(f"Negative swap amount {amount_in}")
    if asset_in == asset_out:
        raise InvalidParameter(f"Cannot swap {asset_in} for itself")
    amount_out = swapper.quote(view, asset_in, asset_out, amount_in) if amount_in else 0
    if amount_out < min_amount_out:
        raise SlippageExceeded(
            f"Swap of {amount_in} {asset_in} returns {amount_out} {asset_out}, "
            f"minimum {min_amount_out}"
        )
    contract_id = f"swap:{swapper.wallet}"
    moves = token_move(amount_in, asset_in, payer, swapper.wallet, contract_id)
    moves.extend(token_move(amount_out, asset_out, swapper.wallet, payer, contract_id))
    return amount_out, moves


class ConstantProductSwapper:
    """
    Constant-product pool whose reserves are the wallet's ledger balances.

    The fee is taken from the input before the invariant is applied.
    """

    def __init__(self, wallet: str, fee_bips: int = 30):
        if not 0 <= fee_bips < BIPS_BASE:
            raise InvalidParameter(f"Invalid pool fee {fee_bips}")
        self.wallet = wallet
        self.fee_bips = fee_bips

    def quote(self, view: LedgerView, asset_in: str, asset_out: str, amount_in: int) -> int:
        reserve_in = balance_of(view, self.wallet, asset_in)
        reserve_out = balance_of(view, self.wallet, asset_out)
        if reserve_in == 0 or reserve_out == 0:
            raise LiquidityError(f"Pool {self.wallet} has no {asset_in}/{asset_out} liquidity")
        net_in = amount_in * (BIPS_BASE - self.fee_bips)
        return mul_div(net_in, reserve_out, reserve_in * BIPS_BASE + net_in)

    def spot_price(self, view: LedgerView, base: str, quote: str, base_decimals: int) -> int:
        """Quote raw units per whole base token at the current reserves."""
        return mul_div(
            balance_of(view, self.wallet, quote), 10 ** base_decimals,
            balance_of(view, self.wallet, base),
        )

    def __repr__(self):
        return f"ConstantProductSwapper({self.wallet}, fee={self.fee_bips}bps)"


class OracleSwapper:
    """Fills at the oracle's current price less spread_bips, from the wallet's inventory."""

    def __init__(self, wallet: str, oracle: PriceOracle, spread_bips: int = 0):
        if not 0 <= spread_bips < BIPS_BASE:
            raise InvalidParameter(f"Invalid spread {spread_bips}")
        self.wallet = wallet
        self.oracle = oracle
        self.spread_bips = spread_bips

    def quote(self, view: LedgerView, asset_in: str, asset_out: str, amount_in: int) -> int:
        price = self.oracle.current_price(view.current_time)
        base, quote = self.oracle.base_token, self.oracle.quote_token
        if (asset_in, asset_out) == (base, quote):
            gross = convert_to_quote_amount(amount_in, price, self.oracle.base_decimals)
        elif (asset_in, asset_out) == (quote, base):
            gross = convert_to_base_amount(amount_in, price, self.oracle.base_decimals)
        else:
            raise InvalidParameter(f"{self.wallet} does not trade {asset_in}/{asset_out}")
        return mul_div(gross, BIPS_BASE - self.spread_bips, BIPS_BASE)

    def __repr__(self):
        return f"OracleSwapper({self.wallet}, {self.oracle.description}, spread={self.spread_bips}bps)"
