"""
analytics.py - Vectorized collar payoffs and price path simulation

Batch versions of the settlement math for scenario analysis. Payoffs use
object-dtype numpy arrays of Python ints, so every element is computed with
the same exact integer rounding as calculate_settlement.

Provides:
- settlement_payoffs: taker/provider payouts for an array of end prices
- gbm_paths: geometric Brownian motion price paths (seeded)
- payoff_summary: distribution statistics of the two payouts
"""

from __future__ import annotations
from typing import Dict, Tuple

import numpy as np

from .core import InvalidParameter
from .config import YEAR


def _as_int_array(values) -> np.ndarray:
    return np.array([int(v) for v in np.ravel(values)], dtype=object)


def settlement_payoffs(
    taker_locked: int,
    provider_locked: int,
    initial_price: int,
    put_strike_price: int,
    call_strike_price: int,
    end_prices,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Taker and provider withdrawable amounts at each end price.

    Element i equals calculate_settlement(..., end_prices[i]) exactly.

    Returns:
        (taker_withdrawable, provider_withdrawable) as object arrays of int
    """
    if not put_strike_price < initial_price < call_strike_price:
        raise InvalidParameter(
            f"Strikes {put_strike_price}/{call_strike_price} do not bracket {initial_price}"
        )
    prices = np.minimum(np.maximum(_as_int_array(end_prices), put_strike_price), call_strike_price)
    below = prices < initial_price
    down = (taker_locked * (initial_price - prices)) // (initial_price - put_strike_price)
    up = -((provider_locked * (prices - initial_price)) // (call_strike_price - initial_price))
    delta = np.where(below, down, up)
    return taker_locked - delta, provider_locked + delta


def gbm_paths(
    initial_price: int,
    volatility: float,
    horizon_seconds: int,
    steps: int,
    n_paths: int,
    seed: int,
    drift: float = 0.0,
) -> np.ndarray:
    """
    Simulate integer price paths under geometric Brownian motion.

    Returns:
        Array of shape (n_paths, steps + 1); column 0 is initial_price.
    """
    if initial_price <= 0 or volatility < 0 or steps <= 0 or n_paths <= 0:
        raise InvalidParameter("initial_price, steps and n_paths must be positive")
    rng = np.random.default_rng(seed)
    dt = horizon_seconds / YEAR / steps
    shocks = rng.standard_normal((n_paths, steps))
    log_steps = (drift - 0.5 * volatility ** 2) * dt + volatility * np.sqrt(dt) * shocks
    log_paths = np.concatenate([np.zeros((n_paths, 1)), np.cumsum(log_steps, axis=1)], axis=1)
    paths = np.floor(initial_price * np.exp(log_paths)).astype(np.int64)
    return np.maximum(paths, 1)


def payoff_summary(taker: np.ndarray, provider: np.ndarray) -> Dict[str, float]:
    """Mean and 5th/95th percentiles of each side's payout."""
    taker_f = taker.astype(float)
    provider_f = provider.astype(float)
    return {
        'taker_mean': float(np.mean(taker_f)),
        'taker_p05': float(np.percentile(taker_f, 5)),
        'taker_p95': float(np.percentile(taker_f, 95)),
        'provider_mean': float(np.mean(provider_f)),
        'provider_p05': float(np.percentile(provider_f, 5)),
        'provider_p95': float(np.percentile(provider_f, 95)),
    }
