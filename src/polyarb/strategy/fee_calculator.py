"""Trading fee policy.

Fixed at ~1% per side (2% round trip). Buying both outcomes pays the fee on
entry and again at settlement, so arbitrage profit is charged twice.
"""

from __future__ import annotations

TRADING_FEE_RATE = 0.01  # per side


def round_trip_fee(cost: float) -> float:
    """Absolute fee for entering and settling a position costing ``cost``.

    Examples:
        >>> round(round_trip_fee(0.99), 4)
        0.0198
    """
    return cost * TRADING_FEE_RATE * 2


def round_trip_fee_pct() -> float:
    """Round-trip fee as a percentage (2.0)."""
    return TRADING_FEE_RATE * 2 * 100


def net_arb_profit(ask_sum: float) -> tuple[float, float, float]:
    """Buy-both arbitrage economics for one YES + one NO share.

    Args:
        ask_sum: YES ask + NO ask.

    Returns:
        (gross_profit, fees, net_profit).
    """
    gross = 1.0 - ask_sum
    fees = round_trip_fee(ask_sum)
    return gross, fees, gross - fees
