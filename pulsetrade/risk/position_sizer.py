"""Position sizing — pure math, no I/O.

Calculates the order quantity from available balance, the share of the
account committed per trade, leverage, and entry price.
"""

from decimal import ROUND_FLOOR, Decimal

QUANTITY_DECIMALS = 3  # BTCUSDT minimum size step is 0.001


def calculate_quantity(
    balance: float,
    account_percentage: float,
    entry_price: float,
    leverage: float,
    decimals: int = QUANTITY_DECIMALS,
) -> float:
    """Calculate the order quantity, truncated to *decimals* places.

    Formula::

        margin    = balance × (account_percentage / 100)
        notional  = margin × leverage
        quantity  = floor(notional / entry_price × 10^decimals) / 10^decimals

    Truncation works on the decimal representation of the raw quantity, so
    binary float error can never drop a whole step (0.03 stays 0.030).

    Args:
        balance: Available quote-asset balance (e.g. 1_000.0 USDT).
        account_percentage: Percentage of balance to commit (e.g. 10.0).
        entry_price: Expected fill price.
        leverage: Leverage multiplier (e.g. 15).

    Returns:
        Quantity in base-asset units; ``0.0`` when *balance* is not positive.

    Raises:
        ValueError: If *entry_price*, *account_percentage* or *leverage* is
            non-positive.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    if account_percentage <= 0:
        raise ValueError(f"account_percentage must be positive, got {account_percentage}")
    if leverage <= 0:
        raise ValueError(f"leverage must be positive, got {leverage}")
    if balance <= 0:
        return 0.0

    raw = balance * (account_percentage / 100.0) * leverage / entry_price
    step = Decimal(1).scaleb(-decimals)
    truncated = Decimal(repr(raw)).quantize(step, rounding=ROUND_FLOOR)
    return float(truncated)
