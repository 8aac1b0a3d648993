"""Fee calculation service: single source of truth for monetary splits.

All arithmetic is done on integer nano-TON (1 TON = 10**9 nano-TON). Decimal
is used only at the boundary to turn a human-facing TON amount into nano
units, so large budgets never lose precision to floating point.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation, localcontext
from typing import Final

from showpls.core.errors import InvalidAmount

NANO_PER_TON: Final[int] = 10**9
BPS_DENOMINATOR: Final[int] = 10_000
DEFAULT_PLATFORM_FEE_BPS: Final[int] = 250  # 2.5%
MINIMUM_ORDER_NANO: Final[int] = NANO_PER_TON // 10  # 0.1 TON
# Sanity ceiling on caller amounts, far above the TON supply.
MAXIMUM_AMOUNT_TON: Final[Decimal] = Decimal("1e21")

Amount = Decimal | int | float | str


@dataclass(frozen=True)
class FeeCalculation:
    """Exact split of a budget into platform fee and payee amount."""

    budget_nano: int
    platform_fee_nano: int
    payee_amount_nano: int
    fee_bps: int

    @property
    def display(self) -> dict[str, str]:
        """Human-facing TON strings with trailing zeros removed."""
        return {
            "budget": format_ton(self.budget_nano),
            "platform_fee": format_ton(self.platform_fee_nano),
            "payee_amount": format_ton(self.payee_amount_nano),
        }

    def as_dict(self) -> dict[str, object]:
        """Serialise for JSON responses; nano amounts are strings to survive JS clients."""
        return {
            "budget_nano": str(self.budget_nano),
            "platform_fee_nano": str(self.platform_fee_nano),
            "payee_amount_nano": str(self.payee_amount_nano),
            "fee_bps": self.fee_bps,
            "display": self.display,
        }


@dataclass(frozen=True)
class EscrowAmounts:
    """Amounts handed to the escrow contract for a stored nano budget."""

    total_escrow_nano: int
    platform_fee_nano: int
    provider_amount_nano: int


def _to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, bool):
        raise InvalidAmount("Amount must be a number, not a boolean")
    if isinstance(amount, Decimal):
        value = amount
    elif isinstance(amount, int):
        value = Decimal(amount)
    elif isinstance(amount, float):
        if not math.isfinite(amount):
            raise InvalidAmount("Amount must be finite")
        # repr() gives the shortest string that round-trips, so 0.1 stays 0.1.
        value = Decimal(repr(amount))
    elif isinstance(amount, str):
        try:
            value = Decimal(amount.strip())
        except InvalidOperation as err:
            raise InvalidAmount(f"Amount {amount!r} is not a number") from err
    else:
        raise InvalidAmount(f"Unsupported amount type: {type(amount).__name__}")

    if not value.is_finite():
        raise InvalidAmount("Amount must be finite")
    if value < 0:
        raise InvalidAmount("Amount must not be negative")
    if value >= MAXIMUM_AMOUNT_TON:
        raise InvalidAmount("Amount is too large")
    return value


def to_nano(amount: Amount) -> int:
    """Convert a TON amount to integer nano-TON, rounding down.

    Scaling is exact regardless of how many digits the amount carries; only
    the final step to an integer discards sub-nano precision.
    """
    value = _to_decimal(amount)
    if value.adjusted() < -9:
        return 0
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(value.as_tuple().digits) + 9)
        scaled = value.scaleb(9)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def _check_fee_bps(fee_bps: int) -> int:
    if isinstance(fee_bps, bool) or not isinstance(fee_bps, int):
        raise InvalidAmount("Fee rate must be an integer number of basis points")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise InvalidAmount(f"Fee rate must be between 0 and {BPS_DENOMINATOR} bps")
    return fee_bps


def split_nano(budget_nano: int, fee_bps: int) -> tuple[int, int]:
    """Return ``(platform_fee, payee_amount)`` for a nano budget."""
    if isinstance(budget_nano, bool) or not isinstance(budget_nano, int) or budget_nano < 0:
        raise InvalidAmount("Budget must be a non-negative integer of nano-TON")
    _check_fee_bps(fee_bps)
    platform_fee = budget_nano * fee_bps // BPS_DENOMINATOR
    return platform_fee, budget_nano - platform_fee


def compute_fees(budget: Amount, fee_bps: int = DEFAULT_PLATFORM_FEE_BPS) -> FeeCalculation:
    """Calculate the platform fee and payee amount for a TON budget."""
    budget_nano = to_nano(budget)
    platform_fee, payee_amount = split_nano(budget_nano, fee_bps)
    return FeeCalculation(
        budget_nano=budget_nano,
        platform_fee_nano=platform_fee,
        payee_amount_nano=payee_amount,
        fee_bps=fee_bps,
    )


def escrow_amounts(budget_nano: int, fee_bps: int) -> EscrowAmounts:
    """Split an already stored nano budget for the on-chain release."""
    platform_fee, provider_amount = split_nano(budget_nano, fee_bps)
    return EscrowAmounts(
        total_escrow_nano=budget_nano,
        platform_fee_nano=platform_fee,
        provider_amount_nano=provider_amount,
    )


def validate_minimum(amount: Amount) -> bool:
    """Return True if the amount meets the 0.1 TON order minimum."""
    return to_nano(amount) >= MINIMUM_ORDER_NANO


def nano_to_ton(nano: int) -> str:
    """Render nano-TON as TON with exactly nine decimal places."""
    if isinstance(nano, bool) or not isinstance(nano, int):
        raise InvalidAmount("Nano amount must be an integer")
    sign = "-" if nano < 0 else ""
    whole, frac = divmod(abs(nano), NANO_PER_TON)
    return f"{sign}{whole}.{frac:09d}"


def format_ton(nano: int) -> str:
    """Render nano-TON for display, stripping trailing zeros.

    ``format_ton(to_nano(format_ton(x))) == format_ton(x)`` for every
    non-negative ``x``.
    """
    text = nano_to_ton(nano).rstrip("0")
    return text[:-1] if text.endswith(".") else text
