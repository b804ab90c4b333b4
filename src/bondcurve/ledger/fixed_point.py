# src/bondcurve/ledger/fixed_point.py
from __future__ import annotations

"""18-decimal fixed-point helpers.

Values are plain Python ints scaled by 10**decimals. Python ints are unbounded,
so products never overflow mid-computation; callers range-check the final
result with check_uint256() before committing it to ledger state.
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

from bondcurve.ledger.constants import DECIMALS, MAX_UINT256


class FixedPointError(ValueError):
    """Raised for unparseable amounts or values outside the uint256 domain."""


def parse_units(value: Any, decimals: int = DECIMALS) -> int:
    """Parse a human decimal amount ("0.0001", "500", 12) into base units.

    Fails closed on anything that is not exactly representable: negative
    amounts are allowed here (validation happens at the ledger boundary), but
    more fractional digits than `decimals` is an error.
    """
    if isinstance(value, bool):
        raise FixedPointError(f"amount must be numeric, got bool: {value!r}")
    if isinstance(value, float):
        # floats carry binary rounding; go through repr so "0.1" stays 0.1
        value = repr(value)
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise FixedPointError(f"invalid decimal amount: {value!r}") from e
    if not d.is_finite():
        raise FixedPointError(f"amount must be finite: {value!r}")

    with localcontext() as ctx:
        # uint256 needs 78 significant digits; the default context keeps 28
        ctx.prec = 160
        scaled = d.scaleb(int(decimals))
    if scaled != scaled.to_integral_value():
        raise FixedPointError(f"too many fractional digits for {decimals} decimals: {value!r}")
    return int(scaled)


def format_units(value: int, decimals: int = DECIMALS) -> str:
    """Render base units as a decimal string without trailing zeros."""
    v = int(value)
    sign = "-" if v < 0 else ""
    whole, frac = divmod(abs(v), 10 ** int(decimals))
    if frac == 0:
        return f"{sign}{whole}"
    frac_s = str(frac).rjust(int(decimals), "0").rstrip("0")
    return f"{sign}{whole}.{frac_s}"


def mul_div_down(a: int, b: int, denominator: int) -> int:
    if denominator <= 0:
        raise FixedPointError("denominator must be positive")
    return (int(a) * int(b)) // int(denominator)


def mul_div_up(a: int, b: int, denominator: int) -> int:
    if denominator <= 0:
        raise FixedPointError("denominator must be positive")
    return -((-(int(a) * int(b))) // int(denominator))


def div_up(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise FixedPointError("denominator must be positive")
    return -((-int(numerator)) // int(denominator))


def in_uint256(value: int) -> bool:
    return 0 <= int(value) <= MAX_UINT256


def check_uint256(name: str, value: int) -> int:
    v = int(value)
    if not in_uint256(v):
        raise FixedPointError(f"{name} outside uint256 domain: {v}")
    return v
