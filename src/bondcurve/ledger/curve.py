# src/bondcurve/ledger/curve.py
from __future__ import annotations

"""Linear bonding curve math.

    price(s) = base_price + slope * s / WAD

with supply `s` in token base units and prices in wei per whole token. The
native-currency cost of moving supply from s0 to s1 is the integral

    cost = (2*WAD*b*(s1 - s0) + m*(s1 - s0)*(s1 + s0)) / (2*WAD**2)

Rounding always favors the ledger: payments round up, payouts round down, and
token amounts handed out for a payment round down.
"""

from dataclasses import dataclass
from math import isqrt
from typing import Any, Dict

from bondcurve.ledger.constants import WAD
from bondcurve.ledger.fixed_point import div_up

Json = Dict[str, Any]

_INTEGRAL_DENOMINATOR: int = 2 * WAD * WAD


@dataclass(frozen=True, slots=True)
class LinearCurve:
    base_price: int
    slope: int

    @classmethod
    def from_state(cls, state: Json) -> "LinearCurve":
        curve = state.get("curve")
        if not isinstance(curve, dict):
            curve = {}
        return cls(base_price=int(curve.get("base_price", 0)), slope=int(curve.get("slope", 0)))

    def price_at(self, supply: int) -> int:
        return int(self.base_price) + (int(self.slope) * int(supply)) // WAD

    def _integral_numerator(self, s0: int, s1: int) -> int:
        d = int(s1) - int(s0)
        if d < 0:
            raise ValueError(f"integral bounds reversed: s0={s0} s1={s1}")
        return 2 * WAD * int(self.base_price) * d + int(self.slope) * d * (int(s1) + int(s0))

    def cost_up(self, s0: int, s1: int) -> int:
        """Native currency required to mint [s0, s1], rounded up."""
        return div_up(self._integral_numerator(s0, s1), _INTEGRAL_DENOMINATOR)

    def refund_down(self, s0: int, s1: int) -> int:
        """Native currency paid out for burning [s0, s1], rounded down."""
        return self._integral_numerator(s0, s1) // _INTEGRAL_DENOMINATOR

    def tokens_for_payment(self, supply: int, value: int) -> int:
        """Largest token delta whose exact integral cost is <= value.

        Solves m*d**2 + 2*A*d - 2*WAD**2*v = 0 with A = m*s + b*WAD. The
        floor of the integer square root never overshoots the real root, so
        the result satisfies cost_up(s, s + d) <= value exactly.
        """
        v = int(value)
        if v <= 0:
            return 0
        m = int(self.slope)
        b = int(self.base_price)
        if m == 0:
            if b <= 0:
                raise ValueError("curve has zero price")
            return (v * WAD) // b

        a = m * int(supply) + b * WAD
        disc = a * a + 2 * m * WAD * WAD * v
        return (isqrt(disc) - a) // m

    def reserve_for_supply(self, supply: int) -> int:
        """Exact-or-above reserve backing `supply` minted from zero."""
        return self.cost_up(0, int(supply))
