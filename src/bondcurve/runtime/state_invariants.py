# src/bondcurve/runtime/state_invariants.py
from __future__ import annotations

"""Ledger state shape checks and accounting invariants.

Ledger state is a JSON-like dict mutated only by bondcurve.runtime.apply. This
module is the single place that:

  - validates the state is dict-like and carries the core roots
  - checks the accounting invariants after a transition

check_invariants() is cheap enough to run after every op in tests and in the
harness `check` command; the apply layer itself never relies on it.
"""

from collections.abc import MutableMapping
from typing import Any, Dict, List

from bondcurve.ledger.constants import MAX_UINT256
from bondcurve.ledger.state import LedgerView
from bondcurve.runtime.errors import InvariantViolation

Json = Dict[str, Any]


def ensure_state(st: Any) -> Json:
    """Check the roots every applier touches and backfill the missing ones.

    Wrongly typed roots are not coerced; that is the migration layer's job.

    Raises:
        TypeError: if st, or one of its dict roots, has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"ledger state must be a mapping, got {type(st).__name__}")

    for key in ("accounts", "token", "curve"):
        root = st.get(key)
        if root is None:
            st[key] = {}
        elif not isinstance(root, dict):
            raise TypeError(f"ledger state[{key!r}] must be dict, got {type(root).__name__}")

    for key, default in (("initialized", False), ("total_supply", 0), ("reserve", 0), ("event_seq", 0)):
        st.setdefault(key, default)

    return st  # type: ignore[return-value]


def invariant_problems(st: Json) -> List[Json]:
    """Return every violated invariant (empty list means healthy)."""
    view = LedgerView.from_ledger(st)
    problems: List[Json] = []

    total = 0
    for aid in sorted(view.accounts):
        bal = view.balance_of(aid)
        if bal < 0 or bal > MAX_UINT256:
            problems.append({"check": "balance_domain", "account": aid, "balance": str(bal)})
        total += bal

    if total != view.total_supply:
        problems.append(
            {"check": "supply_equals_balances", "total_supply": str(view.total_supply), "sum_balances": str(total)}
        )

    for name, value in (("total_supply", view.total_supply), ("reserve", view.reserve)):
        if value < 0 or value > MAX_UINT256:
            problems.append({"check": f"{name}_domain", "value": str(value)})

    if view.initialized:
        required = view.pricing().refund_down(0, view.total_supply)
        if view.reserve < required:
            problems.append({"check": "solvency", "reserve": str(view.reserve), "required": str(required)})

    return problems


def check_invariants(st: Json) -> None:
    problems = invariant_problems(st)
    if problems:
        raise InvariantViolation("ledger_invariants_broken", {"problems": problems})


__all__ = ["ensure_state", "check_invariants", "invariant_problems"]
