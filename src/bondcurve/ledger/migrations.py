# src/bondcurve/ledger/migrations.py
from __future__ import annotations

"""Persisted ledger layout and its upgrade path.

Layouts:
  v0  unversioned snapshot; amounts may be decimal strings, roots may be missing
  v1  normalized roots, balances as a flat {account_id: int} map
  v2  per-account {"balance", "nonce"} records plus a global event_seq

Every step takes the dict it is given, rewrites it in place and returns it.
"""

from typing import Any, Callable, Dict, Tuple

from bondcurve.ledger.constants import DECIMALS, DEFAULT_MIN_PURCHASE

Json = Dict[str, Any]
Coerce = Callable[[Any, Any], Any]

# Bump together with a new _MIGRATIONS entry.
CURRENT_STATE_VERSION = 2

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _amount(v: Any, default: int) -> int:
    """Non-negative integer amount; strings like "500000" are accepted."""
    if isinstance(v, bool) or v is None:
        return default
    try:
        n = int(str(v).strip()) if isinstance(v, str) else int(v)
    except (TypeError, ValueError):
        return default
    return n if n >= 0 else 0


def _text(v: Any, default: str) -> str:
    return default if v is None else str(v)


def _flag(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, int) and v in (0, 1):
        return bool(v)
    if isinstance(v, str):
        s = v.strip().lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
    return default


_ROOT_FIELDS: Dict[str, Tuple[Coerce, Any]] = {
    "initialized": (_flag, False),
    "owner": (_text, ""),
    "total_supply": (_amount, 0),
    "reserve": (_amount, 0),
}

_TOKEN_FIELDS: Dict[str, Tuple[Coerce, Any]] = {
    "name": (_text, ""),
    "symbol": (_text, ""),
    "decimals": (_amount, DECIMALS),
}

_CURVE_FIELDS: Dict[str, Tuple[Coerce, Any]] = {
    "base_price": (_amount, 0),
    "slope": (_amount, 0),
    "min_purchase": (_amount, DEFAULT_MIN_PURCHASE),
}

_ACCOUNT_FIELDS: Dict[str, Tuple[Coerce, Any]] = {
    "balance": (_amount, 0),
    "nonce": (_amount, 0),
}


def _sub(root: Json, key: str) -> Json:
    v = root.get(key)
    if not isinstance(v, dict):
        v = {}
        root[key] = v
    return v


def _normalize(obj: Json, fields: Dict[str, Tuple[Coerce, Any]]) -> Json:
    for key, (coerce, default) in fields.items():
        obj[key] = coerce(obj.get(key), default)
    return obj


def _migrate_v0_to_v1(st: Json) -> Json:
    """Tag the snapshot and coerce every v1 root into shape."""
    _normalize(st, _ROOT_FIELDS)
    _normalize(_sub(st, "token"), _TOKEN_FIELDS)
    _normalize(_sub(st, "curve"), _CURVE_FIELDS)

    balances = _sub(st, "balances")
    for aid in list(balances):
        balances[aid] = _amount(balances[aid], 0)

    st["state_version"] = 1
    return st


def _migrate_v1_to_v2(st: Json) -> Json:
    """Fold flat balances into account records and start the event sequence.

    A flat balance overrides an existing account record's balance; nonces start at 0.
    """
    accounts = _sub(st, "accounts")
    flat = st.pop("balances", None)
    if isinstance(flat, dict):
        for aid, bal in flat.items():
            rec = accounts.get(aid)
            rec = rec if isinstance(rec, dict) else {}
            rec["balance"] = bal
            accounts[aid] = rec

    for aid in list(accounts):
        rec = accounts[aid]
        accounts[aid] = _normalize(rec if isinstance(rec, dict) else {}, _ACCOUNT_FIELDS)

    st["event_seq"] = _amount(st.get("event_seq"), 0)
    st["state_version"] = 2
    return st


_MIGRATIONS: Dict[int, Callable[[Json], Json]] = {
    0: _migrate_v0_to_v1,
    1: _migrate_v1_to_v2,
}


def empty_state() -> Json:
    """A fresh, uninitialized ledger at CURRENT_STATE_VERSION."""
    return migrate_state_dict({})


def migrate_state_dict(raw: Any) -> Json:
    """Bring a persisted snapshot up to CURRENT_STATE_VERSION.

    Shape problems are repaired, not reported. A non-dict input yields an empty
    skeleton. A snapshot written by a newer binary raises ValueError.
    """
    st: Json = raw if isinstance(raw, dict) else {}
    start = _amount(st.get("state_version"), 0)
    if start > CURRENT_STATE_VERSION:
        raise ValueError(f"ledger state_version {start} is newer than supported ({CURRENT_STATE_VERSION})")

    for version in range(start, CURRENT_STATE_VERSION):
        step = _MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"no migration from state_version={version}")
        st = step(st)

    st["state_version"] = CURRENT_STATE_VERSION
    return st
