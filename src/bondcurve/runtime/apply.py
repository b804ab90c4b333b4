# src/bondcurve/runtime/apply.py
from __future__ import annotations

"""Deterministic state transitions for the bonding-curve ledger.

Each applier takes the explicitly owned state dict plus an OpEnvelope, checks
everything first and only then mutates. A raised LedgerError therefore leaves
the state exactly as it was.
"""

from typing import Any, Callable, Dict, List

from pydantic import ValidationError

from bondcurve.ledger.constants import (
    DECIMALS,
    EVENT_BUY,
    EVENT_MINT,
    EVENT_SELL,
    EVENT_TRANSFER_IN,
    EVENT_TRANSFER_OUT,
    MAX_UINT256,
    OP_BUY,
    OP_INITIALIZE,
    OP_SELL,
    OP_TRANSFER,
)
from bondcurve.ledger.curve import LinearCurve
from bondcurve.ledger.fixed_point import in_uint256
from bondcurve.runtime.envelope import OpEnvelope
from bondcurve.runtime.errors import (
    AlreadyInitialized,
    InsufficientBalance,
    InsufficientPayment,
    InsufficientReserve,
    InvalidParameter,
    NotInitialized,
    UnknownOperation,
)
from bondcurve.runtime.schemas import (
    BuyPayload,
    InitializePayload,
    SellPayload,
    TransferPayload,
    parse_payload,
)
from bondcurve.runtime.state_invariants import ensure_state

Json = Dict[str, Any]
ApplyFn = Callable[[Json, OpEnvelope], Json]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _caller(env: OpEnvelope) -> str:
    caller = str(env.caller or "").strip()
    if not caller:
        raise InvalidParameter("missing_caller", {"op_type": env.op_type})
    return caller


def _payload(env: OpEnvelope) -> Any:
    try:
        return parse_payload(env.op_type, env.payload)
    except ValidationError as ve:
        errors = [{"loc": list(e.get("loc", ())), "msg": str(e.get("msg", ""))} for e in ve.errors()]
        raise InvalidParameter("payload_schema_mismatch", {"op_type": env.op_type, "errors": errors})


def _require_initialized(state: Json) -> None:
    if not bool(state.get("initialized", False)):
        raise NotInitialized()


def _balance(state: Json, account_id: str) -> int:
    acct = state.get("accounts", {}).get(account_id)
    if not isinstance(acct, dict):
        return 0
    return _as_int(acct.get("balance"), 0)


def _ensure_account(state: Json, account_id: str) -> Json:
    accts = state["accounts"]
    acct = accts.get(account_id)
    if not isinstance(acct, dict):
        acct = {"balance": 0, "nonce": 0}
        accts[account_id] = acct
    acct.setdefault("balance", 0)
    acct.setdefault("nonce", 0)
    return acct


def _bump_nonce(state: Json, account_id: str) -> None:
    acct = _ensure_account(state, account_id)
    acct["nonce"] = _as_int(acct.get("nonce"), 0) + 1


def _emit(state: Json, events: List[Json], *, kind: str, account: str, token_delta: int, currency_delta: int) -> None:
    seq = _as_int(state.get("event_seq"), 0) + 1
    state["event_seq"] = seq
    events.append(
        {
            "seq": seq,
            "kind": kind,
            "account": account,
            "token_delta": int(token_delta),
            "currency_delta": int(currency_delta),
        }
    )


# ---------------------------------------------------------------------------
# Appliers
# ---------------------------------------------------------------------------


def apply_initialize(state: Json, env: OpEnvelope) -> Json:
    ensure_state(state)
    if bool(state.get("initialized", False)):
        raise AlreadyInitialized(details={"owner": str(state.get("owner") or "")})

    caller = _caller(env)
    p: InitializePayload = _payload(env)

    if p.base_price == 0 and p.slope == 0:
        raise InvalidParameter("zero_price_curve", {"base_price": 0, "slope": 0})

    curve = LinearCurve(base_price=p.base_price, slope=p.slope)
    reserve = curve.reserve_for_supply(p.initial_supply)
    for name, value in (
        ("initial_supply", p.initial_supply),
        ("base_price", p.base_price),
        ("slope", p.slope),
        ("reserve", reserve),
        ("price", curve.price_at(p.initial_supply)),
    ):
        if not in_uint256(value):
            raise InvalidParameter("fixed_point_overflow", {"field": name, "value": str(value)})

    state["initialized"] = True
    state["owner"] = caller
    state["token"] = {"name": p.name, "symbol": p.symbol, "decimals": DECIMALS}
    state["curve"] = {"base_price": p.base_price, "slope": p.slope, "min_purchase": p.min_purchase}
    state["total_supply"] = int(p.initial_supply)
    state["reserve"] = int(reserve)

    acct = _ensure_account(state, caller)
    acct["balance"] = _as_int(acct.get("balance"), 0) + int(p.initial_supply)
    _bump_nonce(state, caller)

    events: List[Json] = []
    _emit(state, events, kind=EVENT_MINT, account=caller, token_delta=p.initial_supply, currency_delta=-reserve)

    return {
        "applied": OP_INITIALIZE,
        "owner": caller,
        "name": p.name,
        "symbol": p.symbol,
        "initial_supply": int(p.initial_supply),
        "reserve": int(reserve),
        "events": events,
    }


def quote_buy(state: Json, value: int) -> Json:
    """Preview a buy without touching state."""
    _require_initialized(state)
    v = int(value)
    if v < 0:
        raise InvalidParameter("negative_value", {"value": v})

    curve = LinearCurve.from_state(state)
    supply = _as_int(state.get("total_supply"), 0)
    tokens = curve.tokens_for_payment(supply, v)
    return {
        "value": v,
        "tokens": int(tokens),
        "cost": int(curve.cost_up(supply, supply + tokens)),
        "price_before": int(curve.price_at(supply)),
        "price_after": int(curve.price_at(supply + tokens)),
    }


def apply_buy(state: Json, env: OpEnvelope) -> Json:
    ensure_state(state)
    _require_initialized(state)
    caller = _caller(env)
    p: BuyPayload = _payload(env)

    q = quote_buy(state, env.value)
    tokens = int(q["tokens"])
    min_purchase = max(_as_int(state["curve"].get("min_purchase"), 1), 1)
    if tokens < min_purchase:
        raise InsufficientPayment(
            details={"value": int(env.value), "tokens": tokens, "min_purchase": min_purchase}
        )
    if tokens < p.min_tokens_out:
        raise InsufficientPayment(
            "fill_below_min_tokens_out",
            {"value": int(env.value), "tokens": tokens, "min_tokens_out": p.min_tokens_out},
        )

    new_supply = _as_int(state.get("total_supply"), 0) + tokens
    new_reserve = _as_int(state.get("reserve"), 0) + int(env.value)
    if new_supply > MAX_UINT256 or new_reserve > MAX_UINT256 or q["price_after"] > MAX_UINT256:
        raise InvalidParameter(
            "fixed_point_overflow", {"total_supply": str(new_supply), "reserve": str(new_reserve)}
        )

    acct = _ensure_account(state, caller)
    acct["balance"] = _as_int(acct.get("balance"), 0) + tokens
    state["total_supply"] = new_supply
    state["reserve"] = new_reserve
    _bump_nonce(state, caller)

    events: List[Json] = []
    _emit(state, events, kind=EVENT_BUY, account=caller, token_delta=tokens, currency_delta=-int(env.value))

    return {
        "applied": OP_BUY,
        "account": caller,
        "paid": int(env.value),
        "tokens": tokens,
        "cost": int(q["cost"]),
        "price_after": int(q["price_after"]),
        "events": events,
    }


def quote_sell(state: Json, amount: int) -> Json:
    """Preview a sell without touching state."""
    _require_initialized(state)
    a = int(amount)
    supply = _as_int(state.get("total_supply"), 0)
    if a <= 0:
        raise InvalidParameter("non_positive_amount", {"amount": a})
    if a > supply:
        raise InsufficientBalance("amount_exceeds_supply", {"amount": a, "total_supply": supply})

    curve = LinearCurve.from_state(state)
    return {
        "amount": a,
        "refund": int(curve.refund_down(supply - a, supply)),
        "price_before": int(curve.price_at(supply)),
        "price_after": int(curve.price_at(supply - a)),
    }


def apply_sell(state: Json, env: OpEnvelope) -> Json:
    ensure_state(state)
    _require_initialized(state)
    caller = _caller(env)
    p: SellPayload = _payload(env)

    bal = _balance(state, caller)
    if bal < p.amount:
        raise InsufficientBalance(details={"account": caller, "balance": bal, "amount": p.amount})

    q = quote_sell(state, p.amount)
    refund = int(q["refund"])
    reserve = _as_int(state.get("reserve"), 0)
    if refund > reserve:
        raise InsufficientReserve(details={"refund": refund, "reserve": reserve})
    if refund < p.min_refund:
        raise InvalidParameter("refund_below_min_refund", {"refund": refund, "min_refund": p.min_refund})

    acct = _ensure_account(state, caller)
    acct["balance"] = bal - p.amount
    state["total_supply"] = _as_int(state.get("total_supply"), 0) - p.amount
    state["reserve"] = reserve - refund
    _bump_nonce(state, caller)

    events: List[Json] = []
    _emit(state, events, kind=EVENT_SELL, account=caller, token_delta=-p.amount, currency_delta=refund)

    return {
        "applied": OP_SELL,
        "account": caller,
        "amount": int(p.amount),
        "refund": refund,
        "price_after": int(q["price_after"]),
        "events": events,
    }


def apply_transfer(state: Json, env: OpEnvelope) -> Json:
    ensure_state(state)
    _require_initialized(state)
    caller = _caller(env)
    p: TransferPayload = _payload(env)

    bal = _balance(state, caller)
    if bal < p.amount:
        raise InsufficientBalance(details={"account": caller, "balance": bal, "amount": p.amount})

    src = _ensure_account(state, caller)
    src["balance"] = bal - p.amount
    dst = _ensure_account(state, p.to)
    dst["balance"] = _as_int(dst.get("balance"), 0) + p.amount
    _bump_nonce(state, caller)

    events: List[Json] = []
    _emit(state, events, kind=EVENT_TRANSFER_OUT, account=caller, token_delta=-p.amount, currency_delta=0)
    _emit(state, events, kind=EVENT_TRANSFER_IN, account=p.to, token_delta=p.amount, currency_delta=0)

    return {
        "applied": OP_TRANSFER,
        "from": caller,
        "to": p.to,
        "amount": int(p.amount),
        "events": events,
    }


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


_APPLIERS: Dict[str, ApplyFn] = {
    OP_INITIALIZE: apply_initialize,
    OP_BUY: apply_buy,
    OP_SELL: apply_sell,
    OP_TRANSFER: apply_transfer,
}


def apply_op(state: Json, env: Any) -> Json:
    """Route an envelope (object or dict) to its applier. Unknown ops fail closed."""
    env_obj = OpEnvelope.from_json(env)
    op = str(env_obj.op_type or "").strip().upper()
    fn = _APPLIERS.get(op)
    if fn is None:
        raise UnknownOperation(details={"op_type": env_obj.op_type})
    if env_obj.value < 0:
        raise InvalidParameter("negative_value", {"value": env_obj.value})
    if op != OP_BUY and env_obj.value != 0:
        raise InvalidParameter("value_not_accepted", {"op_type": op, "value": env_obj.value})
    if op != env_obj.op_type:
        env_obj = OpEnvelope(op_type=op, caller=env_obj.caller, payload=env_obj.payload, value=env_obj.value)
    return fn(state, env_obj)
