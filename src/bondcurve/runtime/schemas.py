from __future__ import annotations

"""Op payload schemas.

Shape checks (types, required keys, sign) run before any state is touched.
The apply layer still enforces semantics (balances, reserve, min purchase);
these schemas only keep malformed payloads out of the state transition.
"""

from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from bondcurve.ledger.constants import (
    DEFAULT_MIN_PURCHASE,
    OP_BUY,
    OP_INITIALIZE,
    OP_SELL,
    OP_TRANSFER,
)

Json = Dict[str, Any]


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys.

    Amounts are StrictInt: bools and numeric strings never pass as amounts.
    """

    model_config = ConfigDict(extra="forbid")


class InitializePayload(_StrictModel):
    name: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    initial_supply: StrictInt = Field(..., ge=0)
    base_price: StrictInt = Field(..., ge=0)
    slope: StrictInt = Field(..., ge=0)
    min_purchase: StrictInt = Field(DEFAULT_MIN_PURCHASE, ge=1)

    @field_validator("name", "symbol")
    @classmethod
    def strip_text(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("must not be blank")
        return s


class BuyPayload(_StrictModel):
    """Payment travels as the envelope value; a caller may bound the fill."""

    min_tokens_out: StrictInt = Field(0, ge=0)


class SellPayload(_StrictModel):
    amount: StrictInt = Field(..., gt=0)
    min_refund: StrictInt = Field(0, ge=0)


class TransferPayload(_StrictModel):
    to: str = Field(..., min_length=1)
    amount: StrictInt = Field(..., gt=0)

    @field_validator("to")
    @classmethod
    def strip_recipient(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("must not be blank")
        return s


Schema = Type[_StrictModel]

_SCHEMA_BY_OP: Dict[str, Schema] = {
    OP_INITIALIZE: InitializePayload,
    OP_BUY: BuyPayload,
    OP_SELL: SellPayload,
    OP_TRANSFER: TransferPayload,
}


def schema_for(op_type: str) -> Optional[Schema]:
    return _SCHEMA_BY_OP.get(str(op_type or "").strip().upper())


def validate_payload(*, op_type: str, payload: Any) -> Tuple[bool, str, str, Optional[Json]]:
    """Validate payload against the op schema.

    Returns: (ok, code, reason, details)
    """
    sch = schema_for(op_type)
    if sch is None:
        return False, "schema:unknown_op", "no_schema_for_op", {"op_type": op_type}

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return False, "schema:payload_not_object", "payload_must_be_object", None

    try:
        sch(**payload)
        return True, "", "", None
    except ValidationError as ve:
        errors = [
            {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
            for e in ve.errors()
        ]
        return False, "schema:validation_error", "payload_schema_mismatch", {"errors": errors}


def parse_payload(op_type: str, payload: Any) -> _StrictModel:
    """Validate and return the typed payload. Raises ValidationError/KeyError."""
    sch = _SCHEMA_BY_OP[str(op_type or "").strip().upper()]
    return sch(**(payload or {}))
