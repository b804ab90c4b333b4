from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class OpEnvelope:
    """A single ledger op as submitted by a caller.

    `value` is the native currency attached to the op (wei). Only CURVE_BUY
    is payable; apply_op rejects a non-zero value on any other op.
    """

    op_type: str
    caller: str
    payload: Dict[str, Any] = field(default_factory=dict)
    value: int = 0

    @staticmethod
    def from_json(j: Any) -> "OpEnvelope":
        if isinstance(j, OpEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return OpEnvelope(
            op_type=str(j.get("op_type", "")),
            caller=str(j.get("caller", "")),
            payload=dict(j.get("payload", {}) or {}),
            value=int(j.get("value", 0) or 0),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "op_type": self.op_type,
            "caller": self.caller,
            "payload": self.payload,
            "value": self.value,
        }
