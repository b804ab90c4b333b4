from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]


@dataclass
class LedgerError(Exception):
    """Canonical error type for ledger op failures.

    Every failure is terminal for the op that raised it; no state is committed.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> Json:
        return {"code": self.code, "reason": self.reason, "details": self.details}


class AlreadyInitialized(LedgerError):
    def __init__(self, reason: str = "ledger_already_initialized", details: Optional[Json] = None) -> None:
        super().__init__("already_initialized", reason, details)


class NotInitialized(LedgerError):
    def __init__(self, reason: str = "ledger_not_initialized", details: Optional[Json] = None) -> None:
        super().__init__("not_initialized", reason, details)


class InvalidParameter(LedgerError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("invalid_parameter", reason, details)


class InsufficientPayment(LedgerError):
    def __init__(self, reason: str = "below_min_purchase", details: Optional[Json] = None) -> None:
        super().__init__("insufficient_payment", reason, details)


class InsufficientBalance(LedgerError):
    def __init__(self, reason: str = "balance_too_low", details: Optional[Json] = None) -> None:
        super().__init__("insufficient_balance", reason, details)


class InsufficientReserve(LedgerError):
    """Refund exceeds the reserve. Signals a solvency invariant violation."""

    def __init__(self, reason: str = "refund_exceeds_reserve", details: Optional[Json] = None) -> None:
        super().__init__("insufficient_reserve", reason, details)


class UnknownOperation(LedgerError):
    def __init__(self, reason: str = "op_type_not_implemented", details: Optional[Json] = None) -> None:
        super().__init__("op_unimplemented", reason, details)


class InvariantViolation(LedgerError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("invariant_violation", reason, details)
