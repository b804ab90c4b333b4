from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, List

from bondcurve.ledger.constants import DECIMALS
from bondcurve.ledger.curve import LinearCurve


Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        if isinstance(v, bool):
            return default
        return int(v)
    except Exception:
        return default


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by queries, the CLI and tests.
    """

    initialized: bool = False
    owner: str = ""
    token: Dict[str, Any] = field(default_factory=dict)
    curve: Dict[str, Any] = field(default_factory=dict)
    accounts: Dict[str, Any] = field(default_factory=dict)
    total_supply: int = 0
    reserve: int = 0
    event_seq: int = 0

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        return cls(
            initialized=bool(state.get("initialized", False)),
            owner=str(state.get("owner") or ""),
            token=copy.deepcopy(state.get("token", {})) if isinstance(state.get("token"), dict) else {},
            curve=copy.deepcopy(state.get("curve", {})) if isinstance(state.get("curve"), dict) else {},
            accounts=copy.deepcopy(state.get("accounts", {})) if isinstance(state.get("accounts"), dict) else {},
            total_supply=_as_int(state.get("total_supply"), 0),
            reserve=_as_int(state.get("reserve"), 0),
            event_seq=_as_int(state.get("event_seq"), 0),
        )

    @property
    def name(self) -> str:
        return str(self.token.get("name") or "")

    @property
    def symbol(self) -> str:
        return str(self.token.get("symbol") or "")

    @property
    def decimals(self) -> int:
        return _as_int(self.token.get("decimals"), DECIMALS)

    @property
    def min_purchase(self) -> int:
        return _as_int(self.curve.get("min_purchase"), 1)

    def pricing(self) -> LinearCurve:
        return LinearCurve(
            base_price=_as_int(self.curve.get("base_price"), 0),
            slope=_as_int(self.curve.get("slope"), 0),
        )

    def current_price(self) -> int:
        return self.pricing().price_at(self.total_supply)

    def get_account(self, account_id: str) -> Dict[str, Any]:
        acct = self.accounts.get(account_id)
        return acct if isinstance(acct, dict) else {}

    def balance_of(self, account_id: str) -> int:
        return _as_int(self.get_account(account_id).get("balance"), 0)

    def get_nonce(self, account_id: str) -> int:
        return _as_int(self.get_account(account_id).get("nonce"), 0)

    def holders(self) -> List[str]:
        return sorted(aid for aid in self.accounts if self.balance_of(aid) > 0)

    def to_summary(self) -> Json:
        return {
            "initialized": self.initialized,
            "owner": self.owner,
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "base_price": str(_as_int(self.curve.get("base_price"), 0)),
            "slope": str(_as_int(self.curve.get("slope"), 0)),
            "min_purchase": str(self.min_purchase),
            "total_supply": str(self.total_supply),
            "reserve": str(self.reserve),
            "current_price": str(self.current_price()),
            "holders": len(self.holders()),
        }
