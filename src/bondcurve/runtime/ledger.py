# src/bondcurve/runtime/ledger.py
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from bondcurve.ledger.constants import (
    DEFAULT_MIN_PURCHASE,
    OP_BUY,
    OP_INITIALIZE,
    OP_SELL,
    OP_TRANSFER,
)
from bondcurve.ledger.migrations import CURRENT_STATE_VERSION, empty_state
from bondcurve.ledger.state import LedgerView
from bondcurve.runtime.apply import apply_op, quote_buy, quote_sell
from bondcurve.runtime.envelope import OpEnvelope
from bondcurve.runtime.errors import LedgerError
from bondcurve.runtime.sqlite_db import SqliteLedgerStore
from bondcurve.runtime.state_invariants import check_invariants
from bondcurve.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("bondcurve.ledger")

EVENT_BUFFER_SIZE = 10_000

_EVENT_BY_OP = {
    OP_INITIALIZE: "ledger_initialized",
    OP_BUY: "curve_buy",
    OP_SELL: "curve_sell",
    OP_TRANSFER: "token_transfer",
}


class BondingCurveLedger:
    """Owns one ledger state and serializes every op against it.

    In-memory mode applies each op to a deep copy and swaps it in on success.
    Store mode runs each op inside one SQLite write transaction, so concurrent
    processes sharing the file still see a single global order.

    The ledger never migrates state itself; a snapshot at an older
    state_version must go through bondcurve.deploy.upgrade_ledger first.
    """

    def __init__(
        self,
        state: Optional[Json] = None,
        *,
        store: Optional[SqliteLedgerStore] = None,
        create: bool = True,
    ) -> None:
        self._store = store
        if store is not None:
            # seeding is a single INSERT OR IGNORE; an existing snapshot always wins
            if create:
                store.ensure(empty_state() if state is None else state)
            self._require_current(store.read())
            self._state: Json = {}
        else:
            st = empty_state() if state is None else state
            self._require_current(st)
            self._state = st
        # recent events of an in-memory ledger; store mode keeps them in the journal
        self.events: List[Json] = []

    @staticmethod
    def _require_current(st: Json) -> None:
        v = st.get("state_version")
        if v != CURRENT_STATE_VERSION:
            raise ValueError(
                f"ledger state_version={v!r} does not match {CURRENT_STATE_VERSION}; run the migration first"
            )

    @property
    def store(self) -> Optional[SqliteLedgerStore]:
        return self._store

    # ------------------------------------------------------------------
    # Transactional interface
    # ------------------------------------------------------------------

    def submit(self, env: Any) -> Json:
        """Apply one envelope atomically and return its receipt."""
        env_obj = OpEnvelope.from_json(env)
        try:
            if self._store is not None:
                receipt = self._store.update(lambda st: apply_op(st, env_obj))
            else:
                working = copy.deepcopy(self._state)
                receipt = apply_op(working, env_obj)
                self._state = working
        except LedgerError as e:
            log_event(
                log,
                "op_rejected",
                level=logging.WARNING,
                op_type=env_obj.op_type,
                caller=env_obj.caller,
                code=e.code,
                reason=e.reason,
            )
            raise

        if self._store is None:
            self.events.extend(receipt.get("events") or [])
            del self.events[:-EVENT_BUFFER_SIZE]
        fields = {k: v for k, v in receipt.items() if k not in {"applied", "events"}}
        log_event(log, _EVENT_BY_OP.get(str(receipt.get("applied")), "op_applied"), **fields)
        return receipt

    def initialize(
        self,
        name: str,
        symbol: str,
        initial_supply: int,
        base_price: int,
        slope: int,
        *,
        caller: str,
        min_purchase: int = DEFAULT_MIN_PURCHASE,
    ) -> Json:
        return self.submit(
            OpEnvelope(
                op_type=OP_INITIALIZE,
                caller=caller,
                payload={
                    "name": name,
                    "symbol": symbol,
                    "initial_supply": initial_supply,
                    "base_price": base_price,
                    "slope": slope,
                    "min_purchase": min_purchase,
                },
            )
        )

    def buy(self, caller: str, value: int, *, min_tokens_out: int = 0) -> Json:
        return self.submit(
            OpEnvelope(op_type=OP_BUY, caller=caller, payload={"min_tokens_out": min_tokens_out}, value=int(value))
        )

    def sell(self, caller: str, amount: int, *, min_refund: int = 0) -> Json:
        return self.submit(
            OpEnvelope(op_type=OP_SELL, caller=caller, payload={"amount": amount, "min_refund": min_refund})
        )

    def transfer(self, caller: str, to: str, amount: int) -> Json:
        return self.submit(OpEnvelope(op_type=OP_TRANSFER, caller=caller, payload={"to": to, "amount": amount}))

    # ------------------------------------------------------------------
    # Query interface
    # ------------------------------------------------------------------

    def snapshot(self) -> Json:
        """Deep copy of the current state."""
        if self._store is not None:
            return self._store.read()
        return copy.deepcopy(self._state)

    def view(self) -> LedgerView:
        if self._store is not None:
            return LedgerView.from_ledger(self._store.read())
        return LedgerView.from_ledger(self._state)

    def current_price(self) -> int:
        return self.view().current_price()

    def balance_of(self, account_id: str) -> int:
        return self.view().balance_of(account_id)

    def total_supply(self) -> int:
        return self.view().total_supply

    def reserve(self) -> int:
        return self.view().reserve

    def quote_buy(self, value: int) -> Json:
        return quote_buy(self.snapshot(), value)

    def quote_sell(self, amount: int) -> Json:
        return quote_sell(self.snapshot(), amount)

    def check(self) -> None:
        check_invariants(self.snapshot())
