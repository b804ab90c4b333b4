#!/usr/bin/env python3

"""Smoke run of the bonding-curve harness.

Deploys a fresh CoinFantasy ledger into a temporary SQLite file, buys with
0.1 native units, sells 5 tokens back, and checks the ledger invariants.

Usage:
  python3 scripts/curve_smoke.py

Optional env overrides:
  BONDCURVE_SMOKE_BUY_VALUE=0.1
  BONDCURVE_SMOKE_SELL_AMOUNT=5
"""

from __future__ import annotations

import os
import tempfile

from bondcurve.deploy import deploy_ledger
from bondcurve.ledger.fixed_point import format_units, parse_units
from bondcurve.runtime.sqlite_db import SqliteLedgerStore
from bondcurve.structured_logging import configure_structured_logging


def main() -> int:
    configure_structured_logging()
    buy_value = parse_units(os.environ.get("BONDCURVE_SMOKE_BUY_VALUE", "0.1"))
    sell_amount = parse_units(os.environ.get("BONDCURVE_SMOKE_SELL_AMOUNT", "5"))

    with tempfile.TemporaryDirectory(prefix="bondcurve-smoke-") as td:
        os.environ.setdefault("BONDCURVE_MODE", "dev")
        store = SqliteLedgerStore.open(os.path.join(td, "ledger.db"))

        handle = deploy_ledger(
            "CoinFantasy",
            "CF",
            parse_units("500"),
            parse_units("0.0001"),
            parse_units("0.00001"),
            deployer="deployer",
            store=store,
        )
        ledger = handle.ledger
        print("deployed:", handle.instance_id)
        print("price:", format_units(ledger.current_price()))

        bought = ledger.buy("deployer", buy_value)
        print("bought:", format_units(bought["tokens"]), "for", format_units(buy_value))
        print("balance:", format_units(ledger.balance_of("deployer")))

        sold = ledger.sell("deployer", sell_amount)
        print("sold:", format_units(sell_amount), "refund", format_units(sold["refund"]))
        print("balance:", format_units(ledger.balance_of("deployer")))

        ledger.check()
        print("invariants: ok")
        print("journal events:", len(store.events()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
