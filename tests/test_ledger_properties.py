from __future__ import annotations

import random

import pytest

from bondcurve.ledger.constants import WAD
from bondcurve.ledger.fixed_point import parse_units
from bondcurve.runtime.errors import LedgerError
from bondcurve.runtime.ledger import BondingCurveLedger
from bondcurve.runtime.state_invariants import check_invariants, invariant_problems

ACCOUNTS = ["deployer", "alice", "bob", "carol"]


def _random_op(ledger: BondingCurveLedger, rng: random.Random) -> None:
    who = rng.choice(ACCOUNTS)
    roll = rng.random()
    if roll < 0.45:
        ledger.buy(who, rng.randint(0, parse_units("2")))
    elif roll < 0.85:
        bal = ledger.balance_of(who)
        ledger.sell(who, rng.randint(1, max(1, bal + WAD)))
    else:
        ledger.transfer(who, rng.choice(ACCOUNTS), rng.randint(1, 50 * WAD))


@pytest.mark.parametrize("seed", [1, 7, 42, 1337])
def test_invariants_hold_over_random_sequences(coinfantasy: BondingCurveLedger, seed: int) -> None:
    rng = random.Random(seed)
    for _ in range(200):
        before = coinfantasy.snapshot()
        try:
            _random_op(coinfantasy, rng)
        except LedgerError:
            # a failed op leaves no trace
            assert coinfantasy.snapshot() == before
        check_invariants(coinfantasy.snapshot())


def test_price_is_monotone_in_supply(coinfantasy: BondingCurveLedger) -> None:
    prices = [coinfantasy.current_price()]
    for _ in range(10):
        coinfantasy.buy("alice", parse_units("0.05"))
        prices.append(coinfantasy.current_price())
    assert prices == sorted(prices)

    for _ in range(10):
        coinfantasy.sell("deployer", 20 * WAD)
        p = coinfantasy.current_price()
        assert p <= prices[-1]
        prices.append(p)


@pytest.mark.parametrize("value", ["0.000001", "0.01", "0.1", "3", "250"])
def test_buy_then_sell_never_profits(coinfantasy: BondingCurveLedger, value: str) -> None:
    paid = parse_units(value)
    tokens = coinfantasy.buy("alice", paid)["tokens"]
    refund = coinfantasy.sell("alice", tokens)["refund"]
    assert refund <= paid
    assert coinfantasy.total_supply() == 500 * WAD
    assert coinfantasy.reserve() >= parse_units("1.3")


def test_invariant_problems_reports_supply_mismatch(coinfantasy: BondingCurveLedger) -> None:
    st = coinfantasy.snapshot()
    st["accounts"]["deployer"]["balance"] += 1
    checks = {p["check"] for p in invariant_problems(st)}
    assert "supply_equals_balances" in checks

    st = coinfantasy.snapshot()
    st["reserve"] = 0
    checks = {p["check"] for p in invariant_problems(st)}
    assert checks == {"solvency"}

    with pytest.raises(LedgerError) as e:
        check_invariants(st)
    assert e.value.code == "invariant_violation"
