from __future__ import annotations

import copy

import pytest

from bondcurve.ledger.constants import WAD
from bondcurve.ledger.fixed_point import parse_units
from bondcurve.ledger.migrations import empty_state
from bondcurve.runtime.apply import apply_initialize
from bondcurve.runtime.envelope import OpEnvelope
from bondcurve.runtime.errors import AlreadyInitialized, InvalidParameter, NotInitialized
from bondcurve.runtime.ledger import BondingCurveLedger


def test_initialize_mints_supply_and_sets_reserve(coinfantasy: BondingCurveLedger) -> None:
    view = coinfantasy.view()
    assert view.initialized is True
    assert view.owner == "deployer"
    assert view.name == "CoinFantasy"
    assert view.symbol == "CF"
    assert view.decimals == 18

    assert coinfantasy.total_supply() == 500 * WAD
    assert coinfantasy.balance_of("deployer") == 500 * WAD
    assert coinfantasy.reserve() == parse_units("1.3")


def test_current_price_reference_example(coinfantasy: BondingCurveLedger) -> None:
    assert coinfantasy.current_price() == parse_units("0.0051")


def test_initialize_emits_mint_event(coinfantasy: BondingCurveLedger) -> None:
    assert coinfantasy.events == [
        {
            "seq": 1,
            "kind": "mint",
            "account": "deployer",
            "token_delta": 500 * WAD,
            "currency_delta": -parse_units("1.3"),
        }
    ]


def test_second_initialize_fails_and_changes_nothing(coinfantasy: BondingCurveLedger) -> None:
    before = coinfantasy.snapshot()
    with pytest.raises(AlreadyInitialized) as e:
        coinfantasy.initialize("Other", "OT", 1, 1, 1, caller="mallory")
    assert e.value.code == "already_initialized"
    assert coinfantasy.snapshot() == before


@pytest.mark.parametrize(
    "base_price,slope,supply,reason",
    [
        (-1, 1, 1, "payload_schema_mismatch"),
        (1, -1, 1, "payload_schema_mismatch"),
        (1, 1, -1, "payload_schema_mismatch"),
        (0, 0, 1, "zero_price_curve"),
        (1, WAD, 2**200, "fixed_point_overflow"),
    ],
)
def test_initialize_rejects_bad_parameters(base_price: int, slope: int, supply: int, reason: str) -> None:
    ledger = BondingCurveLedger()
    before = ledger.snapshot()
    with pytest.raises(InvalidParameter) as e:
        ledger.initialize("CoinFantasy", "CF", supply, base_price, slope, caller="deployer")
    assert e.value.reason == reason
    assert ledger.snapshot() == before
    assert ledger.view().initialized is False


def test_initialize_requires_caller() -> None:
    st = empty_state()
    env = OpEnvelope(
        op_type="LEDGER_INITIALIZE",
        caller="  ",
        payload={"name": "A", "symbol": "A", "initial_supply": 0, "base_price": 1, "slope": 0},
    )
    with pytest.raises(InvalidParameter) as e:
        apply_initialize(st, env)
    assert e.value.reason == "missing_caller"


def test_zero_initial_supply_is_allowed() -> None:
    ledger = BondingCurveLedger()
    ledger.initialize("Zero", "Z", 0, parse_units("0.001"), 0, caller="deployer")
    assert ledger.total_supply() == 0
    assert ledger.reserve() == 0
    assert ledger.current_price() == parse_units("0.001")


def test_ops_before_initialize_fail() -> None:
    ledger = BondingCurveLedger()
    with pytest.raises(NotInitialized):
        ledger.buy("alice", parse_units("1"))
    with pytest.raises(NotInitialized):
        ledger.sell("alice", 1)
    with pytest.raises(NotInitialized):
        ledger.quote_buy(1)
    assert ledger.current_price() == 0


def test_ledger_refuses_unmigrated_state() -> None:
    st = empty_state()
    old = copy.deepcopy(st)
    old["state_version"] = 1
    with pytest.raises(ValueError):
        BondingCurveLedger(old)
