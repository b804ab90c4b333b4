from __future__ import annotations

import multiprocessing as mp
from pathlib import Path

import pytest

from bondcurve.ledger.constants import WAD
from bondcurve.ledger.fixed_point import parse_units
from bondcurve.runtime.errors import InsufficientBalance
from bondcurve.runtime.ledger import BondingCurveLedger
from bondcurve.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from bondcurve.runtime.state_invariants import check_invariants


def _deploy(db_path: str) -> BondingCurveLedger:
    ledger = BondingCurveLedger(store=SqliteLedgerStore.open(db_path))
    ledger.initialize(
        "CoinFantasy",
        "CF",
        parse_units("500"),
        parse_units("0.0001"),
        parse_units("0.00001"),
        caller="deployer",
    )
    return ledger


def _buyer(db_path: str, account: str, n: int) -> None:
    ledger = BondingCurveLedger(store=SqliteLedgerStore.open(db_path))
    for _ in range(int(n)):
        ledger.buy(account, parse_units("0.001"))


def test_store_roundtrips_snapshot_and_journal(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    ledger = _deploy(db_path)
    ledger.buy("alice", parse_units("0.1"))
    ledger.transfer("alice", "bob", WAD)

    reopened = BondingCurveLedger(store=SqliteLedgerStore.open(db_path))
    assert reopened.snapshot() == ledger.snapshot()
    assert reopened.balance_of("bob") == WAD

    events = SqliteLedgerStore.open(db_path).events()
    assert [e["seq"] for e in events] == [1, 2, 3, 4]
    assert [e["op_type"] for e in events] == ["LEDGER_INITIALIZE", "CURVE_BUY", "TOKEN_TRANSFER", "TOKEN_TRANSFER"]
    assert events[1]["currency_delta"] == -parse_units("0.1")

    bob_only = SqliteLedgerStore.open(db_path).events(account="bob")
    assert [e["kind"] for e in bob_only] == ["transfer_in"]


def test_failed_op_writes_nothing(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    ledger = _deploy(db_path)
    before = ledger.snapshot()

    with pytest.raises(InsufficientBalance):
        ledger.sell("alice", WAD)

    assert ledger.snapshot() == before
    assert len(ledger.store.events()) == 1


def test_update_rolls_back_on_exception(tmp_path: Path) -> None:
    store = SqliteLedgerStore.open(str(tmp_path / "ledger.db"))
    store.write({"state_version": 2, "event_seq": 0, "value": 1})

    def boom(st: dict) -> None:
        st["value"] = 999
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.update(boom)

    assert store.read()["value"] == 1


def test_read_missing_snapshot_raises(tmp_path: Path) -> None:
    store = SqliteLedgerStore(db=SqliteDB(path=str(tmp_path / "empty.db")))
    assert store.exists() is False
    with pytest.raises(FileNotFoundError):
        store.read()


def test_concurrent_buyers_are_serialized(tmp_path: Path) -> None:
    """Buys from several processes against one file land in one global order."""
    db_path = str(tmp_path / "ledger.db")
    _deploy(db_path)

    ctx = mp.get_context("fork")
    workers, per = 4, 25
    procs = [ctx.Process(target=_buyer, args=(db_path, f"buyer{i}", per)) for i in range(workers)]
    for pr in procs:
        pr.start()
    for pr in procs:
        pr.join(60)
        assert pr.exitcode == 0

    store = SqliteLedgerStore.open(db_path)
    st = store.read()
    check_invariants(st)

    assert st["reserve"] == parse_units("1.3") + workers * per * parse_units("0.001")
    assert st["event_seq"] == 1 + workers * per

    events = store.events(limit=1000)
    assert [e["seq"] for e in events] == list(range(1, 2 + workers * per))
    minted = sum(e["token_delta"] for e in events if e["kind"] == "buy")
    assert st["total_supply"] == 500 * WAD + minted


def test_stale_handle_never_reseeds_a_deployed_ledger(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    # opened before anyone deployed, used only after the deploy
    stale = SqliteLedgerStore.open(db_path)
    assert stale.exists() is False

    _deploy(db_path)

    late = BondingCurveLedger(store=stale)
    view = late.view()
    assert view.initialized is True
    assert view.total_supply == 500 * WAD
    assert view.event_seq == len(stale.events()) == 1


def test_ensure_seeds_only_once(tmp_path: Path) -> None:
    store = SqliteLedgerStore.open(str(tmp_path / "ledger.db"))
    assert store.ensure({"state_version": 2, "event_seq": 0, "marker": "first"}) is True
    assert store.ensure({"state_version": 2, "event_seq": 0, "marker": "second"}) is False
    assert store.read()["marker"] == "first"


def test_open_without_create_requires_existing_file(tmp_path: Path) -> None:
    missing = tmp_path / "typo.db"
    with pytest.raises(FileNotFoundError):
        SqliteLedgerStore.open(str(missing), create=False)
    assert not missing.exists()

    # file present but never deployed: the ledger refuses to seed it
    store = SqliteLedgerStore.open(str(tmp_path / "empty.db"))
    with pytest.raises(FileNotFoundError):
        BondingCurveLedger(store=store, create=False)
    assert store.exists() is False


def test_store_mode_keeps_events_in_the_journal_only(tmp_path: Path) -> None:
    ledger = _deploy(str(tmp_path / "ledger.db"))
    ledger.buy("alice", parse_units("0.01"))
    assert ledger.events == []
    assert len(ledger.store.events()) == 2
