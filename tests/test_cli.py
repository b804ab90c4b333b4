from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator, List

import pytest

from bondcurve.cli import main
from bondcurve.env import reset_dotenv_state


@pytest.fixture(autouse=True)
def _cli_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    # main() loads .env from the cwd once per process
    monkeypatch.chdir(tmp_path)
    reset_dotenv_state()
    yield
    reset_dotenv_state()


def _run(capsys: pytest.CaptureFixture[str], argv: List[str]) -> tuple[int, List[dict], List[dict]]:
    rc = main(argv)
    cap = capsys.readouterr()
    out = [json.loads(line) for line in cap.out.splitlines() if line.strip()]
    err = [json.loads(line) for line in cap.err.splitlines() if line.startswith('{"error"')]
    return rc, out, err


def test_deploy_buy_sell_flow(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db = str(tmp_path / "cf.db")

    rc, out, _ = _run(capsys, ["--db", db, "deploy"])
    assert rc == 0
    assert out[0]["db_path"] == db
    assert out[0]["receipt"]["reserve"] == "1.3"

    rc, out, _ = _run(capsys, ["--db", db, "price"])
    assert out == [{"current_price": "0.0051", "total_supply": "500"}]

    rc, out, _ = _run(capsys, ["--db", db, "buy", "--value", "0.1"])
    assert rc == 0
    assert out[0]["paid"] == "0.1"
    assert 19 < float(out[0]["tokens"]) < 20

    rc, out, _ = _run(capsys, ["--db", db, "sell", "--amount", "5"])
    assert rc == 0
    assert out[0]["amount"] == "5"

    rc, out, _ = _run(capsys, ["--db", db, "balance"])
    assert out[0]["account"] == "deployer"

    rc, out, _ = _run(capsys, ["--db", db, "events", "--account", "deployer"])
    assert [e["kind"] for e in out] == ["mint", "buy", "sell"]

    rc, out, _ = _run(capsys, ["--db", db, "check"])
    assert rc == 0
    assert out == [{"ok": True, "problems": []}]


def test_quote_and_supply(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db = str(tmp_path / "cf.db")
    _run(capsys, ["--db", db, "deploy"])

    rc, out, _ = _run(capsys, ["--db", db, "quote", "--sell", "5"])
    assert rc == 0
    assert out[0]["refund"] == "0.025375"

    rc, out, _ = _run(capsys, ["--db", db, "supply"])
    assert out[0]["symbol"] == "CF"
    assert out[0]["reserve"] == "1.3"
    assert out[0]["current_price"] == "0.0051"
    assert out[0]["holders"] == 1


def test_ledger_errors_exit_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db = str(tmp_path / "cf.db")
    _run(capsys, ["--db", db, "deploy"])

    rc, _, err = _run(capsys, ["--db", db, "sell", "--caller", "alice", "--amount", "1"])
    assert rc == 1
    assert err[0]["error"] == "insufficient_balance"

    rc, _, err = _run(capsys, ["--db", db, "deploy"])
    assert rc == 1
    assert err[0]["error"] == "already_initialized"

    rc, _, err = _run(capsys, ["--db", db, "buy", "--value", "lots"])
    assert rc == 2
    assert err[0]["error"] == "invalid_amount"


def test_bad_config_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = tmp_path / "bad.json"
    cfg.write_text(json.dumps({"mode": "staging"}), encoding="utf-8")
    rc, _, err = _run(capsys, ["--config", str(cfg), "price"])
    assert rc == 2
    assert err[0]["error"] == "config"


def test_migrate_is_noop_on_current_ledger(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db = str(tmp_path / "cf.db")
    _run(capsys, ["--db", db, "deploy"])
    rc, out, _ = _run(capsys, ["--db", db, "migrate"])
    assert rc == 0
    assert out[0]["from_version"] == out[0]["to_version"]


@pytest.mark.parametrize("command", [["price"], ["supply"], ["balance"], ["quote", "--buy", "1"], ["check"]])
def test_queries_never_create_a_ledger(tmp_path: Path, capsys: pytest.CaptureFixture[str], command: List[str]) -> None:
    typo = tmp_path / "typo.db"
    rc, out, err = _run(capsys, ["--db", str(typo), *command])
    assert rc == 2
    assert out == []
    assert err[0]["error"] == "state"
    assert not typo.exists()
