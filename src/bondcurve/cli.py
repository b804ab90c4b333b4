# src/bondcurve/cli.py
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from bondcurve.config import DeployConfig, load_deploy_config
from bondcurve.deploy import deploy_from_config, upgrade_ledger
from bondcurve.env import load_dotenv_if_present
from bondcurve.ledger.fixed_point import FixedPointError, format_units, parse_units
from bondcurve.runtime.errors import LedgerError
from bondcurve.runtime.ledger import BondingCurveLedger
from bondcurve.runtime.sqlite_db import SqliteLedgerStore
from bondcurve.runtime.state_invariants import invariant_problems
from bondcurve.structured_logging import configure_structured_logging

Json = Dict[str, Any]

_AMOUNT_KEYS = {
    "paid",
    "tokens",
    "cost",
    "refund",
    "amount",
    "initial_supply",
    "reserve",
    "price_after",
    "price_before",
    "value",
    "balance",
    "token_delta",
    "currency_delta",
}


def _humanize(obj: Any) -> Any:
    """Render fixed-point amounts as decimal strings for operators."""
    if isinstance(obj, dict):
        out: Json = {}
        for k, v in obj.items():
            if k in _AMOUNT_KEYS and isinstance(v, int) and not isinstance(v, bool):
                out[k] = format_units(v)
            else:
                out[k] = _humanize(v)
        return out
    if isinstance(obj, list):
        return [_humanize(x) for x in obj]
    return obj


def _emit(obj: Json) -> None:
    print(json.dumps(_humanize(obj), sort_keys=True, ensure_ascii=False))


def _open_store(args: argparse.Namespace) -> SqliteLedgerStore:
    # only `deploy` may create a ledger file
    return SqliteLedgerStore.open(args.db, create=False)


def _open_ledger(args: argparse.Namespace) -> BondingCurveLedger:
    return BondingCurveLedger(store=_open_store(args), create=False)


def _cmd_deploy(args: argparse.Namespace, cfg: DeployConfig) -> int:
    handle = deploy_from_config(cfg)
    _emit(
        {
            "deployed": handle.instance_id,
            "deployer": handle.deployer,
            "db_path": handle.db_path,
            "state_version": handle.state_version,
            "receipt": handle.receipt,
        }
    )
    return 0


def _cmd_buy(args: argparse.Namespace, cfg: DeployConfig) -> int:
    receipt = _open_ledger(args).buy(
        args.caller, parse_units(args.value), min_tokens_out=parse_units(args.min_tokens_out)
    )
    _emit(receipt)
    return 0


def _cmd_sell(args: argparse.Namespace, cfg: DeployConfig) -> int:
    receipt = _open_ledger(args).sell(args.caller, parse_units(args.amount), min_refund=parse_units(args.min_refund))
    _emit(receipt)
    return 0


def _cmd_transfer(args: argparse.Namespace, cfg: DeployConfig) -> int:
    _emit(_open_ledger(args).transfer(args.caller, args.to, parse_units(args.amount)))
    return 0


def _cmd_price(args: argparse.Namespace, cfg: DeployConfig) -> int:
    ledger = _open_ledger(args)
    _emit({"current_price": format_units(ledger.current_price()), "total_supply": format_units(ledger.total_supply())})
    return 0


def _cmd_supply(args: argparse.Namespace, cfg: DeployConfig) -> int:
    summary = _open_ledger(args).view().to_summary()
    for k in ("base_price", "slope", "min_purchase", "total_supply", "reserve", "current_price"):
        summary[k] = format_units(int(summary[k]))
    _emit(summary)
    return 0


def _cmd_balance(args: argparse.Namespace, cfg: DeployConfig) -> int:
    ledger = _open_ledger(args)
    _emit({"account": args.account, "balance": format_units(ledger.balance_of(args.account))})
    return 0


def _cmd_quote(args: argparse.Namespace, cfg: DeployConfig) -> int:
    ledger = _open_ledger(args)
    if args.buy is not None:
        _emit(ledger.quote_buy(parse_units(args.buy)))
    else:
        _emit(ledger.quote_sell(parse_units(args.sell)))
    return 0


def _cmd_events(args: argparse.Namespace, cfg: DeployConfig) -> int:
    store = _open_store(args)
    for ev in store.events(account=args.account, limit=args.limit):
        _emit(ev)
    return 0


def _cmd_migrate(args: argparse.Namespace, cfg: DeployConfig) -> int:
    _emit(upgrade_ledger(_open_store(args)))
    return 0


def _cmd_check(args: argparse.Namespace, cfg: DeployConfig) -> int:
    problems = invariant_problems(_open_store(args).read())
    _emit({"ok": not problems, "problems": problems})
    return 0 if not problems else 1


def build_parser(cfg: DeployConfig) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="bondcurve", description="Linear bonding-curve ledger harness")
    p.add_argument("--config", default=None, help="deploy config file (JSON or YAML)")
    p.add_argument("--db", default=cfg.db_path, help="SQLite ledger file")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("deploy", help="initialize a new ledger from config")

    b = sub.add_parser("buy", help="buy tokens with native currency")
    b.add_argument("--caller", default=cfg.deployer)
    b.add_argument("--value", required=True, help="payment, e.g. 0.1")
    b.add_argument("--min-tokens-out", default="0")

    s = sub.add_parser("sell", help="sell tokens back to the curve")
    s.add_argument("--caller", default=cfg.deployer)
    s.add_argument("--amount", required=True, help="token amount, e.g. 5")
    s.add_argument("--min-refund", default="0")

    t = sub.add_parser("transfer", help="move tokens between accounts")
    t.add_argument("--caller", default=cfg.deployer)
    t.add_argument("--to", required=True)
    t.add_argument("--amount", required=True)

    sub.add_parser("price", help="current unit price")
    sub.add_parser("supply", help="ledger summary")

    bal = sub.add_parser("balance", help="token balance of an account")
    bal.add_argument("--account", default=cfg.deployer)

    q = sub.add_parser("quote", help="preview a buy or sell")
    g = q.add_mutually_exclusive_group(required=True)
    g.add_argument("--buy", default=None, help="payment to quote")
    g.add_argument("--sell", default=None, help="token amount to quote")

    e = sub.add_parser("events", help="balance-change journal")
    e.add_argument("--account", default=None)
    e.add_argument("--limit", type=int, default=100)

    sub.add_parser("migrate", help="upgrade the persisted state schema")
    sub.add_parser("check", help="verify ledger invariants")
    return p


_COMMANDS: Dict[str, Callable[[argparse.Namespace, DeployConfig], int]] = {
    "deploy": _cmd_deploy,
    "buy": _cmd_buy,
    "sell": _cmd_sell,
    "transfer": _cmd_transfer,
    "price": _cmd_price,
    "supply": _cmd_supply,
    "balance": _cmd_balance,
    "quote": _cmd_quote,
    "events": _cmd_events,
    "migrate": _cmd_migrate,
    "check": _cmd_check,
}


def _config_path_from_argv(argv: List[str]) -> Optional[str]:
    for i, a in enumerate(argv):
        if a == "--config" and i + 1 < len(argv):
            return argv[i + 1]
        if a.startswith("--config="):
            return a.split("=", 1)[1]
    return None


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env early so BONDCURVE_* vars exist before anything reads them.
    load_dotenv_if_present()
    argv = list(sys.argv[1:] if argv is None else argv)

    try:
        cfg = load_deploy_config(config_path=_config_path_from_argv(argv))
    except (ValueError, OSError) as e:
        print(json.dumps({"error": "config", "reason": str(e)}), file=sys.stderr)
        return 2

    configure_structured_logging(cfg.log_level)
    args = build_parser(cfg).parse_args(argv)

    # --db on the command line overrides the config file
    if args.db != cfg.db_path and args.command == "deploy":
        cfg = replace(cfg, db_path=args.db)

    try:
        return _COMMANDS[args.command](args, cfg)
    except LedgerError as e:
        err = e.to_json()
        print(json.dumps({"error": err.pop("code"), **_humanize(err)}), file=sys.stderr)
        return 1
    except FixedPointError as e:
        print(json.dumps({"error": "invalid_amount", "reason": str(e)}), file=sys.stderr)
        return 2
    except (FileNotFoundError, ValueError) as e:
        print(json.dumps({"error": "state", "reason": str(e)}), file=sys.stderr)
        return 2
