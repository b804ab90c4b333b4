# src/bondcurve/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from bondcurve.ledger.fixed_point import FixedPointError, parse_units

Json = Dict[str, Any]


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_amount(v: Any, default: str) -> str:
    # amounts stay decimal strings until parse time; YAML may hand us floats
    if v is None:
        return str(default)
    if isinstance(v, float):
        return repr(v)
    s = str(v).strip()
    return s if s else str(default)


@dataclass(frozen=True)
class TokenParams:
    """Human-unit deployment parameters (decimal strings, 18 decimals)."""

    name: str
    symbol: str
    initial_supply: str
    base_price: str
    slope: str
    min_purchase: str = "0.000000000000000001"

    def to_units(self) -> Dict[str, int]:
        return {
            "initial_supply": parse_units(self.initial_supply),
            "base_price": parse_units(self.base_price),
            "slope": parse_units(self.slope),
            "min_purchase": parse_units(self.min_purchase),
        }


@dataclass(frozen=True)
class DeployConfig:
    mode: str  # "dev" | "testnet" | "prod"

    # SQLite file holding the ledger snapshot and balance journal.
    db_path: str

    deployer: str
    log_level: str

    token: TokenParams


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_deploy_config(cfg: DeployConfig) -> None:
    """Fail-fast validation for operator config."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    for name, v in (("db_path", cfg.db_path), ("deployer", cfg.deployer)):
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    if not cfg.token.name.strip() or not cfg.token.symbol.strip():
        raise ValueError("token name and symbol must be non-empty")

    try:
        units = cfg.token.to_units()
    except FixedPointError as e:
        raise ValueError(f"invalid token amount: {e}") from e

    for name in ("initial_supply", "base_price", "slope"):
        if units[name] < 0:
            raise ValueError(f"{name} must be >= 0; got: {getattr(cfg.token, name)!r}")
    if units["base_price"] == 0 and units["slope"] == 0:
        raise ValueError("base_price and slope cannot both be zero")
    if units["min_purchase"] <= 0:
        raise ValueError(f"min_purchase must be > 0; got: {cfg.token.min_purchase!r}")


def default_deploy_config() -> DeployConfig:
    return DeployConfig(
        mode="prod",
        db_path="./data/bondcurve.db",
        deployer="deployer",
        log_level="INFO",
        token=TokenParams(
            name="CoinFantasy",
            symbol="CF",
            initial_supply="500",
            base_price="0.0001",
            slope="0.00001",
        ),
    )


def _read_raw(path: Path) -> Json:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("deploy config must be a mapping")
    return raw


def read_deploy_config_file(path: str) -> DeployConfig:
    raw = _read_raw(Path(path))
    d = default_deploy_config()

    tok = raw.get("token")
    if not isinstance(tok, dict):
        tok = {}

    cfg = DeployConfig(
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        deployer=_as_str(raw.get("deployer"), d.deployer),
        log_level=_as_str(raw.get("log_level"), d.log_level),
        token=TokenParams(
            name=_as_str(tok.get("name"), d.token.name),
            symbol=_as_str(tok.get("symbol"), d.token.symbol),
            initial_supply=_as_amount(tok.get("initial_supply"), d.token.initial_supply),
            base_price=_as_amount(tok.get("base_price"), d.token.base_price),
            slope=_as_amount(tok.get("slope"), d.token.slope),
            min_purchase=_as_amount(tok.get("min_purchase"), d.token.min_purchase),
        ),
    )

    validate_deploy_config(cfg)
    return cfg


def _apply_env_overrides(cfg: DeployConfig) -> DeployConfig:
    env = os.environ
    tok = cfg.token
    tok = replace(
        tok,
        name=_as_str(env.get("BONDCURVE_TOKEN_NAME"), tok.name),
        symbol=_as_str(env.get("BONDCURVE_TOKEN_SYMBOL"), tok.symbol),
        initial_supply=_as_amount(env.get("BONDCURVE_INITIAL_SUPPLY"), tok.initial_supply),
        base_price=_as_amount(env.get("BONDCURVE_BASE_PRICE"), tok.base_price),
        slope=_as_amount(env.get("BONDCURVE_SLOPE"), tok.slope),
        min_purchase=_as_amount(env.get("BONDCURVE_MIN_PURCHASE"), tok.min_purchase),
    )
    return replace(
        cfg,
        mode=_as_str(env.get("BONDCURVE_MODE"), cfg.mode).strip().lower(),
        db_path=_as_str(env.get("BONDCURVE_DB_PATH"), cfg.db_path),
        deployer=_as_str(env.get("BONDCURVE_DEPLOYER"), cfg.deployer),
        log_level=_as_str(env.get("BONDCURVE_LOG_LEVEL"), cfg.log_level),
        token=tok,
    )


def load_deploy_config(*, config_path: Optional[str] = None) -> DeployConfig:
    """Config file (arg or BONDCURVE_DEPLOY_CONFIG_PATH) wins; otherwise defaults + env."""
    p = config_path or os.environ.get("BONDCURVE_DEPLOY_CONFIG_PATH")
    if p:
        return read_deploy_config_file(p)

    cfg = _apply_env_overrides(default_deploy_config())
    validate_deploy_config(cfg)
    return cfg
