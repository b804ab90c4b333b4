from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterator

import pytest

# Ensure local "src/" takes precedence over any globally-installed "bondcurve" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from bondcurve.ledger.fixed_point import parse_units  # noqa: E402
from bondcurve.runtime.ledger import BondingCurveLedger  # noqa: E402


@pytest.fixture
def coinfantasy() -> BondingCurveLedger:
    """The CoinFantasy deployment: CF, 500 tokens, base 0.0001, slope 0.00001."""
    ledger = BondingCurveLedger()
    ledger.initialize(
        "CoinFantasy",
        "CF",
        parse_units("500"),
        parse_units("0.0001"),
        parse_units("0.00001"),
        caller="deployer",
    )
    return ledger


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    # the CLI and the smoke script install a JSONL handler on the root logger
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    configured = getattr(root, "_bondcurve_configured", False)
    yield
    root.handlers = handlers
    root.setLevel(level)
    setattr(root, "_bondcurve_configured", configured)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "BONDCURVE_DEPLOY_CONFIG_PATH",
        "BONDCURVE_DB_PATH",
        "BONDCURVE_DEPLOYER",
        "BONDCURVE_TOKEN_NAME",
        "BONDCURVE_TOKEN_SYMBOL",
        "BONDCURVE_INITIAL_SUPPLY",
        "BONDCURVE_BASE_PRICE",
        "BONDCURVE_SLOPE",
        "BONDCURVE_MIN_PURCHASE",
        "BONDCURVE_SQLITE_SYNCHRONOUS",
        "BONDCURVE_LOG_LEVEL",
        "BONDCURVE_DOTENV_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BONDCURVE_MODE", "dev")
