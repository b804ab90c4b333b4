# src/bondcurve/deploy.py
from __future__ import annotations

"""Deployment harness.

The only code allowed to create ledger instances and to run state migrations.
Mirrors a proxy deployment: initialize once through a fixed interface, then
upgrade the storage layout explicitly when the binary moves to a new
state_version.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from bondcurve.config import DeployConfig
from bondcurve.ledger.constants import DEFAULT_MIN_PURCHASE
from bondcurve.ledger.fixed_point import format_units
from bondcurve.ledger.migrations import CURRENT_STATE_VERSION, migrate_state_dict
from bondcurve.runtime.ledger import BondingCurveLedger
from bondcurve.runtime.sqlite_db import SqliteLedgerStore
from bondcurve.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("bondcurve.deploy")


@dataclass(frozen=True)
class DeployedLedger:
    """Handle returned by deploy_ledger()."""

    instance_id: str
    deployer: str
    state_version: int
    ledger: BondingCurveLedger
    receipt: Json

    @property
    def db_path(self) -> str:
        store = self.ledger.store
        return store.path if store is not None else ""


def _instance_id(*parts: Any) -> str:
    h = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return "0x" + h[-40:]


def deploy_ledger(
    name: str,
    symbol: str,
    initial_supply: int,
    base_price: int,
    slope: int,
    *,
    deployer: str,
    store: Optional[SqliteLedgerStore] = None,
    min_purchase: int = DEFAULT_MIN_PURCHASE,
) -> DeployedLedger:
    """Create and initialize a ledger. Amounts are fixed-point base units."""
    ledger = BondingCurveLedger(store=store)
    receipt = ledger.initialize(
        name,
        symbol,
        initial_supply,
        base_price,
        slope,
        caller=deployer,
        min_purchase=min_purchase,
    )

    handle = DeployedLedger(
        instance_id=_instance_id(deployer, name, symbol, initial_supply, base_price, slope),
        deployer=deployer,
        state_version=CURRENT_STATE_VERSION,
        ledger=ledger,
        receipt=receipt,
    )
    log_event(
        log,
        "ledger_deployed",
        instance_id=handle.instance_id,
        deployer=deployer,
        name=name,
        symbol=symbol,
        db_path=handle.db_path,
        current_price=format_units(ledger.current_price()),
    )
    return handle


def deploy_from_config(cfg: DeployConfig) -> DeployedLedger:
    units = cfg.token.to_units()
    return deploy_ledger(
        cfg.token.name,
        cfg.token.symbol,
        units["initial_supply"],
        units["base_price"],
        units["slope"],
        deployer=cfg.deployer,
        store=SqliteLedgerStore.open(cfg.db_path),
        min_purchase=units["min_purchase"],
    )


def upgrade_ledger(store: SqliteLedgerStore) -> Json:
    """Migrate a persisted snapshot to CURRENT_STATE_VERSION in one transaction."""
    result: Json = {}

    def _mut(st: Json) -> None:
        before = st.get("state_version", 0)
        migrated = migrate_state_dict(st)
        if migrated is not st:
            st.clear()
            st.update(migrated)
        result["from_version"] = before
        result["to_version"] = st["state_version"]

    store.update(_mut)
    log_event(log, "ledger_migrated", db_path=store.path, **result)
    return result
