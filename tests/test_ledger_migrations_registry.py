from __future__ import annotations

import inspect
import re

import bondcurve.ledger.migrations as mig


def test_migration_registry_is_contiguous() -> None:
    """
    Every version from 0 to CURRENT_STATE_VERSION-1 needs a migration step,
    otherwise a version bump would strand persisted ledgers.
    """
    src = inspect.getsource(mig)

    m = re.search(r"_MIGRATIONS\s*:\s*Dict\[int,\s*Callable\[.*?\]\]\s*=\s*\{(.*?)\}", src, re.S)
    assert m, "Could not locate _MIGRATIONS registry in bondcurve.ledger.migrations"

    keys = set(int(k) for k in re.findall(r"(?m)^\s*(\d+)\s*:", m.group(1)))
    missing = sorted(set(range(0, mig.CURRENT_STATE_VERSION)) - keys)

    assert not missing, f"Missing migration steps for versions: {missing}"
