# src/bondcurve/ledger/constants.py
from __future__ import annotations

"""Monetary constants for the bonding-curve ledger.

- Token and native currency both use 18 decimals (1 unit = 1e18 base units)
- Persisted quantities live in the uint256 domain
- Minimum purchase defaults to one base unit of the token
"""

# Fixed-point precision (1 token = 1e18 base units, 1 ether = 1e18 wei)
DECIMALS: int = 18
WAD: int = 10**DECIMALS

# uint256 upper bound for supply, reserve, balances and prices
MAX_UINT256: int = 2**256 - 1

DEFAULT_MIN_PURCHASE: int = 1

# Op types routed by bondcurve.runtime.apply.apply_op
OP_INITIALIZE: str = "LEDGER_INITIALIZE"
OP_BUY: str = "CURVE_BUY"
OP_SELL: str = "CURVE_SELL"
OP_TRANSFER: str = "TOKEN_TRANSFER"

# Event kinds recorded in receipts and the balance journal
EVENT_MINT: str = "mint"
EVENT_BUY: str = "buy"
EVENT_SELL: str = "sell"
EVENT_TRANSFER_OUT: str = "transfer_out"
EVENT_TRANSFER_IN: str = "transfer_in"
