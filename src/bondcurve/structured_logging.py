# src/bondcurve/structured_logging.py
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _jsonable(v: Any) -> Any:
    # uint256 amounts overflow most JSON consumers; log big ints as strings.
    if isinstance(v, bool):
        return v
    if isinstance(v, int) and abs(v) > 2**53:
        return str(v)
    if isinstance(v, dict):
        return {str(k): _jsonable(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_jsonable(x) for x in v]
    return v


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Configure stdlib logging for JSONL output (stderr).

    - Level from the argument, else BONDCURVE_LOG_LEVEL (default INFO).
    - Safe to call multiple times.
    """
    raw = level_name or os.environ.get("BONDCURVE_LOG_LEVEL") or "INFO"
    level = getattr(logging, raw.strip().upper(), logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_bondcurve_configured", False):  # type: ignore[attr-defined]
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(logging.NOTSET)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    setattr(root, "_bondcurve_configured", True)  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSONL log event."""
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(_jsonable(fields))
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        logger.log(level, " ".join(parts))
