# src/bondcurve/env.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_LOADED = False


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """Load BONDCURVE_* settings from a .env file, at most once per process.

    The file is the argument, else $BONDCURVE_DOTENV_PATH, else ./.env. Values
    already in the environment are left alone. Returns whether a file was read.
    """
    global _LOADED
    if _LOADED:
        return False
    _LOADED = True

    path = Path(dotenv_path or os.getenv("BONDCURVE_DOTENV_PATH", ".env")).expanduser()
    if not path.is_file():
        return False

    load_dotenv(dotenv_path=str(path), override=False)
    return True


def reset_dotenv_state() -> None:
    """Allow a fresh load (tests)."""
    global _LOADED
    _LOADED = False
