# src/bondcurve/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from bondcurve.ledger.migrations import CURRENT_STATE_VERSION

Json = Dict[str, Any]

_SYNC_LEVELS = ("OFF", "NORMAL", "FULL", "EXTRA")

# Amount columns are TEXT: uint256 values overflow SQLite INTEGER.
_DDL: Tuple[str, ...] = (
    "CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);",
    """
    CREATE TABLE IF NOT EXISTS ledger_state (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      state_version INTEGER NOT NULL,
      event_seq INTEGER NOT NULL,
      state_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS balance_events (
      seq INTEGER PRIMARY KEY,
      op_type TEXT NOT NULL,
      kind TEXT NOT NULL,
      account TEXT NOT NULL,
      token_delta TEXT NOT NULL,
      currency_delta TEXT NOT NULL,
      created_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_balance_events_account ON balance_events(account);",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _snapshot_json(st: Json) -> str:
    # no default=str: a non-JSON value in ledger state is a bug, fail here
    return json.dumps(st, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_ms(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class LockRetry:
    """Backoff policy for SQLite's single-writer lock."""

    deadline_ms: int
    base_s: float
    cap_s: float

    @classmethod
    def from_env(cls) -> "LockRetry":
        base = max(0.001, _env_ms("BONDCURVE_SQLITE_WRITE_BACKOFF_BASE_MS", 5) / 1000.0)
        return cls(
            deadline_ms=max(250, _env_ms("BONDCURVE_SQLITE_WRITE_DEADLINE_MS", 30_000)),
            base_s=base,
            cap_s=max(base, _env_ms("BONDCURVE_SQLITE_WRITE_BACKOFF_MAX_MS", 250) / 1000.0),
        )

    def sleep(self, attempt: int) -> None:
        delay = min(self.cap_s, self.base_s * (2.0 ** min(attempt, 8)))
        time.sleep(delay * random.uniform(0.5, 1.5))

    def run(self, con: sqlite3.Connection, sql: str, give_up_at_ms: int) -> None:
        attempt = 0
        while True:
            try:
                con.execute(sql)
                return
            except sqlite3.OperationalError as e:
                busy = any(s in str(e).lower() for s in ("database is locked", "database is busy"))
                if not busy or _now_ms() >= give_up_at_ms:
                    raise
                self.sleep(attempt)
                attempt += 1


class SqliteDB:
    """One SQLite file per ledger: the state snapshot plus the balance journal.

    Connections are opened per use and never shared, so threads and forked
    processes are safe. Writers serialize on BEGIN IMMEDIATE; contention is
    retried under LockRetry until its deadline, then the error propagates.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """FULL in prod, NORMAL elsewhere; BONDCURVE_SQLITE_SYNCHRONOUS overrides."""
        prod = (os.environ.get("BONDCURVE_MODE") or "prod").strip().lower() == "prod"
        default = "FULL" if prod else "NORMAL"
        wanted = (os.environ.get("BONDCURVE_SQLITE_SYNCHRONOUS") or default).strip().upper()
        return wanted if wanted in _SYNC_LEVELS else default

    def _open(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        timeout_ms = _env_ms("BONDCURVE_SQLITE_CONNECT_TIMEOUT_MS", 30_000)

        # autocommit; write_tx() issues BEGIN/COMMIT itself
        con = sqlite3.connect(self.path, timeout=timeout_ms / 1000.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row

        journal = str(con.execute("PRAGMA journal_mode=WAL;").fetchone()[0]).lower()
        if journal != "wal" and not _env_flag("BONDCURVE_SQLITE_ALLOW_NON_WAL"):
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{journal}', expected 'wal'")

        busy_ms = max(0, _env_ms("BONDCURVE_SQLITE_BUSY_TIMEOUT_MS", timeout_ms))
        for pragma in (
            f"synchronous={self._sqlite_synchronous_pragma()}",
            "foreign_keys=ON",
            "temp_store=MEMORY",
            f"busy_timeout={busy_ms}",
        ):
            con.execute(f"PRAGMA {pragma};")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._open()
        try:
            yield con
        finally:
            con.close()

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT; anything raised inside rolls back."""
        retry = LockRetry.from_env()
        give_up_at = _now_ms() + retry.deadline_ms
        with self.connection() as con:
            retry.run(con, "BEGIN IMMEDIATE;", give_up_at)
            try:
                yield con
                retry.run(con, "COMMIT;", give_up_at)
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise

    def init_schema(self) -> None:
        with self.write_tx() as con:
            for ddl in _DDL:
                con.execute(ddl)

            row = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
                return
            have = str(row["value"])
            if have != str(self.SCHEMA_VERSION):
                raise RuntimeError(
                    f"sqlite schema_version is {have}, this binary writes {self.SCHEMA_VERSION}; refusing to open"
                )


def _event_row(r: sqlite3.Row) -> Json:
    return {
        "seq": int(r["seq"]),
        "op_type": str(r["op_type"]),
        "kind": str(r["kind"]),
        "account": str(r["account"]),
        "token_delta": int(r["token_delta"]),
        "currency_delta": int(r["currency_delta"]),
        "created_ts_ms": int(r["created_ts_ms"]),
    }


class SqliteLedgerStore:
    """The authoritative ledger snapshot (a single row) and its balance journal.

    update(mut) is the only path ops take: read, mutate, persist and journal
    the receipt's events inside one write transaction.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @classmethod
    def open(cls, path: str, *, create: bool = True) -> "SqliteLedgerStore":
        """Open the ledger file; with create=False a missing file is an error, not a new ledger."""
        if not create and not Path(path).is_file():
            raise FileNotFoundError(f"no ledger database at {path}")
        return cls(db=SqliteDB(path=path))

    @property
    def path(self) -> str:
        return self._db.path

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    @staticmethod
    def _load(con: sqlite3.Connection) -> Json:
        row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
        if row is None:
            raise FileNotFoundError("no ledger snapshot in this database; deploy first")
        st = json.loads(row["state_json"])
        if not isinstance(st, dict):
            raise ValueError("ledger snapshot is not a JSON object")
        return st

    @staticmethod
    def _save(con: sqlite3.Connection, st: Json) -> None:
        con.execute(
            """
            INSERT OR REPLACE INTO ledger_state(id, state_version, event_seq, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?, ?);
            """,
            (
                int(st.get("state_version") or CURRENT_STATE_VERSION),
                int(st.get("event_seq") or 0),
                _snapshot_json(st),
                _now_ms(),
            ),
        )

    @staticmethod
    def _journal(con: sqlite3.Connection, op_type: str, events: List[Json]) -> None:
        ts = _now_ms()
        con.executemany(
            "INSERT INTO balance_events(seq, op_type, kind, account, token_delta, currency_delta, created_ts_ms) "
            "VALUES(?, ?, ?, ?, ?, ?, ?);",
            [
                (
                    int(ev["seq"]),
                    op_type,
                    str(ev["kind"]),
                    str(ev["account"]),
                    str(int(ev["token_delta"])),
                    str(int(ev["currency_delta"])),
                    ts,
                )
                for ev in events
            ],
        )

    def read(self) -> Json:
        with self._db.connection() as con:
            return self._load(con)

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger snapshot must be a dict")
        with self._db.write_tx() as con:
            self._save(con, st)

    def ensure(self, st: Json) -> bool:
        """Seed the snapshot with `st` unless one exists. Returns whether it seeded."""
        if not isinstance(st, dict):
            raise ValueError("ledger snapshot must be a dict")
        with self._db.write_tx() as con:
            if con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None:
                return False
            self._save(con, st)
            return True

    def update(self, mut: Callable[[Json], Any]) -> Any:
        """Apply `mut` to the stored snapshot all-or-nothing and return its result.

        A dict result carrying an "events" list is journaled under its
        "applied" op type. If `mut` raises, nothing is written.
        """
        with self._db.write_tx() as con:
            st = self._load(con)
            out = mut(st)
            self._save(con, st)
            if isinstance(out, dict) and isinstance(out.get("events"), list):
                self._journal(con, str(out.get("applied") or ""), out["events"])
            return out

    def events(self, *, account: Optional[str] = None, limit: int = 100) -> List[Json]:
        where, args = ("", ()) if account is None else (" WHERE account=?", (str(account),))
        sql = (
            "SELECT seq, op_type, kind, account, token_delta, currency_delta, created_ts_ms "
            f"FROM balance_events{where} ORDER BY seq LIMIT ?;"
        )
        with self._db.connection() as con:
            rows = con.execute(sql, (*args, max(0, int(limit)))).fetchall()
        return [_event_row(r) for r in rows]
