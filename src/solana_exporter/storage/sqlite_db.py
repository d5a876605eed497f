# src/solana_exporter/storage/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional

from solana_exporter.errors import StorageError

# Cache namespaces. Each is one table keyed by an 8-byte big-endian epoch.
EPOCH_REWARDS_TREE_NAME = "epoch_rewards"
APY_TREE_NAME = "epoch_apy"
EPOCH_LENGTH_TREE_NAME = "epoch_length"
EPOCH_VOTER_APY_TREE_NAME = "epoch_voter_apy"

TREE_NAMES = (
    EPOCH_REWARDS_TREE_NAME,
    APY_TREE_NAME,
    EPOCH_LENGTH_TREE_NAME,
    EPOCH_VOTER_APY_TREE_NAME,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def canon_json(obj: Any, *, allow_nan: bool = False) -> str:
    """Canonical JSON encoding for persisted values.

    With `allow_nan`, non-finite floats are written as `Infinity`/`NaN` tokens,
    which `json.loads` reads back.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=allow_nan)


def epoch_key(epoch: int) -> bytes:
    e = int(epoch)
    if e < 0 or e >= 2**64:
        raise StorageError("epoch_out_of_range", f"epoch must fit in an unsigned 64-bit key; got {epoch}")
    return e.to_bytes(8, "big")


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """One SQLite file holding every cache namespace.

    Keys are BLOB primary keys, which compare bytewise, so big-endian epochs
    come back in numeric order. Each call opens its own connection; none is
    shared between the loop thread and the HTTP thread.

    Only one writer may hold the database at a time, and BEGIN IMMEDIATE or
    COMMIT can briefly fail with "database is locked". write_tx() retries
    those statements until a deadline passes.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str, mode: Optional[str] = None) -> None:
        self.path = str(path)
        # Operator mode ("dev" | "prod"); None falls back to SOLEX_MODE.
        self.mode = mode

    def _sqlite_synchronous_pragma(self) -> str:
        """PRAGMA synchronous level: FULL in prod, NORMAL in dev.

        SOLEX_SQLITE_SYNCHRONOUS (OFF, NORMAL, FULL or EXTRA) overrides it.
        """
        mode = (self.mode or os.environ.get("SOLEX_MODE") or "prod").strip().lower()
        level = "FULL" if mode == "prod" else "NORMAL"
        override = (os.environ.get("SOLEX_SQLITE_SYNCHRONOUS") or "").strip().upper()
        if override in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            level = override
        return level

    def exists(self) -> bool:
        return Path(self.path).is_file()

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        timeout_ms = _env_int("SOLEX_SQLITE_CONNECT_TIMEOUT_MS", 30_000)
        # isolation_level=None: transactions are opened explicitly in write_tx().
        con = sqlite3.connect(self.path, timeout=timeout_ms / 1000.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row

        journal = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        if journal is not None and str(journal[0]).strip().lower() not in {"", "wal"}:
            con.close()
            raise StorageError("sqlite_journal_mode", f"cannot enable WAL on {self.path}; got {journal[0]!r}")

        cache_kib = max(0, _env_int("SOLEX_SQLITE_CACHE_SIZE_KIB", 16 * 1024))
        busy_ms = max(0, _env_int("SOLEX_SQLITE_BUSY_TIMEOUT_MS", timeout_ms))
        for pragma in (
            f"synchronous={self._sqlite_synchronous_pragma()}",
            "temp_store=MEMORY",
            f"cache_size={-cache_kib}",
            f"busy_timeout={busy_ms}",
        ):
            con.execute(f"PRAGMA {pragma};")
        return con

    def _check_schema_version(self, con: sqlite3.Connection) -> None:
        row = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()
        if row is None:
            con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            return
        stored = str(row["value"]).strip()
        if stored != str(self.SCHEMA_VERSION):
            raise StorageError(
                "sqlite_schema_version",
                f"{self.path} has cache schema version {stored}, this build expects {self.SCHEMA_VERSION}. "
                "Move the file aside to rebuild the cache.",
            )

    def init_schema(self) -> None:
        """Create the meta table and one table per namespace. Idempotent."""
        try:
            with self.write_tx() as con:
                con.execute("CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);")
                for tree in TREE_NAMES:
                    con.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {tree} (
                          epoch BLOB PRIMARY KEY,
                          value_json TEXT NOT NULL,
                          updated_ts_ms INTEGER NOT NULL
                        );
                        """
                    )
                self._check_schema_version(con)
        except (sqlite3.Error, OSError) as e:
            raise StorageError("sqlite_init", f"could not initialise database at {self.path}", str(e)) from e

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_busy(e: sqlite3.OperationalError) -> bool:
        msg = str(e).lower()
        return "database is locked" in msg or "database is busy" in msg

    @staticmethod
    def _sleep_before_retry(attempt: int) -> None:
        base_s = max(1, _env_int("SOLEX_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0
        cap_s = max(base_s, _env_int("SOLEX_SQLITE_WRITE_BACKOFF_MAX_MS", 250) / 1000.0)
        delay_s = min(cap_s, base_s * (2.0 ** min(attempt, 8)))
        time.sleep(delay_s * random.uniform(0.5, 1.5))

    def _execute_until(self, con: sqlite3.Connection, sql: str, deadline_ts: int) -> None:
        attempt = 0
        while True:
            try:
                con.execute(sql)
                return
            except sqlite3.OperationalError as e:
                if not self._is_busy(e) or _now_ms() >= deadline_ts:
                    raise
            self._sleep_before_retry(attempt)
            attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside BEGIN IMMEDIATE ... COMMIT.

        A busy database is retried with jittered exponential backoff until
        SOLEX_SQLITE_WRITE_DEADLINE_MS (default 30s) has elapsed. Any error in
        the body rolls the transaction back and is re-raised.
        """
        deadline_ts = _now_ms() + max(250, _env_int("SOLEX_SQLITE_WRITE_DEADLINE_MS", 30_000))

        with self.connection() as con:
            self._execute_until(con, "BEGIN IMMEDIATE;", deadline_ts)
            try:
                yield con
                self._execute_until(con, "COMMIT;", deadline_ts)
            except BaseException:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error:
                    pass
                raise

    @staticmethod
    def _table(tree: str) -> str:
        if tree not in TREE_NAMES:
            raise StorageError("unknown_tree", f"unknown cache namespace {tree!r}")
        return tree

    def get(self, tree: str, key: bytes) -> Optional[str]:
        table = self._table(tree)
        try:
            with self.connection() as con:
                row = con.execute(f"SELECT value_json FROM {table} WHERE epoch=?;", (bytes(key),)).fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageError("sqlite_read", f"could not read from {table}", str(e)) from e
        if row is None:
            return None
        return str(row["value_json"])

    def put(self, tree: str, key: bytes, value_json: str) -> None:
        table = self._table(tree)
        try:
            with self.write_tx() as con:
                con.execute(
                    f"""
                    INSERT INTO {table}(epoch, value_json, updated_ts_ms)
                    VALUES(?, ?, ?)
                    ON CONFLICT(epoch) DO UPDATE SET
                      value_json=excluded.value_json,
                      updated_ts_ms=excluded.updated_ts_ms;
                    """,
                    (bytes(key), str(value_json), _now_ms()),
                )
        except (sqlite3.Error, OSError) as e:
            raise StorageError("sqlite_write", f"could not write to {table}", str(e)) from e

    def keys(self, tree: str) -> List[bytes]:
        table = self._table(tree)
        try:
            with self.connection() as con:
                rows = con.execute(f"SELECT epoch FROM {table} ORDER BY epoch ASC;").fetchall()
        except (sqlite3.Error, OSError) as e:
            raise StorageError("sqlite_read", f"could not list keys of {table}", str(e)) from e
        return [bytes(r["epoch"]) for r in rows]
