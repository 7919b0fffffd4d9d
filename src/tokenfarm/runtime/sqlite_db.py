# src/tokenfarm/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding for persisted snapshots.

    Unknown types are NOT coerced (no default=str): a non-JSON value leaking
    into farm state must fail the write.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the farm runtime.

    - single durable DB file for farm state, asset ledgers and the event log
    - never shares connections across threads
    - write_tx() retries BEGIN IMMEDIATE with bounded backoff when another
      process holds the writer lock
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """PRAGMA synchronous: FULL in prod, NORMAL otherwise.

        Override with TOKENFARM_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("TOKENFARM_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("TOKENFARM_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("TOKENFARM_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        allow_non_wal = (os.environ.get("TOKENFARM_SQLITE_ALLOW_NON_WAL") or "").strip() in {"1", "true", "TRUE"}
        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("TOKENFARM_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS farm_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  block INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS assets (
                  asset_id TEXT PRIMARY KEY,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                  seq INTEGER PRIMARY KEY AUTOINCREMENT,
                  block INTEGER NOT NULL,
                  event TEXT NOT NULL,
                  fields_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_event ON events(event);")

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS account_keys (
                  account TEXT PRIMARY KEY,
                  record_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    def _backoff(self, attempt: int) -> None:
        base_sleep = max(0.001, float(_env_int("TOKENFARM_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("TOKENFARM_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)
        sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
        time.sleep(sleep_s * (0.5 + random.random()))

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Retries BEGIN IMMEDIATE / COMMIT with jittered exponential backoff
        until TOKENFARM_SQLITE_WRITE_DEADLINE_MS, then raises.
        """
        deadline_ms = max(250, _env_int("TOKENFARM_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    self._backoff(attempt)
                    attempt += 1

            try:
                yield con

                c_attempt = 0
                while True:
                    try:
                        con.execute("COMMIT;")
                        break
                    except sqlite3.OperationalError as e:
                        if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                            raise
                        self._backoff(c_attempt)
                        c_attempt += 1
            except BaseException:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.OperationalError:
                    # No transaction left to roll back (e.g. a failed COMMIT already did).
                    pass
                raise


class SqliteFarmStore:
    """Farm snapshot store persisted in SQLite.

    - read() / exists(): latest farm snapshot and the block it was taken at
    - read_assets(): JSON state of every asset ledger
    - commit(): farm snapshot + asset ledgers + new events in ONE transaction
    - read_account_keys() / put_account_keys(): signing keys and replay nonces
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM farm_state WHERE id=1;").fetchone() is not None

    def read(self) -> Tuple[Json, int]:
        with self._db.connection() as con:
            row = con.execute("SELECT block, state_json FROM farm_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite farm_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("farm_state is not a JSON object")
            return st, int(row["block"])

    def read_assets(self) -> Dict[str, Json]:
        out: Dict[str, Json] = {}
        with self._db.connection() as con:
            for row in con.execute("SELECT asset_id, state_json FROM assets ORDER BY asset_id;").fetchall():
                st = json.loads(str(row["state_json"]))
                if not isinstance(st, dict):
                    raise ValueError(f"asset {row['asset_id']!r} is not a JSON object")
                out[str(row["asset_id"])] = st
        return out

    def get_meta(self, key: str) -> Optional[str]:
        with self._db.connection() as con:
            row = con.execute("SELECT value FROM meta WHERE key=? LIMIT 1;", (str(key),)).fetchone()
            return None if row is None else str(row["value"])

    def set_meta(self, key: str, value: str) -> None:
        with self._db.write_tx() as con:
            con.execute(
                "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                (str(key), str(value)),
            )

    def commit(
        self,
        st: Json,
        *,
        block: int,
        assets: Mapping[str, Json],
        events: Iterable[Json] = (),
    ) -> None:
        if not isinstance(st, dict):
            raise ValueError("farm write expects dict")
        now = _now_ms()
        payload = _canon_json(st)
        asset_rows = [(str(aid), _canon_json(a), now) for aid, a in assets.items()]
        event_rows = [
            (int(block), str(ev.get("event") or ""), _canon_json({k: v for k, v in ev.items() if k != "event"}), now)
            for ev in events
        ]

        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO farm_state(id, block, state_json, updated_ts_ms)
                VALUES(1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  block=excluded.block,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (int(block), payload, now),
            )
            con.executemany(
                """
                INSERT INTO assets(asset_id, state_json, updated_ts_ms)
                VALUES(?, ?, ?)
                ON CONFLICT(asset_id) DO UPDATE SET
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                asset_rows,
            )
            if event_rows:
                con.executemany(
                    "INSERT INTO events(block, event, fields_json, created_ts_ms) VALUES(?, ?, ?, ?);",
                    event_rows,
                )

    def read_account_keys(self) -> Dict[str, Json]:
        out: Dict[str, Json] = {}
        with self._db.connection() as con:
            for row in con.execute("SELECT account, record_json FROM account_keys ORDER BY account;").fetchall():
                rec = json.loads(str(row["record_json"]))
                if not isinstance(rec, dict):
                    raise ValueError(f"account_keys {row['account']!r} is not a JSON object")
                out[str(row["account"])] = rec
        return out

    def put_account_keys(self, records: Mapping[str, Json]) -> None:
        now = _now_ms()
        rows = [(str(acct), _canon_json(rec), now) for acct, rec in records.items()]
        if not rows:
            return
        with self._db.write_tx() as con:
            con.executemany(
                """
                INSERT INTO account_keys(account, record_json, updated_ts_ms)
                VALUES(?, ?, ?)
                ON CONFLICT(account) DO UPDATE SET
                  record_json=excluded.record_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                rows,
            )

    def recent_events(self, *, limit: int = 50, event: str = "") -> List[Json]:
        lim = max(1, min(int(limit), 1000))
        with self._db.connection() as con:
            if event:
                rows = con.execute(
                    "SELECT seq, block, event, fields_json FROM events WHERE event=? ORDER BY seq DESC LIMIT ?;",
                    (str(event), lim),
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT seq, block, event, fields_json FROM events ORDER BY seq DESC LIMIT ?;", (lim,)
                ).fetchall()
        out: List[Json] = []
        for row in rows:
            rec: Json = {"seq": int(row["seq"]), "block": int(row["block"]), "event": str(row["event"])}
            rec.update(json.loads(str(row["fields_json"])))
            out.append(rec)
        return out
