# src/trace_sync/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path

from ..errors import AuthenticationError, AuthorizationError, NotFoundError, WriteError
from .task_models import TaskRecord

logger = logging.getLogger(__name__)

# Smallest step between two assigned timestamps.
_TS_EPSILON = 1e-6


class TaskStore:
    """
    SQLite record store for shared task collections.

    Every mutation is one IMMEDIATE transaction that:
    - assigns a store-side timestamp (strictly increasing per store file,
      independent of wall-clock regressions),
    - writes the single target record,
    - bumps the collection revision so feeds in other processes notice it.

    Ids of deleted records are kept in `deleted_ids` and never handed out
    again. That table is internal; readers never see it.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        enforce_ownership: bool = True,
        restrict_toggle: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.enforce_ownership = enforce_ownership
        self.restrict_toggle = restrict_toggle
        self._clock = clock
        self._ensure_schema()
        try:
            total = self.count_records()
        except sqlite3.Error:
            total = -1
        logger.info(
            "TaskStore ready db=%s total=%s enforce_ownership=%s restrict_toggle=%s",
            self._db_path,
            total,
            enforce_ownership,
            restrict_toggle,
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _write_txn(self) -> Iterator[sqlite3.Cursor]:
        conn = self._get_conn()
        conn.isolation_level = None
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                yield cur
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            cur.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    text TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    creator_id TEXT NOT NULL,
                    created_at REAL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS deleted_ids (
                    id TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    deleted_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    collection TEXT PRIMARY KEY,
                    revision INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS store_clock (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    last_ts REAL NOT NULL
                )
                """
            )
            cur.execute("INSERT OR IGNORE INTO store_clock(id, last_ts) VALUES (1, 0)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_collection ON tasks(collection)")
            conn.commit()
        finally:
            conn.close()

    def _next_ts(self, cur: sqlite3.Cursor) -> float:
        cur.execute("SELECT last_ts FROM store_clock WHERE id = 1")
        row = cur.fetchone()
        last = float(row["last_ts"]) if row else 0.0
        ts = max(float(self._clock()), last + _TS_EPSILON)
        cur.execute("UPDATE store_clock SET last_ts = ? WHERE id = 1", (ts,))
        return ts

    @staticmethod
    def _bump_revision(cur: sqlite3.Cursor, collection: str) -> None:
        cur.execute(
            """
            INSERT INTO collections(collection, revision) VALUES (?, 1)
            ON CONFLICT(collection) DO UPDATE SET revision = revision + 1
            """,
            (collection,),
        )

    @staticmethod
    def _new_id(cur: sqlite3.Cursor) -> str:
        while True:
            task_id = uuid.uuid4().hex
            cur.execute(
                "SELECT 1 FROM tasks WHERE id = ? UNION ALL SELECT 1 FROM deleted_ids WHERE id = ?",
                (task_id, task_id),
            )
            if cur.fetchone() is None:
                return task_id

    @staticmethod
    def _fetch_row(cur: sqlite3.Cursor, task_id: str, collection: str) -> sqlite3.Row | None:
        cur.execute("SELECT * FROM tasks WHERE id = ? AND collection = ?", (str(task_id), collection))
        return cur.fetchone()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TaskRecord:
        return TaskRecord(
            id=str(row["id"]),
            text=str(row["text"] or ""),
            completed=bool(row["completed"]),
            creator_id=str(row["creator_id"] or ""),
            created_at=float(row["created_at"]) if row["created_at"] is not None else None,
            updated_at=float(row["updated_at"]) if row["updated_at"] is not None else None,
        )

    # ---- mutations ----

    def create(self, text: str, creator_id: str, *, collection: str) -> str:
        clean = (text or "").strip()
        if not clean:
            raise ValueError("text is required")
        if not creator_id or not str(creator_id).strip():
            raise AuthenticationError("create requires a resolved identity")

        try:
            with self._write_txn() as cur:
                task_id = self._new_id(cur)
                ts = self._next_ts(cur)
                cur.execute(
                    """
                    INSERT INTO tasks(id, collection, text, completed, creator_id, created_at, updated_at)
                    VALUES (?, ?, ?, 0, ?, ?, ?)
                    """,
                    (task_id, collection, clean, str(creator_id), ts, ts),
                )
                self._bump_revision(cur, collection)
        except sqlite3.Error as e:
            raise WriteError(f"create failed: {e}") from e

        logger.debug("Task created id=%s collection=%s creator=%s", task_id, collection, creator_id)
        return task_id

    def toggle(self, task_id: str, caller_id: str | None = None, *, collection: str) -> TaskRecord:
        """
        Flip `completed` of one record and return the updated record.

        Any caller may toggle unless `restrict_toggle` is on, in which case
        only the creator may.
        """
        try:
            with self._write_txn() as cur:
                row = self._fetch_row(cur, task_id, collection)
                if row is None:
                    raise NotFoundError(task_id, collection)
                if self.restrict_toggle and caller_id != row["creator_id"]:
                    raise AuthorizationError("toggle", task_id, caller_id)
                ts = self._next_ts(cur)
                cur.execute(
                    "UPDATE tasks SET completed = NOT completed, updated_at = ? WHERE id = ?",
                    (ts, str(task_id)),
                )
                self._bump_revision(cur, collection)
                row = self._fetch_row(cur, task_id, collection)
        except sqlite3.Error as e:
            raise WriteError(f"toggle failed: {e}") from e

        rec = self._row_to_record(row)
        logger.debug("Task toggled id=%s completed=%s caller=%s", task_id, rec.completed, caller_id)
        return rec

    def delete(self, task_id: str, caller_id: str | None, *, collection: str) -> None:
        try:
            with self._write_txn() as cur:
                row = self._fetch_row(cur, task_id, collection)
                if row is None:
                    raise NotFoundError(task_id, collection)
                if self.enforce_ownership and caller_id != row["creator_id"]:
                    raise AuthorizationError("delete", task_id, caller_id)
                ts = self._next_ts(cur)
                cur.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
                cur.execute(
                    "INSERT OR REPLACE INTO deleted_ids(id, collection, deleted_at) VALUES (?, ?, ?)",
                    (str(task_id), collection, ts),
                )
                self._bump_revision(cur, collection)
        except sqlite3.Error as e:
            raise WriteError(f"delete failed: {e}") from e

        logger.debug("Task deleted id=%s caller=%s", task_id, caller_id)

    # ---- reads ----

    def get(self, task_id: str, *, collection: str) -> TaskRecord | None:
        conn = self._get_conn()
        try:
            row = self._fetch_row(conn.cursor(), task_id, collection)
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def list_records(self, collection: str) -> list[TaskRecord]:
        """All records of a collection, in no particular order."""
        return self.read_collection(collection)[1]

    def count_records(self, collection: str | None = None) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if collection is None:
                cur.execute("SELECT COUNT(*) FROM tasks")
            else:
                cur.execute("SELECT COUNT(*) FROM tasks WHERE collection = ?", (collection,))
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def revision(self, collection: str) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT revision FROM collections WHERE collection = ?", (collection,))
            row = cur.fetchone()
            return int(row["revision"]) if row else 0
        finally:
            conn.close()

    def read_collection(self, collection: str) -> tuple[int, list[TaskRecord]]:
        """Revision and records of a collection, read in one transaction."""
        conn = self._get_conn()
        conn.isolation_level = None
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            try:
                cur.execute("SELECT revision FROM collections WHERE collection = ?", (collection,))
                row = cur.fetchone()
                rev = int(row["revision"]) if row else 0
                cur.execute("SELECT * FROM tasks WHERE collection = ?", (collection,))
                records = [self._row_to_record(r) for r in cur.fetchall()]
            finally:
                cur.execute("COMMIT")
            return rev, records
        finally:
            conn.close()
