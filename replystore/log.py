"""
Reply Log — SQLite Append-Only Persistence

Tables:
    reply_log    - One full Reply snapshot per mutation (append-only)
    schema_meta  - Schema version and provenance

Every append is its own committed transaction, so a crash can never leave
a half-written entry behind: replay sees whole snapshots in write order or
nothing. Replay folds the log into a key -> Reply map; the last entry for
a key wins.

The log grows with every mutation. compact() rewrites it down to the
latest snapshot per key.

Thread safety: uses sqlite3 check_same_thread=False with explicit serialization.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from replystore.types import Reply, _now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS reply_log (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    key        TEXT NOT NULL,
    snapshot   TEXT NOT NULL,     -- full JSON of the reply at this write
    written_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_log_key ON reply_log(key);
"""


class LogError(RuntimeError):
    """The durable log could not be read or written. Fatal to the store."""


class LogCorruptError(LogError):
    """A log entry could not be decoded."""


class ReplyLog:
    """
    Append-only durable log of (key, Reply) snapshots.

    Any sqlite3 failure is re-raised as LogError so callers can stop
    serving instead of drifting from the persisted state.
    """

    def __init__(self, db_path: str = ":memory:", wal_mode: bool = True):
        """Open (or create) the log database.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for disk-backed databases.
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if wal_mode and db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_by', 'replystore')",
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_at', datetime('now'))",
            )
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise LogError(f"Cannot open reply log at {db_path}: {e}") from e
        logger.info(f"ReplyLog opened: {db_path}")

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()

    # -- Writes ------------------------------------------------------------

    def append(self, key: str, reply: Reply) -> int:
        """Append one snapshot. Returns its sequence number."""
        with self._lock:
            try:
                cur = self._conn.execute(
                    "INSERT INTO reply_log (key, snapshot, written_at) VALUES (?,?,?)",
                    (key, reply.to_json(), _now_iso()),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                raise LogError(f"Cannot append '{key}' to reply log: {e}") from e
        logger.debug(f"Appended #{cur.lastrowid} {key!r}: {reply.to_json()}")
        return cur.lastrowid

    def compact(self) -> Tuple[int, int]:
        """Rewrite the log to the latest snapshot per key.

        Runs in a single transaction; replay order of the survivors is
        preserved. Returns (entries_before, entries_after).
        """
        with self._lock:
            try:
                before = self._count()
                self._conn.execute(
                    """DELETE FROM reply_log WHERE seq NOT IN
                       (SELECT MAX(seq) FROM reply_log GROUP BY key)"""
                )
                self._conn.commit()
                after = self._count()
                self._conn.execute("VACUUM")
            except sqlite3.Error as e:
                self._conn.rollback()
                raise LogError(f"Log compaction failed: {e}") from e
        logger.info(f"Reply log compacted: {before} -> {after} entries")
        return before, after

    # -- Reads -------------------------------------------------------------

    def entries(self, key: Optional[str] = None) -> Iterator[Tuple[int, str, Reply]]:
        """Yield (seq, key, reply) in write order, optionally for one key."""
        with self._lock:
            try:
                if key is None:
                    rows = self._conn.execute(
                        "SELECT seq, key, snapshot FROM reply_log ORDER BY seq"
                    ).fetchall()
                else:
                    rows = self._conn.execute(
                        "SELECT seq, key, snapshot FROM reply_log WHERE key=? ORDER BY seq",
                        (key,),
                    ).fetchall()
            except sqlite3.Error as e:
                raise LogError(f"Cannot read reply log: {e}") from e
        for row in rows:
            yield row["seq"], row["key"], _decode(row["seq"], row["snapshot"])

    def replay(self) -> Dict[str, Reply]:
        """Fold the whole log into the current key -> Reply map."""
        state: Dict[str, Reply] = {}
        for _, key, reply in self.entries():
            state[key] = reply
        return state

    def history(self, key: str) -> List[Reply]:
        """All snapshots ever written for key, oldest first."""
        return [reply for _, _, reply in self.entries(key)]

    def count(self) -> int:
        """Number of entries in the log."""
        with self._lock:
            try:
                return self._count()
            except sqlite3.Error as e:
                raise LogError(f"Cannot read reply log: {e}") from e

    def _count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) AS n FROM reply_log").fetchone()["n"]


def _decode(seq: int, snapshot: str) -> Reply:
    try:
        return Reply.from_json(snapshot)
    except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
        raise LogCorruptError(f"Undecodable reply log entry #{seq}: {e}") from e
