# file: skill_runtime/change_log.py
"""
Change Log Repository — sqlite3-backed ledger of mutations.

Append-only apart from the ``undone`` flag, which flips from 0 to 1
exactly once (a conditional UPDATE, so a second undo never succeeds
even against a stale in-memory view).
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from skill_kernel.constants import DEFAULT_HISTORY_LIMIT
from skill_kernel.domain_types import ChangeHistoryEntry
from skill_kernel.errors import AlreadyUndoneError, NotFoundError, PersistenceError

from .entity_repository import connect, transaction

_COLUMNS = (
    "id, entity_type, entity_id, entity_label, action, "
    "previous_data, new_data, timestamp, undone"
)


def _dump(data: Optional[dict]) -> Optional[str]:
    return None if data is None else json.dumps(data, ensure_ascii=False, sort_keys=True)


def _load(text: Optional[str]) -> Optional[dict]:
    return None if text is None else json.loads(text)


def _row_to_entry(row: tuple) -> ChangeHistoryEntry:
    return ChangeHistoryEntry(
        id=row[0],
        entity_type=row[1],
        entity_id=row[2],
        entity_label=row[3],
        action=row[4],
        previous_data=_load(row[5]),
        new_data=_load(row[6]),
        timestamp=row[7],
        undone=bool(row[8]),
    )


class ChangeLogRepository:
    """
    Ledger store backed by sqlite3. Newest entry has the highest seq.

    Pass the entity repository's *conn* to share its transactions; a
    session commits each entity batch together with its ledger write.
    """

    def __init__(
        self, db_path: str | Path, conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        self._db_path = str(db_path)
        self._conn = conn if conn is not None else connect(self._db_path)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise PersistenceError(f"change log {operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, entry: ChangeHistoryEntry) -> None:
        with self._guard("append"):
            with transaction(self._conn):
                self._insert(entry)

    def replace_all(self, entries: Iterable[ChangeHistoryEntry]) -> None:
        """Replace the whole log, keeping the given order (oldest first)."""
        with self._guard("replace_all"):
            with transaction(self._conn):
                self._conn.execute("DELETE FROM change_log")
                for entry in entries:
                    self._insert(entry)

    def mark_undone(self, entry_id: str) -> None:
        """Flip ``undone`` once. Raises if unknown or already undone."""
        with self._guard("mark_undone"):
            with transaction(self._conn):
                cursor = self._conn.execute(
                    "UPDATE change_log SET undone = 1 WHERE id = ? AND undone = 0",
                    (entry_id,),
                )
                updated = cursor.rowcount
        if updated == 0:
            if self.get_by_id(entry_id) is None:
                raise NotFoundError("change", entry_id)
            raise AlreadyUndoneError(entry_id)

    def clear(self) -> None:
        with self._guard("clear"):
            with transaction(self._conn):
                self._conn.execute("DELETE FROM change_log")

    def _insert(self, entry: ChangeHistoryEntry) -> None:
        self._conn.execute(
            f"INSERT INTO change_log ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.id,
                entry.entity_type,
                entry.entity_id,
                entry.entity_label,
                entry.action,
                _dump(entry.previous_data),
                _dump(entry.new_data),
                entry.timestamp,
                int(entry.undone),
            ),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_recent(self, n: int = DEFAULT_HISTORY_LIMIT) -> List[ChangeHistoryEntry]:
        """The last *n* entries, newest first."""
        if n <= 0:
            return []
        with self._guard("get_recent"):
            cursor = self._conn.execute(
                f"SELECT {_COLUMNS} FROM change_log ORDER BY seq DESC LIMIT ?",
                (n,),
            )
            return [_row_to_entry(row) for row in cursor]

    def get_by_id(self, entry_id: str) -> Optional[ChangeHistoryEntry]:
        with self._guard("get_by_id"):
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM change_log WHERE id = ?", (entry_id,),
            ).fetchone()
        return _row_to_entry(row) if row else None

    def count(self) -> int:
        with self._guard("count"):
            return self._conn.execute("SELECT COUNT(*) FROM change_log").fetchone()[0]

    def undone_count(self) -> int:
        with self._guard("undone_count"):
            return self._conn.execute(
                "SELECT COUNT(*) FROM change_log WHERE undone = 1"
            ).fetchone()[0]

    def close(self) -> None:
        self._conn.close()
