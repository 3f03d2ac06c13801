# file: skill_runtime/entity_repository.py
"""
Entity Repository — sqlite3-backed document store.

One table per collection, each row an entity serialised as JSON.
Mirrors the kernel's TransitionResult: ``apply_changes`` writes and
removes everything a transition touched inside a single transaction,
so a cascade delete or restore lands completely or not at all.

Every sqlite3 failure surfaces as PersistenceError.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from skill_kernel.domain_types import ENTITY_TYPES, collection_for
from skill_kernel.errors import PersistenceError

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

COLLECTIONS: Tuple[str, ...] = tuple(c for _, c in ENTITY_TYPES.values())


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a WAL-mode connection and make sure the schema exists."""
    try:
        conn = sqlite3.connect(str(db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(_SCHEMA_PATH.read_text(encoding="utf-8"))
    except sqlite3.Error as exc:
        raise PersistenceError(f"Cannot open database {db_path}: {exc}") from exc
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[None]:
    """
    Outermost block opens the transaction and commits it, or rolls it
    back on any exception; nested blocks on the same connection join it.
    """
    if conn.in_transaction:
        yield
        return
    conn.execute("BEGIN")
    with conn:
        yield


class EntityRepository:
    """
    Entity store backed by sqlite3.

    Shares its connection with ChangeLogRepository so that an entity
    batch and its ledger row commit together. Single writer assumed.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn = connect(self._db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several repository writes into one commit."""
        with self._guard("transaction"):
            with transaction(self._conn):
                yield

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(self, entity_type: str, data: dict) -> None:
        """Insert or replace one entity."""
        self.apply_changes(writes=[(entity_type, data)])

    def delete(self, entity_type: str, entity_id: str) -> None:
        self.apply_changes(removals=[(entity_type, entity_id)])

    def apply_changes(
        self,
        writes: Iterable[Tuple[str, dict]] = (),
        removals: Iterable[Tuple[str, str]] = (),
    ) -> None:
        """
        Apply removals then writes atomically. If any statement fails,
        the whole batch is rolled back.
        """
        removal_rows = [(collection_for(t), eid) for t, eid in removals]
        write_rows = [
            (collection_for(t), data["id"], json.dumps(data, ensure_ascii=False, sort_keys=True))
            for t, data in writes
        ]
        with self._guard("apply_changes"):
            with transaction(self._conn):
                for collection, eid in removal_rows:
                    self._conn.execute(f"DELETE FROM {collection} WHERE id = ?", (eid,))
                for collection, eid, payload in write_rows:
                    self._conn.execute(
                        f"INSERT OR REPLACE INTO {collection} (id, data) VALUES (?, ?)",
                        (eid, payload),
                    )
        logger.debug(
            "Persisted %d write(s), %d removal(s)", len(write_rows), len(removal_rows),
        )

    def replace_all(self, collections: Mapping[str, Iterable[dict]]) -> int:
        """
        Replace every collection with the given rows (used by import).
        Returns the number of rows written.
        """
        count = 0
        with self._guard("replace_all"):
            with transaction(self._conn):
                for collection in COLLECTIONS:
                    self._conn.execute(f"DELETE FROM {collection}")
                for collection, rows in collections.items():
                    if collection not in COLLECTIONS:
                        raise PersistenceError(f"Unknown collection: {collection!r}")
                    for row in rows:
                        self._conn.execute(
                            f"INSERT INTO {collection} (id, data) VALUES (?, ?)",
                            (row["id"], json.dumps(row, ensure_ascii=False, sort_keys=True)),
                        )
                        count += 1
        return count

    def clear(self) -> None:
        self.replace_all({})

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, entity_type: str, entity_id: str) -> Optional[dict]:
        collection = collection_for(entity_type)
        with self._guard("get"):
            row = self._conn.execute(
                f"SELECT data FROM {collection} WHERE id = ?", (entity_id,),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def get_all(self, entity_type: str) -> List[dict]:
        """All rows of one collection, ordered by id."""
        return self._load(collection_for(entity_type))

    def load_collections(self) -> Dict[str, List[dict]]:
        """Every collection as ``{collection: [entity dict, ...]}``."""
        return {collection: self._load(collection) for collection in COLLECTIONS}

    def _load(self, collection: str) -> List[dict]:
        with self._guard(f"load {collection}"):
            cursor = self._conn.execute(f"SELECT data FROM {collection} ORDER BY id")
            return [json.loads(row[0]) for row in cursor]

    def close(self) -> None:
        self._conn.close()
