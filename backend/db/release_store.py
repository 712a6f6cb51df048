"""
Entity store used by the import pipeline.

The importer only talks to the database through this class: find-by-natural-key,
create, and queued writes for the join tables. Creates that hand back an id
(software, users, countries, customers, versions, notes) execute immediately so
the id can be used as a foreign key in the same unit of work. Join-table writes
are queued and executed in order once `batch_size` of them are pending; every
flush commits.

All reads and writes go through one connection, so a run always sees its own
executed writes.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class ReleaseStore:
    def __init__(self, conn: sqlite3.Connection, batch_size: int = DEFAULT_BATCH_SIZE):
        self.conn = conn
        self.batch_size = max(1, int(batch_size))
        self._pending: List[Tuple[str, Tuple[Any, ...]]] = []
        self.flush_count = 0

    # ----------------------------
    # batching
    # ----------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _queue(self, sql: str, params: Tuple[Any, ...]) -> None:
        self._pending.append((sql, params))
        if len(self._pending) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if self._pending:
            # consecutive writes of the same statement go out as one executemany; order is kept
            for sql, group in itertools.groupby(self._pending, key=lambda item: item[0]):
                self.conn.executemany(sql, [params for _, params in group])
            logger.debug("store flush ops=%s", len(self._pending))
            self._pending = []
        self.conn.commit()
        self.flush_count += 1

    def _insert(self, sql: str, params: Tuple[Any, ...]) -> int:
        cur = self.conn.execute(sql, params)
        return int(cur.lastrowid)

    # ----------------------------
    # software
    # ----------------------------

    def find_software(self, name: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT id, name, category, is_active FROM software WHERE name = ? LIMIT 1",
            (name,),
        ).fetchone()

    def create_software(self, name: str, category: str) -> int:
        return self._insert(
            "INSERT INTO software (name, category, is_active) VALUES (?, ?, 1)",
            (name, category),
        )

    # ----------------------------
    # users
    # ----------------------------

    def find_user(self, name: str) -> Optional[sqlite3.Row]:
        # users.name is COLLATE NOCASE
        return self.conn.execute(
            "SELECT id, name, is_imported FROM users WHERE name = ? LIMIT 1",
            (name,),
        ).fetchone()

    def create_user(self, name: str, password_hash: str, *, imported: bool = True) -> int:
        return self._insert(
            "INSERT INTO users (name, password_hash, is_imported, is_active) VALUES (?, ?, ?, 1)",
            (name, password_hash, 1 if imported else 0),
        )

    # ----------------------------
    # countries / customers
    # ----------------------------

    def find_country(self, name: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT id, name, is_active FROM country WHERE name = ? LIMIT 1",
            (name,),
        ).fetchone()

    def list_countries(self, active_only: bool = True) -> List[sqlite3.Row]:
        where = "WHERE is_active = 1" if active_only else ""
        return self.conn.execute(
            f"SELECT id, name, is_active FROM country {where} ORDER BY name"
        ).fetchall()

    def create_country(self, name: str) -> int:
        return self._insert("INSERT INTO country (name, is_active) VALUES (?, 1)", (name,))

    def find_customer(self, country_id: int, name: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            """
            SELECT id, name, country_id, is_active, requires_validation
            FROM customer
            WHERE country_id = ? AND name = ?
            LIMIT 1
            """,
            (country_id, name),
        ).fetchone()

    def create_customer(self, name: str, country_id: int, *, requires_validation: bool = False) -> int:
        return self._insert(
            """
            INSERT INTO customer (name, country_id, is_active, requires_validation)
            VALUES (?, ?, 1, ?)
            """,
            (name, country_id, 1 if requires_validation else 0),
        )

    def list_active_customers(self) -> List[sqlite3.Row]:
        return self.conn.execute(
            """
            SELECT c.id, c.name, c.country_id, co.name AS country_name
            FROM customer c
            JOIN country co ON co.id = c.country_id
            WHERE c.is_active = 1
            ORDER BY c.id
            """
        ).fetchall()

    # ----------------------------
    # version history
    # ----------------------------

    def find_version(self, software_id: int, version: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            """
            SELECT id, software_id, version, release_date, released_by_id, release_status
            FROM version_history
            WHERE software_id = ? AND version = ?
            LIMIT 1
            """,
            (software_id, version),
        ).fetchone()

    def create_version(
        self,
        *,
        software_id: int,
        version: str,
        release_date: str,
        released_by_id: int,
        release_status: str,
    ) -> int:
        return self._insert(
            """
            INSERT INTO version_history (software_id, version, release_date, released_by_id, release_status)
            VALUES (?, ?, ?, ?, ?)
            """,
            (software_id, version, release_date, released_by_id, release_status),
        )

    def version_customer_stages(self, version_history_id: int) -> Dict[int, str]:
        rows = self.conn.execute(
            "SELECT customer_id, release_stage FROM version_history_customer WHERE version_history_id = ?",
            (version_history_id,),
        ).fetchall()
        return {int(r["customer_id"]): str(r["release_stage"]) for r in rows}

    def queue_version_customer(self, version_history_id: int, customer_id: int, stage: str) -> None:
        self._queue(
            """
            INSERT INTO version_history_customer (version_history_id, customer_id, release_stage)
            VALUES (?, ?, ?)
            """,
            (version_history_id, customer_id, stage),
        )

    def queue_stage_update(self, version_history_id: int, customer_id: int, stage: str) -> None:
        self._queue(
            """
            UPDATE version_history_customer
            SET release_stage = ?
            WHERE version_history_id = ? AND customer_id = ?
            """,
            (stage, version_history_id, customer_id),
        )

    # ----------------------------
    # notes
    # ----------------------------

    def version_notes(self, version_history_id: int) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT id, note FROM history_note WHERE version_history_id = ? ORDER BY id",
            (version_history_id,),
        ).fetchall()
        out: Dict[str, int] = {}
        for r in rows:
            out.setdefault(str(r["note"]), int(r["id"]))
        return out

    def version_note_customers(self, version_history_id: int) -> Dict[int, Set[int]]:
        rows = self.conn.execute(
            """
            SELECT hnc.history_note_id, hnc.customer_id
            FROM history_note_customer hnc
            JOIN history_note hn ON hn.id = hnc.history_note_id
            WHERE hn.version_history_id = ?
            """,
            (version_history_id,),
        ).fetchall()
        out: Dict[int, Set[int]] = {}
        for r in rows:
            out.setdefault(int(r["history_note_id"]), set()).add(int(r["customer_id"]))
        return out

    def create_note(self, version_history_id: int, note: str) -> int:
        return self._insert(
            "INSERT INTO history_note (version_history_id, note) VALUES (?, ?)",
            (version_history_id, note),
        )

    def queue_note_customer(self, history_note_id: int, customer_id: int) -> None:
        self._queue(
            "INSERT INTO history_note_customer (history_note_id, customer_id) VALUES (?, ?)",
            (history_note_id, customer_id),
        )

    def find_note_elsewhere(self, note: str, version_history_id: int) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            """
            SELECT hn.id, vh.version, s.name AS software_name
            FROM history_note hn
            JOIN version_history vh ON vh.id = hn.version_history_id
            JOIN software s ON s.id = vh.software_id
            WHERE hn.note = ? AND hn.version_history_id <> ?
            ORDER BY hn.id
            LIMIT 1
            """,
            (note, version_history_id),
        ).fetchone()
