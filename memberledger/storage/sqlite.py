# memberledger/storage/sqlite.py
import json
import os
import sqlite3
from pathlib import Path
from typing import List, Optional, Tuple

from memberledger.config import DB_PATH_ENV, DEFAULT_DB_NAME
from memberledger.core.canon import canonical_json_str
from memberledger.core.types import (
    FinalityReceipt,
    Member,
    SignedTransition,
    StateAndRef,
    StateRef,
)
from memberledger.crypto.keys import utc_now
from . import StorageBackend, StoredTransition, contains_text


class SQLiteStorage(StorageBackend):
    """SQLite vault: finalised transitions plus a queryable index of member versions."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get(DB_PATH_ENV)
            db_path = env_path if env_path else Path.cwd() / DEFAULT_DB_NAME

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        self._conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.create_function("contains_text", 2, contains_text, deterministic=True)
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                tx_id           TEXT    PRIMARY KEY,
                command         TEXT    NOT NULL,
                canonical_json  TEXT    NOT NULL,
                sigs_json       TEXT    NOT NULL,
                receipt_json    TEXT,
                recorded_at     TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS members (
                tx_id           TEXT    NOT NULL,
                output_index    INTEGER NOT NULL,
                linear_id       TEXT    NOT NULL,
                creator         TEXT    NOT NULL,
                viewer          TEXT    NOT NULL,
                observer        TEXT,
                title           TEXT,
                first_name      TEXT,
                last_name       TEXT,
                state_json      TEXT    NOT NULL,
                consumed_by     TEXT,
                PRIMARY KEY (tx_id, output_index)
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_linear   ON members(linear_id, consumed_by)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_recorded ON transactions(recorded_at)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def _insert_state(self, sar: StateAndRef) -> None:
        m = sar.state
        self.conn.execute("""
            INSERT OR IGNORE INTO members
            (tx_id, output_index, linear_id, creator, viewer, observer,
             title, first_name, last_name, state_json, consumed_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)
        """, (
            sar.ref.tx_id, sar.ref.index, m.linear_id, m.creator.name, m.viewer.name,
            m.observer.name if m.observer else None,
            m.title, m.first_name, m.last_name, canonical_json_str(m.to_dict()),
        ))

    def record_transaction(self, stx: SignedTransition, receipt: Optional[FinalityReceipt] = None) -> None:
        tx_id = stx.id
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            inserted = self.conn.execute("""
                INSERT OR IGNORE INTO transactions
                (tx_id, command, canonical_json, sigs_json, receipt_json, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                tx_id,
                stx.tx.command.kind,
                canonical_json_str(stx.tx.to_dict()),
                json.dumps([p.to_dict() for p in stx.sigs], sort_keys=True, separators=(",", ":")),
                json.dumps(receipt.to_dict(), sort_keys=True, separators=(",", ":")) if receipt else None,
                utc_now(),
            )).rowcount
            if inserted:
                for consumed in stx.tx.inputs:
                    self._insert_state(consumed)
                    self.conn.execute(
                        "UPDATE members SET consumed_by = ? WHERE tx_id = ? AND output_index = ?",
                        (tx_id, consumed.ref.tx_id, consumed.ref.index),
                    )
                for index in range(len(stx.tx.outputs)):
                    self._insert_state(stx.tx.out_ref(index))
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise

    def _row_to_stored(self, row) -> StoredTransition:
        cjson, sjson, rjson, recorded_at = row
        stx = SignedTransition.from_dict({"tx": json.loads(cjson), "sigs": json.loads(sjson)})
        receipt = FinalityReceipt.from_dict(json.loads(rjson)) if rjson else None
        return StoredTransition(stx, receipt, recorded_at)

    def load_transaction(self, tx_id: str) -> Optional[StoredTransition]:
        row = self.conn.execute("""
            SELECT canonical_json, sigs_json, receipt_json, recorded_at
            FROM transactions WHERE tx_id = ?
        """, (tx_id,)).fetchone()
        if row is None:
            return None
        stored = self._row_to_stored(row)
        if stored.stx.id != tx_id:
            raise ValueError(f"Stored transition {tx_id} does not match its content hash")
        return stored

    def list_transactions(self) -> List[StoredTransition]:
        cursor = self.conn.execute("""
            SELECT canonical_json, sigs_json, receipt_json, recorded_at
            FROM transactions ORDER BY recorded_at ASC
        """)
        return [self._row_to_stored(row) for row in cursor]

    @staticmethod
    def _row_to_state(tx_id: str, index: int, state_json: str) -> StateAndRef:
        return StateAndRef(Member.from_dict(json.loads(state_json)), StateRef(tx_id, index))

    def unconsumed(self, linear_id: str) -> List[StateAndRef]:
        cursor = self.conn.execute("""
            SELECT tx_id, output_index, state_json FROM members
            WHERE linear_id = ? AND consumed_by IS NULL
        """, (linear_id,))
        return [self._row_to_state(*row) for row in cursor]

    def history(self, linear_id: str) -> List[Tuple[StateAndRef, Optional[str]]]:
        cursor = self.conn.execute("""
            SELECT m.tx_id, m.output_index, m.state_json, m.consumed_by
            FROM members m LEFT JOIN transactions t ON t.tx_id = m.tx_id
            WHERE m.linear_id = ?
            ORDER BY t.recorded_at ASC, m.rowid ASC
        """, (linear_id,))
        return [(self._row_to_state(tx_id, idx, sj), by) for tx_id, idx, sj, by in cursor]

    def query_members(self, title=None, first_name=None, last_name=None) -> List[StateAndRef]:
        sql = "SELECT tx_id, output_index, state_json FROM members WHERE consumed_by IS NULL"
        params = []
        for column, value in (("title", title), ("first_name", first_name), ("last_name", last_name)):
            if value:
                sql += f" AND contains_text({column}, ?)"
                params.append(value)
        sql += " ORDER BY rowid ASC"
        return [self._row_to_state(*row) for row in self.conn.execute(sql, params)]

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
