"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled. Links between a bank transaction and its context
records live in ``transaction_links`` and are attached to each loaded
Transaction as ``linked_order_ids``.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from .models import Transaction


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(migrations_dir.glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    sql_text = sql_file.read_text()
                    for statement in sql_text.split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Transactions ────────────────────────────────────────

    _INSERT_SQL = (
        "INSERT INTO transactions"
        " (id, date, amount, description, beneficiary, category,"
        "  connector_type, external_id, imported_at, is_context_only,"
        "  created_at, updated_at)"
        " VALUES (?,?,?,?,?,?,?,?,?,?,?,?)"
    )

    @staticmethod
    def _insert_params(t: Transaction) -> tuple:
        return (
            t.id, t.date, t.amount, t.description, t.beneficiary,
            t.category, t.connector_type, t.external_id, t.imported_at,
            int(t.is_context_only), t.created_at, t.updated_at,
        )

    def insert_transaction(self, txn: Transaction) -> Transaction:
        try:
            self.conn.execute("BEGIN")
            self.conn.execute(self._INSERT_SQL, self._insert_params(txn))
            self._write_links(txn.id, txn.linked_order_ids)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return txn

    def insert_transactions_batch(self, txns: list[Transaction]):
        """Insert multiple transactions atomically.

        Uses a transaction wrapper so either all inserts succeed or none do.
        """
        try:
            self.conn.execute("BEGIN")
            self.conn.executemany(
                self._INSERT_SQL, [self._insert_params(t) for t in txns]
            )
            for t in txns:
                self._write_links(t.id, t.linked_order_ids)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_transaction(self, txn_id: str) -> Transaction | None:
        row = self.conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (txn_id,)
        ).fetchone()
        if row is None:
            return None
        txn = self._row_to_transaction(row)
        txn.linked_order_ids = self.get_linked_order_ids(txn_id)
        return txn

    def get_all_transactions(self) -> list[Transaction]:
        """Fetch the full transaction set with links attached.

        Two queries regardless of table size: one for transactions, one
        for all link rows.
        """
        rows = self.conn.execute(
            "SELECT * FROM transactions ORDER BY date, rowid"
        ).fetchall()
        links: dict[str, list[str]] = {}
        for r in self.conn.execute(
            "SELECT bank_transaction_id, context_transaction_id"
            " FROM transaction_links"
            " ORDER BY bank_transaction_id, position"
        ).fetchall():
            links.setdefault(r[0], []).append(r[1])
        result = []
        for row in rows:
            txn = self._row_to_transaction(row)
            txn.linked_order_ids = links.get(txn.id, [])
            result.append(txn)
        return result

    def delete_transaction(self, txn_id: str) -> bool:
        """Delete one transaction. Link rows referencing it cascade.

        Returns False if no row had that id.
        """
        cur = self.conn.execute(
            "DELETE FROM transactions WHERE id = ?", (txn_id,)
        )
        self.conn.commit()
        return cur.rowcount > 0

    def delete_transactions(self, txn_ids: list[str]) -> int:
        """Delete several transactions atomically. Returns rows removed."""
        if not txn_ids:
            return 0
        removed = 0
        try:
            self.conn.execute("BEGIN")
            chunk_size = 500
            for i in range(0, len(txn_ids), chunk_size):
                chunk = txn_ids[i : i + chunk_size]
                ph = ",".join("?" * len(chunk))
                cur = self.conn.execute(
                    f"DELETE FROM transactions WHERE id IN ({ph})", chunk
                )
                removed += cur.rowcount
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return removed

    # ── Links ───────────────────────────────────────────────

    def get_linked_order_ids(self, bank_txn_id: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT context_transaction_id FROM transaction_links"
            " WHERE bank_transaction_id = ? ORDER BY position",
            (bank_txn_id,),
        ).fetchall()
        return [r[0] for r in rows]

    def get_linking_bank_ids(self, context_ids: list[str]) -> dict[str, str]:
        """Map each linked context id to the bank transaction holding it.

        Chunked to stay within SQLite's variable limit.
        """
        if not context_ids:
            return {}
        result: dict[str, str] = {}
        chunk_size = 500
        for i in range(0, len(context_ids), chunk_size):
            chunk = context_ids[i : i + chunk_size]
            ph = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                "SELECT context_transaction_id, bank_transaction_id"
                f" FROM transaction_links WHERE context_transaction_id IN ({ph})",
                chunk,
            ).fetchall()
            result.update({r[0]: r[1] for r in rows})
        return result

    def update_linked_order_ids(self, bank_txn_id: str, context_ids: list[str]):
        """Replace the stored link set of one bank transaction.

        Merge semantics belong to the caller; this is a plain write.
        """
        try:
            self.conn.execute("BEGIN")
            self._replace_links(bank_txn_id, context_ids)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def bulk_update_linked_order_ids(self, updates: dict[str, list[str]]):
        """Replace the link sets of several bank transactions atomically."""
        if not updates:
            return
        try:
            self.conn.execute("BEGIN")
            for bank_txn_id, context_ids in updates.items():
                self._replace_links(bank_txn_id, context_ids)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def _replace_links(self, bank_txn_id: str, context_ids: list[str]):
        self.conn.execute(
            "DELETE FROM transaction_links WHERE bank_transaction_id = ?",
            (bank_txn_id,),
        )
        self._write_links(bank_txn_id, context_ids)
        self.conn.execute(
            "UPDATE transactions SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (bank_txn_id,),
        )

    def _write_links(self, bank_txn_id: str, context_ids: list[str]):
        if not context_ids:
            return
        self.conn.executemany(
            "INSERT INTO transaction_links"
            " (bank_transaction_id, context_transaction_id, position)"
            " VALUES (?, ?, ?)",
            [(bank_txn_id, cid, pos) for pos, cid in enumerate(context_ids)],
        )

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"], date=row["date"], amount=row["amount"],
            description=row["description"],
            beneficiary=row["beneficiary"], category=row["category"],
            connector_type=row["connector_type"],
            external_id=row["external_id"],
            imported_at=row["imported_at"],
            is_context_only=bool(row["is_context_only"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
