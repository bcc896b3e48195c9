"""Queries that span the transactions and links tables.

These go beyond single-table CRUD and implement derived fields and
reporting counts.
"""

from __future__ import annotations

import sqlite3


def get_bank_ids_linked_to_connector(
    conn: sqlite3.Connection, connector_type: str
) -> list[str]:
    """Bank transactions holding at least one link to a context record
    of the given connector type."""
    rows = conn.execute(
        "SELECT DISTINCT l.bank_transaction_id"
        " FROM transaction_links l"
        " JOIN transactions c ON c.id = l.context_transaction_id"
        " WHERE c.connector_type = ?"
        " ORDER BY l.bank_transaction_id",
        (connector_type,),
    ).fetchall()
    return [r[0] for r in rows]


def get_status_counts(conn: sqlite3.Connection) -> dict:
    """Counts for the `ledgermatch status` command."""
    row = conn.execute(
        "SELECT"
        "  (SELECT COUNT(*) FROM transactions) AS total_txns,"
        "  (SELECT COUNT(*) FROM transactions WHERE is_context_only = 0) AS bank_txns,"
        "  (SELECT COUNT(*) FROM transactions WHERE is_context_only = 1) AS context_txns,"
        "  (SELECT COUNT(DISTINCT bank_transaction_id) FROM transaction_links) AS linked_bank,"
        "  (SELECT COUNT(*) FROM transaction_links) AS total_links"
    ).fetchone()
    return dict(row)
