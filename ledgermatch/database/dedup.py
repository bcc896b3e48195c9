"""Import-time duplicate check.

Two tiers, evaluated in order:
1. Source identity: (connector_type, external_id) equal to an existing
   record of the same connector type. Only applies when the incoming record
   has an external id and the caller names its connector.
2. Signature: same UTC day, same signed amount to 2dp, and same first 30
   description characters (lowercased, whitespace removed).

This is the per-record ingestion gate. The maintenance sweep that groups
already-stored duplicates lives in ledgermatch.reconcile.duplicates and
uses a different key on purpose.

For bulk imports, DuplicateLookup precomputes both key sets once so each
incoming record is checked in constant time instead of scanning the
existing set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ledgermatch.database.models import Transaction
from ledgermatch.database.repository import Repository
from ledgermatch.parsers.base import RawTransaction, compute_signature

logger = logging.getLogger(__name__)


def is_duplicate(
    new: RawTransaction,
    existing: list[Transaction],
    connector_type: str | None = None,
) -> bool:
    """Return True if ``new`` duplicates any record in ``existing``.

    Pure: scans ``existing`` and has no side effects.
    """
    if new.external_id and connector_type:
        for t in existing:
            if t.connector_type == connector_type and t.external_id == new.external_id:
                return True

    signature = compute_signature(new.date, new.amount, new.description)
    return any(
        compute_signature(t.date, t.amount, t.description) == signature
        for t in existing
    )


@dataclass
class DuplicateLookup:
    """Precomputed key sets for constant-time duplicate checks."""
    external_ids: set[tuple[str, str]] = field(default_factory=set)
    signatures: set[str] = field(default_factory=set)

    @classmethod
    def from_transactions(cls, transactions: list[Transaction]) -> DuplicateLookup:
        lookup = cls()
        for t in transactions:
            lookup.add(t.date, t.amount, t.description, t.connector_type, t.external_id)
        return lookup

    def add(
        self,
        date: str,
        amount: float,
        description: str,
        connector_type: str | None = None,
        external_id: str | None = None,
    ):
        if connector_type and external_id:
            self.external_ids.add((connector_type, external_id))
        self.signatures.add(compute_signature(date, amount, description))

    def contains(self, new: RawTransaction, connector_type: str | None = None) -> bool:
        if new.external_id and connector_type:
            if (connector_type, new.external_id) in self.external_ids:
                return True
        return compute_signature(new.date, new.amount, new.description) in self.signatures


@dataclass
class BatchResult:
    """Summary of a batch dedup + insert operation."""
    new_count: int
    duplicate_count: int
    transactions: list[Transaction]


class ImportGate:
    """Deduplicate incoming records against the repository and insert the rest."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def check(self, raw: RawTransaction, connector_type: str | None = None) -> bool:
        """Single-record check against the current store contents."""
        return is_duplicate(raw, self.repo.get_all_transactions(), connector_type)

    def process_batch(
        self,
        raw_txns: list[RawTransaction],
        connector_type: str | None = None,
        context_only: bool = False,
    ) -> BatchResult:
        """Deduplicate and insert a batch of parsed records.

        Duplicates within the batch itself are caught too: each accepted
        record is added to the lookup before the next one is checked.
        All new records are inserted in one atomic write.
        """
        lookup = DuplicateLookup.from_transactions(self.repo.get_all_transactions())
        imported_at = datetime.now(timezone.utc).isoformat()

        new_txns: list[Transaction] = []
        duplicate_count = 0
        for raw in raw_txns:
            if lookup.contains(raw, connector_type):
                duplicate_count += 1
                continue
            lookup.add(raw.date, raw.amount, raw.description, connector_type, raw.external_id)
            new_txns.append(Transaction(
                date=raw.date,
                amount=raw.amount,
                description=raw.description,
                beneficiary=raw.beneficiary,
                category=raw.category,
                connector_type=connector_type,
                external_id=raw.external_id,
                imported_at=imported_at if connector_type else None,
                is_context_only=context_only,
            ))

        if new_txns:
            self.repo.insert_transactions_batch(new_txns)

        logger.info(
            "Imported %d new record(s), skipped %d duplicate(s)%s",
            len(new_txns), duplicate_count,
            f" [{connector_type}]" if connector_type else "",
        )
        return BatchResult(
            new_count=len(new_txns),
            duplicate_count=duplicate_count,
            transactions=new_txns,
        )
