"""Duplicate sweep over stored transactions.

Each bank-side record gets an equality key; records sharing a key form a
duplicate group. Key identity, in priority order:

1. Marketplace order number (``1234567-1234567``) in the description:
   ``amazon:{day}:{order}:{amount}``
2. Beneficiary: ``benef:{day}:{amount}:{beneficiary}``
3. Description: ``generic:{day}:{amount}:{description}``

The amount is signed. A purchase (-9.99) and its refund (+9.99) are
different events and must never share a key.

Within a group the record carrying the most downstream value (category,
beneficiary, links, external id, longer description) is recommended as the
survivor. Nothing is deleted here without an explicit call.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ledgermatch.database.models import Transaction
from ledgermatch.database.repository import Repository
from ledgermatch.parsers.base import amount_key, day_key, normalize_key_text
from ledgermatch.reconcile.errors import NotFoundError

logger = logging.getLogger(__name__)

_ORDER_NUMBER_RE = re.compile(r"\d{7}-\d{7}")


def extract_order_number(description: str) -> str | None:
    """Extract a marketplace order number.

    Matches the tail of "306-3583117-4868346" as well as a bare
    "3583117-4868346".
    """
    m = _ORDER_NUMBER_RE.search(description)
    return m.group(0) if m else None


def duplicate_key(txn: Transaction) -> str:
    day = day_key(txn.date)
    amount = amount_key(txn.amount)

    order_number = extract_order_number(txn.description)
    if order_number:
        return f"amazon:{day}:{order_number}:{amount}"
    if txn.beneficiary:
        return f"benef:{day}:{amount}:{normalize_key_text(txn.beneficiary)}"
    return f"generic:{day}:{amount}:{normalize_key_text(txn.description)}"


def score_transaction(txn: Transaction) -> float:
    """Higher score = more information = better to keep."""
    score = 0.0
    if txn.category:
        score += 10
    if txn.beneficiary:
        score += 5
    if txn.linked_order_ids:
        score += 8
    if txn.external_id:
        score += 3
    score += min(len(txn.description) / 20, 5)
    return score


@dataclass
class DuplicateGroup:
    key: str
    transactions: list[Transaction]


@dataclass
class Resolution:
    """Recommended survivor and removals for one duplicate group."""
    key: str
    keep: Transaction
    remove: list[Transaction]


def find_duplicate_groups(transactions: list[Transaction]) -> list[DuplicateGroup]:
    """Bucket bank-side records by duplicate key.

    Context-only records are skipped: they are deduplicated at import by
    external id. Only buckets with two or more members are returned, in
    the order their key was first seen.
    """
    buckets: dict[str, list[Transaction]] = {}
    for txn in transactions:
        if txn.is_context_only:
            continue
        buckets.setdefault(duplicate_key(txn), []).append(txn)
    return [
        DuplicateGroup(key=key, transactions=txns)
        for key, txns in buckets.items()
        if len(txns) > 1
    ]


def resolve_group(group: DuplicateGroup) -> Resolution:
    # sorted() is stable: equal scores keep their input order
    ranked = sorted(group.transactions, key=score_transaction, reverse=True)
    return Resolution(key=group.key, keep=ranked[0], remove=ranked[1:])


def identify_duplicates_to_remove(transactions: list[Transaction]) -> list[str]:
    ids: list[str] = []
    for group in find_duplicate_groups(transactions):
        ids.extend(t.id for t in resolve_group(group).remove)
    return ids


def _summary(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "date": txn.date,
        "description": txn.description,
        "amount": txn.amount,
        "beneficiary": txn.beneficiary,
        "source": txn.connector_type,
        "category": txn.category,
        "linkedOrderIds": list(txn.linked_order_ids),
    }


@dataclass
class DuplicateReport:
    groups: list[DuplicateGroup]

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    @property
    def total_duplicates(self) -> int:
        return sum(len(g.transactions) - 1 for g in self.groups)

    def to_dict(self) -> dict:
        groups = []
        for g in self.groups:
            resolution = resolve_group(g)
            groups.append({
                "key": g.key,
                "transactions": [_summary(t) for t in g.transactions],
                "keepId": resolution.keep.id,
                "removeIds": [t.id for t in resolution.remove],
            })
        return {
            "totalGroups": self.total_groups,
            "totalDuplicates": self.total_duplicates,
            "groups": groups,
        }


@dataclass
class RemovalResult:
    removed_ids: list[str]

    @property
    def removed_count(self) -> int:
        return len(self.removed_ids)

    def to_dict(self) -> dict:
        return {"removedCount": self.removed_count, "removedIds": list(self.removed_ids)}


class DuplicateService:
    """Store-backed duplicate commands. Every call works on a fresh snapshot."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def find_duplicates(self) -> DuplicateReport:
        return DuplicateReport(groups=find_duplicate_groups(self.repo.get_all_transactions()))

    def remove_duplicate(self, txn_id: str) -> RemovalResult:
        if not self.repo.delete_transaction(txn_id):
            raise NotFoundError(txn_id)
        logger.info("Removed duplicate %s", txn_id)
        return RemovalResult(removed_ids=[txn_id])

    def remove_group(self, key: str) -> RemovalResult:
        """Remove the recommended records of the group with this key."""
        for group in self.find_duplicates().groups:
            if group.key == key:
                ids = [t.id for t in resolve_group(group).remove]
                self.repo.delete_transactions(ids)
                logger.info("Removed %d duplicate(s) from group %s", len(ids), key)
                return RemovalResult(removed_ids=ids)
        raise NotFoundError(key, what="Duplicate group")

    def remove_duplicates_auto(self) -> RemovalResult:
        ids = identify_duplicates_to_remove(self.repo.get_all_transactions())
        self.repo.delete_transactions(ids)
        logger.info("Auto-removed %d duplicate(s)", len(ids))
        return RemovalResult(removed_ids=ids)
