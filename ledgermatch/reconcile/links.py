"""Link manager: attach context records to the bank charge they explain.

Links are held on the bank-side record as ``linked_order_ids``. Rules
enforced before any write:

- the bank side must exist and be a bank-side record
- every context id must exist and be context-only
- a context record belongs to at most one bank record
- when a connector type is given, every context record must come from it

Linking unions new ids into the existing set. It never replaces it, so a
second link call cannot silently drop earlier links. Repeating a link is a
no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ledgermatch.database.models import Transaction
from ledgermatch.database.queries import get_bank_ids_linked_to_connector
from ledgermatch.database.repository import Repository
from ledgermatch.reconcile.errors import (
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from ledgermatch.reconcile.suggestions import Confidence, MatchSuggestion

logger = logging.getLogger(__name__)


@dataclass
class LinkedLookup:
    bank_transaction: Transaction
    linked_context: list[Transaction]

    @property
    def total_context_amount(self) -> float:
        return round(sum(abs(t.amount) for t in self.linked_context), 2)

    @property
    def amount_difference(self) -> float:
        return round(abs(abs(self.bank_transaction.amount) - self.total_context_amount), 2)

    def to_dict(self) -> dict:
        return {
            "bankTransaction": self.bank_transaction.to_dict(),
            "linkedContext": [t.to_dict() for t in self.linked_context],
            "totalContextAmount": self.total_context_amount,
            "amountDifference": self.amount_difference,
        }


@dataclass
class BatchLinkResult:
    success_count: int = 0
    error_count: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "errors": list(self.errors),
        }


class LinkManager:
    def __init__(self, repo: Repository):
        self.repo = repo

    def _get_bank(self, bank_id: str) -> Transaction:
        if not bank_id:
            raise ValidationError("bankTransactionId required")
        bank = self.repo.get_transaction(bank_id)
        if bank is None:
            raise NotFoundError(bank_id)
        if bank.is_context_only:
            raise ValidationError(
                f"Cannot link to context-only transaction {bank_id}"
            )
        return bank

    def link(
        self,
        bank_id: str,
        context_ids: list[str],
        connector_type: str | None = None,
    ) -> Transaction:
        """Union ``context_ids`` into the bank record's links.

        Raises:
            ValidationError: missing ids, wrong role, wrong connector, or a
                context record already linked to another bank record.
            NotFoundError: an id does not exist.
        """
        if not isinstance(context_ids, list) or not context_ids:
            raise ValidationError("bankTransactionId and a non-empty context id list required")
        bank = self._get_bank(bank_id)

        requested = list(dict.fromkeys(context_ids))
        for cid in requested:
            ctx = self.repo.get_transaction(cid)
            if ctx is None:
                raise NotFoundError(cid)
            if not ctx.is_context_only:
                raise ValidationError(f"Transaction {cid} is not a context-only record")
            if connector_type and ctx.connector_type != connector_type:
                raise ValidationError(
                    f"Transaction {cid} is not a {connector_type} record"
                )

        owners = self.repo.get_linking_bank_ids(requested)
        for cid, owner in owners.items():
            if owner != bank.id:
                raise ValidationError(
                    f"Transaction {cid} is already linked to {owner}"
                )

        merged = bank.linked_order_ids + [
            cid for cid in requested if cid not in bank.linked_order_ids
        ]
        if merged != bank.linked_order_ids:
            self.repo.update_linked_order_ids(bank.id, merged)
            logger.info(
                "Linked %d record(s) to %s", len(merged) - len(bank.linked_order_ids), bank.id
            )
            bank.linked_order_ids = merged
        return bank

    def unlink(self, bank_id: str, context_ids: list[str] | None = None) -> Transaction:
        """Remove the given links, or all links when none are given."""
        if context_ids is not None and not isinstance(context_ids, list):
            raise ValidationError("context ids must be a list")
        bank = self._get_bank(bank_id)
        if not bank.linked_order_ids:
            raise ValidationError(f"Transaction {bank_id} has no linked records")

        if context_ids:
            remaining = [cid for cid in bank.linked_order_ids if cid not in context_ids]
        else:
            remaining = []
        if remaining != bank.linked_order_ids:
            self.repo.update_linked_order_ids(bank.id, remaining)
            logger.info(
                "Unlinked %d record(s) from %s",
                len(bank.linked_order_ids) - len(remaining), bank.id,
            )
            bank.linked_order_ids = remaining
        return bank

    def get_linked(self, bank_id: str, connector_type: str | None = None) -> LinkedLookup:
        """Return the bank record with its linked context records."""
        bank = self.repo.get_transaction(bank_id)
        if bank is None:
            raise NotFoundError(bank_id)
        linked = []
        for cid in bank.linked_order_ids:
            ctx = self.repo.get_transaction(cid)
            if ctx is None:
                continue
            if connector_type and ctx.connector_type != connector_type:
                continue
            linked.append(ctx)
        return LinkedLookup(bank_transaction=bank, linked_context=linked)

    def batch_link(
        self,
        suggestions: list[MatchSuggestion],
        connector_type: str | None = None,
    ) -> BatchLinkResult:
        """Apply ``link`` to each suggestion, continuing past failures.

        One write per pair and no enclosing transaction: an interrupted
        batch leaves the pairs already linked in place, and re-running is
        safe because linking is idempotent.
        """
        result = BatchLinkResult()
        for s in suggestions:
            try:
                self.link(s.bank_transaction_id, s.context_ids, connector_type)
            except ReconciliationError as e:
                result.error_count += 1
                result.errors.append(f"{s.bank_transaction_id}: {e}")
                logger.warning("Failed to link %s: %s", s.bank_transaction_id, e)
            else:
                result.success_count += 1
        return result

    def auto_match_all(
        self,
        suggestions: list[MatchSuggestion],
        connector_type: str | None = None,
    ) -> BatchLinkResult:
        """Link every high-confidence suggestion, one-to-one.

        Suggestions are taken in the given order (nearest date first from
        the generator). Once a bank or context record is used, later
        suggestions touching it are skipped so no bundle is formed.
        """
        chosen: list[MatchSuggestion] = []
        used_bank: set[str] = set()
        used_context: set[str] = set()
        for s in suggestions:
            if s.confidence is not Confidence.HIGH:
                continue
            if s.bank_transaction_id in used_bank or used_context & set(s.context_ids):
                logger.debug("Skipping competing suggestion for %s", s.bank_transaction_id)
                continue
            used_bank.add(s.bank_transaction_id)
            used_context.update(s.context_ids)
            chosen.append(s)
        result = self.batch_link(chosen, connector_type)
        logger.info(
            "Auto-match: %d linked, %d failed", result.success_count, result.error_count
        )
        return result

    def clear_platform(self, connector_type: str) -> dict:
        """Delete every context record of a connector and drop its links."""
        affected = get_bank_ids_linked_to_connector(self.repo.conn, connector_type)
        ids = [
            t.id for t in self.repo.get_all_transactions()
            if t.is_context_only and t.connector_type == connector_type
        ]
        deleted = self.repo.delete_transactions(ids)
        logger.info(
            "Cleared %d %s record(s), %d bank transaction(s) unlinked",
            deleted, connector_type, len(affected),
        )
        return {"deletedContext": deleted, "unlinkedBankTransactions": len(affected)}
