"""Exceptions raised by reconciliation operations."""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base for client-correctable reconciliation failures."""


class ValidationError(ReconciliationError):
    """Missing ids, wrong record role, or a state that forbids the call.

    Raised before any mutation, so the store is unchanged.
    """


class NotFoundError(ReconciliationError):
    """Raised when a referenced transaction or duplicate group does not exist."""

    def __init__(self, transaction_id: str, what: str = "Transaction"):
        self.transaction_id = transaction_id
        super().__init__(f"{what} {transaction_id} not found")
