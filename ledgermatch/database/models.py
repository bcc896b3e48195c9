"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly,
except ``linked_order_ids`` which is materialized from the
``transaction_links`` table by the repository.
All primary keys are TEXT (UUID strings generated via uuid4()).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Transaction:
    date: str              # ISO-8601 date or datetime, naive values are UTC
    amount: float          # signed: negative=outflow, positive=inflow
    description: str
    id: str = field(default_factory=_new_id)
    beneficiary: str | None = None
    category: str | None = None
    connector_type: str | None = None  # amazon, paypal, sparkasse, ...
    external_id: str | None = None
    imported_at: str | None = None
    is_context_only: bool = False
    linked_order_ids: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def __post_init__(self):
        if self.is_context_only and self.linked_order_ids:
            raise ValueError(
                f"Context-only transaction {self.id} cannot carry linked_order_ids"
            )

    @property
    def has_source(self) -> bool:
        return self.connector_type is not None

    def to_dict(self) -> dict:
        """Serialize using the external field names."""
        source = None
        if self.has_source:
            source = {
                "connectorType": self.connector_type,
                "externalId": self.external_id,
                "importedAt": self.imported_at,
            }
        data = {
            "id": self.id,
            "date": self.date,
            "amount": self.amount,
            "description": self.description,
            "beneficiary": self.beneficiary,
            "category": self.category,
            "source": source,
            "isContextOnly": self.is_context_only,
        }
        if not self.is_context_only:
            data["linkedOrderIds"] = list(self.linked_order_ids)
        return data
