"""Match suggestions between unlinked bank charges and context records.

Pure query: takes the unlinked bank and context records of one platform
and returns one-to-one pairing proposals. Nothing is stored.

A context record is a candidate for a bank record when it lies within the
day window and its absolute amount equals the bank charge's absolute amount
to within the tolerance (rounding differences between exports). Amounts are
compared by magnitude since order exports and bank statements disagree on
sign conventions.

Multi-record bundles (several orders summing to one charge) are never
proposed here. They are linked by explicit selection.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from ledgermatch.database.models import Transaction
from ledgermatch.parsers.base import days_between

# Float noise in amount differences (20.05 - 20.00 = 0.0500000000007).
# Reported diffs are rounded to the same precision, so they stay below the
# tolerance whenever the unrounded value does.
_EPSILON = 1e-9


class Confidence(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    # Display-only banding of manually selected totals. Never emitted here.
    LOW = "low"


@dataclass(frozen=True)
class SuggestionSettings:
    window_days: float = 7
    amount_tolerance: float = 0.05
    high_confidence_days: float = 2


@dataclass
class MatchSuggestion:
    bank_transaction_id: str
    context_ids: list[str]
    confidence: Confidence
    total_amount: float
    amount_diff: float
    days_apart: float = 0.0

    def to_dict(self) -> dict:
        return {
            "bankTransactionId": self.bank_transaction_id,
            "contextIds": list(self.context_ids),
            "confidence": self.confidence.value,
            "totalAmount": self.total_amount,
            "amountDiff": self.amount_diff,
            "daysApart": self.days_apart,
        }


def generate_suggestions(
    bank_unlinked: list[Transaction],
    context_unlinked: list[Transaction],
    settings: SuggestionSettings | None = None,
) -> list[MatchSuggestion]:
    """Propose bank → context pairings.

    Results are sorted by ascending day distance. Ties keep bank order,
    then context order.
    """
    if settings is None:
        settings = SuggestionSettings()

    suggestions: list[MatchSuggestion] = []
    for bank in bank_unlinked:
        bank_amount = abs(bank.amount)
        for ctx in context_unlinked:
            raw_days = days_between(bank.date, ctx.date)
            if raw_days > settings.window_days:
                continue
            ctx_amount = abs(ctx.amount)
            raw_diff = abs(ctx_amount - bank_amount)
            if raw_diff >= settings.amount_tolerance - _EPSILON:
                continue
            # rounded for reporting; confidence follows the reported distance
            days = round(raw_days, 4)
            amount_diff = round(raw_diff, 9)
            confidence = (
                Confidence.HIGH if days <= settings.high_confidence_days
                else Confidence.MEDIUM
            )
            suggestions.append(MatchSuggestion(
                bank_transaction_id=bank.id,
                context_ids=[ctx.id],
                confidence=confidence,
                total_amount=ctx_amount,
                amount_diff=amount_diff,
                days_apart=days,
            ))

    suggestions.sort(key=lambda s: s.days_apart)
    return suggestions
