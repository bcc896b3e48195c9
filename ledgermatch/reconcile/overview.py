"""Matching overview per payment platform.

For each platform: bank charges classified to it (split into linked and
unlinked), its context records not referenced by any bank record, and
suggestions over the unlinked sets. Settled pairs are filtered out before
suggestion generation, so re-running after a link never proposes that pair
again.
"""

from __future__ import annotations

from dataclasses import dataclass

from ledgermatch.database.models import Transaction
from ledgermatch.database.repository import Repository
from ledgermatch.reconcile.links import BatchLinkResult, LinkManager
from ledgermatch.reconcile.platforms import Platform, PlatformClassifier
from ledgermatch.reconcile.suggestions import (
    MatchSuggestion,
    SuggestionSettings,
    generate_suggestions,
)


@dataclass
class PlatformOverview:
    platform: Platform
    bank_unlinked: list[Transaction]
    context_unlinked: list[Transaction]
    bank_linked: list[Transaction]
    suggestions: list[MatchSuggestion]

    @property
    def stats(self) -> dict:
        label = self.platform.context_label
        linked_context = sum(len(t.linked_order_ids) for t in self.bank_linked)
        return {
            "totalBankCharges": len(self.bank_linked) + len(self.bank_unlinked),
            "linkedBankCharges": len(self.bank_linked),
            "unlinkedBankCharges": len(self.bank_unlinked),
            f"total{label}": len(self.context_unlinked) + linked_context,
            f"unlinked{label}": len(self.context_unlinked),
            "suggestionCount": len(self.suggestions),
        }

    def to_dict(self) -> dict:
        return {
            "bankUnlinked": [t.to_dict() for t in self.bank_unlinked],
            f"{self.platform.context_label.lower()}Unlinked": [
                t.to_dict() for t in self.context_unlinked
            ],
            "bankLinked": [t.to_dict() for t in self.bank_linked],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "stats": self.stats,
        }


def build_overview(
    transactions: list[Transaction],
    classifier: PlatformClassifier,
    settings: SuggestionSettings | None = None,
) -> dict[str, PlatformOverview]:
    """Compute the overview for every platform from one snapshot. Pure."""
    linked_context_ids = {
        cid
        for t in transactions
        if not t.is_context_only
        for cid in t.linked_order_ids
    }
    detected = {t.id: classifier.classify(t) for t in transactions}

    result: dict[str, PlatformOverview] = {}
    for platform in classifier.platforms:
        bank = [
            t for t in transactions
            if not t.is_context_only and detected[t.id] == platform.id
        ]
        bank_unlinked = [t for t in bank if not t.linked_order_ids]
        bank_linked = [t for t in bank if t.linked_order_ids]
        context_unlinked = [
            t for t in transactions
            if t.is_context_only
            and t.connector_type == platform.connector_type
            and t.id not in linked_context_ids
        ]
        result[platform.id] = PlatformOverview(
            platform=platform,
            bank_unlinked=bank_unlinked,
            context_unlinked=context_unlinked,
            bank_linked=bank_linked,
            suggestions=generate_suggestions(bank_unlinked, context_unlinked, settings),
        )
    return result


class MatchingService:
    """Store-backed overview and auto-matching."""

    def __init__(
        self,
        repo: Repository,
        classifier: PlatformClassifier | None = None,
        settings: SuggestionSettings | None = None,
    ):
        self.repo = repo
        self.classifier = classifier or PlatformClassifier()
        self.settings = settings or SuggestionSettings()
        self.links = LinkManager(repo)

    def overview(self) -> dict[str, PlatformOverview]:
        return build_overview(self.repo.get_all_transactions(), self.classifier, self.settings)

    def link_request(self, platform_id: str, payload: dict) -> dict:
        """Handle ``{bankTransactionId, orderIds|paypalIds}``.

        The id list is read from the platform's own field name, with
        ``contextIds`` accepted for any platform.
        """
        platform = self.classifier.platform(platform_id)
        context_ids = payload.get(platform.ids_field, payload.get("contextIds"))
        bank = self.links.link(
            payload.get("bankTransactionId") or "", context_ids, platform.connector_type
        )
        return {"success": True, "bankTransaction": bank.to_dict()}

    def unlink_request(self, payload: dict) -> dict:
        """Handle ``{bankTransactionId, contextIds?}``."""
        bank = self.links.unlink(
            payload.get("bankTransactionId") or "", payload.get("contextIds")
        )
        return {"success": True, "bankTransaction": bank.to_dict()}

    def auto_match_all(self, platform_id: str | None = None) -> dict[str, BatchLinkResult]:
        """Link all high-confidence suggestions, per platform.

        Raises KeyError for an unknown platform id.
        """
        if platform_id is not None:
            self.classifier.platform(platform_id)
        results: dict[str, BatchLinkResult] = {}
        for pid, view in self.overview().items():
            if platform_id is not None and pid != platform_id:
                continue
            results[pid] = self.links.auto_match_all(
                view.suggestions, view.platform.connector_type
            )
        return results
