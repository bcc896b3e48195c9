"""Payment platform classification for bank-side charges.

A bank statement line for a marketplace or payment-provider charge only
says something like "AMAZON PAYMENTS EUROPE" or "PP*1234 PAYPAL". The
classifier maps such lines to the platform whose context records can
explain them.

Precedence is the order of the platform tuple and the first match wins.
Amazon is checked before PayPal, so a line mentioning both (a PayPal
payment to Amazon) is attributed to Amazon, whose order export carries the
line-item detail.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ledgermatch.database.models import Transaction


@dataclass(frozen=True)
class Platform:
    """One payment platform and the patterns that identify its bank charges.

    ``context_label`` and ``ids_field`` are the external field names used
    for this platform's context records (``ordersUnlinked``/``orderIds`` for
    marketplace orders, ``importsUnlinked``/``paypalIds`` for provider
    imports).
    """
    id: str
    connector_type: str
    patterns: tuple[re.Pattern, ...]
    context_label: str = "Orders"
    ids_field: str = "orderIds"

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


def _compile(patterns: list[str]) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


AMAZON = Platform(
    id="amazon",
    connector_type="amazon",
    patterns=_compile([
        r"amazon", r"amzn", r"amazon\.de", r"amazon\s+payments",
        r"amazon\s+eu", r"amz\*|amzn\*", r"amazon\s+prime", r"prime\s+video",
    ]),
    context_label="Orders",
    ids_field="orderIds",
)

PAYPAL = Platform(
    id="paypal",
    connector_type="paypal",
    patterns=_compile([
        r"paypal", r"pp\s*\*", r"paypal\s*\(europe\)", r"paypal\s*pte",
        r"paypal\s*europe",
    ]),
    context_label="Imports",
    ids_field="paypalIds",
)

DEFAULT_PLATFORMS: tuple[Platform, ...] = (AMAZON, PAYPAL)


def platforms_from_config(entries: list[dict]) -> tuple[Platform, ...]:
    """Build an ordered platform tuple from platforms.yaml entries.

    Raises ValueError for entries missing an id or patterns.
    """
    result = []
    for entry in entries:
        platform_id = entry.get("id")
        patterns = entry.get("patterns") or []
        if not platform_id or not patterns:
            raise ValueError(f"Platform entry needs 'id' and 'patterns': {entry!r}")
        result.append(Platform(
            id=platform_id,
            connector_type=entry.get("connector_type", platform_id),
            patterns=_compile(patterns),
            context_label=entry.get("context_label", "Orders"),
            ids_field=entry.get("ids_field", "orderIds"),
        ))
    return tuple(result)


class PlatformClassifier:
    """Attribute bank-side transactions to a payment platform."""

    def __init__(self, platforms: tuple[Platform, ...] = DEFAULT_PLATFORMS):
        self.platforms = platforms

    @property
    def precedence(self) -> list[str]:
        return [p.id for p in self.platforms]

    def platform(self, platform_id: str) -> Platform:
        for p in self.platforms:
            if p.id == platform_id:
                return p
        raise KeyError(platform_id)

    def classify(self, txn: Transaction) -> str | None:
        """Return the platform id for a bank-side transaction, or None.

        Context-only records are never classified: their platform is
        already known from the connector type.
        """
        if txn.is_context_only:
            return None
        text = f"{txn.description} {txn.beneficiary or ''}"
        for p in self.platforms:
            if p.matches(text):
                return p.id
        return None
