"""Base parser: shared interface, data structures, and key helpers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class RawTransaction:
    """Intermediate representation output by parsers, before DB insertion."""
    date: str              # ISO-8601 date or datetime
    amount: float          # signed: negative=outflow, positive=inflow
    description: str
    beneficiary: str | None = None
    category: str | None = None
    external_id: str | None = None


class BaseParser(ABC):
    """Abstract base for all file parsers.

    Attributes:
        skipped_count: Number of rows skipped during parsing (e.g., due to
            invalid data). Check this after parse() to detect silent data loss.
    """

    def __init__(self):
        self.skipped_count: int = 0

    @abstractmethod
    def parse(self, file_path: Path) -> list[RawTransaction]:
        """Parse a file and return normalized transactions."""

    @abstractmethod
    def detect(self, file_path: Path) -> bool:
        """Return True if this parser can handle the given file."""


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 date/datetime into an aware UTC datetime.

    Naive values are taken as UTC. A trailing ``Z`` is accepted.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_key(value: str) -> str:
    """UTC calendar day as YYYY-MM-DD."""
    return parse_timestamp(value).date().isoformat()


def amount_key(amount: float) -> str:
    """Signed amount with two decimals. Never absolute."""
    return f"{amount:.2f}"


def days_between(a: str, b: str) -> float:
    """Absolute distance in (fractional) days between two timestamps."""
    delta = parse_timestamp(a) - parse_timestamp(b)
    return abs(delta.total_seconds()) / 86400


_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def normalize_key_text(text: str, length: int = 30) -> str:
    """Lowercase, strip non-alphanumerics, truncate."""
    return _NON_ALNUM_RE.sub("", text.lower())[:length]


def signature_description(text: str) -> str:
    """Import signature text: first 30 chars, lowercased, whitespace removed."""
    return re.sub(r"\s+", "", text[:30].lower())


def compute_signature(date: str, amount: float, description: str) -> str:
    """Import-time fallback identity: day|amount|description prefix."""
    return f"{day_key(date)}|{amount_key(amount)}|{signature_description(description)}"
