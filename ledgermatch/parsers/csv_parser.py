"""Normalized CSV reader.

Reads exports that have already been normalized to the ledger columns:

    date,amount,description[,beneficiary][,category][,external_id]

Source-specific dialects (bank statements, marketplace order reports,
payment-provider exports) are converted to this shape upstream.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from .base import BaseParser, RawTransaction, parse_timestamp

logger = logging.getLogger(__name__)


class NormalizedCsvParser(BaseParser):
    """Parse CSV files with the normalized ledger header."""

    REQUIRED_COLUMNS: frozenset[str] = frozenset({"date", "amount", "description"})

    def detect(self, file_path: Path) -> bool:
        try:
            with open(file_path, "r", newline="", errors="replace") as f:
                header = next(csv.reader(f), [])
        except (OSError, UnicodeDecodeError):
            return False
        columns = {h.strip().lower() for h in header}
        return self.REQUIRED_COLUMNS <= columns

    def parse(self, file_path: Path) -> list[RawTransaction]:
        transactions: list[RawTransaction] = []
        self.skipped_count = 0  # Reset for each parse

        with open(file_path, "r", newline="", errors="replace") as f:
            reader = csv.DictReader(f)
            for row in reader:
                row = {
                    (k or "").strip().lower(): (v or "").strip()
                    for k, v in row.items()
                    if isinstance(v, str) or v is None
                }
                txn = self._parse_row(row)
                if txn is not None:
                    transactions.append(txn)
                else:
                    self.skipped_count += 1

        if self.skipped_count:
            logger.warning(
                "Skipped %d invalid row(s) in %s", self.skipped_count, file_path.name
            )
        return transactions

    def _parse_row(self, row: dict) -> RawTransaction | None:
        date_str = row.get("date", "")
        amount_str = row.get("amount", "")
        if not date_str or not amount_str:
            return None

        try:
            parse_timestamp(date_str)
        except ValueError:
            return None

        try:
            amount = float(amount_str.replace(",", ""))
        except ValueError:
            return None

        return RawTransaction(
            date=date_str,
            amount=amount,
            description=row.get("description", ""),
            beneficiary=row.get("beneficiary") or None,
            category=row.get("category") or None,
            external_id=row.get("external_id") or None,
        )
