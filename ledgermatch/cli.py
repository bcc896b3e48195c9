"""CLI entry point for ledgermatch.

Commands:
    ledgermatch import FILE --connector T [--context-only]   Import a normalized CSV
    ledgermatch status                          Transaction and link counts
    ledgermatch overview [--json]               Matching overview per platform
    ledgermatch link BANK CTX... [--platform P] Link context records to a bank charge
    ledgermatch unlink BANK [CTX...]            Remove some or all links
    ledgermatch linked BANK [--platform P]      Show linked context records
    ledgermatch auto-match [--platform P]       Link all high-confidence suggestions
    ledgermatch duplicates [--json]             List duplicate groups
    ledgermatch remove-duplicate ID             Delete one record
    ledgermatch remove-group KEY                Delete a group's recommended removals
    ledgermatch remove-duplicates-auto          Delete all recommended removals
    ledgermatch clear-platform P                Delete a platform's context records

Exit codes: 0 success, 1 validation error, 2 not found.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from ledgermatch.reconcile.errors import NotFoundError, ReconciliationError

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on LEDGER_LOG_LEVEL env var."""
    level = os.environ.get("LEDGER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load config, or None when the config directory does not exist."""
    from ledgermatch.config import Config

    config_dir = os.environ.get("LEDGER_CONFIG_DIR", "config")
    try:
        return Config(config_dir=config_dir)
    except FileNotFoundError:
        logger.debug("No config directory at %s, using defaults", config_dir)
        return None


def _get_migrations_dir() -> Path:
    """Get the migrations directory path."""
    default = Path(__file__).parent / "database" / "migrations"
    return Path(os.environ.get("LEDGER_MIGRATIONS_DIR", default))


def _get_repo():
    """Create a Repository connected to the configured database, migrated."""
    from ledgermatch.database.repository import Repository

    db_path = os.environ.get("LEDGER_DB_PATH", "ledger.db")
    repo = Repository(db_path=db_path)
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _get_matching(repo):
    """Create a MatchingService with configured platforms and settings."""
    from ledgermatch.reconcile.overview import MatchingService
    from ledgermatch.reconcile.platforms import PlatformClassifier

    config = _get_config()
    if config is None:
        return MatchingService(repo)
    return MatchingService(
        repo,
        classifier=PlatformClassifier(config.platforms),
        settings=config.suggestion_settings,
    )


def _report_error(e: ReconciliationError) -> int:
    if isinstance(e, NotFoundError):
        print(f"Not found: {e}")
        return 2
    print(f"Error: {e}")
    return 1


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# ── Command handlers ─────────────────────────────────────


def cmd_import(args: argparse.Namespace) -> int:
    """Import a normalized CSV through the import-time duplicate check."""
    from ledgermatch.database.dedup import ImportGate
    from ledgermatch.parsers.csv_parser import NormalizedCsvParser

    filepath = args.file.resolve()
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1
    if args.context_only and not args.connector:
        print("Error: --context-only requires --connector")
        return 1

    parser = NormalizedCsvParser()
    if not parser.detect(filepath):
        print(f"Error: Missing date/amount/description columns: {filepath.name}")
        return 1

    raws = parser.parse(filepath)
    repo = _get_repo()
    try:
        result = ImportGate(repo).process_batch(
            raws, connector_type=args.connector, context_only=args.context_only,
        )
    finally:
        repo.close()

    print(
        f"{filepath.name}: new={result.new_count}, dup={result.duplicate_count},"
        f" skipped={parser.skipped_count}"
    )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Display transaction and link counts."""
    from ledgermatch.database.queries import get_status_counts

    repo = _get_repo()
    counts = get_status_counts(repo.conn)
    repo.close()

    print("Ledger Status")
    print("=" * 40)
    print(f"  Total transactions:  {counts['total_txns']:,}")
    print(f"  Bank transactions:   {counts['bank_txns']:,}")
    print(f"  Context records:     {counts['context_txns']:,}")
    print(f"  Linked bank charges: {counts['linked_bank']:,}")
    print(f"  Links:               {counts['total_links']:,}")
    return 0


def cmd_overview(args: argparse.Namespace) -> int:
    """Show linked/unlinked counts and suggestions per platform."""
    repo = _get_repo()
    try:
        overview = _get_matching(repo).overview()
    finally:
        repo.close()

    if args.json:
        _print_json({pid: view.to_dict() for pid, view in overview.items()})
        return 0

    for pid, view in overview.items():
        stats = view.stats
        label = view.platform.context_label
        print(f"{pid}")
        print(
            f"  bank charges: {stats['totalBankCharges']}"
            f" (linked={stats['linkedBankCharges']},"
            f" unlinked={stats['unlinkedBankCharges']})"
        )
        print(
            f"  {label.lower()}: {stats[f'total{label}']}"
            f" (unlinked={stats[f'unlinked{label}']})"
        )
        print(f"  suggestions: {stats['suggestionCount']}")
        for s in view.suggestions:
            print(
                f"    {s.bank_transaction_id} -> {', '.join(s.context_ids)}"
                f"  [{s.confidence.value}] {s.total_amount:.2f}"
                f"  {s.days_apart:g}d apart"
            )
    return 0


def cmd_link(args: argparse.Namespace) -> int:
    """Link context records to a bank transaction."""
    repo = _get_repo()
    try:
        matching = _get_matching(repo)
        if args.platform:
            try:
                platform = matching.classifier.platform(args.platform)
            except KeyError:
                print(f"Error: Unknown platform: {args.platform}")
                return 1
            result = matching.link_request(platform.id, {
                "bankTransactionId": args.bank_id,
                platform.ids_field: args.context_ids,
            })
            bank = result["bankTransaction"]
        else:
            bank = matching.links.link(args.bank_id, args.context_ids).to_dict()
    except ReconciliationError as e:
        return _report_error(e)
    finally:
        repo.close()

    print(f"Linked {bank['id']}: {', '.join(bank['linkedOrderIds'])}")
    return 0


def cmd_unlink(args: argparse.Namespace) -> int:
    """Remove links from a bank transaction."""
    repo = _get_repo()
    try:
        result = _get_matching(repo).unlink_request({
            "bankTransactionId": args.bank_id,
            "contextIds": args.context_ids or None,
        })
    except ReconciliationError as e:
        return _report_error(e)
    finally:
        repo.close()

    remaining = result["bankTransaction"]["linkedOrderIds"]
    print(f"Unlinked {args.bank_id} ({len(remaining)} link(s) remaining)")
    return 0


def cmd_linked(args: argparse.Namespace) -> int:
    """Show the context records linked to a bank transaction."""
    repo = _get_repo()
    try:
        matching = _get_matching(repo)
        connector = None
        if args.platform:
            try:
                connector = matching.classifier.platform(args.platform).connector_type
            except KeyError:
                print(f"Error: Unknown platform: {args.platform}")
                return 1
        lookup = matching.links.get_linked(args.bank_id, connector)
    except ReconciliationError as e:
        return _report_error(e)
    finally:
        repo.close()

    if args.json:
        _print_json(lookup.to_dict())
        return 0

    bank = lookup.bank_transaction
    print(f"{bank.id}  {bank.date}  {bank.amount:>10.2f}  {bank.description[:40]}")
    for ctx in lookup.linked_context:
        print(f"  - {ctx.id}  {ctx.date}  {ctx.amount:>10.2f}  {ctx.description[:40]}")
    print(
        f"  total={lookup.total_context_amount:.2f}"
        f"  difference={lookup.amount_difference:.2f}"
    )
    return 0


def cmd_auto_match(args: argparse.Namespace) -> int:
    """Link every high-confidence suggestion."""
    repo = _get_repo()
    try:
        results = _get_matching(repo).auto_match_all(args.platform)
    except KeyError:
        print(f"Error: Unknown platform: {args.platform}")
        return 1
    finally:
        repo.close()

    for pid, result in results.items():
        print(f"  {pid}: linked={result.success_count}, errors={result.error_count}")
    return 0


def cmd_duplicates(args: argparse.Namespace) -> int:
    """List duplicate groups with the recommended survivor."""
    from ledgermatch.reconcile.duplicates import DuplicateService

    repo = _get_repo()
    report = DuplicateService(repo).find_duplicates()
    repo.close()

    data = report.to_dict()
    if args.json:
        _print_json(data)
        return 0

    if not data["groups"]:
        print("No duplicates found.")
        return 0

    print(f"{data['totalGroups']} group(s), {data['totalDuplicates']} duplicate(s)")
    print("-" * 80)
    for group in data["groups"]:
        print(group["key"])
        for t in group["transactions"]:
            marker = "keep" if t["id"] == group["keepId"] else "remove"
            print(
                f"  [{marker:<6}] {t['id']}  {t['date']}  {t['amount']:>10.2f}"
                f"  {(t['description'] or '')[:30]}"
            )
    return 0


def cmd_remove_duplicate(args: argparse.Namespace) -> int:
    """Delete one record by id."""
    from ledgermatch.reconcile.duplicates import DuplicateService

    repo = _get_repo()
    try:
        result = DuplicateService(repo).remove_duplicate(args.id)
    except ReconciliationError as e:
        return _report_error(e)
    finally:
        repo.close()

    print(f"Removed {result.removed_count} transaction(s).")
    return 0


def cmd_remove_group(args: argparse.Namespace) -> int:
    """Delete the recommended removals of one duplicate group."""
    from ledgermatch.reconcile.duplicates import DuplicateService

    repo = _get_repo()
    try:
        result = DuplicateService(repo).remove_group(args.key)
    except ReconciliationError as e:
        return _report_error(e)
    finally:
        repo.close()

    print(f"Removed {result.removed_count} transaction(s).")
    return 0


def cmd_remove_duplicates_auto(args: argparse.Namespace) -> int:
    """Delete every recommended removal across all groups."""
    from ledgermatch.reconcile.duplicates import DuplicateService

    repo = _get_repo()
    try:
        result = DuplicateService(repo).remove_duplicates_auto()
    finally:
        repo.close()

    print(f"Removed {result.removed_count} transaction(s).")
    return 0


def cmd_clear_platform(args: argparse.Namespace) -> int:
    """Delete all context records of a platform and drop their links."""
    repo = _get_repo()
    try:
        matching = _get_matching(repo)
        try:
            platform = matching.classifier.platform(args.platform)
        except KeyError:
            print(f"Error: Unknown platform: {args.platform}")
            return 1
        stats = matching.links.clear_platform(platform.connector_type)
    finally:
        repo.close()

    print(
        f"Deleted {stats['deletedContext']} {platform.id} record(s),"
        f" unlinked {stats['unlinkedBankTransactions']} bank transaction(s)."
    )
    return 0


_COMMANDS = {
    "import": cmd_import,
    "status": cmd_status,
    "overview": cmd_overview,
    "link": cmd_link,
    "unlink": cmd_unlink,
    "linked": cmd_linked,
    "auto-match": cmd_auto_match,
    "duplicates": cmd_duplicates,
    "remove-duplicate": cmd_remove_duplicate,
    "remove-group": cmd_remove_group,
    "remove-duplicates-auto": cmd_remove_duplicates_auto,
    "clear-platform": cmd_clear_platform,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="ledgermatch",
        description="Transaction deduplication and bank-to-order reconciliation",
    )
    subparsers = parser.add_subparsers(dest="command")

    # import
    import_p = subparsers.add_parser("import", help="Import a normalized CSV file")
    import_p.add_argument("file", type=Path, help="CSV with date,amount,description columns")
    import_p.add_argument("--connector", help="Connector type, e.g. amazon or paypal")
    import_p.add_argument(
        "--context-only", action="store_true",
        help="Records only explain bank charges (orders, provider exports)",
    )

    # status
    subparsers.add_parser("status", help="Show transaction and link counts")

    # overview
    overview_p = subparsers.add_parser("overview", help="Matching overview per platform")
    overview_p.add_argument("--json", action="store_true", help="Print JSON")

    # link
    link_p = subparsers.add_parser("link", help="Link context records to a bank transaction")
    link_p.add_argument("bank_id", help="Bank transaction ID")
    link_p.add_argument("context_ids", nargs="+", help="Context record IDs")
    link_p.add_argument("--platform", help="Require context records of this platform")

    # unlink
    unlink_p = subparsers.add_parser("unlink", help="Remove links from a bank transaction")
    unlink_p.add_argument("bank_id", help="Bank transaction ID")
    unlink_p.add_argument("context_ids", nargs="*", help="Context IDs (default: all)")

    # linked
    linked_p = subparsers.add_parser("linked", help="Show linked context records")
    linked_p.add_argument("bank_id", help="Bank transaction ID")
    linked_p.add_argument("--platform", help="Only records of this platform")
    linked_p.add_argument("--json", action="store_true", help="Print JSON")

    # auto-match
    auto_p = subparsers.add_parser("auto-match", help="Link all high-confidence suggestions")
    auto_p.add_argument("--platform", help="Platform ID (default: all)")

    # duplicates
    dup_p = subparsers.add_parser("duplicates", help="List duplicate groups")
    dup_p.add_argument("--json", action="store_true", help="Print JSON")

    # remove-duplicate
    rm_p = subparsers.add_parser("remove-duplicate", help="Delete one transaction")
    rm_p.add_argument("id", help="Transaction ID")

    # remove-group
    rmg_p = subparsers.add_parser("remove-group", help="Delete a group's recommended removals")
    rmg_p.add_argument("key", help="Duplicate group key")

    # remove-duplicates-auto
    subparsers.add_parser(
        "remove-duplicates-auto", help="Delete all recommended removals"
    )

    # clear-platform
    clear_p = subparsers.add_parser(
        "clear-platform", help="Delete a platform's context records and their links"
    )
    clear_p.add_argument("platform", help="Platform ID")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
