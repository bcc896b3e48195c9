"""Tests for ledgermatch.cli: command handlers run through main(argv=[...]).

Each test gets its own SQLite file and config directory via the
LEDGER_DB_PATH and LEDGER_CONFIG_DIR environment variables.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ledgermatch.cli import main
from ledgermatch.database.repository import Repository
from tests.conftest import FIXTURE_CONFIG_DIR, MIGRATIONS_DIR

BANK_CSV = (
    "date,amount,description,beneficiary\n"
    "2024-03-05,-49.99,AMAZON.DE Mktp,\n"
    "2024-03-06,-19.99,PAYPAL *STEAM,\n"
    "2024-03-07,-23.40,Kartenzahlung,REWE Markt\n"
    "2024-03-07,-23.40,Kartenzahlung REWE,REWE Markt\n"
)

ORDERS_CSV = (
    "date,amount,description,external_id\n"
    "2024-03-03,-49.99,USB-C cable,306-3583117-4868346\n"
)

PAYPAL_CSV = (
    "date,amount,description,external_id\n"
    "2024-03-05,-19.99,Steam purchase,PP-1\n"
)


@pytest.fixture
def env(tmp_path, monkeypatch):
    db_path = tmp_path / "ledger.db"
    monkeypatch.setenv("LEDGER_DB_PATH", str(db_path))
    monkeypatch.setenv("LEDGER_CONFIG_DIR", str(tmp_path / "no-config"))
    monkeypatch.setenv("LEDGER_MIGRATIONS_DIR", str(MIGRATIONS_DIR))
    return tmp_path


def _run(*argv: str) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(list(argv))
    return exc_info.value.code


def _write(tmp_path: Path, name: str, content: str) -> Path:
    f = tmp_path / name
    f.write_text(content)
    return f


def _import_all(tmp_path: Path) -> None:
    assert _run("import", str(_write(tmp_path, "bank.csv", BANK_CSV))) == 0
    assert _run(
        "import", str(_write(tmp_path, "orders.csv", ORDERS_CSV)),
        "--connector", "amazon", "--context-only",
    ) == 0
    assert _run(
        "import", str(_write(tmp_path, "paypal.csv", PAYPAL_CSV)),
        "--connector", "paypal", "--context-only",
    ) == 0


def _transactions(tmp_path: Path):
    repo = Repository(tmp_path / "ledger.db")
    try:
        return repo.get_all_transactions()
    finally:
        repo.close()


def _find(tmp_path: Path, description: str):
    return next(t for t in _transactions(tmp_path) if t.description == description)


# ── Help ─────────────────────────────────────────────────


class TestMain:
    def test_no_command_prints_help(self, env, capsys):
        assert _run() == 0
        assert "usage: ledgermatch" in capsys.readouterr().out

    def test_help_lists_commands(self, env, capsys):
        assert _run("--help") == 0
        out = capsys.readouterr().out
        for cmd in ["import", "overview", "link", "unlink", "auto-match",
                    "duplicates", "remove-group", "clear-platform"]:
            assert cmd in out


# ── import / status ──────────────────────────────────────


class TestImport:
    def test_import_bank_csv(self, env, capsys):
        f = _write(env, "bank.csv", BANK_CSV)
        assert _run("import", str(f)) == 0
        assert "bank.csv: new=4, dup=0, skipped=0" in capsys.readouterr().out

    def test_reimport_counts_duplicates(self, env, capsys):
        f = _write(env, "bank.csv", BANK_CSV)
        _run("import", str(f))
        capsys.readouterr()
        assert _run("import", str(f)) == 0
        assert "new=0, dup=4" in capsys.readouterr().out

    def test_context_only_import(self, env):
        _import_all(env)
        order = _find(env, "USB-C cable")
        assert order.is_context_only is True
        assert order.connector_type == "amazon"

    def test_context_only_requires_connector(self, env, capsys):
        f = _write(env, "orders.csv", ORDERS_CSV)
        assert _run("import", str(f), "--context-only") == 1
        assert "requires --connector" in capsys.readouterr().out

    def test_missing_file(self, env, capsys):
        assert _run("import", str(env / "nope.csv")) == 1
        assert "File not found" in capsys.readouterr().out

    def test_wrong_columns(self, env, capsys):
        f = _write(env, "other.csv", "when,what\n2024-01-01,x\n")
        assert _run("import", str(f)) == 1
        assert "Missing date/amount/description" in capsys.readouterr().out

    def test_status(self, env, capsys):
        _import_all(env)
        capsys.readouterr()
        assert _run("status") == 0
        out = capsys.readouterr().out
        assert "Ledger Status" in out
        assert "Total transactions:  6" in out
        assert "Context records:     2" in out


# ── overview / link / unlink ─────────────────────────────


class TestMatching:
    def test_overview_json(self, env, capsys):
        _import_all(env)
        capsys.readouterr()
        assert _run("overview", "--json") == 0
        data = json.loads(capsys.readouterr().out)
        assert data["amazon"]["stats"]["unlinkedOrders"] == 1
        assert data["amazon"]["suggestions"][0]["confidence"] == "high"
        assert len(data["paypal"]["importsUnlinked"]) == 1

    def test_overview_text(self, env, capsys):
        _import_all(env)
        capsys.readouterr()
        assert _run("overview") == 0
        out = capsys.readouterr().out
        assert "amazon" in out
        assert "[high]" in out

    def test_link_and_unlink(self, env, capsys):
        _import_all(env)
        bank = _find(env, "AMAZON.DE Mktp")
        order = _find(env, "USB-C cable")
        assert _run("link", bank.id, order.id, "--platform", "amazon") == 0
        assert f"Linked {bank.id}: {order.id}" in capsys.readouterr().out
        assert _find(env, "AMAZON.DE Mktp").linked_order_ids == [order.id]

        assert _run("unlink", bank.id) == 0
        assert "(0 link(s) remaining)" in capsys.readouterr().out
        assert _find(env, "AMAZON.DE Mktp").linked_order_ids == []

    def test_link_non_context_is_validation_error(self, env, capsys):
        _import_all(env)
        bank = _find(env, "AMAZON.DE Mktp")
        other = _find(env, "PAYPAL *STEAM")
        assert _run("link", bank.id, other.id) == 1
        assert "Error:" in capsys.readouterr().out
        assert _find(env, "AMAZON.DE Mktp").linked_order_ids == []

    def test_link_missing_is_not_found(self, env, capsys):
        _import_all(env)
        bank = _find(env, "AMAZON.DE Mktp")
        assert _run("link", bank.id, "missing") == 2
        assert "Not found: Transaction missing not found" in capsys.readouterr().out

    def test_link_unknown_platform(self, env, capsys):
        assert _run("link", "a", "b", "--platform", "klarna") == 1
        assert "Unknown platform: klarna" in capsys.readouterr().out

    def test_unlink_without_links(self, env):
        _import_all(env)
        bank = _find(env, "AMAZON.DE Mktp")
        assert _run("unlink", bank.id) == 1

    def test_linked_json(self, env, capsys):
        _import_all(env)
        bank = _find(env, "AMAZON.DE Mktp")
        order = _find(env, "USB-C cable")
        _run("link", bank.id, order.id)
        capsys.readouterr()
        assert _run("linked", bank.id, "--json") == 0
        data = json.loads(capsys.readouterr().out)
        assert [t["id"] for t in data["linkedContext"]] == [order.id]
        assert data["amountDifference"] == 0

    def test_auto_match(self, env, capsys):
        _import_all(env)
        capsys.readouterr()
        assert _run("auto-match") == 0
        out = capsys.readouterr().out
        assert "amazon: linked=1, errors=0" in out
        assert "paypal: linked=1, errors=0" in out
        order = _find(env, "USB-C cable")
        assert _find(env, "AMAZON.DE Mktp").linked_order_ids == [order.id]

    def test_auto_match_unknown_platform(self, env):
        assert _run("auto-match", "--platform", "klarna") == 1

    def test_fixture_config_platforms(self, env, monkeypatch, capsys):
        monkeypatch.setenv("LEDGER_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
        _import_all(env)
        capsys.readouterr()
        assert _run("overview", "--json") == 0
        assert list(json.loads(capsys.readouterr().out)) == ["paypal", "amazon", "klarna"]

    def test_clear_platform(self, env, capsys):
        _import_all(env)
        _run("auto-match")
        capsys.readouterr()
        assert _run("clear-platform", "amazon") == 0
        assert "Deleted 1 amazon record(s), unlinked 1 bank transaction(s)." in (
            capsys.readouterr().out
        )
        assert _find(env, "AMAZON.DE Mktp").linked_order_ids == []
        assert _find(env, "PAYPAL *STEAM").linked_order_ids != []


# ── duplicates ───────────────────────────────────────────


class TestDuplicates:
    def test_no_duplicates(self, env, capsys):
        assert _run("duplicates") == 0
        assert "No duplicates found." in capsys.readouterr().out

    def test_list_and_auto_remove(self, env, capsys):
        _import_all(env)
        capsys.readouterr()
        assert _run("duplicates") == 0
        out = capsys.readouterr().out
        assert "1 group(s), 1 duplicate(s)" in out
        assert "[keep  ]" in out
        assert "[remove]" in out

        assert _run("remove-duplicates-auto") == 0
        assert "Removed 1 transaction(s)." in capsys.readouterr().out
        remaining = [t for t in _transactions(env) if t.beneficiary == "REWE Markt"]
        assert [t.description for t in remaining] == ["Kartenzahlung REWE"]

    def test_remove_group(self, env, capsys):
        _import_all(env)
        capsys.readouterr()
        _run("duplicates", "--json")
        key = json.loads(capsys.readouterr().out)["groups"][0]["key"]
        assert _run("remove-group", key) == 0
        assert "Removed 1 transaction(s)." in capsys.readouterr().out

    def test_remove_group_unknown(self, env, capsys):
        assert _run("remove-group", "generic:2024-01-01:-1.00:x") == 2
        assert "Not found: Duplicate group" in capsys.readouterr().out

    def test_remove_duplicate(self, env, capsys):
        _import_all(env)
        txn = _find(env, "Kartenzahlung")
        assert _run("remove-duplicate", txn.id) == 0
        assert all(t.id != txn.id for t in _transactions(env))

    def test_remove_duplicate_missing(self, env):
        assert _run("remove-duplicate", "missing") == 2
