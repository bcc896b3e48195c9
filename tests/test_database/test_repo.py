"""Tests for Repository CRUD operations."""

import sqlite3

import pytest

from ledgermatch.database.models import Transaction
from ledgermatch.database.repository import Repository
from tests.conftest import MIGRATIONS_DIR


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


def _make_txn(**overrides) -> Transaction:
    defaults = dict(
        date="2024-03-05",
        amount=-49.99,
        description="AMAZON.DE",
    )
    defaults.update(overrides)
    return Transaction(**defaults)


def _make_order(**overrides) -> Transaction:
    defaults = dict(
        date="2024-03-03",
        amount=-49.99,
        description="USB-C cable, 2m",
        connector_type="amazon",
        external_id="306-3583117-4868346",
        is_context_only=True,
    )
    defaults.update(overrides)
    return Transaction(**defaults)


# ── Model ──────────────────────────────────────────────────


class TestTransactionModel:
    def test_generates_uuid(self):
        t1 = _make_txn()
        t2 = _make_txn()
        assert t1.id != t2.id
        assert len(t1.id) == 36

    def test_context_only_cannot_carry_links(self):
        with pytest.raises(ValueError, match="cannot carry linked_order_ids"):
            Transaction(
                date="2024-03-03", amount=-1.0, description="x",
                is_context_only=True, linked_order_ids=["abc"],
            )

    def test_has_source(self):
        assert _make_txn().has_source is False
        assert _make_order().has_source is True

    def test_to_dict_bank(self):
        txn = _make_txn(linked_order_ids=["o1"])
        data = txn.to_dict()
        assert data["linkedOrderIds"] == ["o1"]
        assert data["isContextOnly"] is False
        assert data["source"] is None

    def test_to_dict_context_has_no_links_field(self):
        data = _make_order().to_dict()
        assert "linkedOrderIds" not in data
        assert data["source"]["connectorType"] == "amazon"
        assert data["source"]["externalId"] == "306-3583117-4868346"


# ── Transaction CRUD ───────────────────────────────────────


class TestTransactionCrud:
    def test_insert_and_get(self, repo):
        txn = repo.insert_transaction(_make_txn(beneficiary="Amazon EU", category="Shopping"))
        found = repo.get_transaction(txn.id)
        assert found is not None
        assert found.amount == -49.99
        assert found.beneficiary == "Amazon EU"
        assert found.category == "Shopping"
        assert found.is_context_only is False
        assert found.linked_order_ids == []

    def test_get_missing(self, repo):
        assert repo.get_transaction("nope") is None

    def test_context_flag_roundtrip(self, repo):
        order = repo.insert_transaction(_make_order())
        found = repo.get_transaction(order.id)
        assert found.is_context_only is True
        assert found.connector_type == "amazon"

    def test_insert_with_links(self, repo):
        order = repo.insert_transaction(_make_order())
        bank = repo.insert_transaction(_make_txn(linked_order_ids=[order.id]))
        assert repo.get_transaction(bank.id).linked_order_ids == [order.id]

    def test_batch_insert(self, repo):
        txns = [_make_txn(description=f"TX {i}") for i in range(5)]
        repo.insert_transactions_batch(txns)
        assert len(repo.get_all_transactions()) == 5

    def test_batch_insert_is_atomic(self, repo):
        first = _make_txn()
        dup_id = _make_txn(id=first.id)
        with pytest.raises(sqlite3.IntegrityError):
            repo.insert_transactions_batch([first, dup_id])
        assert repo.get_all_transactions() == []

    def test_get_all_ordered_by_date(self, repo):
        repo.insert_transaction(_make_txn(date="2024-03-07", description="later"))
        repo.insert_transaction(_make_txn(date="2024-03-01", description="earlier"))
        assert [t.description for t in repo.get_all_transactions()] == ["earlier", "later"]

    def test_get_all_attaches_links(self, repo):
        o1 = repo.insert_transaction(_make_order(external_id="a"))
        o2 = repo.insert_transaction(_make_order(external_id="b"))
        bank = repo.insert_transaction(_make_txn())
        repo.update_linked_order_ids(bank.id, [o2.id, o1.id])
        by_id = {t.id: t for t in repo.get_all_transactions()}
        assert by_id[bank.id].linked_order_ids == [o2.id, o1.id]
        assert by_id[o1.id].linked_order_ids == []

    def test_delete(self, repo):
        txn = repo.insert_transaction(_make_txn())
        assert repo.delete_transaction(txn.id) is True
        assert repo.get_transaction(txn.id) is None

    def test_delete_missing(self, repo):
        assert repo.delete_transaction("nope") is False

    def test_delete_many(self, repo):
        txns = [repo.insert_transaction(_make_txn(description=str(i))) for i in range(3)]
        assert repo.delete_transactions([txns[0].id, txns[2].id, "nope"]) == 2
        assert [t.id for t in repo.get_all_transactions()] == [txns[1].id]

    def test_delete_many_empty(self, repo):
        assert repo.delete_transactions([]) == 0


# ── Links ──────────────────────────────────────────────────


class TestLinks:
    def test_update_replaces_stored_set(self, repo):
        o1 = repo.insert_transaction(_make_order(external_id="a"))
        o2 = repo.insert_transaction(_make_order(external_id="b"))
        bank = repo.insert_transaction(_make_txn())
        repo.update_linked_order_ids(bank.id, [o1.id])
        repo.update_linked_order_ids(bank.id, [o2.id])
        assert repo.get_linked_order_ids(bank.id) == [o2.id]

    def test_update_to_empty_clears(self, repo):
        o1 = repo.insert_transaction(_make_order())
        bank = repo.insert_transaction(_make_txn())
        repo.update_linked_order_ids(bank.id, [o1.id])
        repo.update_linked_order_ids(bank.id, [])
        assert repo.get_linked_order_ids(bank.id) == []

    def test_context_unique_across_banks(self, repo):
        o1 = repo.insert_transaction(_make_order())
        b1 = repo.insert_transaction(_make_txn())
        b2 = repo.insert_transaction(_make_txn(description="AMZN MKTP"))
        repo.update_linked_order_ids(b1.id, [o1.id])
        with pytest.raises(sqlite3.IntegrityError):
            repo.update_linked_order_ids(b2.id, [o1.id])
        # rolled back: b2 untouched, b1 keeps its link
        assert repo.get_linked_order_ids(b2.id) == []
        assert repo.get_linked_order_ids(b1.id) == [o1.id]

    def test_link_to_unknown_id_rejected(self, repo):
        bank = repo.insert_transaction(_make_txn())
        with pytest.raises(sqlite3.IntegrityError):
            repo.update_linked_order_ids(bank.id, ["missing"])

    def test_delete_context_cascades(self, repo):
        o1 = repo.insert_transaction(_make_order(external_id="a"))
        o2 = repo.insert_transaction(_make_order(external_id="b"))
        bank = repo.insert_transaction(_make_txn())
        repo.update_linked_order_ids(bank.id, [o1.id, o2.id])
        repo.delete_transaction(o1.id)
        assert repo.get_linked_order_ids(bank.id) == [o2.id]

    def test_delete_bank_cascades(self, repo):
        o1 = repo.insert_transaction(_make_order())
        bank = repo.insert_transaction(_make_txn())
        repo.update_linked_order_ids(bank.id, [o1.id])
        repo.delete_transaction(bank.id)
        assert repo.get_linking_bank_ids([o1.id]) == {}

    def test_get_linking_bank_ids(self, repo):
        o1 = repo.insert_transaction(_make_order(external_id="a"))
        o2 = repo.insert_transaction(_make_order(external_id="b"))
        bank = repo.insert_transaction(_make_txn())
        repo.update_linked_order_ids(bank.id, [o1.id])
        assert repo.get_linking_bank_ids([o1.id, o2.id]) == {o1.id: bank.id}
        assert repo.get_linking_bank_ids([]) == {}

    def test_bulk_update(self, repo):
        o1 = repo.insert_transaction(_make_order(external_id="a"))
        o2 = repo.insert_transaction(_make_order(external_id="b"))
        b1 = repo.insert_transaction(_make_txn())
        b2 = repo.insert_transaction(_make_txn(description="PAYPAL"))
        repo.bulk_update_linked_order_ids({b1.id: [o1.id], b2.id: [o2.id]})
        assert repo.get_linked_order_ids(b1.id) == [o1.id]
        assert repo.get_linked_order_ids(b2.id) == [o2.id]

    def test_bulk_update_is_atomic(self, repo):
        o1 = repo.insert_transaction(_make_order())
        b1 = repo.insert_transaction(_make_txn())
        b2 = repo.insert_transaction(_make_txn(description="PAYPAL"))
        with pytest.raises(sqlite3.IntegrityError):
            repo.bulk_update_linked_order_ids({b1.id: [o1.id], b2.id: [o1.id]})
        assert repo.get_linked_order_ids(b1.id) == []
