"""Tests for LocalStore records, indexes and the outbound queue."""

import sqlite3

import pytest

from automate_pos.database.connection import UnavailableError
from automate_pos.database.models import OutboundMutation, Product, Transaction
from automate_pos.database.store import LocalStore


def _product(pid, business="BIZ-1", stock=10, **extra):
    record = {"id": pid, "business_id": business, "name": f"Item {pid}",
              "stock": stock, "updated_at": "2026-01-01T00:00:00+00:00"}
    record.update(extra)
    return record


class TestOpen:
    def test_open_is_idempotent(self, db_path):
        store = LocalStore(db_path)
        assert store.open() is store
        first_db = store.db
        assert store.open().db is first_db

    def test_schema_version_stamped(self, store):
        assert store.schema_version == 3

    def test_unavailable_when_directory_cannot_exist(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        store = LocalStore(blocker / "store.db")
        with pytest.raises(UnavailableError):
            store.open()
        assert store.available is False

    def test_reads_fall_back_to_empty_when_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        store = LocalStore(blocker / "store.db")
        assert store.get_all("products") == []
        assert store.get_by_id("products", "P1") is None
        assert store.get_by_business("products", "BIZ-1") == []
        assert store.pending_mutations() == []
        assert store.queue_depth() == 0

    def test_writes_raise_when_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        store = LocalStore(blocker / "store.db")
        with pytest.raises(UnavailableError):
            store.put_many("products", [_product("P1")])
        with pytest.raises(UnavailableError):
            store.write_and_queue("products", _product("P1"), "create")


class TestRecords:
    def test_put_and_get_by_id(self, store):
        store.put_many("products", [_product("P1", stock=7)])
        assert store.get_by_id("products", "P1")["stock"] == 7

    def test_missing_record_is_none(self, store):
        assert store.get_by_id("products", "nope") is None

    def test_existing_id_is_overwritten(self, store):
        store.put_many("products", [_product("P1", stock=1)])
        store.put_many("products", [_product("P1", stock=2)])
        assert len(store.get_all("products")) == 1
        assert store.get_by_id("products", "P1")["stock"] == 2

    def test_accepts_dataclass_records(self, store):
        product = Product(id="P9", business_id="BIZ-1", name="Soap", stock=3)
        store.put_many("products", [product])
        loaded = Product.from_record(store.get_by_id("products", "P9"))
        assert loaded.name == "Soap"
        assert loaded.stock == 3

    def test_durable_across_reopen(self, db_path):
        LocalStore(db_path).open().put_many("suppliers", [
            {"id": "S1", "business_id": "BIZ-1", "name": "Acme"},
        ])
        reopened = LocalStore(db_path).open()
        assert reopened.get_by_id("suppliers", "S1") == {
            "id": "S1", "business_id": "BIZ-1", "name": "Acme",
        }

    def test_put_many_is_all_or_nothing(self, store):
        batch = [_product("P1"), {"name": "no id"}, _product("P3")]
        with pytest.raises(ValueError):
            store.put_many("products", batch)
        assert store.get_all("products") == []

    def test_delete_by_id(self, store):
        store.put_many("products", [_product("P1"), _product("P2")])
        store.delete_by_id("products", "P1")
        assert [p["id"] for p in store.get_all("products")] == ["P2"]

    def test_clear_only_touches_one_collection(self, store):
        store.put_many("products", [_product("P1")])
        store.put_many("users", [{"id": "U1", "business_id": "BIZ-1"}])
        store.clear("products")
        assert store.get_all("products") == []
        assert len(store.get_all("users")) == 1

    def test_unknown_collection_rejected(self, store):
        with pytest.raises(ValueError):
            store.get_all("referrals")


class TestIndexes:
    def test_get_by_business(self, store):
        store.put_many("products", [
            _product("P1", business="BIZ-1"),
            _product("P2", business="BIZ-2"),
            _product("P3", business="BIZ-1"),
        ])
        ids = sorted(p["id"] for p in store.get_by_business("products", "BIZ-1"))
        assert ids == ["P1", "P3"]

    def test_transactions_by_date(self, store):
        store.put_many("transactions", [
            Transaction(id="T1", business_id="BIZ-1",
                        created_at="2026-03-01T09:00:00+00:00"),
            Transaction(id="T2", business_id="BIZ-1",
                        created_at="2026-03-02T10:00:00+00:00"),
            Transaction(id="T3", business_id="BIZ-2",
                        created_at="2026-03-02T23:59:00+00:00"),
        ])
        on_day = store.get_transactions_on("2026-03-02")
        assert [t["id"] for t in on_day] == ["T2", "T3"]
        scoped = store.get_transactions_on("2026-03-02", business_id="BIZ-1")
        assert [t["id"] for t in scoped] == ["T2"]

    def test_transactions_between(self, store):
        store.put_many("transactions", [
            {"id": "T1", "created_at": "2026-03-01T09:00:00"},
            {"id": "T2", "created_at": "2026-03-05T09:00:00"},
        ])
        rows = store.get_transactions_between("2026-03-01", "2026-03-03")
        assert [t["id"] for t in rows] == ["T1"]


class TestWriteAndQueue:
    def test_create_writes_record_and_mutation(self, store):
        mutation = store.write_and_queue("products", _product("P1"), "create")
        assert store.get_by_id("products", "P1") is not None
        pending = store.pending_mutations()
        assert [m.id for m in pending] == [mutation.id]
        assert pending[0].operation == "create"
        assert pending[0].record_id == "P1"
        assert pending[0].payload["name"] == "Item P1"
        assert pending[0].attempts == 0

    def test_delete_by_id_string(self, store):
        store.put_many("products", [_product("P1")])
        store.write_and_queue("products", "P1", "delete")
        assert store.get_by_id("products", "P1") is None
        assert store.pending_mutations()[0].payload == {"id": "P1"}

    def test_failed_write_queues_nothing(self, store):
        with pytest.raises(ValueError):
            store.write_and_queue("products", {"name": "no id"}, "create")
        assert store.queue_depth() == 0

    def test_rejects_unknown_operation(self, store):
        with pytest.raises(ValueError):
            store.write_and_queue("products", _product("P1"), "upsert")

    def test_record_and_mutation_commit_together(self, store, monkeypatch):
        def broken_insert(conn, mutation):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(store, "_insert_mutation", broken_insert)
        with pytest.raises(sqlite3.OperationalError):
            store.write_and_queue("products", _product("P1"), "create")
        assert store.get_by_id("products", "P1") is None


class TestQueue:
    def test_fifo_order(self, store):
        ids = []
        for op in ("create", "update", "delete"):
            ids.append(store.enqueue(OutboundMutation(
                collection="products", record_id="P1", operation=op,
                payload={"id": "P1"},
            )).id)
        assert [m.id for m in store.pending_mutations()] == ids
        assert [m.operation for m in store.pending_mutations()] == [
            "create", "update", "delete",
        ]

    def test_record_attempt_keeps_pending(self, store):
        m = store.write_and_queue("products", _product("P1"), "create")
        store.record_attempt(m.id, "timeout")
        pending = store.get_mutation(m.id)
        assert pending.attempts == 1
        assert pending.last_error == "timeout"
        assert pending.failed is False

    def test_flag_requeue_and_discard(self, store):
        m = store.write_and_queue("products", _product("P1"), "create")
        store.flag_failed(m.id, "400 bad request")
        assert store.pending_mutations() == []
        assert [f.id for f in store.failed_mutations()] == [m.id]
        assert store.queue_depth() == 1

        store.requeue_mutation(m.id)
        assert [p.id for p in store.pending_mutations()] == [m.id]

        store.discard_mutation(m.id)
        assert store.all_mutations() == []

    def test_parked_mutation_holds_back_later_ones(self, store):
        first = store.write_and_queue("products", _product("P1"), "create")
        later = store.write_and_queue("products", _product("P1", stock=2),
                                      "update")
        other = store.write_and_queue("products", _product("P2"), "create")
        store.flag_failed(first.id, "400 bad request")

        assert [m.id for m in store.pending_mutations()] == [other.id]
        assert [m.id for m in store.held_mutations()] == [later.id]

        store.requeue_mutation(first.id)
        assert [m.id for m in store.pending_mutations()] == [
            first.id, later.id, other.id,
        ]
        assert store.held_mutations() == []

    def test_remove_mutation(self, store):
        m = store.write_and_queue("products", _product("P1"), "create")
        store.remove_mutation(m.id)
        assert store.queue_depth() == 0
        assert store.get_by_id("products", "P1") is not None

    def test_queue_survives_reopen(self, db_path):
        LocalStore(db_path).open().write_and_queue(
            "products", _product("P1"), "create"
        )
        assert LocalStore(db_path).open().queue_depth() == 1

    def test_pending_record_ids(self, store):
        store.write_and_queue("products", _product("P1"), "create")
        store.write_and_queue("products", _product("P2"), "create")
        store.write_and_queue("suppliers", {"id": "S1"}, "create")
        assert store.pending_record_ids("products") == {"P1", "P2"}


class TestPullCursor:
    def test_cursor_round_trip(self, store):
        assert store.get_pull_cursor("products") is None
        store.set_pull_cursor("products", "2026-01-02T00:00:00+00:00")
        store.set_pull_cursor("products", "2026-01-03T00:00:00+00:00")
        assert store.get_pull_cursor("products") == "2026-01-03T00:00:00+00:00"
