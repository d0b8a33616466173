"""Local store: durable CRUD over record collections and the outbound queue.

Records are persisted as JSON documents in per-collection tables with the
columns the secondary indexes need (``business_id``, and ``date`` for
transactions). Reads never raise on storage failure: they log and return
an empty result, since callers treat that as "nothing cached yet". Writes
always raise so the caller can tell the user the action was not saved.
"""

import json
import logging
import sqlite3
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable, Optional

from .connection import DatabaseConnection, UnavailableError
from .models import OPERATIONS, OutboundMutation
from .schema import COLLECTIONS, initialize_database

logger = logging.getLogger(__name__)

_READ_ERRORS = (UnavailableError, sqlite3.Error, json.JSONDecodeError)


def _as_dict(record) -> dict:
    if hasattr(record, "to_record"):
        return record.to_record()
    return dict(record)


def _check_collection(collection: str):
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection!r}")


class LocalStore:
    """Durable, indexed on-device store plus the outbound mutation queue."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db: Optional[DatabaseConnection] = None
        self.schema_version = 0
        self._unavailable_reported = False

    # ── Lifecycle ───────────────────────────────────────────────

    def open(self) -> "LocalStore":
        """Open (and upgrade if needed) the store. Safe to call repeatedly."""
        if self.db is not None:
            return self
        try:
            db = DatabaseConnection(self.db_path)
            self.schema_version = initialize_database(db)
        except UnavailableError as e:
            self._report_unavailable(e)
            raise
        except (sqlite3.Error, OSError) as e:
            self._report_unavailable(e)
            raise UnavailableError(
                f"Cannot open local store at {self.db_path}: {e}"
            ) from e
        self.db = db
        logger.debug(
            "Local store open at %s (schema v%d)",
            self.db_path, self.schema_version,
        )
        return self

    @property
    def available(self) -> bool:
        return self.db is not None

    def _report_unavailable(self, error: Exception):
        if not self._unavailable_reported:
            self._unavailable_reported = True
            logger.error(
                "Local storage unavailable, running in degraded mode: %s",
                error,
            )

    def _database(self) -> DatabaseConnection:
        return self.open().db

    # ── Records: reads ──────────────────────────────────────────

    def get_all(self, collection: str) -> list[dict]:
        _check_collection(collection)
        try:
            rows = self._database().execute(
                f"SELECT data FROM {collection}"  # noqa: S608
            )
            return [json.loads(r["data"]) for r in rows]
        except _READ_ERRORS as e:
            logger.warning("Failed to load %s: %s", collection, e)
            return []

    def get_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        _check_collection(collection)
        try:
            rows = self._database().execute(
                f"SELECT data FROM {collection} WHERE id = ?",  # noqa: S608
                (record_id,),
            )
            return json.loads(rows[0]["data"]) if rows else None
        except _READ_ERRORS as e:
            logger.warning("Failed to load %s/%s: %s", collection, record_id, e)
            return None

    def get_by_business(self, collection: str, business_id: str) -> list[dict]:
        """All records owned by one business (business_id index)."""
        _check_collection(collection)
        try:
            rows = self._database().execute(
                f"SELECT data FROM {collection} WHERE business_id = ?",  # noqa: S608
                (business_id,),
            )
            return [json.loads(r["data"]) for r in rows]
        except _READ_ERRORS as e:
            logger.warning("Failed to load %s for %s: %s",
                           collection, business_id, e)
            return []

    def get_transactions_between(self, start: str, end: str,
                                 business_id: Optional[str] = None) -> list[dict]:
        """Transactions with start <= created_at < end, oldest first."""
        sql = "SELECT data FROM transactions WHERE date >= ? AND date < ?"
        params: tuple = (start, end)
        if business_id is not None:
            sql += " AND business_id = ?"
            params += (business_id,)
        sql += " ORDER BY date"
        try:
            rows = self._database().execute(sql, params)
            return [json.loads(r["data"]) for r in rows]
        except _READ_ERRORS as e:
            logger.warning("Failed to load transactions %s..%s: %s",
                           start, end, e)
            return []

    def get_transactions_on(self, day: date | str,
                            business_id: Optional[str] = None) -> list[dict]:
        if isinstance(day, str):
            day = date.fromisoformat(day[:10])
        return self.get_transactions_between(
            day.isoformat(), (day + timedelta(days=1)).isoformat(),
            business_id,
        )

    # ── Records: writes ─────────────────────────────────────────

    def _upsert(self, conn, collection: str, record: dict):
        record_id = record.get("id")
        if not record_id:
            raise ValueError(f"Record for {collection} has no id")
        data = json.dumps(record, default=str)
        if collection == "transactions":
            conn.execute(
                "INSERT OR REPLACE INTO transactions "
                "(id, business_id, date, data, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (record_id, record.get("business_id"),
                 record.get("created_at"), data, record.get("updated_at")),
            )
        else:
            conn.execute(
                f"INSERT OR REPLACE INTO {collection} "  # noqa: S608
                "(id, business_id, data, updated_at) VALUES (?, ?, ?, ?)",
                (record_id, record.get("business_id"),
                 data, record.get("updated_at")),
            )

    def put_many(self, collection: str, records: Iterable):
        """Upsert a batch in one transaction: all rows land or none do."""
        _check_collection(collection)
        batch = [_as_dict(r) for r in records]
        with self._database().get_connection() as conn:
            for record in batch:
                self._upsert(conn, collection, record)

    def delete_by_id(self, collection: str, record_id: str):
        _check_collection(collection)
        with self._database().get_connection() as conn:
            conn.execute(
                f"DELETE FROM {collection} WHERE id = ?",  # noqa: S608
                (record_id,),
            )

    def clear(self, collection: str):
        """Empty one collection. Explicit resets only."""
        _check_collection(collection)
        with self._database().get_connection() as conn:
            conn.execute(f"DELETE FROM {collection}")  # noqa: S608
        logger.info("Cleared local collection %s", collection)

    def write_and_queue(self, collection: str, record,
                        operation: str) -> OutboundMutation:
        """Apply a local change and enqueue its outbound mutation atomically.

        ``record`` is the full record for create/update; for delete it may
        be the record or just its id.
        """
        _check_collection(collection)
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation!r}")

        if operation == "delete":
            record_id = record if isinstance(record, str) else _as_dict(record)["id"]
            payload = {"id": record_id}
        else:
            payload = _as_dict(record)
            record_id = payload.get("id")
            if not record_id:
                raise ValueError(f"Record for {collection} has no id")

        mutation = OutboundMutation(
            collection=collection, record_id=record_id,
            operation=operation, payload=payload,
        )
        with self._database().get_connection() as conn:
            if operation == "delete":
                conn.execute(
                    f"DELETE FROM {collection} WHERE id = ?",  # noqa: S608
                    (record_id,),
                )
            else:
                self._upsert(conn, collection, payload)
            mutation.seq = self._insert_mutation(conn, mutation)
        return mutation

    # ── Outbound queue ──────────────────────────────────────────

    def _insert_mutation(self, conn, mutation: OutboundMutation) -> int:
        cursor = conn.execute(
            "INSERT INTO offline_queue "
            "(id, collection, record_id, operation, payload, created_at, "
            " attempts, last_error, failed) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (mutation.id, mutation.collection, mutation.record_id,
             mutation.operation, json.dumps(mutation.payload, default=str),
             mutation.created_at, mutation.attempts,
             mutation.last_error or None, int(mutation.failed)),
        )
        return cursor.lastrowid

    def enqueue(self, mutation: OutboundMutation) -> OutboundMutation:
        """Append a mutation without touching the record tables."""
        _check_collection(mutation.collection)
        if mutation.operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {mutation.operation!r}")
        with self._database().get_connection() as conn:
            mutation.seq = self._insert_mutation(conn, mutation)
        return mutation

    @staticmethod
    def _row_to_mutation(row) -> OutboundMutation:
        return OutboundMutation(
            id=row["id"],
            collection=row["collection"],
            record_id=row["record_id"],
            operation=row["operation"],
            payload=json.loads(row["payload"]),
            created_at=row["created_at"],
            attempts=row["attempts"],
            last_error=row["last_error"] or "",
            failed=bool(row["failed"]),
            seq=row["seq"],
        )

    def _query_mutations(self, where: str = "") -> list[OutboundMutation]:
        try:
            rows = self._database().execute(
                f"SELECT * FROM offline_queue {where} ORDER BY seq"  # noqa: S608
            )
            return [self._row_to_mutation(r) for r in rows]
        except _READ_ERRORS as e:
            logger.warning("Failed to load outbound queue: %s", e)
            return []

    def pending_mutations(self) -> list[OutboundMutation]:
        """Mutations eligible for delivery, FIFO.

        A parked mutation holds back every later mutation for its record
        until it is requeued or discarded.
        """
        return self._query_mutations(
            "WHERE failed = 0 AND NOT EXISTS ("
            "SELECT 1 FROM offline_queue f WHERE f.failed = 1 "
            "AND f.collection = offline_queue.collection "
            "AND f.record_id = offline_queue.record_id "
            "AND f.seq < offline_queue.seq)"
        )

    def held_mutations(self) -> list[OutboundMutation]:
        """Unparked mutations waiting behind a parked one for the same record."""
        return self._query_mutations(
            "WHERE failed = 0 AND EXISTS ("
            "SELECT 1 FROM offline_queue f WHERE f.failed = 1 "
            "AND f.collection = offline_queue.collection "
            "AND f.record_id = offline_queue.record_id "
            "AND f.seq < offline_queue.seq)"
        )

    def failed_mutations(self) -> list[OutboundMutation]:
        """Mutations parked after a fatal remote rejection (diagnostics)."""
        return self._query_mutations("WHERE failed = 1")

    def all_mutations(self) -> list[OutboundMutation]:
        return self._query_mutations()

    def get_mutation(self, mutation_id: str) -> Optional[OutboundMutation]:
        try:
            rows = self._database().execute(
                "SELECT * FROM offline_queue WHERE id = ?", (mutation_id,)
            )
            return self._row_to_mutation(rows[0]) if rows else None
        except _READ_ERRORS as e:
            logger.warning("Failed to load mutation %s: %s", mutation_id, e)
            return None

    def queue_depth(self) -> int:
        try:
            rows = self._database().execute(
                "SELECT COUNT(*) AS cnt FROM offline_queue"
            )
            return rows[0]["cnt"] if rows else 0
        except _READ_ERRORS:
            return 0

    def pending_record_ids(self, collection: str) -> set[str]:
        """Record ids that still have any queued mutation."""
        try:
            rows = self._database().execute(
                "SELECT DISTINCT record_id FROM offline_queue "
                "WHERE collection = ?",
                (collection,),
            )
            return {r["record_id"] for r in rows}
        except _READ_ERRORS as e:
            logger.warning("Failed to load queued ids for %s: %s",
                           collection, e)
            return set()

    def record_attempt(self, mutation_id: str, error: str):
        """Count a failed delivery attempt; the mutation stays pending."""
        self._database().execute(
            "UPDATE offline_queue SET attempts = attempts + 1, "
            "last_error = ? WHERE id = ?",
            (error, mutation_id),
        )

    def flag_failed(self, mutation_id: str, error: str):
        """Park a mutation the remote rejected outright."""
        self._database().execute(
            "UPDATE offline_queue SET attempts = attempts + 1, "
            "last_error = ?, failed = 1 WHERE id = ?",
            (error, mutation_id),
        )

    def remove_mutation(self, mutation_id: str):
        """Delete a mutation after the remote confirmed it."""
        self._database().execute(
            "DELETE FROM offline_queue WHERE id = ?", (mutation_id,)
        )

    def requeue_mutation(self, mutation_id: str):
        """Make a parked mutation eligible for delivery again."""
        self._database().execute(
            "UPDATE offline_queue SET failed = 0 WHERE id = ?",
            (mutation_id,),
        )

    def discard_mutation(self, mutation_id: str):
        """Operator drop of a mutation. The change never reaches the remote."""
        self._database().execute(
            "DELETE FROM offline_queue WHERE id = ?", (mutation_id,)
        )
        logger.warning("Discarded outbound mutation %s", mutation_id)

    # ── Sync state ──────────────────────────────────────────────

    def get_pull_cursor(self, collection: str) -> Optional[str]:
        try:
            rows = self._database().execute(
                "SELECT pull_cursor FROM sync_state WHERE collection = ?",
                (collection,),
            )
            return rows[0]["pull_cursor"] if rows else None
        except _READ_ERRORS as e:
            logger.warning("Failed to load pull cursor for %s: %s",
                           collection, e)
            return None

    def set_pull_cursor(self, collection: str, cursor: str):
        self._database().execute(
            "INSERT OR REPLACE INTO sync_state (collection, pull_cursor) "
            "VALUES (?, ?)",
            (collection, cursor),
        )
