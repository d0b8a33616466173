"""Data service: the CRUD surface UI code uses.

Writes land locally first (optimistic) together with their outbound
mutation, then a background sync is requested. Reads try the remote when
connected and fall back to the local cache on any failure.
"""

import logging
from typing import Optional

from automate_pos.database.models import new_id, utc_now
from automate_pos.database.store import LocalStore
from automate_pos.sync.engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)


class DataService:
    """Offline-first reads and writes for one installation."""

    def __init__(self, store: LocalStore, engine: Optional[SyncEngine] = None,
                 business_id: Optional[str] = None):
        self.store = store
        self.engine = engine
        self.business_id = business_id or (engine.business_id if engine else None)
        self.last_conflicts: list[str] = []

    @property
    def _online(self) -> bool:
        return self.engine is not None and self.engine.connectivity.online

    async def fetch(self, collection: str,
                    business_id: Optional[str] = None) -> list[dict]:
        """Records of a collection, refreshed from the remote when possible.

        Pulled rows are upserted locally (server wins) without clearing the
        cache, so unsynced local records are kept. Rows replacing records
        with queued local changes are logged and kept in ``last_conflicts``.
        """
        business_id = business_id or self.business_id
        self.last_conflicts = []
        if self._online:
            try:
                rows = await self.engine.retry.call(
                    self.engine.remote.fetch_since, collection, None,
                    business_id,
                )
                rows = [r for r in rows if r.get("id")]
                if rows:
                    conflicts = self.engine.find_conflicts(collection, rows)
                    self.store.put_many(collection, rows)
                    self.last_conflicts = conflicts
            except Exception as e:
                logger.warning(
                    "Remote fetch of %s failed, falling back to local: %s",
                    collection, e,
                )

        if business_id:
            return self.store.get_by_business(collection, business_id)
        return self.store.get_all(collection)

    def upsert(self, collection: str, record,
               business_id: Optional[str] = None) -> dict:
        """Save a record locally, queue it for the remote, request a sync."""
        item = record.to_record() if hasattr(record, "to_record") else dict(record)
        if not item.get("id"):
            item["id"] = new_id()
        business_id = business_id or self.business_id
        if business_id and not item.get("business_id"):
            item["business_id"] = business_id
        item["updated_at"] = utc_now()

        exists = self.store.get_by_id(collection, item["id"]) is not None
        operation = "update" if exists else "create"
        self.store.write_and_queue(collection, item, operation)
        self._request_sync()
        return item

    def delete(self, collection: str, record_id: str):
        """Delete locally, queue the remote delete, request a sync."""
        self.store.write_and_queue(collection, record_id, "delete")
        self._request_sync()

    def _request_sync(self):
        if self._online:
            self.engine.request_sync()

    async def sync_now(self) -> Optional[SyncReport]:
        """Manual "sync now"."""
        if self.engine is None:
            return None
        return await self.engine.sync()

    def status(self) -> dict:
        """Connectivity badge data plus queue diagnostics."""
        if self.engine is not None:
            return self.engine.get_sync_status()
        return {
            "status": "offline",
            "last_sync": "",
            "queue_depth": self.store.queue_depth(),
            "failed_mutations": len(self.store.failed_mutations()),
        }
