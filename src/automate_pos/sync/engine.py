"""Sync engine: drains the outbound queue and pulls newer remote state.

Each cycle:
1. Snapshots the pending queue in FIFO order, grouped by record.
2. Applies every mutation remotely through the retry policy. A failure
   holds back the rest of *that record's* mutations for this cycle so
   replay order per record is never broken; other records carry on.
   A fatally rejected mutation is parked, and its record's later
   mutations wait until it is requeued or discarded.
3. Pulls newer state per collection and writes it locally (remote wins).
4. Resolves the connectivity status from what happened.

A cycle never raises. Mutations are removed only after the remote
confirmed them, so an interrupted cycle resumes with the same queue
(at-least-once delivery; the remote is idempotent per mutation id).
"""

import asyncio
import contextlib
import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from automate_pos.config import Config
from automate_pos.database.connection import UnavailableError
from automate_pos.database.models import OutboundMutation, utc_now
from automate_pos.database.schema import COLLECTIONS
from automate_pos.database.store import LocalStore
from automate_pos.sync.connectivity import ConnectivityMonitor
from automate_pos.sync.errors import ConflictOnPull, RetryExhaustedError
from automate_pos.sync.remote import RemoteClient
from automate_pos.sync.retry import RetryPolicy, is_network_error

logger = logging.getLogger(__name__)

# Externally visible status
ONLINE = "online"
SYNCING = "syncing"
OFFLINE = "offline"
DEGRADED = "degraded"


@dataclass
class SyncReport:
    """Summary of one sync cycle."""

    status: str = ONLINE
    started_at: str = ""
    finished_at: str = ""
    queued: int = 0
    applied: int = 0
    deferred: int = 0  # held behind an earlier failure for the same record
    retry_pending: list[str] = field(default_factory=list)
    flagged: list[str] = field(default_factory=list)
    pulled: int = 0
    conflicts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    successes: int = 0  # network round trips that worked
    failures: int = 0
    network_failures: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.retry_pending or self.flagged or self.deferred)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["partial"] = self.partial
        return data


class SyncEngine:
    """Reconciles the outbound queue with the remote system of record."""

    def __init__(self, store: LocalStore, remote: RemoteClient,
                 connectivity: Optional[ConnectivityMonitor] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 business_id: Optional[str] = None,
                 interval_seconds: Optional[float] = None,
                 collections: Iterable[str] = COLLECTIONS):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity or ConnectivityMonitor()
        self.retry = retry_policy or RetryPolicy.from_config()
        self.business_id = business_id or Config.BUSINESS_ID or None
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else Config.SYNC_INTERVAL_SECONDS
        )
        self.collections = tuple(collections)

        self._status = ONLINE if self.connectivity.online else OFFLINE
        self._last_sync = Config.LAST_SYNC_TIMESTAMP
        self.last_report: Optional[SyncReport] = None
        self._cycle: Optional[asyncio.Future] = None
        self._rerun = False
        self._scheduler: Optional[asyncio.Task] = None
        self._requests: set[asyncio.Task] = set()

        self.connectivity.on_regained(self.request_sync)

    # ── Status ──────────────────────────────────────────────────

    @property
    def status(self) -> str:
        return SYNCING if self._cycle is not None else self._status

    @property
    def last_sync_at(self) -> str:
        return self._last_sync

    @property
    def is_scheduled(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    def get_sync_status(self) -> dict:
        """Status snapshot for display."""
        return {
            "status": self.status,
            "last_sync": self._last_sync,
            "queue_depth": self.store.queue_depth(),
            "failed_mutations": len(self.store.failed_mutations()),
            "interval_seconds": self.interval_seconds,
            "scheduled": self.is_scheduled,
            "business_id": self.business_id,
        }

    # ── Triggers ────────────────────────────────────────────────

    async def sync(self) -> SyncReport:
        """Run a cycle, or join the running one and have it run again."""
        if self._cycle is not None:
            self._rerun = True
            return await asyncio.shield(self._cycle)
        self._cycle = asyncio.ensure_future(self._drive())
        return await asyncio.shield(self._cycle)

    def request_sync(self):
        """Fire-and-forget sync; used by connectivity and write paths."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; sync request ignored")
            return
        task = loop.create_task(self.sync())
        self._requests.add(task)
        task.add_done_callback(self._requests.discard)

    def start(self):
        """Start the interval scheduler. Must be called from the event loop."""
        if self.is_scheduled:
            return
        self._scheduler = asyncio.get_running_loop().create_task(
            self._schedule_loop()
        )
        logger.info("Sync scheduled every %ss", self.interval_seconds)

    async def stop(self):
        """Stop the scheduler and let an in-flight cycle finish."""
        if self._scheduler is not None:
            self._scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._scheduler
            self._scheduler = None
        for task in list(self._requests):
            task.cancel()
        if self._cycle is not None:
            await asyncio.wait([self._cycle])

    async def _schedule_loop(self):
        while True:
            await self.sync()
            await asyncio.sleep(self.interval_seconds)

    # ── Cycle ───────────────────────────────────────────────────

    async def _drive(self) -> SyncReport:
        try:
            while True:
                self._rerun = False
                report = await self._run_cycle()
                if not self._rerun:
                    return report
                logger.debug("Sync requested during cycle; running again")
        finally:
            self._cycle = None

    async def _run_cycle(self) -> SyncReport:
        report = SyncReport(started_at=utc_now())
        try:
            if not self.connectivity.online:
                report.status = OFFLINE
                logger.info(
                    "Offline; %d outbound mutations stay queued",
                    self.store.queue_depth(),
                )
            else:
                await self._drain_queue(report)
                await self._pull(report)
                report.status = self._resolve_status(report)
        except Exception as e:
            logger.exception("Sync cycle aborted")
            report.errors.append(str(e))
            report.status = DEGRADED

        report.finished_at = utc_now()
        self._status = report.status
        self.last_report = report
        if report.successes:
            self._record_last_sync(report.finished_at)
        logger.info(
            "Sync %s: %d applied, %d pending, %d flagged, %d pulled",
            report.status, report.applied,
            len(report.retry_pending) + report.deferred,
            len(report.flagged), report.pulled,
        )
        return report

    def _record_last_sync(self, timestamp: str):
        self._last_sync = timestamp
        try:
            Config.update_last_sync(timestamp)
        except OSError as e:
            logger.warning("Could not persist last sync time: %s", e)

    @staticmethod
    def _resolve_status(report: SyncReport) -> str:
        if report.failures == 0:
            return ONLINE
        if report.successes == 0 and report.failures == report.network_failures:
            return OFFLINE
        return DEGRADED

    def _note_failure(self, report: SyncReport, error: BaseException):
        report.failures += 1
        if is_network_error(error):
            report.network_failures += 1
        report.errors.append(str(error))

    # ── Push ────────────────────────────────────────────────────

    @staticmethod
    def _group(mutations: list[OutboundMutation]) -> dict:
        """Group by record, groups ordered by their oldest mutation."""
        groups: dict[tuple[str, str], list[OutboundMutation]] = {}
        for mutation in mutations:
            groups.setdefault(mutation.group_key, []).append(mutation)
        return groups

    async def _drain_queue(self, report: SyncReport):
        snapshot = self.store.pending_mutations()
        report.queued = len(snapshot)
        report.deferred += len(self.store.held_mutations())
        if snapshot:
            logger.info("Processing %d pending operations", len(snapshot))
        for mutations in self._group(snapshot).values():
            for index, mutation in enumerate(mutations):
                if not await self._apply(mutation, report):
                    report.deferred += len(mutations) - index - 1
                    break

    async def _send(self, mutation: OutboundMutation):
        if mutation.operation == "create":
            await self.remote.insert(
                mutation.collection, mutation.payload, mutation.id
            )
        elif mutation.operation == "update":
            await self.remote.update(
                mutation.collection, mutation.record_id,
                mutation.payload, mutation.id,
            )
        else:
            await self.remote.delete(
                mutation.collection, mutation.record_id, mutation.id
            )

    async def _apply(self, mutation: OutboundMutation,
                     report: SyncReport) -> bool:
        try:
            await self.retry.call(self._send, mutation)
        except RetryExhaustedError as e:
            self._note_failure(report, e)
            report.retry_pending.append(mutation.id)
            self.store.record_attempt(mutation.id, str(e.last_error))
            logger.warning(
                "Mutation %s (%s %s/%s) stays queued: %s",
                mutation.id, mutation.operation, mutation.collection,
                mutation.record_id, e,
            )
            return False
        except Exception as e:
            self._note_failure(report, e)
            report.flagged.append(mutation.id)
            self.store.flag_failed(mutation.id, str(e))
            logger.error(
                "Remote rejected mutation %s (%s %s/%s); parked for "
                "inspection: %s",
                mutation.id, mutation.operation, mutation.collection,
                mutation.record_id, e,
            )
            return False

        report.successes += 1
        self.store.remove_mutation(mutation.id)
        report.applied += 1
        return True

    # ── Pull ────────────────────────────────────────────────────

    async def _pull(self, report: SyncReport):
        for collection in self.collections:
            since = self.store.get_pull_cursor(collection)
            try:
                rows = await self.retry.call(
                    self.remote.fetch_since, collection, since,
                    self.business_id,
                )
            except Exception as e:
                self._note_failure(report, e)
                logger.warning("Pull of %s failed: %s", collection, e)
                continue
            report.successes += 1

            rows = [r for r in rows if r.get("id")]
            if since:
                # The cursor is inclusive; skip boundary rows already applied
                rows = [r for r in rows if not self._already_applied(
                    collection, r, since)]
            if not rows:
                continue

            report.conflicts.extend(self.find_conflicts(collection, rows))

            try:
                self.store.put_many(collection, rows)
                newest = max((r.get("updated_at") or "") for r in rows)
                if newest:
                    self.store.set_pull_cursor(collection, newest)
            except (UnavailableError, sqlite3.Error, ValueError) as e:
                self._note_failure(report, e)
                logger.error("Could not store pulled %s: %s", collection, e)
                continue
            report.pulled += len(rows)

    def _already_applied(self, collection: str, row: dict, since: str) -> bool:
        if row.get("updated_at") != since:
            return False
        return self.store.get_by_id(collection, row["id"]) == row

    def find_conflicts(self, collection: str, rows: list[dict]) -> list[str]:
        """Pulled rows that will replace records with queued local changes.

        Remote wins; the queued mutations are still replayed afterwards.
        """
        pending = self.store.pending_record_ids(collection)
        conflicts = []
        for row in rows:
            if row["id"] in pending:
                conflict = ConflictOnPull(collection, row["id"])
                conflicts.append(f"{collection}/{row['id']}")
                logger.warning("%s; local change will be replayed", conflict)
        return conflicts
