"""Application entry point: opens the local store and runs background sync."""

import asyncio
import contextlib
import logging
import sys

from automate_pos.config import Config
from automate_pos.database.connection import UnavailableError
from automate_pos.database.store import LocalStore
from automate_pos.sync.connectivity import ConnectivityMonitor
from automate_pos.sync.engine import SyncEngine
from automate_pos.sync.remote import HttpRemote

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None):
    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_engine(store: LocalStore) -> SyncEngine | None:
    """Wire the engine from Config, or None when no remote is configured."""
    remote = HttpRemote.from_config()
    if remote is None:
        logger.warning("Remote is not configured; running local-only")
        return None
    connectivity = ConnectivityMonitor(probe_url=f"{remote.base_url}/rest/v1/")
    return SyncEngine(store, remote, connectivity)


async def _probe_loop(connectivity: ConnectivityMonitor):
    while True:
        await connectivity.probe()
        await asyncio.sleep(Config.CONNECTIVITY_PROBE_SECONDS)


async def run(store: LocalStore):
    """Run the sync scheduler until cancelled."""
    engine = build_engine(store)
    if engine is None or not Config.SYNC_ENABLED:
        logger.info("Background sync disabled")
        return

    await engine.connectivity.probe()
    prober = asyncio.create_task(_probe_loop(engine.connectivity))
    engine.start()
    try:
        await asyncio.Event().wait()
    finally:
        prober.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await prober
        await engine.stop()
        await engine.remote.aclose()


def main():
    """Launch the AutoMate POS sync service."""
    configure_logging()
    store = LocalStore(Config.DATABASE_PATH)
    try:
        store.open()
    except UnavailableError as e:
        logger.error("Cannot start: %s", e)
        sys.exit(1)

    try:
        asyncio.run(run(store))
    except KeyboardInterrupt:
        logger.info("Stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
