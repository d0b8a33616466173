"""Standalone sync script: run one sync cycle from the command line."""

import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from automate_pos.app import build_engine, configure_logging
from automate_pos.config import Config
from automate_pos.database.store import LocalStore


async def _sync_once(store: LocalStore) -> int:
    engine = build_engine(store)
    if engine is None:
        print("Remote is not configured. Set REMOTE_URL and REMOTE_API_KEY.")
        return 1
    try:
        await engine.connectivity.probe()
        report = await engine.sync()
    finally:
        await engine.remote.aclose()

    print(json.dumps(report.to_dict(), indent=2))
    for mutation in store.failed_mutations():
        print(f"Parked: {mutation.id} {mutation.operation} "
              f"{mutation.collection}/{mutation.record_id}: {mutation.last_error}")
    return 0 if report.status == "online" else 2


def main():
    configure_logging()
    store = LocalStore(Config.DATABASE_PATH).open()
    print(f"Queue depth before sync: {store.queue_depth()}")
    sys.exit(asyncio.run(_sync_once(store)))


if __name__ == "__main__":
    main()
