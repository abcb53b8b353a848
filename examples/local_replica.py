"""Local replica example: one SQLite file mirrored to an in-memory repository.

Shows the startup rules (seed once, then remote wins) and debounced pushes.
"""

import sqlite3
import tempfile
from pathlib import Path

import anyio

from ghsync import FileReplica, MemoryStore, SyncConfig, SyncEvent


async def main():
    store = MemoryStore()
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "data" / "app.db"
        config = SyncConfig(local_path=db_path, debounce_delay=0.2)

        # First boot: nothing anywhere, so an empty local file is created and nothing is pushed
        async with FileReplica(store, config) as replica:
            print(f"remote files after first boot: {sorted(store.files())}")

            conn = sqlite3.connect(db_path)
            conn.execute("CREATE TABLE notes (body TEXT)")
            conn.execute("INSERT INTO notes VALUES ('hello')")
            conn.commit()
            conn.close()

            replica.on(SyncEvent.AFTER_PUSH, lambda r, result: print(f"pushed via {result.stage.name}"))
            for _ in range(5):
                replica.mark_dirty()
            await anyio.sleep(0.5)

        # Fresh host: the local file is gone, the remote copy is pulled back
        db_path.unlink()
        async with FileReplica(store, config) as replica:
            conn = sqlite3.connect(db_path)
            print(f"restored rows: {conn.execute('SELECT body FROM notes').fetchall()}")
            conn.close()
            print(f"remote version: {replica.version}")


if __name__ == "__main__":
    anyio.run(main)
