"""GitHub replica example: keep ./data/app.db in a repository until Ctrl-C.

Requires GH_OWNER, GH_REPO and GITHUB_TOKEN (and optionally GH_BRANCH).
Touch the file and press Enter to signal a change.
"""

import logging

import anyio

from ghsync import FileReplica, GitHubStore, SyncConfig


async def watch_stdin(replica):
    while True:
        line = await anyio.to_thread.run_sync(input, abandon_on_cancel=True)
        replica.mark_dirty()
        print(f"marked dirty ({line!r})")


async def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    config = SyncConfig.from_env()
    async with GitHubStore.from_config(config) as store:
        replica = FileReplica(store, config)
        async with anyio.create_task_group() as tg:
            await replica.initialize(tg)
            tg.start_soon(watch_stdin, replica)
            await replica.run_until_signalled()
            tg.cancel_scope.cancel()


if __name__ == "__main__":
    anyio.run(main)
