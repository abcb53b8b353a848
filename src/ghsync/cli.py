"""Command line entry point.

Usage:
    ghsync pull             Restore the local file from the repository
    ghsync push [--force]   Push the local file now
    ghsync status           Show local size and remote version

Repository settings come from GH_OWNER, GH_REPO, GH_BRANCH and GITHUB_TOKEN;
see SyncConfig.from_env for the rest.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, Sequence

import anyio

from ghsync.api.replica import FileReplica
from ghsync.config import SyncConfig
from ghsync.errors import ConfigurationError, SyncError
from ghsync.net.github import GitHubStore
from ghsync.net.store import RemoteStore

StoreFactory = Callable[[SyncConfig], RemoteStore]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ghsync", description=__doc__.splitlines()[0])
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--local-path", help="local file (default: $GHSYNC_LOCAL_PATH)")
    parser.add_argument("--remote-path", help="path inside the repository")
    parser.add_argument("--owner", help="repository owner (default: $GH_OWNER)")
    parser.add_argument("--repo", help="repository name (default: $GH_REPO)")
    parser.add_argument("--branch", help="branch (default: $GH_BRANCH or main)")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("pull", help="overwrite the local file with the remote copy")
    push = sub.add_parser("push", help="push the local file to the remote")
    push.add_argument(
        "--force",
        action="store_true",
        help="push even if the local file is empty or the remote already has the same bytes",
    )
    sub.add_parser("status", help="show local and remote state")
    return parser


async def _pull(replica: FileReplica) -> int:
    version = await replica.pull()
    if version is None:
        print(f"remote {replica.config.remote_path} not found; nothing pulled")
        return 1
    print(f"pulled {replica.config.remote_path} -> {replica.config.local_path} ({version})")
    return 0


async def _push(replica: FileReplica, store: RemoteStore, force: bool = False) -> int:
    config = replica.config
    if not force and config.local_path.is_file():
        local = config.local_path.read_bytes()
        remote = await store.get_content(config.remote_path)
        if remote is not None and not local and remote.content:
            print(
                f"refusing to push: {config.local_path} is empty but "
                f"{config.remote_path} has {len(remote.content)} bytes (use --force)"
            )
            return 1
        if remote is not None and remote.content == local:
            print(f"remote {config.remote_path} already up to date ({remote.version})")
            return 0
    result = await replica.flush_now(force=True)
    if result is None or not result.wrote:
        reason = result.stage.name.lower() if result else "clean"
        print(f"nothing pushed ({reason})")
        return 0
    print(f"pushed {replica.config.remote_path} via {result.stage.name.lower()} ({result.version})")
    return 0


async def _status(replica: FileReplica, store: RemoteStore) -> int:
    config = replica.config
    path = config.local_path
    if path.is_file():
        print(f"local:  {path} ({path.stat().st_size} bytes)")
    else:
        print(f"local:  {path} (missing)")
    version = await store.get_version(config.remote_path)
    print(f"remote: {config.remote_path} ({version or 'absent'})")
    return 0


async def run_command(args: argparse.Namespace, store_factory: StoreFactory) -> int:
    config = SyncConfig.from_env(
        local_path=args.local_path,
        remote_path=args.remote_path,
        owner=args.owner,
        repo=args.repo,
        branch=args.branch,
    )
    store = store_factory(config)
    try:
        replica = FileReplica(store, config)
        if args.command == "pull":
            return await _pull(replica)
        if args.command == "push":
            return await _push(replica, store, force=args.force)
        return await _status(replica, store)
    finally:
        await store.close()


def main(argv: Sequence[str] | None = None, store_factory: StoreFactory | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    factory = store_factory or GitHubStore.from_config
    try:
        return anyio.run(run_command, args, factory)
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2
    except SyncError as exc:
        print(f"sync failed: {exc}", file=sys.stderr)
        return 1
