"""Shared fixtures: a MemoryStore that can be told to fail."""

from collections import Counter
from pathlib import Path

import pytest

from ghsync.config import SyncConfig
from ghsync.net.memory import MemoryStore

REMOTE_PATH = "data/app.db"


class FlakyStore(MemoryStore):
    """MemoryStore that raises queued errors and counts every call, failed or not."""

    def __init__(self, files=None):
        super().__init__(files)
        self.attempts = Counter()
        self._failures = {}

    def fail(self, operation, *errors):
        self._failures.setdefault(operation, []).extend(errors)

    def _check(self, operation):
        self.attempts[operation] += 1
        queue = self._failures.get(operation)
        if queue:
            raise queue.pop(0)

    async def get_version(self, path):
        self._check("get_version")
        return await super().get_version(path)

    async def get_content(self, path):
        self._check("get_content")
        return await super().get_content(path)

    async def put_content(self, path, data, message, expected_version=None):
        self._check("put_content")
        return await super().put_content(path, data, message, expected_version)

    async def create_blob(self, data):
        self._check("create_blob")
        return await super().create_blob(data)

    async def update_branch_head(self, commit):
        self._check("update_branch_head")
        return await super().update_branch_head(commit)


@pytest.fixture
def local_path(tmp_path) -> Path:
    return tmp_path / "data" / "app.db"


@pytest.fixture
def config(local_path) -> SyncConfig:
    return SyncConfig(
        local_path=local_path,
        remote_path=REMOTE_PATH,
        debounce_delay=0.05,
        periodic_interval=30.0,
        shutdown_timeout=2.0,
    )
