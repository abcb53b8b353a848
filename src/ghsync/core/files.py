"""LocalFiles ABC + DiskFiles — the local filesystem capabilities the engine needs."""

from __future__ import annotations

import abc
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalFiles(abc.ABC):
    """Abstract accessor for the local side of the replica.

    The engine never caches file bytes; every call reopens the file.
    """

    @abc.abstractmethod
    def exists(self, path: Path) -> bool: ...

    @abc.abstractmethod
    def size(self, path: Path) -> int: ...

    @abc.abstractmethod
    def read(self, path: Path) -> bytes: ...

    @abc.abstractmethod
    def write(self, path: Path, data: bytes) -> None: ...

    @abc.abstractmethod
    def ensure_dir(self, path: Path) -> None: ...


class DiskFiles(LocalFiles):
    """LocalFiles backed by the real filesystem."""

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def size(self, path: Path) -> int:
        return Path(path).stat().st_size

    def read(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def write(self, path: Path, data: bytes) -> None:
        """Replace the file atomically so readers never see a half-written copy."""
        path = Path(path)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def ensure_dir(self, path: Path) -> None:
        directory = Path(path)
        if not directory.exists():
            logger.debug("creating directory %s", directory)
        directory.mkdir(parents=True, exist_ok=True)
