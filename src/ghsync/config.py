"""SyncConfig — settings for one replicated file, with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from ghsync.errors import ConfigurationError

DEFAULT_LOCAL_PATH = "./data/app.db"
DEFAULT_REMOTE_PATH = "data/app.db"
DEFAULT_LARGE_OBJECT_THRESHOLD = 90 * 1024 * 1024


@dataclass
class SyncConfig:
    """Configuration for a single local file mirrored to a repository path.

    Attributes:
        local_path: File on local disk
        remote_path: Path of the object inside the repository
        debounce_delay: Quiet period after mark_dirty() before a push, in seconds
        periodic_interval: Safety-net flush interval, in seconds
        large_object_threshold: Payloads above this many bytes skip the contents API
        shutdown_timeout: Upper bound on the final flush at shutdown, in seconds
        commit_message: Message for regular pushes (derived from remote_path if unset)
        seed_message: Message for the one-time creation at startup
        owner, repo, branch, token: GitHub repository coordinates and credentials
        api_url: GitHub REST API base URL
    """

    local_path: Path = Path(DEFAULT_LOCAL_PATH)
    remote_path: str = DEFAULT_REMOTE_PATH
    debounce_delay: float = 3.0
    periodic_interval: float = 60.0
    large_object_threshold: int = DEFAULT_LARGE_OBJECT_THRESHOLD
    shutdown_timeout: float = 30.0
    commit_message: str | None = None
    seed_message: str | None = None
    owner: str | None = None
    repo: str | None = None
    branch: str = "main"
    token: str | None = None
    api_url: str = "https://api.github.com"

    def __post_init__(self) -> None:
        if isinstance(self.local_path, str):
            self.local_path = Path(self.local_path)
        self.remote_path = self.remote_path.strip("/")
        if not self.remote_path:
            raise ConfigurationError("remote_path must not be empty")
        if self.commit_message is None:
            self.commit_message = f"Sync {self.remote_path}"
        if self.seed_message is None:
            self.seed_message = f"Initialize {self.remote_path} from local"
        for name in ("debounce_delay", "periodic_interval", "shutdown_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.large_object_threshold < 0:
            raise ConfigurationError("large_object_threshold must not be negative")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> SyncConfig:
        """Build a config from environment variables; keyword overrides win."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        local_path = env.get("GHSYNC_LOCAL_PATH") or env.get("DATABASE_URL")
        if local_path:
            kwargs["local_path"] = Path(local_path)
        _copy(env, kwargs, "GHSYNC_REMOTE_PATH", "remote_path", str)
        _copy(env, kwargs, "GHSYNC_DEBOUNCE_SECONDS", "debounce_delay", float)
        _copy(env, kwargs, "GHSYNC_PERIODIC_SECONDS", "periodic_interval", float)
        _copy(env, kwargs, "GHSYNC_LARGE_OBJECT_BYTES", "large_object_threshold", int)
        _copy(env, kwargs, "GHSYNC_SHUTDOWN_TIMEOUT", "shutdown_timeout", float)
        _copy(env, kwargs, "GHSYNC_COMMIT_MESSAGE", "commit_message", str)
        _copy(env, kwargs, "GH_OWNER", "owner", str)
        _copy(env, kwargs, "GH_REPO", "repo", str)
        _copy(env, kwargs, "GH_BRANCH", "branch", str)
        _copy(env, kwargs, "GITHUB_TOKEN", "token", str)
        _copy(env, kwargs, "GHSYNC_API_URL", "api_url", str)

        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)  # type: ignore[arg-type]


def _copy(
    env: Mapping[str, str],
    kwargs: dict[str, object],
    var: str,
    field_name: str,
    convert: Callable[[str], object],
) -> None:
    raw = env.get(var)
    if raw is None or raw == "":
        return
    try:
        kwargs[field_name] = convert(raw)
    except ValueError as exc:
        raise ConfigurationError(f"invalid value for {var}: {raw!r}") from exc
