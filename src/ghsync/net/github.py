"""GitHubStore — RemoteStore over the GitHub REST contents and git data APIs."""

from __future__ import annotations

import logging
from typing import Any, Sequence
from urllib.parse import quote

import anyio
import httpx

from ghsync._util.encoding import b64decode, b64encode
from ghsync._version import __version__
from ghsync.config import SyncConfig
from ghsync.core.types import (
    BlobRef,
    CommitRef,
    RemoteObject,
    TreeEntry,
    TreeRef,
    VersionTag,
)
from ghsync.errors import (
    ConfigurationError,
    RemoteStoreError,
    TransientRemoteError,
    VersionConflictError,
)
from ghsync.net.store import RemoteStore

logger = logging.getLogger(__name__)

RAW_MEDIA_TYPE = "application/vnd.github.raw"
JSON_MEDIA_TYPE = "application/vnd.github+json"


class GitHubStore(RemoteStore):
    """Talks to one branch of one repository.

    GETs are retried on transport errors with exponential backoff; writes are
    never retried here, the write protocol decides what to do on failure.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        branch: str = "main",
        token: str | None = None,
        api_url: str = "https://api.github.com",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retries: int = 3,
        backoff_base: float = 0.2,
        backoff_max: float = 5.0,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.branch = branch
        headers = {
            "Accept": JSON_MEDIA_TYPE,
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": f"ghsync/{__version__}",
        }
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=api_url, timeout=timeout)
        self._client.headers.update(headers)
        self._retries = retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

    @classmethod
    def from_config(cls, config: SyncConfig, **kwargs: Any) -> GitHubStore:
        owner = config.owner or ""
        repo = config.repo or ""
        missing = [
            var
            for var, value in (
                ("GH_OWNER", owner),
                ("GH_REPO", repo),
                ("GITHUB_TOKEN", config.token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"missing GitHub settings: {', '.join(missing)}")
        return cls(
            owner,
            repo,
            branch=config.branch,
            token=config.token,
            api_url=config.api_url,
            **kwargs,
        )

    @property
    def _repo_url(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _contents_url(self, path: str) -> str:
        return f"{self._repo_url}/contents/{quote(path.strip('/'))}"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitHubStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- request plumbing -------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        attempts = self._retries + 1 if method == "GET" else 1
        attempt = 0
        while True:
            try:
                return await self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                attempt += 1
                if attempt >= attempts:
                    raise TransientRemoteError(f"{method} {url} failed: {exc}") from exc
                delay = min(self._backoff_base * (2 ** (attempt - 1)), self._backoff_max)
                logger.warning(
                    "github request failed (attempt=%s/%s); retrying in %.2fs",
                    attempt,
                    attempts,
                    delay,
                )
                await anyio.sleep(delay)

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response | None:
        response = await self._send("GET", url, **kwargs)
        if response.status_code == 404:
            return None
        _raise_for_status(response, write=False)
        return response

    async def _write(self, method: str, url: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._send(method, url, json=body)
        _raise_for_status(response, write=True)
        return response.json()

    # -- RemoteStore --------------------------------------------------------------

    async def get_version(self, path: str) -> VersionTag | None:
        response = await self._get(self._contents_url(path), params={"ref": self.branch})
        if response is None:
            return None
        data = response.json()
        if isinstance(data, list):
            raise RemoteStoreError(f"expected file, found directory: {path}")
        return data.get("sha") or None

    async def get_content(self, path: str) -> RemoteObject | None:
        version = await self.get_version(path)
        if version is None:
            return None
        response = await self._get(
            f"{self._repo_url}/git/blobs/{version}",
            headers={"Accept": RAW_MEDIA_TYPE},
        )
        if response is None:
            # The blob vanished between the two calls; treat as absent.
            logger.warning("blob %s for %s disappeared while fetching", version, path)
            return None
        return RemoteObject(content=_decode_blob(response), version=version)

    async def put_content(
        self,
        path: str,
        data: bytes,
        message: str,
        expected_version: VersionTag | None = None,
    ) -> VersionTag:
        body: dict[str, Any] = {
            "message": message,
            "content": b64encode(data),
            "branch": self.branch,
        }
        if expected_version:
            body["sha"] = expected_version
        result = await self._write("PUT", self._contents_url(path), body)
        content = result.get("content") or {}
        version = content.get("sha")
        if not version:
            raise RemoteStoreError(f"contents API returned no sha for {path}")
        return version

    async def create_blob(self, data: bytes) -> BlobRef:
        result = await self._write(
            "POST",
            f"{self._repo_url}/git/blobs",
            {"content": b64encode(data), "encoding": "base64"},
        )
        return result["sha"]

    async def get_branch_head(self) -> CommitRef:
        response = await self._get(f"{self._repo_url}/git/ref/heads/{self.branch}")
        if response is None:
            raise ConfigurationError(
                f"branch {self.branch!r} not found in {self.owner}/{self.repo}"
            )
        return response.json()["object"]["sha"]

    async def get_commit_tree(self, commit: CommitRef) -> TreeRef:
        response = await self._get(f"{self._repo_url}/git/commits/{commit}")
        if response is None:
            raise RemoteStoreError(f"commit not found: {commit}", status=404)
        return response.json()["tree"]["sha"]

    async def create_tree(self, base_tree: TreeRef, entries: Sequence[TreeEntry]) -> TreeRef:
        result = await self._write(
            "POST",
            f"{self._repo_url}/git/trees",
            {
                "base_tree": base_tree,
                "tree": [
                    {"path": e.path, "mode": e.mode, "type": "blob", "sha": e.blob}
                    for e in entries
                ],
            },
        )
        return result["sha"]

    async def create_commit(self, tree: TreeRef, parent: CommitRef, message: str) -> CommitRef:
        result = await self._write(
            "POST",
            f"{self._repo_url}/git/commits",
            {"message": message, "tree": tree, "parents": [parent]},
        )
        return result["sha"]

    async def update_branch_head(self, commit: CommitRef) -> None:
        await self._write(
            "PATCH",
            f"{self._repo_url}/git/refs/heads/{self.branch}",
            {"sha": commit, "force": False},
        )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text


def _raise_for_status(response: httpx.Response, *, write: bool) -> None:
    status = response.status_code
    if status < 400:
        return
    detail = _error_message(response)
    message = f"{response.request.method} {response.request.url.path} -> {status}: {detail}"
    if status == 409 or (status == 422 and "sha" in detail):
        raise VersionConflictError(message, status=status)
    if status == 403 and "rate limit" in detail.lower():
        raise TransientRemoteError(message, status=status)
    if status in (401, 403) or (write and status == 404):
        raise ConfigurationError(
            f"{message} (repository/branch not found or token lacking permission)"
        )
    raise TransientRemoteError(message, status=status)


def _decode_blob(response: httpx.Response) -> bytes:
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type:
        return response.content
    body = response.json()
    if isinstance(body, dict) and body.get("encoding") == "base64":
        return b64decode(body.get("content", ""))
    raise RemoteStoreError("unable to decode blob content")
