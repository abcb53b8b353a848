"""Base64 and git object id helpers."""

from __future__ import annotations

import base64
import hashlib


def b64encode(data: bytes) -> str:
    """Encode bytes as the base64 text the GitHub API expects."""
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Decode GitHub base64 content (which may contain line breaks)."""
    return base64.b64decode("".join(text.split()))


def git_object_id(kind: str, data: bytes) -> str:
    """Return the SHA-1 git would assign to an object of ``kind`` with ``data``."""
    header = f"{kind} {len(data)}\0".encode()
    return hashlib.sha1(header + data).hexdigest()
