"""Classification of logical paths into local files and remote objects."""

from __future__ import annotations

from typing import Optional

from .exceptions import MalformedPathError
from .interfaces import RemotePath


def is_remote_path(path: Optional[str]) -> bool:
    """Return True when ``path`` has the ``host/bucket/key`` shape.

    Paths starting with ``/`` are always local. Anything else is remote only
    if it has at least three segments and the first one looks like a host
    name (contains a dot); other relative strings are treated as local.
    """
    if not path or path.startswith('/'):
        return False
    parts = path.split('/')
    return len(parts) >= 3 and '.' in parts[0]


def parse_remote_path(path: str) -> RemotePath:
    """Split a remote path into host, bucket and key.

    Example: ``s3.ap-northeast-1.amazonaws.com/my-bucket/upload/u1/a.jpg``.
    """
    parts = (path or '').split('/')
    if len(parts) < 3:
        raise MalformedPathError(f"Invalid remote storage path format: {path}", path)
    return RemotePath(host=parts[0], bucket=parts[1], key='/'.join(parts[2:]))


def build_remote_path(host: str, bucket: str, key: str) -> str:
    return f"{host}/{bucket}/{key.lstrip('/')}"
