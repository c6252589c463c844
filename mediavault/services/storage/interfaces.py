"""Storage interfaces and shared dataclasses for file storage backends."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, Optional


@dataclass(frozen=True)
class RemotePath:
    """Remote path split into endpoint host, bucket and object key."""

    host: str
    bucket: str
    key: str


@dataclass
class FileStat:
    """Uniform stat result for local files and remote objects."""

    size: int
    mtime: datetime
    atime: datetime
    birthtime: datetime
    is_directory: bool = False

    @property
    def is_file(self) -> bool:
        return not self.is_directory


@dataclass
class UploadResult:
    """Result of a streaming write."""

    path: str
    size: int
    checksum: Optional[bytes] = None


@dataclass
class ReadStream:
    """Readable stream with the length and content type when known."""

    stream: BinaryIO
    length: Optional[int] = None
    type: Optional[str] = None


@dataclass
class ObjectHead:
    """Remote object metadata as returned by a HEAD request."""

    size: int
    last_modified: Optional[datetime] = None
    content_type: Optional[str] = None
    metadata: Optional[dict] = None
    etag: Optional[str] = None


@dataclass
class DiskUsage:
    available: int
    free: int
    total: int


@dataclass
class MaterializedFile:
    """Local filesystem path prepared for processing/read."""

    local_path: str
    cleanup_required: bool = False


@dataclass
class WatchEvents:
    """Callbacks for filesystem change notifications. All are optional."""

    on_ready: Optional[Callable[[], None]] = None
    on_add: Optional[Callable[[str], None]] = None
    on_change: Optional[Callable[[str], None]] = None
    on_unlink: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
