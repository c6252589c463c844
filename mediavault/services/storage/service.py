"""Storage service facade dispatching each call to the local or S3 backend."""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from typing import BinaryIO, Callable, Iterator, List, Optional, Sequence, TypeVar
from uuid import uuid4

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from mediavault.utils.file_hash import HashingReader, compute_file_sha1

from .exceptions import StorageNotFoundError, UnsupportedOperationError, VerificationFailure
from .factory import StorageSettings, build_local_backend, build_s3_backend, load_storage_settings_from_env
from .interfaces import DiskUsage, FileStat, MaterializedFile, ReadStream, UploadResult, WatchEvents
from .local import compile_patterns, matches_any, translate_os_errors
from .locator import is_remote_path, parse_remote_path
from .s3 import META_LAST_ACCESSED, META_LAST_MODIFIED

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Physical free space of an object store is not knowable; report 8 EiB.
REMOTE_DISK_CAPACITY = 8 * 1024 ** 6


class _WatchHandler(FileSystemEventHandler):
    """
    Forwards watchdog file events to WatchEvents callbacks.

    Paths matching ``ignore_patterns`` (the same globs as crawl exclusions)
    produce no callbacks. Failures while handling an event, and removal of a
    watched root, are reported through ``on_error``.
    """

    def __init__(self, events: WatchEvents, ignore_patterns: Optional[Sequence[str]] = None,
                 roots: Sequence[str] = ()):
        super().__init__()
        self.events = events
        self.ignored = compile_patterns(ignore_patterns)
        self.roots = {os.path.abspath(r) for r in roots}

    def dispatch(self, event):
        try:
            super().dispatch(event)
        except Exception as exc:
            if not self.events.on_error:
                raise
            logger.error(f"Error handling file event for {event.src_path}: {exc}")
            self.events.on_error(exc)

    def _accept(self, path: str) -> bool:
        return not matches_any(self.ignored, path)

    def on_created(self, event):
        if not event.is_directory and self.events.on_add and self._accept(event.src_path):
            self.events.on_add(event.src_path)

    def on_modified(self, event):
        if not event.is_directory and self.events.on_change and self._accept(event.src_path):
            self.events.on_change(event.src_path)

    def on_deleted(self, event):
        if event.is_directory:
            if os.path.abspath(event.src_path) in self.roots and self.events.on_error:
                self.events.on_error(StorageNotFoundError(f"Watched folder was removed: {event.src_path}",
                                                          event.src_path))
            return
        if self.events.on_unlink and self._accept(event.src_path):
            self.events.on_unlink(event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        if self.events.on_unlink and self._accept(event.src_path):
            self.events.on_unlink(event.src_path)
        if self.events.on_add and self._accept(event.dest_path):
            self.events.on_add(event.dest_path)


class StorageService:
    """Single entry point for file operations on local paths and remote objects."""

    def __init__(self, settings: Optional[StorageSettings] = None, local=None, s3=None):
        self.settings = settings or load_storage_settings_from_env()
        self.local = local or build_local_backend(self.settings)
        self.s3 = s3 or build_s3_backend(self.settings)

    def is_remote(self, path: Optional[str]) -> bool:
        return is_remote_path(path)

    def get_staging_dir(self) -> str:
        self.local.mkdir(self.settings.staging_dir)
        return self.settings.staging_dir

    # --- read / write ---

    def read_file(self, path: str, offset: Optional[int] = None, length: Optional[int] = None) -> bytes:
        if not is_remote_path(path):
            return self.local.read_file(path, offset, length)
        return self.s3.read_file(parse_remote_path(path), offset, length)

    def read_text_file(self, path: str) -> str:
        return self.read_file(path).decode('utf-8')

    def create_file(self, path: str, data: bytes) -> None:
        """Write a new file. Raises StorageAlreadyExistsError if the target exists."""
        if not is_remote_path(path):
            return self.local.create_file(path, data)
        self.s3.put_object(parse_remote_path(path), data, exclusive=True)

    def create_or_overwrite_file(self, path: str, data: bytes) -> None:
        if not is_remote_path(path):
            return self.local.create_or_overwrite_file(path, data)
        self.s3.put_object(parse_remote_path(path), data)

    def overwrite_file(self, path: str, data: bytes) -> None:
        """Replace the contents of an existing file."""
        if not is_remote_path(path):
            return self.local.overwrite_file(path, data)
        self.s3.put_object(parse_remote_path(path), data)

    def create_read_stream(self, path: str, mime_type: Optional[str] = None) -> ReadStream:
        if not is_remote_path(path):
            return self.local.open_read(path, mime_type)
        return self.s3.get_object(parse_remote_path(path), mime_type)

    def upload_from_stream(self, stream: BinaryIO, destination: str, compute_checksum: bool = False) -> UploadResult:
        """Stream bytes to ``destination`` while counting and optionally SHA-1 hashing them."""
        reader = HashingReader(stream, compute_checksum=compute_checksum)
        if not is_remote_path(destination):
            self.local.write_stream(reader, destination)
        else:
            self.s3.upload_stream(reader, parse_remote_path(destination))
            logger.debug(f"Uploaded stream to {destination}, size={reader.size} bytes")
        return UploadResult(path=destination, size=reader.size, checksum=reader.checksum)

    # --- metadata ---

    def stat(self, path: str) -> FileStat:
        if not is_remote_path(path):
            return self.local.stat(path)
        return self.s3.stat(parse_remote_path(path))

    def exists(self, path: str) -> bool:
        if not is_remote_path(path):
            return self.local.exists(path)
        return self.s3.exists(parse_remote_path(path))

    def utimes(self, path: str, atime: datetime, mtime: datetime) -> None:
        if not is_remote_path(path):
            return self.local.utimes(path, atime, mtime)
        self.s3.utimes(parse_remote_path(path), atime, mtime)

    def hash_file(self, path: str) -> bytes:
        """SHA-1 digest of the file contents, streamed from either backend."""
        if not is_remote_path(path):
            with translate_os_errors(path):
                return compute_file_sha1(path)
        return self.s3.hash_object(parse_remote_path(path))

    # --- rename / copy / delete ---

    def _same_bucket_pair(self, operation: str, source: str, target: str):
        source_remote = is_remote_path(source)
        target_remote = is_remote_path(target)
        if source_remote != target_remote:
            raise UnsupportedOperationError(
                f"Cannot {operation} between different storage backends: {source} -> {target}", source)
        if not source_remote:
            return None
        src = parse_remote_path(source)
        dst = parse_remote_path(target)
        if (src.host, src.bucket) != (dst.host, dst.bucket):
            raise UnsupportedOperationError(
                f"Cannot {operation} between different remote storage buckets: "
                f"{src.host}/{src.bucket} -> {dst.host}/{dst.bucket}", source)
        return src, dst

    def rename(self, source: str, target: str) -> None:
        """
        Rename within one backend.

        Local renames are atomic and raise CrossDeviceError across volumes.
        Remote renames are a server-side copy, a length check and a delete.
        """
        pair = self._same_bucket_pair('rename', source, target)
        if pair is None:
            return self.local.rename(source, target)

        src, dst = pair
        head = self.s3.head(src)
        metadata = dict(head.metadata or {})
        if head.last_modified is not None:
            metadata.setdefault(META_LAST_MODIFIED, head.last_modified.isoformat())
            metadata.setdefault(META_LAST_ACCESSED, head.last_modified.isoformat())
        self.s3.copy_object(src, dst, metadata=metadata, content_type=head.content_type)

        copied = self.s3.head(dst)
        if copied.size != head.size:
            self.s3.delete_object(dst)
            raise VerificationFailure(
                f"Copied object size mismatch: {copied.size} != {head.size}", target,
                expected=head.size, actual=copied.size)
        self.s3.delete_object(src)

    def copy_file(self, source: str, target: str) -> None:
        pair = self._same_bucket_pair('copy', source, target)
        if pair is None:
            return self.local.copy_file(source, target)
        self.s3.copy_object(*pair)

    def unlink(self, path: str) -> None:
        if is_remote_path(path):
            return self.s3.delete_object(parse_remote_path(path))
        try:
            self.local.unlink(path)
        except StorageNotFoundError:
            logger.warning(f"File {path} does not exist.")

    # --- directories ---

    def mkdir(self, path: str) -> None:
        # Object stores have no directories
        if not is_remote_path(path):
            self.local.mkdir(path)

    def readdir(self, folder: str) -> List[str]:
        if is_remote_path(folder):
            raise UnsupportedOperationError(
                'readdir is not supported for remote storage. Use crawl() or walk() instead.', folder)
        return self.local.readdir(folder)

    def realpath(self, path: str) -> str:
        if is_remote_path(path):
            return path
        return self.local.realpath(path)

    def unlink_dir(self, folder: str, recursive: bool = False, force: bool = False) -> None:
        if is_remote_path(folder):
            raise UnsupportedOperationError('Directories cannot be removed on remote storage', folder)
        self.local.unlink_dir(folder, recursive=recursive, force=force)

    def remove_empty_dirs(self, directory: str, self_: bool = False) -> None:
        if not is_remote_path(directory):
            self.local.remove_empty_dirs(directory, self_)

    def check_disk_usage(self, folder: str) -> DiskUsage:
        if is_remote_path(folder):
            return DiskUsage(available=REMOTE_DISK_CAPACITY, free=REMOTE_DISK_CAPACITY, total=REMOTE_DISK_CAPACITY)
        return self.local.check_disk_usage(folder)

    # --- local path bridge ---

    @contextmanager
    def materialize(self, path: str) -> Iterator[MaterializedFile]:
        """Yield a real local file for ``path``, downloading remote objects to a temp file."""
        if not is_remote_path(path):
            yield MaterializedFile(local_path=path, cleanup_required=False)
            return

        remote = parse_remote_path(path)
        fd, tmp_path = tempfile.mkstemp(prefix='mediavault-', suffix=f"-{os.path.basename(remote.key)}",
                                        dir=self.get_staging_dir())
        os.close(fd)
        materialized = MaterializedFile(local_path=tmp_path, cleanup_required=True)
        try:
            logger.debug(f"Downloading {path} to temporary file {tmp_path}")
            self.s3.download_file(remote, tmp_path)
            yield materialized
        finally:
            self._cleanup_temp(tmp_path)

    def with_local_path(self, path: str, callback: Callable[[str], T]) -> T:
        with self.materialize(path) as materialized:
            return callback(materialized.local_path)

    @contextmanager
    def staged_write(self, path: str) -> Iterator[str]:
        """Yield a local path to write; for remote targets it is uploaded on clean exit."""
        if not is_remote_path(path):
            yield path
            return

        remote = parse_remote_path(path)
        tmp_path = os.path.join(self.get_staging_dir(),
                                f"mediavault-write-{uuid4().hex}-{os.path.basename(remote.key)}")
        try:
            yield tmp_path
            if not os.path.exists(tmp_path):
                raise StorageNotFoundError(f"Nothing was written to {tmp_path} for upload to {path}", tmp_path)
            logger.debug(f"Uploading temporary file to S3: bucket={remote.bucket}, key={remote.key}")
            self.s3.upload_file(tmp_path, remote)
        finally:
            self._cleanup_temp(tmp_path)

    def write_file(self, path: str, callback: Callable[[str], T]) -> T:
        with self.staged_write(path) as local_path:
            return callback(local_path)

    def _cleanup_temp(self, tmp_path: str) -> None:
        try:
            os.remove(tmp_path)
            logger.debug(f"Cleaned up temp file: {tmp_path}")
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(f"Failed to remove temp file {tmp_path}: {exc}")

    # --- library scanning ---

    def _require_local_roots(self, paths: Sequence[str]) -> None:
        for path in paths:
            if is_remote_path(path):
                raise UnsupportedOperationError(f"Cannot scan remote storage path: {path}", path)

    def crawl(self, paths: Sequence[str], exclusion_patterns: Optional[Sequence[str]] = None,
              include_hidden: bool = False, extensions: Optional[Sequence[str]] = None) -> List[str]:
        """Return every matching file under the given local roots."""
        if not paths:
            return []
        self._require_local_roots(paths)
        return list(self.local.iter_files(paths, exclusion_patterns, include_hidden, extensions))

    def walk(self, paths: Sequence[str], exclusion_patterns: Optional[Sequence[str]] = None,
             include_hidden: bool = False, batch_size: int = 10000,
             extensions: Optional[Sequence[str]] = None) -> Iterator[List[str]]:
        """
        Lazily yield lists of at most ``batch_size`` matching files.

        The sequence is finite and forward-only; stop iterating to cancel.
        Arguments are validated when called, before the first batch is requested.
        """
        if batch_size < 1:
            raise ValueError('batch_size must be positive')
        self._require_local_roots(paths)
        return self._iter_batches(paths, exclusion_patterns, include_hidden, batch_size, extensions)

    def _iter_batches(self, paths, exclusion_patterns, include_hidden, batch_size, extensions):
        if not paths:
            return
        batch = []
        for path in self.local.iter_files(paths, exclusion_patterns, include_hidden, extensions):
            batch.append(path)
            if len(batch) == batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def watch(self, paths: Sequence[str], events: WatchEvents, recursive: bool = True,
              use_polling: bool = False, polling_interval: float = 1.0,
              ignore_patterns: Optional[Sequence[str]] = None) -> Callable[[], None]:
        """
        Subscribe to file changes under ``paths``. Returns a function that stops watching.

        Args:
            recursive: also watch subdirectories
            use_polling: stat the tree every ``polling_interval`` seconds instead of
                using native notifications, needed for network mounts
            ignore_patterns: globs of paths that produce no callbacks
        """
        self._require_local_roots(paths)
        observer = PollingObserver(timeout=polling_interval) if use_polling else Observer()
        handler = _WatchHandler(events, ignore_patterns, roots=paths)

        def cancel():
            if observer.is_alive():
                observer.stop()
                observer.join()

        try:
            for path in paths:
                observer.schedule(handler, path, recursive=recursive)
            observer.start()
        except OSError as exc:
            logger.error(f"Failed to watch {', '.join(paths)}: {exc}")
            if events.on_error:
                events.on_error(exc)
            return cancel

        if events.on_ready:
            events.on_ready()
        return cancel
