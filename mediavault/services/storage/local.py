"""Local filesystem storage backend."""

from __future__ import annotations

import errno
import logging
import os
import re
import shutil
import stat
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Sequence

from .exceptions import (
    CrossDeviceError,
    StorageAlreadyExistsError,
    StorageNotFoundError,
    TransientIOError,
)
from .interfaces import DiskUsage, FileStat, ReadStream

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


@contextmanager
def translate_os_errors(path: str):
    """Re-raise OSError from the wrapped block as a storage error kind."""
    try:
        yield
    except FileNotFoundError as exc:
        raise StorageNotFoundError(f"File not found: {path}", path) from exc
    except FileExistsError as exc:
        raise StorageAlreadyExistsError(f"File already exists: {path}", path) from exc
    except OSError as exc:
        if exc.errno == errno.EXDEV:
            raise CrossDeviceError(f"Cannot rename across devices: {path}", path) from exc
        raise TransientIOError(f"{exc.strerror or exc}: {path}", path) from exc


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def glob_to_regex(pattern: str) -> str:
    """Translate a glob to a regex matched against a whole path.

    ``*`` and ``?`` stay within one path segment, ``**`` crosses directories
    and ``**/`` also matches zero directories.
    """
    i, n = 0, len(pattern)
    out = []
    while i < n:
        c = pattern[i]
        if pattern.startswith('**/', i):
            out.append('(?:.*/)?')
            i += 3
        elif pattern.startswith('**', i):
            out.append('.*')
            i += 2
        elif c == '*':
            out.append('[^/]*')
            i += 1
        elif c == '?':
            out.append('[^/]')
            i += 1
        elif c == '[' and pattern.find(']', i + 2) != -1:
            end = pattern.find(']', i + 2)
            body = pattern[i + 1:end]
            if body.startswith('!'):
                body = '^' + body[1:]
            out.append('[' + body + ']')
            i = end + 1
        else:
            out.append(re.escape(c))
            i += 1
    return ''.join(out)


def compile_patterns(patterns: Optional[Iterable[str]]):
    """Compile case-insensitive path globs."""
    return [re.compile(glob_to_regex(p), re.IGNORECASE) for p in (patterns or [])]


def matches_any(compiled, path: str) -> bool:
    return any(p.fullmatch(path) for p in compiled)


class LocalStorageBackend:
    """Thin pass-through to OS file operations."""

    def read_file(self, path: str, offset: Optional[int] = None, length: Optional[int] = None) -> bytes:
        with translate_os_errors(path), open(path, 'rb') as f:
            if offset:
                f.seek(offset)
            return f.read() if length is None else f.read(length)

    def open_read(self, path: str, mime_type: Optional[str] = None) -> ReadStream:
        with translate_os_errors(path):
            size = os.stat(path).st_size
            return ReadStream(stream=open(path, 'rb'), length=size, type=mime_type)

    def create_file(self, path: str, data: bytes) -> None:
        with translate_os_errors(path), open(path, 'xb') as f:
            f.write(data)

    def create_or_overwrite_file(self, path: str, data: bytes) -> None:
        with translate_os_errors(path), open(path, 'wb') as f:
            f.write(data)

    def overwrite_file(self, path: str, data: bytes) -> None:
        # File must already exist.
        with translate_os_errors(path), open(path, 'r+b') as f:
            f.write(data)
            f.truncate()

    def write_stream(self, stream: BinaryIO, path: str) -> None:
        self.mkdir(os.path.dirname(path))
        with translate_os_errors(path), open(path, 'wb') as out_f:
            shutil.copyfileobj(stream, out_f, COPY_CHUNK_SIZE)

    def stat(self, path: str) -> FileStat:
        with translate_os_errors(path):
            st = os.stat(path)
        birthtime = getattr(st, 'st_birthtime', None) or st.st_ctime
        return FileStat(
            size=st.st_size,
            mtime=_timestamp(st.st_mtime),
            atime=_timestamp(st.st_atime),
            birthtime=_timestamp(birthtime),
            is_directory=os.path.isdir(path),
        )

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def rename(self, source: str, target: str) -> None:
        with translate_os_errors(source):
            os.rename(source, target)

    def copy_file(self, source: str, target: str) -> None:
        with translate_os_errors(source):
            shutil.copyfile(source, target)

    def unlink(self, path: str) -> None:
        with translate_os_errors(path):
            os.remove(path)

    def utimes(self, path: str, atime: datetime, mtime: datetime) -> None:
        with translate_os_errors(path):
            os.utime(path, (atime.timestamp(), mtime.timestamp()))

    def mkdir(self, path: str) -> None:
        if not path:
            return
        with translate_os_errors(path):
            Path(path).mkdir(parents=True, exist_ok=True)

    def readdir(self, folder: str) -> list:
        with translate_os_errors(folder):
            return os.listdir(folder)

    def realpath(self, path: str) -> str:
        with translate_os_errors(path):
            return str(Path(path).resolve(strict=True))

    def unlink_dir(self, folder: str, recursive: bool = False, force: bool = False) -> None:
        if force and not os.path.exists(folder):
            return
        with translate_os_errors(folder):
            if recursive:
                shutil.rmtree(folder)
            else:
                os.rmdir(folder)

    def remove_empty_dirs(self, directory: str, self_: bool = False) -> None:
        """Recursively delete empty subdirectories, and ``directory`` itself if ``self_``."""
        # lstat so symlinked directories are never followed
        try:
            st = os.lstat(directory)
        except FileNotFoundError:
            return
        if not stat.S_ISDIR(st.st_mode):
            return

        with translate_os_errors(directory):
            for name in os.listdir(directory):
                self.remove_empty_dirs(os.path.join(directory, name), True)

            if self_ and not os.listdir(directory):
                os.rmdir(directory)
                logger.debug(f"Removed empty directory {directory}")

    def check_disk_usage(self, folder: str) -> DiskUsage:
        with translate_os_errors(folder):
            st = os.statvfs(folder)
        return DiskUsage(
            available=st.f_bavail * st.f_frsize,
            free=st.f_bfree * st.f_frsize,
            total=st.f_blocks * st.f_frsize,
        )

    def iter_files(self, roots: Sequence[str], exclusion_patterns: Optional[Sequence[str]] = None,
                   include_hidden: bool = False, extensions: Optional[Sequence[str]] = None) -> Iterator[str]:
        """Yield absolute paths of regular files under ``roots``.

        Exclusion patterns are case-insensitive globs matched against the full
        path (see ``glob_to_regex``). Hidden entries (leading dot) are skipped
        unless ``include_hidden``.
        """
        excluded = compile_patterns(exclusion_patterns)
        allowed = {e.lower() if e.startswith('.') else f".{e.lower()}" for e in (extensions or [])}

        def is_excluded(path):
            return matches_any(excluded, path)

        def is_excluded_dir(path):
            # "lib/sub" and "lib/sub/**" both prune the directory
            return is_excluded(path) or is_excluded(path + '/')

        for root in roots:
            root = os.path.abspath(root)
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(
                    d for d in dirnames
                    if (include_hidden or not d.startswith('.'))
                    and not is_excluded_dir(os.path.join(dirpath, d))
                )
                for name in sorted(filenames):
                    if not include_hidden and name.startswith('.'):
                        continue
                    if allowed and os.path.splitext(name)[1].lower() not in allowed:
                        continue
                    path = os.path.join(dirpath, name)
                    if is_excluded(path):
                        continue
                    yield path
