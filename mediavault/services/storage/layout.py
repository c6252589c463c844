"""
Canonical storage paths for originals and derived files.

Every path is computed from an explicit media location. A local location
is a directory ("/data"); a remote one is a "host/bucket" pair, in which
case everything after it becomes the object key.
"""

from __future__ import annotations

import os
import posixpath
from enum import Enum
from uuid import uuid4

from .locator import is_remote_path


class StorageFolder(str, Enum):
    ENCODED_VIDEO = 'encoded-video'
    LIBRARY = 'library'
    UPLOAD = 'upload'
    PROFILE = 'profile'
    THUMBNAILS = 'thumbs'
    BACKUPS = 'backups'


class AssetPathType(str, Enum):
    ORIGINAL = 'original'
    FULLSIZE = 'fullsize'
    PREVIEW = 'preview'
    THUMBNAIL = 'thumbnail'
    ENCODED_VIDEO = 'encoded_video'
    SIDECAR = 'sidecar'


class PersonPathType(str, Enum):
    FACE = 'face'


GENERATED_IMAGE_TYPES = (AssetPathType.PREVIEW, AssetPathType.THUMBNAIL, AssetPathType.FULLSIZE)


def _is_remote_root(media_location: str) -> bool:
    # A remote root is "host/bucket" (two segments), so test it as a prefix
    return not media_location.startswith('/') and is_remote_path(f"{media_location}/_")


class StorageLayout:
    """Path computations bound to one media location."""

    def __init__(self, media_location: str):
        if not media_location:
            raise ValueError('Media location is not set.')
        self.media_location = media_location.rstrip('/') or '/'
        self.is_remote = _is_remote_root(self.media_location)

    def _join(self, *parts: str) -> str:
        if self.is_remote:
            return posixpath.join(self.media_location, *(p.strip('/') for p in parts))
        return os.path.join(self.media_location, *parts)

    def add_storage_prefix(self, relative_path: str) -> str:
        """Prefix a media-relative path with the media location."""
        return self._join(relative_path.lstrip('/'))

    def get_base_folder(self, folder: StorageFolder) -> str:
        return self._join(StorageFolder(folder).value)

    def get_folder_location(self, folder: StorageFolder, user_id: str) -> str:
        return self._join(StorageFolder(folder).value, user_id)

    def get_library_folder(self, user) -> str:
        return self._join(StorageFolder.LIBRARY.value, getattr(user, 'storage_label', None) or user.id)

    def get_nested_folder(self, folder: StorageFolder, owner_id: str, filename: str) -> str:
        """Two-level fan-out directory taken from the first four characters of the filename."""
        return self._join(StorageFolder(folder).value, owner_id, filename[0:2], filename[2:4])

    def get_nested_path(self, folder: StorageFolder, owner_id: str, filename: str) -> str:
        return self._join(StorageFolder(folder).value, owner_id, filename[0:2], filename[2:4], filename)

    def get_person_thumbnail_path(self, person) -> str:
        return self.get_nested_path(StorageFolder.THUMBNAILS, person.owner_id, f"{person.id}.jpeg")

    def get_image_path(self, asset, path_type: AssetPathType, image_format: str) -> str:
        path_type = AssetPathType(path_type)
        if path_type not in GENERATED_IMAGE_TYPES:
            raise ValueError(f"Not a generated image type: {path_type.value}")
        return self.get_nested_path(StorageFolder.THUMBNAILS, asset.owner_id,
                                    f"{asset.id}-{path_type.value}.{image_format}")

    def get_encoded_video_path(self, asset) -> str:
        return self.get_nested_path(StorageFolder.ENCODED_VIDEO, asset.owner_id, f"{asset.id}.mp4")

    def get_android_motion_path(self, asset, motion_id: str) -> str:
        return self.get_nested_path(StorageFolder.ENCODED_VIDEO, asset.owner_id, f"{motion_id}-MP.mp4")

    def is_android_motion_path(self, original_path: str) -> bool:
        base = self.get_base_folder(StorageFolder.ENCODED_VIDEO)
        return original_path.startswith(base.rstrip('/') + '/')

    def is_media_path(self, path: str) -> bool:
        """True for remote paths and for local paths under the media location."""
        if not path.startswith('/'):
            return is_remote_path(path)
        if self.is_remote:
            return False
        resolved = os.path.abspath(path).rstrip('/') + '/'
        root = os.path.abspath(self.media_location).rstrip('/') + '/'
        return resolved.startswith(root)

    @staticmethod
    def get_temp_path_in_dir(directory: str) -> str:
        return os.path.join(directory, f"{uuid4()}.tmp")
