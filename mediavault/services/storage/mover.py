"""
Crash-safe relocation of tracked files.

A move is recorded as a FileMove row before anything is touched, and the
row is only deleted after the new path is verified and committed to the
owning entity. The source file is never deleted until a verified copy
exists at the destination. A later call for the same entity and path type
finds the row and finishes or abandons the interrupted move.

Callers must serialize moves per (entity, path type); two first-time
callers racing before either has recorded a row are not detected here.
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from .exceptions import CrossDeviceError, StorageError, VerificationFailure
from .layout import AssetPathType, PersonPathType, StorageFolder, StorageLayout
from .locator import is_remote_path
from .repository import FileMoveRepository
from .service import StorageService

logger = logging.getLogger(__name__)

PathType = Union[AssetPathType, PersonPathType]


class MoveState(str, Enum):
    SKIPPED = 'skipped'
    COMMITTED = 'committed'
    CLEANED = 'cleaned'
    ABORTED = 'aborted'


@dataclass
class AssetInfo:
    size_in_bytes: int
    checksum: Optional[bytes] = None


@dataclass
class MoveRequest:
    entity_id: str
    path_type: PathType
    old_path: Optional[str]
    new_path: str
    asset_info: Optional[AssetInfo] = None


@dataclass
class MoveResult:
    state: MoveState
    # Path the owning entity should be considered to have after the call
    path: Optional[str]
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state != MoveState.ABORTED


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode('ascii')


class MoveCoordinator:
    """Moves tracked files between storage locations without losing data."""

    def __init__(self, storage: StorageService, layout: StorageLayout, moves: FileMoveRepository,
                 save_path: Callable[[PathType, str, str], None],
                 hash_verification_enabled: Optional[bool] = None):
        """
        Args:
            storage: gateway used for every file operation
            layout: canonical path computations for the convenience movers
            moves: durable FileMove store
            save_path: ``save_path(path_type, entity_id, new_path)`` persists the
                committed path into the owning entity
            hash_verification_enabled: compare SHA-1 checksums after copies;
                defaults to the storage settings flag
        """
        self.storage = storage
        self.layout = layout
        self.moves = moves
        self.save_path = save_path
        if hash_verification_enabled is None:
            hash_verification_enabled = storage.settings.hash_verification_enabled
        self.hash_verification_enabled = hash_verification_enabled

    # --- convenience movers ---

    def move_asset_image(self, asset, path_type: AssetPathType, image_format: str) -> MoveResult:
        path_type = AssetPathType(path_type)
        old_file = next((f for f in getattr(asset, 'files', None) or []
                         if getattr(f.type, 'value', f.type) == path_type.value), None)
        return self.move_file(MoveRequest(
            entity_id=asset.id,
            path_type=path_type,
            old_path=old_file.path if old_file else None,
            new_path=self.layout.get_image_path(asset, path_type, image_format),
        ))

    def move_asset_video(self, asset) -> MoveResult:
        return self.move_file(MoveRequest(
            entity_id=asset.id,
            path_type=AssetPathType.ENCODED_VIDEO,
            old_path=asset.encoded_video_path,
            new_path=self.layout.get_encoded_video_path(asset),
        ))

    def move_person_file(self, person, path_type: PersonPathType) -> MoveResult:
        if PersonPathType(path_type) != PersonPathType.FACE:
            raise ValueError(f"Unsupported person path type: {path_type}")
        return self.move_file(MoveRequest(
            entity_id=person.id,
            path_type=PersonPathType.FACE,
            old_path=person.thumbnail_path,
            new_path=self.layout.get_person_thumbnail_path(person),
        ))

    def remove_empty_dirs(self, folder: StorageFolder) -> None:
        self.storage.remove_empty_dirs(self.layout.get_base_folder(folder))

    def ensure_folders(self, path: str) -> None:
        # Object keys need no parent directories
        if not is_remote_path(path):
            self.storage.mkdir(os.path.dirname(path))

    # --- protocol ---

    def move_file(self, request: MoveRequest) -> MoveResult:
        entity_id, path_type = request.entity_id, request.path_type
        old_path, new_path, asset_info = request.old_path, request.new_path, request.asset_info
        if not old_path or old_path == new_path:
            return MoveResult(MoveState.SKIPPED, old_path)

        if path_type == AssetPathType.ORIGINAL and asset_info is None:
            return self._abort(request, f"Missing asset info for {entity_id}")

        self.ensure_folders(new_path)

        move = self.moves.get_by_entity(entity_id, path_type)
        if move:
            logger.info(f"Attempting to finish incomplete move: {move.old_path} => {move.new_path}")
            old_exists = self.storage.exists(move.old_path)
            new_exists = self.storage.exists(move.new_path)

            if old_exists:
                # A leftover copy at the new location is treated as incomplete
                actual_path = move.old_path
                if new_exists:
                    logger.info(f"File exists at both locations, continuing from {move.old_path}")
            elif new_exists:
                actual_path = move.new_path
                try:
                    self._verify(move.new_path, asset_info)
                except StorageError as exc:
                    logger.error(f"Skipping move as file verification failed, old file is missing "
                                 f"and new file is different to what was expected: {exc}")
                    return self._abort(request, f"Verification of {move.new_path} failed")
            else:
                logger.critical(f"Unable to complete move of {entity_id}/{getattr(path_type, 'value', path_type)}. "
                                f"File does not exist at either location: {move.old_path}, {move.new_path}")
                return self._abort(request, 'File missing at both locations')

            logger.info(f"Found file at {'new' if actual_path == move.new_path else 'old'} location")
            move = self.moves.update(move.id, old_path=actual_path, new_path=new_path)
        else:
            move = self.moves.create(entity_id, path_type, old_path, new_path)

        if move.old_path != new_path:
            try:
                logger.debug(f"Attempting to rename file: {move.old_path} => {new_path}")
                self.storage.rename(move.old_path, new_path)
            except CrossDeviceError:
                logger.debug('Unable to rename file. Falling back to copy, verify and delete')
                failure = self._copy_verify_delete(request, move.old_path, new_path)
                if failure is not None:
                    return failure
            except StorageError as exc:
                logger.warning(f"Unable to complete move. Error renaming file: {exc}")
                return self._abort(request, str(exc))

        self.save_path(path_type, entity_id, new_path)

        try:
            self.moves.delete(move.id)
        except Exception as exc:
            logger.warning(f"Move {move.id} committed but could not be removed, it will be reconciled later: {exc}")
            return MoveResult(MoveState.COMMITTED, new_path)

        logger.info(f"Moved {entity_id}/{getattr(path_type, 'value', path_type)} to {new_path}")
        return MoveResult(MoveState.CLEANED, new_path)

    def _copy_verify_delete(self, request: MoveRequest, source: str, target: str) -> Optional[MoveResult]:
        try:
            self.storage.copy_file(source, target)
        except StorageError as exc:
            logger.warning(f"Unable to complete move. Error copying file: {exc}")
            self._discard(target)
            return self._abort(request, str(exc))

        try:
            self._verify(target, request.asset_info, source_path=source)
        except StorageError as exc:
            logger.warning(f"Skipping move due to verification failure: {exc}")
            self._discard(target)
            return self._abort(request, str(exc))

        self._copy_timestamps(source, target)

        try:
            self.storage.unlink(source)
        except StorageError as exc:
            logger.warning(f"Unable to delete old file, it will now no longer be tracked: {exc}")
        return None

    def _verify(self, path: str, asset_info: Optional[AssetInfo], source_path: Optional[str] = None) -> None:
        """Raise VerificationFailure unless ``path`` matches the expected size and checksum."""
        if asset_info is not None:
            expected_size = asset_info.size_in_bytes
        elif source_path is not None:
            expected_size = self.storage.stat(source_path).size
        else:
            expected_size = None

        actual_size = self.storage.stat(path).size
        if expected_size is None:
            logger.warning(f"No expected size known for {path}, accepting {actual_size} bytes")
        else:
            logger.debug(f"File size check: {actual_size} === {expected_size}")
            if actual_size != expected_size:
                raise VerificationFailure(f"File size mismatch: {actual_size} !== {expected_size}", path,
                                          expected=expected_size, actual=actual_size)

        if self.hash_verification_enabled and asset_info is not None and asset_info.checksum:
            checksum = self.storage.hash_file(path)
            if checksum != asset_info.checksum:
                raise VerificationFailure(
                    f"File checksum mismatch: {_b64(checksum)} !== {_b64(asset_info.checksum)}", path,
                    expected=asset_info.checksum, actual=checksum)
            logger.debug(f"File checksum check: {_b64(checksum)} === {_b64(asset_info.checksum)}")

    def _copy_timestamps(self, source: str, target: str) -> None:
        try:
            st = self.storage.stat(source)
            self.storage.utimes(target, st.atime, st.mtime)
        except StorageError as exc:
            logger.warning(f"Unable to copy timestamps from {source} to {target}: {exc}")

    def _discard(self, path: str) -> None:
        try:
            self.storage.unlink(path)
        except StorageError as exc:
            logger.warning(f"Unable to remove unverified copy {path}: {exc}")

    def _abort(self, request: MoveRequest, reason: str) -> MoveResult:
        logger.warning(f"Move aborted for {request.entity_id}: {request.old_path} => {request.new_path} ({reason})")
        return MoveResult(MoveState.ABORTED, request.old_path, reason)
