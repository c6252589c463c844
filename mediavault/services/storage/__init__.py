"""Unified file storage supporting local and S3 backends, plus crash-safe moves."""

from .exceptions import (
    ConfigurationError,
    CrossDeviceError,
    MalformedPathError,
    StorageAlreadyExistsError,
    StorageError,
    StorageNotFoundError,
    TransientIOError,
    UnsupportedOperationError,
    VerificationFailure,
)
from .factory import StorageSettings, load_storage_settings_from_env
from .interfaces import DiskUsage, FileStat, MaterializedFile, ReadStream, RemotePath, UploadResult, WatchEvents
from .layout import AssetPathType, PersonPathType, StorageFolder, StorageLayout
from .locator import is_remote_path, parse_remote_path
from .mover import AssetInfo, MoveCoordinator, MoveRequest, MoveResult, MoveState
from .repository import FileMoveRepository
from .s3 import S3ClientCache, S3Credentials
from .service import StorageService

__all__ = [
    'ConfigurationError',
    'CrossDeviceError',
    'MalformedPathError',
    'StorageAlreadyExistsError',
    'StorageError',
    'StorageNotFoundError',
    'TransientIOError',
    'UnsupportedOperationError',
    'VerificationFailure',
    'StorageSettings',
    'load_storage_settings_from_env',
    'DiskUsage',
    'FileStat',
    'MaterializedFile',
    'ReadStream',
    'RemotePath',
    'UploadResult',
    'WatchEvents',
    'AssetPathType',
    'PersonPathType',
    'StorageFolder',
    'StorageLayout',
    'is_remote_path',
    'parse_remote_path',
    'AssetInfo',
    'MoveCoordinator',
    'MoveRequest',
    'MoveResult',
    'MoveState',
    'FileMoveRepository',
    'S3ClientCache',
    'S3Credentials',
    'StorageService',
]
