"""Factory for configuring file storage backends from environment variables."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from .local import LocalStorageBackend
from .s3 import S3ClientCache, S3Credentials, S3StorageBackend


@dataclass(frozen=True)
class StorageSettings:
    media_location: str
    staging_dir: str
    hash_verification_enabled: bool = True
    multipart_threshold_mb: int = 8
    # provider name ('tigris' | 'wasabi' | 'aws') -> credentials
    credentials: Dict[str, S3Credentials] = field(default_factory=dict)


def _credentials(access_key_id: Optional[str], secret_access_key: Optional[str]) -> Optional[S3Credentials]:
    if not access_key_id or not secret_access_key:
        return None
    return S3Credentials(access_key_id=access_key_id, secret_access_key=secret_access_key)


def load_storage_settings_from_env() -> StorageSettings:
    from mediavault.config import app_config

    credentials = {
        'tigris': _credentials(app_config.TIGRIS_ACCESS_KEY_ID, app_config.TIGRIS_SECRET_ACCESS_KEY),
        'wasabi': _credentials(app_config.WASABI_ACCESS_KEY_ID, app_config.WASABI_SECRET_ACCESS_KEY),
        'aws': _credentials(app_config.AWS_ACCESS_KEY_ID, app_config.AWS_SECRET_ACCESS_KEY),
    }
    return StorageSettings(
        media_location=app_config.MEDIA_LOCATION,
        staging_dir=app_config.FILE_STORAGE_STAGING_DIR,
        hash_verification_enabled=app_config.HASH_VERIFICATION_ENABLED,
        multipart_threshold_mb=app_config.S3_MULTIPART_THRESHOLD_MB,
        credentials={name: creds for name, creds in credentials.items() if creds},
    )


def build_local_backend(settings: StorageSettings) -> LocalStorageBackend:
    return LocalStorageBackend()


def build_s3_backend(settings: StorageSettings) -> S3StorageBackend:
    cache = S3ClientCache(settings.credentials)
    return S3StorageBackend(cache, multipart_threshold_mb=settings.multipart_threshold_mb)
