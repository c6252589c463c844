"""S3-compatible storage backend (AWS S3 / Wasabi / Tigris)."""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Dict, Optional, Tuple

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from mediavault.utils.file_hash import hash_stream

from .exceptions import ConfigurationError, StorageAlreadyExistsError, StorageNotFoundError, TransientIOError
from .interfaces import FileStat, ObjectHead, ReadStream, RemotePath

logger = logging.getLogger(__name__)

# Custom object metadata used to carry POSIX timestamps, since stores
# cannot set LastModified directly.
META_LAST_MODIFIED = 'last-modified'
META_LAST_ACCESSED = 'last-accessed'

TIGRIS_HOSTS = ('fly.storage.tigris.dev', 't3.storage.dev')
_WASABI_HOST = re.compile(r'^s3\.([^.]+)\.wasabisys\.com$')
_AWS_HOST = re.compile(r'^s3\.([^.]+)\.amazonaws\.com$')


@dataclass(frozen=True)
class S3Credentials:
    access_key_id: str
    secret_access_key: str


def resolve_s3_credentials(host: str, credentials: Dict[str, S3Credentials]) -> Tuple[S3Credentials, str]:
    """
    Get credentials and region based on the endpoint hostname.

    - Tigris (fly.storage.tigris.dev, t3.storage.dev): region 'auto'
    - Wasabi (*.wasabisys.com): region taken from s3.<region>.wasabisys.com
    - Amazon S3 (*.amazonaws.com): region taken from s3.<region>.amazonaws.com

    Raises:
        ConfigurationError: host matches no provider, or the provider has no credentials
    """
    if host in TIGRIS_HOSTS:
        provider, region = 'tigris', 'auto'
    elif host.endswith('.wasabisys.com'):
        match = _WASABI_HOST.match(host)
        provider, region = 'wasabi', match.group(1) if match else 'us-east-1'
    elif host.endswith('.amazonaws.com'):
        match = _AWS_HOST.match(host)
        provider, region = 'aws', match.group(1) if match else 'us-east-1'
    else:
        raise ConfigurationError(
            f"Unsupported S3 endpoint: {host}. Supported providers: Tigris ({', '.join(TIGRIS_HOSTS)}), "
            f"Wasabi (*.wasabisys.com), AWS S3 (*.amazonaws.com)"
        )

    creds = credentials.get(provider)
    if not creds:
        raise ConfigurationError(
            f"{provider} credentials not found for endpoint: {host}. "
            f"Set the environment variables for this storage provider."
        )
    return creds, region


def create_boto3_client(host: str, credentials: S3Credentials, region: str):
    return boto3.client(
        's3',
        region_name=region,
        endpoint_url=f"https://{host}",
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        # Path-style addressing is required by most S3-compatible services
        config=Config(signature_version='s3v4', s3={'addressing_style': 'path'}),
    )


class S3ClientCache:
    """
    One boto3 client per endpoint host, created on first use and kept for the
    lifetime of the owning gateway. Clients are never replaced once built and
    are shared across threads.
    """

    def __init__(self, credentials: Dict[str, S3Credentials],
                 client_factory: Callable[[str, S3Credentials, str], object] = create_boto3_client):
        self._credentials = dict(credentials)
        self._client_factory = client_factory
        self._clients: Dict[str, object] = {}
        self._lock = threading.Lock()

    def get(self, host: str):
        client = self._clients.get(host)
        if client is not None:
            return client
        with self._lock:
            client = self._clients.get(host)
            if client is None:
                creds, region = resolve_s3_credentials(host, self._credentials)
                client = self._client_factory(host, creds, region)
                self._clients[host] = client
                logger.info(f"S3 client created for endpoint: {host} (region: {region})")
            return client

    def __contains__(self, host: str) -> bool:
        return host in self._clients

    def __len__(self) -> int:
        return len(self._clients)


def _error_status(exc: ClientError) -> Tuple[Optional[int], str]:
    response = getattr(exc, 'response', {}) or {}
    status_code = (response.get('ResponseMetadata') or {}).get('HTTPStatusCode')
    error_code = str((response.get('Error') or {}).get('Code') or '')
    return status_code, error_code


def _is_not_found(exc: ClientError) -> bool:
    status_code, error_code = _error_status(exc)
    return status_code == 404 or error_code in ('404', 'NoSuchKey', 'NotFound')


def _is_precondition_failed(exc: ClientError) -> bool:
    status_code, error_code = _error_status(exc)
    return status_code == 412 or error_code in ('412', 'PreconditionFailed')


@contextmanager
def translate_client_errors(path: RemotePath):
    """Re-raise botocore failures from the wrapped block as storage error kinds."""
    display = f"{path.host}/{path.bucket}/{path.key}"
    try:
        yield
    except ClientError as exc:
        if _is_not_found(exc):
            raise StorageNotFoundError(f"Object not found: {display}", display) from exc
        if _is_precondition_failed(exc):
            raise StorageAlreadyExistsError(f"Object already exists: {display}", display) from exc
        raise TransientIOError(f"S3 request failed for {display}: {exc}", display) from exc
    except BotoCoreError as exc:
        raise TransientIOError(f"S3 request failed for {display}: {exc}", display) from exc


def _parse_iso(value: Optional[str], fallback: datetime) -> datetime:
    if not value:
        return fallback
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return fallback
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class S3StorageBackend:
    """Get/Put/Head/Copy/Delete against S3-compatible endpoints."""

    def __init__(self, clients: S3ClientCache, multipart_threshold_mb: int = 8):
        self.clients = clients
        self.transfer_config = TransferConfig(multipart_threshold=multipart_threshold_mb * 1024 * 1024)

    def get_object(self, path: RemotePath, mime_type: Optional[str] = None) -> ReadStream:
        client = self.clients.get(path.host)
        with translate_client_errors(path):
            response = client.get_object(Bucket=path.bucket, Key=path.key)
        return ReadStream(
            stream=response['Body'],
            length=response.get('ContentLength'),
            type=mime_type or response.get('ContentType'),
        )

    def read_file(self, path: RemotePath, offset: Optional[int] = None, length: Optional[int] = None) -> bytes:
        if length == 0:
            return b''
        client = self.clients.get(path.host)
        params = {'Bucket': path.bucket, 'Key': path.key}
        if offset is not None or length is not None:
            start = offset or 0
            end = '' if length is None else str(start + length - 1)
            params['Range'] = f"bytes={start}-{end}"
        with translate_client_errors(path):
            response = client.get_object(**params)
            return response['Body'].read()

    def put_object(self, path: RemotePath, data: bytes, content_type: Optional[str] = None,
                   exclusive: bool = False) -> None:
        """Upload a buffer. With ``exclusive`` the write is conditional on the key being absent."""
        client = self.clients.get(path.host)
        params = {'Bucket': path.bucket, 'Key': path.key, 'Body': data}
        if content_type:
            params['ContentType'] = content_type
        if exclusive:
            params['IfNoneMatch'] = '*'
        with translate_client_errors(path):
            client.put_object(**params)

    def upload_stream(self, stream: BinaryIO, path: RemotePath) -> None:
        """Upload a stream, switching to multi-part above the transfer threshold."""
        client = self.clients.get(path.host)
        logger.debug(f"Uploading stream to S3: bucket={path.bucket}, key={path.key}")
        with translate_client_errors(path):
            client.upload_fileobj(stream, path.bucket, path.key, Config=self.transfer_config)

    def upload_file(self, local_path: str, path: RemotePath) -> None:
        client = self.clients.get(path.host)
        with translate_client_errors(path):
            client.upload_file(local_path, path.bucket, path.key, Config=self.transfer_config)

    def download_file(self, path: RemotePath, local_path: str) -> None:
        client = self.clients.get(path.host)
        with translate_client_errors(path):
            client.download_file(path.bucket, path.key, local_path, Config=self.transfer_config)

    def head(self, path: RemotePath) -> ObjectHead:
        client = self.clients.get(path.host)
        with translate_client_errors(path):
            data = client.head_object(Bucket=path.bucket, Key=path.key)
        return ObjectHead(
            size=data.get('ContentLength') or 0,
            last_modified=data.get('LastModified'),
            content_type=data.get('ContentType'),
            metadata=data.get('Metadata') or {},
            etag=(data.get('ETag') or '').strip('"') or None,
        )

    def stat(self, path: RemotePath) -> FileStat:
        head = self.head(path)
        native = head.last_modified or datetime.now(timezone.utc)
        metadata = head.metadata or {}
        return FileStat(
            size=head.size,
            mtime=_parse_iso(metadata.get(META_LAST_MODIFIED), native),
            atime=_parse_iso(metadata.get(META_LAST_ACCESSED), native),
            birthtime=native,
            is_directory=False,
        )

    def exists(self, path: RemotePath) -> bool:
        try:
            self.head(path)
            return True
        except StorageNotFoundError:
            return False

    def copy_object(self, source: RemotePath, target: RemotePath, metadata: Optional[dict] = None,
                    content_type: Optional[str] = None) -> None:
        """Server-side copy. Passing ``metadata`` replaces the target's metadata."""
        client = self.clients.get(target.host)
        params = {
            'Bucket': target.bucket,
            'Key': target.key,
            'CopySource': {'Bucket': source.bucket, 'Key': source.key},
        }
        if metadata is not None:
            params['Metadata'] = metadata
            params['MetadataDirective'] = 'REPLACE'
            if content_type:
                params['ContentType'] = content_type
        with translate_client_errors(source):
            client.copy_object(**params)

    def delete_object(self, path: RemotePath) -> None:
        client = self.clients.get(path.host)
        with translate_client_errors(path):
            client.delete_object(Bucket=path.bucket, Key=path.key)

    def utimes(self, path: RemotePath, atime: datetime, mtime: datetime) -> None:
        """Store timestamps in custom metadata with a metadata-replacing self-copy."""
        head = self.head(path)
        metadata = dict(head.metadata or {})
        metadata[META_LAST_ACCESSED] = atime.isoformat()
        metadata[META_LAST_MODIFIED] = mtime.isoformat()
        self.copy_object(path, path, metadata=metadata, content_type=head.content_type)

    def hash_object(self, path: RemotePath) -> bytes:
        body = self.get_object(path).stream
        try:
            with translate_client_errors(path):
                return hash_stream(body)
        finally:
            body.close()
