"""Object store backends for file contents.

Two interchangeable backends implement :class:`ObjectStore`:

- :class:`NetworkObjectStore` talks to S3-compatible storage (MinIO, R2,
  AWS) through django-storages and boto3 and hands out presigned URLs.
- :class:`LocalObjectStore` keeps bytes in a local directory and hands
  out signed URLs that are served by this process.

The backend is selected once at startup by :func:`build_object_store`
and passed to the services that need it. Nothing in this module touches
file metadata.
"""

import abc
import contextlib
import hashlib
import logging
import shutil
import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, BinaryIO, Final, Self, final, override

from botocore.exceptions import BotoCoreError, ClientError
from django.apps import apps
from django.conf import settings
from django.core import signing
from django.core.exceptions import ImproperlyConfigured
from django.core.files.storage import FileSystemStorage
from django.urls import reverse
from django.utils import timezone
from django.utils.http import content_disposition_header
from storages.backends.s3 import S3Storage

from server.apps.files.exceptions import (
    InvalidInputError,
    ResourceNotFoundError,
    StorageUnavailableError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

_DEFAULT_HANDLE_TTL: Final = 3600
_DEFAULT_CHUNK_SIZE: Final = 64 * 1024

# botocore error codes
_MISSING_CODES: Final = frozenset(('404', 'NoSuchKey', 'NoSuchUpload', 'NotFound'))
_REJECTED_PART_CODES: Final = frozenset((
    'InvalidPart',
    'InvalidPartOrder',
    'EntityTooSmall',
))

_MULTIPART_STAGING_DIR: Final = '.multipart'
_HANDLE_SALT: Final = 'server.apps.files.transfer-handle'


@dataclass(frozen=True)
class TransferHandle:
    """Time-limited URL permitting direct client-to-store transfer."""

    url: str
    method: str
    expires_at: datetime
    part_number: int | None = None


@dataclass(frozen=True)
class MultipartPlan:
    """Backend multipart upload id plus one handle per part."""

    upload_id: str
    handles: tuple[TransferHandle, ...]


@dataclass(frozen=True)
class PartTag:
    """Part number and the tag (ETag) the store returned for it."""

    part_number: int
    tag: str


def check_part_order(parts: Sequence[PartTag]) -> None:
    """Ensure parts are non-empty and strictly ascending by number.

    Args:
        parts: Parts as supplied by the client.

    Raises:
        InvalidInputError: If the list is empty or out of order.
    """
    if not parts:
        raise InvalidInputError('At least one part is required')

    previous = 0
    for part in parts:
        if part.part_number <= previous:
            raise InvalidInputError(
                'Parts must be listed in ascending part number order',
            )
        previous = part.part_number


class ObjectStore(abc.ABC):
    """Uniform interface over a backing byte-storage medium."""

    @classmethod
    @abc.abstractmethod
    def from_settings(cls) -> Self:
        """Build the backend from Django settings."""

    @abc.abstractmethod
    def put(self, key: str, data: bytes | BinaryIO, content_type: str) -> None:
        """Store `data` under `key`."""

    @abc.abstractmethod
    def get(self, key: str) -> bytes:
        """Read the whole object; raises ResourceNotFoundError."""

    @abc.abstractmethod
    def iter_chunks(
        self,
        key: str,
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
    ) -> Iterator[bytes]:
        """Stream the object in chunks; raises ResourceNotFoundError."""

    @abc.abstractmethod
    def size(self, key: str) -> int:
        """Byte length of the stored object."""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Delete the object. Deleting a missing key is not an error."""

    @abc.abstractmethod
    def issue_put_access(self, key: str, content_type: str) -> TransferHandle:
        """Handle allowing a client to upload the object directly."""

    @abc.abstractmethod
    def issue_get_access(
        self,
        key: str,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> TransferHandle:
        """Handle allowing a client to download the object directly."""

    @abc.abstractmethod
    def begin_multipart(
        self,
        key: str,
        content_type: str,
        part_count: int,
    ) -> MultipartPlan:
        """Start a multipart upload and issue one handle per part."""

    @abc.abstractmethod
    def complete_multipart(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[PartTag],
    ) -> None:
        """Assemble uploaded parts into the final object."""

    @abc.abstractmethod
    def abort_multipart(self, key: str, upload_id: str) -> None:
        """Discard uploaded parts. Unknown upload ids are ignored."""

    def exists(self, key: str) -> bool:
        """Check whether an object is stored under `key`."""
        try:
            self.size(key)
        except ResourceNotFoundError:
            return False
        return True

    def _expiry(self, ttl: int) -> datetime:
        return timezone.now() + timedelta(seconds=ttl)


@contextlib.contextmanager
def _translate_boto_errors(operation: str, key: str) -> Iterator[None]:
    """Map botocore failures onto the file service error kinds."""
    try:
        yield
    except ClientError as error:
        code = str(error.response.get('Error', {}).get('Code', ''))
        if code in _MISSING_CODES:
            raise ResourceNotFoundError(
                f'Object not found in storage: {key}',
            ) from error
        if code in _REJECTED_PART_CODES:
            raise InvalidInputError(
                f'Storage rejected the uploaded parts ({code})',
            ) from error
        logger.exception('Storage %s failed: %s', operation, key)
        raise StorageUnavailableError(
            f'Storage {operation} failed for {key}',
        ) from error
    except BotoCoreError as error:
        logger.exception('Storage %s failed: %s', operation, key)
        raise StorageUnavailableError(
            f'Storage {operation} failed for {key}',
        ) from error


@final
class NetworkObjectStore(ObjectStore):
    """S3-compatible object store.

    Connection settings and credentials are owned by a django-storages
    ``S3Storage``; object operations go through its boto3 client so
    multipart uploads and presigned URLs are available.
    """

    def __init__(
        self,
        storage: S3Storage,
        handle_ttl: int = _DEFAULT_HANDLE_TTL,
    ) -> None:
        """Initialize store.

        Args:
            storage: Configured django-storages S3 backend.
            handle_ttl: Lifetime of presigned URLs in seconds.
        """
        self._storage = storage
        self._handle_ttl = handle_ttl

    @override
    @classmethod
    def from_settings(cls) -> Self:
        return cls(
            S3Storage(**settings.S3_STORAGE_OPTIONS),
            handle_ttl=settings.TRANSFER_HANDLE_TTL,
        )

    @property
    def _client(self) -> Any:
        return self._storage.connection.meta.client

    @property
    def _bucket(self) -> str:
        return self._storage.bucket_name

    @override
    def put(self, key: str, data: bytes | BinaryIO, content_type: str) -> None:
        with _translate_boto_errors('put', key):
            logger.info('Uploading object to storage: %s', key)
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            logger.info('Successfully uploaded object: %s', key)

    @override
    def get(self, key: str) -> bytes:
        with _translate_boto_errors('get', key):
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response['Body'].read()

    @override
    def iter_chunks(
        self,
        key: str,
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
    ) -> Iterator[bytes]:
        with _translate_boto_errors('get', key):
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            yield from response['Body'].iter_chunks(chunk_size)

    @override
    def size(self, key: str) -> int:
        with _translate_boto_errors('head', key):
            response = self._client.head_object(Bucket=self._bucket, Key=key)
            return int(response['ContentLength'])

    @override
    def delete(self, key: str) -> None:
        with _translate_boto_errors('delete', key):
            logger.info('Deleting object from storage: %s', key)
            self._client.delete_object(Bucket=self._bucket, Key=key)
            logger.info('Successfully deleted object: %s', key)

    @override
    def issue_put_access(self, key: str, content_type: str) -> TransferHandle:
        with _translate_boto_errors('presign', key):
            url = self._client.generate_presigned_url(
                'put_object',
                Params={
                    'Bucket': self._bucket,
                    'Key': key,
                    'ContentType': content_type,
                },
                ExpiresIn=self._handle_ttl,
            )
        return TransferHandle(url, 'PUT', self._expiry(self._handle_ttl))

    @override
    def issue_get_access(
        self,
        key: str,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> TransferHandle:
        params = {'Bucket': self._bucket, 'Key': key}
        if filename:
            params['ResponseContentDisposition'] = content_disposition_header(
                as_attachment=True,
                filename=filename,
            )
        if content_type:
            params['ResponseContentType'] = content_type

        with _translate_boto_errors('presign', key):
            url = self._client.generate_presigned_url(
                'get_object',
                Params=params,
                ExpiresIn=self._handle_ttl,
            )
        return TransferHandle(url, 'GET', self._expiry(self._handle_ttl))

    @override
    def begin_multipart(
        self,
        key: str,
        content_type: str,
        part_count: int,
    ) -> MultipartPlan:
        with _translate_boto_errors('multipart init', key):
            response = self._client.create_multipart_upload(
                Bucket=self._bucket,
                Key=key,
                ContentType=content_type,
            )
            upload_id = response['UploadId']
            expires_at = self._expiry(self._handle_ttl)
            handles = tuple(
                TransferHandle(
                    self._client.generate_presigned_url(
                        'upload_part',
                        Params={
                            'Bucket': self._bucket,
                            'Key': key,
                            'UploadId': upload_id,
                            'PartNumber': part_number,
                        },
                        ExpiresIn=self._handle_ttl,
                    ),
                    'PUT',
                    expires_at,
                    part_number,
                )
                for part_number in range(1, part_count + 1)
            )

        logger.info(
            'Multipart upload started: %s (%d parts)',
            key,
            part_count,
        )
        return MultipartPlan(upload_id, handles)

    @override
    def complete_multipart(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[PartTag],
    ) -> None:
        check_part_order(parts)
        with _translate_boto_errors('multipart complete', key):
            self._client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    'Parts': [
                        {'ETag': part.tag, 'PartNumber': part.part_number}
                        for part in parts
                    ],
                },
            )
        logger.info('Multipart upload completed: %s', key)

    @override
    def abort_multipart(self, key: str, upload_id: str) -> None:
        try:
            with _translate_boto_errors('multipart abort', key):
                self._client.abort_multipart_upload(
                    Bucket=self._bucket,
                    Key=key,
                    UploadId=upload_id,
                )
        except ResourceNotFoundError:
            logger.debug('Multipart upload already gone: %s', upload_id)
            return
        logger.info('Multipart upload aborted: %s', key)


@dataclass(frozen=True)
class HandleGrant:
    """Decoded local transfer handle."""

    operation: str
    key: str
    content_type: str = ''
    filename: str = ''
    upload_id: str = ''
    part_number: int = 0


@contextlib.contextmanager
def _translate_os_errors(operation: str, key: str) -> Iterator[None]:
    """Map filesystem failures onto the file service error kinds."""
    try:
        yield
    except FileNotFoundError as error:
        raise ResourceNotFoundError(
            f'Object not found in storage: {key}',
        ) from error
    except OSError as error:
        logger.exception('Local storage %s failed: %s', operation, key)
        raise StorageUnavailableError(
            f'Storage {operation} failed for {key}',
        ) from error


def _md5_hex(path: Path) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    with path.open('rb') as part_file:
        for chunk in iter(lambda: part_file.read(_DEFAULT_CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


@final
class LocalObjectStore(ObjectStore):
    """Object store on the local filesystem.

    Transfer handles are URLs into this process, signed with Django's
    signing framework. Multipart parts are staged under
    ``.multipart/<upload_id>/`` and each part's tag is the MD5 of its
    bytes, mirroring S3 ETags so clients behave the same on both
    backends.
    """

    def __init__(
        self,
        storage: FileSystemStorage,
        handle_ttl: int = _DEFAULT_HANDLE_TTL,
    ) -> None:
        """Initialize store.

        Args:
            storage: Filesystem storage rooted at the storage directory.
            handle_ttl: Lifetime of signed URLs in seconds.
        """
        self._storage = storage
        self._handle_ttl = handle_ttl
        self._signer = signing.TimestampSigner(salt=_HANDLE_SALT)

    @override
    @classmethod
    def from_settings(cls) -> Self:
        return cls(
            FileSystemStorage(location=settings.LOCAL_STORAGE_PATH),
            handle_ttl=settings.TRANSFER_HANDLE_TTL,
        )

    def _path(self, key: str) -> Path:
        # FileSystemStorage.path() rejects keys escaping the root
        return Path(self._storage.path(key))

    def _staging_dir(self, upload_id: str) -> Path:
        return self._path(f'{_MULTIPART_STAGING_DIR}/{upload_id}')

    def _part_path(self, upload_id: str, part_number: int) -> Path:
        return self._staging_dir(upload_id) / f'{part_number:05d}'

    @override
    def put(self, key: str, data: bytes | BinaryIO, content_type: str) -> None:
        target = self._path(key)
        with _translate_os_errors('put', key):
            logger.info('Writing object to local storage: %s', key)
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open('wb') as destination:
                if isinstance(data, bytes):
                    destination.write(data)
                else:
                    shutil.copyfileobj(data, destination)

    @override
    def get(self, key: str) -> bytes:
        with _translate_os_errors('get', key):
            return self._path(key).read_bytes()

    @override
    def iter_chunks(
        self,
        key: str,
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
    ) -> Iterator[bytes]:
        with _translate_os_errors('get', key):
            with self._path(key).open('rb') as source:
                yield from iter(lambda: source.read(chunk_size), b'')

    @override
    def size(self, key: str) -> int:
        with _translate_os_errors('stat', key):
            return self._path(key).stat().st_size

    @override
    def delete(self, key: str) -> None:
        with _translate_os_errors('delete', key):
            logger.info('Deleting object from local storage: %s', key)
            self._storage.delete(key)

    @override
    def issue_put_access(self, key: str, content_type: str) -> TransferHandle:
        token = self._signer.sign_object({
            'op': 'put',
            'key': key,
            'ct': content_type,
        })
        return TransferHandle(
            reverse('files:local-transfer', kwargs={'token': token}),
            'PUT',
            self._expiry(self._handle_ttl),
        )

    @override
    def issue_get_access(
        self,
        key: str,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> TransferHandle:
        token = self._signer.sign_object({
            'op': 'get',
            'key': key,
            'ct': content_type or '',
            'fn': filename or '',
        })
        return TransferHandle(
            reverse('files:local-transfer', kwargs={'token': token}),
            'GET',
            self._expiry(self._handle_ttl),
        )

    @override
    def begin_multipart(
        self,
        key: str,
        content_type: str,
        part_count: int,
    ) -> MultipartPlan:
        upload_id = uuid.uuid4().hex
        with _translate_os_errors('multipart init', key):
            self._staging_dir(upload_id).mkdir(parents=True)

        expires_at = self._expiry(self._handle_ttl)
        handles = []
        for part_number in range(1, part_count + 1):
            token = self._signer.sign_object({
                'op': 'part',
                'key': key,
                'uid': upload_id,
                'pn': part_number,
            })
            handles.append(TransferHandle(
                reverse('files:local-transfer', kwargs={'token': token}),
                'PUT',
                expires_at,
                part_number,
            ))

        logger.info(
            'Local multipart upload started: %s (%d parts)',
            key,
            part_count,
        )
        return MultipartPlan(upload_id, tuple(handles))

    def write_part(self, upload_id: str, part_number: int, data: bytes) -> str:
        """Stage one part of a multipart upload.

        Args:
            upload_id: Multipart upload id from `begin_multipart`.
            part_number: 1-based part number.
            data: Part bytes.

        Returns:
            Part tag (MD5 hex digest) to send back on completion.

        Raises:
            ResourceNotFoundError: If the upload is unknown.
        """
        staging = self._staging_dir(upload_id)
        if not staging.is_dir():
            raise ResourceNotFoundError(f'Unknown upload: {upload_id}')

        part_path = self._part_path(upload_id, part_number)
        with _translate_os_errors('part write', str(part_path)):
            part_path.write_bytes(data)
        return hashlib.md5(data, usedforsecurity=False).hexdigest()

    @override
    def complete_multipart(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[PartTag],
    ) -> None:
        check_part_order(parts)
        staging = self._staging_dir(upload_id)
        if not staging.is_dir():
            raise ResourceNotFoundError(f'Unknown upload: {upload_id}')

        # Verify every part before writing anything
        with _translate_os_errors('multipart verify', key):
            for part in parts:
                part_path = self._part_path(upload_id, part.part_number)
                if not part_path.is_file():
                    raise InvalidInputError(
                        f'Part {part.part_number} was not uploaded',
                    )
                if _md5_hex(part_path) != part.tag.strip('"'):
                    raise InvalidInputError(
                        f'Tag mismatch for part {part.part_number}',
                    )

        target = self._path(key)
        with _translate_os_errors('multipart complete', key):
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open('wb') as destination:
                for part in parts:
                    part_path = self._part_path(upload_id, part.part_number)
                    with part_path.open('rb') as source:
                        shutil.copyfileobj(source, destination)
            shutil.rmtree(staging)

        logger.info('Local multipart upload completed: %s', key)

    @override
    def abort_multipart(self, key: str, upload_id: str) -> None:
        staging = self._staging_dir(upload_id)
        if not staging.is_dir():
            logger.debug('Multipart upload already gone: %s', upload_id)
            return
        with _translate_os_errors('multipart abort', key):
            shutil.rmtree(staging)
        logger.info('Local multipart upload aborted: %s', key)

    def resolve_handle(self, token: str) -> HandleGrant:
        """Decode a signed transfer handle token.

        Args:
            token: Token embedded in a handle URL.

        Returns:
            The operation the handle grants.

        Raises:
            UnauthorizedError: If the handle has expired.
            ResourceNotFoundError: If the token is forged or malformed.
        """
        try:
            payload = self._signer.unsign_object(
                token,
                max_age=self._handle_ttl,
            )
        except signing.SignatureExpired as error:
            raise UnauthorizedError('Transfer handle expired') from error
        except signing.BadSignature as error:
            raise ResourceNotFoundError('Unknown transfer handle') from error

        return HandleGrant(
            operation=payload['op'],
            key=payload['key'],
            content_type=payload.get('ct', ''),
            filename=payload.get('fn', ''),
            upload_id=payload.get('uid', ''),
            part_number=payload.get('pn', 0),
        )


_BACKENDS: Final[dict[str, type[ObjectStore]]] = {
    'local': LocalObjectStore,
    'networked': NetworkObjectStore,
    's3': NetworkObjectStore,
}


def build_object_store(driver: str | None = None) -> ObjectStore:
    """Build the object store selected by configuration.

    Args:
        driver: Backend name, defaults to ``settings.STORAGE_DRIVER``.

    Returns:
        Configured object store.

    Raises:
        ImproperlyConfigured: If the driver name is unknown.
    """
    driver_name = (driver or settings.STORAGE_DRIVER).lower()
    try:
        backend = _BACKENDS[driver_name]
    except KeyError as error:
        raise ImproperlyConfigured(
            f'Unknown STORAGE_DRIVER {driver_name!r}, '
            f'expected one of: {", ".join(sorted(_BACKENDS))}',
        ) from error

    logger.info('Using %s object store', driver_name)
    return backend.from_settings()


def get_object_store() -> ObjectStore:
    """Get the object store built when the files app was loaded."""
    return apps.get_app_config('files').object_store
