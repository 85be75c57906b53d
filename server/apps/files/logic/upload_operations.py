"""Upload coordinator: multipart and single-shot uploads.

An upload moves through ``initiated -> parts_in_flight -> completed``;
``aborted`` can be reached from any state that is not completed. The
provisional File row created on initialization has no checksum until
the upload completes.
"""

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Final, Self

from django.conf import settings
from django.core.files.base import File as DjangoFile
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from server.apps.audit.logic import record
from server.apps.files.exceptions import (
    ConflictError,
    InvalidInputError,
    ResourceNotFoundError,
)
from server.apps.files.infrastructure.metadata import (
    calculate_checksum,
    checksum_chunks,
    derive_storage_key,
    detect_mime_type,
    normalize_filename,
    split_filename,
)
from server.apps.files.infrastructure.storage import (
    ObjectStore,
    PartTag,
    TransferHandle,
    check_part_order,
)
from server.apps.files.logic.file_operations import get_file
from server.apps.files.logic.folder_operations import resolve_folder
from server.apps.files.models import (
    OPEN_UPLOAD_STATES,
    File,
    ResourceType,
    Upload,
    UploadState,
)

# User type for Django's dynamic user model
_User = Any

# S3 rejects non-final parts smaller than this
MIN_PART_SIZE: Final = 5 * 1024 * 1024

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadInit:
    """Everything a client needs to transfer the parts."""

    upload_id: str
    file_id: uuid.UUID
    part_size: int
    part_count: int
    handles: tuple[TransferHandle, ...]


@dataclass(frozen=True)
class UploadResult:
    """Finalized file and where its bytes live."""

    file: File
    storage_key: str


def _get_file_size(file_obj: BinaryIO | DjangoFile) -> int:
    """Get file size from file object.

    Args:
        file_obj: File-like object.

    Returns:
        File size in bytes.
    """
    if hasattr(file_obj, 'size'):
        return file_obj.size
    file_size = len(file_obj.read())
    file_obj.seek(0)
    return file_size


class UploadCoordinator:
    """Coordinates uploads between clients, object store and metadata."""

    def __init__(
        self,
        store: ObjectStore,
        part_size: int = MIN_PART_SIZE,
        max_parts: int = 10000,
    ) -> None:
        """Initialize coordinator.

        Args:
            store: Object store receiving the bytes.
            part_size: Preferred multipart part size in bytes.
            max_parts: Largest part count the store accepts.
        """
        self._store = store
        self._part_size = max(part_size, MIN_PART_SIZE)
        self._max_parts = max_parts

    @classmethod
    def from_settings(cls, store: ObjectStore) -> Self:
        """Build a coordinator with the configured part plan limits."""
        return cls(
            store,
            part_size=settings.MULTIPART_PART_SIZE,
            max_parts=settings.MULTIPART_MAX_PARTS,
        )

    def plan_parts(self, size: int) -> tuple[int, int]:
        """Compute part size and count for a declared file size.

        The part size grows when the preferred size would need more
        than `max_parts` parts.

        Args:
            size: Declared file size in bytes.

        Returns:
            Tuple of (part size, part count), with at least one part.
        """
        part_size = self._part_size
        part_count = math.ceil(size / part_size)
        if part_count > self._max_parts:
            part_size = math.ceil(size / self._max_parts)
            part_count = math.ceil(size / part_size)
        return part_size, max(part_count, 1)

    def initialize_upload(
        self,
        user: _User,
        filename: str,
        declared_size: int,
        folder_id: uuid.UUID | str | None = None,
    ) -> UploadInit:
        """Start a multipart upload and register a provisional file.

        Args:
            user: Owner of the new file.
            filename: Client filename, e.g. 'report.pdf'.
            declared_size: Size the client promises to upload.
            folder_id: Destination folder, or None for the root.

        Returns:
            UploadInit with the upload id, file id and part handles.

        Raises:
            InvalidInputError: If filename, size or folder are invalid.
            StorageUnavailableError: If the object store fails.
        """
        clean_name = normalize_filename(filename)
        if declared_size <= 0:
            raise InvalidInputError(
                'Size must be positive',
                errors={'size': ['Ensure this value is greater than 0.']},
            )
        folder = resolve_folder(user, folder_id)

        name, ext = split_filename(clean_name)
        mime = detect_mime_type(clean_name)
        storage_key = derive_storage_key(user.id, clean_name)
        part_size, part_count = self.plan_parts(declared_size)

        plan = self._store.begin_multipart(storage_key, mime, part_count)

        try:
            with transaction.atomic():
                file_instance = File.objects.create(
                    name=name,
                    ext=ext,
                    mime=mime,
                    size=declared_size,
                    storage_key=storage_key,
                    folder=folder,
                    owner=user,
                )
                Upload.objects.create(
                    upload_id=plan.upload_id,
                    file=file_instance,
                    owner=user,
                    storage_key=storage_key,
                    declared_size=declared_size,
                    part_size=part_size,
                    part_count=part_count,
                )
                record(
                    user,
                    'file_upload_initiated',
                    ResourceType.FILE,
                    file_instance.id,
                    filename=clean_name,
                    size=declared_size,
                    part_count=part_count,
                )
        except Exception:
            logger.exception(
                'Database transaction failed, aborting multipart upload: %s',
                storage_key,
            )
            self._abort_quietly(storage_key, plan.upload_id)
            raise

        logger.info(
            'Upload initialized: %s (file ID: %s, %d parts of %d bytes)',
            storage_key,
            file_instance.id,
            part_count,
            part_size,
        )
        return UploadInit(
            upload_id=plan.upload_id,
            file_id=file_instance.id,
            part_size=part_size,
            part_count=part_count,
            handles=plan.handles,
        )

    def mark_parts_in_flight(self, upload_id: str) -> bool:
        """Record that part bytes started arriving for an upload.

        Args:
            upload_id: Multipart upload id.

        Returns:
            True if the upload moved out of the initiated state.
        """
        updated = Upload.objects.filter(
            upload_id=upload_id,
            state=UploadState.INITIATED,
        ).update(state=UploadState.PARTS_IN_FLIGHT, updated_at=timezone.now())
        return bool(updated)

    def complete_upload(
        self,
        user: _User,
        file_id: uuid.UUID | str,
        upload_id: str,
        parts: Sequence[PartTag],
    ) -> UploadResult:
        """Assemble the uploaded parts and finalize the file.

        Args:
            user: Acting user.
            file_id: Provisional file ID from initialization.
            upload_id: Multipart upload id from initialization.
            parts: Part numbers and tags, ascending.

        Returns:
            UploadResult with the finalized file.

        Raises:
            ResourceNotFoundError: If the file or upload does not exist.
            UnauthorizedError: If the file belongs to another user.
            InvalidInputError: If the parts or stored size are wrong.
            ConflictError: If the upload was already finalized or aborted.
            StorageUnavailableError: If the object store fails.
        """
        file_instance = get_file(user, file_id)
        upload = self._get_upload(file_instance, upload_id)
        self._validate_parts(upload, parts)

        # Only one caller can move the row out of an open state
        claimed = Upload.objects.filter(
            pk=upload.pk,
            state__in=OPEN_UPLOAD_STATES,
        ).update(state=UploadState.COMPLETED, updated_at=timezone.now())
        if not claimed:
            upload.refresh_from_db(fields=['state'])
            if upload.state != UploadState.COMPLETED or file_instance.is_finalized:
                raise ConflictError(f'Upload {upload_id} is no longer open')
            # Parts were assembled but finalizing failed last time
            logger.info('Retrying finalization of upload: %s', upload.storage_key)
            return self._finalize(user, file_instance, upload)

        try:
            self._store.complete_multipart(upload.storage_key, upload_id, parts)
        except Exception:
            logger.exception(
                'Failed to complete multipart upload: %s',
                upload.storage_key,
            )
            Upload.objects.filter(pk=upload.pk).update(
                state=UploadState.PARTS_IN_FLIGHT,
                updated_at=timezone.now(),
            )
            raise

        return self._finalize(user, file_instance, upload)

    def abort_upload(
        self,
        user: _User,
        file_id: uuid.UUID | str,
        upload_id: str,
    ) -> None:
        """Abort an upload and drop its provisional file.

        The provisional file is deleted, so aborting the same upload
        again reports the file as not found. An upload whose parts were
        assembled but whose file was never finalized can still be aborted.

        Args:
            user: Acting user.
            file_id: Provisional file ID from initialization.
            upload_id: Multipart upload id from initialization.

        Raises:
            ResourceNotFoundError: If the file or upload does not exist.
            UnauthorizedError: If the file belongs to another user.
            ConflictError: If the upload already completed and finalized.
        """
        file_instance = get_file(user, file_id)
        upload = self._get_upload(file_instance, upload_id)

        aborted = Upload.objects.filter(
            pk=upload.pk,
            state__in=OPEN_UPLOAD_STATES,
        ).update(state=UploadState.ABORTED, updated_at=timezone.now())
        if aborted:
            self._abort_quietly(upload.storage_key, upload_id)
        else:
            upload.refresh_from_db(fields=['state'])
            if upload.state != UploadState.COMPLETED:
                return
            aborted = Upload.objects.filter(
                pk=upload.pk,
                state=UploadState.COMPLETED,
                file__checksum__isnull=True,
            ).update(state=UploadState.ABORTED, updated_at=timezone.now())
            if not aborted:
                raise ConflictError(f'Upload {upload_id} already completed')
            self._delete_quietly(upload.storage_key)

        with transaction.atomic():
            file_instance.delete()
            record(
                user,
                'upload_aborted',
                ResourceType.FILE,
                file_id,
                upload_id=upload_id,
            )
        logger.info('Upload aborted: %s', upload.storage_key)

    def upload_direct(
        self,
        user: _User,
        filename: str,
        file_obj: BinaryIO | DjangoFile,
        folder_id: uuid.UUID | str | None = None,
    ) -> UploadResult:
        """Upload a whole file in one request.

        Transaction safety: Upload to storage first, then create DB record.
        If DB transaction fails, the stored object is deleted (rollback).

        Args:
            user: Owner of the file.
            filename: Client filename.
            file_obj: File-like object to upload.
            folder_id: Destination folder, or None for the root.

        Returns:
            UploadResult with the finalized file.

        Raises:
            InvalidInputError: If filename, content or folder are invalid.
            StorageUnavailableError: If the object store fails.
        """
        clean_name = normalize_filename(filename)
        file_size = _get_file_size(file_obj)
        if file_size <= 0:
            raise InvalidInputError(
                'File is empty',
                errors={'file': ['The submitted file is empty.']},
            )
        folder = resolve_folder(user, folder_id)

        name, ext = split_filename(clean_name)
        mime = detect_mime_type(clean_name)
        storage_key = derive_storage_key(user.id, clean_name)

        logger.info('Calculating metadata for file: %s', clean_name)
        checksum = calculate_checksum(file_obj)

        # Step 1: Upload to storage first
        self._store.put(storage_key, file_obj, mime)

        # Step 2: Create database record (in transaction)
        try:
            with transaction.atomic():
                file_instance = File.objects.create(
                    name=name,
                    ext=ext,
                    mime=mime,
                    size=file_size,
                    storage_key=storage_key,
                    checksum=checksum,
                    folder=folder,
                    owner=user,
                )
                record(
                    user,
                    'file_uploaded',
                    ResourceType.FILE,
                    file_instance.id,
                    size=file_size,
                    multipart=False,
                )
        except Exception:
            # Rollback: Delete object from storage since DB transaction failed
            logger.exception(
                'Database transaction failed, rolling back storage upload: %s',
                storage_key,
            )
            self._delete_quietly(storage_key)
            raise

        logger.info(
            'File uploaded: %s (ID: %s)',
            storage_key,
            file_instance.id,
        )
        return UploadResult(file=file_instance, storage_key=storage_key)

    def abort_stale_uploads(self, cutoff: datetime) -> int:
        """Abort uploads that saw no activity since `cutoff`.

        Besides open uploads this also releases uploads whose parts were
        assembled but whose file was never finalized.

        Args:
            cutoff: Uploads last updated before this moment are aborted.

        Returns:
            Number of uploads aborted.
        """
        unfinalized = Q(
            state=UploadState.COMPLETED,
            file__isnull=False,
            file__checksum__isnull=True,
        )
        stale = Upload.objects.filter(
            Q(state__in=OPEN_UPLOAD_STATES) | unfinalized,
            updated_at__lt=cutoff,
        ).select_related('file')

        aborted_count = 0
        for upload in stale:
            claimed = Upload.objects.filter(
                pk=upload.pk,
                state=upload.state,
            ).update(state=UploadState.ABORTED, updated_at=timezone.now())
            if not claimed:
                continue

            if upload.is_open:
                self._abort_quietly(upload.storage_key, upload.upload_id)
            else:
                self._delete_quietly(upload.storage_key)
            file_instance = upload.file
            with transaction.atomic():
                if file_instance is not None and not file_instance.is_finalized:
                    file_instance.delete()
                record(
                    None,
                    'upload_aborted',
                    ResourceType.FILE,
                    upload.file_id or upload.storage_key,
                    upload_id=upload.upload_id,
                    reason='stale',
                )
            aborted_count += 1

        logger.info('Aborted %d stale uploads', aborted_count)
        return aborted_count

    def _get_upload(self, file_instance: File, upload_id: str) -> Upload:
        try:
            return Upload.objects.get(upload_id=upload_id, file=file_instance)
        except Upload.DoesNotExist as error:
            raise ResourceNotFoundError(
                f'Upload not found: {upload_id}',
            ) from error

    def _validate_parts(self, upload: Upload, parts: Sequence[PartTag]) -> None:
        check_part_order(parts)
        for part in parts:
            if part.part_number > upload.part_count:
                raise InvalidInputError(
                    f'Part {part.part_number} exceeds part count '
                    f'{upload.part_count}',
                )
            if not part.tag.strip():
                raise InvalidInputError(
                    f'Part {part.part_number} has an empty tag',
                )

    def _finalize(
        self,
        user: _User,
        file_instance: File,
        upload: Upload,
    ) -> UploadResult:
        """Record size and checksum of an assembled object.

        Safe to repeat: a failure here leaves the upload completed and
        the file provisional, and the next completion call resumes here.
        """
        storage_key = upload.storage_key
        stored_size = self._store.size(storage_key)
        if stored_size != upload.declared_size:
            self._discard(file_instance, upload)
            raise InvalidInputError(
                f'Uploaded {stored_size} bytes, declared {upload.declared_size}',
            )

        checksum = checksum_chunks(self._store.iter_chunks(storage_key))

        with transaction.atomic():
            finalized = File.all_objects.filter(
                pk=file_instance.pk,
                checksum__isnull=True,
            ).update(size=stored_size, checksum=checksum, updated_at=timezone.now())
            if finalized:
                record(
                    user,
                    'file_uploaded',
                    ResourceType.FILE,
                    file_instance.id,
                    size=stored_size,
                    multipart=True,
                )

        file_instance.refresh_from_db()
        logger.info(
            'Upload completed: %s (file ID: %s)',
            storage_key,
            file_instance.id,
        )
        return UploadResult(file=file_instance, storage_key=storage_key)

    def _discard(self, file_instance: File, upload: Upload) -> None:
        """Remove a completed object whose size does not match."""
        logger.warning(
            'Size mismatch for %s, discarding upload',
            upload.storage_key,
        )
        self._delete_quietly(upload.storage_key)
        with transaction.atomic():
            file_instance.delete()
            Upload.objects.filter(pk=upload.pk).update(
                state=UploadState.ABORTED,
                updated_at=timezone.now(),
            )

    def _abort_quietly(self, storage_key: str, upload_id: str) -> None:
        try:
            self._store.abort_multipart(storage_key, upload_id)
        except Exception:
            logger.exception('Failed to abort multipart upload: %s', storage_key)

    def _delete_quietly(self, storage_key: str) -> None:
        try:
            self._store.delete(storage_key)
        except Exception:
            logger.exception('Failed to delete object (orphaned): %s', storage_key)
