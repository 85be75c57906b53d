"""Database models for files app."""

import uuid
from typing import ClassVar, Final, final, override

from django.conf import settings
from django.db import models

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_EXT_MAX_LENGTH: Final = 32
_MIME_TYPE_MAX_LENGTH: Final = 255
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length
_STORAGE_KEY_MAX_LENGTH: Final = 512
_UPLOAD_ID_MAX_LENGTH: Final = 1024  # S3 upload ids are long opaque strings
_STATE_MAX_LENGTH: Final = 16


class ResourceType(models.TextChoices):
    """Kinds of resources that can be trashed, shared and audited."""

    FILE = 'file', 'File'
    FOLDER = 'folder', 'Folder'


class LifecycleState(models.TextChoices):
    """Lifecycle of folders and files.

    A purged resource has no row at all, so it can never be listed.
    """

    ACTIVE = 'active', 'Active'
    TRASHED = 'trashed', 'Trashed'


class ActiveManager(models.Manager):
    """Manager returning only resources that are not in the trash."""

    @override
    def get_queryset(self) -> models.QuerySet:
        """Exclude trashed rows."""
        return super().get_queryset().filter(state=LifecycleState.ACTIVE)


class LifecycleModel(models.Model):
    """Common fields of owned, trashable resources."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='+',
        db_index=True,
    )

    state = models.CharField(
        max_length=_STATE_MAX_LENGTH,
        choices=LifecycleState.choices,
        default=LifecycleState.ACTIVE,
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text='When the resource was moved to trash',
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ActiveManager()
    all_objects = models.Manager()

    class Meta:
        """Model metadata."""

        abstract = True
        default_manager_name = 'all_objects'
        ordering: ClassVar[list[str]] = ['name']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            # deleted_at is set exactly when the resource is trashed
            models.CheckConstraint(
                condition=(
                    models.Q(
                        state=LifecycleState.ACTIVE,
                        deleted_at__isnull=True,
                    ) | models.Q(
                        state=LifecycleState.TRASHED,
                        deleted_at__isnull=False,
                    )
                ),
                name='%(app_label)s_%(class)s_state_matches_deleted_at',
            ),
        ]

    @property
    def is_trashed(self) -> bool:
        """Whether the resource is in the trash."""
        return self.state == LifecycleState.TRASHED


@final
class Folder(LifecycleModel):
    """Node in a user's folder tree.

    A folder's parent, if set, always belongs to the same owner.
    """

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='children',
    )

    class Meta(LifecycleModel.Meta):
        """Model metadata."""

        verbose_name = 'Folder'  # type: ignore[mutable-override]
        verbose_name_plural = 'Folders'  # type: ignore[mutable-override]

        indexes: ClassVar[list[models.Index]] = [
            # Optimize directory listing queries
            models.Index(
                fields=['owner', 'parent', 'name'],
                name='folders_owner_parent_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.name}'


@final
class File(LifecycleModel):
    """File whose bytes live in the object store.

    The storage key is assigned once and never rewritten; renames and
    moves only touch metadata. A file without checksum is a provisional
    record of a multipart upload that has not been completed yet.
    """

    ext = models.CharField(
        max_length=_EXT_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Lowercase extension without dot',
    )

    mime = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        help_text='MIME type derived from the extension',
    )

    size = models.PositiveBigIntegerField(
        help_text='File size in bytes',
    )

    storage_key = models.CharField(
        max_length=_STORAGE_KEY_MAX_LENGTH,
        unique=True,
        editable=False,
        help_text='Object key: {owner_id}/YYYY/MM/DD/{uuid}.{ext}',
    )

    checksum = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        null=True,
        blank=True,
        help_text='SHA256 hash, set once the upload is complete',
    )

    folder = models.ForeignKey(
        Folder,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='files',
    )

    class Meta(LifecycleModel.Meta):
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]

        indexes: ClassVar[list[models.Index]] = [
            # Optimize directory listing queries
            models.Index(
                fields=['owner', 'folder', 'name'],
                name='files_owner_folder_idx',
            ),
            # Optimize trash listing queries
            models.Index(
                fields=['owner', 'state', '-deleted_at'],
                name='files_owner_trash_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.full_name}'

    @property
    def full_name(self) -> str:
        """Display name with extension.

        Example: name='report', ext='pdf' -> 'report.pdf'
        """
        if self.ext:
            return f'{self.name}.{self.ext}'
        return self.name

    @property
    def is_finalized(self) -> bool:
        """Whether the upload completed and the checksum is known."""
        return self.checksum is not None


class UploadState(models.TextChoices):
    """States of a multipart upload attempt."""

    INITIATED = 'initiated', 'Initiated'
    PARTS_IN_FLIGHT = 'parts_in_flight', 'Parts in flight'
    COMPLETED = 'completed', 'Completed'
    ABORTED = 'aborted', 'Aborted'


OPEN_UPLOAD_STATES: Final = (
    UploadState.INITIATED,
    UploadState.PARTS_IN_FLIGHT,
)


@final
class Upload(models.Model):
    """Multipart upload attempt for a provisional file.

    Completion claims the row with a conditional state update, so two
    concurrent completions of the same upload cannot both finalize it.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    upload_id = models.CharField(
        max_length=_UPLOAD_ID_MAX_LENGTH,
        unique=True,
        help_text='Multipart upload id issued by the object store',
    )

    file = models.ForeignKey(
        File,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='uploads',
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='uploads',
        db_index=True,
    )

    storage_key = models.CharField(max_length=_STORAGE_KEY_MAX_LENGTH)

    declared_size = models.PositiveBigIntegerField()
    part_size = models.PositiveBigIntegerField()
    part_count = models.PositiveIntegerField()

    state = models.CharField(
        max_length=_STATE_MAX_LENGTH,
        choices=UploadState.choices,
        default=UploadState.INITIATED,
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Upload'  # type: ignore[mutable-override]
        verbose_name_plural = 'Uploads'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.storage_key} ({self.state})'

    @property
    def is_open(self) -> bool:
        """Whether the upload can still be completed or aborted."""
        return self.state in OPEN_UPLOAD_STATES
