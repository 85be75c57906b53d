"""Business logic for trash (soft delete) operations.

Soft delete and restore only flip the lifecycle state of a single row;
children of a trashed folder keep their own state. Purge removes the
row for good, and for files deletes the stored object first.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from server.apps.audit.logic import record
from server.apps.files.exceptions import (
    InvalidInputError,
    ResourceNotFoundError,
    UnauthorizedError,
)
from server.apps.files.infrastructure.storage import ObjectStore
from server.apps.files.models import (
    File,
    Folder,
    LifecycleModel,
    LifecycleState,
    ResourceType,
)

# User type for Django's dynamic user model
_User = Any

_DEFAULT_BATCH_SIZE: Final = 1000

_MODELS: Final[dict[str, type[LifecycleModel]]] = {
    ResourceType.FILE: File,
    ResourceType.FOLDER: Folder,
}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrashListing:
    """Trashed files and folders, most recently deleted first."""

    files: list[File]
    folders: list[Folder]


@dataclass(frozen=True)
class PurgeReport:
    """Outcome of a purge run over expired trash."""

    purged: int
    failed: int


def _model_for(resource_type: str) -> type[LifecycleModel]:
    try:
        return _MODELS[resource_type]
    except KeyError as error:
        raise InvalidInputError(
            f'Unknown resource type: {resource_type}',
            errors={'type': ['Expected "file" or "folder".']},
        ) from error


class TrashManager:
    """Moves resources between active, trashed and purged."""

    def __init__(self, store: ObjectStore) -> None:
        """Initialize manager.

        Args:
            store: Object store holding file contents.
        """
        self._store = store

    def soft_delete(
        self,
        user: _User,
        resource_id: uuid.UUID | str,
        resource_type: str,
    ) -> LifecycleModel:
        """Move a file or folder to trash.

        Storage is not touched. Deleting a trashed resource again is a
        no-op.

        Args:
            user: Acting user.
            resource_id: File or folder ID.
            resource_type: 'file' or 'folder'.

        Returns:
            Updated resource.

        Raises:
            ResourceNotFoundError: If the resource does not exist.
            UnauthorizedError: If the resource belongs to another user.
        """
        resource = self._get_owned(user, resource_id, resource_type)
        if resource.is_trashed:
            return resource

        deleted_at = timezone.now()
        with transaction.atomic():
            # QuerySet.update leaves updated_at alone
            type(resource).all_objects.filter(pk=resource.pk).update(
                state=LifecycleState.TRASHED,
                deleted_at=deleted_at,
            )
            record(user, f'{resource_type}_deleted', resource_type, resource.pk)

        resource.state = LifecycleState.TRASHED
        resource.deleted_at = deleted_at
        logger.info('Moved %s to trash: %s', resource_type, resource.pk)
        return resource

    def list_trash(self, user: _User) -> TrashListing:
        """List the user's trash.

        Args:
            user: User whose trash to list.

        Returns:
            TrashListing, newest deletions first.
        """
        return TrashListing(
            files=list(
                File.all_objects.filter(
                    owner=user,
                    state=LifecycleState.TRASHED,
                ).order_by('-deleted_at'),
            ),
            folders=list(
                Folder.all_objects.filter(
                    owner=user,
                    state=LifecycleState.TRASHED,
                ).order_by('-deleted_at'),
            ),
        )

    def restore(
        self,
        user: _User,
        resource_id: uuid.UUID | str,
        resource_type: str,
    ) -> LifecycleModel:
        """Restore a file or folder from trash.

        Only the resource itself is restored. Restoring an active
        resource is a no-op.

        Args:
            user: Acting user.
            resource_id: File or folder ID.
            resource_type: 'file' or 'folder'.

        Returns:
            Updated resource.

        Raises:
            ResourceNotFoundError: If the resource does not exist.
            UnauthorizedError: If the resource belongs to another user.
        """
        resource = self._get_owned(user, resource_id, resource_type)
        if not resource.is_trashed:
            return resource

        with transaction.atomic():
            type(resource).all_objects.filter(pk=resource.pk).update(
                state=LifecycleState.ACTIVE,
                deleted_at=None,
            )
            record(user, f'{resource_type}_restored', resource_type, resource.pk)

        resource.state = LifecycleState.ACTIVE
        resource.deleted_at = None
        logger.info('Restored %s from trash: %s', resource_type, resource.pk)
        return resource

    def purge(
        self,
        user: _User,
        resource_id: uuid.UUID | str,
        resource_type: str,
    ) -> None:
        """Permanently delete a file or folder.

        Args:
            user: Acting user.
            resource_id: File or folder ID.
            resource_type: 'file' or 'folder'.

        Raises:
            ResourceNotFoundError: If the resource does not exist.
            UnauthorizedError: If the resource belongs to another user.
        """
        resource = self._get_owned(user, resource_id, resource_type)
        self._purge_resource(resource, actor=user)

    def empty_trash(self, user: _User) -> int:
        """Permanently delete everything in the user's trash.

        Args:
            user: User whose trash to empty.

        Returns:
            Number of resources purged.
        """
        listing = self.list_trash(user)
        count = 0
        for file_instance in listing.files:
            self._purge_resource(file_instance, actor=user)
            count += 1
        for folder in listing.folders:
            # An ancestor purged earlier may have cascaded this one away
            if Folder.all_objects.filter(pk=folder.pk).exists():
                self._purge_resource(folder, actor=user)
                count += 1

        logger.info(
            'Trash emptied for user %s: %d resources purged',
            user.pk,
            count,
        )
        return count

    def find_expired(
        self,
        cutoff: datetime,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> TrashListing:
        """Find resources trashed before `cutoff`, oldest first.

        Args:
            cutoff: Resources deleted before this moment are expired.
            batch_size: Maximum number of files and of folders each.

        Returns:
            TrashListing of expired resources.
        """
        return TrashListing(
            files=list(
                File.all_objects.filter(
                    state=LifecycleState.TRASHED,
                    deleted_at__lt=cutoff,
                ).order_by('deleted_at')[:batch_size],
            ),
            folders=list(
                Folder.all_objects.filter(
                    state=LifecycleState.TRASHED,
                    deleted_at__lt=cutoff,
                ).order_by('deleted_at')[:batch_size],
            ),
        )

    def purge_expired(
        self,
        cutoff: datetime,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> PurgeReport:
        """Purge resources of all users trashed before `cutoff`.

        A failure on one resource is logged and does not stop the run.

        Args:
            cutoff: Resources deleted before this moment are purged.
            batch_size: Maximum number of files and of folders each.

        Returns:
            PurgeReport with purged and failed counts.
        """
        expired = self.find_expired(cutoff, batch_size)
        purged = 0
        failed = 0

        resources: list[LifecycleModel] = [*expired.files, *expired.folders]
        for resource in resources:
            if not type(resource).all_objects.filter(pk=resource.pk).exists():
                continue
            try:
                self._purge_resource(resource, actor=None)
            except Exception:
                logger.exception('Failed to purge from trash: %s', resource.pk)
                failed += 1
            else:
                purged += 1

        logger.info('Purged %d expired resources, %d failed', purged, failed)
        return PurgeReport(purged=purged, failed=failed)

    def _purge_resource(self, resource: LifecycleModel, actor: _User | None) -> None:
        if isinstance(resource, File):
            resource_type = ResourceType.FILE.value
            # Storage first, then metadata
            try:
                self._store.delete(resource.storage_key)
            except Exception:
                logger.exception(
                    'Failed to delete object (orphaned): %s',
                    resource.storage_key,
                )
        else:
            resource_type = ResourceType.FOLDER.value

        resource_id = resource.pk
        with transaction.atomic():
            resource.delete()
            record(
                actor,
                f'{resource_type}_permanently_deleted',
                resource_type,
                resource_id,
            )
        logger.info('Permanently deleted %s: %s', resource_type, resource_id)

    def _get_owned(
        self,
        user: _User,
        resource_id: uuid.UUID | str,
        resource_type: str,
    ) -> LifecycleModel:
        model = _model_for(resource_type)
        try:
            resource = model.all_objects.get(pk=resource_id)
        except (model.DoesNotExist, ValidationError) as error:
            raise ResourceNotFoundError(
                f'{resource_type.capitalize()} not found: {resource_id}',
            ) from error

        if resource.owner_id != user.id:
            logger.warning(
                'User %s tried to modify %s %s of another user',
                user.id,
                resource_type,
                resource_id,
            )
            raise UnauthorizedError(
                f'{resource_type.capitalize()} {resource_id} belongs to another user',
            )
        return resource
