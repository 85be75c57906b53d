"""Business logic for folder operations."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Final

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet

from server.apps.audit.logic import record
from server.apps.files.exceptions import (
    InvalidInputError,
    ResourceNotFoundError,
    UnauthorizedError,
)
from server.apps.files.models import File, Folder, ResourceType

# User type for Django's dynamic user model
_User = Any

_NAME_MAX_LENGTH: Final = 255

logger = logging.getLogger(__name__)


class Unchanged:
    """Marker type for optional update arguments."""


UNCHANGED: Final = Unchanged()


@dataclass(frozen=True)
class FolderListing:
    """Direct children of a folder (or of the root)."""

    folders: list[Folder]
    files: list[File]


def validate_name(name: str, field: str = 'name') -> str:
    """Validate a folder or file display name.

    Args:
        name: Proposed name.
        field: Field name used in error messages.

    Returns:
        Name with surrounding whitespace removed.

    Raises:
        InvalidInputError: If the name is empty, too long or has slashes.
    """
    cleaned = name.strip()
    if not cleaned:
        raise InvalidInputError(
            'Name cannot be empty',
            errors={field: ['This field cannot be blank.']},
        )
    if len(cleaned) > _NAME_MAX_LENGTH:
        raise InvalidInputError(
            'Name is too long',
            errors={field: [
                f'Ensure this value has at most {_NAME_MAX_LENGTH} characters.',
            ]},
        )
    if '/' in cleaned or '\\' in cleaned:
        raise InvalidInputError(
            'Name cannot contain slashes',
            errors={field: ['Slashes are not allowed.']},
        )
    return cleaned


def resolve_folder(
    user: _User,
    folder_id: uuid.UUID | str | None,
    field: str = 'folderId',
) -> Folder | None:
    """Resolve a folder reference used as a parent or destination.

    Nesting under another user's folder is rejected as invalid input,
    the same as nesting under a folder that does not exist.

    Args:
        user: Acting user.
        folder_id: Folder ID, or None for the root.
        field: Field name used in error messages.

    Returns:
        Folder instance, or None for the root.

    Raises:
        InvalidInputError: If the folder is missing, trashed or foreign.
    """
    if folder_id is None:
        return None

    try:
        folder = Folder.objects.get(id=folder_id)
    except (Folder.DoesNotExist, ValidationError) as error:
        raise InvalidInputError(
            f'Folder does not exist: {folder_id}',
            errors={field: ['Folder does not exist.']},
        ) from error

    if folder.owner_id != user.id:
        logger.warning(
            'Cross-owner nesting rejected: user %s, folder %s',
            user.id,
            folder_id,
        )
        raise InvalidInputError(
            'Folder belongs to another user',
            errors={field: ['Folder belongs to another user.']},
        )
    return folder


def get_folder(
    user: _User,
    folder_id: uuid.UUID | str,
    *,
    include_trashed: bool = False,
) -> Folder:
    """Get a folder owned by the user.

    Args:
        user: Acting user.
        folder_id: Folder ID.
        include_trashed: Also find folders that are in the trash.

    Returns:
        Folder instance.

    Raises:
        ResourceNotFoundError: If the folder does not exist.
        UnauthorizedError: If the folder belongs to another user.
    """
    manager = Folder.all_objects if include_trashed else Folder.objects
    try:
        folder = manager.get(id=folder_id)
    except (Folder.DoesNotExist, ValidationError) as error:
        raise ResourceNotFoundError(
            f'Folder not found: {folder_id}',
        ) from error

    if folder.owner_id != user.id:
        raise UnauthorizedError(f'Folder {folder_id} belongs to another user')
    return folder


def create_folder(
    user: _User,
    name: str,
    parent_id: uuid.UUID | str | None = None,
) -> Folder:
    """Create a folder.

    Args:
        user: Owner of the new folder.
        name: Folder name.
        parent_id: Parent folder ID, or None for the root.

    Returns:
        Created Folder instance.

    Raises:
        InvalidInputError: If the name or parent is invalid.
    """
    cleaned_name = validate_name(name)
    parent = resolve_folder(user, parent_id, field='parentId')

    with transaction.atomic():
        folder = Folder.objects.create(
            name=cleaned_name,
            parent=parent,
            owner=user,
        )
        record(
            user,
            'folder_created',
            ResourceType.FOLDER,
            folder.id,
            name=cleaned_name,
            parent_id=str(parent_id) if parent_id else None,
        )

    logger.info('Folder created: %s (ID: %s)', cleaned_name, folder.id)
    return folder


def _ensure_not_descendant(folder: Folder, new_parent: Folder | None) -> None:
    """Reject moving a folder below itself.

    Walks up from the new parent to the root.

    Raises:
        InvalidInputError: If `new_parent` is `folder` or a descendant.
    """
    ancestor = new_parent
    while ancestor is not None:
        if ancestor.id == folder.id:
            raise InvalidInputError(
                'A folder cannot be moved into itself or its subfolders',
                errors={'parentId': ['Folder cannot contain itself.']},
            )
        ancestor = ancestor.parent


def update_folder(
    user: _User,
    folder_id: uuid.UUID | str,
    name: str | None = None,
    parent_id: uuid.UUID | str | None | Unchanged = UNCHANGED,
) -> Folder:
    """Rename and/or move a folder.

    Args:
        user: Acting user.
        folder_id: Folder to update.
        name: New name, or None to keep it.
        parent_id: New parent ID, None for the root, or UNCHANGED.

    Returns:
        Updated Folder instance.

    Raises:
        ResourceNotFoundError: If the folder does not exist.
        UnauthorizedError: If the folder belongs to another user.
        InvalidInputError: If the name or destination is invalid.
    """
    folder = get_folder(user, folder_id)
    changes: dict[str, str | None] = {}
    update_fields = ['updated_at']

    if name is not None:
        folder.name = validate_name(name)
        changes['name'] = folder.name
        update_fields.append('name')

    if not isinstance(parent_id, Unchanged):
        new_parent = resolve_folder(user, parent_id, field='parentId')
        _ensure_not_descendant(folder, new_parent)
        folder.parent = new_parent
        changes['parent_id'] = str(parent_id) if parent_id else None
        update_fields.append('parent')

    with transaction.atomic():
        folder.save(update_fields=update_fields)
        record(
            user,
            'folder_updated',
            ResourceType.FOLDER,
            folder.id,
            updates=changes,
        )

    logger.info('Folder updated: %s (ID: %s)', folder.name, folder.id)
    return folder


def list_folders(
    user: _User,
    parent_id: uuid.UUID | str | None = None,
) -> QuerySet[Folder]:
    """List active folders directly under a parent.

    Only the user's own folders are returned, ordered by name. A parent
    that is missing, trashed or owned by someone else has no visible
    children.

    Args:
        user: Owner of folders.
        parent_id: Parent folder ID, or None for the root.

    Returns:
        QuerySet of Folder objects.
    """
    queryset = Folder.objects.filter(owner=user)
    if parent_id is None:
        return queryset.filter(parent__isnull=True).order_by('name')

    if not _is_visible_parent(user, parent_id):
        return Folder.objects.none()
    return queryset.filter(parent_id=parent_id).order_by('name')


def list_children(
    user: _User,
    parent_id: uuid.UUID | str | None = None,
) -> FolderListing:
    """List folders and files directly under a parent.

    Args:
        user: Owner of the resources.
        parent_id: Parent folder ID, or None for the root.

    Returns:
        FolderListing with both kinds of children, each ordered by name.
    """
    from server.apps.files.logic.file_operations import list_files  # noqa: WPS433

    return FolderListing(
        folders=list(list_folders(user, parent_id)),
        files=list(list_files(user, parent_id)),
    )


def _is_visible_parent(user: _User, parent_id: uuid.UUID | str) -> bool:
    try:
        return Folder.objects.filter(id=parent_id, owner=user).exists()
    except ValidationError:
        return False
