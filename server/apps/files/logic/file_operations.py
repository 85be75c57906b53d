"""Business logic for file operations."""

import logging
import uuid
from typing import Any, Final

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet

from server.apps.audit.logic import record
from server.apps.files.exceptions import (
    ResourceNotFoundError,
    UnauthorizedError,
)
from server.apps.files.infrastructure.metadata import extensions_for_category
from server.apps.files.infrastructure.storage import (
    ObjectStore,
    TransferHandle,
)
from server.apps.files.logic.folder_operations import (
    UNCHANGED,
    Unchanged,
    resolve_folder,
    validate_name,
)
from server.apps.files.models import File, Folder, ResourceType

# User type for Django's dynamic user model
_User = Any

ROLE_ADMIN: Final = 'admin'
ROLE_USER: Final = 'user'

logger = logging.getLogger(__name__)


def get_role(user: _User) -> str:
    """Get the service role of a user.

    Args:
        user: Django user.

    Returns:
        'admin' for staff accounts, 'user' otherwise.
    """
    if user.is_staff:
        return ROLE_ADMIN
    return ROLE_USER


def get_file(
    user: _User,
    file_id: uuid.UUID | str,
    *,
    include_trashed: bool = False,
) -> File:
    """Get a file owned by the user.

    Args:
        user: Acting user.
        file_id: File ID.
        include_trashed: Also find files that are in the trash.

    Returns:
        File instance.

    Raises:
        ResourceNotFoundError: If the file does not exist.
        UnauthorizedError: If the file belongs to another user.
    """
    manager = File.all_objects if include_trashed else File.objects
    try:
        file_instance = manager.get(id=file_id)
    except (File.DoesNotExist, ValidationError) as error:
        raise ResourceNotFoundError(f'File not found: {file_id}') from error

    if file_instance.owner_id != user.id:
        logger.warning(
            'User %s tried to access file %s of another user',
            user.id,
            file_id,
        )
        raise UnauthorizedError(f'File {file_id} belongs to another user')
    return file_instance


def list_files(
    user: _User,
    folder_id: uuid.UUID | str | None = None,
) -> QuerySet[File]:
    """List active files directly in a folder.

    Args:
        user: Owner of files.
        folder_id: Folder ID, or None for the root.

    Returns:
        QuerySet of File objects ordered by name. Empty when the folder
        is missing, trashed or owned by someone else.
    """
    queryset = File.objects.filter(owner=user)
    if folder_id is None:
        return queryset.filter(folder__isnull=True).order_by('name')

    try:
        visible = Folder.objects.filter(id=folder_id, owner=user).exists()
    except ValidationError:
        visible = False
    if not visible:
        return File.objects.none()

    logger.debug('Listing files of folder %s', folder_id)
    return queryset.filter(folder_id=folder_id).order_by('name')


def search_files(
    user: _User,
    query: str,
    file_type: str | None = None,
    ext: str | None = None,
) -> QuerySet[File]:
    """Search the user's active files by name.

    Args:
        user: Owner of files.
        query: Case-insensitive substring of the name.
        file_type: Optional category (image, video, audio, document,
            archive). Unknown categories do not restrict the result.
        ext: Optional exact extension, without dot.

    Returns:
        QuerySet of matching File objects ordered by name.
    """
    queryset = File.objects.filter(owner=user)
    if query:
        queryset = queryset.filter(name__icontains=query)
    if ext:
        queryset = queryset.filter(ext=ext.lstrip('.').lower())
    if file_type:
        extensions = extensions_for_category(file_type)
        if extensions is not None:
            queryset = queryset.filter(ext__in=extensions)
    return queryset.order_by('name')


def update_file(
    user: _User,
    file_id: uuid.UUID | str,
    name: str | None = None,
    folder_id: uuid.UUID | str | None | Unchanged = UNCHANGED,
) -> File:
    """Rename and/or move a file.

    Only metadata changes, the storage key stays as it is.

    Args:
        user: Acting user.
        file_id: File to update.
        name: New display name (without extension), or None to keep it.
        folder_id: Destination folder ID, None for the root, or UNCHANGED.

    Returns:
        Updated File instance.

    Raises:
        ResourceNotFoundError: If the file does not exist.
        UnauthorizedError: If the file belongs to another user.
        InvalidInputError: If the name or destination is invalid.
    """
    file_instance = get_file(user, file_id)
    changes: dict[str, str | None] = {}
    update_fields = ['updated_at']

    if name is not None:
        file_instance.name = validate_name(name)
        changes['name'] = file_instance.name
        update_fields.append('name')

    if not isinstance(folder_id, Unchanged):
        file_instance.folder = resolve_folder(user, folder_id)
        changes['folder_id'] = str(folder_id) if folder_id else None
        update_fields.append('folder')

    with transaction.atomic():
        # Leave state and checksum to the operations that own them
        file_instance.save(update_fields=update_fields)
        record(
            user,
            'file_updated',
            ResourceType.FILE,
            file_instance.id,
            updates=changes,
        )

    logger.info(
        'File updated: %s (ID: %s)',
        file_instance.full_name,
        file_instance.id,
    )
    return file_instance


def issue_download(
    store: ObjectStore,
    user: _User,
    file_id: uuid.UUID | str,
) -> TransferHandle:
    """Issue a download handle for one of the user's files.

    Args:
        store: Object store holding the bytes.
        user: Acting user.
        file_id: File to download.

    Returns:
        Transfer handle the client is redirected to.

    Raises:
        ResourceNotFoundError: If the file does not exist or is provisional.
        UnauthorizedError: If the file belongs to another user.
    """
    file_instance = get_file(user, file_id)
    if not file_instance.is_finalized:
        raise ResourceNotFoundError(f'File upload not completed: {file_id}')

    handle = store.issue_get_access(
        file_instance.storage_key,
        filename=file_instance.full_name,
        content_type=file_instance.mime,
    )
    record(user, 'file_downloaded', ResourceType.FILE, file_instance.id)
    return handle
