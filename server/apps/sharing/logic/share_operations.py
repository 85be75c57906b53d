"""Business logic for share links."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from server.apps.audit.logic import record
from server.apps.files.exceptions import (
    InvalidInputError,
    ResourceNotFoundError,
    UnauthorizedError,
)
from server.apps.files.models import File, Folder, LifecycleModel, ResourceType
from server.apps.sharing.exceptions import LinkExpiredError, WrongPasswordError
from server.apps.sharing.models import ShareLink

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedShare:
    """A valid share link together with the resource it points at."""

    link: ShareLink
    resource: LifecycleModel


def _get_active_resource(
    resource_type: str,
    resource_id: uuid.UUID | str,
) -> LifecycleModel:
    if resource_type == ResourceType.FILE:
        model: type[LifecycleModel] = File
    elif resource_type == ResourceType.FOLDER:
        model = Folder
    else:
        raise InvalidInputError(
            f'Unknown resource type: {resource_type}',
            errors={'resourceType': ['Expected "file" or "folder".']},
        )

    try:
        return model.objects.get(id=resource_id)
    except (model.DoesNotExist, ValidationError) as error:
        raise ResourceNotFoundError(
            f'{resource_type.capitalize()} not found: {resource_id}',
        ) from error


def create_link(  # noqa: WPS211
    user: _User,
    resource_type: str,
    resource_id: uuid.UUID | str,
    expires_at: datetime | None = None,
    password: str | None = None,
    allow_download: bool = True,
) -> ShareLink:
    """Create a share link for one of the user's files or folders.

    Args:
        user: Owner of the resource.
        resource_type: 'file' or 'folder'.
        resource_id: ID of the resource to share.
        expires_at: Optional expiry, must be in the future.
        password: Optional password. Empty means no password.
        allow_download: Whether link holders may download the bytes.

    Returns:
        Created ShareLink.

    Raises:
        InvalidInputError: If the type or expiry is invalid.
        ResourceNotFoundError: If the resource is missing or trashed.
        UnauthorizedError: If the resource belongs to another user.
    """
    if expires_at is not None and expires_at <= timezone.now():
        raise InvalidInputError(
            'Expiry must be in the future',
            errors={'expiresAt': ['Expiry must be in the future.']},
        )

    resource = _get_active_resource(resource_type, resource_id)
    if resource.owner_id != user.id:
        logger.warning(
            'User %s tried to share %s %s of another user',
            user.id,
            resource_type,
            resource_id,
        )
        raise UnauthorizedError(
            f'{resource_type.capitalize()} {resource_id} belongs to another user',
        )

    with transaction.atomic():
        link = ShareLink.objects.create(
            resource_type=resource_type,
            resource_id=resource.pk,
            password_hash=make_password(password) if password else None,
            expires_at=expires_at,
            allow_download=allow_download,
            created_by=user,
        )
        record(
            user,
            'share_link_created',
            resource_type,
            resource.pk,
            share_id=str(link.id),
        )

    logger.info(
        'Share link created: %s for %s %s',
        link.id,
        resource_type,
        resource.pk,
    )
    return link


def resolve_link(
    link_id: uuid.UUID | str,
    password: str | None = None,
) -> ResolvedShare:
    """Resolve a share link presented by an anonymous holder.

    Checks run in this order: link exists, link not expired, password
    matches, resource still active and, for a file, fully uploaded.

    Args:
        link_id: Link ID from the URL.
        password: Password supplied by the holder, if any.

    Returns:
        ResolvedShare with the link and its resource.

    Raises:
        ResourceNotFoundError: If the link or its resource is gone,
            or the file upload has not completed.
        LinkExpiredError: If the link expired, whatever the password.
        WrongPasswordError: If the password is missing or wrong.
    """
    try:
        link = ShareLink.objects.get(id=link_id)
    except (ShareLink.DoesNotExist, ValidationError) as error:
        raise ResourceNotFoundError('Share link not found') from error

    if link.is_expired():
        raise LinkExpiredError()

    if link.has_password:
        if not password or not check_password(password, link.password_hash):
            logger.info('Wrong password for share link %s', link.id)
            raise WrongPasswordError()

    resource = _get_active_resource(link.resource_type, link.resource_id)
    if isinstance(resource, File) and not resource.is_finalized:
        raise ResourceNotFoundError('File upload not completed')
    return ResolvedShare(link=link, resource=resource)


def revoke_link(user: _User, link_id: uuid.UUID | str) -> None:
    """Delete a share link.

    Args:
        user: Acting user, must be the link's creator.
        link_id: Link to delete.

    Raises:
        ResourceNotFoundError: If the link does not exist.
        UnauthorizedError: If the user did not create the link.
    """
    try:
        link = ShareLink.objects.get(id=link_id)
    except (ShareLink.DoesNotExist, ValidationError) as error:
        raise ResourceNotFoundError('Share link not found') from error

    if link.created_by_id != user.id:
        raise UnauthorizedError('Share link belongs to another user')

    with transaction.atomic():
        link.delete()
        record(
            user,
            'share_link_revoked',
            link.resource_type,
            link.resource_id,
            share_id=str(link_id),
        )
    logger.info('Share link revoked: %s', link_id)


def list_links(
    user: _User,
    resource_type: str,
    resource_id: uuid.UUID | str,
) -> QuerySet[ShareLink]:
    """List links the user created for a resource, newest first."""
    return ShareLink.objects.filter(
        created_by=user,
        resource_type=resource_type,
        resource_id=resource_id,
    ).order_by('-created_at')


def build_share_url(link: ShareLink) -> str:
    """Public URL of a share link."""
    base_url = settings.SHARE_BASE_URL.rstrip('/')
    return f'{base_url}/s/{link.id}'
