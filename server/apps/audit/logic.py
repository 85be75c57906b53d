"""Business logic for the audit log."""

import logging
from typing import Any, Final

from django.db.models import QuerySet

from server.apps.audit.models import AuditLogEntry

_DEFAULT_LIMIT: Final = 50

logger = logging.getLogger(__name__)


def record(
    actor: Any,
    action: str,
    target_type: str,
    target_id: object,
    **meta: Any,
) -> AuditLogEntry:
    """Append an entry to the audit log.

    Call inside the transaction of the mutation being audited so the
    entry is written if and only if the mutation commits.

    Args:
        actor: User performing the action, or None for system jobs.
        action: Action name (e.g. 'file_uploaded').
        target_type: 'file' or 'folder'.
        target_id: ID of the affected resource.
        **meta: Free-form JSON-serializable details.

    Returns:
        Created AuditLogEntry instance.
    """
    entry = AuditLogEntry.objects.create(
        actor=actor,
        action=action,
        target_type=str(target_type),
        target_id=str(target_id),
        meta=meta,
    )
    logger.debug(
        'Audit: %s %s:%s by %s',
        action,
        target_type,
        target_id,
        getattr(actor, 'pk', None),
    )
    return entry


def recent_entries(actor: Any, limit: int = _DEFAULT_LIMIT) -> QuerySet[AuditLogEntry]:
    """List the most recent entries of a user, newest first.

    Args:
        actor: User whose actions to list.
        limit: Maximum number of entries.

    Returns:
        QuerySet of entries.
    """
    return AuditLogEntry.objects.filter(actor=actor).order_by('-created_at')[:limit]
