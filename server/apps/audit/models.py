"""Database models for audit app."""

import uuid
from typing import Any, ClassVar, Final, final, override

from django.conf import settings
from django.db import models

_ACTION_MAX_LENGTH: Final = 64
_TARGET_TYPE_MAX_LENGTH: Final = 16


class AuditLogImmutableError(Exception):
    """Raised when code tries to change a saved audit entry."""


@final
class AuditLogEntry(models.Model):
    """Append-only record of an action taken by a user.

    Entries are written once and never modified or deleted by the
    application. Deleting the acting user keeps the entry with an empty
    actor.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_entries',
    )

    action = models.CharField(max_length=_ACTION_MAX_LENGTH)

    target_type = models.CharField(max_length=_TARGET_TYPE_MAX_LENGTH)

    target_id = models.CharField(max_length=64)

    meta = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Audit log entry'  # type: ignore[mutable-override]
        verbose_name_plural = 'Audit log'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['actor', '-created_at'],
                name='audit_actor_recent_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.action} {self.target_type}:{self.target_id}'

    @override
    def save(self, *args: Any, **kwargs: Any) -> None:
        """Insert the entry; refuses to update an existing one."""
        if not self._state.adding:
            raise AuditLogImmutableError('Audit log entries are append-only')
        super().save(*args, **kwargs)

    @override
    def delete(self, *args: Any, **kwargs: Any) -> tuple[int, dict[str, int]]:
        """Refuse to delete entries."""
        raise AuditLogImmutableError('Audit log entries are append-only')
