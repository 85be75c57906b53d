"""Database models for sharing app."""

import uuid
from datetime import datetime
from typing import ClassVar, Final, final, override

from django.conf import settings
from django.db import models
from django.utils import timezone

from server.apps.files.models import ResourceType

_PASSWORD_HASH_MAX_LENGTH: Final = 128
_RESOURCE_TYPE_MAX_LENGTH: Final = 16


@final
class ShareLink(models.Model):
    """Capability link granting read access to a file or folder.

    The random id is the secret in the URL. The password, if any, is
    only ever stored as a Django password hash.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    resource_type = models.CharField(
        max_length=_RESOURCE_TYPE_MAX_LENGTH,
        choices=ResourceType.choices,
    )

    resource_id = models.UUIDField()

    password_hash = models.CharField(
        max_length=_PASSWORD_HASH_MAX_LENGTH,
        null=True,
        blank=True,
    )

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text='Link stops resolving at this moment; empty means never',
    )

    allow_download = models.BooleanField(default=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='share_links',
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Share link'  # type: ignore[mutable-override]
        verbose_name_plural = 'Share links'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['resource_type', 'resource_id'],
                name='share_links_resource_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.resource_type}:{self.resource_id} ({self.id})'

    @property
    def has_password(self) -> bool:
        """Whether resolving the link requires a password."""
        return bool(self.password_hash)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the link has expired at `now` (defaults to now)."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or timezone.now())
