"""Django admin configuration for audit app."""

from django.contrib import admin
from django.http import HttpRequest

from server.apps.audit.models import AuditLogEntry


@admin.register(AuditLogEntry)
class AuditLogEntryAdmin(admin.ModelAdmin[AuditLogEntry]):
    """Read-only admin interface for the audit log."""

    list_display = [
        'created_at',
        'actor',
        'action',
        'target_type',
        'target_id',
    ]

    list_filter = [
        'action',
        'target_type',
    ]

    search_fields = [
        'target_id',
        'actor__username',
    ]

    def has_add_permission(self, request: HttpRequest) -> bool:
        """Entries are only written by the application."""
        return False

    def has_change_permission(
        self,
        request: HttpRequest,
        obj: AuditLogEntry | None = None,
    ) -> bool:
        """Entries are immutable."""
        return False

    def has_delete_permission(
        self,
        request: HttpRequest,
        obj: AuditLogEntry | None = None,
    ) -> bool:
        """Entries are never deleted."""
        return False
