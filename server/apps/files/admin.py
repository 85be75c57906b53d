"""Django admin configuration for files app."""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.html import format_html

from server.apps.files.logic.quota_operations import format_bytes
from server.apps.files.models import File, Folder, Upload, UploadState

_UPLOAD_STATE_COLORS = {
    UploadState.INITIATED: '#6c757d',
    UploadState.PARTS_IN_FLIGHT: '#ffc107',
    UploadState.COMPLETED: '#28a745',
    UploadState.ABORTED: '#dc3545',
}


@admin.register(Folder)
class FolderAdmin(admin.ModelAdmin[Folder]):
    """Admin interface for Folder model."""

    list_display = [
        'name',
        'owner',
        'parent',
        'state',
        'deleted_at',
        'updated_at',
    ]

    list_filter = [
        'state',
        'created_at',
    ]

    search_fields = [
        'name',
        'owner__username',
    ]

    readonly_fields = [
        'id',
        'deleted_at',
        'created_at',
        'updated_at',
    ]

    def get_queryset(self, request: HttpRequest) -> QuerySet[Folder]:
        """Include trashed folders, with owner and parent preloaded."""
        return Folder.all_objects.select_related('owner', 'parent')


@admin.register(File)
class FileAdmin(admin.ModelAdmin[File]):
    """Admin interface for File model."""

    list_display = [
        'full_name',
        'owner',
        'folder',
        'size_display',
        'mime',
        'state',
        'finalized_display',
        'created_at',
    ]

    list_filter = [
        'state',
        'mime',
        'created_at',
    ]

    search_fields = [
        'name',
        'storage_key',
        'checksum',
    ]

    readonly_fields = [
        'id',
        'storage_key',
        'size',
        'mime',
        'checksum',
        'deleted_at',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('File Information', {
            'fields': ('id', 'name', 'ext', 'owner', 'folder'),
        }),
        ('Storage', {
            'fields': (
                'storage_key',
                'size',
                'mime',
                'checksum',
            ),
        }),
        ('Lifecycle', {
            'fields': ('state', 'deleted_at'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    def size_display(self, obj: File) -> str:
        """Display file size in human-readable format.

        Args:
            obj: File instance.

        Returns:
            Formatted size string (e.g., '1.5 MB', '234 KB').
        """
        return format_bytes(obj.size)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def finalized_display(self, obj: File) -> bool:
        """Whether the upload of the file completed."""
        return obj.is_finalized
    finalized_display.short_description = 'Complete'  # type: ignore[attr-defined]
    finalized_display.boolean = True  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[File]:
        """Include trashed files, with owner and folder preloaded.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return File.all_objects.select_related('owner', 'folder')


@admin.register(Upload)
class UploadAdmin(admin.ModelAdmin[Upload]):
    """Admin interface for multipart upload attempts."""

    list_display = [
        'storage_key',
        'owner',
        'declared_size_display',
        'part_count',
        'state_display',
        'updated_at',
    ]

    list_filter = [
        'state',
    ]

    search_fields = [
        'storage_key',
        'upload_id',
        'owner__username',
    ]

    readonly_fields = [
        'id',
        'upload_id',
        'file',
        'owner',
        'storage_key',
        'declared_size',
        'part_size',
        'part_count',
        'created_at',
        'updated_at',
    ]

    def declared_size_display(self, obj: Upload) -> str:
        """Display declared size in human-readable format."""
        return format_bytes(obj.declared_size)
    declared_size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def state_display(self, obj: Upload) -> str:
        """Display the upload state as a colored label.

        Args:
            obj: Upload instance.

        Returns:
            HTML formatted state label.
        """
        return format_html(
            '<span style="color: {color}; font-weight: bold;">'
            '{state}</span>',
            color=_UPLOAD_STATE_COLORS.get(obj.state, '#6c757d'),
            state=obj.get_state_display(),
        )
    state_display.short_description = 'State'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[Upload]:
        """Optimize queryset with select_related."""
        return super().get_queryset(request).select_related('owner', 'file')
