"""Django admin configuration for sharing app."""

from django.contrib import admin

from server.apps.sharing.models import ShareLink


@admin.register(ShareLink)
class ShareLinkAdmin(admin.ModelAdmin[ShareLink]):
    """Admin interface for share links."""

    list_display = [
        'id',
        'resource_type',
        'resource_id',
        'created_by',
        'expires_at',
        'allow_download',
        'created_at',
    ]

    list_filter = [
        'resource_type',
        'allow_download',
    ]

    search_fields = [
        'resource_id',
        'created_by__username',
    ]

    readonly_fields = [
        'id',
        'password_hash',
        'created_at',
    ]

    date_hierarchy = 'created_at'
