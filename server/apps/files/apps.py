"""Django app configuration for files app."""

from typing import TYPE_CHECKING, override

from django.apps import AppConfig

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import ObjectStore


class FilesConfig(AppConfig):
    """Configuration for files app.

    Builds the object store selected by ``STORAGE_DRIVER`` once, when
    the app registry is ready. Views pass it to the services they call.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.files'
    verbose_name = 'Files'

    object_store: 'ObjectStore'

    @override
    def ready(self) -> None:
        """Build the configured object store."""
        from server.apps.files.infrastructure.storage import (  # noqa: WPS433
            build_object_store,
        )

        self.object_store = build_object_store()
