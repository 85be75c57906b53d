"""Management command to abort multipart uploads that were abandoned."""

from datetime import timedelta
from typing import Any

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.files.infrastructure.storage import get_object_store
from server.apps.files.logic.upload_operations import UploadCoordinator


class Command(BaseCommand):
    """Abort open uploads without activity for STALE_UPLOAD_HOURS."""

    help = 'Abort multipart uploads with no activity for STALE_UPLOAD_HOURS'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments."""
        parser.add_argument(
            '--hours',
            type=int,
            default=None,
            help='Override STALE_UPLOAD_HOURS',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the command."""
        hours = options['hours']
        if hours is None:
            hours = settings.STALE_UPLOAD_HOURS
        cutoff = timezone.now() - timedelta(hours=hours)

        coordinator = UploadCoordinator.from_settings(get_object_store())
        aborted = coordinator.abort_stale_uploads(cutoff)

        self.stdout.write(
            self.style.SUCCESS(f'Aborted {aborted} stale uploads'),
        )
