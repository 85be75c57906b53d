"""Management command to purge expired items from trash."""

import logging
from datetime import timedelta
from typing import Any, Final

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.files.infrastructure.storage import get_object_store
from server.apps.files.logic.trash_operations import TrashManager

_DEFAULT_BATCH_SIZE: Final = 1000

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Permanently delete files and folders trashed longer than the TTL.

    Meant to be run periodically (cron, systemd timer).
    """

    help = 'Purge files and folders that stayed in trash past TRASH_TTL_DAYS'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be purged without purging',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=_DEFAULT_BATCH_SIZE,
            help=(
                'Max files and max folders to process '
                f'(default: {_DEFAULT_BATCH_SIZE})'
            ),
        )
        parser.add_argument(
            '--days',
            type=int,
            default=None,
            help='Override TRASH_TTL_DAYS',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the cleanup command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        retention_days = options['days']
        if retention_days is None:
            retention_days = settings.TRASH_TTL_DAYS
        batch_size = options['batch_size']
        cutoff = timezone.now() - timedelta(days=retention_days)

        self.stdout.write(
            f'Looking for items deleted before {cutoff} '
            f'(older than {retention_days} days)',
        )

        manager = TrashManager(get_object_store())

        if options['dry_run']:
            expired = manager.find_expired(cutoff, batch_size)
            for file_instance in expired.files:
                self.stdout.write(
                    f'Would purge file: {file_instance.full_name} '
                    f'(owner: {file_instance.owner_id}, '
                    f'deleted: {file_instance.deleted_at})',
                )
            for folder in expired.folders:
                self.stdout.write(
                    f'Would purge folder: {folder.name} '
                    f'(owner: {folder.owner_id}, deleted: {folder.deleted_at})',
                )
            count = len(expired.files) + len(expired.folders)
            self.stdout.write(
                self.style.SUCCESS(f'Would purge {count} items from trash'),
            )
            return

        report = manager.purge_expired(cutoff, batch_size)
        if report.failed:
            self.stderr.write(f'Failed to purge {report.failed} items')
        self.stdout.write(
            self.style.SUCCESS(
                f'Purged {report.purged} items from trash, '
                f'{report.failed} failed',
            ),
        )
