"""Business logic for storage usage reporting."""

import logging
from dataclasses import dataclass
from typing import Any, Final

from django.conf import settings
from django.db.models import Count, Sum  # noqa: WPS347

from server.apps.files.models import File

# User type for Django's dynamic user model
_User = Any

_BYTES_PER_UNIT: Final = 1024
_UNITS: Final = ('B', 'KB', 'MB', 'GB', 'TB')

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageReport:
    """Storage used by one user against the quota."""

    total_bytes: int
    total_files: int
    quota_bytes: int
    percentage: int


def get_usage(user: _User) -> UsageReport:
    """Calculate a user's storage usage from their files.

    Includes files in trash since they still count against quota.

    Args:
        user: User to report on.

    Returns:
        UsageReport with totals and the rounded percentage of quota.
    """
    totals = File.all_objects.filter(owner=user).aggregate(
        total_bytes=Sum('size'),
        total_files=Count('id'),
    )
    total_bytes = totals['total_bytes'] or 0
    quota_bytes = settings.DEFAULT_QUOTA_BYTES

    percentage = 0
    if quota_bytes > 0:
        percentage = round(total_bytes / quota_bytes * 100)

    logger.debug(
        'Usage for user %s: %d of %d bytes',
        user.pk,
        total_bytes,
        quota_bytes,
    )
    return UsageReport(
        total_bytes=total_bytes,
        total_files=totals['total_files'],
        quota_bytes=quota_bytes,
        percentage=percentage,
    )


def format_bytes(size: int) -> str:
    """Format a byte count for humans.

    Example: 1536 -> '1.5 KB'
    """
    amount = float(size)
    for unit in _UNITS[:-1]:
        if abs(amount) < _BYTES_PER_UNIT:
            if unit == 'B':
                return f'{int(amount)} B'
            return f'{amount:.1f} {unit}'
        amount /= _BYTES_PER_UNIT
    return f'{amount:.1f} {_UNITS[-1]}'
