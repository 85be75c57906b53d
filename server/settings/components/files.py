"""File lifecycle, upload and sharing settings."""

from server.settings.components import config

# Days a trashed item stays restorable before `cleanup_trash` purges it
TRASH_TTL_DAYS = config('TRASH_TTL_DAYS', cast=int, default=30)

# Quota used for usage-percentage reporting: 5 GB
DEFAULT_QUOTA_BYTES = config(
    'DEFAULT_QUOTA_BYTES',
    cast=int,
    default=5 * 1024 * 1024 * 1024,
)

# Multipart uploads: target part size and backend part-count ceiling
MULTIPART_PART_SIZE = config(
    'MULTIPART_PART_SIZE',
    cast=int,
    default=8 * 1024 * 1024,
)
MULTIPART_MAX_PARTS = config('MULTIPART_MAX_PARTS', cast=int, default=10000)

# Open uploads untouched for this long are aborted by `abort_stale_uploads`
STALE_UPLOAD_HOURS = config('STALE_UPLOAD_HOURS', cast=int, default=24)

# Public base URL used when rendering share links
SHARE_BASE_URL = config('SHARE_BASE_URL', default='http://localhost:8000')
