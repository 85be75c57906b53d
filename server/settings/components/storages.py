"""Object store configuration.

`STORAGE_DRIVER` picks the backend that holds file contents:

- `networked` (alias `s3`): S3-compatible storage such as MinIO for
  local development or Cloudflare R2 / AWS S3 in production
- `local`: plain directory on the local filesystem

Both backends are configured here; only the selected one is built.
"""

from typing import Any, Final

from server.settings.components import BASE_DIR, config

STORAGE_DRIVER = config('STORAGE_DRIVER', default='local')

# Lifetime of presigned / signed transfer URLs, in seconds
TRANSFER_HANDLE_TTL = config('TRANSFER_HANDLE_TTL', cast=int, default=3600)

# Options passed to django-storages S3Storage for the networked backend
S3_STORAGE_OPTIONS: Final[dict[str, Any]] = {
    'bucket_name': config('AWS_STORAGE_BUCKET_NAME', default='drive'),
    'access_key': config('AWS_ACCESS_KEY_ID', default=''),
    'secret_key': config('AWS_SECRET_ACCESS_KEY', default=''),
    'endpoint_url': config(
        'AWS_S3_ENDPOINT_URL',
        default=None,
    ),
    'region_name': config(
        'AWS_S3_REGION_NAME',
        default='us-east-1',
    ),
    'addressing_style': 'path',  # MinIO does not serve virtual hosts
    'signature_version': 's3v4',
    'querystring_expire': TRANSFER_HANDLE_TTL,
    'file_overwrite': False,  # Prevent accidental overwrites
    'default_acl': None,  # Inherit bucket ACL
}

# Root directory for the local backend
LOCAL_STORAGE_PATH = config(
    'LOCAL_STORAGE_PATH',
    default=str(BASE_DIR.joinpath('storage')),
)

STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
        'OPTIONS': {
            'location': LOCAL_STORAGE_PATH,
        },
    },
    'staticfiles': {
        # Keep static files separate from user files
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
