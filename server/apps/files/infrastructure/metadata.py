"""Content addressing utilities: storage keys, MIME types, checksums."""

import hashlib
import mimetypes
import re
import uuid
from collections.abc import Iterable
from datetime import datetime
from pathlib import PurePosixPath
from typing import BinaryIO, Final

from django.utils import timezone

from server.apps.files.exceptions import InvalidInputError

_CHUNK_SIZE: Final = 8192  # 8KB chunks for checksum calculation
_NAME_MAX_LENGTH: Final = 255
_EXTENSION_MAX_LENGTH: Final = 32
_UNSAFE_EXTENSION_CHARS: Final = re.compile('[^a-z0-9]')

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'

# Preferred over the platform mimetypes database so results do not
# depend on the host's /etc/mime.types.
_MIME_TYPES: Final = {
    # Images
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'svg': 'image/svg+xml',
    # Videos
    'mp4': 'video/mp4',
    'mov': 'video/quicktime',
    'avi': 'video/x-msvideo',
    'mkv': 'video/x-matroska',
    'webm': 'video/webm',
    # Audio
    'mp3': 'audio/mpeg',
    'wav': 'audio/wav',
    'ogg': 'audio/ogg',
    'm4a': 'audio/mp4',
    'flac': 'audio/flac',
    # Documents
    'pdf': 'application/pdf',
    'doc': 'application/msword',
    'docx': (
        'application/vnd.openxmlformats-officedocument'
        '.wordprocessingml.document'
    ),
    'txt': 'text/plain',
    'rtf': 'application/rtf',
    # Archives
    'zip': 'application/zip',
    'rar': 'application/vnd.rar',
    '7z': 'application/x-7z-compressed',
    'tar': 'application/x-tar',
    'gz': 'application/gzip',
    # Code
    'js': 'text/javascript',
    'jsx': 'text/javascript',
    'ts': 'text/typescript',
    'tsx': 'text/typescript',
    'html': 'text/html',
    'css': 'text/css',
    'json': 'application/json',
}

EXTENSION_CATEGORIES: Final[dict[str, frozenset[str]]] = {
    'image': frozenset(('jpg', 'jpeg', 'png', 'gif', 'webp', 'svg')),
    'video': frozenset(('mp4', 'mov', 'avi', 'mkv', 'webm')),
    'audio': frozenset(('mp3', 'wav', 'ogg', 'm4a', 'flac')),
    'document': frozenset(('pdf', 'doc', 'docx', 'txt', 'rtf')),
    'archive': frozenset(('zip', 'rar', '7z', 'tar', 'gz')),
}


def normalize_filename(filename: str) -> str:
    """Reduce a client supplied filename to its final path component.

    Browsers and CLI clients sometimes send full paths
    (``C:\\Users\\me\\report.pdf``); only the basename is kept.

    Args:
        filename: Filename as sent by the client.

    Returns:
        Basename of the file.

    Raises:
        InvalidInputError: If nothing usable remains.
    """
    basename = PurePosixPath(filename.replace('\\', '/')).name.strip()
    if not basename or basename in {'.', '..'}:
        raise InvalidInputError(
            'Filename cannot be empty',
            errors={'filename': ['This field cannot be blank.']},
        )
    if len(basename) > _NAME_MAX_LENGTH:
        raise InvalidInputError(
            'Filename is too long',
            errors={'filename': [
                f'Ensure this value has at most {_NAME_MAX_LENGTH} characters.',
            ]},
        )
    return basename


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = PurePosixPath(filename).suffix
    return extension.lstrip('.').lower()


def split_filename(filename: str) -> tuple[str, str]:
    """Split filename into display name and extension.

    Example: 'Quarterly Report.PDF' -> ('Quarterly Report', 'pdf')

    Args:
        filename: Filename with optional extension.

    Returns:
        Tuple of (name without extension, lowercase extension).
    """
    path = PurePosixPath(filename)
    return path.stem, get_file_extension(filename)


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from the filename extension.

    Looks up the built-in extension table first, then Python's
    mimetypes database.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    extension = get_file_extension(filename)
    if extension in _MIME_TYPES:
        return _MIME_TYPES[extension]

    mime_type, _ = mimetypes.guess_type(f'file.{extension}')
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def extensions_for_category(category: str) -> frozenset[str] | None:
    """Get known extensions for a file category.

    Args:
        category: One of image, video, audio, document, archive.

    Returns:
        Set of extensions, or None for an unknown category.
    """
    return EXTENSION_CATEGORIES.get(category.lower())


def derive_storage_key(
    owner_id: object,
    filename: str,
    timestamp: datetime | None = None,
    unique_suffix: str | None = None,
) -> str:
    """Derive the storage key for a new object.

    Keys follow ``{owner_id}/{YYYY}/{MM}/{DD}/{suffix}.{ext}``: the
    owner prefix isolates tenants, the random suffix keeps concurrent
    uploads of identical filenames apart, and the extension is kept so
    backends can infer content types.

    Args:
        owner_id: Owner's user ID.
        filename: Original filename.
        timestamp: Upload time, defaults to now.
        unique_suffix: Collision-free suffix, defaults to a random UUID.

    Returns:
        Storage key string.
    """
    moment = timestamp or timezone.now()
    suffix = unique_suffix or uuid.uuid4().hex
    extension = _UNSAFE_EXTENSION_CHARS.sub(
        '',
        get_file_extension(filename),
    )[:_EXTENSION_MAX_LENGTH]

    key = f'{owner_id}/{moment:%Y}/{moment:%m}/{moment:%d}/{suffix}'
    if extension:
        return f'{key}.{extension}'
    return key


def calculate_checksum(file_obj: BinaryIO) -> str:
    """Calculate SHA256 checksum of file.

    Reads file in chunks to handle large files efficiently.
    Resets file pointer to beginning after calculation.

    Args:
        file_obj: File-like object to checksum.

    Returns:
        Hex-encoded SHA256 hash string.
    """
    sha256_hash = hashlib.sha256()

    # Reset file pointer to beginning
    file_obj.seek(0)

    # Read in chunks to handle large files
    for chunk in iter(lambda: file_obj.read(_CHUNK_SIZE), b''):
        sha256_hash.update(chunk)

    # Reset file pointer to beginning for subsequent operations
    file_obj.seek(0)

    return sha256_hash.hexdigest()


def checksum_chunks(chunks: Iterable[bytes]) -> str:
    """Calculate SHA256 checksum over a stream of chunks.

    Args:
        chunks: Byte chunks in order, e.g. from an object store read.

    Returns:
        Hex-encoded SHA256 hash string.
    """
    sha256_hash = hashlib.sha256()
    for chunk in chunks:
        sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


def checksum_bytes(data: bytes) -> str:
    """Calculate SHA256 checksum of an in-memory payload."""
    return hashlib.sha256(data).hexdigest()
