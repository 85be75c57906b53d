"""Exceptions for sharing app."""

from server.apps.files.exceptions import FileServiceError


class LinkExpiredError(FileServiceError):
    """Raised when a share link is resolved after its expiry."""

    code = 'expired'
    status_code = 410
    default_message = 'This link has expired'


class WrongPasswordError(FileServiceError):
    """Raised when a password-protected link gets a missing or bad password."""

    code = 'wrong_password'
    status_code = 401
    default_message = 'Password required'
