"""Exceptions for files app.

Every failure of the core maps to one of these kinds. Each kind carries
a machine-readable `code` and the HTTP status the views answer with;
:func:`api_exception_handler` renders them for the REST API.
"""

import logging
from typing import Any, ClassVar

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class FileServiceError(Exception):
    """Base class for all file service failures."""

    code: ClassVar[str] = 'error'
    status_code: ClassVar[int] = 500
    default_message: ClassVar[str] = 'File service error'

    def __init__(self, message: str | None = None) -> None:
        """Initialize error with an optional message.

        Args:
            message: Human readable description, defaults to
                `default_message`.
        """
        super().__init__(message or self.default_message)


class ResourceNotFoundError(FileServiceError):
    """Raised when a resource or storage key does not exist."""

    code = 'not_found'
    status_code = 404
    default_message = 'Resource not found'


class UnauthorizedError(FileServiceError):
    """Raised when the acting user does not own the resource."""

    code = 'unauthorized'
    status_code = 403
    default_message = 'Unauthorized'


class InvalidInputError(FileServiceError):
    """Raised when input fails validation, before any side effect."""

    code = 'invalid_input'
    status_code = 400
    default_message = 'Invalid input'

    def __init__(
        self,
        message: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> None:
        """Initialize InvalidInputError.

        Args:
            message: Human readable description.
            errors: Optional per-field error messages.
        """
        super().__init__(message)
        self.errors = errors or {}


class StorageUnavailableError(FileServiceError):
    """Raised when the backing object store fails (network, I/O)."""

    code = 'storage_unavailable'
    status_code = 503
    default_message = 'Storage backend unavailable'


class ConflictError(FileServiceError):
    """Raised when an operation races a state change (double finalize)."""

    code = 'conflict'
    status_code = 409
    default_message = 'Conflict'


def api_exception_handler(
    exc: Exception,
    context: dict[str, Any],
) -> Response | None:
    """Render errors as ``{"message", "code"}`` JSON bodies.

    File service errors use their own status code. Errors raised by
    REST framework itself keep its status, except that a missing login
    is always answered with 401.

    Args:
        exc: Raised exception.
        context: View context supplied by REST framework.

    Returns:
        Response, or None to let Django handle the exception.
    """
    if isinstance(exc, FileServiceError):
        body: dict[str, Any] = {'message': str(exc), 'code': exc.code}
        if isinstance(exc, InvalidInputError) and exc.errors:
            body['errors'] = exc.errors
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error('Server error: %s', exc)
        else:
            logger.warning('Client error: %s', exc)
        return Response(body, status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, drf_exceptions.NotAuthenticated):
        response.status_code = status.HTTP_401_UNAUTHORIZED

    body = {'message': _detail_message(exc), 'code': _detail_code(exc)}
    if isinstance(exc, drf_exceptions.ValidationError):
        body['message'] = InvalidInputError.default_message
        body['code'] = InvalidInputError.code
        body['errors'] = exc.detail
    response.data = body
    return response


def _detail_message(exc: Exception) -> str:
    detail = getattr(exc, 'detail', None)
    if isinstance(detail, str):
        return detail
    return str(exc)


def _detail_code(exc: Exception) -> str:
    if isinstance(exc, drf_exceptions.APIException):
        return exc.default_code
    return FileServiceError.code
