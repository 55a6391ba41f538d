#!/usr/bin/env python

"""Exceptions raised by the registry client."""

import asyncio
import json

from http import HTTPStatus
from typing import Any, List, NamedTuple, Optional

from aiohttp import ClientConnectionError, ClientPayloadError

# Maximum number of response body bytes retained on an error
BODY_PREFIX_SIZE = 1024


class RegistryErrorDetail(NamedTuple):
    # pylint: disable=missing-class-docstring
    code: str
    message: str
    detail: Any


class RegistryError(Exception):
    """Base exception for all registry-related errors."""


class IntegrityError(RegistryError):
    """Raised when content does not match its expected digest or size, or cannot be decoded."""


class CanceledError(RegistryError):
    """Raised when an operation observes that the caller canceled it."""


class BlobUploadError(RegistryError):
    """Raised when a blob upload cannot be completed."""


class CredentialHelperError(RegistryError):
    """Raised when a docker credential helper fails."""


class RepositoryCopyError(RegistryError):
    """Aggregates failures of individual repositories during a recursive copy."""

    def __init__(self, errors: dict):
        """
        Args:
            errors: Mapping of repository name to the exception raised while copying it.
        """
        self.errors = errors
        details = "; ".join(f"{repo}: {error}" for repo, error in errors.items())
        super().__init__(f"Failed to copy {len(errors)} repositories: {details}")


class HTTPError(RegistryError):
    """An unexpected HTTP response from a registry."""

    def __init__(
        self,
        status: Optional[int],
        *,
        body: bytes = b"",
        errors: List[RegistryErrorDetail] = None,
        method: str = None,
        url: str = None,
        message: str = None,
    ):
        # pylint: disable=too-many-arguments
        self.status = status
        self.body = body[:BODY_PREFIX_SIZE] if body else b""
        self.errors = errors if errors else []
        self.method = method
        self.url = url
        if not message:
            message = self._format()
        super().__init__(message)

    def _format(self) -> str:
        prefix = f"{self.method} {self.url}" if self.method else str(self.url)
        if self.errors:
            details = "; ".join(
                f"{error.code}: {error.message}" if error.message else error.code
                for error in self.errors
            )
            return f"{prefix}: {details}"
        try:
            phrase = HTTPStatus(self.status).phrase
        except ValueError:
            phrase = "unexpected status code"
        result = f"{prefix}: {self.status} {phrase}"
        if self.body:
            result = f"{result} (body: {self.body.decode('utf-8', errors='replace')})"
        return result

    def has_code(self, code: str) -> bool:
        """Checks if the registry returned a given error code."""
        return any(error.code == code for error in self.errors)


class NotFoundError(HTTPError):
    """The registry returned 404 for the requested content."""


class UnauthorizedError(HTTPError):
    """Authentication failed, or the registry refused the requested scope."""


class TransientError(HTTPError):
    """A rate limit, server error, or network error that may succeed when retried."""


class ProtocolError(HTTPError):
    """Any other unexpected response."""


def decode_errors(body: bytes) -> List[RegistryErrorDetail]:
    """
    Decodes a registry error document of the form {"errors": [{"code", "message", "detail"}]}.

    Args:
        body: The raw response body.

    Returns:
        The decoded error details, or an empty list if the body is not an error document.
    """
    try:
        document = json.loads(body)
    except (TypeError, ValueError):
        return []
    if not isinstance(document, dict) or not isinstance(
        document.get("errors", None), list
    ):
        return []
    result = []
    for error in document["errors"]:
        if not isinstance(error, dict):
            continue
        result.append(
            RegistryErrorDetail(
                code=str(error.get("code", "UNKNOWN")),
                message=str(error.get("message", "")),
                detail=error.get("detail", None),
            )
        )
    return result


def error_from_status(
    status: int, *, body: bytes = b"", method: str = None, url: str = None
) -> HTTPError:
    """
    Maps an HTTP status code and response body to the corresponding exception.

    Args:
        status: The HTTP status code.
        body: The response body.
        method: The request method.
        url: The request url.

    Returns:
        The exception (not raised).
    """
    errors = decode_errors(body)
    if status == HTTPStatus.NOT_FOUND:
        error_type = NotFoundError
    elif status in [HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN]:
        error_type = UnauthorizedError
    elif status == HTTPStatus.TOO_MANY_REQUESTS or status >= 500:
        error_type = TransientError
    else:
        error_type = ProtocolError
    return error_type(status, body=body, errors=errors, method=method, url=url)


def has_status(error: BaseException, *statuses: int) -> bool:
    """Checks if a given error is an HTTP error with one of the given status codes."""
    return isinstance(error, HTTPError) and error.status in statuses


def is_retryable(error: BaseException) -> bool:
    """
    Decides if a failed operation may be retried.

    Network errors, timeouts, 429 and 5xx responses are retryable. Integrity errors, authorization failures,
    cancellation, and all other 4xx responses are not.
    """
    if isinstance(error, (IntegrityError, CanceledError, UnauthorizedError)):
        return False
    if isinstance(error, TransientError):
        return True
    if isinstance(error, HTTPError):
        return error.status is not None and (
            error.status == HTTPStatus.TOO_MANY_REQUESTS or error.status >= 500
        )
    return isinstance(
        error,
        (ClientConnectionError, ClientPayloadError, asyncio.TimeoutError, ConnectionError),
    )
