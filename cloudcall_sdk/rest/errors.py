# cloudcall_sdk/rest/errors.py
# SPDX-License-Identifier: Apache-2.0
"""
Normalized error taxonomy for remote operations.

Every invocation resolves with exactly one of a success payload or one of
the errors below. Provider-specific failures (HTTP statuses, error bodies,
job error detail, transport exceptions) are translated into this taxonomy
so that callers can branch on `kind` without vendor-specific conditionals.

Retry policy is deliberately NOT part of this layer: `RateLimited` carries a
`retry_after_ms` hint when the remote side provided one, and the caller
decides whether and when to retry.
"""

from __future__ import annotations

import enum
from typing import Any, Mapping, Optional, Type


class ErrorKind(str, enum.Enum):
    """Machine-actionable classification of a failed call."""

    INVALID_ARGUMENTS = "InvalidArguments"
    UNAUTHORIZED = "Unauthorized"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    CONFLICT = "Conflict"
    SERVER_FAULT = "ServerFault"
    MALFORMED_RESPONSE = "MalformedResponse"
    TIMEOUT = "Timeout"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, value: Any) -> Optional["ErrorKind"]:
        """Lenient lookup by value ("NotFound") or member name ("NOT_FOUND")."""
        if isinstance(value, ErrorKind):
            return value
        if not isinstance(value, str):
            return None
        for member in cls:
            if value == member.value or value.upper() == member.name:
                return member
        return None


class RemoteOperationError(Exception):
    """
    Base exception for all remote operation failures.

    Attributes:
        message:
            Human-readable description (safe for logs and clients).
        code:
            Upper-snake-case machine code derived from the kind.
        status:
            HTTP status of the response that produced the error, if any.
        retry_after_ms:
            Optional backoff hint supplied by the remote side.
        details:
            Additional JSON-safe context (never secrets).
    """

    kind: ErrorKind = ErrorKind.SERVER_FAULT

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        status: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.name
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        base += f" [code={self.code}]"
        if self.status is not None:
            base += f" status={self.status}"
        if self.retry_after_ms is not None:
            base += f" retry_after_ms={self.retry_after_ms}"
        if self.details:
            base += f" details={self.details}"
        return base


class InvalidArguments(RemoteOperationError):
    """
    The call could not be compiled into a request.

    Examples:
        - A required placeholder is unbound
        - A value fails its declared coercion
        - The resolved endpoint is not a valid URI
    """

    kind = ErrorKind.INVALID_ARGUMENTS


class Unauthorized(RemoteOperationError):
    """Missing credentials before dispatch, or a 401/403 from the remote side."""

    kind = ErrorKind.UNAUTHORIZED


class NotFound(RemoteOperationError):
    """The addressed resource does not exist (and the operation did not absorb it)."""

    kind = ErrorKind.NOT_FOUND


class RateLimited(RemoteOperationError):
    """The remote side throttled the call; see `retry_after_ms`."""

    kind = ErrorKind.RATE_LIMITED


class Conflict(RemoteOperationError):
    """The operation conflicts with the current resource state."""

    kind = ErrorKind.CONFLICT


class ServerFault(RemoteOperationError):
    """Remote 5xx, transport failure, failed job without detail, or an unhandled error."""

    kind = ErrorKind.SERVER_FAULT


class MalformedResponse(RemoteOperationError):
    """The response could not be parsed or does not have the declared shape."""

    kind = ErrorKind.MALFORMED_RESPONSE


class Timeout(RemoteOperationError):
    """The caller's time budget, or the poller's bound, was exhausted."""

    kind = ErrorKind.TIMEOUT


class Cancelled(RemoteOperationError):
    """The caller cancelled the operation before it completed."""

    kind = ErrorKind.CANCELLED


_BY_KIND: Mapping[ErrorKind, Type[RemoteOperationError]] = {
    cls.kind: cls
    for cls in (
        InvalidArguments,
        Unauthorized,
        NotFound,
        RateLimited,
        Conflict,
        ServerFault,
        MalformedResponse,
        Timeout,
        Cancelled,
    )
}


def error_for_kind(kind: ErrorKind, message: str = "", **kwargs: Any) -> RemoteOperationError:
    """Build the taxonomy exception matching `kind`."""
    return _BY_KIND[kind](message, **kwargs)


def kind_for_status(status: int) -> ErrorKind:
    """
    Default classification of a non-2xx status when no mapper claims it.

    5xx → ServerFault, 404 → NotFound, 401/403 → Unauthorized,
    anything else → MalformedResponse.
    """
    if 500 <= status <= 599:
        return ErrorKind.SERVER_FAULT
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (401, 403):
        return ErrorKind.UNAUTHORIZED
    return ErrorKind.MALFORMED_RESPONSE


_CODE_KINDS: Mapping[int, ErrorKind] = {
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.UNAUTHORIZED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
}


def kind_for_code(code: int, *, default: ErrorKind = ErrorKind.SERVER_FAULT) -> ErrorKind:
    """
    Classify a status-like code embedded in an error document or job detail.

    Unlike `kind_for_status`, conflicts and throttling are recognized and
    unknown codes fall back to `default`.
    """
    if code in _CODE_KINDS:
        return _CODE_KINDS[code]
    if 500 <= code <= 599:
        return ErrorKind.SERVER_FAULT
    return default


def error_for_status(status: int, message: str = "", **kwargs: Any) -> RemoteOperationError:
    """Build the default taxonomy exception for an HTTP status."""
    kwargs.setdefault("status", status)
    return error_for_kind(kind_for_status(status), message or f"remote returned status {status}", **kwargs)


__all__ = [
    "ErrorKind",
    "RemoteOperationError",
    "InvalidArguments",
    "Unauthorized",
    "NotFound",
    "RateLimited",
    "Conflict",
    "ServerFault",
    "MalformedResponse",
    "Timeout",
    "Cancelled",
    "error_for_kind",
    "error_for_status",
    "kind_for_status",
    "kind_for_code",
]
