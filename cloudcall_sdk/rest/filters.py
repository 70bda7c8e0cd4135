# cloudcall_sdk/rest/filters.py
# SPDX-License-Identifier: Apache-2.0
"""
Request filters and credential providers.

A filter is a pure `Request -> Request` transform (async, so that it may
await a credential refresh). A FilterChain applies filters strictly in the
order the descriptor declares them, each seeing the previous one's output.

Credential-dependent filters raise `Unauthorized` when their credential is
absent. The engine runs the chain before dispatch, so that error aborts the
call with no network I/O: an unsigned request is never sent.

Credential state is read concurrently by any number of in-flight calls.
Providers publish credentials as immutable `Credential` values and replace
them by reference, so a reader always sees either the old or the new token,
never a mix. `SessionCredentials` serializes refreshes under an
`asyncio.Lock`; concurrent callers that find an expired token wait for the
single in-progress login instead of each starting their own.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from cloudcall_sdk.rest.errors import Unauthorized
from cloudcall_sdk.rest.http_types import Request

logger = logging.getLogger(__name__)


# =============================================================================
# Credentials
# =============================================================================

@dataclass(frozen=True)
class Credential:
    """
    One immutable credential snapshot.

    Attributes:
        identity:
            Access key / user name, when the scheme has one.
        secret:
            Secret key / password. Never logged.
        token:
            Session or bearer token, when the scheme has one.
        expires_at:
            `time.monotonic()` timestamp after which `token` is stale.
    """

    identity: Optional[str] = None
    secret: Optional[str] = None
    token: Optional[str] = None
    expires_at: Optional[float] = None

    def __repr__(self) -> str:
        return f"Credential(identity={self.identity!r}, token={'***' if self.token else None})"

    def expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


@runtime_checkable
class CredentialProvider(Protocol):
    async def current_credential(self) -> Optional[Credential]: ...


class StaticCredentials:
    """Fixed credentials (API keys); `None` models "not configured"."""

    def __init__(self, credential: Optional[Credential] = None) -> None:
        self._credential = credential

    async def current_credential(self) -> Optional[Credential]:
        return self._credential


class SessionCredentials:
    """
    Session tokens obtained from a login coroutine and refreshed on expiry.

    Args:
        login:
            Zero-argument coroutine function returning a fresh Credential
            (or None when login is impossible, e.g. no identity configured).
        refresh_margin_s:
            Treat a token as expired this many seconds before `expires_at`.
    """

    def __init__(
        self,
        login: Callable[[], Awaitable[Optional[Credential]]],
        *,
        refresh_margin_s: float = 0.0,
    ) -> None:
        self._login = login
        self._margin = max(0.0, float(refresh_margin_s))
        self._current: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self.logins = 0

    def _fresh(self, cred: Optional[Credential]) -> bool:
        return cred is not None and not cred.expired(time.monotonic() + self._margin)

    async def current_credential(self) -> Optional[Credential]:
        snapshot = self._current
        if self._fresh(snapshot):
            return snapshot
        async with self._lock:
            # Another caller may have refreshed while we waited.
            snapshot = self._current
            if self._fresh(snapshot):
                return snapshot
            logger.debug("session token missing or expired; logging in")
            self.logins += 1
            fresh = await self._login()
            self._current = fresh
            return fresh

    def invalidate(self) -> None:
        """Drop the current token; the next reader triggers a login."""
        self._current = None


# =============================================================================
# Filters
# =============================================================================

@runtime_checkable
class RequestFilter(Protocol):
    async def apply(self, request: Request) -> Request: ...


class FilterChain:
    """Ordered, strictly sequential application of filters."""

    def __init__(self, filters: Iterable[RequestFilter] = ()) -> None:
        self._filters: Tuple[RequestFilter, ...] = tuple(filters)

    def __len__(self) -> int:
        return len(self._filters)

    async def apply(self, request: Request) -> Request:
        for f in self._filters:
            request = await f.apply(request)
        return request


def _missing(request: Request, what: str) -> Unauthorized:
    return Unauthorized(
        f"{request.operation}: {what} unavailable; refusing to send unsigned request",
        details={"operation": request.operation},
    )


class BearerTokenFilter:
    """Sets `Authorization: <scheme> <token>`."""

    def __init__(self, credentials: CredentialProvider, *, header: str = "Authorization", scheme: str = "Bearer") -> None:
        self._credentials = credentials
        self._header = header
        self._scheme = scheme

    async def apply(self, request: Request) -> Request:
        cred = await self._credentials.current_credential()
        if cred is None or not cred.token:
            raise _missing(request, "bearer token")
        value = f"{self._scheme} {cred.token}" if self._scheme else cred.token
        return request.with_header(self._header, value)


class TokenCookieFilter:
    """Adds the session token as a cookie (merged with any existing Cookie header)."""

    def __init__(self, credentials: CredentialProvider, *, cookie_name: str = "session-token") -> None:
        self._credentials = credentials
        self._cookie = cookie_name

    async def apply(self, request: Request) -> Request:
        cred = await self._credentials.current_credential()
        if cred is None or not cred.token:
            raise _missing(request, "session token")
        pair = f"{self._cookie}={cred.token}"
        existing = request.header("Cookie")
        return request.with_header("Cookie", f"{existing}; {pair}" if existing else pair)


class BasicAuthFilter:
    """HTTP basic authentication from identity/secret."""

    def __init__(self, credentials: CredentialProvider) -> None:
        self._credentials = credentials

    async def apply(self, request: Request) -> Request:
        cred = await self._credentials.current_credential()
        if cred is None or not cred.identity or cred.secret is None:
            raise _missing(request, "identity/secret")
        raw = f"{cred.identity}:{cred.secret}".encode("utf-8")
        return request.with_header("Authorization", "Basic " + base64.b64encode(raw).decode("ascii"))


QuerySigner = Callable[[Sequence[Tuple[str, str]], Credential], str]


class QuerySigningFilter:
    """
    Signs the query string with an injected algorithm.

    Adds `key_param=<identity>`, then appends `signature_param=<sign(query, credential)>`.
    The signer sees the final query (including the key parameter) and must
    not depend on anything else.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        sign: QuerySigner,
        *,
        key_param: str = "apiKey",
        signature_param: str = "signature",
    ) -> None:
        self._credentials = credentials
        self._sign = sign
        self._key_param = key_param
        self._signature_param = signature_param

    async def apply(self, request: Request) -> Request:
        cred = await self._credentials.current_credential()
        if cred is None or not cred.identity or not cred.secret:
            raise _missing(request, "signing key")
        unsigned = [(k, v) for k, v in request.query if k != self._signature_param]
        signed = request.with_query(unsigned).with_query_param(self._key_param, cred.identity)
        signature = self._sign(signed.query, cred)
        return signed.with_query([*signed.query, (self._signature_param, signature)])


class StaticHeadersFilter:
    """Sets fixed headers (e.g. API version pins)."""

    def __init__(self, headers: Iterable[Tuple[str, str]]) -> None:
        self._headers = tuple(headers)

    async def apply(self, request: Request) -> Request:
        for k, v in self._headers:
            request = request.with_header(k, v)
        return request


__all__ = [
    "Credential",
    "CredentialProvider",
    "StaticCredentials",
    "SessionCredentials",
    "RequestFilter",
    "FilterChain",
    "BearerTokenFilter",
    "TokenCookieFilter",
    "BasicAuthFilter",
    "QuerySigner",
    "QuerySigningFilter",
    "StaticHeadersFilter",
]
