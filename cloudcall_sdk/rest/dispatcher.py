# cloudcall_sdk/rest/dispatcher.py
# SPDX-License-Identifier: Apache-2.0
"""
Command dispatchers.

A Dispatcher turns an immutable Request into a DispatchHandle without
blocking the caller: `dispatch()` schedules the I/O on the running event
loop and returns immediately. Independently dispatched requests progress
concurrently and no ordering is promised between them.

`HttpxDispatcher` is the production implementation over a shared
`httpx.AsyncClient`. Transport failures are normalized:

- `httpx.TimeoutException` → Timeout
- any other `httpx.TransportError` (connection reset, DNS, ...) → ServerFault

Non-2xx statuses are NOT errors at this layer; they are returned as
Responses for the interpreter to classify.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from cloudcall_sdk.rest.errors import ServerFault, Timeout
from cloudcall_sdk.rest.handles import DispatchHandle
from cloudcall_sdk.rest.http_types import Request, Response, headers_from_pairs

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "cloudcall-sdk/1.0"


@runtime_checkable
class Dispatcher(Protocol):
    """
    Contract for issuing compiled requests.

    Implementations MUST:
        - Return without awaiting network I/O.
        - Resolve the handle with a Response for every HTTP status.
        - Raise taxonomy errors (Timeout / ServerFault) for transport failures.
    """

    def dispatch(self, request: Request, *, timeout: Optional[float] = None) -> DispatchHandle: ...


def build_async_client(
    *,
    timeout_s: float = 30.0,
    user_agent: str = DEFAULT_USER_AGENT,
    follow_redirects: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create an `httpx.AsyncClient` with the SDK defaults.

    Centralizes timeouts, the user agent and the redirect policy so every
    provider talks to its backend the same way. `transport` lets tests plug
    in `httpx.MockTransport`.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=follow_redirects,
        headers={"User-Agent": user_agent},
        transport=transport,
    )


class HttpxDispatcher:
    """
    Dispatcher backed by httpx.

    Args:
        client:
            Pre-built AsyncClient. When omitted, one is created with
            `build_async_client(**client_kwargs)` and owned (closed) by
            this dispatcher.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, **client_kwargs) -> None:
        self._owns_client = client is None
        self._client = client or build_async_client(**client_kwargs)
        self.calls_made = 0

    async def __aenter__(self) -> "HttpxDispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def dispatch(self, request: Request, *, timeout: Optional[float] = None) -> DispatchHandle:
        self.calls_made += 1
        task = asyncio.get_running_loop().create_task(self._send(request))
        return DispatchHandle(task, request, timeout=timeout)

    async def _send(self, request: Request) -> Response:
        LOG.debug("dispatching %s %s", request.method, request.url)
        try:
            resp = await self._client.request(
                request.method,
                request.url,
                params=list(request.query),
                headers=list(request.headers),
                content=request.body,
            )
        except httpx.TimeoutException as e:
            raise Timeout(
                f"{request.operation}: transport timeout",
                details={"operation": request.operation},
            ) from e
        except httpx.TransportError as e:
            raise ServerFault(
                f"{request.operation}: transport failure: {type(e).__name__}",
                details={"operation": request.operation},
            ) from e

        body = resp.content
        LOG.debug("%s %s -> %d (%d bytes)", request.method, request.url, resp.status_code, len(body))
        return Response(
            status=resp.status_code,
            headers=headers_from_pairs(resp.headers.multi_items()),
            body=body,
        )


__all__ = [
    "Dispatcher",
    "HttpxDispatcher",
    "build_async_client",
    "DEFAULT_USER_AGENT",
]
