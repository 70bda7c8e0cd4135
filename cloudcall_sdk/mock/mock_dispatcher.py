# SPDX-License-Identifier: Apache-2.0
"""
In-memory Dispatcher used by tests and demos.

Serves Responses from a responder callable or from a scripted sequence,
optionally after a simulated latency, and records everything it sees:
dispatched requests, how many are in flight, the peak concurrency and how
many were cancelled. No network I/O is ever performed.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Union

from cloudcall_sdk.rest.errors import ServerFault
from cloudcall_sdk.rest.handles import DispatchHandle
from cloudcall_sdk.rest.http_types import Request, Response

Scripted = Union[Response, BaseException]
Responder = Callable[[Request], Union[Scripted, Awaitable[Scripted]]]


# -----------------------------
# Response helpers
# -----------------------------

def json_response(doc: Any, status: int = 200, headers: Optional[Mapping[str, str]] = None) -> Response:
    h = {"Content-Type": "application/json"}
    h.update(headers or {})
    return Response(status=status, headers=h, body=json.dumps(doc).encode("utf-8"))


def empty_response(status: int = 204, headers: Optional[Mapping[str, str]] = None) -> Response:
    return Response(status=status, headers=dict(headers or {}), body=b"")


class MockDispatcher:
    """
    Dispatcher double.

    Args:
        responder:
            Called with each Request; returns (or awaits to) a Response, or an
            exception to raise from the handle.
        responses:
            Scripted outcomes served in order when no responder is given.
        delay_s:
            Simulated latency before each outcome.
    """

    def __init__(
        self,
        responder: Optional[Responder] = None,
        *,
        responses: Iterable[Scripted] = (),
        delay_s: float = 0.0,
    ) -> None:
        self._responder = responder
        self._script: List[Scripted] = list(responses)
        self._delay_s = delay_s
        self.requests: List[Request] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = 0
        self.cancelled = 0
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def enqueue(self, *outcomes: Scripted) -> None:
        self._script.extend(outcomes)

    def dispatch(self, request: Request, *, timeout: Optional[float] = None) -> DispatchHandle:
        self.requests.append(request)
        task = asyncio.get_running_loop().create_task(self._serve(request))
        return DispatchHandle(task, request, timeout=timeout)

    async def close(self) -> None:
        self.closed = True

    async def _serve(self, request: Request) -> Response:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay_s:
                await asyncio.sleep(self._delay_s)
            outcome = self._next(request)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if isinstance(outcome, BaseException):
                raise outcome
            self.completed += 1
            return outcome
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

    def _next(self, request: Request) -> Any:
        if self._responder is not None:
            return self._responder(request)
        if not self._script:
            raise ServerFault(
                f"{request.operation}: no scripted response left",
                details={"operation": request.operation},
            )
        return self._script.pop(0)


__all__ = [
    "MockDispatcher",
    "json_response",
    "empty_response",
]
