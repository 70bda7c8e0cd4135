# SPDX-License-Identifier: Apache-2.0
"""
REST — Dispatch over httpx.
Asserts:
  • dispatch() returns a handle without awaiting I/O
  • The compiled method, URL, query, headers and body reach the transport
  • Non-2xx statuses come back as Responses, not errors
  • Transport timeouts are Timeout, other transport failures ServerFault
  • Independent requests are in flight concurrently
  • Handles: poll() is non-blocking, cancel() settles Cancelled, wait timeout settles Timeout
"""

import asyncio
import json

import httpx
import pytest

from cloudcall_sdk.mock.mock_dispatcher import MockDispatcher, json_response
from cloudcall_sdk.rest.dispatcher import HttpxDispatcher, build_async_client
from cloudcall_sdk.rest.errors import Cancelled, ServerFault, Timeout
from cloudcall_sdk.rest.http_types import Request, Response

pytestmark = pytest.mark.asyncio


def _dispatcher(handler) -> HttpxDispatcher:
    return HttpxDispatcher(build_async_client(transport=httpx.MockTransport(handler)))


def _request(**kw) -> Request:
    kw.setdefault("operation", "op")
    kw.setdefault("method", "GET")
    kw.setdefault("url", "https://api.example.test/v1/things")
    return Request(**kw)


async def test_dispatch_sends_compiled_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["header"] = request.headers.get("x-tag")
        seen["agent"] = request.headers.get("user-agent")
        seen["body"] = request.content
        return httpx.Response(201, json={"id": "1"}, headers={"X-Req": "a"})

    d = _dispatcher(handler)
    req = _request(
        method="POST",
        query=(("tag", "a"), ("tag", "b")),
        headers=(("X-Tag", "t"), ("Content-Type", "application/json")),
        body=b'{"n":1}',
        content_type="application/json",
    )
    handle = d.dispatch(req)
    assert handle.request is req
    resp = await handle.wait(timeout=5)
    await d.close()

    assert seen["method"] == "POST"
    assert seen["url"] == "https://api.example.test/v1/things?tag=a&tag=b"
    assert seen["header"] == "t"
    assert seen["agent"].startswith("cloudcall-sdk/")
    assert seen["body"] == b'{"n":1}'
    assert resp.status == 201
    assert resp.header("X-Req") == "a"
    assert json.loads(resp.consume()) == {"id": "1"}
    assert d.calls_made == 1


async def test_dispatch_error_status_is_a_response():
    d = _dispatcher(lambda r: httpx.Response(503, text="down"))
    resp = await d.dispatch(_request()).wait()
    assert resp.status == 503
    assert not resp.ok
    await d.close()


async def test_dispatch_transport_timeout_is_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    d = _dispatcher(handler)
    with pytest.raises(Timeout):
        await d.dispatch(_request()).wait()
    await d.close()


async def test_dispatch_transport_failure_is_server_fault():
    def handler(request):
        raise httpx.ConnectError("reset", request=request)

    d = _dispatcher(handler)
    with pytest.raises(ServerFault):
        await d.dispatch(_request()).wait()
    await d.close()


async def test_dispatch_does_not_block_and_runs_concurrently():
    gate = asyncio.Event()

    async def responder(request):
        await gate.wait()
        return json_response({"op": request.operation})

    d = MockDispatcher(responder)
    handles = [d.dispatch(_request(operation=f"op{i}")) for i in range(5)]
    assert all(not h.done() for h in handles)
    await asyncio.sleep(0)
    assert d.max_in_flight == 5
    gate.set()
    bodies = [json.loads((await h.wait()).consume()) for h in handles]
    assert [b["op"] for b in bodies] == [f"op{i}" for i in range(5)]


async def test_handle_poll_is_non_blocking():
    d = MockDispatcher(responses=[json_response({})], delay_s=0.05)
    handle = d.dispatch(_request())
    assert handle.poll() is None
    assert handle.exception() is None
    resp = await handle
    assert isinstance(resp, Response)
    assert handle.poll() is resp


async def test_handle_cancel_settles_cancelled():
    d = MockDispatcher(responses=[json_response({})], delay_s=1.0)
    handle = d.dispatch(_request())
    await asyncio.sleep(0)
    assert handle.cancel() is True
    with pytest.raises(Cancelled):
        await handle.wait()
    assert isinstance(handle.exception(), Cancelled)
    assert handle.cancel() is False
    assert d.cancelled == 1
    assert d.completed == 0


async def test_handle_wait_timeout_settles_timeout_and_aborts():
    d = MockDispatcher(responses=[json_response({})], delay_s=1.0)
    handle = d.dispatch(_request())
    with pytest.raises(Timeout):
        await handle.wait(timeout=0.01)
    assert handle.done()
    # The outcome is settled once; later waits see the same kind.
    with pytest.raises(Timeout):
        await handle.wait()


async def test_handle_creation_timeout_behaves_as_cancel_with_timeout_kind():
    d = MockDispatcher(responses=[json_response({})], delay_s=1.0)
    handle = d.dispatch(_request(), timeout=0.01)
    with pytest.raises(Timeout):
        await handle.wait()
    assert d.completed == 0


async def test_dispatcher_context_manager_closes_owned_client():
    async with HttpxDispatcher(transport=httpx.MockTransport(lambda r: httpx.Response(204))) as d:
        resp = await d.dispatch(_request()).wait()
        assert resp.status == 204
    assert d._client.is_closed
