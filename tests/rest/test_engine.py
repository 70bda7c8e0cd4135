# SPDX-License-Identifier: Apache-2.0
"""
REST — Engine end to end.
Asserts:
  • invoke() returns immediately; call() resolves with the interpreted payload
  • Cancelling before the dispatch completes never runs the interpreter
  • Per-call timeout and ctx.deadline_ms resolve with Timeout
  • Job descriptors with poll_with are tracked to their final payload
  • Unknown filter / mapper ids fail before any I/O
  • Filters registered after construction apply to later calls
  • A malformed argument mapping settles the future with InvalidArguments
  • Unexpected failures surface as ServerFault with attached context
  • traceparent is propagated; metrics never carry raw tenants
"""

import asyncio

import pytest

from cloudcall_sdk.core.error_context import get_context
from cloudcall_sdk.core.operational_context import OperationContext, now_ms
from cloudcall_sdk.mock.mock_dispatcher import MockDispatcher, json_response
from cloudcall_sdk.rest.descriptor import OperationDescriptor, Param, ParamRole, ResultKind
from cloudcall_sdk.rest.errors import (
    Cancelled,
    InvalidArguments,
    NotFound,
    RemoteOperationError,
    ServerFault,
    Timeout,
)
from cloudcall_sdk.rest.filters import StaticHeadersFilter
from cloudcall_sdk.rest.handles import OperationFuture
from cloudcall_sdk.rest.interpreter import ResponseInterpreter
from cloudcall_sdk.rest.jobs import FieldStatusReader, JobStatus

pytestmark = pytest.mark.asyncio

GET_THING = OperationDescriptor(
    name="getThing",
    path="/things/{thing_id}",
    params=(Param("thing_id", ParamRole.PATH),),
    unwrap_depth=1,
)

JOB_STATUS = OperationDescriptor(
    name="jobStatus",
    path="/jobs/{job_id}",
    params=(Param("job_id", ParamRole.PATH),),
    job_reader=FieldStatusReader(
        status_key="status",
        status_map={"running": JobStatus.IN_PROGRESS, "done": JobStatus.SUCCEEDED, "failed": JobStatus.FAILED},
        result_key="result",
        error_key="error",
    ),
)

CREATE_THING = OperationDescriptor(
    name="createThing",
    method="POST",
    path="/things",
    params=(Param("name", ParamRole.BODY),),
    result=ResultKind.JOB,
    job_id_key="job",
    result_type=lambda doc: doc["name"].upper(),
    poll_with=JOB_STATUS,
)


class CountingInterpreter(ResponseInterpreter):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def interpret(self, descriptor, response):
        self.calls += 1
        return super().interpret(descriptor, response)


async def test_engine_invoke_returns_future_and_call_resolves(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {"id": "t1"}})], delay_s=0.01)
    engine = make_engine(dispatcher)
    future = engine.invoke(GET_THING, ("t1",))
    assert isinstance(future, OperationFuture)
    assert not future.done()
    assert future.poll() is None
    assert await future.wait(timeout=5) == {"id": "t1"}
    assert dispatcher.requests[0].url.endswith("/things/t1")


async def test_engine_cancel_before_dispatch_completes_skips_interpreter(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}})], delay_s=0.2)
    interpreter = CountingInterpreter()
    engine = make_engine(dispatcher, interpreter=interpreter)

    future = engine.invoke(GET_THING, ("t1",))
    await asyncio.sleep(0.01)
    assert dispatcher.in_flight == 1
    assert future.cancel() is True
    with pytest.raises(Cancelled):
        await future.wait()

    await asyncio.sleep(0.01)
    assert interpreter.calls == 0
    assert dispatcher.cancelled == 1
    assert dispatcher.completed == 0


async def test_engine_timeout_settles_timeout(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}})], delay_s=0.5)
    interpreter = CountingInterpreter()
    engine = make_engine(dispatcher, interpreter=interpreter)
    with pytest.raises(Timeout):
        await engine.call(GET_THING, ("t1",), timeout=0.01)
    assert interpreter.calls == 0


async def test_engine_wait_timeout_settles_timeout(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}})], delay_s=0.5)
    engine = make_engine(dispatcher)
    future = engine.invoke(GET_THING, ("t1",))
    with pytest.raises(Timeout):
        await future.wait(timeout=0.01)
    assert isinstance(future.exception(), Timeout)


async def test_engine_deadline_becomes_timeout(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}})], delay_s=0.5)
    engine = make_engine(dispatcher)
    ctx = OperationContext(deadline_ms=now_ms() + 20)
    with pytest.raises(Timeout):
        await engine.call(GET_THING, ("t1",), ctx=ctx)


async def test_engine_expired_deadline_fails_without_io(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}})])
    engine = make_engine(dispatcher)
    with pytest.raises(Timeout):
        await engine.call(GET_THING, ("t1",), ctx=OperationContext(deadline_ms=0))
    assert dispatcher.call_count == 0


async def test_engine_tracks_job_to_final_payload(make_engine):
    dispatcher = MockDispatcher(
        responses=[
            json_response({"job": "j-9"}, status=202),
            json_response({"status": "running"}),
            json_response({"status": "done", "result": {"name": "web"}}),
        ]
    )
    engine = make_engine(dispatcher)
    assert await engine.call(CREATE_THING, {"name": "web"}) == "WEB"
    assert [r.operation for r in dispatcher.requests] == ["createThing", "jobStatus", "jobStatus"]
    assert dispatcher.requests[1].url.endswith("/jobs/j-9")


async def test_engine_failed_job_surfaces_mapped_error(make_engine):
    dispatcher = MockDispatcher(
        responses=[
            json_response({"job": "j-9"}),
            json_response({"status": "failed", "error": {"kind": "NotFound", "message": "template gone"}}),
        ]
    )
    engine = make_engine(dispatcher)
    with pytest.raises(NotFound) as exc_info:
        await engine.call(CREATE_THING, {"name": "web"})
    assert exc_info.value.message == "template gone"
    assert get_context(exc_info.value)["stage"] == "poll"


async def test_engine_unknown_filter_fails_before_io(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({})])
    engine = make_engine(dispatcher)
    d = OperationDescriptor(name="signed", filters=("missing",))
    with pytest.raises(InvalidArguments):
        await engine.call(d)
    d = OperationDescriptor(name="mapped", exception_mappers=("missing",))
    with pytest.raises(InvalidArguments):
        await engine.call(d)
    assert dispatcher.call_count == 0


async def test_engine_compile_error_carries_context(make_engine):
    engine = make_engine(MockDispatcher())
    with pytest.raises(InvalidArguments) as exc_info:
        await engine.call(GET_THING, None, ctx=OperationContext(request_id="req-1"))
    ctx = get_context(exc_info.value, component="rest")
    assert ctx["operation"] == "getThing"
    assert ctx["stage"] == "compile"
    assert ctx["request_id"] == "req-1"


async def test_engine_bad_argument_mapping_settles_the_future(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({})])
    engine = make_engine(dispatcher)
    future = engine.invoke(GET_THING, {1: "t1"})
    assert isinstance(future, OperationFuture)
    with pytest.raises(InvalidArguments) as exc_info:
        await future.wait()
    assert get_context(exc_info.value)["stage"] == "compile"
    assert dispatcher.call_count == 0


async def test_engine_registered_filter_applies_to_later_calls(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {"id": "t1"}})])
    engine = make_engine(dispatcher)
    d = OperationDescriptor(
        name="getVersioned",
        path="/things/{thing_id}",
        params=(Param("thing_id", ParamRole.PATH),),
        filters=("version",),
        unwrap_depth=1,
    )
    with pytest.raises(InvalidArguments):
        await engine.call(d, ("t1",))

    engine.register_filter("version", StaticHeadersFilter([("X-Api-Version", "2")]))
    assert await engine.call(d, ("t1",)) == {"id": "t1"}
    assert dispatcher.call_count == 1
    assert dispatcher.requests[0].header("X-Api-Version") == "2"


async def test_engine_unexpected_exception_is_server_fault(make_engine):
    class Exploding:
        async def apply(self, request):
            raise KeyError("boom")

    engine = make_engine(MockDispatcher(), filters={"x": Exploding()})
    with pytest.raises(ServerFault) as exc_info:
        await engine.call(OperationDescriptor(name="op", filters=("x",)))
    assert isinstance(exc_info.value.__cause__, KeyError)
    assert get_context(exc_info.value)["stage"] == "filter"


async def test_engine_every_outcome_is_a_taxonomy_error(make_engine):
    dispatcher = MockDispatcher(lambda req: RuntimeError("transport exploded"))
    engine = make_engine(dispatcher)
    with pytest.raises(RemoteOperationError) as exc_info:
        await engine.call(GET_THING, ("t1",))
    assert isinstance(exc_info.value, ServerFault)


async def test_engine_propagates_traceparent(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}})])
    engine = make_engine(dispatcher)
    tp = "00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01"
    await engine.call(GET_THING, ("t1",), ctx=OperationContext(traceparent=tp))
    assert dispatcher.requests[0].header("traceparent") == tp


async def test_engine_concurrent_invocations_progress_independently(make_engine):
    async def responder(request):
        await asyncio.sleep(0.01)
        return json_response({"thing": {"url": request.url}})

    dispatcher = MockDispatcher(responder)
    engine = make_engine(dispatcher)
    futures = [engine.invoke(GET_THING, (f"t{i}",)) for i in range(10)]
    results = await asyncio.gather(*(f.wait() for f in futures))
    assert [r["url"].rsplit("/", 1)[-1] for r in results] == [f"t{i}" for i in range(10)]
    assert dispatcher.max_in_flight == 10


async def test_engine_metrics_hash_tenant(make_engine, metrics):
    dispatcher = MockDispatcher(responses=[json_response({"thing": {}}), json_response({}, status=404)])
    engine = make_engine(dispatcher, metrics=metrics)
    ctx = OperationContext(tenant="acme-corp")
    await engine.call(GET_THING, ("t1",), ctx=ctx)
    with pytest.raises(NotFound):
        await engine.call(GET_THING, ("t2",), ctx=ctx)

    ok, failed = metrics.observations
    assert ok["ok"] is True and ok["op"] == "getThing"
    assert failed["ok"] is False and failed["code"] == "NOT_FOUND"
    assert ok["extra"]["tenant"] != "acme-corp"
    assert len(ok["extra"]["tenant"]) == 12
    assert len(metrics.counters) == 2


async def test_engine_context_manager_closes_dispatcher(make_engine):
    dispatcher = MockDispatcher()
    async with make_engine(dispatcher):
        pass
    assert dispatcher.closed
