# cloudcall_sdk/rest/engine.py
# SPDX-License-Identifier: Apache-2.0
"""
RestEngine: the single public entry point for invoking declared operations.

    engine = RestEngine(dispatcher=HttpxDispatcher(), base_uri="https://api.example.com/client/api",
                        filters={"signer": QuerySigningFilter(creds, sign)})
    future = engine.invoke(LIST_VMS, {"zone_id": "z1"})
    vms = await future.wait(timeout=10)

Pipeline per call
-----------------
    compile → traceparent → filter chain → dispatch → interpret [→ poll]

- Filter and mapper ids are resolved before any I/O; an unknown id is
  InvalidArguments.
- A filter failure (e.g. missing credential) aborts the call before the
  dispatcher is touched.
- When the caller's future is cancelled or times out while a request is in
  flight, the dispatch handle is cancelled and the interpreter never runs.
- When a JOB descriptor declares `poll_with`, the returned JobHandle is
  tracked to completion and the caller sees the job's final payload.

Every future resolves with exactly one of a payload or a RemoteOperationError.
Errors that are not part of the taxonomy are wrapped as ServerFault. All
errors carry `attach_context(..., "rest", operation=..., stage=...)`.

Metrics
-------
Each invocation emits one `observe()` on the configured MetricsSink. Tenant
identifiers are hashed; no argument values are ever emitted.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

from cloudcall_sdk.core.error_context import attach_context
from cloudcall_sdk.core.operational_context import OperationContext, now_ms
from cloudcall_sdk.rest.compiler import RequestCompiler
from cloudcall_sdk.rest.descriptor import CallArguments, OperationDescriptor
from cloudcall_sdk.rest.dispatcher import Dispatcher
from cloudcall_sdk.rest.errors import (
    InvalidArguments,
    RemoteOperationError,
    ServerFault,
    Timeout,
)
from cloudcall_sdk.rest.filters import FilterChain, RequestFilter
from cloudcall_sdk.rest.handles import OperationFuture
from cloudcall_sdk.rest.interpreter import MapperRegistry, ResponseInterpreter, convert
from cloudcall_sdk.rest.jobs import AsyncJobPoller, JobHandle, JobStatusReader, PollPolicy
from cloudcall_sdk.rest.parsers import ParserRegistry

LOG = logging.getLogger(__name__)

COMPONENT = "rest"


# =============================================================================
# Metrics
# =============================================================================

class MetricsSink(Protocol):
    """
    Metrics collection protocol.

    Implementations MUST:
        - Avoid PII.
        - Avoid high-cardinality labels.
        - Hash tenant identifiers when needed.
    """

    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


class NoopMetrics:
    """No-op metrics sink for tests or minimal deployments."""

    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


# =============================================================================
# Engine
# =============================================================================

class RestEngine:
    """
    Generic engine driving OperationDescriptors through the REST pipeline.

    Args:
        dispatcher:
            Issues compiled requests (HttpxDispatcher, MockDispatcher, ...).
        base_uri:
            Endpoint used when a descriptor has neither an ENDPOINT param nor
            a static endpoint.
        filters:
            Filter id → RequestFilter; descriptors select them by id.
        mappers / parsers:
            Registries consulted by the interpreter (defaults include the
            built-in absorb mappers and JSON/text/bytes parsers).
        interpreter:
            Pre-built ResponseInterpreter; overrides `mappers`/`parsers`.
        poll_policy / max_polls / max_poll_elapsed_s:
            Job polling configuration.
        default_timeout_s:
            Timeout for calls that give neither a timeout nor a deadline.
        metrics:
            MetricsSink; NoopMetrics by default.
        sleep:
            Poll-interval sleep, injectable for tests.
    """

    def __init__(
        self,
        *,
        dispatcher: Dispatcher,
        base_uri: Optional[str] = None,
        filters: Optional[Mapping[str, RequestFilter]] = None,
        mappers: Optional[MapperRegistry] = None,
        parsers: Optional[ParserRegistry] = None,
        interpreter: Optional[ResponseInterpreter] = None,
        poll_policy: Optional[PollPolicy] = None,
        max_polls: Optional[int] = None,
        max_poll_elapsed_s: Optional[float] = None,
        default_timeout_s: Optional[float] = None,
        metrics: Optional[MetricsSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._dispatcher = dispatcher
        self.compiler = RequestCompiler(base_uri)
        self.interpreter = interpreter or ResponseInterpreter(parsers=parsers, mappers=mappers)
        self._filters: Dict[str, RequestFilter] = dict(filters or {})
        self._poll_policy = poll_policy
        self._max_polls = max_polls
        self._max_poll_elapsed_s = max_poll_elapsed_s
        self._default_timeout_s = default_timeout_s
        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._sleep = sleep

    async def __aenter__(self) -> "RestEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        close = getattr(self._dispatcher, "close", None)
        if close is not None:
            await close()

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def register_filter(self, filter_id: str, request_filter: RequestFilter) -> None:
        """Add or replace a filter under `filter_id`; later invocations pick it up."""
        self._filters[filter_id] = request_filter

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def invoke(
        self,
        descriptor: OperationDescriptor,
        args: Any = None,
        *,
        ctx: Optional[OperationContext] = None,
        timeout: Optional[float] = None,
    ) -> OperationFuture:
        """
        Start one invocation and return its future immediately.

        `args` may be CallArguments, a mapping of keyword values, a tuple of
        positional values, a single positional value, or None.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(descriptor, args, ctx))
        return OperationFuture(task, descriptor.name, timeout=self._effective_timeout(timeout, ctx))

    async def call(
        self,
        descriptor: OperationDescriptor,
        args: Any = None,
        *,
        ctx: Optional[OperationContext] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke and wait for the outcome."""
        return await self.invoke(descriptor, args, ctx=ctx, timeout=timeout).wait()

    def track(
        self,
        handle: JobHandle,
        status_operation: OperationDescriptor,
        *,
        reader: Optional[JobStatusReader] = None,
        ctx: Optional[OperationContext] = None,
        timeout: Optional[float] = None,
    ) -> OperationFuture:
        """Poll an already-submitted job to completion."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._track(handle, status_operation, reader, ctx))
        return OperationFuture(
            task,
            f"track {handle.operation}:{handle.job_id}",
            timeout=self._effective_timeout(timeout, ctx),
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _effective_timeout(self, timeout: Optional[float], ctx: Optional[OperationContext]) -> Optional[float]:
        if timeout is not None:
            return timeout
        if ctx is not None and ctx.deadline_ms is not None:
            return ctx.remaining_s()
        return self._default_timeout_s

    def _poller(self, ctx: Optional[OperationContext]) -> AsyncJobPoller:
        async def execute(descriptor: OperationDescriptor, args: CallArguments) -> Any:
            return await self._execute(descriptor, args, ctx)

        return AsyncJobPoller(
            execute,
            policy=self._poll_policy,
            max_polls=self._max_polls,
            max_elapsed_s=self._max_poll_elapsed_s,
            sleep=self._sleep,
        )

    def _chain(self, descriptor: OperationDescriptor) -> FilterChain:
        out = []
        for fid in descriptor.filters:
            if fid not in self._filters:
                raise InvalidArguments(
                    f"{descriptor.name}: unknown filter {fid!r}",
                    details={"operation": descriptor.name, "filter": fid},
                )
            out.append(self._filters[fid])
        # Mapper ids are checked here too so a bad descriptor fails before I/O.
        self.interpreter.mappers.resolve(descriptor.exception_mappers, operation=descriptor.name)
        return FilterChain(out)

    @staticmethod
    def _preflight_deadline(ctx: Optional[OperationContext]) -> None:
        if ctx is not None and ctx.deadline_ms is not None and now_ms() >= ctx.deadline_ms:
            raise Timeout("deadline already exceeded", details={"remaining_ms": 0})

    async def _run(
        self,
        descriptor: OperationDescriptor,
        args: Any,
        ctx: Optional[OperationContext],
    ) -> Any:
        t0 = time.monotonic()
        try:
            self._preflight_deadline(ctx)
            result = await self._execute(descriptor, args, ctx)
            if descriptor.poll_with is not None and isinstance(result, JobHandle):
                LOG.debug("%s: tracking job %s via %s", descriptor.name, result.job_id, descriptor.poll_with.name)
                result = await self._track_job(result, descriptor.poll_with, None, ctx)
                if result is not None:
                    result = convert(descriptor, result)
        except asyncio.CancelledError:
            self._record(descriptor.name, t0, False, code="CANCELLED", ctx=ctx)
            raise
        except RemoteOperationError as e:
            attach_context(e, COMPONENT, operation=descriptor.name, request_id=ctx.request_id if ctx else None)
            self._record(descriptor.name, t0, False, code=e.code, ctx=ctx)
            raise
        self._record(descriptor.name, t0, True, ctx=ctx)
        return result

    async def _track(
        self,
        handle: JobHandle,
        status_operation: OperationDescriptor,
        reader: Optional[JobStatusReader],
        ctx: Optional[OperationContext],
    ) -> Any:
        t0 = time.monotonic()
        try:
            result = await self._track_job(handle, status_operation, reader, ctx)
        except asyncio.CancelledError:
            self._record("track", t0, False, code="CANCELLED", ctx=ctx)
            raise
        except RemoteOperationError as e:
            attach_context(e, COMPONENT, operation=handle.operation, job_id=handle.job_id)
            self._record("track", t0, False, code=e.code, ctx=ctx)
            raise
        self._record("track", t0, True, ctx=ctx)
        return result

    async def _track_job(
        self,
        handle: JobHandle,
        status_operation: OperationDescriptor,
        reader: Optional[JobStatusReader],
        ctx: Optional[OperationContext],
    ) -> Any:
        try:
            return await self._poller(ctx).track(handle, status_operation, reader=reader)
        except RemoteOperationError as e:
            attach_context(e, COMPONENT, stage="poll", job_id=handle.job_id)
            raise
        except Exception as e:  # noqa: BLE001
            err = ServerFault(
                f"{handle.operation}: job tracking failed: {type(e).__name__}",
                details={"job_id": handle.job_id},
            )
            attach_context(err, COMPONENT, stage="poll", job_id=handle.job_id)
            raise err from e

    async def _execute(
        self,
        descriptor: OperationDescriptor,
        args: Any,
        ctx: Optional[OperationContext],
    ) -> Any:
        """One round trip through compile → filters → dispatch → interpret."""
        stage = "compile"
        try:
            request = self.compiler.compile(descriptor, args)
            if ctx is not None and ctx.traceparent:
                request = request.with_header("traceparent", ctx.traceparent)

            stage = "filter"
            request = await self._chain(descriptor).apply(request)

            stage = "dispatch"
            handle = self._dispatcher.dispatch(request)
            self._counter("dispatches")
            try:
                response = await handle.wait()
            except asyncio.CancelledError:
                handle.cancel()
                raise

            stage = "interpret"
            return self.interpreter.interpret(descriptor, response)
        except RemoteOperationError as e:
            attach_context(e, COMPONENT, operation=descriptor.name, stage=stage)
            raise
        except Exception as e:  # noqa: BLE001
            LOG.debug("%s: unexpected %s during %s", descriptor.name, type(e).__name__, stage)
            err = ServerFault(
                f"{descriptor.name}: unexpected failure during {stage}: {type(e).__name__}",
                details={"operation": descriptor.name},
            )
            attach_context(err, COMPONENT, operation=descriptor.name, stage=stage)
            raise err from e

    # ------------------------------------------------------------------ #
    # Metrics helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _tenant_hash(t: Optional[str]) -> Optional[str]:
        """
        Hash tenant for metrics/logging.

        Raw tenant identifiers MUST NEVER be emitted.
        """
        if not t:
            return None
        return hashlib.sha256(t.encode()).hexdigest()[:12]

    def _record(
        self,
        op: str,
        t0: float,
        ok: bool,
        *,
        code: str = "OK",
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Emit a timing metric; failures in metrics emission are swallowed."""
        try:
            extra = {"tenant": self._tenant_hash(ctx.tenant)} if ctx and ctx.tenant else None
            self._metrics.observe(
                component=COMPONENT,
                op=op,
                ms=(time.monotonic() - t0) * 1000.0,
                ok=ok,
                code=code,
                extra=extra,
            )
        except Exception:  # noqa: BLE001
            LOG.debug("metrics observe failed", exc_info=True)

    def _counter(self, name: str) -> None:
        try:
            self._metrics.counter(component=COMPONENT, name=name)
        except Exception:  # noqa: BLE001
            LOG.debug("metrics counter failed", exc_info=True)


__all__ = [
    "MetricsSink",
    "NoopMetrics",
    "RestEngine",
]
