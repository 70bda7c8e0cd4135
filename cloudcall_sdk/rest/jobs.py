# cloudcall_sdk/rest/jobs.py
# SPDX-License-Identifier: Apache-2.0
"""
Async job tracking.

Providers that execute mutating operations asynchronously answer the
submitting call with a job reference. The AsyncJobPoller turns that
reference into the same Result-or-Error contract a synchronous call has.

State machine
-------------
    Pending → InProgress → {Succeeded, Failed}

Pending and InProgress are both non-terminal and handled identically (poll
again after the interval). Transitions are monotonic: once terminal, a job
never observes another status, and polling stops on the first terminal
observation. A job that already reported InProgress and later reports
Pending stays InProgress.

Polling discipline
------------------
- Polls of one job are strictly sequential: each status check completes
  before the next is scheduled, so two polls of the same job are never in
  flight at once.
- The interval comes from a PollPolicy (fixed by default, exponential
  backoff available).
- `max_polls` and `max_elapsed_s` bound the sequence; hitting either
  resolves with Timeout and issues no further polls.
- Cancelling the task running `track()` cancels the in-flight status call
  (or the interval sleep) and nothing further is scheduled.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

from cloudcall_sdk.rest.descriptor import CallArguments, OperationDescriptor
from cloudcall_sdk.rest.errors import (
    ErrorKind,
    MalformedResponse,
    RemoteOperationError,
    Timeout,
    error_for_kind,
    kind_for_code,
)
from cloudcall_sdk.rest.parsers import unwrap

LOG = logging.getLogger(__name__)


class JobStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass(frozen=True)
class JobHandle:
    """
    Reference to work the provider completes asynchronously.

    Attributes:
        job_id:
            Provider job identifier (a numeric id, a task URI, ...).
        operation:
            Name of the submitting operation.
        submitted:
            The submission document the id was read from.
    """

    job_id: str
    operation: str
    submitted: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobSnapshot:
    """One status observation, as decoded by a JobStatusReader."""

    status: JobStatus
    result: Any = None
    error: Optional[Mapping[str, Any]] = None
    progress: Any = None


@dataclass
class AsyncJob:
    """Poller-owned bookkeeping for one job."""

    job_id: str
    status: JobStatus = JobStatus.PENDING
    result: Any = None
    error_detail: Optional[Mapping[str, Any]] = None
    polls: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def terminal(self) -> bool:
        return self.status.is_terminal

    def elapsed(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.started_at

    def observe(self, snapshot: JobSnapshot) -> None:
        if self.terminal:
            raise RuntimeError(f"job {self.job_id} is already {self.status.value}")
        self.polls += 1
        if snapshot.status is JobStatus.PENDING and self.status is JobStatus.IN_PROGRESS:
            return
        self.status = snapshot.status
        if snapshot.status is JobStatus.SUCCEEDED:
            self.result = snapshot.result
        elif snapshot.status is JobStatus.FAILED:
            self.error_detail = snapshot.error


# =============================================================================
# Poll interval policies
# =============================================================================

class PollPolicy(Protocol):
    def delay(self, attempt: int) -> float:
        """Seconds to wait after the `attempt`-th (1-based) non-terminal poll."""
        ...


class FixedInterval:
    def __init__(self, interval_s: float = 1.0) -> None:
        self.interval_s = max(0.0, float(interval_s))

    def delay(self, attempt: int) -> float:
        return self.interval_s


class ExponentialBackoff:
    def __init__(self, initial_s: float = 0.5, *, multiplier: float = 2.0, max_interval_s: Optional[float] = None) -> None:
        self.initial_s = max(0.0, float(initial_s))
        self.multiplier = max(1.0, float(multiplier))
        self.max_interval_s = max_interval_s

    def delay(self, attempt: int) -> float:
        d = self.initial_s * (self.multiplier ** max(0, attempt - 1))
        if self.max_interval_s is not None:
            d = min(d, float(self.max_interval_s))
        return d


# =============================================================================
# Status readers
# =============================================================================

@runtime_checkable
class JobStatusReader(Protocol):
    def read(self, doc: Any) -> JobSnapshot: ...


class FieldStatusReader:
    """
    Reads a flat status document.

    Args:
        status_key:
            Field holding the raw status.
        status_map:
            Raw status → JobStatus. String keys match case-insensitively.
        result_key:
            Field holding the result of a succeeded job.
        error_key:
            Field holding the error detail of a failed job (defaults to
            `result_key`, as providers often reuse it).
        result_unwrap_depth:
            Envelope levels to strip from the result.
        progress_key:
            Optional progress field, surfaced for logging.
        code_key:
            Field of the failure detail holding the numeric error code.
        code_kinds:
            Provider error codes that classify a failed job ahead of the
            generic code table.
    """

    def __init__(
        self,
        *,
        status_key: str,
        status_map: Mapping[Any, JobStatus],
        result_key: Optional[str] = None,
        error_key: Optional[str] = None,
        result_unwrap_depth: int = 0,
        progress_key: Optional[str] = None,
        code_key: str = "errorcode",
        code_kinds: Optional[Mapping[int, ErrorKind]] = None,
    ) -> None:
        self._status_key = status_key
        self._status_map = {
            (k.lower() if isinstance(k, str) else k): v for k, v in status_map.items()
        }
        self._result_key = result_key
        self._error_key = error_key or result_key
        self._unwrap_depth = result_unwrap_depth
        self._progress_key = progress_key
        self._code_key = code_key
        self._code_kinds = dict(code_kinds or {})

    def read(self, doc: Any) -> JobSnapshot:
        if not isinstance(doc, Mapping):
            raise MalformedResponse(f"job status document must be an object, got {type(doc).__name__}")
        raw = doc.get(self._status_key)
        status = self._status_map.get(raw.lower() if isinstance(raw, str) else raw)
        if status is None:
            raise MalformedResponse(
                f"unrecognized job status {raw!r}",
                details={"status_key": self._status_key},
            )

        result = None
        error = None
        if status is JobStatus.SUCCEEDED and self._result_key and doc.get(self._result_key) is not None:
            result = unwrap(doc[self._result_key], self._unwrap_depth, operation="job result")
        elif status is JobStatus.FAILED and self._error_key:
            detail = doc.get(self._error_key)
            if isinstance(detail, Mapping):
                error = detail
            elif detail is not None:
                error = {"message": str(detail)}
        if error is not None and "kind" not in error:
            error = self._classify(error)
        progress = doc.get(self._progress_key) if self._progress_key else None
        return JobSnapshot(status=status, result=result, error=error, progress=progress)

    def _classify(self, error: Mapping[str, Any]) -> Mapping[str, Any]:
        try:
            code = int(error[self._code_key])
        except (KeyError, TypeError, ValueError):
            return error
        kind = self._code_kinds.get(code) or kind_for_code(code)
        return {**error, "kind": kind.value}


def error_from_detail(detail: Optional[Mapping[str, Any]], *, job_id: str = "") -> RemoteOperationError:
    """
    Translate provider job error detail into a taxonomy error.

    `kind` naming an ErrorKind wins; otherwise a numeric `errorcode` /
    `status` / `code` is classified; otherwise ServerFault.
    """
    detail = dict(detail or {})
    message = str(
        detail.get("errortext") or detail.get("message") or detail.get("error") or f"job {job_id} failed"
    )
    kind = ErrorKind.parse(detail.get("kind"))
    if kind is None:
        for key in ("errorcode", "status", "code"):
            try:
                kind = kind_for_code(int(detail[key]))
                break
            except (KeyError, TypeError, ValueError):
                continue
    if kind is None or kind in (ErrorKind.TIMEOUT, ErrorKind.CANCELLED):
        kind = ErrorKind.SERVER_FAULT
    return error_for_kind(kind, message, details={"job_id": job_id, **detail})


# =============================================================================
# Poller
# =============================================================================

StatusExecutor = Callable[[OperationDescriptor, CallArguments], Awaitable[Any]]


class AsyncJobPoller:
    """
    Polls a status-check operation until the job is terminal.

    Args:
        execute:
            Runs one status-check call through the full pipeline (compile,
            filters, dispatch, interpret) and returns the interpreted
            status document.
        policy:
            Interval policy; defaults to FixedInterval(1.0).
        max_polls / max_elapsed_s:
            Bounds on the poll sequence (None = unbounded).
        default_reader:
            Reader used when neither `track()` nor the status descriptor
            supplies one.
        sleep / clock:
            Injectable for tests.
    """

    def __init__(
        self,
        execute: StatusExecutor,
        *,
        policy: Optional[PollPolicy] = None,
        max_polls: Optional[int] = None,
        max_elapsed_s: Optional[float] = None,
        default_reader: Optional[JobStatusReader] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_polls is not None and max_polls < 1:
            raise ValueError("max_polls must be >= 1")
        self._execute = execute
        self._policy: PollPolicy = policy or FixedInterval()
        self._max_polls = max_polls
        self._max_elapsed_s = max_elapsed_s
        self._default_reader = default_reader
        self._sleep = sleep
        self._clock = clock

    async def track(
        self,
        handle: JobHandle,
        status_operation: OperationDescriptor,
        *,
        reader: Optional[JobStatusReader] = None,
    ) -> Any:
        reader = reader or status_operation.job_reader or self._default_reader
        if reader is None:
            raise ValueError(f"{status_operation.name}: no JobStatusReader configured")

        job = AsyncJob(handle.job_id, started_at=self._clock())
        while True:
            doc = await self._execute(status_operation, CallArguments(handle.job_id))
            job.observe(reader.read(doc))
            LOG.debug(
                "job %s (%s) poll #%d: %s",
                job.job_id,
                handle.operation,
                job.polls,
                job.status.value,
            )

            if job.status is JobStatus.SUCCEEDED:
                return job.result
            if job.status is JobStatus.FAILED:
                raise error_from_detail(job.error_detail, job_id=job.job_id)

            if self._max_polls is not None and job.polls >= self._max_polls:
                raise Timeout(
                    f"job {job.job_id} still {job.status.value} after {job.polls} polls",
                    details={"job_id": job.job_id, "polls": job.polls},
                )
            delay = self._policy.delay(job.polls)
            if self._max_elapsed_s is not None and job.elapsed(self._clock()) + delay > self._max_elapsed_s:
                raise Timeout(
                    f"job {job.job_id} would exceed max_elapsed_s={self._max_elapsed_s}",
                    details={"job_id": job.job_id, "polls": job.polls},
                )
            await self._sleep(delay)


__all__ = [
    "JobStatus",
    "JobHandle",
    "JobSnapshot",
    "AsyncJob",
    "PollPolicy",
    "FixedInterval",
    "ExponentialBackoff",
    "JobStatusReader",
    "FieldStatusReader",
    "error_from_detail",
    "AsyncJobPoller",
]
