# cloudcall_sdk/rest/handles.py
# SPDX-License-Identifier: Apache-2.0
"""
Cancellable, awaitable handles over in-flight work.

A handle wraps one `asyncio.Task` and settles its outcome exactly once:
either the task's result, or exactly one taxonomy error. Two concrete
flavours exist:

- `DispatchHandle`: one in-flight network request (owned by a Dispatcher).
- `OperationFuture`: one caller-visible invocation (compile → filters →
  dispatch → interpret, plus job polling when the operation is job-based).

Semantics
---------
- `cancel()` aborts the task; the outcome becomes `Cancelled`.
- A per-handle timeout (given at creation) or a `wait(timeout=...)` expiry
  aborts the task as if cancelled; the outcome becomes `Timeout`.
- The first abort wins; aborting a finished handle is a no-op.
- `poll()` never suspends: it returns the result, returns None while the
  work is pending, or raises the settled error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Generator, Optional

from cloudcall_sdk.rest.errors import Cancelled, RemoteOperationError, Timeout
from cloudcall_sdk.rest.http_types import Request

logger = logging.getLogger(__name__)


class TaskHandle:
    """Base handle over a single asyncio.Task."""

    def __init__(
        self,
        task: "asyncio.Task[Any]",
        *,
        label: str,
        timeout: Optional[float] = None,
    ) -> None:
        self._task = task
        self._label = label
        self._abort_error: Optional[RemoteOperationError] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        if timeout is not None:
            self._timer = task.get_loop().call_later(max(0.0, float(timeout)), self._expire, timeout)
            task.add_done_callback(self._cancel_timer)

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<{type(self).__name__} {self._label} {state}>"

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Abort the work; returns False if it had already finished."""
        return self._abort(Cancelled(f"{self._label} cancelled"))

    async def wait(self, timeout: Optional[float] = None) -> Any:
        """
        Suspend until the work settles and return its result.

        Raises the settled RemoteOperationError on failure. If `timeout`
        elapses first, the work is aborted and `Timeout` is raised.
        """
        if not self._task.done():
            done, _ = await asyncio.wait({self._task}, timeout=timeout)
            if not done:
                self._abort(
                    Timeout(
                        f"{self._label} exceeded wait timeout={timeout}s",
                        details={"timeout_s": timeout},
                    )
                )
                await asyncio.wait({self._task})
        return self._outcome()

    def poll(self) -> Any:
        """Non-blocking check: the result, None while pending, or raises the error."""
        if not self._task.done():
            return None
        return self._outcome()

    def exception(self) -> Optional[BaseException]:
        """The settled error, or None if pending or successful."""
        if not self._task.done():
            return None
        try:
            self._outcome()
        except Exception as e:  # noqa: BLE001
            return e
        return None

    def __await__(self) -> Generator[Any, None, Any]:
        return self.wait().__await__()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _abort(self, err: RemoteOperationError) -> bool:
        if self._task.done():
            return False
        if self._abort_error is None:
            self._abort_error = err
            logger.debug("%s aborted: %s", self._label, err.kind.value)
        self._task.cancel()
        return True

    def _expire(self, timeout: float) -> None:
        self._abort(
            Timeout(
                f"{self._label} exceeded timeout={timeout}s",
                details={"timeout_s": timeout},
            )
        )

    def _cancel_timer(self, _task: "asyncio.Task[Any]") -> None:
        if self._timer is not None:
            self._timer.cancel()

    def _outcome(self) -> Any:
        if self._abort_error is not None:
            raise self._abort_error
        if self._task.cancelled():
            raise Cancelled(f"{self._label} cancelled")
        exc = self._task.exception()
        if exc is not None:
            raise exc
        return self._task.result()


class DispatchHandle(TaskHandle):
    """Handle over one in-flight request; resolves with a Response."""

    def __init__(self, task: "asyncio.Task[Any]", request: Request, *, timeout: Optional[float] = None) -> None:
        super().__init__(task, label=f"dispatch {request.operation}", timeout=timeout)
        self.request = request


class OperationFuture(TaskHandle):
    """Caller-visible handle for one invocation; resolves with the payload."""

    def __init__(self, task: "asyncio.Task[Any]", operation: str, *, timeout: Optional[float] = None) -> None:
        super().__init__(task, label=operation, timeout=timeout)
        self.operation = operation


__all__ = [
    "TaskHandle",
    "DispatchHandle",
    "OperationFuture",
]
