# cloudcall_sdk/core/operational_context.py
# SPDX-License-Identifier: Apache-2.0

"""
Per-call OperationContext for cloudcall operations.

The context is an optional, caller-owned carrier for request-scoped metadata
that the engine threads through one invocation:

- `request_id` is attached to errors and log lines.
- `tenant` is only ever emitted hashed (metrics).
- `deadline_ms` is an absolute epoch-millisecond deadline; when the caller
  does not pass an explicit timeout, the engine converts the remaining
  budget into the call timeout.
- `traceparent` is propagated to the remote side as a `traceparent` header.
- `attrs` is the escape hatch for caller-specific data.

Typical usage
-------------

    ctx = OperationContext(request_id="req-123", deadline_ms=now_ms() + 5_000)
    future = engine.invoke(LIST_VMS, ctx=ctx)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class OperationContext:
    """
    Protocol-agnostic request context for one remote operation.

    Fields
    ------
    request_id:
        Correlation identifier for tracing and logging. Optional.

    tenant:
        Tenant/project identifier. Sensitive; never logged raw.

    deadline_ms:
        Absolute epoch milliseconds after which the call should give up.

    traceparent:
        W3C traceparent header value, forwarded as-is when present.

    attrs:
        Free-form attribute bag.
    """

    request_id: Optional[str] = None
    tenant: Optional[str] = None
    deadline_ms: Optional[int] = None
    traceparent: Optional[str] = None
    attrs: Dict[str, Any] = field(default_factory=dict)

    def remaining_s(self) -> Optional[float]:
        """
        Seconds left until `deadline_ms`, never negative.

        Returns None when no deadline is set.
        """
        if self.deadline_ms is None:
            return None
        return max(0.0, (self.deadline_ms - now_ms()) / 1000.0)


__all__ = [
    "OperationContext",
    "now_ms",
]
