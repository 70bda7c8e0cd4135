# cloudcall_sdk/core/error_context.py
# SPDX-License-Identifier: Apache-2.0

"""
Error context utilities for the request pipeline and provider clients.

Exceptions raised while compiling, filtering, dispatching or interpreting a
remote operation are enriched with structured debugging metadata on their way
out to the caller. The metadata lives in exception attributes so that the
original exception type and message are never altered:

- `__cloudcall_context__` (canonical, merged across layers)
- `__<component>_context__` (same mapping, named after the layer that
  contributed first, e.g. `__rest_context__`, `__cloudstack_context__`)

Typical usage
-------------

    from cloudcall_sdk.core.error_context import attach_context

    try:
        response = await handle.wait()
    except Exception as exc:
        attach_context(
            exc,
            "rest",
            operation=descriptor.name,
            stage="dispatch",
            request_id=ctx.request_id,
        )
        raise

Later, in error handlers or observability systems:

    except RemoteOperationError as exc:
        context = get_context(exc)
        logger.error("call failed", extra={"operation": context.get("operation")})

Context attachment is best-effort: failures while attaching are logged at
DEBUG and never mask the original exception. Multiple calls merge their keys,
so a provider layer can add its own context on top of the engine's.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

logger = logging.getLogger(__name__)

_CANONICAL_ATTR = "__cloudcall_context__"


def attach_context(
    exc: BaseException,
    component: str,
    **context: Any,
) -> None:
    """
    Attach debugging context to an exception.

    Parameters
    ----------
    exc:
        The exception to enrich.

    component:
        Identifier of the layer contributing the context ("rest",
        "cloudstack", "vcloud", ...). Stored under the "component" key
        unless an earlier layer already set it.

    **context:
        Arbitrary JSON-friendly keys. Common ones are `operation`,
        `stage` ("compile", "filter", "dispatch", "interpret", "poll"),
        `request_id`, `status` and `job_id`. Never pass secrets.
    """
    try:
        merged: MutableMapping[str, Any] = {}

        existing = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(existing, Mapping):
            merged.update(existing)

        merged.setdefault("component", component)
        merged.update({k: v for k, v in context.items() if v is not None})

        setattr(exc, _CANONICAL_ATTR, merged)
        setattr(exc, f"__{component}_context__", merged)

    except Exception as attachment_error:  # noqa: BLE001
        logger.debug(
            "Failed to attach error context to %s: %s",
            type(exc).__name__,
            attachment_error,
            extra={"component": component},
        )


def get_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> Mapping[str, Any]:
    """
    Retrieve attached context from an exception.

    If `component` is given, the component-specific attribute is preferred
    before falling back to the canonical mapping. Returns an empty dict when
    nothing is attached.
    """
    try:
        if component:
            ctx = getattr(exc, f"__{component}_context__", None)
            if isinstance(ctx, Mapping):
                return ctx

        ctx = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(ctx, Mapping):
            return ctx

    except Exception as retrieval_error:  # noqa: BLE001
        logger.debug(
            "Failed to retrieve error context from %s: %s",
            type(exc).__name__,
            retrieval_error,
        )

    return {}


__all__ = [
    "attach_context",
    "get_context",
]
