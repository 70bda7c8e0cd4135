# cloudcall_sdk/providers/base.py
# SPDX-License-Identifier: Apache-2.0
"""
Provider capability protocol.

Every compute provider exposes the same small capability set on top of its
own descriptor table. Callers program against `ComputeProvider` and select
the implementation through configuration (see `create_provider`).

Job-based providers hide the job: `submit`, `destroy` and `reboot` resolve
with the final payload once the provider reports the job terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class Node:
    """
    Provider-neutral view of one compute node.

    Attributes:
        id:
            Provider identifier (numeric id, resource URI, ...).
        name:
            Display name, if the provider reports one.
        state:
            Provider state string, passed through unchanged.
        raw:
            The unwrapped provider document.
    """

    id: str
    name: Optional[str] = None
    state: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@runtime_checkable
class ComputeProvider(Protocol):
    """Capability set every provider implements."""

    name: str

    async def submit(self, **spec: Any) -> Any:
        """Create a node from `spec`; resolves when the node exists."""
        ...

    async def poll(self, job_id: str) -> Any:
        """Track a previously submitted job to completion."""
        ...

    async def destroy(self, node_id: str) -> Any: ...

    async def list(self) -> List[Node]: ...

    async def reboot(self, node_id: str) -> Any: ...

    async def close(self) -> None: ...


__all__ = [
    "Node",
    "ComputeProvider",
]
