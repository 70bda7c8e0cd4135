# cloudcall_sdk/rest/descriptor.py
# SPDX-License-Identifier: Apache-2.0
"""
Declarative operation descriptors.

An `OperationDescriptor` is plain, immutable data describing one remote call:
verb, path template, parameter roles, media types, which filters sign it,
which exception mappers interpret its failures, how to unwrap its result and
whether the result is a job to be polled. Provider modules build descriptor
tables once at import time; the generic engine does the rest.

Example
-------

    LIST_VMS = OperationDescriptor(
        name="listVirtualMachines",
        method="GET",
        static_query=(("command", "listVirtualMachines"), ("response", "json")),
        params=(
            Param("zone_id", ParamRole.QUERY, key="zoneid", required=False),
            Param("options", ParamRole.OPTIONS, required=False),
        ),
        filters=("signer",),
        exception_mappers=("empty_on_404",),
        unwrap_depth=2,
        result=ResultKind.COLLECTION,
    )
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TYPE_CHECKING

from cloudcall_sdk.rest.errors import InvalidArguments

if TYPE_CHECKING:  # pragma: no cover
    from cloudcall_sdk.rest.jobs import JobStatusReader


class ParamRole(str, enum.Enum):
    """Where a bound argument lands in the compiled request."""

    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    BODY = "body"          # one field of a map payload
    PAYLOAD = "payload"    # the whole body
    ENDPOINT = "endpoint"  # a URI (or a value resolved into one) replacing the base URI
    OPTIONS = "options"    # trailing options merged last, last-write-wins


class ResultKind(str, enum.Enum):
    """Declared shape of a successful result."""

    PAYLOAD = "payload"
    COLLECTION = "collection"
    VOID = "void"
    JOB = "job"


@dataclass(frozen=True)
class Param:
    """
    One declared parameter of an operation.

    Attributes:
        name:
            Python-side argument name (used for keyword binding).
        role:
            ParamRole deciding where the value goes.
        key:
            Wire name (query key, header name, body field, path placeholder).
            Defaults to `name`.
        required:
            Whether an unbound value is an error.
        coerce:
            Optional type coercion (e.g. `int`, `str`, `bool`). Failure is
            InvalidArguments.
        multi:
            Multi-valued: list/tuple values append one pair per item, and the
            key may repeat across params.
        default:
            Value used when unbound (before `required` is checked).
        resolver:
            ENDPOINT only: callable turning the bound value into the URI.
    """

    name: str
    role: ParamRole
    key: Optional[str] = None
    required: bool = True
    coerce: Optional[Callable[[Any], Any]] = None
    multi: bool = False
    default: Any = None
    resolver: Optional[Callable[[Any], str]] = None

    @property
    def wire_key(self) -> str:
        return self.key or self.name


@dataclass(frozen=True)
class RequestOptions:
    """
    Trailing, optional request settings.

    Bound through a ParamRole.OPTIONS parameter; every key here overrides a
    same-named value set earlier in the compile (last write wins).
    """

    query: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)

    def merged(self, other: "RequestOptions") -> "RequestOptions":
        return RequestOptions(
            query={**self.query, **other.query},
            headers={**self.headers, **other.headers},
            body={**self.body, **other.body},
        )


@dataclass(frozen=True)
class OperationDescriptor:
    """
    Immutable description of one remote operation.

    Shared read-only across all calls; never mutated after construction.
    """

    name: str
    method: str = "GET"
    path: str = ""
    params: Tuple[Param, ...] = ()
    static_query: Tuple[Tuple[str, str], ...] = ()
    static_headers: Tuple[Tuple[str, str], ...] = ()
    endpoint: Optional[str] = None
    consumes: Optional[str] = None
    produces: Optional[str] = None
    filters: Tuple[str, ...] = ()
    exception_mappers: Tuple[str, ...] = ()
    unwrap_depth: int = 0
    parser: Optional[str] = None
    result: ResultKind = ResultKind.PAYLOAD
    result_type: Optional[Callable[[Any], Any]] = None
    job_id_key: str = "jobid"
    poll_with: Optional["OperationDescriptor"] = None
    job_reader: Optional["JobStatusReader"] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if self.unwrap_depth < 0:
            raise ValueError(f"{self.name}: unwrap_depth must be >= 0")
        seen = set()
        for p in self.params:
            if p.name in seen:
                raise ValueError(f"{self.name}: duplicate parameter name {p.name!r}")
            seen.add(p.name)
            if p.resolver is not None and p.role is not ParamRole.ENDPOINT:
                raise ValueError(f"{self.name}: resolver is only valid on ENDPOINT params")
        if sum(1 for p in self.params if p.role is ParamRole.ENDPOINT) > 1:
            raise ValueError(f"{self.name}: at most one ENDPOINT parameter")
        if sum(1 for p in self.params if p.role is ParamRole.PAYLOAD) > 1:
            raise ValueError(f"{self.name}: at most one PAYLOAD parameter")
        if self.poll_with is not None and self.result is not ResultKind.JOB:
            raise ValueError(f"{self.name}: poll_with requires result=ResultKind.JOB")

    def param(self, name: str) -> Param:
        for p in self.params:
            if p.name == name:
                return p
        raise KeyError(name)


class CallArguments:
    """
    Actual values for one invocation.

    Positional values bind to `descriptor.params` in declaration order,
    keyword values by parameter name.
    """

    __slots__ = ("args", "kwargs")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.args: Tuple[Any, ...] = args
        self.kwargs: Dict[str, Any] = kwargs

    def __repr__(self) -> str:
        return f"CallArguments(args={self.args!r}, kwargs={self.kwargs!r})"

    @classmethod
    def coerce(cls, value: Any) -> "CallArguments":
        """Accept CallArguments, a mapping of keywords, a tuple/list of positionals, or None."""
        if value is None:
            return cls()
        if isinstance(value, CallArguments):
            return value
        if isinstance(value, Mapping):
            bad = [k for k in value if not isinstance(k, str)]
            if bad:
                raise InvalidArguments(
                    f"argument names must be strings, got {bad[0]!r}",
                    details={"argument": repr(bad[0])},
                )
            return cls(**dict(value))
        if isinstance(value, (tuple, list)):
            return cls(*value)
        return cls(value)

    def bind(self, descriptor: OperationDescriptor) -> Dict[str, Any]:
        """Map parameter names to values; unknown or doubly bound names are InvalidArguments."""
        if len(self.args) > len(descriptor.params):
            raise InvalidArguments(
                f"{descriptor.name}: takes {len(descriptor.params)} arguments, got {len(self.args)}",
                details={"operation": descriptor.name},
            )
        bound: Dict[str, Any] = {}
        for p, value in zip(descriptor.params, self.args):
            bound[p.name] = value
        known = {p.name for p in descriptor.params}
        for name, value in self.kwargs.items():
            if name not in known:
                raise InvalidArguments(
                    f"{descriptor.name}: unknown argument {name!r}",
                    details={"operation": descriptor.name, "argument": name},
                )
            if name in bound:
                raise InvalidArguments(
                    f"{descriptor.name}: argument {name!r} bound twice",
                    details={"operation": descriptor.name, "argument": name},
                )
            bound[name] = value
        return bound


__all__ = [
    "ParamRole",
    "ResultKind",
    "Param",
    "RequestOptions",
    "OperationDescriptor",
    "CallArguments",
]
