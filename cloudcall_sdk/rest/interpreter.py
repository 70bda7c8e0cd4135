# cloudcall_sdk/rest/interpreter.py
# SPDX-License-Identifier: Apache-2.0
"""
Response interpreter: Response → payload | taxonomy error.

Algorithm
---------
1. 2xx responses go to payload extraction. Anything else runs the
   descriptor's ordered exception-mapper chain; the first mapper that
   claims the response decides the outcome. Unclaimed failures use the
   default status table (5xx ServerFault, 404 NotFound, 401/403
   Unauthorized, else MalformedResponse).
2. A mapper may claim with "absorb" semantics: the failure becomes a
   normal value (empty collection, None, False). Absorption is declared per
   descriptor, never inferred from the result shape.
3. On success the body is parsed, then unwrapped `unwrap_depth` envelope
   levels.
4. JOB results become a JobHandle with no further transformation; the
   poller takes over from there.

The response body is consumed exactly once. Any parse, unwrap or
conversion failure on a 2xx response is MalformedResponse; a partially
parsed value is never returned.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from cloudcall_sdk.rest.descriptor import OperationDescriptor, ResultKind
from cloudcall_sdk.rest.errors import (
    Conflict,
    ErrorKind,
    InvalidArguments,
    MalformedResponse,
    RateLimited,
    RemoteOperationError,
    error_for_kind,
    error_for_status,
    kind_for_code,
    kind_for_status,
)
from cloudcall_sdk.rest.http_types import Response
from cloudcall_sdk.rest.jobs import JobHandle
from cloudcall_sdk.rest.parsers import ParserRegistry, unwrap

LOG = logging.getLogger(__name__)

_BODY_PREVIEW = 256


@dataclass(frozen=True)
class Claim:
    """A mapper's verdict: either an error to raise or a value to return."""

    value: Any = None
    error: Optional[RemoteOperationError] = None


@runtime_checkable
class ExceptionMapper(Protocol):
    def claim(
        self,
        descriptor: OperationDescriptor,
        status: int,
        headers: Mapping[str, str],
        body: bytes,
    ) -> Optional[Claim]: ...


# =============================================================================
# Built-in mappers
# =============================================================================

class AbsorbNotFound:
    """Turns a 404 into a normal value built by `factory`."""

    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory

    def claim(self, descriptor, status, headers, body) -> Optional[Claim]:
        if status != 404:
            return None
        LOG.debug("%s: absorbing 404", descriptor.name)
        return Claim(value=self._factory())


def retry_after_ms(headers: Mapping[str, str]) -> Optional[int]:
    """Best-effort Retry-After (seconds) → milliseconds."""
    val = headers.get("retry-after")
    if val is None:
        return None
    try:
        return max(0, int(str(val).strip())) * 1000
    except ValueError:
        return None


class StandardStatusMapper:
    """409 → Conflict, 429 → RateLimited (with the Retry-After hint)."""

    def claim(self, descriptor, status, headers, body) -> Optional[Claim]:
        if status == 409:
            return Claim(error=Conflict(f"{descriptor.name}: conflict", status=status))
        if status == 429:
            return Claim(
                error=RateLimited(
                    f"{descriptor.name}: rate limited",
                    status=status,
                    retry_after_ms=retry_after_ms(headers),
                )
            )
        return None


class JsonErrorBodyMapper:
    """
    Classifies failures by an error document embedded in the body.

    Looks for `code_key` at the top level or one envelope level down, e.g.
    `{"deployvirtualmachineresponse": {"errorcode": 431, "errortext": "..."}}`.

    Args:
        code_key / message_key:
            Field names of the embedded code and message.
        code_kinds:
            Provider-specific overrides of the code classification.
            Codes neither listed there nor recognized fall back to the HTTP
            status classification.
    """

    def __init__(
        self,
        *,
        code_key: str = "errorcode",
        message_key: str = "errortext",
        code_kinds: Optional[Mapping[int, ErrorKind]] = None,
    ) -> None:
        self._code_key = code_key
        self._message_key = message_key
        self._code_kinds = dict(code_kinds or {})

    def _find(self, doc: Any) -> Optional[Mapping[str, Any]]:
        if not isinstance(doc, Mapping):
            return None
        if self._code_key in doc:
            return doc
        if len(doc) == 1:
            inner = next(iter(doc.values()))
            if isinstance(inner, Mapping) and self._code_key in inner:
                return inner
        return None

    def claim(self, descriptor, status, headers, body) -> Optional[Claim]:
        try:
            doc = json.loads(body.decode("utf-8")) if body else None
        except (UnicodeDecodeError, ValueError):
            return None
        err = self._find(doc)
        if err is None:
            return None
        try:
            code = int(err[self._code_key])
        except (TypeError, ValueError):
            return None
        kind = self._code_kinds.get(code) or kind_for_code(code, default=kind_for_status(status))
        message = str(err.get(self._message_key) or f"{descriptor.name}: remote error {code}")
        return Claim(
            error=error_for_kind(
                kind,
                message,
                status=status,
                retry_after_ms=retry_after_ms(headers) if kind is ErrorKind.RATE_LIMITED else None,
                details={"operation": descriptor.name, "errorcode": code},
            )
        )


class MapperRegistry:
    """Exception mappers by id."""

    def __init__(self) -> None:
        self._mappers: Dict[str, ExceptionMapper] = {}
        self.register("empty_on_404", AbsorbNotFound(list))
        self.register("none_on_404", AbsorbNotFound(lambda: None))
        self.register("void_on_404", AbsorbNotFound(lambda: None))
        self.register("false_on_404", AbsorbNotFound(lambda: False))
        self.register("standard_status", StandardStatusMapper())
        self.register("json_error_body", JsonErrorBodyMapper())

    def register(self, mapper_id: str, mapper: ExceptionMapper) -> None:
        self._mappers[mapper_id] = mapper

    def __contains__(self, mapper_id: str) -> bool:
        return mapper_id in self._mappers

    def resolve(self, mapper_ids: Iterable[str], *, operation: str = "") -> List[ExceptionMapper]:
        out = []
        for mid in mapper_ids:
            if mid not in self._mappers:
                raise InvalidArguments(
                    f"{operation}: unknown exception mapper {mid!r}",
                    details={"operation": operation, "mapper": mid},
                )
            out.append(self._mappers[mid])
        return out


# =============================================================================
# Interpreter
# =============================================================================

class ResponseInterpreter:
    def __init__(
        self,
        *,
        parsers: Optional[ParserRegistry] = None,
        mappers: Optional[MapperRegistry] = None,
    ) -> None:
        self.parsers = parsers or ParserRegistry()
        self.mappers = mappers or MapperRegistry()

    def interpret(self, descriptor: OperationDescriptor, response: Response) -> Any:
        body = response.consume()
        if response.ok:
            return self._success(descriptor, response, body)
        return self._failure(descriptor, response, body)

    # ------------------------------------------------------------------ #

    def _failure(self, descriptor: OperationDescriptor, response: Response, body: bytes) -> Any:
        for mapper in self.mappers.resolve(descriptor.exception_mappers, operation=descriptor.name):
            claim = mapper.claim(descriptor, response.status, response.headers, body)
            if claim is None:
                continue
            if claim.error is not None:
                raise claim.error
            return claim.value

        preview = body[:_BODY_PREVIEW].decode("utf-8", errors="replace")
        raise error_for_status(
            response.status,
            f"{descriptor.name}: remote returned status {response.status}",
            details={"operation": descriptor.name, "body": preview} if preview else {"operation": descriptor.name},
        )

    def _success(self, descriptor: OperationDescriptor, response: Response, body: bytes) -> Any:
        shape = descriptor.result
        if shape is ResultKind.VOID:
            return None

        doc: Any = None
        if body.strip():
            try:
                parser = self.parsers.select(
                    parser_id=descriptor.parser,
                    content_type=response.content_type,
                    consumes=descriptor.consumes,
                )
            except KeyError as e:
                raise InvalidArguments(str(e), details={"operation": descriptor.name}) from e
            try:
                doc = parser(body)
            except Exception as e:  # noqa: BLE001
                raise MalformedResponse(
                    f"{descriptor.name}: unparseable body: {e}",
                    status=response.status,
                    details={"operation": descriptor.name},
                ) from e
            doc = unwrap(doc, descriptor.unwrap_depth, operation=descriptor.name)

        if shape is ResultKind.JOB:
            return self._job_handle(descriptor, doc)
        if shape is ResultKind.COLLECTION:
            return self._collection(descriptor, doc)
        if doc is None or descriptor.result_type is None:
            return doc
        return convert(descriptor, doc)

    @staticmethod
    def _job_handle(descriptor: OperationDescriptor, doc: Any) -> JobHandle:
        if not isinstance(doc, Mapping) or doc.get(descriptor.job_id_key) in (None, ""):
            raise MalformedResponse(
                f"{descriptor.name}: no job id under {descriptor.job_id_key!r}",
                details={"operation": descriptor.name},
            )
        return JobHandle(job_id=str(doc[descriptor.job_id_key]), operation=descriptor.name, submitted=dict(doc))

    @staticmethod
    def _collection(descriptor: OperationDescriptor, doc: Any) -> List[Any]:
        if doc is None:
            return []
        if not isinstance(doc, (list, tuple)):
            raise MalformedResponse(
                f"{descriptor.name}: expected a collection, got {type(doc).__name__}",
                details={"operation": descriptor.name},
            )
        if descriptor.result_type is None:
            return list(doc)
        return [convert(descriptor, item) for item in doc]


def convert(descriptor: OperationDescriptor, doc: Any) -> Any:
    """Apply the descriptor's result_type; any failure is MalformedResponse."""
    if descriptor.result_type is None:
        return doc
    try:
        return descriptor.result_type(doc)
    except Exception as e:  # noqa: BLE001
        raise MalformedResponse(
            f"{descriptor.name}: result conversion failed: {e}",
            details={"operation": descriptor.name},
        ) from e


__all__ = [
    "Claim",
    "ExceptionMapper",
    "AbsorbNotFound",
    "StandardStatusMapper",
    "JsonErrorBodyMapper",
    "MapperRegistry",
    "ResponseInterpreter",
    "convert",
    "retry_after_ms",
]
