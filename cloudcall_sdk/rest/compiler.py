# cloudcall_sdk/rest/compiler.py
# SPDX-License-Identifier: Apache-2.0
"""
Request compiler: OperationDescriptor + CallArguments → Request.

Compilation is pure and deterministic: identical inputs always produce an
identical Request (same header order, same query order, same body bytes).

Order of population
-------------------
1. Endpoint: the ENDPOINT argument (through its resolver, if declared),
   else the descriptor's static endpoint, else the compiler's base URI.
2. Path template placeholders (`{name}`) resolved from PATH arguments,
   percent-encoded.
3. Static query / headers declared on the descriptor.
4. QUERY / HEADER / BODY arguments in declaration order. A key that is
   already present is rejected unless the parameter is multi-valued.
5. OPTIONS arguments, merged last; each key replaces earlier values.
6. Body encoding per `produces` and the `Accept` header per `consumes`.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx

from cloudcall_sdk.rest.descriptor import (
    CallArguments,
    OperationDescriptor,
    Param,
    ParamRole,
    RequestOptions,
)
from cloudcall_sdk.rest.errors import InvalidArguments
from cloudcall_sdk.rest.http_types import Request

LOG = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

FORM = "application/x-www-form-urlencoded"
JSON = "application/json"


def render_value(value: Any) -> str:
    """Wire rendering of a scalar: booleans as true/false, everything else via str()."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _Bucket:
    """Ordered key/value pairs with duplicate-key policing."""

    def __init__(self, operation: str, what: str, *, fold_case: bool = False) -> None:
        self._operation = operation
        self._what = what
        self._fold = fold_case
        self.pairs: List[Tuple[str, Any]] = []

    def _norm(self, key: str) -> str:
        return key.lower() if self._fold else key

    def has(self, key: str) -> bool:
        k = self._norm(key)
        return any(self._norm(existing) == k for existing, _ in self.pairs)

    def add(self, key: str, value: Any, *, multi: bool = False) -> None:
        if self.has(key) and not multi:
            raise InvalidArguments(
                f"{self._operation}: duplicate {self._what} key {key!r}",
                details={"operation": self._operation, "key": key},
            )
        self.pairs.append((key, value))

    def override(self, key: str, value: Any) -> None:
        k = self._norm(key)
        self.pairs = [(ek, ev) for ek, ev in self.pairs if self._norm(ek) != k]
        self.pairs.append((key, value))

    def folded(self) -> List[Tuple[str, str]]:
        """One pair per key; repeated values are joined by ', ' at the first occurrence."""
        out: Dict[str, Tuple[str, str]] = {}
        for k, v in self.pairs:
            nk = self._norm(k)
            out[nk] = (out[nk][0], f"{out[nk][1]}, {v}") if nk in out else (k, str(v))
        return list(out.values())


class RequestCompiler:
    """
    Resolves descriptors into concrete requests.

    Args:
        base_uri:
            Default endpoint for descriptors that declare neither a static
            `endpoint` nor an ENDPOINT parameter.
    """

    def __init__(self, base_uri: Optional[str] = None) -> None:
        self._base_uri = base_uri

    def compile(self, descriptor: OperationDescriptor, args: Any = None) -> Request:
        call_args = CallArguments.coerce(args)
        bound = call_args.bind(descriptor)
        op = descriptor.name

        values: Dict[str, Any] = {}
        for p in descriptor.params:
            value = bound.get(p.name, p.default)
            if value is None:
                if p.required:
                    raise InvalidArguments(
                        f"{op}: required argument {p.name!r} is unbound",
                        details={"operation": op, "argument": p.name},
                    )
                continue
            values[p.name] = value

        url = self._resolve_url(descriptor, values)

        query = _Bucket(op, "query")
        headers = _Bucket(op, "header", fold_case=True)
        body = _Bucket(op, "body")
        for k, v in descriptor.static_query:
            query.add(k, v)
        for k, v in descriptor.static_headers:
            headers.add(k, v)

        payload: Any = None
        options = RequestOptions()
        for p in descriptor.params:
            if p.name not in values:
                continue
            value = values[p.name]
            if p.role is ParamRole.QUERY:
                self._add_param(query, p, value, op)
            elif p.role is ParamRole.HEADER:
                self._add_param(headers, p, value, op)
            elif p.role is ParamRole.BODY:
                self._add_param(body, p, value, op, render=False)
            elif p.role is ParamRole.PAYLOAD:
                payload = value
            elif p.role is ParamRole.OPTIONS:
                options = options.merged(self._as_options(value, op))

        for k, v in options.query.items():
            query.override(k, render_value(v))
        for k, v in options.headers.items():
            headers.override(k, render_value(v))
        for k, v in options.body.items():
            body.override(k, v)

        if descriptor.consumes and not headers.has("Accept"):
            headers.add("Accept", descriptor.consumes)

        content, content_type = self._encode_body(descriptor, body.pairs, payload)
        if content_type is not None:
            headers.override("Content-Type", content_type)

        request = Request(
            operation=op,
            method=descriptor.method,
            url=url,
            headers=tuple(headers.folded()),
            query=tuple((k, str(v)) for k, v in query.pairs),
            body=content,
            content_type=content_type,
        )
        LOG.debug("compiled %s %s %s", op, request.method, request.url)
        return request

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _resolve_url(self, descriptor: OperationDescriptor, values: Dict[str, Any]) -> str:
        op = descriptor.name
        base: Optional[str] = None
        for p in descriptor.params:
            if p.role is ParamRole.ENDPOINT and p.name in values:
                raw = values[p.name]
                if p.resolver is not None:
                    try:
                        raw = p.resolver(raw)
                    except (TypeError, ValueError, KeyError) as e:
                        raise InvalidArguments(
                            f"{op}: endpoint resolver failed for {p.name!r}: {e}",
                            details={"operation": op, "argument": p.name},
                        ) from e
                base = str(raw)
        if base is None:
            base = descriptor.endpoint or self._base_uri
        if not base:
            raise InvalidArguments(f"{op}: no endpoint configured", details={"operation": op})

        def _sub(match: "re.Match[str]") -> str:
            name = match.group(1)
            param = self._path_param(descriptor, name)
            if param is None or param.name not in values:
                raise InvalidArguments(
                    f"{op}: path placeholder {{{name}}} is unbound",
                    details={"operation": op, "placeholder": name},
                )
            rendered = render_value(self._coerce(param, values[param.name], op))
            return quote(rendered, safe="")

        path = _PLACEHOLDER.sub(_sub, descriptor.path)
        url = base.rstrip("/") + path if path else base

        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise InvalidArguments(f"{op}: invalid URI {url!r}", details={"operation": op}) from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidArguments(f"{op}: invalid URI {url!r}", details={"operation": op})
        if parsed.query:
            raise InvalidArguments(
                f"{op}: endpoint must not carry a query string: {url!r}",
                details={"operation": op},
            )
        return url

    @staticmethod
    def _path_param(descriptor: OperationDescriptor, placeholder: str) -> Optional[Param]:
        for p in descriptor.params:
            if p.role is ParamRole.PATH and p.wire_key == placeholder:
                return p
        return None

    @staticmethod
    def _coerce(param: Param, value: Any, op: str) -> Any:
        if param.coerce is None:
            return value
        if param.coerce is bool and not isinstance(value, bool):
            if isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            raise InvalidArguments(
                f"{op}: argument {param.name!r} must be a boolean",
                details={"operation": op, "argument": param.name},
            )
        try:
            return param.coerce(value)
        except (TypeError, ValueError) as e:
            raise InvalidArguments(
                f"{op}: argument {param.name!r} failed coercion: {e}",
                details={"operation": op, "argument": param.name},
            ) from e

    def _add_param(self, bucket: _Bucket, param: Param, value: Any, op: str, *, render: bool = True) -> None:
        items = list(value) if param.multi and isinstance(value, (list, tuple)) else [value]
        for item in items:
            coerced = self._coerce(param, item, op)
            bucket.add(param.wire_key, render_value(coerced) if render else coerced, multi=param.multi)

    @staticmethod
    def _as_options(value: Any, op: str) -> RequestOptions:
        if isinstance(value, RequestOptions):
            return value
        if isinstance(value, Mapping):
            return RequestOptions(query=dict(value))
        raise InvalidArguments(
            f"{op}: options must be RequestOptions or a mapping, got {type(value).__name__}",
            details={"operation": op},
        )

    @staticmethod
    def _encode_body(
        descriptor: OperationDescriptor,
        fields: List[Tuple[str, Any]],
        payload: Any,
    ) -> Tuple[Optional[bytes], Optional[str]]:
        op = descriptor.name
        if payload is not None and fields:
            raise InvalidArguments(
                f"{op}: PAYLOAD and BODY parameters cannot both be bound",
                details={"operation": op},
            )
        if payload is None and not fields:
            return None, None

        if isinstance(payload, bytes):
            return payload, descriptor.produces or "application/octet-stream"
        if isinstance(payload, str):
            return payload.encode("utf-8"), descriptor.produces or "text/plain; charset=utf-8"

        media = descriptor.produces or JSON
        if media == FORM:
            if fields:
                pairs = fields
            elif isinstance(payload, Mapping):
                pairs = list(payload.items())
            else:
                raise InvalidArguments(f"{op}: form payload must be a mapping", details={"operation": op})
            return urlencode([(k, render_value(v)) for k, v in pairs]).encode("ascii"), FORM
        doc: Any = _json_fields(descriptor, fields) if fields else payload
        if not media.endswith("json"):
            raise InvalidArguments(
                f"{op}: cannot encode a structured payload as {media}",
                details={"operation": op},
            )
        try:
            return json.dumps(doc, separators=(",", ":")).encode("utf-8"), media
        except (TypeError, ValueError) as e:
            raise InvalidArguments(
                f"{op}: payload must be JSON-serializable: {e}",
                details={"operation": op},
            ) from e


def _json_fields(descriptor: OperationDescriptor, fields: List[Tuple[str, Any]]) -> Dict[str, Any]:
    # multi-valued keys always encode as a list, even with a single item
    multi = {p.wire_key for p in descriptor.params if p.role is ParamRole.BODY and p.multi}
    doc: Dict[str, Any] = {}
    for k, v in fields:
        if k in multi:
            doc.setdefault(k, []).append(v)
        else:
            doc[k] = v
    return doc


__all__ = [
    "RequestCompiler",
    "render_value",
]
