# cloudcall_sdk/rest/http_types.py
# SPDX-License-Identifier: Apache-2.0
"""
Request and Response value types.

`Request` is frozen: filters never mutate a request in place, they derive a
new one through the `with_*` helpers. Whatever instance reaches the
dispatcher is therefore immutable for the rest of the call.

Header names are unique case-insensitively; the first spelling seen for a
name is kept and later writes replace the value in place, so header order
stays deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlencode

Pairs = Tuple[Tuple[str, str], ...]


def _set_pair(pairs: Pairs, name: str, value: str, *, fold_case: bool) -> Pairs:
    def same(k: str) -> bool:
        return k.lower() == name.lower() if fold_case else k == name

    out = []
    replaced = False
    for k, v in pairs:
        if same(k):
            if not replaced:
                out.append((k, value))
                replaced = True
            continue
        out.append((k, v))
    if not replaced:
        out.append((name, value))
    return tuple(out)


@dataclass(frozen=True)
class Request:
    """
    A fully resolved request for one operation.

    Attributes:
        operation:
            Name of the descriptor this request was compiled from.
        method:
            Upper-case HTTP verb.
        url:
            Absolute URL without the query string.
        headers:
            Ordered (name, value) pairs, unique case-insensitively.
        query:
            Ordered (key, value) pairs; a key repeats only for multi-valued params.
        body:
            Encoded payload, if any.
        content_type:
            Media type of `body`.
    """

    operation: str
    method: str
    url: str
    headers: Pairs = ()
    query: Pairs = ()
    body: Optional[bytes] = None
    content_type: Optional[str] = None

    @property
    def full_url(self) -> str:
        if not self.query:
            return self.url
        return f"{self.url}?{urlencode(self.query)}"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lname = name.lower()
        for k, v in self.headers:
            if k.lower() == lname:
                return v
        return default

    def query_values(self, key: str) -> Tuple[str, ...]:
        return tuple(v for k, v in self.query if k == key)

    def with_header(self, name: str, value: str) -> "Request":
        return replace(self, headers=_set_pair(self.headers, name, value, fold_case=True))

    def with_query_param(self, key: str, value: str) -> "Request":
        """Set `key` to a single value, replacing any existing values."""
        return replace(self, query=_set_pair(self.query, key, value, fold_case=False))

    def with_query(self, pairs: Iterable[Tuple[str, str]]) -> "Request":
        """Replace the whole query with `pairs` (order preserved)."""
        return replace(self, query=tuple((str(k), str(v)) for k, v in pairs))


@dataclass
class Response:
    """
    A raw response as handed from the dispatcher to the interpreter.

    The body is consumed exactly once; `consume()` raises on a second read.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    _consumed: bool = field(default=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.headers = {str(k).lower(): str(v) for k, v in dict(self.headers).items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    @property
    def content_type(self) -> Optional[str]:
        raw = self.headers.get("content-type")
        if not raw:
            return None
        return raw.split(";", 1)[0].strip().lower() or None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def consume(self) -> bytes:
        if self._consumed:
            raise RuntimeError("response body already consumed")
        self._consumed = True
        body, self.body = self.body, b""
        return body


def headers_from_pairs(pairs: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """Fold repeated header pairs into a lowercased mapping (values joined by ', ')."""
    out: Dict[str, str] = {}
    for k, v in pairs:
        lk = k.lower()
        out[lk] = f"{out[lk]}, {v}" if lk in out else v
    return out


__all__ = [
    "Request",
    "Response",
    "headers_from_pairs",
]
