# cloudcall_sdk/rest/parsers.py
# SPDX-License-Identifier: Apache-2.0
"""
Pluggable body parsers.

Wire-format grammars are not part of the engine: a parser is any callable
`bytes -> document`. Parsers are registered under an id and, optionally,
under the media types they handle. Lookup order used by the interpreter:

1. the descriptor's explicit `parser` id,
2. the response Content-Type,
3. the descriptor's `consumes` media type,
4. the registry default (JSON).

Parsers raise whatever they like on bad input; the interpreter converts any
failure into MalformedResponse.

`unwrap()` strips envelope layers from a parsed document. It is shared by
the interpreter (descriptor unwrap depth) and the job status readers
(nested job results).
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from cloudcall_sdk.rest.errors import MalformedResponse

BodyParser = Callable[[bytes], Any]


def unwrap(doc: Any, depth: int, *, operation: str = "") -> Any:
    """
    Descend `depth` envelope levels.

    At each level the document must be a mapping. A single key is followed
    directly; when scalar siblings (counts, page markers) sit next to exactly
    one object/array value, that value is followed. An empty mapping means
    "no content" and yields None. Anything else is MalformedResponse.
    """
    for level in range(1, depth + 1):
        if not isinstance(doc, Mapping):
            raise MalformedResponse(
                f"{operation}: cannot unwrap level {level}: expected an object, got {type(doc).__name__}",
                details={"operation": operation, "level": level},
            )
        if not doc:
            return None
        if len(doc) == 1:
            doc = next(iter(doc.values()))
            continue
        containers = [v for v in doc.values() if isinstance(v, (Mapping, list))]
        if len(containers) != 1:
            raise MalformedResponse(
                f"{operation}: cannot unwrap level {level}: ambiguous envelope keys {sorted(doc)}",
                details={"operation": operation, "level": level},
            )
        doc = containers[0]
    return doc


def parse_json(body: bytes) -> Any:
    return json.loads(body.decode("utf-8"))


def parse_text(body: bytes) -> str:
    return body.decode("utf-8")


def parse_bytes(body: bytes) -> bytes:
    return body


class ParserRegistry:
    """Parsers by id and by media type."""

    def __init__(self, *, default: str = "json") -> None:
        self._by_id: Dict[str, BodyParser] = {}
        self._by_media: Dict[str, str] = {}
        self._default = default
        self.register("json", parse_json, media_types=("application/json", "text/json"))
        self.register("text", parse_text, media_types=("text/plain",))
        self.register("bytes", parse_bytes, media_types=("application/octet-stream",))

    def register(self, parser_id: str, parser: BodyParser, *, media_types: Iterable[str] = ()) -> None:
        self._by_id[parser_id] = parser
        for media in media_types:
            self._by_media[media.lower()] = parser_id

    def get(self, parser_id: str) -> BodyParser:
        try:
            return self._by_id[parser_id]
        except KeyError:
            raise KeyError(f"unknown parser id {parser_id!r}") from None

    def for_media(self, media_type: Optional[str]) -> Optional[BodyParser]:
        if not media_type:
            return None
        media = media_type.split(";", 1)[0].strip().lower()
        parser_id = self._by_media.get(media)
        if parser_id is None and media.endswith("+json"):
            parser_id = "json"
        return self._by_id.get(parser_id) if parser_id else None

    def select(
        self,
        *,
        parser_id: Optional[str] = None,
        content_type: Optional[str] = None,
        consumes: Optional[str] = None,
    ) -> BodyParser:
        if parser_id:
            return self.get(parser_id)
        return self.for_media(content_type) or self.for_media(consumes) or self.get(self._default)


__all__ = [
    "BodyParser",
    "ParserRegistry",
    "parse_json",
    "parse_text",
    "parse_bytes",
    "unwrap",
]
