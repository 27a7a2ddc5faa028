"""Parse slug and server tokens: ``[server/][collection/]slug``.

Grammar (segments separated by ``/``)::

    address := server? collection? slug
    server  := one of the configured server tags (release, stage, custom...)
    collection := "preview"
    slug    := segment ("/" segment)*

A segment equal to a known tag is always consumed as that tag, so a slug named
``stage`` cannot be addressed without a server prefix in front of it being
consumed first. Unrecognized segments belong to the slug.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import get_args

from nimbus_cli.domain.errors import AddressError
from nimbus_cli.domain.models import CollectionTag, ServerAddress, SlugAddress

DEFAULT_SERVER_TAGS: frozenset[str] = frozenset({"release", "stage"})
COLLECTION_TAGS: frozenset[str] = frozenset(get_args(CollectionTag))


class _Cursor:
    def __init__(self, token: str):
        self.token = token
        stripped = token.strip().strip("/")
        self.segments = stripped.split("/") if stripped else []
        self.pos = 0

    def peek(self) -> str | None:
        return self.segments[self.pos] if self.pos < len(self.segments) else None

    def take_if(self, allowed: frozenset[str]) -> str | None:
        seg = self.peek()
        if seg is not None and seg in allowed:
            self.pos += 1
            return seg
        return None

    def rest(self) -> str:
        out = "/".join(self.segments[self.pos:])
        self.pos = len(self.segments)
        return out


class AddressParser:
    """Small recursive-descent parser over ``/``-separated segments."""

    def __init__(self, server_tags: Iterable[str] = DEFAULT_SERVER_TAGS):
        self.server_tags = frozenset(server_tags) | DEFAULT_SERVER_TAGS

    def _server(self, cur: _Cursor) -> str | None:
        return cur.take_if(self.server_tags)

    def _collection(self, cur: _Cursor) -> str | None:
        return cur.take_if(COLLECTION_TAGS)

    def parse_slug(self, token: str) -> SlugAddress:
        cur = _Cursor(token)
        server = self._server(cur)
        collection = self._collection(cur)
        slug = cur.rest()
        if not slug:
            raise AddressError(token, "empty")
        return SlugAddress(server=server, collection=collection, slug=slug)

    def parse_server(self, token: str | None) -> ServerAddress:
        """Parse a server argument (no slug). Empty or ``None`` means the default server."""
        cur = _Cursor(token or "")
        server = self._server(cur)
        collection = self._collection(cur)
        if cur.peek() is not None:
            raise AddressError(token or "", "unexpected-segment")
        return ServerAddress(server=server, collection=collection)

    def parse_many(self, tokens: Iterable[str]) -> list[SlugAddress]:
        return [self.parse_slug(t) for t in tokens]


__all__ = ["COLLECTION_TAGS", "DEFAULT_SERVER_TAGS", "AddressParser"]
