"""Blob store collaborator protocol and in-memory implementation.

The blob store is an external collaborator exposing get/put/list-by-prefix
with per-object string attributes. This core never streams bytes *into*
storage itself; ``put`` exists for the visibility toggle, which has to
re-put an object to change its attributes.

Listing is paginated: ``list_page`` returns at most ``limit`` entries and
an opaque cursor. ``iter_listing`` walks pages lazily so callers never
hold the whole namespace in memory.

This module provides:
  1. ``BlobHead`` / ``BlobObject`` / ``ListPage`` value types.
  2. ``BlobStore`` protocol.
  3. ``InMemoryBlobStore`` for local development and tests.
  4. ``iter_listing`` async generator over all pages of a prefix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import AsyncIterator, Mapping, Protocol, runtime_checkable

DEFAULT_PAGE_SIZE = 1000
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, slots=True)
class BlobHead:
    """Key, size and attached attributes of a stored object."""

    key: str
    size: int
    attributes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    content_type: str | None = None
    uploaded: datetime | None = None


@dataclass(frozen=True, slots=True)
class BlobObject:
    """A stored object with its body."""

    head: BlobHead
    body: bytes

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]


@dataclass(frozen=True, slots=True)
class ListPage:
    """One page of a prefix listing; ``cursor`` is None on the last page."""

    objects: tuple[BlobHead, ...]
    cursor: str | None = None


@runtime_checkable
class BlobStore(Protocol):
    """Object storage operations consumed by this core.

    Implementations raise ``StorageUnavailable`` (or any exception, which
    callers wrap into it) when the backend cannot serve the request.
    """

    async def head(self, key: str) -> BlobHead | None: ...

    async def get(self, key: str) -> BlobObject | None: ...

    async def put(
        self,
        key: str,
        body: bytes,
        *,
        attributes: Mapping[str, str] | None = None,
        content_type: str | None = None,
    ) -> BlobHead: ...

    async def list_page(
        self,
        prefix: str,
        *,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage: ...


async def iter_listing(
    store: BlobStore,
    prefix: str,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> AsyncIterator[BlobHead]:
    """Yield every object under ``prefix``, one page at a time."""
    cursor: str | None = None
    while True:
        page = await store.list_page(prefix, cursor=cursor, limit=page_size)
        for head in page.objects:
            yield head
        if page.cursor is None:
            return
        cursor = page.cursor


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryBlobStore:
    """Dict-backed blob store. Keys are listed in lexicographic order."""

    def __init__(self) -> None:
        self._objects: dict[str, BlobObject] = {}
        self.list_calls = 0

    async def head(self, key: str) -> BlobHead | None:
        obj = self._objects.get(key)
        return obj.head if obj else None

    async def get(self, key: str) -> BlobObject | None:
        return self._objects.get(key)

    async def put(
        self,
        key: str,
        body: bytes,
        *,
        attributes: Mapping[str, str] | None = None,
        content_type: str | None = None,
    ) -> BlobHead:
        head = BlobHead(
            key=key,
            size=len(body),
            attributes=MappingProxyType(dict(attributes or {})),
            content_type=content_type,
            uploaded=datetime.now(timezone.utc),
        )
        self._objects[key] = BlobObject(head=head, body=body)
        return head

    async def list_page(
        self,
        prefix: str,
        *,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        self.list_calls += 1
        keys = sorted(
            k for k in self._objects
            if k.startswith(prefix) and (cursor is None or k > cursor)
        )
        selected = keys[:limit]
        next_cursor = selected[-1] if len(keys) > limit else None
        return ListPage(
            objects=tuple(self._objects[k].head for k in selected),
            cursor=next_cursor,
        )
