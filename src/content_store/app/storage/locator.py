"""Object Locator: resolve an opaque file id to its storage key and descriptor.

Objects are stored under ``{prefix}{year}/{month}/{file_id}.{ext}``. The
blob namespace has no id lookup of its own, so two strategies exist:

  - ``PrefixScanLocator`` walks every key under the prefix, page by page,
    and matches the id against the filename portion of each key, ignoring
    any trailing extension. Cost is O(total objects under the prefix),
    not O(1); this is a known scalability ceiling. Pages are consumed
    lazily, never materialised as a whole.
  - ``IndexedLocator`` consults an explicit id->key index (see
    ``index.py``) and touches storage once, for the descriptor.

Both read owner, visibility and content descriptor from the attributes
attached to the object. Backend failures surface as ``StorageUnavailable``
(retryable); a missing object is ``ObjectNotFound``.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import AsyncIterator, Mapping, Protocol

from content_store.app.errors import AccessError, ObjectNotFound, StorageUnavailable
from content_store.app.observability.metrics import COLLABORATOR_FAILURES_TOTAL

from .blob import DEFAULT_PAGE_SIZE, BlobHead, BlobStore, iter_listing
from .index import ObjectKeyIndex

logger = logging.getLogger(__name__)

# ── Attribute names attached to stored objects ───────────────────────

ATTR_OWNER = 'uploadedBy'
ATTR_PUBLIC = 'isPublic'
ATTR_ORIGINAL_NAME = 'originalName'
ATTR_CONTENT_TYPE = 'contentType'
ATTR_UPLOADED_AT = 'uploadedAt'
ATTR_LAST_MODIFIED = 'lastModified'

DEFAULT_PREFIX = 'uploads/'
DEFAULT_CONTENT_TYPE = 'application/octet-stream'
DEFAULT_EXTENSION = 'bin'


# ── Descriptor ───────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FileObjectDescriptor:
    """Everything the access decision needs to know about one object."""

    file_id: str
    storage_key: str
    owner_id: str
    is_public: bool
    content_type: str = DEFAULT_CONTENT_TYPE
    original_name: str = ''
    created_at: str | None = None
    size: int = 0
    attributes: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), compare=False,
    )

    def to_dict(self) -> dict:
        return {
            'id': self.file_id,
            'name': self.original_name,
            'size': self.size,
            'contentType': self.content_type,
            'uploadedAt': self.created_at,
            'isPublic': self.is_public,
        }


def filename_of(key: str) -> str:
    return posixpath.basename(key)


def file_id_from_key(key: str) -> str | None:
    """Derive the file id from a storage key (filename up to the first dot)."""
    name = filename_of(key)
    file_id = name.split('.', 1)[0]
    return file_id or None


def key_matches_id(key: str, file_id: str) -> bool:
    """True if ``key`` is the object stored for exactly ``file_id``.

    Same derivation as the index: an id carrying the extension
    (``abc.pdf``) never matches the object stored for ``abc``.
    """
    return bool(file_id) and file_id_from_key(key) == file_id


def make_storage_key(
    file_id: str,
    original_name: str = '',
    *,
    prefix: str = DEFAULT_PREFIX,
    now: datetime | None = None,
) -> str:
    """Build ``{prefix}{year}/{month}/{file_id}.{ext}`` for a new object."""
    now = now or datetime.now(timezone.utc)
    _, dot, ext = original_name.rpartition('.')
    if not dot or not ext:
        ext = DEFAULT_EXTENSION
    return f'{prefix}{now.year}/{now.month}/{file_id}.{ext}'


def descriptor_from_head(file_id: str, head: BlobHead) -> FileObjectDescriptor:
    attrs = head.attributes
    return FileObjectDescriptor(
        file_id=file_id,
        storage_key=head.key,
        owner_id=attrs.get(ATTR_OWNER, ''),
        is_public=attrs.get(ATTR_PUBLIC) == 'true',
        content_type=attrs.get(ATTR_CONTENT_TYPE) or head.content_type or DEFAULT_CONTENT_TYPE,
        original_name=attrs.get(ATTR_ORIGINAL_NAME) or filename_of(head.key),
        created_at=attrs.get(ATTR_UPLOADED_AT),
        size=head.size,
        attributes=head.attributes,
    )


# ── Locator protocol ─────────────────────────────────────────────────


class ObjectLocator(Protocol):
    """Resolves file ids against the blob namespace."""

    async def resolve(self, file_id: str) -> FileObjectDescriptor:
        """Raises ObjectNotFound or StorageUnavailable."""
        ...

    def iter_descriptors(self) -> AsyncIterator[FileObjectDescriptor]: ...


class _ScanningBase:
    def __init__(
        self,
        store: BlobStore,
        *,
        prefix: str = DEFAULT_PREFIX,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._page_size = page_size

    @property
    def store(self) -> BlobStore:
        return self._store

    @property
    def prefix(self) -> str:
        return self._prefix

    async def _head(self, key: str) -> BlobHead | None:
        try:
            return await self._store.head(key)
        except AccessError:
            raise
        except Exception as exc:
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='storage').inc()
            raise StorageUnavailable(f'head {key!r} failed: {exc}') from exc

    async def _scan(self) -> AsyncIterator[BlobHead]:
        try:
            async for head in iter_listing(
                self._store, self._prefix, page_size=self._page_size,
            ):
                yield head
        except AccessError:
            raise
        except Exception as exc:
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='storage').inc()
            raise StorageUnavailable(f'listing {self._prefix!r} failed: {exc}') from exc

    async def iter_descriptors(self) -> AsyncIterator[FileObjectDescriptor]:
        """Yield a descriptor for every object under the prefix."""
        async for listed in self._scan():
            file_id = file_id_from_key(listed.key)
            if file_id is None:
                continue
            head = await self._head(listed.key)
            if head is not None:
                yield descriptor_from_head(file_id, head)


class PrefixScanLocator(_ScanningBase):
    """Resolve ids by scanning every key under the prefix."""

    async def find_key(self, file_id: str) -> str | None:
        async for listed in self._scan():
            if key_matches_id(listed.key, file_id):
                return listed.key
        return None

    async def resolve(self, file_id: str) -> FileObjectDescriptor:
        key = await self.find_key(file_id)
        if key is None:
            raise ObjectNotFound(file_id)

        head = await self._head(key)
        if head is None:
            # Deleted between listing and head.
            raise ObjectNotFound(file_id)
        return descriptor_from_head(file_id, head)


class IndexedLocator(_ScanningBase):
    """Resolve ids through an explicit id->key index."""

    def __init__(
        self,
        store: BlobStore,
        index: ObjectKeyIndex,
        *,
        prefix: str = DEFAULT_PREFIX,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(store, prefix=prefix, page_size=page_size)
        self._index = index

    @property
    def index(self) -> ObjectKeyIndex:
        return self._index

    async def register(self, file_id: str, key: str) -> None:
        await self._index.put(file_id, key)

    async def rebuild_index(self) -> int:
        """Populate the index from one full scan. Returns entries written.

        When one id appears under several keys the first key listed wins,
        as it does for a prefix scan; later keys are logged and skipped.
        """
        count = 0
        async for listed in self._scan():
            file_id = file_id_from_key(listed.key)
            if file_id is None:
                continue
            try:
                await self._index.put(file_id, listed.key)
            except ValueError as exc:
                logger.warning('Skipping duplicate object id during index rebuild: %s', exc)
                continue
            count += 1
        logger.info('Object index rebuilt: %d entries under %s', count, self._prefix)
        return count

    async def resolve(self, file_id: str) -> FileObjectDescriptor:
        if not file_id:
            raise ObjectNotFound(file_id)
        key = await self._index.get(file_id)
        if key is None:
            raise ObjectNotFound(file_id)

        head = await self._head(key)
        if head is None:
            logger.warning('Stale index entry: %s -> %s', file_id, key)
            raise ObjectNotFound(file_id)
        return descriptor_from_head(file_id, head)
