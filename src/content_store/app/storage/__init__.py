from .blob import BlobHead, BlobObject, BlobStore, InMemoryBlobStore, ListPage, iter_listing
from .index import InMemoryObjectKeyIndex, ObjectKeyIndex
from .locator import (
    FileObjectDescriptor,
    IndexedLocator,
    ObjectLocator,
    PrefixScanLocator,
    make_storage_key,
)

__all__ = [
    "BlobHead",
    "BlobObject",
    "BlobStore",
    "FileObjectDescriptor",
    "InMemoryBlobStore",
    "InMemoryObjectKeyIndex",
    "IndexedLocator",
    "ListPage",
    "ObjectKeyIndex",
    "ObjectLocator",
    "PrefixScanLocator",
    "iter_listing",
    "make_storage_key",
]
