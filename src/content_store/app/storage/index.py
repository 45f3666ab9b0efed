"""Explicit file id -> storage key index.

Replaces the O(total objects) prefix scan with a direct lookup. The
index is a first-class collaborator: whoever creates objects registers
them, and ``IndexedLocator.rebuild_index`` can repopulate it from a
single scan (e.g. at startup).

The index only maps ids to keys. Owner and visibility always come from
the object's own attributes, so a stale index can at worst produce a
NotFound, never a wrong verdict.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ObjectKeyIndex(Protocol):
    """Abstract id->key mapping."""

    async def get(self, file_id: str) -> str | None: ...

    async def put(self, file_id: str, key: str) -> None: ...

    async def remove(self, file_id: str) -> bool: ...


class InMemoryObjectKeyIndex:
    """Dict-backed index for local development and tests."""

    def __init__(self) -> None:
        self._keys: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._keys)

    async def get(self, file_id: str) -> str | None:
        return self._keys.get(file_id)

    async def put(self, file_id: str, key: str) -> None:
        existing = self._keys.get(file_id)
        if existing is not None and existing != key:
            raise ValueError(
                f'file id {file_id!r} already indexed at {existing!r}, refusing {key!r}'
            )
        self._keys[file_id] = key

    async def remove(self, file_id: str) -> bool:
        return self._keys.pop(file_id, None) is not None
