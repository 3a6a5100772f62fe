"""Protocol interfaces for swappable components.

Orchestration code and AppState reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory implementations
- Another backing store to be swapped in without changing callers
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import timedelta

    import httpx

    from openshelf.fetcher import RequestOptions
    from openshelf.models.cache import CacheEntry
    from openshelf.models.collections import Collection


class CacheProtocol(Protocol):
    """Interface for the response cache backend."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def put(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def purge_expired(self, ttl: timedelta) -> int: ...


class FetcherProtocol(Protocol):
    """Interface for the read-through fetcher."""

    async def fetch(self, url: str, options: RequestOptions | None = None) -> httpx.Response: ...


class CollectionRepositoryProtocol(Protocol):
    """Interface for durable collection storage."""

    async def list_collections(self) -> list[Collection]: ...

    async def get_collection(self, collection_id: str) -> Collection: ...

    async def put_collection(self, collection: Collection) -> str: ...

    async def put_collections(self, collections: Sequence[Collection]) -> list[str]: ...

    async def delete_collection(self, collection_id: str) -> None: ...

    async def delete_collections(self, collection_ids: Sequence[str]) -> None: ...

    async def create_collection(self, name: str) -> Collection: ...

    async def rename_collection(self, collection_id: str, new_name: str) -> None: ...

    async def clone_collection(self, collection_id: str) -> Collection: ...

    async def update_collection(self, collection: Collection) -> Collection: ...
