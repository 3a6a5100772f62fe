"""SQLite collection store.

Every method commits before returning, so a completed call is durable. Unlike
the response cache, storage errors propagate: losing a user's collection must
never look like success.

The store has no locking beyond aiosqlite's single connection. The last
writer for a given id wins; read-modify-write callers must re-read the record
immediately before writing and accept the lost-update race.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import TypeAdapter

from openshelf.errors import ErrorCode, InvalidArgument, NotFound
from openshelf.models.collections import Collection
from openshelf.models.entities import CollectedEntity

if TYPE_CHECKING:
    from collections.abc import Sequence

    import aiosqlite

log = structlog.get_logger()

_ENTITIES = TypeAdapter(list[CollectedEntity])

_CREATE_COLLECTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS collections (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    entities    TEXT NOT NULL DEFAULT '[]',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""

_SELECT = "SELECT id, name, entities, created_at, updated_at FROM collections"

# ON CONFLICT keeps the original rowid, so list order is creation order even
# after updates. INSERT OR REPLACE would move updated rows to the end.
_UPSERT = """
INSERT INTO collections (id, name, entities, created_at, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    name = excluded.name,
    entities = excluded.entities,
    created_at = excluded.created_at,
    updated_at = excluded.updated_at
"""


def new_collection_id() -> str:
    """Random identifier; safe to embed in links shared across clients."""
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


def _row_to_collection(row: tuple) -> Collection:
    return Collection(
        id=row[0],
        name=row[1],
        entities=_ENTITIES.validate_json(row[2]),
        created_at=datetime.fromisoformat(row[3]),
        updated_at=datetime.fromisoformat(row[4]),
    )


class CollectionRepository:
    """SQLite-backed collection store implementing CollectionRepositoryProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create the collections table. Called once at startup."""
        await self._db.execute(_CREATE_COLLECTIONS_TABLE)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_collections(self) -> list[Collection]:
        cursor = await self._db.execute(f"{_SELECT} ORDER BY rowid")
        return [_row_to_collection(row) for row in await cursor.fetchall()]

    async def get_collection(self, collection_id: str) -> Collection:
        collection = await self._find(collection_id)
        if collection is None:
            raise NotFound(f"Collection not found: {collection_id}")
        return collection

    async def count(self) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM collections")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def _find(self, collection_id: str) -> Collection | None:
        cursor = await self._db.execute(f"{_SELECT} WHERE id = ?", (collection_id,))
        row = await cursor.fetchone()
        return _row_to_collection(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put_collection(self, collection: Collection) -> str:
        """Upsert by id. Returns the id."""
        await self._write(collection)
        await self._db.commit()
        return collection.id

    async def put_collections(self, collections: Sequence[Collection]) -> list[str]:
        """Upsert each collection in order, committing one at a time.

        Not atomic: if a write fails, the collections before it stay committed.
        """
        ids: list[str] = []
        for collection in collections:
            ids.append(await self.put_collection(collection))
        return ids

    async def update_collection(self, collection: Collection) -> Collection:
        """Store ``collection`` with a refreshed ``updated_at``."""
        updated = collection.model_copy(update={"updated_at": _now()})
        await self.put_collection(updated)
        return updated

    async def delete_collection(self, collection_id: str) -> None:
        await self.delete_collections([collection_id])

    async def delete_collections(self, collection_ids: Sequence[str]) -> None:
        """Delete the given ids; unknown ids are ignored.

        Rejected up front if the store would be left without any collection.
        """
        existing = {c.id for c in await self.list_collections()}
        doomed = existing.intersection(collection_ids)
        if doomed and doomed == existing:
            raise InvalidArgument(
                "Cannot delete the last remaining collection",
                code=ErrorCode.LAST_COLLECTION,
            )

        for collection_id in collection_ids:
            await self._db.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
            await self._db.commit()
        log.info("collections_deleted", count=len(doomed))

    async def create_collection(self, name: str) -> Collection:
        now = _now()
        collection = Collection(
            id=new_collection_id(),
            name=name,
            entities=[],
            created_at=now,
            updated_at=now,
        )
        await self.put_collection(collection)
        log.info("collection_created", collection_id=collection.id, name=name)
        return collection

    async def rename_collection(self, collection_id: str, new_name: str) -> None:
        """Rename in place. Silently does nothing if the id is unknown."""
        collection = await self._find(collection_id)
        if collection is None:
            log.debug("collection_rename_skipped", collection_id=collection_id)
            return
        await self.put_collection(
            collection.model_copy(update={"name": new_name, "updated_at": _now()})
        )

    async def clone_collection(self, collection_id: str) -> Collection:
        source = await self.get_collection(collection_id)
        now = _now()
        clone = source.model_copy(
            update={
                "id": new_collection_id(),
                "name": f"{source.name} (Clone)",
                "created_at": now,
                "updated_at": now,
            },
            deep=True,
        )
        await self.put_collection(clone)
        log.info("collection_cloned", source_id=collection_id, collection_id=clone.id)
        return clone

    async def clone_collections(self, collection_ids: Sequence[str]) -> list[Collection]:
        return [await self.clone_collection(collection_id) for collection_id in collection_ids]

    async def _write(self, collection: Collection) -> None:
        await self._db.execute(
            _UPSERT,
            (
                collection.id,
                collection.name,
                _ENTITIES.dump_json(collection.entities).decode("utf-8"),
                collection.created_at.isoformat(),
                collection.updated_at.isoformat(),
            ),
        )
