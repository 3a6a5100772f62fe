"""Unit tests for openshelf.repository."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from openshelf.errors import ErrorCode, InvalidArgument, NotFound
from openshelf.models.collections import Collection
from tests.conftest import make_entity

if TYPE_CHECKING:
    from openshelf.repository import CollectionRepository


def _collection(
    name: str = "Papers", *entity_ids: str, age: timedelta = timedelta(0)
) -> Collection:
    stamp = datetime.now(UTC) - age
    return Collection(
        id=str(uuid.uuid4()),
        name=name,
        entities=[make_entity(entity_id) for entity_id in entity_ids],
        created_at=stamp,
        updated_at=stamp,
    )


class TestReads:
    async def test_empty_store(self, repository: CollectionRepository) -> None:
        assert await repository.list_collections() == []
        assert await repository.count() == 0

    async def test_get_unknown_raises_not_found(self, repository: CollectionRepository) -> None:
        with pytest.raises(NotFound) as exc_info:
            await repository.get_collection("nope")
        assert exc_info.value.code == ErrorCode.NOT_FOUND

    async def test_put_then_get_roundtrip(self, repository: CollectionRepository) -> None:
        collection = _collection("Papers", "W1", "W2")
        assert await repository.put_collection(collection) == collection.id

        stored = await repository.get_collection(collection.id)
        assert stored == collection
        assert stored.items == ["W1", "W2"]
        assert stored.entities[0].related_nodes[0].id == "A1"

    async def test_list_keeps_insertion_order_after_updates(
        self, repository: CollectionRepository
    ) -> None:
        first, second = _collection("first"), _collection("second")
        await repository.put_collections([first, second])
        await repository.update_collection(first.model_copy(update={"name": "renamed"}))

        assert [c.name for c in await repository.list_collections()] == ["renamed", "second"]


class TestWrites:
    async def test_put_upserts(self, repository: CollectionRepository) -> None:
        collection = _collection("Papers")
        await repository.put_collection(collection)
        await repository.put_collection(collection.model_copy(update={"name": "Renamed"}))

        assert await repository.count() == 1
        assert (await repository.get_collection(collection.id)).name == "Renamed"

    async def test_put_many_returns_ids(self, repository: CollectionRepository) -> None:
        batch = [_collection("a"), _collection("b")]
        assert await repository.put_collections(batch) == [c.id for c in batch]
        assert await repository.count() == 2

    async def test_put_many_partial_failure_keeps_earlier_writes(
        self, repository: CollectionRepository
    ) -> None:
        first, second = _collection("a"), _collection("b")
        original = repository.put_collection
        calls = 0

        async def flaky_put(collection: Collection) -> str:
            nonlocal calls
            calls += 1
            if calls == 2:
                raise aiosqlite.OperationalError("disk full")
            return await original(collection)

        repository.put_collection = flaky_put  # type: ignore[method-assign]
        with pytest.raises(aiosqlite.OperationalError):
            await repository.put_collections([first, second])
        repository.put_collection = original  # type: ignore[method-assign]

        assert [c.id for c in await repository.list_collections()] == [first.id]

    async def test_update_refreshes_updated_at(self, repository: CollectionRepository) -> None:
        collection = _collection("Papers", age=timedelta(days=1))
        await repository.put_collection(collection)

        updated = await repository.update_collection(collection)

        assert updated.updated_at > collection.updated_at
        assert updated.created_at == collection.created_at
        assert (await repository.get_collection(collection.id)).updated_at == updated.updated_at

    async def test_create_collection(self, repository: CollectionRepository) -> None:
        created = await repository.create_collection("Fresh")

        assert uuid.UUID(created.id).version == 4
        assert created.entities == []
        assert created.created_at == created.updated_at
        assert await repository.get_collection(created.id) == created

    async def test_rename(self, repository: CollectionRepository) -> None:
        collection = _collection("Old", age=timedelta(hours=1))
        await repository.put_collection(collection)

        await repository.rename_collection(collection.id, "New")

        stored = await repository.get_collection(collection.id)
        assert stored.name == "New"
        assert stored.updated_at > collection.updated_at

    async def test_rename_unknown_is_noop(self, repository: CollectionRepository) -> None:
        await repository.rename_collection("missing", "New")
        assert await repository.count() == 0

    async def test_storage_errors_propagate(self, repository: CollectionRepository) -> None:
        repository._db.execute = AsyncMock(  # type: ignore[method-assign]
            side_effect=aiosqlite.OperationalError("database is locked")
        )
        with pytest.raises(aiosqlite.OperationalError):
            await repository.put_collection(_collection())


class TestDelete:
    async def test_delete(self, repository: CollectionRepository) -> None:
        keep, drop = _collection("keep"), _collection("drop")
        await repository.put_collections([keep, drop])

        await repository.delete_collection(drop.id)

        assert [c.id for c in await repository.list_collections()] == [keep.id]

    async def test_delete_last_rejected(self, repository: CollectionRepository) -> None:
        only = _collection("only")
        await repository.put_collection(only)

        with pytest.raises(InvalidArgument) as exc_info:
            await repository.delete_collection(only.id)

        assert exc_info.value.code == ErrorCode.LAST_COLLECTION
        assert await repository.count() == 1

    async def test_delete_all_at_once_rejected_without_changes(
        self, repository: CollectionRepository
    ) -> None:
        batch = [_collection("a"), _collection("b"), _collection("c")]
        await repository.put_collections(batch)

        with pytest.raises(InvalidArgument):
            await repository.delete_collections([c.id for c in batch])

        assert await repository.count() == 3

    async def test_delete_unknown_ids_ignored(self, repository: CollectionRepository) -> None:
        only = _collection("only")
        await repository.put_collection(only)

        await repository.delete_collections(["missing", "also-missing"])

        assert await repository.count() == 1

    async def test_delete_many(self, repository: CollectionRepository) -> None:
        batch = [_collection("a"), _collection("b"), _collection("c")]
        await repository.put_collections(batch)

        await repository.delete_collections([batch[0].id, batch[2].id])

        assert [c.id for c in await repository.list_collections()] == [batch[1].id]


class TestClone:
    async def test_clone_copies_entities_under_new_id(
        self, repository: CollectionRepository
    ) -> None:
        source = _collection("Papers", "W1", "W2", age=timedelta(days=2))
        await repository.put_collection(source)

        clone = await repository.clone_collection(source.id)

        assert clone.id != source.id
        assert clone.name == "Papers (Clone)"
        assert clone.items == source.items
        assert clone.created_at > source.created_at
        assert clone.updated_at == clone.created_at
        assert await repository.get_collection(source.id) == source

    async def test_clone_unknown_raises(self, repository: CollectionRepository) -> None:
        with pytest.raises(NotFound):
            await repository.clone_collection("missing")

    async def test_clone_many(self, repository: CollectionRepository) -> None:
        a, b = _collection("a"), _collection("b")
        await repository.put_collections([a, b])

        clones = await repository.clone_collections([a.id, b.id])

        assert [c.name for c in clones] == ["a (Clone)", "b (Clone)"]
        assert await repository.count() == 4
