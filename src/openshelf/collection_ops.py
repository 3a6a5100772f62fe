"""Collection orchestration: merge, split, clone, import and enrichment.

CollectionOps owns the "active collection" selection that the UI reads. It is
an explicit service object wrapped around an injected repository; nothing here
is module-global.

Preconditions are always checked before the first write, so a rejected merge
or split leaves the store untouched. Multi-step operations are not atomic:
merge stores the new collection before deleting its sources, so an
interruption can leave both in place but never loses entities.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import TypeAdapter, ValidationError

from openshelf.errors import DecodeError, InvalidArgument, OpenShelfError
from openshelf.models.collections import Collection, SharedCollection
from openshelf.repository import new_collection_id
from openshelf.sharing import build_multi_collection_link, build_share_link, merge_shared_ids

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from openshelf.models.collections import SharedPayload
    from openshelf.models.entities import CollectedEntity
    from openshelf.openalex import OpenAlexClient
    from openshelf.protocols import CollectionRepositoryProtocol

log = structlog.get_logger()

DEFAULT_COLLECTION_NAME = "Default Collection"
MERGED_COLLECTION_NAME = "Merged Collection"

_EXPORT = TypeAdapter(list[Collection])


def select_active(
    collections: Sequence[Collection], active_id: str | None = None
) -> Collection | None:
    """Pick the active collection.

    ``active_id`` wins if it still exists. Otherwise the most recently updated
    collection is chosen; ties go to the first one in ``collections`` order.
    """
    if not collections:
        return None
    if active_id is not None:
        for collection in collections:
            if collection.id == active_id:
                return collection
    best = collections[0]
    for collection in collections[1:]:
        if collection.updated_at > best.updated_at:
            best = collection
    return best


def load_exported_collections(text: str | bytes) -> list[Collection]:
    """Parse the output of ``CollectionOps.export_collections``."""
    try:
        return _EXPORT.validate_json(text)
    except ValidationError as exc:
        raise DecodeError(
            f"Exported collections are malformed ({exc.error_count()} errors)"
        ) from exc


def _now() -> datetime:
    return datetime.now(UTC)


def _new_collection(name: str, entities: Iterable[CollectedEntity] = ()) -> Collection:
    now = _now()
    return Collection(
        id=new_collection_id(),
        name=name,
        entities=list(entities),
        created_at=now,
        updated_at=now,
    )


def _dedupe(entities: Iterable[CollectedEntity]) -> list[CollectedEntity]:
    seen: set[str] = set()
    unique: list[CollectedEntity] = []
    for entity in entities:
        if entity.id not in seen:
            seen.add(entity.id)
            unique.append(entity)
    return unique


class CollectionOps:
    def __init__(
        self,
        repository: CollectionRepositoryProtocol,
        active_collection_id: str | None = None,
    ) -> None:
        self._repo = repository
        self.active_collection_id = active_collection_id

    # ------------------------------------------------------------------
    # Active collection
    # ------------------------------------------------------------------

    async def initialize(self) -> Collection:
        """Guarantee at least one collection exists and one is active."""
        collections = await self._repo.list_collections()
        active = select_active(collections, self.active_collection_id)
        if active is None:
            active = await self._repo.create_collection(_now().isoformat())
        self.active_collection_id = active.id
        return active

    # ------------------------------------------------------------------
    # Delegated CRUD
    # ------------------------------------------------------------------

    async def create(self, name: str | None = None) -> Collection:
        collection = await self._repo.create_collection(name or _now().isoformat())
        self.active_collection_id = collection.id
        return collection

    async def rename(self, collection_id: str, new_name: str) -> None:
        await self._repo.rename_collection(collection_id, new_name)

    async def clone(self, collection_id: str) -> Collection:
        clone = await self._repo.clone_collection(collection_id)
        self.active_collection_id = clone.id
        return clone

    async def delete(self, collection_id: str) -> None:
        await self._repo.delete_collection(collection_id)
        if self.active_collection_id == collection_id:
            self.active_collection_id = None
            await self.initialize()

    # ------------------------------------------------------------------
    # Merge / split
    # ------------------------------------------------------------------

    async def merge(self, collection_ids: Sequence[str]) -> Collection:
        """Union the named collections into a new one and delete the sources."""
        unique_ids = list(dict.fromkeys(collection_ids))
        if len(unique_ids) < 2:
            raise InvalidArgument("Select at least two collections to merge")

        sources = [await self._repo.get_collection(cid) for cid in unique_ids]
        merged = _new_collection(
            MERGED_COLLECTION_NAME,
            _dedupe(entity for source in sources for entity in source.entities),
        )

        await self._repo.put_collection(merged)
        await self._repo.delete_collections(unique_ids)
        self.active_collection_id = merged.id
        log.info(
            "collection_merged",
            collection_id=merged.id,
            sources=unique_ids,
            entities=len(merged.entities),
        )
        return merged

    async def split(
        self, collection_id: str, entity_ids: Iterable[str]
    ) -> tuple[Collection, Collection]:
        """Move ``entity_ids`` out of a collection into a new "(Split)" one.

        Returns ``(remaining, extracted)``. The remaining part keeps the
        source's id and name; both parts keep the source order.
        """
        source = await self._repo.get_collection(collection_id)
        if len(source.entities) < 2:
            raise InvalidArgument("A collection needs at least two entities to split")

        to_extract = set(entity_ids)
        extracted_entities = [e for e in source.entities if e.id in to_extract]
        remaining_entities = [e for e in source.entities if e.id not in to_extract]
        if not extracted_entities or not remaining_entities:
            raise InvalidArgument("Split must leave entities on both sides")

        remaining = await self._repo.update_collection(
            source.model_copy(update={"entities": remaining_entities})
        )
        extracted = _new_collection(f"{source.name} (Split)", extracted_entities)
        await self._repo.put_collection(extracted)
        self.active_collection_id = extracted.id
        log.info(
            "collection_split",
            collection_id=collection_id,
            extracted_id=extracted.id,
            remaining=len(remaining_entities),
            extracted=len(extracted_entities),
        )
        return remaining, extracted

    # ------------------------------------------------------------------
    # Entity edits
    #
    # Read-modify-write: the record is re-read right before writing. Two
    # concurrent edits of one collection can still lose an update; the last
    # writer wins.
    # ------------------------------------------------------------------

    async def add_entities(
        self, collection_id: str, entities: Iterable[CollectedEntity]
    ) -> Collection:
        current = await self._repo.get_collection(collection_id)
        combined = _dedupe([*current.entities, *entities])
        return await self._repo.update_collection(
            current.model_copy(update={"entities": combined})
        )

    async def remove_entities(self, collection_id: str, entity_ids: Iterable[str]) -> Collection:
        doomed = set(entity_ids)
        current = await self._repo.get_collection(collection_id)
        kept = [e for e in current.entities if e.id not in doomed]
        return await self._repo.update_collection(current.model_copy(update={"entities": kept}))

    async def enrich(self, collection_id: str, client: OpenAlexClient) -> Collection:
        """Fill in details and related nodes for every entity in a collection.

        Per-entity fetch failures are logged and skipped so one bad id does not
        stall the rest. Each result is written against a fresh read, so edits
        made while a fetch was in flight are preserved.
        """
        snapshot = await self._repo.get_collection(collection_id)
        current = snapshot
        for entity in snapshot.entities:
            try:
                fetched = await client.collect(entity.id)
            except OpenShelfError as exc:
                log.warning(
                    "entity_enrich_failed",
                    collection_id=collection_id,
                    entity_id=entity.id,
                    code=exc.code,
                )
                continue

            current = await self._repo.get_collection(collection_id)
            entities = []
            for existing in current.entities:
                if existing.id != entity.id:
                    entities.append(existing)
                elif existing.is_placeholder:
                    entities.append(fetched)
                else:
                    entities.append(
                        existing.model_copy(update={"related_nodes": fetched.related_nodes})
                    )
            # A placeholder may resolve to an id already present in canonical form
            current = await self._repo.update_collection(
                current.model_copy(update={"entities": _dedupe(entities)})
            )
        return current

    # ------------------------------------------------------------------
    # Sharing, import & export
    # ------------------------------------------------------------------

    async def share_link(self, collection_id: str, base_url: str) -> str:
        collection = await self._repo.get_collection(collection_id)
        return build_share_link(base_url, collection.items, collection.name)

    async def share_collections_link(self, collection_ids: Sequence[str], base_url: str) -> str:
        shared = []
        for collection_id in collection_ids:
            collection = await self._repo.get_collection(collection_id)
            shared.append(SharedCollection(name=collection.name, ids=collection.items))
        return build_multi_collection_link(base_url, shared)

    async def import_shared(self, payload: SharedPayload) -> list[Collection]:
        """Apply a decoded share link. Returns the collections it touched."""
        if payload.collections is not None:
            created = [
                _new_collection(shared.name, merge_shared_ids([], shared.ids))
                for shared in payload.collections
            ]
            await self._repo.put_collections(created)
            if created:
                self.active_collection_id = created[0].id
            log.info("shared_collections_imported", count=len(created))
            return created

        if payload.ids is None:
            return []

        if payload.title:
            collections = await self._repo.list_collections()
            target = next((c for c in collections if c.name == payload.title), None)
            if target is None:
                target = await self._repo.create_collection(payload.title)
        else:
            target = await self.initialize()

        merged = merge_shared_ids(target.entities, payload.ids)
        if len(merged) != len(target.entities):
            target = await self._repo.update_collection(
                target.model_copy(update={"entities": merged})
            )
        self.active_collection_id = target.id
        log.info("shared_ids_imported", collection_id=target.id, ids=len(payload.ids))
        return [target]

    async def export_collections(self) -> str:
        return _EXPORT.dump_json(await self._repo.list_collections(), indent=2).decode("utf-8")

    async def import_collections(
        self, imported: Sequence[Collection], *, replace: bool = False
    ) -> list[Collection]:
        """Import exported collections under fresh ids.

        With ``replace`` every existing collection is removed once the imports
        are stored. Otherwise an import whose name matches an existing
        collection is folded into it.
        """
        if replace:
            if not imported:
                raise InvalidArgument("Refusing to replace all collections with nothing")
            previous = [c.id for c in await self._repo.list_collections()]
            fresh = [c.model_copy(update={"id": new_collection_id()}) for c in imported]
            await self._repo.put_collections(fresh)
            await self._repo.delete_collections(previous)
            self.active_collection_id = fresh[0].id
            return fresh

        touched: list[Collection] = []
        for incoming in imported:
            existing = {c.name: c for c in await self._repo.list_collections()}
            match = existing.get(incoming.name)
            if match is None:
                added = incoming.model_copy(update={"id": new_collection_id()})
                await self._repo.put_collection(added)
                touched.append(added)
            else:
                combined = _dedupe([*match.entities, *incoming.entities])
                touched.append(
                    await self._repo.update_collection(
                        match.model_copy(update={"entities": combined})
                    )
                )
        return touched

    async def clear_all(self) -> Collection:
        """Reset the store to a single empty default collection."""
        previous = [c.id for c in await self._repo.list_collections()]
        fresh = await self._repo.create_collection(DEFAULT_COLLECTION_NAME)
        await self._repo.delete_collections(previous)
        self.active_collection_id = fresh.id
        return fresh
