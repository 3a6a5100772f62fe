"""Shared test fixtures for the openshelf test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from openshelf.cache import Cache
from openshelf.collection_ops import CollectionOps
from openshelf.config import ApiSettings, FetcherSettings
from openshelf.models.entities import CollectedEntity, EntityType, RelatedNode
from openshelf.repository import CollectionRepository

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

API_BASE = "https://api.example.org"


def make_entity(entity_id: str, name: str | None = None) -> CollectedEntity:
    """A collected work with one related author."""
    return CollectedEntity(
        id=entity_id,
        display_name=name or f"Entity {entity_id}",
        type=EntityType.WORK,
        related_nodes=[
            RelatedNode(id=f"A{entity_id[1:]}", display_name="Someone", type=EntityType.AUTHOR)
        ],
    )


@pytest.fixture()
async def db() -> AsyncGenerator[aiosqlite.Connection, None]:
    async with aiosqlite.connect(":memory:") as conn:
        yield conn


@pytest.fixture()
async def cache(db: aiosqlite.Connection) -> Cache:
    store = Cache(db)
    await store.init_db()
    return store


@pytest.fixture()
async def repository(db: aiosqlite.Connection) -> CollectionRepository:
    repo = CollectionRepository(db)
    await repo.init_db()
    return repo


@pytest.fixture()
def ops(repository: CollectionRepository) -> CollectionOps:
    return CollectionOps(repository)


@pytest.fixture()
def fetcher_settings() -> FetcherSettings:
    return FetcherSettings(max_rate_limit_retries=2, default_retry_after_ms=1000)


@pytest.fixture()
def api_settings() -> ApiSettings:
    return ApiSettings(base_url=API_BASE, per_page=2)
