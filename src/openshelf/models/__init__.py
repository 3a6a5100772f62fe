from __future__ import annotations

from openshelf.models.cache import CacheEntry
from openshelf.models.collections import Collection, SharedCollection, SharedPayload
from openshelf.models.entities import (
    CollectedEntity,
    Entity,
    EntityDetails,
    EntityType,
    Meta,
    Page,
    RelatedNode,
    SearchResult,
)

__all__ = [
    # cache
    "CacheEntry",
    # entities
    "EntityType",
    "Entity",
    "RelatedNode",
    "CollectedEntity",
    "Meta",
    "Page",
    "SearchResult",
    "EntityDetails",
    # collections
    "Collection",
    "SharedCollection",
    "SharedPayload",
]
