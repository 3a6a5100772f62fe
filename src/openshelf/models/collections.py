from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from openshelf.models.entities import CollectedEntity


class Collection(BaseModel):
    """A named, user-curated set of entity references."""

    id: str  # Random UUID4, immutable after creation
    name: str
    entities: list[CollectedEntity] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime  # Refreshed on every change to name or entities

    @property
    def items(self) -> list[str]:
        """Entity ids only, in collection order."""
        return [entity.id for entity in self.entities]


class SharedCollection(BaseModel):
    name: str
    ids: list[str]


class SharedPayload(BaseModel):
    """Decoded share parameters from a link.

    ``collections`` is set for multi-collection links; otherwise ``ids`` and
    ``title`` carry a single shared id list. All three are ``None`` when the
    link carries no share parameters.
    """

    ids: list[str] | None = None
    title: str | None = None
    collections: list[SharedCollection] | None = None

    @property
    def is_empty(self) -> bool:
        return self.ids is None and self.collections is None
