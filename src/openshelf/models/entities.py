from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class EntityType(StrEnum):
    WORK = "work"
    AUTHOR = "author"
    INSTITUTION = "institution"
    CONCEPT = "concept"
    SOURCE = "source"
    TOPIC = "topic"
    FUNDER = "funder"
    UNKNOWN = "unknown"


# entity type → (API endpoint path, id prefix character)
ENTITY_ENDPOINTS: dict[EntityType, str] = {
    EntityType.WORK: "works",
    EntityType.AUTHOR: "authors",
    EntityType.INSTITUTION: "institutions",
    EntityType.CONCEPT: "concepts",
    EntityType.SOURCE: "sources",
    EntityType.TOPIC: "topics",
    EntityType.FUNDER: "funders",
}

TYPE_CHARS: dict[str, EntityType] = {
    "W": EntityType.WORK,
    "A": EntityType.AUTHOR,
    "I": EntityType.INSTITUTION,
    "C": EntityType.CONCEPT,
    "S": EntityType.SOURCE,
    "T": EntityType.TOPIC,
    "F": EntityType.FUNDER,
}


class Entity(BaseModel):
    id: str
    display_name: str
    type: EntityType = EntityType.UNKNOWN


class RelatedNode(Entity):
    """One-hop neighbour captured when an entity is collected."""


class CollectedEntity(Entity):
    related_nodes: list[RelatedNode] = Field(default_factory=list)

    @classmethod
    def placeholder(cls, entity_id: str) -> CollectedEntity:
        """Stand-in for an entity known only by id, awaiting enrichment."""
        return cls(id=entity_id, display_name="Loading...", type=EntityType.UNKNOWN)

    @property
    def is_placeholder(self) -> bool:
        return self.type == EntityType.UNKNOWN and not self.related_nodes


# ---------------------------------------------------------------------------
# Upstream payloads
#
# Only the subset of the OpenAlex schema this package reads is modelled.
# Unknown fields are ignored so schema additions upstream never break parsing.
# ---------------------------------------------------------------------------


class _Upstream(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Meta(_Upstream):
    count: int = 0
    page: int | None = 1
    per_page: int = 25


class SearchResult(_Upstream):
    id: str
    display_name: str | None = None
    entity_type: str | None = None
    relevance_score: float | None = None


class Page(_Upstream):
    meta: Meta = Meta()
    results: list[SearchResult] = []


class _Ref(_Upstream):
    id: str | None = None
    display_name: str | None = None


class Authorship(_Upstream):
    author: _Ref = _Ref()
    institutions: list[_Ref] = []


class Concept(_Ref):
    score: float | None = None


class EntityDetails(_Upstream):
    id: str
    display_name: str | None = None
    relevance_score: float | None = None
    authorships: list[Authorship] = []
    concepts: list[Concept] = []
    institutions: list[_Ref] = []
