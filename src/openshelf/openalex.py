"""OpenAlex API helpers over the read-through fetcher.

Everything here goes through ``FetcherProtocol``, so repeated searches and
detail lookups are served from the response cache until the TTL elapses.
Payloads are validated into the narrow models in ``openshelf.models.entities``
before anything reaches a collection.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from openshelf.errors import InvalidArgument, UpstreamFormatError
from openshelf.fetcher import RequestOptions
from openshelf.models.entities import (
    ENTITY_ENDPOINTS,
    TYPE_CHARS,
    CollectedEntity,
    EntityDetails,
    EntityType,
    Page,
    RelatedNode,
    SearchResult,
)

if TYPE_CHECKING:
    from openshelf.config import ApiSettings
    from openshelf.protocols import FetcherProtocol

log = structlog.get_logger()

_OPENALEX_URI_RE = re.compile(
    r"(?:https?://(?:openalex\.org|api\.openalex\.org)/)?"
    r"(?:[a-zA-Z]+/)?"
    r"([A-Za-z]\d{3,})(?:/|\?|$)"
)

DEFAULT_MAX_PAGES = 50

OPENALEX_URI_PREFIX = "https://openalex.org/"


def id_from_uri(uri: str) -> str:
    """``'https://openalex.org/w123456'`` → ``'W123456'``."""
    match = _OPENALEX_URI_RE.search(uri)
    if match is None:
        raise InvalidArgument(f"Invalid OpenAlex URI: {uri!r}")
    return match.group(1).upper()


def canonical_uri(uri: str) -> str:
    """Every accepted spelling of an entity maps to ``https://openalex.org/<ID>``."""
    return f"{OPENALEX_URI_PREFIX}{id_from_uri(uri)}"


def type_from_uri(uri: str) -> EntityType:
    return TYPE_CHARS.get(id_from_uri(uri)[0], EntityType.UNKNOWN)


def api_url_for_uri(uri: str, base_url: str) -> str:
    entity_type = type_from_uri(uri)
    if entity_type not in ENTITY_ENDPOINTS:
        raise InvalidArgument(f"No API endpoint for entity {uri!r}")
    return f"{base_url.rstrip('/')}/{ENTITY_ENDPOINTS[entity_type]}/{id_from_uri(uri)}"


def _endpoint(entity_type: EntityType | str) -> str:
    try:
        kind = EntityType(entity_type)
    except ValueError:
        raise InvalidArgument(f"Unknown entity type {entity_type!r}") from None
    if kind not in ENTITY_ENDPOINTS:
        raise InvalidArgument(f"Cannot search entity type {entity_type!r}")
    return ENTITY_ENDPOINTS[kind]


def related_from_details(details: EntityDetails) -> list[RelatedNode]:
    """One-hop neighbourhood: authors, then concepts, then institutions."""
    related: list[RelatedNode] = []
    for authorship in details.authorships:
        if authorship.author.id:
            related.append(
                RelatedNode(
                    id=authorship.author.id,
                    display_name=authorship.author.display_name or "",
                    type=EntityType.AUTHOR,
                )
            )
    for concept in details.concepts:
        if concept.id:
            related.append(
                RelatedNode(
                    id=concept.id,
                    display_name=concept.display_name or "",
                    type=EntityType.CONCEPT,
                )
            )
    for institution in details.institutions:
        if institution.id:
            related.append(
                RelatedNode(
                    id=institution.id,
                    display_name=institution.display_name or "",
                    type=EntityType.INSTITUTION,
                )
            )
    return related


class OpenAlexClient:
    def __init__(self, fetcher: FetcherProtocol, settings: ApiSettings) -> None:
        self._fetcher = fetcher
        self._settings = settings

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return f"{self._settings.base_url.rstrip('/')}/{path_or_url.lstrip('/')}"

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        response = await self._fetcher.fetch(url, RequestOptions(params=params or {}))
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFormatError(url, "response is not JSON") from exc

    async def fetch_page(
        self,
        path_or_url: str,
        page: int = 1,
        per_page: int | None = None,
        params: dict[str, str] | None = None,
    ) -> Page:
        url = self._url(path_or_url)
        query = {
            **(params or {}),
            "page": str(page),
            "per_page": str(per_page or self._settings.per_page),
        }
        data = await self._get_json(url, query)
        try:
            return Page.model_validate(data)
        except ValidationError as exc:
            raise UpstreamFormatError(url, f"{exc.error_count()} validation errors") from exc

    async def fetch_all_pages(
        self,
        path_or_url: str,
        per_page: int | None = None,
        params: dict[str, str] | None = None,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> list[SearchResult]:
        """Walk pages until ``meta.count`` is covered, a page is empty, or ``max_pages``."""
        results: list[SearchResult] = []
        for page_number in range(1, max_pages + 1):
            page = await self.fetch_page(path_or_url, page_number, per_page, params)
            results.extend(page.results)
            if not page.results or page_number * page.meta.per_page >= page.meta.count:
                break
        else:
            log.warning("fetch_all_pages_truncated", url=path_or_url, max_pages=max_pages)
        return results

    async def search_entities(
        self,
        query: str,
        entity_type: EntityType | str = "all",
        params: dict[str, str] | None = None,
    ) -> list[SearchResult]:
        """Search one endpoint, or every endpoint in order for ``"all"``."""
        if entity_type == "all":
            types = list(ENTITY_ENDPOINTS)
        else:
            _endpoint(entity_type)
            types = [EntityType(entity_type)]

        results: list[SearchResult] = []
        for kind in types:
            page = await self.fetch_page(
                ENTITY_ENDPOINTS[kind], params={**(params or {}), "search": query}
            )
            results.extend(
                result.model_copy(update={"entity_type": result.entity_type or kind.value})
                for result in page.results
            )
        log.info("search_complete", query=query, entity_type=str(entity_type), count=len(results))
        return results

    async def autocomplete(
        self, query: str, entity_type: EntityType | str = "all"
    ) -> list[SearchResult]:
        path = "autocomplete"
        if entity_type != "all":
            path = f"autocomplete/{_endpoint(entity_type)}"
        url = self._url(path)
        data = await self._get_json(url, {"q": query})
        try:
            page = Page.model_validate(data)
        except ValidationError as exc:
            raise UpstreamFormatError(url, f"{exc.error_count()} validation errors") from exc
        if entity_type == "all":
            return page.results
        return [r.model_copy(update={"entity_type": str(entity_type)}) for r in page.results]

    async def get_entity_details(self, uri: str) -> EntityDetails:
        url = api_url_for_uri(uri, self._settings.base_url)
        log.debug("entity_details_fetching", uri=uri, url=url)
        data = await self._get_json(url)
        try:
            return EntityDetails.model_validate(data)
        except ValidationError as exc:
            raise UpstreamFormatError(url, f"{exc.error_count()} validation errors") from exc

    async def get_related_entities(self, uri: str) -> list[RelatedNode]:
        return related_from_details(await self.get_entity_details(uri))

    async def collect(self, uri: str) -> CollectedEntity:
        """Snapshot an entity with its current one-hop neighbourhood.

        The entity is keyed by its canonical URI whatever form ``uri`` takes,
        so the same work collected twice deduplicates.
        """
        details = await self.get_entity_details(uri)
        return CollectedEntity(
            id=canonical_uri(uri),
            display_name=details.display_name or "",
            type=type_from_uri(uri),
            related_nodes=related_from_details(details),
        )
