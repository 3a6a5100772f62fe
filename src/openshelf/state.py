"""Application state container.

AppState is created once by ``openshelf.app.lifespan`` and handed to every
caller that needs the persistence core. It replaces any ambient global: each
service is constructed explicitly and injected here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from openshelf.collection_ops import CollectionOps
    from openshelf.config import Settings
    from openshelf.openalex import OpenAlexClient
    from openshelf.protocols import CacheProtocol, CollectionRepositoryProtocol, FetcherProtocol


@dataclass
class AppState:
    """Holds all shared runtime services."""

    settings: Settings
    db: aiosqlite.Connection
    http_client: httpx.AsyncClient
    cache: CacheProtocol
    fetcher: FetcherProtocol
    openalex: OpenAlexClient
    repository: CollectionRepositoryProtocol
    collections: CollectionOps
