"""Service wiring and the ``openshelf`` command line.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState inside the ``lifespan`` async context manager
- Dispatch CLI subcommands against that state
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from openshelf import __version__
from openshelf.cache import Cache
from openshelf.collection_ops import CollectionOps
from openshelf.config import Settings
from openshelf.errors import DecodeError, OpenShelfError
from openshelf.fetcher import CachedFetcher, build_http_client
from openshelf.openalex import OpenAlexClient
from openshelf.repository import CollectionRepository
from openshelf.sharing import parse_share_link
from openshelf.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

log = structlog.get_logger()

DEFAULT_SHARE_BASE_URL = "http://localhost:5173/"


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr, stdout carries command output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources."""
    db_path = settings.storage.db_path
    if db_path != ":memory:":
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(path)

    db = await aiosqlite.connect(db_path)
    http_client = build_http_client(settings.api)
    try:
        cache = Cache(db)
        await cache.init_db()
        repository = CollectionRepository(db)
        await repository.init_db()

        fetcher = CachedFetcher(
            http_client,
            cache,
            settings.fetcher,
            ttl=timedelta(hours=settings.cache.ttl_hours),
        )
        ops = CollectionOps(repository)
        await ops.initialize()

        state = AppState(
            settings=settings,
            db=db,
            http_client=http_client,
            cache=cache,
            fetcher=fetcher,
            openalex=OpenAlexClient(fetcher, settings.api),
            repository=repository,
            collections=ops,
        )
        log.info("openshelf_started", version=__version__, db_path=db_path)
        yield state
    finally:
        await http_client.aclose()
        await db.close()
        log.info("openshelf_stopped")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _run(args: argparse.Namespace, state: AppState) -> None:
    ops = state.collections

    if args.command == "search":
        results = await state.openalex.search_entities(args.query, args.type)
        _emit([r.model_dump(exclude_none=True) for r in results])

    elif args.command == "list":
        active = await ops.initialize()
        _emit(
            [
                {
                    "id": c.id,
                    "name": c.name,
                    "entities": len(c.entities),
                    "updated_at": c.updated_at.isoformat(),
                    "active": c.id == active.id,
                }
                for c in await state.repository.list_collections()
            ]
        )

    elif args.command == "create":
        _emit((await ops.create(args.name)).model_dump(mode="json"))

    elif args.command == "collect":
        entity = await state.openalex.collect(args.uri)
        target = args.collection or (await ops.initialize()).id
        _emit((await ops.add_entities(target, [entity])).model_dump(mode="json"))

    elif args.command == "share":
        print(await ops.share_link(args.collection_id, args.base_url))

    elif args.command == "import":
        try:
            payload = parse_share_link(args.link)
        except DecodeError as exc:
            # A bad link is ignored, not fatal to the store
            log.warning("share_link_ignored", code=exc.code, message=exc.message)
            raise
        touched = await ops.import_shared(payload)
        _emit([c.model_dump(mode="json") for c in touched])

    elif args.command == "enrich":
        collection = await ops.enrich(args.collection_id, state.openalex)
        _emit(collection.model_dump(mode="json"))

    elif args.command == "purge-cache":
        deleted = await state.cache.purge_expired(timedelta(hours=state.settings.cache.ttl_hours))
        _emit({"deleted": deleted})


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openshelf", description="Cached OpenAlex access and collections."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search OpenAlex entities")
    search.add_argument("query")
    search.add_argument("--type", default="all", help="work, author, ... or all")

    sub.add_parser("list", help="List collections")

    create = sub.add_parser("create", help="Create a collection")
    create.add_argument("name")

    collect = sub.add_parser("collect", help="Add an entity to a collection")
    collect.add_argument("uri")
    collect.add_argument("--collection", help="Collection id (default: active)")

    share = sub.add_parser("share", help="Print a share link for a collection")
    share.add_argument("collection_id")
    share.add_argument("--base-url", default=DEFAULT_SHARE_BASE_URL)

    imp = sub.add_parser("import", help="Import collections from a share link")
    imp.add_argument("link")

    enrich = sub.add_parser("enrich", help="Fetch details for a collection's entities")
    enrich.add_argument("collection_id")

    sub.add_parser("purge-cache", help="Delete expired cache entries")
    return parser


async def _main_async(args: argparse.Namespace, settings: Settings) -> int:
    async with lifespan(settings) as state:
        try:
            await _run(args, state)
        except OpenShelfError as exc:
            log.warning("command_failed", command=args.command, code=exc.code)
            _emit(exc.to_dict())
            return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    settings = Settings()
    _setup_logging(settings)
    sys.exit(asyncio.run(_main_async(args, settings)))


if __name__ == "__main__":
    main()
