"""Share-link codec.

Single id lists are joined with ``,``, deflated with zlib and base64-encoded
with the URL-safe alphabet. Multi-collection payloads are JSON wrapped in
URL-safe base64 without compression. Decoding accepts either base64 alphabet
and tolerates stripped padding, since links get copied through chat clients
that mangle both.

Every malformed input surfaces as ``DecodeError`` so callers can ignore a bad
link instead of crashing.
"""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlencode, urlsplit

from pydantic import TypeAdapter, ValidationError

from openshelf.errors import DecodeError, InvalidArgument
from openshelf.models.collections import SharedCollection, SharedPayload
from openshelf.models.entities import CollectedEntity

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

ID_DELIMITER = ","

PARAM_SHARED = "shared"
PARAM_TITLE = "title"
PARAM_SHARED_COLLECTIONS = "sharedCollections"

_SHARED_COLLECTIONS = TypeAdapter(list[SharedCollection])


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _b64decode(token: str) -> bytes:
    # A raw "+" in a query string decodes to a space.
    normalized = token.strip().replace(" ", "-").replace("+", "-").replace("/", "_")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64 in share token: {exc}") from exc


def encode_ids(ids: Sequence[str]) -> str:
    """Compress an id list into a URL-safe token. Order and duplicates are kept."""
    for entity_id in ids:
        if ID_DELIMITER in entity_id:
            raise InvalidArgument(f"Entity id contains {ID_DELIMITER!r}: {entity_id!r}")
    return _b64encode(zlib.compress(ID_DELIMITER.join(ids).encode("utf-8")))


def decode_ids(token: str) -> list[str]:
    compressed = _b64decode(token)
    try:
        text = zlib.decompress(compressed).decode("utf-8")
    except zlib.error as exc:
        raise DecodeError(f"Corrupt compressed share token: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise DecodeError("Share token does not contain UTF-8 text") from exc
    if not text:
        return []
    return text.split(ID_DELIMITER)


def encode_multi_collection(collections: Sequence[SharedCollection]) -> str:
    payload = _SHARED_COLLECTIONS.dump_json(list(collections))
    return _b64encode(payload)


def decode_multi_collection(token: str) -> list[SharedCollection]:
    raw = _b64decode(token)
    try:
        return _SHARED_COLLECTIONS.validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(
            f"Shared collections payload is malformed ({exc.error_count()} errors)"
        ) from exc


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


def _base(url: str) -> str:
    return url.split("?", 1)[0]


def build_share_link(base_url: str, ids: Sequence[str], title: str) -> str:
    query = urlencode({PARAM_SHARED: encode_ids(ids), PARAM_TITLE: title})
    return f"{_base(base_url)}?{query}"


def build_multi_collection_link(base_url: str, collections: Sequence[SharedCollection]) -> str:
    query = urlencode({PARAM_SHARED_COLLECTIONS: encode_multi_collection(collections)})
    return f"{_base(base_url)}?{query}"


def parse_share_link(url: str) -> SharedPayload:
    """Extract the share payload from a link or bare query string.

    ``sharedCollections`` wins over ``shared``/``title`` when both are
    present. Raises DecodeError if the chosen parameter is malformed.
    """
    query = urlsplit(url).query if "?" in url or "://" in url else url
    params = parse_qs(query)

    if shared_collections := params.get(PARAM_SHARED_COLLECTIONS):
        return SharedPayload(collections=decode_multi_collection(shared_collections[0]))

    shared = params.get(PARAM_SHARED)
    title = params.get(PARAM_TITLE)
    return SharedPayload(
        ids=decode_ids(shared[0]) if shared else None,
        title=title[0] if title else None,
    )


def merge_shared_ids(
    existing: Sequence[CollectedEntity], shared_ids: Iterable[str]
) -> list[CollectedEntity]:
    """Append placeholders for shared ids not already in ``existing``."""
    seen = {entity.id for entity in existing}
    merged = list(existing)
    for entity_id in shared_ids:
        if entity_id in seen:
            continue
        seen.add(entity_id)
        merged.append(CollectedEntity.placeholder(entity_id))
    return merged
