"""Core business logic for itemkb.

Both the MCP server and the CLI are thin wrappers over the functions here.

Design principles:
- All public functions are async, matching the enrichment pipeline
- The database and its services are created lazily on first use
"""

import logging
from collections import deque
from typing import Any

from pydantic import BaseModel, ValidationError

from .ai.enrichment import EnrichmentOrchestrator
from .ai.metadata_store import MetadataStore
from .ai.similarity import SimilaritySearch
from .ai.unified_search import UnifiedSearch
from .config import (
    DEFAULT_LIST_LIMIT,
    ENRICHMENT_TIMEOUT_SECONDS,
    MAX_RELATION_DEPTH,
    ConfigurationError,
    get_llm_config,
)
from .db import Database
from .errors import ErrorCode, ItemNotFoundError, KBError
from .models import (
    CleanupResult,
    Item,
    ItemCreate,
    ItemKeywords,
    ItemUpdate,
    RelatedItem,
    RelatedItemDetail,
    RelatedItemsResponse,
    RelationEdge,
    RelationStrategy,
)
from .store import ItemStore

log = logging.getLogger(__name__)

# Slack on top of the LLM call timeout so the extractor's own fallback wins
ENRICHMENT_GRACE_SECONDS = 5.0


# ─────────────────────────────────────────────────────────────────────────────
# Module-level state (lazy initialization)
# ─────────────────────────────────────────────────────────────────────────────

_database: Database | None = None


def get_database() -> Database:
    """Get the shared Database, opening it on first use."""
    global _database
    if _database is None:
        _database = Database()
        log.debug("Using item database at %s", _database.path)
    return _database


def reset_state() -> None:
    """Forget the cached database (the path is re-resolved on next use)."""
    global _database
    _database = None


def get_store() -> ItemStore:
    return ItemStore(get_database())


def get_metadata_store() -> MetadataStore:
    return MetadataStore(get_database())


def _enrichment_timeout() -> float:
    try:
        timeout = get_llm_config().timeout
    except ConfigurationError as e:
        log.warning("Ignoring invalid LLM configuration: %s", e)
        timeout = ENRICHMENT_TIMEOUT_SECONDS
    return timeout + ENRICHMENT_GRACE_SECONDS


def get_orchestrator() -> EnrichmentOrchestrator:
    return EnrichmentOrchestrator(get_store(), get_metadata_store(), timeout=_enrichment_timeout())


def _validate(model: type[BaseModel], data: dict[str, Any]) -> Any:
    """Validate input, turning pydantic errors into INVALID_ARGUMENT."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise KBError(ErrorCode.INVALID_ARGUMENT, f"Invalid input: {problems}") from e


# ─────────────────────────────────────────────────────────────────────────────
# Item CRUD
# ─────────────────────────────────────────────────────────────────────────────


async def create_item(
    type: str,
    title: str,
    description: str = "",
    content: str = "",
    status: str | None = None,
    priority: str | None = None,
    category: str | None = None,
    tags: list[str] | None = None,
    related: list[int] | None = None,
) -> Item:
    """Create an item and enrich it.

    Enrichment problems never fail the create; the item is saved without
    AI fields instead.
    """
    data: dict[str, Any] = {"type": type, "title": title, "description": description, "content": content}
    for name, value in (
        ("status", status),
        ("priority", priority),
        ("category", category),
        ("tags", tags),
        ("related", related),
    ):
        if value is not None:
            data[name] = value

    create = _validate(ItemCreate, data)
    if not create.title.strip():
        raise KBError.invalid_argument("Title must not be empty")

    item = await get_orchestrator().create_item(create)
    log.info("Created %s item %d: %s", item.type, item.id, item.title)
    return item


async def get_item(item_id: int) -> Item:
    """Read an item.

    Raises:
        ItemNotFoundError: If no item has this id.
    """
    return get_store().get(item_id)


async def update_item(item_id: int, **fields: Any) -> Item:
    """Update the given fields of an item.

    Only keyword arguments actually passed are applied. Passing ``related``
    replaces all manual relations; passing ``tags`` replaces all tags.

    Raises:
        ItemNotFoundError: If the item (or a related target) does not exist.
    """
    update = _validate(ItemUpdate, fields)
    if update.title is not None and not update.title.strip():
        raise KBError.invalid_argument("Title must not be empty")
    return await get_orchestrator().update_item(item_id, update)


async def delete_item(item_id: int) -> dict:
    """Delete an item with its tags, relations and keyword/concept links."""
    get_store().delete(item_id)
    log.info("Deleted item %d", item_id)
    return {"deleted": item_id}


async def list_items(
    type: str | None = None,
    statuses: list[str] | None = None,
    priorities: list[str] | None = None,
    tags: list[str] | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
    sort_by: str = "updated",
    sort_order: str = "desc",
) -> list[Item]:
    """List items, newest first unless told otherwise."""
    return get_store().list_items(
        item_type=type,
        statuses=statuses,
        priorities=priorities,
        tags=tags,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )


async def search_items(
    query: str,
    types: list[str] | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> list[Item]:
    """Substring search over title, description, content and extracted keywords."""
    if not query.strip():
        raise KBError.invalid_argument("Search query must not be empty")
    return get_store().search(query, types=types, limit=limit, offset=offset)


# ─────────────────────────────────────────────────────────────────────────────
# Relations
# ─────────────────────────────────────────────────────────────────────────────


async def add_relations(item_id: int, target_ids: list[int]) -> list[int]:
    """Link an item to targets in both directions. Returns all linked ids."""
    store = get_store()
    store.add_relations(item_id, target_ids)
    return store.related_ids(item_id)


def _detail(item: Item, related: RelatedItem | None = None, distance: int = 1) -> RelatedItemDetail:
    return RelatedItemDetail(
        id=item.id,
        type=item.type,
        title=item.title,
        description=item.description,
        status=item.status,
        priority=item.priority,
        tags=item.tags,
        search_score=related.score if related else None,
        search_reason=related.reason if related else None,
        distance=distance,
    )


def _traverse_relations(store: ItemStore, item_id: int, depth: int, types: list[str] | None) -> RelatedItemsResponse:
    """Breadth-first walk over manual relations up to ``depth`` hops."""
    visited = {item_id}
    queue = deque([(item_id, 0)])
    items: list[RelatedItemDetail] = []
    edges: list[RelationEdge] = []

    while queue:
        current, distance = queue.popleft()
        if distance >= depth:
            continue
        for neighbor in store.related_ids(current):
            if neighbor in visited:
                continue
            visited.add(neighbor)
            item = store.find_by_id(neighbor)
            if item is None:
                continue
            edges.append(RelationEdge(source=current, target=neighbor, type="manual"))
            if not types or item.type in types:
                items.append(_detail(item, distance=distance + 1))
            queue.append((neighbor, distance + 1))

    return RelatedItemsResponse(items=items, edges=edges, strategy="manual")


async def get_related_items(
    item_id: int,
    depth: int = 1,
    types: list[str] | None = None,
    strategy: str | None = None,
    weights: dict[str, float] | None = None,
    thresholds: dict[str, float] | None = None,
) -> RelatedItemsResponse:
    """Related items of ``item_id``.

    Without strategy, weights or thresholds this walks manual relations up to
    ``depth`` hops. Otherwise it ranks items with the chosen strategy
    (hybrid if only weights/thresholds are given).

    Raises:
        ItemNotFoundError: If the source item does not exist.
    """
    store = get_store()
    if not store.exists(item_id):
        raise ItemNotFoundError(item_id)

    if strategy is None and weights is None and thresholds is None:
        depth = max(1, min(depth, MAX_RELATION_DEPTH))
        return _traverse_relations(store, item_id, depth, types)

    config = _validate(
        RelationStrategy,
        {"strategy": strategy or "hybrid", "weights": weights, "thresholds": thresholds},
    )
    search = UnifiedSearch(store, get_metadata_store())
    results = search.find_related(item_id, config)

    items = []
    edges = []
    for related in results:
        item = store.find_by_id(related.id)
        if item is None:
            continue
        if types and item.type not in types:
            continue
        items.append(_detail(item, related))
        edges.append(RelationEdge(source=item_id, target=related.id, type="strategy-based"))

    return RelatedItemsResponse(items=items, edges=edges, strategy=config.strategy, weights=weights)


async def suggest_relations(item_id: int) -> list[RelatedItemDetail]:
    """Suggest items worth linking to, with the reason for each."""
    store = get_store()
    if not store.exists(item_id):
        raise ItemNotFoundError(item_id)

    suggestions = SimilaritySearch(store, get_metadata_store()).suggest_relations(item_id)
    details = []
    for suggestion in suggestions:
        item = store.find_by_id(suggestion.id)
        if item is not None:
            details.append(_detail(item, suggestion))
    return details


# ─────────────────────────────────────────────────────────────────────────────
# Enrichment and vocabulary
# ─────────────────────────────────────────────────────────────────────────────


async def get_item_keywords(item_id: int) -> ItemKeywords:
    """Stored keywords and concepts of an item."""
    if not get_store().exists(item_id):
        raise ItemNotFoundError(item_id)
    metadata = get_metadata_store()
    return ItemKeywords(
        id=item_id,
        keywords=metadata.get_keywords(item_id),
        concepts=metadata.get_concepts(item_id),
    )


async def enrich_item(item_id: int) -> Item:
    """Re-run enrichment for one item."""
    return await get_orchestrator().enrich_item(item_id)


async def enrich_all(item_type: str | None = None) -> list[int]:
    """Re-run enrichment for every item (optionally of one type). Returns ids."""
    store = get_store()
    orchestrator = get_orchestrator()
    enriched = []
    offset = 0
    while True:
        batch = store.list_items(item_type=item_type, limit=100, offset=offset, sort_by="created", sort_order="asc")
        if not batch:
            break
        for item in batch:
            await orchestrator.enrich_item(item.id)
            enriched.append(item.id)
        offset += len(batch)
    return enriched


async def cleanup_vocabulary() -> CleanupResult:
    """Remove keywords and concepts no item uses any more."""
    return get_metadata_store().cleanup_orphaned()
