"""FastMCP server for itemkb.

MCP protocol wrappers around the core business logic. All actual logic
lives in core.py; this file only declares the tools.
"""

from typing import Literal

from fastmcp import FastMCP

from . import core
from .config import DEFAULT_LIST_LIMIT
from .models import CleanupResult, Item, ItemKeywords, RelatedItemDetail, RelatedItemsResponse

mcp = FastMCP(
    name="itemkb",
    instructions=(
        "Typed knowledge items (issues, plans, docs, knowledge, sessions, dailies). "
        "Items are enriched with keywords and concepts; use get_related_items and "
        "suggest_relations to find connections."
    ),
)


# ─────────────────────────────────────────────────────────────────────────────
# MCP Tool Wrappers
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(
    name="create_item",
    description=(
        "Create an item. Type is one of issues, plans, docs, knowledge, sessions, dailies "
        "or a custom lowercase type. Keywords, concepts and a summary are extracted automatically."
    ),
)
async def create_item_tool(
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
    """Create an item."""
    return await core.create_item(
        type=type,
        title=title,
        description=description,
        content=content,
        status=status,
        priority=priority,
        category=category,
        tags=tags,
        related=related,
    )


@mcp.tool(name="get_item", description="Get an item by id.")
async def get_item_tool(id: int) -> Item:
    """Read an item."""
    return await core.get_item(id)


@mcp.tool(
    name="update_item",
    description=(
        "Update an item. Only the fields given are changed. 'tags' and 'related' replace the "
        "existing sets. Pass an empty category to clear it. Changing title, description or "
        "content re-runs enrichment."
    ),
)
async def update_item_tool(
    id: int,
    type: str | None = None,
    title: str | None = None,
    description: str | None = None,
    content: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    category: str | None = None,
    tags: list[str] | None = None,
    related: list[int] | None = None,
) -> Item:
    """Update an item."""
    fields = {
        name: value
        for name, value in (
            ("type", type),
            ("title", title),
            ("description", description),
            ("content", content),
            ("status", status),
            ("priority", priority),
            ("category", category),
            ("tags", tags),
            ("related", related),
        )
        if value is not None
    }
    if category == "":
        fields["category"] = None
    return await core.update_item(id, **fields)


@mcp.tool(name="delete_item", description="Delete an item and its relations.")
async def delete_item_tool(id: int) -> dict:
    """Delete an item."""
    return await core.delete_item(id)


@mcp.tool(
    name="list_items",
    description="List items, optionally filtered by type, statuses, priorities or tags.",
)
async def list_items_tool(
    type: str | None = None,
    statuses: list[str] | None = None,
    priorities: list[str] | None = None,
    tags: list[str] | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
    sort_by: Literal["created", "updated", "priority"] = "updated",
    sort_order: Literal["asc", "desc"] = "desc",
) -> list[Item]:
    """List items."""
    return await core.list_items(
        type=type,
        statuses=statuses,
        priorities=priorities,
        tags=tags,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@mcp.tool(
    name="search_items",
    description="Search items by text in title, description, content and extracted keywords.",
)
async def search_items_tool(
    query: str,
    types: list[str] | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> list[Item]:
    """Search items."""
    return await core.search_items(query, types=types, limit=limit, offset=offset)


@mcp.tool(
    name="add_relations",
    description="Link an item to other items. Links are bidirectional.",
)
async def add_relations_tool(source_id: int, target_ids: list[int]) -> dict:
    """Add manual relations."""
    related = await core.add_relations(source_id, target_ids)
    return {"id": source_id, "related": related}


@mcp.tool(
    name="get_related_items",
    description=(
        "Find related items. Without strategy/weights/thresholds, follows manual links up to "
        "'depth' hops (1-3). With strategy 'keywords', 'concepts', 'embedding', 'hybrid' or "
        "'manual', ranks items by that signal. Hybrid weights default to "
        "keywords 0.3, concepts 0.4, embedding 0.3."
    ),
)
async def get_related_items_tool(
    id: int,
    depth: int = 1,
    types: list[str] | None = None,
    strategy: Literal["keywords", "concepts", "embedding", "hybrid", "manual"] | None = None,
    weights: dict[str, float] | None = None,
    thresholds: dict[str, float] | None = None,
) -> RelatedItemsResponse:
    """Find related items."""
    return await core.get_related_items(
        id,
        depth=depth,
        types=types,
        strategy=strategy,
        weights=weights,
        thresholds=thresholds,
    )


@mcp.tool(
    name="suggest_relations",
    description="Suggest items to link, from shared keywords, shared concepts and embedding similarity.",
)
async def suggest_relations_tool(id: int) -> list[RelatedItemDetail]:
    """Suggest relations for an item."""
    return await core.suggest_relations(id)


@mcp.tool(name="get_item_keywords", description="Get the extracted keywords and concepts of an item.")
async def get_item_keywords_tool(id: int) -> ItemKeywords:
    """Get an item's keywords and concepts."""
    return await core.get_item_keywords(id)


@mcp.tool(
    name="cleanup_vocabulary",
    description="Remove keywords and concepts that no item references.",
)
async def cleanup_vocabulary_tool() -> CleanupResult:
    """Remove orphaned vocabulary."""
    return await core.cleanup_vocabulary()


def main():
    """Run the MCP server."""
    from ._logging import configure_logging

    configure_logging()
    mcp.run()


if __name__ == "__main__":
    main()
