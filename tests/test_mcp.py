"""Tests for MCP server tool wrappers.

Tests the MCP layer behavior: argument passing, response models, error
propagation. Core logic is tested in test_core.py.
"""

import pytest

from itemkb import server
from itemkb.errors import ErrorCode, ItemNotFoundError, KBError
from itemkb.models import CleanupResult, Item, ItemKeywords, RelatedItemsResponse

# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


async def _call_tool(tool_obj, /, *args, **kwargs):
    """Invoke the wrapped coroutine behind an MCP FunctionTool."""
    bound = tool_obj.fn(*args, **kwargs)
    if callable(bound):
        return await bound()
    return await bound


async def _create(title: str, **kwargs) -> Item:
    return await _call_tool(server.create_item_tool, type=kwargs.pop("type", "knowledge"), title=title, **kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# Item tools
# ─────────────────────────────────────────────────────────────────────────────


class TestItemTools:
    @pytest.mark.asyncio
    async def test_create_and_get(self):
        created = await _create("Graph notes", content="graph database", tags=["db"])
        assert isinstance(created, Item)

        fetched = await _call_tool(server.get_item_tool, id=created.id)
        assert fetched.title == "Graph notes"
        assert fetched.tags == ["db"]
        assert "embedding" not in fetched.model_dump()

    @pytest.mark.asyncio
    async def test_update_ignores_omitted_fields(self):
        created = await _create("Title", content="body", priority="LOW")
        updated = await _call_tool(server.update_item_tool, id=created.id, status="Closed")

        assert updated.status == "Closed"
        assert updated.priority == "LOW"
        assert updated.content == "body"

    @pytest.mark.asyncio
    async def test_update_clears_category_with_empty_string(self):
        created = await _create("Filed", category="infra")
        kept = await _call_tool(server.update_item_tool, id=created.id, status="Closed")
        assert kept.category == "infra"

        cleared = await _call_tool(server.update_item_tool, id=created.id, category="")
        assert cleared.category is None

    @pytest.mark.asyncio
    async def test_delete(self):
        created = await _create("Doomed")
        assert await _call_tool(server.delete_item_tool, id=created.id) == {"deleted": created.id}

    @pytest.mark.asyncio
    async def test_list_and_search(self):
        await _create("Graph notes", content="graph database")
        await _create("Recipe", type="docs")

        listed = await _call_tool(server.list_items_tool, type="docs")
        assert [i.title for i in listed] == ["Recipe"]

        found = await _call_tool(server.search_items_tool, query="graph")
        assert [i.title for i in found] == ["Graph notes"]

    @pytest.mark.asyncio
    async def test_missing_item_error(self):
        with pytest.raises(ItemNotFoundError) as exc_info:
            await _call_tool(server.get_item_tool, id=999)
        assert exc_info.value.to_dict()["code"] == "ITEM_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_type_error(self):
        with pytest.raises(KBError) as exc_info:
            await _create("Bad", type="Bad Type!")
        assert exc_info.value.code == ErrorCode.INVALID_ITEM_TYPE


# ─────────────────────────────────────────────────────────────────────────────
# Relation tools
# ─────────────────────────────────────────────────────────────────────────────


class TestRelationTools:
    @pytest.mark.asyncio
    async def test_add_relations_and_traverse(self):
        a = await _create("A")
        b = await _create("B")

        result = await _call_tool(server.add_relations_tool, source_id=a.id, target_ids=[b.id])
        assert result == {"id": a.id, "related": [b.id]}

        response = await _call_tool(server.get_related_items_tool, id=b.id)
        assert isinstance(response, RelatedItemsResponse)
        assert [i.id for i in response.items] == [a.id]
        assert response.strategy == "manual"

    @pytest.mark.asyncio
    async def test_strategy_search(self):
        a = await _create("RAG", content="graph database retrieval")
        b = await _create("Tuning", content="graph database optimization")

        response = await _call_tool(
            server.get_related_items_tool,
            id=a.id,
            strategy="keywords",
            thresholds={"min_keyword_weight": 0.3},
        )
        assert response.strategy == "keywords"
        assert [i.id for i in response.items] == [b.id]
        assert response.edges[0].type == "strategy-based"

    @pytest.mark.asyncio
    async def test_suggest_relations(self):
        a = await _create("RAG", content="graph database retrieval")
        b = await _create("Tuning", content="graph database optimization")

        suggestions = await _call_tool(server.suggest_relations_tool, id=a.id)
        assert [s.id for s in suggestions] == [b.id]
        assert suggestions[0].search_reason.startswith("Shared keywords")


# ─────────────────────────────────────────────────────────────────────────────
# Vocabulary tools
# ─────────────────────────────────────────────────────────────────────────────


class TestVocabularyTools:
    @pytest.mark.asyncio
    async def test_get_item_keywords(self):
        item = await _create("Graph", content="graph graph database")
        keywords = await _call_tool(server.get_item_keywords_tool, id=item.id)

        assert isinstance(keywords, ItemKeywords)
        assert keywords.keywords[0].word == "graph"

    @pytest.mark.asyncio
    async def test_cleanup_vocabulary(self):
        item = await _create("Ephemeral", content="ephemeral words")
        await _call_tool(server.delete_item_tool, id=item.id)

        result = await _call_tool(server.cleanup_vocabulary_tool)
        assert isinstance(result, CleanupResult)
        assert result.keywords_removed == 2
