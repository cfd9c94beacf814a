"""Tests for ItemStore: CRUD, tags, listing, search and manual relations."""

import pytest

from conftest import make_item
from itemkb.errors import ErrorCode, ItemNotFoundError, KBError
from itemkb.store import validate_item_type, validate_status


class TestValidation:
    def test_item_type_normalized(self):
        assert validate_item_type("  Knowledge ") == "knowledge"

    def test_custom_item_type_allowed(self):
        assert validate_item_type("meeting_notes2") == "meeting_notes2"

    @pytest.mark.parametrize("bad", ["", "with space", "dash-type", "émoji"])
    def test_invalid_item_type(self, bad):
        with pytest.raises(KBError) as exc_info:
            validate_item_type(bad)
        assert exc_info.value.code == ErrorCode.INVALID_ITEM_TYPE

    def test_status_matched_case_insensitively(self):
        assert validate_status("in progress") == "In Progress"

    def test_unknown_status(self):
        with pytest.raises(KBError) as exc_info:
            validate_status("Someday")
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT


class TestCrud:
    def test_create_applies_defaults(self, store):
        item = make_item(store, "First")
        assert item.id > 0
        assert item.type == "knowledge"
        assert item.status == "Open"
        assert item.priority == "MEDIUM"
        assert item.description == ""
        assert item.ai_summary is None
        assert item.embedding is None
        assert item.created_at == item.updated_at

    def test_create_with_tags(self, store):
        item = store.create({"type": "docs", "title": "Tagged"}, tags=["b", "a", "a", " "])
        assert item.tags == ["a", "b"]

    def test_find_by_id_missing(self, store):
        assert store.find_by_id(999) is None

    def test_get_missing_raises(self, store):
        with pytest.raises(ItemNotFoundError) as exc_info:
            store.get(999)
        assert exc_info.value.code == ErrorCode.ITEM_NOT_FOUND
        assert "999" in exc_info.value.message

    def test_update_changes_only_given_fields(self, store):
        item = make_item(store, "Before", content="body")
        updated = store.update(item.id, {"title": "After", "unknown": "ignored"})
        assert updated.title == "After"
        assert updated.content == "body"
        assert updated.updated_at >= item.updated_at

    def test_update_replaces_tags(self, store):
        item = store.create({"type": "docs", "title": "Tagged"}, tags=["old"])
        assert store.update(item.id, {}, tags=["new"]).tags == ["new"]
        assert store.update(item.id, {}).tags == ["new"]
        assert store.update(item.id, {}, tags=[]).tags == []

    def test_update_missing_raises(self, store):
        with pytest.raises(ItemNotFoundError):
            store.update(42, {"title": "nope"})

    def test_delete(self, store):
        item = make_item(store)
        store.delete(item.id)
        assert not store.exists(item.id)
        with pytest.raises(ItemNotFoundError):
            store.delete(item.id)


class TestListAndSearch:
    def test_list_filters_by_type_and_status(self, store):
        make_item(store, "Doc", item_type="docs")
        make_item(store, "Issue", item_type="issues", status="Closed")
        make_item(store, "Open issue", item_type="issues")

        titles = {i.title for i in store.list_items(item_type="issues")}
        assert titles == {"Issue", "Open issue"}
        closed = store.list_items(statuses=["closed"])
        assert [i.title for i in closed] == ["Issue"]

    def test_list_filters_by_priority_and_tag(self, store):
        store.create({"type": "issues", "title": "Urgent", "priority": "HIGH"}, tags=["backend"])
        store.create({"type": "issues", "title": "Later", "priority": "LOW"}, tags=["frontend"])

        assert [i.title for i in store.list_items(priorities=["high"])] == ["Urgent"]
        assert [i.title for i in store.list_items(tags=["frontend"])] == ["Later"]

    def test_list_sort_and_paging(self, store):
        for n in range(5):
            make_item(store, f"Item {n}")

        ascending = store.list_items(sort_by="created", sort_order="asc")
        assert [i.title for i in ascending] == [f"Item {n}" for n in range(5)]

        page = store.list_items(sort_by="created", sort_order="asc", limit=2, offset=2)
        assert [i.title for i in page] == ["Item 2", "Item 3"]

    def test_search_matches_all_terms(self, store):
        make_item(store, "Graph database", content="retrieval")
        make_item(store, "Graph drawing")
        make_item(store, "Unrelated")

        assert {i.title for i in store.search("graph")} == {"Graph database", "Graph drawing"}
        assert [i.title for i in store.search("GRAPH retrieval")] == ["Graph database"]

    def test_search_uses_search_index(self, store):
        item = make_item(store, "Plain title")
        store.update(item.id, {"search_index": "vectorstore embedding"})
        assert [i.id for i in store.search("vectorstore")] == [item.id]

    def test_search_type_filter(self, store):
        make_item(store, "Graph doc", item_type="docs")
        make_item(store, "Graph issue", item_type="issues")
        assert [i.title for i in store.search("graph", types=["issues"])] == ["Graph issue"]


class TestRelations:
    def test_relations_are_bidirectional(self, store):
        a, b, c = (make_item(store, t) for t in "ABC")
        store.add_relations(a.id, [b.id, c.id])

        assert store.related_ids(a.id) == [b.id, c.id]
        assert store.related_ids(b.id) == [a.id]
        assert store.related_ids(c.id) == [a.id]

    def test_add_relations_is_idempotent_and_skips_self(self, store):
        a, b = make_item(store, "A"), make_item(store, "B")
        store.add_relations(a.id, [b.id, a.id])
        store.add_relations(b.id, [a.id])
        assert store.related_ids(a.id) == [b.id]

    def test_add_relations_missing_target(self, store):
        a = make_item(store, "A")
        with pytest.raises(ItemNotFoundError):
            store.add_relations(a.id, [404])
        assert store.related_ids(a.id) == []

    def test_set_relations_replaces(self, store):
        a, b, c = (make_item(store, t) for t in "ABC")
        store.add_relations(a.id, [b.id])
        store.set_relations(a.id, [c.id])
        assert store.related_ids(a.id) == [c.id]
        assert store.related_ids(b.id) == []

    def test_set_relations_missing_target_keeps_old_links(self, store):
        a, b = make_item(store, "A"), make_item(store, "B")
        store.add_relations(a.id, [b.id])
        with pytest.raises(ItemNotFoundError):
            store.set_relations(a.id, [404])
        assert store.related_ids(a.id) == [b.id]
        assert store.related_ids(b.id) == [a.id]

    def test_delete_cascades_relations(self, store):
        a, b = make_item(store, "A"), make_item(store, "B")
        store.add_relations(a.id, [b.id])
        store.delete(b.id)
        assert store.related_ids(a.id) == []

    def test_embedding_candidates(self, store):
        a, b, c = (make_item(store, t) for t in "ABC")
        store.update(a.id, {"embedding": b"\x01\x02"})
        store.update(c.id, {"embedding": b"\x03\x04"})

        assert store.get_embedding(b.id) is None
        assert store.embedding_candidates(a.id, limit=10) == [(c.id, b"\x03\x04")]
