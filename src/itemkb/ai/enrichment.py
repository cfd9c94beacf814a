"""Enrichment on item create and update.

Enrichment runs only when title, description or content actually changed
(whitespace-only edits do not count). Extraction problems never fail the
write: the item is saved without new AI fields and the problem is logged.
A missing item is the one error that reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from ..config import ENRICHMENT_TIMEOUT_SECONDS
from ..errors import ItemNotFoundError
from ..models import Item, ItemCreate, ItemUpdate
from ..store import ITEM_COLUMNS, ItemStore, validate_item_type, validate_status
from .extractor import ExtractionResult, extract
from .metadata_store import MetadataStore

log = logging.getLogger(__name__)

TEXT_FIELDS = ("title", "description", "content")

# Columns that may not be set to NULL through an update
_NON_NULLABLE = {"type", "title", "description", "content", "status", "priority"}

Extractor = Callable[[str, str, str], Awaitable[ExtractionResult]]


def text_fields_changed(existing: Item, fields: Mapping[str, Any]) -> bool:
    """True if any text field is present in ``fields`` and differs after stripping."""
    for name in TEXT_FIELDS:
        new_value = fields.get(name)
        if new_value is None:
            continue
        if new_value.strip() != (getattr(existing, name) or "").strip():
            return True
    return False


class EnrichmentOrchestrator:
    """Runs extraction around item writes and persists the results."""

    def __init__(
        self,
        store: ItemStore,
        metadata: MetadataStore,
        extractor: Extractor = extract,
        timeout: float = ENRICHMENT_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._metadata = metadata
        self._extractor = extractor
        self._timeout = timeout

    async def _enrich(self, item_id: int, title: str, description: str, content: str) -> dict[str, Any]:
        """Extract and store associations; return the AI fields to write.

        Returns an empty dict if extraction raised or timed out.
        """
        try:
            result = await asyncio.wait_for(self._extractor(title, description, content), timeout=self._timeout)
        except TimeoutError:
            log.warning("Enrichment of item %d timed out after %.0fs; saving without AI fields", item_id, self._timeout)
            return {}
        except Exception as e:
            log.warning("Enrichment of item %d failed; saving without AI fields: %s", item_id, e)
            return {}

        metadata = result.metadata
        try:
            self._metadata.replace_all(item_id, metadata.keywords, metadata.concepts)
        except sqlite3.Error as e:
            log.warning("Could not store keywords for item %d; saving without AI fields: %s", item_id, e)
            return {}
        if result.degraded:
            log.info("Item %d enriched from keyword frequency (%s)", item_id, result.reason)
        else:
            log.debug("Item %d enriched: %d keywords, %d concepts", item_id, len(metadata.keywords), len(metadata.concepts))

        return {
            "ai_summary": metadata.summary,
            "embedding": metadata.embedding,
            "search_index": metadata.search_index,
        }

    async def update_item(self, item_id: int, update: ItemUpdate) -> Item:
        """Apply a partial update, re-enriching if text changed.

        Type and status are checked before extraction, so a rejected update
        leaves the stored keywords and concepts untouched.

        Raises:
            ItemNotFoundError: If the item does not exist.
            KBError: If the type or status is invalid.
        """
        existing = self._store.find_by_id(item_id)
        if existing is None:
            raise ItemNotFoundError(item_id)

        provided = update.provided()
        fields = {
            name: value
            for name, value in provided.items()
            if name in ITEM_COLUMNS and (value is not None or name not in _NON_NULLABLE)
        }
        if fields.get("type") is not None:
            fields["type"] = validate_item_type(fields["type"])
        if fields.get("status") is not None:
            fields["status"] = validate_status(fields["status"])
        related = provided.get("related")
        if related:
            self._require_items(related)

        staged: dict[str, Any] = {}
        if text_fields_changed(existing, fields):
            staged = await self._enrich(
                item_id,
                fields.get("title", existing.title),
                fields.get("description", existing.description),
                fields.get("content", existing.content),
            )

        item = self._store.update(item_id, {**fields, **staged}, tags=provided.get("tags"))
        if related is not None:
            self._store.set_relations(item_id, related)
        return item

    async def create_item(self, create: ItemCreate) -> Item:
        """Insert a new item, then enrich it."""
        if create.related:
            self._require_items(create.related)

        item = self._store.create(create.model_dump(exclude={"tags", "related"}), tags=create.tags)
        if create.related:
            self._store.add_relations(item.id, create.related)

        staged = await self._enrich(item.id, item.title, item.description, item.content)
        if staged:
            item = self._store.update(item.id, staged)
        return item

    async def enrich_item(self, item_id: int) -> Item:
        """Re-run enrichment for an existing item regardless of changes."""
        item = self._store.get(item_id)
        staged = await self._enrich(item.id, item.title, item.description, item.content)
        if staged:
            item = self._store.update(item.id, staged)
        return item

    def _require_items(self, item_ids: list[int]) -> None:
        for item_id in item_ids:
            if not self._store.exists(item_id):
                raise ItemNotFoundError(item_id)
