"""Item persistence: CRUD, tags and manual relations.

The enrichment pipeline treats this as an external collaborator: it reads
items through ``find_by_id`` and writes AI fields through ``update``.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import UTC, datetime
from typing import Any

from .config import DEFAULT_LIST_LIMIT, ITEM_TYPE_PATTERN, MAX_LIST_LIMIT, STATUSES
from .db import Database
from .errors import ItemNotFoundError, KBError
from .models import Item

log = logging.getLogger(__name__)

# Columns callers may write through create()/update()
ITEM_COLUMNS = (
    "type",
    "title",
    "description",
    "content",
    "status",
    "priority",
    "category",
    "ai_summary",
    "search_index",
    "embedding",
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def validate_item_type(item_type: str) -> str:
    """Normalize and validate an item type name."""
    normalized = item_type.strip().lower()
    if not re.match(ITEM_TYPE_PATTERN, normalized):
        raise KBError.invalid_item_type(item_type)
    return normalized


def validate_status(status: str) -> str:
    """Match a status name case-insensitively against the known statuses."""
    for known in STATUSES:
        if known.lower() == status.strip().lower():
            return known
    raise KBError.invalid_argument(f"Unknown status '{status}'", allowed=list(STATUSES))


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIST_LIMIT))


class ItemStore:
    """SQLite-backed item repository."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ─────────────────────────────────────────────────────────────────────
    # Row mapping
    # ─────────────────────────────────────────────────────────────────────

    def _tags_for(self, conn: sqlite3.Connection, item_ids: list[int]) -> dict[int, list[str]]:
        if not item_ids:
            return {}
        placeholders = ",".join("?" for _ in item_ids)
        rows = conn.execute(
            f"""
            SELECT it.item_id, t.name FROM item_tags it
            JOIN tags t ON t.id = it.tag_id
            WHERE it.item_id IN ({placeholders})
            ORDER BY t.name
            """,
            item_ids,
        ).fetchall()
        tags: dict[int, list[str]] = {item_id: [] for item_id in item_ids}
        for row in rows:
            tags[row["item_id"]].append(row["name"])
        return tags

    def _to_items(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Item]:
        tags = self._tags_for(conn, [row["id"] for row in rows])
        return [
            Item(
                id=row["id"],
                type=row["type"],
                title=row["title"],
                description=row["description"],
                content=row["content"],
                status=row["status"],
                priority=row["priority"],
                category=row["category"],
                tags=tags.get(row["id"], []),
                ai_summary=row["ai_summary"],
                search_index=row["search_index"],
                embedding=row["embedding"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    def _ensure_tags(self, conn: sqlite3.Connection, names: list[str]) -> list[int]:
        tag_ids = []
        for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
            conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
            row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
            tag_ids.append(row["id"])
        return tag_ids

    def _replace_tags(self, conn: sqlite3.Connection, item_id: int, names: list[str]) -> None:
        conn.execute("DELETE FROM item_tags WHERE item_id = ?", (item_id,))
        conn.executemany(
            "INSERT INTO item_tags (item_id, tag_id) VALUES (?, ?)",
            [(item_id, tag_id) for tag_id in self._ensure_tags(conn, names)],
        )

    # ─────────────────────────────────────────────────────────────────────
    # CRUD
    # ─────────────────────────────────────────────────────────────────────

    def find_by_id(self, item_id: int) -> Item | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                return None
            return self._to_items(conn, [row])[0]

    def get(self, item_id: int) -> Item:
        """Like find_by_id but raises ItemNotFoundError."""
        item = self.find_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def exists(self, item_id: int) -> bool:
        with self._db.connect() as conn:
            return conn.execute("SELECT 1 FROM items WHERE id = ?", (item_id,)).fetchone() is not None

    def create(self, fields: dict[str, Any], tags: list[str] | None = None) -> Item:
        """Insert a new item and return it."""
        values = {key: fields[key] for key in ITEM_COLUMNS if key in fields}
        values["type"] = validate_item_type(values["type"])
        if "status" in values:
            values["status"] = validate_status(values["status"])
        now = _now()
        values["created_at"] = now
        values["updated_at"] = now

        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._db.connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO items ({columns}) VALUES ({placeholders})",
                list(values.values()),
            )
            item_id = cursor.lastrowid
            if tags:
                self._replace_tags(conn, item_id, tags)
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            item = self._to_items(conn, [row])[0]

        log.debug("Created item %d (%s)", item.id, item.type)
        return item

    def update(self, item_id: int, fields: dict[str, Any], tags: list[str] | None = None) -> Item:
        """Apply a partial update as one write.

        Args:
            item_id: Item to update.
            fields: Column values to set (unknown keys are ignored).
            tags: If not None, replaces the item's tags.

        Raises:
            ItemNotFoundError: If the item does not exist.
        """
        values = {key: fields[key] for key in ITEM_COLUMNS if key in fields}
        if "type" in values:
            values["type"] = validate_item_type(values["type"])
        if "status" in values:
            values["status"] = validate_status(values["status"])
        values["updated_at"] = _now()

        assignments = ", ".join(f"{column} = ?" for column in values)
        with self._db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE items SET {assignments} WHERE id = ?",
                [*values.values(), item_id],
            )
            if cursor.rowcount == 0:
                raise ItemNotFoundError(item_id)
            if tags is not None:
                self._replace_tags(conn, item_id, tags)
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            return self._to_items(conn, [row])[0]

    def delete(self, item_id: int) -> None:
        """Delete an item. Tags, relations and keyword/concept rows cascade."""
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            if cursor.rowcount == 0:
                raise ItemNotFoundError(item_id)

    def list_items(
        self,
        item_type: str | None = None,
        statuses: list[str] | None = None,
        priorities: list[str] | None = None,
        tags: list[str] | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
        sort_by: str = "updated",
        sort_order: str = "desc",
    ) -> list[Item]:
        """List items with optional filters, newest first by default."""
        clauses: list[str] = []
        params: list[Any] = []
        if item_type:
            clauses.append("type = ?")
            params.append(item_type.strip().lower())
        if statuses:
            clauses.append(f"status IN ({','.join('?' for _ in statuses)})")
            params.extend(validate_status(s) for s in statuses)
        if priorities:
            clauses.append(f"priority IN ({','.join('?' for _ in priorities)})")
            params.extend(p.upper() for p in priorities)
        if tags:
            clauses.append(
                "id IN (SELECT it.item_id FROM item_tags it JOIN tags t ON t.id = it.tag_id "
                f"WHERE t.name IN ({','.join('?' for _ in tags)}))"
            )
            params.extend(tags)

        order_column = {"created": "created_at", "updated": "updated_at", "priority": "priority"}.get(
            sort_by, "updated_at"
        )
        direction = "ASC" if sort_order.lower() == "asc" else "DESC"
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM items {where} ORDER BY {order_column} {direction}, id {direction} LIMIT ? OFFSET ?",
                [*params, _clamp_limit(limit), max(offset, 0)],
            ).fetchall()
            return self._to_items(conn, rows)

    def search(
        self,
        query: str,
        types: list[str] | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[Item]:
        """Case-insensitive substring search; every term must match some text field."""
        terms = [term for term in query.lower().split() if term]
        clauses: list[str] = []
        params: list[Any] = []
        for term in terms:
            clauses.append(
                "(LOWER(title) LIKE ? OR LOWER(description) LIKE ? "
                "OR LOWER(content) LIKE ? OR LOWER(COALESCE(search_index, '')) LIKE ?)"
            )
            params.extend([f"%{term}%"] * 4)
        if types:
            clauses.append(f"type IN ({','.join('?' for _ in types)})")
            params.extend(t.strip().lower() for t in types)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM items {where} ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?",
                [*params, _clamp_limit(limit), max(offset, 0)],
            ).fetchall()
            return self._to_items(conn, rows)

    # ─────────────────────────────────────────────────────────────────────
    # Embeddings
    # ─────────────────────────────────────────────────────────────────────

    def get_embedding(self, item_id: int) -> bytes | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT embedding FROM items WHERE id = ?", (item_id,)).fetchone()
            return row["embedding"] if row else None

    def embedding_candidates(self, exclude_id: int, limit: int) -> list[tuple[int, bytes]]:
        """Items other than exclude_id that have an embedding, lowest id first."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT id, embedding FROM items WHERE id != ? AND embedding IS NOT NULL ORDER BY id LIMIT ?",
                (exclude_id, limit),
            ).fetchall()
            return [(row["id"], row["embedding"]) for row in rows]

    # ─────────────────────────────────────────────────────────────────────
    # Manual relations
    # ─────────────────────────────────────────────────────────────────────

    def _link(self, conn: sqlite3.Connection, source_id: int, target_ids: list[int]) -> None:
        if conn.execute("SELECT 1 FROM items WHERE id = ?", (source_id,)).fetchone() is None:
            raise ItemNotFoundError(source_id)
        for target_id in target_ids:
            if target_id == source_id:
                continue
            if conn.execute("SELECT 1 FROM items WHERE id = ?", (target_id,)).fetchone() is None:
                raise ItemNotFoundError(target_id)
            conn.executemany(
                "INSERT OR IGNORE INTO item_relations (source_id, target_id) VALUES (?, ?)",
                [(source_id, target_id), (target_id, source_id)],
            )

    def add_relations(self, source_id: int, target_ids: list[int]) -> None:
        """Add bidirectional relations. Existing pairs are left alone."""
        with self._db.connect() as conn:
            self._link(conn, source_id, target_ids)

    def set_relations(self, item_id: int, target_ids: list[int]) -> None:
        """Replace all manual relations of an item."""
        with self._db.connect() as conn:
            conn.execute(
                "DELETE FROM item_relations WHERE source_id = ? OR target_id = ?",
                (item_id, item_id),
            )
            self._link(conn, item_id, target_ids)

    def related_ids(self, item_id: int) -> list[int]:
        """Ids manually related to item_id in either direction."""
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT target_id AS other FROM item_relations WHERE source_id = ?
                UNION
                SELECT source_id AS other FROM item_relations WHERE target_id = ?
                ORDER BY other
                """,
                (item_id, item_id),
            ).fetchall()
            return [row["other"] for row in rows]
