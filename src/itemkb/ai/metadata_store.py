"""Normalized keyword/concept vocabulary and per-item associations.

Keywords and concepts are shared rows, created on first use and only removed
by ``cleanup_orphaned``. Each item holds at most one weighted association per
term. Storing a new set for an item replaces the old one inside a single
transaction, so readers never see the item with no associations mid-update.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass

from ..config import MAX_STORED_CONCEPTS, MAX_STORED_KEYWORDS
from ..db import Database
from ..models import CleanupResult, ScoredConcept, WeightedKeyword

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VocabularyMatch:
    """Another item's association with one of the queried terms."""

    item_id: int
    term: str
    score: float  # weight for keywords, confidence for concepts


@dataclass(frozen=True)
class _Vocabulary:
    """Table/column names for one vocabulary (keywords or concepts)."""

    table: str
    term: str
    link_table: str
    link_fk: str
    score: str


_KEYWORDS = _Vocabulary("keywords", "word", "item_keywords", "keyword_id", "weight")
_CONCEPTS = _Vocabulary("concepts", "name", "item_concepts", "concept_id", "confidence")


def normalize_term(term: str) -> str:
    return term.strip().lower()


def clamp_unit(value: float) -> float:
    """Clamp into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


class MetadataStore:
    """Keyword/concept persistence on the shared item database."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ─────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────

    def _find_or_create(self, conn: sqlite3.Connection, vocab: _Vocabulary, term: str) -> int:
        select = f"SELECT id FROM {vocab.table} WHERE {vocab.term} = ?"
        row = conn.execute(select, (term,)).fetchone()
        if row is not None:
            return row["id"]
        try:
            cursor = conn.execute(f"INSERT INTO {vocab.table} ({vocab.term}) VALUES (?)", (term,))
            return cursor.lastrowid
        except sqlite3.IntegrityError:
            # Another writer created the term first
            log.debug("Concurrent creation of %s %r, re-fetching", vocab.table, term)
            row = conn.execute(select, (term,)).fetchone()
            if row is None:
                raise
            return row["id"]

    def _replace(
        self,
        conn: sqlite3.Connection,
        vocab: _Vocabulary,
        item_id: int,
        entries: Sequence[tuple[str, float]],
        limit: int,
    ) -> int:
        # Later duplicates overwrite earlier ones
        scores: dict[str, float] = {}
        for term, score in entries[:limit]:
            normalized = normalize_term(term)
            if normalized:
                scores[normalized] = clamp_unit(score)

        conn.execute(f"DELETE FROM {vocab.link_table} WHERE item_id = ?", (item_id,))
        for term, score in scores.items():
            term_id = self._find_or_create(conn, vocab, term)
            conn.execute(
                f"""
                INSERT INTO {vocab.link_table} (item_id, {vocab.link_fk}, {vocab.score})
                VALUES (?, ?, ?)
                ON CONFLICT(item_id, {vocab.link_fk}) DO UPDATE SET {vocab.score} = excluded.{vocab.score}
                """,
                (item_id, term_id, score),
            )
        return len(scores)

    def store_keywords(self, item_id: int, keywords: Sequence[WeightedKeyword]) -> int:
        """Replace the item's keyword set. Returns the number of rows stored."""
        with self._db.connect() as conn:
            return self._replace(
                conn, _KEYWORDS, item_id, [(k.word, k.weight) for k in keywords], MAX_STORED_KEYWORDS
            )

    def store_concepts(self, item_id: int, concepts: Sequence[ScoredConcept]) -> int:
        """Replace the item's concept set. Returns the number of rows stored."""
        with self._db.connect() as conn:
            return self._replace(
                conn, _CONCEPTS, item_id, [(c.name, c.confidence) for c in concepts], MAX_STORED_CONCEPTS
            )

    def replace_all(
        self,
        item_id: int,
        keywords: Sequence[WeightedKeyword],
        concepts: Sequence[ScoredConcept],
    ) -> None:
        """Replace both sets for an item in one transaction."""
        with self._db.connect() as conn:
            self._replace(conn, _KEYWORDS, item_id, [(k.word, k.weight) for k in keywords], MAX_STORED_KEYWORDS)
            self._replace(
                conn, _CONCEPTS, item_id, [(c.name, c.confidence) for c in concepts], MAX_STORED_CONCEPTS
            )

    def clear(self, item_id: int) -> None:
        with self._db.connect() as conn:
            conn.execute("DELETE FROM item_keywords WHERE item_id = ?", (item_id,))
            conn.execute("DELETE FROM item_concepts WHERE item_id = ?", (item_id,))

    def cleanup_orphaned(self) -> CleanupResult:
        """Delete keywords and concepts no item references any more."""
        with self._db.connect() as conn:
            keywords = conn.execute(
                "DELETE FROM keywords WHERE id NOT IN (SELECT DISTINCT keyword_id FROM item_keywords)"
            ).rowcount
            concepts = conn.execute(
                "DELETE FROM concepts WHERE id NOT IN (SELECT DISTINCT concept_id FROM item_concepts)"
            ).rowcount
        if keywords or concepts:
            log.info("Removed %d orphaned keywords and %d orphaned concepts", keywords, concepts)
        return CleanupResult(keywords_removed=keywords, concepts_removed=concepts)

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    def _top(self, vocab: _Vocabulary, item_id: int, limit: int | None, minimum: float) -> list[tuple[str, float]]:
        sql = f"""
            SELECT v.{vocab.term} AS term, l.{vocab.score} AS score
            FROM {vocab.link_table} l JOIN {vocab.table} v ON v.id = l.{vocab.link_fk}
            WHERE l.item_id = ? AND l.{vocab.score} >= ?
            ORDER BY l.{vocab.score} DESC, v.id ASC
        """
        params: list = [item_id, minimum]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._db.connect() as conn:
            return [(row["term"], row["score"]) for row in conn.execute(sql, params)]

    def get_keywords(self, item_id: int) -> list[WeightedKeyword]:
        """All keywords of an item, highest weight first."""
        return self.top_keywords(item_id)

    def get_concepts(self, item_id: int) -> list[ScoredConcept]:
        """All concepts of an item, highest confidence first."""
        return self.top_concepts(item_id)

    def top_keywords(self, item_id: int, limit: int | None = None, min_weight: float = 0.0) -> list[WeightedKeyword]:
        return [WeightedKeyword(word=t, weight=s) for t, s in self._top(_KEYWORDS, item_id, limit, min_weight)]

    def top_concepts(
        self, item_id: int, limit: int | None = None, min_confidence: float = 0.0
    ) -> list[ScoredConcept]:
        return [ScoredConcept(name=t, confidence=s) for t, s in self._top(_CONCEPTS, item_id, limit, min_confidence)]

    def _matches(
        self, vocab: _Vocabulary, terms: Sequence[str], exclude_item_id: int, limit: int | None
    ) -> list[VocabularyMatch]:
        if not terms:
            return []
        placeholders = ",".join("?" for _ in terms)
        sql = f"""
            SELECT l.item_id AS item_id, v.{vocab.term} AS term, l.{vocab.score} AS score
            FROM {vocab.link_table} l JOIN {vocab.table} v ON v.id = l.{vocab.link_fk}
            WHERE v.{vocab.term} IN ({placeholders}) AND l.item_id != ?
            ORDER BY l.{vocab.score} DESC, l.item_id ASC, v.id ASC
        """
        params: list = [*terms, exclude_item_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._db.connect() as conn:
            return [VocabularyMatch(row["item_id"], row["term"], row["score"]) for row in conn.execute(sql, params)]

    def keyword_matches(
        self, words: Sequence[str], exclude_item_id: int, limit: int | None = None
    ) -> list[VocabularyMatch]:
        """Associations of other items with any of ``words``, highest weight first."""
        return self._matches(_KEYWORDS, words, exclude_item_id, limit)

    def concept_matches(
        self, names: Sequence[str], exclude_item_id: int, limit: int | None = None
    ) -> list[VocabularyMatch]:
        """Associations of other items with any of ``names``, highest confidence first."""
        return self._matches(_CONCEPTS, names, exclude_item_id, limit)
