"""Embedding similarity and relation suggestions.

``find_similar`` scans a bounded pool of embedded items. ``suggest_relations``
mixes three signals (shared keywords, shared concepts, embedding similarity)
into scored suggestions with a short provenance string. Neither raises.
"""

from __future__ import annotations

import logging

from ..config import (
    DEFAULT_SIMILARITY_THRESHOLD,
    SIMILAR_CANDIDATE_POOL,
    SIMILAR_RESULT_LIMIT,
    SUGGEST_CONCEPT_FACTOR,
    SUGGEST_CONCEPT_MATCH_LIMIT,
    SUGGEST_CONCEPT_MIN_SCORE,
    SUGGEST_EMBEDDING_BASE_SCORE,
    SUGGEST_EMBEDDING_DECAY,
    SUGGEST_EMBEDDING_THRESHOLD,
    SUGGEST_EMBEDDING_TOP,
    SUGGEST_EMBEDDING_WHEN_FEWER_THAN,
    SUGGEST_KEYWORD_FACTOR,
    SUGGEST_KEYWORD_MATCH_LIMIT,
    SUGGEST_KEYWORD_MIN_SCORE,
    SUGGEST_MIN_FINAL_SCORE,
    SUGGEST_POOL_LIMIT,
    SUGGEST_RESULT_LIMIT,
    SUGGEST_TOP_CONCEPTS,
    SUGGEST_TOP_KEYWORDS,
)
from ..models import RelatedItem
from ..store import ItemStore
from .embeddings import cosine_similarity
from .metadata_store import MetadataStore, VocabularyMatch

log = logging.getLogger(__name__)


def _accumulate(matches: list[VocabularyMatch], factor: float) -> dict[int, tuple[float, list[str]]]:
    """Sum ``score * factor`` per item, remembering the shared terms in order."""
    totals: dict[int, tuple[float, list[str]]] = {}
    for match in matches:
        score, terms = totals.get(match.item_id, (0.0, []))
        terms.append(match.term)
        totals[match.item_id] = (score + match.score * factor, terms)
    return totals


class SimilaritySearch:
    """Embedding neighbours and multi-signal relation suggestions."""

    def __init__(self, store: ItemStore, metadata: MetadataStore) -> None:
        self._store = store
        self._metadata = metadata

    def find_similar(self, item_id: int, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> list[int]:
        """Ids of items whose embedding similarity is at least ``threshold``.

        Only the first SIMILAR_CANDIDATE_POOL embedded items are compared.
        Returns at most SIMILAR_RESULT_LIMIT ids, most similar first.
        """
        try:
            source = self._store.get_embedding(item_id)
            if source is None:
                return []

            scored = []
            for candidate_id, embedding in self._store.embedding_candidates(item_id, SIMILAR_CANDIDATE_POOL):
                similarity = cosine_similarity(source, embedding)
                if similarity >= threshold:
                    scored.append((candidate_id, similarity))
        except Exception as e:
            log.warning("Similarity search failed for item %d: %s", item_id, e)
            return []

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [candidate_id for candidate_id, _ in scored[:SIMILAR_RESULT_LIMIT]]

    def suggest_relations(self, item_id: int) -> list[RelatedItem]:
        """Suggest items to relate to ``item_id``.

        Items already manually related are never suggested. Returns at most
        SUGGEST_RESULT_LIMIT suggestions scoring above SUGGEST_MIN_FINAL_SCORE.
        """
        try:
            return self._suggest(item_id)
        except Exception as e:
            log.warning("Relation suggestion failed for item %d: %s", item_id, e)
            return []

    def _suggest(self, item_id: int) -> list[RelatedItem]:
        if not self._store.exists(item_id):
            return []

        excluded = set(self._store.related_ids(item_id))
        excluded.add(item_id)
        suggestions: dict[int, RelatedItem] = {}

        # Shared keywords
        keywords = self._metadata.top_keywords(item_id, limit=SUGGEST_TOP_KEYWORDS)
        if keywords:
            matches = self._metadata.keyword_matches(
                [k.word for k in keywords], item_id, limit=SUGGEST_KEYWORD_MATCH_LIMIT
            )
            for candidate_id, (score, words) in _accumulate(matches, SUGGEST_KEYWORD_FACTOR).items():
                if candidate_id not in excluded and score > SUGGEST_KEYWORD_MIN_SCORE:
                    suggestions[candidate_id] = RelatedItem(
                        id=candidate_id, score=score, reason=f"Shared keywords: {', '.join(words[:3])}"
                    )

        # Shared concepts
        concepts = self._metadata.top_concepts(item_id, limit=SUGGEST_TOP_CONCEPTS)
        if concepts:
            matches = self._metadata.concept_matches(
                [c.name for c in concepts], item_id, limit=SUGGEST_CONCEPT_MATCH_LIMIT
            )
            for candidate_id, (score, names) in _accumulate(matches, SUGGEST_CONCEPT_FACTOR).items():
                if candidate_id in excluded or score <= SUGGEST_CONCEPT_MIN_SCORE:
                    continue
                shared = ", ".join(names[:2])
                if candidate_id in suggestions:
                    existing = suggestions[candidate_id]
                    existing.score += score
                    existing.reason += f" + concepts: {shared}"
                else:
                    suggestions[candidate_id] = RelatedItem(
                        id=candidate_id, score=score, reason=f"Shared concepts: {shared}"
                    )

        # Embedding similarity, only while suggestions are sparse
        if len(suggestions) < SUGGEST_EMBEDDING_WHEN_FEWER_THAN and self._store.get_embedding(item_id) is not None:
            similar = self.find_similar(item_id, SUGGEST_EMBEDDING_THRESHOLD)[:SUGGEST_EMBEDDING_TOP]
            for index, candidate_id in enumerate(similar):
                if candidate_id in excluded:
                    continue
                score = SUGGEST_EMBEDDING_BASE_SCORE - index * SUGGEST_EMBEDDING_DECAY
                if candidate_id in suggestions:
                    existing = suggestions[candidate_id]
                    existing.score += score
                    existing.reason += " + semantic similarity"
                elif len(suggestions) < SUGGEST_POOL_LIMIT:
                    suggestions[candidate_id] = RelatedItem(id=candidate_id, score=score, reason="Semantic similarity")

        ranked = sorted(suggestions.values(), key=lambda s: s.score, reverse=True)[:SUGGEST_RESULT_LIMIT]
        return [s for s in ranked if s.score > SUGGEST_MIN_FINAL_SCORE]
