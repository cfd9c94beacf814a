"""Strategy dispatch for related-item queries.

Strategies:
    keywords   shared keywords, summed association weights
    concepts   shared concepts, summed confidences
    embedding  cosine similarity of stored embeddings
    hybrid     weighted combination of the three (the default)
    manual     explicit relation links only, each scored 1.0

Results are computed on every call and never cached.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import (
    HYBRID_DEFAULT_WEIGHTS,
    HYBRID_RESULT_LIMIT,
    RELATED_CONCEPT_SOURCE_LIMIT,
    RELATED_EMBEDDING_CANDIDATES,
    RELATED_KEYWORD_SOURCE_LIMIT,
    RELATED_RESULT_LIMIT,
)
from ..models import RelatedItem, RelationStrategy, RelationThresholds
from ..store import ItemStore
from .embeddings import cosine_similarity
from .metadata_store import MetadataStore, VocabularyMatch

log = logging.getLogger(__name__)

MANUAL_REASON = "Manual Relation"


def normalize_weights(weights: dict[str, float]) -> dict[str, float]:
    """Scale weights to sum to 1. All-zero weights are returned unchanged."""
    total = sum(weights.values())
    if total == 0:
        return dict(weights)
    return {name: weight / total for name, weight in weights.items()}


def _rank_overlap(
    matches: list[VocabularyMatch], minimum: float, label: str, shown: int
) -> list[RelatedItem]:
    totals: dict[int, tuple[float, list[str]]] = {}
    for match in matches:
        score, terms = totals.get(match.item_id, (0.0, []))
        terms.append(match.term)
        totals[match.item_id] = (score + match.score, terms)

    ranked = sorted(
        ((item_id, score, terms) for item_id, (score, terms) in totals.items() if score > minimum),
        key=lambda entry: entry[1],
        reverse=True,
    )
    return [
        RelatedItem(id=item_id, score=score, reason=f"{label}: {', '.join(terms[:shown])}")
        for item_id, score, terms in ranked[:RELATED_RESULT_LIMIT]
    ]


class UnifiedSearch:
    """Find related items with a caller-chosen scoring strategy."""

    def __init__(self, store: ItemStore, metadata: MetadataStore) -> None:
        self._store = store
        self._metadata = metadata
        self._strategies: dict[str, Callable[[int, RelationThresholds], list[RelatedItem]]] = {
            "keywords": self.by_keywords,
            "concepts": self.by_concepts,
            "embedding": self.by_embedding,
        }

    def find_related(self, item_id: int, strategy: RelationStrategy | None = None) -> list[RelatedItem]:
        """Ranked related items for ``item_id``.

        Never raises; a failing strategy is logged and yields no results.
        """
        config = strategy or RelationStrategy()
        name = config.strategy or "hybrid"
        thresholds = config.thresholds or RelationThresholds()

        try:
            if name == "manual":
                return self.manual(item_id)
            if name == "hybrid":
                return self.hybrid(item_id, config.weights, thresholds)
            return self._strategies[name](item_id, thresholds)
        except Exception as e:
            log.warning("Related-item search (%s) failed for item %d: %s", name, item_id, e)
            return []

    def manual(self, item_id: int) -> list[RelatedItem]:
        return [RelatedItem(id=other, score=1.0, reason=MANUAL_REASON) for other in self._store.related_ids(item_id)]

    def by_keywords(self, item_id: int, thresholds: RelationThresholds) -> list[RelatedItem]:
        minimum = thresholds.min_keyword_weight
        source = self._metadata.top_keywords(item_id, limit=RELATED_KEYWORD_SOURCE_LIMIT, min_weight=minimum)
        if not source:
            return []
        matches = self._metadata.keyword_matches([k.word for k in source], item_id)
        return _rank_overlap(matches, minimum, "Keywords", 3)

    def by_concepts(self, item_id: int, thresholds: RelationThresholds) -> list[RelatedItem]:
        minimum = thresholds.min_confidence
        source = self._metadata.top_concepts(item_id, limit=RELATED_CONCEPT_SOURCE_LIMIT, min_confidence=minimum)
        if not source:
            return []
        matches = self._metadata.concept_matches([c.name for c in source], item_id)
        return _rank_overlap(matches, minimum, "Concepts", 2)

    def by_embedding(self, item_id: int, thresholds: RelationThresholds) -> list[RelatedItem]:
        source = self._store.get_embedding(item_id)
        if source is None:
            return []

        results = []
        for candidate_id, embedding in self._store.embedding_candidates(item_id, RELATED_EMBEDDING_CANDIDATES):
            similarity = cosine_similarity(source, embedding)
            if similarity >= thresholds.min_similarity:
                results.append(
                    RelatedItem(id=candidate_id, score=similarity, reason=f"Similarity: {similarity * 100:.1f}%")
                )
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:RELATED_RESULT_LIMIT]

    def hybrid(
        self,
        item_id: int,
        weights: dict[str, float] | None,
        thresholds: RelationThresholds,
    ) -> list[RelatedItem]:
        """Weighted sum of the keyword, concept and embedding scores.

        Weights are normalized first; a strategy missing from ``weights``
        contributes nothing.
        """
        effective = normalize_weights(weights if weights is not None else HYBRID_DEFAULT_WEIGHTS)

        combined: dict[int, tuple[float, list[str]]] = {}
        for name, run in self._strategies.items():
            weight = effective.get(name, 0.0)
            for result in run(item_id, thresholds):
                score, reasons = combined.get(result.id, (0.0, []))
                reasons.append(result.reason)
                combined[result.id] = (score + result.score * weight, reasons)

        ranked = sorted(combined.items(), key=lambda entry: entry[1][0], reverse=True)
        return [
            RelatedItem(id=related_id, score=score, reason=" + ".join(reasons))
            for related_id, (score, reasons) in ranked[:HYBRID_RESULT_LIMIT]
        ]
