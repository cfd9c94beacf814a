"""Keyword and concept extraction for item enrichment.

The primary path asks an LLM (Anthropic or OpenRouter, see llm_providers)
for weighted keywords, concepts and a summary. Any problem with that call
(disabled, no provider, error, timeout, unusable JSON) drops to a
deterministic word-frequency heuristic. ``extract`` never raises; the
``degraded`` flag on the result says which path produced the metadata.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ..config import (
    EMPTY_SUMMARY,
    ENRICHMENT_MAX_TOKENS,
    FALLBACK_KEYWORD_LIMIT,
    FALLBACK_MIN_WORD_LENGTH,
    FALLBACK_PLACEHOLDER_KEYWORD,
    FALLBACK_PLACEHOLDER_WEIGHT,
    MAX_EXTRACTED_KEYWORDS,
    MAX_STORED_KEYWORDS,
    SUMMARY_MAX_CHARS,
    ConfigurationError,
    LLMConfig,
    get_llm_config,
)
from ..llm_providers import LLMProviderError, get_async_client, make_completion_async
from ..models import EnrichedMetadata, ScoredConcept, WeightedKeyword
from .embeddings import generate_embedding, quantize

log = logging.getLogger(__name__)

EXTRACTION_PROMPT = f"""Analyze the text below and extract its important keywords.

Rules:
1. Extract keywords in ENGLISH whenever possible (translate common concepts to English)
2. Break compound words and technical terms into their parts:
   - "GraphDB" -> "graph" and "database"
   - "GraphRAG" -> "graph", "rag", "retrieval"
   - "MLOps" -> "ml", "machine learning", "ops", "operations"
3. Normalize to base/singular forms ("running" -> "run", "databases" -> "database")
4. Include both the original compound term AND its components
5. Weights: compound terms 0.6-1.0, component parts 0.4-0.8
6. At most {MAX_EXTRACTED_KEYWORDS} keywords
7. Concepts are high-level categories such as "authentication", "database", "optimization"

Respond with JSON only, in exactly this shape:
{{"keywords": [{{"keyword": "example", "weight": 0.9}}],
"concepts": [{{"concept": "category", "confidence": 0.8}}],
"summary": "brief summary in English"}}"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_WORD = re.compile(rf"\b\w{{{FALLBACK_MIN_WORD_LENGTH},}}\b")


@dataclass
class ExtractionResult:
    """Extraction output tagged with how it was produced."""

    metadata: EnrichedMetadata

    degraded: bool = False
    """True when the frequency heuristic was used instead of the LLM."""

    reason: str | None = None
    """Why the heuristic was used, for logs and tests."""


def _get_client(config: LLMConfig) -> tuple[Any, str]:
    """Get an async LLM client with its provider name."""
    return get_async_client(config=config)


def _build_metadata(
    keywords: list[WeightedKeyword],
    concepts: list[ScoredConcept],
    summary: str,
) -> EnrichedMetadata:
    keywords = keywords[:MAX_STORED_KEYWORDS]
    return EnrichedMetadata(
        keywords=keywords,
        concepts=concepts,
        embedding=quantize(generate_embedding(keywords)),
        summary=summary,
        search_index=" ".join(k.word for k in keywords),
    )


def fallback_metadata(text: str) -> EnrichedMetadata:
    """Frequency-based keywords for when the LLM is unavailable.

    The top words (3+ characters) by count are weighted ``count / total * 10``
    capped at 1.0. Ties keep first-seen order. Empty text still yields one
    placeholder keyword.
    """
    words = _WORD.findall(text.lower())
    counts = Counter(words)
    keywords = [
        WeightedKeyword(word=word, weight=min(count / len(words) * 10, 1.0))
        for word, count in counts.most_common(FALLBACK_KEYWORD_LIMIT)
    ]
    if not keywords:
        keywords = [WeightedKeyword(word=FALLBACK_PLACEHOLDER_KEYWORD, weight=FALLBACK_PLACEHOLDER_WEIGHT)]

    return _build_metadata(keywords, [], text[:SUMMARY_MAX_CHARS] or EMPTY_SUMMARY)


def _parse_entries(raw: Any, model: type[WeightedKeyword] | type[ScoredConcept]) -> list:
    if not isinstance(raw, list):
        return []
    entries = []
    for entry in raw:
        try:
            parsed = model.model_validate(entry)
        except ValidationError:
            continue
        label = parsed.word if isinstance(parsed, WeightedKeyword) else parsed.name
        if label.strip():
            entries.append(parsed)
    return entries


def parse_response(response_text: str, text: str) -> EnrichedMetadata | None:
    """Parse an LLM response into metadata, or None if it is unusable.

    Accepts bare JSON or JSON wrapped in a markdown code fence.
    """
    match = _FENCED_JSON.search(response_text)
    payload = match.group(1) if match else response_text.strip()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    keywords = _parse_entries(data.get("keywords"), WeightedKeyword)
    if not keywords:
        return None
    concepts = _parse_entries(data.get("concepts"), ScoredConcept)

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = text[:SUMMARY_MAX_CHARS] or EMPTY_SUMMARY

    return _build_metadata(keywords, concepts, summary.strip())


async def _complete(text: str, config: LLMConfig) -> str:
    client, provider = _get_client(config)
    return await make_completion_async(
        client,
        provider,
        config.model,
        messages=[{"role": "user", "content": f"{EXTRACTION_PROMPT}\n\nText:\n{text}"}],
        max_tokens=ENRICHMENT_MAX_TOKENS,
        json_mode=True,
    )


def _degraded(text: str, reason: str) -> ExtractionResult:
    return ExtractionResult(metadata=fallback_metadata(text), degraded=True, reason=reason)


async def extract(
    title: str,
    description: str,
    content: str,
    *,
    config: LLMConfig | None = None,
) -> ExtractionResult:
    """Extract keywords, concepts, summary and embedding for an item's text."""
    text = f"{title} {description} {content}".strip()
    if not text:
        return _degraded(text, "no text")

    if config is None:
        try:
            config = get_llm_config()
        except ConfigurationError as e:
            log.warning("Invalid LLM configuration, using keyword frequency: %s", e)
            return _degraded(text, f"configuration error: {e}")

    if not config.enabled:
        return _degraded(text, "enrichment disabled")

    try:
        response_text = await asyncio.wait_for(_complete(text, config), timeout=config.timeout)
    except TimeoutError:
        log.warning("Enrichment call timed out after %.0fs, using keyword frequency", config.timeout)
        return _degraded(text, "timeout")
    except LLMProviderError as e:
        log.info("No LLM provider available, using keyword frequency")
        log.debug("Provider detection: %s", e)
        return _degraded(text, "no provider")
    except Exception as e:
        log.warning("Enrichment call failed, using keyword frequency: %s", e)
        return _degraded(text, f"call failed: {e}")

    metadata = parse_response(response_text or "", text)
    if metadata is None:
        log.warning("Unusable enrichment response, using keyword frequency")
        return _degraded(text, "invalid response")

    return ExtractionResult(metadata=metadata)
