"""Tests for keyword/concept extraction.

The LLM client is mocked at ``itemkb.ai.extractor._get_client``; no network
calls are made.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from itemkb.ai.embeddings import generate_embedding, quantize
from itemkb.ai.extractor import extract, fallback_metadata, parse_response
from itemkb.config import EMBEDDING_DIMENSIONS, LLMConfig

LLM_PAYLOAD = {
    "keywords": [
        {"keyword": "graph", "weight": 0.9},
        {"keyword": "database", "weight": 0.8},
    ],
    "concepts": [{"concept": "databases", "confidence": 0.7}],
    "summary": "Notes about graph databases",
}


def _openrouter_client(content: str) -> AsyncMock:
    mock_response = MagicMock()
    mock_response.choices = [MagicMock(message=MagicMock(content=content))]
    mock_client = AsyncMock()
    mock_client.chat.completions.create = AsyncMock(return_value=mock_response)
    return mock_client


def _anthropic_client(content: str) -> AsyncMock:
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=content)]
    mock_client = AsyncMock()
    mock_client.messages.create = AsyncMock(return_value=mock_response)
    return mock_client


# ─────────────────────────────────────────────────────────────────────────────
# Frequency fallback
# ─────────────────────────────────────────────────────────────────────────────


class TestFallbackMetadata:
    def test_frequency_weights(self):
        words = " ".join(f"w{n:02d}" for n in range(1, 19))
        metadata = fallback_metadata(f"alpha alpha {words}")

        weights = {k.word: k.weight for k in metadata.keywords}
        assert len(metadata.keywords) == 10
        assert metadata.keywords[0].word == "alpha"
        assert weights["alpha"] == pytest.approx(1.0)
        assert weights["w01"] == pytest.approx(0.5)
        assert metadata.keywords[-1].word == "w09"
        assert metadata.concepts == []

    def test_short_words_ignored_and_lowercased(self):
        metadata = fallback_metadata("An ox is OK but Graph graph GRAPH wins")
        assert metadata.keywords[0].word == "graph"
        assert all(len(k.word) >= 3 for k in metadata.keywords)

    def test_weight_capped_at_one(self):
        metadata = fallback_metadata("graph " * 5)
        assert metadata.keywords[0].weight == 1.0

    def test_empty_text_gets_placeholder(self):
        metadata = fallback_metadata("")
        assert [(k.word, k.weight) for k in metadata.keywords] == [("content", 0.5)]
        assert metadata.summary == "No content available"

    def test_summary_truncated(self):
        text = "word " * 100
        assert fallback_metadata(text).summary == text[:200]

    def test_embedding_and_search_index(self):
        metadata = fallback_metadata("graph database graph")
        assert len(metadata.embedding) == EMBEDDING_DIMENSIONS
        assert metadata.embedding == quantize(generate_embedding(metadata.keywords))
        assert metadata.search_index == "graph database"


# ─────────────────────────────────────────────────────────────────────────────
# Response parsing
# ─────────────────────────────────────────────────────────────────────────────


class TestParseResponse:
    def test_bare_json(self):
        metadata = parse_response(json.dumps(LLM_PAYLOAD), "text")
        assert [(k.word, k.weight) for k in metadata.keywords] == [("graph", 0.9), ("database", 0.8)]
        assert [(c.name, c.confidence) for c in metadata.concepts] == [("databases", 0.7)]
        assert metadata.summary == "Notes about graph databases"
        assert metadata.search_index == "graph database"

    def test_fenced_json(self):
        response = f"Here you go:\n```json\n{json.dumps(LLM_PAYLOAD)}\n```\nDone."
        metadata = parse_response(response, "text")
        assert metadata is not None
        assert metadata.keywords[0].word == "graph"

    def test_fence_without_language(self):
        metadata = parse_response(f"```\n{json.dumps(LLM_PAYLOAD)}\n```", "text")
        assert metadata is not None

    def test_keywords_capped_at_fifteen(self):
        payload = {"keywords": [{"keyword": f"k{i}", "weight": 0.5} for i in range(20)]}
        metadata = parse_response(json.dumps(payload), "text")
        assert len(metadata.keywords) == 15

    def test_missing_summary_uses_text(self):
        payload = {"keywords": [{"keyword": "graph", "weight": 0.9}]}
        metadata = parse_response(json.dumps(payload), "the original text")
        assert metadata.summary == "the original text"
        assert metadata.concepts == []

    def test_malformed_entries_skipped(self):
        payload = {
            "keywords": [
                {"keyword": "ok", "weight": 0.5},
                {"weight": 0.3},
                "bare",
                {"keyword": "   "},
                {"keyword": "bad", "weight": "high"},
            ],
            "concepts": "not a list",
        }
        metadata = parse_response(json.dumps(payload), "text")
        assert [k.word for k in metadata.keywords] == ["ok"]
        assert metadata.concepts == []

    @pytest.mark.parametrize(
        "response",
        [
            "not json at all",
            json.dumps(["a", "list"]),
            json.dumps({"keywords": []}),
            json.dumps({"concepts": [{"concept": "x", "confidence": 1}]}),
            "",
        ],
    )
    def test_unusable_responses(self, response):
        assert parse_response(response, "text") is None


# ─────────────────────────────────────────────────────────────────────────────
# extract()
# ─────────────────────────────────────────────────────────────────────────────


class TestExtract:
    @pytest.mark.asyncio
    async def test_openrouter_success(self):
        mock_client = _openrouter_client(json.dumps(LLM_PAYLOAD))
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "openrouter")):
            result = await extract("Graph", "notes", "graph database", config=LLMConfig())

        assert not result.degraded
        assert result.reason is None
        assert [k.word for k in result.metadata.keywords] == ["graph", "database"]

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "anthropic/claude-3-5-haiku"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 1500
        assert "Graph notes graph database" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_anthropic_success(self):
        mock_client = _anthropic_client(f"```json\n{json.dumps(LLM_PAYLOAD)}\n```")
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "anthropic")):
            result = await extract("Graph", "", "", config=LLMConfig())

        assert not result.degraded
        assert result.metadata.summary == "Notes about graph databases"
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-haiku-20241022"
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_no_text(self):
        result = await extract("", "  ", "", config=LLMConfig())
        assert result.degraded
        assert result.reason == "no text"
        assert result.metadata.keywords[0].word == "content"

    @pytest.mark.asyncio
    async def test_no_provider_without_keys(self):
        result = await extract("Graph database", "", "graph database notes")
        assert result.degraded
        assert result.reason == "no provider"
        assert result.metadata.keywords[0].word in {"graph", "database"}

    @pytest.mark.asyncio
    async def test_disabled(self, monkeypatch):
        monkeypatch.setenv("ITEMKB_ENRICHMENT", "off")
        mock_client = _openrouter_client(json.dumps(LLM_PAYLOAD))
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "openrouter")):
            result = await extract("Graph", "", "")

        assert result.reason == "enrichment disabled"
        mock_client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_bad_configuration(self, monkeypatch):
        monkeypatch.setenv("ITEMKB_ENRICHMENT_TIMEOUT", "soon")
        result = await extract("Graph", "", "")
        assert result.degraded
        assert result.reason.startswith("configuration error")

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(side_effect=slow)
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "openrouter")):
            result = await extract("Graph", "", "graph", config=LLMConfig(timeout=0.05))

        assert result.degraded
        assert result.reason == "timeout"
        assert result.metadata.keywords[0].word == "graph"

    @pytest.mark.asyncio
    async def test_call_failure(self):
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(side_effect=RuntimeError("boom"))
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "openrouter")):
            result = await extract("Graph", "", "", config=LLMConfig())

        assert result.degraded
        assert result.reason == "call failed: boom"

    @pytest.mark.asyncio
    async def test_invalid_response(self):
        mock_client = _openrouter_client("I cannot help with that")
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "openrouter")):
            result = await extract("Graph", "", "", config=LLMConfig())

        assert result.degraded
        assert result.reason == "invalid response"

    @pytest.mark.asyncio
    async def test_empty_completion(self):
        mock_client = _openrouter_client(None)
        with patch("itemkb.ai.extractor._get_client", return_value=(mock_client, "openrouter")):
            result = await extract("Graph", "", "", config=LLMConfig())

        assert result.reason == "invalid response"
