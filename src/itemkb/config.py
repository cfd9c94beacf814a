"""Configuration management for itemkb.

This module contains all configurable constants for the item store and the
enrichment pipeline. Magic numbers are documented here rather than scattered
throughout the codebase.

Runtime settings come from environment variables first, then from the nearest
``.kbconfig`` (YAML) found by walking up from the working directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigurationError(Exception):
    """Raised when configuration is present but unusable."""

    pass


KBCONFIG_FILENAME = ".kbconfig"


def _discover_project_config(start_dir: Path | None = None, max_depth: int = 10) -> tuple[Path, dict[str, Any]] | None:
    """Walk up from start_dir looking for a .kbconfig file.

    Args:
        start_dir: Directory to start from (defaults to cwd)
        max_depth: Maximum directories to traverse up

    Returns:
        Tuple of (config_path, parsed_data) if found, None otherwise.
    """
    import yaml

    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(max_depth):
        config_file = current / KBCONFIG_FILENAME
        if config_file.is_file():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e
            except OSError:
                data = None
            if isinstance(data, dict):
                return (config_file, data)

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


def get_kbconfig() -> dict[str, Any]:
    """Return the parsed nearest .kbconfig, or an empty dict."""
    found = _discover_project_config()
    return found[1] if found else {}


def get_db_path() -> Path:
    """Get the SQLite database path.

    Discovery order:
    1. ITEMKB_DB_PATH environment variable (explicit override)
    2. ``db_path`` in the nearest .kbconfig (relative to that file)
    3. ~/.itemkb/items.db
    """
    env_path = os.environ.get("ITEMKB_DB_PATH")
    if env_path:
        return Path(env_path)

    found = _discover_project_config()
    if found:
        config_path, data = found
        db_path = data.get("db_path")
        if db_path:
            return (config_path.parent / str(db_path)).resolve()

    return Path.home() / ".itemkb" / DEFAULT_DB_FILENAME


# =============================================================================
# Database
# =============================================================================

DEFAULT_DB_FILENAME = "items.db"

# Built-in item types. Custom types are accepted if they match ITEM_TYPE_PATTERN.
ITEM_TYPES = ("issues", "plans", "docs", "knowledge", "sessions", "dailies")
ITEM_TYPE_PATTERN = r"^[a-z0-9_]+$"

STATUSES = (
    "Open",
    "Specification",
    "Waiting",
    "Ready",
    "In Progress",
    "Review",
    "Testing",
    "Pending",
    "Completed",
    "Closed",
    "Canceled",
    "Rejected",
)
DEFAULT_STATUS = "Open"

PRIORITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "MINIMAL")
DEFAULT_PRIORITY = "MEDIUM"

# Default/maximum page size for list and search
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

# Graph traversal depth bounds for manual relations
MAX_RELATION_DEPTH = 3


# =============================================================================
# Embeddings
# =============================================================================

# Dimensionality of the keyword-hash embedding. Stored as one byte per dimension.
EMBEDDING_DIMENSIONS = 128

# Only the first N keywords contribute to an embedding
EMBEDDING_KEYWORD_LIMIT = 10

# Each keyword is scattered across this many dimensions
EMBEDDING_SCATTER_DIMS = 8

# Stride between the scattered dimensions of one keyword
EMBEDDING_SCATTER_STRIDE = 16


# =============================================================================
# Extraction
# =============================================================================

# Maximum keywords the LLM is asked for
MAX_EXTRACTED_KEYWORDS = 20

# Maximum keywords kept per item (extraction output and storage)
MAX_STORED_KEYWORDS = 15

# Maximum concepts kept per item in storage
MAX_STORED_CONCEPTS = 15

# Frequency heuristic: top N words, minimum token length
FALLBACK_KEYWORD_LIMIT = 10
FALLBACK_MIN_WORD_LENGTH = 3

# Keyword used when text has no qualifying tokens
FALLBACK_PLACEHOLDER_KEYWORD = "content"
FALLBACK_PLACEHOLDER_WEIGHT = 0.5

# Summary truncation for the fallback path
SUMMARY_MAX_CHARS = 200
EMPTY_SUMMARY = "No content available"

# Hard bound on one enrichment call (seconds)
ENRICHMENT_TIMEOUT_SECONDS = 30.0

# Default model for enrichment (canonical alias, resolved per provider)
DEFAULT_ENRICHMENT_MODEL = "claude-3.5-haiku"
ENRICHMENT_MAX_TOKENS = 1500


# =============================================================================
# Similarity Search
# =============================================================================

# Default cosine threshold for find_similar
DEFAULT_SIMILARITY_THRESHOLD = 0.5

# Candidate pool (items with embeddings) scanned per query
SIMILAR_CANDIDATE_POOL = 100

# Maximum ids returned by find_similar
SIMILAR_RESULT_LIMIT = 10


# =============================================================================
# Relation Suggestions
# =============================================================================

# Signal 1: shared keywords. Source keywords used, match rows scanned,
# per-match multiplier and the minimum accumulated score.
SUGGEST_TOP_KEYWORDS = 5
SUGGEST_KEYWORD_MATCH_LIMIT = 20
SUGGEST_KEYWORD_FACTOR = 0.8
SUGGEST_KEYWORD_MIN_SCORE = 0.3

# Signal 2: shared concepts. Weighted higher than keywords.
SUGGEST_TOP_CONCEPTS = 3
SUGGEST_CONCEPT_MATCH_LIMIT = 15
SUGGEST_CONCEPT_FACTOR = 1.2
SUGGEST_CONCEPT_MIN_SCORE = 0.4

# Signal 3: embedding similarity, consulted only while suggestions are sparse.
# Scores decay by rank: 0.8, 0.7, 0.6, ...
SUGGEST_EMBEDDING_WHEN_FEWER_THAN = 5
SUGGEST_EMBEDDING_THRESHOLD = 0.4
SUGGEST_EMBEDDING_TOP = 8
SUGGEST_EMBEDDING_BASE_SCORE = 0.8
SUGGEST_EMBEDDING_DECAY = 0.1
SUGGEST_POOL_LIMIT = 8

# Final cut
SUGGEST_RESULT_LIMIT = 5
SUGGEST_MIN_FINAL_SCORE = 0.3


# =============================================================================
# Unified Relation Search
# =============================================================================

DEFAULT_MIN_KEYWORD_WEIGHT = 0.3
DEFAULT_MIN_CONFIDENCE = 0.5
DEFAULT_MIN_SIMILARITY = 0.5

RELATED_KEYWORD_SOURCE_LIMIT = 10
RELATED_CONCEPT_SOURCE_LIMIT = 8
RELATED_EMBEDDING_CANDIDATES = 50
RELATED_RESULT_LIMIT = 10
HYBRID_RESULT_LIMIT = 15

# Concept overlap is weighted highest by default
HYBRID_DEFAULT_WEIGHTS = {"keywords": 0.3, "concepts": 0.4, "embedding": 0.3}


# =============================================================================
# LLM Configuration
# =============================================================================


@dataclass
class LLMConfig:
    """Settings for the external text-enrichment call."""

    provider: str | None = None
    """'anthropic' or 'openrouter'; None means auto-detect from API keys."""

    model: str = DEFAULT_ENRICHMENT_MODEL
    """Canonical or provider-specific model name."""

    timeout: float = ENRICHMENT_TIMEOUT_SECONDS
    """Seconds before the call is abandoned in favor of the fallback."""

    enabled: bool = True
    """When False, extraction always uses the frequency heuristic."""


_FALSE_VALUES = ("0", "false", "no", "off")


def get_llm_config() -> LLMConfig:
    """Load LLM settings from .kbconfig ``llm:`` section plus env overrides.

    Environment variables:
        ITEMKB_LLM_PROVIDER, ITEMKB_LLM_MODEL, ITEMKB_ENRICHMENT_TIMEOUT,
        ITEMKB_ENRICHMENT (set to off/0/false to disable the LLM call).
    """
    section = get_kbconfig().get("llm") or {}
    if not isinstance(section, dict):
        raise ConfigurationError("'llm' in .kbconfig must be a mapping")

    config = LLMConfig(
        provider=section.get("provider"),
        model=section.get("model", DEFAULT_ENRICHMENT_MODEL),
        timeout=float(section.get("timeout", ENRICHMENT_TIMEOUT_SECONDS)),
        enabled=bool(section.get("enabled", True)),
    )

    if provider := os.environ.get("ITEMKB_LLM_PROVIDER"):
        config.provider = provider
    if model := os.environ.get("ITEMKB_LLM_MODEL"):
        config.model = model
    if timeout := os.environ.get("ITEMKB_ENRICHMENT_TIMEOUT"):
        try:
            config.timeout = float(timeout)
        except ValueError as e:
            raise ConfigurationError(f"ITEMKB_ENRICHMENT_TIMEOUT must be a number, got {timeout!r}") from e
    if enrichment := os.environ.get("ITEMKB_ENRICHMENT"):
        config.enabled = enrichment.strip().lower() not in _FALSE_VALUES

    return config
