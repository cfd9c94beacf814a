"""Enrichment and relation search: embeddings, extraction, vocabulary, similarity."""
