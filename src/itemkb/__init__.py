"""itemkb: typed knowledge items with keyword/concept enrichment and relation search."""

__version__ = "0.1.0"
