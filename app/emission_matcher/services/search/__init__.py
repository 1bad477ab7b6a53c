"""Catalog lookup services.

Exports:
    CatalogEntry: One {code, name} row of the emission factor catalog.
    search_catalog: Fuzzy multi-term ranking over the catalog.
    rank_catalog: Same ranking, with per-entry scores.
"""

from .catalog_search import CatalogEntry, EntryScore, rank_catalog, score_entry, search_catalog, to_catalog

__all__ = [
    "CatalogEntry",
    "EntryScore",
    "rank_catalog",
    "score_entry",
    "search_catalog",
    "to_catalog",
]
