"""Emission factor matching services.

Exports:
    AzureClient: Thin wrapper around Azure OpenAI chat completion endpoint.
    PromptBuilder: Builds matching prompts for batches.
    EmissionFactorMatcher: Batch dispatcher (sequential or parallel).
    MatchRequest / MatchResult: Pipeline input and result envelope.
    CatalogEntry / search_catalog: Fuzzy catalog lookup.
"""

from .llm import (
    AzureClient,
    EmissionFactorMatcher,
    ExampleMatch,
    FailurePolicy,
    Label,
    MatchRequest,
    MatchResult,
    ProgressEvent,
    PromptBuilder,
    match_emission_factors,
    resolve_policy,
)
from .search import CatalogEntry, rank_catalog, search_catalog, to_catalog

__all__ = [
    "AzureClient",
    "EmissionFactorMatcher",
    "ExampleMatch",
    "FailurePolicy",
    "Label",
    "MatchRequest",
    "MatchResult",
    "ProgressEvent",
    "PromptBuilder",
    "match_emission_factors",
    "resolve_policy",
    "CatalogEntry",
    "rank_catalog",
    "search_catalog",
    "to_catalog",
]
