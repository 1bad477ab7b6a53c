"""LLM matching services.

Exports:
	AzureClient: Thin wrapper around Azure OpenAI chat completion endpoint.
	PromptBuilder: Builds system/user prompts for a batch of rows.
	chunk_rows: Splits rows into numbered, order-preserving batches.
	normalize_response: Turns a model reply into exactly N labels.
	merge_outcomes: Reassembles per-batch outcomes into one label sequence.
	EmissionFactorMatcher: Sequential and parallel batch dispatcher.
"""

from .azure_client import AzureClient, Completion, CompletionStatus
from .batch_reconciler import BatchOutcome, decorate_rows, merge_outcomes, reconcile_batch
from .batching import Batch, chunk_rows
from .classification_orchestrator import (
	EmissionFactorMatcher,
	FailurePolicy,
	MatchRequest,
	MatchResult,
	ProgressEvent,
	match_emission_factors,
	resolve_policy,
)
from .labels import ExampleMatch, Label
from .prompt_builder import PromptBuilder
from .response_normalizer import normalize_response

__all__ = [
	"AzureClient",
	"Completion",
	"CompletionStatus",
	"BatchOutcome",
	"decorate_rows",
	"merge_outcomes",
	"reconcile_batch",
	"Batch",
	"chunk_rows",
	"EmissionFactorMatcher",
	"FailurePolicy",
	"MatchRequest",
	"MatchResult",
	"ProgressEvent",
	"match_emission_factors",
	"resolve_policy",
	"ExampleMatch",
	"Label",
	"PromptBuilder",
	"normalize_response",
]
