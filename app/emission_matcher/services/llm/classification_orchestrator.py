from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from emission_matcher.config.constants import BATCH_SIZE, MAX_CONCURRENT_BATCHES
from emission_matcher.config.exceptions import PipelineError, ResponseFormatError
from emission_matcher.utils.logging import get_logger

from .azure_client import AzureClient, Completion
from .batch_reconciler import BatchOutcome, merge_outcomes
from .batching import Batch, Row, chunk_rows
from .labels import ExampleMatch, Label
from .prompt_builder import PromptBuilder
from .response_normalizer import normalize_response

logger = get_logger(__name__)


class FailurePolicy(str, Enum):
    """What a failed batch does to the job as a whole.

    DEGRADE keeps the job successful and fills the batch with ERROR labels.
    STRICT reports the whole job as failed (labels are still returned).
    """

    DEGRADE = "degrade"
    STRICT = "strict"


@dataclass
class MatchRequest:
    headers: List[str]
    header_descriptions: Dict[str, str]
    rows: List[Row]
    examples: Optional[List[ExampleMatch]] = None


@dataclass
class MatchResult:
    """Envelope returned to the caller; ``message`` is shown to the user as-is."""

    is_success: bool
    message: str
    labels: List[Label] = field(default_factory=list)
    failed_batches: List[BatchOutcome] = field(default_factory=list)
    total_batches: int = 0
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def had_errors(self) -> bool:
        return bool(self.failed_batches)


@dataclass
class ProgressEvent:
    current_batch: int
    total_batches: int
    processed_rows: int
    total_rows: int
    batch_number: int
    ok: bool


ProgressCallback = Callable[[ProgressEvent], None]


def _sum_usage(outcomes: Sequence[BatchOutcome]) -> Dict[str, int]:
    totals: Dict[str, int] = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    for outcome in outcomes:
        for key in totals:
            totals[key] += int(outcome.usage.get(key, 0) or 0)
    return totals


class EmissionFactorMatcher:
    """Runs batches through prompt building, the LLM call and normalization.

    Batches can be dispatched one at a time (``run_sequential``) or
    concurrently (``run_parallel``). Either way the returned labels line up
    1:1 with the input rows.
    """

    def __init__(
        self,
        client: AzureClient,
        builder: Optional[PromptBuilder] = None,
        *,
        batch_size: int = BATCH_SIZE,
        max_concurrency: int = MAX_CONCURRENT_BATCHES,
        on_progress: Optional[ProgressCallback] = None,
    ):
        if batch_size < 1:
            raise PipelineError(f"Batch size must be at least 1 (got {batch_size})")
        if max_concurrency < 1:
            raise PipelineError(f"Max concurrency must be at least 1 (got {max_concurrency})")
        self.client = client
        self.builder = builder or PromptBuilder()
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.on_progress = on_progress

    # -------------------- Per-batch steps -------------------- #

    def _prompt_for(self, request: MatchRequest, batch: Batch) -> str:
        return self.builder.build_matching_prompt(
            request.headers, request.header_descriptions, batch.rows, request.examples
        )

    def _outcome_from(self, batch: Batch, completion: Completion, elapsed: float) -> BatchOutcome:
        if not completion.ok:
            return BatchOutcome.failure(
                batch.number, completion.message, usage=completion.usage, elapsed=elapsed
            )
        try:
            labels = normalize_response(completion.content, len(batch))
        except ResponseFormatError as e:
            logger.warning("Batch %d: %s (%s)", batch.number, e, e.kind)
            return BatchOutcome.failure(batch.number, str(e), usage=completion.usage, elapsed=elapsed)
        return BatchOutcome.success(batch.number, labels, usage=completion.usage, elapsed=elapsed)

    def classify_batch(self, request: MatchRequest, batch: Batch, total_batches: int) -> BatchOutcome:
        """Classify one batch, converting any failure into a failed outcome."""
        started = time.time()
        try:
            prompt = self._prompt_for(request, batch)
            logger.debug("Batch %d: prompt length=%d chars", batch.number, len(prompt))
            completion = self.client.complete(
                self.builder.system_message,
                prompt,
                batch_number=batch.number,
                total_batches=total_batches,
            )
            return self._outcome_from(batch, completion, time.time() - started)
        except Exception as e:
            logger.exception("Batch %d: unexpected error: %s", batch.number, e)
            return BatchOutcome.failure(batch.number, str(e) or type(e).__name__, elapsed=time.time() - started)

    async def classify_batch_async(
        self,
        http_client: httpx.AsyncClient,
        request: MatchRequest,
        batch: Batch,
        total_batches: int,
    ) -> BatchOutcome:
        started = time.time()
        try:
            prompt = self._prompt_for(request, batch)
            logger.debug("Batch %d: prompt length=%d chars", batch.number, len(prompt))
            completion = await self.client.complete_async(
                http_client,
                self.builder.system_message,
                prompt,
                batch_number=batch.number,
                total_batches=total_batches,
            )
            return self._outcome_from(batch, completion, time.time() - started)
        except Exception as e:
            logger.exception("Batch %d: unexpected error: %s", batch.number, e)
            return BatchOutcome.failure(batch.number, str(e) or type(e).__name__, elapsed=time.time() - started)

    # -------------------- Progress & results -------------------- #

    def _emit(self, event: ProgressEvent) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception as e:
            logger.warning("Progress callback raised: %s", e)

    def _build_result(
        self,
        batches: Sequence[Batch],
        outcomes: Sequence[BatchOutcome],
        policy: FailurePolicy,
    ) -> MatchResult:
        labels = merge_outcomes(batches, outcomes)
        failed = sorted((o for o in outcomes if not o.ok), key=lambda o: o.batch_number)
        usage = _sum_usage(outcomes)

        if not failed:
            message = f"Successfully processed {len(batches)} batches with {len(labels)} matches"
            return MatchResult(True, message, labels, [], len(batches), usage)

        if len(failed) == len(batches):
            # Nothing got through; report the distinct reasons once for the job
            reasons = "; ".join(dict.fromkeys(o.error or "" for o in failed))
            message = f"All {len(batches)} batch(es) failed: {reasons}"
            return MatchResult(False, message, labels, failed, len(batches), usage)

        if policy is FailurePolicy.STRICT:
            reasons = "; ".join(o.error or "" for o in failed)
            message = f"Failed to process {len(failed)} batch(es): {reasons}"
            return MatchResult(False, message, labels, failed, len(batches), usage)

        message = (
            f"Processed {len(batches)} batches; {len(failed)} failed. "
            "The results include placeholders for failed matches."
        )
        return MatchResult(True, message, labels, failed, len(batches), usage)

    # -------------------- Dispatch modes -------------------- #

    def run_sequential(
        self,
        request: MatchRequest,
        policy: FailurePolicy = FailurePolicy.DEGRADE,
    ) -> MatchResult:
        """Classify batches one after another, in order."""
        batches = chunk_rows(request.rows, self.batch_size)
        total_rows = len(request.rows)
        logger.info(
            "Sequential matching: %d rows, batch_size=%d, total_batches=%d, policy=%s",
            total_rows,
            self.batch_size,
            len(batches),
            policy.value,
        )

        outcomes: List[BatchOutcome] = []
        processed = 0
        for batch in batches:
            outcome = self.classify_batch(request, batch, len(batches))
            outcomes.append(outcome)
            processed += len(batch)
            if not outcome.ok:
                logger.warning("Batch %d/%d failed: %s", batch.number, len(batches), outcome.error)
            self._emit(
                ProgressEvent(
                    current_batch=batch.number,
                    total_batches=len(batches),
                    processed_rows=processed,
                    total_rows=total_rows,
                    batch_number=batch.number,
                    ok=outcome.ok,
                )
            )

        result = self._build_result(batches, outcomes, policy)
        logger.info("Sequential matching complete: %s", result.message)
        return result

    async def run_parallel(
        self,
        request: MatchRequest,
        policy: FailurePolicy = FailurePolicy.STRICT,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> MatchResult:
        """Classify all batches concurrently, at most ``max_concurrency`` in flight.

        Every batch is awaited even if others fail; labels are reassembled by
        batch number rather than completion order.
        """
        batches = chunk_rows(request.rows, self.batch_size)
        total_rows = len(request.rows)
        logger.info(
            "Parallel matching: %d rows, %d batches, max_concurrency=%d, policy=%s",
            total_rows,
            len(batches),
            self.max_concurrency,
            policy.value,
        )
        if not batches:
            return self._build_result(batches, [], policy)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        completed = 0
        processed = 0

        async def run_one(session: httpx.AsyncClient, batch: Batch) -> BatchOutcome:
            nonlocal completed, processed
            async with semaphore:
                outcome = await self.classify_batch_async(session, request, batch, len(batches))
            completed += 1
            processed += len(batch)
            if not outcome.ok:
                logger.warning("Batch %d/%d failed: %s", batch.number, len(batches), outcome.error)
            self._emit(
                ProgressEvent(
                    current_batch=completed,
                    total_batches=len(batches),
                    processed_rows=processed,
                    total_rows=total_rows,
                    batch_number=batch.number,
                    ok=outcome.ok,
                )
            )
            return outcome

        if http_client is not None:
            outcomes = await asyncio.gather(*(run_one(http_client, b) for b in batches))
        else:
            async with self.client.open_async_session(self.max_concurrency) as session:
                outcomes = await asyncio.gather(*(run_one(session, b) for b in batches))

        result = self._build_result(batches, list(outcomes), policy)
        logger.info("Parallel matching complete: %s", result.message)
        return result

    def run_parallel_sync(
        self,
        request: MatchRequest,
        policy: FailurePolicy = FailurePolicy.STRICT,
    ) -> MatchResult:
        return asyncio.run(self.run_parallel(request, policy))


def resolve_policy(mode: str, override: Optional[str] = None) -> FailurePolicy:
    """Failure policy for a dispatch mode; parallel is strict unless overridden."""
    if override:
        try:
            return FailurePolicy(override.lower())
        except ValueError as e:
            raise PipelineError(
                f"Unknown failure policy '{override}' (expected 'degrade' or 'strict')"
            ) from e
    return FailurePolicy.STRICT if mode == "parallel" else FailurePolicy.DEGRADE


def match_emission_factors(
    matcher: EmissionFactorMatcher,
    request: MatchRequest,
    mode: str = "sequential",
    policy: Optional[FailurePolicy] = None,
) -> MatchResult:
    """Run a request in the given mode ('sequential' or 'parallel')."""
    resolved = policy or resolve_policy(mode)
    if mode == "sequential":
        return matcher.run_sequential(request, resolved)
    if mode == "parallel":
        return matcher.run_parallel_sync(request, resolved)
    raise PipelineError(f"Unknown match mode '{mode}' (expected 'sequential' or 'parallel')")


__all__ = [
    "FailurePolicy",
    "MatchRequest",
    "MatchResult",
    "ProgressEvent",
    "EmissionFactorMatcher",
    "resolve_policy",
    "match_emission_factors",
]
