from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from emission_matcher.config.constants import CODE_FIELD, ERROR_CODE, NAME_FIELD, UNMATCHED_NAME
from emission_matcher.utils.logging import get_logger

from .batching import Batch, Row
from .labels import Label

logger = get_logger(__name__)


@dataclass
class BatchOutcome:
    """Result of one batch: labels on success, an error message otherwise."""

    batch_number: int
    labels: List[Label] = field(default_factory=list)
    error: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, batch_number: int, labels: List[Label], **kwargs: Any) -> "BatchOutcome":
        return cls(batch_number=batch_number, labels=list(labels), **kwargs)

    @classmethod
    def failure(cls, batch_number: int, message: str, **kwargs: Any) -> "BatchOutcome":
        return cls(batch_number=batch_number, error=message, **kwargs)


def failure_labels(count: int, message: str) -> List[Label]:
    return [Label.error(message)] * count


def reconcile_batch(batch: Batch, outcome: BatchOutcome) -> List[Label]:
    """Return exactly one label per row of ``batch``."""
    if not outcome.ok:
        return failure_labels(len(batch), outcome.error or "Unknown error")

    labels = outcome.labels[: len(batch)]
    if len(labels) < len(batch):
        logger.warning(
            "Batch %d: %d labels for %d rows; filling the rest",
            batch.number,
            len(labels),
            len(batch),
        )
        labels = labels + [Label(ERROR_CODE, UNMATCHED_NAME)] * (len(batch) - len(labels))
    return labels


def merge_outcomes(batches: Sequence[Batch], outcomes: Sequence[BatchOutcome]) -> List[Label]:
    """Assemble the full label sequence in batch order.

    Outcomes are looked up by batch number, so arrival order does not matter.
    A batch with no outcome at all is treated as failed.
    """
    by_number = {outcome.batch_number: outcome for outcome in outcomes}
    merged: List[Label] = []
    for batch in batches:
        outcome = by_number.get(batch.number)
        if outcome is None:
            outcome = BatchOutcome.failure(batch.number, "No result for batch")
        merged.extend(reconcile_batch(batch, outcome))
    return merged


def decorate_rows(rows: Sequence[Row], labels: Sequence[Label]) -> List[Row]:
    """Copy each row and attach its label columns."""
    if len(rows) != len(labels):
        raise ValueError(f"{len(rows)} rows but {len(labels)} labels")
    decorated: List[Row] = []
    for row, label in zip(rows, labels):
        out = dict(row)
        out[CODE_FIELD] = label.code
        out[NAME_FIELD] = label.name
        decorated.append(out)
    return decorated


__all__ = [
    "BatchOutcome",
    "failure_labels",
    "reconcile_batch",
    "merge_outcomes",
    "decorate_rows",
]
