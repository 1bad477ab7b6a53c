from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

Row = Dict[str, Any]


@dataclass
class Batch:
    """Contiguous slice of input rows, numbered from 1."""

    number: int
    start: int
    rows: List[Row]

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def end(self) -> int:
        return self.start + len(self.rows)


def chunk_rows(rows: Sequence[Row], batch_size: int) -> List[Batch]:
    """Split rows into ceil(n / batch_size) ordered batches; the last may be short."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    batches: List[Batch] = []
    for i in range(0, len(rows), batch_size):
        batches.append(Batch(number=len(batches) + 1, start=i, rows=list(rows[i : i + batch_size])))
    return batches


def count_batches(total_rows: int, batch_size: int) -> int:
    return (total_rows + batch_size - 1) // batch_size


__all__ = ["Row", "Batch", "chunk_rows", "count_batches"]
