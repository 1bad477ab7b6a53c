from __future__ import annotations

import pytest

from emission_matcher.services.llm.batch_reconciler import (
    BatchOutcome,
    decorate_rows,
    merge_outcomes,
    reconcile_batch,
)
from emission_matcher.services.llm.batching import chunk_rows
from emission_matcher.services.llm.labels import Label


def _batches(n, size):
    return chunk_rows([{"i": i} for i in range(n)], size)


def test_failed_batch_filled_with_error_labels():
    batch = _batches(3, 3)[0]
    labels = reconcile_batch(batch, BatchOutcome.failure(1, "boom"))
    assert labels == [Label("ERROR", "Failed: boom")] * 3


def test_short_success_filled_with_unmatched():
    batch = _batches(3, 3)[0]
    labels = reconcile_batch(batch, BatchOutcome.success(1, [Label("A", "Alpha")]))
    assert labels == [Label("A", "Alpha"), Label("ERROR", "Failed to match"), Label("ERROR", "Failed to match")]


def test_merge_is_order_independent():
    batches = _batches(5, 2)
    outcomes = [
        BatchOutcome.success(3, [Label("C", "c")]),
        BatchOutcome.success(1, [Label("A", "a"), Label("A", "a")]),
        BatchOutcome.success(2, [Label("B", "b"), Label("B", "b")]),
    ]
    assert [l.code for l in merge_outcomes(batches, outcomes)] == ["A", "A", "B", "B", "C"]


def test_merge_missing_outcome_counts_as_failure():
    batches = _batches(4, 2)
    labels = merge_outcomes(batches, [BatchOutcome.success(1, [Label("A", "a")] * 2)])
    assert len(labels) == 4
    assert labels[2:] == [Label("ERROR", "Failed: No result for batch")] * 2


def test_decorate_rows_copies_and_labels():
    rows = [{"Vendor": "Acme"}]
    out = decorate_rows(rows, [Label("A", "Alpha")])
    assert out == [{"Vendor": "Acme", "EmissionFactorCode": "A", "EmissionFactorName": "Alpha"}]
    assert rows == [{"Vendor": "Acme"}]


def test_decorate_rows_length_mismatch():
    with pytest.raises(ValueError):
        decorate_rows([{"a": 1}, {"a": 2}], [Label("A", "Alpha")])
