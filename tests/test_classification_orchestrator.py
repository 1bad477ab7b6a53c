from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClient, ok_completion
from emission_matcher.config.exceptions import PipelineError
from emission_matcher.services.llm.azure_client import REFUSED_MESSAGE, Completion, CompletionStatus
from emission_matcher.services.llm.classification_orchestrator import (
    EmissionFactorMatcher,
    FailurePolicy,
    MatchRequest,
    match_emission_factors,
    resolve_policy,
)
from emission_matcher.services.llm.labels import Label

REFUSAL = Completion(CompletionStatus.REFUSED, detail="no")


def _matcher(client, **kwargs):
    kwargs.setdefault("batch_size", 5)
    return EmissionFactorMatcher(client, **kwargs)


class TestSequential:
    def test_all_batches_succeed(self, request_10):
        result = _matcher(FakeClient()).run_sequential(request_10)
        assert result.is_success
        assert not result.had_errors
        assert result.message == "Successfully processed 2 batches with 10 matches"
        assert [l.code for l in result.labels[:2]] == ["B1-0", "B1-1"]
        assert result.labels[5].code == "B2-0"
        assert result.usage["total_tokens"] == 40

    def test_failed_batch_degrades(self, request_10):
        result = _matcher(FakeClient({2: REFUSAL})).run_sequential(request_10)
        assert result.is_success
        assert result.had_errors
        assert len(result.labels) == 10
        assert result.labels[4].code == "B1-4"
        assert result.labels[5:] == [Label("ERROR", f"Failed: {REFUSED_MESSAGE}")] * 5
        assert [o.batch_number for o in result.failed_batches] == [2]

    def test_failed_batch_strict(self, request_10):
        result = _matcher(FakeClient({2: REFUSAL})).run_sequential(request_10, FailurePolicy.STRICT)
        assert not result.is_success
        assert result.message == f"Failed to process 1 batch(es): {REFUSED_MESSAGE}"
        assert len(result.labels) == 10

    def test_client_exception_becomes_failed_batch(self, request_10):
        result = _matcher(FakeClient({1: RuntimeError("socket closed")})).run_sequential(request_10)
        assert result.labels[0] == Label("ERROR", "Failed: socket closed")
        assert result.labels[5].code == "B2-0"

    def test_unparseable_reply_fails_only_that_batch(self, request_10):
        client = FakeClient({1: ok_completion("I think row 1 is corn")})
        result = _matcher(client).run_sequential(request_10)
        assert result.labels[0] == Label("ERROR", "Failed: Failed to parse the API response")
        assert result.labels[9].code == "B2-4"

    def test_all_batches_fail(self, request_10):
        result = _matcher(FakeClient({1: REFUSAL, 2: REFUSAL})).run_sequential(request_10)
        assert not result.is_success
        assert result.message == f"All 2 batch(es) failed: {REFUSED_MESSAGE}"
        assert all(l.code == "ERROR" for l in result.labels)

    def test_progress_events(self, request_10):
        events = []
        _matcher(FakeClient({2: REFUSAL}), on_progress=events.append).run_sequential(request_10)
        assert [(e.current_batch, e.processed_rows, e.ok) for e in events] == [(1, 5, True), (2, 10, False)]
        assert all(e.total_batches == 2 and e.total_rows == 10 for e in events)

    def test_progress_callback_errors_are_ignored(self, request_10):
        def explode(event):
            raise RuntimeError("ui gone")

        result = _matcher(FakeClient(), on_progress=explode).run_sequential(request_10)
        assert result.is_success

    def test_short_last_batch(self, headers, descriptions, ten_rows):
        request = MatchRequest(headers, descriptions, ten_rows[:7])
        client = FakeClient()
        result = _matcher(client).run_sequential(request)
        assert client.calls == [1, 2]
        assert len(result.labels) == 7

    def test_empty_input(self, headers, descriptions):
        client = FakeClient()
        result = _matcher(client).run_sequential(MatchRequest(headers, descriptions, []))
        assert result.is_success
        assert result.labels == []
        assert client.calls == []


class TestParallel:
    def test_failed_batch_strict_by_default(self, request_10):
        result = asyncio.run(_matcher(FakeClient({2: REFUSAL})).run_parallel(request_10))
        assert not result.is_success
        assert result.message == f"Failed to process 1 batch(es): {REFUSED_MESSAGE}"
        assert len(result.labels) == 10
        assert result.labels[0].code == "B1-0"
        assert result.labels[5].code == "ERROR"

    def test_failed_batch_degrade(self, request_10):
        matcher = _matcher(FakeClient({2: REFUSAL}))
        result = asyncio.run(matcher.run_parallel(request_10, FailurePolicy.DEGRADE))
        assert result.is_success
        assert result.had_errors

    def test_out_of_order_completion_keeps_row_order(self, request_10):
        client = FakeClient(delays={1: 0.05, 2: 0})
        events = []
        result = asyncio.run(_matcher(client, on_progress=events.append).run_parallel(request_10))
        assert [e.batch_number for e in events] == [2, 1]
        assert [e.current_batch for e in events] == [1, 2]
        assert [l.code for l in result.labels] == [f"B1-{i}" for i in range(5)] + [f"B2-{i}" for i in range(5)]

    def test_matches_sequential_labels(self, request_10):
        sequential = _matcher(FakeClient()).run_sequential(request_10)
        parallel = asyncio.run(_matcher(FakeClient()).run_parallel(request_10))
        assert parallel.labels == sequential.labels

    def test_opens_one_session(self, request_10):
        client = FakeClient()
        asyncio.run(_matcher(client, batch_size=2).run_parallel(request_10))
        assert client.sessions == 1
        assert sorted(client.calls) == [1, 2, 3, 4, 5]

    def test_concurrency_cap(self, request_10):
        class CountingClient(FakeClient):
            in_flight = 0
            peak = 0

            async def complete_async(self, http_client, system_message, prompt, **kwargs):
                CountingClient.in_flight += 1
                CountingClient.peak = max(CountingClient.peak, CountingClient.in_flight)
                try:
                    await asyncio.sleep(0.01)
                    return self._reply(prompt, kwargs["batch_number"])
                finally:
                    CountingClient.in_flight -= 1

        result = asyncio.run(_matcher(CountingClient(), batch_size=1, max_concurrency=3).run_parallel(request_10))
        assert result.is_success
        assert CountingClient.peak <= 3

    def test_rerun_is_idempotent(self, request_10):
        matcher = _matcher(FakeClient({2: REFUSAL}))
        first = asyncio.run(matcher.run_parallel(request_10))
        second = asyncio.run(matcher.run_parallel(request_10))
        assert first.labels == second.labels
        assert first.message == second.message


class TestDispatch:
    def test_invalid_settings(self):
        with pytest.raises(PipelineError):
            EmissionFactorMatcher(FakeClient(), batch_size=0)
        with pytest.raises(PipelineError):
            EmissionFactorMatcher(FakeClient(), max_concurrency=0)

    def test_resolve_policy(self):
        assert resolve_policy("sequential") is FailurePolicy.DEGRADE
        assert resolve_policy("parallel") is FailurePolicy.STRICT
        assert resolve_policy("parallel", "DEGRADE") is FailurePolicy.DEGRADE
        with pytest.raises(PipelineError):
            resolve_policy("sequential", "lenient")

    def test_match_emission_factors_modes(self, request_10):
        seq = match_emission_factors(_matcher(FakeClient({2: REFUSAL})), request_10, mode="sequential")
        par = match_emission_factors(_matcher(FakeClient({2: REFUSAL})), request_10, mode="parallel")
        assert seq.is_success and not par.is_success
        assert seq.labels == par.labels

    def test_unknown_mode(self, request_10):
        with pytest.raises(PipelineError):
            match_emission_factors(_matcher(FakeClient()), request_10, mode="turbo")
