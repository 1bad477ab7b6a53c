from __future__ import annotations

import asyncio
from unittest.mock import Mock, patch

import httpx
import requests

from emission_matcher.services.llm.azure_client import (
    FILTERED_MESSAGE,
    REFUSED_MESSAGE,
    TRUNCATED_MESSAGE,
    AzureClient,
    CompletionStatus,
    interpret_completion,
)

POST = "emission_matcher.services.llm.azure_client.requests.post"


def _client(**kwargs) -> AzureClient:
    kwargs.setdefault("retry_delay", 0)
    return AzureClient("key", "gpt-deploy", "https://example.openai.azure.com/", "2024-06-01", **kwargs)


def _body(content='{"matches": []}', finish_reason="stop", refusal=None):
    message = {"role": "assistant", "content": content}
    if refusal is not None:
        message["refusal"] = refusal
    return {
        "choices": [{"message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
    }


def _response(status_code=200, body=None, text=""):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else _body()
    resp.text = text
    return resp


class TestInterpretCompletion:
    def test_ok(self):
        completion = interpret_completion(_body(content='{"matches": [1]}'))
        assert completion.ok
        assert completion.content == '{"matches": [1]}'
        assert completion.usage["total_tokens"] == 12

    def test_refusal_wins_over_finish_reason(self):
        completion = interpret_completion(_body(refusal="no", finish_reason="length"))
        assert completion.status is CompletionStatus.REFUSED
        assert completion.message == REFUSED_MESSAGE

    def test_length(self):
        completion = interpret_completion(_body(finish_reason="length"))
        assert completion.status is CompletionStatus.TRUNCATED
        assert completion.message == TRUNCATED_MESSAGE

    def test_content_filter(self):
        completion = interpret_completion(_body(finish_reason="content_filter"))
        assert completion.status is CompletionStatus.CONTENT_FILTERED
        assert completion.message == FILTERED_MESSAGE

    def test_missing_content_is_empty_string(self):
        completion = interpret_completion({"choices": [{"message": {}, "finish_reason": "stop"}]})
        assert completion.ok
        assert completion.content == ""

    def test_non_object_body_is_transport_error(self):
        completion = interpret_completion(["not", "an", "object"])
        assert completion.status is CompletionStatus.TRANSPORT_ERROR
        assert completion.message == "Failed to parse LLM response: expected an object, got list"
        assert not completion.retryable


class TestRequest:
    def test_endpoint_and_payload(self):
        client = _client(reasoning_effort="low")
        assert client.full_endpoint == (
            "https://example.openai.azure.com/openai/deployments/gpt-deploy/chat/completions"
            "?api-version=2024-06-01"
        )
        payload = client.build_payload("sys", "user")
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        assert payload["messages"][1] == {"role": "user", "content": "user"}
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["reasoning_effort"] == "low"

    def test_from_env_requires_all_settings(self, monkeypatch):
        for key in ("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_DEPLOYMENT", "AZURE_OPENAI_ENDPOINT"):
            monkeypatch.setenv(key, "x")
        monkeypatch.delenv("AZURE_OPENAI_API_VERSION", raising=False)
        assert AzureClient.from_env() is None
        monkeypatch.setenv("AZURE_OPENAI_API_VERSION", "2024-06-01")
        assert isinstance(AzureClient.from_env(), AzureClient)

    def test_from_env_reads_transport_settings_at_call_time(self, monkeypatch):
        for key in ("API_KEY", "DEPLOYMENT", "ENDPOINT", "API_VERSION"):
            monkeypatch.setenv(f"AZURE_OPENAI_{key}", "x")
        monkeypatch.setenv("AZURE_OPENAI_MAX_RETRIES", "0")
        monkeypatch.setenv("AZURE_OPENAI_TIMEOUT", "15")
        monkeypatch.setenv("AZURE_OPENAI_REASONING_EFFORT", "high")
        client = AzureClient.from_env()
        assert client.max_retries == 0
        assert client.timeout == 15
        assert client.build_payload("s", "p")["reasoning_effort"] == "high"


class TestCompleteBlocking:
    def test_success(self):
        with patch(POST, return_value=_response()) as post:
            completion = _client().complete("sys", "prompt", batch_number=1, total_batches=1)
        assert completion.ok
        assert post.call_count == 1
        assert post.call_args.kwargs["headers"]["api-key"] == "key"

    def test_retries_server_errors_then_succeeds(self):
        responses = [_response(503, text="busy"), _response(200)]
        with patch(POST, side_effect=responses) as post:
            completion = _client(max_retries=2).complete("sys", "prompt")
        assert completion.ok
        assert post.call_count == 2

    def test_gives_up_after_max_retries(self):
        with patch(POST, side_effect=requests.ConnectionError("down")) as post:
            completion = _client(max_retries=2).complete("sys", "prompt")
        assert completion.status is CompletionStatus.TRANSPORT_ERROR
        assert "down" in completion.message
        assert post.call_count == 3

    def test_client_error_not_retried(self):
        with patch(POST, return_value=_response(400, text="bad request")) as post:
            completion = _client(max_retries=2).complete("sys", "prompt")
        assert completion.status is CompletionStatus.TRANSPORT_ERROR
        assert completion.message.startswith("LLM error [400]")
        assert post.call_count == 1

    def test_refusal_not_retried(self):
        with patch(POST, return_value=_response(body=_body(refusal="I can't"))) as post:
            completion = _client(max_retries=2).complete("sys", "prompt")
        assert completion.message == REFUSED_MESSAGE
        assert post.call_count == 1

    def test_list_body_becomes_failed_completion(self):
        with patch(POST, return_value=_response(body=[{"choices": []}])):
            completion = _client().complete("sys", "prompt")
        assert completion.status is CompletionStatus.TRANSPORT_ERROR
        assert completion.message.startswith("Failed to parse LLM response")


class TestCompleteAsync:
    def _run(self, client, handler):
        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                return await client.complete_async(http, "sys", "prompt", batch_number=2, total_batches=3)

        return asyncio.run(go())

    def test_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_body(content='{"matches": [{"code": "A"}]}'))

        completion = self._run(_client(), handler)
        assert completion.ok
        assert completion.content == '{"matches": [{"code": "A"}]}'
        assert seen[0].headers["api-key"] == "key"
        assert "/openai/deployments/gpt-deploy/chat/completions" in str(seen[0].url)

    def test_retries_rate_limit(self):
        statuses = iter([429, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 200:
                return httpx.Response(200, json=_body())
            return httpx.Response(status, text="slow down")

        completion = self._run(_client(max_retries=1), handler)
        assert completion.ok

    def test_content_filter(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_body(finish_reason="content_filter"))

        completion = self._run(_client(), handler)
        assert completion.message == FILTERED_MESSAGE
