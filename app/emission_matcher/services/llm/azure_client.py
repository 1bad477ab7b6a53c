from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import requests

from emission_matcher.config.constants import (
    AZURE_OPENAI_MAX_RETRIES,
    AZURE_OPENAI_REASONING_EFFORT,
    AZURE_OPENAI_RETRY_DELAY,
    AZURE_OPENAI_TIMEOUT,
    RETRYABLE_STATUS_CODES,
    AzureSettings,
)
from emission_matcher.utils.logging import get_logger

logger = get_logger(__name__)

REFUSED_MESSAGE = (
    "The model refused to process this request. "
    "This might be due to content policy restrictions."
)
TRUNCATED_MESSAGE = (
    "The response was truncated due to length constraints. "
    "Try processing fewer rows at once."
)
FILTERED_MESSAGE = (
    "The response was filtered due to content policy. "
    "Try adjusting your input data."
)


class CompletionStatus(str, Enum):
    OK = "ok"
    REFUSED = "refused"
    TRUNCATED = "truncated"
    CONTENT_FILTERED = "content_filtered"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class Completion:
    """Outcome of one chat completion request."""

    status: CompletionStatus
    content: str = ""
    usage: Dict[str, Any] = field(default_factory=dict)
    detail: str = ""
    finish_reason: Optional[str] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.status is CompletionStatus.OK

    @property
    def message(self) -> str:
        """User-facing reason; empty for successful completions."""
        if self.status is CompletionStatus.REFUSED:
            return REFUSED_MESSAGE
        if self.status is CompletionStatus.TRUNCATED:
            return TRUNCATED_MESSAGE
        if self.status is CompletionStatus.CONTENT_FILTERED:
            return FILTERED_MESSAGE
        if self.status is CompletionStatus.TRANSPORT_ERROR:
            return self.detail or "LLM request failed"
        return ""


def interpret_completion(data: Dict[str, Any]) -> Completion:
    """Map a chat-completions response body onto a Completion.

    Refusal is checked first, then finish_reason (length, content_filter).
    """
    if not isinstance(data, dict):
        return Completion(
            CompletionStatus.TRANSPORT_ERROR,
            detail=f"Failed to parse LLM response: expected an object, got {type(data).__name__}",
        )
    choices = data.get("choices") or [{}]
    choice = choices[0] or {}
    message = choice.get("message") or {}
    finish_reason = choice.get("finish_reason")
    usage = data.get("usage") or {}

    if message.get("refusal"):
        return Completion(
            CompletionStatus.REFUSED,
            usage=usage,
            detail=str(message["refusal"]),
            finish_reason=finish_reason,
        )
    if finish_reason == "length":
        return Completion(CompletionStatus.TRUNCATED, usage=usage, finish_reason=finish_reason)
    if finish_reason == "content_filter":
        return Completion(CompletionStatus.CONTENT_FILTERED, usage=usage, finish_reason=finish_reason)
    return Completion(
        CompletionStatus.OK,
        content=message.get("content") or "",
        usage=usage,
        finish_reason=finish_reason,
    )


def _status_error(status_code: int, body: str) -> Completion:
    return Completion(
        CompletionStatus.TRANSPORT_ERROR,
        detail=f"LLM error [{status_code}]: {body[:500]}",
        retryable=status_code in RETRYABLE_STATUS_CODES,
    )


class AzureClient:
    """Azure OpenAI client for emission factor matching requests."""

    def __init__(
        self,
        api_key: str,
        deployment: str,
        endpoint: str,
        api_version: str,
        *,
        timeout: int = AZURE_OPENAI_TIMEOUT,
        max_retries: Optional[int] = AZURE_OPENAI_MAX_RETRIES,
        retry_delay: Optional[float] = AZURE_OPENAI_RETRY_DELAY,
        reasoning_effort: Optional[str] = AZURE_OPENAI_REASONING_EFFORT,
    ):
        self.api_key = api_key
        self.deployment = deployment
        self.endpoint = endpoint.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max(0, max_retries or 0)
        self.retry_delay = retry_delay or 0.0
        self.reasoning_effort = reasoning_effort
        self.full_endpoint = (
            f"{self.endpoint}/openai/deployments/{deployment}/chat/completions"
            f"?api-version={api_version}"
        )

    @classmethod
    def from_env(cls) -> Optional["AzureClient"]:
        api_key = os.getenv("AZURE_OPENAI_API_KEY")
        deployment = os.getenv("AZURE_OPENAI_DEPLOYMENT")
        endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        api_version = os.getenv("AZURE_OPENAI_API_VERSION")
        if not all([api_key, deployment, endpoint, api_version]):
            return None
        settings = AzureSettings.from_env()
        return cls(
            api_key, deployment, endpoint, api_version,  # type: ignore
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            reasoning_effort=settings.reasoning_effort,
        )

    # ------------------------ Request building ------------------------

    @property
    def headers(self) -> Dict[str, str]:
        return {"api-key": self.api_key, "Content-Type": "application/json"}

    def build_payload(self, system_message: str, prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "messages": [
                {"role": "system", "content": system_message},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        if self.reasoning_effort:
            payload["reasoning_effort"] = self.reasoning_effort
        return payload

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)

    def _log_outcome(
        self,
        completion: Completion,
        batch_number: int,
        total_batches: int,
        attempt: int,
        started: float,
    ) -> None:
        elapsed_ms = (time.time() - started) * 1000
        if completion.ok:
            usage = completion.usage
            logger.info(
                "Batch %d/%d: response in %.0fms (attempt %d), tokens=%d (prompt=%d, completion=%d)",
                batch_number,
                total_batches,
                elapsed_ms,
                attempt + 1,
                usage.get("total_tokens", 0),
                usage.get("prompt_tokens", 0),
                usage.get("completion_tokens", 0),
            )
        else:
            logger.error(
                "Batch %d/%d: %s after %.0fms (attempt %d): %s",
                batch_number,
                total_batches,
                completion.status.value,
                elapsed_ms,
                attempt + 1,
                completion.detail or completion.message,
            )

    # ------------------------ Blocking transport ------------------------

    def _post(self, payload: Dict[str, Any]) -> Completion:
        try:
            response = requests.post(
                self.full_endpoint, headers=self.headers, json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            return Completion(
                CompletionStatus.TRANSPORT_ERROR, detail=f"LLM request failed: {e}", retryable=True
            )

        logger.debug("Response status: %d", response.status_code)
        if response.status_code != 200:
            return _status_error(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            return Completion(
                CompletionStatus.TRANSPORT_ERROR, detail=f"Failed to parse LLM response: {e}"
            )
        return interpret_completion(data)

    def complete(
        self,
        system_message: str,
        prompt: str,
        *,
        batch_number: int = 1,
        total_batches: int = 1,
    ) -> Completion:
        """Send one batch prompt and wait for the reply.

        Transport failures are retried up to ``max_retries`` times; refusal,
        truncation and filtering are returned as they are.
        """
        payload = self.build_payload(system_message, prompt)
        logger.info(
            "Batch %d/%d: sending request (prompt length: %d chars)",
            batch_number,
            total_batches,
            len(system_message) + len(prompt),
        )
        started = time.time()
        attempt = 0
        while True:
            completion = self._post(payload)
            self._log_outcome(completion, batch_number, total_batches, attempt, started)
            if not (completion.retryable and attempt < self.max_retries):
                return completion
            delay = self._backoff(attempt)
            logger.warning("Batch %d/%d: retrying in %.1fs", batch_number, total_batches, delay)
            time.sleep(delay)
            attempt += 1

    # ------------------------ Async transport ------------------------

    def open_async_session(self, max_connections: int) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
        )

    async def _post_async(self, http_client: httpx.AsyncClient, payload: Dict[str, Any]) -> Completion:
        try:
            response = await http_client.post(self.full_endpoint, headers=self.headers, json=payload)
        except httpx.HTTPError as e:
            return Completion(
                CompletionStatus.TRANSPORT_ERROR, detail=f"LLM request failed: {e}", retryable=True
            )

        logger.debug("Response status: %d", response.status_code)
        if response.status_code != 200:
            return _status_error(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            return Completion(
                CompletionStatus.TRANSPORT_ERROR, detail=f"Failed to parse LLM response: {e}"
            )
        return interpret_completion(data)

    async def complete_async(
        self,
        http_client: httpx.AsyncClient,
        system_message: str,
        prompt: str,
        *,
        batch_number: int = 1,
        total_batches: int = 1,
    ) -> Completion:
        """Non-blocking variant of :meth:`complete` sharing one connection pool."""
        payload = self.build_payload(system_message, prompt)
        logger.info(
            "Batch %d/%d: sending request (prompt length: %d chars)",
            batch_number,
            total_batches,
            len(system_message) + len(prompt),
        )
        started = time.time()
        attempt = 0
        while True:
            completion = await self._post_async(http_client, payload)
            self._log_outcome(completion, batch_number, total_batches, attempt, started)
            if not (completion.retryable and attempt < self.max_retries):
                return completion
            delay = self._backoff(attempt)
            logger.warning("Batch %d/%d: retrying in %.1fs", batch_number, total_batches, delay)
            await asyncio.sleep(delay)
            attempt += 1


__all__ = [
    "AzureClient",
    "Completion",
    "CompletionStatus",
    "interpret_completion",
    "REFUSED_MESSAGE",
    "TRUNCATED_MESSAGE",
    "FILTERED_MESSAGE",
]
