# Shared pytest fixtures
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from emission_matcher.services.llm.azure_client import Completion, CompletionStatus
from emission_matcher.services.llm.classification_orchestrator import MatchRequest


def matches_reply(count: int, prefix: str = "F") -> str:
    """JSON reply in the canonical {"matches": [...]} shape."""
    return json.dumps(
        {
            "matches": [
                {"EmissionFactorCode": f"{prefix}{i}", "EmissionFactorName": f"Factor {prefix}{i}"}
                for i in range(count)
            ]
        }
    )


def ok_completion(content: str, tokens: int = 10) -> Completion:
    return Completion(
        CompletionStatus.OK,
        content=content,
        usage={"prompt_tokens": tokens, "completion_tokens": tokens, "total_tokens": 2 * tokens},
        finish_reason="stop",
    )


class FakeClient:
    """Stands in for AzureClient; replies are keyed by batch number.

    A reply may be a Completion, an Exception to raise, or None for a
    canonical success sized from the prompt's "exactly N items" line.
    """

    deployment = "fake-deploy"

    def __init__(self, replies: Optional[Dict[int, Any]] = None, delays: Optional[Dict[int, float]] = None):
        self.replies = replies or {}
        self.delays = delays or {}
        self.calls: List[int] = []
        self.sessions = 0

    def _reply(self, prompt: str, batch_number: int) -> Completion:
        self.calls.append(batch_number)
        reply = self.replies.get(batch_number)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, Completion):
            return reply
        count = int(prompt.split("Ensure you have exactly ")[1].split(" ")[0])
        return ok_completion(matches_reply(count, prefix=f"B{batch_number}-"))

    def complete(self, system_message, prompt, *, batch_number=1, total_batches=1):
        return self._reply(prompt, batch_number)

    async def complete_async(self, http_client, system_message, prompt, *, batch_number=1, total_batches=1):
        await asyncio.sleep(self.delays.get(batch_number, 0))
        return self._reply(prompt, batch_number)

    def open_async_session(self, max_connections):
        self.sessions += 1
        return httpx.AsyncClient()


@pytest.fixture()
def headers() -> List[str]:
    return ["Vendor", "Product", "Amount"]


@pytest.fixture()
def descriptions() -> Dict[str, str]:
    return {
        "Vendor": "Supplier company name",
        "Product": "What was purchased",
        "Amount": "Invoice total in USD",
    }


@pytest.fixture()
def ten_rows() -> List[Dict[str, Any]]:
    return [
        {"Vendor": f"Vendor {i}", "Product": f"Item {i}", "Amount": 100 + i}
        for i in range(10)
    ]


@pytest.fixture()
def request_10(headers, descriptions, ten_rows) -> MatchRequest:
    return MatchRequest(headers=headers, header_descriptions=descriptions, rows=ten_rows)
