from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DATA_DIR = Path("data")


def get_int_env(key: str, default: Optional[int] = None) -> Optional[int]:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_float_env(key: str, default: Optional[float] = None) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# --------------- Batching ---------------
@dataclass(frozen=True)
class MatchSettings:
    """Batching and dispatch settings, read from the environment when built.

    Build after load_dotenv() so values from a .env file are seen.
    """

    batch_size: int = 20
    max_concurrent_batches: int = 5
    mode: str = "sequential"
    failure_policy: Optional[str] = None

    @classmethod
    def from_env(cls) -> "MatchSettings":
        return cls(
            batch_size=get_int_env("BATCH_SIZE", cls.batch_size) or cls.batch_size,
            max_concurrent_batches=get_int_env("MAX_CONCURRENT_BATCHES", cls.max_concurrent_batches)
            or cls.max_concurrent_batches,
            mode=os.getenv("MATCH_MODE", cls.mode).lower(),
            failure_policy=os.getenv("MATCH_FAILURE_POLICY", "").lower() or None,
        )


# --------------- Azure OpenAI ---------------
@dataclass(frozen=True)
class AzureSettings:
    """Transport settings for the Azure OpenAI client."""

    timeout: int = 120
    max_retries: int = 2
    retry_delay: float = 2.0
    reasoning_effort: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AzureSettings":
        return cls(
            timeout=get_int_env("AZURE_OPENAI_TIMEOUT", cls.timeout) or cls.timeout,
            max_retries=get_int_env("AZURE_OPENAI_MAX_RETRIES", cls.max_retries),
            retry_delay=get_float_env("AZURE_OPENAI_RETRY_DELAY", cls.retry_delay),
            reasoning_effort=os.getenv("AZURE_OPENAI_REASONING_EFFORT") or None,
        )


# Import-time snapshot, used as library defaults
_MATCH = MatchSettings.from_env()
_AZURE = AzureSettings.from_env()

BATCH_SIZE = _MATCH.batch_size
MAX_CONCURRENT_BATCHES = _MATCH.max_concurrent_batches
MATCH_MODE = _MATCH.mode
MATCH_FAILURE_POLICY = _MATCH.failure_policy

AZURE_OPENAI_TIMEOUT = _AZURE.timeout
AZURE_OPENAI_MAX_RETRIES = _AZURE.max_retries
AZURE_OPENAI_RETRY_DELAY = _AZURE.retry_delay
AZURE_OPENAI_REASONING_EFFORT = _AZURE.reasoning_effort

# HTTP statuses worth a second attempt; everything else fails the batch at once
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# --------------- Label schema ---------------
CODE_FIELD = "EmissionFactorCode"
NAME_FIELD = "EmissionFactorName"

# Alternate spellings seen in model output, tried in order
CODE_FIELD_ALIASES = (CODE_FIELD, "code", "factorCode")
NAME_FIELD_ALIASES = (NAME_FIELD, "name", "factorName")

UNKNOWN_CODE = "UNKNOWN"
UNKNOWN_NAME = "Unknown emission factor"
MISSING_CODE = "MISSING"
MISSING_NAME = "Match not provided"
ERROR_CODE = "ERROR"
ERROR_NAME_PREFIX = "Failed: "
UNMATCHED_NAME = "Failed to match"

SENTINEL_CODES = (ERROR_CODE, MISSING_CODE, UNKNOWN_CODE)

# --------------- Example collection ---------------
EXAMPLE_SAMPLE_SIZE = get_int_env("EXAMPLE_SAMPLE_SIZE", 5) or 5
EMPTY_CELL_TEXT = "N/A"
NO_DESCRIPTION_TEXT = "No description provided"

# --------------- Files ---------------
DEFAULT_OUTPUT_DIR = DATA_DIR / "output"
SUPPORTED_ROW_SUFFIXES = (".csv", ".xlsx", ".xls")
# pandas has no .xls writer
SUPPORTED_OUTPUT_SUFFIXES = (".csv", ".xlsx", ".json")


__all__ = [
    "get_int_env",
    "get_float_env",
    "DATA_DIR",
    "MatchSettings",
    "AzureSettings",
    "BATCH_SIZE",
    "MAX_CONCURRENT_BATCHES",
    "MATCH_MODE",
    "MATCH_FAILURE_POLICY",
    "AZURE_OPENAI_TIMEOUT",
    "AZURE_OPENAI_MAX_RETRIES",
    "AZURE_OPENAI_RETRY_DELAY",
    "AZURE_OPENAI_REASONING_EFFORT",
    "RETRYABLE_STATUS_CODES",
    # Label schema
    "CODE_FIELD",
    "NAME_FIELD",
    "CODE_FIELD_ALIASES",
    "NAME_FIELD_ALIASES",
    "UNKNOWN_CODE",
    "UNKNOWN_NAME",
    "MISSING_CODE",
    "MISSING_NAME",
    "ERROR_CODE",
    "ERROR_NAME_PREFIX",
    "UNMATCHED_NAME",
    "SENTINEL_CODES",
    # Example collection
    "EXAMPLE_SAMPLE_SIZE",
    "EMPTY_CELL_TEXT",
    "NO_DESCRIPTION_TEXT",
    "DEFAULT_OUTPUT_DIR",
    "SUPPORTED_ROW_SUFFIXES",
    "SUPPORTED_OUTPUT_SUFFIXES",
]
