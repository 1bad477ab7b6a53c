from __future__ import annotations

import json
import textwrap
from typing import Any, List, Mapping, Optional, Sequence

import pandas as pd

from emission_matcher.config.constants import EMPTY_CELL_TEXT, NO_DESCRIPTION_TEXT

from .labels import ExampleMatch


def dedent_prompt(text: str) -> str:
    """Strip common indentation and surrounding blank lines."""
    lines = [line if line.strip() else "" for line in text.split("\n")]
    return textwrap.dedent("\n".join(lines)).strip()


DEFAULT_EXAMPLES: List[ExampleMatch] = [
    ExampleMatch(
        "Product: Soybeans, Quantity: 1000 kg, Description: Raw soybeans for processing",
        "111110",
        "Soybean Farming",
    ),
    ExampleMatch("Product: Corn, Quantity: 2000 kg, Description: Feed corn", "111150", "Corn Farming"),
    ExampleMatch(
        "Product: Apples, Quantity: 500 kg, Description: Fresh apples", "111331", "Apple Orchards"
    ),
    ExampleMatch(
        "Product: Rice, Quantity: 1500 kg, Description: Raw rice grain", "111160", "Rice Farming"
    ),
    ExampleMatch(
        "Product: Wheat, Quantity: 3000 kg, Description: Wheat grain", "111140", "Wheat Farming"
    ),
]

SYSTEM_MESSAGE = dedent_prompt(
    """
    You are a sustainability expert selecting an emission factor for an activity under the purchased goods and services category.
    Your task is to analyze invoice data about purchased goods and services and suggest the most appropriate
    emission factor code and name for each row of data, based on North American Industry Classification System (NAICS) classification.

    You will receive:
    1. Headers with descriptions explaining what each column represents
    2. Row data that needs emission factor matching

    For every single row, take a deep breath and think about the context of the descriptions
    before selecting the most appropriate emission factor code and name.

    If there are vendor names provided, try to infer the type of goods or services being purchased from the name.

    Your response MUST be valid JSON with this structure:
    {
      "matches": [
        {
          "EmissionFactorCode": "string identifier for the emission factor",
          "EmissionFactorName": "descriptive name for the emission factor"
        },
        ...one object for each input row in the same order
      ]
    }
    """
)


def format_cell(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return EMPTY_CELL_TEXT
    return str(value)


def format_row(headers: Sequence[str], row: Mapping[str, Any]) -> str:
    return ", ".join(f"{header}: {format_cell(row.get(header))}" for header in headers)


class PromptBuilder:
    """Builds system/user prompts for emission factor matching."""

    def __init__(self, system_message: str = SYSTEM_MESSAGE):
        self.system_message = system_message

    def format_header_info(self, headers: Sequence[str], descriptions: Mapping[str, str]) -> str:
        return "\n".join(
            f"{header}: {descriptions.get(header) or NO_DESCRIPTION_TEXT}" for header in headers
        )

    def format_rows(self, headers: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> str:
        return "\n".join(
            f"Row {index}: {format_row(headers, row)}" for index, row in enumerate(rows, start=1)
        )

    # -------------------- Matching Prompt -------------------- #

    def build_matching_prompt(
        self,
        headers: Sequence[str],
        descriptions: Mapping[str, str],
        rows: Sequence[Mapping[str, Any]],
        examples: Optional[Sequence[ExampleMatch]] = None,
    ) -> str:
        """Build the user prompt for one batch.

        Args:
            headers: Column names, in file order.
            descriptions: {header: description} supplied by the user.
            rows: The batch rows.
            examples: User-picked examples; the built-in farming examples
                are used when None.

        Returns:
            Formatted prompt string asking for exactly len(rows) matches.
        """
        chosen = DEFAULT_EXAMPLES if examples is None else examples
        examples_json = json.dumps([ex.as_dict() for ex in chosen], ensure_ascii=False)
        header_text = self.format_header_info(headers, descriptions)
        row_text = self.format_rows(headers, rows)

        sections: List[str] = [
            f"=== HEADER INFORMATION ===\n{header_text}",
            f"=== ROW DATA TO MATCH ===\n{row_text}",
            "Based on this data, determine the most appropriate emission factor code and name for each row.",
            dedent_prompt(
                """
                Follow these steps for every single row of data:
                1. Think deeply about the context of the descriptions provided and try to infer what type of good or service was being purchased.
                2. See if the company or vendor name provides any clues about the type of goods or services provided
                3. Match to the most appropriate emission factor from the database provided
                """
            ),
            dedent_prompt(
                """
                Your response MUST be formatted as JSON with a structure like:
                {
                  "matches": [
                    {
                      "EmissionFactorCode": "561210",
                      "EmissionFactorName": "Facilities Support Services"
                    },
                    ... one object for each input row ...
                  ]
                }
                """
            ),
            f"Here are some examples of row data and their corresponding emission factors:\n{examples_json}",
            f"Ensure you have exactly {len(rows)} items in the matches array, "
            "one for each input row in the same order.",
        ]
        return "\n\n".join(sections)


__all__ = ["PromptBuilder", "SYSTEM_MESSAGE", "DEFAULT_EXAMPLES", "dedent_prompt", "format_row", "format_cell"]
