"""Label and example types shared by the matching pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

from emission_matcher.config.constants import (
    CODE_FIELD,
    ERROR_CODE,
    ERROR_NAME_PREFIX,
    MISSING_CODE,
    MISSING_NAME,
    NAME_FIELD,
    UNKNOWN_CODE,
    UNKNOWN_NAME,
)


@dataclass(frozen=True)
class Label:
    """One emission factor assigned to one row."""

    code: str
    name: str

    def as_dict(self) -> Dict[str, str]:
        return {CODE_FIELD: self.code, NAME_FIELD: self.name}

    @classmethod
    def unknown(cls) -> "Label":
        return cls(UNKNOWN_CODE, UNKNOWN_NAME)

    @classmethod
    def missing(cls) -> "Label":
        return cls(MISSING_CODE, MISSING_NAME)

    @classmethod
    def error(cls, message: str) -> "Label":
        return cls(ERROR_CODE, f"{ERROR_NAME_PREFIX}{message}")


@dataclass(frozen=True)
class ExampleMatch:
    """A row rendered as text, paired with the factor a user picked for it."""

    row_data: str
    code: str
    name: str

    def as_dict(self) -> Dict[str, str]:
        return {"rowData": self.row_data, CODE_FIELD: self.code, NAME_FIELD: self.name}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExampleMatch":
        return cls(
            row_data=str(data.get("rowData") or "").strip(),
            code=str(data.get(CODE_FIELD) or "").strip(),
            name=str(data.get(NAME_FIELD) or "").strip(),
        )


__all__ = ["Label", "ExampleMatch"]
