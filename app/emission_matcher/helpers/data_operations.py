from __future__ import annotations

import datetime
import json
import random
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from emission_matcher.config.constants import (
    ERROR_CODE,
    EXAMPLE_SAMPLE_SIZE,
    MISSING_CODE,
    SUPPORTED_OUTPUT_SUFFIXES,
    SUPPORTED_ROW_SUFFIXES,
    UNKNOWN_CODE,
)
from emission_matcher.config.exceptions import PipelineError
from emission_matcher.services.llm.labels import ExampleMatch, Label
from emission_matcher.services.llm.prompt_builder import format_row
from emission_matcher.services.search.catalog_search import CatalogEntry, to_catalog
from emission_matcher.utils.logging import get_logger

logger = get_logger(__name__)

Row = Dict[str, Any]


class JsonManager:
    """Simple JSON I/O with atomic writes."""

    def __init__(self, encoding: str = "utf-8", indent: int = 2):
        self.encoding = encoding
        self.indent = indent

    def write(self, path: Path | str, data: Any) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(
            json.dumps(data, indent=self.indent, ensure_ascii=False),
            encoding=self.encoding,
        )
        tmp.replace(p)

    def load(self, path: Path | str) -> Any | None:
        """Load JSON file, return None if not exists."""
        p = Path(path)
        if not p.exists():
            return None
        try:
            return json.loads(p.read_text(encoding=self.encoding))
        except ValueError as e:
            raise PipelineError(f"Invalid JSON in {p}: {e}") from e


# -------------------- Row files -------------------- #


def to_primitive(value: Any) -> Any:
    """Reduce a cell to str/int/float/bool/None."""
    if value is None or value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, (pd.Timestamp, datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, (bool, str)):
        return value
    if hasattr(value, "item"):
        # numpy scalars
        return value.item()
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _read_frame(path: Path, dtype: Any = None) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, skip_blank_lines=True, dtype=dtype)
    if suffix in (".xlsx", ".xls"):
        # First worksheet only
        return pd.read_excel(path, sheet_name=0, dtype=dtype)
    if suffix == ".json":
        return pd.DataFrame(JsonManager().load(path) or [])
    raise PipelineError(
        f"Unsupported file format '{suffix}'. Please use a CSV or Excel file "
        f"({', '.join(SUPPORTED_ROW_SUFFIXES)})"
    )


def load_rows(path: Path | str) -> Tuple[List[str], List[Row]]:
    """Read a CSV/Excel file into (headers, rows) of primitive values."""
    p = Path(path)
    if not p.exists():
        raise PipelineError(f"Input file not found: {p}")
    try:
        df = _read_frame(p)
    except PipelineError:
        raise
    except Exception as e:
        raise PipelineError(f"Failed to parse {p.name}: {e}") from e

    df = df.dropna(how="all")
    headers = [str(col) for col in df.columns]
    rows = [
        {header: to_primitive(value) for header, value in zip(headers, record)}
        for record in df.itertuples(index=False, name=None)
    ]
    logger.info("Loaded %d rows, %d columns from %s", len(rows), len(headers), p)
    return headers, rows


def check_output_path(path: Path | str) -> Path:
    """Reject output formats we cannot write, before any work is done."""
    p = Path(path)
    if p.suffix.lower() not in SUPPORTED_OUTPUT_SUFFIXES:
        raise PipelineError(
            f"Unsupported output format '{p.suffix}'. Please use one of: "
            f"{', '.join(SUPPORTED_OUTPUT_SUFFIXES)}"
        )
    return p


def write_results(path: Path | str, rows: Sequence[Row]) -> Path:
    """Write decorated rows to .xlsx, .csv or .json (chosen by suffix)."""
    p = check_output_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = p.suffix.lower()
    if suffix == ".json":
        JsonManager().write(p, list(rows))
    else:
        df = pd.DataFrame(list(rows)).fillna("")
        if suffix == ".csv":
            df.to_csv(p, index=False)
        else:
            df.to_excel(p, index=False, sheet_name="Sheet1")
    logger.info("Wrote %d result rows to %s", len(rows), p)
    return p


# -------------------- Descriptions, catalog, examples -------------------- #


def load_header_descriptions(path: Path | str) -> Dict[str, str]:
    data = JsonManager().load(path)
    if data is None:
        raise PipelineError(f"Header descriptions file not found: {path}")
    if not isinstance(data, dict):
        raise PipelineError("Header descriptions must be a JSON object of {header: description}")
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


def missing_descriptions(headers: Sequence[str], descriptions: Mapping[str, str]) -> List[str]:
    return [h for h in headers if not str(descriptions.get(h) or "").strip()]


def load_catalog(path: Path | str) -> List[CatalogEntry]:
    """Load the {code, name} emission factor table (CSV, Excel or JSON)."""
    p = Path(path)
    if not p.exists():
        raise PipelineError(f"Catalog file not found: {p}")
    # Codes like 011110 must stay text
    df = _read_frame(p, dtype=str)
    columns = {str(c).strip().lower(): c for c in df.columns}
    if "code" not in columns or "name" not in columns:
        raise PipelineError(f"Catalog {p.name} needs 'code' and 'name' columns")
    records = []
    for code, name in df[[columns["code"], columns["name"]]].itertuples(index=False, name=None):
        code = to_primitive(code)
        if code is None:
            continue
        name = to_primitive(name)
        records.append({"code": str(code), "name": "" if name is None else str(name)})
    catalog = to_catalog(records)
    logger.info("Loaded catalog: %d entries from %s", len(catalog), p)
    return catalog


def load_examples(path: Path | str) -> Optional[List[ExampleMatch]]:
    """Load user examples; None if the file does not exist.

    Raises:
        PipelineError: not a JSON array, or an example lacks rowData,
            EmissionFactorCode or EmissionFactorName.
    """
    data = JsonManager().load(path)
    if data is None:
        return None
    if not isinstance(data, list):
        raise PipelineError("Examples file must contain a JSON array")
    examples = [ExampleMatch.from_dict(item) for item in data if isinstance(item, dict)]
    incomplete = [
        str(i) for i, ex in enumerate(examples, start=1) if not (ex.row_data and ex.code and ex.name)
    ]
    if incomplete:
        raise PipelineError(
            f"Please provide an emission factor code and name for examples: {', '.join(incomplete)}"
        )
    return examples


def save_examples(path: Path | str, examples: Sequence[ExampleMatch]) -> None:
    JsonManager().write(path, [ex.as_dict() for ex in examples])


def sample_example_rows(
    headers: Sequence[str],
    rows: Sequence[Row],
    sample_size: int = EXAMPLE_SAMPLE_SIZE,
    seed: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Pick up to ``sample_size`` distinct rows to be labelled by hand.

    Returns dicts with ``rowIndex`` and the ``rowData`` text used in prompts.
    """
    rng = random.Random(seed)
    count = min(sample_size, len(rows))
    indices = rng.sample(range(len(rows)), count)
    return [{"rowIndex": i, "rowData": format_row(headers, rows[i])} for i in indices]


def build_examples(
    samples: Sequence[Mapping[str, Any]],
    selections: Mapping[int, CatalogEntry],
) -> List[ExampleMatch]:
    """Pair sampled rows with the catalog entries chosen for them.

    Raises:
        PipelineError: a sampled row has no selection.
    """
    missing = [s["rowIndex"] for s in samples if s["rowIndex"] not in selections]
    if missing:
        raise PipelineError(
            f"Please provide an emission factor code for rows: {', '.join(map(str, missing))}"
        )
    return [
        ExampleMatch(
            row_data=s["rowData"],
            code=selections[s["rowIndex"]].code,
            name=selections[s["rowIndex"]].name,
        )
        for s in samples
    ]


# -------------------- Output validation -------------------- #


def validate_match_output(labels: Sequence[Label], top_n: int = 5) -> Dict[str, Any]:
    """Summarize real vs placeholder labels."""
    total = len(labels)
    codes = Counter(label.code for label in labels)
    sentinel_counts = {
        ERROR_CODE: codes.get(ERROR_CODE, 0),
        MISSING_CODE: codes.get(MISSING_CODE, 0),
        UNKNOWN_CODE: codes.get(UNKNOWN_CODE, 0),
    }
    matched = total - sum(sentinel_counts.values())
    names = {label.code: label.name for label in labels}
    top = [
        {"code": code, "name": names[code], "count": count}
        for code, count in codes.most_common()
        if code not in sentinel_counts
    ][:top_n]

    stats: Dict[str, Any] = {
        "total_rows": total,
        "matched_rows": matched,
        "coverage_pct": round(matched / total * 100, 2) if total else 0.0,
        "unique_codes": len([c for c in codes if c not in sentinel_counts]),
        "sentinels": sentinel_counts,
        "top_codes": top,
    }
    logger.info(
        "Validation: %d/%d matched (%.1f%%), sentinels=%s",
        matched,
        total,
        stats["coverage_pct"],
        sentinel_counts,
    )
    return stats


__all__ = [
    "JsonManager",
    "to_primitive",
    "load_rows",
    "check_output_path",
    "write_results",
    "load_header_descriptions",
    "missing_descriptions",
    "load_catalog",
    "load_examples",
    "save_examples",
    "sample_example_rows",
    "build_examples",
    "validate_match_output",
]
