"""Pretty console output for the emission factor matcher.

This module provides user-friendly terminal output with:
- Emojis for visual scanning
- Progress indicators fed by the matcher's progress events
- Batch details with row → emission factor samples
- Final coverage summary

Usage:
    from emission_matcher.utils.console import console
    console.start("Matching Started")
    console.progress(event)
    console.success("Complete!")

Design principles:
- Isolated from logging (file logs are separate)
- Stateless methods
- Row limits configurable via CONSOLE_MAX_ROWS
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class ConsoleConfig:
    """Configuration for console output behavior."""
    max_row_display: int = 3
    max_row_text_length: int = 45
    max_label_length: int = 50
    box_width: int = 60

    @classmethod
    def from_env(cls) -> "ConsoleConfig":
        """Load configuration from environment variables."""
        return cls(
            max_row_display=int(os.getenv("CONSOLE_MAX_ROWS", "3")),
        )


class Console:
    """Pretty console output handler for matching runs.

    All output goes to stdout and is designed to be human-readable.
    For machine-readable logs, use the logging module instead.
    """

    def __init__(self, config: Optional[ConsoleConfig] = None):
        self.config = config or ConsoleConfig.from_env()

    # ==================== Helpers ====================

    def _truncate(self, text: str, max_len: int) -> str:
        """Truncate text with ellipsis if too long."""
        if len(text) <= max_len:
            return text
        return text[: max_len - 3] + "..."

    def _bar(self, current: int, total: int, width: int = 30) -> str:
        pct = current / total if total > 0 else 0
        filled = int(width * pct)
        return "█" * filled + "░" * (width - filled)

    def _print(self, *args, **kwargs) -> None:
        """Print to stdout with flush."""
        print(*args, **kwargs, flush=True)

    # ==================== Phase Indicators ====================

    def _phase(self, icon: str, message: str, detail: Optional[str]) -> None:
        self._print(f"\n{icon} {message}")
        if detail:
            self._print(f"   └─ {detail}")

    def start(self, message: str, detail: Optional[str] = None) -> None:
        self._phase("🚀", message, detail)

    def success(self, message: str, detail: Optional[str] = None) -> None:
        self._phase("✅", message, detail)

    def error(self, message: str, detail: Optional[str] = None) -> None:
        self._phase("❌", message, detail)

    def warning(self, message: str, detail: Optional[str] = None) -> None:
        self._phase("⚠️ ", message, detail)

    def info(self, message: str, detail: Optional[str] = None) -> None:
        self._phase("📋", message, detail)

    # ==================== Data Loading ====================

    def data_loaded(self, source: str, rows: int, columns: int) -> None:
        self._print("\n📥 Data Loaded")
        self._print(f"   └─ {source}: {rows} rows, {columns} columns")

    # ==================== Matching ====================

    def matching_start(self, total_rows: int, batch_size: int, mode: str, max_concurrency: int) -> None:
        num_batches = (total_rows + batch_size - 1) // batch_size
        self._print("\n🤖 Matching Starting")
        line = f"   └─ {total_rows} rows → {num_batches} batches of {batch_size} ({mode}"
        if mode == "parallel":
            line += f", up to {max_concurrency} in flight"
        self._print(line + ")")

    def progress(self, event: Any) -> None:
        """Render a ProgressEvent as a one-line bar."""
        icon = "✓" if event.ok else "✗"
        bar = self._bar(event.processed_rows, event.total_rows)
        self._print(
            f"   {icon} Batch {event.batch_number:>3} │ [{bar}] "
            f"{event.current_batch}/{event.total_batches} batches, "
            f"{event.processed_rows}/{event.total_rows} rows"
        )

    def batch_failures(self, failures: Sequence[Any]) -> None:
        if not failures:
            return
        self._print(f"\n┌─ Failed batches ({len(failures)})")
        for outcome in failures:
            self._print(f"│  • Batch {outcome.batch_number}: {self._truncate(outcome.error or '', 70)}")
        self._print(f"└{'─' * self.config.box_width}")

    def result_preview(self, rows: Sequence[Dict[str, Any]], code_field: str, name_field: str) -> None:
        """Show the first few rows with their assigned factors."""
        if not rows:
            return
        self._print(f"\n┌─ Preview (first {min(len(rows), self.config.max_row_display)} of {len(rows)})")
        for row in rows[: self.config.max_row_display]:
            values = [str(v) for k, v in row.items() if k not in (code_field, name_field) and v is not None]
            text = self._truncate(", ".join(values), self.config.max_row_text_length)
            label = self._truncate(f"{row.get(code_field)} {row.get(name_field)}", self.config.max_label_length)
            self._print(f"│  • {text:<45} → {label}")
        self._print(f"└{'─' * self.config.box_width}")

    # ==================== Final Summary ====================

    def matching_summary(self, stats: Dict[str, Any], output_path: str, elapsed: Optional[float] = None) -> None:
        sentinels = stats.get("sentinels", {})
        self._print("\n✅ Matching Complete!")
        self._print(
            f"   ├─ Matched: {stats['matched_rows']}/{stats['total_rows']} ({stats['coverage_pct']:.1f}%)"
        )
        self._print(f"   ├─ Distinct factors: {stats['unique_codes']}")
        placeholders = ", ".join(f"{code}={count}" for code, count in sentinels.items() if count)
        if placeholders:
            self._print(f"   ├─ ⚠️  Placeholders: {placeholders}")
        top = stats.get("top_codes", [])
        if top:
            self._print("   ├─ Top 5:")
            for i, item in enumerate(top[:5], 1):
                name = self._truncate(f"{item['code']} {item['name']}", 40)
                self._print(f"   │    {i}. {name:<40} {item['count']:>4}")
        self._print(f"   └─ Saved: {output_path}")
        if elapsed is not None:
            self._print(f"\n⏱️  Total: {elapsed:.1f}s")

    def tokens(self, usage: Dict[str, int]) -> None:
        total = usage.get("total_tokens", 0)
        if total:
            self._print(
                f"\n🪙 Tokens: {total:,} total "
                f"(prompt: {usage.get('prompt_tokens', 0):,}, "
                f"completion: {usage.get('completion_tokens', 0):,})"
            )

    # ==================== Catalog Search ====================

    def search_results(self, query: str, scored: Sequence[Any], limit: int = 10) -> None:
        self._print(f"\n🔍 {len(scored)} matches for '{query}'")
        for i, item in enumerate(scored[:limit], 1):
            entry = item.entry
            self._print(f"   {i:>2}. {entry.code:<8} {self._truncate(entry.name, 50):<50} ({item.score})")
        if len(scored) > limit:
            self._print(f"   └─ ...+{len(scored) - limit} more")

    def catalog_entries(self, entries: Sequence[Any], limit: int = 10) -> None:
        self._print(f"\n📚 {len(entries)} catalog entries")
        for i, entry in enumerate(entries[:limit], 1):
            self._print(f"   {i:>2}. {entry.code:<8} {self._truncate(entry.name, 50)}")
        if len(entries) > limit:
            self._print(f"   └─ ...+{len(entries) - limit} more")

    def example_prompt(self, position: int, total: int, row_data: str) -> None:
        self._print(f"\n🧪 Example {position}/{total}")
        self._print(f"   └─ {self._truncate(row_data, 100)}")

    def example_rows(self, samples: List[Dict[str, Any]]) -> None:
        self._print(f"\n🧪 Example rows ({len(samples)})")
        for sample in samples:
            self._print(f"   • Row {sample['rowIndex']}: {self._truncate(sample['rowData'], 70)}")

    # ==================== Pipeline Status ====================

    def pipeline_finished(self, success: bool = True) -> None:
        self._print(f"\n{'─' * 50}")
        if success:
            self._print("🎉 Pipeline finished successfully!")
        else:
            self._print("💥 Pipeline failed!")
        self._print(f"{'─' * 50}\n")

    def interrupted(self) -> None:
        self._print("\n\n⚡ Interrupted by user")
        self._print("   └─ No results were written")


# ==================== Singleton Instance ====================
# This allows: from emission_matcher.utils.console import console
console = Console()

__all__ = ["Console", "ConsoleConfig", "console"]
