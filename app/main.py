"""
Emission Factor Matcher - label purchase records with emission factors via Azure OpenAI.

Usage:
    python app/main.py match data/purchases.xlsx --descriptions data/descriptions.json
    python app/main.py match data/purchases.csv -d desc.json --mode parallel --examples examples.json
    python app/main.py search "soy farm" --catalog data/emission_factors.csv
    python app/main.py examples data/purchases.xlsx -o data/examples.json --catalog data/emission_factors.csv

Guarantees:
- The output file has one row per input row, in input order
- Failed batches show up as ERROR rows with the failure reason
"""
from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from dotenv import find_dotenv, load_dotenv

from emission_matcher.config.constants import (
    CODE_FIELD,
    DEFAULT_OUTPUT_DIR,
    EXAMPLE_SAMPLE_SIZE,
    NAME_FIELD,
    MatchSettings,
    get_int_env,
)
from emission_matcher.config.exceptions import PipelineError
from emission_matcher.helpers.data_operations import (
    build_examples,
    check_output_path,
    load_catalog,
    load_examples,
    load_header_descriptions,
    load_rows,
    missing_descriptions,
    sample_example_rows,
    save_examples,
    validate_match_output,
    write_results,
    JsonManager,
)
from emission_matcher.services import (
    AzureClient,
    CatalogEntry,
    EmissionFactorMatcher,
    MatchRequest,
    match_emission_factors,
    rank_catalog,
    resolve_policy,
    search_catalog,
)
from emission_matcher.services.llm import decorate_rows
from emission_matcher.utils.console import ConsoleConfig, console
from emission_matcher.utils.logging import get_logger, init_logging

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


# -------------------- Configuration -------------------- #
@dataclass
class MatchConfig:
    input_path: Path
    descriptions_path: Path
    output_path: Path
    batch_size: int
    mode: str
    max_concurrency: int
    examples_path: Optional[Path] = None
    failure_policy: Optional[str] = None

    @classmethod
    def from_args(cls, args: argparse.Namespace, settings: MatchSettings) -> "MatchConfig":
        input_path = Path(args.input)
        output = args.output or DEFAULT_OUTPUT_DIR / f"{input_path.stem}_matched.xlsx"
        return cls(
            input_path=input_path,
            descriptions_path=Path(args.descriptions),
            output_path=check_output_path(output),
            examples_path=Path(args.examples) if args.examples else None,
            batch_size=args.batch_size,
            mode=args.mode,
            max_concurrency=args.max_concurrency,
            failure_policy=args.failure_policy or settings.failure_policy,
        )


logger = get_logger(__name__)


def build_parser(settings: Optional[MatchSettings] = None) -> argparse.ArgumentParser:
    """CLI parser; match defaults come from ``settings`` (environment by default)."""
    settings = settings or MatchSettings.from_env()
    parser = argparse.ArgumentParser(
        prog="emission-matcher",
        description="Match purchase records to emission factors with Azure OpenAI.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    match = sub.add_parser("match", help="Label every row of a CSV/Excel file")
    match.add_argument("input", help="CSV or Excel file with one purchase per row")
    match.add_argument("-d", "--descriptions", required=True, help="JSON object {header: description}")
    match.add_argument("-e", "--examples", help="JSON array of example matches")
    match.add_argument("-o", "--output", help="Result file (.xlsx, .csv or .json)")
    match.add_argument("--batch-size", type=int, default=settings.batch_size)
    match.add_argument("--mode", choices=["sequential", "parallel"], default=settings.mode)
    match.add_argument("--max-concurrency", type=int, default=settings.max_concurrent_batches)
    match.add_argument("--failure-policy", choices=["degrade", "strict"], default=None)

    search = sub.add_parser("search", help="Rank catalog entries for a query")
    search.add_argument("query", help="Search terms; blank lists the catalog")
    search.add_argument("-c", "--catalog", required=True, help="CSV/Excel/JSON with code and name columns")
    search.add_argument("-n", "--limit", type=int, default=10)

    examples = sub.add_parser("examples", help="Sample rows and pick emission factors for them")
    examples.add_argument("input", help="CSV or Excel file")
    examples.add_argument("-o", "--output", required=True, help="Where to write the examples JSON")
    examples.add_argument("-n", "--size", type=int, default=get_int_env("EXAMPLE_SAMPLE_SIZE", EXAMPLE_SAMPLE_SIZE))
    examples.add_argument("--seed", type=int, default=None)
    examples.add_argument(
        "-c", "--catalog", help="Pick factors from this catalog; without it a blank template is written"
    )
    examples.add_argument("--limit", type=int, default=10, help="Search results shown per query")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments and dispatch to a command.

    Returns exit code.
    """
    # Before any settings are read, so .env values apply to defaults too
    load_dotenv(find_dotenv(usecwd=True))
    settings = MatchSettings.from_env()
    console.config = ConsoleConfig.from_env()

    args = build_parser(settings).parse_args(argv)
    init_logging(args.command)
    pipeline_start = time.time()

    try:
        if args.command == "match":
            return run_match(MatchConfig.from_args(args, settings), pipeline_start)
        if args.command == "search":
            return run_search(args)
        return run_examples(args)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        console.interrupted()
        return EXIT_INTERRUPTED
    except PipelineError as e:
        logger.error("Pipeline error: %s", e)
        console.error("Pipeline Error", str(e))
        console.pipeline_finished(success=False)
        return EXIT_ERROR
    except Exception as e:
        logger.exception("Unexpected error: %s", e)
        console.error("Unexpected Error", str(e))
        console.pipeline_finished(success=False)
        return EXIT_ERROR


def run_match(cfg: MatchConfig, pipeline_start: float) -> int:
    """Run the matching pipeline on one file."""
    logger.info(
        "[MATCH] Starting: input=%s, mode=%s, batch_size=%d, max_concurrency=%d",
        cfg.input_path,
        cfg.mode,
        cfg.batch_size,
        cfg.max_concurrency,
    )
    console.start("Emission Factor Matcher", f"Reading {cfg.input_path}...")

    headers, rows = load_rows(cfg.input_path)
    if not headers or not rows:
        raise PipelineError("The file appears to be empty or has no valid data")
    console.data_loaded(cfg.input_path.name, len(rows), len(headers))

    descriptions = load_header_descriptions(cfg.descriptions_path)
    missing = missing_descriptions(headers, descriptions)
    if missing:
        raise PipelineError(f"Please provide descriptions for all headers: {', '.join(missing)}")

    examples = load_examples(cfg.examples_path) if cfg.examples_path else None
    if cfg.examples_path and examples is None:
        raise PipelineError(f"Examples file not found: {cfg.examples_path}")
    if examples is not None:
        console.info("Examples", f"{len(examples)} user examples loaded")

    client = AzureClient.from_env()
    if client is None:
        raise PipelineError("Azure OpenAI not configured (missing env vars)")
    logger.info("Azure client initialized: deployment=%s", client.deployment)

    policy = resolve_policy(cfg.mode, cfg.failure_policy)
    matcher = EmissionFactorMatcher(
        client,
        batch_size=cfg.batch_size,
        max_concurrency=cfg.max_concurrency,
        on_progress=console.progress,
    )
    request = MatchRequest(
        headers=headers,
        header_descriptions=descriptions,
        rows=rows,
        examples=examples,
    )

    console.matching_start(len(rows), cfg.batch_size, cfg.mode, cfg.max_concurrency)
    result = match_emission_factors(matcher, request, mode=cfg.mode, policy=policy)

    # Always write a full-length file, even when batches failed
    result_rows = decorate_rows(rows, result.labels)
    output = write_results(cfg.output_path, result_rows)

    console.batch_failures(result.failed_batches)
    console.result_preview(result_rows, CODE_FIELD, NAME_FIELD)
    console.tokens(result.usage)
    stats = validate_match_output(result.labels)
    console.matching_summary(stats, str(output), elapsed=time.time() - pipeline_start)

    logger.info("[MATCH] %s", result.message)
    if not result.is_success:
        console.error("Matching Failed", result.message)
        console.pipeline_finished(success=False)
        return EXIT_PARTIAL
    if result.had_errors:
        console.warning("Completed With Errors", result.message)
    else:
        console.success("Complete", result.message)
    console.pipeline_finished(success=True)
    return EXIT_OK


def run_search(args: argparse.Namespace) -> int:
    catalog = load_catalog(args.catalog)
    if not args.query.strip():
        entries = search_catalog(catalog, args.query)
        logger.info("[SEARCH] blank query: listing %d entries", len(entries))
        console.catalog_entries(entries, limit=args.limit)
        return EXIT_OK
    scored = rank_catalog(catalog, args.query)
    logger.info("[SEARCH] %r: %d matches in %d entries", args.query, len(scored), len(catalog))
    console.search_results(args.query, scored, limit=args.limit)
    return EXIT_OK


def pick_catalog_entry(catalog: Sequence[CatalogEntry], limit: int) -> Optional[CatalogEntry]:
    """Search until the user picks an entry. A blank search skips the row."""
    while True:
        query = input("   Search emission factors (blank to skip): ").strip()
        if not query:
            return None
        scored = rank_catalog(catalog, query)
        console.search_results(query, scored, limit=limit)
        shown = min(limit, len(scored))
        if not shown:
            continue
        choice = input(f"   Pick 1-{shown} (blank to search again): ").strip()
        if choice.isdigit() and 1 <= int(choice) <= shown:
            return scored[int(choice) - 1].entry


def run_examples(args: argparse.Namespace) -> int:
    """Sample rows and pair each with a catalog entry, or write a blank template."""
    headers, rows = load_rows(args.input)
    if not rows:
        raise PipelineError("The file appears to be empty or has no valid data")
    samples = sample_example_rows(headers, rows, sample_size=args.size, seed=args.seed)

    if not args.catalog:
        template = [{"rowData": s["rowData"], CODE_FIELD: "", NAME_FIELD: ""} for s in samples]
        JsonManager().write(args.output, template)
        console.example_rows(samples)
        console.success(
            "Examples template written",
            f"{args.output}: fill in {CODE_FIELD} / {NAME_FIELD}, or rerun with --catalog to pick them",
        )
        return EXIT_OK

    catalog = load_catalog(args.catalog)
    selections: Dict[int, CatalogEntry] = {}
    for position, sample in enumerate(samples, 1):
        console.example_prompt(position, len(samples), sample["rowData"])
        entry = pick_catalog_entry(catalog, args.limit)
        if entry is not None:
            selections[sample["rowIndex"]] = entry
            logger.info("[EXAMPLES] row %d -> %s", sample["rowIndex"], entry.code)

    examples = build_examples(samples, selections)
    save_examples(args.output, examples)
    console.success("Examples saved", f"{args.output}: {len(examples)} examples")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
