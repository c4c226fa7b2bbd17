"""Command-line entry point.

Usage::

    lighthouse-batch https://example.com https://example.org --output out.json
    lighthouse-batch --example

Exit codes:
    0  The batch ran (even if some URLs failed all their retries).
    2  Usage error (no URLs given, or an option value out of range).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from typing import TextIO

from pydantic import ValidationError

from lighthouse_batch import __version__
from lighthouse_batch.auditor.config import CATEGORIES, EXAMPLE_URL
from lighthouse_batch.auditor.models import BatchReport, ScoreRecord
from lighthouse_batch.auditor.runner import BatchOptions, run_batch
from lighthouse_batch.config.settings import get_settings
from lighthouse_batch.core.exceptions import UsageError
from lighthouse_batch.core.logging_config import configure_logging


def build_argument_parser() -> argparse.ArgumentParser:
    """Return the parser for ``lighthouse-batch``."""
    parser = argparse.ArgumentParser(
        prog="lighthouse-batch",
        description="Run Lighthouse on a list of URLs",
    )
    parser.add_argument("urls", nargs="*", metavar="URL", help="URLs to audit")
    parser.add_argument(
        "--example",
        action="store_true",
        help=f"Audit {EXAMPLE_URL} instead of the given URLs",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Results file (default: $LIGHTHOUSE_BATCH_OUTPUT_FILE or output/results.json)",
    )
    parser.add_argument("--retries", type=int, metavar="N", help="Retries per URL")
    parser.add_argument(
        "--retry-delay", type=int, metavar="MS", help="Delay between attempts in milliseconds"
    )
    parser.add_argument(
        "--concurrency", type=int, metavar="N", help="URLs audited at the same time"
    )
    parser.add_argument(
        "--timeout", type=float, metavar="SECONDS", help="Timeout per attempt"
    )
    parser.add_argument("--post-url", metavar="URL", help="Also POST the report here")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging verbosity",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_urls(args: argparse.Namespace) -> list[str]:
    """Return the URLs to audit.

    Raises:
        UsageError: If no URL was given and ``--example`` was not set.
    """
    if args.example:
        return [EXAMPLE_URL]
    urls = [url for url in args.urls if url.strip()]
    if not urls:
        raise UsageError("at least one URL is required (or use --example)")
    return urls


def format_record(record: ScoreRecord) -> str:
    """One results-table line for ``record``."""
    scores = "  ".join(f"{name}={record.scores[name]:g}" for name in CATEGORIES)
    return f"{record.url}  {record.elapsed_seconds:.2f}s  {scores}"


def print_report(report: BatchReport, stream: TextIO | None = None) -> None:
    """Print the final report: one line per record, failures, total time."""
    stream = stream or sys.stdout
    for record in report.records:
        print(format_record(record), file=stream)
    for failure in report.failures:
        print(f"FAILED {failure.url} ({failure.attempts} attempts): {failure.error}", file=stream)
    print(f"Total Time: {report.total_elapsed_seconds:g} sec", file=stream)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse ``argv``, run the batch and print the report.

    Returns:
        The process exit status.
    """
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    try:
        urls = resolve_urls(args)
    except UsageError as exc:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {exc}", file=sys.stderr)
        return 2

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    try:
        options = BatchOptions.from_settings(
            settings,
            output_file=args.output,
            retries=args.retries,
            retry_delay_ms=args.retry_delay,
            concurrency=args.concurrency,
            attempt_timeout=args.timeout,
            post_url=args.post_url,
        )
    except ValidationError as exc:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {exc}", file=sys.stderr)
        return 2

    report = asyncio.run(
        run_batch(
            urls,
            options,
            on_record=lambda record: print(f"done: {format_record(record)}", flush=True),
        )
    )
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
