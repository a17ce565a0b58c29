#!/usr/bin/env python3
"""CLI helper that turns a text file into a CSV of question/answer pairs."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from qagen.config import get_settings
from qagen.errors import QAGenError
from qagen.logging_config import configure_logging
from qagen.pipeline import PROFILES, QAGenerationService
from qagen.telemetry import traced_duration


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "source",
        nargs="?",
        default="-",
        help="Text file to read; '-' (the default) reads standard input.",
    )
    parser.add_argument(
        "-p",
        "--profile",
        choices=sorted(PROFILES),
        default=None,
        help="Pipeline profile to run (defaults to QAGEN_PROFILE).",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Write the CSV here instead of standard output.",
    )
    return parser.parse_args(argv)


def _read_source(source: str) -> bytes:
    if source == "-":
        return sys.stdin.buffer.read()
    return Path(source).read_bytes()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    configure_logging()

    try:
        body = _read_source(args.source)
    except OSError as error:
        logging.error("Failed to read %s: %s", args.source, error)
        return 1

    service = QAGenerationService(settings=settings)
    try:
        with traced_duration("cli.generate", source=args.source, profile=args.profile):
            result = service.generate_from_bytes(body, args.profile)
    except QAGenError as error:
        logging.error("Generation failed: %s", error)
        return 1
    finally:
        service.shutdown()

    csv_text = result.to_csv()
    if args.output:
        Path(args.output).write_text(csv_text, encoding="utf-8", newline="")
    else:
        sys.stdout.write(csv_text)

    if result.failed_chunks:
        logging.warning(
            "%d of %d chunks produced no pairs", len(result.failed_chunks), result.chunk_count
        )
    logging.info("Wrote %d pairs in %.2fs", len(result.pairs), result.duration_seconds)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
