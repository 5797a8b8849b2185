from __future__ import annotations

import argparse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys

from treemirror.directives import (
    Directive,
    DirectiveEntry,
    iter_directive_entries,
    parse_directives,
    read_directive_entries,
)
from treemirror.mirror_engine import MirrorRunOptions
from treemirror.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_RUNTIME_OR_CONFIG_ERROR,
    EXIT_SUCCESS,
    run_directions,
)
from treemirror.skip_patterns import PATTERN_SYNTAXES


LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def _add_directive_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--directive",
        dest="directives",
        action="append",
        default=[],
        metavar="FROM:TO[:PATTERN[,...]]",
        help="Copy direction; may be repeated",
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="files",
        action="append",
        default=[],
        type=Path,
        help="Directive file (text, .yaml/.yml or .json); may be repeated",
    )
    parser.add_argument("--pattern-syntax", choices=PATTERN_SYNTAXES, default="regex")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="treemirror", description="Incremental directory tree copier")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Copy every direction")
    _add_directive_arguments(run_parser)
    run_parser.add_argument("-v", "--verbose", action="store_true")
    run_parser.add_argument("--dry-run", action="store_true")
    run_parser.add_argument("--workers", type=int, default=None, help="Concurrent file copies")
    run_parser.add_argument("--follow-symlinks", action="store_true")
    run_parser.add_argument(
        "--exclude-skipped-from-total",
        action="store_true",
        help="Do not count skipped files in total",
    )
    run_parser.add_argument("--log-file", type=Path, default=None)

    validate_parser = subparsers.add_parser("validate", help="Validate directives")
    _add_directive_arguments(validate_parser)

    list_parser = subparsers.add_parser("list", help="List source -> destination mappings")
    _add_directive_arguments(list_parser)

    return parser


def _configure_logging(verbose: bool, log_file: Path | None) -> logging.Logger:
    logger = logging.getLogger("treemirror")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


def _load_directives(args: argparse.Namespace) -> list[Directive]:
    entries: list[DirectiveEntry] = []
    for directive_file in args.files:
        entries.extend(read_directive_entries(directive_file))
    entries.extend(args.directives)
    if not any(True for _ in iter_directive_entries(entries)):
        raise ValueError("No directives given; use --directive or --file")
    return list(parse_directives(entries, pattern_syntax=args.pattern_syntax).values())


def _describe(directive: Directive) -> str:
    patterns = ",".join(directive.raw_patterns) or "(none)"
    return f"{directive.source_root} -> {directive.destination_root} (skip: {patterns})"


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        directives = _load_directives(args)
    except ValueError as exc:
        print(f"Invalid directives: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    print(f"Valid directives: {len(directives)} direction(s)")
    return EXIT_SUCCESS


def cmd_list(args: argparse.Namespace) -> int:
    try:
        directives = _load_directives(args)
    except ValueError as exc:
        print(f"Invalid directives: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    for directive in directives:
        print(f"  - {_describe(directive)}")
    return EXIT_SUCCESS


def cmd_run(args: argparse.Namespace) -> int:
    try:
        directives = _load_directives(args)
    except ValueError as exc:
        print(f"Invalid directives: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    if args.workers is not None and args.workers < 1:
        print("--workers must be at least 1", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    logger = _configure_logging(args.verbose, args.log_file)
    options = MirrorRunOptions(
        dry_run=args.dry_run,
        verbose=args.verbose,
        follow_symlinks=args.follow_symlinks,
        count_skipped_in_total=not args.exclude_skipped_from_total,
    )
    report = run_directions(directives, options, workers=args.workers, logger=logger.getChild("run"))

    for result in report.results:
        directive = result.directive
        print(f"{directive.source_root} -> {directive.destination_root} | {result.summary.describe()}")
    for failure in report.failures:
        directive = failure.directive
        print(
            f"failed for {directive.source_root} -> {directive.destination_root}: {failure.message}",
            file=sys.stderr,
        )
    print(f"TOTAL | {report.summary.describe()}")
    return report.exit_code


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate":
        return cmd_validate(args)
    if args.command == "list":
        return cmd_list(args)
    if args.command == "run":
        return cmd_run(args)

    parser.print_help()
    return EXIT_RUNTIME_OR_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
