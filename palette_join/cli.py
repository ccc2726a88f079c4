"""Command-line interface for joining the palettes of indexed PNG files."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from PIL import __version__ as PILLOW_VERSION

from .file_scanner import expand_inputs
from .palette_ops import format_gpl_palette
from .pipeline import JoinOptions, JoinReport, run_join


__version__ = "1.0.0"

logger = logging.getLogger(__name__)
_HANDLERS: list[logging.Handler] = []

_STATUS_TAGS = {
    "written": "OK",
    "checked": "OK",
    "palette": "OK",
    "skipped": "SKIP",
    "failed": "FAIL",
    "aborted": "FAIL",
}


def setup_logging(verbose: bool = False) -> None:
    """Console logging on stderr, plus a debug log file when PALETTEJOIN_DEBUG is set."""

    global _HANDLERS
    root_logger = logging.getLogger()
    for handler in _HANDLERS:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.addHandler(console)
    _HANDLERS = [console]
    if not os.environ.get("PALETTEJOIN_DEBUG"):
        return
    log_path = Path(os.environ.get("PALETTEJOIN_DEBUG_LOG", "palettejoin_debug.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    handler.setLevel(logging.DEBUG)
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)
    _HANDLERS.append(handler)
    root_logger.info("palettejoin debug logging enabled at %s", log_path)


def _version_text() -> str:
    return (
        f"palettejoin {__version__}\n"
        "License GPLv3+: GNU GPL version 3 or later <http://gnu.org/licenses/gpl.html>.\n"
        "This is free software: you are free to change and redistribute it.\n"
        "There is NO WARRANTY, to the extent permitted by law.\n"
        "\n"
        f"Using Pillow {PILLOW_VERSION}."
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="palettejoin",
        description="Joins the palettes of FILE(s), adapting FILE(s) to the new palette.",
        epilog="FILEs can be in PNG or GPL (Gimp palette) format.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("inputs", nargs="+", type=Path, metavar="FILE", help="Input files or folders")
    parser.add_argument(
        "-p",
        "--output-palette",
        action="store_true",
        help="Output the generated palette to stdout in GPL format",
    )
    parser.add_argument(
        "-o",
        "--palette-file",
        type=Path,
        default=None,
        help="Also write the generated palette to this GPL file",
    )
    parser.add_argument(
        "-x",
        "--eliminate-unused",
        action="store_true",
        help="Eliminate unused colors (currently has no effect)",
    )
    parser.add_argument(
        "-n", "--no-backup", action="store_true", help="Don't back up old files"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Merge and remap without writing any file",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Worker threads used to remap images",
    )
    parser.add_argument(
        "--recursive", action="store_true", help="Descend into subfolders"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Display debug information"
    )
    parser.add_argument("--version", action="version", version=_version_text())
    return parser


def print_report(report: JoinReport, stream=None) -> None:
    stream = stream or sys.stderr
    for result in report.files:
        tag = _STATUS_TAGS[result.status]
        detail = f": {result.message}" if result.message else ""
        print(f"[{tag}] {result.path}{detail}", file=stream)
    written = sum(1 for result in report.files if result.status == "written")
    print(
        f"Completed {written} file(s), {len(report.skipped)} skipped, "
        f"{len(report.failures)} failure(s); palette has {len(report.palette)} color(s).",
        file=stream,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.jobs < 1:
        parser.error("--jobs must be at least 1")

    input_files = expand_inputs(args.inputs, args.recursive)
    if not input_files:
        parser.error("No input files found")
    logger.debug("Expanded %s argument(s) into %s file(s)", len(args.inputs), len(input_files))

    options = JoinOptions(
        inputs=input_files,
        backup=not args.no_backup,
        eliminate_unused=args.eliminate_unused,
        dry_run=args.dry_run,
        jobs=args.jobs,
        palette_file=args.palette_file,
    )
    try:
        report = run_join(options)
    except OSError as exc:
        print(f"[FAIL] {exc}", file=sys.stderr)
        return 1

    print_report(report)
    if args.output_palette:
        sys.stdout.write(format_gpl_palette(report.palette))
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
