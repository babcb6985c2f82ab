"""Command-line entrypoint for the GVCF merger."""
from __future__ import annotations

import argparse
import contextlib
import datetime
import logging
import sys
from typing import List, Optional, Sequence

from .filtering import prepare_rejected_filter_set
from .headers import build_merged_header, read_header, sample_roster
from .io_utils import STDOUT, atomic_output, check_inputs, open_text, read_file_list
from .logging_utils import (
    MergeVCFError,
    configure_logging,
    handle_critical_error,
    log_message,
)
from .partition import StreamCursor
from .pipeline import DEFAULT_JOBS, MergeOptions, merge_streams
from .records import LineParser


def _positive_int(arg: str) -> int:
    try:
        value = int(arg)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{arg!r} is not an integer") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"{arg} must be a positive integer")
    return value


def parse_arguments(argv: Optional[Sequence[str]] = None):
    """Parse CLI args for the GVCF merger."""
    parser = argparse.ArgumentParser(
        prog="merge_gvcf",
        description=(
            "Merge GVCF files into a single multi-sample GVCF. Inputs must be sorted by "
            "position, with chromosomes in the same order."
        ),
    )
    parser.add_argument("input_gvcfs", nargs="*", help="Input .vcf or .vcf.gz GVCF files.")
    parser.add_argument(
        "--filelist",
        dest="file_list",
        help="File listing input GVCFs, one path per line (added after positional inputs).",
    )
    parser.add_argument(
        "-o",
        "--output",
        dest="output",
        default=STDOUT,
        help="Merged GVCF path; '.gz' outputs are BGZF-compressed and tabix-indexed. Defaults to stdout.",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=_positive_int,
        default=DEFAULT_JOBS,
        help=f"Number of parallel merge workers (default {DEFAULT_JOBS}).",
    )
    parser.add_argument(
        "--batch-size",
        type=_positive_int,
        default=None,
        help="Fixed number of lead-input lines per batch. Adaptive when omitted.",
    )
    parser.add_argument(
        "--reject-filter",
        action="append",
        dest="rejected_filters",
        default=[],
        help="FILTER key making a line unusable (repeatable). Replaces the defaults.",
    )
    parser.add_argument(
        "--clean-headers",
        action="store_true",
        help="Drop contig header lines that aren't regular chromosomes.",
    )
    parser.add_argument(
        "--threads",
        dest="use_threads",
        action="store_true",
        help="Merge batches on threads instead of processes.",
    )
    parser.add_argument("--log-file", dest="log_file", help="Also write the log to this file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug-level logging.")
    args = parser.parse_args(argv)

    if not args.input_gvcfs and not args.file_list:
        parser.error("No input GVCF files specified.")
    return args


def build_command_line(argv: Sequence[str]) -> str:
    return " ".join(["merge_gvcf", *argv]).replace('"', "'")


def run(
    input_files: List[str],
    output: str = STDOUT,
    *,
    options: Optional[MergeOptions] = None,
    clean_headers: bool = False,
    command_line: Optional[str] = None,
) -> int:
    """Merge *input_files* into *output*; return the number of batches merged."""
    options = options or MergeOptions()
    check_inputs(input_files)

    headers = [read_header(path) for path in input_files]
    roster = sample_roster(headers)
    header_lines = build_merged_header(headers, command_line=command_line, clean_contigs=clean_headers)
    log_message(f"Inputs: {len(input_files)} file(s), {sum(roster)} sample(s)")

    parser = LineParser(rejected_filters=prepare_rejected_filter_set(options.rejected_filters))
    with contextlib.ExitStack() as stack:
        cursors = [
            StreamCursor(stack.enter_context(open_text(path)), parser, index=i, name=path)
            for i, path in enumerate(input_files)
        ]
        with atomic_output(output) as handle:
            handle.write("\n".join(header_lines) + "\n")
            batches = merge_streams(cursors, roster, handle.write, options)
    return batches


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Run the merger from the command line; exits with status 1 on failure."""
    if argv is None:
        argv = sys.argv[1:]
    args = parse_arguments(argv)
    configure_logging(
        log_level=logging.DEBUG if args.verbose else logging.INFO,
        log_file=args.log_file,
        enable_file_logging=bool(args.log_file),
        enable_console=True,
    )

    try:
        input_files = list(args.input_gvcfs)
        if args.file_list:
            input_files.extend(read_file_list(args.file_list))

        log_message("Script Execution Log - " + datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
        options = MergeOptions(
            jobs=args.jobs,
            batch_size=args.batch_size,
            rejected_filters=tuple(args.rejected_filters),
            use_threads=args.use_threads,
        )
        try:
            batches = run(
                input_files,
                args.output,
                options=options,
                clean_headers=args.clean_headers,
                command_line=build_command_line(argv),
            )
        except MergeVCFError:
            raise
        except OSError as exc:
            handle_critical_error(f"Filesystem error: {exc}", exc_cls=MergeVCFError, exc_info=exc)
        log_message(f"Merge completed successfully, {batches} batch(es) written")
    except MergeVCFError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


__all__ = ["parse_arguments", "build_command_line", "run", "main"]
