"""File helpers: input opening, file lists and atomic output."""

from __future__ import annotations

import contextlib
import gzip
import os
import shutil
import sys
import tempfile
from typing import IO, Iterator, List

import pysam

from .logging_utils import ConsistencyError, MergeVCFError, handle_critical_error, log_message

STDOUT = "-"


def open_text(path: str) -> IO[str]:
    """Open a ``.vcf`` or ``.vcf.gz`` input for reading text."""
    if path.endswith(".vcf.gz"):
        return gzip.open(path, "rt", encoding="utf-8")
    if path.endswith(".vcf"):
        return open(path, "r", encoding="utf-8")
    handle_critical_error(
        f"Input {path} must be a .vcf or .vcf.gz file",
        exc_cls=MergeVCFError,
    )


def read_file_list(path: str) -> List[str]:
    """Return the input paths listed in *path*, one per line, blank lines ignored."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            entries = [line.strip() for line in handle]
    except OSError as exc:
        handle_critical_error(f"Cannot read file list {path}: {exc}", exc_cls=MergeVCFError, exc_info=exc)
    return [entry for entry in entries if entry]


def check_inputs(paths: List[str]) -> None:
    if not paths:
        handle_critical_error("No input GVCF files specified", exc_cls=ConsistencyError)
    for path in paths:
        if not os.path.isfile(path):
            handle_critical_error(f"Input file not found: {path}", exc_cls=MergeVCFError)


def compress_and_index(plain_path: str, destination: str) -> None:
    """BGZF-compress *plain_path* into *destination* and build its tabix index."""
    try:
        pysam.tabix_compress(plain_path, destination, force=True)
        pysam.tabix_index(destination, preset="vcf", force=True)
    except Exception as exc:
        for path in (destination, destination + ".tbi"):
            if os.path.exists(path):
                os.remove(path)
        handle_critical_error(
            f"Failed to compress or index {destination}: {exc}",
            exc_cls=MergeVCFError,
            exc_info=exc,
        )


@contextlib.contextmanager
def atomic_output(destination: str) -> Iterator[IO[str]]:
    """Yield a text handle whose content ends up in *destination*.

    ``-`` writes to stdout. Otherwise the content goes to a temporary sibling
    file, moved into place (or compressed and indexed, for ``.gz``
    destinations) only when the block exits cleanly; on error the temporary
    file is removed and *destination* is left untouched.
    """
    if destination == STDOUT:
        yield sys.stdout
        sys.stdout.flush()
        return

    out_dir = os.path.dirname(os.path.abspath(destination))
    os.makedirs(out_dir, exist_ok=True)
    temp_out = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", delete=False, dir=out_dir, suffix=".tmp"
        ) as handle:
            temp_out = handle.name
            yield handle
        if destination.endswith(".gz"):
            compress_and_index(temp_out, destination)
        else:
            shutil.move(temp_out, destination)
            temp_out = None
        log_message(f"Wrote merged GVCF to {destination}")
    finally:
        if temp_out and os.path.exists(temp_out):
            os.remove(temp_out)


__all__ = [
    "STDOUT",
    "open_text",
    "read_file_list",
    "check_inputs",
    "compress_and_index",
    "atomic_output",
]
