"""Read input GVCF headers and build the header of the merged GVCF."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from . import vcfpy
from .logging_utils import ConsistencyError, MergeVCFError, handle_critical_error, log_message

MERGE_HEADER_KEY = "mergeGVCFs"

# The only INFO keys left in merged lines; every other INFO definition is dropped.
KEPT_INFO_IDS = frozenset({"END", "BLOCKAVG_min30p3a"})

FIXED_COLUMNS: Tuple[str, ...] = ("#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO", "FORMAT")

_REGULAR_CONTIG = re.compile(r"^(?:chr)?(?:\d+|X|Y|M|MT)$")


@dataclass
class InputHeader:
    """Header lines and sample names of one input file."""

    path: str
    lines: list = field(default_factory=list)
    samples: List[str] = field(default_factory=list)


def is_regular_contig(name: str) -> bool:
    """True for autosomes, sex chromosomes and mitochondria, with or without ``chr``."""
    return bool(_REGULAR_CONTIG.match(name))


def read_header(path: str) -> InputHeader:
    """Parse the header of *path* with vcfpy."""
    try:
        with vcfpy.Reader.from_path(path) as reader:
            header = reader.header
            lines = list(header.lines)
            samples = list(header.samples.names)
    except Exception as exc:
        handle_critical_error(
            f"Failed to read VCF header from {path}: {exc}",
            exc_cls=MergeVCFError,
            exc_info=exc,
        )
    if not samples:
        handle_critical_error(
            f"Input {path} doesn't have any sample column",
            exc_cls=ConsistencyError,
        )
    return InputHeader(path=path, lines=lines, samples=samples)


def sample_roster(headers: Sequence[InputHeader]) -> Tuple[int, ...]:
    """Number of sample columns contributed by each input, in input order."""
    return tuple(len(header.samples) for header in headers)


def build_merged_header(
    headers: Sequence[InputHeader],
    *,
    command_line: Optional[str] = None,
    clean_contigs: bool = False,
) -> List[str]:
    """Return the lines (without newline) of the merged header.

    Meta-information comes from the first input, minus the INFO definitions
    the merged body doesn't use and, with *clean_contigs*, minus the
    contigs that aren't regular chromosomes. ``##mergeGVCFs`` lines of the
    other inputs are carried over, then one is added for this run.
    """
    if not headers:
        raise ValueError("at least one input header is required")

    first = headers[0]
    lines: List[str] = []
    dropped_contigs = 0
    for line in first.lines:
        if isinstance(line, vcfpy.header.InfoHeaderLine) and line.id not in KEPT_INFO_IDS:
            continue
        if (
            clean_contigs
            and isinstance(line, vcfpy.header.ContigHeaderLine)
            and not is_regular_contig(line.id)
        ):
            dropped_contigs += 1
            continue
        lines.append(line.serialize())
    if dropped_contigs:
        log_message(f"Dropped {dropped_contigs} non-regular contig line(s) from the header")

    for other in headers[1:]:
        for line in other.lines:
            if line.key == MERGE_HEADER_KEY:
                lines.append(f"##{line.key}={line.value}")

    if command_line:
        lines.append(f'##{MERGE_HEADER_KEY}=<commandLine="{command_line}">')

    samples = [name for header in headers for name in header.samples]
    lines.append("\t".join(FIXED_COLUMNS + tuple(samples)))
    return lines


__all__ = [
    "MERGE_HEADER_KEY",
    "KEPT_INFO_IDS",
    "InputHeader",
    "is_regular_contig",
    "read_header",
    "sample_roster",
    "build_merged_header",
]
