"""Record model and line parser for GVCF body lines.

A :class:`Record` keeps the nine fixed VCF columns in a lightly structured
form and every sample column as one opaque string: data columns are only
split at merge time, and only when the record's alleles or FORMAT differ
from the merged ones.

:class:`LineParser` turns a raw body line into a :class:`Record`, or rejects
it when its FILTER or FORMAT makes it unusable. Accepted records get their
FILTER cleared and, unless they are non-variant blocks, their INFO too. REF
and ALT are normalized by trimming bases shared by every allele; variants are
*not* left-aligned, the callers are trusted to be internally consistent.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from typing import Collection, Iterable, List, Optional, Tuple

from .filtering import DEFAULT_REJECTED_FILTERS, DEGENERATE_FORMATS
from .logging_utils import MalformedRecordError, handle_critical_error

MISSING = "."

# Order matters: merged ALT lists end with these, in this order.
SPANNING_DELETION = "*"
GATK_NON_REF = "<NON_REF>"
DV_NON_REF = "<*>"
SPECIAL_ALLELES: Tuple[str, ...] = (SPANNING_DELETION, GATK_NON_REF, DV_NON_REF)

# ALT values of lines that do not call a variant.
NON_VARIANT_ALTS = frozenset({MISSING, GATK_NON_REF, DV_NON_REF})

REQUIRED_COLUMNS = 10

_END_PATTERN = re.compile(r"^END=(\d+)")


@dataclass
class Record:
    """One GVCF body line reduced to what the merge needs."""

    chrom: str
    pos: int
    id: str
    ref: str
    alts: Tuple[str, ...]
    qual: str
    filter: str
    info: str
    format: Tuple[str, ...]
    data: str
    end: Optional[int] = None
    original_filter: str = MISSING
    stream: int = 0

    @property
    def alt_field(self) -> str:
        return ",".join(self.alts)

    @property
    def format_field(self) -> str:
        return ":".join(self.format)

    @property
    def is_block(self) -> bool:
        """True for a non-variant block, ie a line carrying ``END=``."""
        return self.end is not None

    @property
    def is_non_variant(self) -> bool:
        return len(self.alts) == 1 and self.alts[0] in NON_VARIANT_ALTS

    def set_end(self, new_end: int) -> None:
        """Move the END of this block to *new_end*, keeping the rest of INFO."""
        if self.end is None:
            raise ValueError(f"{self.chrom}:{self.pos} is not a block, cannot set END")
        self.info = _END_PATTERN.sub(f"END={new_end}", self.info, count=1)
        self.end = new_end

    def copy(self, **changes) -> "Record":
        return dataclasses.replace(self, **changes)

    def to_line(self) -> str:
        return "\t".join(
            [
                self.chrom,
                str(self.pos),
                self.id,
                self.ref,
                self.alt_field,
                self.qual,
                self.filter,
                self.info,
                self.format_field,
                self.data,
            ]
        )

    def describe(self) -> str:
        """Short human readable identification used in error messages."""
        return f"stream {self.stream} at {self.chrom}:{self.pos} ({self.to_line()})"


def normalize_alleles(ref: str, alts: Iterable[str]) -> Tuple[str, Tuple[str, ...], int]:
    """Trim bases shared by REF and every concrete ALT.

    Trailing bases are removed first, then leading ones; every allele keeps
    at least one base. Special alleles are left untouched and keep their
    index. Returns ``(ref, alts, shift)`` where *shift* is the number of
    leading bases removed, ie how much POS must be increased.
    """
    alts = tuple(alts)
    specials = [(i, alt) for i, alt in enumerate(alts) if alt in SPECIAL_ALLELES]
    concrete: List[str] = [alt for alt in alts if alt not in SPECIAL_ALLELES]

    while len(ref) >= 2 and all(len(alt) >= 2 and alt[-1] == ref[-1] for alt in concrete):
        ref = ref[:-1]
        concrete = [alt[:-1] for alt in concrete]

    shift = 0
    while len(ref) >= 2 and all(len(alt) >= 2 and alt[0] == ref[0] for alt in concrete):
        ref = ref[1:]
        concrete = [alt[1:] for alt in concrete]
        shift += 1

    for index, alt in specials:
        concrete.insert(index, alt)
    return ref, tuple(concrete), shift


class LineParser:
    """Parse, filter and normalize GVCF body lines."""

    def __init__(
        self,
        rejected_filters: Optional[Collection[str]] = None,
        degenerate_formats: Optional[Collection[str]] = None,
    ) -> None:
        self.rejected_filters = frozenset(
            DEFAULT_REJECTED_FILTERS if rejected_filters is None else rejected_filters
        )
        self.degenerate_formats = frozenset(
            DEGENERATE_FORMATS if degenerate_formats is None else degenerate_formats
        )

    def _malformed(self, message: str, line: str, stream: int) -> None:
        handle_critical_error(
            f"Malformed line in stream {stream}: {message}:\n{line}",
            exc_cls=MalformedRecordError,
        )

    def is_rejected(self, filter_field: str, format_field: str) -> bool:
        if format_field in self.degenerate_formats:
            return True
        if not self.rejected_filters:
            return False
        return any(key in self.rejected_filters for key in filter_field.split(";"))

    def parse(self, line: str, stream: int = 0) -> Optional[Record]:
        """Return the accepted :class:`Record` for *line*, or ``None`` if rejected."""
        line = line.rstrip("\r\n")
        fields = line.split("\t", REQUIRED_COLUMNS - 1)
        if len(fields) < REQUIRED_COLUMNS:
            self._malformed(
                f"expected at least {REQUIRED_COLUMNS} tab-separated columns, found {len(fields)}",
                line,
                stream,
            )
        chrom, pos_text, vid, ref, alt, qual, filter_field, info, format_field, data = fields

        if self.is_rejected(filter_field, format_field):
            return None

        try:
            pos = int(pos_text)
        except ValueError:
            self._malformed(f"POS {pos_text!r} is not an integer", line, stream)
        if pos < 1:
            self._malformed(f"POS {pos} must be >= 1", line, stream)
        if not ref:
            self._malformed("REF is empty", line, stream)

        end = None
        match = _END_PATTERN.match(info)
        if match:
            end = int(match.group(1))
        else:
            info = MISSING

        alts = tuple(alt.split(","))
        if len(ref) >= 2:
            ref, alts, shift = normalize_alleles(ref, alts)
            pos += shift

        if end is not None and end < pos:
            self._malformed(f"END={end} is smaller than POS {pos}", line, stream)

        return Record(
            chrom=chrom,
            pos=pos,
            id=vid,
            ref=ref,
            alts=alts,
            qual=qual,
            filter=MISSING,
            info=info,
            format=tuple(format_field.split(":")),
            data=data,
            end=end,
            original_filter=filter_field,
            stream=stream,
        )


__all__ = [
    "MISSING",
    "SPANNING_DELETION",
    "GATK_NON_REF",
    "DV_NON_REF",
    "SPECIAL_ALLELES",
    "NON_VARIANT_ALTS",
    "Record",
    "LineParser",
    "normalize_alleles",
]
