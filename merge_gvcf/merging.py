"""Merge one batch of per-stream records into multi-sample GVCF lines.

:func:`merge_batch` walks the streams of a :class:`~merge_gvcf.partition.Batch`
position by position. At each step the records starting at the smallest
position form a *group* (at most one record per stream):

* if every record of the group is a non-variant block and the blocks overlap
  beyond that position, one merged block is emitted by
  :func:`merge_block_group`;
* otherwise one line is emitted for that single position by
  :func:`merge_variant_group`, which unifies the alleles and rewrites every
  sample's data to the merged REF/ALT/FORMAT.

Blocks are truncated where the next record of any stream starts, the rest of
the block stays queued for the following steps.

Nothing here touches shared state, batches can be merged in any process.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .formats import (
    ALLELIC_DEPTH_KEYS,
    DEPTH_KEY,
    GENOTYPE_KEY,
    LIKELIHOOD_KEY,
    MIN_DEPTH_KEY,
    NO_REFERENCE_VALUE_KEYS,
    PASSTHROUGH_KEYS,
    SAMPLE_FILTER_KEY,
    FormatCatalog,
)
from .logging_utils import (
    ConsistencyError,
    MalformedRecordError,
    MergeConflictError,
    handle_critical_error,
    logger,
)
from .partition import Batch, split_block
from .records import MISSING, SPECIAL_ALLELES, Record

# PL given to genotypes involving an allele the sample was never tested for.
UNKNOWN_ALLELE_LIKELIHOOD = "255"

_NO_CALLS = frozenset({".", "./.", ".|."})
_MISSING_ONLY = re.compile(r"^[.,]+$")
_GT_SEPARATORS = re.compile(r"([/|])")
_KNOWN_KEYS = PASSTHROUGH_KEYS | set(ALLELIC_DEPTH_KEYS) | {GENOTYPE_KEY, LIKELIHOOD_KEY}

Group = Sequence[Optional[Record]]


def canonical_alleles(alleles: Iterable[str]) -> Tuple[str, ...]:
    """Sort *alleles* by length then alphabetically, special alleles last.

    Returns ``(".",)`` when there is no allele at all.
    """
    present = set(alleles)
    concrete = sorted(
        (allele for allele in present if allele not in SPECIAL_ALLELES and allele != MISSING),
        key=lambda allele: (len(allele), allele),
    )
    specials = [allele for allele in SPECIAL_ALLELES if allele in present]
    return tuple(concrete + specials) or (MISSING,)


def unify_alleles(group: Group, longest_ref: str) -> List[Optional[Tuple[str, ...]]]:
    """Return every record's ALT alleles rewritten against *longest_ref*.

    A shorter REF must be a prefix of *longest_ref*; the missing suffix is
    appended to every concrete ALT of that record.
    """
    unified: List[Optional[Tuple[str, ...]]] = []
    for record in group:
        if record is None:
            unified.append(None)
            continue
        if record.is_non_variant or record.ref == longest_ref:
            unified.append(record.alts)
            continue
        if len(record.ref) >= len(longest_ref) or not longest_ref.startswith(record.ref):
            handle_critical_error(
                f"Longest REF {longest_ref} doesn't start with REF {record.ref} of "
                f"{record.describe()}",
                exc_cls=MalformedRecordError,
            )
        suffix = longest_ref[len(record.ref):]
        unified.append(
            tuple(alt if alt in SPECIAL_ALLELES else alt + suffix for alt in record.alts)
        )
    return unified


def remap_genotype(value: str, alts: Sequence[str], allele_index: Dict[str, int], record: Record) -> str:
    """Rewrite the allele numbers of a GT value for the merged ALT list."""
    if value in _NO_CALLS:
        return value
    out: List[str] = []
    for token in _GT_SEPARATORS.split(value):
        if token in {"/", "|", MISSING}:
            out.append(token)
            continue
        if not token.isdigit():
            handle_critical_error(
                f"Cannot parse GT {value!r} in {record.describe()}",
                exc_cls=MalformedRecordError,
            )
        allele = int(token)
        if allele == 0:
            out.append("0")
            continue
        if allele > len(alts) or alts[allele - 1] == MISSING:
            handle_critical_error(
                f"GT {value!r} refers to allele {allele} which doesn't exist in {record.describe()}",
                exc_cls=MalformedRecordError,
            )
        out.append(str(1 + allele_index[alts[allele - 1]]))
    return "".join(out)


def remap_allelic_depths(
    key: str,
    value: str,
    new_to_old: Sequence[Optional[int]],
) -> str:
    """Expand an AD-like value to the merged alleles, ``0`` for alleles absent from the sample."""
    depths = value.split(",")
    entries: List[str] = []
    if key not in NO_REFERENCE_VALUE_KEYS:
        entries.append(depths[0])
        depths = depths[1:]
    for old in new_to_old:
        if old is None:
            entries.append("0")
        elif old < len(depths) and depths[old]:
            entries.append(depths[old])
        else:
            entries.append(MISSING)
    # VAF without any ALT allele has no entry left.
    return ",".join(entries) or MISSING


def remap_likelihoods(value: str, new_to_old: Sequence[Optional[int]]) -> Tuple[str, bool]:
    """Recompute PL for the merged alleles.

    The PL of genotype x/y (x <= y, 0 is REF) sits at index ``x + y*(y+1)/2``.
    Genotypes involving an allele the sample doesn't have get 255. If the
    source PL lacks a value it should have, the whole PL is replaced by
    missing markers since the remaining values cannot be attributed.
    Returns ``(pl, complete)``.
    """
    source = value.split(",")

    def old_allele(new_allele: int) -> Optional[int]:
        if new_allele == 0:
            return 0
        old = new_to_old[new_allele - 1]
        return None if old is None else old + 1

    out: List[str] = []
    complete = True
    for y in range(len(new_to_old) + 1):
        old_y = old_allele(y)
        for x in range(y + 1):
            old_x = old_allele(x)
            if old_x is None or old_y is None:
                out.append(UNKNOWN_ALLELE_LIKELIHOOD)
                continue
            low, high = sorted((old_x, old_y))
            source_index = low + high * (high + 1) // 2
            if source_index < len(source) and source[source_index]:
                out.append(source[source_index])
            else:
                out.append(MISSING)
                complete = False
    if not complete:
        return ",".join([MISSING] * len(out)), False
    return ",".join(out), True


def _remap_sample(
    values: Sequence[str],
    record: Record,
    alts: Sequence[str],
    allele_index: Dict[str, int],
    new_to_old: Sequence[Optional[int]],
    format_index: Dict[str, int],
) -> str:
    fixed: List[Optional[str]] = [None] * len(format_index)

    # Data can be shorter than FORMAT when trailing values are unknown.
    for key, value in zip(record.format, values):
        if key == MIN_DEPTH_KEY:
            # MIN_DP follows DP in FORMAT, so it wins over the DP value.
            if DEPTH_KEY in format_index:
                fixed[format_index[DEPTH_KEY]] = value
            continue
        if key not in _KNOWN_KEYS:
            handle_critical_error(
                f"Unknown FORMAT key {key} in {record.describe()}",
                exc_cls=MalformedRecordError,
            )
        slot = format_index.get(key)
        if slot is None:
            continue
        if key == GENOTYPE_KEY:
            fixed[slot] = remap_genotype(value, alts, allele_index, record)
        elif key in PASSTHROUGH_KEYS:
            fixed[slot] = value
        elif key in ALLELIC_DEPTH_KEYS:
            fixed[slot] = remap_allelic_depths(key, value, new_to_old)
        else:
            likelihoods, complete = remap_likelihoods(value, new_to_old)
            if not complete:
                logger.debug(
                    "PL %s has the wrong number of values, replaced by missing values in %s",
                    value,
                    record.describe(),
                )
            fixed[slot] = likelihoods

    if (
        SAMPLE_FILTER_KEY in format_index
        and SAMPLE_FILTER_KEY not in record.format
        and record.original_filter not in {"", MISSING, "PASS"}
    ):
        fixed[format_index[SAMPLE_FILTER_KEY]] = record.original_filter

    # Prune trailing missing values, but never GT.
    while len(fixed) > 1 and (fixed[-1] is None or _MISSING_ONLY.match(fixed[-1])):
        fixed.pop()

    for key in ALLELIC_DEPTH_KEYS:
        slot = format_index.get(key)
        if slot is not None and slot < len(fixed) and not fixed[slot]:
            count = len(new_to_old) + (0 if key in NO_REFERENCE_VALUE_KEYS else 1)
            fixed[slot] = ",".join([MISSING] * count) or MISSING

    return ":".join(MISSING if value is None else value for value in fixed)


def _group_chrom(group: Group) -> str:
    return next(record.chrom for record in group if record is not None)


def _check_columns(record: Record, expected: int) -> None:
    found = record.data.count("\t") + 1
    if found != expected:
        handle_critical_error(
            f"Expected {expected} data column(s) but found {found} in {record.describe()}",
            exc_cls=MalformedRecordError,
        )


def _check_roster(group: Group, roster: Sequence[int]) -> None:
    if len(group) != len(roster):
        handle_critical_error(
            f"Got records for {len(group)} streams but the sample roster has {len(roster)} entries",
            exc_cls=ConsistencyError,
        )


def merge_variant_group(
    group: Group,
    roster: Sequence[int],
    longest_ref: str,
    format_keys: Sequence[str],
) -> str:
    """Merge the records of one position into a single line (without newline)."""
    _check_roster(group, roster)
    first = next(record for record in group if record is not None)

    unified = unify_alleles(group, longest_ref)
    new_alts = canonical_alleles(
        allele for alts in unified if alts is not None for allele in alts
    )
    allele_index = {allele: i for i, allele in enumerate(new_alts)}
    format_keys = tuple(format_keys)
    if MIN_DEPTH_KEY in format_keys:
        raise ValueError(f"{MIN_DEPTH_KEY} cannot be an output FORMAT key")
    format_index = {key: i for i, key in enumerate(format_keys)}

    fields = [
        first.chrom,
        str(first.pos),
        MISSING,
        longest_ref,
        ",".join(new_alts),
        MISSING,
        MISSING,
        MISSING,
        ":".join(format_keys),
    ]

    for stream, record in enumerate(group):
        if record is None:
            fields.extend([MISSING] * roster[stream])
            continue
        _check_columns(record, roster[stream])
        alts = unified[stream]
        if record.ref == longest_ref and alts == new_alts and record.format == format_keys:
            fields.append(record.data)
            continue

        if MIN_DEPTH_KEY in record.format and DEPTH_KEY in record.format:
            if record.format.index(MIN_DEPTH_KEY) < record.format.index(DEPTH_KEY):
                handle_critical_error(
                    f"{MIN_DEPTH_KEY} comes before {DEPTH_KEY} in FORMAT of {record.describe()}",
                    exc_cls=MalformedRecordError,
                )

        new_to_old: List[Optional[int]] = [None] * len(new_alts)
        for old, allele in enumerate(alts):
            if allele != MISSING:
                new_to_old[allele_index[allele]] = old
        if new_alts == (MISSING,):
            new_to_old = []

        for column in record.data.split("\t"):
            fields.append(
                _remap_sample(
                    column.split(":"),
                    record,
                    alts,
                    allele_index,
                    new_to_old,
                    format_index,
                )
            )

    return "\t".join(fields)


def merge_block_group(group: Group, roster: Sequence[int], longest_ref: str) -> str:
    """Merge overlapping non-variant blocks that share POS, END and FORMAT."""
    _check_roster(group, roster)
    first = next(record for record in group if record is not None)
    fields = [
        first.chrom,
        str(first.pos),
        first.id,
        longest_ref,
        first.alt_field,
        first.qual,
        first.filter,
        first.info,
        first.format_field,
    ]
    for stream, record in enumerate(group):
        if record is None:
            fields.extend([MISSING] * roster[stream])
            continue
        if record.info != first.info:
            handle_critical_error(
                f"INFO mismatch while merging blocks: {first.info} vs {record.info} in "
                f"{record.describe()}",
                exc_cls=MergeConflictError,
            )
        if record.format != first.format:
            handle_critical_error(
                f"FORMAT mismatch while merging blocks: {first.format_field} vs "
                f"{record.format_field} in {record.describe()}",
                exc_cls=MergeConflictError,
            )
        _check_columns(record, roster[stream])
        fields.append(record.data)
    return "\t".join(fields)


def merge_stream_records(per_stream: Sequence[Sequence[Record]], roster: Sequence[int]) -> Iterator[str]:
    """Yield merged lines (without newline) for position-sorted per-stream records."""
    if len(per_stream) != len(roster):
        handle_critical_error(
            f"Got records for {len(per_stream)} streams but the sample roster has "
            f"{len(roster)} entries",
            exc_cls=ConsistencyError,
        )
    queues: List[Deque[Record]] = [deque(records) for records in per_stream]
    unfinished = sum(1 for queue in queues if queue)

    while unfinished:
        group: List[Optional[Record]] = [None] * len(queues)
        smallest: Optional[int] = None
        block_end = 0
        longest_ref = ""
        catalog = FormatCatalog()

        for stream, queue in enumerate(queues):
            if not queue:
                continue
            record = queue[0]
            if smallest is None or record.pos < smallest:
                group = [None] * len(queues)
                group[stream] = record
                longest_ref = record.ref
                catalog = FormatCatalog([record.format])
                if record.is_block:
                    # A previously seen stream may start inside this block.
                    if smallest is None or record.end < smallest:
                        block_end = record.end
                    else:
                        block_end = smallest - 1
                else:
                    block_end = record.pos
                smallest = record.pos
            elif record.pos == smallest:
                group[stream] = record
                if len(record.ref) > len(longest_ref) or longest_ref == "N":
                    longest_ref = record.ref
                catalog.add(record.format)
                if record.is_block:
                    block_end = min(block_end, record.end)
                else:
                    block_end = record.pos
            elif record.pos <= block_end:
                block_end = record.pos - 1

        for stream, record in enumerate(group):
            if record is None:
                continue
            continuation = split_block(record, block_end)
            if continuation is not None:
                queues[stream][0] = continuation
            else:
                queues[stream].popleft()
                if not queues[stream]:
                    unfinished -= 1

        if smallest < block_end:
            if not catalog.is_uniform():
                handle_critical_error(
                    f"Cannot merge non-variant blocks at {_group_chrom(group)}:{smallest}, "
                    f"they have different FORMATs: {', '.join(catalog.formats)}",
                    exc_cls=MergeConflictError,
                )
            yield merge_block_group(group, roster, longest_ref)
        else:
            yield merge_variant_group(group, roster, longest_ref, catalog.canonical())


def merge_batch(batch: Batch, roster: Sequence[int]) -> str:
    """Merge a whole batch and return its output text, one newline-terminated line per position."""
    lines = [line + "\n" for line in merge_stream_records(batch.records, roster)]
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Batch %d (%s, %d records) merged into %d lines",
            batch.index,
            batch.chrom,
            batch.record_count(),
            len(lines),
        )
    return "".join(lines)


__all__ = [
    "UNKNOWN_ALLELE_LIKELIHOOD",
    "canonical_alleles",
    "unify_alleles",
    "remap_genotype",
    "remap_allelic_depths",
    "remap_likelihoods",
    "merge_variant_group",
    "merge_block_group",
    "merge_stream_records",
    "merge_batch",
]
