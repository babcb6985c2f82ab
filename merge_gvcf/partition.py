"""Carve several position-sorted GVCF streams into independent batches.

Every :class:`Batch` covers one chromosome and a half-open position range
``[start, end)`` (``end`` is ``None`` when the batch runs to the end of the
chromosome). For each input stream it holds that stream's records in the
range, so a batch can be merged without looking at any other batch. Blocks
crossing a batch boundary are split with :func:`split_block`, the
continuation is kept for the next batch.

The first stream that still has records (the *lead* stream) decides the
chromosome and the range of each batch; every other stream follows it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Set

from .logging_utils import (
    ConsistencyError,
    MalformedRecordError,
    handle_critical_error,
    handle_non_critical_error,
    log_message,
    logger,
)
from .records import LineParser, Record

DEFAULT_BATCH_SIZE = 5000


def split_block(record: Record, new_end: int) -> Optional[Record]:
    """Truncate the block *record* so it ends at *new_end*.

    Returns the continuation (starting at ``new_end + 1`` with REF ``N``),
    or ``None`` when there is nothing to split: *record* is not a block,
    *new_end* is negative, or the block already ends at or before *new_end*.
    """
    if new_end < 0 or record.end is None or new_end >= record.end:
        return None
    if new_end < record.pos:
        handle_critical_error(
            f"Cannot split block at END={new_end}, it starts at {record.pos}: {record.describe()}",
            exc_cls=MalformedRecordError,
        )
    continuation = record.copy(pos=new_end + 1, ref="N")
    record.set_end(new_end)
    return continuation


class PositionBuffer:
    """Position-sorted records of one stream for the batch being built."""

    def __init__(self) -> None:
        self.records: List[Record] = []

    def __len__(self) -> int:
        return len(self.records)

    def add(self, record: Record) -> None:
        displaced: List[Record] = []
        while self.records and record.pos < self.records[-1].pos:
            displaced.append(self.records.pop())
        if displaced:
            logger.debug(
                "Record at %s:%d in stream %d arrived after POS %d, reinserting it",
                record.chrom,
                record.pos,
                record.stream,
                displaced[0].pos,
            )
        self._place(record)
        for previous in reversed(displaced):
            self._place(previous)

    def _place(self, record: Record) -> None:
        if not self.records:
            self.records.append(record)
            return

        previous = self.records[-1]
        if record.pos > previous.pos:
            # The stream covers record.pos itself, the previous block stops before.
            split_block(previous, record.pos - 1)
            self.records.append(record)
        elif record.is_non_variant:
            continuation = split_block(record, record.pos)
            if continuation is not None:
                self._place(continuation)
        elif previous.is_non_variant:
            continuation = split_block(previous, previous.pos)
            self.records[-1] = record
            if continuation is not None:
                self._place(continuation)
        else:
            # Two calls at one POS in a single stream; these are rare caller
            # quirks (usually two HET calls) and only the first one is kept.
            logger.debug("Dropping second variant call at same POS: %s", record.describe())


class StreamCursor:
    """Accepted records of one input stream, plus the record held for the next batch."""

    def __init__(
        self,
        lines: Iterable[str],
        parser: LineParser,
        index: int = 0,
        name: Optional[str] = None,
    ) -> None:
        self._lines = iter(lines)
        self.parser = parser
        self.index = index
        self.name = name or f"stream {index}"
        self.pending: Optional[Record] = None
        self.accepted = 0
        self.rejected = 0
        self._held: List[Record] = []

    def next_record(self) -> Optional[Record]:
        """Return the next accepted record read from the stream, or ``None`` at the end."""
        if self._held:
            return self._held.pop()
        for line in self._lines:
            if line.startswith("#") or not line.strip():
                continue
            record = self.parser.parse(line, stream=self.index)
            if record is None:
                self.rejected += 1
                continue
            self.accepted += 1
            return record
        return None

    def prime(self) -> Record:
        """Load the first accepted record; every stream must have one."""
        self.pending = self.next_record()
        if self.pending is None:
            handle_critical_error(
                f"Input {self.name} (stream {self.index}) doesn't have any usable data line",
                exc_cls=ConsistencyError,
            )
        return self.pending

    def push_back(self, record: Record) -> None:
        """Return *record* to the stream; the next :meth:`next_record` call yields it."""
        self._held.append(record)

    def take_pending(self) -> Optional[Record]:
        record, self.pending = self.pending, None
        return record


@dataclass
class Batch:
    """Records of every stream for one chromosome range."""

    index: int
    chrom: str
    end: Optional[int]
    records: List[List[Record]]

    @property
    def is_open(self) -> bool:
        return self.end is None

    def record_count(self) -> int:
        return sum(len(stream_records) for stream_records in self.records)


class BatchPartitioner:
    """Produce successive :class:`Batch` objects from a set of stream cursors.

    ``batch_size`` is the number of records read from the lead stream per
    batch; it can be changed between batches.
    """

    def __init__(self, cursors: Sequence[StreamCursor], batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if not cursors:
            raise ValueError("at least one input stream is required")
        self.cursors = list(cursors)
        self.batch_size = batch_size
        self.batches_produced = 0
        self._current_chrom: Optional[str] = None
        self._finished_chroms: Set[str] = set()
        self._skipped_chroms: Set[str] = set()
        self._lead_warned: Set[str] = set()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @batch_size.setter
    def batch_size(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"batch_size must be a positive integer, got {value}")
        self._batch_size = int(value)

    def _lead_index(self) -> Optional[int]:
        for i, cursor in enumerate(self.cursors):
            if cursor.pending is not None:
                return i
        return None

    def iter_batches(self) -> Iterator[Batch]:
        for cursor in self.cursors:
            cursor.prime()

        while True:
            lead = self._lead_index()
            if lead is None:
                break
            yield self._next_batch(lead)

        for cursor in self.cursors:
            log_message(
                f"{cursor.name}: {cursor.accepted} records merged, {cursor.rejected} lines filtered out",
                level=logging.DEBUG,
            )

    def _enter_chrom(self, chrom: str, lead: int) -> None:
        if chrom != self._current_chrom:
            if chrom in self._finished_chroms:
                handle_critical_error(
                    f"Found records for chromosome {chrom} in {self.cursors[lead].name} after all "
                    "records for it were merged; some earlier input probably has no record "
                    "for this chromosome while later inputs do, or the inputs are not sorted "
                    "in the same chromosome order",
                    exc_cls=ConsistencyError,
                )
            if lead > 0 and chrom in self._skipped_chroms:
                handle_critical_error(
                    f"Inputs 0-{lead - 1} don't have any record for chromosome {chrom}, but "
                    f"{self.cursors[lead].name} has it before chromosomes that were already "
                    "merged; the merged output would not be sorted",
                    exc_cls=ConsistencyError,
                )
            if self._current_chrom is not None:
                self._finished_chroms.add(self._current_chrom)
            self._current_chrom = chrom
            # Chromosomes still waiting in other streams when this one starts.
            for cursor in self.cursors:
                if cursor.pending is not None and cursor.pending.chrom != chrom:
                    self._skipped_chroms.add(cursor.pending.chrom)

        for cursor in self.cursors:
            if cursor.pending is not None and cursor.pending.chrom in self._finished_chroms:
                handle_critical_error(
                    f"{cursor.name} has records for chromosome {cursor.pending.chrom} after "
                    f"it was finished in the lead input (now on {chrom}); inputs must be sorted "
                    "in the same chromosome order",
                    exc_cls=ConsistencyError,
                )

        if lead > 0 and chrom not in self._lead_warned:
            self._lead_warned.add(chrom)
            handle_non_critical_error(
                f"Inputs 0-{lead - 1} don't have any record for chromosome {chrom}, "
                "check that they aren't truncated. Proceeding anyway."
            )

    def _next_batch(self, lead: int) -> Batch:
        chrom = self.cursors[lead].pending.chrom
        self._enter_chrom(chrom, lead)

        buffers = [PositionBuffer() for _ in self.cursors]
        end = self._fill_lead(self.cursors[lead], chrom, buffers[lead])
        for i in range(lead + 1, len(self.cursors)):
            self._fill_follower(self.cursors[i], chrom, end, buffers[i])

        self.batches_produced += 1
        return Batch(
            index=self.batches_produced,
            chrom=chrom,
            end=end,
            records=[buffer.records for buffer in buffers],
        )

    def _fill_lead(self, cursor: StreamCursor, chrom: str, buffer: PositionBuffer) -> Optional[int]:
        """Read up to ``batch_size`` records; return the exclusive end of the batch."""
        buffer.add(cursor.take_pending())
        for _ in range(self.batch_size):
            record = cursor.next_record()
            if record is None:
                return None
            if record.chrom != chrom:
                cursor.pending = record
                return None
            buffer.add(record)
        # One record too many was read, it starts the next batch.
        last = buffer.records.pop()
        # Normalization can move POS forward, so the lines that follow may
        # still sort before the boundary record.
        while True:
            record = cursor.next_record()
            if record is None:
                break
            if record.chrom != chrom or record.pos >= last.pos:
                cursor.push_back(record)
                break
            buffer.add(record)
        cursor.pending = last
        return last.pos

    def _fill_follower(
        self,
        cursor: StreamCursor,
        chrom: str,
        end: Optional[int],
        buffer: PositionBuffer,
    ) -> None:
        while True:
            record = cursor.take_pending()
            if record is None:
                record = cursor.next_record()
            if record is None:
                return
            if record.chrom != chrom or (end is not None and record.pos >= end):
                cursor.pending = record
                return
            continuation = split_block(record, end - 1) if end is not None else None
            buffer.add(record)
            if continuation is not None:
                cursor.pending = continuation
                return


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "Batch",
    "BatchPartitioner",
    "PositionBuffer",
    "StreamCursor",
    "split_block",
]
