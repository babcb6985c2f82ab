"""Shared pytest fixtures for the merge_gvcf test suite."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

import pytest

from merge_gvcf.logging_utils import logger
from merge_gvcf.partition import StreamCursor
from merge_gvcf.records import LineParser

HEADER_LINES = (
    "##fileformat=VCFv4.2",
    '##FILTER=<ID=PASS,Description="All filters passed">',
    '##FILTER=<ID=LowDepth,Description="Low depth">',
    '##INFO=<ID=END,Number=1,Type=Integer,Description="End position of the region">',
    '##INFO=<ID=DP,Number=1,Type=Integer,Description="Total depth">',
    '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
    '##FORMAT=<ID=DP,Number=1,Type=Integer,Description="Read depth">',
    "##contig=<ID=chr1,length=1000>",
    "##contig=<ID=chr2,length=1000>",
    "##contig=<ID=chrUn_gl000220,length=500>",
)


@pytest.fixture
def parser():
    return LineParser()


@pytest.fixture
def make_record(parser):
    """Parse one body line into a record of the given stream."""

    def _make(line: str, stream: int = 0):
        record = parser.parse(line, stream=stream)
        assert record is not None
        return record

    return _make


@pytest.fixture
def make_cursors(parser):
    """Build one cursor per list of body lines."""

    def _make(*streams: Sequence[str]):
        return [StreamCursor(lines, parser, index=i) for i, lines in enumerate(streams)]

    return _make


@pytest.fixture
def write_gvcf(tmp_path: Path):
    """Write a GVCF with the shared header; returns its path as a string."""

    def _write(name: str, samples: Sequence[str], body: Iterable[str], extra_header: Iterable[str] = ()) -> str:
        path = tmp_path / name
        columns = ["#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO", "FORMAT", *samples]
        lines = [*HEADER_LINES, *extra_header, "\t".join(columns), *body]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def merge_log(caplog):
    """caplog wired to the non-propagating ``gvcf_merger`` logger."""
    logger.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger=logger.name)
    try:
        yield caplog
    finally:
        logger.removeHandler(caplog.handler)
