"""Tests for line parsing, filtering and allele normalization."""

from __future__ import annotations

import pytest

from merge_gvcf.logging_utils import MalformedRecordError
from merge_gvcf.records import LineParser, normalize_alleles


def _line(chrom, pos, ref, alt, fmt="GT", *samples, filt=".", info="."):
    return "\t".join([chrom, str(pos), "rs1", ref, alt, "50", filt, info, fmt, *samples])


def test_parse_variant_clears_filter_and_info(parser):
    record = parser.parse(_line("chr1", 100, "A", "G", "GT:AD", "0/1:5,5", filt="PASS", info="DP=10") + "\n")

    assert record.chrom == "chr1"
    assert record.pos == 100
    assert record.id == "rs1"
    assert record.ref == "A"
    assert record.alts == ("G",)
    assert record.qual == "50"
    assert record.filter == "."
    assert record.original_filter == "PASS"
    assert record.info == "."
    assert record.format == ("GT", "AD")
    assert record.data == "0/1:5,5"
    assert record.end is None
    assert not record.is_block


def test_parse_keeps_every_sample_column_in_one_string(parser):
    record = parser.parse(_line("chr1", 5, "C", "T", "GT", "0/1", "1/1", "./."))
    assert record.data == "0/1\t1/1\t./."


def test_parse_block_keeps_end_info(parser):
    record = parser.parse(_line("chr1", 100, "A", "<NON_REF>", "GT:DP", "0/0:20", info="END=200;BLOCKAVG_min30p3a"))

    assert record.is_block
    assert record.is_non_variant
    assert record.end == 200
    assert record.info == "END=200;BLOCKAVG_min30p3a"


@pytest.mark.parametrize("filt", ["LowDepth", "HighDPFRatio", "LowQual", "PASS;LowQual", "LowGQX;LowDepth"])
def test_rejected_filter_keys_drop_the_line(parser, filt):
    assert parser.parse(_line("chr1", 10, "A", "G", "GT", "0/1", filt=filt)) is None


def test_other_filter_keys_are_accepted(parser):
    record = parser.parse(_line("chr1", 10, "A", "G", "GT", "0/1", filt="LowGQX"))
    assert record is not None
    assert record.original_filter == "LowGQX"


def test_phasing_only_format_is_rejected(parser):
    assert parser.parse(_line("chr1", 10, "A", "G", "GT:PGT:PID:PS", "0|1:0|1:10_A_G:10")) is None


def test_custom_rejected_filters_replace_defaults():
    parser = LineParser(rejected_filters={"RefCall"})
    assert parser.parse(_line("chr1", 10, "A", "G", "GT", "0/1", filt="LowDepth")) is not None
    assert parser.parse(_line("chr1", 10, "A", "G", "GT", "0/1", filt="RefCall")) is None


def test_too_few_columns_is_fatal(parser):
    with pytest.raises(MalformedRecordError, match="columns"):
        parser.parse("chr1\t10\t.\tA\tG\t50\tPASS\t.")


@pytest.mark.parametrize("pos", ["abc", "0", "-3"])
def test_invalid_position_is_fatal(parser, pos):
    with pytest.raises(MalformedRecordError):
        parser.parse("\t".join(["chr1", pos, ".", "A", "G", ".", ".", ".", "GT", "0/1"]))


def test_empty_ref_is_fatal(parser):
    with pytest.raises(MalformedRecordError, match="REF"):
        parser.parse(_line("chr1", 10, "", "G", "GT", "0/1"))


def test_end_before_position_is_fatal(parser):
    with pytest.raises(MalformedRecordError, match="END=5"):
        parser.parse(_line("chr1", 10, "A", "<NON_REF>", "GT", "0/0", info="END=5"))


def test_normalization_shifts_position(parser):
    record = parser.parse(_line("chr1", 10, "GCA", "GTA", "GT", "0/1"))

    assert record.pos == 11
    assert record.ref == "C"
    assert record.alts == ("T",)


def test_normalize_trims_trailing_before_leading():
    assert normalize_alleles("ATG", ["AG"]) == ("AT", ("A",), 0)
    assert normalize_alleles("CA", ["CAA"]) == ("C", ("CA",), 0)


def test_normalize_keeps_special_alleles_in_place():
    ref, alts, shift = normalize_alleles("ACG", ["ATG", "<NON_REF>"])

    assert ref == "C"
    assert alts == ("T", "<NON_REF>")
    assert shift == 1


def test_normalize_leaves_single_base_ref_alone():
    assert normalize_alleles("A", ["AT", "*"]) == ("A", ("AT", "*"), 0)


def test_set_end_rewrites_info(make_record):
    record = make_record(_line("chr1", 100, "A", "<NON_REF>", "GT", "0/0", info="END=200;BLOCKAVG_min30p3a"))

    record.set_end(150)

    assert record.end == 150
    assert record.info == "END=150;BLOCKAVG_min30p3a"


def test_set_end_on_variant_is_rejected(make_record):
    record = make_record(_line("chr1", 100, "A", "G", "GT", "0/1"))
    with pytest.raises(ValueError):
        record.set_end(120)


def test_to_line_reflects_normalized_fields(make_record):
    record = make_record(_line("chr1", 10, "GCA", "GTA", "GT", "0/1", filt="PASS"))
    assert record.to_line() == "chr1\t11\trs1\tC\tT\t50\t.\t.\tGT\t0/1"
