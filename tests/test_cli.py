"""End-to-end tests for the merge_gvcf command line."""

from __future__ import annotations

import gzip
import os

import pytest

from merge_gvcf import cli


def _line(chrom, pos, ref, alt, fmt, *samples, filt=".", info="."):
    return "\t".join([chrom, str(pos), ".", ref, alt, ".", filt, info, fmt, *samples])


@pytest.fixture
def inputs(write_gvcf):
    first = write_gvcf(
        "first.vcf",
        ["S1"],
        [
            _line("chr1", 100, "A", "<NON_REF>", "GT:DP", "0/0:20", info="END=200"),
            _line("chr1", 201, "T", "C", "GT:DP", "1/1:8", filt="LowQual"),
            _line("chr2", 10, "G", "GA", "GT:DP", "0/1:15"),
        ],
    )
    second = write_gvcf(
        "second.vcf",
        ["S2"],
        [
            _line("chr1", 150, "C", "T", "GT:DP", "0/1:30"),
            _line("chr2", 10, "G", "GT", "GT:DP", "1/1:11"),
        ],
    )
    return first, second


EXPECTED_BODY = [
    "chr1\t100\t.\tA\t<NON_REF>\t.\t.\tEND=149\tGT:DP\t0/0:20\t.",
    "chr1\t150\t.\tC\tT,<NON_REF>\t.\t.\t.\tGT:DP\t0/0:20\t0/1:30",
    "chr1\t151\t.\tN\t<NON_REF>\t.\t.\tEND=200\tGT:DP\t0/0:20\t.",
    "chr2\t10\t.\tG\tGA,GT\t.\t.\t.\tGT:DP\t0/1:15\t2/2:11",
]


def _body(text):
    return [line for line in text.splitlines() if not line.startswith("#")]


def test_cli_merges_into_plain_output(tmp_path, inputs):
    out = tmp_path / "merged.vcf"

    cli.main([*inputs, "-o", str(out), "--threads", "-j", "2"])

    text = out.read_text(encoding="utf-8")
    assert _body(text) == EXPECTED_BODY
    header = [line for line in text.splitlines() if line.startswith("#")]
    assert header[-1].endswith("FORMAT\tS1\tS2")
    assert header[-2].startswith('##mergeGVCFs=<commandLine="merge_gvcf ')
    assert not any(line.startswith("##INFO=<ID=DP") for line in header)


def test_cli_writes_bgzipped_indexed_output(tmp_path, inputs):
    out = tmp_path / "merged.vcf.gz"

    cli.main([*inputs, "-o", str(out), "--threads", "--batch-size", "1"])

    with gzip.open(out, "rt", encoding="utf-8") as handle:
        assert _body(handle.read()) == EXPECTED_BODY
    assert os.path.exists(str(out) + ".tbi")


def test_cli_reads_inputs_from_file_list(tmp_path, inputs):
    listing = tmp_path / "inputs.txt"
    listing.write_text("\n".join(inputs) + "\n", encoding="utf-8")
    out = tmp_path / "merged.vcf"

    cli.main(["--filelist", str(listing), "-o", str(out), "--threads"])

    assert _body(out.read_text(encoding="utf-8")) == EXPECTED_BODY


def test_cli_writes_to_stdout_by_default(inputs, capsys):
    cli.main([*inputs, "--threads"])

    assert _body(capsys.readouterr().out) == EXPECTED_BODY


def test_cli_reports_errors_and_leaves_no_output(tmp_path, write_gvcf, capsys):
    broken = write_gvcf("broken.vcf", ["S1"], ["chr1\t5\t.\tA\tG"])
    out = tmp_path / "merged.vcf"

    with pytest.raises(SystemExit) as excinfo:
        cli.main([broken, "-o", str(out), "--threads"])

    assert excinfo.value.code == 1
    assert "ERROR:" in capsys.readouterr().err
    assert sorted(os.listdir(tmp_path)) == ["broken.vcf"]


def test_cli_missing_input_exits_with_error(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(tmp_path / "missing.vcf"), "--threads"])

    assert excinfo.value.code == 1
    assert "Input file not found" in capsys.readouterr().err


def test_cli_writes_log_file(tmp_path, inputs):
    log_path = tmp_path / "logs" / "merge.log"

    cli.main([*inputs, "-o", str(tmp_path / "merged.vcf"), "--threads", "--log-file", str(log_path)])

    assert "Merge completed successfully" in log_path.read_text(encoding="utf-8")


def test_parse_arguments_requires_inputs():
    with pytest.raises(SystemExit) as excinfo:
        cli.parse_arguments([])
    assert excinfo.value.code == 2


@pytest.mark.parametrize("option", ["--jobs", "--batch-size"])
def test_parse_arguments_rejects_non_positive_numbers(option):
    with pytest.raises(SystemExit):
        cli.parse_arguments(["a.vcf", option, "0"])


def test_parse_arguments_collects_rejected_filters():
    args = cli.parse_arguments(["a.vcf", "--reject-filter", "RefCall", "--reject-filter", "LowQual"])
    assert args.rejected_filters == ["RefCall", "LowQual"]
    assert args.output == "-"
    assert not args.use_threads
