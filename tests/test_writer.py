import pytest

from config import FormatVersion
from reader import decode_mctal, read_mctal
from writer import encode_mctal, write_mctal, format_list, format_real, format_fixed
from conftest import run_line
from tally import (TallyFile, Header, Tally, TallyResult, BinKind, BinRecord, FluctuationChart,
                   TfcRecord, FomState)


def test_legacy_output_matches_source(legacy_lines):
    doc = decode_mctal(legacy_lines)
    assert encode_mctal(doc) == legacy_lines


def test_current_output_matches_source(current_lines):
    doc = decode_mctal(current_lines)
    assert encode_mctal(doc) == current_lines


@pytest.mark.parametrize("version", [FormatVersion.LEGACY, FormatVersion.CURRENT])
def test_round_trip(current_lines, version):
    doc = decode_mctal(current_lines)
    doc.version = version
    assert decode_mctal(encode_mctal(doc, version), version) == doc


def test_convert_between_versions(current_lines):
    current = decode_mctal(current_lines)
    legacy_lines = encode_mctal(current, FormatVersion.LEGACY)
    legacy = decode_mctal(legacy_lines)
    assert legacy.version is FormatVersion.LEGACY
    assert legacy.header == current.header
    assert legacy.tallies == current.tallies
    assert legacy.kcode == current.kcode
    assert legacy.tmesh == current.tmesh


def test_npert_written_only_when_present(legacy_lines):
    doc = decode_mctal(legacy_lines)
    assert "npert" not in encode_mctal(doc)[2]
    doc.header.n_perturbations = 0
    assert encode_mctal(doc)[2] == "ntal     1 npert     0"


def test_built_document_round_trip():
    tally = Tally(id=5, particle_selector=2, comments=["built in code"])
    tally.bins.region = BinRecord(BinKind.REGION, 1, values=[3])
    tally.bins.time = BinRecord(BinKind.TIME, 2, flag=0, values=[1.0e+3, 1.0e+4])
    tally.results = [TallyResult(0.5, 0.1), TallyResult(0.25, 0.2)]
    tally.tfc = FluctuationChart(n_records=1, records=[TfcRecord(1000, 0.5, 0.1, None, FomState.ABSENT)])
    doc = TallyFile(
        version=FormatVersion.LEGACY,
        header=Header(code="mcnp", code_version="5", problem_id="test", n_histories=1000,
                      message="built", n_tallies=1, tally_ids=[5]),
        tallies=[tally],
    )
    assert decode_mctal(encode_mctal(doc)) == doc


def test_invalid_document_is_refused(legacy_lines):
    doc = decode_mctal(legacy_lines)
    doc.tallies[0].results.append(TallyResult(1.0, 0.1))
    with pytest.raises(ValueError) as info:
        encode_mctal(doc)
    assert "results" in str(info.value)


def test_write_and_read_file(tmp_path, current_lines):
    doc = decode_mctal(current_lines)
    path = tmp_path / "out.m"
    assert write_mctal(doc, str(path)) == str(path)
    assert read_mctal(str(path)) == doc


def test_format_helpers():
    assert format_real(1.0, 13, 5) == "  1.00000E+00"
    assert format_list([1, 2, 3], 2, lambda v: f"{v:3d}", " ") == ["   1  2", "   3"]
    assert format_real(1.234567, 13, 5) == " 1.234567E+00"
    assert format_real(1.2345678, 13, 5) == "1.2345678E+00"
    assert format_real(-1.2345678, 13, 5) is None
    assert format_fixed(0.0123, 7, 4) == " 0.0123"
    assert format_fixed(0.01234, 7, 4) == "0.01234"
    assert format_fixed(123.45, 7, 4) == "123.450"
    assert format_fixed(0.0123456, 7, 4) is None


def set_line(index, text):
    def edit(lines):
        lines[index] = text
    return edit


# indices into legacy_lines: run line 0, region list 6, energy bounds 13, results 16
@pytest.mark.parametrize("edit", [
    set_line(13, "  1.234567E+00 1.000000E+02"),
    set_line(13, " 1.234567E+00  1.00000E+02"),
    set_line(16, "  1.23450E-03 0.01234"),
    set_line(16, "  1.23450E-030.01234"),
    set_line(0, run_line(FormatVersion.LEGACY, dump=12345)),
    set_line(0, run_line(FormatVersion.LEGACY, nps=12345678901)),
    set_line(6, f"{1234567:7d}"),
], ids=["six-decimal-bound", "six-decimal-bound-in-columns", "five-decimal-error",
        "five-decimal-error-in-columns", "five-digit-dump", "full-width-histories", "seven-digit-region"])
def test_edge_values_survive_round_trip(legacy_lines, edit):
    edit(legacy_lines)
    doc = decode_mctal(legacy_lines, FormatVersion.LEGACY)
    encoded = encode_mctal(doc)
    assert decode_mctal(encoded, FormatVersion.LEGACY) == doc
    assert encode_mctal(decode_mctal(encoded, FormatVersion.LEGACY)) == encoded


def test_extra_digits_are_written_within_the_field(legacy_lines):
    legacy_lines[13] = "  1.234567E+00 1.000000E+02"
    legacy_lines[16] = "  1.23450E-03 0.01234"
    doc = decode_mctal(legacy_lines)
    assert doc.tallies[0].bins.energy.values == [1.234567, 100.0]
    assert doc.tallies[0].results[0].error == 0.01234

    encoded = encode_mctal(doc)
    assert encoded[13] == " 1.234567E+00  1.00000E+02"
    assert encoded[16] == "  1.23450E-030.01234"


def test_five_digit_dump_is_written(legacy_lines):
    legacy_lines[0] = run_line(FormatVersion.LEGACY, dump=12345)
    doc = decode_mctal(legacy_lines)
    assert doc.header.dump == 12345
    assert encode_mctal(doc) == legacy_lines


def test_wide_tally_id_is_refused(current_lines):
    doc = decode_mctal(current_lines)
    doc.tallies[0].id = 123456
    doc.header.tally_ids[0] = 123456
    with pytest.raises(ValueError) as info:
        encode_mctal(doc)
    assert "id 123456 does not fit in 5 columns" in str(info.value)
