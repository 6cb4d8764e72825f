import pytest

from config import FormatVersion, get_profile
from errors import MalformedRecord, TruncatedList
from scanner import (RecordKind, RecordScanner, classify, fortran_float, fortran_float_or_overflow,
                     number_lines, parse_fields, split_fixed, keyword_of, int_field, real_field,
                     fixed_field)


def scanner_for(lines, version=FormatVersion.LEGACY):
    return RecordScanner(number_lines(lines), get_profile(version))


def test_fortran_float_forms():
    assert fortran_float("1.00000E+02") == 100.0
    assert fortran_float("1.5D-03") == 1.5e-3
    assert fortran_float("1.00000-100") == 1e-100
    assert fortran_float("-2.50000+101") == -2.5e101


def test_fortran_float_rejects_text():
    with pytest.raises(ValueError):
        fortran_float("abc")


def test_overflow_field():
    assert fortran_float_or_overflow("*************") is None
    assert fortran_float_or_overflow("1.0E+00") == 1.0


def test_split_fixed_cycles_widths():
    assert split_fixed("  1.00000E+00 0.0500", (13, 7)) == ["  1.00000E+00", " 0.0500"]
    assert split_fixed(" 123", (3,), indent=" ") == ["123"]


def test_parse_fields_fixed_columns():
    # seven-digit region numbers run together without a separating blank
    assert parse_fields("10000012000002", (7,), (int,)) == [1000001, 2000002]


def test_parse_fields_blank_delimited_fallback():
    assert parse_fields("1 2   3", (7,), (int,)) == [1, 2, 3]
    assert parse_fields("vals", (7,), (int,)) is None


@pytest.mark.parametrize("text, kind", [
    ("", RecordKind.BLANK),
    ("    ", RecordKind.BLANK),
    ("tally    4    1    0    0", RecordKind.KEYWORD),
    ("vals", RecordKind.KEYWORD),
    ("tfc    2       1", RecordKind.KEYWORD),
    ("et       3", RecordKind.TAG),
    ("t        0", RecordKind.TAG),
    ("c        2   0", RecordKind.TAG),
    ("  1.00000E+00  2.00000E+00", RecordKind.NUMERIC),
    ("     Cell flux", RecordKind.COMMENT),
    ("garbage", RecordKind.TEXT),
])
def test_classify(text, kind):
    assert classify(text) is kind


def test_keyword_requires_word_boundary():
    assert keyword_of("tallyx") is None
    assert keyword_of("kcode    3    1   19") == "kcode"


def test_read_list_spans_lines():
    scanner = scanner_for(["      1      2", "      3", "d        1"])
    assert scanner.read_list(3, "region", (7,), (int,)) == [1, 2, 3]
    assert scanner.peek().kind is RecordKind.TAG


def test_read_list_ignores_over_supply():
    scanner = scanner_for(["      1      2      3"])
    assert scanner.read_list(2, "region", (7,), (int,)) == [1, 2]
    assert scanner.at_end()


def test_read_list_allowance_keeps_extra_value():
    scanner = scanner_for(["  1.00000E+00  1.00000E+02"])
    assert scanner.read_list(1, "energy", (13,), (fortran_float,), allowance=1) == [1.0, 100.0]


def test_read_list_truncated():
    scanner = scanner_for(["      1      2", "vals"])
    with pytest.raises(TruncatedList) as info:
        scanner.read_list(3, "region", (7,), (int,))
    assert info.value.expected == 3
    assert info.value.found == 2
    assert info.value.line == 1


def test_read_list_empty_when_allowed():
    scanner = scanner_for(["e        1"])
    assert scanner.read_list(1, "energy", (13,), (fortran_float,), allow_empty=True) == []


def test_current_profile_strips_indent():
    scanner = scanner_for(["      4    14"], FormatVersion.CURRENT)
    assert scanner.read_list(2, "tally id", (6,), (int,)) == [4, 14]


def test_next_at_end_is_malformed():
    scanner = scanner_for(["vals"])
    scanner.next()
    with pytest.raises(MalformedRecord) as info:
        scanner.next("tally result")
    assert info.value.line == 1


def test_expect_keyword_reports_line():
    scanner = scanner_for(["tally    4    1    0    0", "oops"])
    scanner.expect_keyword("tally")
    with pytest.raises(MalformedRecord) as info:
        scanner.expect_keyword("vals")
    assert info.value.line == 2
    assert "line 2" in str(info.value)


def test_remaining_skips_blank_lines():
    scanner = scanner_for(["vals", "", "junk", "   "])
    scanner.next()
    assert [line.number for line in scanner.remaining()] == [3]


def test_remaining_consumes_the_block():
    scanner = scanner_for(["vals", "junk"])
    scanner.next()
    assert [line.text for line in scanner.remaining()] == ["junk"]
    assert scanner.at_end()


def test_records_are_typed_lazily():
    scanner = scanner_for(["tally    4    1    0    0", "f        1", "      1"])
    records = scanner.records()
    assert next(records).kind is RecordKind.KEYWORD
    assert scanner.position == 1
    assert [record.kind for record in records] == [RecordKind.TAG, RecordKind.NUMERIC]


def test_misaligned_fields_are_split_on_blanks():
    # a six-digit id shifted across the five-column fields
    assert parse_fields("  123456    1    0    0", (5,), (int,)) == [123456, 1, 0, 0]
    # an error printed with a leading blank overruns its seven columns
    assert parse_fields("  1.23450E-03 0.01234", (13, 7), (fortran_float,)) == [1.2345e-3, 0.01234]


def test_field_filling_its_columns_may_touch_the_previous_one():
    assert parse_fields("  1.23450E-030.01234", (13, 7), (fortran_float,)) == [1.2345e-3, 0.01234]
    assert parse_fields("    212345678901", (5, 11), (int,)) == [2, 12345678901]


def test_width_checked_converters():
    assert parse_fields("  123456    1", (5,), (int_field(5),)) is None
    assert parse_fields("12345    1", (5,), (int_field(5),)) == [12345, 1]
    assert real_field(13, 5)("1.234567E+00") == 1.234567
    assert fixed_field(7, 4)("0.01234") == 0.01234
    with pytest.raises(ValueError):
        real_field(13, 5)("1.2345678901234")
    with pytest.raises(ValueError):
        fixed_field(7, 4)("0.0123456")
    assert real_field(13, 5, overflow=True)("*************") is None
