"""
Record scanner for MCTAL text.

Turns numbered source lines into typed records and pulls fixed-width numeric
fields across continuation lines. Field widths come from the FormatProfile
the scanner is built with. Numeric items that do not sit in the columns
implied by the Fortran formats are still accepted when they are
blank-delimited, as long as each value could be written back in its field.
"""

import re
from enum import Enum
from collections import namedtuple

from errors import MalformedRecord, TruncatedList
from logger import log_debug

Line = namedtuple('Line', ['number', 'text'])

Record = namedtuple('Record', ['kind', 'line', 'text'])


class RecordKind(Enum):
    BLANK = "blank"
    KEYWORD = "keyword"
    TAG = "tag"
    NUMERIC = "numeric"
    COMMENT = "comment"
    TEXT = "text"


# Keywords that open a record in column 1
KEYWORDS = ('tally', 'kcode', 'vals', 'tfc', 'ntal')

# Bin tag: kind letter, optional variant letter, count and any trailing integers
TAG_PATTERN = re.compile(r'^([fdusmcet])([tc]?)\s*(\d+)((?:\s+-?\d+)*)\s*$', re.IGNORECASE)

# Fortran drops the exponent letter for three-digit exponents (1.00000-100)
_BARE_EXPONENT = re.compile(r'^([+-]?[0-9.]+)([+-]\d+)$')

# Characters that may appear on a numeric continuation line
_NUMERIC_LINE = re.compile(r'^[\s0-9eEdD.+\-*]*[0-9*][\s0-9eEdD.+\-*]*$')


def fortran_float(token):
    """Convert a Fortran real field to float."""
    token = token.replace('D', 'E').replace('d', 'e')
    try:
        return float(token)
    except ValueError:
        match = _BARE_EXPONENT.match(token)
        if match is None:
            raise
        return float(f"{match.group(1)}E{match.group(2)}")


def fortran_float_or_overflow(token):
    """Like fortran_float, but a field of asterisks (Fortran overflow) gives None."""
    if token and set(token) == {'*'}:
        return None
    return fortran_float(token)


def _fit(value, width, precision, code):
    # the nominal precision first, then more digits, then fewer
    for digits in list(range(precision, width)) + list(range(precision - 1, -1, -1)):
        text = f"{value:{width}.{digits}{code}}"
        if len(text) <= width and float(text) == value:
            return text
    return None


def format_real(value, width, precision):
    """
    Fortran ESw.d style real that reads back as exactly `value`.

    The nominal `precision` is used when it loses nothing; otherwise the
    digit count is adjusted within the same field width.

    Returns:
        str or None: The field text, or None if no form fits in `width` columns
    """
    return _fit(value, width, precision, 'E')


def format_fixed(value, width, precision):
    """Fortran Fw.d style real that reads back as exactly `value`, or None."""
    return _fit(value, width, precision, 'f')


def int_field(width):
    """Converter for an integer field of at most `width` columns."""
    def convert(token):
        value = int(token)
        if len(str(value)) > width:
            raise ValueError(f"{token} does not fit in {width} columns")
        return value
    return convert


def real_field(width, precision, overflow=False, formatter=format_real):
    """
    Converter for a real field.

    Values that cannot be written back in `width` columns without losing
    digits are refused. With `overflow`, a field of asterisks gives None.
    """
    def convert(token):
        value = fortran_float_or_overflow(token) if overflow else fortran_float(token)
        if value is not None and formatter(value, width, precision) is None:
            raise ValueError(f"{token} does not fit in {width} columns")
        return value
    return convert


def fixed_field(width, precision):
    """Converter for an Fw.d real field, such as a relative error."""
    return real_field(width, precision, formatter=format_fixed)


def split_fixed(text, widths, indent=""):
    """
    Slice a line into fixed-width fields.

    Parameters:
        text: Source line
        widths: Field widths, repeated cyclically across the line
        indent: Leading padding to drop before slicing

    Returns:
        list: Raw field strings
    """
    body = text.rstrip()
    if indent and body.startswith(indent):
        body = body[len(indent):]
    fields = []
    position = 0
    while position < len(body):
        width = widths[len(fields) % len(widths)]
        fields.append(body[position:position + width])
        position += width
    return fields


def _convert(tokens, converters):
    if not tokens:
        return None
    values = []
    for i, token in enumerate(tokens):
        token = token.strip()
        if not token:
            return None
        try:
            values.append(converters[i % len(converters)](token))
        except ValueError:
            return None
    return values


def _aligned(fields, widths):
    """
    Check that sliced fields sit in their columns.

    Every field must be full width and right-justified. A number may run
    into the next field only when one of the two fields is filled
    completely, as Fortran output does when a value takes the whole width.
    """
    for i, field in enumerate(fields):
        if len(field) != widths[i % len(widths)] or field.endswith(' '):
            return False
    for left, right in zip(fields, fields[1:]):
        if not right.startswith(' ') and ' ' in left and ' ' in right:
            return False
    return True


def parse_fields(text, widths, converters, indent=""):
    """
    Parse a line of numeric fields.

    Fixed-width slicing is used when the slices line up with the columns;
    lines that do not are split on blanks instead.

    Returns:
        list or None: Converted values, or None if the line is not numeric
    """
    fields = split_fixed(text, widths, indent)
    values = _convert(fields, converters) if _aligned(fields, widths) else None
    if values is None:
        values = _convert(text.split(), converters)
    return values


def is_numeric(text):
    """Check whether a line holds only numeric fields, possibly run together."""
    return _NUMERIC_LINE.match(text) is not None


def keyword_of(text):
    """Keyword opening a line in column 1, or None."""
    lowered = text[:5].lower()
    for keyword in KEYWORDS:
        if lowered.startswith(keyword):
            rest = text[len(keyword):len(keyword) + 1]
            if not rest or not rest.isalpha():
                return keyword
    return None


def classify(text, comment_indent=5):
    """Classify a source line into a RecordKind."""
    if not text.strip():
        return RecordKind.BLANK
    if keyword_of(text) is not None:
        return RecordKind.KEYWORD
    if TAG_PATTERN.match(text):
        return RecordKind.TAG
    if is_numeric(text):
        return RecordKind.NUMERIC
    if text.startswith(' ' * comment_indent):
        return RecordKind.COMMENT
    return RecordKind.TEXT


def number_lines(lines, start=1):
    """Pair raw text lines with their 1-based line numbers."""
    return [Line(number, text.rstrip('\r\n')) for number, text in enumerate(lines, start)]


class RecordScanner:
    """Forward-only cursor over the lines of one block."""

    def __init__(self, lines, profile):
        self.lines = list(lines)
        self.profile = profile
        self.position = 0

    def records(self):
        """Lazily yield the remaining lines as typed records."""
        while self.position < len(self.lines):
            yield self.next()

    def record(self, line):
        return Record(classify(line.text, self.profile.comment_indent), line.number, line.text)

    @property
    def last_line(self):
        """Line number of the most recently consumed line."""
        if self.position == 0:
            return self.lines[0].number if self.lines else None
        return self.lines[self.position - 1].number

    def at_end(self):
        return self.position >= len(self.lines)

    def peek(self):
        """Next record without consuming it, or None at the end of the block."""
        if self.at_end():
            return None
        return self.record(self.lines[self.position])

    def next(self, expected="record"):
        """Consume the next record."""
        if self.at_end():
            raise MalformedRecord(self.last_line, expected, "unexpected end of input")
        line = self.lines[self.position]
        self.position += 1
        return self.record(line)

    def expect_keyword(self, keyword):
        """Consume a record that must open with `keyword`."""
        record = self.next(keyword)
        if keyword_of(record.text) != keyword:
            raise MalformedRecord(record.line, keyword, f"found {record.text.strip()!r}")
        return record

    def next_is_numeric(self):
        record = self.peek()
        return record is not None and record.kind is RecordKind.NUMERIC

    def read_numbers(self, record, widths, converters):
        """
        Consume one continuation line of numeric fields.

        Returns:
            list: Converted values
        """
        line = self.next(record)
        values = parse_fields(line.text, widths, converters, self.profile.line_indent)
        if values is None:
            raise MalformedRecord(line.line, record, f"expected numeric fields, found {line.text.strip()!r}")
        return values

    def read_list(self, count, record, widths, converters, allowance=0, allow_empty=False):
        """
        Read a declared-count list from continuation lines.

        Lines are pulled until `count` values are available. Extra values on
        the final line are ignored, except that up to `allowance` further
        values are kept (pulling one more line if needed).

        Parameters:
            count: Declared number of values
            record: Record kind used in error reports
            widths: Fixed field widths for the list
            converters: Callables converting each field
            allowance: Number of optional values accepted beyond `count`
            allow_empty: Accept a list with no continuation lines at all

        Returns:
            list: The values read
        """
        start = self.last_line
        values = []
        limit = count + allowance
        while len(values) < limit and self.next_is_numeric():
            values.extend(self.read_numbers(record, widths, converters))

        if not values and allow_empty:
            return []
        if len(values) < count:
            raise TruncatedList(start, record, count, len(values))
        if len(values) > limit:
            log_debug(f"Ignoring {len(values) - limit} extra value(s) on {record} list at line {self.last_line}")
            values = values[:limit]
        return values

    def read_numeric_block(self, record, widths, converters):
        """
        Consume every consecutive numeric continuation line.

        Returns:
            list: All values read, in order
        """
        values = []
        while self.next_is_numeric():
            values.extend(self.read_numbers(record, widths, converters))
        return values

    def remaining(self):
        """Consume the rest of the block, returning its non-blank lines."""
        return [Line(record.line, record.text) for record in self.records()
                if record.kind is not RecordKind.BLANK]
