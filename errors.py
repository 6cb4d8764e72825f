"""
Error types raised while decoding MCTAL files.

Every decode error carries the 1-based source line number it refers to
(when one exists). `TrailingData` is a warning: decoding still succeeds and
the warning is attached to the decoded document.
"""


class MctalError(Exception):
    """Base class for all MCTAL decode errors."""

    def __init__(self, message, line=None):
        self.line = line
        # Set by the file decoder when the error comes out of the parallel pass
        self.blocks_succeeded = None
        self.blocks_failed = None
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class MalformedRecord(MctalError):
    """A record could not be parsed as its expected shape."""

    def __init__(self, line, record, detail=""):
        self.record = record
        self.detail = detail
        message = f"malformed {record} record"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, line)


class TruncatedList(MctalError):
    """A declared-count continuation list ran out of values."""

    def __init__(self, line, record, expected, found):
        self.record = record
        self.expected = expected
        self.found = found
        super().__init__(f"{record} list truncated: expected {expected} values, found {found}", line)


class ResultCountMismatch(MctalError):
    """The number of result pairs disagrees with the bin counts."""

    def __init__(self, line, tally_id, expected, actual, bin_counts):
        self.tally_id = tally_id
        self.expected = expected
        self.actual = actual
        self.bin_counts = tuple(bin_counts)
        super().__init__(
            f"tally {tally_id}: expected {expected} results from bin counts "
            f"{list(self.bin_counts)}, found {actual}", line)


class TallyIdentifierMismatch(MctalError):
    """Declared tally identifiers and decoded tally blocks diverge."""

    def __init__(self, declared, decoded, line=None):
        self.declared = list(declared)
        self.decoded = list(decoded)
        super().__init__(f"declared tally ids {self.declared} do not match decoded ids {self.decoded}", line)


class TrailingData(UserWarning):
    """Unrecognised content after the last valid block."""

    def __init__(self, line, text):
        self.line = line
        self.text = text
        super().__init__(f"line {line}: unrecognised trailing data {text.strip()!r}")
