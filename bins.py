"""
Bin-set decoding for standard tallies.

Each of the eight bin kinds is decoded through one table entry describing
whether the tag accepts a `t`/`c` variant, whether an integer flag may follow
the count, and when a value list follows on continuation lines.

| Tag | Kind       | Variants | Flag | Value list                     |
| --- | ---------- | -------- | ---- | ------------------------------ |
| f   | region     | no       | no   | yes, unless count is 0         |
| d   | flagged    | no       | no   | never                          |
| u   | user       | yes      | no   | if listed (special user bins)  |
| s   | segment    | yes      | no   | if listed (segmented tallies)  |
| m   | multiplier | yes      | no   | never                          |
| c   | cosine     | yes      | yes  | yes                            |
| e   | energy     | yes      | yes  | yes                            |
| t   | time       | yes      | yes  | yes                            |
"""

import math
from enum import Enum
from collections import namedtuple

from errors import MalformedRecord
from logger import log_debug, log_warning
from scanner import TAG_PATTERN, RecordKind, fortran_float, real_field
from tally import BinKind, BinVariant, BinRecord, BinSet


class ListPolicy(Enum):
    NEVER = "never"
    ALWAYS = "always"
    IF_LISTED = "if_listed"


BinPolicy = namedtuple('BinPolicy', ['has_variants', 'has_flag', 'values', 'edge_allowance'])

# edge_allowance: extra values accepted beyond the bin count (explicit lowest boundary)
BIN_POLICIES = {
    BinKind.REGION: BinPolicy(False, False, ListPolicy.ALWAYS, 0),
    BinKind.FLAGGED: BinPolicy(False, False, ListPolicy.NEVER, 0),
    BinKind.USER: BinPolicy(True, False, ListPolicy.IF_LISTED, 0),
    BinKind.SEGMENT: BinPolicy(True, False, ListPolicy.IF_LISTED, 1),
    BinKind.MULTIPLIER: BinPolicy(True, False, ListPolicy.NEVER, 0),
    BinKind.COSINE: BinPolicy(True, True, ListPolicy.ALWAYS, 1),
    BinKind.ENERGY: BinPolicy(True, True, ListPolicy.ALWAYS, 1),
    BinKind.TIME: BinPolicy(True, True, ListPolicy.ALWAYS, 1),
}


def region_id(token):
    """Convert a region field to int, accepting integral reals."""
    try:
        return int(token)
    except ValueError:
        value = fortran_float(token)
        if not math.isfinite(value) or value != int(value):
            raise ValueError(f"non-integral region identifier: {token}")
        return int(value)


def region_field(width):
    """Converter for a region identifier of at most `width` columns."""
    def convert(token):
        value = region_id(token)
        if len(str(value)) > width:
            raise ValueError(f"region identifier {token} does not fit in {width} columns")
        return value
    return convert


def list_format(kind, profile):
    """Field widths and converters used for a kind's value list."""
    if kind is BinKind.REGION:
        return (profile.region_width,), (region_field(profile.region_width),)
    return (profile.value_width,), (real_field(profile.value_width, profile.value_precision),)


def expected_values(record):
    """Number of listed values implied by a record's count and variant."""
    if record.count == 0:
        return 0
    if record.variant is BinVariant.TOTAL:
        return record.count - 1
    return record.count


def parse_tag(record, profile=None):
    """
    Parse a bin tag record into a BinRecord without values.

    Parameters:
        record: Scanner record holding the tag line
        profile: FormatProfile whose count and flag widths are enforced, if given

    Returns:
        BinRecord: Kind, count, variant and flag
    """
    match = TAG_PATTERN.match(record.text)
    if match is None:
        raise MalformedRecord(record.line, "bin tag", f"found {record.text.strip()!r}")

    kind = BinKind(match.group(1).lower())
    variant = BinVariant(match.group(2).lower())
    count = int(match.group(3))
    extras = [int(token) for token in match.group(4).split()]
    policy = BIN_POLICIES[kind]

    if variant is not BinVariant.PLAIN and not policy.has_variants:
        raise MalformedRecord(record.line, f"{kind.attribute} bin", f"tag {kind.tag + variant.value!r} takes no variant")

    flag = None
    if extras:
        if not policy.has_flag or len(extras) > 1:
            raise MalformedRecord(record.line, f"{kind.attribute} bin", f"unexpected fields {extras}")
        flag = extras[0]

    # the flag needs a separating blank to stay apart from the count
    if profile is not None and (len(str(count)) > profile.bin_count_width
                                or (flag is not None and len(str(flag)) > profile.bin_flag_width - 1)):
        raise MalformedRecord(record.line, f"{kind.attribute} bin",
                              f"count or flag does not fit its columns in {record.text.strip()!r}")

    return BinRecord(kind=kind, count=count, variant=variant, flag=flag)


def decode_bin_record(scanner, record):
    """
    Decode one bin sub-record and its value list.

    A count of 0 never reads a list. A positive count followed directly by
    the next tag is accepted with an empty value list.

    Parameters:
        scanner: RecordScanner positioned after the tag line
        record: The tag record already consumed

    Returns:
        BinRecord: The decoded sub-record
    """
    bins = parse_tag(record, scanner.profile)
    policy = BIN_POLICIES[bins.kind]

    if bins.count > 0 and policy.values is not ListPolicy.NEVER:
        widths, converters = list_format(bins.kind, scanner.profile)
        bins.values = scanner.read_list(
            expected_values(bins),
            f"{bins.kind.attribute} bin",
            widths,
            converters,
            allowance=policy.edge_allowance,
            allow_empty=True,
        )
        if not bins.values and expected_values(bins) > 0:
            if policy.values is ListPolicy.ALWAYS and bins.kind is not BinKind.REGION:
                log_warning(f"No {bins.kind.attribute} bins listed at line {record.line} "
                            f"(expected {expected_values(bins)})")
            else:
                log_debug(f"No {bins.kind.attribute} bins listed at line {record.line}")

    log_debug(f"{bins.kind.attribute:<10} [{bins.tag}] = {bins.count}")
    return bins


def decode_bin_set(scanner):
    """
    Decode the bin records of a tally, stopping at the first non-tag record.

    Tags must appear in kind order. Kinds that never appear keep the default
    count of 0.

    Returns:
        BinSet: One record per bin kind
    """
    bin_set = BinSet()
    kinds = list(BinKind)
    last_index = -1

    while True:
        record = scanner.peek()
        if record is None or record.kind is not RecordKind.TAG:
            break
        scanner.next("bin tag")
        bins = decode_bin_record(scanner, record)

        index = kinds.index(bins.kind)
        if index <= last_index:
            raise MalformedRecord(record.line, "bin tag", f"tag {bins.tag!r} repeated or out of order")
        last_index = index
        bin_set[bins.kind] = bins

    return bin_set
