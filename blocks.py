"""
Block decoders for standard tallies, the KCODE block and TMESH blocks.

Each decoder consumes records from a RecordScanner limited to its own block
and leaves any unconsumed lines for the file decoder to judge.
"""

from config import N_PARTICLE_FLAGS, N_TFC_BINS, KCODE_ROW_WIDTHS
from errors import MalformedRecord, TruncatedList, ResultCountMismatch, TallyIdentifierMismatch
from logger import log_debug
from scanner import (RecordKind, TAG_PATTERN, parse_fields, int_field, real_field,
                     fixed_field)
from bins import decode_bin_set
from tally import (Tally, TallyResult, DetectorType, Modifier, FluctuationChart,
                   TfcRecord, FomState, KcodeBlock, KcodeCycle, TmeshBlock, MeshGeometry)


def parse_header_fields(record, keyword, profile, width):
    """Integer fields following a column-1 keyword."""
    values = parse_fields(record.text[len(keyword):], (width,), (int_field(width),))
    if values is None:
        raise MalformedRecord(record.line, f"{keyword} header", f"found {record.text.strip()!r}")
    return values


def read_particle_flags(scanner):
    """Read the explicit 37-flag particle list."""
    values = scanner.read_list(N_PARTICLE_FLAGS, "particle list",
                               (scanner.profile.particle_flag_width,),
                               (int_field(scanner.profile.particle_flag_width),))
    return [bool(value) for value in values]


def read_results(scanner, owner, owner_id, shape, counts):
    """
    Read the `vals` record and the value/error pairs that follow.

    Parameters:
        scanner: RecordScanner positioned at the `vals` record
        owner: 'tally' or 'tmesh', used in error reports
        owner_id: Identifier of the tally or mesh
        shape: Bin layout, with counts of 0 already replaced by 1
        counts: Declared bin counts, reported on a length mismatch

    Returns:
        list: TallyResult pairs
    """
    profile = scanner.profile
    vals = scanner.expect_keyword('vals')
    widths = (profile.result_value_width, profile.result_error_width)
    converters = (real_field(profile.result_value_width, profile.value_precision),
                  fixed_field(profile.result_error_width, profile.result_error_precision))
    values = scanner.read_numeric_block(f"{owner} result", widths, converters)
    if len(values) % 2:
        raise MalformedRecord(scanner.last_line, f"{owner} result", "unpaired value without an error")

    results = [TallyResult(value, error) for value, error in zip(values[0::2], values[1::2])]

    expected = 1
    for n in shape:
        expected *= n
    if len(results) != expected:
        raise ResultCountMismatch(vals.line, owner_id, expected, len(results), counts)

    log_debug(f"N results   = {len(results)}")
    return results


def decode_tfc(scanner):
    """
    Decode a tally fluctuation chart.

    `tfc n jtf(1..8)` is followed by one record per cycle:
    `nps mean error [fom]`. A missing FOM field is recorded as absent; a
    field of asterisks as not yet computed.
    """
    profile = scanner.profile
    header = scanner.expect_keyword('tfc')
    widths = (profile.tfc_count_width,) + (profile.tfc_bin_width,) * N_TFC_BINS
    fields = parse_fields(header.text[3:], widths, tuple(int_field(width) for width in widths))
    if fields is None or len(fields) != N_TFC_BINS + 1:
        raise MalformedRecord(header.line, "tfc header", f"found {header.text.strip()!r}")

    chart = FluctuationChart(n_records=fields[0], bins=fields[1:])
    record_widths = (profile.tfc_nps_width, profile.value_width, profile.value_width, profile.value_width)
    real = real_field(profile.value_width, profile.value_precision)
    converters = (int_field(profile.tfc_nps_width), real, real,
                  real_field(profile.value_width, profile.value_precision, overflow=True))

    for n in range(chart.n_records):
        if not scanner.next_is_numeric():
            raise TruncatedList(header.line, "tfc", chart.n_records, n)
        values = scanner.read_numbers("tfc record", record_widths, converters)
        if len(values) == 3:
            record = TfcRecord(values[0], values[1], values[2], None, FomState.ABSENT)
        elif len(values) == 4 and values[3] is None:
            record = TfcRecord(values[0], values[1], values[2], None, FomState.NOT_COMPUTED)
        elif len(values) == 4:
            record = TfcRecord(values[0], values[1], values[2], values[3], FomState.PRESENT)
        else:
            raise MalformedRecord(scanner.last_line, "tfc record", f"{len(values)} fields")
        chart.records.append(record)

    log_debug(f"N Tfc       = {len(chart.records)}")
    return chart


def decode_tally(scanner, expected_id=None):
    """
    Decode one standard tally block.

    Parameters:
        scanner: RecordScanner over the block's lines
        expected_id: Identifier declared for this position in the header

    Returns:
        Tally: The decoded tally
    """
    profile = scanner.profile
    header = scanner.expect_keyword('tally')
    fields = parse_header_fields(header, 'tally', profile, profile.tally_field_width)
    if len(fields) != 4:
        raise MalformedRecord(header.line, "tally header", f"expected 4 fields, found {len(fields)}")
    tally_id, selector, detector, modifier = fields

    if expected_id is not None and tally_id != expected_id:
        raise TallyIdentifierMismatch([expected_id], [tally_id], header.line)

    try:
        tally = Tally(id=tally_id, particle_selector=selector,
                      detector=DetectorType(detector), modifier=Modifier(modifier))
    except ValueError as e:
        raise MalformedRecord(header.line, "tally header", str(e))
    log_debug(f"Tally id    = {tally.id}")
    log_debug(f"Type        = {tally.detector.name}")
    log_debug(f"Modifier    = {tally.modifier.name}")

    if selector < 0:
        tally.particle_flags = read_particle_flags(scanner)
    log_debug(f"Particles   = {[p.name for p in tally.particles]}")

    # comment lines sit in fixed blank columns ahead of the first bin tag
    indent = ' ' * profile.comment_indent
    while True:
        record = scanner.peek()
        if record is None:
            raise MalformedRecord(scanner.last_line, "bin tag", "unexpected end of input")
        if record.kind in (RecordKind.TAG, RecordKind.KEYWORD):
            break
        if record.kind is not RecordKind.BLANK and not record.text.startswith(indent):
            raise MalformedRecord(record.line, "comment", f"found {record.text.strip()!r}")
        scanner.next("comment")
        tally.comments.append(record.text[len(indent):].rstrip())

    tally.bins = decode_bin_set(scanner)
    tally.results = read_results(scanner, "tally", tally.id, tally.bins.shape(), tally.bins.counts())

    record = scanner.peek()
    if record is not None and record.kind is RecordKind.KEYWORD and record.text[:3].lower() == 'tfc':
        tally.tfc = decode_tfc(scanner)

    return tally


def decode_kcode(scanner):
    """
    Decode the KCODE block.

    Every cycle row spans the same number of lines; its width (18 values,
    or 19 when the figure of merit is printed) is detected row by row.
    """
    profile = scanner.profile
    header = scanner.expect_keyword('kcode')
    fields = parse_header_fields(header, 'kcode', profile, profile.kcode_field_width)
    if len(fields) != 3:
        raise MalformedRecord(header.line, "kcode header", f"expected 3 fields, found {len(fields)}")

    kcode = KcodeBlock(recorded_cycles=fields[0], settle_cycles=fields[1], n_variables=fields[2])
    converters = (real_field(profile.kcode_value_width, profile.value_precision),)
    for cycle in range(kcode.recorded_cycles):
        start = scanner.last_line
        values = []
        for _ in range(profile.kcode_lines_per_row):
            if not scanner.next_is_numeric():
                break
            values.extend(scanner.read_numbers("kcode cycle", (profile.kcode_value_width,), converters))

        if not values:
            raise TruncatedList(header.line, "kcode", kcode.recorded_cycles, cycle)
        if len(values) not in KCODE_ROW_WIDTHS:
            raise MalformedRecord(start + 1, "kcode cycle",
                                  f"expected {' or '.join(map(str, KCODE_ROW_WIDTHS))} values, found {len(values)}")
        kcode.cycles.append(KcodeCycle(values))

    log_debug(f"Kcode cycles = {len(kcode.cycles)}")
    return kcode


def _tmesh_tag(record, letter, profile):
    match = TAG_PATTERN.match(record.text) if record.kind is RecordKind.TAG else None
    if match is None or match.group(1).lower() != letter or match.group(2):
        raise MalformedRecord(record.line, f"tmesh {letter}", f"found {record.text.strip()!r}")
    count = int(match.group(3))
    extras = [int(token) for token in match.group(4).split()]

    # trailing fields need a separating blank to stay apart from the one before
    width = profile.tmesh_field_width if letter == 'f' else profile.bin_count_width
    if len(str(count)) > width or any(len(str(n)) > profile.tmesh_field_width - 1 for n in extras):
        raise MalformedRecord(record.line, f"tmesh {letter}",
                              f"fields do not fit their columns in {record.text.strip()!r}")
    return count, extras


def decode_tmesh(scanner):
    """
    Decode one TMESH (superimposed mesh tally) block.

    The header's geometry field is negative, which is what separates a TMESH
    block from a standard tally.
    """
    profile = scanner.profile
    header = scanner.expect_keyword('tally')
    fields = parse_header_fields(header, 'tally', profile, profile.tally_field_width)
    if len(fields) < 3:
        raise MalformedRecord(header.line, "tmesh header", f"expected 3 fields, found {len(fields)}")
    tmesh_id, selector, geometry = fields[:3]

    try:
        tmesh = TmeshBlock(id=tmesh_id, particle_selector=selector, geometry=MeshGeometry(abs(geometry)))
    except ValueError:
        raise MalformedRecord(header.line, "tmesh header", f"unrecognised geometry {geometry}")
    log_debug(f"Tmesh id    = {tmesh.id}")
    log_debug(f"Geometry    = {tmesh.geometry.long_name}")

    tmesh.particle_flags = read_particle_flags(scanner)

    record = scanner.next("tmesh f")
    n_voxels, extras = _tmesh_tag(record, 'f', profile)
    if len(extras) != 4:
        raise MalformedRecord(record.line, "tmesh f", f"expected 5 fields, found {len(extras) + 1}")
    tmesh.n_voxels = n_voxels
    tmesh.n_regions, tmesh.n_cora, tmesh.n_corb, tmesh.n_corc = extras

    n_bounds = tmesh.n_cora + tmesh.n_corb + tmesh.n_corc + 3
    bounds = scanner.read_list(n_bounds, "tmesh bounds", (profile.value_width,),
                               (real_field(profile.value_width, profile.value_precision),))
    lower = tmesh.n_cora + 1
    upper = lower + tmesh.n_corb + 1
    tmesh.cora = bounds[:lower]
    tmesh.corb = bounds[lower:upper]
    tmesh.corc = bounds[upper:]

    for name, letter in (("flagged", "d"), ("user", "u"), ("segment", "s"), ("multiplier", "m"),
                         ("cosine", "c"), ("energy", "e"), ("time", "t")):
        count, extras = _tmesh_tag(scanner.next(f"tmesh {letter}"), letter, profile)
        if extras:
            raise MalformedRecord(scanner.last_line, f"tmesh {letter}", f"unexpected fields {extras}")
        setattr(tmesh, name, count)

    tmesh.results = read_results(scanner, "tmesh", tmesh.id, tmesh.shape(), tmesh.counts())
    return tmesh
