"""
Encoder for MCTAL tally files.

Every record is written with the field widths of the selected FormatProfile,
so that decoding the output with the same version reproduces the document.
"""

from logger import log_info, log_debug, log_error
from config import get_profile
from bins import BIN_POLICIES, ListPolicy
from tally import BinKind, FomState
from scanner import format_real, format_fixed
from validation import validate_tally_file


def _chunks(values, size):
    for i in range(0, len(values), size):
        yield values[i:i + size]


def format_list(values, per_line, fmt, indent=""):
    """Format a continuation list, `per_line` fields to a line."""
    return [indent + "".join(fmt(value) for value in chunk) for chunk in _chunks(list(values), per_line)]


def encode_header(header, profile):
    """Header lines: run line, message, counts and declared ids."""
    lines = [
        f"{header.code:<{profile.code_width}}"
        f"{header.code_version:<{profile.code_version_width}}"
        f"{header.problem_id:<{profile.problem_id_width}}"
        f"{header.dump:{profile.dump_width}d}"
        f"{header.n_histories:{profile.nps_width}d}"
        f"{header.n_random:{profile.rnr_width}d}",
        f" {header.message}",
    ]

    counts = f"ntal{header.n_tallies:{profile.ntal_width}d}"
    if header.n_perturbations is not None:
        counts += f" npert{header.n_perturbations:{profile.npert_width}d}"
    lines.append(counts)

    lines.extend(format_list(header.tally_ids, profile.tally_ids_per_line,
                             lambda v: f"{v:{profile.tally_id_width}d}", profile.line_indent))
    return lines


def encode_particle_flags(flags, profile):
    return [profile.line_indent + "".join(f"{int(flag):{profile.particle_flag_width}d}" for flag in flags)]


def encode_bin_record(record, profile):
    """Tag line and value list of one bin sub-record."""
    line = f"{record.tag:<{profile.bin_tag_width}}{record.count:{profile.bin_count_width}d}"
    if record.flag is not None:
        line += f"{record.flag:{profile.bin_flag_width}d}"
    lines = [line]

    if BIN_POLICIES[record.kind].values is ListPolicy.NEVER or not record.values:
        return lines

    if record.kind is BinKind.REGION:
        lines.extend(format_list(record.values, profile.regions_per_line,
                                 lambda v: f"{v:{profile.region_width}d}", profile.line_indent))
    else:
        lines.extend(format_list(record.values, profile.values_per_line,
                                 lambda v: format_real(v, profile.value_width, profile.value_precision),
                                 profile.line_indent))
    return lines


def encode_results(results, profile):
    """`vals` record followed by the value/error pairs."""
    def pair(result):
        return (format_real(result.value, profile.result_value_width, profile.value_precision)
                + format_fixed(result.error, profile.result_error_width, profile.result_error_precision))

    return ["vals"] + format_list(results, profile.results_per_line, pair, profile.line_indent)


def encode_tfc(chart, profile):
    lines = [f"tfc{chart.n_records:{profile.tfc_count_width}d}"
             + "".join(f"{b:{profile.tfc_bin_width}d}" for b in chart.bins)]
    for record in chart.records:
        line = (profile.line_indent
                + f"{record.nps:{profile.tfc_nps_width}d}"
                + format_real(record.mean, profile.value_width, profile.value_precision)
                + format_real(record.error, profile.value_width, profile.value_precision))
        if record.fom_state is FomState.PRESENT:
            line += format_real(record.fom, profile.value_width, profile.value_precision)
        elif record.fom_state is FomState.NOT_COMPUTED:
            line += "*" * profile.value_width
        lines.append(line)
    return lines


def encode_tally(tally, profile):
    """
    Encode one standard tally.

    Parameters:
        tally: Tally to encode
        profile: FormatProfile giving the field widths

    Returns:
        list: Lines of the tally block
    """
    w = profile.tally_field_width
    lines = [f"tally{tally.id:{w}d}{tally.particle_selector:{w}d}"
             f"{int(tally.detector):{w}d}{int(tally.modifier):{w}d}"]

    if tally.particle_flags is not None:
        lines.extend(encode_particle_flags(tally.particle_flags, profile))

    lines.extend(" " * profile.comment_indent + comment for comment in tally.comments)

    for record in tally.bins:
        lines.extend(encode_bin_record(record, profile))

    lines.extend(encode_results(tally.results, profile))

    if tally.tfc is not None:
        lines.extend(encode_tfc(tally.tfc, profile))
    return lines


def encode_kcode(kcode, profile):
    w = profile.kcode_field_width
    lines = [f"kcode{kcode.recorded_cycles:{w}d}{kcode.settle_cycles:{w}d}{kcode.n_variables:{w}d}"]
    for cycle in kcode.cycles:
        lines.extend(format_list(cycle.values, profile.kcode_values_per_line,
                                 lambda v: format_real(v, profile.kcode_value_width, profile.value_precision),
                                 profile.line_indent))
    return lines


def encode_tmesh(tmesh, profile):
    """Encode one TMESH block; the geometry is written negated."""
    w = profile.tally_field_width
    lines = [f"tally{tmesh.id:{w}d}{tmesh.particle_selector:{w}d}{-int(tmesh.geometry):{w}d}"]
    lines.extend(encode_particle_flags(tmesh.particle_flags, profile))

    dims = (tmesh.n_voxels, tmesh.n_regions, tmesh.n_cora, tmesh.n_corb, tmesh.n_corc)
    lines.append(f"{'f':<{profile.bin_tag_width}}" + "".join(f"{n:{profile.tmesh_field_width}d}" for n in dims))

    bounds = list(tmesh.cora) + list(tmesh.corb) + list(tmesh.corc)
    lines.extend(format_list(bounds, profile.values_per_line,
                             lambda v: format_real(v, profile.value_width, profile.value_precision),
                             profile.line_indent))

    for letter, count in zip("dusmcet", tmesh.counts()[1:]):
        lines.append(f"{letter:<{profile.bin_tag_width}}{count:{profile.bin_count_width}d}")

    lines.extend(encode_results(tmesh.results, profile))
    return lines


def encode_mctal(doc, version=None):
    """
    Encode a TallyFile as MCTAL text.

    Parameters:
        doc: TallyFile to encode
        version: Format version to write; the document's own version if None

    Returns:
        list: Lines of text, without line terminators
    """
    profile = get_profile(version if version is not None else doc.version)

    is_valid, errors = validate_tally_file(doc, profile)
    if not is_valid:
        log_error(f"Cannot encode MCTAL document: {len(errors)} problem(s)")
        for error in errors:
            log_error(f"  {error}")
        raise ValueError("Invalid MCTAL document:\n" + "\n".join(f"  - {error}" for error in errors))

    lines = encode_header(doc.header, profile)
    for tally in doc.tallies:
        log_debug(f"Encoding tally {tally.id}")
        lines.extend(encode_tally(tally, profile))
    if doc.kcode is not None:
        lines.extend(encode_kcode(doc.kcode, profile))
    for tmesh in doc.tmesh:
        log_debug(f"Encoding tmesh {tmesh.id}")
        lines.extend(encode_tmesh(tmesh, profile))
    return lines


def write_mctal(doc, path, version=None):
    """
    Write a TallyFile to disk.

    Parameters:
        doc: TallyFile to write
        path: Output file path
        version: Format version to write; the document's own version if None

    Returns:
        str: Path to the written file
    """
    lines = encode_mctal(doc, version)
    with open(path, 'w') as f:
        for line in lines:
            f.write(line + "\n")

    log_info(f"Wrote {len(doc.tallies)} tallies to {path}")
    return path
