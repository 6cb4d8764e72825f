"""
Validation module for decoded MCTAL documents.
Checks that a TallyFile is internally consistent and that every field fits
the columns of the format version it is about to be written in. The widths
checked are the ones the decoder accepts, so a document that validates
decodes back to itself after encoding.
"""

import math

from config import N_PARTICLE_FLAGS, N_TFC_BINS, KCODE_ROW_WIDTHS, get_profile
from bins import BIN_POLICIES, ListPolicy, expected_values
from scanner import format_real, format_fixed
from tally import BinKind, BinVariant, FomState


def _fits(value, width):
    return len(str(value)) <= width


def _finite(values):
    return all(math.isfinite(v) for v in values)


def _reals_fit(values, width, precision, formatter=format_real):
    """Check that each real is finite and reads back unchanged from a `width` column field."""
    return all(math.isfinite(v) and formatter(v, width, precision) is not None for v in values)


def _check_fields(owner, fields, width):
    """Errors for named integer fields wider than `width` columns."""
    return [f"{owner}: {name} {value} does not fit in {width} columns"
            for name, value in fields if not _fits(value, width)]


def validate_header(header, profile):
    """
    Validate the run header against the profile's field widths.

    Parameters:
        header: Header to check
        profile: FormatProfile the header will be written with

    Returns:
        list: Validation errors
    """
    errors = []

    for name, width in [('code', profile.code_width),
                        ('code_version', profile.code_version_width),
                        ('problem_id', profile.problem_id_width)]:
        if len(getattr(header, name)) > width:
            errors.append(f"Header {name} is longer than {width} characters")

    for name, width in [('dump', profile.dump_width),
                        ('n_histories', profile.nps_width),
                        ('n_random', profile.rnr_width)]:
        value = getattr(header, name)
        if not isinstance(value, int) or value < 0:
            errors.append(f"Invalid value for header {name}: must be a non-negative integer")
        elif not _fits(value, width):
            errors.append(f"Header {name} {value} does not fit in {width} columns")

    if "\n" in header.message:
        errors.append("Header message must be a single line")

    if header.n_tallies != len(header.tally_ids):
        errors.append(f"Header declares {header.n_tallies} tallies but lists {len(header.tally_ids)} ids")

    wide = [tally_id for tally_id in header.tally_ids if not _fits(tally_id, profile.tally_id_width)]
    if wide:
        errors.append(f"Declared tally ids {wide} do not fit in {profile.tally_id_width} columns")

    if header.n_perturbations is not None and header.n_perturbations < 0:
        errors.append("Invalid value for n_perturbations: must be non-negative")

    return errors


def validate_bin_record(record, profile):
    """Validate one bin sub-record."""
    errors = []
    policy = BIN_POLICIES[record.kind]
    name = f"{record.kind.attribute} bins"

    if record.count < 0:
        errors.append(f"{name}: count must be non-negative")
        return errors

    if not _fits(record.count, profile.bin_count_width):
        errors.append(f"{name}: count {record.count} does not fit in {profile.bin_count_width} columns")

    if record.variant is not BinVariant.PLAIN and not policy.has_variants:
        errors.append(f"{name}: variant {record.variant.name} not allowed")

    if record.flag is not None and not policy.has_flag:
        errors.append(f"{name}: flag not allowed")
    elif record.flag is not None and not _fits(record.flag, profile.bin_flag_width - 1):
        errors.append(f"{name}: flag {record.flag} does not fit in {profile.bin_flag_width - 1} columns")

    n_values = len(record.values)
    if record.count == 0 or policy.values is ListPolicy.NEVER:
        if n_values:
            errors.append(f"{name}: no values may be listed for count {record.count}")
    elif n_values:
        expected = expected_values(record)
        if not expected <= n_values <= expected + policy.edge_allowance:
            errors.append(f"{name}: {n_values} values listed for count {record.count}")

    if record.kind is BinKind.REGION:
        if not all(isinstance(v, int) and _fits(v, profile.region_width) for v in record.values):
            errors.append(f"{name}: region ids must be integers of at most {profile.region_width} columns")
    elif not _finite(record.values):
        errors.append(f"{name}: values must be finite")
    elif not _reals_fit(record.values, profile.value_width, profile.value_precision):
        errors.append(f"{name}: values must be exact in {profile.value_width} columns")

    return errors


def validate_results(results, expected, owner, profile):
    errors = []
    if len(results) != expected:
        errors.append(f"{owner}: {len(results)} results, bin counts give {expected}")
    if not _finite(r.value for r in results) or not _finite(r.error for r in results):
        errors.append(f"{owner}: result values and errors must be finite")
        return errors
    if not _reals_fit([r.value for r in results], profile.result_value_width, profile.value_precision):
        errors.append(f"{owner}: result values must be exact in {profile.result_value_width} columns")
    if not _reals_fit([r.error for r in results], profile.result_error_width,
                      profile.result_error_precision, format_fixed):
        errors.append(f"{owner}: relative errors must fit in {profile.result_error_width} columns")
    return errors


def validate_tfc(chart, owner, profile):
    """Validate a tally fluctuation chart."""
    errors = []
    if len(chart.bins) != N_TFC_BINS:
        errors.append(f"{owner}: fluctuation chart needs {N_TFC_BINS} bin indices")
    if len(chart.records) != chart.n_records:
        errors.append(f"{owner}: fluctuation chart declares {chart.n_records} records, "
                      f"has {len(chart.records)}")

    errors.extend(_check_fields(owner, [("fluctuation chart count", chart.n_records)], profile.tfc_count_width))
    errors.extend(_check_fields(owner, [("fluctuation chart bin", b) for b in chart.bins], profile.tfc_bin_width))

    for record in chart.records:
        if (record.fom_state is FomState.PRESENT) != (record.fom is not None):
            errors.append(f"{owner}: fluctuation chart FOM does not match its state")
            break
    for record in chart.records:
        reals = [record.mean, record.error] + ([record.fom] if record.fom is not None else [])
        if not _fits(record.nps, profile.tfc_nps_width):
            errors.append(f"{owner}: fluctuation chart nps {record.nps} does not fit in "
                          f"{profile.tfc_nps_width} columns")
            break
        if not _reals_fit(reals, profile.value_width, profile.value_precision):
            errors.append(f"{owner}: fluctuation chart values must be exact in {profile.value_width} columns")
            break
    return errors


def validate_tally(tally, profile):
    """
    Validate a standard tally.

    Parameters:
        tally: Tally to check
        profile: FormatProfile the tally will be written with

    Returns:
        list: Validation errors
    """
    errors = []
    owner = f"Tally {tally.id}"

    errors.extend(_check_fields(owner, [("id", tally.id),
                                        ("particle selector", tally.particle_selector),
                                        ("detector type", int(tally.detector)),
                                        ("modifier", int(tally.modifier))], profile.tally_field_width))

    if tally.particle_selector < 0:
        if tally.particle_flags is None or len(tally.particle_flags) != N_PARTICLE_FLAGS:
            errors.append(f"{owner}: a negative particle selector needs {N_PARTICLE_FLAGS} particle flags")
    elif tally.particle_flags is not None:
        errors.append(f"{owner}: particle flags given with a non-negative selector")

    for comment in tally.comments:
        if "\n" in comment:
            errors.append(f"{owner}: comments must be single lines")
            break

    for kind, record in zip(BinKind, tally.bins):
        if record.kind is not kind:
            errors.append(f"{owner}: {kind.attribute} slot holds {record.kind.attribute} bins")
            continue
        errors.extend(f"{owner}: {error}" for error in validate_bin_record(record, profile))

    errors.extend(validate_results(tally.results, tally.n_expected_results(), owner, profile))

    if tally.tfc is not None:
        errors.extend(validate_tfc(tally.tfc, owner, profile))

    return errors


def validate_kcode(kcode, profile):
    errors = []
    errors.extend(_check_fields("KCODE block", [("recorded cycles", kcode.recorded_cycles),
                                                ("settle cycles", kcode.settle_cycles),
                                                ("variable count", kcode.n_variables)],
                                profile.kcode_field_width))
    if len(kcode.cycles) != kcode.recorded_cycles:
        errors.append(f"KCODE block declares {kcode.recorded_cycles} cycles, has {len(kcode.cycles)}")
    for i, cycle in enumerate(kcode.cycles):
        if cycle.width not in KCODE_ROW_WIDTHS:
            errors.append(f"KCODE cycle {i + 1} has {cycle.width} values")
        elif not _finite(cycle.values):
            errors.append(f"KCODE cycle {i + 1} has non-finite values")
        elif not _reals_fit(cycle.values, profile.kcode_value_width, profile.value_precision):
            errors.append(f"KCODE cycle {i + 1} values must be exact in {profile.kcode_value_width} columns")
    return errors


def validate_tmesh(tmesh, profile):
    errors = []
    owner = f"TMESH {tmesh.id}"

    errors.extend(_check_fields(owner, [("id", tmesh.id),
                                        ("particle selector", tmesh.particle_selector),
                                        ("geometry", -int(tmesh.geometry))], profile.tally_field_width))

    if len(tmesh.particle_flags) != N_PARTICLE_FLAGS:
        errors.append(f"{owner}: needs {N_PARTICLE_FLAGS} particle flags")

    for axis in ('a', 'b', 'c'):
        n = getattr(tmesh, f"n_cor{axis}")
        bounds = getattr(tmesh, f"cor{axis}")
        if len(bounds) != n + 1:
            errors.append(f"{owner}: axis {axis} has {len(bounds)} bounds for {n} bins")
        elif not _finite(bounds):
            errors.append(f"{owner}: axis {axis} bounds must be finite")
        elif not _reals_fit(bounds, profile.value_width, profile.value_precision):
            errors.append(f"{owner}: axis {axis} bounds must be exact in {profile.value_width} columns")

    if any(count < 0 for count in tmesh.counts()):
        errors.append(f"{owner}: bin counts must be non-negative")
    else:
        # the voxel count opens the f record; the four fields after it need a separating blank
        errors.extend(_check_fields(owner, [("voxel count", tmesh.n_voxels)], profile.tmesh_field_width))
        errors.extend(_check_fields(owner, [("region count", tmesh.n_regions), ("a bins", tmesh.n_cora),
                                            ("b bins", tmesh.n_corb), ("c bins", tmesh.n_corc)],
                                    profile.tmesh_field_width - 1))
        errors.extend(_check_fields(owner, [(f"{letter} count", count)
                                            for letter, count in zip("dusmcet", tmesh.counts()[1:])],
                                    profile.bin_count_width))

    errors.extend(validate_results(tmesh.results, tmesh.n_expected_results(), owner, profile))
    return errors


def validate_tally_file(doc, version=None):
    """
    Validate a TallyFile for encoding.

    Parameters:
        doc: TallyFile to check
        version: FormatVersion or FormatProfile to check against; the
            document's own version if None

    Returns:
        tuple: (bool indicating if the document is valid, list of validation errors)
    """
    profile = get_profile(version if version is not None else doc.version)
    errors = []

    errors.extend(validate_header(doc.header, profile))

    ids = [tally.id for tally in doc.tallies]
    if ids != doc.header.tally_ids:
        errors.append(f"Declared tally ids {doc.header.tally_ids} do not match tallies {ids}")

    for tally in doc.tallies:
        errors.extend(validate_tally(tally, profile))

    if doc.kcode is not None:
        errors.extend(validate_kcode(doc.kcode, profile))

    for tmesh in doc.tmesh:
        errors.extend(validate_tmesh(tmesh, profile))

    return len(errors) == 0, errors
