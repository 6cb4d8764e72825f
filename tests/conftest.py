"""
Shared MCTAL text fixtures.

Lines are assembled with the column widths of each format version so that
the encoder is expected to reproduce them exactly.
"""

import pytest

from config import FormatVersion, get_profile

NEUTRON_PHOTON = [1, 1] + [0] * 35
NEUTRON_ONLY = [1] + [0] * 36


def run_line(version, code="mcnp", code_version="6.2", problem_id="01/15/25 10:30:00",
             dump=2, nps=1000000, rnr=12345678):
    p = get_profile(version)
    return (f"{code:<8}{code_version:<8}{problem_id:<19}"
            f"{dump:{p.dump_width}d}{nps:{p.nps_width}d}{rnr:{p.rnr_width}d}")


def tally_line(tally_id, i, j=0, k=0):
    return f"tally{tally_id:5d}{i:5d}{j:5d}{k:5d}"


def tag(name, count, flag=None):
    line = f"{name:<2}{count:8d}"
    if flag is not None:
        line += f"{flag:4d}"
    return line


def reals(values, width=13):
    return "".join(f"{v:{width}.5E}" for v in values)


def pairs(results):
    return "".join(f"{v:13.5E}{e:7.4f}" for v, e in results)


def flags(values):
    return "".join(f"{v:2d}" for v in values)


def chunked(items, size):
    return [items[i:i + size] for i in range(0, len(items), size)]


def minimal_tally(tally_id, energy_bounds=(1.0, 100.0), result=(1.2345e-3, 0.0123), indent=""):
    """A one-region tally with a single energy bin."""
    return [
        tally_line(tally_id, 1),
        tag("f", 1),
        indent + f"{1:7d}",
        tag("d", 1),
        tag("u", 0),
        tag("s", 0),
        tag("m", 0),
        tag("c", 0),
        tag("e", 1),
        indent + reals(energy_bounds),
        tag("t", 0),
        "vals",
        indent + pairs([result]),
    ]


@pytest.fixture
def legacy_lines():
    """Smallest useful legacy file: one tally, one energy bin, one result."""
    return [
        run_line(FormatVersion.LEGACY),
        " minimal problem",
        f"ntal{1:6d}",
        f"{4:5d}",
    ] + minimal_tally(4)


@pytest.fixture
def make_tally_lines():
    """Factory for a legacy file declaring the given tally ids."""
    def build(tally_ids):
        lines = [run_line(FormatVersion.LEGACY), " many tallies", f"ntal{len(tally_ids):6d}"]
        for chunk in chunked(list(tally_ids), 16):
            lines.append("".join(f"{i:5d}" for i in chunk))
        for n, tally_id in enumerate(tally_ids):
            lines.extend(minimal_tally(tally_id, result=(float(n + 1), 0.01)))
        return lines
    return build


TALLY_4_RESULTS = [(1.0e-3, 0.05), (2.0e-3, 0.04), (3.0e-3, 0.03),
                   (4.0e-3, 0.02), (5.0e-3, 0.01), (6.0e-3, 0.005)]

TALLY_14_RESULTS = [(7.5e-1, 0.1), (2.5e-1, 0.2)]

TALLY_24_RESULTS = [(1.0e+2, 0.0), (2.0e+2, 0.0), (3.0e+2, 0.0)]

KCODE_ROWS = [
    [float(v) for v in range(1, 20)],
    [float(v) for v in range(101, 119)],
    [float(v) for v in range(201, 220)],
]

TMESH_BOUNDS = [0.0, 1.0, 2.0, -5.0, 0.0, 5.0, -1.0, 1.0]

TMESH_RESULTS = [(float(v), 0.1) for v in range(1, 9)]


@pytest.fixture
def current_lines():
    """
    Current-format file with three tallies, a KCODE block and a TMESH block.

    Tally 4: two cells, `et 3` energy bins, a fluctuation chart whose last
    FOM is not computed. Tally 14: explicit particle list, cosine bins with
    a boundary flag. Tally 24: point detector with no region list and the
    `ut 3` anomaly.
    """
    i = get_profile(FormatVersion.CURRENT).line_indent
    lines = [
        run_line(FormatVersion.CURRENT, nps=5000000),
        " rich test problem",
        f"ntal{3:6d} npert{0:6d}",
        i + "".join(f"{t:6d}" for t in (4, 14, 24)),

        tally_line(4, 1),
        "     Cell flux",
        tag("f", 2),
        i + f"{10:7d}{20:7d}",
        tag("d", 1),
        tag("u", 0),
        tag("s", 0),
        tag("m", 0),
        tag("c", 0),
        tag("et", 3),
        i + reals([1.0, 10.0]),
        tag("t", 0),
        "vals",
        i + pairs(TALLY_4_RESULTS[:4]),
        i + pairs(TALLY_4_RESULTS[4:]),
        f"tfc{2:5d}" + "".join(f"{b:8d}" for b in (1, 1, 1, 1, 1, 1, 3, 1)),
        i + f"{1000000:15d}" + reals([2.5e-3, 0.05, 1234.5]),
        i + f"{2000000:15d}" + reals([2.6e-3, 0.04]) + "*" * 13,

        tally_line(14, -1),
        i + flags(NEUTRON_PHOTON),
        tag("f", 1),
        i + f"{0:7d}",
        tag("d", 1),
        tag("u", 0),
        tag("s", 0),
        tag("m", 0),
        tag("c", 2, 0),
        i + reals([0.0, 1.0]),
        tag("e", 0),
        tag("t", 0),
        "vals",
        i + pairs(TALLY_14_RESULTS),

        tally_line(24, 2, 1),
        tag("f", 1),
        tag("d", 1),
        tag("ut", 3),
        tag("s", 0),
        tag("m", 0),
        tag("c", 0),
        tag("e", 0),
        tag("t", 0),
        "vals",
        i + pairs(TALLY_24_RESULTS),

        f"kcode{3:5d}{1:5d}{19:5d}",
    ]
    for row in KCODE_ROWS:
        lines.extend(i + reals(chunk, width=12) for chunk in chunked(row, 5))

    lines.extend([
        f"tally{101:5d}{-1:5d}{-1:5d}",
        i + flags(NEUTRON_ONLY),
        f"{'f':<2}" + "".join(f"{n:8d}" for n in (4, 0, 2, 2, 1)),
        i + reals(TMESH_BOUNDS[:6]),
        i + reals(TMESH_BOUNDS[6:]),
        tag("d", 0),
        tag("u", 0),
        tag("s", 2),
        tag("m", 0),
        tag("c", 0),
        tag("e", 0),
        tag("t", 0),
        "vals",
        i + pairs(TMESH_RESULTS[:4]),
        i + pairs(TMESH_RESULTS[4:]),
    ])
    return lines


@pytest.fixture
def serial_config():
    from config import CodecConfig
    return CodecConfig(parallel=False)
