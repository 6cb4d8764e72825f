"""
Data model for decoded MCTAL files.

A TallyFile owns its header, the ordered standard tallies, the optional
KCODE block and any TMESH blocks. Numeric payloads are kept as plain lists so
that decoded documents compare by value; numpy views are available through
helper methods.
"""

import os
import json
import pickle
from enum import Enum, IntEnum
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import h5py

from config import FormatVersion, N_PARTICLE_FLAGS, N_TFC_BINS
from logger import log_info, log_error


class Particle(IntEnum):
    """Particle designators, numbered as in an explicit particle list."""
    UNKNOWN = 0
    NEUTRON = 1
    PHOTON = 2
    ELECTRON = 3
    NEGATIVE_MUON = 4
    ANTI_NEUTRON = 5
    ELECTRON_NEUTRINO = 6
    MUON_NEUTRINO = 7
    POSITRON = 8
    PROTON = 9
    LAMBDA_BARYON = 10
    POS_SIGMA_BARYON = 11
    NEG_SIGMA_BARYON = 12
    XI_BARYON = 13
    NEG_XI_BARYON = 14
    OMEGA_BARYON = 15
    POS_MUON = 16
    ANTI_ELECTRON_NEUTRINO = 17
    ANTI_MUON_NEUTRINO = 18
    ANTI_PROTON = 19
    POS_PION = 20
    NEU_PION = 21
    POS_KAON = 22
    SHORT_KAON = 23
    LONG_KAON = 24
    ANTI_LAMBDA_BARYON = 25
    ANTI_POS_SIGMA_BARYON = 26
    ANTI_NEG_SIGMA_BARYON = 27
    ANTI_NEU_XI_BARYON = 28
    POS_XI_BARYON = 29
    ANTI_OMEGA = 30
    DEUTERON = 31
    TRITON = 32
    HELION = 33
    ALPHA = 34
    NEG_PION = 35
    NEG_KAON = 36
    HEAVY_ION = 37


# Enumerated particle combinations for a positive selector
SELECTOR_PARTICLES = {
    1: [Particle.NEUTRON],
    2: [Particle.PHOTON],
    3: [Particle.NEUTRON, Particle.PHOTON],
    4: [Particle.ELECTRON],
    5: [Particle.NEUTRON, Particle.ELECTRON],
    6: [Particle.PHOTON, Particle.ELECTRON],
    7: [Particle.NEUTRON, Particle.PHOTON, Particle.ELECTRON],
}


def particles_from_flags(flags):
    """Particles switched on in an explicit 37-flag list."""
    return [Particle(i + 1) for i, flag in enumerate(flags) if flag]


class DetectorType(IntEnum):
    """Detector type (`j` on the tally header)."""
    NONE = 0
    POINT = 1
    RING = 2
    PINHOLE = 3
    TRANSMITTED_RECTANGULAR = 4
    TRANSMITTED_CYLINDRICAL = 5


class Modifier(IntEnum):
    """Tally modifier (`k` on the tally header)."""
    NONE = 0
    STAR = 1
    PLUS = 2


class BinKind(Enum):
    """The eight binning axes, in file and result-nesting order."""
    REGION = "f"
    FLAGGED = "d"
    USER = "u"
    SEGMENT = "s"
    MULTIPLIER = "m"
    COSINE = "c"
    ENERGY = "e"
    TIME = "t"

    @property
    def tag(self):
        return self.value

    @property
    def attribute(self):
        """Attribute name of this kind on a BinSet."""
        return self.name.lower()


class BinVariant(Enum):
    """Bin tag variant: plain, with a total bin, or cumulative."""
    PLAIN = ""
    TOTAL = "t"
    CUMULATIVE = "c"


@dataclass
class BinRecord:
    """
    One bin sub-record of a tally.

    A count of 0 means one implicit unbounded bin and always has an empty
    value list. For cosine, energy and time bins `flag` is the optional
    integer after the count: absent or 0 means the values are upper bin
    boundaries, anything else means discrete plot points. Region values are
    cell, surface or detector numbers; a 0 there is a composite bin whose
    membership is not recorded in the file.
    """
    kind: BinKind
    count: int = 0
    variant: BinVariant = BinVariant.PLAIN
    flag: Optional[int] = None
    values: list = field(default_factory=list)

    @property
    def tag(self):
        return self.kind.tag + self.variant.value

    @property
    def unbounded(self):
        return self.count == 0

    @property
    def n_bins(self):
        """Number of bins this record contributes to the result layout."""
        return max(1, self.count)

    @property
    def is_discrete(self):
        return bool(self.flag)


@dataclass
class BinSet:
    """Exactly one BinRecord per bin kind."""
    region: BinRecord = field(default_factory=lambda: BinRecord(BinKind.REGION))
    flagged: BinRecord = field(default_factory=lambda: BinRecord(BinKind.FLAGGED))
    user: BinRecord = field(default_factory=lambda: BinRecord(BinKind.USER))
    segment: BinRecord = field(default_factory=lambda: BinRecord(BinKind.SEGMENT))
    multiplier: BinRecord = field(default_factory=lambda: BinRecord(BinKind.MULTIPLIER))
    cosine: BinRecord = field(default_factory=lambda: BinRecord(BinKind.COSINE))
    energy: BinRecord = field(default_factory=lambda: BinRecord(BinKind.ENERGY))
    time: BinRecord = field(default_factory=lambda: BinRecord(BinKind.TIME))

    def __iter__(self):
        for kind in BinKind:
            yield getattr(self, kind.attribute)

    def __getitem__(self, kind):
        return getattr(self, BinKind(kind).attribute)

    def __setitem__(self, kind, record):
        setattr(self, BinKind(kind).attribute, record)

    def counts(self):
        """Declared counts in kind order."""
        return [record.count for record in self]

    def shape(self):
        """Result layout, substituting 1 for every count of 0."""
        return tuple(record.n_bins for record in self)


@dataclass
class TallyResult:
    """A tally value and its relative error."""
    value: float
    error: float

    def absolute_error(self):
        return self.value * self.error


class FomState(Enum):
    """Figure-of-merit state on a fluctuation chart record."""
    PRESENT = "present"
    ABSENT = "absent"
    NOT_COMPUTED = "not_computed"


@dataclass
class TfcRecord:
    """One cycle of a tally fluctuation chart."""
    nps: int
    mean: float
    error: float
    fom: Optional[float] = None
    fom_state: FomState = FomState.PRESENT

    def absolute_error(self):
        return self.mean * self.error


@dataclass
class FluctuationChart:
    """Tally fluctuation chart: chart-bin indices and per-cycle records."""
    n_records: int = 0
    bins: List[int] = field(default_factory=lambda: [1] * N_TFC_BINS)
    records: List[TfcRecord] = field(default_factory=list)


@dataclass
class Tally:
    """A standard tally: header, comments, bins, results and fluctuation chart."""
    id: int
    particle_selector: int = 1
    particle_flags: Optional[List[bool]] = None
    detector: DetectorType = DetectorType.NONE
    modifier: Modifier = Modifier.NONE
    comments: List[str] = field(default_factory=list)
    bins: BinSet = field(default_factory=BinSet)
    results: List[TallyResult] = field(default_factory=list)
    tfc: Optional[FluctuationChart] = None

    @property
    def particles(self):
        """Particles selected by this tally."""
        if self.particle_flags is not None:
            return particles_from_flags(self.particle_flags)
        return SELECTOR_PARTICLES.get(self.particle_selector, [Particle.UNKNOWN])

    @property
    def comment(self):
        return " ".join(line.strip() for line in self.comments)

    def shape(self):
        return self.bins.shape()

    def n_expected_results(self):
        """Number of result pairs implied by the bin counts."""
        return int(np.prod(self.shape()))

    def to_array(self):
        """
        Results as a numpy array.

        Returns:
            numpy.ndarray: Shape (region, flagged, user, segment, multiplier,
            cosine, energy, time, 2), the last axis holding value and
            relative error
        """
        data = np.array([[r.value, r.error] for r in self.results], dtype=float)
        return data.reshape(self.shape() + (2,))

    def region_results(self, index):
        """All results for the region bin at position `index`."""
        n_regions = self.bins.region.n_bins
        if not 0 <= index < n_regions:
            raise IndexError(f"Region index {index} out of range for tally {self.id}")
        n_per_region = len(self.results) // n_regions
        return self.results[index * n_per_region:(index + 1) * n_per_region]

    def find_region(self, region_id):
        """
        Position of a cell, surface or detector number in the region bins.

        Parameters:
            region_id: Region identifier to look for

        Returns:
            int or None: Index of the first matching region bin
        """
        if region_id == 0:
            raise ValueError("Region 0 is a composite bin and cannot be looked up by identifier")
        for index, value in enumerate(self.bins.region.values):
            if value == region_id:
                return index
        return None

    def save(self, directory, file_format='hdf5'):
        """
        Save the tally to a file.

        Parameters:
            directory: Directory to save the file
            file_format: Format to save the file ('pickle' or 'hdf5')

        Returns:
            str: Path to saved file
        """
        os.makedirs(directory, exist_ok=True)

        if file_format == 'pickle':
            filename = os.path.join(directory, f"tally_{self.id}.pkl")
            with open(filename, 'wb') as f:
                pickle.dump(self, f)
        elif file_format == 'hdf5':
            filename = os.path.join(directory, f"tally_{self.id}.h5")
            with h5py.File(filename, 'w') as f:
                self._save_to_hdf5(f)
        else:
            log_error(f"Unsupported file format: {file_format}")
            return None

        log_info(f"Saved tally {self.id} to {filename}")
        return filename

    def _save_to_hdf5(self, h5file):
        h5file.attrs['id'] = self.id
        h5file.attrs['particle_selector'] = self.particle_selector
        h5file.attrs['detector'] = int(self.detector)
        h5file.attrs['modifier'] = int(self.modifier)
        h5file.attrs['comments'] = json.dumps(self.comments)
        if self.particle_flags is not None:
            h5file.create_dataset('particle_flags', data=np.array(self.particle_flags, dtype=bool))

        bins = h5file.create_group('bins')
        for record in self.bins:
            group = bins.create_group(record.kind.attribute)
            group.attrs['count'] = record.count
            group.attrs['variant'] = record.variant.name
            if record.flag is not None:
                group.attrs['flag'] = record.flag
            dtype = int if record.kind is BinKind.REGION else float
            group.create_dataset('values', data=np.array(record.values, dtype=dtype))

        results = np.array([[r.value, r.error] for r in self.results], dtype=float).reshape(-1, 2)
        h5file.create_dataset('results', data=results)

        if self.tfc is not None:
            tfc = h5file.create_group('tfc')
            tfc.attrs['n_records'] = self.tfc.n_records
            tfc.create_dataset('bins', data=np.array(self.tfc.bins, dtype=int))
            records = self.tfc.records
            tfc.create_dataset('nps', data=np.array([r.nps for r in records], dtype=np.int64))
            tfc.create_dataset('mean', data=np.array([r.mean for r in records], dtype=float))
            tfc.create_dataset('error', data=np.array([r.error for r in records], dtype=float))
            fom = [r.fom if r.fom_state is FomState.PRESENT else np.nan for r in records]
            tfc.create_dataset('fom', data=np.array(fom, dtype=float))
            tfc.attrs['fom_state'] = json.dumps([r.fom_state.value for r in records])

    @classmethod
    def load(cls, filename):
        """
        Load a tally saved with `save`.

        Parameters:
            filename: Path to a .pkl or .h5 file

        Returns:
            Tally: The loaded tally
        """
        if filename.endswith('.pkl'):
            with open(filename, 'rb') as f:
                tally = pickle.load(f)
        elif filename.endswith('.h5'):
            with h5py.File(filename, 'r') as f:
                tally = cls._load_from_hdf5(f)
        else:
            raise ValueError(f"Unsupported file format: {filename}")

        log_info(f"Loaded tally {tally.id} from {filename}")
        return tally

    @classmethod
    def _load_from_hdf5(cls, h5file):
        tally = cls(
            id=int(h5file.attrs['id']),
            particle_selector=int(h5file.attrs['particle_selector']),
            detector=DetectorType(int(h5file.attrs['detector'])),
            modifier=Modifier(int(h5file.attrs['modifier'])),
            comments=json.loads(h5file.attrs['comments']),
        )
        if 'particle_flags' in h5file:
            tally.particle_flags = [bool(v) for v in h5file['particle_flags'][()]]

        for kind in BinKind:
            group = h5file['bins'][kind.attribute]
            flag = int(group.attrs['flag']) if 'flag' in group.attrs else None
            tally.bins[kind] = BinRecord(
                kind=kind,
                count=int(group.attrs['count']),
                variant=BinVariant[str(group.attrs['variant'])],
                flag=flag,
                values=group['values'][()].tolist(),
            )

        tally.results = [TallyResult(float(v), float(e)) for v, e in h5file['results'][()]]

        if 'tfc' in h5file:
            group = h5file['tfc']
            states = [FomState(s) for s in json.loads(group.attrs['fom_state'])]
            records = []
            for nps, mean, error, fom, state in zip(group['nps'][()], group['mean'][()],
                                                    group['error'][()], group['fom'][()], states):
                records.append(TfcRecord(
                    nps=int(nps),
                    mean=float(mean),
                    error=float(error),
                    fom=float(fom) if state is FomState.PRESENT else None,
                    fom_state=state,
                ))
            tally.tfc = FluctuationChart(
                n_records=int(group.attrs['n_records']),
                bins=group['bins'][()].tolist(),
                records=records,
            )
        return tally


# Names of the KCODE row values, in file order
KCODE_FIELDS = (
    "keff_collision",
    "keff_absorption",
    "keff_track_length",
    "lifetime_collision",
    "lifetime_absorption",
    "av_keff_collision",
    "av_keff_collision_sigma",
    "av_keff_absorption",
    "av_keff_absorption_sigma",
    "av_keff_track_length",
    "av_keff_track_length_sigma",
    "av_keff_combined",
    "av_keff_combined_sigma",
    "av_keff_combined_by_cycle",
    "av_keff_combined_by_cycle_sigma",
    "av_lifetime",
    "av_lifetime_sigma",
    "n_histories",
    "fom",
)


@dataclass
class KcodeCycle:
    """KCODE quantities for one cycle (18 values, or 19 with the FOM)."""
    values: List[float]

    def __getattr__(self, name):
        if name in KCODE_FIELDS:
            index = KCODE_FIELDS.index(name)
            values = self.__dict__.get('values', [])
            return values[index] if index < len(values) else None
        raise AttributeError(name)

    @property
    def width(self):
        return len(self.values)

    def as_dict(self):
        return {name: getattr(self, name) for name in KCODE_FIELDS}


@dataclass
class KcodeBlock:
    """Criticality-cycle records for an eigenvalue run."""
    recorded_cycles: int
    settle_cycles: int
    n_variables: int
    cycles: List[KcodeCycle] = field(default_factory=list)

    def to_array(self):
        """Cycle rows as a 2-D array, NaN-padded where the FOM is missing."""
        data = np.full((len(self.cycles), len(KCODE_FIELDS)), np.nan)
        for i, cycle in enumerate(self.cycles):
            data[i, :cycle.width] = cycle.values
        return data


class MeshGeometry(IntEnum):
    """TMESH geometry kinds."""
    RECTANGULAR = 1
    CYLINDRICAL = 2
    SPHERICAL = 3

    @property
    def long_name(self):
        return self.name.capitalize()

    @property
    def short_name(self):
        return self.long_name[:3]

    @property
    def coordinate_name(self):
        return {1: "XYZ", 2: "RZT", 3: "RPT"}[self.value]


@dataclass
class TmeshBlock:
    """
    Superimposed mesh tally (TMESH).

    Bin records are repurposed: the region axis becomes the voxel count and
    the segment count is the number of superimposed result groups.
    """
    id: int
    particle_selector: int = -1
    particle_flags: List[bool] = field(default_factory=lambda: [False] * N_PARTICLE_FLAGS)
    geometry: MeshGeometry = MeshGeometry.RECTANGULAR
    n_voxels: int = 0
    n_regions: int = 0
    n_cora: int = 0
    n_corb: int = 0
    n_corc: int = 0
    cora: List[float] = field(default_factory=list)
    corb: List[float] = field(default_factory=list)
    corc: List[float] = field(default_factory=list)
    flagged: int = 0
    user: int = 0
    segment: int = 0
    multiplier: int = 0
    cosine: int = 0
    energy: int = 0
    time: int = 0
    results: List[TallyResult] = field(default_factory=list)

    @property
    def particles(self):
        return particles_from_flags(self.particle_flags)

    def counts(self):
        """Counts in result-nesting order, the voxel axis outermost."""
        return [self.n_voxels, self.flagged, self.user, self.segment,
                self.multiplier, self.cosine, self.energy, self.time]

    def shape(self):
        return tuple(max(1, count) for count in self.counts())

    def n_expected_results(self):
        return int(np.prod(self.shape()))

    def result_groups(self):
        """
        Split the results by superimposed result group.

        Returns:
            list: One list of TallyResult per segment bin
        """
        shape = self.shape()
        index = np.arange(int(np.prod(shape))).reshape(shape)
        groups = []
        for group in range(shape[3]):
            groups.append([self.results[i] for i in index[:, :, :, group].ravel()])
        return groups


@dataclass
class Header:
    """Run information and declared tally identifiers."""
    code: str = ""
    code_version: str = ""
    problem_id: str = ""
    dump: int = 0
    n_histories: int = 0
    n_random: int = 0
    message: str = ""
    n_tallies: int = 0
    n_perturbations: Optional[int] = None
    tally_ids: List[int] = field(default_factory=list)


@dataclass
class TallyFile:
    """A fully decoded MCTAL file."""
    version: FormatVersion = FormatVersion.CURRENT
    header: Header = field(default_factory=Header)
    tallies: List[Tally] = field(default_factory=list)
    kcode: Optional[KcodeBlock] = None
    tmesh: List[TmeshBlock] = field(default_factory=list)
    warnings: list = field(default_factory=list, compare=False, repr=False)

    def get_tally(self, tally_id):
        for tally in self.tallies:
            if tally.id == tally_id:
                return tally
        return None

    def get_tmesh(self, tmesh_id):
        for tmesh in self.tmesh:
            if tmesh.id == tmesh_id:
                return tmesh
        return None
