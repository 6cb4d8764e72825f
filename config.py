"""
Configuration module for the MCTAL codec.
Contains the format version profiles (field widths per producer version)
and the codec options consumed by the reader and writer.
"""

import os
import yaml
import json
from enum import Enum
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Any


class FormatVersion(Enum):
    """Supported MCTAL producer versions."""
    LEGACY = "legacy"
    CURRENT = "current"


# Number of particle designators in an explicit particle list
N_PARTICLE_FLAGS = 37

# Number of chart-bin indices on a TFC header record
N_TFC_BINS = 8

# KCODE rows carry 18 values, or 19 when the figure of merit is printed
KCODE_ROW_WIDTHS = (18, 19)


@dataclass(frozen=True)
class FormatProfile:
    """Field widths and optional-field rules for one MCTAL version."""
    version: FormatVersion

    # First header line: code (A8), version (A8), problem id (A19), dump,
    # number of histories, number of random numbers
    code_width: int = 8
    code_version_width: int = 8
    problem_id_width: int = 19
    dump_width: int = 5
    nps_width: int = 11
    rnr_width: int = 15

    # "ntal" and "npert" counts
    ntal_width: int = 6
    npert_width: int = 6

    # Declared tally identifiers
    tally_id_width: int = 5
    tally_ids_per_line: int = 16

    # "tally" header record fields
    tally_field_width: int = 5

    # Explicit particle list (37 x I2)
    particle_flag_width: int = 2

    # Comment lines are prefixed by blank columns (5X)
    comment_indent: int = 5

    # Bin records: tag (A2), count (I8), flag (I4)
    bin_tag_width: int = 2
    bin_count_width: int = 8
    bin_flag_width: int = 4

    # Continuation lists
    line_indent: str = ""
    region_width: int = 7
    regions_per_line: int = 11
    value_width: int = 13
    value_precision: int = 5
    values_per_line: int = 6

    # Result pairs: value (ES13.5), relative error (F7.4)
    result_value_width: int = 13
    result_error_width: int = 7
    result_error_precision: int = 4
    results_per_line: int = 4

    # Tally fluctuation chart
    tfc_count_width: int = 5
    tfc_bin_width: int = 8
    tfc_nps_width: int = 11

    # KCODE block
    kcode_field_width: int = 5
    kcode_value_width: int = 12
    kcode_values_per_line: int = 5

    # TMESH dimension record
    tmesh_field_width: int = 8

    @property
    def header_numeric_start(self) -> int:
        """Column where the numeric fields of the first header line begin."""
        return self.code_width + self.code_version_width + self.problem_id_width

    @property
    def kcode_lines_per_row(self) -> int:
        """Lines spanned by one KCODE cycle row."""
        widest = max(KCODE_ROW_WIDTHS)
        return -(-widest // self.kcode_values_per_line)


# Version profiles, one entry per supported producer
PROFILES = {
    FormatVersion.LEGACY: FormatProfile(version=FormatVersion.LEGACY),
    FormatVersion.CURRENT: FormatProfile(
        version=FormatVersion.CURRENT,
        nps_width=15,
        rnr_width=16,
        tally_id_width=6,
        line_indent=" ",
        tfc_nps_width=15,
    ),
}

DEFAULT_VERSION = FormatVersion.CURRENT


def get_profile(version) -> FormatProfile:
    """
    Look up the field-width profile for a format version.

    Parameters:
        version: FormatVersion, its string value ('legacy' or 'current'),
            or an existing FormatProfile

    Returns:
        FormatProfile: Profile for the version
    """
    if isinstance(version, FormatProfile):
        return version
    if isinstance(version, str):
        try:
            version = FormatVersion(version.lower())
        except ValueError:
            raise ValueError(f"Unknown MCTAL format version: {version}")
    if version not in PROFILES:
        raise ValueError(f"Unknown MCTAL format version: {version}")
    return PROFILES[version]


@dataclass
class CodecConfig:
    """Configuration for reading and writing MCTAL files."""
    # Format version: 'legacy', 'current' or 'auto' to sniff the header
    version: str = "auto"

    # Parallel tally decoding
    parallel: bool = True
    workers: Optional[int] = None
    show_progress: bool = False

    # Treat unrecognised lines after the last block as an error
    strict_trailing: bool = False

    # Logging
    log_file: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate parameters after initialization."""
        valid_versions = ["auto"] + [v.value for v in FormatVersion]
        if self.version not in valid_versions:
            raise ValueError(f"version must be one of {valid_versions}, got {self.version}")

        if self.workers is not None and self.workers <= 0:
            raise ValueError(f"workers must be positive, got {self.workers}")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            raise ValueError(f"Invalid log_level: {self.log_level}")

    @property
    def format_version(self) -> Optional[FormatVersion]:
        """Explicit format version, or None when the header should be sniffed."""
        if self.version == "auto":
            return None
        return FormatVersion(self.version)

    @staticmethod
    def _file_format(filepath: str) -> Optional[str]:
        """'yaml' or 'json' from an options file extension, or None."""
        extension = os.path.splitext(filepath)[1].lower()
        if extension in ('.yaml', '.yml'):
            return 'yaml'
        if extension == '.json':
            return 'json'
        return None

    @classmethod
    def from_file(cls, filepath: str) -> 'CodecConfig':
        """
        Load codec options from a YAML or JSON file.

        Keys that are not codec options are ignored, and an empty file
        gives the defaults.

        Parameters:
            filepath: Path to a .yaml, .yml or .json options file

        Returns:
            CodecConfig: The options, validated by __post_init__
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Codec options file not found: {filepath}")

        file_format = cls._file_format(filepath)
        if file_format is None:
            raise ValueError(f"Codec options must be given as .yaml, .yml or .json, not {filepath}")

        try:
            with open(filepath, 'r') as f:
                options = yaml.safe_load(f) if file_format == 'yaml' else json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot parse codec options in {filepath}: {e}")

        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ValueError(f"Codec options in {filepath} must be a mapping of option names")

        known = {k: v for k, v in options.items() if k in cls.__annotations__}
        try:
            return cls(**known)
        except TypeError as e:
            raise ValueError(f"Bad codec options in {filepath}: {e}")

    def save_to_file(self, filepath: str) -> None:
        """Write the codec options as YAML or JSON, chosen by the file extension."""
        file_format = self._file_format(filepath)
        if file_format is None:
            raise ValueError(f"Codec options can only be saved as .yaml, .yml or .json, not {filepath}")

        os.makedirs(os.path.dirname(os.path.abspath(filepath)), exist_ok=True)
        with open(filepath, 'w') as f:
            if file_format == 'yaml':
                yaml.dump(self.to_dict(), f, default_flow_style=False)
            else:
                json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> Dict[str, Any]:
        """Codec options keyed by field name, as written by save_to_file."""
        return asdict(self)


def load_config(filepath=None):
    """
    Load the codec configuration.

    Parameters:
        filepath: Optional path to a YAML or JSON configuration file

    Returns:
        CodecConfig: Loaded configuration, or the defaults if no file is given
    """
    if filepath is None:
        return CodecConfig()
    return CodecConfig.from_file(filepath)
