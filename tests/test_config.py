import json

import pytest
import yaml

from config import (CodecConfig, FormatVersion, FormatProfile, PROFILES, DEFAULT_VERSION,
                    get_profile, load_config)


def test_profiles_differ_in_widths():
    legacy = get_profile(FormatVersion.LEGACY)
    current = get_profile("current")
    assert legacy.nps_width == 11
    assert current.nps_width == 15
    assert legacy.tally_id_width == 5
    assert current.tally_id_width == 6
    assert legacy.line_indent == ""
    assert current.line_indent == " "
    assert legacy.header_numeric_start == current.header_numeric_start == 35
    assert legacy.kcode_lines_per_row == 4


def test_get_profile_accepts_profile():
    profile = PROFILES[DEFAULT_VERSION]
    assert get_profile(profile) is profile
    assert isinstance(profile, FormatProfile)


def test_unknown_version():
    with pytest.raises(ValueError):
        get_profile("ancient")


def test_defaults():
    config = load_config()
    assert config.version == "auto"
    assert config.format_version is None
    assert config.parallel
    assert not config.strict_trailing


@pytest.mark.parametrize("kwargs", [
    {"version": "v7"},
    {"workers": 0},
    {"log_level": "LOUD"},
])
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        CodecConfig(**kwargs)


def test_yaml_round_trip(tmp_path):
    path = str(tmp_path / "codec.yaml")
    config = CodecConfig(version="legacy", workers=2, strict_trailing=True)
    config.save_to_file(path)
    loaded = CodecConfig.from_file(path)
    assert loaded == config
    assert loaded.format_version is FormatVersion.LEGACY


def test_json_round_trip(tmp_path):
    path = str(tmp_path / "codec.json")
    config = CodecConfig(show_progress=True, log_level="DEBUG")
    config.save_to_file(path)
    with open(path) as f:
        assert json.load(f)["show_progress"] is True
    assert load_config(path) == config


def test_unknown_keys_are_ignored(tmp_path):
    path = tmp_path / "codec.yml"
    path.write_text(yaml.dump({"version": "current", "colour": "blue"}))
    assert CodecConfig.from_file(str(path)).version == "current"


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "codec.yaml"
    path.write_text("")
    assert CodecConfig.from_file(str(path)) == CodecConfig()


def test_bad_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        CodecConfig.from_file(str(tmp_path / "missing.yaml"))

    path = tmp_path / "codec.txt"
    path.write_text("version: current")
    with pytest.raises(ValueError):
        CodecConfig.from_file(str(path))

    path = tmp_path / "codec.json"
    path.write_text("{not json")
    with pytest.raises(ValueError):
        CodecConfig.from_file(str(path))

    with pytest.raises(ValueError):
        CodecConfig().save_to_file(str(tmp_path / "codec.ini"))


def test_to_dict():
    assert CodecConfig().to_dict()["version"] == "auto"


def test_options_file_must_be_a_mapping(tmp_path):
    path = tmp_path / "codec.yaml"
    path.write_text("- legacy\n- current\n")
    with pytest.raises(ValueError) as info:
        CodecConfig.from_file(str(path))
    assert "mapping of option names" in str(info.value)


def test_error_messages_name_the_file(tmp_path):
    path = tmp_path / "codec.yaml"
    path.write_text("version: [unclosed")
    with pytest.raises(ValueError) as info:
        CodecConfig.from_file(str(path))
    assert "Cannot parse codec options" in str(info.value)
    assert str(path) in str(info.value)

    with pytest.raises(ValueError) as info:
        CodecConfig().save_to_file(str(tmp_path / "codec.toml"))
    assert "codec.toml" in str(info.value)


def test_extension_is_case_insensitive(tmp_path):
    path = str(tmp_path / "codec.YAML")
    CodecConfig(version="current").save_to_file(path)
    assert CodecConfig.from_file(path).version == "current"
