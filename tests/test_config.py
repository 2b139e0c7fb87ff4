from pathlib import Path

import pytest
from pydantic import ValidationError

from m6ss.config import DEFAULT_HOPPING_SEQUENCES, SLOT_DURATION_NS, ScheduleParameters, ValidationSettings
from m6ss.errors import InvalidConfigurationError


def _params(**overrides) -> dict:
    data = {
        "channels": [11, 13, 14, 12],
        "slots_per_frame": 101,
        "beacon_send_probability": 0.9,
        "reception_probability": {11: 0.1, 13: 0.9, 14: 0.5, 12: 1.0},
        "scan_duration_ns": 5_250_000_000,
        "switch_delay_ns": 0,
        "beacon_duration_ns": 4_256_000,
    }
    data.update(overrides)
    return data


def test_valid_parameters_and_derived_values() -> None:
    p = ScheduleParameters(**_params())
    assert p.channels == (11, 13, 14, 12)
    assert p.num_channels == 4
    assert p.slotframe_duration_ns == 101 * SLOT_DURATION_NS
    assert p.channel_rotation_ns == 4 * 101 * SLOT_DURATION_NS
    assert p.scan_ratio == pytest.approx(5.25 / 1.01)
    assert p.average_reception_probability == pytest.approx(0.625)


def test_invalid_configuration_is_a_value_error() -> None:
    assert issubclass(InvalidConfigurationError, ValueError)


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"channels": [10, 13, 14, 12], "reception_probability": {10: 1, 13: 1, 14: 1, 12: 1}}, "outside 11..26"),
        ({"channels": [11, 27, 14, 12], "reception_probability": {11: 1, 27: 1, 14: 1, 12: 1}}, "outside 11..26"),
        ({"channels": [11, 11, 14, 12], "reception_probability": {11: 1, 14: 1, 12: 1}}, "unique"),
        ({"slots_per_frame": 0}, "slots_per_frame must be greater than 0"),
        ({"slots_per_frame": 100}, "co-prime"),
        ({"beacon_send_probability": 1.5}, "beacon_send_probability is not a valid probability"),
        ({"beacon_send_probability": -0.1}, "beacon_send_probability is not a valid probability"),
        ({"reception_probability": {11: 0.1, 13: 0.9, 14: 0.5}}, "no entry for channel 12"),
        ({"reception_probability": {11: 0.1, 13: 0.9, 14: 0.5, 12: 1.2}}, "channel 12 is not a valid probability"),
        ({"reception_probability": {11: 0.1, 13: 0.9, 14: 0.5, 12: 1.0, 15: 1.0}}, "not in channels"),
        ({"scan_duration_ns": 0}, "scan_duration_ns must be greater than 0"),
        ({"switch_delay_ns": -1}, "switch_delay_ns must be greater than or equal to 0"),
        ({"beacon_duration_ns": -1}, "beacon_duration_ns cannot be negative"),
    ],
)
def test_each_invariant_is_enforced(overrides: dict, message: str) -> None:
    with pytest.raises(InvalidConfigurationError, match=message):
        ScheduleParameters(**_params(**overrides))


def test_two_channels_and_four_slots_are_not_coprime() -> None:
    with pytest.raises(InvalidConfigurationError, match="co-prime"):
        ScheduleParameters(**_params(channels=[11, 12], slots_per_frame=4, reception_probability={11: 1, 12: 1}))


def test_empty_channel_list_rejected() -> None:
    with pytest.raises(InvalidConfigurationError, match="must not be empty"):
        ScheduleParameters(**_params(channels=[], slots_per_frame=1, reception_probability={}))


def test_violations_are_reported_in_check_order() -> None:
    with pytest.raises(InvalidConfigurationError) as info:
        ScheduleParameters(**_params(slots_per_frame=0, scan_duration_ns=0))
    text = str(info.value)
    assert text.index("slots_per_frame must be greater than 0") < text.index("scan_duration_ns must be greater than 0")


def test_parameters_are_immutable() -> None:
    p = ScheduleParameters(**_params())
    with pytest.raises(ValidationError):
        p.slots_per_frame = 7  # type: ignore[misc]


def test_reception_probabilities_cannot_be_changed_after_validation() -> None:
    p = ScheduleParameters(**_params())
    with pytest.raises(TypeError):
        p.reception_probability[12] = 7.5  # type: ignore[index]
    with pytest.raises(TypeError):
        del p.reception_probability[11]  # type: ignore[attr-defined]
    assert dict(p.reception_probability) == {11: 0.1, 13: 0.9, 14: 0.5, 12: 1.0}
    assert hash(p) == hash(ScheduleParameters(**_params()))
    assert p.model_dump()["reception_probability"] == {11: 0.1, 13: 0.9, 14: 0.5, 12: 1.0}


def test_with_scan_duration_returns_validated_copy() -> None:
    p = ScheduleParameters(**_params())
    q = p.with_scan_duration(p.channel_rotation_ns)
    assert q.scan_duration_ns == p.channel_rotation_ns
    assert p.scan_duration_ns == 5_250_000_000
    with pytest.raises(InvalidConfigurationError):
        p.with_scan_duration(0)


def test_default_uses_standard_hopping_sequence() -> None:
    p = ScheduleParameters.default(8, 101, 1.0, 0.5, 1_000_000_000)
    assert p.channels == DEFAULT_HOPPING_SEQUENCES[8]
    assert set(p.reception_probability) == set(p.channels)
    assert all(v == 0.5 for v in p.reception_probability.values())


def test_default_rejects_unknown_channel_count() -> None:
    with pytest.raises(InvalidConfigurationError, match="no default hopping sequence"):
        ScheduleParameters.default(17, 101, 1.0, 0.5, 1_000_000_000)


def test_non_integer_channel_count_rejected() -> None:
    data = _params(num_channels=[4])
    del data["channels"]
    with pytest.raises(InvalidConfigurationError, match="no default hopping sequence"):
        ScheduleParameters.from_mapping(data)


def test_from_yaml_with_shorthands(tmp_path: Path) -> None:
    path = tmp_path / "params.yaml"
    path.write_text(
        """
num_channels: 4
slots_per_frame: 101
beacon_send_probability: 1.0
reception_probability: 0.75
scan_duration_ns: 4040000000
switch_delay_ns: 0
beacon_duration_ns: 4256000
""".lstrip(),
        encoding="utf-8",
    )
    p = ScheduleParameters.from_yaml(path)
    assert p.channels == (11, 13, 14, 12)
    assert p.reception_probability == {11: 0.75, 13: 0.75, 14: 0.75, 12: 0.75}


def test_from_yaml_invalid(tmp_path: Path) -> None:
    path = tmp_path / "params.yaml"
    path.write_text("channels: [11, 12]\nslots_per_frame: 4\n", encoding="utf-8")
    with pytest.raises(InvalidConfigurationError, match="Invalid schedule parameters"):
        ScheduleParameters.from_yaml(path)


def test_from_yaml_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ScheduleParameters.from_yaml(tmp_path / "missing.yaml")


def test_validation_settings_defaults_and_yaml(tmp_path: Path) -> None:
    settings = ValidationSettings()
    assert settings.max_allowed_error == pytest.approx(0.01)
    assert settings.batch_size == 100

    path = tmp_path / "validation.yaml"
    path.write_text("num_random_cases: 0\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid validation settings"):
        ValidationSettings.from_yaml(path)
