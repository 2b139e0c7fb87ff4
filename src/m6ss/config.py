from __future__ import annotations

from math import gcd
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from pydantic import ValidationError
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .errors import InvalidConfigurationError


SLOT_DURATION_NS = 10_000_000
"""Default timeslot duration in the 2.4 GHz band (10 ms)."""

TX_OFFSET_NS = 2_120_000
"""Offset between the start of a timeslot and the start of a frame transmission (2120 us)."""

MIN_CHANNEL = 11
MAX_CHANNEL = 26

# Standard channel hopping sequences of the 2.4 GHz band, keyed by number of channels.
DEFAULT_HOPPING_SEQUENCES: dict[int, tuple[int, ...]] = {
    1: (11,),
    2: (11, 12),
    3: (11, 13, 12),
    4: (11, 13, 14, 12),
    5: (11, 13, 14, 15, 12),
    6: (16, 12, 15, 11, 13, 14),
    7: (14, 13, 15, 11, 16, 12, 17),
    8: (16, 12, 15, 11, 14, 13, 17, 18),
    9: (11, 13, 12, 16, 17, 18, 19, 14, 15),
    10: (16, 12, 19, 13, 17, 14, 20, 18, 15, 11),
    11: (16, 12, 11, 20, 17, 18, 14, 13, 19, 15, 21),
    12: (16, 19, 15, 20, 13, 12, 21, 18, 22, 11, 14, 17),
    13: (15, 13, 20, 19, 17, 23, 16, 12, 21, 22, 14, 11, 18),
    14: (14, 11, 21, 18, 16, 19, 17, 20, 22, 24, 15, 23, 12, 13),
    15: (17, 22, 24, 18, 12, 11, 25, 13, 19, 16, 14, 15, 20, 23, 21),
    16: (16, 17, 23, 18, 26, 15, 25, 22, 19, 11, 12, 13, 24, 14, 20, 21),
}


class ScheduleParameters(BaseModel):
    """Parameters of the synchronization procedure of a joining node.

    ``channels`` is the channel hopping sequence of the network, and
    ``reception_probability`` holds, for every channel of the sequence, the
    probability that an EB sent on the minimal cell is received. Durations are
    integer nanoseconds.
    """

    model_config = ConfigDict(frozen=True)

    channels: tuple[int, ...]
    slots_per_frame: int
    beacon_send_probability: float
    reception_probability: Mapping[int, float]
    scan_duration_ns: int
    switch_delay_ns: int
    beacon_duration_ns: int

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InvalidConfigurationError(f"Invalid schedule parameters\n{exc}") from exc

    @field_validator("channels")
    @classmethod
    def _validate_channels(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if len(v) == 0:
            raise ValueError("channels must not be empty")
        for channel in v:
            if channel < MIN_CHANNEL or channel > MAX_CHANNEL:
                raise ValueError(f"channel {channel} is outside {MIN_CHANNEL}..{MAX_CHANNEL}")
        if len(set(v)) != len(v):
            raise ValueError("channels must contain unique elements")
        return v

    @field_validator("slots_per_frame")
    @classmethod
    def _validate_slots_per_frame(cls, v: int, info):  # noqa: ANN001
        if v <= 0:
            raise ValueError(f"slots_per_frame must be greater than 0 (got {v})")
        channels = info.data.get("channels")
        if channels is None:
            return v
        if gcd(len(channels), v) != 1:
            raise ValueError(
                f"the number of channels ({len(channels)}) and slots_per_frame ({v}) must be co-prime"
            )
        return v

    @field_validator("beacon_send_probability")
    @classmethod
    def _validate_beacon_send_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"beacon_send_probability is not a valid probability: {v}")
        return v

    @field_validator("reception_probability")
    @classmethod
    def _validate_reception_probability(cls, v: Mapping[int, float], info):  # noqa: ANN001
        channels = info.data.get("channels")
        if channels is None:
            return MappingProxyType(dict(v))
        for channel in channels:
            if channel not in v:
                raise ValueError(f"reception_probability has no entry for channel {channel}")
            if not 0.0 <= v[channel] <= 1.0:
                raise ValueError(f"reception_probability of channel {channel} is not a valid probability: {v[channel]}")
        extra = sorted(set(v) - set(channels))
        if extra:
            raise ValueError(f"reception_probability contains channels that are not in channels: {extra}")
        return MappingProxyType(dict(v))

    @field_serializer("reception_probability")
    def _serialize_reception_probability(self, v: Mapping[int, float]) -> dict[int, float]:
        return dict(v)

    def __hash__(self) -> int:
        return hash(
            (
                self.channels,
                self.slots_per_frame,
                self.beacon_send_probability,
                tuple(sorted(self.reception_probability.items())),
                self.scan_duration_ns,
                self.switch_delay_ns,
                self.beacon_duration_ns,
            )
        )

    @field_validator("scan_duration_ns")
    @classmethod
    def _validate_scan_duration(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"scan_duration_ns must be greater than 0 (got {v})")
        return v

    @field_validator("switch_delay_ns")
    @classmethod
    def _validate_switch_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"switch_delay_ns must be greater than or equal to 0 (got {v})")
        return v

    @field_validator("beacon_duration_ns")
    @classmethod
    def _validate_beacon_duration(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"beacon_duration_ns cannot be negative (got {v})")
        return v

    @property
    def num_channels(self) -> int:
        return len(self.channels)

    @property
    def slotframe_duration_ns(self) -> int:
        return self.slots_per_frame * SLOT_DURATION_NS

    @property
    def channel_rotation_ns(self) -> int:
        """Time after which the minimal cell has been scheduled on every channel once."""
        return self.num_channels * self.slotframe_duration_ns

    @property
    def scan_ratio(self) -> float:
        return self.scan_duration_ns / self.slotframe_duration_ns

    @property
    def average_reception_probability(self) -> float:
        return sum(self.reception_probability.values()) / len(self.reception_probability)

    def with_scan_duration(self, scan_duration_ns: int) -> "ScheduleParameters":
        data = self.model_dump()
        data["scan_duration_ns"] = scan_duration_ns
        return type(self)(**data)

    @classmethod
    def default(
        cls,
        num_channels: int,
        slots_per_frame: int,
        beacon_send_probability: float,
        reception_probability: float | Mapping[int, float],
        scan_duration_ns: int,
        switch_delay_ns: int = 0,
        beacon_duration_ns: int = 0,
    ) -> "ScheduleParameters":
        """Build parameters over the standard hopping sequence of ``num_channels`` channels."""
        return cls.from_mapping(
            {
                "num_channels": num_channels,
                "slots_per_frame": slots_per_frame,
                "beacon_send_probability": beacon_send_probability,
                "reception_probability": reception_probability,
                "scan_duration_ns": scan_duration_ns,
                "switch_delay_ns": switch_delay_ns,
                "beacon_duration_ns": beacon_duration_ns,
            }
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ScheduleParameters":
        try:
            return cls.model_validate(_expand_shorthands(data))
        except ValidationError as exc:
            raise InvalidConfigurationError(f"Invalid schedule parameters\n{exc}") from exc

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ScheduleParameters":
        data = _load_yaml(path)
        try:
            return cls.model_validate(_expand_shorthands(data))
        except ValidationError as exc:
            raise InvalidConfigurationError(f"Invalid schedule parameters: {path}\n{exc}") from exc


def _expand_shorthands(data: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve ``num_channels`` and scalar ``reception_probability`` into their full forms."""
    out = dict(data)
    num_channels = out.pop("num_channels", None)
    if "channels" not in out and num_channels is not None:
        if not isinstance(num_channels, int) or num_channels not in DEFAULT_HOPPING_SEQUENCES:
            raise InvalidConfigurationError(
                f"no default hopping sequence for {num_channels} channels "
                f"(expected 1..{max(DEFAULT_HOPPING_SEQUENCES)})"
            )
        out["channels"] = DEFAULT_HOPPING_SEQUENCES[num_channels]
    p_sr = out.get("reception_probability")
    if isinstance(p_sr, (int, float)) and "channels" in out:
        out["reception_probability"] = {channel: float(p_sr) for channel in out["channels"]}
    return out


class ValidationSettings(BaseModel):
    """Tunables of the model-versus-simulator validation."""

    num_random_cases: int = Field(100_000, ge=1)
    num_sim_samples_per_case: int = Field(1_000_000, ge=1)
    max_allowed_error: float = Field(0.01, gt=0.0)
    batch_size: int = Field(100, ge=1)
    database: str = "modelvalidation.db"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ValidationSettings":
        data = _load_yaml(path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid validation settings: {path}\n{exc}") from exc


def _load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(path))
    try:
        return yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover
        raise ValueError(f"Failed to parse YAML: {p}") from exc
