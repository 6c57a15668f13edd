"""Fitness Machine Service (0x1826) records.

Indoor Bike Data fields are laid out in ascending flag-bit order. Bit 0 is the
"More Data" flag, so instantaneous speed is present when it is *clear*.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from blectl.protocols.binary import Cursor, ShortPayload

FTMS_SERVICE_UUID = "1826"
FITNESS_MACHINE_FEATURE_UUID = "2acc"
INDOOR_BIKE_DATA_UUID = "2ad2"
TRAINING_STATUS_UUID = "2ad3"
SUPPORTED_RESISTANCE_RANGE_UUID = "2ad6"
SUPPORTED_POWER_RANGE_UUID = "2ad8"
FITNESS_MACHINE_CONTROL_POINT_UUID = "2ad9"
FITNESS_MACHINE_STATUS_UUID = "2ada"

FITNESS_MACHINE_FEATURES = (
    "Average Speed",
    "Cadence",
    "Total Distance",
    "Inclination",
    "Elevation Gain",
    "Pace",
    "Step Count",
    "Resistance Level",
    "Stride Count",
    "Expended Energy",
    "Heart Rate",
    "Metabolic Equivalent",
    "Elapsed Time",
    "Remaining Time",
    "Power Measurement",
    "Force on Belt / Power Output",
    "User Data Retention",
)

TARGET_SETTING_FEATURES = (
    "Speed Target",
    "Inclination Target",
    "Resistance Target",
    "Power Target",
    "Heart Rate Target",
    "Targeted Expended Energy",
    "Targeted Step Number",
    "Targeted Stride Number",
    "Targeted Distance",
    "Targeted Training Time",
    "Targeted Time in Two HR Zones",
    "Targeted Time in Three HR Zones",
    "Targeted Time in Five HR Zones",
    "Indoor Bike Simulation",
    "Wheel Circumference",
    "Spin Down Control",
    "Targeted Cadence",
)

_DICT_KEYS = {
    "instantaneous_speed": "speed_kmh",
    "average_speed": "avg_speed_kmh",
    "instantaneous_cadence": "cadence_rpm",
    "average_cadence": "avg_cadence_rpm",
    "total_distance": "distance_m",
    "resistance_level": "resistance",
    "instantaneous_power": "power_watts",
    "average_power": "avg_power_watts",
    "total_energy": "energy_kcal",
    "energy_per_hour": "energy_per_hour_kcal",
    "energy_per_minute": "energy_per_minute_kcal",
    "heart_rate": "heart_rate_bpm",
    "metabolic_equivalent": "metabolic_equivalent",
    "elapsed_time": "elapsed_time_s",
    "remaining_time": "remaining_time_s",
}


@dataclass(frozen=True)
class IndoorBikeData:
    instantaneous_speed: float | None = None  # km/h
    average_speed: float | None = None  # km/h
    instantaneous_cadence: float | None = None  # rpm
    average_cadence: float | None = None  # rpm
    total_distance: int | None = None  # m
    resistance_level: int | None = None
    instantaneous_power: int | None = None  # W
    average_power: int | None = None  # W
    total_energy: int | None = None  # kcal
    energy_per_hour: int | None = None  # kcal/h
    energy_per_minute: int | None = None  # kcal/min
    heart_rate: int | None = None  # bpm
    metabolic_equivalent: float | None = None
    elapsed_time: int | None = None  # s
    remaining_time: int | None = None  # s

    def to_dict(self) -> dict[str, Any]:
        return {
            _DICT_KEYS[name]: value for name, value in asdict(self).items() if value is not None
        }

    @property
    def summary(self) -> str:
        parts: list[str] = []
        if self.instantaneous_power is not None:
            parts.append(f"{self.instantaneous_power}W")
        if self.instantaneous_cadence is not None:
            parts.append(f"{int(self.instantaneous_cadence)}rpm")
        if self.instantaneous_speed is not None:
            parts.append(f"{self.instantaneous_speed:.1f}km/h")
        if self.heart_rate is not None:
            parts.append(f"{self.heart_rate}bpm")
        return " | ".join(parts) if parts else "No data"


def parse_indoor_bike_data(data: bytes) -> IndoorBikeData | None:
    """Decode an Indoor Bike Data (0x2AD2) notification.

    Returns None when the payload is shorter than the flags claim or when the
    flags select no field at all.
    """
    if len(data) < 2:
        return None

    cursor = Cursor(data)
    fields: dict[str, Any] = {}
    try:
        flags = cursor.u16()
        if not flags & 0x0001:
            fields["instantaneous_speed"] = cursor.u16() / 100.0
        if flags & 0x0002:
            fields["average_speed"] = cursor.u16() / 100.0
        if flags & 0x0004:
            fields["instantaneous_cadence"] = cursor.u16() / 2.0
        if flags & 0x0008:
            fields["average_cadence"] = cursor.u16() / 2.0
        if flags & 0x0010:
            fields["total_distance"] = cursor.u24()
        if flags & 0x0020:
            fields["resistance_level"] = cursor.s16()
        if flags & 0x0040:
            fields["instantaneous_power"] = cursor.s16()
        if flags & 0x0080:
            fields["average_power"] = cursor.s16()
        if flags & 0x0100:
            fields["total_energy"] = cursor.u16()
            fields["energy_per_hour"] = cursor.u16()
            fields["energy_per_minute"] = cursor.u8()
        if flags & 0x0200:
            fields["heart_rate"] = cursor.u8()
        if flags & 0x0400:
            fields["metabolic_equivalent"] = cursor.u8() / 10.0
        if flags & 0x0800:
            fields["elapsed_time"] = cursor.u16()
        if flags & 0x1000:
            fields["remaining_time"] = cursor.u16()
    except ShortPayload:
        return None

    if not fields:
        return None
    return IndoorBikeData(**fields)


@dataclass(frozen=True)
class FTMSFeatures:
    fitness_machine_features: int
    target_setting_features: int

    @property
    def supported_features(self) -> list[str]:
        return _names_for(self.fitness_machine_features, FITNESS_MACHINE_FEATURES)

    @property
    def supported_target_settings(self) -> list[str]:
        return _names_for(self.target_setting_features, TARGET_SETTING_FEATURES)


def _names_for(mask: int, table: tuple[str, ...]) -> list[str]:
    return [name for bit, name in enumerate(table) if mask & (1 << bit)]


def parse_ftms_features(data: bytes) -> FTMSFeatures | None:
    """Decode the Fitness Machine Feature (0x2ACC) value."""
    if len(data) < 8:
        return None
    cursor = Cursor(data)
    return FTMSFeatures(
        fitness_machine_features=cursor.u32(),
        target_setting_features=cursor.u32(),
    )


@dataclass(frozen=True)
class SupportedPowerRange:
    minimum: int
    maximum: int
    increment: int


def parse_supported_power_range(data: bytes) -> SupportedPowerRange | None:
    if len(data) < 6:
        return None
    cursor = Cursor(data)
    return SupportedPowerRange(minimum=cursor.s16(), maximum=cursor.s16(), increment=cursor.u16())
