"""Heart Rate Service (0x180D) records."""

from __future__ import annotations

import enum
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from blectl.protocols.binary import Cursor, ShortPayload

HRS_SERVICE_UUID = "180d"
HEART_RATE_MEASUREMENT_UUID = "2a37"
BODY_SENSOR_LOCATION_UUID = "2a38"
HEART_RATE_CONTROL_POINT_UUID = "2a39"

_FLAG_HR_UINT16 = 0x01
_FLAG_ENERGY = 0x08
_FLAG_RR = 0x10


class SensorContact(enum.Enum):
    NOT_SUPPORTED = "not_supported"
    NOT_DETECTED = "not_detected"
    DETECTED = "detected"


class BodySensorLocation(enum.IntEnum):
    OTHER = 0
    CHEST = 1
    WRIST = 2
    FINGER = 3
    HAND = 4
    EAR_LOBE = 5
    FOOT = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


@dataclass(frozen=True)
class HeartRateMeasurement:
    heart_rate: int
    sensor_contact: SensorContact
    energy_expended: int | None = None
    rr_intervals: tuple[float, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "heart_rate_bpm": self.heart_rate,
            "sensor_contact": self.sensor_contact.value,
        }
        if self.energy_expended is not None:
            out["energy_kj"] = self.energy_expended
        if self.rr_intervals:
            out["rr_intervals_ms"] = [int(rr * 1000) for rr in self.rr_intervals]
        return out

    @property
    def summary(self) -> str:
        parts = [f"{self.heart_rate} bpm"]
        if self.sensor_contact is SensorContact.NOT_DETECTED:
            parts.append("(no contact)")
        if self.energy_expended is not None:
            parts.append(f"{self.energy_expended} kJ")
        if self.rr_intervals:
            avg = sum(self.rr_intervals) / len(self.rr_intervals)
            parts.append(f"RR: {avg * 1000:.0f}ms")
        return " | ".join(parts)


def _sensor_contact(flags: int) -> SensorContact:
    bits = (flags >> 1) & 0x03
    if bits == 0x03:
        return SensorContact.DETECTED
    if bits == 0x02:
        return SensorContact.NOT_DETECTED
    return SensorContact.NOT_SUPPORTED


def parse_heart_rate_measurement(data: bytes) -> HeartRateMeasurement | None:
    """Decode a Heart Rate Measurement (0x2A37) notification.

    Returns None for payloads shorter than the flags imply.
    """
    if len(data) < 2:
        return None

    cursor = Cursor(data)
    try:
        flags = cursor.u8()
        heart_rate = cursor.u16() if flags & _FLAG_HR_UINT16 else cursor.u8()
        energy = cursor.u16() if flags & _FLAG_ENERGY else None
        rr: list[float] = []
        if flags & _FLAG_RR:
            while cursor.remaining >= 2:
                rr.append(cursor.u16() / 1024.0)
    except ShortPayload:
        return None

    return HeartRateMeasurement(
        heart_rate=heart_rate,
        sensor_contact=_sensor_contact(flags),
        energy_expended=energy,
        rr_intervals=tuple(rr),
    )


def parse_body_sensor_location(data: bytes) -> BodySensorLocation | None:
    if not data:
        return None
    try:
        return BodySensorLocation(data[0])
    except ValueError:
        return BodySensorLocation.OTHER


def rmssd_ms(rr_intervals: Sequence[float]) -> float:
    """Root mean square of successive RR differences, in milliseconds."""
    if len(rr_intervals) < 2:
        return 0.0
    squared = [
        (rr_intervals[i] - rr_intervals[i - 1]) ** 2 for i in range(1, len(rr_intervals))
    ]
    return math.sqrt(sum(squared) / len(squared)) * 1000.0
