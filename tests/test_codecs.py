from __future__ import annotations

import pytest

from blectl.protocols.binary import Cursor, ShortPayload, format_hex, parse_hex
from blectl.protocols.ftms import (
    parse_ftms_features,
    parse_indoor_bike_data,
    parse_supported_power_range,
)
from blectl.protocols.hrs import (
    BodySensorLocation,
    SensorContact,
    parse_body_sensor_location,
    parse_heart_rate_measurement,
    rmssd_ms,
)


@pytest.mark.parametrize("payload", [b"", b"\x00"])
def test_short_payloads_decode_to_nothing(payload: bytes) -> None:
    assert parse_heart_rate_measurement(payload) is None
    assert parse_indoor_bike_data(payload) is None


def test_heart_rate_uint8() -> None:
    hr = parse_heart_rate_measurement(bytes([0x00, 0x48]))
    assert hr is not None
    assert hr.heart_rate == 72
    assert hr.energy_expended is None
    assert hr.rr_intervals == ()
    assert hr.sensor_contact is SensorContact.NOT_SUPPORTED


def test_heart_rate_uint16_path() -> None:
    hr = parse_heart_rate_measurement(bytes([0x01, 0x00, 0x01]))
    assert hr is not None
    assert hr.heart_rate == 256


def test_heart_rate_rr_interval() -> None:
    hr = parse_heart_rate_measurement(bytes([0x10, 0x3C, 0x00, 0x04]))
    assert hr is not None
    assert hr.heart_rate == 60
    assert len(hr.rr_intervals) == 1
    assert hr.rr_intervals[0] == pytest.approx(1.0, abs=0.001)


@pytest.mark.parametrize(
    ("flags", "contact"),
    [
        (0x00, SensorContact.NOT_SUPPORTED),
        (0x02, SensorContact.NOT_SUPPORTED),
        (0x04, SensorContact.NOT_DETECTED),
        (0x06, SensorContact.DETECTED),
    ],
)
def test_heart_rate_sensor_contact_bits(flags: int, contact: SensorContact) -> None:
    hr = parse_heart_rate_measurement(bytes([flags, 0x50]))
    assert hr is not None
    assert hr.sensor_contact is contact


def test_heart_rate_energy_and_multiple_rr() -> None:
    payload = bytes([0x18, 0x4B, 0x2C, 0x01, 0x00, 0x04, 0x00, 0x02])
    hr = parse_heart_rate_measurement(payload)
    assert hr is not None
    assert hr.heart_rate == 75
    assert hr.energy_expended == 300
    assert hr.rr_intervals == pytest.approx((1.0, 0.5))
    assert hr.to_dict() == {
        "heart_rate_bpm": 75,
        "sensor_contact": "not_supported",
        "energy_kj": 300,
        "rr_intervals_ms": [1000, 500],
    }
    assert hr.summary == "75 bpm | 300 kJ | RR: 750ms"


def test_heart_rate_claimed_energy_missing_fails() -> None:
    assert parse_heart_rate_measurement(bytes([0x08, 0x48, 0x01])) is None


def test_heart_rate_uint16_claimed_but_short() -> None:
    assert parse_heart_rate_measurement(bytes([0x01, 0x48])) is None


def test_rmssd() -> None:
    assert rmssd_ms([0.8]) == 0.0
    assert rmssd_ms([1.0, 0.9, 1.0]) == pytest.approx(100.0)


def test_body_sensor_location() -> None:
    assert parse_body_sensor_location(b"\x01") is BodySensorLocation.CHEST
    assert parse_body_sensor_location(b"\x05").label == "Ear Lobe"
    assert parse_body_sensor_location(b"\x42") is BodySensorLocation.OTHER
    assert parse_body_sensor_location(b"") is None


def test_indoor_bike_data_speed_cadence_power() -> None:
    data = parse_indoor_bike_data(bytes([0x44, 0x00, 0x90, 0x03, 0x98, 0x00, 0x64, 0x00]))
    assert data is not None
    assert data.instantaneous_speed == pytest.approx(9.12)
    assert data.instantaneous_cadence == pytest.approx(76.0)
    assert data.instantaneous_power == 100
    assert data.average_speed is None
    assert data.summary == "100W | 76rpm | 9.1km/h"
    assert data.to_dict() == {"speed_kmh": pytest.approx(9.12), "cadence_rpm": 76.0, "power_watts": 100}


def test_indoor_bike_data_more_data_bit_hides_speed() -> None:
    # bit 0 set: no speed; bit 6: power -5 W
    data = parse_indoor_bike_data(bytes([0x41, 0x00, 0xFB, 0xFF]))
    assert data is not None
    assert data.instantaneous_speed is None
    assert data.instantaneous_power == -5


def test_indoor_bike_data_energy_trio_and_trailing_fields() -> None:
    flags = 0x0001 | 0x0010 | 0x0100 | 0x0200 | 0x0800
    payload = (
        flags.to_bytes(2, "little")
        + (123456).to_bytes(3, "little")
        + (250).to_bytes(2, "little")
        + (600).to_bytes(2, "little")
        + bytes([10])
        + bytes([142])
        + (3600).to_bytes(2, "little")
    )
    data = parse_indoor_bike_data(payload)
    assert data is not None
    assert data.total_distance == 123456
    assert (data.total_energy, data.energy_per_hour, data.energy_per_minute) == (250, 600, 10)
    assert data.heart_rate == 142
    assert data.elapsed_time == 3600
    assert data.remaining_time is None


def test_indoor_bike_data_claimed_field_short_fails() -> None:
    assert parse_indoor_bike_data(bytes([0x44, 0x00, 0x90, 0x03, 0x98])) is None


def test_indoor_bike_data_without_fields_is_rejected() -> None:
    assert parse_indoor_bike_data(bytes([0x01, 0x00])) is None


def test_empty_indoor_bike_record_summary() -> None:
    data = parse_indoor_bike_data(bytes([0x21, 0x00, 0x05, 0x00]))
    assert data is not None
    assert data.resistance_level == 5
    assert data.summary == "No data"


def test_ftms_features_power_target() -> None:
    features = parse_ftms_features(bytes([0x02, 0x40, 0x00, 0x00, 0x08, 0x00, 0x00, 0x00]))
    assert features is not None
    assert "Power Target" in features.supported_target_settings
    assert features.supported_features == ["Cadence", "Power Measurement"]


def test_ftms_features_short_payload() -> None:
    assert parse_ftms_features(bytes(7)) is None


def test_supported_power_range() -> None:
    power = parse_supported_power_range(bytes.fromhex("0000d0070100"))
    assert power is not None
    assert (power.minimum, power.maximum, power.increment) == (0, 2000, 1)
    assert parse_supported_power_range(bytes(5)) is None


def test_cursor_short_read_raises() -> None:
    cursor = Cursor(b"\x01\x02")
    assert cursor.u8() == 1
    with pytest.raises(ShortPayload):
        cursor.u16()


def test_hex_helpers() -> None:
    assert format_hex(bytes([0x05, 0x64, 0x00])) == "05 64 00"
    assert parse_hex("05 64 00") == bytes([0x05, 0x64, 0x00])
    assert parse_hex("0x05 0x64 0x00") == bytes([0x05, 0x64, 0x00])
    assert parse_hex("056400") == bytes([0x05, 0x64, 0x00])


@pytest.mark.parametrize("text", ["", "zz", "0x123", "05 6400x"])
def test_parse_hex_rejects_garbage(text: str) -> None:
    with pytest.raises(ValueError):
        parse_hex(text)
