"""Fitness Machine Control Point (0x2AD9) command encoding."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from blectl.protocols.binary import Cursor
from blectl.protocols.ftms import FITNESS_MACHINE_CONTROL_POINT_UUID

if TYPE_CHECKING:
    from blectl.core.session import BLESession

LOGGER = logging.getLogger(__name__)

SINT16_MIN = -32768
SINT16_MAX = 32767


class OpCode(enum.IntEnum):
    REQUEST_CONTROL = 0x00
    RESET = 0x01
    SET_TARGET_POWER = 0x05
    START_OR_RESUME = 0x07
    STOP_OR_PAUSE = 0x08
    SET_INDOOR_BIKE_SIMULATION = 0x11
    RESPONSE_CODE = 0x80


class ResultCode(enum.IntEnum):
    SUCCESS = 0x01
    NOT_SUPPORTED = 0x02
    INVALID_PARAMETER = 0x03
    OPERATION_FAILED = 0x04
    CONTROL_NOT_PERMITTED = 0x05


class StopMode(enum.IntEnum):
    STOP = 0x01
    PAUSE = 0x02


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _sint16(value: int) -> bytes:
    return _clamp(value, SINT16_MIN, SINT16_MAX).to_bytes(2, byteorder="little", signed=True)


def encode_request_control() -> bytes:
    return bytes([OpCode.REQUEST_CONTROL])


def encode_reset() -> bytes:
    return bytes([OpCode.RESET])


def encode_set_target_power(watts: int) -> bytes:
    """Set Target Power; wattage outside sint16 is clamped, not rejected."""
    return bytes([OpCode.SET_TARGET_POWER]) + _sint16(int(watts))


def encode_start() -> bytes:
    return bytes([OpCode.START_OR_RESUME])


def encode_stop(pause: bool = False) -> bytes:
    mode = StopMode.PAUSE if pause else StopMode.STOP
    return bytes([OpCode.STOP_OR_PAUSE, mode])


def encode_set_simulation(
    wind_speed_mps: float = 0.0,
    grade_pct: float = 0.0,
    crr: float = 0.004,
    cw: float = 0.51,
) -> bytes:
    """Set Indoor Bike Simulation Parameters.

    Resolutions: wind 0.001 m/s (sint16), grade 0.01 % (sint16),
    Crr 0.0001 (uint8), Cw 0.01 kg/m (uint8).
    """
    wind = _sint16(round(wind_speed_mps * 1000))
    grade = _sint16(round(grade_pct * 100))
    crr_raw = _clamp(round(crr * 10000), 0, 0xFF)
    cw_raw = _clamp(round(cw * 100), 0, 0xFF)
    return bytes([OpCode.SET_INDOOR_BIKE_SIMULATION]) + wind + grade + bytes([crr_raw, cw_raw])


def decode_control_point(payload: bytes) -> tuple[OpCode, bytes] | None:
    """Split a control point payload into its opcode and raw parameter bytes."""
    if not payload:
        return None
    try:
        opcode = OpCode(payload[0])
    except ValueError:
        return None
    return opcode, bytes(payload[1:])


def decode_target_power(payload: bytes) -> int | None:
    decoded = decode_control_point(payload)
    if decoded is None or decoded[0] is not OpCode.SET_TARGET_POWER or len(decoded[1]) < 2:
        return None
    return Cursor(decoded[1]).s16()


class FTMSControl:
    """Issues control point commands through a session's write operation.

    Control must have been requested by the caller first; grant state is not
    tracked here.
    """

    def __init__(self, session: BLESession) -> None:
        self._session = session

    async def _send(self, payload: bytes) -> bytes:
        LOGGER.debug("Control point write %s", payload.hex())
        await self._session.write(FITNESS_MACHINE_CONTROL_POINT_UUID, payload, with_response=True)
        return payload

    async def request_control(self) -> bytes:
        return await self._send(encode_request_control())

    async def reset(self) -> bytes:
        return await self._send(encode_reset())

    async def set_power(self, watts: int) -> bytes:
        return await self._send(encode_set_target_power(watts))

    async def start(self) -> bytes:
        return await self._send(encode_start())

    async def stop(self, pause: bool = False) -> bytes:
        return await self._send(encode_stop(pause))

    async def set_simulation(
        self,
        wind_speed_mps: float = 0.0,
        grade_pct: float = 0.0,
        crr: float = 0.004,
        cw: float = 0.51,
    ) -> bytes:
        return await self._send(encode_set_simulation(wind_speed_mps, grade_pct, crr, cw))
