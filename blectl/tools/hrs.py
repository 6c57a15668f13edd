"""Heart Rate Service tools."""

from __future__ import annotations

import json
from typing import Any

from blectl.core.errors import BlectlError, ToolError
from blectl.core.session import BLESession
from blectl.protocols.hrs import (
    BODY_SENSOR_LOCATION_UUID,
    HEART_RATE_MEASUREMENT_UUID,
    HRS_SERVICE_UUID,
    HeartRateMeasurement,
    parse_body_sensor_location,
    parse_heart_rate_measurement,
    rmssd_ms,
)
from blectl.tools.registry import Tool, tool
from blectl.tools.streaming import collect_samples

TOOLS: list[Tool] = []


def _parses(value: bytes) -> bool:
    return parse_heart_rate_measurement(value) is not None


async def _collect(session: BLESession, limit: int, timeout: float) -> tuple[list[HeartRateMeasurement], float]:
    stream = await session.subscribe(HEART_RATE_MEASUREMENT_UUID)
    try:
        raw, elapsed = await collect_samples(stream, limit=limit, timeout=timeout, accept=_parses)
    finally:
        await session.unsubscribe(HEART_RATE_MEASUREMENT_UUID)
    readings = [r for r in map(parse_heart_rate_measurement, raw) if r is not None]
    return readings, elapsed


@tool(
    TOOLS,
    "hrs_discover",
    "Scan for Heart Rate Service devices (service UUID 0x180D).",
    {"duration": {"type": "number", "exclusiveMinimum": 0, "description": "Scan duration in seconds (default: 5)"}},
)
async def hrs_discover(session: BLESession, arguments: dict[str, Any]) -> str:
    devices = await session.scan(arguments.get("duration"), [HRS_SERVICE_UUID])
    if not devices:
        return "No Heart Rate devices found"
    lines = [f"Found {len(devices)} Heart Rate device(s):", ""]
    for device in sorted(devices, key=lambda d: -d.rssi):
        lines.append(f"• {device.name or '(unnamed)'}")
        lines.append(f"  Identifier: {device.identifier}")
        lines.append(f"  RSSI: {device.rssi} dBm")
    return "\n".join(lines)


@tool(
    TOOLS,
    "hrs_read",
    "Read the current heart rate with sensor contact status.",
    {
        "format": {
            "type": "string",
            "enum": ["text", "json"],
            "description": "Output format: 'text' (default) or 'json'",
        }
    },
)
async def hrs_read(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    # most sensors only notify heart rate; wait for the first parseable one
    readings, _ = await _collect(session, 1, session.settings.read_timeout_s)
    if not readings:
        raise ToolError("No heart rate data received. Is the sensor worn?")
    if arguments.get("format", "text") == "json":
        return json.dumps(readings[0].to_dict(), sort_keys=True)
    return readings[0].summary


@tool(
    TOOLS,
    "hrs_subscribe",
    "Stream heart rate data and return min/max/avg statistics with HRV.",
    {
        "samples": {"type": "integer", "minimum": 1, "description": "Readings to collect (default: 10, max: 100)"},
        "timeout": {"type": "number", "exclusiveMinimum": 0, "description": "Timeout in seconds (default: 30)"},
    },
)
async def hrs_subscribe(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    limit = min(arguments.get("samples", 10), 100)
    timeout = arguments.get("timeout", 30)

    readings, elapsed = await _collect(session, limit, timeout)
    if not readings:
        return f"No heart rate data received within {timeout:g}s timeout"

    rates = [r.heart_rate for r in readings]
    lines = [
        f"Collected {len(readings)} reading(s) in {elapsed:.1f}s",
        "",
        f"Heart Rate: {min(rates)} - {max(rates)} bpm (avg: {sum(rates) // len(rates)} bpm)",
    ]
    intervals = [rr for r in readings for rr in r.rr_intervals]
    if intervals:
        lines.append(f"RR Interval: {sum(intervals) / len(intervals) * 1000:.0f}ms avg")
        lines.append(f"HRV (RMSSD): {rmssd_ms(intervals):.1f}ms")
    lines.extend(["", f"Last reading: {readings[-1].summary}"])
    return "\n".join(lines)


@tool(TOOLS, "hrs_unsubscribe", "Stop heart rate streaming.")
async def hrs_unsubscribe(session: BLESession, arguments: dict[str, Any]) -> str:
    await session.unsubscribe(HEART_RATE_MEASUREMENT_UUID)
    return "Unsubscribed from Heart Rate"


@tool(TOOLS, "hrs_location", "Read the body sensor location (chest, wrist, etc.).")
async def hrs_location(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    try:
        data = await session.read(BODY_SENSOR_LOCATION_UUID)
    except BlectlError as exc:
        raise ToolError("Body Sensor Location not available on this device") from exc
    location = parse_body_sensor_location(data)
    if location is None:
        raise ToolError("Invalid sensor location data")
    return f"Sensor Location: {location.label}"
