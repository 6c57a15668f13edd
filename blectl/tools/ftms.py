"""Fitness Machine Service tools: discovery, bike data and control point commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from blectl.core.errors import BlectlError, ToolError
from blectl.core.session import BLESession
from blectl.protocols.binary import format_hex
from blectl.protocols.control import FTMSControl
from blectl.protocols.ftms import (
    FITNESS_MACHINE_FEATURE_UUID,
    FTMS_SERVICE_UUID,
    INDOOR_BIKE_DATA_UUID,
    SUPPORTED_POWER_RANGE_UUID,
    IndoorBikeData,
    parse_ftms_features,
    parse_indoor_bike_data,
    parse_supported_power_range,
)
from blectl.tools.registry import Tool, tool
from blectl.tools.streaming import collect_samples

TOOLS: list[Tool] = []

_RULE = "=" * 39


def _parses(value: bytes) -> bool:
    return parse_indoor_bike_data(value) is not None


def _parsed(samples: Sequence[bytes]) -> list[IndoorBikeData]:
    return [record for record in map(parse_indoor_bike_data, samples) if record is not None]


def _present(records: Sequence[IndoorBikeData], field: str) -> list[Any]:
    return [getattr(r, field) for r in records if getattr(r, field) is not None]


def _range_line(label: str, values: Sequence[float], unit: str, precision: int = 0) -> str:
    avg = sum(values) / len(values)
    fmt = f"{{:.{precision}f}}"
    low, high, mean = (fmt.format(v) for v in (min(values), max(values), avg))
    return f"{label}: {low}{unit} - {high}{unit} (avg: {mean}{unit})"


@tool(
    TOOLS,
    "ftms_discover",
    "Scan specifically for FTMS (Fitness Machine Service) devices with service UUID 0x1826.",
    {"duration": {"type": "number", "exclusiveMinimum": 0, "description": "Scan duration in seconds (default: 5)"}},
)
async def ftms_discover(session: BLESession, arguments: dict[str, Any]) -> str:
    devices = await session.scan(arguments.get("duration"), [FTMS_SERVICE_UUID])
    if not devices:
        return "No FTMS devices found. Make sure your fitness equipment is powered on and in pairing mode."
    blocks = [
        f"• {d.name or '(unnamed)'}\n  Identifier: {d.identifier}\n  RSSI: {d.rssi} dBm"
        for d in sorted(devices, key=lambda d: -d.rssi)
    ]
    return f"Found {len(devices)} FTMS device(s):\n\n" + "\n\n".join(blocks)


@tool(TOOLS, "ftms_info", "Read the FTMS Feature characteristic to show supported data fields and targets.")
async def ftms_info(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    data = await session.read(FITNESS_MACHINE_FEATURE_UUID)
    features = parse_ftms_features(data)
    if features is None:
        return f"Failed to parse FTMS features. Raw data: {format_hex(data)}"

    lines = ["FTMS Device Features", "====================", "", "Supported Data Fields:"]
    lines.extend(f"  ✓ {name}" for name in features.supported_features)
    lines.extend(["", "Supported Target Settings:"])
    lines.extend(f"  ✓ {name}" for name in features.supported_target_settings)

    try:
        power_range = parse_supported_power_range(await session.read(SUPPORTED_POWER_RANGE_UUID))
    except BlectlError:
        power_range = None
    if power_range is not None:
        lines.append("")
        lines.append(
            f"Power Range: {power_range.minimum}W - {power_range.maximum}W "
            f"(increment: {power_range.increment}W)"
        )
    return "\n".join(lines)


@tool(
    TOOLS,
    "ftms_read",
    "Single read of Indoor Bike Data. Returns power (watts), cadence (rpm) and speed (km/h).",
    {
        "format": {
            "type": "string",
            "enum": ["text", "json", "raw"],
            "description": "Output format: 'text' (default), 'json', or 'raw'",
        }
    },
)
async def ftms_read(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    output = arguments.get("format", "text")

    # Indoor Bike Data is notify-only; take the first notification
    stream = await session.subscribe(INDOOR_BIKE_DATA_UUID)
    try:
        samples, _ = await collect_samples(stream, limit=1, timeout=session.settings.read_timeout_s)
    finally:
        await session.unsubscribe(INDOOR_BIKE_DATA_UUID)
    if not samples:
        raise ToolError("No data received from Indoor Bike Data characteristic")

    data = samples[0]
    if output == "raw":
        return f"Raw data ({len(data)} bytes): {format_hex(data)}"
    record = parse_indoor_bike_data(data)
    if record is None:
        return f"Failed to parse Indoor Bike Data. Raw: {format_hex(data)}"
    if output == "json":
        return json.dumps(record.to_dict())

    lines: list[str] = []
    if record.instantaneous_power is not None:
        lines.append(f"Power: {record.instantaneous_power} W")
    if record.instantaneous_cadence is not None:
        lines.append(f"Cadence: {int(record.instantaneous_cadence)} rpm")
    if record.instantaneous_speed is not None:
        lines.append(f"Speed: {record.instantaneous_speed:.1f} km/h")
    if record.heart_rate is not None:
        lines.append(f"Heart Rate: {record.heart_rate} bpm")
    if record.total_distance is not None:
        lines.append(f"Distance: {record.total_distance} m")
    if record.elapsed_time is not None:
        lines.append(f"Elapsed: {record.elapsed_time} s")
    return "\n".join(lines) if lines else "No data fields present"


@tool(
    TOOLS,
    "ftms_subscribe",
    "Collect Indoor Bike Data notifications and summarise them. Use ftms_unsubscribe to stop early.",
    {
        "samples": {"type": "integer", "minimum": 1, "description": "Samples to collect (default: 10, max: 100)"},
        "timeout": {"type": "number", "exclusiveMinimum": 0, "description": "Timeout in seconds (default: 30)"},
        "format": {
            "type": "string",
            "enum": ["summary", "json", "raw"],
            "description": "Output format: 'summary' (default), 'json', or 'raw'",
        },
    },
)
async def ftms_subscribe(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    limit = min(arguments.get("samples", 10), 100)
    timeout = arguments.get("timeout", 30)
    output = arguments.get("format", "summary")

    stream = await session.subscribe(INDOOR_BIKE_DATA_UUID)
    try:
        raw, elapsed = await collect_samples(stream, limit=limit, timeout=timeout, accept=_parses)
    finally:
        await session.unsubscribe(INDOOR_BIKE_DATA_UUID)

    records = _parsed(raw)
    if not records:
        return f"No data received (timeout: {timeout:g}s)"
    if output == "raw":
        lines = [f"[{i}] {format_hex(value)}" for i, value in enumerate(raw, start=1)]
        return f"Received {len(raw)} raw samples:\n" + "\n".join(lines)
    if output == "json":
        return json.dumps([record.to_dict() for record in records])

    lines = [f"Collected {len(records)} samples in {elapsed:.1f}s", ""]
    powers = _present(records, "instantaneous_power")
    if powers:
        lines.append(_range_line("Power", powers, "W"))
    cadences = _present(records, "instantaneous_cadence")
    if cadences:
        lines.append(_range_line("Cadence", cadences, " rpm"))
    speeds = _present(records, "instantaneous_speed")
    if speeds:
        lines.append(_range_line("Speed", speeds, " km/h", precision=1))
    lines.extend(["", f"Last reading: {records[-1].summary}"])
    return "\n".join(lines)


@tool(TOOLS, "ftms_unsubscribe", "Stop Indoor Bike Data notifications.")
async def ftms_unsubscribe(session: BLESession, arguments: dict[str, Any]) -> str:
    await session.unsubscribe(INDOOR_BIKE_DATA_UUID)
    return "Unsubscribed from Indoor Bike Data notifications"


@tool(
    TOOLS,
    "ftms_monitor",
    "Subscribe for a fixed duration, then return min/max/avg statistics.",
    {
        "duration": {
            "type": "number",
            "exclusiveMinimum": 0,
            "description": "Monitoring duration in seconds (default: 10, max: 300)",
        }
    },
)
async def ftms_monitor(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    duration = min(arguments.get("duration", 10), 300)

    stream = await session.subscribe(INDOOR_BIKE_DATA_UUID)
    try:
        raw, elapsed = await collect_samples(stream, limit=None, timeout=duration)
    finally:
        await session.unsubscribe(INDOOR_BIKE_DATA_UUID)

    records = _parsed(raw)
    if not records:
        return f"No data received in {duration:g} seconds"

    rate = len(records) / elapsed if elapsed > 0 else 0.0
    lines = [_RULE, "  FTMS Monitor Summary", _RULE, ""]
    lines.append(f"Duration: {elapsed:.1f}s")
    lines.append(f"Samples: {len(records)} ({rate:.1f} Hz)")
    for label, field, unit, precision in (
        ("Power", "instantaneous_power", "W", 0),
        ("Cadence", "instantaneous_cadence", " rpm", 0),
        ("Speed", "instantaneous_speed", " km/h", 1),
        ("Heart Rate", "heart_rate", " bpm", 0),
    ):
        values = _present(records, field)
        if not values:
            continue
        fmt = f"{{:.{precision}f}}"
        lines.extend(["", f"{label}:"])
        lines.append(f"  Min: {fmt.format(min(values))}{unit}")
        lines.append(f"  Max: {fmt.format(max(values))}{unit}")
        lines.append(f"  Avg: {fmt.format(sum(values) / len(values))}{unit}")
    lines.extend(["", _RULE])
    return "\n".join(lines)


@tool(
    TOOLS,
    "ftms_request_control",
    "Request control of the FTMS device. Required before set_power, start, stop and other commands.",
)
async def ftms_request_control(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    await FTMSControl(session).request_control()
    return "Control requested. You can now send commands."


@tool(
    TOOLS,
    "ftms_set_power",
    "Set target power in watts. Requires ftms_request_control first.",
    {"watts": {"type": "integer", "description": "Target power in watts (e.g., 100, 150, 200)"}},
    required=("watts",),
)
async def ftms_set_power(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    watts = arguments["watts"]
    await FTMSControl(session).set_power(watts)
    return f"Target power set to {watts}W"


@tool(TOOLS, "ftms_reset", "Send the reset command to the FTMS device.")
async def ftms_reset(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    await FTMSControl(session).reset()
    return "Reset command sent"


@tool(TOOLS, "ftms_start", "Start or resume the workout session.")
async def ftms_start(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    await FTMSControl(session).start()
    return "Start/resume command sent"


@tool(
    TOOLS,
    "ftms_stop",
    "Stop or pause the workout session.",
    {"pause": {"type": "boolean", "description": "Pause instead of stop (default: false)"}},
)
async def ftms_stop(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    pause = arguments.get("pause", False)
    await FTMSControl(session).stop(pause=pause)
    return "Pause command sent" if pause else "Stop command sent"


@tool(
    TOOLS,
    "ftms_set_simulation",
    "Set indoor bike simulation parameters (wind, grade, rolling and wind resistance).",
    {
        "wind_speed": {"type": "number", "description": "Wind speed in m/s (default: 0)"},
        "grade": {"type": "number", "description": "Grade in percent (default: 0)"},
        "crr": {"type": "number", "minimum": 0, "description": "Rolling resistance coefficient (default: 0.004)"},
        "cw": {"type": "number", "minimum": 0, "description": "Wind resistance coefficient in kg/m (default: 0.51)"},
    },
)
async def ftms_set_simulation(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    wind = arguments.get("wind_speed", 0.0)
    grade = arguments.get("grade", 0.0)
    crr = arguments.get("crr", 0.004)
    cw = arguments.get("cw", 0.51)
    payload = await FTMSControl(session).set_simulation(wind, grade, crr, cw)
    return (
        f"Simulation set: wind {wind:g} m/s, grade {grade:g}%, crr {crr:g}, cw {cw:g} kg/m "
        f"({format_hex(payload)})"
    )


async def _sample_bike_data(session: BLESession) -> tuple[str, bool]:
    stream = await session.subscribe(INDOOR_BIKE_DATA_UUID)
    try:
        samples, _ = await collect_samples(stream, limit=1, timeout=session.settings.read_timeout_s)
    finally:
        await session.unsubscribe(INDOOR_BIKE_DATA_UUID)
    record = parse_indoor_bike_data(samples[0]) if samples else None
    if record is None:
        return "No data or parse error", False
    return record.summary, True


@tool(
    TOOLS,
    "ftms_test_sequence",
    "Run a quick validation: request control, set a low then a high power target, "
    "reading bike data after each, and report per-step results.",
    {
        "power_low": {"type": "integer", "description": "First power target in watts (default: 100)"},
        "power_high": {"type": "integer", "description": "Second power target in watts (default: 150)"},
        "settle_time": {
            "type": "number",
            "minimum": 0,
            "description": "Time to wait after each power change in seconds (default: 2)",
        },
    },
)
async def ftms_test_sequence(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    power_low = arguments.get("power_low", 100)
    power_high = arguments.get("power_high", 150)
    settle_time = arguments.get("settle_time", 2.0)
    control = FTMSControl(session)
    results: list[tuple[str, str, bool]] = []

    try:
        await control.request_control()
        results.append(("Request Control", "OK", True))
    except BlectlError as exc:
        results.append(("Request Control", f"FAILED: {exc}", False))

    for watts in (power_low, power_high):
        try:
            await control.set_power(watts)
            results.append((f"Set {watts}W", "Command sent", True))
        except BlectlError as exc:
            results.append((f"Set {watts}W", f"FAILED: {exc}", False))
        await asyncio.sleep(settle_time)
        try:
            summary, ok = await _sample_bike_data(session)
        except BlectlError as exc:
            summary, ok = f"FAILED: {exc}", False
        results.append((f"Read @ {watts}W", summary, ok))

    passed = sum(1 for _, _, ok in results if ok)
    lines = [_RULE, "  FTMS Test Sequence Results", _RULE, ""]
    lines.extend(f"{'✓' if ok else '✗'} {step}: {outcome}" for step, outcome, ok in results)
    lines.extend(["", _RULE, f"Result: {passed}/{len(results)} steps passed"])
    lines.append("Status: ALL TESTS PASSED ✓" if passed == len(results) else "Status: SOME TESTS FAILED ✗")
    return "\n".join(lines)
