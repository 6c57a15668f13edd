"""Generic GATT tools: scan, connect, catalog, read, write, subscribe."""

from __future__ import annotations

from typing import Any

from blectl.core.errors import ToolArgumentError
from blectl.core.model import DiscoveredDevice, RadioState
from blectl.core.session import BLESession
from blectl.core.uuids import display_uuid, short_uuid
from blectl.protocols.binary import format_hex, parse_hex
from blectl.tools.registry import Tool, tool
from blectl.tools.streaming import collect_samples

TOOLS: list[Tool] = []

_RADIO_LABELS = {
    RadioState.POWERED_ON: "Powered On",
    RadioState.POWERED_OFF: "Powered Off",
    RadioState.UNAUTHORIZED: "Unauthorized",
    RadioState.UNSUPPORTED: "Unsupported",
    RadioState.UNKNOWN: "Unknown",
}

UUID_PROPERTY = {"type": "string", "description": "Characteristic UUID (e.g. '2AD2' or full UUID)"}


def format_device(device: DiscoveredDevice) -> str:
    name = device.name or "(unnamed)"
    services = ", ".join(sorted(short_uuid(u) for u in device.service_uuids))
    service_info = f" [Services: {services}]" if services else ""
    return f"• {name} ({device.identifier}) RSSI: {device.rssi} dBm{service_info}"


def sort_devices(devices: list[DiscoveredDevice]) -> list[DiscoveredDevice]:
    return sorted(devices, key=lambda d: (-d.rssi, (d.name or "").lower()))


@tool(
    TOOLS,
    "ble_scan",
    "Scan for nearby BLE devices. Optionally filter by name or service UUID.",
    {
        "duration": {"type": "number", "exclusiveMinimum": 0, "description": "Scan duration in seconds (default: 5)"},
        "name_filter": {"type": "string", "description": "Filter devices by name (case-insensitive partial match)"},
        "service_uuid": {"type": "string", "description": "Filter by service UUID (e.g., '1826' for FTMS)"},
    },
)
async def ble_scan(session: BLESession, arguments: dict[str, Any]) -> str:
    service = arguments.get("service_uuid")
    devices = await session.scan(arguments.get("duration"), [service] if service else None)

    name_filter = arguments.get("name_filter", "").lower()
    if name_filter:
        devices = [d for d in devices if name_filter in (d.name or "").lower()]
    if not devices:
        return "No devices found"

    lines = [format_device(d) for d in sort_devices(devices)]
    return f"Found {len(devices)} device(s):\n" + "\n".join(lines)


@tool(
    TOOLS,
    "ble_connect",
    "Connect to a BLE device by name or identifier. Run ble_scan first to discover devices.",
    {"identifier": {"type": "string", "minLength": 1, "description": "Device name (partial match) or identifier"}},
    required=("identifier",),
)
async def ble_connect(session: BLESession, arguments: dict[str, Any]) -> str:
    info = await session.connect(arguments["identifier"])
    services = [short_uuid(u) for u in info.services]
    return f"Connected to {info.name}\nServices discovered: {len(services)}\n" + ", ".join(services)


@tool(TOOLS, "ble_disconnect", "Disconnect from the currently connected BLE device.")
async def ble_disconnect(session: BLESession, arguments: dict[str, Any]) -> str:
    info = session.get_device_info()
    if info is None:
        return "Not connected"
    await session.disconnect()
    return f"Disconnected from {info.name}"


@tool(TOOLS, "ble_status", "Show current BLE connection state, device info, and signal strength.")
async def ble_status(session: BLESession, arguments: dict[str, Any]) -> str:
    lines = [
        f"Bluetooth: {_RADIO_LABELS[session.radio_state]}",
        f"Connection: {session.connection_state.value.capitalize()}",
    ]
    info = session.get_device_info()
    if info is not None:
        lines.append(f"Device: {info.name}")
        lines.append(f"Identifier: {info.identifier}")
        rssi = await session.get_rssi()
        if rssi is not None:
            lines.append(f"RSSI: {rssi} dBm")
        lines.append(f"Services: {len(info.services)}")
        lines.extend(f"  • {short_uuid(u)}" for u in info.services)
        lines.append(f"Characteristics: {len(info.characteristics)}")
    if session.is_logging:
        lines.append("Logging: active")
    return "\n".join(lines)


@tool(TOOLS, "ble_services", "List discovered services and their characteristics.")
async def ble_services(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    services = session.get_services()
    if not services:
        return "No services discovered"
    lines: list[str] = []
    for service in services:
        lines.append(f"Service {short_uuid(service.uuid)} ({len(service.characteristics)} characteristics)")
        lines.extend(f"  • {short_uuid(c)}" for c in service.characteristics)
    return "\n".join(lines)


@tool(
    TOOLS,
    "ble_characteristics",
    "List characteristics with their properties, optionally for one service.",
    {"service_uuid": {"type": "string", "description": "Restrict to this service UUID"}},
)
async def ble_characteristics(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    characteristics = session.get_characteristics(arguments.get("service_uuid"))
    if not characteristics:
        return "No characteristics found"
    return "\n".join(
        f"• {short_uuid(c.uuid)} (service {short_uuid(c.service_uuid)}) [{', '.join(c.properties)}]"
        for c in characteristics
    )


@tool(TOOLS, "ble_read", "Read a characteristic value as hex.", {"uuid": UUID_PROPERTY}, required=("uuid",))
async def ble_read(session: BLESession, arguments: dict[str, Any]) -> str:
    data = await session.read(arguments["uuid"])
    return f"{display_uuid(arguments['uuid'])}: {format_hex(data)} ({len(data)} bytes)"


@tool(
    TOOLS,
    "ble_write",
    "Write hex bytes to a characteristic.",
    {
        "uuid": UUID_PROPERTY,
        "hex": {"type": "string", "description": "Hex bytes, space-separated (e.g., '05 64 00')"},
        "with_response": {"type": "boolean", "description": "Wait for write confirmation (default: true)"},
    },
    required=("uuid", "hex"),
)
async def ble_write(session: BLESession, arguments: dict[str, Any]) -> str:
    try:
        data = parse_hex(arguments["hex"])
    except ValueError as exc:
        raise ToolArgumentError(str(exc)) from exc
    await session.write(arguments["uuid"], data, with_response=arguments.get("with_response", True))
    return f"Wrote {len(data)} bytes to {display_uuid(arguments['uuid'])}: {format_hex(data)}"


@tool(
    TOOLS,
    "ble_subscribe",
    "Subscribe to notifications and collect samples as hex.",
    {
        "uuid": UUID_PROPERTY,
        "samples": {"type": "integer", "minimum": 1, "description": "Samples to collect (default: 10, max: 100)"},
        "timeout": {"type": "number", "exclusiveMinimum": 0, "description": "Timeout in seconds (default: 10)"},
        "keep_subscribed": {
            "type": "boolean",
            "description": "Leave notifications enabled and buffering after returning (default: false)",
        },
    },
    required=("uuid",),
)
async def ble_subscribe(session: BLESession, arguments: dict[str, Any]) -> str:
    uuid = arguments["uuid"]
    limit = min(arguments.get("samples", 10), 100)
    keep = False
    stream = await session.subscribe(uuid)
    try:
        samples, elapsed = await collect_samples(stream, limit=limit, timeout=arguments.get("timeout", 10.0))
        keep = arguments.get("keep_subscribed", False)
    finally:
        if keep:
            session.detach_stream(uuid)
        else:
            await session.unsubscribe(uuid)

    if not samples:
        return f"No notifications received from {display_uuid(uuid)} in {elapsed:.1f}s"
    lines = [f"[{i}] {format_hex(value)}" for i, value in enumerate(samples, start=1)]
    return f"Received {len(samples)} notification(s) in {elapsed:.1f}s:\n" + "\n".join(lines)


@tool(
    TOOLS,
    "ble_buffered",
    "Return and clear values buffered for a characteristic.",
    {"uuid": UUID_PROPERTY},
    required=("uuid",),
)
async def ble_buffered(session: BLESession, arguments: dict[str, Any]) -> str:
    values = session.buffered(arguments["uuid"])
    if not values:
        return "No buffered values"
    return "\n".join(format_hex(value) for value in values)


@tool(TOOLS, "ble_unsubscribe", "Stop notifications for a characteristic.", {"uuid": UUID_PROPERTY}, required=("uuid",))
async def ble_unsubscribe(session: BLESession, arguments: dict[str, Any]) -> str:
    await session.unsubscribe(arguments["uuid"])
    return f"Unsubscribed from {display_uuid(arguments['uuid'])}"
