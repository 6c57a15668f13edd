"""Raw characteristic access and CSV notification logging."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from blectl.core.errors import ToolArgumentError, ToolError
from blectl.core.session import BLESession
from blectl.core.uuids import display_uuid
from blectl.protocols.binary import format_hex, parse_hex
from blectl.tools.registry import Tool, tool

TOOLS: list[Tool] = []


def _printable_ascii(data: bytes) -> str | None:
    if not data or any(byte < 0x20 or byte > 0x7E for byte in data):
        return None
    return data.decode("ascii")


@tool(
    TOOLS,
    "ftms_raw_read",
    "Read any characteristic as raw hex bytes. Use for debugging or custom characteristics.",
    {"uuid": {"type": "string", "description": "Characteristic UUID (e.g., '2AD2' or full UUID)"}},
    required=("uuid",),
)
async def ftms_raw_read(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    uuid = arguments["uuid"]
    data = await session.read(uuid)

    lines = [f"UUID: {display_uuid(uuid)}", f"Length: {len(data)} bytes", f"Hex: {format_hex(data)}"]
    ascii_text = _printable_ascii(data)
    if ascii_text is not None:
        lines.append(f"ASCII: {ascii_text}")
    if data:
        lines.append("Bytes:")
        lines.extend(f"  [{i}]: 0x{byte:02X} ({byte})" for i, byte in enumerate(data))
    return "\n".join(lines)


@tool(
    TOOLS,
    "ftms_raw_write",
    "Write raw hex bytes to any characteristic. Use for debugging or custom commands.",
    {
        "uuid": {"type": "string", "description": "Characteristic UUID (e.g., '2AD9')"},
        "hex": {"type": "string", "description": "Hex bytes to write, space-separated (e.g., '05 64 00')"},
        "no_response": {"type": "boolean", "description": "Write without waiting for response (default: false)"},
    },
    required=("uuid", "hex"),
)
async def ftms_raw_write(session: BLESession, arguments: dict[str, Any]) -> str:
    session.require_connected()
    try:
        data = parse_hex(arguments["hex"])
    except ValueError as exc:
        raise ToolArgumentError(
            f"{exc}. Use format like '05 64 00' or '0x05 0x64 0x00'"
        ) from exc
    uuid = arguments["uuid"]
    await session.write(uuid, data, with_response=not arguments.get("no_response", False))
    return f"Wrote {len(data)} bytes to {display_uuid(uuid)}: {format_hex(data)}"


@tool(
    TOOLS,
    "ftms_log_start",
    "Start logging all notifications to a CSV file.",
    {"file": {"type": "string", "minLength": 1, "description": "Output file path (default: <log_dir>/ftms_log_<timestamp>.csv)"}},
)
async def ftms_log_start(session: BLESession, arguments: dict[str, Any]) -> str:
    target = arguments.get("file")
    if target is None:
        target = session.settings.log_dir / f"ftms_log_{int(datetime.now().timestamp())}.csv"
    try:
        path = session.start_logging(target)
    except OSError as exc:
        raise ToolError(f"Could not open log file {target}: {exc}") from exc
    return f"Logging started to: {path}\nUse ftms_log_stop to stop and finalize."


@tool(TOOLS, "ftms_log_stop", "Stop logging notifications and finalize the log file.")
async def ftms_log_stop(session: BLESession, arguments: dict[str, Any]) -> str:
    path = session.stop_logging()
    if path is None:
        return "Logging was not active"
    return f"Logging stopped. File saved to: {path}"
