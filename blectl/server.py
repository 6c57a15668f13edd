"""Line-delimited JSON-RPC 2.0 server exposing the tool registry over stdio."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, TextIO

from blectl.core.config import Settings
from blectl.core.errors import BlectlError, ToolArgumentError
from blectl.core.session import BLESession
from blectl.tools.registry import ToolRegistry, default_registry
from blectl.transports.bleak_host import BleakHostController

LOGGER = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "blectl"
SERVER_VERSION = "0.1.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RPCError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _text_result(text: str, *, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


class JSONRPCServer:
    """Dispatches one request per line against a shared session."""

    def __init__(self, session: BLESession, registry: ToolRegistry | None = None) -> None:
        self.session = session
        self.registry = registry or default_registry()

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        """Process one input line; returns the response or None for notifications."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as exc:
            return _error(None, PARSE_ERROR, f"Parse error: {exc}")

        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            return _error(request_id, INVALID_REQUEST, "Invalid Request")

        request_id = message.get("id")
        is_notification = "id" not in message
        try:
            result = await self.dispatch(message["method"], message.get("params"))
        except RPCError as exc:
            if is_notification:
                LOGGER.debug("Ignoring failed notification %s: %s", message["method"], exc.message)
                return None
            return _error(request_id, exc.code, exc.message)

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def dispatch(self, method: str, params: Any) -> dict[str, Any]:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            }
        if method == "notifications/initialized":
            return {}
        if method == "tools/list":
            return {"tools": self.registry.list_tools()}
        if method == "tools/call":
            return await self._call_tool(params)
        raise RPCError(METHOD_NOT_FOUND, f"Method not found: {method}")

    async def _call_tool(self, params: Any) -> dict[str, Any]:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise RPCError(INVALID_PARAMS, "Missing tool name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise RPCError(INVALID_PARAMS, "Tool arguments must be an object")

        name = params["name"]
        try:
            text = await self.registry.call(name, arguments, self.session)
        except ToolArgumentError as exc:
            raise RPCError(INVALID_PARAMS, str(exc)) from exc
        except BlectlError as exc:
            LOGGER.info("Tool %s failed: %s", name, exc)
            return _text_result(f"Error: {exc}", is_error=True)
        except Exception as exc:
            LOGGER.exception("Tool %s raised unexpectedly", name)
            raise RPCError(INTERNAL_ERROR, f"Internal error: {exc}") from exc
        return _text_result(text)

    async def serve(self, reader: TextIO, writer: TextIO) -> None:
        """Answer requests from ``reader`` until EOF."""
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, reader.readline)
            if not line:
                LOGGER.debug("Input closed, stopping server")
                return
            line = line.strip()
            if not line:
                continue
            response = await self.handle_line(line)
            if response is not None:
                writer.write(json.dumps(response) + "\n")
                writer.flush()


async def serve_stdio(settings: Settings) -> None:
    controller = BleakHostController(connect_timeout_s=settings.connect_timeout_s)
    async with BLESession(controller, settings=settings) as session:
        LOGGER.info("Serving JSON-RPC on stdio")
        await JSONRPCServer(session).serve(sys.stdin, sys.stdout)
