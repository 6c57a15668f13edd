from __future__ import annotations

import asyncio
import io
import json

from blectl.server import JSONRPCServer


def _handle(run_session, host, *lines: str, connect: str | None = None) -> list:
    async def body(session):
        server = JSONRPCServer(session)
        return [await server.handle_line(line) for line in lines]

    return run_session(host, body, connect=connect)


def _request(method: str, params: dict | None = None, request_id: int = 1) -> str:
    message: dict = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


def test_initialize_and_list(make_host, run_session) -> None:
    init, listed = _handle(run_session, make_host(), _request("initialize"), _request("tools/list", request_id=2))
    assert init["id"] == 1
    assert init["result"]["protocolVersion"] == "2024-11-05"
    assert init["result"]["serverInfo"]["name"] == "blectl"
    assert listed["id"] == 2
    names = {tool["name"] for tool in listed["result"]["tools"]}
    assert {"ble_scan", "ftms_set_power", "hrs_read"} <= names


def test_notifications_get_no_response(make_host, run_session) -> None:
    notification = json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"})
    unknown = json.dumps({"jsonrpc": "2.0", "method": "bogus"})
    assert _handle(run_session, make_host(), notification, unknown) == [None, None]


def test_protocol_errors(make_host, run_session) -> None:
    parse, unknown, missing_name, invalid = _handle(
        run_session,
        make_host(),
        "{not json",
        _request("resources/list"),
        _request("tools/call", {"arguments": {}}),
        json.dumps([1, 2]),
    )
    assert parse["error"]["code"] == -32700
    assert parse["id"] is None
    assert unknown["error"] == {"code": -32601, "message": "Method not found: resources/list"}
    assert missing_name["error"]["code"] == -32602
    assert invalid["error"]["code"] == -32600


def test_tool_call_success(make_host, run_session) -> None:
    (reply,) = _handle(
        run_session,
        make_host(),
        _request("tools/call", {"name": "ftms_set_power", "arguments": {"watts": 150}}),
        connect="KICKR",
    )
    assert reply["result"] == {"content": [{"type": "text", "text": "Target power set to 150W"}]}


def test_tool_failure_is_an_error_result(make_host, run_session) -> None:
    (reply,) = _handle(run_session, make_host(), _request("tools/call", {"name": "ble_read", "arguments": {"uuid": "2A37"}}))
    assert reply["result"]["isError"] is True
    assert reply["result"]["content"][0]["text"] == "Error: Not connected. Use ble_connect first."


def test_unknown_tool_is_an_error_result(make_host, run_session) -> None:
    (reply,) = _handle(run_session, make_host(), _request("tools/call", {"name": "ftms_warp"}))
    assert reply["result"]["isError"] is True
    assert "Unknown tool: ftms_warp" in reply["result"]["content"][0]["text"]


def test_invalid_tool_arguments_are_invalid_params(make_host, run_session) -> None:
    (reply,) = _handle(
        run_session, make_host(), _request("tools/call", {"name": "ftms_set_power", "arguments": {"watts": "max"}})
    )
    assert reply["error"]["code"] == -32602
    assert "watts" in reply["error"]["message"]


def test_serve_reads_lines_until_eof(make_host, run_session) -> None:
    reader = io.StringIO("\n".join([_request("initialize"), "", _request("tools/list", request_id=7)]) + "\n")
    writer = io.StringIO()

    async def body(session):
        await asyncio.wait_for(JSONRPCServer(session).serve(reader, writer), 5.0)

    run_session(make_host(), body)
    responses = [json.loads(line) for line in writer.getvalue().splitlines()]
    assert [r["id"] for r in responses] == [1, 7]
