from __future__ import annotations

import asyncio
import csv
from datetime import datetime, timezone
from pathlib import Path

import pytest

from blectl.core.csv_log import HEADER, LogSession
from blectl.core.notifications import NotificationHub

IBD = "00002ad2-0000-1000-8000-00805f9b34fb"
HRM = "00002a37-0000-1000-8000-00805f9b34fb"


def test_buffer_evicts_oldest_half_past_capacity() -> None:
    hub = NotificationHub()
    for i in range(1001):
        hub.accept(IBD, i.to_bytes(2, "little"))

    buffered = hub.buffer(IBD)
    assert len(buffered) == 501
    assert buffered[0] == (500).to_bytes(2, "little")
    assert buffered[-1] == (1000).to_bytes(2, "little")


def test_custom_capacity_and_invalid_eviction() -> None:
    hub = NotificationHub(capacity=4, evict=2)
    for i in range(5):
        hub.accept(IBD, bytes([i]))
    assert hub.buffer(IBD) == (b"\x02", b"\x03", b"\x04")

    with pytest.raises(ValueError):
        NotificationHub(capacity=4, evict=5)


def test_buffering_without_stream_and_drain() -> None:
    hub = NotificationHub()
    hub.accept(HRM, b"\x00\x48")
    hub.accept(HRM, b"\x00\x49")
    assert hub.latest(HRM) == b"\x00\x49"
    assert hub.drain(HRM) == [b"\x00\x48", b"\x00\x49"]
    assert not hub.has_values(HRM)


def test_stream_receives_in_order_and_ends_on_finish() -> None:
    async def scenario() -> list[bytes]:
        hub = NotificationHub()
        stream = hub.open_stream(IBD)
        hub.accept(IBD, b"\x01")
        hub.accept(HRM, b"\xff")
        hub.accept(IBD, b"\x02")
        hub.finish_stream(IBD)
        hub.accept(IBD, b"\x03")
        return [value async for value in stream]

    assert asyncio.run(scenario()) == [b"\x01", b"\x02"]


def test_reopening_stream_finishes_the_previous_one() -> None:
    async def scenario() -> tuple[list[bytes], list[bytes]]:
        hub = NotificationHub()
        first = hub.open_stream(IBD)
        hub.accept(IBD, b"\x01")
        second = hub.open_stream(IBD)
        hub.accept(IBD, b"\x02")
        hub.reset()
        return [v async for v in first], [v async for v in second]

    first, second = asyncio.run(scenario())
    assert first == [b"\x01"]
    assert second == [b"\x02"]


def test_finished_stream_keeps_reporting_end() -> None:
    async def scenario() -> int:
        hub = NotificationHub()
        stream = hub.open_stream(IBD)
        hub.finish_stream(IBD)
        ended = 0
        for _ in range(2):
            async for _value in stream:
                pass
            ended += 1
        return ended

    assert asyncio.run(scenario()) == 2


def test_reset_clears_buffers_and_streams() -> None:
    hub = NotificationHub()
    hub.accept(IBD, b"\x01")
    stream = hub.open_stream(IBD)
    hub.reset()
    assert stream.finished
    assert not hub.has_stream(IBD)
    assert hub.buffer(IBD) == ()


def test_log_session_rows(tmp_path: Path) -> None:
    log = LogSession(tmp_path / "logs" / "ride.csv")
    log.open()
    assert log.active
    log.append(IBD, bytes([0x44, 0x00, 0x90, 0x03]), when=datetime(2024, 5, 1, 12, 30, 5, tzinfo=timezone.utc))
    path = log.close()
    assert not log.active

    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows == [list(HEADER), ["2024-05-01T12:30:05Z", "2AD2", "44 00 90 03", "4"]]


def test_hub_mirrors_accepted_values_into_log(tmp_path: Path) -> None:
    hub = NotificationHub()
    hub.start_log(LogSession(tmp_path / "hub.csv"))
    assert hub.logging
    hub.accept(HRM, b"\x00\x48")
    hub.accept(IBD, b"\x41\x00\x64\x00")
    path = hub.stop_log()
    assert hub.stop_log() is None

    assert path is not None
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "timestamp,characteristic,hex_data,length"
    assert [line.split(",")[1:] for line in lines[1:]] == [["2A37", "00 48", "2"], ["2AD2", "41 00 64 00", "4"]]
