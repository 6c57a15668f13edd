from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from blectl.core.config import Settings
from blectl.core.events import (
    CharacteristicsDiscovered,
    ConnectFailed,
    DeviceDiscovered,
    PeripheralConnected,
    PeripheralDisconnected,
    RadioStateChanged,
    RSSIRead,
    ServicesDiscovered,
    ValueUpdated,
    WriteCompleted,
)
from blectl.core.model import RadioState
from blectl.core.session import BLESession
from blectl.core.uuids import normalize_uuid
from blectl.transports.base import EventSink

BIKE_ID = "AA:BB:CC:DD:EE:01"
HRM_ID = "AA:BB:CC:DD:EE:02"

DEFAULT_DEVICES = (
    DeviceDiscovered(BIKE_ID, "KICKR CORE 1234", -50, ("1826",)),
    DeviceDiscovered(HRM_ID, "HRM-Pro", -70, ("180d",)),
    DeviceDiscovered("AA:BB:CC:DD:EE:03", None, -90, ()),
)

DEFAULT_GATT = {
    "1826": (
        ("2acc", ("read",)),
        ("2ad2", ("notify",)),
        ("2ad8", ("read",)),
        ("2ad9", ("write", "indicate")),
    ),
    "180d": (
        ("2a37", ("notify",)),
        ("2a38", ("read",)),
    ),
}

DEFAULT_READS = {
    # cadence + power measurement fields; power target setting
    "2acc": bytes.fromhex("0240000008000000"),
    "2ad8": bytes.fromhex("0000d0070100"),
    "2a38": bytes([0x01]),
}


class FakeHost:
    """Scripted host controller; completions are posted synchronously."""

    def __init__(
        self,
        *,
        radio: RadioState = RadioState.POWERED_ON,
        devices: Sequence[DeviceDiscovered] = DEFAULT_DEVICES,
        gatt: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] | None = None,
        connect: str = "ok",
        ack_disconnect: bool = True,
        ack_writes: bool = True,
        write_error: str | None = None,
        reads: dict[str, bytes] | None = None,
        notifications: dict[str, Sequence[bytes]] | None = None,
        rssi: int | None = -55,
    ) -> None:
        self.radio = radio
        self.devices = tuple(devices)
        self.gatt = DEFAULT_GATT if gatt is None else gatt
        self.connect_mode = connect
        self.ack_disconnect = ack_disconnect
        self.ack_writes = ack_writes
        self.write_error = write_error
        self.reads = {normalize_uuid(k): v for k, v in (DEFAULT_READS if reads is None else reads).items()}
        self.notifications = {normalize_uuid(k): list(v) for k, v in (notifications or {}).items()}
        self.rssi = rssi
        self.calls: list[tuple[Any, ...]] = []
        self.connected: str | None = None
        self._sink: EventSink | None = None

    def post(self, event: Any) -> None:
        assert self._sink is not None
        self._sink(event)

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    def attach(self, sink: EventSink) -> None:
        self._sink = sink

    async def start(self) -> None:
        self.post(RadioStateChanged(self.radio))

    async def close(self) -> None:
        self.calls.append(("close",))

    def start_scan(self, service_uuids: Sequence[str] | None = None) -> None:
        self.calls.append(("start_scan", tuple(service_uuids or ())))
        wanted = set(service_uuids or ())
        for device in self.devices:
            advertised = {normalize_uuid(u) for u in device.service_uuids}
            if not wanted or wanted & advertised:
                self.post(device)

    def stop_scan(self) -> None:
        self.calls.append(("stop_scan",))

    def connect(self, identifier: str) -> None:
        self.calls.append(("connect", identifier))
        if self.connect_mode == "ok":
            self.connected = identifier
            self.post(PeripheralConnected(identifier))
        elif self.connect_mode == "fail":
            self.post(ConnectFailed(identifier, "peer refused"))

    def cancel_connection(self, identifier: str) -> None:
        self.calls.append(("cancel_connection", identifier))
        if self.ack_disconnect:
            self.connected = None
            self.post(PeripheralDisconnected(identifier))

    def discover_services(self) -> None:
        self.calls.append(("discover_services",))
        self.post(ServicesDiscovered(tuple(self.gatt)))
        for service, characteristics in self.gatt.items():
            self.post(CharacteristicsDiscovered(service, characteristics))

    def read_value(self, uuid: str) -> None:
        self.calls.append(("read", uuid))
        if uuid in self.reads:
            self.post(ValueUpdated(uuid, self.reads[uuid]))

    def write_value(self, uuid: str, data: bytes, with_response: bool) -> None:
        self.calls.append(("write", uuid, data, with_response))
        if with_response and self.ack_writes:
            self.post(WriteCompleted(uuid, self.write_error))

    def set_notify(self, uuid: str, enabled: bool) -> None:
        self.calls.append(("set_notify", uuid, enabled))
        if enabled:
            for value in self.notifications.get(uuid, ()):
                self.post(ValueUpdated(uuid, value))

    def read_rssi(self) -> None:
        self.calls.append(("read_rssi",))
        self.post(RSSIRead(self.rssi))

    # -- test drivers --------------------------------------------------------

    def notify(self, uuid: str, value: bytes) -> None:
        self.post(ValueUpdated(normalize_uuid(uuid), value))

    def drop_link(self) -> None:
        assert self.connected is not None
        identifier, self.connected = self.connected, None
        self.post(PeripheralDisconnected(identifier))


Body = Callable[[BLESession], Awaitable[Any]]


@pytest.fixture
def fast_settings(tmp_path: Path) -> Settings:
    return Settings(
        connect_timeout_s=0.3,
        settle_s=0.0,
        read_timeout_s=0.2,
        write_timeout_s=0.2,
        rssi_wait_s=0.05,
        scan_duration_s=0.0,
        log_dir=tmp_path,
    )


@pytest.fixture
def run_session(fast_settings: Settings) -> Callable[..., Any]:
    """Run ``body`` against a started session; connects to the bike first if asked."""

    def run(host: FakeHost, body: Body, *, connect: str | None = None) -> Any:
        async def main() -> Any:
            async with BLESession(host, settings=fast_settings) as session:
                if connect is not None:
                    await session.scan()
                    await session.connect(connect)
                return await body(session)

        return asyncio.run(main())

    return run


@pytest.fixture
def make_host() -> type[FakeHost]:
    return FakeHost
