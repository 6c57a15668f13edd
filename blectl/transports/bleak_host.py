"""Host controller backed by bleak.

Each primitive schedules a bleak coroutine and reports its outcome as an event
through the attached sink, mirroring a callback-driven radio stack.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Sequence
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from blectl.core.events import (
    CharacteristicsDiscovered,
    ConnectFailed,
    DeviceDiscovered,
    HostEvent,
    PeripheralConnected,
    PeripheralDisconnected,
    RadioStateChanged,
    RSSIRead,
    ServicesDiscovered,
    ValueUpdated,
    WriteCompleted,
)
from blectl.core.model import RadioState
from blectl.transports.base import EventSink

LOGGER = logging.getLogger(__name__)


def _advertisement_payload(adv: AdvertisementData) -> dict[str, Any]:
    return {
        "local_name": adv.local_name,
        "manufacturer_data": {str(k): v.hex() for k, v in adv.manufacturer_data.items()},
        "service_data": {k: v.hex() for k, v in adv.service_data.items()},
        "tx_power": adv.tx_power,
    }


class BleakHostController:
    def __init__(self, *, connect_timeout_s: float = 10.0) -> None:
        self._connect_timeout_s = connect_timeout_s
        self._sink: EventSink | None = None
        self._scanner: BleakScanner | None = None
        self._client: BleakClient | None = None
        self._address: str | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._devices: dict[str, BLEDevice] = {}
        self._rssi: dict[str, int] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def attach(self, sink: EventSink) -> None:
        self._sink = sink

    def _post(self, event: HostEvent) -> None:
        if self._sink is not None:
            self._sink(event)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _radio_error(self, exc: BleakError) -> None:
        LOGGER.warning("Bluetooth adapter unavailable: %s", exc)
        self._post(RadioStateChanged(RadioState.POWERED_OFF))

    async def start(self) -> None:
        # bleak has no portable power-state query; adapter errors flip this later
        self._post(RadioStateChanged(RadioState.POWERED_ON))

    async def close(self) -> None:
        if self._scanner is not None:
            scanner, self._scanner = self._scanner, None
            try:
                await scanner.stop()
            except BleakError as exc:
                LOGGER.debug("Scanner stop on close failed: %s", exc)
        if self._client is not None and self._client.is_connected:
            try:
                await self._client.disconnect()
            except BleakError as exc:
                LOGGER.debug("Disconnect on close failed: %s", exc)
        for task in list(self._tasks):
            task.cancel()
        self._client = None

    # -- scanning ------------------------------------------------------------

    def _on_detection(self, device: BLEDevice, adv: AdvertisementData) -> None:
        self._devices[device.address] = device
        self._rssi[device.address] = adv.rssi
        self._post(
            DeviceDiscovered(
                identifier=device.address,
                name=device.name or adv.local_name,
                rssi=adv.rssi,
                service_uuids=tuple(adv.service_uuids),
                advertisement=_advertisement_payload(adv),
            )
        )

    def start_scan(self, service_uuids: Sequence[str] | None = None) -> None:
        self._scanner = BleakScanner(
            detection_callback=self._on_detection,
            service_uuids=list(service_uuids) if service_uuids else None,
        )
        self._spawn(self._start_scanner(self._scanner), name="blectl-scan-start")

    async def _start_scanner(self, scanner: BleakScanner) -> None:
        try:
            await scanner.start()
        except BleakError as exc:
            self._radio_error(exc)

    def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            self._spawn(self._stop_scanner(scanner), name="blectl-scan-stop")

    async def _stop_scanner(self, scanner: BleakScanner) -> None:
        try:
            await scanner.stop()
        except BleakError as exc:
            LOGGER.debug("Scanner stop failed: %s", exc)

    # -- connection ----------------------------------------------------------

    def _on_disconnect(self, client: BleakClient) -> None:
        if client is self._client:
            self._client = None
        self._post(PeripheralDisconnected(client.address))

    def connect(self, identifier: str) -> None:
        target: BLEDevice | str = self._devices.get(identifier, identifier)
        client = BleakClient(
            target,
            disconnected_callback=self._on_disconnect,
            timeout=self._connect_timeout_s,
        )
        self._client = client
        self._address = identifier
        self._connect_task = self._spawn(self._connect(client, identifier), name="blectl-connect")

    async def _connect(self, client: BleakClient, identifier: str) -> None:
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            LOGGER.debug("Connect to %s failed: %s", identifier, exc)
            self._client = None
            self._post(ConnectFailed(identifier, str(exc) or type(exc).__name__))
            return
        device = self._devices.get(identifier)
        self._post(PeripheralConnected(identifier, name=device.name if device else None))

    def cancel_connection(self, identifier: str) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        client = self._client
        if client is None:
            self._post(PeripheralDisconnected(identifier))
            return
        self._spawn(self._disconnect(client, identifier), name="blectl-disconnect")

    async def _disconnect(self, client: BleakClient, identifier: str) -> None:
        try:
            await client.disconnect()
        except BleakError as exc:
            LOGGER.warning("Disconnect from %s failed: %s", identifier, exc)
        # some backends skip the disconnected callback on a requested drop
        self._post(PeripheralDisconnected(identifier))

    def discover_services(self) -> None:
        client = self._client
        if client is None:
            return
        services = list(client.services)
        self._post(ServicesDiscovered(tuple(service.uuid for service in services)))
        for service in services:
            self._post(
                CharacteristicsDiscovered(
                    service_uuid=service.uuid,
                    characteristics=tuple(
                        (char.uuid, tuple(char.properties)) for char in service.characteristics
                    ),
                )
            )

    # -- GATT ----------------------------------------------------------------

    def read_value(self, uuid: str) -> None:
        if self._client is not None:
            self._spawn(self._read(self._client, uuid), name=f"blectl-read-{uuid}")

    async def _read(self, client: BleakClient, uuid: str) -> None:
        try:
            data = await client.read_gatt_char(uuid)
        except BleakError as exc:
            self._post(ValueUpdated(uuid, None, error=str(exc)))
            return
        self._post(ValueUpdated(uuid, bytes(data)))

    def write_value(self, uuid: str, data: bytes, with_response: bool) -> None:
        if self._client is not None:
            self._spawn(self._write(self._client, uuid, data, with_response), name=f"blectl-write-{uuid}")

    async def _write(self, client: BleakClient, uuid: str, data: bytes, with_response: bool) -> None:
        try:
            await client.write_gatt_char(uuid, data, response=with_response)
        except BleakError as exc:
            self._post(WriteCompleted(uuid, error=str(exc)))
            return
        self._post(WriteCompleted(uuid))

    def set_notify(self, uuid: str, enabled: bool) -> None:
        if self._client is not None:
            self._spawn(self._set_notify(self._client, uuid, enabled), name=f"blectl-notify-{uuid}")

    async def _set_notify(self, client: BleakClient, uuid: str, enabled: bool) -> None:
        def _on_notify(characteristic: BleakGATTCharacteristic, data: bytearray) -> None:
            self._post(ValueUpdated(characteristic.uuid, bytes(data)))

        try:
            if enabled:
                await client.start_notify(uuid, _on_notify)
            else:
                await client.stop_notify(uuid)
        except BleakError as exc:
            LOGGER.warning("Could not %s notifications on %s: %s", "enable" if enabled else "disable", uuid, exc)

    def read_rssi(self) -> None:
        # connected-link RSSI is not portable in bleak; report the last advertisement
        self._post(RSSIRead(self._rssi.get(self._address or "")))
