"""BLE session: connection lifecycle, GATT catalog and value plumbing.

Host controller callbacks may fire on any thread. ``post`` hands each event to
the session's event loop, where a single mailbox task applies it; operations
then wait on a condition for the state they need instead of polling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path

from blectl.core.config import Settings
from blectl.core.csv_log import LogSession
from blectl.core.device_match import resolve_device
from blectl.core.errors import (
    CharacteristicNotFoundError,
    ConnectFailedError,
    ConnectTimeoutError,
    NotConnectedError,
    RadioUnavailableError,
    ReadTimeoutError,
    SessionNotStartedError,
    WriteFailedError,
)
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
from blectl.core.model import (
    CharacteristicEntry,
    ConnectionState,
    DeviceInfo,
    DiscoveredDevice,
    RadioState,
    ServiceCatalogEntry,
)
from blectl.core.notifications import NotificationHub, NotificationStream
from blectl.core.uuids import normalize_uuid
from blectl.transports.base import HostController

LOGGER = logging.getLogger(__name__)

def _key(uuid: str) -> str:
    try:
        return normalize_uuid(uuid)
    except ValueError as exc:
        raise CharacteristicNotFoundError(f"Invalid characteristic identifier '{uuid}'") from exc


class BLESession:
    """The single BLE session a process drives.

    Construct once and share; use as an async context manager or call
    ``start``/``close`` explicitly.
    """

    def __init__(self, controller: HostController, *, settings: Settings | None = None) -> None:
        self._controller = controller
        self.settings = settings or Settings()
        self.hub = NotificationHub(self.settings.buffer_capacity, self.settings.buffer_evict)

        self._radio_state = RadioState.UNKNOWN
        self._connection_state = ConnectionState.DISCONNECTED
        self._peripheral: DiscoveredDevice | None = None
        self._pending_target: str | None = None
        self._connect_error: str | None = None

        self._scanning = False
        self._discovered: dict[str, DiscoveredDevice] = {}
        self._services: dict[str, list[str]] = {}
        self._characteristics: dict[str, CharacteristicEntry] = {}
        self._subscriptions: set[str] = set()
        self._abandoned_reads: set[str] = set()
        # host completions arrive in issue order, one future per confirmed write
        self._pending_writes: dict[str, deque[asyncio.Future[str | None]]] = {}
        self._rssi_pending = False
        self._last_rssi: int | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._mailbox: asyncio.Queue[HostEvent] | None = None
        self._changed: asyncio.Condition | None = None
        self._pump: asyncio.Task[None] | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._pump is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._mailbox = asyncio.Queue()
        self._changed = asyncio.Condition()
        self._controller.attach(self.post)
        self._pump = self._loop.create_task(
            self._run_mailbox(self._mailbox, self._changed), name="blectl-session-mailbox"
        )
        await self._controller.start()
        await self.settle()

    async def close(self) -> None:
        if self._pump is None:
            return
        await self.disconnect()
        self.stop_logging()
        await self._controller.close()
        self._pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._pump
        self._pump = None

    async def __aenter__(self) -> BLESession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- mailbox -------------------------------------------------------------

    def post(self, event: HostEvent) -> None:
        """Queue a host event; safe to call from any thread."""
        if self._loop is None or self._mailbox is None:
            LOGGER.warning("Dropping %s posted before session start", type(event).__name__)
            return
        self._loop.call_soon_threadsafe(self._mailbox.put_nowait, event)

    async def settle(self) -> None:
        """Wait until every event posted so far has been applied."""
        if self._mailbox is not None:
            # let pending call_soon_threadsafe hand-offs reach the queue first
            await asyncio.sleep(0)
            await self._mailbox.join()

    async def _run_mailbox(self, mailbox: asyncio.Queue[HostEvent], changed: asyncio.Condition) -> None:
        while True:
            event = await mailbox.get()
            try:
                self._apply(event)
            except Exception:
                LOGGER.exception("Failed to apply %s", event)
            finally:
                mailbox.task_done()
            async with changed:
                changed.notify_all()

    async def _wait_until(self, predicate: Callable[[], bool], timeout: float | None) -> None:
        changed = self._changed
        if changed is None:
            raise SessionNotStartedError("Session not started")
        async with asyncio.timeout(timeout):
            async with changed:
                await changed.wait_for(predicate)

    def _apply(self, event: HostEvent) -> None:
        if isinstance(event, RadioStateChanged):
            LOGGER.info("Radio state: %s", event.state.value)
            self._radio_state = event.state
        elif isinstance(event, DeviceDiscovered):
            self._on_discovered(event)
        elif isinstance(event, PeripheralConnected):
            self._on_connected(event)
        elif isinstance(event, ConnectFailed):
            if self._connection_state is ConnectionState.CONNECTING:
                LOGGER.warning("Connect to %s failed: %s", event.identifier, event.error)
                self._connect_error = event.error
                self._connection_state = ConnectionState.DISCONNECTED
        elif isinstance(event, PeripheralDisconnected):
            self._on_disconnected(event)
        elif isinstance(event, ServicesDiscovered):
            self._on_services(event)
        elif isinstance(event, CharacteristicsDiscovered):
            self._on_characteristics(event)
        elif isinstance(event, ValueUpdated):
            self._on_value(event)
        elif isinstance(event, WriteCompleted):
            self._on_write_completed(event)
        elif isinstance(event, RSSIRead):
            self._last_rssi = event.rssi
            self._rssi_pending = False

    def _on_write_completed(self, event: WriteCompleted) -> None:
        waiting = self._pending_writes.get(normalize_uuid(event.uuid))
        if not waiting:
            LOGGER.debug("Unexpected write completion for %s", event.uuid)
            return
        future = waiting.popleft()
        # a timed-out writer leaves a cancelled future that absorbs its late completion
        if not future.done():
            future.set_result(event.error)

    def _on_discovered(self, event: DeviceDiscovered) -> None:
        if not self._scanning:
            return
        self._discovered[event.identifier] = DiscoveredDevice(
            identifier=event.identifier,
            name=event.name,
            rssi=event.rssi,
            service_uuids=frozenset(normalize_uuid(u) for u in event.service_uuids),
            advertisement=dict(event.advertisement),
        )

    def _on_connected(self, event: PeripheralConnected) -> None:
        if self._connection_state is not ConnectionState.CONNECTING:
            return
        if event.identifier != self._pending_target:
            return
        known = self._discovered.get(event.identifier)
        self._peripheral = DiscoveredDevice(
            identifier=event.identifier,
            name=event.name or (known.name if known else None),
            rssi=known.rssi if known else 0,
            service_uuids=known.service_uuids if known else frozenset(),
        )
        self._last_rssi = known.rssi if known else None
        self._connection_state = ConnectionState.CONNECTED
        LOGGER.info("Connected to %s", event.identifier)

    def _on_disconnected(self, event: PeripheralDisconnected) -> None:
        if self._connection_state is ConnectionState.DISCONNECTED:
            return
        if self._peripheral is not None and event.identifier != self._peripheral.identifier:
            return
        LOGGER.info("Disconnected from %s", event.identifier)
        self._teardown()

    def _teardown(self) -> None:
        self._connection_state = ConnectionState.DISCONNECTED
        self._peripheral = None
        self._pending_target = None
        self._services.clear()
        self._characteristics.clear()
        self._subscriptions.clear()
        self._abandoned_reads.clear()
        for waiting in self._pending_writes.values():
            for future in waiting:
                if not future.done():
                    future.set_exception(NotConnectedError("Not connected. Use ble_connect first."))
        self._pending_writes.clear()
        self._rssi_pending = False
        self.hub.reset()

    def _on_services(self, event: ServicesDiscovered) -> None:
        if self._connection_state is not ConnectionState.CONNECTED:
            return
        for uuid in event.service_uuids:
            self._services.setdefault(normalize_uuid(uuid), [])

    def _on_characteristics(self, event: CharacteristicsDiscovered) -> None:
        if self._connection_state is not ConnectionState.CONNECTED:
            return
        service = normalize_uuid(event.service_uuid)
        members = self._services.setdefault(service, [])
        for uuid, properties in event.characteristics:
            key = normalize_uuid(uuid)
            if key not in members:
                members.append(key)
            self._characteristics[key] = CharacteristicEntry.from_properties(key, service, properties)

    def _on_value(self, event: ValueUpdated) -> None:
        if self._connection_state is not ConnectionState.CONNECTED:
            return
        key = normalize_uuid(event.uuid)
        if event.error is not None or event.value is None:
            LOGGER.warning("Value update for %s failed: %s", key, event.error)
            return
        if key in self._abandoned_reads:
            self._abandoned_reads.discard(key)
            if not self.hub.has_stream(key):
                LOGGER.debug("Discarding late read value for %s", key)
                return
        self.hub.accept(key, bytes(event.value))

    # -- state ---------------------------------------------------------------

    @property
    def radio_state(self) -> RadioState:
        return self._radio_state

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def is_connected(self) -> bool:
        return self._connection_state is ConnectionState.CONNECTED

    @property
    def discovered_devices(self) -> list[DiscoveredDevice]:
        return list(self._discovered.values())

    def require_connected(self) -> None:
        if self._connection_state is not ConnectionState.CONNECTED:
            raise NotConnectedError("Not connected. Use ble_connect first.")

    def _characteristic(self, uuid: str) -> CharacteristicEntry:
        key = _key(uuid)
        entry = self._characteristics.get(key)
        if entry is None:
            raise CharacteristicNotFoundError(f"Characteristic {uuid} not found")
        return entry

    # -- discovery and connection -------------------------------------------

    async def scan(
        self,
        duration: float | None = None,
        service_uuids: Sequence[str] | None = None,
    ) -> list[DiscoveredDevice]:
        """Collect advertisements for ``duration`` seconds; empty if the radio is off."""
        if self._radio_state is not RadioState.POWERED_ON:
            LOGGER.warning("Scan skipped, radio state is %s", self._radio_state.value)
            return []

        filters = [normalize_uuid(u) for u in service_uuids] if service_uuids else None
        self._discovered.clear()
        self._scanning = True
        try:
            self._controller.start_scan(filters)
            await asyncio.sleep(self.settings.scan_duration_s if duration is None else duration)
            self._controller.stop_scan()
            await self.settle()
        finally:
            self._scanning = False
        LOGGER.info("Scan found %d device(s)", len(self._discovered))
        return list(self._discovered.values())

    async def connect(self, target: str) -> DeviceInfo:
        """Connect by identifier or case-insensitive name fragment."""
        if self._radio_state is not RadioState.POWERED_ON:
            raise RadioUnavailableError("Bluetooth not powered on")
        if self._connection_state is not ConnectionState.DISCONNECTED:
            current = self._peripheral.identifier if self._peripheral else "a device"
            raise ConnectFailedError(f"Already connected to {current}. Disconnect first.")

        device = resolve_device(target, self._discovered.values())
        self._pending_target = device.identifier
        self._connect_error = None
        self._connection_state = ConnectionState.CONNECTING
        LOGGER.info("Connecting to %s (%s)", device.name or "(unnamed)", device.identifier)
        self._controller.connect(device.identifier)

        try:
            await self._wait_until(
                lambda: self._connection_state is not ConnectionState.CONNECTING,
                self.settings.connect_timeout_s,
            )
        except TimeoutError:
            self._controller.cancel_connection(device.identifier)
            self._connection_state = ConnectionState.DISCONNECTED
            self._pending_target = None
            raise ConnectTimeoutError(
                f"Connection to {device.identifier} timed out after {self.settings.connect_timeout_s:g}s"
            ) from None

        if self._connection_state is not ConnectionState.CONNECTED:
            self._pending_target = None
            raise ConnectFailedError(f"Failed to connect: {self._connect_error or 'unknown error'}")

        self._controller.discover_services()
        # discovery has no single completion signal; give it a bounded window
        await asyncio.sleep(self.settings.settle_s)
        await self.settle()
        info = self.get_device_info()
        if info is None:
            raise ConnectFailedError(f"Lost connection to {device.identifier} during discovery")
        return info

    async def disconnect(self) -> None:
        """Drop the link; a no-op when nothing is connected."""
        if self._connection_state is not ConnectionState.CONNECTED or self._peripheral is None:
            return
        identifier = self._peripheral.identifier
        self._connection_state = ConnectionState.DISCONNECTING
        self._controller.cancel_connection(identifier)
        try:
            await self._wait_until(
                lambda: self._connection_state is ConnectionState.DISCONNECTED,
                self.settings.connect_timeout_s,
            )
        except TimeoutError:
            LOGGER.warning("No disconnect confirmation from %s, tearing down locally", identifier)
            self._teardown()

    # -- GATT operations -----------------------------------------------------

    async def read(self, uuid: str) -> bytes:
        self.require_connected()
        key = self._characteristic(uuid).uuid
        self._abandoned_reads.discard(key)
        self.hub.clear_buffer(key)
        self._controller.read_value(key)
        try:
            await self._wait_until(
                lambda: self.hub.has_values(key) or not self.is_connected,
                self.settings.read_timeout_s,
            )
        except TimeoutError:
            self._abandoned_reads.add(key)
            raise ReadTimeoutError(f"Read timeout for {uuid}") from None
        self.require_connected()
        value = self.hub.latest(key)
        if value is None:
            raise ReadTimeoutError(f"Read timeout for {uuid}")
        return value

    async def write(self, uuid: str, data: bytes, with_response: bool = True) -> None:
        self.require_connected()
        key = self._characteristic(uuid).uuid
        if not with_response:
            self._controller.write_value(key, bytes(data), False)
            return

        if self._loop is None:
            raise SessionNotStartedError("Session not started")
        confirmation: asyncio.Future[str | None] = self._loop.create_future()
        self._pending_writes.setdefault(key, deque()).append(confirmation)
        self._controller.write_value(key, bytes(data), True)
        try:
            async with asyncio.timeout(self.settings.write_timeout_s):
                outcome = await confirmation
        except TimeoutError:
            raise WriteFailedError(f"No write confirmation for {uuid}") from None
        if outcome is not None:
            raise WriteFailedError(f"Write to {uuid} failed: {outcome}")

    async def subscribe(self, uuid: str) -> NotificationStream:
        """Enable notifications and return a fresh stream for ``uuid``.

        A second subscribe to the same characteristic ends the earlier stream.
        """
        self.require_connected()
        key = self._characteristic(uuid).uuid
        self._subscriptions.add(key)
        self.hub.clear_buffer(key)
        stream = self.hub.open_stream(key)
        self._controller.set_notify(key, True)
        LOGGER.debug("Subscribed to %s", key)
        return stream

    async def unsubscribe(self, uuid: str) -> None:
        try:
            key = normalize_uuid(uuid)
        except ValueError:
            return
        self._subscriptions.discard(key)
        if self.is_connected and key in self._characteristics:
            self._controller.set_notify(key, False)
        self.hub.finish_stream(key)

    def detach_stream(self, uuid: str) -> None:
        """End the stream for ``uuid`` but keep notifications flowing into its buffer."""
        self.hub.finish_stream(_key(uuid))

    @property
    def subscriptions(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    def buffered(self, uuid: str) -> list[bytes]:
        """Return and clear every value buffered for ``uuid``."""
        return self.hub.drain(_key(uuid))

    async def get_rssi(self) -> int | None:
        if not self.is_connected:
            return None
        self._rssi_pending = True
        self._controller.read_rssi()
        with contextlib.suppress(TimeoutError):
            await self._wait_until(lambda: not self._rssi_pending, self.settings.rssi_wait_s)
        return self._last_rssi

    # -- catalog -------------------------------------------------------------

    def get_services(self) -> list[ServiceCatalogEntry]:
        if self._peripheral is None:
            return []
        owner = self._peripheral.identifier
        return [
            ServiceCatalogEntry(uuid=uuid, connection=owner, characteristics=tuple(chars))
            for uuid, chars in self._services.items()
        ]

    def get_characteristics(self, service_uuid: str | None = None) -> list[CharacteristicEntry]:
        if service_uuid is None:
            return list(self._characteristics.values())
        service = normalize_uuid(service_uuid)
        return [self._characteristics[c] for c in self._services.get(service, ()) if c in self._characteristics]

    def get_device_info(self) -> DeviceInfo | None:
        if self._peripheral is None or not self.is_connected:
            return None
        return DeviceInfo(
            name=self._peripheral.name or "Unknown",
            identifier=self._peripheral.identifier,
            state=self._connection_state,
            services=tuple(self._services),
            characteristics=tuple(self._characteristics),
        )

    # -- logging -------------------------------------------------------------

    @property
    def is_logging(self) -> bool:
        return self.hub.logging

    def start_logging(self, path: str | Path) -> Path:
        log = LogSession(path)
        self.hub.start_log(log)
        LOGGER.info("Logging notifications to %s", log.path)
        return log.path

    def stop_logging(self) -> Path | None:
        path = self.hub.stop_log()
        if path is not None:
            LOGGER.info("Stopped logging to %s", path)
        return path
