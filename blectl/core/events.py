"""Events posted by a host controller into a session mailbox."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from blectl.core.model import RadioState


@dataclass(frozen=True)
class RadioStateChanged:
    state: RadioState


@dataclass(frozen=True)
class DeviceDiscovered:
    identifier: str
    name: str | None
    rssi: int
    service_uuids: tuple[str, ...] = ()
    advertisement: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PeripheralConnected:
    identifier: str
    name: str | None = None


@dataclass(frozen=True)
class PeripheralDisconnected:
    identifier: str


@dataclass(frozen=True)
class ConnectFailed:
    identifier: str
    error: str | None = None


@dataclass(frozen=True)
class ServicesDiscovered:
    service_uuids: tuple[str, ...]


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    service_uuid: str
    characteristics: tuple[tuple[str, tuple[str, ...]], ...]


@dataclass(frozen=True)
class ValueUpdated:
    uuid: str
    value: bytes | None
    error: str | None = None


@dataclass(frozen=True)
class WriteCompleted:
    uuid: str
    error: str | None = None


@dataclass(frozen=True)
class RSSIRead:
    rssi: int | None


HostEvent = Union[
    RadioStateChanged,
    DeviceDiscovered,
    PeripheralConnected,
    PeripheralDisconnected,
    ConnectFailed,
    ServicesDiscovered,
    CharacteristicsDiscovered,
    ValueUpdated,
    WriteCompleted,
    RSSIRead,
]
