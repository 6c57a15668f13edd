"""Core data models shared by the session, hub, tools and CLI."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any


class RadioState(enum.Enum):
    UNKNOWN = "unknown"
    POWERED_ON = "powered_on"
    POWERED_OFF = "powered_off"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class DiscoveredDevice:
    identifier: str
    name: str | None
    rssi: int
    service_uuids: frozenset[str] = frozenset()
    advertisement: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class CharacteristicEntry:
    uuid: str
    service_uuid: str
    readable: bool = False
    writable: bool = False
    write_without_response: bool = False
    notifiable: bool = False
    indicatable: bool = False

    @classmethod
    def from_properties(cls, uuid: str, service_uuid: str, properties: Iterable[str]) -> CharacteristicEntry:
        props = {p.lower() for p in properties}
        return cls(
            uuid=uuid,
            service_uuid=service_uuid,
            readable="read" in props,
            writable="write" in props,
            write_without_response="write-without-response" in props,
            notifiable="notify" in props,
            indicatable="indicate" in props,
        )

    @property
    def properties(self) -> tuple[str, ...]:
        flags = (
            ("read", self.readable),
            ("write", self.writable),
            ("write-without-response", self.write_without_response),
            ("notify", self.notifiable),
            ("indicate", self.indicatable),
        )
        return tuple(name for name, present in flags if present)


@dataclass(frozen=True)
class ServiceCatalogEntry:
    uuid: str
    connection: str
    characteristics: tuple[str, ...]


@dataclass(frozen=True)
class DeviceInfo:
    name: str
    identifier: str
    state: ConnectionState
    services: tuple[str, ...]
    characteristics: tuple[str, ...]
