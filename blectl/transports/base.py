"""Host controller interfaces."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from blectl.core.events import HostEvent

EventSink = Callable[[HostEvent], None]


class HostController(Protocol):
    """Fire-and-forget radio primitives; completions arrive as posted events.

    The sink may be invoked from any thread.
    """

    def attach(self, sink: EventSink) -> None: ...

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    def start_scan(self, service_uuids: Sequence[str] | None = None) -> None: ...

    def stop_scan(self) -> None: ...

    def connect(self, identifier: str) -> None: ...

    def cancel_connection(self, identifier: str) -> None: ...

    def discover_services(self) -> None: ...

    def read_value(self, uuid: str) -> None: ...

    def write_value(self, uuid: str, data: bytes, with_response: bool) -> None: ...

    def set_notify(self, uuid: str, enabled: bool) -> None: ...

    def read_rssi(self) -> None: ...
