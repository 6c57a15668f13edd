"""Per-characteristic buffering and stream fan-out of value updates."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from blectl.core.csv_log import LogSession

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_EVICT = 500

_END = object()


class NotificationStream:
    """Async iterator of payloads for one characteristic.

    Iteration ends (no error) once the stream is finished by unsubscribe,
    re-subscribe or disconnect.
    """

    def __init__(self, uuid: str) -> None:
        self.uuid = uuid
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def push(self, value: bytes) -> None:
        if not self._finished:
            self._queue.put_nowait(value)

    def finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(_END)

    def __aiter__(self) -> NotificationStream:
        return self

    async def __anext__(self) -> bytes:
        item = await self._queue.get()
        if item is _END:
            # keep the marker so later reads also see end-of-stream
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class NotificationHub:
    def __init__(self, capacity: int = DEFAULT_CAPACITY, evict: int = DEFAULT_EVICT) -> None:
        if evict <= 0 or evict > capacity:
            raise ValueError("evict must be between 1 and capacity")
        self._capacity = capacity
        self._evict = evict
        self._buffers: dict[str, list[bytes]] = {}
        self._streams: dict[str, NotificationStream] = {}
        self._log: LogSession | None = None

    def accept(self, uuid: str, value: bytes) -> None:
        buffer = self._buffers.setdefault(uuid, [])
        buffer.append(value)
        if len(buffer) > self._capacity:
            del buffer[: self._evict]
            LOGGER.debug("Evicted %d buffered values for %s", self._evict, uuid)

        if self._log is not None:
            self._log.append(uuid, value)

        stream = self._streams.get(uuid)
        if stream is not None:
            stream.push(value)

    def buffer(self, uuid: str) -> tuple[bytes, ...]:
        return tuple(self._buffers.get(uuid, ()))

    def has_values(self, uuid: str) -> bool:
        return bool(self._buffers.get(uuid))

    def latest(self, uuid: str) -> bytes | None:
        buffer = self._buffers.get(uuid)
        return buffer[-1] if buffer else None

    def clear_buffer(self, uuid: str) -> None:
        self._buffers[uuid] = []

    def drain(self, uuid: str) -> list[bytes]:
        drained = self._buffers.get(uuid, [])
        self._buffers[uuid] = []
        return drained

    def open_stream(self, uuid: str) -> NotificationStream:
        prior = self._streams.pop(uuid, None)
        if prior is not None:
            prior.finish()
        stream = NotificationStream(uuid)
        self._streams[uuid] = stream
        return stream

    def has_stream(self, uuid: str) -> bool:
        return uuid in self._streams

    def finish_stream(self, uuid: str) -> None:
        stream = self._streams.pop(uuid, None)
        if stream is not None:
            stream.finish()

    def reset(self) -> None:
        for stream in self._streams.values():
            stream.finish()
        self._streams.clear()
        self._buffers.clear()

    @property
    def logging(self) -> bool:
        return self._log is not None

    def start_log(self, log: LogSession) -> None:
        if self._log is not None:
            self._log.close()
        log.open()
        self._log = log

    def stop_log(self) -> Path | None:
        if self._log is None:
            return None
        path = self._log.close()
        self._log = None
        return path
