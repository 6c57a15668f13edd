"""CSV export of accepted notifications."""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from blectl.core.uuids import short_uuid
from blectl.protocols.binary import format_hex

HEADER = ("timestamp", "characteristic", "hex_data", "length")


class LogSession:
    """Appends one CSV row per notification while active."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._handle: TextIO | None = None
        self._writer = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", newline="", encoding="utf-8")
        self._writer = csv.writer(self._handle, lineterminator="\n")
        self._writer.writerow(HEADER)
        self._handle.flush()

    def append(self, uuid: str, data: bytes, when: datetime | None = None) -> None:
        if self._handle is None or self._writer is None:
            return
        stamp = (when or datetime.now(timezone.utc)).astimezone(timezone.utc)
        self._writer.writerow(
            (
                stamp.strftime("%Y-%m-%dT%H:%M:%SZ"),
                short_uuid(uuid),
                format_hex(data),
                len(data),
            )
        )
        self._handle.flush()

    def close(self) -> Path:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._writer = None
        return self.path
