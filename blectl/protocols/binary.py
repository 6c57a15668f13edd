"""Little-endian field cursor and hex helpers shared by the codecs."""

from __future__ import annotations

import re

_HEX_PAIR_RE = re.compile(r"^[0-9a-fA-F]{1,2}$")


class ShortPayload(Exception):
    """Raised by Cursor when a claimed-present field runs past the payload."""


class Cursor:
    """Sequential reader over a byte payload."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = bytes(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def _take(self, size: int) -> bytes:
        if self.offset + size > len(self._data):
            raise ShortPayload(
                f"need {size} byte(s) at offset {self.offset}, payload has {len(self._data)}"
            )
        chunk = self._data[self.offset : self.offset + size]
        self.offset += size
        return chunk

    def uint(self, size: int) -> int:
        return int.from_bytes(self._take(size), byteorder="little", signed=False)

    def sint(self, size: int) -> int:
        return int.from_bytes(self._take(size), byteorder="little", signed=True)

    def u8(self) -> int:
        return self.uint(1)

    def u16(self) -> int:
        return self.uint(2)

    def s16(self) -> int:
        return self.sint(2)

    def u24(self) -> int:
        return self.uint(3)

    def u32(self) -> int:
        return self.uint(4)


def format_hex(data: bytes) -> str:
    """Space-separated uppercase hex pairs, e.g. ``44 00 90 03``."""
    return " ".join(f"{byte:02X}" for byte in data)


def parse_hex(text: str) -> bytes:
    """Parse ``"05 64 00"`` or ``"0x05 0x64 0x00"`` into bytes.

    A single unseparated run (``"056400"``) is accepted too.
    """
    parts = text.split()
    if len(parts) == 1 and len(parts[0].removeprefix("0x")) > 2:
        run = parts[0].removeprefix("0x")
        if len(run) % 2 != 0:
            raise ValueError(f"Hex string '{text}' must have even length")
        parts = [run[i : i + 2] for i in range(0, len(run), 2)]

    payload = bytearray()
    for part in parts:
        token = part[2:] if part.lower().startswith("0x") else part
        if not _HEX_PAIR_RE.match(token):
            raise ValueError(f"Invalid hex byte '{part}'")
        payload.append(int(token, 16))
    if not payload:
        raise ValueError("Hex string must contain at least one byte")
    return bytes(payload)
