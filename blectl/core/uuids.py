"""UUID normalisation for service and characteristic identifiers."""

from __future__ import annotations

from bleak.uuids import normalize_uuid_str

_SIG_BASE_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def normalize_uuid(value: str) -> str:
    """Expand a 16-, 32- or 128-bit UUID string to its lowercase 128-bit form."""
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return normalize_uuid_str(text)


def short_uuid(value: str) -> str:
    """Display form: uppercase 16-bit id for SIG base UUIDs, full UUID otherwise."""
    full = normalize_uuid(value)
    if full.endswith(_SIG_BASE_SUFFIX) and full.startswith("0000"):
        return full[4:8].upper()
    return full.upper()


def display_uuid(value: str) -> str:
    """``short_uuid`` that echoes unparseable input back unchanged."""
    try:
        return short_uuid(value)
    except ValueError:
        return value
