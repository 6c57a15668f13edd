"""Resolve a connect target against the current discovery set."""

from __future__ import annotations

from collections.abc import Iterable

from blectl.core.errors import DeviceNotFoundError
from blectl.core.model import DiscoveredDevice


def match_score(device: DiscoveredDevice, target: str) -> int:
    hint = target.strip().lower()
    if not hint:
        return 0
    if device.identifier.lower() == hint:
        return 3
    name = (device.name or "").lower()
    if name == hint:
        return 2
    if hint in name:
        return 1
    return 0


def resolve_device(target: str, devices: Iterable[DiscoveredDevice]) -> DiscoveredDevice:
    """Pick the device whose identifier or name best matches ``target``.

    Identifier equality beats exact name, which beats a case-insensitive name
    substring; ties go to the stronger signal.
    """
    best: DiscoveredDevice | None = None
    best_key = (0, 0)
    for device in devices:
        score = match_score(device, target)
        if score == 0:
            continue
        key = (score, device.rssi)
        if best is None or key > best_key:
            best = device
            best_key = key
    if best is None:
        raise DeviceNotFoundError(f"Device '{target}' not found. Run ble_scan first.")
    return best
