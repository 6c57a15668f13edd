"""Names scripts and other tools should import from blectl.

Everything listed in ``__all__`` keeps its signature across minor releases;
the modules under ``blectl.core`` and ``blectl.tools`` may change freely.
"""

from __future__ import annotations

from pathlib import Path

from blectl.core.config import Settings, load_settings
from blectl.core.errors import (
    BlectlError,
    CharacteristicNotFoundError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectFailedError,
    ConnectTimeoutError,
    DeviceNotFoundError,
    NotConnectedError,
    RadioUnavailableError,
    ReadTimeoutError,
    SessionNotStartedError,
    ToolArgumentError,
    ToolError,
    WriteFailedError,
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
from blectl.core.session import BLESession
from blectl.protocols.control import FTMSControl
from blectl.protocols.ftms import FTMSFeatures, IndoorBikeData, parse_ftms_features, parse_indoor_bike_data
from blectl.protocols.hrs import HeartRateMeasurement, SensorContact, parse_heart_rate_measurement
from blectl.transports.base import HostController
from blectl.transports.bleak_host import BleakHostController

__all__ = [
    "BlectlError",
    "CharacteristicNotFoundError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConnectFailedError",
    "ConnectTimeoutError",
    "DeviceNotFoundError",
    "NotConnectedError",
    "RadioUnavailableError",
    "ReadTimeoutError",
    "SessionNotStartedError",
    "ToolArgumentError",
    "ToolError",
    "WriteFailedError",
    "CharacteristicEntry",
    "ConnectionState",
    "DeviceInfo",
    "DiscoveredDevice",
    "RadioState",
    "ServiceCatalogEntry",
    "NotificationHub",
    "NotificationStream",
    "BLESession",
    "FTMSControl",
    "FTMSFeatures",
    "IndoorBikeData",
    "HeartRateMeasurement",
    "SensorContact",
    "parse_ftms_features",
    "parse_indoor_bike_data",
    "parse_heart_rate_measurement",
    "HostController",
    "BleakHostController",
    "Settings",
    "load_settings",
    "open_session",
]


def open_session(
    *,
    settings: Settings | None = None,
    config_path: Path | None = None,
    controller: HostController | None = None,
) -> BLESession:
    """Build an unstarted session; use it with ``async with``.

    Settings come from ``settings`` if given, otherwise from the config file.
    The bleak-backed controller is used unless one is supplied.
    """
    resolved = settings or load_settings(config_path)
    host = controller or BleakHostController(connect_timeout_s=resolved.connect_timeout_s)
    return BLESession(host, settings=resolved)
