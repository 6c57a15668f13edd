"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from blectl.core.config import Settings, load_settings
from blectl.core.errors import BlectlError
from blectl.core.model import DiscoveredDevice
from blectl.core.session import BLESession
from blectl.server import serve_stdio
from blectl.tools.core_ble import format_device, sort_devices
from blectl.tools.registry import default_registry
from blectl.transports.bleak_host import BleakHostController

app = typer.Typer(help="Bluetooth LE fitness machine and heart rate control over JSON-RPC")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _settings(ctx: typer.Context) -> Settings:
    return load_settings(ctx.obj)


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to a YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    _configure_logging(verbose)
    ctx.obj = config


@app.command("serve")
def serve(ctx: typer.Context) -> None:
    """Run the JSON-RPC server on stdin/stdout."""
    try:
        settings = _settings(ctx)
        asyncio.run(serve_stdio(settings))
    except BlectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None


async def _scan(settings: Settings, duration: float | None, service: str | None) -> list[DiscoveredDevice]:
    controller = BleakHostController(connect_timeout_s=settings.connect_timeout_s)
    async with BLESession(controller, settings=settings) as session:
        return await session.scan(duration, [service] if service else None)


@app.command("scan")
def scan(
    ctx: typer.Context,
    duration: float | None = typer.Option(None, "--duration", help="Scan duration in seconds"),
    service: str | None = typer.Option(None, "--service", help="Only devices advertising this service UUID"),
    name: str | None = typer.Option(None, "--name", help="Case-insensitive name fragment"),
) -> None:
    """Scan for nearby BLE devices."""
    try:
        settings = _settings(ctx)
        devices = asyncio.run(_scan(settings, duration, service))
    except (BlectlError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if name:
        devices = [d for d in devices if name.lower() in (d.name or "").lower()]
    if not devices:
        typer.echo("No devices found")
        return
    for device in sort_devices(devices):
        typer.echo(format_device(device))


@app.command("tools")
def list_tools() -> None:
    """List the tools served over JSON-RPC."""
    registry = default_registry()
    for described in registry.list_tools():
        typer.echo(f"{described['name']}: {described['description']}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
