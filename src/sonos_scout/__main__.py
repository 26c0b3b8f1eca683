"""CLI entry point for sonos-scout."""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import click

from .config import Config
from .discovery import DiscoveryService
from .exceptions import DeviceDescriptionError, FetchError, XmlDecodeError
from .models import Device
from .transport import DeviceHttpClient
from .utils import configure_logging
from .xmltree import parse


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON configuration file.",
    envvar="SONOS_SCOUT_CONFIG_FILE"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level (e.g., DEBUG, INFO).",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format.",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> None:
    """sonos-scout - Finds Sonos players on the local network and describes them."""
    try:
        if config_file:
            cfg = Config.from_file(Path(config_file))
        else:
            # Environment variables and .env
            cfg = Config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()

    configure_logging(cfg.logging)
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.option(
    "--duration", "-d",
    type=click.FloatRange(min=0.1),
    default=15.0,
    show_default=True,
    help="Seconds to listen for players before printing the roster."
)
@click.option(
    "--output-file", "-o",
    type=click.Path(dir_okay=False, writable=True, resolve_path=True),
    help="Write the roster to this file (JSON) instead of stdout."
)
@click.pass_context
def discover(ctx: click.Context, duration: float, output_file: Optional[str]) -> None:
    """Runs SSDP discovery for a while and prints the players found."""
    config: Config = ctx.obj["config"]
    service = DiscoveryService(config)
    devices: List[Device] = []

    async def run_discovery():
        nonlocal devices
        try:
            await service.start()
            if not service.is_running:
                return
            await asyncio.sleep(duration)
            devices = service.devices
        finally:
            await service.stop()

    try:
        asyncio.run(run_discovery())
    except KeyboardInterrupt:
        click.echo("\nDiscovery interrupted by user.", err=True)
        sys.exit(130)

    if service.last_error:
        click.echo(f"Discovery could not start: {service.last_error}", err=True)
        sys.exit(1)

    roster = [device.model_dump() for device in devices]
    if output_file:
        try:
            with open(output_file, "w") as f:
                json.dump(roster, f, indent=2)
            click.echo(f"Roster written to {output_file}")
        except IOError as e:
            click.echo(f"Error writing output file {output_file}: {e}", err=True)
            sys.exit(1)
    else:
        click.echo(json.dumps(roster, indent=2))

    click.echo("\n--- Summary ---")
    click.echo(f"  Players found: {len(devices)}")
    for device in devices:
        click.echo(f"  {device.room_name or device.friendly_name or '?':<20} {device.model_name or ''} ({device.id})")


@cli.command()
@click.argument("url")
@click.pass_context
def describe(ctx: click.Context, url: str) -> None:
    """Fetches one device description URL and prints the parsed device."""
    config: Config = ctx.obj["config"]

    async def fetch() -> Device:
        client = DeviceHttpClient(config.http)
        try:
            body = await client.get_text(url)
        finally:
            await client.close()
        return Device.from_xml(parse(body), url)

    try:
        device = asyncio.run(fetch())
    except (FetchError, XmlDecodeError, DeviceDescriptionError) as e:
        click.echo(f"Could not describe {url}: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(device.model_dump(), indent=2))


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"sonos-scout v{__version__}")


@cli.command()
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = ctx.obj["config"]
    click.echo(json.dumps(config.model_dump(), indent=2))


if __name__ == "__main__":
    cli()
