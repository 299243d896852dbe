"""fanlink CLI - serial monitor and firmware flasher."""

from __future__ import annotations

import json

import click

from fanlink.utils.logging import setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-output", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(ctx: click.Context, debug: bool, json_output: bool) -> None:
    """fanlink - monitor and flash ESP32 fan controllers over serial."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["json_output"] = json_output
    setup_logging(level="DEBUG" if debug else "WARNING", json_output=json_output)


@cli.command()
@click.pass_context
def ports(ctx: click.Context) -> None:
    """List serial ports."""
    from fanlink.transport import list_serial_ports

    found = list_serial_ports()
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(found, indent=2))
        return
    if not found:
        click.echo("No serial ports found.")
        return
    click.echo(f"Found {len(found)} port(s):")
    for i, name in enumerate(found):
        click.echo(f"  [{i}] {name}")


@cli.command()
@click.pass_context
def profiles(ctx: click.Context) -> None:
    """List the built-in firmware profiles."""
    from fanlink.catalog import FIRMWARE_OPTIONS

    if ctx.obj.get("json_output"):
        click.echo(json.dumps([p.model_dump() for p in FIRMWARE_OPTIONS], indent=2))
        return
    for i, profile in enumerate(FIRMWARE_OPTIONS):
        click.echo(f"[{i}] {profile.display_name}")
        for c in profile.components:
            click.echo(f"    0x{c.address:08X}  {c.binary_id:<16}  {c.display_name}")


# Register device commands
from fanlink.cli.device import flash, monitor  # noqa: E402

cli.add_command(flash)
cli.add_command(monitor)


if __name__ == "__main__":
    cli()
