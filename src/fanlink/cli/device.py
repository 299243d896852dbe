"""CLI commands that talk to the device: monitor and flash."""

from __future__ import annotations

import asyncio
import sys
import threading

import click

from fanlink.exceptions import PortSelectionCancelled


def _choose_port(candidates: list[str]) -> str | None:
    """Ask which of several serial ports to use."""
    click.echo("Several serial ports found:", err=True)
    for i, name in enumerate(candidates):
        click.echo(f"  [{i}] {name}", err=True)
    try:
        index = click.prompt(
            "Port", type=click.IntRange(0, len(candidates) - 1), default=0, err=True
        )
    except click.Abort as exc:
        raise PortSelectionCancelled("Port selection cancelled") from exc
    return candidates[index]


def _make_arbiter(port: str | None, baud: int, source: str):
    from fanlink.arbiter import SessionArbiter
    from fanlink.flash.sources import byte_source_for
    from fanlink.sinks import ConsoleLogSink
    from fanlink.transport import SerialConfig, SerialPortProvider

    return SessionArbiter(
        SerialPortProvider(port=port, chooser=_choose_port),
        byte_source_for(source),
        ConsoleLogSink(),
        config=SerialConfig(baud_rate=baud),
    )


def _stdin_lines(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    # Daemon thread: a blocking readline must not keep the process alive.
    for line in sys.stdin:
        loop.call_soon_threadsafe(queue.put_nowait, line)
    loop.call_soon_threadsafe(queue.put_nowait, None)


async def _forward_stdin(arbiter) -> None:
    from fanlink.monitor.keys import KeyEvent

    queue: asyncio.Queue = asyncio.Queue()
    reader = threading.Thread(
        target=_stdin_lines, args=(asyncio.get_running_loop(), queue), daemon=True
    )
    reader.start()
    while True:
        line = await queue.get()
        if line is None:
            return
        for ch in line.rstrip("\r\n"):
            await arbiter.send_key(KeyEvent(ch))
        await arbiter.send_key(KeyEvent("Enter"))


async def _run_monitor(arbiter) -> None:
    await arbiter.toggle_monitor()
    if not arbiter.monitor.is_active:
        return
    forward = asyncio.create_task(_forward_stdin(arbiter))
    ended = asyncio.create_task(arbiter.monitor.wait_idle())
    try:
        await asyncio.wait({forward, ended}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        forward.cancel()
        ended.cancel()
        await arbiter.shutdown()


@click.command()
@click.option("--port", "-p", default=None, help="Serial port (e.g. /dev/ttyUSB0 or COM3)")
@click.option("--baud", type=int, default=115200, help="Baudrate (default: 115200)")
def monitor(port: str | None, baud: int) -> None:
    """Stream device output; typed lines are sent to the device.

    Each line is sent character by character followed by CR. End with
    Ctrl-D or Ctrl-C.
    """
    arbiter = _make_arbiter(port, baud, source=".")
    try:
        asyncio.run(_run_monitor(arbiter))
    except KeyboardInterrupt:
        pass


@click.command()
@click.option("--port", "-p", default=None, help="Serial port (e.g. /dev/ttyUSB0 or COM3)")
@click.option("--baud", type=int, default=115200, help="Baudrate (default: 115200)")
@click.option(
    "--source", "-s", default=".",
    help="Directory or http(s) base URL holding the firmware binaries",
)
@click.option("--profile", "profile_index", type=int, default=0, help="Firmware profile index")
@click.pass_context
def flash(ctx: click.Context, port: str | None, baud: int, source: str, profile_index: int) -> None:
    """Flash every component of a firmware profile, then reset the device."""
    arbiter = _make_arbiter(port, baud, source)
    ok = asyncio.run(arbiter.flash(profile_index))
    if not ok:
        ctx.exit(1)
