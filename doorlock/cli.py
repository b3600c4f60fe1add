"""
Command-line entry points for both DOORLOCK endpoints.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import click
from loguru import logger

from .config import DoorLockSettings, LockConfig, load_settings
from .codegen import CodeGenerator
from .errors import ConfigurationError, CounterExhaustedError, DoorLockError
from .logger import setup_logging
from .protocol import Verdict
from .requester import Requester
from .server import LockActuator, VerifierServer, VerifierSession
from .store import JsonCounterStore, MemoryCounterStore, NvramCounterStore
from .transport import BleTransport, StreamTransport, Transport
from .validator import Validator

# Demo key for ``simulate``; real deployments provision their own.
DEMO_SECRET_HEX = b"123456789".hex()


def _load(ctx: click.Context, overrides: Optional[Dict[str, Any]] = None) -> DoorLockSettings:
    try:
        settings = load_settings(ctx.obj["config_path"], overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(ctx.obj["log_level"] or settings.log_level, ctx.obj["log_file"])
    return settings


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="YAML settings file.")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              default=None, help="Console log level.")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Also write DEBUG logs to this file.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str], log_file: Optional[Path]):
    """Rolling-code lock toggle: requester and verifier."""
    ctx.ensure_object(dict)
    ctx.obj.update(config_path=config_path, log_level=log_level.upper() if log_level else None, log_file=log_file)


@main.command("code")
@click.option("--counter", type=click.IntRange(min=0), required=True, help="Counter value to derive the code for.")
@click.pass_context
def code_cmd(ctx: click.Context, counter: int):
    """Print the code for a counter value."""
    settings = _load(ctx)
    generator = CodeGenerator(settings.lock)
    try:
        click.echo(generator.format(generator.generate(counter)))
    except CounterExhaustedError as e:
        raise click.ClickException(str(e)) from e


@main.command("serve")
@click.option("--host", default=None, help="Listen address.")
@click.option("--port", type=int, default=None, help="Listen port.")
@click.option("--nvram-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Counter cell file.")
@click.pass_context
def serve_cmd(ctx: click.Context, host: Optional[str], port: Optional[int], nvram_file: Optional[Path]):
    """Run the verifier."""
    settings = _load(ctx, {"server": {"host": host, "port": port}, "storage": {"nvram_file": nvram_file}})
    try:
        validator = Validator(settings.lock, NvramCounterStore(settings.storage.nvram_file))
        server = VerifierServer(validator, LockActuator())
        asyncio.run(server.serve_forever(settings.server.host, settings.server.port))
    except KeyboardInterrupt:
        logger.info("Verifier stopped")
    except DoorLockError as e:
        raise click.ClickException(str(e)) from e


async def _send(requester: Requester, transport: Transport, timeout: Optional[float]) -> Verdict:
    requester.attach(transport)
    async with transport:
        await transport.open()
        return await requester.send_toggle(transport, timeout=timeout)


@main.command("send")
@click.option("--ble", "use_ble", is_flag=True, help="Send over BLE instead of TCP.")
@click.option("--host", default=None, help="Verifier address (TCP).")
@click.option("--port", type=int, default=None, help="Verifier port (TCP).")
@click.option("--counter-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Requester counter file.")
@click.option("--timeout", type=float, default=10.0, show_default=True, help="Seconds to wait for the verdict.")
@click.pass_context
def send_cmd(ctx: click.Context, use_ble: bool, host: Optional[str], port: Optional[int],
             counter_file: Optional[Path], timeout: float):
    """Send one toggle command."""
    settings = _load(ctx, {"server": {"host": host, "port": port}, "storage": {"counter_file": counter_file}})

    async def run() -> Verdict:
        if use_ble:
            transport: Transport = BleTransport(**settings.ble.model_dump())
        else:
            transport = await StreamTransport.connect(settings.server.host, settings.server.port)
        return await _send(requester, transport, timeout)

    try:
        requester = Requester(settings.lock, JsonCounterStore(settings.storage.counter_file, settings.storage.counter_key))
        verdict = asyncio.run(run())
    except asyncio.TimeoutError:
        raise click.ClickException("no verdict received; the code is spent, send again to use the next one")
    except (DoorLockError, OSError) as e:
        raise click.ClickException(str(e)) from e

    click.echo(verdict.value)
    if not verdict.accepted:
        ctx.exit(1)


@main.command("simulate")
@click.option("--lost", type=click.IntRange(min=0), default=3, show_default=True,
              help="Commands lost in transit before one arrives.")
@click.option("--window", type=click.IntRange(min=0), default=10, show_default=True, help="Verifier search window.")
@click.option("--secret", default=DEMO_SECRET_HEX, show_default=True, help="Shared secret, hex.")
@click.pass_context
def simulate_cmd(ctx: click.Context, lost: int, window: int, secret: str):
    """Replay the lost-messages resync scenario in memory."""
    setup_logging(ctx.obj["log_level"] or "WARNING", ctx.obj["log_file"])
    try:
        config = LockConfig(secret=secret, window=window)
    except ValueError as e:
        raise click.ClickException(f"invalid simulation parameters: {e}") from e

    requester = Requester(config, MemoryCounterStore())
    session = VerifierSession(Validator(config, MemoryCounterStore()), LockActuator())

    for _ in range(lost):
        requester.build_command()
    message, _ = requester.build_command()
    replies = session.feed(message)

    click.echo(f"requester counter: {requester.counter}")
    click.echo(f"verifier counter: {session.validator.counter}")
    click.echo(f"verdict: {replies[0].decode('ascii').strip()}")
    if replies != [b"OK\n"]:
        ctx.exit(1)


if __name__ == "__main__":
    main()
