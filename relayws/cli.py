"""relayws CLI.

Commands:
    serve  - Run an echo server
    send   - Send one envelope and print the correlated reply
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Optional

import click

from . import __version__
from .config import ConfigError, ConfigLoader
from .connection import Connection
from .events import EventKind, MessageEvent
from .faults import Fault, WS_CONNECTION_CLOSED
from .server import Server


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version=__version__, prog_name="relayws")
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, verbose: bool):
    """Bidirectional envelope protocol over websockets."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    _configure_logging(verbose)


@cli.command('serve')
@click.option('--host', type=str, help='Bind address')
@click.option('--port', type=int, help='Port')
@click.option('--key', type=str, help='Shared secret clients must send first')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='JSON or YAML config file')
@click.option('--env-file', type=click.Path(dir_okay=False), help='.env file with RELAYWS_* variables')
def serve_cmd(host: Optional[str], port: Optional[int], key: Optional[str],
              config_path: Optional[str], env_file: Optional[str]):
    """Run an echo server: every request is answered with its own data."""
    overrides = {k: v for k, v in {"host": host, "port": port, "key": key}.items() if v is not None}

    try:
        loader = ConfigLoader.load(
            paths=[config_path] if config_path else None,
            env_file=env_file,
            overrides={"server": overrides},
        )
        config = loader.server_config()
    except ConfigError as e:
        raise click.ClickException(str(e))

    server = Server(config=config)
    server.on_message(lambda ctx: ctx.data, lambda envelope: not envelope.is_reply)

    click.echo(f"Serving on ws://{config.host}:{config.port} (key {'set' if server.key else 'not set'})")
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        pass


@cli.command('send')
@click.argument('url')
@click.argument('type')
@click.argument('data', required=False)
@click.option('--key', type=str, help='Shared secret')
@click.option('--ref', type=str, help='Correlation token (default: random)')
@click.option('--timeout', type=float, default=10.0, show_default=True, help='Seconds to wait for the reply')
def send_cmd(url: str, type: str, data: Optional[str], key: Optional[str], ref: Optional[str], timeout: float):
    """Send TYPE with optional JSON DATA to URL and print the reply."""
    try:
        payload = json.loads(data) if data is not None else None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="DATA")

    try:
        reply = asyncio.run(_request(url, type, payload, key, ref or str(uuid.uuid4()), timeout))
    except Fault as e:
        raise click.ClickException(str(e))
    except asyncio.TimeoutError:
        raise click.ClickException(f"No reply within {timeout} seconds")

    click.echo(json.dumps(reply.to_dict(), ensure_ascii=False))
    if reply.type == "error":
        raise SystemExit(1)


async def _request(url: str, type: str, data: Any, key: Optional[str], ref: str, timeout: float):
    conn = await Connection.connect_to(url, key)
    loop = asyncio.get_running_loop()
    reply = loop.create_future()

    def on_message(event: MessageEvent):
        if event.envelope.is_reply and event.envelope.ref == ref and not reply.done():
            reply.set_result(event.envelope)

    def on_close(event):
        if not reply.done():
            reply.set_exception(WS_CONNECTION_CLOSED("closed before a reply arrived"))

    async with conn:
        conn.observe(EventKind.MESSAGE, on_message)
        conn.on_close(on_close)
        await conn.send(type, data, ref)
        return await asyncio.wait_for(reply, timeout)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
