from __future__ import annotations

import contextlib
import json
import logging
import shlex
import socket
import subprocess
from collections.abc import Iterator
from typing import IO, Any, NoReturn

import typer

from streamrpc.client import open_connection
from streamrpc.config import ConnectionConfig
from streamrpc.errors import RemoteError, StreamRpcError, TransportError
from streamrpc.rpc.jsonrpc import Notification
from streamrpc.utils.logs import configure_logging

app = typer.Typer(add_completion=False)
logger = logging.getLogger(__name__)


def parse_value(text: str) -> Any:
    """Parse a command line param as JSON, falling back to the raw string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def parse_named(items: list[str] | None) -> dict[str, Any]:
    named: dict[str, Any] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--named")
        named[key] = parse_value(value)
    return named


@contextlib.contextmanager
def _tcp_streams(address: str) -> Iterator[tuple[IO[bytes], IO[bytes]]]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise typer.BadParameter(f"expected HOST:PORT, got {address!r}", param_hint="--tcp")
    sock = socket.create_connection((host or "127.0.0.1", int(port)))
    try:
        yield sock.makefile("rb"), sock.makefile("wb")
    finally:
        with contextlib.suppress(OSError):
            sock.shutdown(socket.SHUT_RDWR)
        sock.close()


@contextlib.contextmanager
def _process_streams(command: str, timeout: float = 5.0) -> Iterator[tuple[IO[bytes], IO[bytes]]]:
    args = shlex.split(command)
    if not args:
        raise typer.BadParameter("command is empty", param_hint="--command")
    logger.info("Starting server process: %s", args[0])
    proc = subprocess.Popen(args, stdin=subprocess.PIPE, stdout=subprocess.PIPE)
    assert proc.stdin is not None and proc.stdout is not None
    try:
        yield proc.stdout, proc.stdin
    finally:
        if proc.poll() is None:
            with contextlib.suppress(OSError):
                proc.stdin.close()
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.terminate()
                try:
                    proc.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    proc.kill()
        proc.stdout.close()


def _streams(tcp: str | None, command: str | None):
    if bool(tcp) == bool(command):
        raise typer.BadParameter("give exactly one of --tcp or --command")
    if tcp:
        return _tcp_streams(tcp)
    return _process_streams(command)  # type: ignore[arg-type]


def _load(config_path: str | None) -> ConnectionConfig:
    if config_path:
        from streamrpc.config_loader import load_config

        return load_config(config_path)
    return ConnectionConfig()


def _dump(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False)


def _exit_with_error(e: Exception) -> NoReturn:
    typer.echo(f"error: {e}", err=True)
    raise typer.Exit(2) from None


@app.command("call")
def call(
    method: str = typer.Argument(..., help="Remote method name"),
    params: list[str] | None = typer.Argument(None, help="Positional params (JSON or text)"),
    named: list[str] | None = typer.Option(
        None, "--named", "-n", help="Named param KEY=VALUE (repeatable)"
    ),
    tcp: str | None = typer.Option(None, "--tcp", help="Connect to HOST:PORT"),
    command: str | None = typer.Option(
        None, "--command", help="Spawn a server and talk over its stdin/stdout"
    ),
    config: str | None = typer.Option(None, "--config", "-c", help="Path to YAML/JSON config"),
    timeout: float | None = typer.Option(None, help="Seconds to wait for the reply"),
    full_data: bool = typer.Option(False, "--full-data", help="Print the whole response"),
    notify: bool = typer.Option(False, "--notify", help="Send as a notification"),
) -> None:
    """Invoke one remote method and print its result as JSON."""
    configure_logging()
    overrides: dict[str, Any] = {}
    if timeout is not None:
        overrides["timeout"] = timeout
    if full_data:
        overrides["full_data"] = True
    values = [parse_value(p) for p in params or []]
    kwargs = parse_named(named)
    target: Any = Notification(method) if notify else method

    try:
        cfg = _load(config)
        with _streams(tcp, command) as (inp, out):
            conn = open_connection(inp, out, cfg, **overrides)
            try:
                result = conn.invoke(target, *values, **kwargs)
            finally:
                conn.close()
    except RemoteError as e:
        err = {"code": e.code, "message": e.message}
        if e.data is not None:
            err["data"] = e.data
        typer.echo(_dump(err), err=True)
        raise typer.Exit(1) from None
    except StreamRpcError as e:
        _exit_with_error(e)
    if not notify:
        typer.echo(_dump(result))


@app.command("listen")
def listen(
    tcp: str | None = typer.Option(None, "--tcp", help="Connect to HOST:PORT"),
    command: str | None = typer.Option(
        None, "--command", help="Spawn a server and talk over its stdin/stdout"
    ),
    config: str | None = typer.Option(None, "--config", "-c", help="Path to YAML/JSON config"),
) -> None:
    """Print every server broadcast as one JSON line until the server closes the stream."""
    configure_logging()

    def echo(msg: Any) -> None:
        typer.echo(_dump(msg))

    failure = None
    try:
        cfg = _load(config)
        with _streams(tcp, command) as (inp, out):
            conn = open_connection(inp, out, cfg, broadcast_handler=echo)
            try:
                conn.wait_closed()
                failure = conn.failure
            finally:
                conn.close()
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down.")
    except StreamRpcError as e:
        _exit_with_error(e)
    if isinstance(failure, TransportError):
        _exit_with_error(failure)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
