from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections.abc import Mapping
from typing import IO, Any

from pydantic import ValidationError

from streamrpc.client.listener import ListenerLoop
from streamrpc.client.registry import PendingCallRegistry
from streamrpc.config import SUPPORTED_VERSION, ConnectionConfig
from streamrpc.errors import (
    CallTimeoutError,
    ConnectionClosedError,
    ProtocolError,
    RemoteError,
    SetupError,
    StreamRpcError,
)
from streamrpc.rpc.jsonrpc import build_request, coerce_params, is_notification
from streamrpc.transport.base import MessageFramer
from streamrpc.transport.codec import JsonStreamCodec

logger = logging.getLogger(__name__)

_USE_CONFIG = object()


def _check_stream(stream: Any, role: str, op: str, check: str) -> None:
    """Reject anything that cannot act as the ``role`` side of the connection."""
    expected = f"{check} stream"
    if not callable(getattr(stream, op, None)):
        raise SetupError(role, expected, type(stream).__name__)
    if getattr(stream, "closed", False) is True:
        raise SetupError(role, f"open {expected}", f"closed {type(stream).__name__}")
    checker = getattr(stream, check, None)
    if callable(checker):
        try:
            ok = checker()
        except (OSError, ValueError):
            ok = False
        if not ok:
            raise SetupError(role, expected, f"non-{check} {type(stream).__name__}")


def _build_config(
    config: ConnectionConfig | Mapping[str, Any] | None, options: dict[str, Any]
) -> ConnectionConfig:
    if config is None:
        base: dict[str, Any] = {}
    elif isinstance(config, ConnectionConfig):
        base = {name: getattr(config, name) for name in ConnectionConfig.model_fields}
    elif isinstance(config, Mapping):
        base = dict(config)
    else:
        raise SetupError("config", "ConnectionConfig or mapping", type(config).__name__)
    data = {**base, **options}
    try:
        cfg = ConnectionConfig.model_validate(data)
    except ValidationError as e:
        err = e.errors()[0]
        field = str(err["loc"][0]) if err.get("loc") else "config"
        actual = err.get("input")
        raise SetupError(field, err["msg"], type(actual).__name__) from e
    if cfg.version != SUPPORTED_VERSION:
        raise SetupError(
            "version", repr(SUPPORTED_VERSION), f"{type(cfg.version).__name__} {cfg.version!r}"
        )
    return cfg


class Connection:
    """A JSON-RPC 2.0 client session over one input and one output stream.

    Calls block the calling thread until the listener thread hands over the
    matching reply. Any number of threads may call concurrently; each request
    gets its own id.
    """

    def __init__(
        self,
        input: IO[Any],
        output: IO[Any],
        config: ConnectionConfig,
        codec: MessageFramer | None = None,
    ) -> None:
        self.input = input
        self.output = output
        self.config = config
        self.codec = codec or JsonStreamCodec(input, output, encoding=config.encoding)
        self._registry = PendingCallRegistry()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._closed = False
        self._listener = ListenerLoop(self.codec, self._registry, config.broadcast_handler)

    def start(self) -> None:
        self._listener.start()

    @property
    def pending_calls(self) -> int:
        return len(self._registry)

    @property
    def is_listening(self) -> bool:
        return self._listener.is_alive()

    @property
    def failure(self) -> StreamRpcError | None:
        return self._listener.failure

    @property
    def closed(self) -> bool:
        return self._closed

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def __call__(self, method: Any, *params: Any, **named: Any) -> Any:
        return self.invoke(method, *params, **named)

    def invoke(self, method: Any, *params: Any, **named: Any) -> Any:
        """Call ``method`` with positional or named params and wait for its result.

        ``method`` may be a ``Notification``, in which case nothing is awaited and
        None is returned.
        """
        return self._send(method, params, named, self.config.timeout)

    def call(self, method: Any, params: Any = None, *, timeout: Any = _USE_CONFIG) -> Any:
        """Like ``invoke`` but with params given as one list, tuple or mapping."""
        args, named = coerce_params(params)
        if timeout is _USE_CONFIG:
            timeout = self.config.timeout
        return self._send(method, args, named, timeout)

    async def ainvoke(self, method: Any, *params: Any, **named: Any) -> Any:
        return await asyncio.to_thread(self.invoke, method, *params, **named)

    def _send(
        self,
        method: Any,
        params: tuple[Any, ...],
        named: dict[str, Any],
        timeout: float | None,
    ) -> Any:
        if self._closed:
            raise ConnectionClosedError("connection closed")
        notification = is_notification(method)
        request_id = None if notification else self._next_id()
        request = build_request(method, params, named, id_=request_id)

        if notification or self.config.test_mode:
            self._write(request)
            return None

        fut = self._registry.register(request_id)
        delivered = False
        try:
            self._write(request)
            try:
                response = fut.result(timeout=timeout)
            except TimeoutError:
                logger.warning(
                    "Request timed out: method=%s id=%s timeout=%s",
                    request["method"],
                    request_id,
                    timeout,
                )
                raise CallTimeoutError(request["method"], request_id, timeout) from None
            delivered = True
        finally:
            if not delivered:
                self._registry.discard(request_id)
        return self._unwrap(response)

    def _write(self, request: dict[str, Any]) -> None:
        with self._write_lock:
            self.codec.write_message(request)
        logger.debug("Sent %s id=%s", request["method"], request.get("id"))

    def _unwrap(self, response: Any) -> Any:
        if self.config.full_data:
            return response
        if not isinstance(response, dict):
            raise ProtocolError("reply is not a JSON object", response)
        if "result" in response:
            return response["result"]
        if "error" in response:
            error = response["error"]
            if not isinstance(error, dict):
                raise ProtocolError("reply error member is not an object", response)
            raise RemoteError.from_error(error)
        raise ProtocolError("reply has neither result nor error", response)

    def close(self) -> None:
        """Fail outstanding calls, close the output stream and stop the listener.

        The input stream is left to its owner; the listener thread exits once its
        pending read returns.
        """
        if self._closed:
            return
        self._closed = True
        failed = self._registry.close(ConnectionClosedError("connection closed"))
        if failed:
            logger.info("Closed connection with %d call(s) outstanding", failed)
        with self._write_lock:
            try:
                self.output.close()
            except OSError as e:
                logger.debug("Error closing output stream: %s", e)
        self._listener.stop(self.config.join_timeout)

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the server ends the input stream (or ``timeout`` passes)."""
        return self._listener.join(timeout)

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


def open_connection(
    input: IO[Any],
    output: IO[Any],
    config: ConnectionConfig | Mapping[str, Any] | None = None,
    *,
    codec: MessageFramer | None = None,
    **options: Any,
) -> Connection:
    """Validate the streams and options, start the listener and return the connection.

    Options (given in ``config`` or as keywords): ``version`` (must be "2.0"),
    ``full_data``, ``broadcast_handler``, ``test_mode``, ``timeout``, ``encoding``,
    ``join_timeout``.
    """
    _check_stream(input, "input port", "read", "readable")
    _check_stream(output, "output port", "write", "writable")
    cfg = _build_config(config, options)
    conn = Connection(input, output, cfg, codec=codec)
    conn.start()
    logger.debug("Opened connection (full_data=%s test_mode=%s)", cfg.full_data, cfg.test_mode)
    return conn
