from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from streamrpc.client.registry import PendingCallRegistry
from streamrpc.errors import ConnectionClosedError, StreamRpcError, TransportError
from streamrpc.transport.base import MessageFramer

logger = logging.getLogger(__name__)


class ListenerLoop:
    """Background reader: decode one message, dispatch it, repeat.

    Messages carrying an ``id`` are replies and go to the registry. Everything
    else is a broadcast for ``broadcast_handler``. The loop ends when the input
    stream ends or fails; either way every still-pending call is failed.
    """

    def __init__(
        self,
        codec: MessageFramer,
        registry: PendingCallRegistry,
        broadcast_handler: Callable[[Any], Any] | None = None,
        name: str = "streamrpc-listener",
    ) -> None:
        self.codec = codec
        self.registry = registry
        self.broadcast_handler = broadcast_handler
        self.failure: StreamRpcError | None = None
        self._stopping = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Mark the loop as stopping and wait up to ``timeout`` for the thread to exit.

        The thread only exits once its blocking read returns, which is up to
        whoever owns the input stream.
        """
        self._stopping.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the loop to finish; True once it has."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def dispatch(self, msg: Any) -> None:
        if isinstance(msg, dict) and "id" in msg:
            self.registry.resolve(msg["id"], msg)
            return
        if self.broadcast_handler is None:
            logger.debug("Dropping broadcast with no handler configured: %r", msg)
            return
        try:
            self.broadcast_handler(msg)
        except Exception:
            # keep listening even if the handler fails
            logger.exception("Broadcast handler raised")

    def _run(self) -> None:
        logger.debug("Listener started")
        messages = self.codec.iter_messages()
        while True:
            try:
                msg = next(messages)
            except StopIteration:
                break
            except Exception as e:
                self._fail(e)
                return
            try:
                self.dispatch(msg)
            except Exception:
                # one bad message must not take down the other pending calls
                logger.exception("Failed to dispatch message: %r", msg)
        reason = "connection closed" if self._stopping.is_set() else "input stream closed"
        logger.info("Listener finished: %s", reason)
        self.failure = ConnectionClosedError(reason)
        self.registry.close(self.failure)

    def _fail(self, e: Exception) -> None:
        """Stop on a read failure; the stream cannot be trusted past this point."""
        if self._stopping.is_set():
            logger.debug("Listener stopped while reading: %s", e)
            self.failure = ConnectionClosedError("connection closed")
            self.registry.close(self.failure)
            return
        err = e if isinstance(e, TransportError) else TransportError(f"codec failed: {e}")
        if err is not e:
            err.__cause__ = e
        logger.error("Listener stopped on transport failure: %s", err)
        self.failure = err
        self.registry.close(err)
