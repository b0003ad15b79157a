from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Any

from streamrpc.errors import DuplicateRequestIdError

logger = logging.getLogger(__name__)


def is_valid_id(request_id: Any) -> bool:
    """JSON-RPC ids are strings, numbers or null; bools compare equal to 0/1 and are refused."""
    if isinstance(request_id, bool):
        return False
    return request_id is None or isinstance(request_id, (str, int, float))


class PendingCallRegistry:
    """Outstanding requests keyed by id, each waiting on a one-shot future.

    Shared between caller threads (register/discard) and the listener thread
    (resolve/close); every access goes through ``_lock``.
    """

    def __init__(self) -> None:
        self._pending: dict[Any, Future[dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._closed_with: BaseException | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, request_id: Any) -> bool:
        with self._lock:
            return request_id in self._pending

    @property
    def closed(self) -> bool:
        return self._closed_with is not None

    def register(self, request_id: Any) -> Future[dict[str, Any]]:
        """Start waiting for ``request_id``. Fails fast on an id already outstanding."""
        fut: Future[dict[str, Any]] = Future()
        with self._lock:
            if self._closed_with is not None:
                raise self._closed_with
            if request_id in self._pending:
                raise DuplicateRequestIdError(request_id)
            self._pending[request_id] = fut
        return fut

    def resolve(self, request_id: Any, response: dict[str, Any]) -> bool:
        if not is_valid_id(request_id):
            logger.warning("Dropping reply with malformed request id=%r", request_id)
            return False
        with self._lock:
            fut = self._pending.pop(request_id, None)
        if fut is None:
            logger.warning("Dropping reply for unknown request id=%r", request_id)
            return False
        if not fut.set_running_or_notify_cancel():
            logger.debug("Reply for id=%r arrived after its waiter was cancelled", request_id)
            return False
        fut.set_result(response)
        return True

    def discard(self, request_id: Any) -> None:
        """Forget an abandoned call so a late reply is treated as stale."""
        with self._lock:
            fut = self._pending.pop(request_id, None)
        if fut is not None:
            fut.cancel()

    def close(self, exc: BaseException) -> int:
        """Fail every outstanding call with ``exc`` and refuse new registrations."""
        with self._lock:
            if self._closed_with is None:
                self._closed_with = exc
            pending = list(self._pending.items())
            self._pending.clear()
        for request_id, fut in pending:
            if fut.set_running_or_notify_cancel():
                fut.set_exception(exc)
            logger.debug("Failed pending call id=%r: %s", request_id, exc)
        return len(pending)
