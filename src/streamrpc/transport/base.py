from __future__ import annotations

import abc
from collections.abc import Iterator
from typing import Any


class MessageFramer(abc.ABC):
    """Abstract stream framer for JSON-RPC messages."""

    @abc.abstractmethod
    def encode(self, obj: Any) -> bytes: ...

    @abc.abstractmethod
    def write_message(self, obj: Any) -> None:
        """Encode ``obj`` and write it to the output stream."""

    @abc.abstractmethod
    def iter_messages(self) -> Iterator[Any]:
        """Yield one decoded value per logical message until the input ends."""
