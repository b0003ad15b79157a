from __future__ import annotations

from typing import Any


class StreamRpcError(Exception):
    """Base class for every error raised by streamrpc."""


class SetupError(StreamRpcError, TypeError):
    """Invalid connection parameters passed to ``open_connection``."""

    def __init__(self, argument: str, expected: str, actual: Any) -> None:
        self.argument = argument
        self.expected = expected
        self.actual = actual
        super().__init__(f"invalid {argument}: expected {expected}, got {actual}")


class RequestDataError(StreamRpcError, ValueError):
    """Invalid method or params shape; raised before anything is written."""

    def __init__(self, argument: str, detail: str) -> None:
        self.argument = argument
        self.detail = detail
        super().__init__(f"invalid {argument}: {detail}")


class RemoteError(StreamRpcError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any | None = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")

    @classmethod
    def from_error(cls, error: dict[str, Any]) -> RemoteError:
        return cls(error.get("code"), error.get("message", ""), error.get("data"))


class ProtocolError(StreamRpcError):
    """A reply that violates JSON-RPC 2.0 (neither result nor error)."""

    def __init__(self, message: str, response: Any | None = None) -> None:
        self.response = response
        super().__init__(message)


class ConnectionClosedError(StreamRpcError):
    """The connection went away while a call was outstanding."""


class CallTimeoutError(StreamRpcError, TimeoutError):
    """No reply arrived within the call timeout."""

    def __init__(self, method: str, request_id: Any, timeout: float) -> None:
        self.method = method
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(f"no reply to {method!r} (id={request_id}) within {timeout}s")


class TransportError(StreamRpcError):
    """Reading from or writing to the underlying stream failed."""


class DuplicateRequestIdError(StreamRpcError):
    """A request id was registered while another call with it is outstanding."""

    def __init__(self, request_id: Any) -> None:
        self.request_id = request_id
        super().__init__(f"request id {request_id!r} is already outstanding")


__all__ = [
    "StreamRpcError",
    "SetupError",
    "RequestDataError",
    "RemoteError",
    "ProtocolError",
    "ConnectionClosedError",
    "CallTimeoutError",
    "TransportError",
    "DuplicateRequestIdError",
]
