"""Synchronous JSON-RPC 2.0 client over a duplex byte stream."""

from streamrpc.client import Connection, open_connection
from streamrpc.config import ConnectionConfig
from streamrpc.config_loader import load_config
from streamrpc.errors import (
    CallTimeoutError,
    ConnectionClosedError,
    DuplicateRequestIdError,
    ProtocolError,
    RemoteError,
    RequestDataError,
    SetupError,
    StreamRpcError,
    TransportError,
)
from streamrpc.rpc import Keyword, Notification

__version__ = "0.1.0"

__all__ = [
    "Connection",
    "ConnectionConfig",
    "Keyword",
    "Notification",
    "load_config",
    "open_connection",
    "CallTimeoutError",
    "ConnectionClosedError",
    "DuplicateRequestIdError",
    "ProtocolError",
    "RemoteError",
    "RequestDataError",
    "SetupError",
    "StreamRpcError",
    "TransportError",
]
