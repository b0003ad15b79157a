from streamrpc.client.connection import Connection, open_connection
from streamrpc.client.listener import ListenerLoop
from streamrpc.client.registry import PendingCallRegistry

__all__ = ["Connection", "open_connection", "ListenerLoop", "PendingCallRegistry"]
