from streamrpc.transport.base import MessageFramer
from streamrpc.transport.codec import JsonStreamCodec

__all__ = ["MessageFramer", "JsonStreamCodec"]
