from streamrpc.rpc.jsonrpc import (
    JSONRPC_VERSION,
    Keyword,
    Notification,
    build_params,
    build_request,
    make_error,
    make_request,
    make_response,
)

__all__ = [
    "JSONRPC_VERSION",
    "Keyword",
    "Notification",
    "build_params",
    "build_request",
    "make_error",
    "make_request",
    "make_response",
]
