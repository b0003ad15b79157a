from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from streamrpc.errors import RequestDataError

JSONRPC_VERSION = "2.0"


@dataclass(frozen=True)
class Notification:
    """Method marker for a call that expects no reply.

    ``conn(Notification("log"), "hello")`` sends ``{"method": "log", ...}`` without an id.
    """

    name: str


@dataclass(frozen=True)
class Keyword:
    """Tag announcing that the next positional value is the named param ``name``."""

    name: str


def is_notification(method: Any) -> bool:
    return isinstance(method, Notification)


def method_name(method: Any) -> str:
    if isinstance(method, Notification):
        if not isinstance(method.name, str):
            raise RequestDataError(
                "method", f"notification name must be a string, got {type(method.name).__name__}"
            )
        return method.name
    if isinstance(method, str):
        return method
    raise RequestDataError(
        "method", f"expected a string or Notification, got {type(method).__name__}"
    )


def _named_from_tags(params: Sequence[Any]) -> dict[str, Any]:
    if len(params) % 2:
        raise RequestDataError("params", "keyword tag without a value")
    named: dict[str, Any] = {}
    for i in range(0, len(params), 2):
        tag, value = params[i], params[i + 1]
        if not isinstance(tag, Keyword):
            raise RequestDataError(
                "params", f"expected a Keyword tag at position {i}, got {type(tag).__name__}"
            )
        if isinstance(value, Keyword):
            raise RequestDataError("params", f"keyword tag {tag.name!r} has no value")
        if tag.name in named:
            raise RequestDataError("params", f"duplicate named param {tag.name!r}")
        named[tag.name] = value
    return named


def build_params(
    params: Sequence[Any] = (), named: Mapping[str, Any] | None = None
) -> list[Any] | dict[str, Any] | None:
    """Turn call arguments into the JSON-RPC ``params`` member.

    Positional values become an array. Keyword tags (``Keyword("a"), 1``) or Python
    keyword arguments become an object. The two forms cannot be mixed in one call.
    Returns None when there are no params at all.
    """
    params = tuple(params)
    named = dict(named or {})
    if params and isinstance(params[0], Keyword):
        tagged = _named_from_tags(params)
        overlap = tagged.keys() & named.keys()
        if overlap:
            raise RequestDataError("params", f"duplicate named param {sorted(overlap)[0]!r}")
        return {**tagged, **named}
    if params:
        if named:
            raise RequestDataError("params", "cannot mix positional and named params")
        for i, value in enumerate(params):
            if isinstance(value, Keyword):
                raise RequestDataError(
                    "params", f"keyword tag {value.name!r} at position {i} in positional params"
                )
        return list(params)
    if named:
        return named
    return None


def build_request(
    method: Any,
    params: Sequence[Any] = (),
    named: Mapping[str, Any] | None = None,
    *,
    id_: int | str | None = None,
) -> dict[str, Any]:
    name = method_name(method)
    payload = build_params(params, named)
    if is_notification(method):
        id_ = None
    return make_request(id_, name, payload)


def coerce_params(params: Any) -> tuple[tuple[Any, ...], dict[str, Any]]:
    """Split an explicit params value (list, tuple, mapping or None) into call arguments."""
    if params is None:
        return (), {}
    if isinstance(params, Mapping):
        for key in params:
            if not isinstance(key, str):
                raise RequestDataError(
                    "params", f"named param keys must be strings, got {type(key).__name__}"
                )
        return (), dict(params)
    if isinstance(params, (list, tuple)):
        return tuple(params), {}
    raise RequestDataError(
        "params", f"expected a list, tuple, mapping or None, got {type(params).__name__}"
    )


def make_request(id_: int | str | None, method: str, params: Any | None = None) -> dict:
    """Request envelope; with no id it is a notification and the id key is left out."""
    req: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        req["params"] = params
    if id_ is not None:
        req["id"] = id_
    return req


def make_response(id_: int | str, result: Any) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": id_, "result": result}


def make_error(id_: int | str | None, code: int, message: str, data: Any | None = None) -> dict:
    err: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": id_, "error": err}
