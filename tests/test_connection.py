import asyncio
import io
import json
import queue
import threading

import pytest

from streamrpc import (
    CallTimeoutError,
    ConnectionClosedError,
    Keyword,
    Notification,
    ProtocolError,
    RemoteError,
    RequestDataError,
    SetupError,
    TransportError,
    open_connection,
)
from streamrpc.rpc.jsonrpc import make_error, make_response


def run_call(fn, *args, **kwargs):
    """Run a blocking call in a thread; the outcome lands in the returned dict."""
    box = {}

    def target():
        try:
            box["result"] = fn(*args, **kwargs)
        except Exception as e:
            box["error"] = e

    t = threading.Thread(target=target, daemon=True)
    t.start()
    return t, box


def first_param(req):
    return req["params"][0]


def test_invoke_returns_unwrapped_result(server):
    threading.Thread(target=server.reply_to_next, args=(first_param,), daemon=True).start()
    with open_connection(server.client_in, server.client_out) as conn:
        assert conn("echo", "x") == "x"


def test_full_data_returns_whole_response(server):
    threading.Thread(target=server.reply_to_next, args=(first_param,), daemon=True).start()
    with open_connection(server.client_in, server.client_out, full_data=True) as conn:
        resp = conn("echo", "x")
    assert resp == {"jsonrpc": "2.0", "id": 1, "result": "x"}


def test_request_on_the_wire(server):
    t, box = run_call(
        lambda conn: conn("sum", Keyword("a"), 1, Keyword("b"), 2),
        open_connection(server.client_in, server.client_out),
    )
    req = server.next_request()
    assert req == {"jsonrpc": "2.0", "method": "sum", "params": {"a": 1, "b": 2}, "id": 1}
    server.send(make_response(req["id"], 3))
    t.join(2)
    assert box["result"] == 3


def test_remote_error_is_raised(server):
    def reply():
        req = server.next_request()
        server.send(make_error(req["id"], -32601, "Method not found"))

    threading.Thread(target=reply, daemon=True).start()
    conn = open_connection(server.client_in, server.client_out)
    with pytest.raises(RemoteError) as exc:
        conn("missing")
    assert exc.value.code == -32601
    assert exc.value.message == "Method not found"
    assert exc.value.data is None
    conn.close()


def test_reply_without_result_or_error_is_protocol_error(server):
    def reply():
        req = server.next_request()
        server.send({"jsonrpc": "2.0", "id": req["id"]})

    threading.Thread(target=reply, daemon=True).start()
    conn = open_connection(server.client_in, server.client_out)
    with pytest.raises(ProtocolError):
        conn("odd")
    conn.close()


def test_broadcast_goes_to_handler_not_to_pending_call(server):
    seen = queue.Queue()
    conn = open_connection(server.client_in, server.client_out, broadcast_handler=seen.put)
    t, box = run_call(conn, "wait")
    req = server.next_request()

    server.send({"jsonrpc": "2.0", "method": "tick", "params": [1]})
    assert seen.get(timeout=2) == {"jsonrpc": "2.0", "method": "tick", "params": [1]}
    assert t.is_alive()
    assert conn.pending_calls == 1

    server.send(make_response(req["id"], "done"))
    t.join(2)
    assert box["result"] == "done"
    conn.close()


def test_broadcast_without_handler_is_dropped(server):
    threading.Thread(target=server.reply_to_next, args=(first_param,), daemon=True).start()
    conn = open_connection(server.client_in, server.client_out)
    server.send({"jsonrpc": "2.0", "method": "tick"})
    assert conn("echo", 5) == 5
    conn.close()


def test_failing_broadcast_handler_keeps_listener_running(server):
    seen = []

    def handler(msg):
        seen.append(msg)
        if len(seen) == 1:
            raise RuntimeError("handler bug")

    conn = open_connection(server.client_in, server.client_out, broadcast_handler=handler)
    server.send({"method": "first"})
    server.send({"method": "second"})
    threading.Thread(target=server.reply_to_next, args=(first_param,), daemon=True).start()
    assert conn("echo", "still here") == "still here"
    assert [m["method"] for m in seen] == ["first", "second"]
    conn.close()


def test_concurrent_calls_resolve_independently(server):
    conn = open_connection(server.client_in, server.client_out)
    t_a, box_a = run_call(conn, "a")
    first = server.next_request()
    t_b, box_b = run_call(conn, "b")
    second = server.next_request()
    assert first["id"] != second["id"]

    server.send(make_response(second["id"], second["method"]))
    t_b.join(2)
    assert box_b["result"] == "b"
    t_a.join(0.1)
    assert t_a.is_alive()

    server.send(make_response(first["id"], first["method"]))
    t_a.join(2)
    assert box_a["result"] == "a"
    conn.close()


def test_stale_reply_does_not_break_listener(server):
    def reply():
        req = server.next_request()
        server.send(make_response(999, "stale"))
        server.send(make_response(req["id"], "fresh"))

    threading.Thread(target=reply, daemon=True).start()
    conn = open_connection(server.client_in, server.client_out)
    assert conn("get") == "fresh"
    assert conn.is_listening
    conn.close()


@pytest.mark.parametrize("bad_id", [[1], {"n": 1}, True])
def test_malformed_reply_id_is_dropped(server, bad_id):
    conn = open_connection(server.client_in, server.client_out)
    t, box = run_call(conn, "get")
    req = server.next_request()
    assert req["id"] == 1

    server.send({"jsonrpc": "2.0", "id": bad_id, "result": "junk"})
    t.join(0.2)
    assert t.is_alive()
    assert conn.is_listening
    assert conn.pending_calls == 1

    server.send(make_response(req["id"], "fresh"))
    t.join(2)
    assert box == {"result": "fresh"}
    conn.close()


def test_large_reply_in_many_chunks(server):
    payload = "x" * 400_000 + '\\"{[' + "y" * 100_000
    threading.Thread(
        target=server.reply_to_next, args=(lambda req: payload,), daemon=True
    ).start()
    conn = open_connection(server.client_in, server.client_out, timeout=5)
    assert conn("big") == payload
    conn.close()


def test_notification_does_not_wait(server):
    conn = open_connection(server.client_in, server.client_out)
    assert conn(Notification("log"), "hello") is None
    assert conn.pending_calls == 0
    req = server.next_request()
    assert req == {"jsonrpc": "2.0", "method": "log", "params": ["hello"]}
    conn.close()


def test_test_mode_never_blocks():
    out = io.BytesIO()
    conn = open_connection(io.BytesIO(), out, test_mode=True)
    assert conn("echo", "x") is None
    assert conn("echo", "y") is None
    lines = out.getvalue().decode().splitlines()
    ids = [json.loads(line)["id"] for line in lines]
    assert ids == [1, 2]
    conn.close()


def test_bad_request_sends_nothing():
    out = io.BytesIO()
    conn = open_connection(io.BytesIO(), out, test_mode=True)
    with pytest.raises(RequestDataError) as exc:
        conn(42)
    assert exc.value.argument == "method"
    with pytest.raises(RequestDataError) as exc:
        conn("m", 1, a=2)
    assert exc.value.argument == "params"
    assert out.getvalue() == b""
    conn.close()


def test_timeout_discards_pending_call(server):
    conn = open_connection(server.client_in, server.client_out, timeout=0.1)
    with pytest.raises(CallTimeoutError) as exc:
        conn("slow")
    assert isinstance(exc.value, TimeoutError)
    assert conn.pending_calls == 0

    late = server.next_request()
    server.send(make_response(late["id"], "late"))
    threading.Thread(target=server.reply_to_next, args=(first_param,), daemon=True).start()
    assert conn.call("echo", ["on time"], timeout=5) == "on time"
    conn.close()


def test_close_fails_outstanding_calls(server):
    conn = open_connection(server.client_in, server.client_out)
    t, box = run_call(conn, "wait")
    server.next_request()
    conn.close()
    t.join(2)
    assert isinstance(box["error"], ConnectionClosedError)
    with pytest.raises(ConnectionClosedError):
        conn("again")


def test_end_of_input_fails_outstanding_calls(server):
    conn = open_connection(server.client_in, server.client_out)
    t, box = run_call(conn, "wait")
    server.next_request()
    server.close()
    t.join(2)
    assert isinstance(box["error"], ConnectionClosedError)
    assert conn.wait_closed(2)
    assert isinstance(conn.failure, ConnectionClosedError)
    with pytest.raises(ConnectionClosedError):
        conn("again")
    conn.close()


def test_malformed_input_is_fatal_transport_error(server):
    conn = open_connection(server.client_in, server.client_out)
    t, box = run_call(conn, "wait")
    server.next_request()
    server.send_raw(b"{oops}\n")
    t.join(2)
    assert isinstance(box["error"], TransportError)
    assert conn.wait_closed(2)
    assert isinstance(conn.failure, TransportError)
    with pytest.raises(TransportError):
        conn("again")
    # the output side still works for calls that need no reply
    assert conn(Notification("bye")) is None
    assert server.next_request()["method"] == "bye"
    conn.close()


def test_setup_rejects_non_port_input(server):
    with pytest.raises(SetupError) as exc:
        open_connection(42, server.client_out, version="2.0")
    assert exc.value.argument == "input port"
    assert "input port" in str(exc.value)
    assert "int" in str(exc.value)


def test_setup_rejects_read_only_output(server):
    with pytest.raises(SetupError) as exc:
        open_connection(server.client_in, server.client_in)
    assert exc.value.argument == "output port"


def test_setup_rejects_other_version(server):
    with pytest.raises(SetupError) as exc:
        open_connection(server.client_in, server.client_out, {"version": "1.0"})
    assert exc.value.argument == "version"
    assert exc.value.actual == "str '1.0'"
    assert "got str '1.0'" in str(exc.value)


def test_setup_rejects_unknown_option(server):
    with pytest.raises(SetupError) as exc:
        open_connection(server.client_in, server.client_out, colour="blue")
    assert exc.value.argument == "colour"


def test_setup_rejects_non_callable_handler(server):
    with pytest.raises(SetupError) as exc:
        open_connection(server.client_in, server.client_out, broadcast_handler="print")
    assert exc.value.argument == "broadcast_handler"


@pytest.mark.asyncio
async def test_ainvoke_concurrent_calls(server):
    conn = open_connection(server.client_in, server.client_out)

    def reply_in_reverse():
        reqs = [server.next_request(), server.next_request()]
        for req in reversed(reqs):
            server.send(make_response(req["id"], req["method"]))

    replier = threading.Thread(target=reply_in_reverse, daemon=True)
    replier.start()
    results = await asyncio.wait_for(
        asyncio.gather(conn.ainvoke("one"), conn.ainvoke("two")), timeout=5
    )
    assert results == ["one", "two"]
    conn.close()
