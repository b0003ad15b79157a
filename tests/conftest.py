import socket
import threading

import pytest

from streamrpc.rpc.jsonrpc import make_response
from streamrpc.transport.codec import JsonStreamCodec


class FakeServer:
    """Server end of a socketpair; the client end is handed to open_connection."""

    def __init__(self):
        self.client_sock, self.server_sock = socket.socketpair()
        self.server_sock.settimeout(5.0)
        self.client_in = self.client_sock.makefile("rb")
        self.client_out = self.client_sock.makefile("wb")
        self._in = self.server_sock.makefile("rb")
        self._out = self.server_sock.makefile("wb")
        self.codec = JsonStreamCodec(self._in, self._out)

    def next_request(self) -> dict:
        found, msg = self.codec.read_message()
        assert found, "client closed the stream"
        return msg

    def send(self, obj) -> None:
        self.codec.write_message(obj)

    def send_raw(self, data: bytes) -> None:
        self._out.write(data)
        self._out.flush()

    def reply_to_next(self, result_fn=lambda req: req.get("params")):
        req = self.next_request()
        self.send(make_response(req["id"], result_fn(req)))
        return req

    def serve_in_thread(self, count: int = 1) -> threading.Thread:
        """Answer ``count`` requests with their own params."""

        def run():
            for _ in range(count):
                self.reply_to_next()

        t = threading.Thread(target=run, daemon=True)
        t.start()
        return t

    def close(self) -> None:
        try:
            self.server_sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for f in (self._in, self._out):
            try:
                f.close()
            except OSError:
                pass
        self.server_sock.close()


@pytest.fixture
def server():
    srv = FakeServer()
    yield srv
    srv.close()
    srv.client_in.close()
    srv.client_sock.close()
