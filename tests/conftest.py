import json
import socket
import socketserver
import threading
from typing import Any, Callable, Dict, List

import pytest

Handler = Callable[[Any], Any]

class FakeElectrumServer(socketserver.ThreadingTCPServer):
    """Line based JSON-RPC server answering from a method -> result table"""
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, results: Dict[str, Any]):
        super().__init__(("127.0.0.1", 0), _FakeHandler)
        self.results = results
        self.received: List[Any] = []
        # Raw lines written before each reply
        self.pushes: List[str] = []

    @property
    def port(self) -> int:
        return self.server_address[1]

    def reply(self, request: Dict[str, Any]) -> Dict[str, Any]:
        result = self.results.get(request["method"])
        if isinstance(result, Exception):
            return {"jsonrpc": "2.0", "id": request["id"],
                    "error": {"code": -32601, "message": str(result)}}
        if callable(result):
            result = result(request["params"])
        return {"jsonrpc": "2.0", "id": request["id"], "result": result}

class _FakeHandler(socketserver.StreamRequestHandler):
    def handle(self):
        for line in self.rfile:
            payload = json.loads(line)
            self.server.received.append(payload)
            for push in self.server.pushes:
                self.wfile.write(push.encode() + b"\n")
            if isinstance(payload, list):
                answer = [self.server.reply(item) for item in payload]
            else:
                answer = self.server.reply(payload)
            self.wfile.write(json.dumps(answer).encode() + b"\n")
            self.wfile.flush()

DEFAULT_RESULTS = {
    "server.ping": None,
    "server.banner": "Welcome to the fake server",
    "server.version": ["electrs/0.10.5", "1.4"],
    "blockchain.headers.subscribe": {"height": 119367, "hex": "00" * 80},
    "blockchain.block.header": "00" * 80,
    "blockchain.estimatefee": 3.006e-05,
    "blockchain.relayfee": 1e-05,
    "blockchain.scripthash.get_balance": {"confirmed": 566888, "unconfirmed": 0},
    "blockchain.scripthash.subscribe": None,
}

@pytest.fixture
def fake_server():
    server = FakeElectrumServer(dict(DEFAULT_RESULTS))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()

@pytest.fixture
def socket_pair():
    left, right = socket.socketpair()
    yield left, right
    for sock in (left, right):
        try:
            sock.close()
        except OSError:
            pass
