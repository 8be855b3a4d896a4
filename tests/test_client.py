import gc
import json
import socket
import threading
from unittest.mock import Mock, patch

import pytest

from smart_electrum.client import Client, ConnectionKind
from smart_electrum.config import Settings
from smart_electrum.exceptions import (
    AlreadyConnectedError, LockError, NotConfiguredError, NotConnectedError,
    TransportError
)
from smart_electrum.request import Request
from smart_electrum.response import (
    BannerResponse, ErrorResponse, PingResponse, ScriptHashNotification,
    SingleHeaderNotification
)
from smart_electrum.transport import SslTransport, TcpTransport

SCRIPTHASH = "1da0af1706a31185763837b33f1d90782c0a78bbe644a59c987ab3ff9c0b346e"

@pytest.fixture
def client(fake_server):
    client = Client.new_tcp("127.0.0.1", fake_server.port).read_timeout(2.0).write_timeout(2.0)
    client.connect()
    yield client
    if client.is_connected():
        client.close()

def closed_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port

class TestUnconfigured:
    def test_kind(self):
        assert Client().kind is ConnectionKind.UNCONFIGURED
        assert not Client().is_connected()

    def test_operations_need_configuration(self):
        client = Client()
        with pytest.raises(NotConfiguredError):
            client.connect()
        with pytest.raises(NotConfiguredError):
            client.send(Request.ping())
        with pytest.raises(NotConfiguredError):
            client.try_recv_str()
        with pytest.raises(NotConfiguredError):
            client.set_read_timeout(1.0)

    def test_close_is_not_connected(self):
        with pytest.raises(NotConnectedError):
            Client().close()

    def test_connect_retry_does_not_retry(self):
        with patch('smart_electrum.client.time.sleep') as mock_sleep:
            with pytest.raises(NotConfiguredError):
                Client().connect_retry(3, 1.0)
        mock_sleep.assert_not_called()

    def test_configure(self):
        client = Client().read_timeout(4.0).tcp("localhost", 50001)
        assert client.kind is ConnectionKind.PLAINTEXT
        client.ssl("localhost", 50002)
        assert client.kind is ConnectionKind.ENCRYPTED
        assert isinstance(client.transport, SslTransport)

    def test_timeouts_survive_reconfiguration(self):
        client = Client.new_tcp("localhost").read_timeout(4.0).write_timeout(5.0)
        client.ssl("localhost")
        assert client.transport.read_timeout == 4.0
        assert client.transport.write_timeout == 5.0

    def test_new_ssl_maybe(self):
        assert Client.new_ssl_maybe("localhost", 50001, use_ssl=False).kind is ConnectionKind.PLAINTEXT
        assert Client.new_ssl_maybe("localhost").kind is ConnectionKind.ENCRYPTED

    def test_verify_certificate(self):
        client = Client.new_ssl("localhost").verify_certificate(False)
        assert client.transport.verify_certificate is False
        # Ignored for plaintext
        Client.new_tcp("localhost").verify_certificate(False)

    def test_from_settings(self):
        settings = Settings(host="example.org", port=50001, use_ssl=False, read_timeout=3.0)
        client = Client.from_settings(settings)
        assert client.kind is ConnectionKind.PLAINTEXT
        assert client.transport.host == "example.org"
        assert client.transport.port == 50001
        assert client.transport.read_timeout == 3.0
        assert client.transport.connect_timeout == settings.connect_timeout

class TestLifecycle:
    def test_connect_and_close(self, fake_server):
        client = Client.new_tcp("127.0.0.1", fake_server.port)
        assert not client.is_connected()
        client.connect()
        assert client.is_connected()
        with pytest.raises(AlreadyConnectedError):
            client.connect()
        client.close()
        assert not client.is_connected()
        with pytest.raises(NotConnectedError):
            client.close()

    def test_reconnect(self, fake_server):
        client = Client.new_tcp("127.0.0.1", fake_server.port).read_timeout(2.0)
        client.connect()
        client.close()
        client.connect()
        assert client.call(Request.ping()).id == 0
        client.close()

    def test_io_needs_connection(self):
        client = Client.new_tcp("127.0.0.1", closed_port())
        with pytest.raises(NotConnectedError):
            client.send(Request.ping())
        with pytest.raises(NotConnectedError):
            client.recv_str()

    def test_reconfigure_refused_while_connected(self, client):
        client.ssl("other.example.org", 50002)
        assert client.kind is ConnectionKind.PLAINTEXT
        client.transport.set_host("other.example.org")
        assert client.transport.host == "127.0.0.1"

    def test_context_manager_closes(self, fake_server):
        with Client.new_tcp("127.0.0.1", fake_server.port) as client:
            client.connect()
            assert client.is_connected()
        assert not client.is_connected()

    def test_close_with_contended_lock(self, client):
        stream = client.transport.stream
        with stream.exclusive():
            with pytest.raises(LockError):
                client.close()
        assert client.is_connected()

    def test_connect_refused(self):
        client = Client.new_tcp("127.0.0.1", closed_port())
        with pytest.raises(TransportError):
            client.connect()
        assert not client.is_connected()

class TestConnectRetry:
    def test_gives_up(self):
        client = Client.new_tcp("127.0.0.1", closed_port())
        with patch('smart_electrum.client.time.sleep') as mock_sleep:
            with pytest.raises(TransportError):
                client.connect_retry(2, 0.5)
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(0.5)

    def test_succeeds_after_failure(self):
        transport = Mock(spec=TcpTransport)
        transport.connect.side_effect = [TransportError("refused"), None]
        client = Client(transport)
        with patch('smart_electrum.client.time.sleep') as mock_sleep:
            client.connect_retry(3, 1.0)
        assert transport.connect.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_already_connected_is_not_retried(self):
        transport = Mock(spec=TcpTransport)
        transport.connect.side_effect = AlreadyConnectedError()
        with pytest.raises(AlreadyConnectedError):
            Client(transport).connect_retry(3, 1.0)
        assert transport.connect.call_count == 1

class TestRequests:
    def test_send_and_recv(self, client, fake_server):
        request = Request.ping().with_id(5)
        client.send(request)
        responses = client.recv({5: request})
        assert len(responses) == 1
        assert isinstance(responses[0], PingResponse)
        assert fake_server.received == [request.to_dict()]

    def test_try_recv_without_data(self, client):
        assert client.try_recv({}) is None
        assert client.try_recv_str() is None

    def test_try_recv_after_reply(self, client):
        request = Request.banner()
        client.send(request)
        # Block for the first line, then poll for nothing more
        assert client.recv_str() == json.dumps({"jsonrpc": "2.0", "id": 0, "result": "Welcome to the fake server"})
        assert client.try_recv({0: request}) is None

    def test_call(self, client):
        response = client.call(Request.banner().with_id(3))
        assert isinstance(response, BannerResponse)
        assert response.result == "Welcome to the fake server"

    def test_call_server_error(self, client, fake_server):
        fake_server.results["server.banner"] = Exception("unknown method")
        response = client.call(Request.banner())
        assert isinstance(response, ErrorResponse)
        assert response.error.message == "unknown method"

    def test_call_collects_pushes(self, client, fake_server):
        fake_server.pushes.append(json.dumps({
            "jsonrpc": "2.0", "method": "blockchain.scripthash.subscribe", "params": [SCRIPTHASH, "abcd"]
        }))
        notifications = []
        response = client.call(Request.ping().with_id(1), notifications=notifications)
        assert isinstance(response, PingResponse)
        assert isinstance(notifications[0], ScriptHashNotification)
        assert notifications[0].status == "abcd"

    def test_send_batch(self, client):
        requests = [Request.ping().with_id(1), Request.subscribe_headers().with_id(2)]
        client.send_batch(requests)
        responses = client.recv({request.id: request for request in requests})
        assert isinstance(responses[0], PingResponse)
        assert isinstance(responses[1], SingleHeaderNotification)
        assert responses[1].header.height == 119367

    def test_live_read_timeout(self, client):
        client.set_read_timeout(0.05)
        assert client.transport.read_timeout == 0.05
        with pytest.raises(TransportError):
            client.recv_str()

class TestClone:
    def test_clone_shares_stream(self, client):
        clone = client.clone()
        assert clone.kind is client.kind
        assert clone.transport.stream is client.transport.stream
        assert client.transport.stream.refs == 2

    def test_dropping_clone_keeps_stream_open(self, client):
        stream = client.transport.stream
        clone = client.clone()
        del clone
        gc.collect()
        assert stream.refs == 1
        assert not stream.closed
        assert isinstance(client.call(Request.ping()), PingResponse)

    def test_clone_of_unconfigured(self):
        assert Client().clone().kind is ConnectionKind.UNCONFIGURED

    def test_clone_from_another_thread(self, client):
        clone = client.clone()
        request = Request.banner().with_id(9)
        sender = threading.Thread(target=clone.send, args=(request,))
        sender.start()
        sender.join()
        responses = client.recv({9: request})
        assert responses[0].id == 9
