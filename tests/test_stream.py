import socket
import ssl
import threading
from unittest.mock import Mock

import pytest

from smart_electrum.exceptions import (
    LockError, ShutdownError, SslHandshakeError, TransportError
)
from smart_electrum.stream import SslStreamHandle, TcpStreamHandle

@pytest.fixture
def handle(socket_pair):
    left, right = socket_pair
    return TcpStreamHandle(left, read_timeout=1.0, write_timeout=1.0), right

def free_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port

class TestTcpStream:
    def test_send_appends_newline(self, handle):
        stream, peer = handle
        stream.send('{"id":0}')
        assert peer.recv(100) == b'{"id":0}\n'

    def test_nonblocking_without_data(self, handle):
        stream, _ = handle
        assert stream.read_nonblocking() is None
        # Back to blocking mode with the read timeout
        assert stream._sock.gettimeout() == 1.0

    def test_nonblocking_with_data(self, handle):
        stream, peer = handle
        peer.sendall(b"hello\n")
        assert stream.read_nonblocking() == "hello"
        assert stream.read_nonblocking() is None

    def test_several_lines_in_one_chunk(self, handle):
        stream, peer = handle
        peer.sendall(b"one\ntwo\r\nthree\n")
        assert stream.read_blocking() == "one"
        assert stream.read_nonblocking() == "two"
        assert stream.read_blocking() == "three"
        assert stream.read_nonblocking() is None

    def test_line_split_across_chunks(self, handle):
        stream, peer = handle

        def write_later():
            peer.sendall(b'{"id":')
            peer.sendall(b'1}\n')

        writer = threading.Thread(target=write_later)
        writer.start()
        assert stream.read_blocking() == '{"id":1}'
        writer.join()

    def test_blank_lines_skipped(self, handle):
        stream, peer = handle
        peer.sendall(b"\n\nping\n")
        assert stream.read_blocking() == "ping"

    def test_nonblocking_lone_newline(self, handle):
        stream, peer = handle
        peer.sendall(b"\n")
        assert stream.read_nonblocking() is None
        peer.sendall(b"\r\n\nping\n")
        assert stream.read_nonblocking() == "ping"
        assert stream.read_nonblocking() is None

    def test_read_timeout(self, socket_pair):
        left, _ = socket_pair
        stream = TcpStreamHandle(left, read_timeout=0.05)
        with pytest.raises(TransportError) as exc_info:
            stream.read_blocking()
        assert "timed out" in exc_info.value.message

    def test_timeout_changes_apply_to_next_read(self, handle):
        stream, _ = handle
        stream.set_read_timeout(0.05)
        with pytest.raises(TransportError):
            stream.read_blocking()

    def test_peer_closed(self, handle):
        stream, peer = handle
        peer.close()
        with pytest.raises(TransportError) as exc_info:
            stream.read_blocking()
        assert "closed" in exc_info.value.message

    def test_unterminated_last_line(self, handle):
        stream, peer = handle
        peer.sendall(b"partial")
        peer.close()
        assert stream.read_blocking() == "partial"
        with pytest.raises(TransportError):
            stream.read_blocking()

    def test_connect_refused(self):
        with pytest.raises(TransportError):
            TcpStreamHandle.connect("127.0.0.1", free_port(), connect_timeout=1.0)

    def test_connect(self, fake_server):
        stream = TcpStreamHandle.connect("127.0.0.1", fake_server.port, read_timeout=2.0)
        stream.send('{"jsonrpc":"2.0","id":0,"method":"server.ping","params":[]}')
        assert stream.read_blocking() == '{"jsonrpc": "2.0", "id": 0, "result": null}'
        stream.shutdown()
        assert stream.closed

class TestOwnership:
    def test_last_release_shuts_down(self, handle):
        stream, _ = handle
        stream.acquire()
        assert stream.refs == 2
        stream.release()
        assert not stream.closed
        stream.release()
        assert stream.closed

    def test_try_exclusive_contention(self, handle):
        stream, _ = handle
        with stream.exclusive():
            with pytest.raises(LockError):
                with stream.try_exclusive():
                    pass
        with stream.try_exclusive():
            assert stream.lock.locked()

    def test_shutdown_failure_still_closes(self):
        sock = Mock()
        sock.shutdown.side_effect = OSError("not connected")
        stream = TcpStreamHandle(sock)
        with pytest.raises(ShutdownError):
            stream.shutdown()
        sock.close.assert_called_once()
        assert stream.closed

class TestSslStream:
    def test_nothing_pending(self):
        sock = Mock()
        sock.pending.return_value = 0
        sock.recv.side_effect = ssl.SSLWantReadError()
        stream = SslStreamHandle(sock, read_timeout=5.0)

        assert stream.read_nonblocking() is None
        sock.setblocking.assert_called_once_with(False)
        sock.settimeout.assert_called_with(5.0)

    def test_probe_bytes_are_kept(self):
        sock = Mock()
        sock.pending.return_value = 0
        sock.recv.side_effect = [b"hello\nwor", b"ld\n"]
        stream = SslStreamHandle(sock)

        assert stream.read_nonblocking() == "hello"
        assert stream.read_nonblocking() == "world"

    def test_pending_decrypted_bytes(self):
        sock = Mock()
        sock.pending.return_value = 6
        sock.recv.return_value = b"ready\n"
        stream = SslStreamHandle(sock)

        assert stream.read_nonblocking() == "ready"

    def test_context_without_verification(self):
        context = SslStreamHandle.create_ssl_context(verify_certificate=False)
        assert context.verify_mode == ssl.CERT_NONE
        assert not context.check_hostname

    def test_context_with_verification(self):
        context = SslStreamHandle.create_ssl_context()
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname

    def test_handshake_failure(self):
        # Accepted by the kernel backlog, but nobody answers the ClientHello
        listener = socket.socket()
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        try:
            with pytest.raises(SslHandshakeError):
                SslStreamHandle.connect("127.0.0.1", listener.getsockname()[1],
                                        connect_timeout=0.2, verify_certificate=False)
        finally:
            listener.close()
