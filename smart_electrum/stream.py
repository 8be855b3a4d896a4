"""
Socket handles shared by every clone of a client.

A handle owns one connected socket and a lock. Each client operation holds the
lock for exactly one send or one line read, so concurrent callers never
interleave frames, but nothing makes a send and the matching read atomic.

``read_nonblocking`` first checks, without blocking, whether any bytes are
waiting; only then does it run the ordinary blocking line read. Plaintext
sockets peek with MSG_PEEK. TLS sockets have no peek, so the few bytes read
while probing are kept in the handle buffer and served by the next line read.
"""
import socket
import ssl
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from .exceptions import (
    BlockingModeError, LockError, ShutdownError, SslHandshakeError, TransportError
)
from .logging_config import logger

# Only used to detect pending bytes
PEEK_BUFFER_SIZE = 10
READ_CHUNK_SIZE = 4096
ENCODING = "utf-8"
NEWLINE = b"\n"

class StreamHandle:
    """Lock-guarded, reference-counted socket"""

    def __init__(self, sock: socket.socket, read_timeout: Optional[float] = None,
                 write_timeout: Optional[float] = None):
        self._sock = sock
        self._buffer = bytearray()
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.lock = threading.Lock()
        self.closed = False
        self._refs = 1
        self._refs_lock = threading.Lock()

    @staticmethod
    def _open_socket(host: str, port: int, timeout: Optional[float]) -> socket.socket:
        try:
            return socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise TransportError(
                f"Connection to {host}:{port} failed: {str(e)}",
                {"host": host, "port": port}
            )

    # Ownership

    def acquire(self) -> "StreamHandle":
        """Register one more owner of the socket"""
        with self._refs_lock:
            self._refs += 1
        return self

    def release(self) -> None:
        """Drop one owner; the last one closes the socket"""
        with self._refs_lock:
            self._refs -= 1
            last = self._refs <= 0
        if last and not self.closed:
            try:
                self.shutdown()
            except ShutdownError as e:
                logger.debug(f"Shutdown of released stream failed: {e.message}")

    @property
    def refs(self) -> int:
        return self._refs

    @contextmanager
    def exclusive(self) -> Iterator["StreamHandle"]:
        """Hold the stream lock for one operation, waiting for it if needed"""
        with self.lock:
            yield self

    @contextmanager
    def try_exclusive(self) -> Iterator["StreamHandle"]:
        """Hold the stream lock for one operation, failing if another caller has it"""
        if not self.lock.acquire(blocking=False):
            raise LockError()
        try:
            yield self
        finally:
            self.lock.release()

    # Timeouts are stored and applied to the socket before every operation

    def set_read_timeout(self, timeout: Optional[float]) -> None:
        self.read_timeout = timeout

    def set_write_timeout(self, timeout: Optional[float]) -> None:
        self.write_timeout = timeout

    # I/O

    def send(self, payload: Union[str, bytes]) -> None:
        """Write ``payload`` followed by one newline"""
        if isinstance(payload, str):
            payload = payload.encode(ENCODING)
        try:
            self._sock.settimeout(self.write_timeout)
            self._sock.sendall(payload + NEWLINE)
        except socket.timeout:
            raise TransportError("Write timed out", {"timeout": self.write_timeout})
        except OSError as e:
            raise TransportError(f"Write failed: {str(e)}")

    def read_blocking(self) -> str:
        """Read one line, waiting up to the read timeout"""
        while True:
            line = self._read_line()
            if line:
                return line

    def read_nonblocking(self) -> Optional[str]:
        """Read one line if any bytes are already waiting, else return None"""
        while self._buffer or self._peek():
            line = self._read_line()
            if line:
                return line
            # Blank keepalive consumed, look again before reading
        return None

    def _read_line(self) -> str:
        try:
            self._sock.settimeout(self.read_timeout)
            end = self._buffer.find(NEWLINE)
            while end < 0:
                chunk = self._sock.recv(READ_CHUNK_SIZE)
                if not chunk:
                    if not self._buffer:
                        raise TransportError("Connection closed by peer")
                    # Unterminated last line
                    end = len(self._buffer) - 1
                    break
                self._buffer.extend(chunk)
                end = self._buffer.find(NEWLINE)
        except socket.timeout:
            raise TransportError("Read timed out", {"timeout": self.read_timeout})
        except OSError as e:
            raise TransportError(f"Read failed: {str(e)}")

        line = bytes(self._buffer[:end + 1])
        del self._buffer[:end + 1]
        try:
            return line.decode(ENCODING).rstrip("\r\n")
        except UnicodeDecodeError as e:
            raise TransportError(f"Invalid {ENCODING} on the wire: {str(e)}")

    def _peek(self) -> bool:
        try:
            self._sock.setblocking(False)
        except OSError:
            raise BlockingModeError("Cannot set the socket non-blocking")
        try:
            return self._peek_nonblocking()
        finally:
            # settimeout() puts the socket back in blocking mode
            try:
                self._sock.settimeout(self.read_timeout)
            except OSError:
                raise BlockingModeError("Cannot set the socket blocking")

    def _peek_nonblocking(self) -> bool:
        raise NotImplementedError

    def shutdown(self) -> None:
        """Shut down both directions and close the descriptor"""
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            raise ShutdownError(f"Shutdown failed: {str(e)}")
        finally:
            self._sock.close()
            self.closed = True

class TcpStreamHandle(StreamHandle):
    """Plaintext stream"""

    @classmethod
    def connect(cls, host: str, port: int, read_timeout: Optional[float] = None,
                write_timeout: Optional[float] = None,
                connect_timeout: Optional[float] = None) -> "TcpStreamHandle":
        sock = cls._open_socket(host, port, connect_timeout)
        return cls(sock, read_timeout, write_timeout)

    def _peek_nonblocking(self) -> bool:
        try:
            self._sock.recv(PEEK_BUFFER_SIZE, socket.MSG_PEEK)
        except (BlockingIOError, InterruptedError):
            return False
        except OSError as e:
            raise TransportError(f"Peek failed: {str(e)}")
        # An empty peek means the peer closed; the line read reports it
        return True

class SslStreamHandle(StreamHandle):
    """TLS stream"""

    @staticmethod
    def create_ssl_context(verify_certificate: bool = True) -> ssl.SSLContext:
        """Full verification, or none at all for self-signed servers"""
        if verify_certificate:
            return ssl.create_default_context()
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    @classmethod
    def connect(cls, host: str, port: int, read_timeout: Optional[float] = None,
                write_timeout: Optional[float] = None,
                connect_timeout: Optional[float] = None,
                verify_certificate: bool = True) -> "SslStreamHandle":
        context = cls.create_ssl_context(verify_certificate)
        sock = cls._open_socket(host, port, connect_timeout)
        try:
            ssl_sock = context.wrap_socket(sock, server_hostname=host)
        except (ssl.SSLError, OSError) as e:
            sock.close()
            raise SslHandshakeError(
                f"TLS handshake with {host}:{port} failed: {str(e)}",
                {"host": host, "port": port, "verify_certificate": verify_certificate}
            )
        return cls(ssl_sock, read_timeout, write_timeout)

    def _peek_nonblocking(self) -> bool:
        if self._sock.pending():
            return True
        try:
            data = self._sock.recv(PEEK_BUFFER_SIZE)
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError, BlockingIOError, InterruptedError):
            return False
        except OSError as e:
            raise TransportError(f"Peek failed: {str(e)}")
        # Probed bytes are served by the next line read
        self._buffer.extend(data)
        return True
