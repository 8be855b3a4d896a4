"""
Electrum connection: unconfigured, plaintext or TLS.

A ``Client`` owns its configuration and, once connected, a stream handle.
``clone()`` returns a client sharing that stream, which is how several threads
talk over one socket. Responses are decoded against a caller-owned index of
pending requests (id -> Request).
"""
import time
from enum import Enum
from typing import Iterable, List, Optional

from .batch import RequestBatch, parse_str_response
from .config import Settings
from .exceptions import (
    AlreadyConnectedError, NotConfiguredError, NotConnectedError, TransportError
)
from .logging_config import logger
from .request import Request
from .response import (
    BatchHeaderNotification, ErrorResponse, PendingIndex, Response,
    ScriptHashNotification
)
from .stream import StreamHandle
from .transport import DEFAULT_PORT, SslTransport, TcpTransport, Transport

class ConnectionKind(str, Enum):
    UNCONFIGURED = "unconfigured"
    PLAINTEXT = "tcp"
    ENCRYPTED = "ssl"

class Client:
    def __init__(self, transport: Optional[Transport] = None):
        self._transport = transport

    # Builders

    @classmethod
    def new_tcp(cls, host: str, port: int = DEFAULT_PORT) -> "Client":
        return cls(TcpTransport(host, port))

    @classmethod
    def new_ssl(cls, host: str, port: int = DEFAULT_PORT) -> "Client":
        return cls(SslTransport(host, port))

    @classmethod
    def new_ssl_maybe(cls, host: str, port: int = DEFAULT_PORT, use_ssl: bool = True) -> "Client":
        if use_ssl:
            return cls.new_ssl(host, port)
        return cls.new_tcp(host, port)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Client":
        """Build an unconnected client from settings"""
        return (
            cls.new_ssl_maybe(settings.host, settings.port, settings.use_ssl)
            .verify_certificate(settings.verify_certificate)
            .read_timeout(settings.read_timeout)
            .write_timeout(settings.write_timeout)
            .connect_timeout(settings.connect_timeout)
        )

    def tcp(self, host: str, port: int = DEFAULT_PORT) -> "Client":
        self._reconfigure(TcpTransport(host, port))
        return self

    def ssl(self, host: str, port: int = DEFAULT_PORT) -> "Client":
        self._reconfigure(SslTransport(host, port))
        return self

    def _reconfigure(self, transport: Transport) -> None:
        if self.is_connected():
            logger.error("Cannot reconfigure a connected client!")
            return
        if self._transport is not None:
            transport.read_timeout = self._transport.read_timeout
            transport.write_timeout = self._transport.write_timeout
            transport.connect_timeout = self._transport.connect_timeout
        self._transport = transport

    def verify_certificate(self, verify: bool) -> "Client":
        """Enable or disable TLS certificate verification; ignored for plaintext"""
        if isinstance(self._transport, SslTransport):
            self._transport.set_verify_certificate(verify)
        return self

    def read_timeout(self, timeout: Optional[float]) -> "Client":
        if self._transport is not None:
            self._transport.set_read_timeout(timeout)
        return self

    def write_timeout(self, timeout: Optional[float]) -> "Client":
        if self._transport is not None:
            self._transport.set_write_timeout(timeout)
        return self

    def connect_timeout(self, timeout: Optional[float]) -> "Client":
        if self._transport is not None:
            self._transport.connect_timeout = timeout
        return self

    def set_read_timeout(self, timeout: Optional[float]) -> None:
        self._configured().set_read_timeout(timeout)

    def set_write_timeout(self, timeout: Optional[float]) -> None:
        self._configured().set_write_timeout(timeout)

    # State

    @property
    def kind(self) -> ConnectionKind:
        if isinstance(self._transport, SslTransport):
            return ConnectionKind.ENCRYPTED
        if isinstance(self._transport, TcpTransport):
            return ConnectionKind.PLAINTEXT
        return ConnectionKind.UNCONFIGURED

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected()

    def _configured(self) -> Transport:
        if self._transport is None:
            raise NotConfiguredError()
        return self._transport

    def _stream(self) -> StreamHandle:
        stream = self._configured().stream
        if stream is None:
            raise NotConnectedError()
        return stream

    # Lifecycle

    def connect(self) -> None:
        self._configured().connect()

    def connect_retry(self, retries: int, delay: float) -> None:
        """Connect, retrying transport failures up to ``retries`` times"""
        attempt = 0
        while True:
            try:
                self.connect()
                return
            except (NotConfiguredError, AlreadyConnectedError):
                raise
            except TransportError as e:
                attempt += 1
                if attempt > retries:
                    logger.error(f"Giving up connecting after {attempt} attempts: {e.message}")
                    raise
                logger.warning(f"Connect failed (attempt {attempt}/{retries + 1}): {e.message}")
                time.sleep(delay)

    def close(self) -> None:
        if self._transport is None:
            raise NotConnectedError()
        self._transport.close()

    def clone(self) -> "Client":
        """Client sharing this client's configuration and live stream"""
        if self._transport is None:
            return Client()
        return Client(self._transport.share())

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.is_connected():
            self.close()

    def __del__(self):
        transport = getattr(self, "_transport", None)
        if transport is not None:
            transport.release()

    def __repr__(self) -> str:
        return f"Client({self.kind.value}, {self._transport!r})"

    # Sending

    def send(self, request: Request) -> None:
        self.send_str(request.to_json())

    def send_batch(self, requests: Iterable[Request]) -> None:
        self.send_str(RequestBatch(requests).to_json())

    def send_str(self, payload: str) -> None:
        stream = self._stream()
        with stream.exclusive():
            stream.send(payload)

    # Receiving

    def recv_str(self) -> str:
        """Block until one line arrives"""
        stream = self._stream()
        with stream.exclusive():
            return stream.read_blocking()

    def try_recv_str(self) -> Optional[str]:
        """Return one line if data is already waiting, else None"""
        stream = self._stream()
        with stream.exclusive():
            return stream.read_nonblocking()

    def recv(self, index: PendingIndex) -> List[Response]:
        return parse_str_response(self.recv_str(), index)

    def try_recv(self, index: PendingIndex) -> Optional[List[Response]]:
        raw = self.try_recv_str()
        if raw is None:
            return None
        return parse_str_response(raw, index)

    def call(self, request: Request, index: Optional[PendingIndex] = None,
             notifications: Optional[List[Response]] = None) -> Response:
        """
        Send ``request`` and read until its response arrives.

        Other messages read meanwhile (pushes, responses to other entries of
        ``index``) go to ``notifications`` when given. Other clones reading the
        same stream may take the response first.
        """
        pending = dict(index or {})
        pending[request.id] = request
        self.send(request)
        result: Optional[Response] = None
        while result is None:
            for response in self.recv(pending):
                if result is None and self._answers(request, response):
                    result = response
                elif notifications is not None:
                    notifications.append(response)
                else:
                    logger.debug(f"Dropping unrelated message while waiting for {request.method}")
        return result

    @staticmethod
    def _answers(request: Request, response: Response) -> bool:
        if isinstance(response, (BatchHeaderNotification, ScriptHashNotification)):
            return False
        if isinstance(response, ErrorResponse):
            # Servers use a null id when the request itself was unreadable
            return response.id is None or response.id == request.id
        return response.id == request.id
