import copy
from typing import Optional

from .exceptions import AlreadyConnectedError, NotConnectedError
from .logging_config import logger
from .stream import SslStreamHandle, StreamHandle, TcpStreamHandle

DEFAULT_PORT = 50002

class Transport:
    """Configuration of one connection kind plus the stream it owns once connected"""
    kind = "transport"

    def __init__(self, host: str = "", port: int = DEFAULT_PORT,
                 read_timeout: Optional[float] = None,
                 write_timeout: Optional[float] = None,
                 connect_timeout: Optional[float] = None):
        self._host = host
        self._port = port
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.connect_timeout = connect_timeout
        self.stream: Optional[StreamHandle] = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    def set_host(self, host: str) -> None:
        if self.is_connected():
            logger.error(f"Cannot change host of a connected {self.kind} client!")
            return
        self._host = host

    def set_port(self, port: int) -> None:
        if self.is_connected():
            logger.error(f"Cannot change port of a connected {self.kind} client!")
            return
        self._port = port

    def is_connected(self) -> bool:
        return self.stream is not None

    def connect(self) -> None:
        if self.stream is not None:
            raise AlreadyConnectedError()
        self.stream = self._open()
        logger.info(f"Connected to {self._host}:{self._port} over {self.kind}")

    def _open(self) -> StreamHandle:
        raise NotImplementedError

    def set_read_timeout(self, timeout: Optional[float]) -> None:
        if self.stream is not None:
            with self.stream.exclusive():
                self.stream.set_read_timeout(timeout)
        self.read_timeout = timeout

    def set_write_timeout(self, timeout: Optional[float]) -> None:
        if self.stream is not None:
            with self.stream.exclusive():
                self.stream.set_write_timeout(timeout)
        self.write_timeout = timeout

    def close(self) -> None:
        stream = self.stream
        if stream is None:
            raise NotConnectedError()
        # Never wait here: a reader blocked on the lock would keep us stuck
        with stream.try_exclusive():
            self.stream = None
            try:
                stream.shutdown()
            finally:
                stream.release()
        logger.info(f"Closed {self.kind} connection to {self._host}:{self._port}")

    def share(self) -> "Transport":
        """Copy sharing the same stream"""
        shared = copy.copy(self)
        if self.stream is not None:
            self.stream.acquire()
        return shared

    def release(self) -> None:
        """Give up this copy's reference to the stream"""
        stream = self.stream
        self.stream = None
        if stream is not None:
            stream.release()

    def __repr__(self) -> str:
        state = "connected" if self.is_connected() else "disconnected"
        return f"{self.__class__.__name__}({self._host}:{self._port}, {state})"

class TcpTransport(Transport):
    kind = "tcp"

    def _open(self) -> StreamHandle:
        return TcpStreamHandle.connect(
            self._host, self._port,
            read_timeout=self.read_timeout,
            write_timeout=self.write_timeout,
            connect_timeout=self.connect_timeout,
        )

class SslTransport(Transport):
    kind = "ssl"

    def __init__(self, host: str = "", port: int = DEFAULT_PORT,
                 read_timeout: Optional[float] = None,
                 write_timeout: Optional[float] = None,
                 connect_timeout: Optional[float] = None,
                 verify_certificate: bool = True):
        super().__init__(host, port, read_timeout, write_timeout, connect_timeout)
        self._verify_certificate = verify_certificate

    @property
    def verify_certificate(self) -> bool:
        return self._verify_certificate

    def set_verify_certificate(self, verify: bool) -> None:
        if self.is_connected():
            logger.error("Cannot change certificate verification of a connected ssl client!")
            return
        self._verify_certificate = verify

    def _open(self) -> StreamHandle:
        return SslStreamHandle.connect(
            self._host, self._port,
            read_timeout=self.read_timeout,
            write_timeout=self.write_timeout,
            connect_timeout=self.connect_timeout,
            verify_certificate=self._verify_certificate,
        )
