import logging
import socket
from typing import Any, Optional, Tuple, Union

from .exceptions import ConnectionTimeoutError

Address = Union[Tuple[str, int], str]

DEFAULT_ADDRESS: Address = ("127.0.0.1", 11300)
DEFAULT_TIMEOUT = 30.0

logger = logging.getLogger(__name__)


class Transport:
    """Owns a single connection to beanstalkd. The connection is opened when the
    transport is created.

    Reads and writes block for at most ``timeout`` seconds. Once a read or write
    fails the transport is unusable and has to be replaced.

    :param address: A socket address pair (host, port) or a Unix domain socket path.
    :param timeout: The maximum number of seconds to block on a read or write,
                    or ``None`` to block forever.
    :param sock: An already connected socket to use instead of connecting to
                 ``address``.
    """

    def __init__(
        self,
        address: Address = DEFAULT_ADDRESS,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        sock: Optional[socket.socket] = None,
    ) -> None:
        if sock is None:
            if isinstance(address, str):
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                try:
                    sock.connect(address)
                except OSError:
                    sock.close()
                    raise
            else:
                sock = socket.create_connection(address, timeout)

        sock.settimeout(timeout)
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._address = address
        self._failed = False
        self.closed = False
        logger.debug("Connected to %r", address)

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def usable(self) -> bool:
        return not (self.closed or self._failed)

    def write_frame(self, data: bytes) -> None:
        """Writes all of ``data`` to the connection."""
        self._check_usable()
        try:
            self._sock.sendall(data)
        except socket.timeout as e:
            self._failed = True
            raise ConnectionTimeoutError("Timed out writing to beanstalkd") from e
        except OSError:
            self._failed = True
            raise

    def read_byte(self) -> bytes:
        """Reads a single byte. Returns ``b''`` at the end of the stream."""
        return self.read_exact(1)

    def read_exact(self, size: int) -> bytes:
        """Reads ``size`` bytes, blocking until they arrive. Fewer bytes are only
        returned when the server closed the connection.
        """
        self._check_usable()
        try:
            data = self._reader.read(size)
        except socket.timeout as e:
            self._failed = True
            raise ConnectionTimeoutError("Timed out reading from beanstalkd") from e
        except OSError:
            self._failed = True
            raise
        if len(data) < size:
            self._failed = True
        return data

    def close(self) -> None:
        """Closes the connection. Safe to call more than once and after a
        failure."""
        if self.closed:
            return
        self.closed = True
        for resource in (self._reader, self._sock):
            try:
                resource.close()
            except OSError:
                logger.debug("Ignoring error closing %r", resource, exc_info=True)
        logger.debug("Closed connection to %r", self._address)

    def _check_usable(self) -> None:
        if self.closed:
            raise ConnectionError("Connection is closed")
        if self._failed:
            raise ConnectionError("Connection failed and must be replaced")

    def __repr__(self) -> str:
        if isinstance(self._address, str):
            return f"stalkwire.Transport(socket={self._address!r})"

        host, port = self._address
        return f"stalkwire.Transport(host={host!r}, port={port!r})"
