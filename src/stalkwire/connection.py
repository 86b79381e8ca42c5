import logging
import threading
from typing import Any, Dict, List, NamedTuple, Optional, Union

from .catalog import CatalogEntry, Operation, PayloadKind, build_command, lookup
from .documents import decode_list, decode_map
from .exceptions import ERROR_RESPONSES, ProtocolError, UnknownResponseError
from .framing import CRLF, read_chunk, read_document, read_line
from .transport import DEFAULT_ADDRESS, DEFAULT_TIMEOUT, Address, Transport

Payload = Union[bytes, List[str], Dict[str, str]]

logger = logging.getLogger(__name__)


class Request(NamedTuple):
    command: bytes
    entry: CatalogEntry
    body: Optional[bytes] = None

    def frame(self) -> bytes:
        if self.body is None:
            return self.command + CRLF
        return self.command + CRLF + self.body + CRLF


class Response:
    """A classified reply from the server."""

    def __init__(self, line: bytes, matched_ok: bool, data: Optional[Payload] = None) -> None:
        #: The status line without its CRLF.
        self.line: bytes = line

        tokens = line.split()
        if not tokens:
            raise ProtocolError("Empty response line")
        status, *values = tokens

        #: The status code, ``b'RESERVED'`` for ``b'RESERVED 42 5'``.
        self.status: bytes = status

        #: The tokens after the status code, ``[b'42', b'5']`` for ``b'RESERVED 42 5'``.
        self.values: List[bytes] = values

        #: ``True`` if the status is a success for the command, ``False`` if it
        #: is one of the command's recognized failures.
        self.matched_ok: bool = matched_ok

        #: The job body, list or mapping that followed the status line, if any.
        self.data: Optional[Payload] = data

    @property
    def matched_error(self) -> bool:
        return not self.matched_ok

    @property
    def value(self) -> Optional[bytes]:
        """The first token after the status code: a job ID, a count or a tube."""
        return self.values[0] if self.values else None

    def __repr__(self) -> str:
        return f"stalkwire.Response(line={self.line!r}, matched_ok={self.matched_ok!r})"


def classify(entry: CatalogEntry, status: bytes, values: List[bytes]) -> bool:
    """Returns ``True`` for a success status and ``False`` for a recognized
    failure. Any other status raises a :class:`ProtocolError`.
    """
    if status in entry.ok:
        return True
    if status in entry.errors:
        return False
    if status in ERROR_RESPONSES:
        raise ERROR_RESPONSES[status](status, values)
    raise UnknownResponseError(status, values)


def _payload_size(entry: CatalogEntry, values: List[bytes]) -> int:
    # values excludes the status, the length index counts it
    index = entry.length_index
    if index is None or index < 1 or index > len(values):
        raise ProtocolError("Length missing from response line")
    token = values[index - 1]
    try:
        size = int(token)
    except ValueError:
        raise ProtocolError(f"Could not parse response length {token!r}") from None
    if size < 0:
        raise ProtocolError(f"Could not parse response length {token!r}")
    return size


class Connection:
    """Sends commands to beanstalkd and reads back their replies, one at a time.

    A connection may be shared between threads; requests are serialized by a
    lock. A :class:`ProtocolError` or ``ConnectionError`` closes the connection.

    :param address: A socket address pair (host, port) or a Unix domain socket path.
    :param timeout: The maximum number of seconds to wait for the server.
    :param transport: A transport to use instead of connecting to ``address``.
    """

    def __init__(
        self,
        address: Address = DEFAULT_ADDRESS,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        transport: Optional[Transport] = None,
    ) -> None:
        self._transport = transport if transport is not None else Transport(address, timeout)
        self._lock = threading.Lock()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def transport(self) -> Transport:
        return self._transport

    def close(self) -> None:
        """Closes the connection. The instance should not be used after calling
        this method."""
        self._transport.close()

    def execute(self, operation: Operation, *params: Any, body: Optional[bytes] = None) -> Response:
        """Sends ``operation`` with ``params`` and returns the classified reply.

        ``body`` is only sent with the put command.
        """
        entry = lookup(operation)
        if operation is Operation.PUT and body is None:
            raise TypeError("put requires a body")
        if operation is not Operation.PUT and body is not None:
            raise TypeError(f"{operation.value} does not take a body")
        request = Request(build_command(operation, *params), entry, body)

        with self._lock:
            try:
                return self._process(request)
            except (ProtocolError, OSError) as e:
                logger.warning("Closing connection after %s: %s", type(e).__name__, e)
                self._transport.close()
                raise

    def _process(self, request: Request) -> Response:
        logger.debug("Sending %r", request.command)
        self._transport.write_frame(request.frame())

        line = read_line(self._transport)
        logger.debug("Received %r", line)
        status, *values = line.split() or [b""]
        if not status:
            raise ProtocolError("Empty response line")

        entry = request.entry
        matched_ok = classify(entry, status, values)

        data: Optional[Payload] = None
        kind = entry.payload
        if kind is PayloadKind.LIST:
            data = decode_list(read_document(self._transport))
        elif matched_ok and kind is PayloadKind.MAP:
            data = decode_map(read_document(self._transport))
        elif matched_ok and kind is PayloadKind.BINARY:
            data = read_chunk(self._transport, _payload_size(entry, values))

        return Response(line, matched_ok, data)
