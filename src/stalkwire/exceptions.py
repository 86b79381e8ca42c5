from typing import Dict, List, Type


class Error(Exception):
    """Base class for non-connection related exceptions. Connection related
    issues use the built-in ``ConnectionError``.
    """


class ConnectionTimeoutError(ConnectionError):
    """A read or write did not complete within the transport's timeout. The
    connection is no longer usable.
    """


class ProtocolError(Error):
    """The byte stream no longer lines up with the protocol framing. The
    connection is closed when this is raised.
    """


class UnexpectedEOFError(ProtocolError):
    """The server closed the connection in the middle of a reply."""


class UnknownResponseError(ProtocolError):
    """The server sent a status that is neither a success nor a recognized
    failure for the command that was sent.
    """

    def __init__(self, status: bytes, values: List[bytes]) -> None:
        super().__init__(status.decode("ascii", "replace"))

        #: The status code of the response.
        #: Contains ``b'SOME_ERROR'`` for the response ``b'SOME_ERROR 1 2 3\r\n'``.
        self.status: bytes = status

        #: The remaining split values after the status code.
        #: Contains ``[b'1', b'2', b'3']`` for the response ``b'SOME_ERROR 1 2 3\r\n'``.
        self.values: List[bytes] = values


class BeanstalkdError(UnknownResponseError):
    """Base class for the generic error replies any command can receive."""


class BadFormatError(BeanstalkdError):
    """The client sent a malformed command."""


class InternalError(BeanstalkdError):
    """The server detected an internal error."""


class OutOfMemoryError(BeanstalkdError):
    """The server could not allocate enough memory for a job."""


class UnknownCommandError(BeanstalkdError):
    """The client sent a command that the server does not understand."""


ERROR_RESPONSES: Dict[bytes, Type[BeanstalkdError]] = {
    b"BAD_FORMAT":      BadFormatError,
    b"INTERNAL_ERROR":  InternalError,
    b"OUT_OF_MEMORY":   OutOfMemoryError,
    b"UNKNOWN_COMMAND": UnknownCommandError,
}
