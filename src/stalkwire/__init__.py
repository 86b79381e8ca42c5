"""A client for beanstalkd: the simple, fast work queue."""
from .catalog import CATALOG, CatalogEntry, Operation, PayloadKind, build_command, lookup
from .client import (
    DEFAULT_DELAY, DEFAULT_PRIORITY, DEFAULT_TTR, DEFAULT_TUBE, Client, Job,
    JobOrID
)
from .connection import Connection, Request, Response, classify
from .documents import Stats, decode_list, decode_map
from .exceptions import (
    BadFormatError, BeanstalkdError, ConnectionTimeoutError, Error, InternalError,
    OutOfMemoryError, ProtocolError, UnexpectedEOFError, UnknownCommandError,
    UnknownResponseError
)
from .framing import read_chunk, read_document, read_line
from .transport import DEFAULT_ADDRESS, DEFAULT_TIMEOUT, Address, Transport

__version__ = "0.1.0"
