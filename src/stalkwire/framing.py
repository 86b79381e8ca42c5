"""Readers for the two ways a reply is framed.

Job bodies are read by length: the status line says how many bytes follow,
and those bytes are followed by CRLF. Everything else is read one byte at a
time until a CRLF pair. A lone CR is part of the line.
"""
from typing import Iterator

from .exceptions import ProtocolError, UnexpectedEOFError
from .transport import Transport

CRLF = b"\r\n"


def read_line(transport: Transport) -> bytes:
    """Reads up to the next CRLF and returns the line without it."""
    line = bytearray()
    after_cr = False
    while True:
        b = transport.read_byte()
        if not b:
            raise UnexpectedEOFError("Unexpected EOF reading line")

        if after_cr:
            if b == b"\n":
                return bytes(line)
            # lone CR
            line += b"\r"
            after_cr = False

        if b == b"\r":
            after_cr = True
        else:
            line += b


def read_chunk(transport: Transport, size: int) -> bytes:
    """Reads exactly ``size`` bytes followed by CRLF and returns the bytes."""
    if size < 0:
        raise ProtocolError(f"Invalid chunk size {size}")

    data = transport.read_exact(size)
    if len(data) != size:
        raise UnexpectedEOFError(
            f"Unexpected EOF reading chunk: {size} bytes expected, {len(data)} read"
        )

    trailer = transport.read_exact(2)
    if trailer != CRLF:
        raise ProtocolError(f"Expected CRLF after {size} byte chunk, got {trailer!r}")

    return data


def read_document(transport: Transport) -> Iterator[str]:
    """Yields the lines of a YAML document.

    A document of CRLF lines ends at the first blank line. beanstalkd sends
    its documents as bare LF lines closed by a single CRLF, which arrives here
    as one line holding LF bytes; the document ends after it.
    """
    while True:
        line = read_line(transport)
        if not line:
            return

        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Could not decode document line {line!r}") from e
        if "\n" in text:
            yield from text.splitlines()
            return

        yield text

