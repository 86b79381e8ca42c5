import os
import shutil
import socket
import subprocess
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Tuple, Union

import pytest

from stalkwire import (
    CATALOG,
    DEFAULT_PRIORITY,
    DEFAULT_TTR,
    DEFAULT_TUBE,
    Address,
    BadFormatError,
    Client,
    Connection,
    ConnectionTimeoutError,
    Job,
    Operation,
    PayloadKind,
    ProtocolError,
    Response,
    Transport,
    UnexpectedEOFError,
    UnknownResponseError,
    build_command,
    classify,
    decode_list,
    decode_map,
    lookup,
    read_chunk,
    read_document,
    read_line,
)

BEANSTALKD_PATH = os.getenv("BEANSTALKD_PATH", "beanstalkd")
DEFAULT_INET_ADDRESS = ("127.0.0.1", 4444)
DEFAULT_UNIX_ADDRESS = "/tmp/stalkwire-test.sock"

TestFunc = Callable[[Client], None]
WrapperFunc = Callable[[], None]
DecoratorFunc = Callable[[TestFunc], WrapperFunc]

requires_beanstalkd = pytest.mark.skipif(
    shutil.which(BEANSTALKD_PATH) is None, reason="beanstalkd is not installed"
)


def with_beanstalkd(
    address: Address = DEFAULT_INET_ADDRESS,
    use: str = DEFAULT_TUBE,
    watch: Union[str, Iterable[str]] = DEFAULT_TUBE,
) -> DecoratorFunc:
    def decorator(test: TestFunc) -> WrapperFunc:
        @requires_beanstalkd
        def wrapper() -> None:
            cmd = [BEANSTALKD_PATH]
            if isinstance(address, str):
                cmd.extend(["-l", "unix:" + address])
            else:
                host, port = address
                cmd.extend(["-l", host, "-p", str(port)])
            with subprocess.Popen(cmd) as beanstalkd:
                time.sleep(0.1)
                try:
                    with Client(address, use=use, watch=watch) as c:
                        test(c)
                finally:
                    beanstalkd.terminate()

        wrapper.__name__ = test.__name__
        return wrapper

    return decorator


@contextmanager
def scripted_transport(reply: bytes, timeout: float = 1.0) -> Iterator[Tuple[Transport, socket.socket]]:
    server, sock = socket.socketpair()
    with server:
        server.sendall(reply)
        with Transport("scripted", timeout, sock=sock) as transport:
            yield transport, server


@contextmanager
def scripted_client(reply: bytes) -> Iterator[Tuple[Client, socket.socket]]:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        with Client(listener.getsockname(), timeout=1) as c:
            peer, _ = listener.accept()
            with peer:
                peer.sendall(reply)
                yield c, peer


def received(peer: socket.socket, size: int) -> bytes:
    peer.settimeout(1)
    with peer.makefile("rb") as f:
        return f.read(size)


# Frame reader


def test_read_line_keeps_lone_cr() -> None:
    with scripted_transport(b"A\rB\r\n") as (t, _):
        assert read_line(t) == b"A\rB"


def test_read_line_cr_before_crlf() -> None:
    with scripted_transport(b"A\r\r\nB\r\n") as (t, _):
        assert read_line(t) == b"A\r"
        assert read_line(t) == b"B"


def test_read_line_keeps_lone_lf() -> None:
    with scripted_transport(b"A\nB\r\n") as (t, _):
        assert read_line(t) == b"A\nB"


def test_read_line_unexpected_eof() -> None:
    with scripted_transport(b"USING a") as (t, server):
        server.shutdown(socket.SHUT_WR)
        with pytest.raises(UnexpectedEOFError):
            read_line(t)


def test_read_chunk() -> None:
    with scripted_transport(b"HEL\r\nLO\r\nNEXT\r\n") as (t, _):
        assert read_chunk(t, 7) == b"HEL\r\nLO"
        assert read_line(t) == b"NEXT"


def test_read_empty_chunk() -> None:
    with scripted_transport(b"\r\n") as (t, _):
        assert read_chunk(t, 0) == b""


def test_read_chunk_missing_crlf() -> None:
    with scripted_transport(b"HELLOXX") as (t, _):
        with pytest.raises(ProtocolError) as e:
            read_chunk(t, 5)
    assert not isinstance(e.value, UnexpectedEOFError)


def test_read_chunk_unexpected_eof() -> None:
    with scripted_transport(b"ABC") as (t, server):
        server.shutdown(socket.SHUT_WR)
        with pytest.raises(UnexpectedEOFError) as e:
            read_chunk(t, 4)
    assert e.value.args[0] == "Unexpected EOF reading chunk: 4 bytes expected, 3 read"


def test_read_document_crlf_lines() -> None:
    with scripted_transport(b"---\r\n- default\r\n\r\nUSING x\r\n") as (t, _):
        assert list(read_document(t)) == ["---", "- default"]
        assert read_line(t) == b"USING x"


def test_read_document_lf_lines() -> None:
    with scripted_transport(b"---\n- default\n- sim-tube\n\r\nUSING x\r\n") as (t, _):
        assert list(read_document(t)) == ["---", "- default", "- sim-tube"]
        assert read_line(t) == b"USING x"


# Transport


def test_transport_read_timeout() -> None:
    with scripted_transport(b"", timeout=0.05) as (t, _):
        with pytest.raises(ConnectionTimeoutError):
            t.read_byte()
        assert not t.usable
        with pytest.raises(ConnectionError):
            t.read_byte()


def test_transport_write_timeout() -> None:
    with scripted_transport(b"", timeout=0.05) as (t, _):
        with pytest.raises(ConnectionTimeoutError) as e:
            t.write_frame(b"x" * (1 << 24))
        assert e.value.args[0] == "Timed out writing to beanstalkd"
        assert not t.usable


def test_transport_close_is_idempotent() -> None:
    with scripted_transport(b"") as (t, _):
        t.close()
        t.close()
        assert t.closed
        with pytest.raises(ConnectionError):
            t.write_frame(b"stats\r\n")


def test_transport_connection_refused() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        address = s.getsockname()
    with pytest.raises(ConnectionError):
        Transport(address)


def test_transport_repr() -> None:
    with scripted_transport(b"") as (t, _):
        assert repr(t) == "stalkwire.Transport(socket='scripted')"


# Structured documents


def test_decode_list() -> None:
    lines = "---\r\n- default\r\n- sim-tube\r\n".split("\r\n")[:-1]
    assert decode_list(lines) == ["default", "sim-tube"]


def test_decode_map() -> None:
    stats = decode_map(["name: sim-tube", "current-jobs-ready: 3"])
    assert stats == {"name": "sim-tube", "current-jobs-ready": "3"}
    assert list(stats) == ["name", "current-jobs-ready"]


def test_decode_map_skips_malformed_lines() -> None:
    assert decode_map(["---", "oops", "a: b: c", "d:e"]) == {"a": "b: c"}


def test_decode_list_skips_malformed_lines() -> None:
    assert decode_list(["---", "- a", "oops", "-b", "- c"]) == ["a", "c"]


def test_decode_documents_from_stream() -> None:
    with scripted_transport(b"---\r\n- default\r\n- sim-tube\r\n\r\n") as (t, _):
        assert decode_list(read_document(t)) == ["default", "sim-tube"]
    with scripted_transport(b"name: sim-tube\r\ncurrent-jobs-ready: 3\r\n\r\n") as (t, _):
        assert decode_map(read_document(t)) == {"name": "sim-tube", "current-jobs-ready": "3"}


# Command catalog


def test_catalog_covers_every_operation() -> None:
    assert set(CATALOG) == set(Operation)
    for entry in CATALOG.values():
        assert entry.ok
        assert not entry.ok & entry.errors
        assert (entry.length_index is not None) == (entry.payload is PayloadKind.BINARY)


def test_catalog_is_read_only() -> None:
    with pytest.raises(TypeError):
        CATALOG[Operation.PUT] = CATALOG[Operation.USE]  # type: ignore


def test_build_command() -> None:
    assert build_command(Operation.PUT, 1, 2, 3, 4) == b"put 1 2 3 4"
    assert build_command(Operation.PAUSE_TUBE, "emails", 10) == b"pause-tube emails 10"
    assert build_command(Operation.STATS) == b"stats"


def test_build_command_wrong_parameters() -> None:
    with pytest.raises(TypeError):
        build_command(Operation.DELETE)
    with pytest.raises(TypeError):
        build_command(Operation.STATS, 1)


# Status classifier


@pytest.mark.parametrize("operation", list(Operation))
def test_classify(operation: Operation) -> None:
    entry = lookup(operation)
    for status in entry.ok:
        assert classify(entry, status, []) is True
    for status in entry.errors:
        assert classify(entry, status, []) is False
    with pytest.raises(UnknownResponseError) as e:
        classify(entry, b"NOPE", [b"1"])
    assert e.value.status == b"NOPE"
    assert e.value.values == [b"1"]


def test_classify_generic_server_error() -> None:
    with pytest.raises(BadFormatError) as e:
        classify(lookup(Operation.DELETE), b"BAD_FORMAT", [])
    assert isinstance(e.value, ProtocolError)
    assert str(e.value) == "BAD_FORMAT"


def test_response_rejects_empty_line() -> None:
    with pytest.raises(ProtocolError):
        Response(b"", True)
    with pytest.raises(ProtocolError):
        Response(b"  ", True)


def test_response_is_exactly_one_outcome() -> None:
    response = Response(b"NOT_FOUND", False)
    assert response.matched_error
    assert not response.matched_ok
    assert response.value is None


# Request executor


def test_execute_sends_frame_with_body() -> None:
    with scripted_transport(b"INSERTED 7\r\n") as (t, server):
        response = Connection(transport=t).execute(Operation.PUT, 1, 0, 60, 5, body=b"hello")
        expected = b"put 1 0 60 5\r\nhello\r\n"
        assert received(server, len(expected)) == expected
    assert response.matched_ok
    assert response.value == b"7"
    assert response.data is None


def test_execute_reserve() -> None:
    with scripted_transport(b"RESERVED 42 5\r\nHELLO\r\n") as (t, _):
        response = Connection(transport=t).execute(Operation.RESERVE)
    assert response.status == b"RESERVED"
    assert response.values == [b"42", b"5"]
    assert response.data == b"HELLO"


def test_execute_missing_length() -> None:
    with scripted_transport(b"RESERVED 42\r\n") as (t, _):
        conn = Connection(transport=t)
        with pytest.raises(ProtocolError):
            conn.execute(Operation.RESERVE)
        assert t.closed


def test_execute_non_numeric_length() -> None:
    with scripted_transport(b"FOUND 42 abc\r\n") as (t, _):
        with pytest.raises(ProtocolError) as e:
            Connection(transport=t).execute(Operation.PEEK, 42)
    assert e.value.args[0] == "Could not parse response length b'abc'"


def test_execute_error_skips_binary_payload() -> None:
    with scripted_transport(b"TIMED_OUT\r\nDELETED\r\n") as (t, _):
        conn = Connection(transport=t)
        assert conn.execute(Operation.RESERVE_WITH_TIMEOUT, 0).matched_error
        assert conn.execute(Operation.DELETE, 1).matched_ok


def test_execute_error_skips_map_payload() -> None:
    with scripted_transport(b"NOT_FOUND\r\n") as (t, _):
        response = Connection(transport=t).execute(Operation.STATS_JOB, 3)
    assert response.matched_error
    assert response.data is None


def test_execute_stats() -> None:
    reply = b"OK 40\r\n---\nname: default\ncurrent-jobs-ready: 3\n\r\n"
    with scripted_transport(reply) as (t, _):
        response = Connection(transport=t).execute(Operation.STATS_TUBE, "default")
    assert response.data == {"name": "default", "current-jobs-ready": "3"}


def test_execute_list() -> None:
    with scripted_transport(b"OK 26\r\n---\r\n- default\r\n- sim-tube\r\n\r\n") as (t, _):
        response = Connection(transport=t).execute(Operation.LIST_TUBES)
    assert response.data == ["default", "sim-tube"]


@pytest.mark.parametrize(
    "operation,reply",
    [
        (Operation.LIST_TUBES, b"OK 5\r\n---\r\n- \xff\r\n\r\n"),
        (Operation.LIST_TUBES, b"OK\r\n---\r\n- \xff\xfe\r\n- b\r\n\r\nDELETED\r\n"),
        (Operation.STATS, b"OK 9\r\nname: \xff\r\n\r\n"),
    ],
)
def test_execute_undecodable_document_closes_connection(operation: Operation, reply: bytes) -> None:
    with scripted_transport(reply) as (t, _):
        conn = Connection(transport=t)
        with pytest.raises(ProtocolError):
            conn.execute(operation)
        assert t.closed
        with pytest.raises(ConnectionError):
            conn.execute(Operation.DELETE, 1)


def test_execute_unknown_status_closes_connection() -> None:
    with scripted_transport(b"WHAT 1 2\r\n") as (t, _):
        conn = Connection(transport=t)
        with pytest.raises(UnknownResponseError):
            conn.execute(Operation.DELETE, 1)
        with pytest.raises(ConnectionError):
            conn.execute(Operation.DELETE, 1)


def test_execute_empty_status() -> None:
    with scripted_transport(b"\r\n") as (t, _):
        with pytest.raises(ProtocolError):
            Connection(transport=t).execute(Operation.STATS)


def test_execute_body_only_with_put() -> None:
    with scripted_transport(b"") as (t, server):
        conn = Connection(transport=t)
        with pytest.raises(TypeError):
            conn.execute(Operation.DELETE, 1, body=b"x")
        with pytest.raises(TypeError):
            conn.execute(Operation.PUT, 1, 0, 60, 1)
        server.setblocking(False)
        with pytest.raises(BlockingIOError):
            server.recv(1)
        assert t.usable


# Client


def test_reserve() -> None:
    with scripted_client(b"RESERVED 42 5\r\nHELLO\r\n") as (c, peer):
        job = c.reserve()
        assert received(peer, 9) == b"reserve\r\n"
    assert job == Job(42, b"HELLO")


def test_reserve_is_deterministic() -> None:
    jobs = []
    for _ in range(2):
        with scripted_client(b"RESERVED 42 5\r\nHELLO\r\n") as (c, _):
            jobs.append(c.reserve())
    assert jobs[0] == jobs[1] == Job(42, b"HELLO")


def test_reserve_timed_out() -> None:
    with scripted_client(b"TIMED_OUT\r\n") as (c, peer):
        assert c.reserve(timeout=0) is None
        assert received(peer, 24) == b"reserve-with-timeout 0\r\n"


def test_delete_not_found_keeps_connection() -> None:
    with scripted_client(b"NOT_FOUND\r\nDELETED\r\n") as (c, _):
        assert c.delete(87) is False
        assert c.delete(Job(88)) is True


def test_put() -> None:
    with scripted_client(b"INSERTED 3\r\nJOB_TOO_BIG\r\n") as (c, peer):
        assert c.put(b"hello", priority=5) == 3
        assert c.put(b"x" * 10) is None
        expected = b"put 5 0 60 5\r\nhello\r\n"
        assert received(peer, len(expected)) == expected


def test_put_buried() -> None:
    with scripted_client(b"BURIED 9\r\n") as (c, _):
        assert c.put(b"") == 9


def test_put_checks_arguments() -> None:
    with scripted_client(b"") as (c, peer):
        with pytest.raises(TypeError):
            c.put("a str job")  # type: ignore
        with pytest.raises(ValueError):
            c.put(b"", priority=2 ** 32)
        with pytest.raises(ValueError):
            c.put(b"", delay=-1)
        with pytest.raises(ValueError):
            c.use("")
        with pytest.raises(ValueError):
            c.watch("测试")
        peer.setblocking(False)
        with pytest.raises(BlockingIOError):
            peer.recv(1)


@pytest.mark.parametrize("tube", ["a b", "a\r\nstats", "-a", "tube\n", "x" * 201])
def test_invalid_tube_name(tube: str) -> None:
    with scripted_client(b"") as (c, peer):
        for method in (c.use, c.watch, c.ignore, c.stats_tube):
            with pytest.raises(ValueError):
                method(tube)
        with pytest.raises(ValueError):
            c.pause_tube(tube, 1)
        peer.setblocking(False)
        with pytest.raises(BlockingIOError):
            peer.recv(1)


def test_valid_tube_name() -> None:
    name = "a-b+c/d;e.f$g_h(i)"
    with scripted_client(b"USING " + name.encode("ascii") + b"\r\n") as (c, peer):
        assert c.use(name) == name
        expected = b"use " + name.encode("ascii") + b"\r\n"
        assert received(peer, len(expected)) == expected


def test_peek_not_found() -> None:
    with scripted_client(b"NOT_FOUND\r\n") as (c, _):
        assert c.peek(111) is None


def test_ignore_not_ignored() -> None:
    with scripted_client(b"NOT_IGNORED\r\n") as (c, _):
        assert c.ignore("default") is None


def test_stats_job_not_found() -> None:
    with scripted_client(b"NOT_FOUND\r\n") as (c, _):
        assert c.stats_job(5) is None


def test_server_version() -> None:
    reply = b'OK 25\r\n---\npid: 1\nversion: "1.13"\n\r\n'
    with scripted_client(reply) as (c, _):
        assert c.server_version() == "1.13"


def test_using() -> None:
    with scripted_client(b"USING emails\r\n") as (c, _):
        assert c.using() == "emails"


def test_kick_missing_count() -> None:
    with scripted_client(b"KICKED\r\n") as (c, _):
        with pytest.raises(ProtocolError):
            c.kick(10)


def test_client_repr() -> None:
    with scripted_client(b"") as (c, _):
        host, port = c._address  # type: ignore
        assert repr(c) == f"stalkwire.Client(host='{host}', port={port})"


def test_job_repr() -> None:
    job = Job(id=456, body=b'{"user_id": 123}')
    assert repr(job) == """stalkwire.Job(id=456, body=b'{"user_id": 123}')"""


# beanstalkd


@with_beanstalkd(DEFAULT_UNIX_ADDRESS)
def test_basic_usage(c: Client) -> None:
    c.use("emails")
    id = c.put("测试@example.com".encode("utf-8"))
    c.watch("emails")
    c.ignore("default")
    job = c.reserve()
    assert job is not None
    assert id == job.id
    assert job.body == "测试@example.com".encode("utf-8")
    assert c.delete(job)


@with_beanstalkd()
def test_reserve_returns_none_on_timeout(c: Client) -> None:
    assert c.reserve(timeout=0) is None


@with_beanstalkd()
def test_binary_jobs(c: Client) -> None:
    data = os.urandom(4096)
    c.put(data)
    job = c.reserve()
    assert job is not None
    assert job.body == data


@with_beanstalkd()
def test_peek_and_kick(c: Client) -> None:
    id = c.put(b"buried")
    job = c.reserve()
    assert job is not None
    assert c.bury(job)
    peeked = c.peek_buried()
    assert peeked == Job(id, b"buried")
    assert c.peek_ready() is None
    assert c.kick(10) == 1
    assert c.peek(111) is None


@with_beanstalkd()
def test_stats_job(c: Client) -> None:
    stats = c.stats_job(c.put(b"job"))  # type: ignore
    assert stats is not None
    assert stats["id"] == "1"
    assert stats["tube"] == "default"
    assert stats["state"] == "ready"
    assert stats["pri"] == str(DEFAULT_PRIORITY)
    assert stats["ttr"] == str(DEFAULT_TTR)


@with_beanstalkd(use="foo")
def test_stats_tube(c: Client) -> None:
    stats = c.stats_tube("default")
    assert stats is not None
    assert stats["name"] == "default"
    assert stats["current-watching"] == "1"
    assert c.stats_tube("missing") is None


@with_beanstalkd()
def test_tubes(c: Client) -> None:
    assert c.tubes() == ["default"]
    c.use("a")
    assert set(c.tubes()) == {"default", "a"}
    assert c.using() == "a"
    c.watch("b")
    assert set(c.watching()) == {"default", "b"}


@with_beanstalkd()
def test_not_ignored(c: Client) -> None:
    assert c.ignore("default") is None
    assert c.stats()["current-connections"] == "1"


@with_beanstalkd()
def test_max_job_size(c: Client) -> None:
    assert c.put(bytes(2 ** 16)) is None
    assert c.server_version()
