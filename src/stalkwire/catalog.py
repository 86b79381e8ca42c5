"""The commands this client can send and the replies each one can receive."""
import enum
import types
from typing import Any, FrozenSet, Mapping, NamedTuple, Optional


class PayloadKind(enum.Enum):
    """What follows the status line of a reply."""

    #: Nothing; the status line is the whole reply.
    NONE = "none"

    #: A job body of a length given on the status line, followed by CRLF.
    BINARY = "binary"

    #: A YAML list of strings.
    LIST = "list"

    #: A YAML mapping of strings to strings.
    MAP = "map"


class Operation(enum.Enum):
    PUT = "put"
    USE = "use"
    RESERVE = "reserve"
    RESERVE_WITH_TIMEOUT = "reserve-with-timeout"
    RESERVE_JOB = "reserve-job"
    DELETE = "delete"
    RELEASE = "release"
    BURY = "bury"
    TOUCH = "touch"
    WATCH = "watch"
    IGNORE = "ignore"
    PEEK = "peek"
    PEEK_READY = "peek-ready"
    PEEK_DELAYED = "peek-delayed"
    PEEK_BURIED = "peek-buried"
    KICK = "kick"
    KICK_JOB = "kick-job"
    STATS_JOB = "stats-job"
    STATS_TUBE = "stats-tube"
    STATS = "stats"
    LIST_TUBES = "list-tubes"
    LIST_TUBE_USED = "list-tube-used"
    LIST_TUBES_WATCHED = "list-tubes-watched"
    PAUSE_TUBE = "pause-tube"


class CatalogEntry(NamedTuple):
    template: bytes
    ok: FrozenSet[bytes]
    errors: FrozenSet[bytes] = frozenset()
    payload: PayloadKind = PayloadKind.NONE

    #: Index of the status line token holding the payload size. Only used for
    #: binary payloads.
    length_index: Optional[int] = None


def _entry(template: bytes, ok: str, errors: str = "",
           payload: PayloadKind = PayloadKind.NONE,
           length_index: Optional[int] = None) -> CatalogEntry:
    return CatalogEntry(
        template,
        frozenset(ok.encode("ascii").split()),
        frozenset(errors.encode("ascii").split()),
        payload,
        length_index,
    )


def _job_entry(template: bytes, ok: str, errors: str) -> CatalogEntry:
    # RESERVED <id> <bytes> / FOUND <id> <bytes>
    return _entry(template, ok, errors, PayloadKind.BINARY, 2)


CATALOG: Mapping[Operation, CatalogEntry] = types.MappingProxyType({
    Operation.PUT:                  _entry(b"put %d %d %d %d", "INSERTED BURIED",
                                           "JOB_TOO_BIG EXPECTED_CRLF DRAINING"),
    Operation.USE:                  _entry(b"use %b", "USING"),
    Operation.RESERVE:              _job_entry(b"reserve", "RESERVED", "DEADLINE_SOON TIMED_OUT"),
    Operation.RESERVE_WITH_TIMEOUT: _job_entry(b"reserve-with-timeout %d", "RESERVED",
                                               "DEADLINE_SOON TIMED_OUT"),
    Operation.RESERVE_JOB:          _job_entry(b"reserve-job %d", "RESERVED", "NOT_FOUND"),
    Operation.DELETE:               _entry(b"delete %d", "DELETED", "NOT_FOUND"),
    Operation.RELEASE:              _entry(b"release %d %d %d", "RELEASED", "NOT_FOUND BURIED"),
    Operation.BURY:                 _entry(b"bury %d %d", "BURIED", "NOT_FOUND"),
    Operation.TOUCH:                _entry(b"touch %d", "TOUCHED", "NOT_FOUND"),
    Operation.WATCH:                _entry(b"watch %b", "WATCHING"),
    Operation.IGNORE:               _entry(b"ignore %b", "WATCHING", "NOT_IGNORED"),
    Operation.PEEK:                 _job_entry(b"peek %d", "FOUND", "NOT_FOUND"),
    Operation.PEEK_READY:           _job_entry(b"peek-ready", "FOUND", "NOT_FOUND"),
    Operation.PEEK_DELAYED:         _job_entry(b"peek-delayed", "FOUND", "NOT_FOUND"),
    Operation.PEEK_BURIED:          _job_entry(b"peek-buried", "FOUND", "NOT_FOUND"),
    Operation.KICK:                 _entry(b"kick %d", "KICKED"),
    Operation.KICK_JOB:             _entry(b"kick-job %d", "KICKED", "NOT_FOUND"),
    Operation.STATS_JOB:            _entry(b"stats-job %d", "OK", "NOT_FOUND", PayloadKind.MAP),
    Operation.STATS_TUBE:           _entry(b"stats-tube %b", "OK", "NOT_FOUND", PayloadKind.MAP),
    Operation.STATS:                _entry(b"stats", "OK", "", PayloadKind.MAP),
    Operation.LIST_TUBES:           _entry(b"list-tubes", "OK", "", PayloadKind.LIST),
    Operation.LIST_TUBE_USED:       _entry(b"list-tube-used", "USING"),
    Operation.LIST_TUBES_WATCHED:   _entry(b"list-tubes-watched", "OK", "", PayloadKind.LIST),
    Operation.PAUSE_TUBE:           _entry(b"pause-tube %b %d", "PAUSED", "NOT_FOUND"),
})


def lookup(operation: Operation) -> CatalogEntry:
    return CATALOG[operation]


def build_command(operation: Operation, *params: Any) -> bytes:
    """Substitutes ``params`` into the command template of ``operation``.

    Strings are encoded as ASCII. A parameter count that does not match the
    template raises ``TypeError``.
    """
    template = CATALOG[operation].template
    args = tuple(p.encode("ascii") if isinstance(p, str) else p for p in params)
    if template.count(b"%") != len(args):
        raise TypeError(
            f"{operation.value} takes {template.count(b'%')} parameters, got {len(args)}"
        )
    if not args:
        return template
    return template % args
