import re
from typing import Any, Iterable, List, Optional, Union, cast

from .catalog import Operation
from .connection import Connection, Response
from .documents import Stats
from .exceptions import ProtocolError
from .transport import DEFAULT_ADDRESS, DEFAULT_TIMEOUT, Address

DEFAULT_TUBE = "default"
DEFAULT_PRIORITY = 2 ** 16
DEFAULT_DELAY = 0
DEFAULT_TTR = 60

MAX_PRIORITY = 2 ** 32 - 1
MAX_TUBE_NAME_LENGTH = 200

# letters, digits and -+/;.$_() with no leading hyphen
TUBE_NAME = re.compile(r"[A-Za-z0-9+/;.$_()][A-Za-z0-9\-+/;.$_()]*")


class Job:
    """A job returned from the server."""

    def __init__(self, id: int, body: Optional[bytes] = None) -> None:
        #: A server-generated unique identifier assigned to the job on creation.
        self.id: int = id

        #: The content of the job. Also referred to as the message or payload.
        #: Producers and consumers need to agree on how these bytes are interpreted.
        self.body: Optional[bytes] = body

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Job):
            return NotImplemented
        return (self.id, self.body) == (other.id, other.body)

    def __repr__(self) -> str:
        return f"stalkwire.Job(id={self.id!r}, body={self.body!r})"


JobOrID = Union[Job, int]


class Client:
    """A client implementing the beanstalk protocol. Upon creation a connection
    with beanstalkd is established and tubes are initialized.

    Replies the server uses to refuse a command, such as ``NOT_FOUND`` or
    ``TIMED_OUT``, are returned as ``None`` or ``False``. Exceptions are only
    raised when the connection fails or the server's reply cannot be
    understood, after which the client cannot be used anymore.

    :param address: A socket address pair (host, port) or a Unix domain socket path.
    :param use: The tube to use after connecting.
    :param watch: The tubes to watch after connecting. The ``default`` tube will
                  be ignored if it's not included.
    :param timeout: The maximum number of seconds to wait for the server to
                    reply. Must be larger than any reserve timeout.
    """

    def __init__(
        self,
        address: Address = DEFAULT_ADDRESS,
        use: str = DEFAULT_TUBE,
        watch: Union[str, Iterable[str]] = DEFAULT_TUBE,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ) -> None:
        self._conn = Connection(address, timeout)
        self._address = address

        try:
            self._init_tubes(use, watch)
        except BaseException:
            self.close()
            raise

    def _init_tubes(self, use: str, watch: Union[str, Iterable[str]]) -> None:
        if use != DEFAULT_TUBE:
            self.use(use)

        if isinstance(watch, str):
            if watch != DEFAULT_TUBE:
                self.watch(watch)
                self.ignore(DEFAULT_TUBE)
        else:
            watch = list(watch)
            for tube in watch:
                self.watch(tube)
            if DEFAULT_TUBE not in watch:
                self.ignore(DEFAULT_TUBE)

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Closes the connection to beanstalkd. The client instance should not
        be used after calling this method."""
        self._conn.close()

    def execute(self, operation: Operation, *params: Any, body: Optional[bytes] = None) -> Response:
        """Sends a command and returns the server's classified reply."""
        return self._conn.execute(operation, *params, body=body)

    def _int_value(self, response: Response) -> int:
        try:
            return int(response.values[0])
        except (IndexError, ValueError):
            self.close()
            raise ProtocolError(f"Expected a number in {response.line!r}") from None

    def _str_value(self, response: Response) -> str:
        try:
            return response.values[0].decode("ascii")
        except (IndexError, UnicodeDecodeError):
            self.close()
            raise ProtocolError(f"Expected a tube name in {response.line!r}") from None

    def _int_cmd(self, operation: Operation, *params: Any) -> Optional[int]:
        response = self.execute(operation, *params)
        if response.matched_error:
            return None
        return self._int_value(response)

    def _bool_cmd(self, operation: Operation, *params: Any) -> bool:
        return self.execute(operation, *params).matched_ok

    def _job_cmd(self, operation: Operation, *params: Any) -> Optional[Job]:
        response = self.execute(operation, *params)
        if response.matched_error:
            return None
        return Job(self._int_value(response), cast(bytes, response.data))

    def _stats_cmd(self, operation: Operation, *params: Any) -> Optional[Stats]:
        response = self.execute(operation, *params)
        if response.matched_error:
            return None
        return cast(Stats, response.data)

    def _list_cmd(self, operation: Operation) -> List[str]:
        return cast(List[str], self.execute(operation).data)

    def put(
        self,
        body: bytes,
        priority: int = DEFAULT_PRIORITY,
        delay: int = DEFAULT_DELAY,
        ttr: int = DEFAULT_TTR,
    ) -> Optional[int]:
        """Inserts a job into the currently used tube and returns the job ID.

        ``None`` is returned if the server refused the job because it is larger
        than ``max-job-size`` or the server is draining.

        :param body: The data representing the job.
        :param priority: An integer between 0 and 4,294,967,295 where 0 is the
                         most urgent.
        :param delay: The number of seconds to delay the job for.
        :param ttr: The maximum number of seconds the job can be reserved for
                    before timing out.
        """
        if not isinstance(body, bytes):
            raise TypeError("Job body must be bytes")
        _check_priority(priority)
        _check_seconds(delay, "delay")
        _check_seconds(ttr, "ttr")
        response = self.execute(Operation.PUT, priority, delay, ttr, len(body), body=body)
        if response.matched_error:
            return None
        return self._int_value(response)

    def use(self, tube: str) -> str:
        """Changes the currently used tube and returns its name.

        :param tube: The tube to use.
        """
        _check_tube(tube)
        response = self.execute(Operation.USE, tube)
        return self._str_value(response)

    def reserve(self, timeout: Optional[int] = None) -> Optional[Job]:
        """Reserves a job from a tube on the watch list, giving this client
        exclusive access to it for the TTR. Returns the reserved job.

        This blocks until a job is reserved unless a ``timeout`` is given.
        ``None`` is returned if a job cannot be reserved within that time, or if
        a job reserved by this client is about to time out.

        :param timeout: The maximum number of seconds to wait.
        """
        if timeout is None:
            return self._job_cmd(Operation.RESERVE)
        _check_seconds(timeout, "timeout")
        return self._job_cmd(Operation.RESERVE_WITH_TIMEOUT, timeout)

    def reserve_job(self, id: int) -> Optional[Job]:
        """Reserves a job by ID, giving this client exclusive access to it for
        the TTR. Returns the reserved job, or ``None`` if it could not be
        reserved.

        :param id: The ID of the job to reserve.
        """
        return self._job_cmd(Operation.RESERVE_JOB, _check_id(id))

    def delete(self, job: JobOrID) -> bool:
        """Deletes a job. Returns ``False`` if the job does not exist or is
        reserved by another client.

        :param job: The job or job ID to delete.
        """
        return self._bool_cmd(Operation.DELETE, _to_id(job))

    def release(
        self,
        job: JobOrID,
        priority: int = DEFAULT_PRIORITY,
        delay: int = DEFAULT_DELAY,
    ) -> bool:
        """Releases a reserved job. Returns ``False`` if the job is not reserved
        by this client or the server had to bury it.

        :param job: The job or job ID to release.
        :param priority: An integer between 0 and 4,294,967,295 where 0 is the
                         most urgent.
        :param delay: The number of seconds to delay the job for.
        """
        _check_priority(priority)
        _check_seconds(delay, "delay")
        return self._bool_cmd(Operation.RELEASE, _to_id(job), priority, delay)

    def bury(self, job: JobOrID, priority: int = DEFAULT_PRIORITY) -> bool:
        """Buries a reserved job.

        :param job: The job or job ID to bury.
        :param priority: An integer between 0 and 4,294,967,295 where 0 is the
                         most urgent.
        """
        _check_priority(priority)
        return self._bool_cmd(Operation.BURY, _to_id(job), priority)

    def touch(self, job: JobOrID) -> bool:
        """Refreshes the TTR of a reserved job.

        :param job: The job or job ID to touch.
        """
        return self._bool_cmd(Operation.TOUCH, _to_id(job))

    def watch(self, tube: str) -> int:
        """Adds a tube to the watch list. Returns the number of tubes this
        client is watching.

        :param tube: The tube to watch.
        """
        _check_tube(tube)
        return cast(int, self._int_cmd(Operation.WATCH, tube))

    def ignore(self, tube: str) -> Optional[int]:
        """Removes a tube from the watch list. Returns the number of tubes this
        client is watching, or ``None`` if ``tube`` is the only tube on the
        watch list.

        :param tube: The tube to ignore.
        """
        _check_tube(tube)
        return self._int_cmd(Operation.IGNORE, tube)

    def peek(self, id: int) -> Optional[Job]:
        """Returns a job by ID.

        :param id: The ID of the job to peek.
        """
        return self._job_cmd(Operation.PEEK, _check_id(id))

    def peek_ready(self) -> Optional[Job]:
        """Returns the next ready job in the currently used tube."""
        return self._job_cmd(Operation.PEEK_READY)

    def peek_delayed(self) -> Optional[Job]:
        """Returns the next available delayed job in the currently used tube."""
        return self._job_cmd(Operation.PEEK_DELAYED)

    def peek_buried(self) -> Optional[Job]:
        """Returns the oldest buried job in the currently used tube."""
        return self._job_cmd(Operation.PEEK_BURIED)

    def kick(self, bound: int) -> int:
        """Moves delayed and buried jobs into the ready queue and returns the
        number of jobs effected.

        Only jobs from the currently used tube are moved.

        A kick will only move jobs in a single state. If there are any buried
        jobs, only those will be moved. Otherwise delayed jobs will be moved.

        :param bound: The maximum number of jobs to kick.
        """
        _check_seconds(bound, "bound")
        return cast(int, self._int_cmd(Operation.KICK, bound))

    def kick_job(self, job: JobOrID) -> bool:
        """Moves a delayed or buried job into the ready queue.

        :param job: The job or job ID to kick.
        """
        return self._bool_cmd(Operation.KICK_JOB, _to_id(job))

    def stats_job(self, job: JobOrID) -> Optional[Stats]:
        """Returns job statistics.

        :param job: The job or job ID to return statistics for.
        """
        return self._stats_cmd(Operation.STATS_JOB, _to_id(job))

    def stats_tube(self, tube: str) -> Optional[Stats]:
        """Returns tube statistics.

        :param tube: The tube to return statistics for.
        """
        _check_tube(tube)
        return self._stats_cmd(Operation.STATS_TUBE, tube)

    def stats(self) -> Stats:
        """Returns system statistics."""
        return cast(Stats, self._stats_cmd(Operation.STATS))

    def server_version(self) -> str:
        """Returns the version of the beanstalkd server."""
        return self.stats()["version"].strip().strip('"')

    def tubes(self) -> List[str]:
        """Returns a list of all existing tubes."""
        return self._list_cmd(Operation.LIST_TUBES)

    def using(self) -> str:
        """Returns the tube currently being used by the client."""
        return self._str_value(self.execute(Operation.LIST_TUBE_USED))

    def watching(self) -> List[str]:
        """Returns a list of tubes currently being watched by the client."""
        return self._list_cmd(Operation.LIST_TUBES_WATCHED)

    def pause_tube(self, tube: str, delay: int) -> bool:
        """Prevents jobs from being reserved from a tube for a period of time.
        Returns ``False`` if the tube does not exist.

        :param tube: The tube to pause.
        :param delay: The number of seconds to pause the tube for.
        """
        _check_tube(tube)
        _check_seconds(delay, "delay")
        return self._bool_cmd(Operation.PAUSE_TUBE, tube, delay)

    def __repr__(self) -> str:
        if isinstance(self._address, str):
            return f"stalkwire.Client(socket={self._address!r})"

        host, port = self._address
        return f"stalkwire.Client(host={host!r}, port={port!r})"


def _to_id(j: JobOrID) -> int:
    return _check_id(j.id if isinstance(j, Job) else j)


def _check_id(id: int) -> int:
    if id < 0:
        raise ValueError(f"Invalid job ID {id}")
    return id


def _check_priority(priority: int) -> None:
    if not 0 <= priority <= MAX_PRIORITY:
        raise ValueError(f"Priority must be between 0 and {MAX_PRIORITY}, got {priority}")


def _check_seconds(n: int, name: str) -> None:
    if n < 0:
        raise ValueError(f"{name} must not be negative, got {n}")


def _check_tube(tube: str) -> None:
    if not TUBE_NAME.fullmatch(tube):
        raise ValueError(f"Invalid tube name {tube!r}")
    if len(tube) > MAX_TUBE_NAME_LENGTH:
        raise ValueError(f"Tube name must be at most {MAX_TUBE_NAME_LENGTH} bytes")
