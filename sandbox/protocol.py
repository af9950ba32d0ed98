"""
Child process protocol for sandbox execution.

The parent writes one JSON payload to the child's stdin. The child answers
with JSON lines on stdout, one event per line:

- ``{"event": "log", "text": ...}``: an entry accepted by the log sink
- ``{"event": "clear"}``: the log sink was cleared
- ``{"event": "case", "index": ..., "expected": ..., "received": ..., "matched": ...}``
- ``{"event": "result", "terminal": ..., "elapsed_ms": ..., ...}``: always last

Events are flushed as they happen so the parent still sees the logs and case
records produced before a forced kill.
"""

from __future__ import annotations

import copy
import json
import math
import os
import signal
import sys
import time
import traceback
from collections.abc import Callable, Mapping
from enum import Enum
from typing import cast

from sandbox import policy
from sandbox.compare import is_equal
from sandbox.logsink import BoundedLogSink, format_log_args

CHILD_TEMPLATE = """
from sandbox.protocol import child_main
child_main()
""".strip()

CANDIDATE_FILENAME = "<candidate>"
REFERENCE_FILENAME = "<reference>"
SOURCE_FILENAMES = frozenset({CANDIDATE_FILENAME, REFERENCE_FILENAME})


class Terminal(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAULTED = "faulted"


class ExecutionTimeout(BaseException):
    """Raised inside the child when the wall-clock limit expires."""


class MissingEntryPoint(NameError):
    pass


class Channel:
    """Line-oriented JSON event writer on a raw file descriptor."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    def emit(self, event: str, **fields: object) -> None:
        fields["event"] = event
        data = (json.dumps(fields) + "\n").encode("utf-8")
        while data:
            data = data[os.write(self._fd, data):]


def to_jsonable(value: object, _active: set[int] | None = None) -> object:
    """Convert a value produced by sandboxed code into JSON-compatible data."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    active = _active if _active is not None else set()
    if id(value) in active:
        return "[Circular]"
    if isinstance(value, (list, tuple, set, frozenset)):
        active.add(id(value))
        items = value if isinstance(value, (list, tuple)) else _sorted_members(value)
        converted = [to_jsonable(item, active) for item in items]
        active.discard(id(value))
        return converted
    if isinstance(value, Mapping):
        active.add(id(value))
        mapping = cast(Mapping[object, object], value)
        converted_map = {
            (key if isinstance(key, str) else json.dumps(to_jsonable(key))): to_jsonable(item, active)
            for key, item in mapping.items()
        }
        active.discard(id(value))
        return converted_map
    return repr(value)


def _sorted_members(members: set[object] | frozenset[object]) -> list[object]:
    try:
        return sorted(members)  # type: ignore[type-var]
    except TypeError:
        return sorted(members, key=repr)


def _load_payload() -> dict[str, object]:
    raw = sys.stdin.read()
    if not raw:
        return {}
    try:
        return cast(dict[str, object], json.loads(raw))
    except json.JSONDecodeError:
        return {}


def _format_error(exc: BaseException) -> str:
    """Render ``Type: message`` followed by the traceback of sandboxed frames."""
    tb = exc.__traceback__
    while tb is not None and tb.tb_frame.f_code.co_filename not in SOURCE_FILENAMES:
        tb = tb.tb_next
    header = f"{exc.__class__.__name__}: {exc}"
    trace = "".join(traceback.format_exception(type(exc), exc, tb)).rstrip()
    if trace == header:
        return header
    return f"{header}\n{trace}"


def _apply_resource_limits(memory_limit_mb: int, cpu_seconds: int) -> None:
    try:
        import resource
    except ImportError:
        return
    resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
    memory_bytes = int(memory_limit_mb * 1024 * 1024)
    if hasattr(resource, "RLIMIT_AS"):
        resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
    elif hasattr(resource, "RLIMIT_DATA"):
        resource.setrlimit(resource.RLIMIT_DATA, (memory_bytes, memory_bytes))


class Deadline:
    """Wall-clock alarm for one evaluation.

    The alarm repeats every ``REARM_INTERVAL_S`` after the limit, so code that
    swallows ``ExecutionTimeout`` is interrupted again. ``expired`` stays set
    once the limit has passed, whatever the sandboxed code did with the
    exception.
    """

    REARM_INTERVAL_S: float = 0.05

    def __init__(self, time_limit_ms: int) -> None:
        self.time_limit_ms: int = time_limit_ms
        self.expired: bool = False
        self._active: bool = False
        self._start: float = time.perf_counter()

    def arm(self) -> None:
        self._start = time.perf_counter()
        if not hasattr(signal, "setitimer"):
            return
        _ = signal.signal(signal.SIGALRM, self._expire)
        self._active = True
        _ = signal.setitimer(signal.ITIMER_REAL, self.time_limit_ms / 1000, self.REARM_INTERVAL_S)

    def disarm(self) -> None:
        self._active = False
        if hasattr(signal, "setitimer"):
            _ = signal.setitimer(signal.ITIMER_REAL, 0)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000

    def exceeded(self) -> bool:
        return self.expired or self.elapsed_ms() >= self.time_limit_ms

    def _expire(self, _signum: int, _frame: object) -> None:
        self.expired = True
        if self._active:
            raise ExecutionTimeout(f"Execution exceeded {self.time_limit_ms} ms")


def _make_print(sink: BoundedLogSink, channel: Channel) -> Callable[..., None]:
    def print(  # noqa: A001 - replaces the builtin inside the sandbox
        *args: object,
        sep: str | None = " ",
        end: str | None = "\n",
        file: object = None,
        flush: bool = False,
    ) -> None:
        entry = format_log_args(*args, sep=" " if sep is None else sep)
        if sink.append(entry):
            channel.emit("log", text=entry)

    return print


class SandboxSession:
    """State of one sandbox run: the log sink and the loaded namespaces.

    Sandboxed code only sees the ``print`` function built here, never the
    session or its channel.
    """

    def __init__(
        self,
        channel: Channel,
        max_log_entries: int,
        allowed_modules: list[str] | None = None,
    ) -> None:
        self._channel: Channel = channel
        self.sink: BoundedLogSink = BoundedLogSink(max_log_entries)
        self.allowed_modules: list[str] | None = allowed_modules
        self.case_index: int | None = None
        self._print: Callable[..., None] = _make_print(self.sink, channel)

    def clear_logs(self) -> None:
        self.sink.clear()
        self._channel.emit("clear")

    def report_case(self, index: int, expected: object, received: object, matched: bool) -> None:
        self._channel.emit("case", index=index, expected=expected, received=received, matched=matched)

    def load(self, source: str, filename: str, entry_point: str) -> Callable[..., object]:
        """Execute ``source`` in its own namespace and return its entry point."""
        namespace = policy.new_namespace(
            filename.strip("<>"),
            capabilities={"print": self._print, "is_equal": is_equal},
            allowed_modules=self.allowed_modules,
        )
        exec(compile(source, filename, "exec"), namespace, namespace)
        func = namespace.get(entry_point)
        if not callable(func):
            raise MissingEntryPoint(
                f"{filename.strip('<>')} code does not define a callable '{entry_point}'"
            )
        return cast(Callable[..., object], func)


def run_batch(session: SandboxSession, payload: dict[str, object], result: dict[str, object]) -> None:
    """Run every case in order and stop at the first mismatch."""
    entry_point = str(payload.get("entry_point", ""))
    test_cases = cast(list[list[object]], payload.get("test_cases", []))
    candidate = session.load(str(payload.get("untrusted_code", "")), CANDIDATE_FILENAME, entry_point)
    reference = session.load(str(payload.get("trusted_code", "")), REFERENCE_FILENAME, entry_point)

    for index, args in enumerate(test_cases):
        session.case_index = index
        session.clear_logs()
        result.pop("expected", None)
        expected = reference(*copy.deepcopy(args))
        result["expected"] = to_jsonable(expected)
        received = candidate(*copy.deepcopy(args))
        matched = is_equal(expected, received)
        session.report_case(index, result["expected"], to_jsonable(received), matched)
        if not matched:
            break
    session.case_index = None
    result.pop("expected", None)


def run_case(session: SandboxSession, payload: dict[str, object], result: dict[str, object]) -> None:
    """Run a single case, keeping whatever was computed before a fault."""
    entry_point = str(payload.get("entry_point", ""))
    args = cast(list[object], payload.get("args", []))
    candidate = session.load(str(payload.get("untrusted_code", "")), CANDIDATE_FILENAME, entry_point)
    reference = session.load(str(payload.get("trusted_code", "")), REFERENCE_FILENAME, entry_point)

    session.case_index = 0
    expected = reference(*copy.deepcopy(args))
    result["expected"] = to_jsonable(expected)
    received = candidate(*copy.deepcopy(args))
    result["received"] = to_jsonable(received)
    result["matched"] = is_equal(expected, received)


DRIVERS: dict[str, Callable[[SandboxSession, dict[str, object], dict[str, object]], None]] = {
    "batch": run_batch,
    "case": run_case,
}


def child_main() -> None:
    """Entry point for the sandbox child process."""
    payload = _load_payload()
    # Events go to a private duplicate of fd 1; fd 1 itself now points at
    # stderr so stray writes never reach the event stream.
    sys.stdout.flush()
    channel = Channel(os.dup(sys.stdout.fileno()))
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    sys.stdout = sys.stderr

    time_limit_ms = int(cast(int, payload.get("time_limit_ms", 1000)))
    max_log_entries = int(cast(int, payload.get("max_log_entries", 50)))
    memory_limit_mb = payload.get("memory_limit_mb")
    if memory_limit_mb:
        _apply_resource_limits(
            int(cast(int, memory_limit_mb)),
            max(1, math.ceil(time_limit_ms / 1000) + 1),
        )

    allowed_modules = cast(list[str] | None, payload.get("allowed_modules"))
    session = SandboxSession(channel, max_log_entries, allowed_modules)
    driver_name = str(payload.get("driver", "case"))
    result: dict[str, object] = {}
    response: dict[str, object]

    deadline = Deadline(time_limit_ms)
    try:
        driver = DRIVERS.get(driver_name)
        if driver is None:
            raise ValueError(f"Unknown sandbox driver: {driver_name}")
        deadline.arm()
        try:
            driver(session, payload, result)
        finally:
            deadline.disarm()
        response = {"terminal": Terminal.COMPLETED.value, "error": None, "error_type": None}
    except ExecutionTimeout:
        response = {"terminal": Terminal.TIMED_OUT.value, "error": None, "error_type": None}
    except BaseException as exc:  # noqa: BLE001 - capture all child errors
        deadline.disarm()
        response = {
            "terminal": Terminal.FAULTED.value,
            "error": _format_error(exc),
            "error_type": exc.__class__.__name__,
        }

    # A caught ExecutionTimeout does not undo an exceeded limit.
    if deadline.exceeded():
        response = {"terminal": Terminal.TIMED_OUT.value, "error": None, "error_type": None}

    response["elapsed_ms"] = deadline.elapsed_ms()
    response["case_index"] = session.case_index
    response["result"] = result
    channel.emit("result", **response)


if __name__ == "__main__":
    child_main()
