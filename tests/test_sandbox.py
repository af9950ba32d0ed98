import sys

import pytest

from sandbox.executor import SandboxExecutor
from sandbox.protocol import Terminal

REFERENCE = """
def add(a, b):
    return a + b
"""


def _case(executor, code, args=(1, 2), reference=REFERENCE, time_limit_ms=2000, entry_point="add"):
    return executor.execute(
        code,
        reference,
        {"entry_point": entry_point, "args": list(args)},
        time_limit_ms,
        driver="case",
    )


def test_infinite_loop_times_out():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    while True:
        pass
"""
    outcome = _case(executor, code, time_limit_ms=500)
    assert outcome.terminal is Terminal.TIMED_OUT
    assert outcome.timed_out is True
    assert outcome.elapsed_ms == 501


def test_timeout_keeps_logs_written_before_cancellation():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    print("started", a, b)
    while True:
        pass
"""
    outcome = _case(executor, code, time_limit_ms=500)
    assert outcome.timed_out is True
    assert outcome.logs == ["started 1 2"]


def test_swallowing_timeout_is_killed_by_parent():
    executor = SandboxExecutor(kill_grace_ms=500)
    code = """
def add(a, b):
    while True:
        try:
            while True:
                pass
        except BaseException:
            pass
"""
    outcome = _case(executor, code, time_limit_ms=300)
    assert outcome.timed_out is True
    assert outcome.elapsed_ms == 301


def test_caught_timeout_then_return_is_timed_out():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    try:
        while True:
            pass
    except BaseException:
        pass
    return a + b
"""
    outcome = _case(executor, code, time_limit_ms=300)
    assert outcome.timed_out is True
    assert outcome.elapsed_ms == 301


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="RLIMIT_CPU is enforced on Linux")
def test_cpu_limit_kill_after_deadline_is_timed_out():
    executor = SandboxExecutor(kill_grace_ms=10_000)
    code = """
def add(a, b):
    while True:
        try:
            while True:
                pass
        except BaseException:
            pass
"""
    outcome = _case(executor, code, time_limit_ms=300)
    assert outcome.timed_out is True
    assert outcome.elapsed_ms == 301


def test_events_after_result_mark_stream_inconsistent():
    executor = SandboxExecutor()
    stdout = "\n".join(
        [
            '{"event": "result", "terminal": "completed", "elapsed_ms": 1, "result": {}}',
            '{"event": "case", "index": 0, "expected": 1, "received": 1, "matched": true}',
            '{"event": "result", "terminal": "completed", "elapsed_ms": 2, "result": {}}',
        ]
    )
    _, cases, final, intact = executor._replay(stdout)
    assert intact is False
    assert len(cases) == 1
    assert final is not None


def test_single_trailing_result_is_intact():
    executor = SandboxExecutor()
    stdout = "\n".join(
        [
            '{"event": "log", "text": "hi"}',
            "not json",
            '{"event": "result", "terminal": "completed", "elapsed_ms": 1, "result": {}}',
        ]
    )
    logs, _, final, intact = executor._replay(stdout)
    assert intact is True
    assert logs == ["hi"]
    assert final is not None and final["terminal"] == "completed"


def test_import_socket_fails():
    executor = SandboxExecutor()
    code = """
import socket

def add(a, b):
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert outcome.error
    assert "socket" in outcome.error
    assert "blocked" in outcome.error
    assert outcome.error_type == "ImportError"


def test_import_outside_allowlist_fails():
    executor = SandboxExecutor()
    code = """
import json

def add(a, b):
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert "not allowlisted" in outcome.error


def test_allowlisted_import_works():
    executor = SandboxExecutor()
    code = """
import math

def add(a, b):
    return int(math.fsum([a, b]))
"""
    outcome = _case(executor, code)
    assert outcome.completed is True
    assert outcome.result == {"expected": 3, "received": 3, "matched": True}


def test_open_fails():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    open('x', 'w')
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert "PermissionError" in outcome.error
    assert "sandbox policy" in outcome.error


def test_syntax_error_is_caught():
    executor = SandboxExecutor()
    code = """
def add(a, b)
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert outcome.error_type == "SyntaxError"
    assert "SyntaxError" in outcome.error
    assert "<candidate>" in outcome.error


def test_runtime_error_reports_message_and_trace():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    raise ValueError("bad input")
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert outcome.error.startswith("ValueError: bad input")
    assert "Traceback" in outcome.error
    assert "<candidate>" in outcome.error
    # The reference ran before the candidate raised.
    assert outcome.result["expected"] == 3
    assert "received" not in outcome.result


def test_system_exit_is_contained():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    raise SystemExit(3)
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert outcome.error_type == "SystemExit"


def test_missing_entry_point_faults():
    executor = SandboxExecutor()
    code = """
def plus(a, b):
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert outcome.error_type == "MissingEntryPoint"
    assert "'add'" in outcome.error


def test_reference_and_candidate_namespaces_do_not_collide():
    executor = SandboxExecutor()
    reference = """
def helper():
    return 1

def solve():
    return helper()
"""
    code = """
def helper():
    return 2

def solve():
    return helper() - 1
"""
    outcome = _case(executor, code, args=(), reference=reference, entry_point="solve")
    assert outcome.completed is True
    assert outcome.result == {"expected": 1, "received": 1, "matched": True}


def test_reference_mutation_does_not_leak_into_candidate_input():
    executor = SandboxExecutor()
    reference = """
def size(xs):
    xs.append(99)
    return len(xs)
"""
    code = """
def size(xs):
    return len(xs) + 1
"""
    outcome = _case(executor, code, args=([1, 2, 3],), reference=reference, entry_point="size")
    assert outcome.result["matched"] is True


def test_log_capture_is_capped():
    executor = SandboxExecutor(max_log_entries=3)
    code = """
def add(a, b):
    for i in range(10):
        print(i)
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.completed is True
    assert outcome.logs == ["0", "1", "2"]


def test_logs_from_reference_share_the_cap():
    executor = SandboxExecutor(max_log_entries=2)
    reference = """
def add(a, b):
    print("ref")
    return a + b
"""
    code = """
def add(a, b):
    print("cand", {"a": a})
    print("dropped")
    return a + b
"""
    outcome = _case(executor, code, reference=reference)
    assert outcome.logs == ["ref", 'cand {"a": 1}']


def test_batch_driver_stops_at_first_mismatch():
    executor = SandboxExecutor()
    code = """
def add(a, b):
    print(a, b)
    return a + b if a < 2 else 0
"""
    outcome = executor.execute(
        code,
        REFERENCE,
        {"entry_point": "add", "test_cases": [[1, 1], [2, 2], [3, 3]]},
        2000,
        driver="batch",
    )
    assert outcome.completed is True
    assert [case["index"] for case in outcome.cases] == [0, 1]
    assert outcome.cases[1]["matched"] is False
    assert outcome.logs == ["2 2"]


def test_unknown_driver_faults():
    executor = SandboxExecutor()
    outcome = executor.execute(REFERENCE, REFERENCE, {"entry_point": "add"}, 1000, driver="nope")
    assert outcome.faulted is True
    assert "Unknown sandbox driver" in outcome.error


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="RLIMIT_AS is enforced on Linux")
def test_memory_limit_faults():
    executor = SandboxExecutor(memory_limit_mb=128)
    code = """
def add(a, b):
    blob = [0] * (10 ** 9)
    return a + b
"""
    outcome = _case(executor, code)
    assert outcome.faulted is True
    assert outcome.error_type == "MemoryError"
