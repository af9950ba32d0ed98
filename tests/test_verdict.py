import pytest

from grading.faults import FaultAnalyzer, FaultKind, classify_fault
from grading.verdict import Verdict, compose_verdict
from sandbox.protocol import Terminal


@pytest.mark.parametrize(
    ("terminal", "mismatch", "expected"),
    [
        (Terminal.TIMED_OUT, False, Verdict.TIME_LIMIT_EXCEEDED),
        (Terminal.TIMED_OUT, True, Verdict.TIME_LIMIT_EXCEEDED),
        (Terminal.FAULTED, False, Verdict.RUNTIME_FAULT),
        (Terminal.COMPLETED, False, Verdict.ACCEPTED),
        (Terminal.COMPLETED, True, Verdict.WRONG_ANSWER),
    ],
)
def test_compose_verdict(terminal: Terminal, mismatch: bool, expected: Verdict) -> None:
    assert compose_verdict(terminal, mismatch) is expected


def test_verdict_values_match_submission_statuses() -> None:
    assert Verdict.ACCEPTED.value == "Accepted"
    assert Verdict.WRONG_ANSWER.value == "Wrong Answer"
    assert Verdict.TIME_LIMIT_EXCEEDED.value == "Time Limit Exceeded"


def test_classify_fault() -> None:
    assert classify_fault(None, None, timed_out=True) is FaultKind.TIMEOUT
    assert classify_fault("IndentationError", "unexpected indent") is FaultKind.SYNTAX_ERROR
    assert (
        classify_fault("ImportError", "Import of 'os' blocked by sandbox policy")
        is FaultKind.IMPORT_BLOCKED
    )
    assert classify_fault("ImportError", "cannot import name 'x'") is FaultKind.RUNTIME_ERROR
    assert (
        classify_fault("PermissionError", "'open' is blocked by sandbox policy")
        is FaultKind.POLICY_BLOCKED
    )
    assert classify_fault("MissingEntryPoint", "no 'add'") is FaultKind.MISSING_ENTRY_POINT
    assert classify_fault("SandboxCrash", "killed") is FaultKind.SANDBOX_CRASH
    assert classify_fault("ZeroDivisionError", "division by zero") is FaultKind.RUNTIME_ERROR
    assert classify_fault(None, None) is FaultKind.OTHER


def test_fault_analyzer_tallies_kinds() -> None:
    analyzer = FaultAnalyzer()
    analyzer.record(FaultKind.TIMEOUT)
    analyzer.record(FaultKind.TIMEOUT)
    analyzer.record(FaultKind.SYNTAX_ERROR)
    analyzer.record(None)

    assert analyzer.get_failure_stats()[FaultKind.TIMEOUT] == 2
    assert analyzer.get_top_failures() == [("timeout", 2), ("syntax_error", 1)]
