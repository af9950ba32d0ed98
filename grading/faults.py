"""Fault classification and tallying."""

from __future__ import annotations

from enum import Enum

from sandbox.executor import SANDBOX_CRASH
from sandbox.protocol import MissingEntryPoint


class FaultKind(str, Enum):
    TIMEOUT = "timeout"
    SYNTAX_ERROR = "syntax_error"
    IMPORT_BLOCKED = "import_blocked"
    POLICY_BLOCKED = "policy_blocked"
    MISSING_ENTRY_POINT = "missing_entry_point"
    RUNTIME_ERROR = "runtime_error"
    SANDBOX_CRASH = "sandbox_crash"
    OTHER = "other"


_SYNTAX_ERRORS = {"SyntaxError", "IndentationError", "TabError"}
_IMPORT_ERRORS = {"ImportError", "ModuleNotFoundError"}


def classify_fault(
    error_type: str | None,
    error: str | None = None,
    timed_out: bool = False,
) -> FaultKind:
    if timed_out:
        return FaultKind.TIMEOUT

    name = error_type or ""
    message = (error or "").lower()

    if name in _SYNTAX_ERRORS:
        return FaultKind.SYNTAX_ERROR
    elif name in _IMPORT_ERRORS and ("sandbox policy" in message or "allowlisted" in message):
        return FaultKind.IMPORT_BLOCKED
    elif name == "PermissionError" and "sandbox policy" in message:
        return FaultKind.POLICY_BLOCKED
    elif name == MissingEntryPoint.__name__:
        return FaultKind.MISSING_ENTRY_POINT
    elif name == SANDBOX_CRASH:
        return FaultKind.SANDBOX_CRASH
    elif name:
        return FaultKind.RUNTIME_ERROR
    else:
        return FaultKind.OTHER


class FaultAnalyzer:
    def __init__(self):
        self.failures: dict[FaultKind, int] = {kind: 0 for kind in FaultKind}

    def record(self, kind: FaultKind | None) -> None:
        if kind is not None:
            self.failures[kind] += 1

    def get_failure_stats(self) -> dict[FaultKind, int]:
        return dict(self.failures)

    def get_top_failures(self, n: int = 5) -> list[tuple[str, int]]:
        sorted_failures = sorted(
            ((kind, count) for kind, count in self.failures.items() if count),
            key=lambda x: x[1],
            reverse=True,
        )
        return [(kind.value, count) for kind, count in sorted_failures[:n]]
