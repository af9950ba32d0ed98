"""Mapping from sandbox outcome to submission status."""

from __future__ import annotations

from enum import Enum

from sandbox.protocol import Terminal


class Verdict(str, Enum):
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"
    TIME_LIMIT_EXCEEDED = "Time Limit Exceeded"
    RUNTIME_FAULT = "Runtime Error"


def compose_verdict(terminal: Terminal, mismatch: bool) -> Verdict:
    if terminal is Terminal.TIMED_OUT:
        return Verdict.TIME_LIMIT_EXCEEDED
    if terminal is Terminal.FAULTED:
        return Verdict.RUNTIME_FAULT
    return Verdict.WRONG_ANSWER if mismatch else Verdict.ACCEPTED
