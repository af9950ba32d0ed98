"""
Subprocess-based sandbox executor for untrusted code.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

from sandbox import policy
from sandbox import protocol
from sandbox.logsink import BoundedLogSink
from sandbox.protocol import Terminal

logger = logging.getLogger(__name__)

SANDBOX_CRASH = "SandboxCrash"

# Signals that end a child which ran past its limits (RLIMIT_CPU, forced kill).
LIMIT_SIGNALS = frozenset(
    int(getattr(signal, name)) for name in ("SIGXCPU", "SIGKILL") if hasattr(signal, name)
)


@dataclass
class ExecutionOutcome:
    terminal: Terminal
    logs: list[str]
    elapsed_ms: int
    error: str | None = None
    error_type: str | None = None
    error_case: int | None = None  # 0-based index of the case running at fault time
    cases: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.terminal is Terminal.COMPLETED

    @property
    def timed_out(self) -> bool:
        return self.terminal is Terminal.TIMED_OUT

    @property
    def faulted(self) -> bool:
        return self.terminal is Terminal.FAULTED


def _decode(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class SandboxExecutor:
    """
    Execute untrusted code in a fresh subprocess with best-effort limits.

    The child enforces the time limit with an interval timer; the parent kills
    the process ``kill_grace_ms`` later as a backstop. On Unix, CPU and memory
    limits are applied by the child via resource.setrlimit. On Windows, these
    limits degrade gracefully and only the parent's wall-clock kill applies.
    """

    DEFAULT_MEMORY_LIMIT_MB: int = 256
    DEFAULT_MAX_LOG_ENTRIES: int = 50
    DEFAULT_KILL_GRACE_MS: int = 1000

    def __init__(
        self,
        max_log_entries: int | None = None,
        memory_limit_mb: int | None = None,
        kill_grace_ms: int | None = None,
        allowed_modules: list[str] | None = None,
    ) -> None:
        self.max_log_entries: int = max_log_entries or self.DEFAULT_MAX_LOG_ENTRIES
        self.memory_limit_mb: int = memory_limit_mb or self.DEFAULT_MEMORY_LIMIT_MB
        self.kill_grace_ms: int = (
            self.DEFAULT_KILL_GRACE_MS if kill_grace_ms is None else kill_grace_ms
        )
        self.allowed_modules: list[str] = list(allowed_modules or policy.ALLOWED_MODULES)

    def execute(
        self,
        untrusted_code: str,
        trusted_code: str,
        bindings: Mapping[str, object],
        time_limit_ms: int,
        driver: str = "case",
    ) -> ExecutionOutcome:
        """Run ``untrusted_code`` against ``trusted_code`` in a new sandbox process.

        ``bindings`` carries the driver inputs (``entry_point`` plus ``args``
        for the ``case`` driver or ``test_cases`` for the ``batch`` driver).
        Faults and timeouts are returned as outcomes, never raised.
        """
        payload = {
            **dict(bindings),
            "driver": driver,
            "untrusted_code": untrusted_code,
            "trusted_code": trusted_code,
            "time_limit_ms": time_limit_ms,
            "max_log_entries": self.max_log_entries,
            "memory_limit_mb": self.memory_limit_mb if os.name != "nt" else None,
            "allowed_modules": self.allowed_modules,
        }

        env = os.environ.copy()
        project_root = str(Path(__file__).resolve().parents[1])
        existing_pythonpath = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = (
            f"{project_root}{os.pathsep}{existing_pythonpath}"
            if existing_pythonpath
            else project_root
        )

        logger.debug(f"Launching sandbox driver={driver} time_limit_ms={time_limit_ms}")
        start = time.perf_counter()
        try:
            completed = subprocess.run(
                [sys.executable, "-c", protocol.CHILD_TEMPLATE],
                input=json.dumps(payload),
                text=True,
                capture_output=True,
                timeout=(time_limit_ms + self.kill_grace_ms) / 1000,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning(f"Sandbox killed after {time_limit_ms} ms limit (driver={driver})")
            logs, cases, _, _ = self._replay(_decode(exc.stdout))
            return self._timed_out(logs, cases, time_limit_ms)
        except OSError as exc:
            logger.error(f"Failed to launch sandbox process: {exc}")
            return ExecutionOutcome(
                terminal=Terminal.FAULTED,
                logs=[],
                elapsed_ms=self._wall_ms(start),
                error=f"{SANDBOX_CRASH}: {exc}",
                error_type=SANDBOX_CRASH,
            )

        logs, cases, final, intact = self._replay(completed.stdout)
        terminal_value = final.get("terminal") if final is not None else None
        if not intact or (
            final is not None and terminal_value not in {item.value for item in Terminal}
        ):
            logger.warning(f"Sandbox produced an inconsistent event stream (driver={driver})")
            return ExecutionOutcome(
                terminal=Terminal.FAULTED,
                logs=logs,
                elapsed_ms=self._wall_ms(start),
                error=f"{SANDBOX_CRASH}: inconsistent event stream from sandbox",
                error_type=SANDBOX_CRASH,
                cases=cases,
            )
        if final is None:
            if -completed.returncode in LIMIT_SIGNALS and self._wall_ms(start) >= time_limit_ms:
                logger.warning(f"Sandbox killed by a resource limit after {time_limit_ms} ms (driver={driver})")
                return self._timed_out(logs, cases, time_limit_ms)
            error = self._crash_message(completed.returncode, completed.stderr)
            logger.info(f"Sandbox exited without a result: {error}")
            return ExecutionOutcome(
                terminal=Terminal.FAULTED,
                logs=logs,
                elapsed_ms=self._wall_ms(start),
                error=error,
                error_type=SANDBOX_CRASH,
                cases=cases,
            )

        terminal = Terminal(str(terminal_value))
        if terminal is Terminal.TIMED_OUT:
            logger.warning(f"Sandbox timed out after {time_limit_ms} ms (driver={driver})")
            return self._timed_out(logs, cases, time_limit_ms)

        elapsed_value = final.get("elapsed_ms")
        if isinstance(elapsed_value, (int, float)):
            elapsed_ms = max(0, int(round(elapsed_value)))
        else:
            elapsed_ms = self._wall_ms(start)

        error_value = final.get("error")
        error_type_value = final.get("error_type")
        case_index = final.get("case_index")
        result_value = final.get("result")
        if terminal is Terminal.FAULTED:
            logger.info(f"Sandbox faulted: {error_type_value}")

        return ExecutionOutcome(
            terminal=terminal,
            logs=logs,
            elapsed_ms=elapsed_ms,
            error=str(error_value) if error_value is not None else None,
            error_type=str(error_type_value) if error_type_value is not None else None,
            error_case=case_index if isinstance(case_index, int) else None,
            cases=cases,
            result=cast(dict[str, object], result_value) if isinstance(result_value, dict) else {},
        )

    def _replay(
        self, stdout: str
    ) -> tuple[list[str], list[dict[str, object]], dict[str, object] | None, bool]:
        """Rebuild logs, case records and the final result from child events.

        The stream is intact only when a single ``result`` event closes it.
        """
        sink = BoundedLogSink(self.max_log_entries)
        cases: list[dict[str, object]] = []
        final: dict[str, object] | None = None
        intact = True

        for line in stdout.splitlines():
            if not line.strip():
                continue
            try:
                loaded = cast(object, json.loads(line))
            except json.JSONDecodeError:
                # A line cut short by a kill mid-write.
                logger.debug(f"Skipping malformed sandbox event: {line[:80]!r}")
                continue
            if not isinstance(loaded, dict):
                continue
            event = cast(dict[str, object], loaded)
            if final is not None:
                intact = False
            kind = event.get("event")
            if kind == "log":
                _ = sink.append(str(event.get("text", "")))
            elif kind == "clear":
                sink.clear()
            elif kind == "case":
                cases.append(event)
            elif kind == "result":
                final = event

        return sink.entries, cases, final, intact

    @staticmethod
    def _timed_out(
        logs: list[str], cases: list[dict[str, object]], time_limit_ms: int
    ) -> ExecutionOutcome:
        return ExecutionOutcome(
            terminal=Terminal.TIMED_OUT,
            logs=logs,
            elapsed_ms=time_limit_ms + 1,
            error=f"Execution exceeded {time_limit_ms} ms",
            cases=cases,
        )

    @staticmethod
    def _crash_message(returncode: int, stderr: str) -> str:
        tail = stderr.strip().splitlines()[-5:]
        if tail:
            return f"{SANDBOX_CRASH}: " + "\n".join(tail)
        if returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = str(-returncode)
            return f"{SANDBOX_CRASH}: sandbox process killed by signal {name}"
        return f"{SANDBOX_CRASH}: sandbox process exited with code {returncode} without a result"

    @staticmethod
    def _wall_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
