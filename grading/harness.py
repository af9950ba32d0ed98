"""Batch and per-case grading on top of the sandbox executor.

Batch mode grades a submission in one sandbox process, walking the test cases
in order and stopping at the first mismatch. Per-case mode runs every case in
its own sandbox process, concurrently, and reports on all of them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Any

from tqdm import tqdm

from grading.config import JudgeConfig
from grading.faults import FaultKind, classify_fault
from grading.schemas import (
    CaseReport,
    CaseResult,
    CaseRunReport,
    FailedCase,
    Problem,
    SubmissionReport,
    normalize_test_cases,
)
from grading.verdict import Verdict, compose_verdict
from sandbox.executor import SANDBOX_CRASH, ExecutionOutcome, SandboxExecutor
from sandbox.protocol import Terminal

logger = logging.getLogger(__name__)


class Grader:
    """Grades candidate code against a problem's reference solution."""

    def __init__(
        self,
        config: JudgeConfig | None = None,
        executor: SandboxExecutor | None = None,
    ) -> None:
        self.config: JudgeConfig = config or JudgeConfig()
        self.executor: SandboxExecutor = executor or SandboxExecutor(
            max_log_entries=self.config.max_log_entries,
            memory_limit_mb=self.config.memory_limit_mb,
            kill_grace_ms=self.config.kill_grace_ms,
            allowed_modules=self.config.allowed_modules,
        )

    def grade_submission(self, problem: Problem, candidate_code: str) -> SubmissionReport:
        """Grade a submission on all test cases in a single sandbox run."""
        outcome = self.executor.execute(
            candidate_code,
            problem.reference_source,
            {"entry_point": problem.entry_point, "test_cases": problem.test_cases},
            self.config.execution_timeout_ms,
            driver="batch",
        )

        case_results = [
            CaseResult(
                case_index=int(record["index"]),
                reference_value=record.get("expected"),
                candidate_value=record.get("received"),
                matched=bool(record.get("matched")),
            )
            for record in outcome.cases
        ]
        mismatch = next((result for result in case_results if not result.matched), None)
        if outcome.completed and not self._record_is_complete(case_results, mismatch, len(problem.test_cases)):
            logger.warning(
                f"Sandbox reported completion after {len(case_results)} of "
                f"{len(problem.test_cases)} cases for '{problem.entry_point}'"
            )
            outcome = replace(
                outcome,
                terminal=Terminal.FAULTED,
                error=f"{SANDBOX_CRASH}: sandbox reported completion with an incomplete case record",
                error_type=SANDBOX_CRASH,
            )
            mismatch = None
        failed = None
        if mismatch is not None:
            failed = FailedCase(
                test_case=mismatch.case_index + 1,
                input=problem.test_cases[mismatch.case_index],
                expected=mismatch.reference_value,
                received=mismatch.candidate_value,
            )

        error_case = None
        if outcome.faulted and outcome.error_case is not None:
            error_case = outcome.error_case + 1
            case_results.append(
                CaseResult(
                    case_index=outcome.error_case,
                    reference_value=outcome.result.get("expected"),
                    matched=False,
                    error_detail=outcome.error,
                )
            )

        verdict = compose_verdict(outcome.terminal, mismatch is not None)
        if verdict is Verdict.TIME_LIMIT_EXCEEDED:
            logger.warning(f"Time Limit Exceeded for '{problem.entry_point}'")
        elif verdict is Verdict.RUNTIME_FAULT:
            logger.info(f"Runtime fault for '{problem.entry_point}': {outcome.error_type}")

        return SubmissionReport(
            verdict=verdict,
            case_results=case_results,
            logs=outcome.logs,
            failed=failed,
            elapsed_ms=outcome.elapsed_ms,
            limit_exceeded=outcome.timed_out,
            error=outcome.error if outcome.faulted else None,
            error_case=error_case,
            fault_kind=self._fault_kind(outcome),
        )

    def grade_each_case(
        self,
        problem: Problem,
        candidate_code: str,
        test_cases: Iterable[Sequence[Any]] | str | None = None,
        show_progress: bool = False,
    ) -> CaseRunReport:
        """Run each test case in its own sandbox, concurrently.

        Defaults to the problem's own test cases. The returned report lists
        cases in input order no matter which finished first.
        """
        if test_cases is None:
            cases = list(problem.test_cases)
        else:
            cases = normalize_test_cases(test_cases if isinstance(test_cases, str) else list(test_cases))
        if not cases:
            return CaseRunReport()

        reports: list[CaseReport | None] = [None] * len(cases)
        workers = min(self.config.max_workers, len(cases))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures: dict[Future[CaseReport], int] = {
                pool.submit(self._run_case, problem, candidate_code, index, args): index
                for index, args in enumerate(cases)
            }
            completed = as_completed(futures)
            if show_progress:
                completed = tqdm(completed, total=len(futures), desc="Cases", unit="case")
            for future in completed:
                reports[futures[future]] = future.result()

        return CaseRunReport(cases=[report for report in reports if report is not None])

    def _run_case(
        self,
        problem: Problem,
        candidate_code: str,
        index: int,
        args: list[Any],
    ) -> CaseReport:
        outcome = self.executor.execute(
            candidate_code,
            problem.reference_source,
            {"entry_point": problem.entry_point, "args": args},
            self.config.execution_timeout_ms,
            driver="case",
        )

        if outcome.completed and not {"received", "matched"} <= outcome.result.keys():
            outcome = replace(
                outcome,
                terminal=Terminal.FAULTED,
                error=f"{SANDBOX_CRASH}: sandbox reported completion without a case result",
                error_type=SANDBOX_CRASH,
            )

        # Timeouts are flagged by limit_exceeded alone.
        error = ""
        if outcome.faulted:
            error = outcome.error or "RuntimeError: sandbox reported a fault without details"

        return CaseReport(
            index=index,
            logs=outcome.logs,
            elapsed_ms=outcome.elapsed_ms,
            candidate_value=outcome.result.get("received"),
            reference_value=outcome.result.get("expected"),
            matched=outcome.completed and outcome.result.get("matched") is True,
            error=error,
            limit_exceeded=outcome.timed_out,
        )

    @staticmethod
    def _record_is_complete(
        case_results: list[CaseResult],
        mismatch: CaseResult | None,
        total: int,
    ) -> bool:
        """A completed batch covers cases 0..k in order and stops only at a mismatch."""
        if [result.case_index for result in case_results] != list(range(len(case_results))):
            return False
        if mismatch is not None:
            return case_results[-1] is mismatch
        return len(case_results) == total

    @staticmethod
    def _fault_kind(outcome: ExecutionOutcome) -> FaultKind | None:
        if outcome.completed:
            return None
        return classify_fault(outcome.error_type, outcome.error, timed_out=outcome.timed_out)


def grade_submission(
    problem: Problem,
    candidate_code: str,
    config: JudgeConfig | None = None,
) -> SubmissionReport:
    return Grader(config).grade_submission(problem, candidate_code)


def grade_each_case(
    problem: Problem,
    candidate_code: str,
    test_cases: Iterable[Sequence[Any]] | str | None = None,
    config: JudgeConfig | None = None,
) -> CaseRunReport:
    return Grader(config).grade_each_case(problem, candidate_code, test_cases)
