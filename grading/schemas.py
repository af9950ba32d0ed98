from __future__ import annotations

import json
import keyword
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from grading.faults import FaultKind
from grading.verdict import Verdict

TBaseSchema = TypeVar("TBaseSchema", bound="BaseSchema")


class BaseSchema(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    def to_dict(self) -> dict[str, object]:
        return self.model_dump()

    @classmethod
    def from_json(cls: type[TBaseSchema], data: str) -> TBaseSchema:
        return cls.model_validate_json(data)

    @classmethod
    def from_dict(cls: type[TBaseSchema], data: Mapping[str, object]) -> TBaseSchema:
        return cls.model_validate(data)


def normalize_test_cases(value: object) -> list[list[Any]]:
    """Accept a JSON string or a sequence of argument lists."""
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"test cases are not valid JSON: {exc}") from exc
    if not isinstance(value, (list, tuple)):
        raise ValueError("test cases must be a list of argument lists")
    cases: list[list[Any]] = []
    for index, case in enumerate(value):
        if not isinstance(case, (list, tuple)):
            raise ValueError(f"test case {index + 1} must be a list of arguments")
        cases.append(list(case))
    return cases


class Problem(BaseSchema):
    model_config = ConfigDict(frozen=True)

    entry_point: str = Field(
        validation_alias=AliasChoices("entry_point", "entryPointName", "functionName")
    )
    reference_source: str = Field(
        validation_alias=AliasChoices("reference_source", "referenceSource", "solutionFunction")
    )
    test_cases: list[list[Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("test_cases", "testCases", "inputs"),
    )

    @field_validator("entry_point")
    @classmethod
    def entry_point_identifier(cls, value: str) -> str:
        if not value.isidentifier() or keyword.iskeyword(value):
            raise ValueError(f"entry point {value!r} is not a valid identifier")
        return value

    @field_validator("test_cases", mode="before")
    @classmethod
    def parse_test_cases(cls, value: object) -> list[list[Any]]:
        return normalize_test_cases(value)


class CaseResult(BaseSchema):
    case_index: int = Field(ge=0)
    reference_value: Any = None
    candidate_value: Any = None
    matched: bool
    error_detail: str | None = None


class FailedCase(BaseSchema):
    test_case: int = Field(ge=1)
    input: list[Any]
    expected: Any = None
    received: Any = None


class SubmissionReport(BaseSchema):
    """Outcome of grading one submission against every test case."""

    verdict: Verdict
    case_results: list[CaseResult] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)
    failed: FailedCase | None = None
    elapsed_ms: int = Field(ge=0)
    limit_exceeded: bool = False
    error: str | None = None
    error_case: int | None = Field(default=None, ge=1)
    fault_kind: FaultKind | None = None

    @property
    def success(self) -> bool:
        return self.verdict is Verdict.ACCEPTED

    def to_payload(self) -> dict[str, object]:
        failed = None
        if self.failed is not None:
            failed = {
                "testCase": self.failed.test_case,
                "input": self.failed.input,
                "expected": self.failed.expected,
                "received": self.failed.received,
            }
        return {
            "success": self.success,
            "status": self.verdict.value,
            "logs": list(self.logs),
            "failed": failed,
            "time": self.elapsed_ms,
            "limitExceeded": self.limit_exceeded,
            "error": self.error,
            "errorCase": self.error_case,
            "faultKind": self.fault_kind.value if self.fault_kind else None,
        }


class CaseReport(BaseSchema):
    """Diagnostics for one independently executed test case."""

    index: int = Field(ge=0)
    logs: list[str] = Field(default_factory=list)
    elapsed_ms: int = Field(ge=0)
    candidate_value: Any = None
    reference_value: Any = None
    matched: bool = False
    error: str = ""
    limit_exceeded: bool = False

    def to_case_result(self) -> CaseResult:
        return CaseResult(
            case_index=self.index,
            reference_value=self.reference_value,
            candidate_value=self.candidate_value,
            matched=self.matched,
            error_detail=self.error or None,
        )


class CaseRunReport(BaseSchema):
    cases: list[CaseReport] = Field(default_factory=list)

    @property
    def case_results(self) -> list[CaseResult]:
        return [case.to_case_result() for case in self.cases]

    def to_payload(self) -> dict[str, list[Any]]:
        return {
            "logs": [case.logs for case in self.cases],
            "times": [case.elapsed_ms for case in self.cases],
            "results": [case.candidate_value for case in self.cases],
            "errors": [case.error for case in self.cases],
            "expecteds": [case.reference_value for case in self.cases],
            "limitExceeded": [case.limit_exceeded for case in self.cases],
        }
