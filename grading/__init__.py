"""
Grading Module

Submission grading on top of the sandbox.

This module provides:
- Problem / report schemas
- Batch grading with first-mismatch short-circuit
- Parallel per-case grading with per-case failure isolation
- Verdict composition and fault classification
- YAML / environment configuration and a CLI
"""

__version__ = "0.1.0"

from .config import JudgeConfig, ConfigError, ProblemError, load_config, config_from_env, load_problem
from .harness import Grader, grade_submission, grade_each_case
from .schemas import Problem, SubmissionReport, CaseRunReport, CaseReport, CaseResult, FailedCase
from .verdict import Verdict, compose_verdict

__all__ = [
    "JudgeConfig",
    "ConfigError",
    "ProblemError",
    "load_config",
    "config_from_env",
    "load_problem",
    "Grader",
    "grade_submission",
    "grade_each_case",
    "Problem",
    "SubmissionReport",
    "CaseRunReport",
    "CaseReport",
    "CaseResult",
    "FailedCase",
    "Verdict",
    "compose_verdict",
]
