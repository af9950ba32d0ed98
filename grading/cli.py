"""CLI interface for grading submissions."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer
import yaml

from grading.config import ConfigError, JudgeConfig, config_from_env, load_config, load_problem
from grading.faults import FaultAnalyzer
from grading.harness import Grader
from grading.schemas import normalize_test_cases

app = typer.Typer(help="Submission grading CLI")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_judge_config(config_path: Optional[str]) -> JudgeConfig:
    if config_path:
        return load_config(config_path)
    if "MAX_LOGS" not in os.environ and "EXECUTION_TIMEOUT" not in os.environ:
        raise ConfigError("No judge configuration: pass --config or set MAX_LOGS and EXECUTION_TIMEOUT")
    return config_from_env(os.environ)


def _prepare(problem_path: str, config_path: Optional[str]):
    try:
        config = _load_judge_config(config_path)
        problem = load_problem(problem_path)
    except FileNotFoundError as e:
        typer.secho(f"❌ File not found: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return Grader(config), problem


def _read_code(code_path: str) -> str:
    path = Path(code_path)
    if not path.exists():
        typer.secho(f"❌ Submission not found: {code_path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


@app.command()
def grade(
    problem_path: str = typer.Argument(..., help="Problem definition (YAML or JSON)"),
    code_path: str = typer.Argument(..., help="Candidate source file"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Judge config YAML"),
) -> None:
    """Grade one submission on every test case, stopping at the first mismatch."""
    grader, problem = _prepare(problem_path, config_path)
    code = _read_code(code_path)

    report = grader.grade_submission(problem, code)
    typer.echo(json.dumps(report.to_payload(), indent=2))

    if not report.success:
        raise typer.Exit(1)


@app.command()
def run_cases(
    problem_path: str = typer.Argument(..., help="Problem definition (YAML or JSON)"),
    code_path: str = typer.Argument(..., help="Candidate source file"),
    cases_path: Optional[str] = typer.Option(
        None, "--cases", help="Test cases file (YAML or JSON list of argument lists)"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Judge config YAML"),
    progress: bool = typer.Option(False, "--progress", help="Show a progress bar"),
) -> None:
    """Run every case independently and report each one."""
    grader, problem = _prepare(problem_path, config_path)
    code = _read_code(code_path)

    test_cases = None
    if cases_path:
        path = Path(cases_path)
        if not path.exists():
            typer.secho(f"❌ Cases file not found: {cases_path}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        with open(path, "r", encoding="utf-8") as f:
            try:
                test_cases = normalize_test_cases(yaml.safe_load(f))
            except (yaml.YAMLError, ValueError) as e:
                typer.secho(f"❌ Invalid cases file: {e}", fg=typer.colors.RED, err=True)
                raise typer.Exit(1)

    report = grader.grade_each_case(problem, code, test_cases, show_progress=progress)
    typer.echo(json.dumps(report.to_payload(), indent=2))


@app.command()
def grade_many(
    problem_path: str = typer.Argument(..., help="Problem definition (YAML or JSON)"),
    code_paths: list[str] = typer.Argument(..., help="Candidate source files"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Judge config YAML"),
) -> None:
    """Grade several submissions and summarize verdicts and fault kinds."""
    grader, problem = _prepare(problem_path, config_path)
    analyzer = FaultAnalyzer()

    typer.secho(f"\n📋 Grading {len(code_paths)} submission(s):\n", fg=typer.colors.BLUE)
    accepted = 0
    for code_path in code_paths:
        report = grader.grade_submission(problem, _read_code(code_path))
        analyzer.record(report.fault_kind)
        if report.success:
            accepted += 1
        color = typer.colors.GREEN if report.success else typer.colors.RED
        typer.secho(f"  {code_path}: {report.verdict.value} ({report.elapsed_ms} ms)", fg=color)

    typer.echo(f"\n  Accepted: {accepted}/{len(code_paths)}")
    top = analyzer.get_top_failures()
    if top:
        typer.secho("\n⚠️  Faults:", fg=typer.colors.YELLOW)
        for kind, count in top:
            typer.echo(f"   - {kind}: {count}")


if __name__ == "__main__":
    app()
