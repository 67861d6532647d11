"""Tests for the text-returning service operations."""

import sys
from pathlib import Path

import pytest

from agent_eval.config import AgentEvalSettings
from agent_eval.errors import ActivationError
from agent_eval.errors import EvaluationTimeoutError
from agent_eval.errors import SpawnError
from agent_eval.errors import WorkerDeadError
from agent_eval.service import EvalService
from agent_eval.service import InProcessEvalService
from agent_eval.service import describe_failure


def test_describe_failure_variants() -> None:
    """Machinery failures become readable error text."""
    assert describe_failure(SpawnError("boom")).startswith("Error: worker failed to start")
    assert "replaced on the next call" in describe_failure(WorkerDeadError("gone"))
    assert describe_failure(ActivationError("bad path")) == "Error: bad path"
    assert describe_failure(RuntimeError("oops")) == "Error: internal failure (RuntimeError: oops)"


def test_eval_service_round_trip(settings: AgentEvalSettings) -> None:
    """Every operation returns display text."""
    service: EvalService = EvalService(settings)
    try:
        assert service.evaluate("x = 7") == "Result: (no value)"
        assert service.evaluate("x * 6") == "Result: 42"
        assert service.evaluate("1 / 0").startswith("Error: ZeroDivisionError")

        info: str = service.info()
        assert "User Variables: x" in info
        assert "generation 0" in info

        reset: str = service.hard_reset()
        assert "generation 1" in reset
        assert service.evaluate("x").startswith("Error: NameError")
    finally:
        service.close()


def test_eval_service_reports_timeouts(settings: AgentEvalSettings) -> None:
    """A timeout is reported as text and the next call gets a fresh worker."""
    service: EvalService = EvalService(settings)
    try:
        text: str = service.evaluate("import time\ntime.sleep(30)", timeout=0.5)
        assert text.startswith("Error: Worker did not respond within 0.5s")
        assert service.evaluate("2 + 2") == "Result: 4"
        assert service.session.generation == 1
    finally:
        service.close()


def test_eval_service_activation_errors_are_text(settings: AgentEvalSettings, tmp_path: Path) -> None:
    """Invalid activation targets and package actions never raise."""
    service: EvalService = EvalService(settings)
    try:
        assert service.activate(str(tmp_path / "missing")).startswith("Error: Environment directory does not exist")
        assert service.activate(str(tmp_path)) == f"Activated environment: {tmp_path}"
        assert service.package_action("add", []).startswith("Error: Package action 'add' requires")
    finally:
        service.close()


def test_startup_project_is_activated(settings: AgentEvalSettings, project_dir: Path) -> None:
    """The configured startup project applies to the first worker."""
    configured: AgentEvalSettings = settings.model_copy(update={"startup_project": str(project_dir)})
    service: EvalService = EvalService(configured)
    try:
        assert service.session.environment_path == str(project_dir)
        assert service.evaluate("import project_helper\nproject_helper.VALUE") == "Result: 5"
    finally:
        service.close()


def test_invalid_startup_project_is_logged_not_raised(settings: AgentEvalSettings, tmp_path: Path) -> None:
    """A bad startup project leaves the default environment in place."""
    configured: AgentEvalSettings = settings.model_copy(update={"startup_project": str(tmp_path / "missing")})
    service: EvalService = EvalService(configured)
    try:
        assert service.session.environment_path is None
    finally:
        service.close()


def test_inprocess_service(settings: AgentEvalSettings) -> None:
    """The in-process service soft-resets and reports its mode."""
    service: InProcessEvalService = InProcessEvalService(settings)
    original: list[str] = list(sys.path)
    try:
        assert service.evaluate("n = 2\nclass Marker:\n    pass\nn + 1") == "Result: 3"
        reset: str = service.soft_reset()
        info: str = service.info()

        assert "Cleared 1 variable(s): n" in reset
        assert "Not cleared (class or module definitions): Marker" in reset
        assert "Worker: in-process (soft reset only)" in info
        assert service.activate("@absent").startswith("Error: Environment directory does not exist")
    finally:
        sys.path[:] = original
        service.close()


def test_describe_failure_uses_message_for_known_errors() -> None:
    """Timeouts and other known failures render as their message."""
    assert describe_failure(EvaluationTimeoutError(2.0)).startswith("Error: Worker did not respond within 2s")


def test_eval_service_rejects_non_positive_timeout(settings: AgentEvalSettings) -> None:
    """A zero timeout is refused before any worker is started."""
    service: EvalService = EvalService(settings)
    try:
        text: str = service.evaluate("1", timeout=0)

        assert text.startswith("Error: timeout must be a positive number")
        assert service.session.worker is None
    finally:
        service.close()


def test_eval_service_turns_unexpected_failures_into_text(
    settings: AgentEvalSettings,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Exceptions outside the error hierarchy never reach the transport."""
    service: EvalService = EvalService(settings)

    def explode(*args: object) -> object:
        raise RuntimeError("unexpected")

    try:
        unknown_home: str = service.activate("~agent_eval_no_such_user/project")
        monkeypatch.setattr("agent_eval.service.lifecycle.hard_reset", explode)
        monkeypatch.setattr("agent_eval.service.lifecycle.session_info", explode)
        monkeypatch.setattr("agent_eval.service.run_package_action", explode)

        assert unknown_home.startswith("Error:")
        assert service.hard_reset() == "Error: internal failure (RuntimeError: unexpected)"
        assert service.info() == "Error: internal failure (RuntimeError: unexpected)"
        assert service.package_action("status") == "Error: internal failure (RuntimeError: unexpected)"
        assert service.session.environment_path is None
    finally:
        service.close()


def test_inprocess_service_turns_unexpected_failures_into_text(
    settings: AgentEvalSettings,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The in-process service also answers every call with text."""
    service: InProcessEvalService = InProcessEvalService(settings)

    def explode(*args: object) -> object:
        raise RuntimeError("unexpected")

    monkeypatch.setattr(service.session, "soft_reset", explode)
    monkeypatch.setattr(service.session, "binding_names", explode)
    monkeypatch.setattr(service.session, "activate", explode)
    monkeypatch.setattr(service.session, "evaluate", explode)

    assert service.evaluate("1") == "Error: internal failure (RuntimeError: unexpected)"
    assert service.soft_reset() == "Error: internal failure (RuntimeError: unexpected)"
    assert service.info() == "Error: internal failure (RuntimeError: unexpected)"
    assert service.activate(".") == "Error: internal failure (RuntimeError: unexpected)"
