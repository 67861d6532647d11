"""Operations exposed to the transport, each returning display text.

No operation raises to the transport. Failures of the submitted code are part
of the formatted result; failures of the machinery are rendered as an
``Error:`` message.
"""

import logging
import platform
from collections.abc import Sequence

from agent_eval import lifecycle
from agent_eval.config import AgentEvalSettings
from agent_eval.errors import AgentEvalError
from agent_eval.errors import ChannelError
from agent_eval.errors import EvaluationTimeoutError
from agent_eval.errors import SpawnError
from agent_eval.formatting import format_clear_report
from agent_eval.formatting import format_info
from agent_eval.formatting import format_reset
from agent_eval.formatting import format_result
from agent_eval.inprocess import InProcessSession
from agent_eval.packages import run_package_action
from agent_eval.protocol import EvaluationResult
from agent_eval.session import Session
from agent_eval.symbols import ClearReport

logger = logging.getLogger(__name__)


def describe_failure(exc: Exception) -> str:
    """Render a machinery failure for the caller.

    :param exc: Failure raised by a lifecycle or package operation.
    :returns: Display text.
    """
    if isinstance(exc, SpawnError) is True:
        return f"Error: worker failed to start: {exc}"
    if isinstance(exc, ChannelError) is True and isinstance(exc, EvaluationTimeoutError) is False:
        return (
            f"Error: lost contact with the worker ({type(exc).__name__}: {exc}).\n"
            + "The worker will be replaced on the next call; previous definitions are gone."
        )
    if isinstance(exc, AgentEvalError) is True:
        return f"Error: {exc}"
    return f"Error: internal failure ({type(exc).__name__}: {exc})"


def _unexpected_failure(operation: str, exc: Exception) -> str:
    """Log an exception outside the known hierarchy and render it.

    :param operation: Operation name for the log record.
    :param exc: Unexpected exception.
    :returns: Display text.
    """
    logger.error("Unexpected failure during %s", operation, exc_info=True)
    return describe_failure(exc)


class EvalService:
    """Subprocess-backed operations with hard reset."""

    settings: AgentEvalSettings
    session: Session

    def __init__(self, settings: AgentEvalSettings) -> None:
        """Create the session and apply the startup environment, if any.

        :param settings: Active settings.
        """
        self.settings = settings
        self.session = Session(settings)
        if settings.startup_project is not None:
            message: str = self.activate(settings.startup_project)
            if message.startswith("Error:") is True:
                logger.error("Startup activation of %r failed: %s", settings.startup_project, message)

    def evaluate(self, code: str, timeout: float | None = None) -> str:
        """Evaluate code in the persistent worker.

        :param code: Source text.
        :param timeout: Optional response timeout in seconds.
        :returns: Formatted result.
        """
        if timeout is not None and timeout <= 0:
            return f"Error: timeout must be a positive number of seconds, got {timeout!r}"
        try:
            result: EvaluationResult = lifecycle.evaluate(self.session, code, timeout)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("evaluation", exc)
        return format_result(result)

    def hard_reset(self) -> str:
        """Replace the worker with a fresh process.

        :returns: Reset summary.
        """
        try:
            generation: int = lifecycle.hard_reset(self.session)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("hard reset", exc)
        return format_reset(generation, self.session.environment_path)

    def info(self) -> str:
        """Describe the worker's interpreter state.

        :returns: Session information text.
        """
        try:
            snapshot: lifecycle.SessionInfo = lifecycle.session_info(self.session)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("info", exc)
        return format_info(
            snapshot.python_version,
            snapshot.environment_path,
            snapshot.binding_names,
            snapshot.loaded_module_count,
            f"pid {snapshot.worker_pid}, generation {snapshot.generation}",
        )

    def activate(self, target: str) -> str:
        """Select the environment for the current and future workers.

        :param target: ``"."``, a path, or ``"@name"``.
        :returns: Acknowledgement or error text.
        """
        try:
            path: str = lifecycle.activate(self.session, target)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("activation", exc)
        return f"Activated environment: {path}"

    def package_action(self, action: str, packages: Sequence[str] = ()) -> str:
        """Forward a package action to the dependency manager.

        :param action: ``add``, ``rm``, ``status``, ``update`` or ``instantiate``.
        :param packages: Package names.
        :returns: Installer transcript or error text.
        """
        try:
            return run_package_action(action, packages, self.session.environment_path, self.settings)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("package action", exc)

    def close(self) -> None:
        """Terminate the worker."""
        lifecycle.shutdown(self.session)


class InProcessEvalService:
    """In-process operations with soft reset, for hosts without subprocesses."""

    settings: AgentEvalSettings
    session: InProcessSession

    def __init__(self, settings: AgentEvalSettings) -> None:
        """Create the namespace and apply the startup environment, if any.

        :param settings: Active settings.
        """
        self.settings = settings
        self.session = InProcessSession(settings)
        if settings.startup_project is not None:
            message: str = self.activate(settings.startup_project)
            if message.startswith("Error:") is True:
                logger.error("Startup activation of %r failed: %s", settings.startup_project, message)

    def evaluate(self, code: str) -> str:
        """Evaluate code in the controller's namespace.

        :param code: Source text.
        :returns: Formatted result.
        """
        try:
            result: EvaluationResult = self.session.evaluate(code)
        except Exception as exc:
            return _unexpected_failure("evaluation", exc)
        return format_result(result)

    def soft_reset(self) -> str:
        """Delete plain user bindings.

        :returns: Summary of cleared and uncleared names.
        """
        try:
            report: ClearReport = self.session.soft_reset()
        except Exception as exc:
            return _unexpected_failure("soft reset", exc)
        return format_clear_report(report)

    def info(self) -> str:
        """Describe the namespace.

        :returns: Session information text.
        """
        try:
            binding_names: list[str] = self.session.binding_names()
        except Exception as exc:
            return _unexpected_failure("info", exc)
        return format_info(
            platform.python_version(),
            self.session.environment_path,
            binding_names,
            self.session.loaded_module_count(),
            "in-process (soft reset only)",
        )

    def activate(self, target: str) -> str:
        """Apply an environment to the controller's import path.

        :param target: ``"."``, a path, or ``"@name"``.
        :returns: Acknowledgement or error text.
        """
        try:
            path: str = self.session.activate(target)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("activation", exc)
        return f"Activated environment: {path}"

    def package_action(self, action: str, packages: Sequence[str] = ()) -> str:
        """Forward a package action to the dependency manager.

        :param action: ``add``, ``rm``, ``status``, ``update`` or ``instantiate``.
        :param packages: Package names.
        :returns: Installer transcript or error text.
        """
        try:
            return run_package_action(action, packages, self.session.environment_path, self.settings)
        except AgentEvalError as exc:
            return describe_failure(exc)
        except Exception as exc:
            return _unexpected_failure("package action", exc)

    def close(self) -> None:
        """Nothing to release in this mode."""
