"""Legacy in-process evaluation with soft reset.

This mode evaluates code inside the controller process and never starts a
worker. It exists for hosts that cannot spawn subprocesses. Its reset only
deletes plain bindings; class and module definitions survive it, which is why
the subprocess mode with hard reset is the default.
"""

import logging
import sys
import threading

from agent_eval.capture import capture_evaluation
from agent_eval.capture import new_namespace
from agent_eval.config import AgentEvalSettings
from agent_eval.environment import EnvironmentActivator
from agent_eval.environment import resolve_environment_target
from agent_eval.protocol import EvaluationResult
from agent_eval.symbols import ClearReport
from agent_eval.symbols import SymbolFilter
from agent_eval.symbols import clear_all
from agent_eval.symbols import list_user_bindings

logger = logging.getLogger(__name__)


class InProcessSession:
    """Evaluate code in one namespace owned by the controller process."""

    settings: AgentEvalSettings
    namespace: dict[str, object]
    symbol_filter: SymbolFilter
    _lock: threading.Lock
    _activator: EnvironmentActivator

    def __init__(self, settings: AgentEvalSettings) -> None:
        """Initialize an empty namespace.

        :param settings: Active settings.
        """
        self.settings = settings
        self.namespace = new_namespace()
        self.symbol_filter = SymbolFilter(settings.symbols.denied_names, settings.symbols.internal_prefixes)
        self._lock = threading.Lock()
        self._activator = EnvironmentActivator()

    @property
    def environment_path(self) -> str | None:
        """Return the applied environment directory.

        :returns: Directory path or ``None``.
        """
        return self._activator.active_path

    def evaluate(self, code: str) -> EvaluationResult:
        """Evaluate ``code``; concurrent callers are serialized.

        :param code: Source text.
        :returns: Evaluation result.
        """
        with self._lock:
            return capture_evaluation(code, self.namespace)

    def soft_reset(self) -> ClearReport:
        """Delete every plain user binding.

        :returns: Cleared and uncleared names.
        """
        with self._lock:
            report: ClearReport = clear_all(self.namespace, self.symbol_filter)
        logger.info("Soft reset cleared %d binding(s); %d left in place", report.count, len(report.uncleared))
        return report

    def activate(self, target: str) -> str:
        """Apply an environment to this process's import path.

        :param target: ``"."``, a path, or ``"@name"``.
        :returns: Resolved environment path.
        """
        path: str = resolve_environment_target(target, self.settings.shared_environments_path)
        with self._lock:
            self._activator.activate(path)
        return path

    def binding_names(self) -> list[str]:
        """List the user binding names that a soft reset would consider.

        :returns: Sorted binding names.
        """
        with self._lock:
            bindings = list_user_bindings(self.namespace, self.symbol_filter)
        return [binding.name for binding in bindings if binding.is_protected is False]

    def loaded_module_count(self) -> int:
        """Return the number of loaded modules.

        :returns: Size of ``sys.modules``.
        """
        return len(sys.modules)
