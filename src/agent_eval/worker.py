"""Worker-side message loop for agent-eval."""

import os
import sys
import traceback
from multiprocessing.connection import Connection

from agent_eval.capture import capture_evaluation
from agent_eval.capture import new_namespace
from agent_eval.environment import EnvironmentActivator
from agent_eval.errors import ProtocolError
from agent_eval.protocol import ACTION_ACTIVATE
from agent_eval.protocol import ACTION_EVALUATE
from agent_eval.protocol import ACTION_INFO
from agent_eval.protocol import ACTION_SHUTDOWN
from agent_eval.protocol import READY_REQUEST_ID
from agent_eval.protocol import encode_result
from agent_eval.protocol import require_action
from agent_eval.protocol import require_request_id
from agent_eval.protocol import require_str_field
from agent_eval.protocol import send_error
from agent_eval.protocol import send_ok
from agent_eval.symbols import SymbolFilter
from agent_eval.symbols import list_user_bindings


def _detach_standard_streams() -> None:
    """Point file descriptors 0 and 1 at the null device.

    The controller may use its own stdout as a transport, and the worker
    inherits that descriptor. Output of submitted code is captured at the
    ``sys.stdout`` level, so nothing the worker writes below that level may
    reach the controller's stream.
    """
    devnull_fd: int = os.open(os.devnull, os.O_RDWR)
    try:
        os.dup2(devnull_fd, 0)
        os.dup2(devnull_fd, 1)
    finally:
        os.close(devnull_fd)


class WorkerRuntime:
    """Own the worker's namespace, activation state and request dispatch."""

    _requests: Connection
    _responses: Connection
    _namespace: dict[str, object]
    _activator: EnvironmentActivator
    _symbol_filter: SymbolFilter

    def __init__(self, requests: Connection, responses: Connection, symbol_filter: SymbolFilter) -> None:
        """Initialize worker runtime state.

        :param requests: Controller-to-worker pipe end (receive only).
        :param responses: Worker-to-controller pipe end (send only).
        :param symbol_filter: Filter used to report user bindings.
        """
        self._requests = requests
        self._responses = responses
        self._namespace = new_namespace()
        self._activator = EnvironmentActivator()
        self._symbol_filter = symbol_filter

    def run(self, environment_path: str | None = None) -> None:
        """Apply the startup environment, report readiness, then serve requests.

        :param environment_path: Optional environment applied before ready.
        """
        try:
            if environment_path is not None:
                self._activator.activate(environment_path)
            send_ok(
                self._responses,
                READY_REQUEST_ID,
                {
                    "ready": True,
                    "pid": os.getpid(),
                    "python_version": sys.version,
                    "environment_path": self._activator.active_path,
                },
            )
        except Exception as exc:
            send_error(
                self._responses,
                READY_REQUEST_ID,
                type(exc).__name__,
                str(exc),
                traceback.format_exc(),
            )
            self._close()
            return

        should_exit: bool = False
        while should_exit is False:
            try:
                incoming: object = self._requests.recv()
            except (EOFError, OSError):
                break

            if isinstance(incoming, dict) is False:
                send_error(
                    self._responses,
                    -1,
                    "ProtocolError",
                    "Incoming message must be a dict",
                    "",
                )
                continue

            should_exit = self._handle_incoming_request(incoming)

        self._close()

    def _close(self) -> None:
        """Close both pipe ends."""
        self._namespace.clear()
        for connection in (self._requests, self._responses):
            try:
                connection.close()
            except OSError:
                pass

    def _handle_incoming_request(self, request_message: dict[str, object]) -> bool:
        """Handle one request and emit its correlated response.

        :param request_message: Request dictionary.
        :returns: ``True`` when loop shutdown is requested.
        """
        try:
            request_id: int = require_request_id(request_message)
            payload: dict[str, object] = self._execute_request(request_message)
            send_ok(self._responses, request_id, payload)
            shutdown_obj: object = payload.get("shutdown")
            return shutdown_obj is True
        except Exception as exc:
            request_id_fallback: int = -1
            request_id_obj: object = request_message.get("request_id")
            if isinstance(request_id_obj, int) is True:
                request_id_fallback = request_id_obj
            send_error(
                self._responses,
                request_id_fallback,
                type(exc).__name__,
                str(exc),
                traceback.format_exc(),
            )
            return False

    def _execute_request(self, message: dict[str, object]) -> dict[str, object]:
        """Dispatch one request by action.

        :param message: Request dictionary.
        :returns: Response payload.
        :raises ProtocolError: For unknown actions.
        """
        action: str = require_action(message)

        if action == ACTION_EVALUATE:
            code: str = require_str_field(message, "code")
            return encode_result(capture_evaluation(code, self._namespace))

        if action == ACTION_ACTIVATE:
            path: str = require_str_field(message, "path")
            added_entries: list[str] = self._activator.activate(path)
            return {
                "environment_path": path,
                "added_entries": added_entries,
            }

        if action == ACTION_INFO:
            binding_names: list[str] = [
                binding.name
                for binding in list_user_bindings(self._namespace, self._symbol_filter)
                if binding.is_protected is False
            ]
            return {
                "pid": os.getpid(),
                "python_version": sys.version.split()[0],
                "environment_path": self._activator.active_path,
                "binding_names": binding_names,
                "loaded_module_count": len(sys.modules),
            }

        if action == ACTION_SHUTDOWN:
            return {"shutdown": True}

        raise ProtocolError(f"Unsupported action: {action}")


def worker_entry(
    requests: Connection,
    responses: Connection,
    environment_path: str | None,
    denied_names: list[str],
    internal_prefixes: list[str],
) -> None:
    """Run the worker message loop.

    :param requests: Controller-to-worker pipe end.
    :param responses: Worker-to-controller pipe end.
    :param environment_path: Optional environment applied before ready.
    :param denied_names: Names hidden from binding listings.
    :param internal_prefixes: Reserved name prefixes.
    """
    _detach_standard_streams()
    runtime: WorkerRuntime = WorkerRuntime(
        requests,
        responses,
        SymbolFilter(denied_names, internal_prefixes),
    )
    runtime.run(environment_path)
