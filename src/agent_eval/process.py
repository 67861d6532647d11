"""Controller-side handle for one worker process."""

import logging
import multiprocessing
import threading
import time
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess

from agent_eval.config import AgentEvalSettings
from agent_eval.errors import ActivationError
from agent_eval.errors import EvaluationTimeoutError
from agent_eval.errors import ProtocolError
from agent_eval.errors import SpawnError
from agent_eval.errors import WorkerBusyError
from agent_eval.errors import WorkerDeadError
from agent_eval.protocol import ACTION_EVALUATE
from agent_eval.protocol import ACTION_SHUTDOWN
from agent_eval.protocol import READY_REQUEST_ID
from agent_eval.protocol import STATUS_ERROR
from agent_eval.protocol import STATUS_OK
from agent_eval.protocol import EvaluationRequest
from agent_eval.protocol import EvaluationResult
from agent_eval.protocol import decode_result
from agent_eval.protocol import require_request_id
from agent_eval.worker import worker_entry

logger = logging.getLogger(__name__)


def _close_quietly(connection: Connection) -> None:
    """Close a pipe end, ignoring one that is already closed.

    :param connection: Pipe end.
    """
    try:
        connection.close()
    except OSError:
        pass


def _error_fields(payload: dict[str, object]) -> tuple[str, str, str]:
    """Extract the error type, message and trace from an error payload.

    :param payload: Error payload dictionary.
    :returns: Tuple of ``(error_type, error_message, stacktrace)``.
    """
    error_type_obj: object = payload.get("error_type", "Exception")
    error_message_obj: object = payload.get("error_message", "")
    stacktrace_obj: object = payload.get("stacktrace", "")

    error_type: str = "Exception"
    if isinstance(error_type_obj, str) is True:
        error_type = error_type_obj
    error_message: str = ""
    if isinstance(error_message_obj, str) is True:
        error_message = error_message_obj
    stacktrace: str = ""
    if isinstance(stacktrace_obj, str) is True:
        stacktrace = stacktrace_obj
    return error_type, error_message, stacktrace


class WorkerProcess:
    """Own one live worker process and its two one-way pipes.

    At most one request is in flight at a time; ``request`` blocks while
    another caller holds the channel. ``terminate`` never waits for the
    channel, so a worker stuck in an evaluation can always be torn down.
    """

    generation: int
    environment_path: str | None
    created_at: float
    pid: int
    python_version: str
    _process: BaseProcess
    _requests: Connection
    _responses: Connection
    _channel_lock: threading.Lock
    _state_lock: threading.Lock
    _next_request_id: int
    _is_terminated: bool
    _is_poisoned: bool
    _shutdown_grace_seconds: float

    def __init__(
        self,
        process: BaseProcess,
        requests: Connection,
        responses: Connection,
        generation: int,
        environment_path: str | None,
        shutdown_grace_seconds: float,
    ) -> None:
        """Wrap an already started worker process.

        Use :meth:`spawn` instead of calling this directly.

        :param process: Started child process.
        :param requests: Controller-to-worker pipe end (send only).
        :param responses: Worker-to-controller pipe end (receive only).
        :param generation: Session generation this worker belongs to.
        :param environment_path: Environment applied at spawn time.
        :param shutdown_grace_seconds: Wait before escalating termination.
        """
        self.generation = generation
        self.environment_path = environment_path
        self.created_at = time.time()
        self.pid = -1 if process.pid is None else process.pid
        self.python_version = ""
        self._process = process
        self._requests = requests
        self._responses = responses
        self._channel_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._next_request_id = READY_REQUEST_ID + 1
        self._is_terminated = False
        self._is_poisoned = False
        self._shutdown_grace_seconds = shutdown_grace_seconds

    @classmethod
    def spawn(
        cls,
        generation: int,
        environment_path: str | None,
        settings: AgentEvalSettings,
    ) -> "WorkerProcess":
        """Start a worker and wait for its ready handshake.

        :param generation: Session generation for the new worker.
        :param environment_path: Optional environment applied before ready.
        :param settings: Active settings.
        :returns: Ready worker handle.
        :raises SpawnError: If the process fails to start, fails to activate
            the environment, or does not report ready in time.
        """
        context = multiprocessing.get_context("spawn")
        request_reader, request_writer = context.Pipe(duplex=False)
        response_reader, response_writer = context.Pipe(duplex=False)
        process: BaseProcess = context.Process(
            target=worker_entry,
            args=(
                request_reader,
                response_writer,
                environment_path,
                list(settings.symbols.denied_names),
                list(settings.symbols.internal_prefixes),
            ),
            name=f"agent-eval-worker-{generation}",
        )
        # Submitted code may start its own child processes, which daemonic
        # processes cannot do; Session.close reaps the worker at exit instead.
        process.daemon = False
        try:
            process.start()
        except OSError as exc:
            _close_quietly(request_writer)
            _close_quietly(response_reader)
            raise SpawnError(f"Failed to start worker process: {exc}") from exc
        finally:
            _close_quietly(request_reader)
            _close_quietly(response_writer)

        worker: WorkerProcess = cls(
            process,
            request_writer,
            response_reader,
            generation,
            environment_path,
            settings.worker.shutdown_grace_seconds,
        )
        try:
            worker._await_ready(settings.worker.spawn_timeout_seconds)
        except SpawnError:
            worker.terminate()
            raise
        logger.info(
            "Spawned worker pid=%s generation=%d environment=%s",
            worker.pid,
            generation,
            environment_path,
        )
        return worker

    def _await_ready(self, timeout_seconds: float) -> None:
        """Wait for the worker's ready message.

        :param timeout_seconds: Maximum wait.
        :raises SpawnError: If the worker fails or stays silent.
        """
        try:
            has_message: bool = self._responses.poll(timeout_seconds)
            if has_message is False:
                raise SpawnError(f"Worker did not report ready within {timeout_seconds:g}s")
            incoming: object = self._responses.recv()
        except (EOFError, BrokenPipeError, OSError) as exc:
            raise SpawnError(f"Worker exited before reporting ready (exit code {self._process.exitcode})") from exc

        if isinstance(incoming, dict) is False:
            raise SpawnError("Startup message must be a dict")
        status: object = incoming.get("status")
        payload: object = incoming.get("payload")
        if isinstance(payload, dict) is False:
            raise SpawnError("Startup payload must be a dict")
        if status == STATUS_ERROR:
            error_type, error_message, _stacktrace = _error_fields(payload)
            raise SpawnError(f"Worker failed during startup: {error_type}: {error_message}")
        if status != STATUS_OK or payload.get("ready") is not True:
            raise SpawnError("Startup payload missing ready marker")

        pid_obj: object = payload.get("pid")
        if isinstance(pid_obj, int) is True:
            self.pid = pid_obj
        version_obj: object = payload.get("python_version")
        if isinstance(version_obj, str) is True:
            self.python_version = version_obj

    @property
    def is_alive(self) -> bool:
        """Report whether the worker can accept requests.

        :returns: ``True`` while the process runs and the handle is usable.
        """
        with self._state_lock:
            if self._is_terminated is True or self._is_poisoned is True:
                return False
        return self._process.is_alive()

    @property
    def is_busy(self) -> bool:
        """Report whether a request is currently in flight.

        :returns: ``True`` while another caller holds the channel.
        """
        return self._channel_lock.locked()

    @property
    def exitcode(self) -> int | None:
        """Return the process exit code once it has exited.

        :returns: Exit code or ``None`` while running.
        """
        return self._process.exitcode

    def request(self, action: str, payload: dict[str, object], timeout: float | None = None) -> dict[str, object]:
        """Send one request and wait for its response payload.

        Blocks while another request is in flight.

        :param action: Action name.
        :param payload: Extra request fields.
        :param timeout: Optional response timeout in seconds.
        :returns: Response payload.
        """
        with self._channel_lock:
            return self._exchange(self._allocate_request_id(), action, payload, timeout)

    def evaluate(self, code: str, timeout: float | None = None) -> EvaluationResult:
        """Evaluate one code unit in the worker's shared namespace.

        Blocks while another request is in flight, so output of concurrent
        callers is never interleaved.

        :param code: Source text.
        :param timeout: Optional response timeout in seconds.
        :returns: Evaluation result; failures of the code itself are data.
        """
        with self._channel_lock:
            request: EvaluationRequest = EvaluationRequest(code=code, request_id=self._allocate_request_id())
            payload: dict[str, object] = self._exchange(
                request.request_id,
                ACTION_EVALUATE,
                {"code": request.code},
                timeout,
            )
        return decode_result(payload)

    def try_request(self, action: str, payload: dict[str, object], timeout: float | None = None) -> dict[str, object]:
        """Send one request unless another one is in flight.

        :param action: Action name.
        :param payload: Extra request fields.
        :param timeout: Optional response timeout in seconds.
        :returns: Response payload.
        :raises WorkerBusyError: If the channel is in use.
        """
        acquired: bool = self._channel_lock.acquire(blocking=False)
        if acquired is False:
            raise WorkerBusyError("An evaluation is in progress on this worker")
        try:
            return self._exchange(self._allocate_request_id(), action, payload, timeout)
        finally:
            self._channel_lock.release()

    def _allocate_request_id(self) -> int:
        """Return the next request id. Caller must hold the channel lock.

        :returns: Request identifier.
        """
        request_id: int = self._next_request_id
        self._next_request_id += 1
        return request_id

    def _exchange(
        self,
        request_id: int,
        action: str,
        payload: dict[str, object],
        timeout: float | None,
    ) -> dict[str, object]:
        """Send one request and read its correlated response.

        Caller must hold the channel lock.

        :param request_id: Identifier for this request.
        :param action: Action name.
        :param payload: Extra request fields.
        :param timeout: Optional response timeout in seconds.
        :returns: Response payload.
        :raises WorkerDeadError: If the worker is gone or unusable.
        """
        with self._state_lock:
            if self._is_terminated is True:
                raise WorkerDeadError(f"Worker pid={self.pid} has been terminated")
            if self._is_poisoned is True:
                raise WorkerDeadError(f"Worker pid={self.pid} stopped responding and must be replaced")

        request: dict[str, object] = {
            "request_id": request_id,
            "action": action,
        }
        request.update(payload)

        try:
            self._requests.send(request)
        except (BrokenPipeError, EOFError, OSError) as exc:
            raise WorkerDeadError(f"Failed to send request to worker pid={self.pid}") from exc

        return self._wait_for_response(action, request_id, timeout)

    def _wait_for_response(self, action: str, expected_request_id: int, timeout: float | None) -> dict[str, object]:
        """Wait for the response to ``expected_request_id``.

        :param action: Action the request carried.
        :param expected_request_id: Request id this side is waiting for.
        :param timeout: Optional timeout in seconds.
        :returns: Response payload.
        :raises EvaluationTimeoutError: If the timeout expires.
        :raises WorkerDeadError: If the pipe closes.
        :raises ProtocolError: If the response shape is invalid.
        :raises ActivationError: If the worker rejected an activation.
        """
        try:
            if timeout is not None:
                has_message: bool = self._responses.poll(timeout)
                if has_message is False:
                    self._poison()
                    raise EvaluationTimeoutError(timeout)
            incoming: object = self._responses.recv()
        except (EOFError, BrokenPipeError, OSError) as exc:
            raise WorkerDeadError(
                f"Failed to receive response from worker pid={self.pid} (exit code {self._process.exitcode})"
            ) from exc

        if isinstance(incoming, dict) is False:
            self._poison()
            raise ProtocolError("Worker response must be a dict")

        message: dict[str, object] = incoming
        response_request_id: int = require_request_id(message)
        if response_request_id != expected_request_id:
            self._poison()
            raise ProtocolError(
                f"Unexpected response request_id {response_request_id}; expected {expected_request_id}"
            )

        status: object = message.get("status")
        payload_obj: object = message.get("payload")
        if isinstance(payload_obj, dict) is False:
            raise ProtocolError("Worker response payload must be a dict")

        if status == STATUS_OK:
            return payload_obj
        if status != STATUS_ERROR:
            raise ProtocolError(f"Unknown worker response status: {status!r}")

        error_type, error_message, stacktrace = _error_fields(payload_obj)
        if error_type == "ActivationError":
            raise ActivationError(error_message)
        logger.warning("Worker rejected %s request: %s: %s\n%s", action, error_type, error_message, stacktrace)
        raise ProtocolError(f"Worker rejected {action} request: {error_type}: {error_message}")

    def _poison(self) -> None:
        """Mark the handle unusable after a timeout or desynchronized channel."""
        with self._state_lock:
            self._is_poisoned = True

    def terminate(self) -> None:
        """Stop the worker process; calling it again is a no-op.

        A shutdown message is sent when the channel is idle. A worker that does
        not exit within the grace period is terminated, then killed.
        """
        with self._state_lock:
            if self._is_terminated is True:
                return
            self._is_terminated = True

        process: BaseProcess = self._process
        channel_acquired: bool = self._channel_lock.acquire(blocking=False)
        if channel_acquired is True:
            try:
                self._requests.send(
                    {
                        "request_id": self._next_request_id,
                        "action": ACTION_SHUTDOWN,
                    }
                )
                self._next_request_id += 1
            except (BrokenPipeError, EOFError, OSError):
                pass
            finally:
                self._channel_lock.release()
            process.join(timeout=self._shutdown_grace_seconds)

        if process.is_alive() is True:
            logger.warning("Worker pid=%s did not exit; sending SIGTERM", self.pid)
            process.terminate()
            process.join(timeout=self._shutdown_grace_seconds)

        if process.is_alive() is True:
            logger.warning("Worker pid=%s ignored SIGTERM; killing", self.pid)
            process.kill()
            process.join()

        _close_quietly(self._requests)
        _close_quietly(self._responses)
        logger.info("Terminated worker pid=%s generation=%d", self.pid, self.generation)
