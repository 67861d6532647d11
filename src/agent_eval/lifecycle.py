"""Worker lifecycle operations over a :class:`~agent_eval.session.Session`.

``ensure_worker``, ``hard_reset`` and the commit step of ``activate`` run
under ``session.lock``, so a reset racing a lazy spawn can never leave two
live workers or a session pointing at a terminated one. Evaluation runs
outside the session lock; a hard reset can therefore always kill a worker
that is stuck evaluating.
"""

import logging
from dataclasses import dataclass

from agent_eval.environment import require_directory
from agent_eval.environment import resolve_environment_target
from agent_eval.errors import ActivationError
from agent_eval.errors import ChannelError
from agent_eval.errors import ProtocolError
from agent_eval.errors import SessionClosedError
from agent_eval.errors import SpawnError
from agent_eval.errors import StaleGenerationError
from agent_eval.errors import WorkerBusyError
from agent_eval.errors import WorkerDeadError
from agent_eval.process import WorkerProcess
from agent_eval.protocol import ACTION_ACTIVATE
from agent_eval.protocol import ACTION_INFO
from agent_eval.protocol import EvaluationResult
from agent_eval.session import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionInfo:
    """Read-only snapshot of the active worker."""

    python_version: str
    environment_path: str | None
    binding_names: list[str]
    loaded_module_count: int
    worker_pid: int
    generation: int


def _require_open(session: Session) -> None:
    """Fail when ``session`` has been closed.

    :param session: Session to check.
    :raises SessionClosedError: If the session is closed.
    """
    if session.is_closed is True:
        raise SessionClosedError("Session is closed")


def _spawn(session: Session) -> WorkerProcess:
    """Spawn a worker for the session's current generation and environment.

    :param session: Session whose settings and environment apply.
    :returns: Ready worker.
    :raises SpawnError: If every attempt fails.
    """
    attempts: int = session.settings.worker.spawn_attempts
    last_error: SpawnError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return WorkerProcess.spawn(session.generation, session.environment_path, session.settings)
        except SpawnError as exc:
            last_error = exc
            logger.warning("Worker spawn attempt %d/%d failed: %s", attempt, attempts, exc)
    if last_error is None:
        raise SpawnError("Worker spawn was not attempted")
    raise last_error


def ensure_worker(session: Session) -> WorkerProcess:
    """Return a live worker, spawning or replacing one when needed.

    A session flagged after a channel failure is hard reset first.

    :param session: Session to operate on.
    :returns: Live worker of the current generation.
    :raises SpawnError: If no worker could be started.
    """
    with session.lock:
        _require_open(session)
        if session.needs_reset is True:
            logger.warning("Replacing worker after a channel failure")
            hard_reset(session)

        worker: WorkerProcess | None = session.worker
        if worker is not None and worker.is_alive is True:
            return worker

        if worker is not None:
            logger.warning("Worker pid=%s is no longer alive (exit code %s); respawning", worker.pid, worker.exitcode)
            session.worker = None
            worker.terminate()

        replacement: WorkerProcess = _spawn(session)
        session.worker = replacement
        return replacement


def hard_reset(session: Session) -> int:
    """Destroy the active worker and start a fresh one.

    The stored environment path is reapplied to the replacement. Returns once
    the replacement has completed its ready handshake.

    :param session: Session to operate on.
    :returns: New generation number.
    :raises SpawnError: If the replacement could not be started.
    """
    with session.lock:
        _require_open(session)
        previous: WorkerProcess | None = session.worker
        session.worker = None
        if previous is not None:
            previous.terminate()

        session.generation += 1
        session.needs_reset = False
        logger.info("Hard reset to generation %d (environment=%s)", session.generation, session.environment_path)
        session.worker = _spawn(session)
        return session.generation


def _check_current(session: Session, worker: WorkerProcess) -> None:
    """Fail when ``worker`` is not the session's active worker any more.

    :param session: Session to check against.
    :param worker: Handle held by the caller.
    :raises StaleGenerationError: If a reset replaced the worker.
    :raises WorkerDeadError: If the worker was replaced without a reset.
    """
    with session.lock:
        if worker.generation != session.generation:
            raise StaleGenerationError(worker.generation, session.generation)
        if worker is not session.worker:
            raise WorkerDeadError(f"Worker pid={worker.pid} has been replaced")


def _mark_channel_failure(session: Session, worker: WorkerProcess, exc: ChannelError) -> None:
    """Flag the session for a hard reset after ``worker`` failed.

    :param session: Session that owns the worker.
    :param worker: Worker whose channel failed.
    :param exc: Failure observed.
    """
    with session.lock:
        if worker is session.worker:
            session.needs_reset = True
    logger.warning("Channel failure on worker pid=%s: %s", worker.pid, exc)


def evaluate_on(session: Session, worker: WorkerProcess, code: str, timeout: float | None = None) -> EvaluationResult:
    """Evaluate ``code`` on a worker handle the caller already holds.

    :param session: Session that owns the worker.
    :param worker: Worker handle obtained from :func:`ensure_worker`.
    :param code: Source text.
    :param timeout: Optional response timeout in seconds.
    :returns: Evaluation result.
    :raises ChannelError: If the handle is stale or the channel fails; the
        session is then replaced on its next use.
    """
    _check_current(session, worker)
    try:
        return worker.evaluate(code, timeout)
    except ChannelError as exc:
        _mark_channel_failure(session, worker, exc)
        raise


def evaluate(session: Session, code: str, timeout: float | None = None) -> EvaluationResult:
    """Evaluate ``code`` on the session's worker, spawning it lazily.

    :param session: Session to operate on.
    :param code: Source text.
    :param timeout: Optional response timeout; defaults to the configured one.
    :returns: Evaluation result.
    """
    if timeout is None:
        timeout = session.settings.worker.evaluation_timeout_seconds
    worker: WorkerProcess = ensure_worker(session)
    return evaluate_on(session, worker, code, timeout)


def activate(session: Session, target: str) -> str:
    """Select the environment used by the current and future workers.

    The activation is forwarded to a live worker only when no evaluation is
    in flight; a busy worker rejects it and nothing is committed. A worker
    whose channel fails during activation is flagged for replacement, and the
    replacement starts in the new environment. Activation never respawns.

    :param session: Session to operate on.
    :param target: ``"."``, a path, or ``"@name"``.
    :returns: Resolved environment path.
    :raises ActivationError: If the target is invalid, the worker rejects
        it, or the worker is busy.
    """
    path: str = resolve_environment_target(target, session.settings.shared_environments_path)
    require_directory(path)

    with session.lock:
        _require_open(session)
        worker: WorkerProcess | None = session.worker
        if worker is not None and worker.is_alive is True:
            try:
                worker.try_request(ACTION_ACTIVATE, {"path": path})
            except WorkerBusyError as exc:
                raise ActivationError("An evaluation is in progress; activation was not applied") from exc
            except ChannelError as exc:
                session.needs_reset = True
                logger.warning("Worker pid=%s failed during activation: %s", worker.pid, exc)

        previous: str | None = session.environment_path
        session.environment_path = path

    logger.info("Environment changed from %s to %s", previous, path)
    return path


def session_info(session: Session) -> SessionInfo:
    """Collect a snapshot of the worker's interpreter state.

    :param session: Session to operate on.
    :returns: Session information.
    :raises ProtocolError: If the worker's reply is malformed.
    """
    worker: WorkerProcess = ensure_worker(session)
    _check_current(session, worker)
    try:
        payload: dict[str, object] = worker.request(ACTION_INFO, {})
    except ChannelError as exc:
        _mark_channel_failure(session, worker, exc)
        raise

    python_version: object = payload.get("python_version")
    binding_names: object = payload.get("binding_names")
    loaded_module_count: object = payload.get("loaded_module_count")
    if isinstance(python_version, str) is False:
        raise ProtocolError("info payload missing python_version")
    if isinstance(binding_names, list) is False:
        raise ProtocolError("info payload missing binding_names")
    if isinstance(loaded_module_count, int) is False:
        raise ProtocolError("info payload missing loaded_module_count")

    return SessionInfo(
        python_version=python_version,
        environment_path=session.environment_path,
        binding_names=[str(name) for name in binding_names],
        loaded_module_count=loaded_module_count,
        worker_pid=worker.pid,
        generation=worker.generation,
    )


def shutdown(session: Session) -> None:
    """Terminate the worker and close the session.

    :param session: Session to close.
    """
    session.close()
