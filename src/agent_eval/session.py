"""Session state shared by the lifecycle operations."""

import atexit
import logging
import threading

from agent_eval.config import AgentEvalSettings
from agent_eval.process import WorkerProcess

logger = logging.getLogger(__name__)


class Session:
    """Hold the active worker, the stored environment path and the generation.

    The lifecycle functions in :mod:`agent_eval.lifecycle` take a session and
    mutate it while holding ``lock``. The environment path survives hard
    resets; only activation changes it.
    """

    settings: AgentEvalSettings
    lock: threading.RLock
    worker: WorkerProcess | None
    environment_path: str | None
    generation: int
    needs_reset: bool
    _is_closed: bool

    def __init__(self, settings: AgentEvalSettings, environment_path: str | None = None) -> None:
        """Initialize a session with no worker.

        :param settings: Active settings.
        :param environment_path: Optional resolved environment directory.
        """
        self.settings = settings
        self.lock = threading.RLock()
        self.worker = None
        self.environment_path = environment_path
        self.generation = 0
        self.needs_reset = False
        self._is_closed = False
        atexit.register(self.close)

    @property
    def is_closed(self) -> bool:
        """Report whether this session has been closed.

        :returns: ``True`` when the session is closed.
        """
        with self.lock:
            return self._is_closed

    def close(self) -> None:
        """Terminate any live worker and refuse further use."""
        with self.lock:
            if self._is_closed is True:
                return
            self._is_closed = True
            worker: WorkerProcess | None = self.worker
            self.worker = None

        if worker is not None:
            worker.terminate()
        atexit.unregister(self.close)
        logger.info("Session closed at generation %d", self.generation)
