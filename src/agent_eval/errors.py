"""Custom error types for agent-eval."""


class AgentEvalError(Exception):
    """Base class for all agent-eval errors."""


class SpawnError(AgentEvalError):
    """Raised when a worker process fails to start or never reports ready."""


class ChannelError(AgentEvalError):
    """Raised when the controller/worker channel cannot deliver a response."""


class WorkerDeadError(ChannelError):
    """Raised when a request targets a worker whose process or pipes are gone."""


class ProtocolError(ChannelError):
    """Raised for malformed or mis-correlated messages on the channel."""


class EvaluationTimeoutError(ChannelError):
    """Raised when a response does not arrive before the caller's timeout."""

    timeout_seconds: float

    def __init__(self, timeout_seconds: float) -> None:
        """Initialize a timeout error.

        :param timeout_seconds: Timeout that expired.
        """
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Worker did not respond within {timeout_seconds:g}s; "
            + "it is treated as hung and will be replaced on the next call"
        )


class StaleGenerationError(ChannelError):
    """Raised when a worker handle from an earlier generation is used."""

    handle_generation: int
    current_generation: int

    def __init__(self, handle_generation: int, current_generation: int) -> None:
        """Initialize a stale-generation error.

        :param handle_generation: Generation the caller's handle belongs to.
        :param current_generation: Generation currently active in the session.
        """
        self.handle_generation = handle_generation
        self.current_generation = current_generation
        super().__init__(
            f"Worker handle belongs to generation {handle_generation}; "
            + f"session is at generation {current_generation}"
        )


class WorkerBusyError(ChannelError):
    """Raised when a non-blocking request finds an evaluation in flight."""


class ActivationError(AgentEvalError):
    """Raised when an environment cannot be resolved or applied."""


class PackageActionError(ActivationError):
    """Raised when the dependency manager cannot be invoked."""


class SessionClosedError(AgentEvalError):
    """Raised when an operation targets a session that has been closed."""
