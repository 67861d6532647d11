"""Message shapes and validation for the controller/worker channel.

Every request is a dict ``{"request_id": int, "action": str, ...}`` sent on the
controller-to-worker pipe. Every response is a dict ``{"request_id": int,
"status": "ok" | "error", "payload": dict}`` sent on the worker-to-controller
pipe. Request id ``0`` is reserved for the worker's ready handshake.

Returned values never cross the boundary as objects. The worker ships the
``repr()`` text and the type name only, so the boundary is lossy on purpose.
"""

from dataclasses import dataclass
from multiprocessing.connection import Connection

from agent_eval.errors import ProtocolError

READY_REQUEST_ID: int = 0
ACTION_EVALUATE: str = "evaluate"
ACTION_ACTIVATE: str = "activate"
ACTION_INFO: str = "info"
ACTION_SHUTDOWN: str = "shutdown"
STATUS_OK: str = "ok"
STATUS_ERROR: str = "error"


@dataclass(frozen=True)
class EvaluationRequest:
    """One code unit addressed to the worker."""

    code: str
    request_id: int


@dataclass(frozen=True)
class EvaluationFailure:
    """Error raised by submitted code, captured as data."""

    kind: str
    message: str
    trace: str


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one code unit.

    ``value`` is ``None`` when the code produced no value. ``error`` and
    ``value`` are mutually exclusive.
    """

    value: str | None
    value_type: str | None
    stdout: str
    stderr: str
    error: EvaluationFailure | None
    duration_seconds: float

    def __post_init__(self) -> None:
        """Reject results that carry both a value and an error.

        :raises ValueError: If both ``error`` and ``value`` are set.
        """
        if self.error is not None and self.value is not None:
            raise ValueError("EvaluationResult cannot carry both a value and an error")

    @property
    def has_value(self) -> bool:
        """Report whether a value representation is present.

        :returns: ``True`` when ``value`` is set.
        """
        return self.value is not None


def send_ok(connection: Connection, request_id: int, payload: dict[str, object]) -> None:
    """Send a success response, ignoring a controller that already went away.

    :param connection: Worker-to-controller pipe end.
    :param request_id: Request identifier.
    :param payload: Response payload.
    """
    message: dict[str, object] = {
        "request_id": request_id,
        "status": STATUS_OK,
        "payload": payload,
    }
    try:
        connection.send(message)
    except (BrokenPipeError, EOFError, OSError):
        return


def send_error(connection: Connection, request_id: int, error_type: str, error_message: str, stacktrace: str) -> None:
    """Send an error response, ignoring a controller that already went away.

    :param connection: Worker-to-controller pipe end.
    :param request_id: Request identifier.
    :param error_type: Name of the exception class.
    :param error_message: Exception message.
    :param stacktrace: Formatted stacktrace.
    """
    message: dict[str, object] = {
        "request_id": request_id,
        "status": STATUS_ERROR,
        "payload": {
            "error_type": error_type,
            "error_message": error_message,
            "stacktrace": stacktrace,
        },
    }
    try:
        connection.send(message)
    except (BrokenPipeError, EOFError, OSError):
        return


def require_request_id(message: dict[str, object]) -> int:
    """Extract and validate the request identifier.

    :param message: Request or response message.
    :returns: Request identifier.
    :raises ProtocolError: If ``request_id`` is missing or invalid.
    """
    request_id: object = message.get("request_id")
    if isinstance(request_id, int) is False or isinstance(request_id, bool) is True:
        raise ProtocolError("request_id must be an integer")
    return request_id


def require_action(message: dict[str, object]) -> str:
    """Extract and validate the action string.

    :param message: Request message.
    :returns: Action string.
    :raises ProtocolError: If ``action`` is missing or invalid.
    """
    action: object = message.get("action")
    if isinstance(action, str) is False:
        raise ProtocolError("action must be a string")
    return action


def require_str_field(message: dict[str, object], key: str) -> str:
    """Extract and validate a string field.

    :param message: Message dictionary.
    :param key: Field name.
    :returns: String field value.
    :raises ProtocolError: If the field is missing or invalid.
    """
    value: object = message.get(key)
    if isinstance(value, str) is False:
        raise ProtocolError(f"{key} must be a string")
    return value


def optional_str_field(message: dict[str, object], key: str) -> str | None:
    """Extract a string field that may be absent or ``None``.

    :param message: Message dictionary.
    :param key: Field name.
    :returns: String value or ``None``.
    :raises ProtocolError: If the field is present with a non-string value.
    """
    value: object = message.get(key)
    if value is None:
        return None
    if isinstance(value, str) is False:
        raise ProtocolError(f"{key} must be a string or null")
    return value


def encode_result(result: EvaluationResult) -> dict[str, object]:
    """Convert an evaluation result into one response payload.

    :param result: Worker-side evaluation result.
    :returns: Plain dictionary payload.
    """
    error_payload: dict[str, str] | None = None
    if result.error is not None:
        error_payload = {
            "kind": result.error.kind,
            "message": result.error.message,
            "trace": result.error.trace,
        }
    return {
        "value": result.value,
        "value_type": result.value_type,
        "stdout": result.stdout,
        "stderr": result.stderr,
        "error": error_payload,
        "duration_seconds": result.duration_seconds,
    }


def decode_result(payload: dict[str, object]) -> EvaluationResult:
    """Rebuild an evaluation result from a response payload.

    :param payload: Payload from an ``ok`` evaluate response.
    :returns: Evaluation result.
    :raises ProtocolError: If the payload shape is invalid.
    """
    stdout: str = require_str_field(payload, "stdout")
    stderr: str = require_str_field(payload, "stderr")
    value: str | None = optional_str_field(payload, "value")
    value_type: str | None = optional_str_field(payload, "value_type")

    duration_obj: object = payload.get("duration_seconds", 0.0)
    if isinstance(duration_obj, (int, float)) is False:
        raise ProtocolError("duration_seconds must be a number")
    duration_seconds: float = float(duration_obj)

    error: EvaluationFailure | None = None
    error_obj: object = payload.get("error")
    if error_obj is not None:
        if isinstance(error_obj, dict) is False:
            raise ProtocolError("error must be a dict or null")
        error = EvaluationFailure(
            kind=require_str_field(error_obj, "kind"),
            message=require_str_field(error_obj, "message"),
            trace=require_str_field(error_obj, "trace"),
        )
        if value is not None:
            raise ProtocolError("Evaluate payload carries both a value and an error")

    return EvaluationResult(
        value=value,
        value_type=value_type,
        stdout=stdout,
        stderr=stderr,
        error=error,
        duration_seconds=duration_seconds,
    )
