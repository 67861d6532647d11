"""Public package API for agent-eval."""

from agent_eval.config import AgentEvalSettings
from agent_eval.config import load_settings
from agent_eval.errors import ActivationError
from agent_eval.errors import AgentEvalError
from agent_eval.errors import ChannelError
from agent_eval.errors import EvaluationTimeoutError
from agent_eval.errors import PackageActionError
from agent_eval.errors import ProtocolError
from agent_eval.errors import SessionClosedError
from agent_eval.errors import SpawnError
from agent_eval.errors import StaleGenerationError
from agent_eval.errors import WorkerBusyError
from agent_eval.errors import WorkerDeadError
from agent_eval.formatting import format_result
from agent_eval.inprocess import InProcessSession
from agent_eval.lifecycle import activate
from agent_eval.lifecycle import ensure_worker
from agent_eval.lifecycle import evaluate
from agent_eval.lifecycle import hard_reset
from agent_eval.lifecycle import session_info
from agent_eval.protocol import EvaluationFailure
from agent_eval.protocol import EvaluationRequest
from agent_eval.protocol import EvaluationResult
from agent_eval.service import EvalService
from agent_eval.service import InProcessEvalService
from agent_eval.session import Session

__all__: list[str] = [
    "activate",
    "ensure_worker",
    "evaluate",
    "format_result",
    "hard_reset",
    "load_settings",
    "session_info",
    "AgentEvalSettings",
    "EvalService",
    "EvaluationFailure",
    "EvaluationRequest",
    "EvaluationResult",
    "InProcessEvalService",
    "InProcessSession",
    "Session",
    "ActivationError",
    "AgentEvalError",
    "ChannelError",
    "EvaluationTimeoutError",
    "PackageActionError",
    "ProtocolError",
    "SessionClosedError",
    "SpawnError",
    "StaleGenerationError",
    "WorkerBusyError",
    "WorkerDeadError",
]
