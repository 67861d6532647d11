"""Tests for MCP tool registration and the command line."""

import asyncio
import time

from mcp.server.fastmcp import FastMCP

from agent_eval.config import AgentEvalSettings
from agent_eval.process import WorkerProcess
from agent_eval.server import _parse_args
from agent_eval.server import build_server
from agent_eval.server import create_service
from agent_eval.service import EvalService
from agent_eval.service import InProcessEvalService


def _tool_names(server: FastMCP) -> list[str]:
    tools = asyncio.run(server.list_tools())
    return sorted(tool.name for tool in tools)


def _tool_text(result: object) -> str:
    """Join the text blocks of a ``call_tool`` result.

    Newer FastMCP releases return ``(content, structured)`` instead of the
    bare content list.
    """
    content: object = result[0] if isinstance(result, tuple) is True else result
    return "".join(getattr(block, "text", "") for block in content)


def test_subprocess_server_registers_tools(settings: AgentEvalSettings) -> None:
    """The subprocess server exposes evaluation, reset, info, activation and packages."""
    service: EvalService | InProcessEvalService = create_service(settings)
    try:
        assert isinstance(service, EvalService) is True
        assert _tool_names(build_server(service)) == [
            "python_activate",
            "python_eval",
            "python_info",
            "python_packages",
            "python_reset",
        ]
        assert service.session.worker is None
    finally:
        service.close()


def test_eval_tool_accepts_timeout(settings: AgentEvalSettings) -> None:
    """The subprocess eval tool declares and forwards an optional timeout."""
    service: EvalService = EvalService(settings)
    server: FastMCP = build_server(service)

    async def scenario() -> tuple[dict[str, object], str, str]:
        tools = await server.list_tools()
        eval_tool = [tool for tool in tools if tool.name == "python_eval"][0]
        timed_out: object = await server.call_tool(
            "python_eval",
            {"code": "import time\ntime.sleep(30)", "timeout": 0.5},
        )
        after: object = await server.call_tool("python_eval", {"code": "6 * 7"})
        return eval_tool.inputSchema, _tool_text(timed_out), _tool_text(after)

    try:
        schema, timed_out_text, after_text = asyncio.run(scenario())

        assert "timeout" in schema["properties"]
        assert schema["required"] == ["code"]
        assert timed_out_text.startswith("Error: Worker did not respond within 0.5s")
        assert after_text == "Result: 42"
    finally:
        service.close()


def test_reset_is_served_while_evaluation_hangs(settings: AgentEvalSettings) -> None:
    """A hung evaluation does not keep the reset tool from running."""
    service: EvalService = EvalService(settings)
    server: FastMCP = build_server(service)

    async def scenario() -> tuple[float, str, str]:
        started: float = time.monotonic()
        hung: asyncio.Task[object] = asyncio.create_task(
            server.call_tool("python_eval", {"code": "import time\ntime.sleep(60)\n'finished'"}),
        )
        deadline: float = time.monotonic() + 10.0
        while worker.is_busy is False and time.monotonic() < deadline:
            await asyncio.sleep(0.05)

        reset: object = await server.call_tool("python_reset", {})
        reset_elapsed: float = time.monotonic() - started
        hung_result: object = await asyncio.wait_for(hung, timeout=30.0)
        return reset_elapsed, _tool_text(reset), _tool_text(hung_result)

    try:
        assert service.evaluate("1") == "Result: 1"
        worker: WorkerProcess | None = service.session.worker
        assert worker is not None
        reset_elapsed, reset_text, hung_text = asyncio.run(scenario())

        assert reset_elapsed < 30.0
        assert "generation 1" in reset_text
        assert hung_text.startswith("Error: lost contact with the worker")
        assert service.evaluate("2 + 2") == "Result: 4"
    finally:
        service.close()


def test_inprocess_server_uses_soft_reset(settings: AgentEvalSettings) -> None:
    """In-process mode registers the soft reset under the same tool name."""
    configured: AgentEvalSettings = settings.model_copy(update={"mode": "inprocess"})
    service: EvalService | InProcessEvalService = create_service(configured)
    server: FastMCP = build_server(service)
    tools = asyncio.run(server.list_tools())
    reset_tool = [tool for tool in tools if tool.name == "python_reset"][0]
    eval_tool = [tool for tool in tools if tool.name == "python_eval"][0]

    assert isinstance(service, InProcessEvalService) is True
    assert "Soft reset" in (reset_tool.description or "")
    assert "timeout" not in eval_tool.inputSchema["properties"]


def test_parse_args() -> None:
    """Repeated ``--config`` flags accumulate."""
    args = _parse_args(["--config", "a.yaml", "--config", "b.yaml", "--mode", "inprocess", "--log-level", "debug"])

    assert args.config == ["a.yaml", "b.yaml"]
    assert args.mode == "inprocess"
    assert args.log_level == "debug"
    assert args.project is None
