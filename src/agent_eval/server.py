"""MCP stdio server and command-line entry point."""

import argparse
import asyncio
import functools
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from agent_eval.config import AgentEvalSettings
from agent_eval.config import LoggingSettings
from agent_eval.config import load_settings
from agent_eval.service import EvalService
from agent_eval.service import InProcessEvalService

logger = logging.getLogger(__name__)

SERVER_NAME: str = "agent-eval"

EVAL_DESCRIPTION: str = """Evaluate Python code in a persistent Python session.

- Variables, functions, classes and imports persist across calls
- The value of a trailing expression is returned
- Printed output (stdout and stderr) is captured
- Errors are reported with their traceback
"""

EVAL_TIMEOUT_NOTE: str = """
timeout: optional seconds to wait for a response. When it expires the worker
is treated as hung and replaced on the next call, discarding all definitions.
"""

HARD_RESET_DESCRIPTION: str = """Restart the Python worker process.

Discards every variable, function, class and imported module. The active
environment is kept. Use this to redefine classes or to recover from a hung
evaluation.
"""

SOFT_RESET_DESCRIPTION: str = """Soft reset: delete user variables in the in-process namespace.

Class and module definitions are not removed. A full reset is only available
in subprocess mode.
"""

INFO_DESCRIPTION: str = """Describe the current session: Python version, active environment,
user variables, number of loaded modules and worker identity."""

ACTIVATE_DESCRIPTION: str = """Activate an environment directory for the session.

path: "." for the working directory, an absolute or relative path, or
"@name" for a shared environment.
"""

PACKAGES_DESCRIPTION: str = """Run a package action in the active environment.

action: add, rm, status, update or instantiate. add and rm require at least
one package name.
"""


async def _run_blocking(operation: Callable[..., str], *args: object) -> str:
    """Run a blocking service call on the default executor.

    Tool handlers run on the event loop; a worker stuck evaluating must not
    keep ``python_reset`` from being served.

    :param operation: Service method.
    :param args: Positional arguments for ``operation``.
    :returns: Operation text.
    """
    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(operation, *args))


def build_server(service: EvalService | InProcessEvalService) -> FastMCP:
    """Register the session operations as MCP tools.

    :param service: Operations backend.
    :returns: Configured server.
    """
    mcp: FastMCP = FastMCP(SERVER_NAME)

    if isinstance(service, EvalService) is True:

        @mcp.tool(name="python_eval", description=EVAL_DESCRIPTION + EVAL_TIMEOUT_NOTE)
        async def python_eval(code: str, timeout: float | None = None) -> str:
            return await _run_blocking(service.evaluate, code, timeout)

        @mcp.tool(name="python_reset", description=HARD_RESET_DESCRIPTION)
        async def python_reset() -> str:
            return await _run_blocking(service.hard_reset)

    else:

        @mcp.tool(name="python_eval", description=EVAL_DESCRIPTION)
        async def python_eval_inprocess(code: str) -> str:
            return await _run_blocking(service.evaluate, code)

        @mcp.tool(name="python_reset", description=SOFT_RESET_DESCRIPTION)
        async def python_soft_reset() -> str:
            return await _run_blocking(service.soft_reset)

    @mcp.tool(name="python_info", description=INFO_DESCRIPTION)
    async def python_info() -> str:
        return await _run_blocking(service.info)

    @mcp.tool(name="python_activate", description=ACTIVATE_DESCRIPTION)
    async def python_activate(path: str) -> str:
        return await _run_blocking(service.activate, path)

    @mcp.tool(name="python_packages", description=PACKAGES_DESCRIPTION)
    async def python_packages(action: str, packages: list[str] | None = None) -> str:
        return await _run_blocking(service.package_action, action, packages or [])

    return mcp


def create_service(settings: AgentEvalSettings) -> EvalService | InProcessEvalService:
    """Create the backend selected by ``settings.mode``.

    :param settings: Active settings.
    :returns: Operations backend.
    """
    if settings.mode == "inprocess":
        return InProcessEvalService(settings)
    return EvalService(settings)


def configure_logging(level: str) -> None:
    """Send log records to stderr; stdout carries the MCP stream.

    :param level: Log level name.
    """
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    """Parse command-line arguments.

    :param argv: Argument list; defaults to ``sys.argv[1:]``.
    :returns: Parsed namespace.
    """
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="Persistent Python evaluation over MCP stdio.",
    )
    parser.add_argument("--config", action="append", default=[], help="YAML settings overlay (repeatable).")
    parser.add_argument("--project", default=None, help="Environment to activate before serving.")
    parser.add_argument("--mode", choices=["subprocess", "inprocess"], default=None)
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the stdio server until the client disconnects.

    :param argv: Argument list; defaults to ``sys.argv[1:]``.
    :returns: Process exit status.
    """
    args: argparse.Namespace = _parse_args(argv)
    settings: AgentEvalSettings = load_settings([Path(path) for path in args.config])
    overrides: dict[str, object] = {}
    if args.project is not None:
        overrides["startup_project"] = args.project
    if args.mode is not None:
        overrides["mode"] = args.mode
    if args.log_level is not None:
        overrides["logging"] = LoggingSettings(level=args.log_level)
    if len(overrides) > 0:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.logging.level)
    service: EvalService | InProcessEvalService = create_service(settings)
    logger.info("agent-eval server starting (mode=%s, python=%s)", settings.mode, sys.version.split()[0])
    try:
        build_server(service).run()
    finally:
        service.close()
    return 0
