"""Thin passthrough to the dependency manager of the active environment."""

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence

from agent_eval.config import AgentEvalSettings
from agent_eval.environment import environment_python
from agent_eval.errors import PackageActionError

logger = logging.getLogger(__name__)

PACKAGE_ACTIONS: tuple[str, ...] = ("add", "rm", "status", "update", "instantiate")
_ACTIONS_REQUIRING_PACKAGES: frozenset[str] = frozenset({"add", "rm"})
PYTHON_PLACEHOLDER: str = "{python}"


def _instantiate_arguments(environment_path: str | None) -> list[str]:
    """Build installer arguments that install a project's declared dependencies.

    :param environment_path: Environment directory or ``None`` for the cwd.
    :returns: Installer arguments.
    :raises PackageActionError: If the directory declares no dependencies.
    """
    root: str = os.getcwd() if environment_path is None else environment_path
    requirements: str = os.path.join(root, "requirements.txt")
    if os.path.isfile(requirements) is True:
        return ["install", "-r", requirements]
    for marker in ("pyproject.toml", "setup.py"):
        if os.path.isfile(os.path.join(root, marker)) is True:
            return ["install", "-e", root]
    raise PackageActionError(f"No requirements.txt, pyproject.toml or setup.py in {root}")


def build_package_command(
    action: str,
    packages: Sequence[str],
    environment_path: str | None,
    settings: AgentEvalSettings,
) -> list[str]:
    """Translate a package action into an installer command line.

    :param action: One of :data:`PACKAGE_ACTIONS`.
    :param packages: Package names or requirement specifiers.
    :param environment_path: Active environment directory.
    :param settings: Active settings.
    :returns: Command argument vector.
    :raises PackageActionError: For unknown actions or missing package names.
    """
    names: list[str] = [name.strip() for name in packages if name.strip() != ""]
    if action not in PACKAGE_ACTIONS:
        raise PackageActionError(f"Unknown package action {action!r}; expected one of: {', '.join(PACKAGE_ACTIONS)}")
    if action in _ACTIONS_REQUIRING_PACKAGES and len(names) == 0:
        raise PackageActionError(f"Package action {action!r} requires at least one package name")

    arguments: list[str]
    if action == "add":
        arguments = ["install", *names]
    elif action == "rm":
        arguments = ["uninstall", "-y", *names]
    elif action == "status":
        arguments = ["show", *names] if len(names) > 0 else ["list"]
    elif action == "update":
        arguments = ["install", "--upgrade", *names] if len(names) > 0 else ["list", "--outdated"]
    else:
        arguments = _instantiate_arguments(environment_path)

    python: str = environment_python(environment_path)
    base: list[str] = [python if part == PYTHON_PLACEHOLDER else part for part in settings.packages.command]
    return [*base, *arguments]


def run_package_action(
    action: str,
    packages: Sequence[str],
    environment_path: str | None,
    settings: AgentEvalSettings,
) -> str:
    """Run one package action and return the installer's transcript.

    :param action: One of :data:`PACKAGE_ACTIONS`.
    :param packages: Package names or requirement specifiers.
    :param environment_path: Active environment directory.
    :param settings: Active settings.
    :returns: Command line, combined output and exit status.
    :raises PackageActionError: If the command cannot be built or launched.
    """
    command: list[str] = build_package_command(action, packages, environment_path, settings)
    logger.info("Running package action %s: %s", action, shlex.join(command))
    try:
        completed: subprocess.CompletedProcess[str] = subprocess.run(  # noqa: S603
            command,
            cwd=environment_path,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=settings.packages.timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        raise PackageActionError(f"Package action {action!r} timed out after {exc.timeout:g}s") from exc
    except OSError as exc:
        raise PackageActionError(f"Failed to run {command[0]!r}: {exc}") from exc

    output: str = (completed.stdout or "").rstrip()
    if completed.returncode != 0:
        logger.warning("Package action %s exited with status %d", action, completed.returncode)
    return f"$ {shlex.join(command)}\n{output}\nExit status: {completed.returncode}"
