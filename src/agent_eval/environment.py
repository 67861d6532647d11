"""Environment resolution and activation.

An activation target is ``"."`` (the controller's working directory), a path,
or ``"@name"`` for a shared environment kept under the configured
``shared_environments_dir``. Resolution happens in the controller; applying
the environment to ``sys.path`` happens inside the worker.
"""

import importlib
import logging
import os
import site
import sys
from pathlib import Path

from agent_eval.errors import ActivationError

logger = logging.getLogger(__name__)

SHARED_ENVIRONMENT_PREFIX: str = "@"
_VENV_MARKER: str = "pyvenv.cfg"
_LOCAL_VENV_DIR: str = ".venv"


def resolve_environment_target(target: str, shared_environments_dir: Path, cwd: Path | None = None) -> str:
    """Turn an activation target into an absolute directory path.

    :param target: ``"."``, a path, or ``"@name"``.
    :param shared_environments_dir: Directory holding shared environments.
    :param cwd: Base directory for relative targets; defaults to the current one.
    :returns: Absolute path string.
    :raises ActivationError: If the target is empty or names no environment.
    """
    stripped: str = target.strip()
    if stripped == "":
        raise ActivationError("Activation target must not be empty")

    base: Path = Path.cwd() if cwd is None else cwd
    if stripped.startswith(SHARED_ENVIRONMENT_PREFIX) is True:
        name: str = stripped[len(SHARED_ENVIRONMENT_PREFIX):]
        if name == "" or "/" in name or os.sep in name:
            raise ActivationError(f"Invalid shared environment name: {target!r}")
        resolved: Path = shared_environments_dir.expanduser() / name
    elif stripped == ".":
        resolved = base
    else:
        candidate: Path = Path(stripped).expanduser()
        if candidate.is_absolute() is False:
            candidate = base / candidate
        resolved = candidate

    return os.path.abspath(resolved)


def require_directory(path: str) -> None:
    """Fail unless ``path`` is an existing directory.

    :param path: Candidate environment directory.
    :raises ActivationError: If the directory does not exist.
    """
    if os.path.isdir(path) is False:
        raise ActivationError(f"Environment directory does not exist: {path}")


def _venv_root(path: Path) -> Path | None:
    """Find the virtual environment that belongs to ``path``.

    :param path: Environment directory.
    :returns: Virtualenv root, or ``None``.
    """
    if (path / _VENV_MARKER).is_file() is True:
        return path
    local_venv: Path = path / _LOCAL_VENV_DIR
    if (local_venv / _VENV_MARKER).is_file() is True:
        return local_venv
    return None


def _site_packages_dirs(venv_root: Path) -> list[Path]:
    """List site-packages directories of a virtualenv.

    :param venv_root: Virtualenv root.
    :returns: Existing site-packages directories.
    """
    candidates: list[Path] = sorted(venv_root.glob("lib/python*/site-packages"))
    candidates.append(venv_root / "Lib" / "site-packages")
    return [candidate for candidate in candidates if candidate.is_dir() is True]


def environment_python(path: str | None) -> str:
    """Return the interpreter that manages packages for ``path``.

    :param path: Environment directory or ``None``.
    :returns: Virtualenv interpreter when one exists, else the current one.
    """
    if path is None:
        return sys.executable
    venv_root: Path | None = _venv_root(Path(path))
    if venv_root is None:
        return sys.executable
    for relative in ("bin/python", "Scripts/python.exe"):
        candidate: Path = venv_root / relative
        if candidate.exists() is True:
            return str(candidate)
    return sys.executable


class EnvironmentActivator:
    """Apply one environment directory to the running interpreter's import path."""

    _active_path: str | None
    _added_entries: list[str]

    def __init__(self) -> None:
        """Initialize an activator with nothing applied."""
        self._active_path = None
        self._added_entries = []

    @property
    def active_path(self) -> str | None:
        """Return the currently applied environment directory.

        :returns: Directory path or ``None``.
        """
        return self._active_path

    def activate(self, path: str) -> list[str]:
        """Replace the previous activation with ``path``.

        :param path: Absolute environment directory.
        :returns: Import path entries that were added.
        :raises ActivationError: If the directory does not exist.
        """
        require_directory(path)
        self._deactivate()

        root: Path = Path(path)
        entries: list[str] = [str(root)]
        src_dir: Path = root / "src"
        if src_dir.is_dir() is True:
            entries.append(str(src_dir))

        before: list[str] = list(sys.path)
        for entry in reversed(entries):
            if entry not in sys.path:
                sys.path.insert(0, entry)

        venv_root: Path | None = _venv_root(root)
        if venv_root is not None:
            for site_dir in _site_packages_dirs(venv_root):
                site.addsitedir(str(site_dir))

        self._added_entries = [entry for entry in sys.path if entry not in before]
        self._active_path = path
        importlib.invalidate_caches()
        logger.info("Activated environment %s (%d import path entries)", path, len(self._added_entries))
        return list(self._added_entries)

    def _deactivate(self) -> None:
        """Remove import path entries added by the previous activation."""
        for entry in self._added_entries:
            while entry in sys.path:
                sys.path.remove(entry)
        self._added_entries = []
        self._active_path = None
