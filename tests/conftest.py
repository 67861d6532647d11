"""Shared fixtures for agent-eval tests."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from agent_eval.config import AgentEvalSettings
from agent_eval.config import load_default_config_dict
from agent_eval.config import load_settings_dicts
from agent_eval.session import Session


@pytest.fixture
def settings(tmp_path: Path) -> AgentEvalSettings:
    """Build settings with short timeouts and a private shared-environment root.

    :param tmp_path: Per-test temporary directory.
    :returns: Validated settings.
    """
    shared_dir: Path = tmp_path / "shared-environments"
    shared_dir.mkdir()
    return load_settings_dicts(
        [
            load_default_config_dict(),
            {
                "shared_environments_dir": str(shared_dir),
                "worker": {
                    "spawn_timeout_seconds": 60.0,
                    "shutdown_grace_seconds": 1.0,
                },
            },
        ]
    )


@pytest.fixture
def session(settings: AgentEvalSettings) -> Iterator[Session]:
    """Provide a session whose worker is terminated after the test.

    :param settings: Test settings.
    :yields: Open session.
    """
    active: Session = Session(settings)
    try:
        yield active
    finally:
        active.close()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create an environment directory holding one importable module.

    :param tmp_path: Per-test temporary directory.
    :returns: Environment directory.
    """
    directory: Path = tmp_path / "project"
    directory.mkdir()
    (directory / "project_helper.py").write_text("VALUE = 5\n", encoding="utf-8")
    return directory
