"""Settings models and the YAML loader.

Settings are assembled from the packaged ``assets/default.yaml``, an optional
overlay named by ``AGENT_EVAL_CONFIG``, any explicit overlay files, and finally
environment overrides. Later sources win; mappings merge recursively and lists
are replaced whole. Unknown keys are rejected.
"""

import os
from collections.abc import Iterable
from collections.abc import Mapping
from collections.abc import MutableMapping
from copy import deepcopy
from importlib.resources import files
from pathlib import Path
from typing import Any
from typing import Literal

import yaml
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

CONFIG_ENV_VAR: str = "AGENT_EVAL_CONFIG"
PROJECT_ENV_VAR: str = "AGENT_EVAL_PROJECT"


class WorkerSettings(BaseModel):
    """Worker process timing and retry limits."""

    model_config = ConfigDict(extra="forbid")

    spawn_timeout_seconds: float = Field(default=30.0, gt=0.0)
    shutdown_grace_seconds: float = Field(default=2.0, ge=0.0)
    evaluation_timeout_seconds: float | None = Field(default=None, gt=0.0)
    spawn_attempts: int = Field(default=2, ge=1)


class SymbolSettings(BaseModel):
    """Names the soft reset must never clear."""

    model_config = ConfigDict(extra="forbid")

    denied_names: list[str] = Field(default_factory=list)
    internal_prefixes: list[str] = Field(default_factory=lambda: ["_"])


class PackageSettings(BaseModel):
    """Dependency manager invocation."""

    model_config = ConfigDict(extra="forbid")

    command: list[str] = Field(default_factory=lambda: ["{python}", "-m", "pip"])
    timeout_seconds: float = Field(default=600.0, gt=0.0)

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: list[str]) -> list[str]:
        if len(value) == 0:
            raise ValueError("packages.command must not be empty")
        return value


class LoggingSettings(BaseModel):
    """Log level for the controller process."""

    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        normalized: str = value.strip().upper()
        allowed: set[str] = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"logging.level must be one of: {sorted(allowed)}")
        return normalized


class AgentEvalSettings(BaseModel):
    """Top-level settings."""

    model_config = ConfigDict(extra="forbid")

    mode: Literal["subprocess", "inprocess"] = "subprocess"
    startup_project: str | None = None
    shared_environments_dir: str = "~/.agent-eval/environments"
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    symbols: SymbolSettings = Field(default_factory=SymbolSettings)
    packages: PackageSettings = Field(default_factory=PackageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def shared_environments_path(self) -> Path:
        """Return the expanded shared-environment directory.

        :returns: Directory holding ``@name`` environments.
        """
        return Path(self.shared_environments_dir).expanduser()


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Merge ``overlay`` into ``base`` in place.

    :param base: Mapping to update.
    :param overlay: Mapping whose values win.
    :returns: ``base``.
    """
    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)
            continue
        base[key] = deepcopy(overlay_value)
    return base


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Read one YAML mapping; an empty file yields an empty dict.

    :param path: YAML file path.
    :returns: Parsed mapping.
    :raises FileNotFoundError: If the file does not exist.
    :raises ValueError: If the document root is not a mapping.
    """
    if path.exists() is False:
        raise FileNotFoundError(f"Config file does not exist: {path}")
    data: object = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if isinstance(data, dict) is False:
        raise ValueError(f"Config file root must be a mapping: {path}")
    return data


def load_default_config_dict() -> dict[str, Any]:
    """Load the packaged default settings.

    :returns: Default settings mapping.
    """
    text: str = files("agent_eval.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    data: object = yaml.safe_load(text)
    if isinstance(data, dict) is False:
        raise ValueError("Packaged default.yaml must be a mapping")
    return data


def load_settings_dicts(config_dicts: Iterable[Mapping[str, Any]]) -> AgentEvalSettings:
    """Merge settings mappings in order and validate the result.

    :param config_dicts: Mappings; later ones override earlier ones.
    :returns: Validated settings.
    """
    merged: dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return AgentEvalSettings.model_validate(merged)


def load_settings(
    config_paths: Iterable[Path] = (),
    environ: Mapping[str, str] | None = None,
) -> AgentEvalSettings:
    """Load settings from defaults, overlay files and the environment.

    :param config_paths: Explicit YAML overlays applied after ``AGENT_EVAL_CONFIG``.
    :param environ: Environment mapping; defaults to ``os.environ``.
    :returns: Validated settings.
    """
    if environ is None:
        environ = os.environ

    overlays: list[Mapping[str, Any]] = [load_default_config_dict()]
    env_config_path: str | None = environ.get(CONFIG_ENV_VAR)
    if env_config_path:
        overlays.append(_load_yaml_file(Path(env_config_path).expanduser()))
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))

    env_project: str | None = environ.get(PROJECT_ENV_VAR)
    if env_project:
        overlays.append({"startup_project": env_project})
    return load_settings_dicts(overlays)
