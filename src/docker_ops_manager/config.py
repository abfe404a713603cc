"""
Configuration for docker-ops-manager.

Values are resolved in this order: environment variables (``DOCKER_OPS_*``),
then the JSON config file in the config directory, then built-in defaults.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from docker_ops_manager.errors import ValidationError

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "docker-ops-manager"
FALLBACK_READINESS_TIMEOUT = 60.0

# setting name -> (environment variable, config.json key)
_SOURCES: Dict[str, tuple] = {
    "log_level": ("DOCKER_OPS_LOG_LEVEL", "log_level"),
    "max_container_history": ("DOCKER_OPS_MAX_CONTAINER_HISTORY", "max_container_history"),
    "max_operation_history": ("DOCKER_OPS_MAX_OPERATION_HISTORY", "max_operation_history"),
    "readiness_timeout": ("DOCKER_OPS_READINESS_TIMEOUT", "container_start_timeout"),
    "stop_timeout": ("DOCKER_OPS_STOP_TIMEOUT", "container_stop_timeout"),
    "removal_attempts": ("DOCKER_OPS_REMOVAL_ATTEMPTS", "removal_attempts"),
    "removal_backoff": ("DOCKER_OPS_REMOVAL_BACKOFF", "removal_backoff"),
    "poll_interval": ("DOCKER_OPS_POLL_INTERVAL", "poll_interval"),
    "max_workers": ("DOCKER_OPS_MAX_WORKERS", "max_workers"),
}


class Settings(BaseModel):
    """Process-wide settings. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    config_dir: Path = DEFAULT_CONFIG_DIR
    state_file: Path = DEFAULT_CONFIG_DIR / "state.json"
    config_file: Path = DEFAULT_CONFIG_DIR / "config.json"
    log_dir: Path = DEFAULT_CONFIG_DIR / "logs"
    log_level: str = "INFO"
    max_container_history: int = Field(default=10, ge=1)
    max_operation_history: int = Field(default=20, ge=1)
    readiness_timeout: Optional[float] = Field(default=None, gt=0)
    stop_timeout: int = Field(default=30, ge=0)
    removal_attempts: int = Field(default=3, ge=1)
    removal_backoff: float = Field(default=1.0, ge=0)
    poll_interval: float = Field(default=1.0, gt=0)
    max_workers: int = Field(default=1, ge=1)

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Resolve settings from the environment and the config file.

        Args:
            environ: Mapping to read variables from. Defaults to ``os.environ``.

        Returns:
            A validated Settings instance.

        Raises:
            ValidationError: If the config file is unreadable or a value is invalid.
        """
        env = os.environ if environ is None else environ

        config_dir = Path(env.get("DOCKER_OPS_CONFIG_DIR") or DEFAULT_CONFIG_DIR).expanduser()
        values: Dict[str, Any] = {
            "config_dir": config_dir,
            "state_file": Path(env.get("DOCKER_OPS_STATE_FILE") or config_dir / "state.json").expanduser(),
            "config_file": Path(env.get("DOCKER_OPS_CONFIG_FILE") or config_dir / "config.json").expanduser(),
            "log_dir": Path(env.get("DOCKER_OPS_LOG_DIR") or config_dir / "logs").expanduser(),
        }

        file_values = _read_config_file(values["config_file"])
        for field_name, (env_var, file_key) in _SOURCES.items():
            if env.get(env_var):
                values[field_name] = env[env_var]
            elif file_values.get(file_key) is not None:
                values[field_name] = file_values[file_key]

        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ValidationError("invalid configuration", operation="config", cause=e) from e

    def ensure_directories(self) -> None:
        """Create the config, state and log directories if missing."""
        for directory in (self.config_dir, self.state_file.parent, self.log_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def log_file(self) -> Path:
        return self.log_dir / "docker-ops.log"

    def snapshot(self) -> Dict[str, Any]:
        """The ``config`` block persisted alongside the state document."""
        return {
            "log_level": self.log_level,
            "max_container_history": self.max_container_history,
            "max_operation_history": self.max_operation_history,
            "readiness_timeout": self.readiness_timeout,
            "stop_timeout": self.stop_timeout,
        }


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"cannot read config file {path}", operation="config", cause=e) from e
    if not isinstance(data, dict):
        raise ValidationError(f"config file {path} must contain a JSON object", operation="config")
    return data


__all__ = ["DEFAULT_CONFIG_DIR", "FALLBACK_READINESS_TIMEOUT", "Settings"]
