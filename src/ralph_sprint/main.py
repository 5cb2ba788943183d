# ABOUTME: Configuration model for the Ralph sprint loop
# ABOUTME: RalphConfig dataclass with YAML loading, env overrides, and validation

"""Configuration for the Ralph sprint loop."""

import logging
import os
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger("ralph.config")

DEFAULT_MODEL = "opus-4.5-thinking"
DEFAULT_AGENT_COMMAND = "cursor-agent"
DEFAULT_CLOUD_API_URL = "https://api.cursor.com/v0"


@dataclass
class RalphConfig:
    """Typed settings loaded once at startup.

    ``max_iterations`` is the per-task ceiling: how many worker executions
    the loop spends on a task before treating it as an implicit stall.
    ``max_total_iterations`` and ``max_runtime`` are optional global safety
    limits (0 disables them).
    """

    workspace: str = "."
    model: str = DEFAULT_MODEL
    agent_command: str = DEFAULT_AGENT_COMMAND
    max_iterations: int = 20
    max_passes: int = 3
    poll_interval: int = 30
    iteration_pause: float = 2.0

    context_threshold: int = 80000
    prompt_baseline_bytes: int = 3000

    branch: Optional[str] = None
    open_pr: bool = False
    skip_confirm: bool = False

    verify_command: Optional[str] = None
    once: bool = False
    exit_on_complete: bool = False

    cloud_enabled: bool = False
    cloud_api_url: str = DEFAULT_CLOUD_API_URL
    cloud_poll_interval: int = 30
    max_chain_depth: int = 10
    followup_attempts: int = 3

    max_total_iterations: int = 0
    max_runtime: int = 0

    verbose: bool = False
    iteration_telemetry: bool = True

    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    @classmethod
    def from_yaml(cls, config_path: str) -> "RalphConfig":
        """Load configuration from a YAML file.

        Unknown keys are logged and ignored.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the document is not a mapping.
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RalphConfig":
        known = {f.name for f in fields(cls) if f.init}
        kwargs = {}
        for key, value in data.items():
            key = key.replace("-", "_")
            if key in known:
                kwargs[key] = value
            else:
                logger.warning(f"Ignoring unknown configuration key: {key}")
        return cls(**kwargs)

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "RalphConfig":
        """Apply RALPH_MODEL, MAX_PASSES and POLL_INTERVAL overrides."""
        environ = os.environ if environ is None else environ
        with self._lock:
            if environ.get("RALPH_MODEL"):
                self.model = environ["RALPH_MODEL"]
            if environ.get("MAX_PASSES"):
                self.max_passes = int(environ["MAX_PASSES"])
            if environ.get("POLL_INTERVAL"):
                self.poll_interval = int(environ["POLL_INTERVAL"])
        return self

    def update(self, **overrides: Any) -> "RalphConfig":
        """Set every override that is not None."""
        with self._lock:
            for key, value in overrides.items():
                if value is None:
                    continue
                if not hasattr(self, key) or key.startswith("_"):
                    raise AttributeError(f"Unknown configuration field: {key}")
                setattr(self, key, value)
        return self

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace).expanduser().resolve()

    # Thread-safe accessors

    def get_max_iterations(self) -> int:
        with self._lock:
            return self.max_iterations

    def get_max_passes(self) -> int:
        with self._lock:
            return self.max_passes

    def get_poll_interval(self) -> int:
        with self._lock:
            return self.poll_interval

    def get_model(self) -> str:
        with self._lock:
            return self.model


class ConfigValidator:
    """Validation rules for RalphConfig values."""

    MAX_POLL_INTERVAL = 24 * 3600

    @staticmethod
    def validate_positive(name: str, value: int) -> List[str]:
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            return [f"{name} must be a positive integer (got {value!r})"]
        return []

    @staticmethod
    def validate_non_negative(name: str, value: int) -> List[str]:
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            return [f"{name} must be zero or a positive integer (got {value!r})"]
        return []

    @classmethod
    def validate(cls, config: RalphConfig) -> List[str]:
        """Return a list of human-readable problems; empty when valid."""
        errors: List[str] = []
        errors += cls.validate_positive("max_iterations", config.max_iterations)
        errors += cls.validate_positive("max_passes", config.max_passes)
        errors += cls.validate_positive("poll_interval", config.poll_interval)
        errors += cls.validate_positive("context_threshold", config.context_threshold)
        errors += cls.validate_positive("max_chain_depth", config.max_chain_depth)
        errors += cls.validate_non_negative("prompt_baseline_bytes", config.prompt_baseline_bytes)
        errors += cls.validate_non_negative("max_total_iterations", config.max_total_iterations)
        errors += cls.validate_non_negative("max_runtime", config.max_runtime)

        if isinstance(config.poll_interval, int) and config.poll_interval > cls.MAX_POLL_INTERVAL:
            errors.append(f"poll_interval must not exceed {cls.MAX_POLL_INTERVAL} seconds")
        if not config.model:
            errors.append("model must not be empty")
        if config.open_pr and not config.branch:
            errors.append("--pr requires --branch")
        return errors
