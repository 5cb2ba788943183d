# ABOUTME: Logging configuration for the Ralph sprint loop
# ABOUTME: Sets up the "ralph" logger hierarchy from arguments and RALPH_LOG_* variables

"""Centralized logging setup.

All modules log through children of the ``ralph`` logger so a single call to
``RalphLogger.initialize()`` controls level, console output and the optional
rotating log file. Environment variables override defaults:

- ``RALPH_LOG_LEVEL``: DEBUG, INFO, WARNING, ERROR (default INFO)
- ``RALPH_LOG_CONSOLE``: "false" disables the console handler
- ``RALPH_LOG_DETAILED``: "true" adds file/line/function to each record
- ``RALPH_LOG_FILE`` / ``RALPH_LOG_DIR``: where to write the log file
- ``RALPH_LOG_MAX_BYTES`` / ``RALPH_LOG_BACKUP_COUNT``: rotation settings
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional


class RalphLogger:
    """Configures the ``ralph`` logger hierarchy."""

    ROOT = "ralph"

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    DETAILED_FORMAT = (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "%(filename)s:%(lineno)d - %(funcName)s() - %(message)s"
    )

    _initialized = False
    _log_dir: Optional[Path] = None
    _log_file: Optional[Path] = None

    @classmethod
    def initialize(
        cls,
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        log_dir: Optional[str] = None,
        console_output: Optional[bool] = None,
        detailed_format: Optional[bool] = None,
    ) -> None:
        """Configure the ``ralph`` root logger once.

        Args:
            log_level: Level name; falls back to RALPH_LOG_LEVEL then INFO.
            log_file: Explicit log file path.
            log_dir: Directory for ``ralph.log`` when no file is given.
            console_output: Attach a stderr handler.
            detailed_format: Include source location in records.
        """
        if cls._initialized:
            return

        log_level = log_level or os.getenv("RALPH_LOG_LEVEL", "INFO")
        if console_output is None:
            console_output = os.getenv("RALPH_LOG_CONSOLE", "true").lower() != "false"
        if detailed_format is None:
            detailed_format = os.getenv("RALPH_LOG_DETAILED", "false").lower() == "true"
        log_file = log_file or os.getenv("RALPH_LOG_FILE")
        log_dir = log_dir or os.getenv("RALPH_LOG_DIR")

        root_logger = logging.getLogger(cls.ROOT)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        root_logger.handlers = []
        root_logger.propagate = False

        formatter = logging.Formatter(
            cls.DETAILED_FORMAT if detailed_format else cls.DEFAULT_FORMAT
        )

        if console_output:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)

        if log_file or log_dir:
            try:
                if log_file:
                    path = Path(log_file)
                    path.parent.mkdir(parents=True, exist_ok=True)
                else:
                    cls._log_dir = Path(log_dir)
                    cls._log_dir.mkdir(parents=True, exist_ok=True)
                    path = cls._log_dir / "ralph.log"

                file_handler = logging.handlers.RotatingFileHandler(
                    path,
                    maxBytes=int(os.getenv("RALPH_LOG_MAX_BYTES", 10 * 1024 * 1024)),
                    backupCount=int(os.getenv("RALPH_LOG_BACKUP_COUNT", 5)),
                )
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)
                cls._log_file = path
            except (OSError, PermissionError) as e:
                root_logger.warning(f"Could not create log file handler: {e}")

        cls._initialized = True

    @classmethod
    def log_config(cls) -> Dict[str, Any]:
        """Describe the current logging configuration."""
        root_logger = logging.getLogger(cls.ROOT)
        return {
            "level": logging.getLevelName(root_logger.level),
            "initialized": cls._initialized,
            "log_dir": str(cls._log_dir) if cls._log_dir else None,
            "log_file": str(cls._log_file) if cls._log_file else None,
            "handlers": [
                {
                    "type": type(handler).__name__,
                    "level": logging.getLevelName(handler.level),
                }
                for handler in root_logger.handlers
            ],
        }
