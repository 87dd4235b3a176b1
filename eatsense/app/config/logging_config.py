import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field


def get_cache_directory() -> str:
    """Get cache directory for logs and exported reports with dev/production awareness.

    Walks up from this file looking for pyproject.toml to detect a source checkout,
    in which case a sibling 'cache' directory is used. Otherwise falls back to the
    platform cache location: %LOCALAPPDATA% on Windows, XDG_CACHE_HOME (or ~/.cache)
    elsewhere.

    Returns:
        Absolute path to cache directory, created if it doesn't exist.
    """
    current_dir = Path(__file__).resolve().parent

    for _ in range(10):
        if (current_dir / "pyproject.toml").exists():
            cache_dir = current_dir / "cache"
            cache_dir.mkdir(exist_ok=True)
            return str(cache_dir)

        parent = current_dir.parent
        if parent == current_dir:
            break
        current_dir = parent

    if os.name == "nt":
        base_cache = os.environ.get("LOCALAPPDATA", os.path.expanduser("~"))
        cache_dir = os.path.join(base_cache, "eatsense", "cache")
    else:
        base_cache = os.environ.get("XDG_CACHE_HOME", os.path.expanduser("~/.cache"))
        cache_dir = os.path.join(base_cache, "eatsense")

    os.makedirs(cache_dir, exist_ok=True)
    return cache_dir


LOG_FILE_NAME = "eatsense.log"


def get_log_dir_for_run() -> str:
    """Create a timestamped (YYYYMMDD_HHMMSS) log directory for this run.

    Returns:
        Absolute path to the run's log directory.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = os.path.join(get_cache_directory(), "logs", timestamp)
    os.makedirs(run_dir, exist_ok=True)
    return run_dir


class LoggingConfigModel(BaseModel):
    """Logging verbosity and destinations.

    Attributes:
        level: DEBUG, INFO, WARNING, ERROR, or CRITICAL.
        format: Formatter string for every handler.
        enable_logs: When False a NullHandler is installed and nothing is written.
        log_to_file: Also write to a per-run file under the cache directory.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s", description="Log message format")
    enable_logs: bool = Field(default=True, description="Enable logging to console (and file when log_to_file is set)")
    log_to_file: bool = Field(default=True, description="Write logs to a timestamped directory in the cache folder")


def setup_logging(config: Any) -> None:
    """Configure the root logger from a LoggingConfigModel-like object.

    Installs a stdout handler and, when requested, a file handler in a fresh run
    directory. With logging disabled a NullHandler silences everything.

    Args:
        config: Object exposing enable_logs, level, format and log_to_file.
    """
    enable_logs = getattr(config, "enable_logs", False)
    level = config.level.upper() if hasattr(config, "level") else "INFO"
    log_format = getattr(config, "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not enable_logs:
        logging.basicConfig(level=logging.CRITICAL + 1, handlers=[logging.NullHandler()], force=True)
        return

    handlers = [logging.StreamHandler(sys.stdout)]

    log_file_path = None
    if getattr(config, "log_to_file", False):
        log_file_path = os.path.join(get_log_dir_for_run(), LOG_FILE_NAME)
        handlers.append(logging.FileHandler(log_file_path, encoding="utf-8"))

    logging.basicConfig(level=level, format=log_format, handlers=handlers, force=True)

    logging.getLogger(__name__).debug(f"Logging configured: level={level}, file={log_file_path}")
