"""
Unified logging system
Console output plus rotating log files, configured from the [logging]
section of the bundled config.toml
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml

LEVEL_ENV_VAR = "AUTOTRACKER_LOG_LEVEL"
CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s"

_SIZE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}


def _project_config_path() -> Path:
    """Bundled config.toml; the user copy only carries tracking preferences"""
    return Path(__file__).parent.parent / "config" / "config.toml"


def _read_logging_section() -> Dict[str, Any]:
    config_path = _project_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Project config file not found: {config_path}")
    with open(config_path, "r", encoding="utf-8") as f:
        return toml.load(f).get("logging", {})


def parse_size(size: Any) -> int:
    """"10MB" -> bytes; plain integers pass through"""
    text = str(size).strip().upper()
    for unit, factor in _SIZE_UNITS.items():
        if text.endswith(unit):
            return int(float(text[: -len(unit)]) * factor)
    return int(text)


def _resolve_level(name: Optional[str]) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _init_root_level_early() -> None:
    """Set the root level before any module logs during import"""
    try:
        section = _read_logging_section()
    except (OSError, toml.TomlDecodeError):
        section = {}
    logging.getLogger().setLevel(
        _resolve_level(os.environ.get(LEVEL_ENV_VAR) or section.get("level"))
    )


_init_root_level_early()


class LoggerManager:
    """
    Owns the root logger handlers

    Args:
        level: overrides the configured level (CLI flag or AUTOTRACKER_LOG_LEVEL)
    """

    def __init__(self, level: Optional[str] = None):
        self._loggers: Dict[str, logging.Logger] = {}
        self.level_override = level
        self.logs_dir: Optional[Path] = None
        self._setup_root_logger()

    def _setup_root_logger(self) -> None:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root_logger.addHandler(console_handler)

        try:
            section = _read_logging_section()
        except (FileNotFoundError, toml.TomlDecodeError) as e:
            root_logger.setLevel(_resolve_level(self.level_override))
            logging.getLogger(__name__).warning(
                f"Logging config unavailable, console only: {e}"
            )
            return

        level_name = self.level_override or os.environ.get(LEVEL_ENV_VAR) or section.get("level")
        root_logger.setLevel(_resolve_level(level_name))

        logs_dir = Path(section.get("logs_dir", "./logs")).expanduser()
        max_bytes = parse_size(section.get("max_file_size", "10MB"))
        backup_count = int(section.get("backup_count", 5))

        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            root_logger.addHandler(
                self._rotating_handler(logs_dir / "autotracker.log", logging.DEBUG, max_bytes, backup_count)
            )
            root_logger.addHandler(
                self._rotating_handler(logs_dir / "error.log", logging.ERROR, max_bytes, backup_count)
            )
            self.logs_dir = logs_dir
        except OSError as e:
            logging.getLogger(__name__).warning(f"Cannot write logs to {logs_dir}: {e}")

    @staticmethod
    def _rotating_handler(
        path: Path, level: int, max_bytes: int, backup_count: int
    ) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(FILE_FORMAT))
        return handler

    def get_logger(self, name: str) -> logging.Logger:
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]


# Created on first use so importing a module never touches the filesystem
_logger_manager: Optional[LoggerManager] = None


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get logger"""
    global _logger_manager

    if _logger_manager is None:
        _logger_manager = LoggerManager()

    return _logger_manager.get_logger(name)


def setup_logging(level: Optional[str] = None) -> LoggerManager:
    """(Re)build the root handlers, optionally forcing a level"""
    global _logger_manager

    if _logger_manager is None:
        _logger_manager = LoggerManager(level)
    else:
        _logger_manager.level_override = level or _logger_manager.level_override
        _logger_manager._setup_root_logger()
    return _logger_manager
