"""
Logging configuration for sftpsource.

Everything logs under the ``sftpsource`` logger tree. The console handler is
rich's RichHandler by default; ``console_type: plain`` gives one line per
record for log shippers. File output is opt-in.

paramiko and aiohttp log every transport event at INFO. Their loggers are
held at WARNING unless ``logging.library_level`` says otherwise.
"""

import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "sftpsource"
NOISY_LIBRARIES = ("paramiko", "aiohttp.access", "aiohttp.server")

_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class PlainFormatter(logging.Formatter):
    """``LEVEL timestamp name: msg``; errors also carry file:line."""

    def __init__(self) -> None:
        super().__init__(datefmt=_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        where = ""
        if record.levelno >= logging.ERROR:
            where = f" ({Path(record.pathname).name}:{record.lineno})"
        line = f"{record.levelname} {self.formatTime(record)} {record.name}: {record.getMessage()}{where}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def parse_level(level: str | int | None, default: int = logging.INFO) -> int:
    """Accept ``"debug"``, ``"WARNING"``, ``10``... and fall back to ``default``."""
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        value = logging.getLevelName(level.strip().upper())
        if isinstance(value, int):
            return value
    return default


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    *,
    console: Console | None = None,
    console_enabled: bool = True,
    use_rich: bool = True,
    file_mode: str = "a",
    library_level: str | int = logging.WARNING,
) -> logging.Logger:
    """
    Install handlers on the ``sftpsource`` logger.

    Calling it again replaces the previous handlers. Root and third-party
    handlers are left alone.

    Args:
        level: Threshold for the ``sftpsource`` logger
        log_file: Also write to this file (parent directories are created)
        console: Rich console to log through (default: a stderr console)
        console_enabled: Log to the console at all
        use_rich: RichHandler when True, plain one-line records otherwise
        file_mode: 'a' to append, 'w' to truncate the log file
        library_level: Threshold for paramiko and aiohttp loggers

    Returns:
        The configured ``sftpsource`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    _drop_handlers(logger)
    level_int = parse_level(level)
    logger.setLevel(level_int)

    if console_enabled:
        if use_rich:
            handler: logging.Handler = RichHandler(
                console=console or Console(stderr=True),
                show_path=level_int <= logging.DEBUG,
                markup=False,
                rich_tracebacks=True,
                log_time_format="[%X]",
            )
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(PlainFormatter())
        handler.setLevel(level_int)
        logger.addHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode=file_mode, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(file_handler)

    library_int = parse_level(library_level, default=logging.WARNING)
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(library_int)

    return logger


def setup_logging_from_config(
    config: dict[str, Any], project_dir: Path | None = None, console: Console | None = None
) -> logging.Logger:
    """
    Setup logging from the ``logging`` section of the configuration.

    Keys: ``level``, ``console_enabled``, ``console_type`` (rich | plain),
    ``file_enabled``, ``file`` (relative to ``project_dir``), ``file_mode``,
    ``library_level``.
    """
    section = config.get("logging", {}) or {}

    log_file: Path | None = None
    if section.get("file_enabled", False):
        log_file = Path(section.get("file") or "logs/sftpsource.log")
        if project_dir is not None and not log_file.is_absolute():
            log_file = Path(project_dir) / log_file

    return setup_logging(
        level=section.get("level", logging.INFO),
        log_file=log_file,
        console=console,
        console_enabled=bool(section.get("console_enabled", True)),
        use_rich=str(section.get("console_type", "rich")).lower() == "rich",
        file_mode=str(section.get("file_mode", "a")),
        library_level=section.get("library_level", logging.WARNING),
    )


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a logger in the ``sftpsource`` tree.

    Module loggers are named ``sftpsource.<area>`` so one setup_logging()
    call covers the whole package.
    """
    return logging.getLogger(name)


def reset_logging() -> None:
    """Drop handlers installed by setup_logging() (for tests)."""
    _drop_handlers(logging.getLogger(ROOT_LOGGER))
