"""Process-wide log setup for the collector.

Records go to a log file, to stdout and, when ``logging.syslog`` is true in
local.yml, to the local syslog daemon. Every record carries a ``device``
field so collector lines can be grepped per host, and ``pass=``/``enable=``
style values are masked before anything is written.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DIRECTORY = Path("/var/log/sweet")
DEFAULT_FILENAME = "sweet.log"
DEFAULT_LEVEL = logging.INFO
FALLBACK_DIRECTORY = Path("./logs")
SYSLOG_ADDRESS = "/dev/log"

LOG_FORMAT = "%(asctime)s | %(levelname)s | device=%(device)s | %(message)s"
SYSLOG_FORMAT = "sweet: %(levelname)s device=%(device)s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class LoggingConfig:
    """The ``logging`` section of local.yml after defaults are applied."""

    directory: Path = DEFAULT_DIRECTORY
    filename: str = DEFAULT_FILENAME
    level: int = DEFAULT_LEVEL
    syslog: bool = False

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> LoggingConfig:
        directory = section.get("directory")
        filename = section.get("filename")
        return cls(
            directory=Path(directory).expanduser() if directory else DEFAULT_DIRECTORY,
            filename=str(filename) if filename else DEFAULT_FILENAME,
            level=_to_level(section.get("level")),
            syslog=section.get("syslog") is True,
        )


class DeviceContextFilter(logging.Filter):
    """Give records logged outside a collector the placeholder device ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "device", None):
            record.device = "-"
        return True


class SecretScrubberFilter(logging.Filter):
    """Mask credential values such as ``pass=hunter2`` in rendered messages."""

    SECRET_PATTERN = re.compile(r"\b(pass|password|enable|secret|token)=([^\s]+)", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        masked = self.SECRET_PATTERN.sub(r"\1=***", message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def _to_level(raw_level: Any) -> int:
    if isinstance(raw_level, int) and not isinstance(raw_level, bool):
        return raw_level
    if isinstance(raw_level, str):
        level = logging.getLevelName(raw_level.upper())
        if isinstance(level, int):
            return level
    return DEFAULT_LEVEL


def _read_section(config_file: Path) -> Mapping[str, Any]:
    """Return the ``logging`` mapping, or an empty one if local.yml is absent or unusable."""

    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError):
        return {}

    section = data.get("logging") if isinstance(data, Mapping) else None
    return section if isinstance(section, Mapping) else {}


def _writable(directory: Path) -> bool:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        marker = directory / ".write-test"
        marker.touch()
        marker.unlink()
    except OSError:
        return False
    return True


def _pick_directory(preferred: Path) -> Path:
    for candidate in (preferred, FALLBACK_DIRECTORY):
        if _writable(candidate):
            return candidate
    raise OSError(f"Neither {preferred} nor {FALLBACK_DIRECTORY} is writable for logs.")


def _handlers(log_path: Path, use_syslog: bool) -> list[logging.Handler]:
    plain = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.FileHandler(log_path, encoding="utf-8", errors="backslashreplace"),
        logging.StreamHandler(sys.stdout),
    ]
    for handler in handlers:
        handler.setFormatter(plain)

    if use_syslog and Path(SYSLOG_ADDRESS).exists():
        syslog_handler = logging.handlers.SysLogHandler(
            address=SYSLOG_ADDRESS, facility=logging.handlers.SysLogHandler.LOG_DAEMON
        )
        syslog_handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        handlers.append(syslog_handler)

    for handler in handlers:
        handler.addFilter(DeviceContextFilter())
        handler.addFilter(SecretScrubberFilter())
    return handlers


def setup_logging(config_path: str | Path = "config/local.yml", cli_level: int | None = None) -> logging.Logger:
    """Install the collector's handlers on the root logger and return the ``sweet`` logger.

    A relative ``config_path`` is taken from the project root. ``cli_level``
    (``--debug``) wins over ``logging.level``.
    """

    config_file = Path(config_path or "config/local.yml")
    if not config_file.is_absolute():
        config_file = PROJECT_ROOT / config_file

    config = LoggingConfig.from_section(_read_section(config_file))
    if cli_level is not None:
        config.level = cli_level

    directory = _pick_directory(config.directory)
    log_path = directory / config.filename
    handlers = _handlers(log_path, config.syslog)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(config.level)
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger("sweet")
    logger.setLevel(config.level)
    logger.propagate = True

    if not config_file.exists():
        logger.info("No %s found, logging to %s at %s.", config_file, log_path, logging.getLevelName(config.level))
    if directory != config.directory:
        logger.warning("Log directory %s is not writable, using %s instead.", config.directory, directory)
    if config.syslog and len(handlers) < 3:
        logger.warning("Syslog requested but %s is not available.", SYSLOG_ADDRESS)

    logger.info("Logging to %s", log_path)
    return logger
