"""
Logging setup for SBExplorer.

Every handler on the root logger shares one redaction filter, so connection
strings, shared access signatures and bearer tokens are masked in the
message, its arguments and any extra fields before a record is written.
Records are rendered as JSON lines for collectors or as text for terminals.
"""

import json
import logging
import logging.handlers
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sbexplorer.core.config_manager import LoggingConfig
from sbexplorer.servicebus.logging_utils import correlation_id_var

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

# Third-party loggers that are chatty below WARNING
QUIET_LOGGERS = ("azure", "uamqp", "httpx", "httpcore")

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?B)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}


class SensitiveDataFilter(logging.Filter):
    """Mask credentials wherever a record carries text."""

    PATTERNS = [
        (re.compile(r'(Authorization:\s+)(?:Bearer\s+|SharedAccessSignature\s+)?\S+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(Bearer\s+)[A-Za-z0-9\-_.~+/]+=*', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(SharedAccessKey=)[^;\s]+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(sig=)[^;&\s]+', re.IGNORECASE), r'\1' + REDACTED),
    ]

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self.redact(a) if isinstance(a, str) else a for a in record.args)
        for key, value in list(record.__dict__.items()):
            if key not in _RESERVED_ATTRS and isinstance(value, str):
                setattr(record, key, self.redact(value))
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with extra fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        corr_id = correlation_id_var.get()
        if corr_id:
            entry["correlation_id"] = corr_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in entry and not key.startswith("_")
        )
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Terminal format; the correlation id is appended when one is set."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        corr_id = correlation_id_var.get()
        return f"{line} [correlation_id={corr_id}]" if corr_id else line


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Replace the root logger's handlers according to ``config``.

    Console output goes to stderr so that JSON printed by CLI commands on
    stdout stays parseable. Per-module levels are applied after the
    third-party loggers are quietened, so they can raise those back up.

    Args:
        config: Logging section of the explorer configuration
    """
    config = config or LoggingConfig()
    formatter = JSONFormatter() if config.format == "json" else TextFormatter()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=_parse_size(config.rotation_size),
            backupCount=config.rotation_count,
            encoding='utf-8',
        ))

    redactor = SensitiveDataFilter()
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(_level(config.level))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, module_level in (config.module_levels or {}).items():
        logging.getLogger(name).setLevel(_level(module_level))

    logger.info(
        f"Logging configured: level={_level_name(config.level)}, format={config.format}",
        extra={"log_file": config.file}
    )


def _level_name(level: Any) -> str:
    return str(getattr(level, "value", level)).upper()


def _level(level: Any) -> int:
    return getattr(logging, _level_name(level))


def _parse_size(size: str) -> int:
    """
    Parse a rotation size such as ``10MB``, ``1.5gb`` or ``2048`` into bytes.

    Raises:
        ValueError: If the text is not a number with an optional B/KB/MB/GB unit
    """
    match = _SIZE_PATTERN.match(size)
    if not match:
        raise ValueError(f"Invalid rotation size: {size!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "B").upper()])
