"""Logging setup for the server and stdio modes.

Everything goes to one timestamped file under ``LOG_DIR``.  Warnings and
errors are also echoed to stderr, which is safe in stdio mode because the
protocol only uses stdout.  A single :class:`SecretRedactionFilter` sits on
every handler so DataMall account keys and remote-store tokens never reach
disk, whether they were passed by value or embedded in a URL.
"""

import logging
import logging.config
import os
import re
import sys
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from lta_datamall_mcp.constants import LOG_DIR

_REDACTED = "***REDACTED***"
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ?apiKey=... on the MCP endpoint, ?auth=... on the remote store URL
_QUERY_SECRET_RE = re.compile(r"(?i)\b(apikey|auth|accountkey)=([^&\s\"']+)")


class SecretRedactionFilter(logging.Filter):
    """Scrubs registered secrets and credential query parameters from records.

    Keys are registered as the server learns them: the default key at
    startup and each per-session override when its session opens.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: Optional["re.Pattern[str]"] = None
        for secret in secrets:
            self.register(secret)

    def register(self, value: Optional[str]) -> None:
        """Add *value* to the redaction set.  Short or empty values are ignored."""
        if not value or len(value) < 4 or value in self._secrets:
            return
        self._secrets.add(value)
        # Longest first so a key containing another key is masked whole
        ordered = sorted(self._secrets, key=len, reverse=True)
        self._pattern = re.compile("|".join(re.escape(s) for s in ordered))

    def scrub(self, text: str) -> str:
        text = _QUERY_SECRET_RE.sub(lambda m: f"{m.group(1)}={_REDACTED}", text)
        if self._pattern is not None:
            text = self._pattern.sub(_REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        # Args may be exceptions or URLs whose str() carries a secret, so
        # the message is rendered before scrubbing.
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = self.scrub(message)
        record.args = ()

        if record.exc_info and not record.exc_text:
            record.exc_text = _exc_formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self.scrub(record.exc_text)
        if record.stack_info:
            record.stack_info = self.scrub(record.stack_info)
        return True


_exc_formatter = logging.Formatter()


secret_redaction_filter = SecretRedactionFilter()

# Loggers that follow the requested level
_APP_LOGGERS = ("lta_datamall_mcp", "mcp", "uvicorn", "uvicorn.error", "starlette")

# Loggers pinned to WARNING unless running at DEBUG; both log full URLs
_NOISY_LOGGERS = ("uvicorn.access", "httpx")


def build_log_config(level: str, log_fpath: str) -> Dict[str, Any]:
    """Return a ``dictConfig`` mapping for *level* writing to *log_fpath*."""
    handlers = ["file_handler", "console_handler"]
    noisy_level = "INFO" if level == "DEBUG" else "WARNING"

    loggers: Dict[str, Dict[str, Any]] = {
        name: {"handlers": handlers, "propagate": False, "level": level} for name in _APP_LOGGERS
    }
    loggers.update(
        {name: {"handlers": handlers, "propagate": False, "level": noisy_level} for name in _NOISY_LOGGERS}
    )

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "file": {
                "format": "%(asctime)s - %(name)30s:%(lineno)-4d - %(levelname)-7s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "console": {"format": "%(levelname)s %(name)s: %(message)s"},
        },
        "handlers": {
            "file_handler": {
                "class": "logging.FileHandler",
                "level": "DEBUG",
                "formatter": "file",
                "filename": log_fpath,
                "encoding": "utf-8",
            },
            "console_handler": {
                "class": "logging.StreamHandler",
                "level": "WARNING",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": loggers,
        "root": {"handlers": handlers, "level": level if level == "DEBUG" else "WARNING"},
    }


def setup_logging(log_lvl_str: str, *, quiet: bool = False) -> Tuple[str, str]:
    """Configure logging and return ``(log_file_path, level)``.

    An unknown level falls back to INFO.  With *quiet* nothing is printed
    to stdout, which stdio mode requires.
    """
    level = log_lvl_str.upper()
    if level not in _LEVELS:
        print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.", file=sys.stderr)
        level = "INFO"

    os.makedirs(LOG_DIR, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_fpath = os.path.join(LOG_DIR, f"datamall_{stamp}_{level}.log")

    logging.config.dictConfig(build_log_config(level, log_fpath))
    # dictConfig shares one instance per named handler across all loggers
    for handler in logging.root.handlers:
        handler.addFilter(secret_redaction_filter)

    if not quiet:
        print(f"Logging initialized. Level: {level}, log file: {log_fpath}")
    return log_fpath, level
