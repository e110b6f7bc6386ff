# helpdesk_app/logging_cfg.py
"""
Logging setup for the helpdesk bot.

configure_logging() is called first thing in create_app() and by the CLI
entry points, so every module can just do `logging.getLogger(__name__)`.
Modules tag their messages ("[DISPATCH] ...", "[NOTIFY] ...") and pass
context through `extra={...}`; the formatter prints that context as JSON.
"""

from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Optional

from helpdesk_app.config import cfg


class DetailedFormatter(logging.Formatter):
    """
    Formatter that appends the record's `extra` fields as a JSON block.
    """

    # Attributes every LogRecord has; anything else came in through `extra`.
    STANDARD_ATTRS = {
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
        "processName", "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "asctime", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.STANDARD_ATTRS and not key.startswith("_")
        }
        if not extra_fields:
            return base_message

        try:
            extra_json = json.dumps(extra_fields, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return base_message
        return f"{base_message} | {extra_json}"


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure stdout logging with dictConfig.

    Level resolution: explicit argument, then LOG_LEVEL, then DEBUG/INFO
    depending on cfg.DEBUG.
    """
    level = (level or cfg.LOG_LEVEL or ("DEBUG" if cfg.DEBUG else "INFO")).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "()": DetailedFormatter,
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                },
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "level": level,
                "handlers": ["stdout"],
            },
            "loggers": {
                "urllib3": {"level": "WARNING"},
                "requests": {"level": "WARNING"},
                "openai": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
                "werkzeug": {"level": "WARNING"},
            },
        }
    )

    logging.getLogger(__name__).info("Logging configured (level=%s)", level)
