"""Logging setup for sitespeak-suggest.

JSON records carry the service name and the emitting component (the logger
name relative to the package), so cache, breaker and fallback lines can be
filtered apart once shipped to a collector.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "sitespeak-suggest"
PACKAGE = "sitespeak_suggest"

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def component_of(logger_name: str) -> str:
    """``sitespeak_suggest.cache.suggestion_cache`` -> ``cache.suggestion_cache``."""
    if logger_name == PACKAGE:
        return "core"
    if logger_name.startswith(PACKAGE + "."):
        return logger_name[len(PACKAGE) + 1:]
    return logger_name


class SuggestionJsonFormatter(jsonlogger.JsonFormatter):
    def __init__(self, *args: Any, service: str = SERVICE_NAME, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord,
                   message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["service"] = self.service
        log_record["component"] = component_of(record.name)


def build_formatter(fmt: str = "json", service: str = SERVICE_NAME) -> logging.Formatter:
    if fmt.lower() == "json":
        fields = ("asctime", "levelname", "name", "message", "funcName", "lineno")
        return SuggestionJsonFormatter(" ".join(f"%({f})s" for f in fields), service=service)
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")


def configure_logging(level: str = "INFO", fmt: str = "json",
                      service: str = SERVICE_NAME) -> None:
    """Install a single stream handler on the root logger."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(fmt, service))
    root.addHandler(handler)

    logging.getLogger(PACKAGE).setLevel(log_level)
