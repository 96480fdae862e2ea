from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# Attributes every stdlib LogRecord carries; anything else is caller-supplied context.
_STDLIB_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, sqlalchemy, apscheduler) through Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STDLIB_RECORD_FIELDS and not key.startswith("otel")
        }
        text = record.getMessage().replace("{", "{{").replace("}", "}}")
        target = logger.bind(stdlib_logger=record.name, **context)
        target.opt(depth=6, exception=record.exc_info).log(level, text)


class _JsonLineSink:
    """Loguru sink writing one JSON document per record, tagged with service metadata."""

    def __init__(self, *, service_name: str, environment: str, version: str) -> None:
        self._static = {
            "service": service_name,
            "environment": environment,
            "version": version,
        }

    def __call__(self, message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **self._static,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        payload.update(record["extra"])
        if record["exception"] is not None:
            payload["exception"] = message.strip().splitlines()[-1]

        sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Install the JSON sink and bridge stdlib loggers into Loguru."""

    logger.remove()
    logger.add(
        _JsonLineSink(service_name=service_name, environment=environment, version=version),
        level=level,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "apscheduler.executors.default"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


__all__ = ["InterceptHandler", "configure_logging"]
