"""Structured JSON logging for the rewards API.

Every line is one JSON object. Reward identifiers bound through
``logger.bind``/``logger.contextualize`` or passed as keyword context are
grouped under a ``reward`` key so dashboards can follow a member or an order
across the tracker, the claim recorder and the scheduled jobs.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace

REWARD_CONTEXT_KEYS = (
    "user_id",
    "order_reference",
    "month",
    "product_id",
    "job_id",
)

# Attributes every stdlib LogRecord carries; anything else arrived via ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "apscheduler.executors.default": logging.WARNING,
    "aiosqlite": logging.INFO,
}


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, SQLAlchemy, APScheduler) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_RECORD_ATTRS}
        logger.bind(stdlib_logger=record.name, **extra).opt(depth=6, exception=record.exc_info).log(
            level, record.getMessage().replace("{", "{{").replace("}", "}}")
        )


def build_payload(record: Dict[str, Any], metadata: Dict[str, str]) -> Dict[str, Any]:
    """Turn a Loguru record into the JSON document written for it."""

    extra = dict(record["extra"])
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": extra.pop("stdlib_logger", record["name"]),
        **metadata,
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    reward = {key: extra.pop(key) for key in REWARD_CONTEXT_KEYS if key in extra}
    if reward:
        payload["reward"] = reward
    if extra:
        payload["context"] = extra

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["error"] = {
            "type": exc_type.__name__ if exc_type else None,
            "detail": str(exc_value) if exc_value else None,
        }
    return payload


def configure_logging(*, service_name: str, environment: str, version: str) -> None:
    """Install the JSON sink and route stdlib logging through it."""

    metadata = {"service": service_name, "environment": environment, "version": version}

    def sink(message: "logger.Message") -> None:
        sys.stdout.write(json.dumps(build_payload(message.record, metadata), default=str) + "\n")

    logger.remove()
    logger.add(sink, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
