"""
Structured logging for pipeline audit trails.

Application code logs through ``structlog`` with keyword fields; once
``setup_logging`` has run, those fields reach the stdlib handlers as record
extras and are written out by ``SentinelJsonFormatter``.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger


class SentinelJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with service metadata."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = "sentinel"

        # structlog hands the event name over as the message
        if "message" in log_record and "event" not in log_record:
            log_record["event"] = log_record.pop("message")


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure JSON logging for the stdlib root logger and route structlog through it.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file (defaults to stdout only)

    Returns:
        The package logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(SentinelJsonFormatter())
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(SentinelJsonFormatter())
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return logging.getLogger("sentinel")


def log_run_start(
    logger: Any,
    run_id: str,
    transaction_id: Optional[str],
    threshold: float,
) -> None:
    """Log Sentinel run start."""
    logger.info(
        "Sentinel run started",
        run_id=run_id,
        status="started",
        details={"transaction_id": transaction_id, "threshold": threshold},
    )


def log_stage_end(
    logger: Any,
    run_id: str,
    stage: str,
    duration_ms: int,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Log completion of a single pipeline stage."""
    logger.info(
        f"Stage {stage} completed",
        run_id=run_id,
        status="stage_completed",
        details={"stage": stage, "duration_ms": duration_ms, **(details or {})},
    )


def log_stage_error(
    logger: Any,
    run_id: str,
    stage: str,
    error: str,
) -> None:
    """Log a stage failure that was degraded to an error event."""
    logger.error(
        f"Stage {stage} failed",
        run_id=run_id,
        status="stage_failed",
        details={"stage": stage, "error": error},
    )


def log_run_end(
    logger: Any,
    run_id: str,
    score: float,
    severity: Optional[str],
    duration_ms: int,
) -> None:
    """Log Sentinel run end."""
    logger.info(
        "Sentinel run completed",
        run_id=run_id,
        status="completed",
        details={"score": score, "severity": severity, "duration_ms": duration_ms},
    )
