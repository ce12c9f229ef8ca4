"""
Logging for the Research Engine

Two channels:
1. structlog for application logs (every module calls get_logger(__name__))
2. A JSONL run log per research run: one JSON object per line, written
   through a stdlib logging.FileHandler to logs/<run_id>.jsonl

The run log is an audit trail of one run: stages with timings, every
search, every sub-query branch (completed or failed) and a closing
summary with elapsed time and prompt/completion token totals.
"""

import logging
import json
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextlib import contextmanager
import structlog

from config.settings import settings


# ============================================================================
# APPLICATION LOGS (structlog)
# ============================================================================

def configure_structlog():
    """
    Configure structlog once, on import.

    Renders coloured key/value lines while ENVIRONMENT is "development"
    and JSON everywhere else. Level comes from settings.LOG_LEVEL.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.ENVIRONMENT == "development"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.LOG_LEVEL.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Structured logger for a module.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Search completed", extra={"results_count": 7})
    """
    return structlog.get_logger(name) if name else structlog.get_logger()


# ============================================================================
# RUN LOG (JSONL, one file per research run)
# ============================================================================

class JSONLFormatter(logging.Formatter):
    """
    One JSON object per record.

    Example line:
    {"timestamp": "2026-01-07T01:23:45.000000Z", "level": "INFO", "run_id": "r1", "event_type": "search_executed", "data": {...}}
    """

    # LogRecord attribute -> key in the JSON line
    EVENT_FIELDS = (("run_id", "run_id"), ("event_type", "event_type"), ("event_data", "data"))

    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
        }

        message = record.getMessage()
        if message:
            line["message"] = message

        for attribute, key in self.EVENT_FIELDS:
            if hasattr(record, attribute):
                line[key] = getattr(record, attribute)

        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)

        return json.dumps(line, ensure_ascii=False, default=str)


def setup_execution_logging(run_id: str, log_dir: str = "logs", level: int = logging.DEBUG) -> logging.Logger:
    """
    Open the run log for `run_id`.

    Records go to <log_dir>/<run_id>.jsonl only; the logger does not
    propagate, so run events never reach the console. Close it with
    close_execution_logging() when the run ends.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / f"{run_id}.jsonl"

    run_logger = logging.getLogger(f"execution.{run_id}")
    run_logger.setLevel(level)
    run_logger.propagate = False
    run_logger.handlers.clear()

    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(JSONLFormatter())
    run_logger.addHandler(handler)

    run_logger.debug(f"Run log opened at {log_file}")
    return run_logger


def close_execution_logging(run_logger: logging.Logger) -> None:
    """Flush and detach every handler of a run logger."""
    for handler in list(run_logger.handlers):
        handler.flush()
        handler.close()
        run_logger.removeHandler(handler)


def log_event(
    run_logger: Optional[logging.Logger],
    event_type: str,
    run_id: Optional[str],
    event_data: Dict[str, Any],
    level: int = logging.INFO
) -> None:
    """
    Write one event to the run log.

    A None logger is accepted so callers without a run log can call
    this unconditionally.

    Example:
        >>> log_event(run_logger, "subquery_failed", "r1", {"query": "e-bikes", "error": "timeout"})
    """
    if run_logger is None:
        return

    message = f"{event_type}: {event_data['query']}" if "query" in event_data else event_type
    run_logger.log(
        level,
        message,
        extra={"event_type": event_type, "run_id": run_id, "event_data": event_data}
    )


@contextmanager
def log_stage(run_logger: Optional[logging.Logger], stage_name: str, run_id: Optional[str]):
    """
    Bracket a stage with stage_started and stage_completed/stage_failed.

    Exceptions (cancellation included) are logged and re-raised.

    Example:
        >>> with log_stage(run_logger, "deep_research", "r1"):
        ...     result = await engine.run(task)
    """
    started = datetime.now(timezone.utc)
    log_event(run_logger, "stage_started", run_id, {"stage": stage_name, "start_time": started.isoformat()})

    def elapsed() -> float:
        return (datetime.now(timezone.utc) - started).total_seconds()

    try:
        yield
    except BaseException as e:
        log_event(run_logger, "stage_failed", run_id, {
            "stage": stage_name,
            "duration_seconds": elapsed(),
            "error": str(e),
            "error_type": type(e).__name__
        }, level=logging.ERROR)
        raise

    log_event(run_logger, "stage_completed", run_id, {"stage": stage_name, "duration_seconds": elapsed()})


def log_search_execution(
    run_logger: Optional[logging.Logger],
    run_id: Optional[str],
    query: str,
    results_count: int,
    duration_seconds: float
) -> None:
    log_event(run_logger, "search_executed", run_id, {
        "query": query,
        "results_count": results_count,
        "duration_seconds": round(duration_seconds, 3)
    })


def log_run_summary(
    run_logger: Optional[logging.Logger],
    run_id: Optional[str],
    duration_seconds: float,
    prompt_tokens: int,
    completion_tokens: int
) -> None:
    """Closing event of a run: elapsed time and token usage."""
    log_event(run_logger, "run_summary", run_id, {
        "duration_seconds": round(duration_seconds, 3),
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens
    })


configure_structlog()


__all__ = [
    "get_logger",
    "configure_structlog",
    "setup_execution_logging",
    "close_execution_logging",
    "log_event",
    "log_stage",
    "log_search_execution",
    "log_run_summary",
    "JSONLFormatter",
]
