"""
Structured logging for the three-way match engine.
"""

import logging
import json
from datetime import datetime
from typing import Optional
from three_way_match.config import get_config


config = get_config()


class StructuredFormatter(logging.Formatter):
    """Formats log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra"):
            log_obj.update(record.extra)

        return json.dumps(log_obj, default=str)


def setup_logging(name: str = __name__) -> logging.Logger:
    """Setup and return a configured logger."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, config.LOG_LEVEL))

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, config.LOG_LEVEL))
    console_formatter = logging.Formatter(config.LOG_FORMAT)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler with structured JSON
    if config.LOG_FILE:
        file_handler = logging.FileHandler(config.LOG_FILE)
        file_handler.setLevel(getattr(logging, config.LOG_LEVEL))
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    return logger


def log_node_action(
    logger: logging.Logger,
    node_name: str,
    action: str,
    details: Optional[dict] = None,
) -> None:
    """Log a graph node action with context."""
    extra = {
        "node": node_name,
        "action": action,
    }
    if details:
        extra.update(details)

    logger.info(
        f"[{node_name}] {action}",
        extra={"extra": extra}
    )


def log_match_exception(
    logger: logging.Logger,
    invoice_id: int,
    kind: str,
    field: str,
    percent_difference: Optional[float] = None,
) -> None:
    """Log a detected match exception."""
    extra = {
        "type": "match_exception",
        "invoice_id": invoice_id,
        "kind": kind,
        "field": field,
        "percent_difference": percent_difference,
    }
    suffix = f" ({percent_difference:.2f}%)" if percent_difference is not None else ""
    logger.warning(
        f"Match exception on invoice {invoice_id}: {kind} at {field}{suffix}",
        extra={"extra": extra}
    )
