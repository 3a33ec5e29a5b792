"""Structured JSON logging for connection, sync and quota events"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from openfinance_gateway.config import settings

# httpx logs every request URL at INFO, including userId query parameters
QUIET_LOGGERS = ("httpx", "httpcore")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records stamped with a UTC timestamp, level and service name"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Send every record to stdout as one JSON object per line"""
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_sync(
    user_id: str,
    item_id: str,
    accounts_kept: int,
    accounts_dropped: int,
    duration_ms: float,
) -> None:
    """Log structured sync outcome for analysis"""
    logging.info(
        "Sync completed",
        extra={
            "user_id": user_id,
            "item_id": item_id,
            "step": "sync_complete",
            "accounts_kept": accounts_kept,
            "accounts_dropped": accounts_dropped,
            "duration_ms": duration_ms,
        },
    )


def log_provider_error(user_id: str, code: Optional[str], category: str, item_id: Optional[str]) -> None:
    logging.warning(
        "Provider error classified",
        extra={
            "user_id": user_id,
            "step": "widget_error",
            "error_code": code,
            "error_category": category,
            "item_id": item_id,
        },
    )


def log_credit_consumed(user_id: str, operation: str, count: int) -> None:
    logging.info(
        "Aggregator credit consumed",
        extra={"user_id": user_id, "step": "credit_consumed", "operation": operation, "count_today": count},
    )
