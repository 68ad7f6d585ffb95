"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from billpay_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_submission(
    workflow_id: str,
    organization_id: str,
    source_kind: str,
    bill_count: int,
    successful: int,
    failed: int,
    duration_ms: float,
) -> None:
    """Log structured submission outcome for analysis"""
    logging.info(
        "Payment submission completed",
        extra={
            "workflow_id": workflow_id,
            "organization_id": organization_id,
            "step": "submission_complete",
            "source_kind": source_kind,
            "bill_count": bill_count,
            "successful": successful,
            "failed": failed,
            "duration_ms": duration_ms,
        },
    )


def log_export(workflow_id: str, status: str, attempts: int, payment_count: int | None = None) -> None:
    """Log structured export outcome"""
    logging.info(
        "Payment file export finished",
        extra={
            "workflow_id": workflow_id,
            "step": "export_complete",
            "export_status": status,
            "attempts": attempts,
            "payment_count": payment_count,
        },
    )
