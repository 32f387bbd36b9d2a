"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger
from statement_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_batch_summary(
    batch_id: int,
    status: str,
    total_transactions: int,
    new_transactions: int,
    updated_transactions: int,
    duplicate_transactions: int,
    failed_files: int,
    duration_ms: float,
    notice: Optional[str] = None,
) -> None:
    """Log structured batch outcome for analysis"""
    logging.info(
        "Batch completed",
        extra={
            "batch_id": batch_id,
            "step": "batch_complete",
            "status": status,
            "total_transactions": total_transactions,
            "new_transactions": new_transactions,
            "updated_transactions": updated_transactions,
            "duplicate_transactions": duplicate_transactions,
            "failed_files": failed_files,
            "duration_ms": duration_ms,
            "notice": notice,
        },
    )
