"""
Structured Logging Configuration Module

Ledger log records carry the principal, the operation, the deposit and the
token amounts as first-class fields. The JSON formatter emits them as
top-level keys; the text formatter appends them as key=value pairs.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Record attributes promoted to top-level log fields, in output order
LEDGER_FIELDS = ("principal", "action", "deposit_id", "amount", "payout")


def _ledger_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {}
    for name in LEDGER_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            fields[name] = value
    return fields


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_ledger_fields(record))

        details = getattr(record, 'details', None)
        if details:
            log_entry['details'] = details

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Plain text with ledger fields appended as key=value"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record):
        line = super().format(record)
        pairs = dict(_ledger_fields(record))
        pairs.update(getattr(record, 'details', None) or {})
        if pairs:
            line += " " + " ".join(f"{k}={v}" for k, v in pairs.items())
        return line


def setup_logging(level: str = "INFO", logger_name: str = "timelock_savings",
                  log_format: str = "json") -> logging.Logger:
    """
    Setup structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the logger
        log_format: "json" for structured output, "text" for key=value lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else KeyValueFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "timelock_savings") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               principal: Optional[str] = None, action: Optional[str] = None,
               deposit_id: Optional[str] = None, amount: Optional[int] = None,
               payout: Optional[int] = None, details: Optional[dict] = None):
    """
    Log a ledger operation with its structured fields.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        principal: Caller the operation was performed for
        action: Ledger operation name
        deposit_id: "owner:index" of the affected deposit
        amount: Token amount the operation was asked to move
        payout: Token amount actually paid out
        details: Any other operation-specific values
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {
        'principal': principal,
        'action': action,
        'deposit_id': deposit_id,
        'amount': amount,
        'payout': payout,
        'details': details,
    }
    logger.log(levelno, message, extra={k: v for k, v in fields.items() if v is not None})
