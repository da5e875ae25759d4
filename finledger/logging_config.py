"""
Logging for the finledger package.

Records go out either as one JSON object per line or as plain text. Ledger
code attaches owner, action and resource fields through ``log_action``.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Attributes log_action sets on a record, in output order
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a record and its ledger fields as a single JSON line"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "finledger",
                  log_format: str = "json") -> logging.Logger:
    """
    Point the ``finledger`` logger tree at stderr.

    Calling it again replaces the handler, so the API server and tests can
    reconfigure without doubling output.

    Args:
        level: Level name, case-insensitive
        logger_name: Top of the logger tree to configure
        log_format: "json" or "text"
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "finledger") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log ``message`` with ledger fields attached to the record.

    Args:
        logger: Target logger
        level: Level name such as "info" or "warning"
        message: Human-readable text
        user_id: Owner the action was performed for
        action: Operation name, e.g. "post_transaction"
        resource: Record the action touched
        correlation_id: Request id from the caller, if any
        extra: Further key/value context
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(getattr(logging, level.upper()), message,
               extra={k: v for k, v in fields.items() if v})
