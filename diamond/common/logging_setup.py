"""
Structured Logging Setup

Consistent logging configuration across the client subsystems.
Uses JSON format for structured logs by default.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a client subsystem.

    Args:
        service_name: Name of the subsystem (e.g., "address", "config.poll")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"diamond.{service_name}")
    logger.setLevel(numeric_level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Host applications own the root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the subsystem

    Returns:
        Logger adapter with service name in all logs
    """
    log_level = os.environ.get("DIAMOND_LOG_LEVEL", "INFO")
    json_format = os.environ.get("DIAMOND_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def log_fetch(
    logger: logging.LoggerAdapter,
    server: str,
    group: str,
    data_id: str,
    success: bool = True,
    error: Any = None,
) -> None:
    """Log a configuration fetch against one server"""
    if success:
        logger.debug(
            f"Fetched {group}/{data_id} from {server}",
            extra={"server": server, "group": group, "data_id": data_id},
        )
    else:
        logger.warning(
            f"Failed to fetch {group}/{data_id} from {server}: {error}",
            extra={"server": server, "group": group, "data_id": data_id},
        )


def log_config_change(
    logger: logging.LoggerAdapter,
    group: str,
    data_id: str,
    old_md5: str | None,
    new_md5: str,
) -> None:
    """Log a detected configuration change"""
    old_short = old_md5[:8] if old_md5 else "none"
    logger.info(
        f"Config {group}/{data_id} changed ({old_short} → {new_md5[:8]})",
        extra={
            "group": group,
            "data_id": data_id,
            "old_md5": old_md5,
            "new_md5": new_md5,
        },
    )
