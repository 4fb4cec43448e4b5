"""
Structured Logging Setup

Consistent logging configuration across all gateway components.
Uses JSON format for structured logs in production.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

_RESERVED_ATTRS = (
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
)


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

        # Extra fields passed via `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds the component name to all logs"""

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
    Set up structured logging for a component.

    Args:
        service_name: Name of the component (e.g., "device.registry")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"gateway.{service_name}")
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

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with component context.

    Level and format come from GATEWAY_LOG_LEVEL / GATEWAY_LOG_FORMAT.
    """
    log_level = os.environ.get("GATEWAY_LOG_LEVEL", "INFO")
    json_format = os.environ.get("GATEWAY_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def configure_from_settings(
    log_level: str,
    json_format: bool,
    force: bool = False,
) -> None:
    """
    Apply CLI/YAML logging settings.

    Existing GATEWAY_LOG_* environment values win unless force is set
    (--verbose). Module loggers are created at import time, so every
    gateway logger that already exists is reconfigured as well.
    """
    fmt = "json" if json_format else "text"
    if force:
        os.environ["GATEWAY_LOG_LEVEL"] = log_level.upper()
        os.environ["GATEWAY_LOG_FORMAT"] = fmt
    else:
        os.environ.setdefault("GATEWAY_LOG_LEVEL", log_level.upper())
        os.environ.setdefault("GATEWAY_LOG_FORMAT", fmt)

    level = os.environ["GATEWAY_LOG_LEVEL"]
    use_json = os.environ["GATEWAY_LOG_FORMAT"].lower() == "json"
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith("gateway."):
            setup_logging(name[len("gateway."):], level, use_json)


# Convenience loggers for common operations
LoggerLike = logging.Logger | logging.LoggerAdapter


def log_tag_read(
    logger: LoggerLike,
    device_name: str,
    tag_name: str,
    value: Any,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a tag read operation"""
    if success:
        logger.debug(
            f"Read {device_name}.{tag_name} = {value}",
            extra={"device": device_name, "tag": tag_name, "value": value},
        )
    else:
        message = f"Failed to read {device_name}.{tag_name}"
        if error:
            message += f": {error}"
        logger.warning(
            message,
            extra={"device": device_name, "tag": tag_name, "error": error},
        )


def log_connection_state(
    logger: LoggerLike,
    device_name: str,
    old_state: str,
    new_state: str,
    reason: str | None = None,
) -> None:
    """Log a device connection state transition"""
    message = f"Device {device_name}: {old_state} -> {new_state}"
    if reason:
        message += f" ({reason})"

    log_method = logger.warning if reason else logger.info
    log_method(
        message,
        extra={
            "device": device_name,
            "old_state": old_state,
            "new_state": new_state,
        },
    )
