"""
Structured logging for context operations, batches and live-update subscribers.
"""

import logging
from typing import Any, Dict, List

from ..core.config import LOG_LEVEL

SENSITIVE_FIELDS = ['value', 'metadata', 'data', 'payload', 'secret', 'password']


class StructuredLogger:
    """Structured logger for store, batch and broadcast operations."""

    def __init__(self, name: str = "context_server", level: str = LOG_LEVEL):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level, logging.INFO))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_context_operation(self, operation: str, key: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a single-record operation (create, update, fetch, delete)."""
        log_details = {"key": key}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"context.{operation}", status, log_details, level)

    def log_batch(self, total: int, status: str, details: Dict[str, Any] = None):
        """Log the outcome of a batch."""
        log_details = {"total": total}
        if details:
            log_details.update(details)

        level = logging.INFO if status in ("committed", "started") else logging.ERROR
        self.log_operation("context.batch", status, log_details, level)

    def log_subscriber_event(self, subscriber_id: str, event: str, details: Dict[str, Any] = None):
        """Log a subscriber lifecycle event (connected, closed, dropped)."""
        log_details = {"subscriber_id": subscriber_id}
        if details:
            log_details.update(details)

        level = logging.WARNING if event == "dropped" else logging.INFO
        self.log_operation(f"subscriber.{event}", "ok" if level == logging.INFO else "failed", log_details, level)

    def log_validation_error(self, operation: str, errors: List[Any], source_record: Dict[str, Any] = None):
        """Log validation errors with sanitized details."""
        sanitized_errors = []
        for error in errors:
            if isinstance(error, dict):
                sanitized_errors.append(sanitize_payload(error))
            else:
                sanitized_errors.append(str(error)[:100])

        log_details = {
            "operation": operation,
            "errors": sanitized_errors,
            "error_count": len(sanitized_errors)
        }

        # Only log identifiers, never values
        if isinstance(source_record, dict) and isinstance(source_record.get("key"), str):
            log_details["target_identifier"] = source_record["key"]

        self.log_operation("validation.error", "rejected", log_details, logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
