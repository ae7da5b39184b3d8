"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured formatter that prefixes every line with the correlation ID
- Helpers for payment, transition and webhook audit lines

Usage:
    from booking_core.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Reserving dates", extra={"booking_id": "BK-123"})
"""

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any

# Thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates a new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter that prefixes each line with the correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"
        base = super().format(record)
        return f"[{record.correlation_id}] {base}"


def configure_logging(level: str | int | None = None) -> None:
    """Install the structured formatter on the root logger.

    Safe to call more than once; the handler is only added the first time.

    Args:
        level: Log level name or number. Defaults to LOG_LEVEL or INFO.
    """
    resolved = level or os.getenv("LOG_LEVEL", "INFO")
    root = logging.getLogger()
    root.setLevel(resolved)

    for handler in root.handlers:
        if isinstance(handler.formatter, StructuredFormatter):
            return

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def _join(prefix: str, context: dict[str, Any], skip: set[str]) -> str:
    parts = [prefix]
    for key, value in context.items():
        if key not in skip:
            parts.append(f"{key}={value}")
    return " | ".join(parts)


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    booking_id: str | None = None,
    intent_id: str | None = None,
    amount: int | None = None,
    currency: str | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a payment operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "create_authorization", "request_refund")
        booking_id: Booking ID if available
        intent_id: Processor PaymentIntent ID if available
        amount: Amount in minor units if relevant
        currency: ISO currency code
        status: Processor status
        error: Error message if the operation failed
        **extra: Additional context fields (fee, destination, ...)
    """
    context: dict[str, Any] = {"operation": operation}
    if booking_id:
        context["booking_id"] = booking_id
    if intent_id:
        context["intent_id"] = intent_id
    if amount is not None:
        context["amount"] = amount
    if currency:
        context["currency"] = currency
    if status:
        context["status"] = status
    if error:
        context["error"] = error
    context.update(extra)

    message = _join(f"Payment operation: {operation}", context, {"operation"})
    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_transition(
    logger: logging.Logger,
    booking_id: str,
    event: str,
    from_status: str,
    to_status: str,
    *,
    actor: str | None = None,
    changed: bool = True,
    **extra: Any,
) -> None:
    """Log a booking state transition.

    Args:
        logger: Logger instance
        booking_id: Booking being transitioned
        event: Event applied
        from_status: Status before the event
        to_status: Status after the event
        actor: Who triggered it (guest, host, system, admin)
        changed: False when the event was already applied
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "booking_id": booking_id,
        "event": event,
        "from_status": from_status,
        "to_status": to_status,
        "changed": changed,
    }
    if actor:
        context["actor"] = actor
    context.update(extra)

    if changed:
        message = f"Booking {booking_id}: {from_status} -> {to_status} on {event}"
    else:
        message = f"Booking {booking_id}: {event} already applied (status {to_status})"
    if actor:
        message = f"{message} | actor={actor}"
    logger.info(message, extra=context)


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    booking_id: str | None = None,
    intent_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a processor webhook event with structured context.

    Args:
        logger: Logger instance
        event_type: Processor event type (e.g., "payment_intent.succeeded")
        event_id: Processor event ID
        booking_id: Associated booking ID if resolved
        intent_id: Associated PaymentIntent ID
        result: Processing result (success, duplicate, skipped, error, ...)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"event_type": event_type, "event_id": event_id}
    if booking_id:
        context["booking_id"] = booking_id
    if intent_id:
        context["intent_id"] = intent_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error
    context.update(extra)

    msg_parts = [f"Webhook event: {event_type} ({event_id})"]
    if result:
        msg_parts.append(f"result={result}")
    if booking_id:
        msg_parts.append(f"booking={booking_id}")
    if error:
        msg_parts.append(f"error={error}")
    message = " | ".join(msg_parts)

    if result == "error":
        logger.error(message, extra=context)
    elif result in ("duplicate", "skipped"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
