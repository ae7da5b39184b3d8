"""Scheduled entry point for the reconciliation sweep.

Invoked by an EventBridge schedule (e.g. every 5 minutes) as a Lambda
handler. The sweep is safe to overlap with itself, so a slow run followed by
the next tick needs no locking.
"""

from typing import Any

from booking_api.dependencies import get_reconciliation_scheduler
from booking_core.utils.logging import configure_logging, get_logger, set_correlation_id

configure_logging()
logger = get_logger(__name__)


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Run one reconciliation pass and return its report.

    Args:
        event: Scheduler event (contents unused)
        context: Lambda context

    Returns:
        The ReconciliationReport as JSON-compatible data
    """
    set_correlation_id(getattr(context, "aws_request_id", None))
    report = get_reconciliation_scheduler().run()
    if report.failure_count:
        logger.warning("Reconciliation finished with %d failures", report.failure_count)
    return report.model_dump(mode="json")
