"""Manual trigger for the reconciliation sweep.

Authenticated with the cron secret (Bearer token) or an admin session. The
scheduled Lambda calls the scheduler directly, see booking_api.scheduled.
"""

from fastapi import APIRouter, Depends

from booking_api.dependencies import get_reconciliation_scheduler
from booking_api.security import require_scheduler
from booking_core.models import ReconciliationReport
from booking_core.services.reconciliation import ReconciliationScheduler
from booking_core.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["internal"])


@router.post(
    "/internal/reconciliation/run",
    summary="Run the reconciliation sweep",
    response_model=ReconciliationReport,
    responses={401: {"description": "Scheduler credentials required"}},
)
def run_reconciliation(
    caller: str = Depends(require_scheduler),
    scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler),
) -> ReconciliationReport:
    logger.info("Reconciliation triggered manually (%s)", caller)
    return scheduler.run()
