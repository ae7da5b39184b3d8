"""FastAPI application for the booking engine REST API.

Serves the booking lifecycle (create, pay, cancel), listing calendars,
processor webhooks, admin verification and the manual reconciliation
trigger. All routes live under /api.
"""

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booking_api.exceptions import register_exception_handlers
from booking_api.middleware.correlation import CorrelationIdMiddleware
from booking_api.routes.admin import router as admin_router
from booking_api.routes.bookings import router as bookings_router
from booking_api.routes.health import router as health_router
from booking_api.routes.listings import router as listings_router
from booking_api.routes.reconciliation import router as reconciliation_router
from booking_api.routes.webhooks import router as webhooks_router
from booking_core import __version__
from booking_core.config import get_settings
from booking_core.utils.logging import configure_logging, get_logger
from booking_core.utils.timestamps import to_iso, utc_now

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Booking Engine API",
    description="Booking lifecycle and payment reconciliation",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

app.include_router(health_router, prefix="/api")
app.include_router(bookings_router, prefix="/api")
app.include_router(listings_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(reconciliation_router, prefix="/api")


@app.get("/api/ping")
def ping() -> dict[str, Any]:
    """Root health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": to_iso(utc_now()),
        "service": "booking-api",
    }


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: False)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run("booking_api.main:app", host=host, port=port, reload=True)
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
