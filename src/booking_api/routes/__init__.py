"""API routes package.

Routers are organized by domain and registered in main.py under /api:

- health: Health check
- bookings: Booking creation, payment and cancellation
- listings: Availability and host calendar blocks
- webhooks: Payment processor events
- admin: Admin verification and admin cancellation
- reconciliation: Manual reconciliation trigger
"""

from booking_api.routes.admin import router as admin_router
from booking_api.routes.bookings import router as bookings_router
from booking_api.routes.health import router as health_router
from booking_api.routes.listings import router as listings_router
from booking_api.routes.reconciliation import router as reconciliation_router
from booking_api.routes.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "bookings_router",
    "health_router",
    "listings_router",
    "reconciliation_router",
    "webhooks_router",
]
