"""API-specific request/response models.

Domain models (Booking, CalendarBlock, PaymentSession, ...) live in
booking_core.models and are reused here as response schemas where they fit.

Modules:
- common: Shared response wrappers
- bookings: Booking request/response models
- listings: Calendar block request/response models
- admin: Admin verification models
"""

__all__: list[str] = []
