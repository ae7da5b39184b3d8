"""Contract tests reuse the API client fixtures."""

from tests.api.conftest import admin_headers, api_stripe, client, created_booking

__all__ = ["admin_headers", "api_stripe", "client", "created_booking"]
