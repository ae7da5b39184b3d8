"""Identifier generation."""

import secrets
import uuid

# No 0/O or 1/I so codes can be read over the phone
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_id(prefix: str) -> str:
    """Generate a unique ID like BK-ABC123DEF456."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def generate_confirmation_code(length: int = 8) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
