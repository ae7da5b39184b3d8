"""Unit tests for AdminVerificationGate.

The admin code hash and salt come from environment overrides set in
conftest (ADMIN_CODE_HASH / ADMIN_CODE_SALT), so no SSM calls are made.
"""

import datetime as dt
from unittest.mock import patch

import pytest

from booking_core.models import (
    ExternalServiceError,
    InvalidCodeError,
    RateLimitedError,
    ValidationError,
)
from booking_core.services.admin_gate import hash_admin_code, hash_token
from booking_core.services.ssm_service import SSMServiceError
from tests.factories import ADMIN_CODE, NOW

CLIENT = "203.0.113.7"


def _fail(gate, times: int, now: dt.datetime = NOW) -> list[int]:
    """Submit wrong codes, returning the attempts left after each."""
    remaining = []
    for _ in range(times):
        with pytest.raises(InvalidCodeError) as exc_info:
            gate.verify(CLIENT, "wrong-code", now=now)
        remaining.append(exc_info.value.attempts_remaining)
    return remaining


# === Verification ===


class TestVerify:
    """Tests for verify()."""

    def test_correct_code_issues_session(self, admin_gate):
        session = admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

        assert session.token
        assert session.session_id == hash_token(session.token)
        assert session.client_id == CLIENT
        assert session.expires_at == NOW + dt.timedelta(hours=12)

    def test_wrong_code_counts_down(self, admin_gate):
        assert _fail(admin_gate, 4) == [4, 3, 2, 1]

    def test_empty_code(self, admin_gate):
        with pytest.raises(ValidationError):
            admin_gate.verify(CLIENT, "", now=NOW)

        assert admin_gate.get_counter(CLIENT) is None

    def test_success_clears_failures(self, admin_gate):
        _fail(admin_gate, 3)

        admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

        assert admin_gate.get_counter(CLIENT) is None
        assert _fail(admin_gate, 1) == [4]

    def test_clients_are_counted_separately(self, admin_gate):
        _fail(admin_gate, 4)

        with pytest.raises(InvalidCodeError) as exc_info:
            admin_gate.verify("198.51.100.1", "wrong-code", now=NOW)

        assert exc_info.value.attempts_remaining == 4

    def test_secret_unavailable(self, admin_gate):
        with patch.object(
            admin_gate.secrets, "get_secret", side_effect=SSMServiceError("not found")
        ):
            with pytest.raises(ExternalServiceError):
                admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

    def test_hash_admin_code(self):
        first = hash_admin_code("code", "salt", 1000)

        assert first == hash_admin_code("code", "salt", 1000)
        assert first != hash_admin_code("code", "other-salt", 1000)
        assert len(first) == 64


# === Lockout ===


class TestLockout:
    """Five failures inside 15 minutes lock the client for 15 minutes."""

    def test_fifth_failure_locks(self, admin_gate):
        assert _fail(admin_gate, 5) == [4, 3, 2, 1, 0]

        counter = admin_gate.get_counter(CLIENT)
        assert counter.failure_count == 5
        assert counter.locked_until == NOW + dt.timedelta(minutes=15)

    def test_locked_client_is_rate_limited(self, admin_gate):
        _fail(admin_gate, 5)

        with pytest.raises(RateLimitedError) as exc_info:
            admin_gate.verify(CLIENT, "wrong-code", now=NOW + dt.timedelta(minutes=1))

        assert exc_info.value.retry_after_seconds == 840

    def test_correct_code_rejected_while_locked(self, admin_gate):
        _fail(admin_gate, 5)

        with pytest.raises(RateLimitedError):
            admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW + dt.timedelta(minutes=5))

    def test_attempts_while_locked_do_not_extend_lock(self, admin_gate):
        _fail(admin_gate, 5)
        for minute in range(1, 10):
            with pytest.raises(RateLimitedError):
                admin_gate.verify(CLIENT, "wrong-code", now=NOW + dt.timedelta(minutes=minute))

        counter = admin_gate.get_counter(CLIENT)
        assert counter.locked_until == NOW + dt.timedelta(minutes=15)
        assert counter.failure_count == 5

    def test_lock_expires(self, admin_gate):
        _fail(admin_gate, 5)
        after_lock = NOW + dt.timedelta(minutes=15, seconds=1)

        session = admin_gate.verify(CLIENT, ADMIN_CODE, now=after_lock)

        assert session.token

    def test_wrong_code_after_lock_starts_new_window(self, admin_gate):
        _fail(admin_gate, 5)
        after_lock = NOW + dt.timedelta(minutes=15, seconds=1)

        assert _fail(admin_gate, 1, now=after_lock) == [4]
        assert admin_gate.get_counter(CLIENT).locked_until is None

    def test_window_elapses_without_lock(self, admin_gate):
        """Failures spread over more than 15 minutes never lock."""
        _fail(admin_gate, 4)

        later = NOW + dt.timedelta(minutes=16)

        assert _fail(admin_gate, 1, now=later) == [4]


# === Sessions ===


class TestSessions:
    """Tests for validate_session() and revoke_session()."""

    def test_valid_session(self, admin_gate):
        issued = admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

        session = admin_gate.validate_session(issued.token, now=NOW + dt.timedelta(hours=1))

        assert session.session_id == issued.session_id
        assert session.token is None

    def test_expired_session(self, admin_gate):
        issued = admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

        assert admin_gate.validate_session(issued.token, now=NOW + dt.timedelta(hours=12)) is None

    @pytest.mark.parametrize("token", [None, "", "not-a-real-token"])
    def test_unknown_token(self, admin_gate, token):
        assert admin_gate.validate_session(token, now=NOW) is None

    def test_revoked_session(self, admin_gate):
        issued = admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

        admin_gate.revoke_session(issued.token)

        assert admin_gate.validate_session(issued.token, now=NOW) is None

    def test_raw_token_is_not_stored(self, admin_gate, db):
        issued = admin_gate.verify(CLIENT, ADMIN_CODE, now=NOW)

        item = db.get_item("admin-sessions", {"session_id": issued.session_id})

        assert issued.token not in item.values()
