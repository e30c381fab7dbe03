"""
Unit tests for key helpers and the call data model.
"""

import asyncio

import pytest

from resilient_requests.core.types import Attempt, CallRecord, Outcome
from resilient_requests.exceptions import ValidationError
from resilient_requests.utils.keys import MAX_KEY_LENGTH, make_key, validate_key


@pytest.mark.unit
class TestKeys:
    """Test key validation and derivation."""

    def test_valid_key(self):
        assert validate_key("users:1") == "users:1"

    @pytest.mark.parametrize("key", ["", None, 1, b"bytes"])
    def test_invalid_key(self, key):
        with pytest.raises(ValidationError):
            validate_key(key)

    def test_key_too_long(self):
        with pytest.raises(ValidationError):
            validate_key("k" * (MAX_KEY_LENGTH + 1))

    def test_make_key_deterministic(self):
        assert make_key("fetch", 1, b=2, a=1) == make_key("fetch", 1, a=1, b=2)

    def test_make_key_distinguishes_arguments(self):
        assert make_key("fetch", 1) != make_key("fetch", 2)
        assert make_key("fetch", 1) != make_key("other", 1)

    def test_make_key_prefix(self):
        assert make_key("module.fetch", {"q": "x"}).startswith("module.fetch:")

    def test_make_key_handles_unserializable_values(self):
        assert make_key("fetch", object) == make_key("fetch", object)


@pytest.mark.unit
class TestOutcome:
    """Test Outcome."""

    def test_success(self):
        outcome = Outcome.success(5)
        assert outcome.ok
        assert outcome.unwrap() == 5

    def test_failure(self):
        error = KeyError("x")
        outcome = Outcome.failure(error)
        assert not outcome.ok
        with pytest.raises(KeyError):
            outcome.unwrap()

    def test_success_with_none_value(self):
        assert Outcome.success(None).ok


@pytest.mark.unit
class TestAttemptAndRecord:
    """Test Attempt and CallRecord bookkeeping."""

    def test_attempt_duration(self):
        attempt = Attempt(sequence=1, started_at=10.0)
        assert attempt.duration is None
        assert not attempt.succeeded

        attempt.finish(10.5, value="v")
        assert attempt.duration == 0.5
        assert attempt.succeeded
        assert attempt.to_dict()["error"] is None

    def test_failed_attempt(self):
        attempt = Attempt(sequence=2, started_at=0.0)
        attempt.finish(1.0, error=ValueError("bad"))
        assert not attempt.succeeded
        assert attempt.to_dict()["error"] == "ValueError"

    @pytest.mark.asyncio
    async def test_record_attempt_sequence_and_snapshot(self):
        record = CallRecord(key="k", future=asyncio.get_running_loop().create_future())
        record.start_attempt(0.0).finish(1.0, error=ValueError())
        record.start_attempt(1.0).finish(1.5, value=1)
        record.outcome = Outcome.success(1)

        snapshot = record.snapshot()
        record.start_attempt(2.0)

        assert [a.sequence for a in snapshot.attempts] == [1, 2]
        assert snapshot.resolved
        summary = snapshot.summary()
        assert summary["total_attempts"] == 2
        assert summary["failures"] == 1
        assert summary["total_duration"] == 1.5
        assert summary["ok"] is True
