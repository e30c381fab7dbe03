"""
Unit tests for in-flight deduplication.
"""

import asyncio

import pytest

from resilient_requests.core.types import Outcome
from resilient_requests.exceptions import TransportError
from resilient_requests.resilience.deduplication import Deduplicator


@pytest.mark.unit
class TestMembership:
    """Test leader election."""

    @pytest.mark.asyncio
    async def test_first_caller_leads(self):
        dedup = Deduplicator()
        membership = dedup.acquire_or_join("k")
        assert membership.is_leader
        assert membership.record.key == "k"
        assert dedup.is_in_flight("k")
        assert len(dedup) == 1

    @pytest.mark.asyncio
    async def test_second_caller_follows_same_record(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")
        follower = dedup.acquire_or_join("k")

        assert not follower.is_leader
        assert follower.record is leader.record
        assert follower.future is leader.future
        assert leader.record.followers == 1

    @pytest.mark.asyncio
    async def test_different_keys_are_independent(self):
        dedup = Deduplicator()
        assert dedup.acquire_or_join("a").is_leader
        assert dedup.acquire_or_join("b").is_leader
        assert sorted(dedup.keys()) == ["a", "b"]


@pytest.mark.unit
class TestResolution:
    """Test outcome fan-out."""

    @pytest.mark.asyncio
    async def test_followers_receive_leader_value(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")
        followers = [dedup.acquire_or_join("k") for _ in range(3)]
        waiters = [asyncio.ensure_future(dedup.wait(m)) for m in followers]
        await asyncio.sleep(0)

        dedup.resolve(leader.record, Outcome.success({"id": 1}))

        results = await asyncio.gather(*waiters)
        assert results == [{"id": 1}] * 3

    @pytest.mark.asyncio
    async def test_followers_receive_leader_error(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")
        follower = dedup.acquire_or_join("k")
        error = TransportError("Unavailable", status_code=503)

        dedup.resolve(leader.record, Outcome.failure(error))

        with pytest.raises(TransportError) as exc_info:
            await dedup.wait(follower)
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_resolve_removes_record_before_fan_out(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")
        dedup.resolve(leader.record, Outcome.success(1))

        assert not dedup.is_in_flight("k")
        assert leader.record.outcome.value == 1
        assert dedup.acquire_or_join("k").is_leader

    @pytest.mark.asyncio
    async def test_error_without_followers_is_not_reported_unretrieved(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")
        dedup.resolve(leader.record, Outcome.failure(ValueError("boom")))
        assert leader.future.done()
        # Retrieval already happened; asyncio will not log "never retrieved"
        assert isinstance(leader.future.exception(), ValueError)

    @pytest.mark.asyncio
    async def test_sequential_calls_do_not_share_state(self):
        dedup = Deduplicator()
        first = dedup.acquire_or_join("k")
        dedup.resolve(first.record, Outcome.success("first"))

        second = dedup.acquire_or_join("k")
        assert second.is_leader
        assert second.record is not first.record
        assert not second.future.done()

    @pytest.mark.asyncio
    async def test_follower_cancellation_does_not_cancel_shared_future(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")
        follower = dedup.acquire_or_join("k")
        waiter = asyncio.ensure_future(dedup.wait(follower))
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert not leader.future.cancelled()
        dedup.resolve(leader.record, Outcome.success("still delivered"))
        assert leader.future.result() == "still delivered"


@pytest.mark.unit
class TestDetach:
    """Test invalidation of in-flight records."""

    @pytest.mark.asyncio
    async def test_detach_marks_record_and_frees_key(self):
        dedup = Deduplicator()
        leader = dedup.acquire_or_join("k")

        assert dedup.detach("k") is True
        assert leader.record.detached
        assert not dedup.is_in_flight("k")

    @pytest.mark.asyncio
    async def test_detach_unknown_key(self):
        assert Deduplicator().detach("k") is False

    @pytest.mark.asyncio
    async def test_resolving_detached_record_keeps_newer_record(self):
        dedup = Deduplicator()
        old = dedup.acquire_or_join("k")
        old_follower = dedup.acquire_or_join("k")
        dedup.detach("k")
        new = dedup.acquire_or_join("k")

        dedup.resolve(old.record, Outcome.success("old"))

        assert await dedup.wait(old_follower) == "old"
        assert dedup.is_in_flight("k")
        assert dedup.acquire_or_join("k").record is new.record
