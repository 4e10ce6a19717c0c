"""Unit tests for the Redis tally store."""

import asyncio

import pytest

from voting_core.shared.models import get_redis_key
from voting_core.storage.tally import RECONCILE_MAX_ATTEMPTS, TallyStore, TallyStoreError

from fakes import BrokenRedis, FakeRedis

ELECTION = "general-2024"


def ledger_count(value):
    async def count():
        return value
    return count


@pytest.fixture
def tally(fake_redis):
    return TallyStore(fake_redis)


@pytest.mark.asyncio
class TestTallyStore:

    async def test_missing_counter_reads_zero(self, tally):
        assert await tally.get_count("nobody", ELECTION) == 0

    async def test_increment_returns_new_count(self, tally):
        assert await tally.increment_vote("cand-a", ELECTION) == 1
        assert await tally.increment_vote("cand-a", ELECTION) == 2
        assert await tally.get_count("cand-a", ELECTION) == 2

    @pytest.mark.concurrency
    async def test_concurrent_increments_all_land(self, tally):
        await asyncio.gather(*[tally.increment_vote("cand-a", ELECTION) for _ in range(100)])
        assert await tally.get_count("cand-a", ELECTION) == 100

    async def test_get_counts_single_round_trip(self, tally, fake_redis):
        await tally.increment_vote("cand-b", ELECTION)
        counts = await tally.get_counts(["cand-a", "cand-b"], ELECTION)
        assert counts == {"cand-a": 0, "cand-b": 1}
        assert await tally.get_counts([], ELECTION) == {}

    async def test_initialize_leaves_existing_counter(self, tally):
        assert await tally.initialize("cand-a", ELECTION) is True
        await tally.increment_vote("cand-a", ELECTION)
        assert await tally.initialize("cand-a", ELECTION) is False
        assert await tally.get_count("cand-a", ELECTION) == 1

    async def test_counters_are_scoped_by_election(self, tally, fake_redis):
        await tally.increment_vote("cand-a", ELECTION)
        await tally.increment_vote("cand-a", "runoff-2025")
        await tally.increment_vote("cand-a", "runoff-2025")

        assert await tally.get_counts(["cand-a"], ELECTION) == {"cand-a": 1}
        assert await tally.get_counts(["cand-a"], "runoff-2025") == {"cand-a": 2}
        assert fake_redis.data == {
            "candidate_tally:general-2024:cand-a": "1",
            "candidate_tally:runoff-2025:cand-a": "2",
        }

    async def test_reconcile_overwrites_and_returns_previous(self, tally, fake_redis):
        for _ in range(5):
            await tally.increment_vote("cand-a", ELECTION)

        previous, written = await tally.reconcile("cand-a", ELECTION, ledger_count(3))

        assert (previous, written) == (5, 3)
        assert await tally.get_count("cand-a", ELECTION) == 3
        stamp = fake_redis.hashes[get_redis_key("tally_reconciled", ELECTION)]["cand-a"]
        assert stamp.endswith("+00:00")

    async def test_reconcile_touches_only_its_election(self, tally):
        await tally.increment_vote("cand-a", ELECTION)

        await tally.reconcile("cand-a", "runoff-2025", ledger_count(0))

        assert await tally.get_count("cand-a", ELECTION) == 1

    async def test_reconcile_rejects_negative_count(self, tally):
        with pytest.raises(ValueError):
            await tally.reconcile("cand-a", ELECTION, ledger_count(-1))

    async def test_increment_during_reconcile_is_not_overwritten(self, tally):
        """An INCR between the ledger read and the SET forces a fresh ledger read."""
        ledger = {"count": 2}
        reads = []
        for _ in range(2):
            await tally.increment_vote("cand-a", ELECTION)

        async def count_then_commit_vote():
            count = ledger["count"]
            reads.append(count)
            if len(reads) == 1:
                # A cast commits its row and increments before the SET lands.
                ledger["count"] += 1
                await tally.increment_vote("cand-a", ELECTION)
            return count

        previous, written = await tally.reconcile("cand-a", ELECTION, count_then_commit_vote)

        assert reads == [2, 3]
        assert (previous, written) == (3, 3)
        assert await tally.get_count("cand-a", ELECTION) == 3

    async def test_reconcile_gives_up_under_constant_contention(self, tally):
        attempts = 0

        async def always_racing():
            nonlocal attempts
            attempts += 1
            await tally.increment_vote("cand-a", ELECTION)
            return 0

        with pytest.raises(TallyStoreError):
            await tally.reconcile("cand-a", ELECTION, always_racing)
        assert attempts == RECONCILE_MAX_ATTEMPTS
        assert await tally.get_count("cand-a", ELECTION) == RECONCILE_MAX_ATTEMPTS

    async def test_redis_failures_wrapped(self):
        tally = TallyStore(BrokenRedis())
        with pytest.raises(TallyStoreError):
            await tally.increment_vote("cand-a", ELECTION)
        with pytest.raises(TallyStoreError):
            await tally.get_counts(["cand-a"], ELECTION)
        with pytest.raises(TallyStoreError):
            await tally.reconcile("cand-a", ELECTION, ledger_count(0))

    async def test_health(self, tally):
        assert await tally.check_health() is True
