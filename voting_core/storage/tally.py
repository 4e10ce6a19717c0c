"""Redis-backed candidate tally counters, one per (election, candidate)."""

import logging
from typing import Awaitable, Callable, Dict, Iterable, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ..shared.models import get_current_timestamp, get_redis_key

logger = logging.getLogger(__name__)

# A reconcile that keeps racing live increments gives up and is retried later.
RECONCILE_MAX_ATTEMPTS = 5

LedgerCount = Callable[[], Awaitable[int]]


class TallyStoreError(Exception):
    """Raised when a counter operation fails."""
    pass


class TallyStore:
    """
    Per-candidate vote counters, scoped to an election.

    Counters change only through INCR (casting) and a WATCH-guarded SET
    (reconciliation); a reconcile that overlaps an INCR is discarded and
    redone, so no increment is overwritten.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    async def increment_vote(self, candidate_id: str, election_id: str) -> int:
        """
        Atomically add one vote to a candidate.

        Args:
            candidate_id: Candidate identifier
            election_id: Election the vote was cast in

        Returns:
            The new count
        """
        try:
            count = await self.client.incr(get_redis_key('candidate_tally', election_id, candidate_id))
            logger.debug(f"Candidate {candidate_id} tally in {election_id}: {count}")
            return int(count)
        except RedisError as e:
            logger.error(f"Redis error incrementing tally for {candidate_id}: {e}")
            raise TallyStoreError(f"increment failed for {candidate_id}: {e}") from e

    async def get_count(self, candidate_id: str, election_id: str) -> int:
        """Current counter value (0 if the counter does not exist)."""
        try:
            count = await self.client.get(get_redis_key('candidate_tally', election_id, candidate_id))
            return int(count) if count else 0
        except RedisError as e:
            logger.error(f"Redis error reading tally for {candidate_id}: {e}")
            raise TallyStoreError(f"read failed for {candidate_id}: {e}") from e

    async def get_counts(self, candidate_ids: Iterable[str], election_id: str) -> Dict[str, int]:
        """Read several counters of one election with one MGET."""
        candidate_ids = list(candidate_ids)
        if not candidate_ids:
            return {}
        keys = [get_redis_key('candidate_tally', election_id, cid) for cid in candidate_ids]
        try:
            values = await self.client.mget(keys)
        except RedisError as e:
            logger.error(f"Redis error reading tallies for {election_id}: {e}")
            raise TallyStoreError(f"mget failed: {e}") from e
        return {
            cid: int(value) if value else 0
            for cid, value in zip(candidate_ids, values)
        }

    async def initialize(self, candidate_id: str, election_id: str) -> bool:
        """Create a zero counter for a new candidate. Existing counters are left alone."""
        try:
            created = await self.client.setnx(
                get_redis_key('candidate_tally', election_id, candidate_id), 0
            )
            return bool(created)
        except RedisError as e:
            logger.error(f"Redis error initializing tally for {candidate_id}: {e}")
            raise TallyStoreError(f"initialize failed for {candidate_id}: {e}") from e

    async def reconcile(
        self,
        candidate_id: str,
        election_id: str,
        count_ledger: LedgerCount
    ) -> Tuple[int, int]:
        """
        Overwrite a counter with the ledger's authoritative count.

        The counter is WATCHed before the ledger is read. If an increment
        lands before the SET commits, EXEC aborts and the ledger is read
        again.

        Args:
            candidate_id: Candidate identifier
            election_id: Election the counter belongs to
            count_ledger: Coroutine function returning the number of valid
                ledger rows for the candidate

        Returns:
            (counter value before reconciliation, ledger count written)

        Raises:
            ValueError: The ledger returned a negative count
            TallyStoreError: Redis failed, or every attempt lost the race
        """
        key = get_redis_key('candidate_tally', election_id, candidate_id)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for attempt in range(1, RECONCILE_MAX_ATTEMPTS + 1):
                    try:
                        await pipe.watch(key)
                        previous = await pipe.get(key)
                        ledger_count = await count_ledger()
                        if ledger_count < 0:
                            raise ValueError(f"ledger count must be >= 0, got {ledger_count}")

                        pipe.multi()
                        pipe.set(key, ledger_count)
                        pipe.hset(
                            get_redis_key('tally_reconciled', election_id),
                            candidate_id,
                            get_current_timestamp().isoformat()
                        )
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.info(
                            f"Tally for {candidate_id} changed during reconcile "
                            f"(attempt {attempt}/{RECONCILE_MAX_ATTEMPTS}), retrying"
                        )
                else:
                    raise TallyStoreError(
                        f"reconcile for {candidate_id} lost {RECONCILE_MAX_ATTEMPTS} races "
                        f"with live increments"
                    )
        except RedisError as e:
            logger.error(f"Redis error reconciling tally for {candidate_id}: {e}")
            raise TallyStoreError(f"reconcile failed for {candidate_id}: {e}") from e

        previous = int(previous) if previous else 0
        if previous != ledger_count:
            logger.warning(
                f"Tally drift corrected: candidate={candidate_id}, election={election_id}, "
                f"counter={previous}, ledger={ledger_count}"
            )
        return previous, ledger_count

    async def check_health(self) -> bool:
        """Ping Redis."""
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
