"""
Vote ledger: the append-only, authoritative record of cast votes.

The one-vote-per-voter rule is the partial unique index
``uq_votes_voter_election_valid``. A vote is recorded with a single INSERT
and a unique violation is the only duplicate signal; nothing here checks
before inserting.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict

import asyncpg

from ..shared.errors import VoteNotFound
from ..shared.models import VoteMetadata, VoteRecord
from .database import STORAGE_ERRORS, DatabaseError, DuplicateVoteError

logger = logging.getLogger(__name__)

VOTE_COLUMNS = """
    id, voter_id, candidate_id, election_id, voted_at, ip_address,
    user_agent, is_valid, invalidated_at, invalidation_reason
"""


def _row_to_record(row) -> VoteRecord:
    return VoteRecord(
        id=str(row["id"]),
        voter_id=row["voter_id"],
        candidate_id=row["candidate_id"],
        election_id=row["election_id"],
        voted_at=row["voted_at"],
        metadata=VoteMetadata(
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
        ),
        is_valid=row["is_valid"],
        invalidated_at=row["invalidated_at"],
        invalidation_reason=row["invalidation_reason"],
    )


class VoteLedger:
    """PostgreSQL-backed vote ledger."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def has_voted(self, voter_id: str, election_id: str) -> bool:
        """
        Check whether a valid vote exists for the pair.

        Args:
            voter_id: Voter identifier
            election_id: Election identifier

        Returns:
            bool: True if the voter holds a valid vote in the election
        """
        query = """
            SELECT EXISTS (
                SELECT 1 FROM votes
                WHERE voter_id = $1 AND election_id = $2 AND is_valid
            )
        """
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, voter_id, election_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error checking vote for voter {voter_id}: {e}")
            raise DatabaseError(f"has_voted failed: {e}") from e

    async def record_vote(
        self,
        voter_id: str,
        candidate_id: str,
        election_id: str,
        metadata: Optional[VoteMetadata] = None
    ) -> VoteRecord:
        """
        Insert a new vote.

        Args:
            voter_id: Voter identifier
            candidate_id: Candidate voted for
            election_id: Election identifier
            metadata: Origin of the request (audit only)

        Returns:
            VoteRecord: The stored vote

        Raises:
            DuplicateVoteError: A valid vote already exists for (voter, election)
            DatabaseError: Any other storage failure
        """
        metadata = metadata or VoteMetadata()
        query = f"""
            INSERT INTO votes (id, voter_id, candidate_id, election_id, ip_address, user_agent)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING {VOTE_COLUMNS}
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    uuid.uuid4(), voter_id, candidate_id, election_id,
                    metadata.ip_address, metadata.user_agent
                )
        except asyncpg.UniqueViolationError as e:
            logger.info(f"Duplicate vote rejected: voter={voter_id}, election={election_id}")
            raise DuplicateVoteError(voter_id, election_id) from e
        except STORAGE_ERRORS as e:
            logger.error(f"Error recording vote for voter {voter_id}: {e}")
            raise DatabaseError(f"record_vote failed: {e}") from e

        record = _row_to_record(row)
        logger.debug(f"Recorded vote {record.id} for candidate {candidate_id}")
        return record

    async def count_for(self, candidate_id: str, election_id: str) -> int:
        """Count valid votes for a candidate in an election."""
        query = """
            SELECT COUNT(*) FROM votes
            WHERE candidate_id = $1 AND election_id = $2 AND is_valid
        """
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, candidate_id, election_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting votes for candidate {candidate_id}: {e}")
            raise DatabaseError(f"count_for failed: {e}") from e

    async def total_for(self, election_id: str) -> int:
        """Count all valid votes in an election."""
        query = "SELECT COUNT(*) FROM votes WHERE election_id = $1 AND is_valid"
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, election_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting votes for election {election_id}: {e}")
            raise DatabaseError(f"total_for failed: {e}") from e

    async def counts_by_candidate(self, election_id: str) -> Dict[str, int]:
        """Valid vote counts for every candidate that received at least one vote."""
        query = """
            SELECT candidate_id, COUNT(*) AS votes
            FROM votes
            WHERE election_id = $1 AND is_valid
            GROUP BY candidate_id
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, election_id)
                return {row["candidate_id"]: row["votes"] for row in rows}
        except STORAGE_ERRORS as e:
            logger.error(f"Error grouping votes for election {election_id}: {e}")
            raise DatabaseError(f"counts_by_candidate failed: {e}") from e

    async def count_since(self, election_id: str, since: datetime) -> int:
        """Count valid votes cast at or after ``since``."""
        query = """
            SELECT COUNT(*) FROM votes
            WHERE election_id = $1 AND is_valid AND voted_at >= $2
        """
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, election_id, since)
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting recent votes for election {election_id}: {e}")
            raise DatabaseError(f"count_since failed: {e}") from e

    async def get_vote(self, voter_id: str, election_id: str) -> Optional[VoteRecord]:
        """Get the voter's valid vote in the election, if any."""
        query = f"""
            SELECT {VOTE_COLUMNS} FROM votes
            WHERE voter_id = $1 AND election_id = $2 AND is_valid
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, voter_id, election_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error fetching vote for voter {voter_id}: {e}")
            raise DatabaseError(f"get_vote failed: {e}") from e
        return _row_to_record(row) if row else None

    async def get_vote_by_id(self, vote_id: str) -> Optional[VoteRecord]:
        """Get a vote by id, valid or not."""
        try:
            vote_uuid = uuid.UUID(vote_id)
        except ValueError:
            return None
        query = f"SELECT {VOTE_COLUMNS} FROM votes WHERE id = $1"
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, vote_uuid)
        except STORAGE_ERRORS as e:
            logger.error(f"Error fetching vote {vote_id}: {e}")
            raise DatabaseError(f"get_vote_by_id failed: {e}") from e
        return _row_to_record(row) if row else None

    async def invalidate(self, vote_id: str, reason: str) -> VoteRecord:
        """
        Mark a vote invalid. The only mutation a vote ever receives.

        Args:
            vote_id: Vote identifier
            reason: Administrative reason, kept for audit

        Returns:
            VoteRecord: The invalidated vote

        Raises:
            VoteNotFound: No valid vote with this id
        """
        try:
            vote_uuid = uuid.UUID(vote_id)
        except ValueError:
            raise VoteNotFound(f"Vote {vote_id} not found")

        query = f"""
            UPDATE votes
            SET is_valid = FALSE, invalidated_at = NOW(), invalidation_reason = $2
            WHERE id = $1 AND is_valid
            RETURNING {VOTE_COLUMNS}
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, vote_uuid, reason)
        except STORAGE_ERRORS as e:
            logger.error(f"Error invalidating vote {vote_id}: {e}")
            raise DatabaseError(f"invalidate failed: {e}") from e

        if row is None:
            raise VoteNotFound(f"No valid vote with id {vote_id}")

        logger.warning(f"Vote {vote_id} invalidated: {reason}")
        return _row_to_record(row)
