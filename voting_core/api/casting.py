"""
Vote casting service.

The single entry point that turns "voter X wants to vote for candidate Y"
into a ledger row plus a counter increment. The ledger INSERT is the
durability boundary: once it commits, the vote stands, and a failed
counter increment is handed to reconciliation instead of being rolled back.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from prometheus_client import Counter, Histogram

from ..shared.errors import (
    AlreadyVoted,
    CandidateNotFound,
    InternalFailure,
    VoteNotFound,
)
from ..shared.models import Capability, VoteMetadata, VoteRecord
from ..storage.database import DatabaseError, DuplicateVoteError
from ..storage.reconcile import TallyReconciler
from ..storage.tally import TallyStoreError

logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast = Counter(
    "votes_cast_total",
    "Vote casting attempts by outcome",
    ["outcome"]
)
tally_increment_failures = Counter(
    "tally_increment_failures_total",
    "Votes recorded in the ledger whose counter increment failed"
)
cast_duration = Histogram(
    "vote_cast_duration_seconds",
    "Time spent casting a vote",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


@dataclass(frozen=True)
class CastReceipt:
    vote_id: str
    candidate_id: str
    voted_at: datetime


@dataclass(frozen=True)
class VoteSummary:
    vote_id: str
    candidate_id: str
    name: str
    party: str
    position: str
    voted_at: datetime


class VoteCastingService:
    """Validates and records votes."""

    def __init__(self, identity, directory, ledger, tally, publisher, election_id: str):
        self.identity = identity
        self.directory = directory
        self.ledger = ledger
        self.tally = tally
        self.publisher = publisher
        self.election_id = election_id
        self.reconciler = TallyReconciler(ledger, tally)

    async def cast_vote(
        self,
        token: Optional[str],
        candidate_id: str,
        metadata: Optional[VoteMetadata] = None
    ) -> CastReceipt:
        """
        Cast a vote for ``candidate_id`` in the configured election.

        Raises:
            Unauthorized, Forbidden: identity problems
            CandidateNotFound: candidate missing, unapproved or inactive right now
            AlreadyVoted: the voter already holds a valid vote
            UpstreamUnavailable: a collaborator timed out, nothing was written
            InternalFailure: unexpected storage error
        """
        with cast_duration.time():
            try:
                receipt = await self._cast(token, candidate_id, metadata)
            except AlreadyVoted:
                votes_cast.labels(outcome="already_voted").inc()
                raise
            except Exception as e:
                votes_cast.labels(outcome=type(e).__name__).inc()
                raise
            votes_cast.labels(outcome="recorded").inc()
            return receipt

    async def _cast(self, token, candidate_id, metadata) -> CastReceipt:
        voter = (await self.identity.resolve(token)).require(Capability.CAST_VOTE)

        eligibility = await self.directory.get_eligible(candidate_id)
        if not eligibility.eligible:
            raise CandidateNotFound(
                "Candidate not found or not approved",
                details={"candidate_id": candidate_id},
            )

        try:
            record = await self.ledger.record_vote(
                voter.voter_id, candidate_id, self.election_id, metadata
            )
        except DuplicateVoteError:
            raise AlreadyVoted(details={"election_id": self.election_id})
        except DatabaseError as e:
            logger.error(f"Ledger write failed for voter {voter.voter_id}: {e}")
            raise InternalFailure("Failed to cast vote") from e

        # The vote is durable from here on; finish the counter even if the
        # caller goes away.
        await asyncio.shield(self._apply_tally(record))

        logger.info(
            f"Vote cast: id={record.id}, candidate={candidate_id}, "
            f"election={self.election_id}"
        )
        return CastReceipt(
            vote_id=record.id,
            candidate_id=record.candidate_id,
            voted_at=record.voted_at,
        )

    async def _apply_tally(self, record: VoteRecord):
        try:
            await self.tally.increment_vote(record.candidate_id, record.election_id)
        except TallyStoreError as e:
            tally_increment_failures.inc()
            logger.error(
                f"Tally increment failed after vote {record.id} was recorded, "
                f"queueing reconcile for candidate {record.candidate_id}: {e}"
            )
            await self._request_reconcile(record.candidate_id, record.id, "increment_failed")

    async def _request_reconcile(self, candidate_id: str, vote_id: str, reason: str):
        published = await self.publisher.publish_reconcile_request({
            "candidate_id": candidate_id,
            "election_id": self.election_id,
            "vote_id": vote_id,
            "reason": reason,
        })
        if not published:
            logger.error(
                f"Reconcile request for candidate {candidate_id} not delivered; "
                f"the next sweep will pick it up"
            )

    async def has_voted(self, token: Optional[str]) -> bool:
        voter = (await self.identity.resolve(token)).require(Capability.VIEW_OWN_VOTE)
        try:
            return await self.ledger.has_voted(voter.voter_id, self.election_id)
        except DatabaseError as e:
            raise InternalFailure("Failed to check voting status") from e

    async def get_my_vote(self, token: Optional[str]) -> VoteSummary:
        voter = (await self.identity.resolve(token)).require(Capability.VIEW_OWN_VOTE)
        try:
            record = await self.ledger.get_vote(voter.voter_id, self.election_id)
        except DatabaseError as e:
            raise InternalFailure("Failed to fetch vote") from e
        if record is None:
            raise VoteNotFound(details={"election_id": self.election_id})

        profiles = await self.directory.get_profiles([record.candidate_id])
        profile = profiles.get(record.candidate_id)
        return VoteSummary(
            vote_id=record.id,
            candidate_id=record.candidate_id,
            name=profile.name if profile else "",
            party=profile.party if profile else "",
            position=profile.position if profile else "",
            voted_at=record.voted_at,
        )

    async def invalidate_vote(self, token: Optional[str], vote_id: str, reason: str) -> VoteRecord:
        """Administratively invalidate a vote and resync its candidate's counter."""
        admin = (await self.identity.resolve(token)).require(Capability.ADMINISTER)
        try:
            record = await self.ledger.invalidate(vote_id, reason)
        except DatabaseError as e:
            raise InternalFailure("Failed to invalidate vote") from e

        logger.warning(f"Admin {admin.voter_id} invalidated vote {vote_id}")
        try:
            await self.reconciler.reconcile_candidate(record.candidate_id, record.election_id)
        except (TallyStoreError, DatabaseError) as e:
            logger.error(f"Reconcile after invalidating {vote_id} failed: {e}")
            await self._request_reconcile(record.candidate_id, vote_id, "invalidated")
        return record
