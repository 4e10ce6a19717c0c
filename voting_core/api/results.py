"""Results aggregation: ranked tallies, turnout and dashboard statistics."""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import List, Optional

from prometheus_client import Counter

from ..shared.errors import InternalFailure
from ..shared.models import Capability, get_current_timestamp
from ..storage.database import DatabaseError
from ..storage.reconcile import ReconcileOutcome, TallyReconciler
from ..storage.tally import TallyStoreError

logger = logging.getLogger(__name__)

RESULT_SOURCES = ("tally", "ledger")

tally_read_fallbacks = Counter(
    "results_tally_fallbacks_total",
    "Results served from the ledger because the tally store could not be read"
)


@contextmanager
def storage_failure(message: str):
    """Re-raise ledger and tally store errors as InternalFailure."""
    try:
        yield
    except (DatabaseError, TallyStoreError) as e:
        logger.error(f"{message}: {e}")
        raise InternalFailure(message) from e


@dataclass(frozen=True)
class CandidateResult:
    candidate_id: str
    name: str
    party: str
    position: str
    vote_count: int

    def to_dict(self) -> dict:
        return asdict(self)


def rank_results(results: List[CandidateResult]) -> List[CandidateResult]:
    """Most votes first; equal counts ordered by candidate id."""
    return sorted(results, key=lambda r: (-r.vote_count, r.candidate_id))


def format_turnout(total_valid_votes: int, total_eligible_voters: int) -> str:
    """
    Turnout as a percentage string.

    Returns "0%" when nobody is eligible; otherwise two decimals, bounded
    to [0, 100].
    """
    if total_eligible_voters <= 0:
        return "0%"
    percentage = total_valid_votes / total_eligible_voters * 100
    percentage = min(100.0, max(0.0, percentage))
    return f"{percentage:.2f}%"


class ResultsAggregator:
    """Read-only view over tallies, the ledger and the candidate directory."""

    def __init__(self, identity, directory, ledger, tally):
        self.identity = identity
        self.directory = directory
        self.ledger = ledger
        self.tally = tally

    async def compute_results(self, election_id: str, source: str = "tally") -> List[CandidateResult]:
        """
        Ranked results for approved and active candidates.

        Args:
            election_id: Election identifier
            source: "tally" reads the counters, "ledger" counts ledger rows.
                An unreadable tally store falls back to the ledger.

        Returns:
            Candidates ordered by vote count desc, candidate id asc
        """
        if source not in RESULT_SOURCES:
            raise ValueError(f"source must be one of {RESULT_SOURCES}, got {source!r}")

        candidates = await self.directory.list_eligible()
        candidate_ids = [c.candidate_id for c in candidates]

        if source == "tally":
            try:
                counts = await self.tally.get_counts(candidate_ids, election_id)
            except TallyStoreError as e:
                tally_read_fallbacks.inc()
                logger.warning(f"Tally read failed for {election_id}, counting the ledger instead: {e}")
                source = "ledger"

        if source == "ledger":
            ledger_counts = await self.ledger.counts_by_candidate(election_id)
            counts = {cid: ledger_counts.get(cid, 0) for cid in candidate_ids}

        results = []
        for candidate in candidates:
            count = counts.get(candidate.candidate_id, 0)
            if count < 0:
                logger.error(
                    f"Negative tally {count} for candidate {candidate.candidate_id}, "
                    f"reporting 0 until reconciled"
                )
                count = 0
            results.append(CandidateResult(
                candidate_id=candidate.candidate_id,
                name=candidate.name,
                party=candidate.party,
                position=candidate.position,
                vote_count=count,
            ))
        return rank_results(results)

    async def get_results(self, election_id: str, source: str = "tally") -> dict:
        with storage_failure("Failed to compute results"):
            results = await self.compute_results(election_id, source)
            # Ledger total: one row per voter, never a sum of counters.
            total_votes = await self.ledger.total_for(election_id)
        return {
            "election_id": election_id,
            "results": [r.to_dict() for r in results],
            "total_votes": total_votes,
        }

    async def get_stats(self, election_id: str) -> dict:
        with storage_failure("Failed to compute statistics"):
            total_votes = await self.ledger.total_for(election_id)
        total_voters = await self.identity.count_active_voters()
        candidates = await self.directory.list_eligible()
        return {
            "election_id": election_id,
            "total_votes": total_votes,
            "total_voters": total_voters,
            "total_candidates": len(candidates),
            "voter_turnout": format_turnout(total_votes, total_voters),
        }

    async def get_dashboard(self, token: Optional[str], election_id: str) -> dict:
        """Admin dashboard: stats plus votes cast in the last 24 hours."""
        (await self.identity.resolve(token)).require(Capability.ADMINISTER)
        stats = await self.get_stats(election_id)
        since = get_current_timestamp() - timedelta(hours=24)
        with storage_failure("Failed to count recent votes"):
            stats["recent_votes"] = await self.ledger.count_since(election_id, since)
        return stats

    async def reconcile_all(self, token: Optional[str], election_id: str) -> List[ReconcileOutcome]:
        """Admin: resync every counter of the election to the ledger."""
        (await self.identity.resolve(token)).require(Capability.ADMINISTER)
        candidate_ids = await self.directory.list_candidate_ids()
        with storage_failure("Failed to reconcile tallies"):
            return await TallyReconciler(self.ledger, self.tally).reconcile_all(election_id, candidate_ids)
