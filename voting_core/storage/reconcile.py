"""Resync tally counters to ledger counts."""

import logging
from dataclasses import dataclass
from typing import Iterable, List

from .ledger import VoteLedger
from .tally import TallyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    candidate_id: str
    previous_count: int
    ledger_count: int

    @property
    def drift(self) -> int:
        return self.previous_count - self.ledger_count


class TallyReconciler:
    """Recomputes counters from the ledger. Safe to run any number of times."""

    def __init__(self, ledger: VoteLedger, tally: TallyStore):
        self.ledger = ledger
        self.tally = tally

    async def reconcile_candidate(self, candidate_id: str, election_id: str) -> ReconcileOutcome:
        previous, ledger_count = await self.tally.reconcile(
            candidate_id,
            election_id,
            lambda: self.ledger.count_for(candidate_id, election_id)
        )
        return ReconcileOutcome(candidate_id, previous, ledger_count)

    async def reconcile_all(
        self,
        election_id: str,
        candidate_ids: Iterable[str] = ()
    ) -> List[ReconcileOutcome]:
        """
        Reconcile every candidate of an election.

        Each counter is compared with a ledger count read while the counter
        is watched, not with the grouped count used to find the candidates.

        Args:
            election_id: Election identifier
            candidate_ids: Candidates to include even if they have no votes

        Returns:
            One outcome per candidate, ordered by candidate id
        """
        ledger_counts = await self.ledger.counts_by_candidate(election_id)
        all_ids = sorted(set(candidate_ids) | set(ledger_counts))

        outcomes = []
        for candidate_id in all_ids:
            outcomes.append(await self.reconcile_candidate(candidate_id, election_id))

        drifted = [o for o in outcomes if o.drift]
        logger.info(
            f"Reconciled {len(outcomes)} candidates in {election_id}, "
            f"{len(drifted)} had drift"
        )
        return outcomes
