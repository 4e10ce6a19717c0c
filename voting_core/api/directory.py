"""Candidate directory: approval state and display fields of candidates."""
import logging
from typing import Dict, List

import asyncpg

from ..shared.errors import CandidateNotFound
from ..shared.models import CandidateEligibility, CandidateProfile
from .upstream import call_upstream

logger = logging.getLogger(__name__)


class CandidateDirectory:
    """Reads the ``candidates`` table. Never cached: approval can change at any time."""

    def __init__(self, pool: asyncpg.Pool, timeout: float = 2.0):
        self.pool = pool
        self.timeout = timeout

    async def _fetchrow(self, query: str, *args):
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args):
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def get_eligible(self, candidate_id: str) -> CandidateEligibility:
        """
        Look up a candidate's approval state.

        Raises:
            CandidateNotFound: No candidate with this id
            UpstreamUnavailable: Directory timed out or is down
        """
        row = await call_upstream(
            self._fetchrow(
                "SELECT id, is_approved, is_active FROM candidates WHERE id = $1",
                candidate_id
            ),
            self.timeout,
            "candidate directory"
        )
        if row is None:
            raise CandidateNotFound(details={"candidate_id": candidate_id})
        return CandidateEligibility(
            candidate_id=row["id"],
            approved=row["is_approved"],
            active=row["is_active"],
        )

    async def list_eligible(self) -> List[CandidateProfile]:
        """All approved and active candidates, ordered by id."""
        rows = await call_upstream(
            self._fetch(
                """
                SELECT c.id, c.party, c.position,
                       u.first_name || ' ' || u.last_name AS name
                FROM candidates c
                JOIN users u ON u.id = c.user_id
                WHERE c.is_approved AND c.is_active
                ORDER BY c.id
                """
            ),
            self.timeout,
            "candidate directory"
        )
        return [
            CandidateProfile(
                candidate_id=row["id"],
                name=row["name"].strip(),
                party=row["party"],
                position=row["position"],
            )
            for row in rows
        ]

    async def get_profiles(self, candidate_ids: List[str]) -> Dict[str, CandidateProfile]:
        """Display fields for the given candidates, regardless of approval."""
        if not candidate_ids:
            return {}
        rows = await call_upstream(
            self._fetch(
                """
                SELECT c.id, c.party, c.position,
                       u.first_name || ' ' || u.last_name AS name
                FROM candidates c
                JOIN users u ON u.id = c.user_id
                WHERE c.id = ANY($1::text[])
                """,
                list(candidate_ids)
            ),
            self.timeout,
            "candidate directory"
        )
        return {
            row["id"]: CandidateProfile(
                candidate_id=row["id"],
                name=row["name"].strip(),
                party=row["party"],
                position=row["position"],
            )
            for row in rows
        }

    async def list_candidate_ids(self) -> List[str]:
        """Every candidate id, approved or not."""
        rows = await call_upstream(
            self._fetch("SELECT id FROM candidates ORDER BY id"),
            self.timeout,
            "candidate directory"
        )
        return [row["id"] for row in rows]
