"""Pytest fixtures shared by the unit and integration suites.

Unit fixtures wire the casting service and results aggregator to in-process
doubles (see ``fakes.py``) so the suite runs without PostgreSQL, Redis or
RabbitMQ.
"""

from dataclasses import dataclass

import pytest

from fakes import (
    FakeCandidateDirectory,
    FakeIdentityProvider,
    FakePublisher,
    FakeRedis,
    InMemoryLedger,
)
from voting_core.api.casting import VoteCastingService
from voting_core.api.results import ResultsAggregator
from voting_core.shared.models import Identity, Role, get_redis_key
from voting_core.storage.tally import TallyStore

ELECTION_ID = "general-2024"


@dataclass
class VotingSystem:
    identity: FakeIdentityProvider
    directory: FakeCandidateDirectory
    ledger: InMemoryLedger
    redis: FakeRedis
    tally: TallyStore
    publisher: FakePublisher
    casting: VoteCastingService
    results: ResultsAggregator

    def add_voter(self, voter_id: str, active: bool = True) -> str:
        """Register a voter and return their token."""
        token = f"token-{voter_id}"
        self.identity.identities[token] = Identity(voter_id, Role.VOTER, active)
        self.identity.active_voters += 1 if active else 0
        return token

    async def counter(self, candidate_id: str) -> int:
        """Tally counter of a candidate in the configured election."""
        return await self.tally.get_count(candidate_id, ELECTION_ID)

    def set_counter(self, candidate_id: str, value: int):
        self.redis.data[get_redis_key("candidate_tally", ELECTION_ID, candidate_id)] = str(value)


@pytest.fixture
def election_id() -> str:
    return ELECTION_ID


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def system(fake_redis) -> VotingSystem:
    """Casting service and aggregator over fresh doubles.

    Candidates: cand-a and cand-b approved, cand-pending unapproved,
    cand-retired approved but inactive. Tokens: ``admin-token`` (admin),
    ``candidate-token`` (candidate role).
    """
    identity = FakeIdentityProvider({
        "admin-token": Identity("admin-1", Role.ADMIN),
        "candidate-token": Identity("user-cand-a", Role.CANDIDATE),
    })
    directory = FakeCandidateDirectory()
    directory.add("cand-a", name="Ada Park", party="Green", position="Mayor")
    directory.add("cand-b", name="Ben Ortiz", party="Blue", position="Mayor")
    directory.add("cand-pending", name="Cleo Diaz", party="Red", approved=False)
    directory.add("cand-retired", name="Dan Wu", party="Gold", active=False)

    ledger = InMemoryLedger()
    tally = TallyStore(fake_redis)
    publisher = FakePublisher()

    return VotingSystem(
        identity=identity,
        directory=directory,
        ledger=ledger,
        redis=fake_redis,
        tally=tally,
        publisher=publisher,
        casting=VoteCastingService(identity, directory, ledger, tally, publisher, ELECTION_ID),
        results=ResultsAggregator(identity, directory, ledger, tally),
    )


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "postgres: tests that need a reachable PostgreSQL server"
    )
    config.addinivalue_line(
        "markers",
        "redis: tests that need a reachable Redis server"
    )
    config.addinivalue_line(
        "markers",
        "concurrency: tests that race many coroutines against one invariant"
    )
