"""Fixtures for tests against real PostgreSQL and Redis servers.

Connection settings come from the same environment variables the worker
reads (POSTGRES_*, REDIS_*). Tests skip when a server is not reachable.
Votes can never be deleted, so every test works in its own election.
"""

import asyncio
import uuid

import asyncpg
import pytest
import pytest_asyncio
import redis.asyncio as redis
from redis.exceptions import RedisError

from voting_core.reconciler.config import config
from voting_core.storage.database import Database
from voting_core.storage.ledger import VoteLedger
from voting_core.storage.tally import TallyStore


@pytest_asyncio.fixture
async def database():
    """Connection pool with the ledger schema applied."""
    db = Database(config.get_postgres_dsn(), min_size=1, max_size=20, command_timeout=10)
    try:
        await asyncio.wait_for(db.initialize(), timeout=5)
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
        pytest.skip(f"PostgreSQL not available: {e}")
    await db.apply_schema()
    yield db
    await db.close()


@pytest.fixture
def ledger(database) -> VoteLedger:
    return VoteLedger(database.pool)


@pytest_asyncio.fixture
async def redis_client():
    """Redis client on the configured database; test keys are removed afterwards."""
    client = redis.from_url(config.get_redis_url(), encoding="utf-8", decode_responses=True)
    try:
        await asyncio.wait_for(client.ping(), timeout=2)
    except (RedisError, OSError, asyncio.TimeoutError):
        await client.aclose()
        pytest.skip("Redis not available")
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def redis_keys(redis_client):
    """Keys a test wrote; deleted on teardown."""
    keys = []
    yield keys
    if keys:
        await redis_client.delete(*keys)


@pytest.fixture
def tally(redis_client) -> TallyStore:
    return TallyStore(redis_client)


@pytest.fixture
def election_id() -> str:
    """A fresh election per test."""
    return f"test-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def candidate_id() -> str:
    return f"cand-{uuid.uuid4().hex[:12]}"
