"""PostgreSQL connection pool and schema for the vote ledger."""
import asyncio
import logging
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Custom exception for database errors."""
    pass


# Query, pool, socket and command_timeout failures of a ledger call.
STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class DuplicateVoteError(DatabaseError):
    """A valid vote already exists for this (voter, election) pair."""

    def __init__(self, voter_id: str, election_id: str):
        super().__init__(f"Voter {voter_id} already has a valid vote in {election_id}")
        self.voter_id = voter_id
        self.election_id = election_id


# users and candidates belong to the surrounding application; they are
# declared here so a fresh database can be brought up for development.
SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    first_name  TEXT NOT NULL DEFAULT '',
    last_name   TEXT NOT NULL DEFAULT '',
    user_type   TEXT NOT NULL CHECK (user_type IN ('voter', 'candidate', 'admin')),
    is_active   BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS candidates (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL UNIQUE REFERENCES users (id),
    party        TEXT NOT NULL,
    position     TEXT NOT NULL DEFAULT '',
    is_approved  BOOLEAN NOT NULL DEFAULT FALSE,
    is_active    BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE INDEX IF NOT EXISTS ix_candidates_approved_active
    ON candidates (is_approved, is_active);

CREATE TABLE IF NOT EXISTS votes (
    id                   UUID PRIMARY KEY,
    voter_id             TEXT NOT NULL,
    candidate_id         TEXT NOT NULL,
    election_id          TEXT NOT NULL,
    voted_at             TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    ip_address           TEXT NOT NULL,
    user_agent           TEXT,
    is_valid             BOOLEAN NOT NULL DEFAULT TRUE,
    invalidated_at       TIMESTAMPTZ,
    invalidation_reason  TEXT
);

-- One valid vote per voter per election
CREATE UNIQUE INDEX IF NOT EXISTS uq_votes_voter_election_valid
    ON votes (voter_id, election_id) WHERE is_valid;

CREATE INDEX IF NOT EXISTS ix_votes_candidate_election_valid
    ON votes (candidate_id, election_id) WHERE is_valid;

CREATE INDEX IF NOT EXISTS ix_votes_valid_voted_at
    ON votes (is_valid, voted_at DESC);

CREATE OR REPLACE FUNCTION votes_guard_immutable() RETURNS trigger AS $$
BEGIN
    IF TG_OP = 'DELETE' THEN
        RAISE EXCEPTION 'votes are never deleted';
    END IF;
    IF NEW.id IS DISTINCT FROM OLD.id
       OR NEW.voter_id IS DISTINCT FROM OLD.voter_id
       OR NEW.candidate_id IS DISTINCT FROM OLD.candidate_id
       OR NEW.election_id IS DISTINCT FROM OLD.election_id
       OR NEW.voted_at IS DISTINCT FROM OLD.voted_at
       OR NEW.ip_address IS DISTINCT FROM OLD.ip_address
       OR NEW.user_agent IS DISTINCT FROM OLD.user_agent THEN
        RAISE EXCEPTION 'only the validity of a vote may change';
    END IF;
    IF NEW.is_valid AND NOT OLD.is_valid THEN
        RAISE EXCEPTION 'an invalidated vote cannot be restored';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_votes_immutable ON votes;
CREATE TRIGGER trg_votes_immutable
    BEFORE UPDATE OR DELETE ON votes
    FOR EACH ROW EXECUTE FUNCTION votes_guard_immutable();
"""


class Database:
    """Async PostgreSQL database manager."""

    def __init__(self, dsn: str, min_size: int = 10, max_size: int = 20,
                 command_timeout: float = 60):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                logger.info("PostgreSQL connection verified")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    async def apply_schema(self):
        """Create tables, indexes and the immutability trigger."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(SCHEMA)
        logger.info("Ledger schema applied")

    async def check_health(self) -> bool:
        """Check database connection health."""
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")
