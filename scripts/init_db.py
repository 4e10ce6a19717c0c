#!/usr/bin/env python3
"""
Prepare a database for the voting platform.

Applies the ledger schema, optionally loads users and candidates from a seed
file (development only; the surrounding application owns those tables) and
creates a zero tally counter for every candidate that does not have one.

Usage:
    python init_db.py [--seed data/seed.json] [--election-id general-2024]

Seed file format:
    {
      "users": [{"id": "u1", "first_name": "Ada", "last_name": "Park", "user_type": "candidate"}],
      "candidates": [{"id": "c1", "user_id": "u1", "party": "Green", "position": "Mayor",
                      "is_approved": true}]
    }

Environment Variables:
    POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD
    REDIS_HOST, REDIS_PORT, REDIS_DB, REDIS_PASSWORD
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import redis.asyncio as redis
from tqdm import tqdm

from voting_core.reconciler.config import config
from voting_core.storage.database import Database
from voting_core.storage.tally import TallyStore


async def load_seed(database: Database, seed_file: Path) -> dict:
    """Insert seed users and candidates, skipping rows that already exist."""
    with open(seed_file, 'r') as f:
        data = json.load(f)

    stats = {'users': 0, 'candidates': 0}
    async with database.pool.acquire() as conn:
        async with conn.transaction():
            for user in data.get('users', []):
                result = await conn.execute(
                    """
                    INSERT INTO users (id, first_name, last_name, user_type, is_active)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    user['id'], user.get('first_name', ''), user.get('last_name', ''),
                    user['user_type'], user.get('is_active', True)
                )
                stats['users'] += int(result.split()[-1])

            for candidate in data.get('candidates', []):
                result = await conn.execute(
                    """
                    INSERT INTO candidates (id, user_id, party, position, is_approved, is_active)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    candidate['id'], candidate['user_id'], candidate['party'],
                    candidate.get('position', ''), candidate.get('is_approved', False),
                    candidate.get('is_active', True)
                )
                stats['candidates'] += int(result.split()[-1])
    return stats


async def initialize_tallies(database: Database, tally: TallyStore, election_id: str) -> int:
    """Create missing zero counters. Returns how many were created."""
    async with database.pool.acquire() as conn:
        rows = await conn.fetch("SELECT id FROM candidates ORDER BY id")

    created = 0
    for row in tqdm(rows, desc="Initializing tallies", unit="candidates"):
        if await tally.initialize(row['id'], election_id):
            created += 1
    return created


async def run(args) -> int:
    database = Database(config.get_postgres_dsn(), min_size=1, max_size=2)
    redis_client = redis.from_url(config.get_redis_url(), encoding="utf-8", decode_responses=True)

    try:
        await database.initialize()
        await database.apply_schema()
        print("✓ Schema applied")

        if args.seed:
            stats = await load_seed(database, args.seed)
            print(f"✓ Seeded {stats['users']} users, {stats['candidates']} candidates")

        created = await initialize_tallies(database, TallyStore(redis_client), args.election_id)
        print(f"✓ Created {created} tally counters for {args.election_id}")
        return 0
    finally:
        await redis_client.aclose()
        await database.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Initialize the voting database')
    parser.add_argument(
        '--seed',
        type=Path,
        default=None,
        help='JSON file with users and candidates to insert (development only)'
    )
    parser.add_argument(
        '--election-id',
        default=config.ELECTION_ID,
        help=f'Election whose counters are created (default: {config.ELECTION_ID})'
    )
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n\n✗ Interrupted by user", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
