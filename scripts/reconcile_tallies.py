#!/usr/bin/env python3
"""
Resync every candidate tally counter to the vote ledger.

Safe to run at any time and any number of times. Prints the drift found per
candidate; exits 2 if any counter had to be corrected, 0 otherwise.

Usage:
    python reconcile_tallies.py [--election-id general-2024] [--dry-run]
"""

import argparse
import asyncio
import sys

import redis.asyncio as redis
from tqdm import tqdm

from voting_core.reconciler.config import config
from voting_core.storage.database import Database
from voting_core.storage.ledger import VoteLedger
from voting_core.storage.reconcile import TallyReconciler
from voting_core.storage.tally import TallyStore


async def run(args) -> int:
    database = Database(config.get_postgres_dsn(), min_size=1, max_size=2)
    redis_client = redis.from_url(config.get_redis_url(), encoding="utf-8", decode_responses=True)

    try:
        await database.initialize()
        ledger = VoteLedger(database.pool)
        tally = TallyStore(redis_client)
        reconciler = TallyReconciler(ledger, tally)

        async with database.pool.acquire() as conn:
            candidate_ids = [row['id'] for row in await conn.fetch("SELECT id FROM candidates")]
        ledger_counts = await ledger.counts_by_candidate(args.election_id)
        all_ids = sorted(set(candidate_ids) | set(ledger_counts))

        # Counters are keyed by election, so only this election's counters are touched.
        drifted = 0
        for candidate_id in tqdm(all_ids, desc="Reconciling", unit="candidates"):
            if args.dry_run:
                previous = await tally.get_count(candidate_id, args.election_id)
                ledger_count = ledger_counts.get(candidate_id, 0)
            else:
                outcome = await reconciler.reconcile_candidate(candidate_id, args.election_id)
                previous, ledger_count = outcome.previous_count, outcome.ledger_count
            if previous != ledger_count:
                drifted += 1
                tqdm.write(f"  {candidate_id}: counter={previous} ledger={ledger_count}")

        verb = "would correct" if args.dry_run else "corrected"
        print(f"\n✓ {len(all_ids)} candidates checked, {verb} {drifted}")
        print(f"  Valid votes in ledger: {await ledger.total_for(args.election_id):,}")
        return 2 if drifted else 0
    finally:
        await redis_client.aclose()
        await database.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Reconcile tally counters with the vote ledger')
    parser.add_argument(
        '--election-id',
        default=config.ELECTION_ID,
        help=f'Election identifier (default: {config.ELECTION_ID})'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Report drift without changing any counter'
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
