"""Integration tests against real backing stores.

- ``test_ledger_postgres``: the vote ledger's unique index and immutability
  trigger on PostgreSQL
- ``test_tally_redis``: counter increments and watched reconciles on Redis

Each suite skips itself when its server is not reachable with the
POSTGRES_* or REDIS_* settings.
"""
