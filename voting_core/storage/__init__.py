"""PostgreSQL ledger, Redis tally counters and their reconciliation."""
