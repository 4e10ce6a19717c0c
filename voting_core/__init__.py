"""Vote integrity core: one vote per voter, tallies that match the ledger."""

__version__ = '1.0.0'
