"""Tally reconciliation worker."""
