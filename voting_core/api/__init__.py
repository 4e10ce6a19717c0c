"""Voting API service."""
