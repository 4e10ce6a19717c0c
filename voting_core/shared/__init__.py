"""
Shared utilities and models for the vote integrity platform.

This package contains common code used by the API and the worker:
- Data models (Role, Identity, VoteRecord, ...)
- The error taxonomy
- Redis and RabbitMQ naming constants
"""

from .errors import (
    VotingError,
    Unauthorized,
    Forbidden,
    CandidateNotFound,
    VoteNotFound,
    AlreadyVoted,
    UpstreamUnavailable,
    InternalFailure,
)
from .models import (
    Capability,
    Role,
    Identity,
    CandidateEligibility,
    CandidateProfile,
    VoteMetadata,
    VoteRecord,
    get_current_timestamp,
    get_redis_key,
    get_queue_name,
    get_routing_key,
    REDIS_KEYS,
    RABBITMQ_CONFIG,
)

__all__ = [
    'VotingError',
    'Unauthorized',
    'Forbidden',
    'CandidateNotFound',
    'VoteNotFound',
    'AlreadyVoted',
    'UpstreamUnavailable',
    'InternalFailure',
    'Capability',
    'Role',
    'Identity',
    'CandidateEligibility',
    'CandidateProfile',
    'VoteMetadata',
    'VoteRecord',
    'get_current_timestamp',
    'get_redis_key',
    'get_queue_name',
    'get_routing_key',
    'REDIS_KEYS',
    'RABBITMQ_CONFIG',
]
