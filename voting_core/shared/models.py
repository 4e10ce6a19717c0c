"""
Shared data models and utilities for the vote integrity platform.

This module contains:
- Role / Capability: the closed set of user roles and what each may do
- Identity, CandidateEligibility: what the collaborators hand back to the core
- VoteRecord, VoteMetadata: rows of the vote ledger
- Redis and RabbitMQ naming helpers used by the API and the worker
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, FrozenSet

from .errors import Forbidden


class Capability(str, Enum):
    """Operations gated by role."""
    CAST_VOTE = "cast_vote"
    VIEW_OWN_VOTE = "view_own_vote"
    ADMINISTER = "administer"


class Role(str, Enum):
    """User roles known to the platform."""
    VOTER = "voter"
    CANDIDATE = "candidate"
    ADMIN = "admin"

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return ROLE_CAPABILITIES[self]

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES[self]


ROLE_CAPABILITIES = {
    Role.VOTER: frozenset({Capability.CAST_VOTE, Capability.VIEW_OWN_VOTE}),
    Role.CANDIDATE: frozenset(),
    Role.ADMIN: frozenset({Capability.ADMINISTER}),
}


@dataclass(frozen=True)
class Identity:
    """
    A resolved caller.

    Attributes:
        voter_id: Opaque user identifier
        role: Role of the user
        active: Whether the account is enabled
    """
    voter_id: str
    role: Role
    active: bool = True

    def require(self, capability: Capability) -> "Identity":
        """Return self if the role grants ``capability``, else raise Forbidden."""
        if not self.role.can(capability):
            raise Forbidden(
                f"Role '{self.role.value}' may not {capability.value.replace('_', ' ')}",
                details={"role": self.role.value, "capability": capability.value},
            )
        return self


@dataclass(frozen=True)
class CandidateEligibility:
    """Approval state of a candidate at lookup time."""
    candidate_id: str
    approved: bool
    active: bool

    @property
    def eligible(self) -> bool:
        return self.approved and self.active


@dataclass(frozen=True)
class CandidateProfile:
    """Display fields for a candidate."""
    candidate_id: str
    name: str
    party: str
    position: str = ""


@dataclass
class VoteMetadata:
    """Origin of a cast request. Audit only, never used for integrity decisions."""
    ip_address: str = "unknown"
    user_agent: Optional[str] = None


@dataclass
class VoteRecord:
    """
    A row of the vote ledger.

    Only ``is_valid``, ``invalidated_at`` and ``invalidation_reason`` may
    change after creation.
    """
    id: str
    voter_id: str
    candidate_id: str
    election_id: str
    voted_at: datetime
    metadata: VoteMetadata = field(default_factory=VoteMetadata)
    is_valid: bool = True
    invalidated_at: Optional[datetime] = None
    invalidation_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["voted_at"] = self.voted_at.isoformat()
        if self.invalidated_at:
            data["invalidated_at"] = self.invalidated_at.isoformat()
        return data


def get_current_timestamp() -> datetime:
    """Current UTC time, timezone aware."""
    return datetime.now(timezone.utc)


# Redis key templates
REDIS_KEYS = {
    'candidate_tally': 'candidate_tally:{}:{}',   # COUNTER per (election_id, candidate_id)
    'tally_reconciled': 'tally_reconciled:{}',    # HASH candidate_id -> ISO timestamp, per election
}


def get_redis_key(key_type: str, *args) -> str:
    """
    Get formatted Redis key.

    Args:
        key_type: Type of key from REDIS_KEYS
        *args: Arguments to format into key

    Returns:
        str: Formatted Redis key
    """
    key_template = REDIS_KEYS.get(key_type)
    if key_template and '{}' in key_template:
        return key_template.format(*args)
    return key_template


# RabbitMQ exchange and queue names
RABBITMQ_CONFIG = {
    'exchange': 'votes.exchange',
    'queues': {
        'reconcile': 'tally.reconcile',
    },
    'routing_keys': {
        'reconcile': 'tally.reconcile',
    }
}


def get_queue_name(queue_type: str) -> str:
    """Get RabbitMQ queue name for ``queue_type``."""
    return RABBITMQ_CONFIG['queues'].get(queue_type, '')


def get_routing_key(queue_type: str) -> str:
    """Get RabbitMQ routing key for ``queue_type``."""
    return RABBITMQ_CONFIG['routing_keys'].get(queue_type, '')
