"""Unit tests for roles, identities and the error taxonomy."""

import pytest

from voting_core.shared.errors import (
    AlreadyVoted,
    CandidateNotFound,
    Forbidden,
    UpstreamUnavailable,
    VotingError,
)
from voting_core.shared.models import (
    Capability,
    CandidateEligibility,
    Identity,
    Role,
    get_queue_name,
    get_redis_key,
    get_routing_key,
)


class TestRoles:

    def test_only_voters_cast(self):
        assert [r for r in Role if r.can(Capability.CAST_VOTE)] == [Role.VOTER]

    def test_only_admins_administer(self):
        assert [r for r in Role if r.can(Capability.ADMINISTER)] == [Role.ADMIN]

    def test_candidate_has_no_capabilities(self):
        assert Role.CANDIDATE.capabilities == frozenset()

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            Role("superuser")

    def test_require_returns_identity(self):
        voter = Identity("v1", Role.VOTER)
        assert voter.require(Capability.CAST_VOTE) is voter

    def test_require_raises_forbidden(self):
        with pytest.raises(Forbidden) as exc_info:
            Identity("c1", Role.CANDIDATE).require(Capability.CAST_VOTE)
        assert exc_info.value.details == {"role": "candidate", "capability": "cast_vote"}


class TestEligibility:

    @pytest.mark.parametrize("approved,active,eligible", [
        (True, True, True),
        (False, True, False),
        (True, False, False),
        (False, False, False),
    ])
    def test_eligible(self, approved, active, eligible):
        assert CandidateEligibility("c", approved, active).eligible is eligible


class TestErrors:

    def test_default_message_from_docstring(self):
        error = AlreadyVoted()
        assert error.message == "You have already voted in this election."
        assert error.to_dict() == {
            "error": "AlreadyVoted",
            "message": "You have already voted in this election.",
            "details": {},
        }

    def test_status_codes(self):
        assert CandidateNotFound.status_code == 404
        assert AlreadyVoted.status_code == 409
        assert UpstreamUnavailable.status_code == 503

    def test_only_upstream_is_retryable(self):
        retryable = [cls for cls in VotingError.__subclasses__() if cls.retryable]
        assert retryable == [UpstreamUnavailable]


def test_naming_helpers():
    assert get_redis_key("candidate_tally", "general-2024", "cand-a") == "candidate_tally:general-2024:cand-a"
    assert get_redis_key("tally_reconciled", "general-2024") == "tally_reconciled:general-2024"
    assert get_queue_name("reconcile") == "tally.reconcile"
    assert get_routing_key("reconcile") == "tally.reconcile"
