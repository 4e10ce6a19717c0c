"""Error taxonomy surfaced by the vote integrity core."""

from typing import Optional


class VotingError(Exception):
    """Base class for errors reported to the presentation layer."""

    status_code = 500
    error = "VotingError"
    retryable = False

    def __init__(self, message: str = "", details: Optional[dict] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message, "details": self.details}


class Unauthorized(VotingError):
    """Missing or invalid identity."""
    status_code = 401
    error = "Unauthorized"


class Forbidden(VotingError):
    """Role does not permit this operation."""
    status_code = 403
    error = "Forbidden"


class CandidateNotFound(VotingError):
    """Candidate not found or not approved."""
    status_code = 404
    error = "CandidateNotFound"


class VoteNotFound(VotingError):
    """No vote found for this election."""
    status_code = 404
    error = "VoteNotFound"


class AlreadyVoted(VotingError):
    """You have already voted in this election."""
    status_code = 409
    error = "AlreadyVoted"


class UpstreamUnavailable(VotingError):
    """A collaborating service did not answer in time."""
    status_code = 503
    error = "UpstreamUnavailable"
    retryable = True


class InternalFailure(VotingError):
    """Internal server error."""
    status_code = 500
    error = "InternalFailure"
