"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field, validator


class CastVoteRequest(BaseModel):
    """Vote casting request model."""

    candidate_id: str = Field(..., description="Candidate identifier")

    @validator("candidate_id")
    def validate_candidate_id(cls, v):
        """Validate candidate_id is not empty."""
        if not v or not v.strip():
            raise ValueError("Valid candidate ID is required")
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {"candidate_id": "cand-001"}
        }


class CastVoteResponse(BaseModel):
    """Vote casting response model."""

    vote_id: str = Field(..., description="Identifier of the recorded vote")
    candidate_id: str = Field(..., description="Candidate voted for")
    voted_at: datetime = Field(..., description="When the vote was recorded")
    message: str = Field(default="Vote cast successfully", description="Response message")


class CandidateResultModel(BaseModel):
    candidate_id: str
    name: str
    party: str
    position: str = ""
    vote_count: int = Field(..., ge=0)


class ResultsResponse(BaseModel):
    """Election results response model."""

    election_id: str = Field(..., description="Election identifier")
    results: list[CandidateResultModel] = Field(..., description="Candidates ranked by votes")
    total_votes: int = Field(..., ge=0, description="Valid votes in the ledger")

    class Config:
        json_schema_extra = {
            "example": {
                "election_id": "general-2024",
                "results": [
                    {"candidate_id": "cand-002", "name": "Ada Park", "party": "Green",
                     "position": "Mayor", "vote_count": 12},
                    {"candidate_id": "cand-001", "name": "Ben Ortiz", "party": "Blue",
                     "position": "Mayor", "vote_count": 9}
                ],
                "total_votes": 21
            }
        }


class HasVotedResponse(BaseModel):
    has_voted: bool


class MyVoteResponse(BaseModel):
    """The caller's own vote."""

    vote_id: str
    candidate_id: str
    name: str
    party: str
    position: str
    voted_at: datetime


class StatsResponse(BaseModel):
    """Voting statistics response model."""

    election_id: str
    total_votes: int
    total_voters: int
    total_candidates: int
    voter_turnout: str = Field(..., description="Turnout percentage, e.g. '42.50%'")


class DashboardResponse(StatsResponse):
    recent_votes: int = Field(..., description="Votes cast in the last 24 hours")


class InvalidateVoteRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class InvalidateVoteResponse(BaseModel):
    vote_id: str
    candidate_id: str
    is_valid: bool
    invalidated_at: datetime
    invalidation_reason: str


class ReconcileEntry(BaseModel):
    candidate_id: str
    previous_count: int
    ledger_count: int
    drift: int


class ReconcileResponse(BaseModel):
    election_id: str
    candidates: list[ReconcileEntry]
    drifted: int


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "AlreadyVoted",
                "message": "You have already voted in this election",
                "details": {"election_id": "general-2024"}
            }
        }
