"""
FastAPI application for the voting API.

Exposes vote casting, results and the voter's own vote status, plus the
administrative invalidation and reconciliation endpoints.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal, Optional

import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from ..shared.errors import InternalFailure, VotingError
from ..shared.models import VoteMetadata
from ..storage.database import Database, DatabaseError
from ..storage.ledger import VoteLedger
from ..storage.tally import TallyStore, TallyStoreError
from .casting import VoteCastingService
from .config import settings
from .directory import CandidateDirectory
from .identity import IdentityProvider
from .models import (
    CastVoteRequest,
    CastVoteResponse,
    DashboardResponse,
    ErrorResponse,
    HasVotedResponse,
    HealthResponse,
    InvalidateVoteRequest,
    InvalidateVoteResponse,
    MyVoteResponse,
    ReconcileEntry,
    ReconcileResponse,
    ResultsResponse,
    StatsResponse,
)
from .publisher import publisher
from .results import ResultsAggregator

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
request_errors = Counter(
    "voting_api_errors_total",
    "Errors returned by the voting API",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

bearer_scheme = HTTPBearer(auto_error=False)

API_PREFIX = f"/api/{settings.API_VERSION}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    database = Database(
        settings.postgres_dsn,
        min_size=settings.POSTGRES_POOL_MIN_SIZE,
        max_size=settings.POSTGRES_POOL_MAX_SIZE
    )
    redis_client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True
    )

    try:
        await database.initialize()

        await redis_client.ping()
        logger.info("Redis connection established")

        await publisher.initialize()

        identity = IdentityProvider(
            database.pool,
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS
        )
        directory = CandidateDirectory(database.pool, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
        ledger = VoteLedger(database.pool)
        tally = TallyStore(redis_client)

        app.state.database = database
        app.state.tally = tally
        app.state.casting_service = VoteCastingService(
            identity, directory, ledger, tally, publisher, settings.ELECTION_ID
        )
        app.state.results_aggregator = ResultsAggregator(identity, directory, ledger, tally)

        logger.info(f"{settings.SERVICE_NAME} started successfully")

    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")
    try:
        await redis_client.aclose()
        await publisher.close()
        await database.close()
        logger.info(f"{settings.SERVICE_NAME} shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


app = FastAPI(
    title="Voting API",
    description="Cast votes and read live election results",
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(VotingError)
async def voting_error_handler(request: Request, exc: VotingError):
    """Map the error taxonomy onto HTTP responses."""
    request_errors.labels(error_type=exc.error).inc()
    headers = {}
    if exc.retryable:
        headers["Retry-After"] = str(settings.RETRY_AFTER_SECONDS)
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(DatabaseError)
@app.exception_handler(TallyStoreError)
async def storage_error_handler(request: Request, exc: Exception):
    """Storage errors that reach the app unmapped still get the InternalFailure body."""
    logger.error(f"Unmapped storage error on {request.url.path}: {exc}", exc_info=exc)
    return await voting_error_handler(request, InternalFailure())


def endpoint_label(request: Request) -> str:
    """Route template of the matched route, so path parameters don't create new series."""
    route = request.scope.get("route")
    return route.path if route is not None else "unmatched"


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    start = time.perf_counter()
    response = await call_next(request)
    request_duration.labels(
        method=request.method,
        endpoint=endpoint_label(request),
        status=response.status_code
    ).observe(time.perf_counter() - start)
    return response


def get_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Optional[str]:
    """Bearer token from the Authorization header, if any."""
    return credentials.credentials if credentials else None


def get_casting_service(request: Request) -> VoteCastingService:
    return request.app.state.casting_service


def get_results_aggregator(request: Request) -> ResultsAggregator:
    return request.app.state.results_aggregator


ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid token"},
    403: {"model": ErrorResponse, "description": "Role not allowed"},
    503: {"model": ErrorResponse, "description": "Upstream unavailable, retry"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


@app.post(
    f"{API_PREFIX}/votes/cast",
    response_model=CastVoteResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **ERROR_RESPONSES,
        404: {"model": ErrorResponse, "description": "Candidate not found or not approved"},
        409: {"model": ErrorResponse, "description": "Already voted"},
        429: {"description": "Rate limit exceeded"},
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def cast_vote(
    request: Request,
    vote: CastVoteRequest,
    token: Optional[str] = Depends(get_token),
    service: VoteCastingService = Depends(get_casting_service)
) -> CastVoteResponse:
    """
    Cast a vote for a candidate.

    - **candidate_id**: Approved and active candidate

    Each voter may hold one valid vote per election.
    """
    metadata = VoteMetadata(
        ip_address=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent")
    )
    receipt = await service.cast_vote(token, vote.candidate_id, metadata)
    return CastVoteResponse(
        vote_id=receipt.vote_id,
        candidate_id=receipt.candidate_id,
        voted_at=receipt.voted_at,
    )


@app.get(
    f"{API_PREFIX}/votes/results",
    response_model=ResultsResponse,
    responses={500: ERROR_RESPONSES[500], 503: ERROR_RESPONSES[503]}
)
async def get_results(
    election_id: Optional[str] = None,
    source: Literal["tally", "ledger"] = "tally",
    aggregator: ResultsAggregator = Depends(get_results_aggregator)
) -> ResultsResponse:
    """Ranked results for approved candidates and the ledger's total vote count."""
    results = await aggregator.get_results(election_id or settings.ELECTION_ID, source)
    return ResultsResponse(**results)


@app.get(f"{API_PREFIX}/votes/has-voted", response_model=HasVotedResponse, responses=ERROR_RESPONSES)
async def has_voted(
    token: Optional[str] = Depends(get_token),
    service: VoteCastingService = Depends(get_casting_service)
) -> HasVotedResponse:
    """Whether the caller already holds a valid vote."""
    return HasVotedResponse(has_voted=await service.has_voted(token))


@app.get(
    f"{API_PREFIX}/votes/my-vote",
    response_model=MyVoteResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "No vote yet"}}
)
async def get_my_vote(
    token: Optional[str] = Depends(get_token),
    service: VoteCastingService = Depends(get_casting_service)
) -> MyVoteResponse:
    """The caller's own vote in the current election."""
    summary = await service.get_my_vote(token)
    return MyVoteResponse(
        vote_id=summary.vote_id,
        candidate_id=summary.candidate_id,
        name=summary.name,
        party=summary.party,
        position=summary.position,
        voted_at=summary.voted_at,
    )


@app.get(f"{API_PREFIX}/votes/stats", response_model=StatsResponse)
async def get_stats(
    aggregator: ResultsAggregator = Depends(get_results_aggregator)
) -> StatsResponse:
    """Total votes, active voters, candidates and turnout."""
    return StatsResponse(**await aggregator.get_stats(settings.ELECTION_ID))


@app.get(f"{API_PREFIX}/admin/dashboard", response_model=DashboardResponse, responses=ERROR_RESPONSES)
async def admin_dashboard(
    token: Optional[str] = Depends(get_token),
    aggregator: ResultsAggregator = Depends(get_results_aggregator)
) -> DashboardResponse:
    """Statistics plus votes cast in the last 24 hours (admin only)."""
    return DashboardResponse(**await aggregator.get_dashboard(token, settings.ELECTION_ID))


@app.post(
    f"{API_PREFIX}/admin/votes/{{vote_id}}/invalidate",
    response_model=InvalidateVoteResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "No valid vote"}}
)
async def invalidate_vote(
    vote_id: str,
    body: InvalidateVoteRequest,
    token: Optional[str] = Depends(get_token),
    service: VoteCastingService = Depends(get_casting_service)
) -> InvalidateVoteResponse:
    """Mark a vote invalid and resync its candidate's tally (admin only)."""
    record = await service.invalidate_vote(token, vote_id, body.reason)
    return InvalidateVoteResponse(
        vote_id=record.id,
        candidate_id=record.candidate_id,
        is_valid=record.is_valid,
        invalidated_at=record.invalidated_at,
        invalidation_reason=record.invalidation_reason,
    )


@app.post(f"{API_PREFIX}/admin/tallies/reconcile", response_model=ReconcileResponse, responses=ERROR_RESPONSES)
async def reconcile_tallies(
    token: Optional[str] = Depends(get_token),
    aggregator: ResultsAggregator = Depends(get_results_aggregator)
) -> ReconcileResponse:
    """Recompute every tally counter from the ledger (admin only)."""
    outcomes = await aggregator.reconcile_all(token, settings.ELECTION_ID)
    entries = [
        ReconcileEntry(
            candidate_id=o.candidate_id,
            previous_count=o.previous_count,
            ledger_count=o.ledger_count,
            drift=o.drift,
        )
        for o in outcomes
    ]
    return ReconcileResponse(
        election_id=settings.ELECTION_ID,
        candidates=entries,
        drifted=sum(1 for e in entries if e.drift),
    )


@app.get(
    f"{API_PREFIX}/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Service unhealthy"}}
)
async def health_check(request: Request) -> HealthResponse:
    """
    Check health of the service and its dependencies.

    Verifies connections to PostgreSQL, Redis and RabbitMQ.
    """
    services = {}

    database = getattr(request.app.state, "database", None)
    postgres_healthy = await database.check_health() if database else False
    services["postgresql"] = "connected" if postgres_healthy else "disconnected"

    tally = getattr(request.app.state, "tally", None)
    redis_healthy = await tally.check_health() if tally else False
    services["redis"] = "connected" if redis_healthy else "disconnected"

    rabbitmq_healthy = await publisher.check_health() if publisher.channel_pool else False
    services["rabbitmq"] = "connected" if rabbitmq_healthy else "disconnected"

    all_healthy = all(s == "connected" for s in services.values())

    response = HealthResponse(
        status="healthy" if all_healthy else "unhealthy",
        services=services,
        timestamp=datetime.utcnow()
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "election_id": settings.ELECTION_ID,
        "status": "running",
        "endpoints": {
            "cast_vote": f"{API_PREFIX}/votes/cast",
            "results": f"{API_PREFIX}/votes/results",
            "has_voted": f"{API_PREFIX}/votes/has-voted",
            "my_vote": f"{API_PREFIX}/votes/my-vote",
            "stats": f"{API_PREFIX}/votes/stats",
            "health": f"{API_PREFIX}/health",
            "metrics": "/metrics"
        }
    }


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "voting_core.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
