"""
FastAPI application for the vote integrity service.

Voter identity arrives as an already-authenticated email in the
X-Voter-Email header, set by the upstream authentication layer.
"""
import hmac
import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from vote_integrity.aggregation import CommitmentAggregator, batch_verify, verify_proof
from vote_integrity.casting import VoteCaster
from vote_integrity.config import settings
from vote_integrity.results import ResultsTallier
from vote_integrity.shared.errors import DatabaseError, ErrorCode, VoteIntegrityError
from vote_integrity.shared.models import BallotType
from vote_integrity.storage import create_store

from .models import (
    BallotInfo,
    BatchProofRequest,
    BatchProofResponse,
    BatchVerifyRequest,
    BatchVerifyResponse,
    CastVotesRequest,
    CastVotesResponse,
    CommitmentLookupResponse,
    ElectionResultsResponse,
    EligibilityResponse,
    ErrorResponse,
    HealthResponse,
    MerkleProofModel,
    MerkleTreeInfoResponse,
    ProofResponse,
    ReceiptResponse,
    ReceiptVerifyRequest,
    ReceiptVerifyResponse,
    SealResponse,
    VerifyProofRequest,
    VerifyProofResponse,
    VotingStatusEntry,
)

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_PREFIX = f"/api/{settings.API_VERSION}"

# Prometheus metrics
api_errors = Counter(
    "vote_integrity_api_errors_total",
    "Total number of API error responses",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

ERROR_STATUS = {
    ErrorCode.NOT_ELIGIBLE: status.HTTP_403_FORBIDDEN,
    ErrorCode.ELECTION_NOT_ACTIVE: status.HTTP_403_FORBIDDEN,
    ErrorCode.ELECTION_NOT_STARTED: status.HTTP_403_FORBIDDEN,
    ErrorCode.ELECTION_ENDED: status.HTTP_403_FORBIDDEN,
    ErrorCode.ALREADY_VOTED: status.HTTP_409_CONFLICT,
    ErrorCode.RESULTS_NOT_SEALED: status.HTTP_403_FORBIDDEN,
    ErrorCode.ROOT_ALREADY_SEALED: status.HTTP_409_CONFLICT,
    ErrorCode.ELECTION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.BALLOT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CANDIDATE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PROOF_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.TREE_ROOT_MISMATCH: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    if not settings.VOTE_HASH_SECRET:
        logger.warning("VOTE_HASH_SECRET is not set; casting and receipt checks are unavailable")
    if not settings.ADMIN_API_KEY:
        logger.warning("ADMIN_API_KEY is not set; Merkle roots cannot be sealed")

    store = create_store(settings)
    await store.initialize()

    app.state.store = store
    app.state.caster = VoteCaster(store, settings.VOTE_HASH_SECRET)
    app.state.aggregator = CommitmentAggregator(
        store,
        settings.VOTE_HASH_SECRET,
        max_batch_proofs=settings.MAX_BATCH_PROOFS
    )
    app.state.tallier = ResultsTallier(store, default_quorum={
        BallotType.EXECUTIVE: settings.DEFAULT_EXECUTIVE_QUORUM,
        BallotType.DIRECTOR: settings.DEFAULT_DIRECTOR_QUORUM,
        BallotType.REFERENDUM: settings.DEFAULT_REFERENDUM_QUORUM,
    })
    logger.info(f"{settings.SERVICE_NAME} started successfully ({settings.DATABASE_BACKEND} store)")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")
    await store.close()
    logger.info(f"{settings.SERVICE_NAME} shut down successfully")


# Create FastAPI app
app = FastAPI(
    title="Vote Integrity API",
    description="Ballot validation, anonymous vote commitments and Merkle inclusion proofs",
    version=settings.API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    started = time.perf_counter()
    response = await call_next(request)

    # Route templates keep commitments and ids out of the label values.
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    request_duration.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).observe(time.perf_counter() - started)

    return response


@app.exception_handler(VoteIntegrityError)
async def vote_integrity_error_handler(request: Request, exc: VoteIntegrityError):
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    api_errors.labels(error_type=exc.code.value).inc()
    body = ErrorResponse(error=exc.code.value, message=exc.message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError):
    api_errors.labels(error_type="database_error").inc()
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    body = ErrorResponse(error="DATABASE_ERROR", message="Internal server error")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())


async def get_voter_email(x_voter_email: Optional[str] = Header(default=None)) -> str:
    """Authenticated voter email from the upstream auth layer."""
    if not x_voter_email or not x_voter_email.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Voter-Email header"
        )
    return x_voter_email.strip().lower()


async def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Administrative operations are not configured"
        )
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key"
        )


async def is_admin(x_admin_key: Optional[str] = Header(default=None)) -> bool:
    """True when a valid admin key accompanies the request."""
    if not settings.ADMIN_API_KEY or not x_admin_key:
        return False
    return hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY)


def _require_secret() -> None:
    if not settings.VOTE_HASH_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vote commitments are not configured on this server"
        )


# ═══════════════════════════════════════════════════════════════════
# VOTING ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get(
    f"{API_PREFIX}/elections/{{election_id}}/eligibility",
    response_model=EligibilityResponse,
    responses={
        401: {"description": "Missing voter identity"},
        404: {"model": ErrorResponse, "description": "Election not found"}
    }
)
async def check_eligibility(
    request: Request,
    election_id: str,
    voter_email: str = Depends(get_voter_email)
) -> EligibilityResponse:
    """
    Check whether the voter may cast in an election right now.

    Returns the eligible ballots when allowed, otherwise the reason code.
    """
    result = await request.app.state.caster.check_eligibility(voter_email, election_id)
    return EligibilityResponse(
        election_id=election_id,
        eligible=result.eligible,
        has_voted=result.has_voted,
        voted_at=result.voted_at,
        error_code=result.error_code,
        reason=result.reason,
        ballots=[BallotInfo.from_ballot(ballot) for ballot in result.ballots]
    )


@app.get(
    f"{API_PREFIX}/elections/{{election_id}}/ballots",
    response_model=List[BallotInfo],
    responses={
        403: {"model": ErrorResponse, "description": "Voter not eligible"},
        404: {"model": ErrorResponse, "description": "Election not found"}
    }
)
async def get_ballots(
    request: Request,
    election_id: str,
    voter_email: str = Depends(get_voter_email)
) -> List[BallotInfo]:
    """Ballots the voter may vote on, in display order."""
    ballots = await request.app.state.caster.get_eligible_ballots(voter_email, election_id)
    return [BallotInfo.from_ballot(ballot) for ballot in ballots]


@app.post(
    f"{API_PREFIX}/elections/{{election_id}}/votes",
    response_model=CastVotesResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid vote set"},
        403: {"model": ErrorResponse, "description": "Voter not eligible"},
        404: {"model": ErrorResponse, "description": "Election, ballot or candidate not found"},
        409: {"model": ErrorResponse, "description": "Already voted"},
        429: {"description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def cast_votes(
    request: Request,
    election_id: str,
    payload: CastVotesRequest,
    voter_email: str = Depends(get_voter_email)
) -> CastVotesResponse:
    """
    Cast every vote of a ballot set in one step.

    - **votes**: one entry per ballot (ballot_id, vote_type, candidate_id)

    Returns one receipt per ballot. The nonce in each receipt is not stored
    by the server; keep it to verify the vote later.
    """
    _require_secret()
    result = await request.app.state.caster.cast_votes(
        voter_email,
        election_id,
        [item.to_submission() for item in payload.votes]
    )
    return CastVotesResponse(
        election_id=result.election_id,
        voted_at=result.voted_at,
        vote_count=result.vote_count,
        receipts=[ReceiptResponse(**receipt.to_dict()) for receipt in result.receipts]
    )


@app.get(
    f"{API_PREFIX}/voting-status",
    response_model=List[VotingStatusEntry]
)
async def get_voting_status(
    request: Request,
    voter_email: str = Depends(get_voter_email)
) -> List[VotingStatusEntry]:
    """Voting status for every election the voter is registered for."""
    entries = await request.app.state.caster.get_voting_status(voter_email)
    return [VotingStatusEntry(**entry) for entry in entries]


# ═══════════════════════════════════════════════════════════════════
# MERKLE PROOF ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get(
    f"{API_PREFIX}/elections/{{election_id}}/merkle",
    response_model=MerkleTreeInfoResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Election has no votes"},
        404: {"model": ErrorResponse, "description": "Election not found"}
    }
)
async def get_merkle_tree_info(request: Request, election_id: str) -> MerkleTreeInfoResponse:
    """Current Merkle tree statistics and sealed root metadata."""
    info = await request.app.state.aggregator.get_tree_info(election_id)
    return MerkleTreeInfoResponse(**info)


@app.post(
    f"{API_PREFIX}/elections/{{election_id}}/merkle/seal",
    response_model=SealResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
    responses={
        400: {"model": ErrorResponse, "description": "Voting still open or no votes"},
        403: {"description": "Invalid admin key"},
        409: {"model": ErrorResponse, "description": "Root already sealed"}
    }
)
async def seal_merkle_root(request: Request, election_id: str) -> SealResponse:
    """Seal the election's Merkle root once voting has closed."""
    sealed = await request.app.state.aggregator.seal_merkle_root(election_id)
    return SealResponse(**sealed)


@app.get(
    f"{API_PREFIX}/elections/{{election_id}}/proofs/{{commitment}}",
    response_model=ProofResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Election or vote hash not found"},
        500: {"model": ErrorResponse, "description": "Stored votes do not match the sealed root"}
    }
)
async def get_proof(request: Request, election_id: str, commitment: str) -> ProofResponse:
    """
    Inclusion proof for a vote hash.

    Anyone holding a vote hash may request its proof.
    """
    proof = await request.app.state.aggregator.prove_inclusion(election_id, commitment.lower())
    return ProofResponse(election_id=election_id, proof=MerkleProofModel.from_proof(proof))


@app.post(
    f"{API_PREFIX}/elections/{{election_id}}/proofs/batch",
    response_model=BatchProofResponse
)
async def get_batch_proofs(request: Request, election_id: str, payload: BatchProofRequest) -> BatchProofResponse:
    """Inclusion proofs for several vote hashes; missing ones come back null."""
    commitments = [commitment.lower() for commitment in payload.commitments]
    proofs = await request.app.state.aggregator.batch_prove(election_id, commitments)
    return BatchProofResponse(
        election_id=election_id,
        total=len(proofs),
        found=sum(1 for proof in proofs if proof is not None),
        proofs=[MerkleProofModel.from_proof(proof) if proof else None for proof in proofs]
    )


@app.post(f"{API_PREFIX}/proofs/verify", response_model=VerifyProofResponse)
async def verify_proof_endpoint(payload: VerifyProofRequest) -> VerifyProofResponse:
    """Verify an inclusion proof. Needs nothing but the proof itself."""
    return VerifyProofResponse(valid=verify_proof(payload.proof.to_proof(), payload.expected_root))


@app.post(f"{API_PREFIX}/proofs/verify-batch", response_model=BatchVerifyResponse)
async def verify_batch_endpoint(payload: BatchVerifyRequest) -> BatchVerifyResponse:
    """Verify several inclusion proofs independently."""
    outcome = batch_verify(proof.to_proof() for proof in payload.proofs)
    return BatchVerifyResponse(
        total=outcome.total,
        verified=outcome.verified,
        failed=outcome.failed,
        results=[valid for _, valid in outcome.results]
    )


@app.get(f"{API_PREFIX}/commitments/{{commitment}}", response_model=CommitmentLookupResponse)
async def lookup_commitment(request: Request, commitment: str) -> CommitmentLookupResponse:
    """Public check that a vote hash was recorded."""
    found = await request.app.state.aggregator.lookup_commitment(commitment.lower())
    return CommitmentLookupResponse(**found)


@app.post(f"{API_PREFIX}/receipts/verify", response_model=ReceiptVerifyResponse)
async def verify_receipt(request: Request, payload: ReceiptVerifyRequest) -> ReceiptVerifyResponse:
    """Check that a receipt's vote hash binds its content and was recorded."""
    _require_secret()
    checked = await request.app.state.aggregator.verify_receipt(
        payload.commitment,
        payload.ballot_id,
        payload.candidate_id,
        payload.vote_type,
        payload.nonce
    )
    return ReceiptVerifyResponse(**checked)


# ═══════════════════════════════════════════════════════════════════
# RESULTS ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get(
    f"{API_PREFIX}/elections/{{election_id}}/results",
    response_model=ElectionResultsResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Root not sealed and no admin key"},
        404: {"model": ErrorResponse, "description": "Election not found"}
    }
)
async def get_election_results(
    request: Request,
    election_id: str,
    admin: bool = Depends(is_admin)
) -> ElectionResultsResponse:
    """
    Per-ballot counts, referendum outcomes, turnout and quorum.

    Public once the Merkle root is sealed; before that only with X-Admin-Key.
    """
    results = await request.app.state.tallier.get_election_results(election_id, require_sealed=not admin)
    return ElectionResultsResponse(**results.to_dict())


# ═══════════════════════════════════════════════════════════════════
# OPERATIONS
# ═══════════════════════════════════════════════════════════════════

@app.get(
    f"{API_PREFIX}/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check(request: Request) -> HealthResponse:
    """
    Check health of the service and its database.

    Returns overall health status and individual service statuses.
    """
    healthy = await request.app.state.store.check_health()
    services = {"database": "connected" if healthy else "disconnected"}

    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        services=services
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
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
        "status": "running",
        "endpoints": {
            "eligibility": f"{API_PREFIX}/elections/{{election_id}}/eligibility",
            "ballots": f"{API_PREFIX}/elections/{{election_id}}/ballots",
            "cast_votes": f"{API_PREFIX}/elections/{{election_id}}/votes",
            "voting_status": f"{API_PREFIX}/voting-status",
            "merkle_tree": f"{API_PREFIX}/elections/{{election_id}}/merkle",
            "results": f"{API_PREFIX}/elections/{{election_id}}/results",
            "proof": f"{API_PREFIX}/elections/{{election_id}}/proofs/{{commitment}}",
            "verify_proof": f"{API_PREFIX}/proofs/verify",
            "verify_receipt": f"{API_PREFIX}/receipts/verify",
            "health": f"{API_PREFIX}/health",
            "metrics": "/metrics"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "vote_integrity.ingestion_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
