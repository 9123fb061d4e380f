"""
VoteChain - Hash-Linked Voting Ledger

Main application entry point.

Every vote definition and every ballot is an entry in a single
append-only chain. Anyone can re-walk the chain and check that nothing
was edited, removed, or reordered.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import router
from .api.shared_ledger import get_ledger
from .core import LedgerError, LedgerService
from .observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)

logger = get_logger(__name__)


# LedgerError.code -> HTTP status
ERROR_STATUS = {
    "FORBIDDEN": 403,
    "ALREADY_VOTED": 403,
    "VOTE_CLOSED": 403,
    "VOTE_NOT_FOUND": 404,
    "INVALID_CANDIDATE": 400,
    "DUPLICATE_VOTE": 400,
    "INVALID_VOTE_DEFINITION": 400,
    "APPEND_CONFLICT": 409,
    "VALIDATION_FAILURE": 500,
    "CHAIN_CORRUPTED": 500,
    "IDENTITY_UNAVAILABLE": 503,
    "STORE_UNAVAILABLE": 503,
}


def status_for(error: LedgerError) -> int:
    return ERROR_STATUS.get(error.code, 400)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Request failed", error=exc.code, detail=exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def create_app(ledger: Optional[LedgerService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        ledger: Ledger to serve. If None, the shared ledger configured
                from the environment is created at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        setup_logging()
        app.state.ledger = ledger or get_ledger()
        app.state.entry_store = app.state.ledger.store

        # Verify chain integrity on startup
        entry_count = app.state.ledger.entry_count
        if entry_count > 0:
            result = app.state.ledger.validate_chain()
            if result.valid:
                logger.info("Chain integrity verified OK", entry_count=entry_count)
            else:
                logger.error(
                    "Chain integrity check FAILED!",
                    reason=result.reason.value if result.reason else None,
                    offending_index=result.offending_index,
                )

        logger.info(
            "Application startup complete",
            entry_count=entry_count,
            store_type=type(app.state.entry_store).__name__,
        )

        yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="VoteChain",
        description="""
## Hash-Linked Voting Ledger

Vote definitions and ballots are appended to one chain. Each entry
carries the SHA-256 of its predecessor.

### Rules

- Only administrators create votes; administrators never vote
- One ballot per voter per vote, for a listed option, before the end date
- Nothing is edited or deleted

### Verification

`GET /validate` re-walks the whole chain and reports the first entry
whose hash or linkage does not check out.
        """,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add request context middleware for logging
    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(router)

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "votechain"}

    @app.get("/health/detailed", tags=["System"])
    def health_detailed(request: Request):
        """
        Detailed health check with chain verification.

        Checks:
        - Service liveness
        - Entry store connectivity
        - Chain integrity

        Returns 200 if healthy, 503 if unhealthy.
        """
        health_status = check_health(
            ledger=request.app.state.ledger,
            entry_store=request.app.state.entry_store,
        )
        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "votechain.main:app",
        host=os.environ.get("VOTECHAIN_HOST", "127.0.0.1"),
        port=int(os.environ.get("VOTECHAIN_PORT", "8000")),
    )
