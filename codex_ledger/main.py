"""
Codex Ledger - Authorship Ledger Service

Main application entry point.

    uvicorn codex_ledger.main:app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import router
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)
from .shared_ledger import get_ledger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared ledger once at startup."""
    setup_logging()
    ledger = get_ledger()
    app.state.ledger = ledger
    logger.info(
        "Application startup complete",
        backend=ledger.store.backend_name,
        entry_count=ledger.store.count(),
    )
    yield
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Codex Ledger",
    description="""
## Authorship Ledger

Append-only, hash-chained record of content lifecycle events.

- **Immutable**: entries are never edited or removed
- **Chained**: every entry binds its predecessor's block hash
- **Signed**: a keyed MAC proves a trusted writer produced each entry
- **Witnessed**: Ed25519 attestations over every block hash

Certificates are disposable snapshots; validate them against the live
chain at any time.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
app.include_router(router, prefix="/api/v1")


@app.get("/health", tags=["System"])
def health(request: Request):
    """
    Health check with store connectivity.

    Returns 200 if healthy, 503 if the store cannot be reached.
    """
    ledger = getattr(request.app.state, "ledger", None) or get_ledger()
    health_status = check_health(ledger)
    return JSONResponse(
        status_code=200 if health_status.healthy else 503,
        content={
            "status": "healthy" if health_status.healthy else "unhealthy",
            "checks": health_status.checks,
            "duration_ms": health_status.duration_ms,
        },
    )


@app.get("/metrics", tags=["System"])
def metrics():
    """Counters and latency percentiles."""
    return get_metrics().get_summary()
