# main.py
# Leaderboard Scoring — FastAPI application entry point.
# Registers all routers. Creates tables and warms the scoring services on startup.
# Imports from: api/*.py, database/db.py, utils/logger.py

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_services
from api.routes_anomalies import router as anomalies_router
from api.routes_normalization import router as normalization_router
from api.routes_points import router as points_router
from database.db import check_db_health, init_db
from utils.logger import get_logger

log = get_logger("main")

SERVICE_NAME: str = "Leaderboard Scoring"
SERVICE_VERSION: str = "1.0.0"


# ─────────────────────────────────────────────
# Lifespan — startup + shutdown
# ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        1. Create all DB tables (idempotent)
        2. Build the scoring services (state backend chosen by STATE_BACKEND)
    """
    log.info("startup_begin")

    try:
        init_db()
    except Exception as exc:
        log.exception("db_init_failed", error=str(exc))
        raise

    get_services()

    log.info("startup_complete")
    yield

    log.info("shutdown")


# ─────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────

app = FastAPI(
    title=SERVICE_NAME,
    description=(
        "Reward-point scoring for the school leaderboard: balanced point "
        "calculation with daily/weekly caps, rate limiting, cross-context "
        "score normalization and anti-gaming anomaly detection."
    ),
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(points_router)           # POST /points/award, GET /points/{id}/...
app.include_router(normalization_router)    # /normalization/contexts, /normalization/students
app.include_router(anomalies_router)        # POST /anomalies/leaderboard, /anomalies/flags


# ─────────────────────────────────────────────
# Health check
# ─────────────────────────────────────────────

@app.get("/health", tags=["system"], summary="Health check")
def health_check() -> dict:
    return {
        "status":   "ok",
        "service":  SERVICE_NAME,
        "version":  SERVICE_VERSION,
        "database": "ok" if check_db_health() else "unreachable",
    }


@app.get("/", tags=["system"], include_in_schema=False)
def root() -> dict:
    return {"service": SERVICE_NAME, "docs": "/docs", "health": "/health"}


if __name__ == "__main__":
    import uvicorn
    from utils.constants import SERVER_HOST, SERVER_PORT

    log.info("starting_dev_server", host=SERVER_HOST, port=SERVER_PORT)
    uvicorn.run("main:app", host=SERVER_HOST, port=SERVER_PORT, reload=True, log_level="info")
