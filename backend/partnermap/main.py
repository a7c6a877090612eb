"""FastAPI application entry point."""

import logging
import os
import sqlite3
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from partnermap.db.database import close_database, get_db, init_database
from partnermap.errors import RegistryUnavailableError
from partnermap.services.consolidation import merge_group_threshold

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the registry on startup and close it on shutdown."""
    db_path = os.getenv("DATABASE_PATH", "./data/partnermap.db")
    await init_database(db_path)
    logger.info(
        f"Registry database opened at {db_path} "
        f"(merge group threshold {merge_group_threshold()})"
    )

    yield

    await close_database()
    logger.info("Registry database closed")


app = FastAPI(
    title="Partner Map",
    description="Deduplication and consolidation engine for the travel-technology partner map",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(sqlite3.Error)
async def registry_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    """Database errors that escape a route are reported as a retriable outage."""
    logger.error(f"Registry error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": {"message": str(exc), "retriable": True}},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Report whether the registry database answers."""
    try:
        db = await get_db()
        await db.execute("SELECT 1")
    except (RegistryUnavailableError, sqlite3.Error) as e:
        return JSONResponse(status_code=503, content={"status": "unhealthy", "registry": str(e)})
    return JSONResponse(content={"status": "healthy", "registry": "ok"})


# Import and include routers after app is created to avoid circular imports
from partnermap.api import batches, consolidation, deduplication, registry  # noqa: E402

app.include_router(batches.router, prefix="/api/v1", tags=["batches"])
app.include_router(deduplication.router, prefix="/api/v1", tags=["deduplication"])
app.include_router(registry.router, prefix="/api/v1", tags=["registry"])
app.include_router(consolidation.router, prefix="/api/v1", tags=["consolidation"])
