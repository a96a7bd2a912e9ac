"""
ClubCTF Engine - Main Application Entry Point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clubctf.api import challenges, invites, leaderboard, teams
from clubctf.api.admin import admin_router
from clubctf.core.config import get_settings
from clubctf.core.database import close_db, init_db
from clubctf.core.exceptions import EngineError
from clubctf.middleware.security import setup_rate_limiting

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting ClubCTF engine...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Competition lock: {settings.competition_locked}")
    await init_db()
    logger.info("Database initialized")
    yield
    # Shutdown
    logger.info("Shutting down ClubCTF engine...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title="ClubCTF Engine API",
    description="Team and scoring engine for the club CTF platform",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render domain errors as ``{"detail", "code"}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Include routers
app.include_router(teams.router, prefix="/api")
app.include_router(invites.router, prefix="/api")
app.include_router(challenges.router, prefix="/api")
app.include_router(leaderboard.router, prefix="/api")

# Admin router
app.include_router(admin_router, prefix="/api")


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clubctf.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
