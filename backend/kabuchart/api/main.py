"""
FastAPI application entry point.

Read API for Kabuchart daily, weekly and monthly bars.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from kabuchart.core.config import settings
from kabuchart.core.logging import setup_logging
from kabuchart.core.database import close_db
from kabuchart.core.redis import close_redis

# Setup logging
setup_logging()

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="TSE Prime daily/weekly/monthly chart data",
    debug=settings.DEBUG,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("shutdown")
async def shutdown() -> None:
    """Run on application shutdown."""
    await close_db()
    close_redis()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


from kabuchart.api.bars import router as bars_router
from kabuchart.api.instruments import router as instruments_router

app.include_router(bars_router, prefix="/api/v1/bars", tags=["bars"])
app.include_router(instruments_router, prefix="/api/v1/instruments", tags=["instruments"])
