"""JRS Logistics - subcontractor management API"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.core.config import get_settings
from app.core.logging import configure_logging, logger
from app.routers import accounting, jobs, pricing, reports
from app.services.logistics_engine import logistics_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    applied = logistics_engine.bootstrap()
    promoted = logistics_engine.reprice_pending()
    logger.info(
        "JRS Logistics API starting",
        version="0.1.0",
        db_path=settings.logistics_db_path,
        migrations_applied=len(applied),
        promoted_on_start=len(promoted),
        price_tie_break=settings.normalized_tie_break(),
    )
    yield
    # Shutdown
    logger.info("JRS Logistics API shutting down")


app = FastAPI(
    title="JRS Logistics API",
    description="Subcontractor management for trucking operations - pricing, dispatch, accounting review",
    version="0.1.0",
    lifespan=lifespan
)
app.state.user_lookup = logistics_engine.lookup_user

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(pricing.router)
app.include_router(jobs.router)
app.include_router(accounting.router)
app.include_router(reports.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "JRS Logistics API",
        "version": "0.1.0",
        "description": "Subcontractor management for trucking operations",
        "endpoints": {
            "pricing": "/pricing",
            "jobs": "/jobs",
            "accounting": "/accounting",
            "reports": "/reports",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
