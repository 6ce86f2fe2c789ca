"""Main FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.middleware.logging import LoggingMiddleware, get_logger
from app.api import analytics, health, metrics, optimization, setup, tests
from app.database import engine, Base, SessionLocal
from app.services.mock_data import seed_demo_data
from app.services.storage import ABTestStorage

settings = get_settings()
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_ready")

    # Seed the demo test if the database is empty
    if settings.seed_demo_data:
        db = SessionLocal()
        try:
            seed_demo_data(ABTestStorage(db))
        except SQLAlchemyError as e:
            logger.error("demo_seed_failed", error=str(e))
            db.rollback()
        finally:
            db.close()

    yield  # App runs here

    # Shutdown
    logger.info("shutting_down", service=settings.app_name)

# Create FastAPI app
app = FastAPI(
    title="VariantLab",
    description="Video A/B testing with autonomous variant optimization",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# CORS middleware - Allow frontend origins
allowed_origins = [
    "http://localhost:5173",  # Local development
    "http://localhost:3000",  # Alternative local port
    settings.frontend_url,     # Production frontend
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID"]
)

# Logging middleware
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(tests.router, tags=["tests"])
app.include_router(analytics.router, tags=["analytics"])
app.include_router(optimization.router, tags=["optimization"])
app.include_router(metrics.router, tags=["metrics"])
app.include_router(setup.router, tags=["setup"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "tests": "/api/tests",
            "evaluate": "POST /api/tests/{id}/evaluate",
            "activity": "/api/tests/{id}/activity",
            "metrics": "/api/metrics/aggregate"
        }
    }


# uvicorn app.main:app --reload
