"""Main FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from exptrack.config import get_settings
from exptrack.middleware.logging import LoggingMiddleware, get_logger
from exptrack.api import experiments, growthbook, health
from exptrack.database import engine, Base
from exptrack.services.growthbook import close_growthbook_client, get_growthbook_client

settings = get_settings()
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_ready")

    if not get_growthbook_client().is_configured():
        logger.warning("growthbook_not_configured", hint="Set GROWTHBOOK_API_KEY to enable sync")

    yield  # App runs here

    # Shutdown
    await close_growthbook_client()
    logger.info("shutting_down", service=settings.app_name)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Experiment tracking with change logs and GrowthBook feature sync",
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


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report missing or malformed fields as 400 rather than 422."""
    logger.info("request_validation_failed", path=request.url.path, error_count=len(exc.errors()))
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())}
    )


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(experiments.router, tags=["experiments"])
app.include_router(growthbook.router, tags=["growthbook"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "experiments": "GET|POST /experiments",
            "experiment": "GET|PATCH|DELETE /experiments/{id}",
            "versions": "GET|POST /experiments/{id}/versions",
            "sync": "POST /experiments/{id}/sync",
            "link": "POST|DELETE /experiments/{id}/link",
            "remote_features": "GET /remote-features?search="
        }
    }


# uvicorn exptrack.main:app --reload
