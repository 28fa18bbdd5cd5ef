"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text

from exptrack.database import get_db
from exptrack.config import get_settings
from exptrack.models.experiment import Experiment
from exptrack.services.growthbook import GrowthBookClient, get_growthbook_client

router = APIRouter()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "exptrack-backend"}


@router.get("/health/detailed")
async def detailed_health_check(
    db: Session = Depends(get_db),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    """
    Detailed health check including database connectivity.

    GrowthBook is reported as configured or not; it is never called here.
    """
    settings = get_settings()
    checks = {
        "api": "healthy",
        "database": "unknown",
    }
    experiment_count = None

    try:
        db.execute(text("SELECT 1"))
        experiment_count = db.query(Experiment).count()
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    overall_status = "healthy" if all(
        v == "healthy" for v in checks.values()
    ) else "degraded"

    return {
        "status": overall_status,
        "checks": checks,
        "experiment_count": experiment_count,
        "has_database_url": bool(settings.database_url),
        "growthbook_configured": growthbook.is_configured()
    }
