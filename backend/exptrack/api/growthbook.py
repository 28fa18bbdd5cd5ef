"""GrowthBook link, sync and feature search endpoints.

Unlike GET /experiments/{id}, these endpoints surface GrowthBook failures:
503 when the integration is not configured, 404 when the feature is gone,
502 when GrowthBook itself failed.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from exptrack.database import get_db
from exptrack.schemas.experiment import (
    LinkRequest,
    LinkResponse,
    RemoteFeatureSearchResponse,
    SyncResponse,
    UnlinkResponse,
)
from exptrack.middleware.logging import get_logger
from exptrack.services.experiments import ExperimentService, ExperimentNotFound
from exptrack.services.growthbook import (
    DEFAULT_ENVIRONMENT,
    GrowthBookClient,
    GrowthBookError,
    GrowthBookNotConfiguredError,
    get_growthbook_client,
)
from exptrack.services.sync import (
    ExperimentNotLinked,
    GrowthBookSyncService,
    RemoteFeatureNotFound,
)

router = APIRouter()
logger = get_logger()

NOT_CONFIGURED = "GrowthBook API is not configured"


def require_configured(growthbook: GrowthBookClient) -> None:
    if not growthbook.is_configured():
        raise HTTPException(status_code=503, detail=NOT_CONFIGURED)


def remote_failure(action: str, error: GrowthBookError) -> HTTPException:
    logger.error(
        "growthbook_request_failed",
        action=action,
        error=str(error),
        error_type=type(error).__name__
    )
    return HTTPException(
        status_code=502,
        detail={"error": f"Failed to {action} with GrowthBook", "message": str(error)}
    )


def load_experiment(db: Session, experiment_id: UUID):
    try:
        return ExperimentService(db).get_experiment(experiment_id)
    except ExperimentNotFound:
        raise HTTPException(status_code=404, detail="Experiment not found")


@router.post("/experiments/{experiment_id}/sync", response_model=SyncResponse)
async def sync_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    """Force a GrowthBook refresh for a linked experiment, ignoring the cache window."""
    experiment = load_experiment(db, experiment_id)

    try:
        return await GrowthBookSyncService(db, growthbook).force_sync(experiment)
    except ExperimentNotLinked as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GrowthBookNotConfiguredError:
        raise HTTPException(status_code=503, detail=NOT_CONFIGURED)
    except RemoteFeatureNotFound:
        logger.warning(
            "growthbook_linked_feature_missing",
            experiment_id=str(experiment_id),
            feature_id=experiment.growthbook_feature_id
        )
        raise HTTPException(status_code=404, detail="Feature not found in GrowthBook")
    except GrowthBookError as e:
        raise remote_failure("sync", e)


@router.post("/experiments/{experiment_id}/link", response_model=LinkResponse)
async def link_experiment(
    experiment_id: UUID,
    request: LinkRequest,
    db: Session = Depends(get_db),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    """Link an experiment to a GrowthBook feature after checking the feature exists."""
    require_configured(growthbook)
    experiment = load_experiment(db, experiment_id)

    try:
        feature = await GrowthBookSyncService(db, growthbook).link(
            experiment, request.growthbook_feature_id
        )
    except GrowthBookNotConfiguredError:
        raise HTTPException(status_code=503, detail=NOT_CONFIGURED)
    except RemoteFeatureNotFound:
        raise HTTPException(status_code=404, detail="Feature not found in GrowthBook")
    except GrowthBookError as e:
        raise remote_failure("link", e)

    production = feature.environments.get(DEFAULT_ENVIRONMENT)
    return {
        "success": True,
        "experiment": experiment,
        "feature": {
            "key": feature.key,
            "enabled": production.enabled if production else False,
            "value_type": feature.value_type,
        },
    }


@router.delete("/experiments/{experiment_id}/link", response_model=UnlinkResponse)
async def unlink_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    experiment = load_experiment(db, experiment_id)
    experiment = GrowthBookSyncService(db, growthbook).unlink(experiment)
    return {"success": True, "experiment": experiment}


@router.get("/remote-features", response_model=RemoteFeatureSearchResponse)
async def search_remote_features(
    search: str = Query("", description="Substring of the feature key or description"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    db: Session = Depends(get_db),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    """
    Search GrowthBook features and show which are already linked.

    Example response:
        {"features": [{"id": "checkout-v2", "already_linked": true,
                       "linked_to": {"experiment_id": "...", "experiment_name": "..."}, ...}],
         "count": 1}
    """
    if not search.strip():
        raise HTTPException(status_code=400, detail="search term is required")
    require_configured(growthbook)

    try:
        features = await GrowthBookSyncService(db, growthbook).search_with_link_status(
            search.strip(), project_id
        )
    except GrowthBookError as e:
        raise remote_failure("fetch features", e)

    logger.info("growthbook_features_searched", search=search, project_id=project_id, count=len(features))
    return {"features": features, "count": len(features)}


@router.get("/remote-features/by-key/{key}")
async def get_remote_feature_by_key(
    key: str,
    project_id: Optional[str] = Query(None, alias="projectId"),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    """Look up a GrowthBook feature by its exact key."""
    require_configured(growthbook)

    try:
        feature = await growthbook.get_feature_by_key(key, project_id)
    except GrowthBookError as e:
        raise remote_failure("fetch feature", e)

    if feature is None:
        raise HTTPException(status_code=404, detail="Feature not found in GrowthBook")

    status = growthbook.get_environment_status(feature)
    return {
        "id": feature.id,
        "key": feature.key,
        "value_type": feature.value_type,
        "default_value": feature.default_value,
        "description": feature.description,
        "tags": feature.tags,
        "environment": status.model_dump(),
        "targeting_summary": growthbook.get_targeting_summary(feature),
    }
