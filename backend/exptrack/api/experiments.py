"""Experiment and version endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from exptrack.database import get_db
from exptrack.schemas.experiment import (
    ExperimentCreate,
    ExperimentDetail,
    ExperimentResponse,
    ExperimentUpdate,
    VersionCreate,
    VersionResponse,
)
from exptrack.middleware.logging import get_logger
from exptrack.services.experiments import ExperimentService, ExperimentNotFound
from exptrack.services.growthbook import GrowthBookClient, get_growthbook_client
from exptrack.services.sync import GrowthBookSyncService

router = APIRouter()
logger = get_logger()


def not_found(experiment_id: UUID) -> HTTPException:
    logger.warning("experiment_not_found", experiment_id=str(experiment_id))
    return HTTPException(status_code=404, detail="Experiment not found")


@router.get("/experiments", response_model=List[ExperimentResponse])
async def list_experiments(
    platform: Optional[str] = Query(None, description="Platform tag the experiment must include"),
    user_group: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Substring of name or exp_parameter"),
    db: Session = Depends(get_db)
):
    """List experiments, newest live date first."""
    return ExperimentService(db).list_experiments(
        platform=platform,
        user_group=user_group,
        is_active=is_active,
        search=search,
    )


@router.post("/experiments", response_model=ExperimentResponse, status_code=201)
async def create_experiment(
    request: ExperimentCreate,
    db: Session = Depends(get_db)
):
    experiment = ExperimentService(db).create_experiment(**request.model_dump())

    logger.info(
        "experiment_created",
        experiment_id=str(experiment.id),
        exp_parameter=experiment.exp_parameter
    )
    return experiment


@router.get("/experiments/{experiment_id}", response_model=ExperimentDetail)
async def get_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db),
    growthbook: GrowthBookClient = Depends(get_growthbook_client)
):
    """
    Get an experiment with its versions and, when the link is stale, fresh GrowthBook data.

    The `remote` field is null when the experiment is unlinked, GrowthBook is
    not configured, the last sync is recent, or the feature could not be
    fetched. GrowthBook problems never fail this request.
    """
    try:
        experiment = ExperimentService(db).get_experiment(experiment_id)
    except ExperimentNotFound:
        raise not_found(experiment_id)

    remote = await GrowthBookSyncService(db, growthbook).enrich(experiment)

    detail = ExperimentDetail.model_validate(experiment)
    return detail.model_copy(update={"remote": remote})


@router.patch("/experiments/{experiment_id}", response_model=ExperimentResponse)
async def update_experiment(
    experiment_id: UUID,
    request: ExperimentUpdate,
    db: Session = Depends(get_db)
):
    changes = request.model_dump(exclude_unset=True)
    try:
        experiment = ExperimentService(db).update_experiment(experiment_id, changes)
    except ExperimentNotFound:
        raise not_found(experiment_id)

    logger.info("experiment_updated", experiment_id=str(experiment_id), fields=sorted(changes))
    return experiment


@router.delete("/experiments/{experiment_id}")
async def delete_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db)
):
    """Delete an experiment and its versions."""
    try:
        ExperimentService(db).delete_experiment(experiment_id)
    except ExperimentNotFound:
        raise not_found(experiment_id)

    logger.info("experiment_deleted", experiment_id=str(experiment_id))
    return {"success": True}


@router.get("/experiments/{experiment_id}/versions", response_model=List[VersionResponse])
async def list_versions(
    experiment_id: UUID,
    db: Session = Depends(get_db)
):
    try:
        return ExperimentService(db).list_versions(experiment_id)
    except ExperimentNotFound:
        raise not_found(experiment_id)


@router.post("/experiments/{experiment_id}/versions", response_model=VersionResponse, status_code=201)
async def create_version(
    experiment_id: UUID,
    request: VersionCreate,
    db: Session = Depends(get_db)
):
    """Append a change-log entry to an experiment."""
    try:
        version = ExperimentService(db).add_version(
            experiment_id,
            change_date=request.change_date,
            changes=request.changes,
        )
    except ExperimentNotFound:
        raise not_found(experiment_id)

    logger.info(
        "version_created",
        experiment_id=str(experiment_id),
        version_id=str(version.id),
        change_date=str(version.change_date)
    )
    return version
