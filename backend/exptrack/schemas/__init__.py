"""Pydantic schemas for request/response validation."""
from exptrack.schemas.experiment import (
    ExperimentCreate,
    ExperimentDetail,
    ExperimentResponse,
    ExperimentUpdate,
    LinkRequest,
    VersionCreate,
    VersionResponse,
)
from exptrack.schemas.growthbook import RemoteFeature, Rule

__all__ = [
    "ExperimentCreate",
    "ExperimentDetail",
    "ExperimentResponse",
    "ExperimentUpdate",
    "LinkRequest",
    "VersionCreate",
    "VersionResponse",
    "RemoteFeature",
    "Rule",
]
