"""Experiment and version request/response schemas."""
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import date, datetime
from uuid import UUID


class ExperimentCreate(BaseModel):
    """Request to create an experiment."""

    name: str = Field(..., min_length=1, max_length=255)
    exp_parameter: str = Field(..., min_length=1, max_length=255, description="Key used by downstream systems")
    user_group: str = Field(..., min_length=1, max_length=255)
    live_date: date
    numbers_list: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    context: Optional[str] = Field(None, description="Markdown notes")
    is_active: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "name": "New Checkout Flow",
                "exp_parameter": "checkout_v2",
                "user_group": "premium_users",
                "live_date": "2024-01-15",
                "numbers_list": ["123456", "789012"],
                "platforms": ["web", "mobile"],
                "context": "## Overview\nRedesigned checkout flow.",
                "is_active": True
            }
        }


class ExperimentUpdate(BaseModel):
    """Partial update; only the fields sent are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    exp_parameter: Optional[str] = Field(None, min_length=1, max_length=255)
    user_group: Optional[str] = Field(None, min_length=1, max_length=255)
    live_date: Optional[date] = None
    numbers_list: Optional[List[str]] = None
    platforms: Optional[List[str]] = None
    context: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator(
        "name", "exp_parameter", "user_group", "live_date", "numbers_list", "platforms", "is_active"
    )
    @classmethod
    def not_null(cls, v, info):
        # Omit a field to leave it unchanged; only context may be cleared
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class VersionCreate(BaseModel):
    """Request to append a change-log entry."""

    change_date: date
    changes: str = Field(..., min_length=1, description="Markdown description of the change")

    class Config:
        json_schema_extra = {
            "example": {
                "change_date": "2024-02-05",
                "changes": "### Version 1.2\n- Added guest checkout"
            }
        }


class VersionResponse(BaseModel):
    id: UUID
    experiment_id: UUID
    change_date: date
    changes: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ExperimentResponse(BaseModel):
    id: UUID
    name: str
    exp_parameter: str
    user_group: str
    numbers_list: List[str]
    live_date: date
    platforms: List[str]
    context: Optional[str] = None
    is_active: bool
    growthbook_feature_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    versions: List[VersionResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ExperimentDetail(ExperimentResponse):
    """Experiment with its GrowthBook section (null when not refreshed)."""

    remote: Optional[Dict[str, Any]] = None


class LinkRequest(BaseModel):
    """Request to link an experiment to a GrowthBook feature."""

    growthbook_feature_id: str = Field(
        ...,
        validation_alias=AliasChoices(
            "growthbook_feature_id", "remote_feature_id", "remoteFeatureId", "growthbookFeatureId"
        ),
    )

    @field_validator("growthbook_feature_id")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("growthbook_feature_id is required")
        return v.strip()

    class Config:
        json_schema_extra = {"example": {"growthbook_feature_id": "checkout-v2"}}


class LinkedFeatureSummary(BaseModel):
    key: str
    enabled: bool
    value_type: str


class LinkResponse(BaseModel):
    success: bool = True
    experiment: ExperimentResponse
    feature: LinkedFeatureSummary


class UnlinkResponse(BaseModel):
    success: bool = True
    experiment: ExperimentResponse


class SyncResponse(BaseModel):
    success: bool = True
    last_synced_at: datetime
    remote: Dict[str, Any]


class LinkedExperimentRef(BaseModel):
    experiment_id: str
    experiment_name: str


class RemoteFeatureSummary(BaseModel):
    """A GrowthBook search hit with its local link status."""

    id: str
    key: str
    value_type: str
    default_value: Any = None
    description: Optional[str] = None
    enabled: bool
    tags: List[str]
    has_experiments: bool
    has_rollouts: bool
    rule_count: int
    already_linked: bool
    linked_to: Optional[LinkedExperimentRef] = None


class RemoteFeatureSearchResponse(BaseModel):
    features: List[RemoteFeatureSummary]
    count: int
