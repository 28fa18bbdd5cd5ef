"""GrowthBook REST API payload shapes.

The remote API speaks camelCase; these models expose snake_case attributes
through aliases and keep any fields they don't declare.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
import json


class RemoteModel(BaseModel):
    """Base for models parsed from GrowthBook responses."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Variation(RemoteModel):
    value: Any = None
    weight: float = 0
    name: Optional[str] = None
    key: Optional[str] = None


class Rule(RemoteModel):
    """One targeting, rollout or experiment directive."""

    type: str
    description: Optional[str] = None
    enabled: Optional[bool] = None
    condition: Optional[Dict[str, Any]] = None
    value: Any = None
    variations: Optional[List[Variation]] = None
    coverage: Optional[float] = None
    hash_attribute: Optional[str] = Field(None, alias="hashAttribute")
    tracking_key: Optional[str] = Field(None, alias="trackingKey")

    @field_validator("condition", mode="before")
    @classmethod
    def parse_condition(cls, v):
        # The REST API ships conditions as JSON-encoded strings
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            return json.loads(v)
        return v


class FeatureEnvironment(RemoteModel):
    enabled: bool = False
    rules: List[Rule] = Field(default_factory=list)


class Revision(RemoteModel):
    version: Optional[int] = None
    comment: Optional[str] = None
    published_at: Optional[str] = Field(None, alias="publishedAt")


class RemoteFeature(RemoteModel):
    """A GrowthBook feature flag with its per-environment rules."""

    id: str
    key: str = ""
    value_type: str = Field("boolean", alias="valueType")  # boolean | string | number | json
    default_value: Any = Field(None, alias="defaultValue")
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    environments: Dict[str, FeatureEnvironment] = Field(default_factory=dict)
    revision: Optional[Revision] = None

    @field_validator("key", mode="before")
    @classmethod
    def default_key(cls, v):
        return v if v is not None else ""

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v):
        return v if v is not None else []


class FeatureList(RemoteModel):
    """One page of the /features listing."""

    features: List[RemoteFeature] = Field(default_factory=list)
    total: int = 0
    has_more: bool = Field(False, alias="hasMore")


class ExperimentInfo(BaseModel):
    """An enabled experiment rule, flattened for display."""

    type: Literal["experiment"] = "experiment"
    description: Optional[str] = None
    variations: List[Variation] = Field(default_factory=list)
    coverage: float = 1.0
    condition: Optional[Dict[str, Any]] = None
    tracking_key: Optional[str] = None


class EnvironmentStatus(BaseModel):
    enabled: bool = False
    has_experiments: bool = False
    has_rollouts: bool = False
    has_overrides: bool = False
    rule_count: int = 0
