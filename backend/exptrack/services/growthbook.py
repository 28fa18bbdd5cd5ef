"""
GrowthBook Client - read access to the GrowthBook features REST API.

Fetches single features or feature listings and derives display summaries
(experiment rules, targeting text, per-environment status) from a feature's
rule set.
"""
import anyio
import httpx
import json
import structlog
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from pydantic import ValidationError

from exptrack.config import get_settings
from exptrack.schemas.growthbook import (
    EnvironmentStatus,
    ExperimentInfo,
    FeatureList,
    RemoteFeature,
    Rule,
)

logger = structlog.get_logger()

DEFAULT_ENVIRONMENT = "production"
SEARCH_PAGE_SIZE = 100
ALL_USERS = "All users"

RULE_TYPE_LABELS = {
    "experiment": "A/B Test",
    "rollout": "Gradual Rollout",
    "force": "Override",
}

# Checked in this order; first operator present wins
COMPARISON_OPERATORS = [
    ("$eq", "="),
    ("$ne", "≠"),
    ("$gt", ">"),
    ("$gte", "≥"),
    ("$lt", "<"),
    ("$lte", "≤"),
]


class GrowthBookError(Exception):
    """Base error for GrowthBook API failures."""
    pass


class GrowthBookNotConfiguredError(GrowthBookError):
    """Raised when a request is attempted without an API key."""
    pass


class GrowthBookTimeoutError(GrowthBookError):
    """Raised when the API does not answer within the client timeout."""
    pass


class GrowthBookAPIError(GrowthBookError):
    """Raised on a non-2xx response from the API."""

    def __init__(self, status_code: int, status_text: str, body: str):
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        super().__init__(f"GrowthBook API error: {status_code} {status_text}. {body}")


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class FeatureLookup:
    """Outcome of fetching a single feature, keeping 404 apart from failures."""

    status: LookupStatus
    feature: Optional[RemoteFeature] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND


def _format_value(value: Any) -> str:
    """Render a condition value the way it reads in the GrowthBook UI."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join("" if v is None else _format_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def _format_clause(attribute: str, matcher: Any) -> str:
    if not isinstance(matcher, (dict, list)):
        return f"{attribute} = {_format_value(matcher)}"

    if isinstance(matcher, dict):
        if isinstance(matcher.get("$in"), list):
            values = ", ".join(_format_value(v) for v in matcher["$in"])
            return f"{attribute}: {values}"
        for operator, symbol in COMPARISON_OPERATORS:
            if operator in matcher:
                return f"{attribute} {symbol} {_format_value(matcher[operator])}"

    return f"{attribute}: {json.dumps(matcher, separators=(',', ':'), ensure_ascii=False)}"


class GrowthBookClient:
    """
    Client for the GrowthBook features API.

    Every network call is a single attempt bounded by the client timeout.
    Callers check is_configured() first; an unconfigured client raises
    GrowthBookNotConfiguredError instead of silently returning nothing.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the GrowthBook client.

        Args:
            base_url: API root, e.g. https://api.growthbook.io/api/v1
            api_key: Secret API key sent as a bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.base_url = (base_url or "").rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def is_configured(self) -> bool:
        """True when both an API key and a base URL are present."""
        return bool(self.api_key) and bool(self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make an authenticated GET request and return the parsed JSON body.

        Raises:
            GrowthBookNotConfiguredError: No API key is set
            GrowthBookAPIError: Non-2xx response
            GrowthBookTimeoutError: Request exceeded the timeout
            GrowthBookError: Any other transport failure
        """
        if not self.is_configured():
            raise GrowthBookNotConfiguredError(
                "GrowthBook API key is not configured. Set GROWTHBOOK_API_KEY in your .env file."
            )

        try:
            client = await self._get_client()
            # httpx timeouts apply per phase; this caps the whole exchange
            with anyio.fail_after(self.timeout):
                response = await client.get(
                    endpoint,
                    params=params,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except (httpx.TimeoutException, TimeoutError) as e:
            raise GrowthBookTimeoutError("GrowthBook API request timed out") from e
        except httpx.HTTPError as e:
            raise GrowthBookError(
                f"Unknown error occurred while fetching from GrowthBook: {e}"
            ) from e

        if not response.is_success:
            raise GrowthBookAPIError(response.status_code, response.reason_phrase, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise GrowthBookError(f"GrowthBook returned invalid JSON: {e}") from e

    async def list_features(
        self,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> FeatureList:
        """List features, sending only the filters that were supplied."""
        params = {}
        if project_id:
            params["projectId"] = project_id
        if limit:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)

        data = await self.request("/features", params=params or None)
        if not isinstance(data, dict):
            raise GrowthBookError("GrowthBook returned an unexpected features listing")

        # A malformed feature is dropped so it cannot sink the whole page
        features = []
        for item in data.get("features") or []:
            try:
                features.append(RemoteFeature.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "growthbook_feature_skipped",
                    feature_id=item.get("id") if isinstance(item, dict) else None,
                    error_count=e.error_count(),
                )

        try:
            return FeatureList.model_validate({**data, "features": features})
        except ValidationError as e:
            raise GrowthBookError(f"GrowthBook returned an unexpected features listing: {e}") from e

    async def fetch_feature(self, feature_id: str) -> FeatureLookup:
        """
        Fetch one feature with its latest published revision.

        Never raises for remote failures; the outcome says whether the
        feature was found, missing (404), or unreachable.
        """
        try:
            data = await self.request(
                f"/features/{quote(feature_id, safe='')}",
                params={"includeRevisions": "published"},
            )
            payload = data.get("feature") if isinstance(data, dict) else None
            if not payload:
                return FeatureLookup(LookupStatus.NOT_FOUND)
            return FeatureLookup(LookupStatus.FOUND, feature=RemoteFeature.model_validate(payload))

        except GrowthBookAPIError as e:
            if e.status_code == 404:
                logger.info("growthbook_feature_not_found", feature_id=feature_id)
                return FeatureLookup(LookupStatus.NOT_FOUND, error=str(e))
            logger.warning(
                "growthbook_feature_fetch_failed",
                feature_id=feature_id,
                status_code=e.status_code,
                error=str(e),
            )
            return FeatureLookup(LookupStatus.ERROR, error=str(e))

        except Exception as e:
            logger.warning(
                "growthbook_feature_fetch_failed",
                feature_id=feature_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return FeatureLookup(LookupStatus.ERROR, error=str(e))

    async def get_feature(self, feature_id: str) -> Optional[RemoteFeature]:
        """Fetch one feature, or None when it is missing or unreachable."""
        lookup = await self.fetch_feature(feature_id)
        return lookup.feature if lookup.found else None

    async def search_features(
        self,
        search_term: str,
        project_id: Optional[str] = None,
    ) -> List[RemoteFeature]:
        """
        Search features by key or description.

        The API has no text search, so this pulls one page of up to 100
        features and filters by case-insensitive substring.
        """
        result = await self.list_features(project_id=project_id, limit=SEARCH_PAGE_SIZE)

        needle = search_term.lower()
        return [
            f for f in result.features
            if needle in f.key.lower()
            or (f.description and needle in f.description.lower())
        ]

    async def get_feature_by_key(
        self,
        key: str,
        project_id: Optional[str] = None,
    ) -> Optional[RemoteFeature]:
        """Find feature by exact key match."""
        features = await self.search_features(key, project_id)
        return next((f for f in features if f.key == key), None)

    def extract_experiments(
        self,
        feature: RemoteFeature,
        environment: str = DEFAULT_ENVIRONMENT,
    ) -> List[ExperimentInfo]:
        """Enabled experiment rules of an environment; a missing rule flag counts as enabled."""
        env = feature.environments.get(environment)
        if env is None:
            return []

        return [
            ExperimentInfo(
                description=rule.description,
                variations=rule.variations or [],
                coverage=rule.coverage if rule.coverage is not None else 1.0,
                condition=rule.condition,
                tracking_key=rule.tracking_key,
            )
            for rule in env.rules
            if rule.type == "experiment" and rule.enabled is not False
        ]

    def get_targeting_summary(
        self,
        feature: RemoteFeature,
        environment: str = DEFAULT_ENVIRONMENT,
    ) -> List[str]:
        """
        Human-readable targeting summary, one string per conditioned rule.

        Example:
            {"country": {"$in": ["US", "CA"]}, "age": {"$gte": 18}}
            -> "country: US, CA AND age ≥ 18"
        """
        env = feature.environments.get(environment)
        if env is None or not env.rules:
            return [ALL_USERS]

        summaries = []
        for rule in env.rules:
            if not rule.condition:
                continue
            clauses = [_format_clause(attr, matcher) for attr, matcher in rule.condition.items()]
            summaries.append(" AND ".join(clauses))

        return summaries or [ALL_USERS]

    def get_rule_type_label(self, rule: Rule) -> str:
        """Format rule type for display."""
        return RULE_TYPE_LABELS.get(rule.type, rule.type)

    def get_environment_status(
        self,
        feature: RemoteFeature,
        environment: str = DEFAULT_ENVIRONMENT,
    ) -> EnvironmentStatus:
        env = feature.environments.get(environment)
        if env is None:
            return EnvironmentStatus()

        rule_types = {rule.type for rule in env.rules}
        return EnvironmentStatus(
            enabled=env.enabled,
            has_experiments="experiment" in rule_types,
            has_rollouts="rollout" in rule_types,
            has_overrides="force" in rule_types,
            rule_count=len(env.rules),
        )

    def has_targeting(self, feature: RemoteFeature, environment: str = DEFAULT_ENVIRONMENT) -> bool:
        """Check if any rule in the environment carries a condition."""
        env = feature.environments.get(environment)
        if env is None:
            return False
        return any(rule.condition for rule in env.rules)


# Shared instance management
_growthbook_client: Optional[GrowthBookClient] = None


def get_growthbook_client() -> GrowthBookClient:
    """
    Get or create the shared GrowthBook client from settings.

    Used as a FastAPI dependency so tests can swap it through
    app.dependency_overrides.
    """
    global _growthbook_client
    if _growthbook_client is None:
        settings = get_settings()
        _growthbook_client = GrowthBookClient(
            base_url=settings.growthbook_api_url,
            api_key=settings.growthbook_api_key,
            timeout=settings.growthbook_timeout_seconds,
        )
    return _growthbook_client


async def close_growthbook_client():
    """Close the shared GrowthBook client."""
    global _growthbook_client
    if _growthbook_client is not None:
        await _growthbook_client.close()
        _growthbook_client = None
