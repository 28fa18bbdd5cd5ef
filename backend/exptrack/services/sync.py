"""GrowthBook sync for linked experiments.

Decides per request whether the remote view of a linked experiment is stale,
refreshes it through the GrowthBook client, and records the sync time. Only
the timestamp is cached; a refresh always re-fetches the whole feature.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import structlog
from sqlalchemy.orm import Session

from exptrack.models.experiment import Experiment, utcnow
from exptrack.schemas.growthbook import RemoteFeature
from exptrack.services.experiments import ExperimentService
from exptrack.services.growthbook import (
    DEFAULT_ENVIRONMENT,
    GrowthBookClient,
    GrowthBookError,
    GrowthBookNotConfiguredError,
    LookupStatus,
)

logger = structlog.get_logger()

SYNC_TTL = timedelta(minutes=5)


class ExperimentNotLinked(Exception):
    """Raised when a sync is requested for an experiment with no GrowthBook link."""
    pass


class RemoteFeatureNotFound(Exception):
    """Raised when the linked or requested GrowthBook feature does not exist."""
    pass


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def cache_age(last_synced_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time since the last sync, or None when never synced (infinitely stale)."""
    if last_synced_at is None:
        return None
    now = now or utcnow()
    return now - _as_naive_utc(last_synced_at)


def is_stale(last_synced_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    age = cache_age(last_synced_at, now)
    return age is None or age > SYNC_TTL


class GrowthBookSyncService:
    """Merges GrowthBook feature data into experiment responses."""

    def __init__(self, db: Session, client: GrowthBookClient):
        self.db = db
        self.client = client
        self.experiments = ExperimentService(db)

    def build_remote_payload(self, feature: RemoteFeature) -> Dict[str, Any]:
        """Assemble the production-environment view of a feature."""
        status = self.client.get_environment_status(feature, DEFAULT_ENVIRONMENT)
        env = feature.environments.get(DEFAULT_ENVIRONMENT)
        rules = env.rules if env else []

        return {
            "feature_id": feature.id,
            "key": feature.key,
            "value_type": feature.value_type,
            "default_value": feature.default_value,
            "description": feature.description,
            "enabled": status.enabled,
            "tags": feature.tags,
            "rules": [
                {**rule.model_dump(exclude_none=True), "label": self.client.get_rule_type_label(rule)}
                for rule in rules
            ],
            "experiments": [
                exp.model_dump() for exp in self.client.extract_experiments(feature, DEFAULT_ENVIRONMENT)
            ],
            "targeting_summary": self.client.get_targeting_summary(feature, DEFAULT_ENVIRONMENT),
            "has_targeting": self.client.has_targeting(feature, DEFAULT_ENVIRONMENT),
            "has_experiments": status.has_experiments,
            "has_rollouts": status.has_rollouts,
            "has_overrides": status.has_overrides,
            "rule_count": status.rule_count,
            "revision": feature.revision.model_dump() if feature.revision else None,
        }

    def _mark_synced(self, experiment: Experiment) -> datetime:
        synced_at = utcnow()
        experiment.last_synced_at = synced_at
        self.db.commit()
        self.db.refresh(experiment)
        return synced_at

    async def enrich(self, experiment: Experiment) -> Optional[Dict[str, Any]]:
        """
        Remote section for a read request.

        Returns None when the experiment is unlinked, the client is not
        configured, the last sync is within SYNC_TTL, or the feature could
        not be fetched. A fetch failure leaves last_synced_at untouched so
        the next request retries. Unexpected errors come back as an
        {"error", "message"} payload instead of failing the request.
        """
        if not experiment.is_linked or not self.client.is_configured():
            return None

        if not is_stale(experiment.last_synced_at):
            return None

        feature_id = experiment.growthbook_feature_id
        try:
            feature = await self.client.get_feature(feature_id)
        except Exception as e:
            logger.error(
                "growthbook_enrichment_failed",
                experiment_id=str(experiment.id),
                feature_id=feature_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return {"error": "Failed to fetch GrowthBook data", "message": str(e)}

        if feature is None:
            logger.warning(
                "growthbook_feature_unavailable",
                experiment_id=str(experiment.id),
                feature_id=feature_id,
            )
            return None

        payload = self.build_remote_payload(feature)
        self._mark_synced(experiment)
        logger.info("experiment_synced", experiment_id=str(experiment.id), feature_id=feature_id, forced=False)
        return payload

    async def _require_feature(self, feature_id: str) -> RemoteFeature:
        lookup = await self.client.fetch_feature(feature_id)
        if lookup.found:
            return lookup.feature
        if lookup.status == LookupStatus.NOT_FOUND:
            raise RemoteFeatureNotFound(f"Feature {feature_id} not found in GrowthBook")
        raise GrowthBookError(lookup.error or "Unknown error occurred while fetching from GrowthBook")

    async def force_sync(self, experiment: Experiment) -> Dict[str, Any]:
        """
        Refresh remote data regardless of cache age.

        Raises:
            ExperimentNotLinked: Experiment has no GrowthBook feature id
            GrowthBookNotConfiguredError: Client has no API key
            RemoteFeatureNotFound: Linked feature no longer exists
            GrowthBookError: Remote service failed or was unreachable
        """
        if not experiment.is_linked:
            raise ExperimentNotLinked("Experiment is not linked to GrowthBook")
        if not self.client.is_configured():
            raise GrowthBookNotConfiguredError("GrowthBook API is not configured")

        feature = await self._require_feature(experiment.growthbook_feature_id)
        payload = self.build_remote_payload(feature)
        synced_at = self._mark_synced(experiment)

        logger.info(
            "experiment_synced",
            experiment_id=str(experiment.id),
            feature_id=feature.id,
            forced=True,
        )
        return {"success": True, "last_synced_at": synced_at, "remote": payload}

    async def link(self, experiment: Experiment, feature_id: str) -> RemoteFeature:
        """Link an experiment to an existing GrowthBook feature."""
        if not self.client.is_configured():
            raise GrowthBookNotConfiguredError("GrowthBook API is not configured")

        feature = await self._require_feature(feature_id)

        experiment.growthbook_feature_id = feature_id
        self._mark_synced(experiment)

        logger.info("experiment_linked", experiment_id=str(experiment.id), feature_id=feature_id)
        return feature

    def unlink(self, experiment: Experiment) -> Experiment:
        """Clear the GrowthBook link and sync time."""
        previous = experiment.growthbook_feature_id
        experiment.growthbook_feature_id = None
        experiment.last_synced_at = None
        self.db.commit()
        self.db.refresh(experiment)

        logger.info("experiment_unlinked", experiment_id=str(experiment.id), feature_id=previous)
        return experiment

    async def search_with_link_status(
        self,
        search_term: str,
        project_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Search GrowthBook features and mark the ones already linked to an experiment."""
        features = await self.client.search_features(search_term, project_id)

        linked = {
            e.growthbook_feature_id: {"experiment_id": str(e.id), "experiment_name": e.name}
            for e in self.experiments.linked_experiments()
        }

        results = []
        for feature in features:
            status = self.client.get_environment_status(feature, DEFAULT_ENVIRONMENT)
            linked_to = linked.get(feature.id)
            results.append({
                "id": feature.id,
                "key": feature.key,
                "value_type": feature.value_type,
                "default_value": feature.default_value,
                "description": feature.description,
                "enabled": status.enabled,
                "tags": feature.tags,
                "has_experiments": status.has_experiments,
                "has_rollouts": status.has_rollouts,
                "rule_count": status.rule_count,
                "already_linked": linked_to is not None,
                "linked_to": linked_to,
            })
        return results
