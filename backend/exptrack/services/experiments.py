"""Experiment and version record management."""
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID
from sqlalchemy import cast, func, or_, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from exptrack.models.experiment import Experiment
from exptrack.models.version import Version

EDITABLE_FIELDS = (
    "name",
    "exp_parameter",
    "user_group",
    "numbers_list",
    "live_date",
    "platforms",
    "context",
    "is_active",
)


class ExperimentNotFound(Exception):
    """Raised when an experiment id has no record."""
    pass


class ExperimentService:
    """Service for managing experiments and their change log."""

    def __init__(self, db: Session):
        self.db = db

    def get_experiment(self, experiment_id: UUID) -> Experiment:
        """
        Get experiment by id.

        Raises:
            ExperimentNotFound: If no experiment has this id
        """
        experiment = self.db.query(Experiment).filter(
            Experiment.id == experiment_id
        ).first()

        if not experiment:
            raise ExperimentNotFound(f"Experiment {experiment_id} not found")
        return experiment

    def list_experiments(
        self,
        platform: Optional[str] = None,
        user_group: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[Experiment]:
        """
        List experiments, newest live date first.

        Args:
            platform: Keep experiments whose platforms include this tag
            user_group: Exact user group match
            is_active: Filter on the active flag
            search: Case-insensitive substring over name or exp_parameter

        Example:
            >>> service = ExperimentService(db)
            >>> service.list_experiments(platform="ios", search="voice")
        """
        query = self.db.query(Experiment)

        if platform:
            query = query.filter(self._has_platform(platform))

        if user_group:
            query = query.filter(Experiment.user_group == user_group)

        if is_active is not None:
            query = query.filter(Experiment.is_active == is_active)

        if search:
            query = query.filter(or_(
                Experiment.name.icontains(search, autoescape=True),
                Experiment.exp_parameter.icontains(search, autoescape=True),
            ))

        return query.order_by(Experiment.live_date.desc()).all()

    def _has_platform(self, platform: str):
        """Membership test on the platforms JSON array."""
        if self.db.get_bind().dialect.name == "postgresql":
            return cast(Experiment.platforms, JSONB).contains([platform])

        # SQLite: unpack the array with json_each and compare decoded elements
        elements = func.json_each(Experiment.platforms).table_valued("value")
        return select(elements.c.value).where(elements.c.value == platform).exists()

    def create_experiment(
        self,
        name: str,
        exp_parameter: str,
        user_group: str,
        live_date: date,
        numbers_list: Optional[List[str]] = None,
        platforms: Optional[List[str]] = None,
        context: Optional[str] = None,
        is_active: bool = True,
    ) -> Experiment:
        """Create a new, unlinked experiment."""
        experiment = Experiment(
            name=name,
            exp_parameter=exp_parameter,
            user_group=user_group,
            live_date=live_date,
            numbers_list=numbers_list or [],
            platforms=platforms or [],
            context=context or None,
            is_active=is_active,
        )
        self.db.add(experiment)
        self.db.commit()
        self.db.refresh(experiment)
        return experiment

    def update_experiment(self, experiment_id: UUID, changes: Dict[str, Any]) -> Experiment:
        """Apply a partial update; keys outside the editable fields are ignored."""
        experiment = self.get_experiment(experiment_id)

        for field in EDITABLE_FIELDS:
            if field in changes:
                setattr(experiment, field, changes[field])

        self.db.commit()
        self.db.refresh(experiment)
        return experiment

    def delete_experiment(self, experiment_id: UUID) -> None:
        """Delete an experiment together with its versions."""
        experiment = self.get_experiment(experiment_id)
        self.db.delete(experiment)
        self.db.commit()

    def list_versions(self, experiment_id: UUID) -> List[Version]:
        """Versions for an experiment, most recent change first."""
        self.get_experiment(experiment_id)
        return self.db.query(Version).filter(
            Version.experiment_id == experiment_id
        ).order_by(Version.change_date.desc()).all()

    def add_version(self, experiment_id: UUID, change_date: date, changes: str) -> Version:
        """Append a change-log entry to an existing experiment."""
        self.get_experiment(experiment_id)

        version = Version(
            experiment_id=experiment_id,
            change_date=change_date,
            changes=changes,
        )
        self.db.add(version)
        self.db.commit()
        self.db.refresh(version)
        return version

    def linked_experiments(self) -> List[Experiment]:
        """All experiments currently linked to a GrowthBook feature."""
        return self.db.query(Experiment).filter(
            Experiment.growthbook_feature_id.isnot(None)
        ).all()
