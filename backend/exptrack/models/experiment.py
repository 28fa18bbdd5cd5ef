"""Experiment model."""
from sqlalchemy import Column, String, Text, Boolean, Date, DateTime, JSON
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from exptrack.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns hand back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONList = JSON().with_variant(JSONB(), "postgresql")


class Experiment(Base):
    """Tracked experiment, optionally linked to a GrowthBook feature."""

    __tablename__ = "experiments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    exp_parameter = Column(String(255), nullable=False, index=True)
    user_group = Column(String(255), nullable=False, index=True)
    numbers_list = Column(JSONList, nullable=False, default=list)  # ["123456", "789012"]
    live_date = Column(Date, nullable=False)
    platforms = Column(JSONList, nullable=False, default=list)  # ["web", "ios"]
    context = Column(Text)  # markdown
    is_active = Column(Boolean, default=True, nullable=False)

    # GrowthBook link; stored by value, the remote side may delete the feature later
    growthbook_feature_id = Column(String(255), index=True)
    last_synced_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    versions = relationship(
        "Version",
        back_populates="experiment",
        cascade="all, delete-orphan",
        order_by="desc(Version.change_date)"
    )

    @property
    def is_linked(self) -> bool:
        return self.growthbook_feature_id is not None

    def __repr__(self):
        return f"<Experiment {self.exp_parameter} active={self.is_active}>"
