"""Version model."""
from sqlalchemy import Column, Text, Date, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from exptrack.database import Base
from exptrack.models.experiment import utcnow


class Version(Base):
    """Change-log entry for an experiment. Append-only in practice."""

    __tablename__ = "versions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    experiment_id = Column(UUID(as_uuid=True), ForeignKey("experiments.id", ondelete="CASCADE"), nullable=False, index=True)
    change_date = Column(Date, nullable=False)  # when the change took effect
    changes = Column(Text, nullable=False)  # markdown

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    experiment = relationship("Experiment", back_populates="versions")

    def __repr__(self):
        return f"<Version {self.id} change_date={self.change_date}>"
