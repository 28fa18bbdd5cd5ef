"""Database models."""
from exptrack.models.experiment import Experiment
from exptrack.models.version import Version

__all__ = ["Experiment", "Version"]
