"""Models layer - SQLAlchemy ORM models.

Models define the database schema and relationships.
All models inherit from the Base class defined in core.database.
"""

from app.core.database import Base
from app.models.client import Client
from app.models.competitor import Competitor
from app.models.criterion_score import Criterion, CriterionScore
from app.models.effectiveness_run import (
    RUN_STATUS_ORDER,
    TERMINAL_STATUSES,
    EffectivenessRun,
    RunStatus,
)

__all__ = [
    "Base",
    "Client",
    "Competitor",
    "Criterion",
    "CriterionScore",
    "EffectivenessRun",
    "RUN_STATUS_ORDER",
    "RunStatus",
    "TERMINAL_STATUSES",
]
