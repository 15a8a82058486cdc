"""Repositories layer - Data access and persistence.

Repositories handle all database operations using SQLAlchemy.
They abstract the database implementation from the service layer.
"""

from app.repositories.effectiveness import EffectivenessRepository, persistence_scope

__all__ = ["EffectivenessRepository", "persistence_scope"]
