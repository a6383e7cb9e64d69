"""
Storage module - Database persistence layer.
Provides the entity model and repository behind the local gateway.
"""
from storage.database import Base, build_engine, build_session_factory, init_db, SessionLocal
from storage.models import EntityRecord
from storage.repositories import EntityRepository, parse_sort

__all__ = [
    # Database
    "Base",
    "build_engine",
    "build_session_factory",
    "init_db",
    "SessionLocal",
    # Models
    "EntityRecord",
    # Repositories
    "EntityRepository",
    "parse_sort",
]
