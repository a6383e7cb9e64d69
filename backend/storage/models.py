"""
Database models for the local entity store.

Entities (Strategy, Signal, Trade, Backtest, WatchlistAsset, User) are opaque
records owned by the gateway, so a single table keyed by entity type holds
them all with their fields in a JSON column.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, JSON, Index

from storage.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_entity_id() -> str:
    return uuid.uuid4().hex


class EntityRecord(Base):
    """
    EntityRecord model - one persisted entity of any type.
    """
    __tablename__ = "entity_records"

    id = Column(String(32), primary_key=True, default=_new_entity_id)
    entity_type = Column(String(50), nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_date = Column(DateTime, default=_utcnow, nullable=False)
    updated_date = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_entity_records_type_created", "entity_type", "created_date"),
    )

    def to_dict(self) -> dict:
        """Flatten into the record shape the gateway hands out."""
        payload = dict(self.data or {})
        payload["id"] = self.id
        payload["created_date"] = self.created_date.isoformat() if self.created_date else None
        payload["updated_date"] = self.updated_date.isoformat() if self.updated_date else None
        return payload
