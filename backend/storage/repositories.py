"""
Repository classes for database CRUD operations.
Provides abstraction layer between the local gateway and database models.
"""
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from storage.models import EntityRecord, _utcnow

# Keys assigned by the store; callers cannot overwrite them through data.
_RESERVED_KEYS = {"id", "created_date", "updated_date"}


def _strip_reserved(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in (fields or {}).items() if key not in _RESERVED_KEYS}


def parse_sort(sort: Optional[str]) -> tuple[Optional[str], bool]:
    """
    Split a sort expression like ``-created_date`` into (field, descending).
    """
    raw = (sort or "").strip()
    if not raw:
        return None, False
    if raw.startswith("-"):
        return raw[1:] or None, True
    if raw.startswith("+"):
        return raw[1:] or None, False
    return raw, False


def _sort_key(field: str):
    def key(record: Dict[str, Any]):
        value = record.get(field)
        # None sorts after every concrete value in ascending order.
        return (value is None, value if value is not None else 0)
    return key


class EntityRepository:
    """Repository for CRUD on one entity type."""

    def __init__(self, db: Session, entity_type: str):
        self.db = db
        self.entity_type = entity_type

    def create(self, fields: Dict[str, Any]) -> EntityRecord:
        """Create a new entity record."""
        record = EntityRecord(
            entity_type=self.entity_type,
            data=_strip_reserved(fields),
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_by_id(self, entity_id: str) -> Optional[EntityRecord]:
        """Get entity record by ID."""
        return (
            self.db.query(EntityRecord)
            .filter(EntityRecord.entity_type == self.entity_type)
            .filter(EntityRecord.id == entity_id)
            .first()
        )

    def get_all(self) -> List[EntityRecord]:
        """Get all records of this type in creation order."""
        return (
            self.db.query(EntityRecord)
            .filter(EntityRecord.entity_type == self.entity_type)
            .order_by(EntityRecord.created_date.asc())
            .all()
        )

    def list(self, sort: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List records as flat dicts.

        Args:
            sort: Field name, ``-`` prefix for descending order
            limit: Maximum number of records returned

        Returns:
            List of record dicts
        """
        records = [record.to_dict() for record in self.get_all()]
        field, descending = parse_sort(sort)
        if field:
            present = [r for r in records if r.get(field) is not None]
            missing = [r for r in records if r.get(field) is None]
            present.sort(key=_sort_key(field), reverse=descending)
            records = present + missing
        if limit is not None and limit >= 0:
            records = records[:limit]
        return records

    def update(self, entity_id: str, fields: Dict[str, Any]) -> Optional[EntityRecord]:
        """Merge fields into an existing record."""
        record = self.get_by_id(entity_id)
        if record is None:
            return None
        merged = dict(record.data or {})
        merged.update(_strip_reserved(fields))
        record.data = merged
        flag_modified(record, "data")
        record.updated_date = _utcnow()
        self.db.commit()
        self.db.refresh(record)
        return record

    def delete(self, entity_id: str) -> bool:
        """Delete a record."""
        record = self.get_by_id(entity_id)
        if record:
            self.db.delete(record)
            self.db.commit()
            return True
        return False
