"""
Active-record persistence with automatic field-level auditing.

Each subclass declares its columns as a SQLAlchemy ``Table`` plus the
``fillable`` and ``hidden`` column sets. ``save()`` decides insert versus update
by looking the primary key up in storage, diffs against the row it just read,
writes, and hands the diff to the audit trail, all inside one transaction.
"""
import json
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Mapping, Optional, Type, TypeVar

from sqlalchemy import Table

from adminbase.core.logging import get_logger
from adminbase.core.security import utcnow
from adminbase.db.base import format_timestamp, to_storage
from adminbase.db.database import Database
from adminbase.db.query import QueryPlan

logger = get_logger(__name__)

R = TypeVar("R", bound="Record")


class Record:
    """Base class for persisted entities."""

    __table__: ClassVar[Table]
    primary_key: ClassVar[str] = "id"
    fillable: ClassVar[FrozenSet[str]] = frozenset()
    hidden: ClassVar[FrozenSet[str]] = frozenset()
    # Text columns holding JSON, decoded by to_dict()
    json_fields: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, db: Database, attributes: Optional[Mapping[str, Any]] = None):
        object.__setattr__(self, "_db", db)
        object.__setattr__(self, "_attributes", dict(attributes or {}))

    # -- schema -------------------------------------------------------------

    @classmethod
    def table_name(cls) -> str:
        return cls.__table__.name

    @classmethod
    def column_names(cls) -> List[str]:
        return [column.name for column in cls.__table__.columns]

    # -- attribute access ---------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        attributes = self.__dict__.get("_attributes", {})
        if name in attributes:
            return attributes[name]
        if name in self.column_names():
            return None
        raise AttributeError(f"{type(self).__name__} has no column {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        elif name in self.fillable:
            self._attributes[name] = value
        else:
            logger.debug("Ignoring write to non-fillable %s.%s", self.table_name(), name)

    def __getitem__(self, key: str) -> Any:
        return self._attributes.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._attributes

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.primary_key}={self._attributes.get(self.primary_key)!r}>"

    @property
    def attributes(self) -> Dict[str, Any]:
        return dict(self._attributes)

    @property
    def db(self) -> Database:
        return self._db

    def fill(self: R, values: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> R:
        """Assign several attributes; non-fillable names are skipped."""
        for name, value in {**(values or {}), **kwargs}.items():
            setattr(self, name, value)
        return self

    # -- lookup -------------------------------------------------------------

    @classmethod
    def from_row(cls: Type[R], db: Database, row: Mapping[str, Any]) -> R:
        return cls(db, row)

    @classmethod
    def query(cls, db: Database) -> QueryPlan:
        return QueryPlan(cls, db)

    @classmethod
    def find(cls: Type[R], db: Database, primary_key_value: Any) -> Optional[R]:
        return cls.query(db).where(primary_key_value).first()

    @classmethod
    def find_all(cls: Type[R], db: Database, conditions: Optional[Mapping[str, Any]] = None) -> List[R]:
        plan = cls.query(db)
        if conditions:
            plan.where(dict(conditions))
        return plan.get()

    @classmethod
    def create(cls: Type[R], db: Database, attributes: Mapping[str, Any]) -> R:
        instance = cls(db, attributes)
        instance.save()
        return instance

    @classmethod
    def upsert(cls: Type[R], db: Database, data: Mapping[str, Any], unique_by: Iterable[str]) -> R:
        """Insert, or update the row matching ``unique_by``; both paths are audited."""
        with db.transaction():
            plan = cls.query(db)
            for column in unique_by:
                plan.where(column, "=", data.get(column))
            existing = plan.lock_for_update().first()
            if existing is None:
                return cls.create(db, data)
            existing.fill(data)
            existing.save()
            return existing

    def refresh(self: R) -> R:
        """Reload every column from storage."""
        row = self._fetch_current(lock=False)
        if row is not None:
            object.__setattr__(self, "_attributes", row)
        return self

    # -- persistence --------------------------------------------------------

    def _writable_data(self) -> Dict[str, Any]:
        columns = set(self.column_names())
        data = {}
        for name, value in self._attributes.items():
            if name in self.fillable and name in columns:
                data[name] = to_storage(value) if not isinstance(value, bool) else value
        return data

    def _fetch_current(self, lock: bool = True) -> Optional[Dict[str, Any]]:
        plan = type(self).query(self._db).where(self.primary_key, "=", self._attributes.get(self.primary_key))
        if lock:
            plan.lock_for_update()
        return plan.first_row()

    def save(self) -> bool:
        """Insert or update this record; returns False when there is nothing to insert."""
        with self._db.transaction():
            existing = None
            if self._attributes.get(self.primary_key) is not None:
                existing = self._fetch_current()

            if existing is not None:
                return self._perform_update(existing)
            return self._perform_insert()

    def _perform_update(self, existing: Dict[str, Any]) -> bool:
        data = {key: value for key, value in self._writable_data().items() if key != self.primary_key}
        if not data:
            return True

        assignments = dict(data)
        if "updated_at" in self.column_names() and "updated_at" not in assignments:
            assignments["updated_at"] = format_timestamp(utcnow())

        set_sql = ", ".join(f"{column} = ?" for column in assignments)
        self._db.execute(
            f"UPDATE {self.table_name()} SET {set_sql} WHERE {self.primary_key} = ?",
            [*assignments.values(), self._attributes[self.primary_key]],
        )
        self._attributes.update(assignments)

        from adminbase.services.audit import diff_update

        self._record_audit("update", diff_update(existing, data))
        return True

    def _perform_insert(self) -> bool:
        data = self._writable_data()
        if not data:
            return False

        # A preset key that is not fillable was never inserted; the stored id wins
        new_id = self._db.insert(self.table_name(), data, primary_key=self.primary_key)
        self._attributes[self.primary_key] = new_id

        # Pick up server defaults and generated values
        fresh = self._fetch_current(lock=False)
        if fresh is not None:
            object.__setattr__(self, "_attributes", fresh)

        from adminbase.services.audit import diff_create

        self._record_audit(
            "create",
            diff_create({key: value for key, value in data.items() if key != self.primary_key}),
        )
        return True

    def delete(self) -> bool:
        """Delete this record's row; returns whether a row was removed."""
        primary_key_value = self._attributes.get(self.primary_key)
        if primary_key_value is None:
            return False

        with self._db.transaction():
            existing = self._fetch_current()
            before = existing if existing is not None else dict(self._attributes)
            affected = self._db.execute(
                f"DELETE FROM {self.table_name()} WHERE {self.primary_key} = ?",
                [primary_key_value],
            ).rowcount

            if affected:
                from adminbase.services.audit import diff_delete

                self._record_audit("delete", diff_delete(before, self.primary_key))

        return affected > 0

    def _record_audit(self, action: str, changes: Dict[str, Dict[str, Any]]) -> None:
        if not changes or not self._db.audit_context.should_audit(self.table_name()):
            return

        from adminbase.services.audit import AuditTrail

        resource_id = self._attributes.get(self.primary_key)
        AuditTrail(self._db).record(
            action,
            self.table_name(),
            str(resource_id) if resource_id is not None else None,
            changes,
        )

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """External view: hidden columns stripped, JSON columns decoded."""
        data = {key: value for key, value in self._attributes.items() if key not in self.hidden}
        for name in self.json_fields:
            if isinstance(data.get(name), str):
                try:
                    data[name] = json.loads(data[name])
                except ValueError:
                    pass
        return data
