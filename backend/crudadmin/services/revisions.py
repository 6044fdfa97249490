# SPDX-License-Identifier: Apache-2.0

"""Revision history of audited models.

A session ``after_flush`` hook snapshots the column values of every inserted,
updated or deleted instance of a tracked class into ``audit_revisions``. The
snapshots are read back by :class:`SQLAlchemyAuditReader`.
"""

from __future__ import annotations

import datetime
import decimal
import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from sqlalchemy import event, insert, inspect as sa_inspect, select
from sqlalchemy.orm import Session

from ..admin.model_manager import class_path
from ..models import AuditRevision, RevisionType

_tracked: dict[str, type] = {}


def track_revisions(model: type) -> type:
    """Register ``model`` for revision snapshots; usable as a class decorator."""
    _tracked[class_path(model)] = model
    return model


def untrack_revisions(model: type) -> None:
    _tracked.pop(class_path(model), None)


def is_tracked(model: type) -> bool:
    return class_path(model) in _tracked


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, bytes):
        return value.hex()
    return value


def snapshot(obj: Any, loaded_only: bool = False) -> dict[str, Any]:
    """Column values of ``obj``; with ``loaded_only`` expired attributes are skipped instead of reloaded."""
    state = sa_inspect(obj)
    unloaded = state.unloaded if loaded_only else set()
    return {
        attr.key: _jsonable(getattr(obj, attr.key)) for attr in state.mapper.column_attrs if attr.key not in unloaded
    }


def _identifier(obj: Any) -> Optional[str]:
    state = sa_inspect(obj)
    values = state.identity or state.mapper.primary_key_from_instance(obj)
    if any(v is None for v in values):
        return None
    return "~".join(str(v) for v in values)


@event.listens_for(Session, "after_flush")
def _record_revisions(session: Session, flush_context) -> None:
    if not _tracked:
        return
    username = session.info.get("audit_user")
    now = datetime.datetime.now(datetime.timezone.utc)
    rows: list[dict[str, Any]] = []
    changes = (
        (session.new, RevisionType.INSERT),
        (session.dirty, RevisionType.UPDATE),
        (session.deleted, RevisionType.DELETE),
    )
    for objects, revision_type in changes:
        for obj in objects:
            if class_path(type(obj)) not in _tracked:
                continue
            if revision_type is RevisionType.UPDATE and not session.is_modified(obj, include_collections=False):
                continue
            object_id = _identifier(obj)
            if object_id is None:
                continue
            rows.append(
                {
                    "object_class": class_path(type(obj)),
                    "object_id": object_id,
                    "revision_type": revision_type.value,
                    # deleted rows can no longer be reloaded
                    "data": snapshot(obj, loaded_only=revision_type is RevisionType.DELETE),
                    "username": username,
                    "created_at": now,
                }
            )
    # Session.add() is not supported while the flush executes; write on the flush connection.
    if rows:
        session.connection().execute(insert(AuditRevision.__table__), rows)


@dataclass(frozen=True)
class RevisionInfo:
    rev: int
    timestamp: datetime.datetime
    username: Optional[str]
    revision_type: str
    object_id: str


@dataclass(frozen=True)
class RevisionSnapshot:
    revision: RevisionInfo
    data: Mapping[str, Any] = field(default_factory=dict)
    obj: Any = None


def _info(row: AuditRevision) -> RevisionInfo:
    return RevisionInfo(
        rev=row.id,
        timestamp=row.created_at,
        username=row.username,
        revision_type=row.revision_type,
        object_id=row.object_id,
    )


def _restore(model: type, data: Mapping[str, Any]) -> Any:
    """Rebuild a detached instance from a snapshot for display purposes."""
    mapper = sa_inspect(model)
    obj = mapper.class_manager.new_instance()
    for attr in mapper.column_attrs:
        if attr.key not in data:
            continue
        value = data[attr.key]
        try:
            python_type = attr.columns[0].type.python_type
        except NotImplementedError:
            python_type = None
        if isinstance(value, str) and python_type in (datetime.datetime, datetime.date):
            try:
                value = python_type.fromisoformat(value)
            except ValueError:
                pass
        setattr(obj, attr.key, value)
    return obj


class SQLAlchemyAuditReader:
    def __init__(self, session: Session):
        self.session = session

    def find_revisions(self, model: type, object_id: Any) -> list[RevisionInfo]:
        stmt = (
            select(AuditRevision)
            .where(AuditRevision.object_class == class_path(model), AuditRevision.object_id == str(object_id))
            .order_by(AuditRevision.id.desc())
        )
        return [_info(row) for row in self.session.scalars(stmt)]

    def find_revision(self, model: type, object_id: Any, rev: Any) -> Optional[RevisionInfo]:
        row = self._row(model, object_id, rev)
        return _info(row) if row is not None else None

    def find(self, model: type, object_id: Any, rev: Any) -> Optional[RevisionSnapshot]:
        row = self._row(model, object_id, rev)
        if row is None:
            return None
        data = dict(row.data or {})
        return RevisionSnapshot(revision=_info(row), data=data, obj=_restore(model, data))

    def _row(self, model: type, object_id: Any, rev: Any) -> Optional[AuditRevision]:
        try:
            rev_id = int(rev)
        except (TypeError, ValueError):
            return None
        row = self.session.get(AuditRevision, rev_id)
        if row is None or row.object_class != class_path(model) or row.object_id != str(object_id):
            return None
        return row


class AuditManager:
    """Hands out audit readers for tracked classes."""

    def has_reader(self, model: type) -> bool:
        return is_tracked(model)

    def get_reader(self, session: Session, model: type) -> SQLAlchemyAuditReader:
        if not self.has_reader(model):
            raise LookupError(f"No audit reader registered for {class_path(model)}")
        return SQLAlchemyAuditReader(session)
