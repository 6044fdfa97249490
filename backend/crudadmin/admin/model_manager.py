"""SQLAlchemy persistence adapter used by the admin actions."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import LockError, ModelManagerError
from ..telemetry import log_json
from .datagrid import ProxyQuery


def class_path(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def normalized_identifier(obj: Any) -> Optional[str]:
    """String form of a persisted object's primary key, ``None`` when transient."""
    if obj is None:
        return None
    try:
        state = sa_inspect(obj)
    except NoInspectionAvailable:
        return None
    identity = state.identity
    if not identity:
        return None
    return "~".join(str(part) for part in identity)


class SQLAlchemyModelManager:
    def __init__(self, session: Session):
        self.session = session

    # ----- metadata ---------------------------------------------------------

    @staticmethod
    def get_identifier_column(model: type):
        mapper = sa_inspect(model)
        return mapper.primary_key[0]

    @staticmethod
    def get_column_names(model: type) -> list[str]:
        mapper = sa_inspect(model)
        return [attr.key for attr in mapper.column_attrs]

    def coerce_identifier(self, model: type, value: Any) -> Any:
        """Convert an opaque identifier to the primary key type, ``None`` if it cannot be."""
        if value is None or value == "":
            return None
        column = self.get_identifier_column(model)
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return value
        if isinstance(value, python_type):
            return value
        try:
            return python_type(value)
        except (TypeError, ValueError):
            return None

    def get_version(self, obj: Any) -> Any:
        mapper = sa_inspect(type(obj))
        if mapper.version_id_col is None:
            return None
        prop = mapper.get_property_by_column(mapper.version_id_col)
        return getattr(obj, prop.key)

    # ----- reads ------------------------------------------------------------

    def find(self, model: type, identifier: Any) -> Optional[Any]:
        pk = self.coerce_identifier(model, identifier)
        if pk is None:
            return None
        return self.session.get(model, pk)

    def create_query(self, model: type) -> ProxyQuery:
        return ProxyQuery(self.session, model)

    def add_identifiers_to_query(self, model: type, query: ProxyQuery, idx: Iterable[Any]) -> ProxyQuery:
        column = self.get_identifier_column(model)
        values = [v for v in (self.coerce_identifier(model, i) for i in idx) if v is not None]
        return query.where(column.in_(values))

    # ----- writes -----------------------------------------------------------

    def lock(self, obj: Any, expected_version: Any) -> None:
        if expected_version is None or expected_version == "":
            return
        current = self.get_version(obj)
        if current is None:
            return
        if str(current) != str(expected_version):
            self.session.rollback()
            raise LockError(
                f"The object {type(obj).__name__}:{normalized_identifier(obj)} was modified concurrently",
                expected_version=expected_version,
                current_version=current,
            )

    def create(self, obj: Any) -> None:
        self.session.add(obj)
        self._commit("create", obj)

    def update(self, obj: Any) -> None:
        self.session.add(obj)
        self._commit("update", obj)

    def delete(self, obj: Any) -> None:
        self.session.delete(obj)
        self._commit("delete", obj)

    def batch_delete(self, model: type, query: ProxyQuery) -> int:
        deleted = 0
        try:
            for obj in query.execute():
                self.session.delete(obj)
                deleted += 1
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise ModelManagerError(f"Failed to delete objects of class {model.__name__}") from exc
        log_json(20, "model_batch_deleted", model=model.__name__, count=deleted)
        return deleted

    def _commit(self, action: str, obj: Any) -> None:
        try:
            self.session.commit()
        except StaleDataError as exc:
            self.session.rollback()
            raise LockError(
                f"The object {type(obj).__name__}:{normalized_identifier(obj)} was modified concurrently"
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise ModelManagerError(f"Failed to {action} object: {type(obj).__name__}") from exc
