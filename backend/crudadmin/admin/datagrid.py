"""List datagrid: filters, sorting and pagination over a SQLAlchemy select."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ..exceptions import ConfigurationError
from .request import is_truthy

SORT_ASC = "ASC"
SORT_DESC = "DESC"


class ProxyQuery:
    """Mutable wrapper around a ``select()`` carrying sort and pagination state."""

    def __init__(self, session: Session, model: type, statement: Optional[Select] = None):
        self.session = session
        self.model = model
        self.statement = statement if statement is not None else select(model)
        self.first_result: Optional[int] = None
        self.max_results: Optional[int] = None
        self.sort_by: Optional[str] = None
        self.sort_order: str = SORT_ASC

    def where(self, *criteria) -> "ProxyQuery":
        self.statement = self.statement.where(*criteria)
        return self

    def clear_pagination(self) -> "ProxyQuery":
        self.first_result = None
        self.max_results = None
        return self

    def build_statement(self) -> Select:
        stmt = self.statement
        if self.sort_by:
            column = getattr(self.model, self.sort_by)
            stmt = stmt.order_by(column.desc() if self.sort_order == SORT_DESC else column.asc())
        if self.first_result:
            stmt = stmt.offset(self.first_result)
        if self.max_results:
            stmt = stmt.limit(self.max_results)
        return stmt

    def execute(self) -> list[Any]:
        return list(self.session.scalars(self.build_statement()).all())

    def count(self) -> int:
        stmt = select(func.count()).select_from(self.statement.order_by(None).subquery())
        return int(self.session.scalar(stmt) or 0)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.execute())


class Filter:
    field_type = "string"

    def __init__(self, name: str, label: Optional[str] = None, choices: Optional[Mapping[str, str]] = None):
        self.name = name
        self.label = label or name.replace("_", " ").capitalize()
        self.choices = dict(choices or {})

    def is_active(self, value: Any) -> bool:
        return value not in (None, "")

    def apply(self, query: ProxyQuery, value: Any) -> None:
        raise NotImplementedError


class StringFilter(Filter):
    field_type = "string"

    def apply(self, query: ProxyQuery, value: Any) -> None:
        column = getattr(query.model, self.name)
        query.where(column.ilike(f"%{value}%"))


class BooleanFilter(Filter):
    field_type = "boolean"

    def apply(self, query: ProxyQuery, value: Any) -> None:
        column = getattr(query.model, self.name)
        query.where(column.is_(is_truthy(value)))


class NumberFilter(Filter):
    field_type = "number"

    def is_active(self, value: Any) -> bool:
        if not super().is_active(value):
            return False
        try:
            float(value)
        except (TypeError, ValueError):
            return False
        return True

    def apply(self, query: ProxyQuery, value: Any) -> None:
        column = getattr(query.model, self.name)
        number = float(value)
        query.where(column == (int(number) if number.is_integer() else number))


class ChoiceFilter(Filter):
    field_type = "choice"

    def is_active(self, value: Any) -> bool:
        return super().is_active(value) and (not self.choices or str(value) in self.choices)

    def apply(self, query: ProxyQuery, value: Any) -> None:
        column = getattr(query.model, self.name)
        query.where(column == value)


FILTER_TYPES: dict[str, type[Filter]] = {
    "string": StringFilter,
    "boolean": BooleanFilter,
    "number": NumberFilter,
    "choice": ChoiceFilter,
}


def build_filter(name: str, spec: Any) -> Filter:
    if isinstance(spec, Filter):
        return spec
    options: dict[str, Any] = {}
    if isinstance(spec, Mapping):
        options = dict(spec)
        spec = options.pop("type", "string")
    try:
        filter_cls = FILTER_TYPES[spec]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown filter type `{spec}` for field `{name}`") from exc
    return filter_cls(name, **options)


@dataclass
class Pager:
    page: int
    per_page: int
    total: int
    results: list[Any] = field(default_factory=list)

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.last_page


@dataclass
class FilterView:
    name: str
    label: str
    field_type: str
    value: Any
    choices: dict[str, str]


class Datagrid:
    def __init__(self, query: ProxyQuery, filters: Sequence[Filter], values: Mapping[str, Any], sortable: Sequence[str]):
        self.query = query
        self.filters = list(filters)
        self.values = dict(values)
        self.sortable = set(sortable)
        self._built = False
        self._loaded = False
        self._pager: Optional[Pager] = None

    def _filter_value(self, name: str) -> Any:
        raw = self.values.get(name)
        if isinstance(raw, Mapping):
            return raw.get("value")
        return raw

    def build_pager(self) -> None:
        if self._built:
            return
        for flt in self.filters:
            value = self._filter_value(flt.name)
            if flt.is_active(value):
                flt.apply(self.query, value)

        sort_by = self.values.get("_sort_by")
        if sort_by in self.sortable:
            self.query.sort_by = sort_by
            self.query.sort_order = SORT_DESC if str(self.values.get("_sort_order", "")).upper() == SORT_DESC else SORT_ASC

        per_page = int(self.values.get("_per_page") or 0)
        page = max(1, int(self.values.get("_page") or 1))
        if per_page:
            self.query.first_result = (page - 1) * per_page
            self.query.max_results = per_page
        self._pager = Pager(page=page, per_page=per_page, total=0)
        self._built = True

    def get_query(self) -> ProxyQuery:
        self.build_pager()
        return self.query

    def get_pager(self) -> Pager:
        self.build_pager()
        assert self._pager is not None
        if not self._loaded:
            self._pager.total = self.query.count()
            self._pager.results = self.query.execute()
            self._loaded = True
        return self._pager

    def get_results(self) -> list[Any]:
        return self.get_pager().results

    def get_values(self) -> dict[str, Any]:
        return dict(self.values)

    def get_form(self) -> list[FilterView]:
        return [
            FilterView(
                name=flt.name,
                label=flt.label,
                field_type=flt.field_type,
                value=self._filter_value(flt.name),
                choices=flt.choices,
            )
            for flt in self.filters
        ]
