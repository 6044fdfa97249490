"""Binding of submitted admin forms onto pydantic schemas and model objects."""

from __future__ import annotations

import datetime
import types
import typing
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from pydantic import BaseModel, ValidationError, create_model
from sqlalchemy import inspect as sa_inspect

from ..security.csrf import CsrfTokenManager
from .request import AdminRequest, is_truthy

SUBMIT_METHODS = {"POST", "PUT", "PATCH"}
CSRF_FIELD = "_token"
LOCK_FIELD = "_lock_version"


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0], True
    return annotation, False


def _widget_for(annotation: Any) -> str:
    inner, _ = _unwrap_optional(annotation)
    if inner is bool:
        return "checkbox"
    if inner in (int, float):
        return "number"
    if inner is datetime.datetime:
        return "datetime"
    if inner is datetime.date:
        return "date"
    if typing.get_origin(inner) is typing.Literal:
        return "select"
    return "text"


def schema_from_model(model: type, fields: Optional[Sequence[str]] = None) -> type[BaseModel]:
    """Build a pydantic schema from the mapped columns of ``model``.

    Primary keys, version counters and server-generated columns are skipped.
    """
    mapper = sa_inspect(model)
    version_col = mapper.version_id_col
    definitions: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        column = attr.columns[0]
        if column.primary_key or (version_col is not None and column is version_col):
            continue
        if fields is not None and attr.key not in fields:
            continue
        if fields is None and column.server_default is not None and column.default is None:
            continue
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            python_type = str
        if column.nullable:
            definitions[attr.key] = (Optional[python_type], None)
        elif python_type is bool:
            definitions[attr.key] = (bool, False)
        elif column.default is not None and column.default.is_scalar:
            definitions[attr.key] = (python_type, column.default.arg)
        else:
            definitions[attr.key] = (python_type, ...)
    return create_model(f"{model.__name__}Form", **definitions)


@dataclass
class FieldView:
    name: str
    full_name: str
    id: str
    label: str
    widget: str
    value: Any
    required: bool
    choices: list[Any] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class FormView:
    name: str
    fields: list[FieldView]
    errors: list[str]
    csrf_token: Optional[str]
    lock_version: Any
    submitted: bool
    valid: bool

    def __iter__(self):
        return iter(self.fields)


class AdminForm:
    def __init__(
        self,
        name: str,
        schema: type[BaseModel],
        *,
        data: Any = None,
        csrf: Optional[CsrfTokenManager] = None,
        session: Optional[dict[str, Any]] = None,
        lock_version: Any = None,
        labels: Optional[Mapping[str, str]] = None,
    ):
        self.name = name
        self.schema = schema
        self.data = data
        self.csrf = csrf
        self.session = session if session is not None else {}
        self.lock_version = lock_version
        self.labels = dict(labels or {})
        self.submitted = False
        self.raw: dict[str, Any] = {}
        self.errors: list[str] = []
        self.field_errors: dict[str, list[str]] = {}
        self.cleaned: Optional[BaseModel] = None

    def handle_request(self, request: AdminRequest) -> None:
        if request.get_rest_method() not in SUBMIT_METHODS:
            return
        submitted = request.body.get(self.name)
        if not isinstance(submitted, Mapping):
            return
        self.submit(submitted)

    def submit(self, submitted: Mapping[str, Any]) -> None:
        self.submitted = True
        self.raw = dict(submitted)
        if self.csrf is not None and not self.csrf.is_token_valid(self.session, self.name, self.raw.get(CSRF_FIELD)):
            self.errors.append("The CSRF token is invalid. Please try to resubmit the form.")
        if LOCK_FIELD in self.raw:
            self.lock_version = self.raw.get(LOCK_FIELD)

        values: dict[str, Any] = {}
        for key, info in self.schema.model_fields.items():
            inner, optional = _unwrap_optional(info.annotation)
            if inner is bool:
                values[key] = is_truthy(self.raw.get(key))
                continue
            if key not in self.raw:
                continue
            value = self.raw[key]
            if value == "":
                if optional:
                    values[key] = None
                    continue
                if inner is not str:
                    continue
            values[key] = value

        try:
            self.cleaned = self.schema.model_validate(values)
        except ValidationError as exc:
            for error in exc.errors():
                loc = error.get("loc") or ("",)
                self.field_errors.setdefault(str(loc[0]), []).append(error.get("msg", "Invalid value"))

    def is_submitted(self) -> bool:
        return self.submitted

    def is_valid(self) -> bool:
        return self.submitted and not self.errors and not self.field_errors and self.cleaned is not None

    def get_data(self) -> Any:
        """The bound object, with validated values applied when the form is valid."""
        if self.is_valid() and self.data is not None:
            for key, value in self.cleaned.model_dump().items():
                setattr(self.data, key, value)
        return self.data

    def get_preview(self) -> Any:
        """Detached copy of the bound object with the submitted values applied."""
        mapper = sa_inspect(type(self.data))
        preview = mapper.class_manager.new_instance()
        for attr in mapper.column_attrs:
            setattr(preview, attr.key, getattr(self.data, attr.key, None))
        if self.cleaned is not None:
            for key, value in self.cleaned.model_dump().items():
                setattr(preview, key, value)
        return preview

    def all_errors(self) -> list[str]:
        messages = list(self.errors)
        for key, errors in self.field_errors.items():
            messages.extend(f"{key}: {msg}" for msg in errors)
        return messages

    def create_view(self) -> FormView:
        fields: list[FieldView] = []
        for key, info in self.schema.model_fields.items():
            if self.submitted:
                value = self.raw.get(key)
            else:
                value = getattr(self.data, key, None) if self.data is not None else None
            inner, _ = _unwrap_optional(info.annotation)
            choices = list(typing.get_args(inner)) if typing.get_origin(inner) is typing.Literal else []
            fields.append(
                FieldView(
                    name=key,
                    full_name=f"{self.name}[{key}]",
                    id=f"{self.name}_{key}",
                    label=self.labels.get(key) or info.title or key.replace("_", " ").capitalize(),
                    widget=_widget_for(info.annotation),
                    value=value,
                    required=info.is_required(),
                    choices=choices,
                    errors=list(self.field_errors.get(key, [])),
                )
            )
        return FormView(
            name=self.name,
            fields=fields,
            errors=list(self.errors),
            csrf_token=self.csrf.get_token(self.session, self.name) if self.csrf is not None else None,
            lock_version=self.lock_version,
            submitted=self.submitted,
            valid=self.is_valid(),
        )
