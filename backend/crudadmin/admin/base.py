"""Admin descriptor: configuration and model-level operations for one model class.

Subclass :class:`Admin`, set ``model`` and the field lists, and register an
instance with an :class:`~crudadmin.admin.pool.AdminPool`.
"""

from __future__ import annotations

import datetime
import decimal
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Iterator, Mapping, Optional, Sequence
from urllib.parse import urlencode

from pydantic import BaseModel
from sqlalchemy import Select

from ..config import settings
from ..db import session_scope
from ..exceptions import ConfigurationError
from ..security.handlers import DEFAULT_SECURITY_INFORMATION, Permission
from ..templating import DEFAULT_TEMPLATES
from ..translation import DEFAULT_DOMAIN, translator as default_translator
from .datagrid import Datagrid, ProxyQuery, build_filter
from .forms import AdminForm, schema_from_model
from .model_manager import SQLAlchemyModelManager, class_path, normalized_identifier
from .request import flatten_nested

if TYPE_CHECKING:
    from .context import AdminContext

ROUTES: dict[str, tuple[str, tuple[str, ...]]] = {
    "list": ("/list", ("GET",)),
    "create": ("/create", ("GET", "POST")),
    "batch": ("/batch", ("GET", "POST")),
    "export": ("/export", ("GET",)),
    "edit": ("/{id}/edit", ("GET", "POST")),
    "delete": ("/{id}/delete", ("GET", "POST", "DELETE")),
    "show": ("/{id}/show", ("GET",)),
    "history": ("/{id}/history", ("GET",)),
    "history_view_revision": ("/{id}/history/{revision}/view", ("GET",)),
    "history_compare_revisions": ("/{id}/history/{base_revision}/{compare_revision}/compare", ("GET",)),
    "acl": ("/{id}/acl", ("GET", "POST")),
}


@dataclass
class ShowElement:
    name: str
    label: str
    value: Any


class Admin:
    model: ClassVar[Optional[type]] = None
    code: Optional[str] = None
    base_route_pattern: Optional[str] = None
    label: Optional[str] = None
    id_parameter: str = "id"
    translation_domain: str = DEFAULT_DOMAIN

    form_schema: ClassVar[Optional[type[BaseModel]]] = None
    form_fields: ClassVar[Optional[Sequence[str]]] = None
    list_fields: ClassVar[Optional[Sequence[str]]] = None
    show_fields: ClassVar[Optional[Sequence[str]]] = None
    filter_fields: ClassVar[Mapping[str, Any]] = {}
    export_fields: ClassVar[Optional[Sequence[str]]] = None
    export_formats: ClassVar[Optional[Sequence[str]]] = None
    export_batch_size: ClassVar[int] = 500
    batch_actions: ClassVar[Mapping[str, Mapping[str, Any]]] = {}
    excluded_routes: ClassVar[Sequence[str]] = ()
    templates: ClassVar[Mapping[str, str]] = {}
    subclasses: ClassVar[Mapping[str, type]] = {}
    security_information: ClassVar[Optional[Mapping[str, Sequence[str]]]] = None

    supports_preview_mode: bool = False
    acl_enabled: bool = False
    audited: bool = False
    per_page: Optional[int] = None

    model_manager_class: ClassVar[type] = SQLAlchemyModelManager
    controller_class: ClassVar[Optional[type]] = None

    def __init__(self, security_handler: Any = None, translator: Any = None):
        if self.model is None:
            raise ConfigurationError(f"{type(self).__name__} must define a `model`")
        table = getattr(self.model, "__tablename__", self.model.__name__.lower())
        self.code = self.code or f"admin.{table}"
        self.base_route_pattern = (self.base_route_pattern or table.replace("_", "-")).strip("/")
        self.label = self.label or self.model.__name__
        self.security_handler = security_handler
        self.translator = translator or default_translator
        self.route_prefix = f"{settings.ADMIN_ROUTE_PREFIX}/{self.base_route_pattern}"
        self.pool = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code}>"

    # ----- security ---------------------------------------------------------

    def is_granted(self, ctx: "AdminContext", name: str | Sequence[str], obj: Any = None) -> bool:
        if self.security_handler is None:
            raise ConfigurationError(f"No security handler configured for admin `{self.code}`")
        return self.security_handler.is_granted(ctx, self, name, obj)

    def get_security_information(self) -> Mapping[str, Sequence[str]]:
        if self.security_information is not None:
            return self.security_information
        return DEFAULT_SECURITY_INFORMATION

    # ----- classes and subclasses ------------------------------------------

    def has_active_subclass(self, ctx: "AdminContext") -> bool:
        name = ctx.request.get("subclass")
        return bool(self.subclasses) and isinstance(name, str) and name in self.subclasses

    def get_active_subclass_code(self, ctx: "AdminContext") -> Optional[str]:
        return ctx.request.get("subclass") if self.has_active_subclass(ctx) else None

    def get_active_class(self, ctx: "AdminContext") -> type:
        if self.has_active_subclass(ctx):
            return self.subclasses[ctx.request.get("subclass")]
        return self.model

    @staticmethod
    def is_class_abstract(cls: type) -> bool:
        return bool(vars(cls).get("__admin_abstract__", False))

    # ----- objects ----------------------------------------------------------

    def get_object(self, ctx: "AdminContext", identifier: Any) -> Any:
        return ctx.model_manager.find(self.model, identifier)

    def get_new_instance(self, ctx: "AdminContext") -> Any:
        return self.get_active_class(ctx)()

    def get_normalized_identifier(self, obj: Any) -> Optional[str]:
        return normalized_identifier(obj)

    def get_url_safe_identifier(self, obj: Any) -> Optional[str]:
        return normalized_identifier(obj)

    def to_string(self, obj: Any) -> str:
        if obj is None:
            return ""
        if type(obj).__str__ is not object.__str__:
            return str(obj)
        return f"{type(obj).__name__}:{normalized_identifier(obj)}"

    def id(self, obj: Any) -> Optional[str]:
        return self.get_normalized_identifier(obj)

    # ----- persistence hooks -----------------------------------------------

    def pre_persist(self, ctx: "AdminContext", obj: Any) -> None:
        pass

    def post_persist(self, ctx: "AdminContext", obj: Any) -> None:
        pass

    def pre_update(self, ctx: "AdminContext", obj: Any) -> None:
        pass

    def post_update(self, ctx: "AdminContext", obj: Any) -> None:
        pass

    def pre_remove(self, ctx: "AdminContext", obj: Any) -> None:
        pass

    def post_remove(self, ctx: "AdminContext", obj: Any) -> None:
        pass

    def pre_batch_action(
        self, ctx: "AdminContext", action: str, query: ProxyQuery, idx: list[Any], all_elements: bool
    ) -> None:
        """Last chance to narrow ``query`` or ``idx`` before a batch handler runs."""

    def create(self, ctx: "AdminContext", obj: Any) -> Any:
        self.pre_persist(ctx, obj)
        ctx.model_manager.create(obj)
        self.post_persist(ctx, obj)
        if self.acl_enabled:
            ctx.services.acl_manipulator.create_object_security(ctx, obj)
        return obj

    def update(self, ctx: "AdminContext", obj: Any, lock_version: Any = None) -> Any:
        self.pre_update(ctx, obj)
        ctx.model_manager.lock(obj, lock_version)
        ctx.model_manager.update(obj)
        self.post_update(ctx, obj)
        return obj

    def delete(self, ctx: "AdminContext", obj: Any) -> None:
        object_id = normalized_identifier(obj)
        self.pre_remove(ctx, obj)
        ctx.model_manager.delete(obj)
        self.post_remove(ctx, obj)
        if self.acl_enabled:
            ctx.services.acl_manipulator.delete_object_security(ctx, class_path(type(obj)), object_id)

    # ----- routes and URLs --------------------------------------------------

    def has_route(self, name: str) -> bool:
        return name in ROUTES and name not in self.excluded_routes

    def get_route_path(self, name: str) -> str:
        path, _ = ROUTES[name]
        return path.replace("{id}", "{" + self.id_parameter + "}")

    def generate_url(self, name: str, parameters: Optional[Mapping[str, Any]] = None) -> str:
        if not self.has_route(name):
            raise ConfigurationError(f"Route `{name}` does not exist for admin `{self.code}`")
        params = dict(parameters or {})
        if "id" in params and self.id_parameter != "id":
            params.setdefault(self.id_parameter, params.pop("id"))
        path = self.get_route_path(name)
        for placeholder in (self.id_parameter, "revision", "base_revision", "compare_revision"):
            token = "{" + placeholder + "}"
            if token in path:
                if placeholder not in params:
                    raise ConfigurationError(f"Missing parameter `{placeholder}` to generate route `{name}`")
                path = path.replace(token, str(params.pop(placeholder)))
        url = self.route_prefix + path
        query = urlencode(flatten_nested(params))
        return f"{url}?{query}" if query else url

    def generate_object_url(self, name: str, obj: Any, parameters: Optional[Mapping[str, Any]] = None) -> str:
        params = dict(parameters or {})
        params[self.id_parameter] = self.get_url_safe_identifier(obj)
        return self.generate_url(name, params)

    # ----- templates, translation ------------------------------------------

    def get_template(self, name: str) -> str:
        template = self.templates.get(name) or DEFAULT_TEMPLATES.get(name)
        if template is None:
            raise ConfigurationError(f"No template registered under `{name}` for admin `{self.code}`")
        return template

    def trans(self, key: str, params: Optional[Mapping[str, Any]] = None, domain: Optional[str] = None) -> str:
        return self.translator.trans(key, params, domain or self.translation_domain)

    # ----- list / datagrid --------------------------------------------------

    def get_per_page(self) -> int:
        return min(self.per_page or settings.DEFAULT_PER_PAGE, settings.MAX_PER_PAGE)

    def get_list_fields(self) -> list[str]:
        if self.list_fields is not None:
            return list(self.list_fields)
        return SQLAlchemyModelManager.get_column_names(self.model)

    def get_filter_parameters(self, ctx: "AdminContext") -> dict[str, Any]:
        params: dict[str, Any] = {
            "_page": 1,
            "_per_page": self.get_per_page(),
            "_sort_order": "ASC",
        }
        submitted = ctx.request.get("filter")
        if isinstance(submitted, Mapping):
            params.update(submitted)
        try:
            params["_page"] = max(1, int(params["_page"]))
        except (TypeError, ValueError):
            params["_page"] = 1
        try:
            params["_per_page"] = min(max(1, int(params["_per_page"])), settings.MAX_PER_PAGE)
        except (TypeError, ValueError):
            params["_per_page"] = self.get_per_page()
        if str(params.get("_sort_order", "")).upper() not in ("ASC", "DESC"):
            params["_sort_order"] = "ASC"
        return params

    def get_datagrid(self, ctx: "AdminContext") -> Datagrid:
        query = ctx.model_manager.create_query(self.model)
        filters = [build_filter(name, spec) for name, spec in self.filter_fields.items()]
        return Datagrid(query, filters, self.get_filter_parameters(ctx), sortable=self.get_list_fields())

    # ----- forms and show ---------------------------------------------------

    def get_form_schema(self, ctx: "AdminContext") -> type[BaseModel]:
        if self.form_schema is not None:
            return self.form_schema
        return schema_from_model(self.get_active_class(ctx), self.form_fields)

    def get_form(self, ctx: "AdminContext", obj: Any) -> AdminForm:
        lock_version = ctx.model_manager.get_version(obj) if normalized_identifier(obj) is not None else None
        return AdminForm(
            ctx.uniqid,
            self.get_form_schema(ctx),
            data=obj,
            csrf=ctx.services.csrf,
            session=ctx.request.session,
            lock_version=lock_version,
        )

    def get_show_fields(self) -> list[str]:
        if self.show_fields is not None:
            return list(self.show_fields)
        return SQLAlchemyModelManager.get_column_names(self.model)

    def get_show(self, ctx: "AdminContext", obj: Any) -> list[ShowElement]:
        return [
            ShowElement(name=name, label=name.replace("_", " ").capitalize(), value=getattr(obj, name, None))
            for name in self.get_show_fields()
        ]

    # ----- export -----------------------------------------------------------

    def get_export_formats(self) -> list[str]:
        return list(self.export_formats if self.export_formats is not None else settings.EXPORT_FORMATS)

    def get_export_fields(self) -> list[str]:
        if self.export_fields is not None:
            return list(self.export_fields)
        return SQLAlchemyModelManager.get_column_names(self.model)

    @staticmethod
    def _export_value(value: Any) -> Any:
        if isinstance(value, (datetime.datetime, datetime.date)):
            return value.isoformat()
        if isinstance(value, decimal.Decimal):
            return str(value)
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def get_data_source_iterator(self, ctx: "AdminContext") -> Iterator[dict[str, Any]]:
        """Export rows of the filtered list, loaded while the response streams.

        The statement is built from the current filters; rows are fetched in
        batches from a session of their own, since the request session is
        closed before the body is sent.
        """
        statement = self.get_datagrid(ctx).get_query().clear_pagination().build_statement()
        return self._iter_export_rows(statement, self.get_export_fields())

    def _iter_export_rows(self, statement: Select, fields: list[str]) -> Iterator[dict[str, Any]]:
        with session_scope() as session:
            for obj in session.scalars(statement.execution_options(yield_per=self.export_batch_size)):
                yield {name: self._export_value(getattr(obj, name, None)) for name in fields}

    # ----- batch ------------------------------------------------------------

    def get_batch_actions(self, ctx: "AdminContext") -> dict[str, dict[str, Any]]:
        actions: dict[str, dict[str, Any]] = {}
        if self.has_route("delete") and self.is_granted(ctx, Permission.DELETE):
            actions["delete"] = {"label": self.trans("action_delete"), "ask_confirmation": True}
        for name, options in self.batch_actions.items():
            action = {"label": name.replace("_", " ").capitalize(), "ask_confirmation": True}
            action.update(options)
            actions[name] = action
        return actions
