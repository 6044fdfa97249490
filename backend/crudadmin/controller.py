# SPDX-License-Identifier: Apache-2.0

"""Generic CRUD controller driving every registered admin.

Each action takes the explicit :class:`~crudadmin.admin.context.AdminContext`
of the request and returns a Starlette response. Subclasses customise
behaviour through the ``pre_*`` hooks (return a response to short-circuit)
and through the ``batch_action`` / ``batch_relevance`` decorators.
"""

from __future__ import annotations

import datetime
import html
import json
import logging
from typing import Any, Callable, ClassVar, Mapping, Optional

from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

from .admin.context import AdminContext
from .admin.datagrid import ProxyQuery
from .admin.forms import AdminForm
from .admin.request import is_truthy
from .exceptions import (
    AccessDeniedError,
    ConfigurationError,
    CsrfError,
    LockError,
    ModelManagerError,
    NotFoundError,
)
from .models import User
from .schemas import BatchActionPayload
from .security.acl import ROLES_FORM, USERS_FORM
from .security.handlers import Permission
from .services.audit import record_admin_action
from .services.flash import add_flash, pop_flashes
from .telemetry import log_json

logger = logging.getLogger("crudadmin.controller")

BATCH_INTENTION = "admin.batch"
DELETE_INTENTION = "admin.delete"
CSRF_FIELD = "_sonata_csrf_token"

_BATCH_ACTION_ATTR = "__batch_action__"
_BATCH_RELEVANCE_ATTR = "__batch_relevance__"


def batch_action(name: str) -> Callable:
    """Register the decorated controller method as the handler of batch action ``name``."""

    def decorator(func: Callable) -> Callable:
        setattr(func, _BATCH_ACTION_ATTR, name)
        return func

    return decorator


def batch_relevance(name: str) -> Callable:
    """Register a relevance check for batch action ``name``.

    The check receives ``(ctx, idx, all_elements)`` and returns ``True`` when
    the selection is relevant, otherwise a message (or a falsy value).
    """

    def decorator(func: Callable) -> Callable:
        setattr(func, _BATCH_RELEVANCE_ATTR, name)
        return func

    return decorator


class CRUDController:
    _registry: ClassVar[Optional[tuple[dict[str, str], dict[str, str]]]] = None

    # ----- batch registry ---------------------------------------------------

    @classmethod
    def batch_registry(cls) -> tuple[dict[str, str], dict[str, str]]:
        """Handlers and relevance checks keyed by batch action name, built once per class."""
        cached = cls.__dict__.get("_registry")
        if cached is not None:
            return cached
        handlers: dict[str, str] = {}
        relevance: dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, value in vars(klass).items():
                name = getattr(value, _BATCH_ACTION_ATTR, None)
                if name:
                    handlers[name] = attr_name
                name = getattr(value, _BATCH_RELEVANCE_ATTR, None)
                if name:
                    relevance[name] = attr_name
        registry = (handlers, relevance)
        cls._registry = registry
        return registry

    def get_batch_handler(self, action: str) -> Optional[Callable[..., Response]]:
        handlers, _ = self.batch_registry()
        attr_name = handlers.get(action)
        return getattr(self, attr_name) if attr_name else None

    def get_batch_relevance(self, action: str) -> Optional[Callable[..., Any]]:
        _, relevance = self.batch_registry()
        attr_name = relevance.get(action)
        return getattr(self, attr_name) if attr_name else None

    # ----- request helpers --------------------------------------------------

    def is_xml_http_request(self, ctx: AdminContext) -> bool:
        return ctx.request.is_xml_http_request()

    def get_rest_method(self, ctx: AdminContext) -> str:
        return ctx.request.get_rest_method()

    def is_preview_requested(self, ctx: AdminContext) -> bool:
        return ctx.request.get("btn_preview") is not None

    def is_preview_approved(self, ctx: AdminContext) -> bool:
        return ctx.request.get("btn_preview_approve") is not None

    def is_preview_declined(self, ctx: AdminContext) -> bool:
        return ctx.request.get("btn_preview_decline") is not None

    def is_in_preview_mode(self, ctx: AdminContext) -> bool:
        return ctx.admin.supports_preview_mode and (
            self.is_preview_requested(ctx) or self.is_preview_approved(ctx) or self.is_preview_declined(ctx)
        )

    def escape_html(self, value: Any) -> str:
        return html.escape(str(value), quote=True)

    # ----- response helpers -------------------------------------------------

    def get_base_template(self, ctx: AdminContext) -> str:
        if self.is_xml_http_request(ctx):
            return ctx.admin.get_template("ajax")
        return ctx.admin.get_template("layout")

    def render(
        self,
        ctx: AdminContext,
        template: str,
        parameters: Optional[Mapping[str, Any]] = None,
        status_code: int = 200,
    ) -> Response:
        context: dict[str, Any] = dict(parameters or {})
        context.setdefault("admin", ctx.admin)
        context.setdefault("base_template", self.get_base_template(ctx))
        context["admin_pool"] = ctx.services.pool
        context["flashes"] = pop_flashes(ctx.request.session)
        context["csrf"] = lambda intention: self.get_csrf_token(ctx, intention)
        return ctx.services.templates.TemplateResponse(ctx.request.raw, template, context, status_code=status_code)

    def render_json(self, data: Any, status_code: int = 200, headers: Optional[Mapping[str, str]] = None) -> JSONResponse:
        return JSONResponse(data, status_code=status_code, headers=dict(headers or {}))

    def redirect_to(self, ctx: AdminContext, obj: Any) -> RedirectResponse:
        """Pick the redirect target from the submit button used; the first matching rule wins."""
        admin = ctx.admin
        request = ctx.request
        if request.get("btn_update_and_list") is not None:
            url = admin.generate_url("list")
        elif request.get("btn_create_and_list") is not None:
            url = admin.generate_url("list")
        elif request.get("btn_create_and_create") is not None:
            params = {}
            if admin.has_active_subclass(ctx):
                params["subclass"] = request.get("subclass")
            url = admin.generate_url("create", params)
        elif self.get_rest_method(ctx) == "DELETE":
            url = admin.generate_url("list")
        else:
            url = admin.generate_object_url("edit", obj)
        return RedirectResponse(url, status_code=302)

    def add_flash(self, ctx: AdminContext, flash_type: str, message: str) -> None:
        add_flash(ctx.request.session, flash_type, message)

    def get_csrf_token(self, ctx: AdminContext, intention: str) -> Optional[str]:
        return ctx.services.csrf.get_token(ctx.request.session, intention)

    def validate_csrf_token(self, ctx: AdminContext, intention: str) -> None:
        token = ctx.request.body.get(CSRF_FIELD)
        if not ctx.services.csrf.is_token_valid(ctx.request.session, intention, token):
            raise CsrfError()

    def handle_model_manager_exception(self, ctx: AdminContext, exc: ModelManagerError) -> None:
        if ctx.services.settings.DEBUG:
            raise exc
        extra: dict[str, Any] = {"admin_code": ctx.admin.code}
        if exc.__cause__ is not None:
            extra["previous_exception_message"] = str(exc.__cause__)
        logger.error(str(exc), exc_info=exc, extra=extra)

    def _audit(
        self, ctx: AdminContext, action: str, obj: Any = None, target_id: Optional[str] = None, **metadata: Any
    ) -> None:
        if obj is not None and target_id is None:
            target_id = ctx.admin.get_normalized_identifier(obj)
        record_admin_action(
            ctx.db,
            admin_user_id=ctx.user.id if ctx.user is not None else None,
            admin_code=ctx.admin.code,
            action=action,
            target_type=type(obj).__name__ if obj is not None else ctx.admin.model.__name__,
            target_id=target_id,
            metadata=metadata or None,
        )

    def _fetch(self, ctx: AdminContext) -> Any:
        identifier = ctx.request.get(ctx.admin.id_parameter)
        obj = ctx.admin.get_object(ctx, identifier)
        if obj is None:
            raise NotFoundError(f"unable to find the object with id : {identifier}")
        return obj

    # ----- hooks ------------------------------------------------------------

    def pre_list(self, ctx: AdminContext) -> Optional[Response]:
        return None

    def pre_create(self, ctx: AdminContext, obj: Any) -> Optional[Response]:
        return None

    def pre_edit(self, ctx: AdminContext, obj: Any) -> Optional[Response]:
        return None

    def pre_delete(self, ctx: AdminContext, obj: Any) -> Optional[Response]:
        return None

    def pre_show(self, ctx: AdminContext, obj: Any) -> Optional[Response]:
        return None

    # ----- actions ----------------------------------------------------------

    def list_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        if not admin.is_granted(ctx, Permission.LIST):
            raise AccessDeniedError()

        pre_response = self.pre_list(ctx)
        if pre_response is not None:
            return pre_response

        list_mode = ctx.request.get("_list_mode")
        if list_mode:
            ctx.list_mode = str(list_mode)

        datagrid = admin.get_datagrid(ctx)
        return self.render(
            ctx,
            admin.get_template("list"),
            {
                "action": "list",
                "form": datagrid.get_form(),
                "datagrid": datagrid,
                "list_mode": ctx.list_mode or "list",
                "list_fields": admin.get_list_fields(),
                "batch_actions": admin.get_batch_actions(ctx),
                "csrf_token": self.get_csrf_token(ctx, BATCH_INTENTION),
            },
        )

    @batch_action("delete")
    def batch_action_delete(self, ctx: AdminContext, query: Optional[ProxyQuery]) -> Response:
        admin = ctx.admin
        if not admin.is_granted(ctx, Permission.DELETE):
            raise AccessDeniedError()

        try:
            deleted = 0
            if query is not None:
                deleted = ctx.model_manager.batch_delete(admin.model, query)
            self._audit(ctx, "batch_delete", count=deleted)
            log_json(20, "admin_batch_executed", action="delete", count=deleted)
            self.add_flash(ctx, "success", admin.trans("flash_batch_delete_success"))
        except ModelManagerError as exc:
            self.handle_model_manager_exception(ctx, exc)
            self.add_flash(ctx, "error", admin.trans("flash_batch_delete_error"))

        return RedirectResponse(
            admin.generate_url("list", {"filter": admin.get_filter_parameters(ctx)}), status_code=302
        )

    def delete_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        obj = self._fetch(ctx)
        if not admin.is_granted(ctx, Permission.DELETE, obj):
            raise AccessDeniedError()

        pre_response = self.pre_delete(ctx, obj)
        if pre_response is not None:
            return pre_response

        if self.get_rest_method(ctx) == "DELETE":
            self.validate_csrf_token(ctx, DELETE_INTENTION)

            object_name = admin.to_string(obj)
            object_id = admin.get_normalized_identifier(obj)
            try:
                admin.delete(ctx, obj)
                self._audit(ctx, "delete", target_id=object_id, object_name=object_name)
                log_json(20, "admin_object_deleted", object_id=object_id)
                if self.is_xml_http_request(ctx):
                    return self.render_json({"result": "ok"})
                self.add_flash(
                    ctx, "success", admin.trans("flash_delete_success", {"%name%": self.escape_html(object_name)})
                )
            except ModelManagerError as exc:
                self.handle_model_manager_exception(ctx, exc)
                if self.is_xml_http_request(ctx):
                    return self.render_json({"result": "error"})
                self.add_flash(
                    ctx, "error", admin.trans("flash_delete_error", {"%name%": self.escape_html(object_name)})
                )

            return self.redirect_to(ctx, obj)

        return self.render(
            ctx,
            admin.get_template("delete"),
            {
                "object": obj,
                "action": "delete",
                "csrf_token": self.get_csrf_token(ctx, DELETE_INTENTION),
            },
        )

    def edit_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        template_key = "edit"

        obj = self._fetch(ctx)
        if not admin.is_granted(ctx, Permission.EDIT, obj):
            raise AccessDeniedError()

        pre_response = self.pre_edit(ctx, obj)
        if pre_response is not None:
            return pre_response

        ctx.subject = obj
        form = admin.get_form(ctx, obj)
        form.handle_request(ctx.request)
        extra: dict[str, Any] = {}

        if form.is_submitted():
            is_form_valid = form.is_valid()

            if is_form_valid and (not self.is_in_preview_mode(ctx) or self.is_preview_approved(ctx)):
                try:
                    obj = admin.update(ctx, form.get_data(), form.lock_version)
                    self._audit(ctx, "edit", obj)
                    log_json(20, "admin_object_updated", object_id=admin.get_normalized_identifier(obj))

                    if self.is_xml_http_request(ctx):
                        return self.render_json(
                            {
                                "result": "ok",
                                "objectId": admin.get_normalized_identifier(obj),
                                "objectName": self.escape_html(admin.to_string(obj)),
                            }
                        )

                    self.add_flash(
                        ctx,
                        "success",
                        admin.trans("flash_edit_success", {"%name%": self.escape_html(admin.to_string(obj))}),
                    )
                    return self.redirect_to(ctx, obj)
                except ModelManagerError as exc:
                    self.handle_model_manager_exception(ctx, exc)
                    is_form_valid = False
                except LockError:
                    self.add_flash(
                        ctx,
                        "error",
                        admin.trans(
                            "flash_lock_error",
                            {
                                "%name%": self.escape_html(admin.to_string(obj)),
                                "%link_start%": '<a href="%s">' % admin.generate_object_url("edit", obj),
                                "%link_end%": "</a>",
                            },
                        ),
                    )

            if not is_form_valid:
                if not self.is_xml_http_request(ctx):
                    self.add_flash(
                        ctx,
                        "error",
                        admin.trans("flash_edit_error", {"%name%": self.escape_html(admin.to_string(obj))}),
                    )
            elif self.is_preview_requested(ctx):
                template_key = "preview"
                preview = form.get_preview()
                extra["elements"] = admin.get_show(ctx, preview)
                extra["preview"] = preview

        return self.render(
            ctx,
            admin.get_template(template_key),
            {"action": "edit", "form": form.create_view(), "object": obj, **extra},
        )

    def create_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        template_key = "edit"

        if not admin.is_granted(ctx, Permission.CREATE):
            raise AccessDeniedError()

        model_class = admin.get_active_class(ctx)
        if admin.is_class_abstract(model_class):
            return self.render(
                ctx,
                admin.get_template("select_subclass"),
                {"action": "create", "subclasses": admin.subclasses},
            )

        obj = admin.get_new_instance(ctx)

        pre_response = self.pre_create(ctx, obj)
        if pre_response is not None:
            return pre_response

        ctx.subject = obj
        form: AdminForm = admin.get_form(ctx, obj)
        form.handle_request(ctx.request)
        extra: dict[str, Any] = {}

        if form.is_submitted():
            is_form_valid = form.is_valid()

            if is_form_valid and (not self.is_in_preview_mode(ctx) or self.is_preview_approved(ctx)):
                if not admin.is_granted(ctx, Permission.CREATE, obj):
                    raise AccessDeniedError()

                try:
                    obj = admin.create(ctx, form.get_data())
                    self._audit(ctx, "create", obj)
                    log_json(20, "admin_object_created", object_id=admin.get_normalized_identifier(obj))

                    if self.is_xml_http_request(ctx):
                        return self.render_json({"result": "ok", "objectId": admin.get_normalized_identifier(obj)})

                    self.add_flash(
                        ctx,
                        "success",
                        admin.trans("flash_create_success", {"%name%": self.escape_html(admin.to_string(obj))}),
                    )
                    return self.redirect_to(ctx, obj)
                except ModelManagerError as exc:
                    self.handle_model_manager_exception(ctx, exc)
                    is_form_valid = False

            if not is_form_valid:
                if not self.is_xml_http_request(ctx):
                    self.add_flash(
                        ctx,
                        "error",
                        admin.trans("flash_create_error", {"%name%": self.escape_html(admin.to_string(obj))}),
                    )
            elif self.is_preview_requested(ctx):
                template_key = "preview"
                preview = form.get_preview()
                extra["elements"] = admin.get_show(ctx, preview)
                extra["preview"] = preview

        return self.render(
            ctx,
            admin.get_template(template_key),
            {"action": "create", "form": form.create_view(), "object": obj, **extra},
        )

    def show_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        obj = self._fetch(ctx)
        if not admin.is_granted(ctx, Permission.VIEW, obj):
            raise AccessDeniedError()

        pre_response = self.pre_show(ctx, obj)
        if pre_response is not None:
            return pre_response

        ctx.subject = obj
        return self.render(
            ctx,
            admin.get_template("show"),
            {"action": "show", "object": obj, "elements": admin.get_show(ctx, obj)},
        )

    # ----- history ----------------------------------------------------------

    def _audit_reader(self, ctx: AdminContext, model: type):
        manager = ctx.services.audit_manager
        if not manager.has_reader(model):
            raise NotFoundError(f"unable to find the audit reader for class : {model.__name__}")
        return manager.get_reader(ctx.db, model)

    def _revision_not_found(self, model: type, identifier: Any, revision: Any) -> NotFoundError:
        return NotFoundError(
            f"unable to find the targeted object `{identifier}` from the revision `{revision}` "
            f"with classname : `{model.__name__}`"
        )

    def history_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        obj = self._fetch(ctx)
        if not admin.is_granted(ctx, Permission.EDIT, obj):
            raise AccessDeniedError()

        reader = self._audit_reader(ctx, type(obj))
        revisions = reader.find_revisions(type(obj), admin.get_normalized_identifier(obj))

        return self.render(
            ctx,
            admin.get_template("history"),
            {
                "action": "history",
                "object": obj,
                "revisions": revisions,
                "currentRevision": revisions[0] if revisions else False,
            },
        )

    def history_view_revision_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        obj = self._fetch(ctx)
        if not admin.is_granted(ctx, Permission.EDIT, obj):
            raise AccessDeniedError()

        reader = self._audit_reader(ctx, type(obj))
        identifier = admin.get_normalized_identifier(obj)
        revision = ctx.request.get("revision")
        snapshot = reader.find(type(obj), identifier, revision)
        if snapshot is None:
            raise self._revision_not_found(type(obj), identifier, revision)

        ctx.subject = snapshot.obj
        return self.render(
            ctx,
            admin.get_template("show"),
            {
                "action": "show",
                "object": snapshot.obj,
                "revision": snapshot.revision,
                "elements": admin.get_show(ctx, snapshot.obj),
            },
        )

    def history_compare_revisions_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        if not admin.is_granted(ctx, Permission.EDIT):
            raise AccessDeniedError()

        obj = self._fetch(ctx)
        reader = self._audit_reader(ctx, type(obj))
        identifier = admin.get_normalized_identifier(obj)

        base_revision = ctx.request.get("base_revision")
        base = reader.find(type(obj), identifier, base_revision)
        if base is None:
            raise self._revision_not_found(type(obj), identifier, base_revision)

        compare_revision = ctx.request.get("compare_revision")
        compare = reader.find(type(obj), identifier, compare_revision)
        if compare is None:
            raise self._revision_not_found(type(obj), identifier, compare_revision)

        ctx.subject = base.obj
        return self.render(
            ctx,
            admin.get_template("show_compare"),
            {
                "action": "show",
                "object": base.obj,
                "object_compare": compare.obj,
                "elements": admin.get_show(ctx, base.obj),
                "elements_compare": admin.get_show(ctx, compare.obj),
            },
        )

    # ----- export -----------------------------------------------------------

    def export_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        if not admin.is_granted(ctx, Permission.EXPORT):
            raise AccessDeniedError()

        fmt = ctx.request.get("format")
        allowed = admin.get_export_formats()
        if fmt not in allowed:
            raise ConfigurationError(
                f"Export in format `{fmt}` is not allowed for class: `{admin.model.__name__}`. "
                f"Allowed formats are: `{', '.join(allowed)}`"
            )

        filename = "export_%s_%s.%s" % (
            admin.model.__name__.lower(),
            datetime.datetime.now().strftime("%Y_%m_%d_%H_%M_%S"),
            fmt,
        )
        log_json(20, "admin_export_started", format=fmt, filename=filename)
        return ctx.services.exporter.get_response(fmt, filename, admin.get_data_source_iterator(ctx))

    # ----- ACL --------------------------------------------------------------

    def get_acl_users(self, ctx: AdminContext) -> list[User]:
        provider = getattr(ctx.admin, "acl_user_provider", None)
        if provider is not None:
            return list(provider(ctx))
        return list(ctx.db.query(User).filter(User.is_active.is_(True)).order_by(User.email).all())

    def get_acl_roles(self, ctx: AdminContext) -> list[str]:
        roles: list[str] = []
        for admin in ctx.services.pool:
            base_role = admin.security_handler.get_base_role(admin)
            if not base_role:
                continue
            for key in admin.get_security_information():
                roles.append(base_role % key)
        for name, children in ctx.services.settings.ROLE_HIERARCHY.items():
            roles.append(name)
            roles.extend(children)
        return list(dict.fromkeys(roles))

    def acl_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        if not admin.acl_enabled:
            raise NotFoundError("ACL are not enabled for this admin")

        obj = self._fetch(ctx)
        if not admin.is_granted(ctx, Permission.MASTER, obj):
            raise AccessDeniedError()

        ctx.subject = obj
        acl_users = self.get_acl_users(ctx)
        acl_roles = self.get_acl_roles(ctx)

        manipulator = ctx.services.acl_manipulator
        acl_data = manipulator.build_acl_data(ctx, obj, acl_users, acl_roles)
        users_form = manipulator.create_acl_users_form(ctx, acl_data)
        roles_form = manipulator.create_acl_roles_form(ctx, acl_data)

        if ctx.request.method == "POST":
            form = None
            update: Optional[Callable] = None
            if USERS_FORM in ctx.request.body:
                form, update = users_form, manipulator.update_acl_users
            elif ROLES_FORM in ctx.request.body:
                form, update = roles_form, manipulator.update_acl_roles

            if form is not None and update is not None:
                form.handle_request(ctx.request)
                if form.is_valid():
                    update(ctx, acl_data, form)
                    self._audit(ctx, "acl", obj, form=form.name)
                    log_json(20, "admin_acl_updated", form=form.name, object_id=acl_data.object_id)
                    self.add_flash(ctx, "success", admin.trans("flash_acl_edit_success"))
                    return RedirectResponse(admin.generate_object_url("acl", obj), status_code=302)

        return self.render(
            ctx,
            admin.get_template("acl"),
            {
                "action": "acl",
                "permissions": acl_data.user_permissions,
                "object": obj,
                "users": acl_users,
                "roles": acl_roles,
                "aclUsersForm": users_form,
                "aclRolesForm": roles_form,
            },
        )

    # ----- batch ------------------------------------------------------------

    def batch_action(self, ctx: AdminContext) -> Response:
        admin = ctx.admin
        request = ctx.request
        rest_method = self.get_rest_method(ctx)
        if rest_method != "POST":
            raise NotFoundError(f'Invalid request type "{rest_method}", POST expected')

        self.validate_csrf_token(ctx, BATCH_INTENTION)

        confirmation = request.get("confirmation", False)

        payload = self._decode_batch_payload(request.get("data"))
        if payload is not None:
            action = payload.action
            idx: list[Any] = list(payload.idx)
            all_elements = payload.all_elements
            request.body.update(payload.model_dump())
            data: dict[str, Any] = payload.model_dump()
        else:
            request.body["idx"] = request.get_list("idx")
            request.body["all_elements"] = is_truthy(request.get("all_elements", False))
            action = request.get("action")
            idx = request.body["idx"]
            all_elements = request.body["all_elements"]
            data = {k: v for k, v in request.body.items() if k != CSRF_FIELD}

        batch_actions = admin.get_batch_actions(ctx)
        if not isinstance(action, str) or action not in batch_actions:
            raise ConfigurationError(f"The `{action}` batch action is not defined")

        relevance = self.get_batch_relevance(action)
        if relevance is not None:
            non_relevant_message = relevance(ctx, idx, all_elements)
        else:
            non_relevant_message = len(idx) != 0 or all_elements

        if not non_relevant_message:
            non_relevant_message = "flash_batch_empty"

        datagrid = admin.get_datagrid(ctx)
        datagrid.build_pager()

        if non_relevant_message is not True:
            self.add_flash(ctx, "info", admin.trans(str(non_relevant_message)))
            return RedirectResponse(
                admin.generate_url("list", {"filter": admin.get_filter_parameters(ctx)}), status_code=302
            )

        ask_confirmation = batch_actions[action].get("ask_confirmation", True)
        if ask_confirmation and confirmation != "ok":
            return self.render(
                ctx,
                admin.get_template("batch_confirmation"),
                {
                    "action": "list",
                    "action_label": batch_actions[action].get("label", action),
                    "batch_action": action,
                    "datagrid": datagrid,
                    "form": datagrid.get_form(),
                    "data": data,
                    "data_json": json.dumps(data, default=str),
                    "csrf_token": self.get_csrf_token(ctx, BATCH_INTENTION),
                },
            )

        handler = self.get_batch_handler(action)
        if handler is None:
            raise ConfigurationError(
                f"A batch handler for `{action}` must be registered on `{type(self).__name__}`"
            )

        query: Optional[ProxyQuery] = datagrid.get_query()
        query.clear_pagination()

        admin.pre_batch_action(ctx, action, query, idx, all_elements)

        if len(idx) > 0:
            ctx.model_manager.add_identifiers_to_query(admin.model, query, idx)
        elif not all_elements:
            query = None

        return handler(ctx, query)

    @staticmethod
    def _decode_batch_payload(raw: Any) -> Optional[BatchActionPayload]:
        if isinstance(raw, Mapping):
            decoded = raw
        elif isinstance(raw, str) and raw.strip():
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                return None
        else:
            return None
        if not isinstance(decoded, Mapping) or not decoded:
            return None
        try:
            return BatchActionPayload.model_validate(decoded)
        except ValueError:
            return None
