# SPDX-License-Identifier: Apache-2.0

"""Mount every registered admin's actions under the admin route prefix.

Each route carries the ``_admin_code`` attribute; the endpoint resolves the
admin context from it and dispatches to ``<route>_action`` on the admin's
controller.
"""

import time
from typing import Callable

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.responses import Response

from ..admin.base import ROUTES, Admin
from ..admin.context import ADMIN_CODE_ATTRIBUTE, AdminServices, resolve_admin_context
from ..admin.pool import AdminPool
from ..admin.request import AdminRequest
from ..auth import require_admin
from ..config import settings
from ..controller import CRUDController
from ..db import get_db
from ..exceptions import ConfigurationError
from ..metrics import admin_action_duration, admin_actions_total
from ..models import User
from ..rate_limit import check_rate_limit
from ..telemetry import clear_admin_context


async def get_admin_request(request: Request) -> AdminRequest:
    return await AdminRequest.from_starlette(request)


def get_admin_services(request: Request) -> AdminServices:
    services = getattr(request.app.state, "admin_services", None)
    if services is None:
        raise ConfigurationError("The admin services are not configured on this application")
    return services


def _admin_rate_limit(user: User, code: str, action: str) -> None:
    check_rate_limit(f"admin:{user.id}:{code}:{action}", settings.ADMIN_RATE_LIMIT_PER_MINUTE)


def _build_endpoint(admin: Admin, controller: CRUDController, name: str) -> Callable[..., Response]:
    action = getattr(controller, f"{name}_action")

    def endpoint(
        admin_request: AdminRequest = Depends(get_admin_request),
        db: Session = Depends(get_db),
        user: User = Depends(require_admin),
        services: AdminServices = Depends(get_admin_services),
    ) -> Response:
        admin_request.set_attribute(ADMIN_CODE_ATTRIBUTE, admin.code)
        if admin_request.get_rest_method() != "GET":
            _admin_rate_limit(user, admin.code, name)

        started = time.perf_counter()
        status = "error"
        try:
            ctx = resolve_admin_context(services, admin_request, db, user)
            response = action(ctx)
            status = str(response.status_code)
            return response
        except Exception as exc:
            status = str(getattr(exc, "status_code", 500))
            raise
        finally:
            admin_actions_total.labels(admin=admin.code, action=name, status=status).inc()
            admin_action_duration.labels(admin=admin.code, action=name).observe(time.perf_counter() - started)
            clear_admin_context()

    endpoint.__name__ = f"{admin.code.replace('.', '_')}_{name}"
    return endpoint


def build_admin_router(pool: AdminPool) -> APIRouter:
    router = APIRouter(prefix=pool.route_prefix, tags=["admin"], include_in_schema=False)

    for admin in pool:
        controller_class = admin.controller_class or CRUDController
        controller = controller_class()
        for name, (_, methods) in ROUTES.items():
            if not admin.has_route(name):
                continue
            router.add_api_route(
                f"/{admin.base_route_pattern}{admin.get_route_path(name)}",
                _build_endpoint(admin, controller, name),
                methods=list(methods),
                name=f"{admin.code}.{name}",
            )

    return router
