from __future__ import annotations

from typing import Any, Iterator, Optional

from ..config import settings
from ..exceptions import ConfigurationError
from ..security.handlers import AclSecurityHandler, RoleSecurityHandler
from ..services.revisions import track_revisions
from ..telemetry import log_json
from .base import Admin


class AdminPool:
    """Registry of admin descriptors keyed by admin code."""

    def __init__(self, security_handler: Any = None, route_prefix: Optional[str] = None):
        self.security_handler = security_handler or RoleSecurityHandler()
        self.route_prefix = settings.ADMIN_ROUTE_PREFIX if route_prefix is None else route_prefix
        self._admins: dict[str, Admin] = {}

    def register(self, admin: Admin) -> Admin:
        if admin.code in self._admins:
            raise ConfigurationError(f"An admin with code `{admin.code}` is already registered")
        for other in self._admins.values():
            if other.base_route_pattern == admin.base_route_pattern:
                raise ConfigurationError(
                    f"Admins `{other.code}` and `{admin.code}` share the route pattern `{admin.base_route_pattern}`"
                )
        if admin.security_handler is None:
            admin.security_handler = self._acl_handler() if admin.acl_enabled else self.security_handler
        admin.route_prefix = f"{self.route_prefix}/{admin.base_route_pattern}"
        admin.pool = self
        if admin.audited:
            track_revisions(admin.model)
            for subclass in admin.subclasses.values():
                track_revisions(subclass)
        self._admins[admin.code] = admin
        log_json(10, "admin_registered", code=admin.code, route_prefix=admin.route_prefix)
        return admin

    def _acl_handler(self) -> Any:
        handler = self.security_handler
        if isinstance(handler, AclSecurityHandler) or not isinstance(handler, RoleSecurityHandler):
            return handler
        return AclSecurityHandler(handler.super_admin_role, handler.role_hierarchy)

    def get_admin_by_admin_code(self, code: str) -> Optional[Admin]:
        return self._admins.get(code)

    def get_admin_by_class(self, model: type) -> Optional[Admin]:
        for admin in self._admins.values():
            if admin.model is model:
                return admin
        return None

    def get_admin_codes(self) -> list[str]:
        return list(self._admins)

    def __iter__(self) -> Iterator[Admin]:
        return iter(self._admins.values())

    def __len__(self) -> int:
        return len(self._admins)

    def __contains__(self, code: object) -> bool:
        return code in self._admins
