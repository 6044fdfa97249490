# SPDX-License-Identifier: Apache-2.0

"""Authorization of admin actions.

Role names follow ``ROLE_<ADMIN CODE>_<SUFFIX>`` where the admin code has its
dots replaced by underscores. A suffix is either a permission (``EDIT``) or a
key of the admin's security information (``STAFF``) standing for a group of
permissions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence, Union

from sqlalchemy import select

from ..admin.model_manager import class_path, normalized_identifier
from ..config import settings
from ..models import AclEntry, AclIdentityType
from .acl import MaskBuilder, PERMISSION_MAP

if TYPE_CHECKING:
    from ..admin.base import Admin
    from ..admin.context import AdminContext


class Permission:
    LIST = "LIST"
    CREATE = "CREATE"
    EDIT = "EDIT"
    DELETE = "DELETE"
    UNDELETE = "UNDELETE"
    VIEW = "VIEW"
    EXPORT = "EXPORT"
    OPERATOR = "OPERATOR"
    MASTER = "MASTER"
    OWNER = "OWNER"

    ALL = (LIST, CREATE, EDIT, DELETE, UNDELETE, VIEW, EXPORT, OPERATOR, MASTER, OWNER)


IMPLIED_PERMISSIONS: dict[str, tuple[str, ...]] = {
    Permission.OWNER: Permission.ALL,
    Permission.MASTER: Permission.ALL,
    Permission.OPERATOR: (
        Permission.VIEW,
        Permission.EDIT,
        Permission.CREATE,
        Permission.DELETE,
        Permission.UNDELETE,
        Permission.LIST,
        Permission.EXPORT,
    ),
}

DEFAULT_SECURITY_INFORMATION: dict[str, list[str]] = {
    "GUEST": [Permission.VIEW, Permission.LIST],
    "STAFF": [Permission.EDIT, Permission.LIST, Permission.CREATE],
    "EDITOR": [Permission.OPERATOR, Permission.EXPORT],
    "ADMIN": [Permission.MASTER],
}

Attributes = Union[str, Sequence[str]]


def _as_list(attributes: Attributes) -> list[str]:
    if isinstance(attributes, str):
        return [attributes]
    return list(attributes)


def reachable_roles(roles: Iterable[str], hierarchy: Mapping[str, Sequence[str]]) -> set[str]:
    seen: set[str] = set()
    pending = list(roles)
    while pending:
        role = pending.pop()
        if role in seen:
            continue
        seen.add(role)
        pending.extend(hierarchy.get(role, ()))
    return seen


def expand_permissions(permissions: Iterable[str]) -> set[str]:
    expanded: set[str] = set()
    for permission in permissions:
        expanded.add(permission)
        expanded.update(IMPLIED_PERMISSIONS.get(permission, ()))
    return expanded


class NoopSecurityHandler:
    """Grants everything; for admins that rely on route-level access only."""

    def is_granted(self, ctx: "AdminContext", admin: "Admin", attributes: Attributes, obj: Any = None) -> bool:
        return True

    def get_base_role(self, admin: "Admin") -> str:
        return ""


class RoleSecurityHandler:
    def __init__(
        self,
        super_admin_role: Optional[str] = None,
        role_hierarchy: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.super_admin_role = super_admin_role or settings.SUPER_ADMIN_ROLE
        self.role_hierarchy = dict(role_hierarchy if role_hierarchy is not None else settings.ROLE_HIERARCHY)

    def get_base_role(self, admin: "Admin") -> str:
        return "ROLE_" + admin.code.replace(".", "_").upper() + "_%s"

    def user_roles(self, ctx: "AdminContext") -> set[str]:
        user = ctx.user
        if user is None:
            return set()
        return reachable_roles(getattr(user, "roles", None) or [], self.role_hierarchy)

    def granted_permissions(self, ctx: "AdminContext", admin: "Admin") -> set[str]:
        roles = self.user_roles(ctx)
        prefix = self.get_base_role(admin) % ""
        granted: set[str] = set()
        security_information = admin.get_security_information()
        for role in roles:
            if not role.startswith(prefix):
                continue
            suffix = role[len(prefix):]
            granted.add(suffix)
            granted.update(security_information.get(suffix, ()))
        return expand_permissions(granted)

    def is_super_admin(self, ctx: "AdminContext") -> bool:
        return self.super_admin_role in self.user_roles(ctx)

    def is_granted(self, ctx: "AdminContext", admin: "Admin", attributes: Attributes, obj: Any = None) -> bool:
        if ctx.user is None:
            return False
        if self.is_super_admin(ctx):
            return True
        granted = self.granted_permissions(ctx, admin)
        return any(attribute in granted for attribute in _as_list(attributes))


class AclSecurityHandler(RoleSecurityHandler):
    """Role checks first; object-level ACL entries can grant more on a given object."""

    def object_mask(self, ctx: "AdminContext", admin: "Admin", obj: Any) -> int:
        object_id = normalized_identifier(obj)
        if object_id is None or ctx.user is None:
            return 0
        roles = sorted(self.user_roles(ctx))
        stmt = select(AclEntry).where(
            AclEntry.object_class == class_path(type(obj)),
            AclEntry.object_id == object_id,
        )
        mask = 0
        for entry in ctx.db.scalars(stmt):
            if entry.identity_type == AclIdentityType.USER.value and entry.identity == ctx.user.email:
                mask |= entry.mask
            elif entry.identity_type == AclIdentityType.ROLE.value and entry.identity in roles:
                mask |= entry.mask
        return mask

    def is_granted(self, ctx: "AdminContext", admin: "Admin", attributes: Attributes, obj: Any = None) -> bool:
        if super().is_granted(ctx, admin, attributes, obj):
            return True
        if obj is None or ctx.user is None or not admin.acl_enabled:
            return False
        mask = self.object_mask(ctx, admin, obj)
        if not mask:
            return False
        for attribute in _as_list(attributes):
            for permission in PERMISSION_MAP.get(attribute, ()):
                if mask & MaskBuilder.get_code(permission):
                    return True
        return False
